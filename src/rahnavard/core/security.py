"""Hashing utilities for passwords, fingerprints and identities."""
from __future__ import annotations

import hashlib

import bcrypt

from rahnavard.core.settings import settings

IDENTITY_HASH_LENGTH = 16


def hash_password(password: str, rounds: int | None = None) -> str:
    """Return a bcrypt hash of ``password``."""
    salt = bcrypt.gensalt(rounds=rounds or settings.bcrypt_rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("ascii")


def verify_password(password: str, password_hash: str) -> bool:
    """Return True if ``password`` matches the stored bcrypt hash.

    Malformed hashes are treated as a mismatch rather than an error.
    """
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("ascii"))
    except ValueError:
        return False


def sha256_hex(value: str) -> str:
    """Return a SHA-256 hex digest of the provided string."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def hash_identity(identity: str, salt: str | None = None) -> str:
    """Return a salted, truncated, irreversible digest of a client identity."""
    return sha256_hex(identity + (settings.ip_hash_salt if salt is None else salt))[
        :IDENTITY_HASH_LENGTH
    ]
