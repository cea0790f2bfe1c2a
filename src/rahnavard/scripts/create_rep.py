"""Create a representative account from the command line."""
from __future__ import annotations

import argparse
import getpass
import sys

from rahnavard.core.sanitize import validate_email, validate_password, validate_username
from rahnavard.core.security import hash_password
from rahnavard.core.settings import settings
from rahnavard.db.session import SessionLocal, create_tables
from rahnavard.repositories.session_repo import SqlSubjectStore
from rahnavard.services.session_security import Subject

ROLES = ("rep", "admin")


def create_rep(
    subjects: SqlSubjectStore,
    *,
    username: str,
    email: str,
    password: str,
    full_name: str = "",
    role: str = "rep",
    rounds: int | None = None,
) -> Subject:
    """Validate the inputs and insert a new rep.

    Raises:
        ValueError: If any field fails validation or the username is taken.
    """
    if role not in ROLES:
        raise ValueError(f"role must be one of {', '.join(ROLES)}")

    errors: list[str] = []
    for result in (validate_username(username), validate_email(email), validate_password(password)):
        errors.extend(result.errors)
        errors.extend(threat.value for threat in result.threats)
    if errors:
        raise ValueError("; ".join(errors))

    if subjects.find_credentials(username) is not None:
        raise ValueError(f"username {username!r} already exists")

    return subjects.create(
        username=username,
        email=validate_email(email).sanitized,
        password_hash=hash_password(password, rounds),
        full_name=full_name,
        role=role,
    )


def main() -> None:
    parser = argparse.ArgumentParser(description="Create a representative account")
    parser.add_argument("username")
    parser.add_argument("email")
    parser.add_argument("--full-name", default="", help="Display name for the dashboard")
    parser.add_argument("--role", choices=ROLES, default="rep")
    parser.add_argument(
        "--password",
        default=None,
        help="Password (prompted for when omitted; avoid passing it on shared machines)",
    )
    args = parser.parse_args()

    password = args.password or getpass.getpass("Password: ")
    create_tables()
    try:
        rep = create_rep(
            SqlSubjectStore(SessionLocal),
            username=args.username,
            email=args.email,
            password=password,
            full_name=args.full_name,
            role=args.role,
        )
    except ValueError as exc:
        print(f"[create_rep] ERROR: {exc}", file=sys.stderr)
        sys.exit(1)

    print(f"[create_rep] created {rep.role} {rep.username} ({rep.id}) in {settings.database_url}")


if __name__ == "__main__":
    main()
