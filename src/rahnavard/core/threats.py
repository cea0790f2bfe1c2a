"""Pattern-based threat detection for untrusted request input.

Detection is intentionally permissive: it flags anything that *looks* like an
injection or traversal attempt and accepts false positives (e.g. ``AND`` near
``=`` in free text) as the price of a simple, parser-free classifier.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Final

from rahnavard.core.settings import Settings, settings


class ThreatLabel(str, Enum):
    """Label attached to an input for each pattern family that matched."""

    SQL_INJECTION = "SQL Injection detected"
    XSS = "XSS Attack detected"
    COMMAND_INJECTION = "Command Injection detected"
    PATH_TRAVERSAL = "Path Traversal detected"


_SQL_INJECTION: Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"(\bOR\b|\bAND\b).*?=", re.IGNORECASE),
    re.compile(r"UNION.*?SELECT", re.IGNORECASE),
    re.compile(r"DROP.*?TABLE", re.IGNORECASE),
    re.compile(r"INSERT.*?INTO", re.IGNORECASE),
    re.compile(r"DELETE.*?FROM", re.IGNORECASE),
    re.compile(r"UPDATE.*?SET", re.IGNORECASE),
    re.compile(r"EXEC(\s|\+)+(s|x)p\w+", re.IGNORECASE),
    re.compile(r"'.*?--"),
    re.compile(r"'.*?;.*?'"),
)

_XSS: Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"<script[^>]*>.*?</script>", re.IGNORECASE | re.DOTALL),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),
    re.compile(r"<iframe", re.IGNORECASE),
    re.compile(r"<embed", re.IGNORECASE),
    re.compile(r"<object", re.IGNORECASE),
)

_COMMAND_INJECTION: Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"\|\s*\w+"),
    re.compile(r";\s*\w+"),
    re.compile(r"`.*?`"),
    re.compile(r"\$\(.*?\)"),
)

_PATH_TRAVERSAL: Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"\.\./"),
    re.compile(r"\.\.\\"),
    re.compile(r"%2e%2e", re.IGNORECASE),
)

# Declaration order is the order labels are reported in.
THREAT_PATTERNS: Final[tuple[tuple[ThreatLabel, str, tuple[re.Pattern[str], ...]], ...]] = (
    (ThreatLabel.SQL_INJECTION, "detect_sql_injection", _SQL_INJECTION),
    (ThreatLabel.XSS, "detect_xss", _XSS),
    (ThreatLabel.COMMAND_INJECTION, "detect_command_injection", _COMMAND_INJECTION),
    (ThreatLabel.PATH_TRAVERSAL, "detect_path_traversal", _PATH_TRAVERSAL),
)


def detect_threats(value: str, config: Settings | None = None) -> list[ThreatLabel]:
    """Return the threat labels whose pattern family matches ``value``.

    Args:
        value: Untrusted input. Empty strings never match.
        config: Settings controlling which families are enabled.

    Returns:
        At most one label per family, in family declaration order.
    """
    cfg = config or settings
    if not value or not cfg.threat_detection_enabled:
        return []

    threats: list[ThreatLabel] = []
    for label, switch, patterns in THREAT_PATTERNS:
        if not getattr(cfg, switch):
            continue
        if any(pattern.search(value) for pattern in patterns):
            threats.append(label)
    return threats


def is_sql_injection(threats: list[ThreatLabel]) -> bool:
    """Return True when the SQL injection family was among the matches."""
    return ThreatLabel.SQL_INJECTION in threats
