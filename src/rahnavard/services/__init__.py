# src/rahnavard/services/__init__.py
"""Security services composed by the request guard."""

from .csrf import CSRFGuard
from .event_log import SecurityEventLog
from .ip_blocking import IPBlockRegistry
from .rate_limiter import RateLimiter
from .session_security import SessionSecurity

__all__ = [
    "CSRFGuard",
    "IPBlockRegistry",
    "RateLimiter",
    "SecurityEventLog",
    "SessionSecurity",
]
