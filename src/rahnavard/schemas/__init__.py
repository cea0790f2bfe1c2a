# src/rahnavard/schemas/__init__.py
"""
Pydantic schemas for API request/response models.

These schemas define the structure of API data for serialization and validation.
"""

from .common import Envelope, ResponseMetadata, envelope
from .rep import CSRFTokenResponse, LoginRequest, LoginResponse, MFAVerifyRequest, RepProfile
from .security import (
    EventTypeCount,
    SecurityEventResponse,
    SecurityReportResponse,
    SuspiciousPatternsResponse,
)

__all__ = [
    "Envelope", "ResponseMetadata", "envelope",
    "CSRFTokenResponse", "LoginRequest", "LoginResponse", "MFAVerifyRequest", "RepProfile",
    "EventTypeCount", "SecurityEventResponse", "SecurityReportResponse",
    "SuspiciousPatternsResponse",
]
