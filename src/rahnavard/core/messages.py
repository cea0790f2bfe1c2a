"""Client-facing messages for security rejections.

Rejections never tell the client *why* a check failed beyond its category, so
every response body draws from this fixed table.
"""

from __future__ import annotations

from typing import Final

from rahnavard.core.settings import settings

SECURITY_MESSAGES: Final[dict[str, dict[str, str]]] = {
    "fa": {
        "AUTH_REQUIRED": "احراز هویت الزامی است",
        "AUTH_FAILED": "احراز هویت ناموفق",
        "INVALID_CREDENTIALS": "نام کاربری یا رمز عبور اشتباه است",
        "METHOD_NOT_ALLOWED": "متد HTTP مجاز نیست",
        "NOT_FOUND": "منبع مورد نظر یافت نشد",
        "RATE_LIMIT_EXCEEDED": "تعداد درخواست‌ها بیش از حد مجاز است",
        "IP_BLOCKED": "دسترسی شما مسدود شده است",
        "MFA_REQUIRED": "نیاز به احراز هویت دو مرحله‌ای",
        "MFA_FAILED": "کد تایید نامعتبر است",
        "INVALID_INPUT": "ورودی نامعتبر است",
        "SUSPICIOUS_INPUT": "ورودی مشکوک شناسایی شد",
        "MALFORMED_BODY": "فرمت درخواست نامعتبر است",
        "BODY_TOO_LARGE": "بدنه درخواست بیش از حد بزرگ است",
        "CSRF_VIOLATION": "خطای امنیتی CSRF",
        "PERMISSION_DENIED": "شما دسترسی لازم را ندارید",
        "SERVER_ERROR": "خطای سرور",
    },
    "en": {
        "AUTH_REQUIRED": "Authentication required",
        "AUTH_FAILED": "Authentication failed",
        "INVALID_CREDENTIALS": "Invalid username or password",
        "METHOD_NOT_ALLOWED": "Method not allowed",
        "NOT_FOUND": "Not found",
        "RATE_LIMIT_EXCEEDED": "Rate limit exceeded",
        "IP_BLOCKED": "Your IP has been blocked",
        "MFA_REQUIRED": "Two-factor authentication required",
        "MFA_FAILED": "Invalid verification code",
        "INVALID_INPUT": "Invalid input",
        "SUSPICIOUS_INPUT": "Suspicious input detected",
        "MALFORMED_BODY": "Malformed request body",
        "BODY_TOO_LARGE": "Request body too large",
        "CSRF_VIOLATION": "CSRF violation",
        "PERMISSION_DENIED": "Permission denied",
        "SERVER_ERROR": "Server error",
    },
}


def message(key: str, language: str | None = None) -> str:
    """Return the localized message for ``key``."""
    table = SECURITY_MESSAGES.get(language or settings.response_language, SECURITY_MESSAGES["en"])
    return table[key]
