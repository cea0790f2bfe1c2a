"""Input sanitization and field validation.

``sanitize_string`` strips every tag, drops script/style bodies and escapes the
remainder. Its output is stable under repeated application: already-escaped
entities are decoded before escaping so they never get double-encoded.
"""

from __future__ import annotations

import html
import re
from dataclasses import dataclass, field
from typing import Any, Final
from urllib.parse import urlparse

import bleach
from email_validator import EmailNotValidError, validate_email as _check_email

from rahnavard.core.settings import Settings, settings
from rahnavard.core.threats import ThreatLabel, detect_threats

_SCRIPT_BLOCK: Final = re.compile(
    r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE
)
_STYLE_BLOCK: Final = re.compile(r"<style\b[^<]*(?:(?!</style>)<[^<]*)*</style>", re.IGNORECASE)
_USERNAME: Final = re.compile(r"^[a-zA-Z0-9_.-]+$")
_PHONE: Final = re.compile(r"^\+?[0-9]{7,15}$")
_SPECIAL_CHARS: Final = re.compile(r"[!@#$%^&*(),.?\":{}|<>]")
_WEAK_PASSWORDS: Final = ("password", "12345678", "qwerty", "admin", "letmein")
_WEAK_PATTERNS: Final = ("123", "abc", "password", "admin")

MAX_EMAIL_LENGTH: Final = 255
MIN_USERNAME_LENGTH: Final = 3
MAX_USERNAME_LENGTH: Final = 50
MAX_PASSWORD_SCORE: Final = 4

# Persian (U+06F0..) and Arabic-Indic (U+0660..) digits map onto ASCII.
_LOCAL_DIGITS: Final = str.maketrans(
    "۰۱۲۳۴۵۶۷۸۹٠١٢٣٤٥٦٧٨٩", "0123456789" * 2
)


@dataclass
class ValidationResult:
    """Outcome of validating a single value or an object."""

    is_valid: bool
    sanitized: Any = None
    errors: list[str] = field(default_factory=list)
    threats: list[ThreatLabel] = field(default_factory=list)


def _remove_blocks(value: str, pattern: re.Pattern[str]) -> str:
    # Loop until stable: removing one block can splice a new one together.
    while True:
        stripped = pattern.sub("", value)
        if stripped == value:
            return stripped
        value = stripped


def normalize_digits(value: str) -> str:
    """Return ``value`` with Persian and Arabic-Indic digits replaced by ASCII ones."""
    return value.translate(_LOCAL_DIGITS)


def sanitize_string(value: str, config: Settings | None = None) -> str:
    """Return ``value`` with markup removed and special characters escaped."""
    if not value:
        return ""
    cfg = config or settings

    sanitized = value
    if cfg.sanitize_html:
        sanitized = _remove_blocks(sanitized, _SCRIPT_BLOCK)
        sanitized = _remove_blocks(sanitized, _STYLE_BLOCK)
        sanitized = bleach.clean(
            sanitized, tags=set(), attributes={}, strip=True, strip_comments=True
        )

    sanitized = html.unescape(sanitized)
    if cfg.strip_scripts:
        sanitized = _remove_blocks(sanitized, _SCRIPT_BLOCK)

    return html.escape(sanitized, quote=True).strip()


def validate_email(email: str) -> ValidationResult:
    """Validate and normalize an email address."""
    errors: list[str] = []
    threats = detect_threats(email)
    sanitized = email

    if not email:
        errors.append("ایمیل الزامی است")
    elif len(email) > MAX_EMAIL_LENGTH:
        errors.append("ایمیل بیش از حد طولانی است")
    else:
        try:
            sanitized = _check_email(email, check_deliverability=False).normalized
        except EmailNotValidError:
            errors.append("فرمت ایمیل نامعتبر است")

    return ValidationResult(
        is_valid=not errors and not threats,
        sanitized=sanitized,
        errors=errors,
        threats=threats,
    )


def validate_password(password: str, config: Settings | None = None) -> ValidationResult:
    """Check a password against the configured policy. Passwords are never sanitized."""
    cfg = config or settings
    errors: list[str] = []

    if not password:
        return ValidationResult(is_valid=False, errors=["رمز عبور الزامی است"])

    if len(password) < cfg.password_min_length:
        errors.append(f"رمز عبور باید حداقل {cfg.password_min_length} کاراکتر باشد")
    if not re.search(r"[A-Z]", password):
        errors.append("رمز عبور باید شامل حداقل یک حرف بزرگ باشد")
    if not re.search(r"[a-z]", password):
        errors.append("رمز عبور باید شامل حداقل یک حرف کوچک باشد")
    if not re.search(r"\d", password):
        errors.append("رمز عبور باید شامل حداقل یک عدد باشد")
    if not _SPECIAL_CHARS.search(password):
        errors.append("رمز عبور باید شامل حداقل یک کاراکتر خاص باشد")
    if any(weak in password.lower() for weak in _WEAK_PASSWORDS):
        errors.append("رمز عبور بسیار ضعیف است")

    return ValidationResult(is_valid=not errors, sanitized=password, errors=errors)


def validate_username(username: str) -> ValidationResult:
    """Validate a login name; threats are reported alongside format errors."""
    errors: list[str] = []
    threats = detect_threats(username)

    if not username:
        errors.append("نام کاربری الزامی است")
    elif len(username) < MIN_USERNAME_LENGTH:
        errors.append(f"نام کاربری باید حداقل {MIN_USERNAME_LENGTH} کاراکتر باشد")
    elif len(username) > MAX_USERNAME_LENGTH:
        errors.append("نام کاربری بیش از حد طولانی است")
    elif not _USERNAME.match(username):
        errors.append("نام کاربری فقط می‌تواند شامل حروف، اعداد و _ . - باشد")

    return ValidationResult(
        is_valid=not errors and not threats,
        sanitized=sanitize_string(username),
        errors=errors,
        threats=threats,
    )


def validate_phone(phone: str) -> ValidationResult:
    """Validate a phone number after removing spaces and dashes."""
    errors: list[str] = []
    threats = detect_threats(phone)
    clean_phone = re.sub(r"[\s-]", "", phone or "")

    if not clean_phone:
        errors.append("شماره تلفن الزامی است")
    elif not _PHONE.match(clean_phone):
        errors.append("فرمت شماره تلفن نامعتبر است")

    return ValidationResult(
        is_valid=not errors and not threats,
        sanitized=clean_phone,
        errors=errors,
        threats=threats,
    )


def validate_url(url: str) -> ValidationResult:
    """Validate an absolute http(s) URL."""
    errors: list[str] = []
    threats = detect_threats(url)

    if not url:
        errors.append("URL الزامی است")
    else:
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            errors.append("فرمت URL نامعتبر است")

    return ValidationResult(
        is_valid=not errors and not threats,
        sanitized=sanitize_string(url),
        errors=errors,
        threats=threats,
    )


def validate_input(
    value: Any,
    field_name: str,
    required: bool = True,
    max_length: int | None = None,
    config: Settings | None = None,
) -> ValidationResult:
    """Generic validation: presence, length cap, threat scan and sanitization."""
    cfg = config or settings

    if required and (value is None or value == ""):
        return ValidationResult(is_valid=False, errors=[f"{field_name} الزامی است"])
    if value is None or value == "":
        return ValidationResult(is_valid=True, sanitized=value)

    text = str(value)
    errors: list[str] = []
    limit = max_length or cfg.max_input_length
    if len(text) > limit:
        errors.append(f"{field_name} بیش از حد طولانی است (حداکثر {limit} کاراکتر)")

    threats = detect_threats(text, cfg)
    sanitized = sanitize_string(value, cfg) if isinstance(value, str) else value

    return ValidationResult(
        is_valid=not errors and not threats,
        sanitized=sanitized,
        errors=errors,
        threats=threats,
    )


_TYPE_NAMES: Final[dict[str, type | tuple[type, ...]]] = {
    "string": str,
    "number": (int, float),
    "boolean": bool,
    "object": dict,
    "array": list,
}


def validate_object(obj: dict[str, Any], schema: dict[str, dict[str, Any]]) -> ValidationResult:
    """Validate the fields named in ``schema``; unknown fields are dropped.

    Each rule may carry ``required`` (bool), ``type`` (``string``, ``number``,
    ``boolean``, ``object`` or ``array``) and ``max_length`` (int).
    """
    errors: list[str] = []
    threats: list[ThreatLabel] = []
    sanitized: dict[str, Any] = {}

    for key, rules in schema.items():
        value = obj.get(key)
        required = bool(rules.get("required", False))

        if required and (value is None or value == ""):
            errors.append(f"{key} الزامی است")
            continue

        expected = rules.get("type")
        if value is not None and expected and not isinstance(value, _TYPE_NAMES[expected]):
            errors.append(f"{key} باید از نوع {expected} باشد")
            continue

        result = validate_input(value, key, required, rules.get("max_length"))
        if not result.is_valid:
            errors.extend(result.errors)
            threats.extend(result.threats)
        sanitized[key] = result.sanitized

    return ValidationResult(
        is_valid=not errors and not threats,
        sanitized=sanitized,
        errors=errors,
        threats=threats,
    )


def password_strength(password: str) -> tuple[int, list[str]]:
    """Score a password from 0 to 4 and return improvement hints."""
    score = 0
    feedback: list[str] = []

    if len(password) >= 12:
        score += 1
    else:
        feedback.append("رمز عبور باید حداقل 12 کاراکتر باشد")
    if re.search(r"[A-Z]", password):
        score += 1
    else:
        feedback.append("باید شامل حروف بزرگ باشد")
    if re.search(r"[a-z]", password):
        score += 1
    else:
        feedback.append("باید شامل حروف کوچک باشد")
    if re.search(r"\d", password):
        score += 1
    else:
        feedback.append("باید شامل اعداد باشد")
    if _SPECIAL_CHARS.search(password):
        score += 1
    else:
        feedback.append("باید شامل کاراکترهای خاص باشد")

    if any(pattern in password.lower() for pattern in _WEAK_PATTERNS):
        score = max(0, score - 2)
        feedback.append("از الگوهای رایج استفاده نکنید")

    return min(score, MAX_PASSWORD_SCORE), feedback
