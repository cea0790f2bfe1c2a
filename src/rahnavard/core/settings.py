"""Application settings and configuration.

This module defines all configuration options for the Rahnavard security layer.
Settings are loaded from environment variables with sensible defaults.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    This class defines all configuration options for the request guard and the
    services it composes. Settings can be overridden via environment variables
    or .env files. Durations are expressed in seconds.
    """

    # Application metadata
    app_name: str = Field(default="Rahnavard", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    response_language: Literal["fa", "en"] = Field(default="fa", alias="RESPONSE_LANGUAGE")

    # Security and authentication
    secret_key: str = Field(alias="SECRET_KEY")
    debug: bool = Field(default=False, alias="DEBUG")

    # Database configuration
    database_url: str = Field(default="sqlite:///./rahnavard.db", alias="DATABASE_URL")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Signed session tokens
    jwt_algorithm: str = Field(default="HS512", alias="JWT_ALGORITHM")
    jwt_issuer: str = Field(default="rahnavard-security", alias="JWT_ISSUER")
    jwt_audience: str = Field(default="rahnavard-app", alias="JWT_AUDIENCE")

    # Rate limiting (fixed windows per identity and limiter class)
    rate_limit_general_window_seconds: int = Field(
        default=15 * 60, alias="RATE_LIMIT_GENERAL_WINDOW_SECONDS"
    )
    rate_limit_general_max: int = Field(default=100, alias="RATE_LIMIT_GENERAL_MAX")
    rate_limit_general_block_seconds: int = Field(
        default=60, alias="RATE_LIMIT_GENERAL_BLOCK_SECONDS"
    )
    rate_limit_auth_window_seconds: int = Field(
        default=15 * 60, alias="RATE_LIMIT_AUTH_WINDOW_SECONDS"
    )
    rate_limit_auth_max: int = Field(default=5, alias="RATE_LIMIT_AUTH_MAX")
    rate_limit_auth_block_seconds: int = Field(default=900, alias="RATE_LIMIT_AUTH_BLOCK_SECONDS")
    rate_limit_sensitive_window_seconds: int = Field(
        default=60 * 60, alias="RATE_LIMIT_SENSITIVE_WINDOW_SECONDS"
    )
    rate_limit_sensitive_max: int = Field(default=20, alias="RATE_LIMIT_SENSITIVE_MAX")
    rate_limit_sensitive_block_seconds: int = Field(
        default=1800, alias="RATE_LIMIT_SENSITIVE_BLOCK_SECONDS"
    )

    # IP blocking and escalation
    ip_blocking_enabled: bool = Field(default=True, alias="IP_BLOCKING_ENABLED")
    ip_max_failed_attempts: int = Field(default=10, alias="IP_MAX_FAILED_ATTEMPTS")
    ip_block_seconds: int = Field(default=24 * 60 * 60, alias="IP_BLOCK_SECONDS")
    ip_permanent_block_enabled: bool = Field(default=False, alias="IP_PERMANENT_BLOCK_ENABLED")
    ip_permanent_block_after: int = Field(default=5, alias="IP_PERMANENT_BLOCK_AFTER")

    # Session lifecycle
    session_max_age_seconds: int = Field(default=24 * 60 * 60, alias="SESSION_MAX_AGE_SECONDS")
    session_rotation_seconds: int = Field(default=60 * 60, alias="SESSION_ROTATION_SECONDS")
    session_absolute_timeout_seconds: int = Field(
        default=7 * 24 * 60 * 60, alias="SESSION_ABSOLUTE_TIMEOUT_SECONDS"
    )

    # Two-factor authentication
    mfa_enabled: bool = Field(default=True, alias="MFA_ENABLED")
    mfa_required: bool = Field(default=False, alias="MFA_REQUIRED")
    mfa_code_length: int = Field(default=6, alias="MFA_CODE_LENGTH")
    mfa_code_ttl_seconds: int = Field(default=300, alias="MFA_CODE_TTL_SECONDS")
    mfa_max_attempts: int = Field(default=3, alias="MFA_MAX_ATTEMPTS")

    # CSRF tokens
    csrf_token_ttl_seconds: int = Field(default=60 * 60, alias="CSRF_TOKEN_TTL_SECONDS")

    # Input validation and threat detection
    max_body_bytes: int = Field(default=1024 * 1024, alias="MAX_BODY_BYTES")
    max_input_length: int = Field(default=10_000, alias="MAX_INPUT_LENGTH")
    sanitize_html: bool = Field(default=True, alias="SANITIZE_HTML")
    strip_scripts: bool = Field(default=True, alias="STRIP_SCRIPTS")
    threat_detection_enabled: bool = Field(default=True, alias="THREAT_DETECTION_ENABLED")
    detect_sql_injection: bool = Field(default=True, alias="DETECT_SQL_INJECTION")
    detect_xss: bool = Field(default=True, alias="DETECT_XSS")
    detect_command_injection: bool = Field(default=True, alias="DETECT_COMMAND_INJECTION")
    detect_path_traversal: bool = Field(default=True, alias="DETECT_PATH_TRAVERSAL")
    block_on_detection: bool = Field(default=True, alias="BLOCK_ON_DETECTION")

    # Password policy
    password_min_length: int = Field(default=12, alias="PASSWORD_MIN_LENGTH")
    bcrypt_rounds: int = Field(default=14, alias="BCRYPT_ROUNDS")

    # Security event log
    event_log_capacity: int = Field(default=10_000, alias="EVENT_LOG_CAPACITY")
    event_log_eviction_batch: int = Field(default=1_000, alias="EVENT_LOG_EVICTION_BATCH")
    event_log_retention_days: int = Field(default=90, alias="EVENT_LOG_RETENTION_DAYS")
    ip_hash_salt: str = Field(default="salt", alias="IP_HASH_SALT")
    suspicious_identity_threshold: int = Field(default=10, alias="SUSPICIOUS_IDENTITY_THRESHOLD")
    suspicious_subject_threshold: int = Field(default=5, alias="SUSPICIOUS_SUBJECT_THRESHOLD")
    security_alert_webhook_url: str | None = Field(
        default=None, alias="SECURITY_ALERT_WEBHOOK_URL"
    )
    security_alert_timeout_seconds: float = Field(
        default=5.0, alias="SECURITY_ALERT_TIMEOUT_SECONDS"
    )

    # Background maintenance intervals
    maintenance_enabled: bool = Field(default=True, alias="MAINTENANCE_ENABLED")
    block_sweep_interval_seconds: float = Field(
        default=60 * 60, alias="BLOCK_SWEEP_INTERVAL_SECONDS"
    )
    csrf_sweep_interval_seconds: float = Field(default=30 * 60, alias="CSRF_SWEEP_INTERVAL_SECONDS")
    mfa_sweep_interval_seconds: float = Field(default=5 * 60, alias="MFA_SWEEP_INTERVAL_SECONDS")
    event_log_sweep_interval_seconds: float = Field(
        default=60 * 60, alias="EVENT_LOG_SWEEP_INTERVAL_SECONDS"
    )

    # CORS configuration for web frontend access
    cors_origins: list[str] = Field(default=[], alias="CORS_ORIGINS")
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "PUT", "DELETE", "PATCH"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(
        default=["Content-Type", "Authorization", "X-CSRF-Token"],
        alias="CORS_ALLOW_HEADERS",
    )

    # Response headers
    content_security_policy: str = Field(
        default=(
            "default-src 'self'; script-src 'self' 'unsafe-inline' 'unsafe-eval'; "
            "style-src 'self' 'unsafe-inline'; img-src 'self' data: https:; "
            "font-src 'self' data:; connect-src 'self'; frame-src 'none'; "
            "object-src 'none'; upgrade-insecure-requests"
        ),
        alias="CONTENT_SECURITY_POLICY",
    )
    hsts_enabled: bool = Field(default=True, alias="HSTS_ENABLED")
    hsts_max_age_seconds: int = Field(default=365 * 24 * 60 * 60, alias="HSTS_MAX_AGE_SECONDS")
    hsts_include_subdomains: bool = Field(default=True, alias="HSTS_INCLUDE_SUBDOMAINS")
    hsts_preload: bool = Field(default=True, alias="HSTS_PRELOAD")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def rate_limits(self) -> dict[str, tuple[int, int, int]]:
        """Return ``(window, quota, block)`` triples keyed by limiter class name."""
        return {
            "general": (
                self.rate_limit_general_window_seconds,
                self.rate_limit_general_max,
                self.rate_limit_general_block_seconds,
            ),
            "auth": (
                self.rate_limit_auth_window_seconds,
                self.rate_limit_auth_max,
                self.rate_limit_auth_block_seconds,
            ),
            "sensitive": (
                self.rate_limit_sensitive_window_seconds,
                self.rate_limit_sensitive_max,
                self.rate_limit_sensitive_block_seconds,
            ),
        }

    @property
    def strict_transport_security(self) -> str | None:
        """Return the ``Strict-Transport-Security`` value, or ``None`` when disabled."""
        if not self.hsts_enabled:
            return None
        value = f"max-age={self.hsts_max_age_seconds}"
        if self.hsts_include_subdomains:
            value += "; includeSubDomains"
        if self.hsts_preload:
            value += "; preload"
        return value

    @property
    def event_log_retention_seconds(self) -> int:
        """Return the event retention window in seconds."""
        return self.event_log_retention_days * 24 * 60 * 60


settings = Settings()  # type: ignore[call-arg]
