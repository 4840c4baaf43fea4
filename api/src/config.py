"""
Service configuration for the Real Estate CRM.

Groups:
- Runtime mode and network binding
- Application secrets
- Relational store (PostgreSQL) and cache (Redis) connections
- Outbound mail (SMTP)
- Third-party API keys
- Feature toggles
- Upload limits
- API settings (CORS, rate limiting, security headers)
- Logging and monitoring

Every field is read from a CRM_* environment variable or the .env file.
"""

from functools import lru_cache
from pathlib import Path
from typing import List, Optional
from urllib.parse import quote

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Values shipped in templates that must never reach production.
PLACEHOLDER_SECRETS = {
    "change-me",
    "changeme",
    "your-secret-key",
    "your-super-secret-key-change-this-in-production",
}

ENVIRONMENTS = ("development", "staging", "production", "test")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
LOG_FORMATS = ("json", "text")


def _one_of(field: str, value: str, allowed) -> str:
    if value not in allowed:
        raise ValueError(f"{field} must be one of {', '.join(allowed)}, got: {value}")
    return value


class Settings(BaseSettings):
    """
    Runtime settings for the CRM service process.

    Resolution order: process environment (``CRM_`` prefix, for example
    ``CRM_DATABASE_HOST``), then ``.env`` in the working directory, then
    the defaults below.

    ``secret_key`` and ``database_password`` have no default and must be
    present and non-blank at startup.
    """

    # =========================================================================
    # Application Settings
    # =========================================================================

    app_name: str = Field(
        default="Real Estate CRM",
        description="Application name"
    )
    app_version: str = Field(
        default="1.0.0",
        description="API version"
    )
    environment: str = Field(
        default="production",
        description="Environment: development|staging|production|test"
    )
    debug: bool = Field(
        default=False,
        description="Debug mode - enables verbose logging and error traces"
    )

    host: str = Field(
        default="0.0.0.0",
        description="API bind host"
    )
    port: int = Field(
        default=3000,
        description="API bind port",
        gt=0,
        lt=65536
    )
    workers: int = Field(
        default=1,
        description="Number of uvicorn worker processes",
        gt=0,
        le=32
    )

    # =========================================================================
    # Secrets
    # =========================================================================

    secret_key: SecretStr = Field(
        ...,
        description="Secret used to sign sessions and tokens",
        min_length=32
    )

    # =========================================================================
    # Database Settings (PostgreSQL)
    # =========================================================================

    database_host: str = Field(
        default="localhost",
        description="Relational store host"
    )
    database_port: int = Field(
        default=5432,
        description="Relational store port",
        gt=0,
        lt=65536
    )
    database_name: str = Field(
        default="real_estate_crm",
        description="Database name"
    )
    database_user: str = Field(
        default="crm_user",
        description="Database user"
    )
    database_password: SecretStr = Field(
        ...,
        description="Database password"
    )
    database_pool_size: int = Field(
        default=10,
        description="Database connection pool size",
        gt=0,
        le=100
    )
    database_max_overflow: int = Field(
        default=10,
        description="Max connections above pool size",
        ge=0,
        le=50
    )
    database_pool_timeout: int = Field(
        default=30,
        description="Command timeout for pooled connections (seconds)",
        gt=0
    )
    database_connect_retries: int = Field(
        default=5,
        description="Connection attempts at startup before giving up",
        ge=1,
        le=30
    )

    # =========================================================================
    # Cache Settings (Redis)
    # =========================================================================

    redis_host: str = Field(
        default="localhost",
        description="Cache host"
    )
    redis_port: int = Field(
        default=6379,
        description="Cache port",
        gt=0,
        lt=65536
    )
    redis_db: int = Field(
        default=0,
        description="Redis logical database",
        ge=0,
        le=15
    )
    redis_password: Optional[SecretStr] = Field(
        default=None,
        description="Redis password"
    )
    cache_required: bool = Field(
        default=False,
        description="Treat an unreachable cache as unhealthy instead of degraded"
    )
    cache_default_ttl: int = Field(
        default=3600,
        description="Default cache entry TTL (seconds)",
        gt=0
    )

    # =========================================================================
    # Outbound Mail (SMTP)
    # =========================================================================

    smtp_host: Optional[str] = Field(
        default=None,
        description="SMTP server host"
    )
    smtp_port: int = Field(
        default=587,
        description="SMTP server port",
        gt=0,
        lt=65536
    )
    smtp_user: Optional[str] = Field(
        default=None,
        description="SMTP username"
    )
    smtp_password: Optional[SecretStr] = Field(
        default=None,
        description="SMTP password"
    )
    smtp_from: str = Field(
        default="noreply@localhost",
        description="Sender address for outbound mail"
    )
    smtp_use_tls: bool = Field(
        default=True,
        description="Use STARTTLS for SMTP"
    )

    # =========================================================================
    # Third-party API Keys
    # =========================================================================

    google_maps_api_key: Optional[SecretStr] = Field(
        default=None,
        description="Maps/geocoding API key"
    )
    stripe_secret_key: Optional[SecretStr] = Field(
        default=None,
        description="Payments API secret key"
    )
    twilio_account_sid: Optional[str] = Field(
        default=None,
        description="SMS provider account SID"
    )
    twilio_auth_token: Optional[SecretStr] = Field(
        default=None,
        description="SMS provider auth token"
    )

    # =========================================================================
    # Feature Toggles
    # =========================================================================

    feature_email_notifications: bool = Field(
        default=True,
        description="Send email notifications"
    )
    feature_sms_notifications: bool = Field(
        default=False,
        description="Send SMS notifications"
    )
    feature_maintenance_mode: bool = Field(
        default=False,
        description="Answer 503 on every route except health and metrics"
    )

    # =========================================================================
    # Uploads
    # =========================================================================

    upload_dir: Path = Field(
        default=Path("uploads"),
        description="Directory for uploaded files"
    )
    upload_max_size: int = Field(
        default=10 * 1024 * 1024,  # 10 MB
        description="Maximum request body size in bytes",
        gt=0
    )

    # =========================================================================
    # CORS Settings
    # =========================================================================

    cors_enabled: bool = Field(
        default=True,
        description="Enable CORS middleware"
    )
    cors_origin: str = Field(
        default="http://localhost:3000",
        description="Allowed CORS origin(s), comma-separated"
    )
    cors_allow_credentials: bool = Field(
        default=True,
        description="Allow credentials (cookies, authorization headers) in CORS"
    )

    # =========================================================================
    # Rate Limiting Settings
    # =========================================================================

    rate_limit_enabled: bool = Field(
        default=True,
        description="Enable rate limiting"
    )
    rate_limit_requests: int = Field(
        default=100,
        description="Max requests per window",
        gt=0,
        le=100000
    )
    rate_limit_window: int = Field(
        default=900,
        description="Rate limit window (seconds)",
        gt=0,
        le=86400
    )
    rate_limit_storage_url: Optional[str] = Field(
        default=None,
        description="Storage URI for distributed rate limiting (e.g. redis://...)"
    )

    # =========================================================================
    # Security Settings
    # =========================================================================

    security_headers_enabled: bool = Field(
        default=True,
        description="Enable security headers (X-Frame-Options, etc.)"
    )
    security_require_https: bool = Field(
        default=False,
        description="Send HSTS (enable when the proxy terminates TLS)"
    )
    security_hsts_max_age: int = Field(
        default=31536000,  # 1 year
        description="HSTS max age (seconds)"
    )

    # =========================================================================
    # Monitoring and Observability
    # =========================================================================

    metrics_enabled: bool = Field(
        default=True,
        description="Expose Prometheus metrics"
    )
    tracing_enabled: bool = Field(
        default=False,
        description="Enable OpenTelemetry tracing"
    )
    tracing_otlp_endpoint: str = Field(
        default="http://localhost:4318/v1/traces",
        description="OTLP/HTTP traces endpoint"
    )
    tracing_sample_rate: float = Field(
        default=0.1,
        description="Trace sampling rate (0.0-1.0, where 1.0 = 100%)",
        ge=0.0,
        le=1.0
    )
    health_check_timeout: float = Field(
        default=2.0,
        description="Per-dependency health check timeout (seconds)",
        gt=0
    )

    # =========================================================================
    # Logging Settings
    # =========================================================================

    log_level: str = Field(
        default="INFO",
        description="Log level: DEBUG|INFO|WARNING|ERROR|CRITICAL"
    )
    log_format: str = Field(
        default="json",
        description="Log format: json|text"
    )
    log_file: Optional[Path] = Field(
        default=None,
        description="Optional file receiving a copy of the service log"
    )

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        return _one_of("log_level", v.upper(), LOG_LEVELS)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        return _one_of("environment", v.lower(), ENVIRONMENTS)

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        return _one_of("log_format", v.lower(), LOG_FORMATS)

    @field_validator("secret_key", "database_password")
    @classmethod
    def validate_not_blank(cls, v: SecretStr) -> SecretStr:
        """Required secrets must carry a value, not just whitespace."""
        if not v.get_secret_value().strip():
            raise ValueError("must not be blank")
        return v

    @model_validator(mode="after")
    def validate_production(self) -> "Settings":
        """Refuse debug mode and template secrets in production."""
        if self.is_production:
            if self.debug:
                raise ValueError("debug must be disabled in production")
            if self.secret_key.get_secret_value().lower() in PLACEHOLDER_SECRETS:
                raise ValueError("secret_key is still the template placeholder")
        return self

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def is_development(self) -> bool:
        """True for local development runs."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """True when serving real traffic."""
        return self.environment == "production"

    @property
    def database_dsn(self) -> str:
        """PostgreSQL DSN for asyncpg."""
        password = quote(self.database_password.get_secret_value(), safe="")
        return (
            f"postgresql://{quote(self.database_user, safe='')}:{password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @property
    def redis_url(self) -> str:
        """Redis URL for redis-py."""
        auth = ""
        if self.redis_password is not None:
            auth = f":{quote(self.redis_password.get_secret_value(), safe='')}@"
        return f"redis://{auth}{self.redis_host}:{self.redis_port}/{self.redis_db}"

    @property
    def cors_origin_list(self) -> List[str]:
        """Comma-separated origins as a list ("*" when empty)."""
        origins = [o.strip() for o in self.cors_origin.split(",") if o.strip()]
        return origins or ["*"]

    @property
    def rate_limit(self) -> str:
        """Rate limit in slowapi/limits notation."""
        return f"{self.rate_limit_requests} per {self.rate_limit_window} seconds"

    @property
    def enabled_features(self) -> List[str]:
        """Names of feature toggles that are switched on."""
        return sorted(
            name.removeprefix("feature_")
            for name in type(self).model_fields
            if name.startswith("feature_") and getattr(self, name)
        )

    # =========================================================================
    # Model Config
    # =========================================================================

    model_config = SettingsConfigDict(
        env_prefix="CRM_",       # Environment variable prefix
        env_file=".env",         # Load from .env file
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",          # Ignore extra environment variables
        env_ignore_empty=True,   # KEY= behaves as if KEY were unset
        validate_default=True,   # Validate default values
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Load settings once per process.

    Raises:
        pydantic.ValidationError: If a required key is missing or invalid
    """
    return Settings()


def clear_settings_cache():
    """Forget the cached settings so the next call re-reads the environment."""
    get_settings.cache_clear()
