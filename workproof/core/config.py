"""Configuration management for the WorkProof evidence service.

Configuration is loaded from environment variables, one prefix per section.
"""

from __future__ import annotations

from enum import StrEnum
from functools import lru_cache

from pydantic import AliasChoices, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SQLITE_PREFIX = "sqlite://"
AIOSQLITE_DRIVER = "+aiosqlite"


def to_aiosqlite_url(url: str) -> str:
    """Return a SQLAlchemy URL compatible with the aiosqlite dialect."""
    normalized = url.strip()
    if normalized.startswith(SQLITE_PREFIX):
        new_prefix = SQLITE_PREFIX.removesuffix("://") + AIOSQLITE_DRIVER + "://"
        return normalized.replace(SQLITE_PREFIX, new_prefix, 1)
    return normalized


class AppEnvironment(StrEnum):
    LOCAL = "local"
    TEST = "test"
    PROD = "prod"


class LogLevel(StrEnum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class AppConfig(BaseSettings):
    name: str = Field(default="workproof-evidence-service")
    env: AppEnvironment = Field(default=AppEnvironment.LOCAL)
    version: str = Field(default="0.1.0")
    debug: bool = Field(default=False)
    log_level: LogLevel = Field(default=LogLevel.INFO)
    api_prefix: str = Field(default="/api/v1")

    model_config = SettingsConfigDict(env_prefix="APP_")

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: str | LogLevel) -> str | LogLevel:
        return v.upper() if isinstance(v, str) else v


class ServerConfig(BaseSettings):
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8010)
    workers: int = Field(default=4)

    model_config = SettingsConfigDict(env_prefix="SERVER_")


class Auth0Config(BaseSettings):
    """Auth0 tenant whose access tokens workers present."""

    domain: str = Field(default="")
    audience: str = Field(default="")
    algorithms: str = Field(default="RS256")
    jwks_cache_ttl: int = Field(default=3600, gt=0)

    model_config = SettingsConfigDict(env_prefix="AUTH0_")

    @property
    def jwks_url(self) -> str:
        return f"{self.issuer_url}.well-known/jwks.json"

    @property
    def issuer_url(self) -> str:
        return f"https://{self.domain}/"

    @property
    def algorithms_list(self) -> list[str]:
        return [name.strip() for name in self.algorithms.split(",") if name.strip()]


class SecurityConfig(BaseSettings):
    # Comma separated in the environment, a list once loaded.
    cors_allowed_origins: str = Field(default="http://localhost:5173,http://localhost:3000")
    cors_allow_credentials: bool = Field(default=True)
    cors_allow_methods: list[str] = Field(default=["GET", "POST"])
    cors_allow_headers: list[str] = Field(default=["Authorization", "Content-Type", "X-Request-ID"])
    skip_jwt_validation: bool = Field(default=False)
    max_request_size_bytes: int = Field(default=65_536, gt=0)
    max_response_size_bytes: int = Field(default=2_097_152, gt=0)

    model_config = SettingsConfigDict(env_prefix="SECURITY_")

    @field_validator("cors_allowed_origins", mode="after")
    @classmethod
    def split_origins(cls, v: str) -> list[str]:
        return [origin.strip() for origin in v.split(",") if origin.strip()]


class ObservabilityConfig(BaseSettings):
    """Log rendering and OTLP trace export.

    The exporter fields read the standard ``OTEL_EXPORTER_OTLP_*`` names.
    """

    service_name: str = Field(default="workproof-evidence-service")
    otlp_endpoint: str | None = Field(
        default=None,
        validation_alias=AliasChoices("otel_exporter_otlp_endpoint", "otel_otlp_endpoint"),
    )
    otlp_insecure: bool = Field(
        default=True,
        validation_alias=AliasChoices("otel_exporter_otlp_insecure", "otel_otlp_insecure"),
    )
    log_record_format: str = Field(default="json")

    model_config = SettingsConfigDict(env_prefix="OTEL_")


class QueueConfig(BaseSettings):
    """Local capture queue limits. Both ceilings apply independently."""

    database_url: str = Field(default="sqlite+aiosqlite:///./workproof_queue.db")
    max_items: int = Field(default=250, ge=1)
    max_bytes: int = Field(default=150 * 1024 * 1024, ge=1)
    max_future_skew_seconds: int = Field(default=300)
    max_capture_age_seconds: int = Field(default=7 * 24 * 3600)
    echo: bool = Field(default=False)

    model_config = SettingsConfigDict(env_prefix="QUEUE_")

    @property
    def async_url(self) -> str:
        return to_aiosqlite_url(self.database_url)


class SyncConfig(BaseSettings):
    max_attempts: int = Field(default=4, ge=1)
    backoff_seconds: float = Field(default=1.0, ge=0)
    rate_limit_backoff_seconds: float = Field(default=5.0, ge=0)
    max_backoff_seconds: float = Field(default=60.0, ge=0)
    time_budget_seconds: float = Field(default=120.0, gt=0)
    cancel_grace_seconds: float = Field(default=30.0, ge=0)
    concurrency: int = Field(default=3, ge=1)

    model_config = SettingsConfigDict(env_prefix="SYNC_")


class RecordStoreConfig(BaseSettings):
    base_url: str = Field(default="https://app.smartsuite.com/api/v1")
    api_key: SecretStr = Field(default=SecretStr(""))
    workspace_id: str = Field(default="")
    timeout_seconds: float = Field(default=30.0)
    read_retry_attempts: int = Field(default=3, ge=1)
    read_backoff_seconds: float = Field(default=0.5, ge=0)
    rate_limit_backoff_seconds: float = Field(default=2.0, ge=0)
    max_read_backoff_seconds: float = Field(default=20.0, ge=0)
    page_size: int = Field(default=200, ge=1)
    max_pages: int = Field(default=10, ge=1)

    users_table: str = Field(default="users")
    jobs_table: str = Field(default="jobs")
    tasks_table: str = Field(default="tasks")
    evidence_table: str = Field(default="evidence")
    audit_packs_table: str = Field(default="audit_packs")

    model_config = SettingsConfigDict(env_prefix="RECORD_STORE_")


class ObjectStoreConfig(BaseSettings):
    """S3-compatible bucket holding evidence photos (Cloudflare R2 in production)."""

    endpoint_url: str | None = Field(default=None)
    bucket: str = Field(default="workproof-evidence")
    region: str = Field(default="auto")
    access_key_id: str = Field(default="")
    secret_access_key: SecretStr = Field(default=SecretStr(""))
    public_url: str | None = Field(default=None)

    model_config = SettingsConfigDict(env_prefix="OBJECT_STORE_")


class VerificationConfig(BaseSettings):
    recompute_item_hashes: bool = Field(default=True)
    fetch_concurrency: int = Field(default=8, ge=1)

    model_config = SettingsConfigDict(env_prefix="VERIFY_")


class CacheConfig(BaseSettings):
    user_record_ttl_seconds: int = Field(default=600, gt=0)
    job_ownership_ttl_seconds: int = Field(default=300, gt=0)

    model_config = SettingsConfigDict(env_prefix="CACHE_")


class Settings(BaseSettings):
    app: AppConfig = Field(default_factory=AppConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    auth0: Auth0Config = Field(default_factory=Auth0Config)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    record_store: RecordStoreConfig = Field(default_factory=RecordStoreConfig)
    object_store: ObjectStoreConfig = Field(default_factory=ObjectStoreConfig)
    verification: VerificationConfig = Field(default_factory=VerificationConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    metrics_token: str | None = Field(default=None)

    @model_validator(mode="after")
    def refuse_unsafe_outside_local(self) -> Settings:
        env = self.app.env
        if self.security.skip_jwt_validation and env != AppEnvironment.LOCAL:
            raise ValueError(f"JWT validation bypass is not allowed in the {env.value} environment")
        exporter = self.observability
        if env == AppEnvironment.PROD and exporter.otlp_endpoint and exporter.otlp_insecure:
            raise ValueError("Insecure OTLP export is not allowed in production")
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()


def reload_settings() -> Settings:
    get_settings.cache_clear()
    return get_settings()
