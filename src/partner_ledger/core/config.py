from __future__ import annotations

from enum import StrEnum
from functools import lru_cache
from urllib.parse import quote_plus

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    computed_field,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from partner_ledger.core.constants import (
    DEFAULT_ENV_FILE,
    MAX_HIERARCHY_HOPS,
    SECRETS_DIR,
    SERVICE_NAME,
)


class Environment(StrEnum):
    """Deployment environments supported by the service."""

    DEVELOPMENT = "development"
    TEST = "test"
    STAGING = "staging"
    PRODUCTION = "production"


class _Section(BaseModel):
    """Nested settings block; unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore")


class DatabaseSettings(_Section):
    """Database connectivity configuration."""

    url: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "url", "DATABASE__URL", "database__url", "DATABASE_URL", "database_url"
        ),
    )
    host: str = "localhost"
    port: int = 5432
    user: str = "postgres"
    password: SecretStr = SecretStr("postgres")
    name: str = SERVICE_NAME.replace("-", "_")
    echo: bool = False
    pool_size: int = Field(default=5, ge=1, le=100)
    max_overflow: int = Field(default=10, ge=0, le=100)
    lock_timeout_seconds: float = Field(default=30.0, gt=0)

    @computed_field
    @property
    def dsn(self) -> str:
        """Assemble the SQLAlchemy async DSN."""
        if self.url is not None:
            return self.url

        password = quote_plus(self.password.get_secret_value())
        return (
            f"postgresql+asyncpg://{self.user}:{password}"
            f"@{self.host}:{self.port}/{self.name}"
        )


class HierarchySettings(_Section):
    """Bounds applied to every walk over the partner tree."""

    max_depth: int = Field(default=MAX_HIERARCHY_HOPS, ge=1, le=64)


class RedisSettings(_Section):
    """Redis connection configuration."""

    url: str = Field(
        default="redis://localhost:6379/0",
        validation_alias=AliasChoices("url", "REDIS__URL", "redis__url", "REDIS_URL"),
    )
    socket_timeout_seconds: float = Field(default=5.0, gt=0, le=60)


class CredentialCacheSettings(_Section):
    """Resolved provider credentials are cached in Redis per (owner, provider)."""

    enabled: bool = True
    ttl_seconds: int = Field(default=300, ge=1, le=86_400)
    key_prefix: str = Field(default="credentials", min_length=1)


class ProviderEndpointSettings(_Section):
    """Connection details for one external settlement provider."""

    base_url: str = Field(..., min_length=1)
    timeout_seconds: float = Field(default=60.0, gt=0, le=300)


def _default_providers() -> dict[str, ProviderEndpointSettings]:
    return {
        "invest": ProviderEndpointSettings(base_url="https://api.invest-ho.com"),
    }


class SentrySettings(_Section):
    """Sentry error tracking configuration."""

    enabled: bool = True
    dsn: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("dsn", "SENTRY__DSN", "sentry__dsn", "SENTRY_DSN"),
    )
    environment: str | None = None
    release: str | None = None
    sample_rate: float = Field(default=1.0, ge=0.0, le=1.0)
    traces_sample_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    send_default_pii: bool = False


class PrometheusSettings(_Section):
    """Prometheus metrics configuration."""

    enabled: bool = True
    metrics_path: str = "/metrics"
    excluded_handlers: list[str] = Field(
        default_factory=lambda: ["/metrics", "/health", "/docs", "/redoc"]
    )


class Settings(BaseSettings):
    """Application settings loaded from the environment or secret stores."""

    model_config = SettingsConfigDict(
        env_file=DEFAULT_ENV_FILE,
        env_nested_delimiter="__",
        secrets_dir=SECRETS_DIR,
        extra="ignore",
        validate_default=True,
        case_sensitive=False,
    )

    environment: Environment = Environment.DEVELOPMENT
    debug: bool = False
    log_level: str = "INFO"

    project_name: str = "Partner Ledger"
    project_description: str = (
        "Hierarchy-aware partner ledger with credential inheritance and "
        "settlement approvals"
    )
    project_version: str = "0.1.0"
    docs_url: str | None = "/docs"
    redoc_url: str | None = "/redoc"
    openapi_url: str = "/openapi.json"

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    hierarchy: HierarchySettings = Field(default_factory=HierarchySettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    credential_cache: CredentialCacheSettings = Field(
        default_factory=CredentialCacheSettings
    )
    providers: dict[str, ProviderEndpointSettings] = Field(
        default_factory=_default_providers
    )
    sentry: SentrySettings = Field(default_factory=SentrySettings)
    prometheus: PrometheusSettings = Field(default_factory=PrometheusSettings)

    @model_validator(mode="after")
    def _normalize(self) -> Settings:
        self.log_level = self.log_level.upper()
        self.providers = {
            key.strip().lower(): value for key, value in self.providers.items()
        }

        if self.environment in {Environment.DEVELOPMENT, Environment.TEST}:
            self.debug = True

        return self

    @computed_field
    @property
    def is_testing(self) -> bool:
        return self.environment is Environment.TEST

    @computed_field
    @property
    def is_production(self) -> bool:
        return self.environment is Environment.PRODUCTION


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached instance of the application settings."""

    return Settings()
