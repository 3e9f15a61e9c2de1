from enum import StrEnum
from functools import lru_cache
import os

from pydantic import Field, PostgresDsn, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppEnv(StrEnum):
    dev = "dev"
    stage = "stage"
    prod = "prod"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=(os.getenv("ENV_FILE", ".env"), ".env.dev", ".env.stage", ".env.prod"),
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        env_prefix="",
    )

    app_env: AppEnv = Field(default=AppEnv.dev, alias="APP_ENV", description="Application environment (dev/stage/prod)")

    pg_dsn: PostgresDsn | str = Field(default="", alias="PG_DSN", validation_alias="PG_DSN")

    graph_base_url: str = Field(default="https://api.nelc.gov.sa/neo4j/v1", alias="GRAPH_BASE_URL")
    graph_token_url: str = Field(default="https://api.nelc.gov.sa/oauth2/v1/token", alias="GRAPH_TOKEN_URL")
    graph_client_id: str = Field(default="", alias="GRAPH_CLIENT_ID")
    graph_client_secret: SecretStr = Field(default=SecretStr(""), alias="GRAPH_CLIENT_SECRET")
    graph_scope: str = Field(default="neo4j", alias="GRAPH_SCOPE")
    graph_is_prod: bool = Field(default=False, alias="GRAPH_IS_PROD", description="Target the production graph instead of staging")
    graph_timeout_seconds: float = Field(default=5.0, gt=0, le=30, alias="GRAPH_TIMEOUT_SECONDS")
    graph_token_default_ttl_seconds: int = Field(default=3600, alias="GRAPH_TOKEN_DEFAULT_TTL_SECONDS")
    graph_token_safety_margin_seconds: int = Field(default=300, alias="GRAPH_TOKEN_SAFETY_MARGIN_SECONDS")

    sync_throttle_seconds: float = Field(default=0.1, ge=0, alias="SYNC_THROTTLE_SECONDS")

    recommendation_default_limit: int = Field(default=10, ge=1, alias="RECOMMENDATION_DEFAULT_LIMIT")
    recommendation_max_limit: int = Field(default=50, ge=1, alias="RECOMMENDATION_MAX_LIMIT")

    prometheus_enabled: bool = Field(default=True, alias="PROMETHEUS_ENABLED", description="Expose /metrics")

    cors_allow_origins: str = Field(default="", alias="CORS_ALLOW_ORIGINS")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
