from __future__ import annotations

import os
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from famoney.logging import get_logger

logger = get_logger(__name__)

_MIN_SECRET_LENGTH = 32


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the ledger service."""

    database_url: str = env_field(
        "postgresql://localhost:5432/famoney", "DATABASE_URL"
    )
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Deterministic behaviour for CI; disables background sweeps.",
    )
    jwt_secret: str | None = env_field(
        None,
        "JWT_SECRET",
        validate_default=True,
        description="Symmetric signing secret shared by every process of the deployment",
    )
    access_token_ttl_seconds: int = env_field(
        15 * 60,
        "ACCESS_TOKEN_TTL_SECONDS",
        gt=0,
        description="Lifetime of stateless access tokens",
    )
    refresh_token_ttl_seconds: int = env_field(
        14 * 24 * 60 * 60,
        "REFRESH_TOKEN_TTL_SECONDS",
        gt=0,
        description="Lifetime of store-checked refresh tokens",
    )
    refresh_token_sweep_interval_seconds: int = env_field(
        60 * 60,
        "REFRESH_TOKEN_SWEEP_INTERVAL_SECONDS",
        ge=0,
        description="How often expired refresh tokens are purged; 0 disables the sweep",
    )
    default_currency: str = env_field("KRW", "DEFAULT_CURRENCY", max_length=10)
    default_page_size: int = env_field(20, "DEFAULT_PAGE_SIZE", gt=0)
    max_page_size: int = env_field(100, "MAX_PAGE_SIZE", gt=0)
    cors_allow_origins: list[str] = env_field([], "CORS_ALLOW_ORIGINS")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("jwt_secret")
    @classmethod
    def _require_jwt_secret(cls, value: str | None) -> str:
        if not value:
            raise ValueError("JWT_SECRET must be set")
        if len(value) < _MIN_SECRET_LENGTH:
            raise ValueError(
                f"JWT_SECRET must be at least {_MIN_SECRET_LENGTH} characters"
            )
        return value


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
        logger.info(
            "settings_loaded",
            use_memory_store=_settings_cache.use_memory_store,
            test_mode=_settings_cache.test_mode,
        )
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
