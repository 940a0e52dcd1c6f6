from __future__ import annotations

import os
from collections.abc import Mapping
from functools import lru_cache
from pathlib import Path

from dotenv import dotenv_values
from pydantic import ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ai_service_router.errors import ConfigurationError

SERVICE_KEY_PREFIX = "AI_SERVICE_"
DEFAULT_PORT = 8034
DEFAULT_ENV_FILE = ".env"


class Settings(BaseSettings):
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    log_level: str = "info"
    listing_timeout_seconds: float = 5.0
    backend_connect_timeout_seconds: float = 5.0
    backend_read_timeout_seconds: float = 300.0
    backend_write_timeout_seconds: float = 30.0
    backend_pool_timeout_seconds: float = 5.0

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=DEFAULT_ENV_FILE,
        env_ignore_empty=True,
        extra="ignore",
    )

    @field_validator("port")
    @classmethod
    def _port_in_range(cls, value: int) -> int:
        if not 0 < value < 65536:
            raise ValueError(f"PORT must be between 1 and 65535, got {value}")
        return value

    @field_validator(
        "listing_timeout_seconds",
        "backend_connect_timeout_seconds",
        "backend_read_timeout_seconds",
        "backend_write_timeout_seconds",
        "backend_pool_timeout_seconds",
    )
    @classmethod
    def _positive_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError(f"timeout must be greater than 0 seconds, got {value}")
        return value


def load_service_declarations(
    environ: Mapping[str, str] | None = None,
    env_file: str | Path | None = DEFAULT_ENV_FILE,
) -> dict[str, str]:
    """Collect ``AI_SERVICE_*`` declarations from a ``.env`` file and the environment.

    Values from the process environment take precedence over the file.
    """
    declarations: dict[str, str] = {}
    if env_file is not None and Path(env_file).is_file():
        for key, value in dotenv_values(env_file).items():
            if key.startswith(SERVICE_KEY_PREFIX) and value is not None:
                declarations[key] = value

    source = os.environ if environ is None else environ
    for key, value in source.items():
        if key.startswith(SERVICE_KEY_PREFIX):
            declarations[key] = value
    return declarations


@lru_cache
def get_settings() -> Settings:
    try:
        return Settings()
    except ValidationError as exc:
        fields = ", ".join(
            ".".join(str(part) for part in error["loc"]).upper()
            for error in exc.errors()
        )
        raise ConfigurationError(
            f"Invalid configuration value(s) for {fields}: {exc}"
        ) from exc
