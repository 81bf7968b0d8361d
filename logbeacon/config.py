"""
logbeacon/config.py - Immutable logger configuration.

Every field has a declared default except ``endpoint`` and ``api_key``.
Values may come from keyword arguments or from LOGBEACON_* environment
variables (or a .env file); keyword arguments win. The resulting object is
frozen: reconfiguring means constructing a new Logger.
"""

import re
from typing import Any, Callable, Optional, Union

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError

PatternLike = Union[str, re.Pattern]


class LoggerConfig(BaseSettings):
    # Transport
    endpoint: str
    api_key: str
    retries: int = Field(3, ge=0)
    retry_base_delay_ms: int = Field(1000, ge=0)
    request_timeout_ms: int = Field(10000, gt=0)

    # Pipeline
    enabled: bool = True
    flush_interval_ms: int = Field(5000, gt=0)
    batch_size: int = Field(10, gt=0)
    max_buffer_size: int = Field(1000, gt=0)
    channel: str = "python"

    # Deduplication
    deduplication: bool = False
    deduplication_window_ms: int = Field(1000, ge=0)

    # Filtering
    redact_keys: tuple[str, ...] = ()
    ignore_patterns: tuple[PatternLike, ...] = ()
    disabled_hosts: tuple[PatternLike, ...] = ()
    suppress_benign_warnings: bool = True
    benign_messages: tuple[str, ...] = ()
    before_send: Optional[Callable[..., Any]] = None

    model_config = SettingsConfigDict(
        env_prefix="LOGBEACON_",
        env_file=".env",
        extra="ignore",
        frozen=True,
        arbitrary_types_allowed=True,
    )

    @field_validator("endpoint")
    @classmethod
    def _check_endpoint(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith(("http://", "https://")):
            raise ValueError("endpoint must be an http:// or https:// URL")
        return value

    @field_validator("api_key")
    @classmethod
    def _check_api_key(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("api_key must not be empty")
        return value

    @property
    def flush_interval(self) -> float:
        return self.flush_interval_ms / 1000.0

    @property
    def retry_base_delay(self) -> float:
        return self.retry_base_delay_ms / 1000.0

    @property
    def request_timeout(self) -> float:
        return self.request_timeout_ms / 1000.0

    @classmethod
    def build(cls, config: "LoggerConfig | None" = None, **options: Any) -> "LoggerConfig":
        """
        Return ``config`` (optionally overridden by ``options``) or a new
        config built from ``options``.

        Raises:
            ConfigurationError: If a required field is missing or a value is invalid.
        """
        try:
            if config is None:
                return cls(**options)
            if options:
                current = {name: getattr(config, name) for name in cls.model_fields}
                return cls(**{**current, **options})
            return config
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}"
                for err in e.errors()
            )
            raise ConfigurationError(f"Invalid logger configuration: {problems}") from e
