"""Library configuration using Pydantic Settings.

This module centralizes the defaults used by hooked collections when an
operation does not say otherwise. Values can be provided via environment
variables or fall back to the defaults below. A ``HookSettings`` instance is
intended to be retrieved via ``get_settings`` which caches the object for reuse
across the process.

Environment variable prefix: ``COLLECTION_HOOKS_`` (e.g. ``COLLECTION_HOOKS_HOOK_BATCH_SIZE``).
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class HookSettings(BaseSettings):
    """Runtime hook settings.

    Attributes map directly to environment variables using the
    ``COLLECTION_HOOKS_`` prefix (case-insensitive). For example,
    ``ordered`` <- ``COLLECTION_HOOKS_ORDERED``.
    """

    log_level: Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Log level used by setup_logging",
    )
    hook_batch_size: int = Field(
        default=1000,
        ge=1,
        description="Number of records dispatched concurrently by unordered fan-out operations",
    )  # fmt: skip
    ordered: bool = Field(
        default=True,
        description="Whether fan-out operations process records one at a time by default",
    )  # fmt: skip
    id_field: str = Field(
        default="_id",
        description="Name of the record identifier field in the underlying store",
    )  # fmt: skip

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v: str | None) -> str:
        """Normalize and validate log level."""
        if v is None:
            return "INFO"

        v_upper = str(v).upper()

        allowed = {"TRACE", "DEBUG", "INFO", "WARNING", "ERROR"}
        if v_upper not in allowed:
            raise ValueError(f"Invalid log level: {v}. Must be one of: {', '.join(sorted(allowed))}")

        return v_upper

    model_config = SettingsConfigDict(
        env_prefix="COLLECTION_HOOKS_",
        case_sensitive=False,
        extra="ignore",
        env_file=".env",
        env_file_encoding="utf-8",
    )


@lru_cache
def get_settings() -> HookSettings:
    """Return the cached ``HookSettings`` instance.

    The first invocation reads environment variables / .env file; subsequent
    calls reuse the same object.
    """

    return HookSettings()


__all__ = ["HookSettings", "get_settings"]
