"""Environment-driven settings for tessera.

Manifesto:
    Configuration is explicit, validated and environment-driven. Library
    code never reads environment variables itself; applications (and the
    CLI) build a :class:`TesseraSettings` and pass it to
    :func:`tessera.connection.connect`.

Environment variables use the ``TESSERA_`` prefix and may also come from a
``.env`` file in the working directory.

Examples:
    >>> settings = TesseraSettings(database_url="sqlite:///app.db", dialect="postgres")
    >>> settings.dialect
    'postgresql'
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from tessera.dialect import get_dialect
from tessera.errors import DialectError

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class TesseraSettings(BaseSettings):
    """Settings for connecting to a database and configuring logs.

    Fields
    ──────
    database_url : ``memory``, ``sqlite:///path`` or a bare file path
    dialect      : Override of the dialect implied by ``database_url``
    log_level    : Structlog log level
    log_json     : JSON logs (True), console (False), auto (None)
    """

    model_config = SettingsConfigDict(
        env_prefix="TESSERA_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Storage ──────────────────────────────────────────────────
    database_url: str = Field(default="memory", description="Database location")
    dialect: str | None = Field(default=None, description="SQL dialect override")

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    log_json: bool | None = None

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {_LOG_LEVELS}, got {value!r}")
        return level

    @field_validator("dialect")
    @classmethod
    def _check_dialect(cls, value: str | None) -> str | None:
        if value is None or value == "":
            return None
        try:
            return get_dialect(value).name
        except DialectError as exc:
            raise ValueError(exc.message) from exc


@lru_cache(maxsize=1)
def get_settings() -> TesseraSettings:
    """Process-wide settings read from the environment (cached)."""
    return TesseraSettings()


__all__ = ["TesseraSettings", "get_settings"]
