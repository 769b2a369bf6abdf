"""
Settings for the referral resolver and its adapters.

All fields can be set via ``REFERRAL_*`` environment variables (e.g.
``REFERRAL_STORE_PATH=/data/referrer.json``) or a ``.env`` file. Unknown
variables are ignored so a shared ``.env`` never breaks start-up.

Fields
──────
log_level             : structlog log level
json_logs             : JSON output (True), console (False), auto by TTY (None)
store_backend         : ``file`` (durable JSON file) or ``memory``
store_path            : Location of the durable store file
campaign_param        : Query parameter holding the campaign in the raw referrer
campaign_prefixes     : Accepted campaign prefixes; empty accepts any value
persist_not_found     : Also remember a fresh "no attribution" answer
wait_timeout_seconds  : Default bound for CLI waits; None waits forever

Tags:
    settings, configuration, pydantic, environment, referral
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreBackend(str, Enum):
    FILE = "file"
    MEMORY = "memory"


class ReferralSettings(BaseSettings):
    """Referral configuration, validated at construction."""

    model_config = SettingsConfigDict(
        env_prefix="REFERRAL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool | None = None

    # ── Store ────────────────────────────────────────────────────
    store_backend: StoreBackend = Field(default=StoreBackend.FILE)
    store_path: Path = Field(
        default_factory=lambda: Path.home() / ".referral" / "referrer.json",
        description="Durable key-value file for the referrer check",
    )
    persist_not_found: bool = False

    # ── Parser ───────────────────────────────────────────────────
    campaign_param: str = "utm_campaign"
    campaign_prefixes: list[str] = Field(default_factory=list)

    # ── Readers ──────────────────────────────────────────────────
    wait_timeout_seconds: float | None = None

    @field_validator("log_level")
    @classmethod
    def _normalise_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value!r}")
        return level

    @field_validator("campaign_param")
    @classmethod
    def _non_empty_param(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("campaign_param must not be empty")
        return value

    @field_validator("wait_timeout_seconds")
    @classmethod
    def _positive_timeout(cls, value: float | None) -> float | None:
        if value is not None and value <= 0:
            raise ValueError("wait_timeout_seconds must be positive")
        return value


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: dict[str, ReferralSettings] = {}


def get_settings(*, _force_reload: bool = False) -> ReferralSettings:
    """Load, validate, and cache a :class:`ReferralSettings` instance.

    Parameters
    ----------
    _force_reload:
        Bypass cache and reload from the environment.
    """
    if not _force_reload and "default" in _settings_cache:
        return _settings_cache["default"]

    settings = ReferralSettings()
    _settings_cache["default"] = settings
    return settings


def clear_settings_cache() -> None:
    """Drop the cached settings (tests and CLI option overrides)."""
    _settings_cache.clear()


__all__ = [
    "ReferralSettings",
    "StoreBackend",
    "clear_settings_cache",
    "get_settings",
]
