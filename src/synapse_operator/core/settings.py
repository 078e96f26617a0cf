"""Operator settings.

One validated, cached settings object for everything the controllers need
that is not part of a user-declared Entity: container images, retry delays,
database pool sizing and logging.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.

    - **Pydantic validation:** Type-checked at startup, not mid-reconcile
    - **Environment-driven:** ``SYNAPSE_OPERATOR_*`` variables and ``.env``
    - **Sensible defaults:** Works out of the box for development and tests

Examples:
    >>> from synapse_operator.core.settings import OperatorSettings
    >>> settings = OperatorSettings(missing_prerequisite_delay=5)
    >>> settings.missing_prerequisite_delay
    5.0

Tags:
    settings, configuration, pydantic, environment

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class OperatorSettings(BaseSettings):
    """Reconciliation engine configuration.

    All fields can be set via ``SYNAPSE_OPERATOR_*`` environment variables
    (e.g. ``SYNAPSE_OPERATOR_LOG_LEVEL=DEBUG``) or through a ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_prefix="SYNAPSE_OPERATOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Observability ────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: Literal["console", "json"] = Field(default="console")

    # ── Retry policy ─────────────────────────────────────────────
    missing_prerequisite_delay: float = Field(
        default=30.0,
        gt=0,
        description="Seconds to wait before retrying when a referenced object is absent",
    )

    # ── Images ───────────────────────────────────────────────────
    synapse_image: str = Field(default="matrixdotorg/synapse:v1.60.0")
    mautrix_signal_image: str = Field(default="dock.mau.dev/mautrix/signal:v0.4.1")
    signald_image: str = Field(default="docker.io/signald/signald:0.23.0")
    heisenbridge_image: str = Field(default="hif1/heisenbridge:1.14")

    # ── Managed PostgreSQL ───────────────────────────────────────
    postgres_version: int = Field(default=14)
    postgres_storage: str = Field(default="1Gi")
    database_name: str = Field(default="synapse")
    database_user: str = Field(default="synapse")
    database_pool_min: int = Field(default=5, ge=1)
    database_pool_max: int = Field(default=10, ge=1)

    # ── Storage ──────────────────────────────────────────────────
    synapse_storage: str = Field(default="5Gi")
    bridge_storage: str = Field(default="5Gi")

    @model_validator(mode="after")
    def _check_pool_bounds(self) -> OperatorSettings:
        if self.database_pool_min > self.database_pool_max:
            raise ValueError(
                f"database_pool_min ({self.database_pool_min}) must not exceed "
                f"database_pool_max ({self.database_pool_max})"
            )
        return self


@lru_cache(maxsize=1)
def get_settings() -> OperatorSettings:
    """Return the process-wide settings, read once from the environment."""
    return OperatorSettings()


__all__ = ["OperatorSettings", "get_settings"]
