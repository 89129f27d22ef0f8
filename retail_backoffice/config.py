"""Runtime settings for the back-office core.

Settings are plain pydantic models; :meth:`BackofficeSettings.from_env`
reads ``BACKOFFICE_*`` environment variables so deployments configure the
core without a settings file.
"""

from __future__ import annotations

import os
from typing import Mapping

from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "BACKOFFICE_"

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class BackofficeSettings(BaseModel):
    """Configuration shared by the CLI, datastore and observability setup."""

    database_url: str = Field(
        "sqlite:///backoffice.db", description="SQLAlchemy database URL"
    )
    sql_echo: bool = Field(False, description="Log every SQL statement")
    log_level: str = Field("INFO", description="Minimum structlog level")
    log_json: bool = Field(True, description="Render logs as JSON lines")
    service_name: str = Field(
        "retail-backoffice", description="Service name for telemetry"
    )
    otlp_endpoint: str | None = Field(
        None, description="OTLP gRPC endpoint; console export when unset"
    )
    metrics_port: int | None = Field(
        None, ge=1, le=65535, description="Port for the Prometheus exporter"
    )

    @field_validator("log_level")
    @classmethod
    def _normalise_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(_LOG_LEVELS)}")
        return level

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "BackofficeSettings":
        """Build settings from ``BACKOFFICE_*`` variables.

        Unset variables fall back to the field defaults. Empty strings are
        treated as unset.
        """

        env = os.environ if environ is None else environ
        values: dict[str, str] = {}
        for name in cls.model_fields:
            raw = env.get(f"{ENV_PREFIX}{name.upper()}")
            if raw:
                values[name] = raw
        return cls.model_validate(values)
