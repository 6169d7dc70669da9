"""Unified configuration schema for mirror_sync.

Defines Pydantic models for the YAML config structure with dedicated
sections for the source connection, sync behaviour and logging, plus an
adapter that flattens them into fallbacks for ``load_config``.

Usage:
    from mirror_sync.config_schema import build_config, to_legacy_config

    raw = load_hierarchical_config()
    unified = build_config(raw)
    fallbacks = to_legacy_config(unified)
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class SourceConfig(BaseModel):
    """Source API connection settings.

    All fields are optional: env vars and overrides can supply them at
    runtime instead.
    """

    url: str | None = Field(default=None, description="Source API base URL")
    token: str | None = Field(default=None, description="Bearer token")
    bridge_token: str | None = Field(
        default=None, description="Value of the X-Bridge-Token header"
    )
    timeout_seconds: float = Field(
        default=30.0, gt=0, description="Request timeout in seconds"
    )

    model_config = {"frozen": True}


class SyncConfig(BaseModel):
    """Sync engine behaviour."""

    data_dir: str | None = Field(
        default=None, description="State, media and audit directory"
    )
    create_target: str | None = Field(
        default=None,
        description="Destination container for newly created objects",
    )
    include_media: bool = Field(
        default=True, description="Copy referenced media during apply"
    )
    delay_ms: int = Field(
        default=200, ge=0, description="Pause after each destination write"
    )
    list_limit: int = Field(
        default=200, ge=1, description="Maximum documents listed per run"
    )
    media_public_base_url: str | None = Field(
        default=None, description="Public URL prefix for cached media"
    )

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Every section has defaults, so ``UnifiedConfig()`` (zero-config) is
    always valid.
    """

    source: SourceConfig = Field(default_factory=SourceConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the merged YAML dict.

    Missing sections get defaults; unknown top-level keys are ignored.
    """
    if not raw_data:
        return UnifiedConfig()

    known = {k: v for k, v in raw_data.items() if k in UnifiedConfig.model_fields}
    ignored = sorted(set(raw_data) - set(known))
    if ignored:
        logger.warning("Ignoring unknown config sections: %s", ", ".join(ignored))
    return UnifiedConfig(**known)


def to_legacy_config(unified: UnifiedConfig) -> dict[str, Any]:
    """Flatten a ``UnifiedConfig`` into the ``yaml_fallbacks`` dict
    accepted by ``config.load_config``.

    ``None`` values are dropped so they never shadow built-in defaults.
    """
    flat: dict[str, Any] = {
        "source_url": unified.source.url,
        "source_token": unified.source.token,
        "bridge_token": unified.source.bridge_token,
        "timeout_seconds": unified.source.timeout_seconds,
        "data_dir": unified.sync.data_dir,
        "create_target": unified.sync.create_target,
        "include_media": unified.sync.include_media,
        "delay_ms": unified.sync.delay_ms,
        "list_limit": unified.sync.list_limit,
        "media_public_base_url": unified.sync.media_public_base_url,
    }
    return {k: v for k, v in flat.items() if v is not None}
