"""Application context: wiring of configuration, stores and the engine.

Everything the engine needs is built once here and passed explicitly to
constructors; core modules never look up configuration globally.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from .adapters import DestinationAdapter, SourceAdapter
from .config import Config, load_config
from .config_loader import discover_config_files, load_hierarchical_config
from .config_schema import LoggingConfig, build_config, to_legacy_config
from .logger import setup_logging
from .source import HttpSourceAdapter
from .sync.audit import AuditTrail
from .sync.engine import SyncEngine, SyncSettings
from .sync.media import MediaCache
from .sync.state import StateStore

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    config: Config
    state: StateStore
    audit: AuditTrail
    media: MediaCache
    source: SourceAdapter
    destination: DestinationAdapter
    engine: SyncEngine

    @property
    def data_dir(self) -> Path:
        return self.config.data_dir


def create_app_context(
    config: Config,
    destination: DestinationAdapter,
    source: SourceAdapter | None = None,
) -> AppContext:
    """Build the object graph for *config*.

    Args:
        config: Validated runtime configuration.
        destination: Destination workspace adapter.
        source: Source adapter; defaults to ``HttpSourceAdapter(config)``.

    Raises:
        PersistenceError: If the data directory or state file is unusable.
    """
    data_dir = Path(config.data_dir)
    data_dir.mkdir(parents=True, exist_ok=True)

    source = source or HttpSourceAdapter(config)
    state = StateStore.open(data_dir)
    audit = AuditTrail.open(data_dir)
    media = MediaCache(
        source,
        state,
        data_dir / "media",
        public_base_url=config.media_public_base_url,
    )
    engine = SyncEngine(
        source,
        destination,
        state,
        media,
        audit,
        SyncSettings(
            create_target=config.create_target,
            include_media=config.include_media,
            delay_ms=config.delay_ms,
            list_limit=config.list_limit,
        ),
    )
    logger.info("Mirror context ready (data dir: %s)", data_dir)
    return AppContext(
        config=config,
        state=state,
        audit=audit,
        media=media,
        source=source,
        destination=destination,
        engine=engine,
    )


@asynccontextmanager
async def app_context(
    destination: DestinationAdapter,
    source: SourceAdapter | None = None,
    config_overrides: dict[str, Any] | None = None,
    log_mode: str | None = None,
) -> AsyncIterator[AppContext]:
    """
    Load configuration and yield a ready ``AppContext``.

    On startup:
    - Load .env file (so values are available for env var lookups and YAML interpolation)
    - Load YAML config file if present (as fallback values)
    - Merge all sources via load_config(): overrides > env vars > .env > YAML > defaults
    - Configure logging when *log_mode* is given, from the YAML ``logging``
      section and the resolved debug flag

    Args:
        destination: Destination workspace adapter.
        source: Optional source adapter override.
        config_overrides: Optional dict with keys accepted by ``load_config``.
        log_mode: ``"cli"`` or ``"service"`` to configure logging; ``None``
            leaves logging to the caller.

    Raises:
        RuntimeError: If configuration is invalid.
    """
    try:
        load_dotenv()

        yaml_fallbacks: dict[str, Any] | None = None
        logging_config = LoggingConfig()
        config_files = discover_config_files()
        if config_files:
            unified = build_config(load_hierarchical_config())
            logging_config = unified.logging
            yaml_fallbacks = to_legacy_config(unified)
            logger.info("Configuration file: %s", config_files[0])

        config = load_config(
            **(config_overrides or {}), yaml_fallbacks=yaml_fallbacks
        )
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        raise RuntimeError(
            f"Configuration error: {e}. "
            "Ensure MIRROR_SOURCE_URL and MIRROR_SOURCE_TOKEN are set."
        ) from e

    if log_mode:
        setup_logging(
            mode=log_mode,
            debug=config.debug,
            log_file=logging_config.file,
            level=logging_config.level,
        )

    logger.info("Source URL: %s", config.source_url)
    ctx = create_app_context(config, destination, source)
    try:
        yield ctx
    finally:
        logger.info("Mirror context closed")
