"""Runtime configuration for the mirror engine.

Reads source connection and sync settings from explicit overrides,
environment variables, .env files, and YAML config file fallbacks.

Precedence (highest to lowest):
    Overrides > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    MIRROR_SOURCE_URL: Source API base URL (required)
    MIRROR_SOURCE_TOKEN: Source API bearer token (required)
    MIRROR_SOURCE_BRIDGE_TOKEN: Extra bridge token header (optional)
    MIRROR_SOURCE_TIMEOUT: Request timeout in seconds (optional, default: 30)
    MIRROR_DATA_DIR: Directory for state, media and audit log (optional, default: ./data)
    MIRROR_CREATE_TARGET: Destination container for new objects (optional)
    MIRROR_MEDIA_PUBLIC_BASE_URL: Public URL prefix for cached media (optional)
    MIRROR_SYNC_DELAY_MS: Pause after each destination write (optional, default: 200)
    MIRROR_INCLUDE_MEDIA: Copy media during apply (optional, default: true)
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


@dataclass
class Config:
    source_url: str
    source_token: str
    bridge_token: str | None = None
    timeout_seconds: float = 30.0
    data_dir: Path = Path("data")
    create_target: str | None = None
    media_public_base_url: str | None = None
    delay_ms: int = 200
    include_media: bool = True
    list_limit: int = 200
    debug: bool = False


def _validate_http_url(label: str, value: str) -> str:
    value = value.strip()
    if not value.startswith(("http://", "https://")):
        raise ValueError(
            f"Invalid {label} '{value}': must start with http:// or https://"
        )
    if not urlparse(value).hostname:
        raise ValueError(
            f"Invalid {label} '{value}': URL must include a hostname"
        )
    return value.removesuffix("/")


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Normalises URLs in place (whitespace and trailing slash stripped).

    Args:
        config: Config instance to validate.

    Raises:
        ValueError: If a URL is malformed, the token is empty, or a
            numeric setting is out of range.
    """
    config.source_url = _validate_http_url("source URL", config.source_url)

    if not config.source_token.strip():
        raise ValueError(
            "Source token cannot be empty. Set MIRROR_SOURCE_TOKEN environment variable."
        )

    if config.media_public_base_url:
        config.media_public_base_url = _validate_http_url(
            "media public base URL", config.media_public_base_url
        )

    if config.delay_ms < 0:
        raise ValueError(
            f"Invalid sync delay {config.delay_ms}: must be zero or positive"
        )

    if config.timeout_seconds <= 0:
        raise ValueError(
            f"Invalid source timeout {config.timeout_seconds}: must be positive"
        )

    if config.list_limit < 1:
        raise ValueError(
            f"Invalid list limit {config.list_limit}: must be at least 1"
        )

    if not config.create_target:
        logger.info(
            "No destination create target configured; unmatched documents will be skipped"
        )


def _get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def _get_number_env(key: str, cast: type, minimum: float) -> float | int | None:
    raw = os.getenv(key)
    if raw is None:
        return None
    try:
        value = cast(raw)
    except ValueError:
        raise ValueError(
            f"Invalid {key} '{raw}': must be a number >= {minimum}"
        ) from None
    if value < minimum:
        raise ValueError(f"Invalid {key} '{raw}': must be a number >= {minimum}")
    return value


def load_config(
    source_url: str | None = None,
    source_token: str | None = None,
    data_dir: str | Path | None = None,
    create_target: str | None = None,
    include_media: bool | None = None,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        override arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        source_url: Override source API URL.
        source_token: Override source API token.
        data_dir: Override data directory.
        create_target: Override destination creation target.
        include_media: Override media inclusion.
        debug: Enable debug logging.
        yaml_fallbacks: Flat dict built from the YAML ``source``, ``sync``
            and ``logging`` sections (see ``to_legacy_config``).

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If the source URL or token is missing after checking
            all sources, or a value is invalid.
    """
    fb = yaml_fallbacks or {}

    # --- String fields: override > env > YAML ---

    url = source_url or os.getenv("MIRROR_SOURCE_URL") or fb.get("source_url")
    if not url:
        raise ValueError(
            "Source URL not found. Set MIRROR_SOURCE_URL environment variable "
            "or add 'source.url' to config.yml."
        )

    token = (
        source_token
        or os.getenv("MIRROR_SOURCE_TOKEN")
        or fb.get("source_token")
    )
    if not token:
        raise ValueError(
            "Source token not found. Set MIRROR_SOURCE_TOKEN environment variable "
            "or add 'source.token' to config.yml."
        )

    bridge_token = os.getenv("MIRROR_SOURCE_BRIDGE_TOKEN") or fb.get(
        "bridge_token"
    )
    final_target = (
        create_target
        or os.getenv("MIRROR_CREATE_TARGET")
        or fb.get("create_target")
    )
    public_base = os.getenv("MIRROR_MEDIA_PUBLIC_BASE_URL") or fb.get(
        "media_public_base_url"
    )
    final_data_dir = (
        data_dir or os.getenv("MIRROR_DATA_DIR") or fb.get("data_dir") or "data"
    )

    # --- Boolean fields: override > env > YAML > default ---

    if include_media is not None:
        final_media = include_media
    else:
        env_media = _get_bool_env("MIRROR_INCLUDE_MEDIA")
        if env_media is not None:
            final_media = env_media
        else:
            final_media = bool(fb.get("include_media", True))

    if debug:
        final_debug = True
    else:
        env_debug = _get_bool_env("MIRROR_DEBUG")
        final_debug = (
            env_debug if env_debug is not None else bool(fb.get("debug", False))
        )

    # --- Numeric fields: env > YAML > default ---

    timeout = _get_number_env("MIRROR_SOURCE_TIMEOUT", float, 0.001)
    if timeout is None:
        timeout = float(fb.get("timeout_seconds", 30.0))

    delay = _get_number_env("MIRROR_SYNC_DELAY_MS", int, 0)
    if delay is None:
        delay = int(fb.get("delay_ms", 200))

    config = Config(
        source_url=url.strip(),
        source_token=token.strip(),
        bridge_token=bridge_token or None,
        timeout_seconds=timeout,
        data_dir=Path(final_data_dir).expanduser().resolve(),
        create_target=final_target or None,
        media_public_base_url=public_base or None,
        delay_ms=delay,
        include_media=final_media,
        list_limit=int(fb.get("list_limit", 200)),
        debug=final_debug,
    )

    validate_config(config)

    return config
