"""
Layered YAML configuration for mirror_sync.

Up to three files are read: an explicit ``MIRROR_SYNC_CONFIG`` path, the
project file ``.mirror_sync/config.yml`` and the per-user file under
``$XDG_CONFIG_HOME/mirror_sync/``. Each holds some of the ``source``,
``sync`` and ``logging`` sections; a section from a higher layer replaces
the same section from a lower one as a whole.

Usage:
    from mirror_sync.config_loader import load_hierarchical_config

    sections = load_hierarchical_config()
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "MIRROR_SYNC_CONFIG"
CONFIG_SECTIONS = ("source", "sync", "logging")

# ${NAME} or ${NAME:-fallback}
_ENV_REF = re.compile(r"\$\{(?P<name>[A-Za-z_][A-Za-z0-9_]*)(?::-(?P<fallback>[^}]*))?\}")


def interpolate_env_vars(value: str) -> str:
    """Expand ``${NAME}`` and ``${NAME:-fallback}`` references in *value*.

    An unset or empty variable expands to its fallback, or to ``""``.
    Text that is not a well-formed reference is kept verbatim.
    """
    return _ENV_REF.sub(
        lambda m: os.environ.get(m["name"]) or (m["fallback"] or ""), value
    )


def _expand_section(value: Any) -> Any:
    if isinstance(value, str):
        return interpolate_env_vars(value)
    if isinstance(value, list):
        return [_expand_section(v) for v in value]
    if isinstance(value, dict):
        return {key: _expand_section(v) for key, v in value.items()}
    return value


def config_search_paths() -> list[tuple[str, Path]]:
    """Candidate config files as ``(layer, path)``, highest precedence first."""
    layers: list[tuple[str, Path]] = []

    explicit = os.environ.get(CONFIG_ENV_VAR)
    if explicit:
        layers.append(("explicit", Path(explicit).expanduser().resolve()))

    layers.append(("project", Path.cwd() / ".mirror_sync" / "config.yml"))

    xdg_home = os.environ.get("XDG_CONFIG_HOME")
    user_root = Path(xdg_home) if xdg_home else Path.home() / ".config"
    layers.append(("user", user_root / "mirror_sync" / "config.yml"))
    return layers


def discover_config_files() -> list[Path]:
    """Existing config files, highest precedence first."""
    return [path for _, path in config_search_paths() if path.is_file()]


def read_config_file(path: Path) -> dict[str, dict[str, Any]]:
    """Read one config file and return its known sections, env-expanded.

    Unknown top-level keys are dropped with a warning. An empty section
    (``sync:`` with nothing under it) reads as ``{}``.

    Raises:
        yaml.YAMLError: The file is not valid YAML.
        ValueError: A known section is not a mapping.
    """
    with open(path, "r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh)

    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning(
            "Ignoring %s: expected a mapping of sections, got %s",
            path,
            type(data).__name__,
        )
        return {}

    sections: dict[str, dict[str, Any]] = {}
    for name, body in data.items():
        if name not in CONFIG_SECTIONS:
            logger.warning(
                "Ignoring unknown section %r in %s (expected one of: %s)",
                name,
                path,
                ", ".join(CONFIG_SECTIONS),
            )
            continue
        if body is None:
            body = {}
        if not isinstance(body, dict):
            raise ValueError(
                f"{path}: section '{name}' must be a mapping, "
                f"got {type(body).__name__}"
            )
        sections[name] = _expand_section(body)
    return sections


def load_hierarchical_config() -> dict[str, dict[str, Any]]:
    """Merge the discovered config files into one dict of sections.

    Returns an empty dict when no config file exists.
    """
    paths = discover_config_files()
    if not paths:
        logger.debug("No config files found, using zero-config defaults")
        return {}

    merged: dict[str, dict[str, Any]] = {}
    for path in reversed(paths):
        try:
            sections = read_config_file(path)
        except (OSError, yaml.YAMLError, ValueError):
            logger.exception("Failed to load config file %s", path)
            raise
        for name, body in sections.items():
            if name in merged:
                logger.debug("Section %s from %s replaces a lower layer", name, path)
            merged[name] = body
    return merged
