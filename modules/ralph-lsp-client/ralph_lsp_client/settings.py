"""Settings store for the Ralph LSP client.

Settings come from YAML files deep merged over the packaged defaults. Keys are
read with dotted names relative to the ``ralph-lsp`` section, e.g.
``settings.get("server.jar")``.
"""

import copy
import logging
import os
from pathlib import Path
from typing import Any

import yaml

from .launch import LOG_HOME_PROPERTY

logger = logging.getLogger(__name__)

SECTION = "ralph-lsp"
DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"


def deep_merge(base: dict, overlay: dict) -> dict:
    """Deep merge overlay into base, returning new dict."""
    result = base.copy()
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


class Settings:
    """Read-only view over the merged ``ralph-lsp`` settings section."""

    def __init__(self, values: dict | None = None):
        self._values = values or {}

    def get(self, key: str, default: Any = None) -> Any:
        node: Any = self._values
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        # Empty strings in settings files mean "not set"
        if node is None or node == "":
            return default
        return node

    def with_overrides(self, overlay: dict) -> "Settings":
        """Return new settings with overlay deep merged on top."""
        return Settings(deep_merge(self._values, overlay))

    def as_dict(self) -> dict:
        return copy.deepcopy(self._values)


def _read_yaml(path: Path) -> dict:
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Settings file {path} must contain a mapping")
    return data


def load_settings(*paths: str | Path, environ: dict | None = None) -> Settings:
    """Load settings from YAML files over the packaged defaults.

    Missing files are skipped. Later files win. When no file sets
    ``server.home``, the RALPH_LSP_LOG_HOME environment variable fills it.
    """
    merged = _read_yaml(DEFAULTS_PATH)
    for path in paths:
        path = Path(path).expanduser()
        if not path.is_file():
            logger.debug("Settings file %s not found, skipping", path)
            continue
        logger.debug("Loading settings from %s", path)
        merged = deep_merge(merged, _read_yaml(path))

    section = merged.get(SECTION) or {}
    environ = os.environ if environ is None else environ
    env_home = environ.get(LOG_HOME_PROPERTY)
    if env_home and not Settings(section).get("server.home"):
        section = deep_merge(section, {"server": {"home": env_home}})

    return Settings(section)
