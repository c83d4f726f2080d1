"""
Shared configuration loader for Orpheus.

Loads a single JSON config file.  Search order:
  1. $ORPHEUS_CONFIG               (explicit override)
  2. ~/.orpheus/config.json         (written by the orpheus CLI)
  3. config.json                    (CWD, handy for local dev)

The file is only read here; writing it belongs to the CLI.

Usage:
    from orpheus.lib.config import cfg

    port         = cfg("port", default=4242)
    theme        = cfg("currentTheme", default="default")
    grace_period = cfg("media", "grace_period", default=2.0)
"""

import json
import logging
import os

logger = logging.getLogger(__name__)

_config: dict | None = None

_KNOWN_KEYS = {
    "configVersion", "port", "currentTheme", "themes", "log_level",
    "media", "cover_art", "sse",
}


def _search_paths() -> list[str]:
    paths = []
    override = os.environ.get("ORPHEUS_CONFIG")
    if override:
        paths.append(override)
    paths.append(os.path.join(os.path.expanduser("~"), ".orpheus", "config.json"))
    paths.append("config.json")
    return paths


def _validate(config: dict, path: str) -> None:
    """Warn about missing or suspicious config values."""
    port = config.get("port")
    if port is not None and not isinstance(port, int):
        logger.warning("Config %s: port %r is not an integer — using default", path, port)
        config.pop("port")
    for key in config:
        if key not in _KNOWN_KEYS:
            logger.warning("Config %s: unknown key '%s'", path, key)
    for section in ("media", "cover_art", "sse"):
        value = config.get(section)
        if value is not None and not isinstance(value, dict):
            logger.warning("Config %s: '%s' should be an object — ignored", path, section)
            config.pop(section)


def load_config() -> dict:
    """Load config from the first JSON file found. Cached after first call."""
    global _config
    if _config is not None:
        return _config

    for path in _search_paths():
        try:
            with open(path) as f:
                loaded = json.load(f)
        except FileNotFoundError:
            continue
        except json.JSONDecodeError as e:
            logger.error("Invalid JSON in %s: %s", path, e)
            continue
        if not isinstance(loaded, dict):
            logger.error("Config %s is not a JSON object — skipped", path)
            continue
        _config = loaded
        logger.info("Config loaded from %s", path)
        _validate(_config, path)
        return _config

    logger.warning("No config.json found — using defaults")
    _config = {}
    return _config


def cfg(section: str, key: str | None = None, *, default=None):
    """Read a config value.

    cfg("port")                            → config["port"]
    cfg("media", "grace_period")           → config["media"]["grace_period"]
    cfg("sse", "keepalive", default=15)    → config["sse"]["keepalive"] or 15
    """
    config = load_config()
    val = config.get(section)
    if key is None:
        return val if val is not None else default
    if isinstance(val, dict):
        return val.get(key, default)
    return default


def reload_config():
    """Force re-read from disk (for testing or hot-reload)."""
    global _config
    _config = None
    return load_config()
