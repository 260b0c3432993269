"""Process configuration loaded once from YAML at startup."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

DEFAULT_ENV = "prod"
DEFAULT_INDEX = "mainnet.nodes"
DEFAULT_POLL_INTERVAL = 1.0
DEFAULT_DEBOUNCE_MS = 50
DEFAULT_TIMEOUT = 30.0


class ConfigError(ValueError):
    """Raised when the configuration file is missing or invalid."""


@dataclass(frozen=True)
class IndexSettings:
    """Search-index connection parameters."""

    urls: tuple[str, ...]
    sniff: bool = False
    health_check: bool = True
    timeout: float = DEFAULT_TIMEOUT


@dataclass(frozen=True)
class Config:
    """Resolved configuration passed explicitly to the client and supervisor."""

    seed_file: Path
    elasticsearch: IndexSettings
    index: str = DEFAULT_INDEX
    debug: bool = False
    poll_interval: float = DEFAULT_POLL_INTERVAL
    debounce_ms: int = DEFAULT_DEBOUNCE_MS


def config_path_for(env: str | None, base_dir: Path | None = None) -> Path:
    """Return ``config.<env>.yml`` inside *base_dir* (default: cwd)."""
    return (base_dir or Path.cwd()) / f"config.{env or DEFAULT_ENV}.yml"


def _parse_urls(raw: object) -> tuple[str, ...]:
    """Accept a comma-separated string or a list of endpoint URLs."""
    if isinstance(raw, str):
        items = raw.split(",")
    elif isinstance(raw, list):
        items = [str(item) for item in raw]
    else:
        items = []
    return tuple(url.strip().rstrip("/") for url in items if url.strip())


def _parse_bool(section: dict[str, Any], key: str, default: bool) -> bool:
    value = section.get(key, default)
    if not isinstance(value, bool):
        msg = f"Config '{key}' must be true or false, got {value!r}."
        raise ConfigError(msg)
    return value


def parse_config(data: dict[str, Any], base_dir: Path | None = None) -> Config:
    """Build a :class:`Config` from an already-loaded mapping.

    Relative ``seed_file`` paths resolve against *base_dir*.

    Raises
    ------
    ConfigError
        If required keys are missing or have the wrong type.
    """
    seed_raw = data.get("seed_file")
    if not isinstance(seed_raw, str) or not seed_raw:
        msg = "Config requires 'seed_file'."
        raise ConfigError(msg)
    seed_file = Path(seed_raw)
    if not seed_file.is_absolute() and base_dir is not None:
        seed_file = base_dir / seed_file

    es_raw = data.get("elasticsearch")
    if not isinstance(es_raw, dict):
        msg = "Config requires an 'elasticsearch' section."
        raise ConfigError(msg)
    urls = _parse_urls(es_raw.get("urls"))
    if not urls:
        msg = "Config 'elasticsearch.urls' must list at least one endpoint."
        raise ConfigError(msg)

    sniff = _parse_bool(es_raw, "sniff", False)
    health_check = _parse_bool(es_raw, "health_check", True)
    debug = _parse_bool(data, "debug", False)

    try:
        settings = IndexSettings(
            urls=urls,
            sniff=sniff,
            health_check=health_check,
            timeout=float(es_raw.get("timeout", DEFAULT_TIMEOUT)),
        )
        return Config(
            seed_file=seed_file,
            elasticsearch=settings,
            index=str(data.get("index") or DEFAULT_INDEX),
            debug=debug,
            poll_interval=float(data.get("poll_interval", DEFAULT_POLL_INTERVAL)),
            debounce_ms=int(data.get("debounce_ms", DEFAULT_DEBOUNCE_MS)),
        )
    except (TypeError, ValueError) as exc:
        msg = f"Invalid config value: {exc}"
        raise ConfigError(msg) from exc


def load_config(path: Path) -> Config:
    """Read and validate the YAML config at *path*."""
    if not path.is_file():
        msg = f"Config file not found: {path}"
        raise ConfigError(msg)

    logger.debug("Loading config from %s", path)
    try:
        with path.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except (OSError, yaml.YAMLError) as exc:
        msg = f"Failed to read {path}: {exc}"
        raise ConfigError(msg) from exc

    if not isinstance(data, dict):
        msg = f"Config root must be a mapping: {path}"
        raise ConfigError(msg)

    return parse_config(data, base_dir=path.parent)
