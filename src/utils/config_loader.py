from __future__ import annotations

import logging
import os
import threading
from copy import deepcopy
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

_cache_lock = threading.Lock()
_cached: dict[str, Any] | None = None
_cached_path: str | None = None


def _project_root() -> Path:
    # src/utils/config_loader.py -> src/utils -> src -> project root
    return Path(__file__).resolve().parents[2]


def default_config_path() -> Path:
    return _project_root() / "config" / "config.yaml"


# (env var, config section, key, cast)
_ENV_OVERRIDES: tuple[tuple[str, str, str, type], ...] = (
    ("ROBINHOOD_API_ORIGIN", "api", "origin", str),
    ("ROBINHOOD_API_VERSION", "api", "api_version", str),
    ("ROBINHOOD_REQUEST_TIMEOUT_SECONDS", "api", "request_timeout_seconds", float),
    ("ROBINHOOD_RENEWAL_THRESHOLD_SECONDS", "session", "renewal_threshold_seconds", float),
    ("ROBINHOOD_RENEWAL_POLL_SECONDS", "session", "renewal_poll_seconds", float),
)


def _apply_env_overrides(cfg: dict[str, Any]) -> None:
    """Override selected YAML settings with environment variables."""
    for env_name, section, key, cast in _ENV_OVERRIDES:
        raw = (os.getenv(env_name) or "").strip()
        if not raw:
            continue
        try:
            value = cast(raw)
        except ValueError as exc:
            raise ValueError(f"{env_name} must be a {cast.__name__}; got {raw!r}") from exc
        cfg.setdefault(section, {})[key] = value


def validate_config(cfg: dict[str, Any]) -> None:
    """Fail fast if the configuration is missing required sections."""
    required_top = ["api", "session"]
    missing = [k for k in required_top if k not in cfg]
    if missing:
        raise ValueError(f"Missing required config sections: {', '.join(missing)}")

    api = cfg.get("api") or {}
    for k in ["origin", "client_id"]:
        if k not in api:
            raise ValueError(f"Missing api.{k} in config")


def _read_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        doc = yaml.safe_load(f) or {}
    if not isinstance(doc, dict):
        raise ValueError(f"Config must be a YAML mapping (dict); got {type(doc).__name__}")
    return doc


def load_config(config_path: str | Path | None = None, *, force_reload: bool = False) -> dict[str, Any]:
    """
    Read the client config (YAML + environment overrides) and memoise it per path.

    Callers get a deep copy, so local tweaks never leak into the cached document.
    """
    global _cached, _cached_path

    path = Path(config_path) if config_path else default_config_path()
    key = str(path.resolve())

    with _cache_lock:
        if force_reload or _cached is None or _cached_path != key:
            doc = _read_yaml(path)
            _apply_env_overrides(doc)
            validate_config(doc)
            _cached, _cached_path = doc, key
            logger.info("Loaded config from %s", key)
        return deepcopy(_cached)
