"""Configuration loading.

Settings live in a JSON file (``config.json`` inside the data directory by
default) and are merged over the built-in defaults.
"""
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "CLIPLEAF_CONFIG"
DATA_DIR_ENV_VAR = "CLIPLEAF_DATA_DIR"
DEFAULT_FETCH_TIMEOUT = 30.0


def default_data_dir() -> Path:
    env = os.environ.get(DATA_DIR_ENV_VAR, "").strip()
    if env:
        return Path(env).expanduser()
    return Path.home() / ".clipleaf"


@dataclass
class Config:
    data_dir: Path = field(default_factory=default_data_dir)
    articles_dir: Optional[Path] = None
    db_path: Optional[Path] = None
    fetch_timeout: float = DEFAULT_FETCH_TIMEOUT
    rules_path: Optional[Path] = None
    log_level: str = "WARNING"

    @property
    def storage_dir(self) -> Path:
        """Directory holding the Markdown and HTML artifacts."""
        if self.articles_dir is not None:
            return self.articles_dir
        return self.data_dir / "articles"

    @property
    def database_path(self) -> Path:
        if self.db_path is not None:
            return self.db_path
        return self.data_dir / "clipleaf.db"


def _merge_dict(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        base_value = merged.get(key)
        if isinstance(base_value, dict) and isinstance(value, dict):
            merged[key] = _merge_dict(base_value, value)
        else:
            merged[key] = value
    return merged


def _optional_path(value: Any) -> Optional[Path]:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    return Path(text).expanduser()


def _read_json(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Ignoring unreadable config file %s: %s", path, exc)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring config file %s: expected a JSON object", path)
        return {}
    return data


def load_config(path: Optional[Path] = None) -> Config:
    """Load configuration from ``path``, $CLIPLEAF_CONFIG or the data dir."""
    if path is None:
        env = os.environ.get(CONFIG_ENV_VAR, "").strip()
        path = Path(env).expanduser() if env else default_data_dir() / "config.json"

    defaults: dict[str, Any] = {
        "data_dir": str(default_data_dir()),
        "articles_dir": None,
        "db_path": None,
        "fetch_timeout": DEFAULT_FETCH_TIMEOUT,
        "rules_path": None,
        "log_level": "WARNING",
    }
    raw = _merge_dict(defaults, _read_json(Path(path)))

    try:
        timeout = float(raw.get("fetch_timeout") or DEFAULT_FETCH_TIMEOUT)
    except (TypeError, ValueError):
        logger.warning("Invalid fetch_timeout %r, using %s", raw.get("fetch_timeout"), DEFAULT_FETCH_TIMEOUT)
        timeout = DEFAULT_FETCH_TIMEOUT
    if timeout <= 0:
        timeout = DEFAULT_FETCH_TIMEOUT

    return Config(
        data_dir=_optional_path(raw.get("data_dir")) or default_data_dir(),
        articles_dir=_optional_path(raw.get("articles_dir")),
        db_path=_optional_path(raw.get("db_path")),
        fetch_timeout=timeout,
        rules_path=_optional_path(raw.get("rules_path")),
        log_level=str(raw.get("log_level") or "WARNING").upper(),
    )
