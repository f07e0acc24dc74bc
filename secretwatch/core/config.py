"""Settings for secretwatch.

Read from ``~/.secretwatch/config.json`` (or ``$SECRETWATCH_CONFIG``); every key
is optional::

    {
      "db_path": "~/.secretwatch/state.db",
      "max_script_chars": 50000000,
      "fetch_timeout": 20,
      "extra_ignore": {"Password": ["['\\"]changeme['\\"]"]},
      "verbose": false
    }

``$SECRETWATCH_DB`` overrides ``db_path``. CLI flags override both.
"""
from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from ..patterns import DEFAULT_CATALOG, PatternCatalog
from .errors import ConfigError
from .ingest import DEFAULT_FETCH_TIMEOUT
from .scanner import DEFAULT_MAX_SCAN_CHARS

DEFAULT_CONFIG_PATH = Path("~/.secretwatch/config.json")
DEFAULT_DB_PATH = Path("~/.secretwatch/state.db")


@dataclass
class Settings:
    db_path: Path = DEFAULT_DB_PATH
    max_script_chars: int = DEFAULT_MAX_SCAN_CHARS
    fetch_timeout: float = DEFAULT_FETCH_TIMEOUT
    extra_ignore: Dict[str, List[str]] = field(default_factory=dict)
    verbose: bool = False

    @property
    def resolved_db_path(self) -> Path:
        return Path(self.db_path).expanduser()


def _config_path(path: Optional[Path]) -> Path:
    if path is not None:
        return Path(path).expanduser()
    env = os.environ.get("SECRETWATCH_CONFIG")
    return Path(env).expanduser() if env else DEFAULT_CONFIG_PATH.expanduser()


def load_settings(path: Optional[Path] = None) -> Settings:
    """Load settings; a missing file means defaults, a broken one is a ``ConfigError``."""
    settings = Settings()
    config_path = _config_path(path)
    if config_path.exists():
        try:
            data = json.loads(config_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigError(f"cannot read {config_path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigError(f"{config_path} must contain a JSON object")
        _apply(settings, data, config_path)
    elif path is not None:
        raise ConfigError(f"config file not found: {config_path}")

    env_db = os.environ.get("SECRETWATCH_DB")
    if env_db:
        settings.db_path = Path(env_db)
    return settings


def _apply(settings: Settings, data: Dict[str, object], source: Path) -> None:
    try:
        if "db_path" in data:
            settings.db_path = Path(str(data["db_path"]))
        if "max_script_chars" in data:
            settings.max_script_chars = int(data["max_script_chars"])  # type: ignore[arg-type]
        if "fetch_timeout" in data:
            settings.fetch_timeout = float(data["fetch_timeout"])  # type: ignore[arg-type]
        if "verbose" in data:
            settings.verbose = bool(data["verbose"])
        extra = data.get("extra_ignore") or {}
        if not isinstance(extra, dict):
            raise ConfigError(f"{source}: extra_ignore must map secret types to regex lists")
        settings.extra_ignore = {str(k): [str(rx) for rx in v] for k, v in extra.items()}
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{source}: {exc}") from exc


def build_catalog(settings: Settings) -> PatternCatalog:
    if not settings.extra_ignore:
        return DEFAULT_CATALOG
    try:
        return DEFAULT_CATALOG.with_ignore_filters(settings.extra_ignore)
    except (ValueError, re.error) as exc:
        raise ConfigError(f"invalid extra_ignore: {exc}") from exc
