"""Run configuration: defaults, YAML file and MODULEFAST_* environment overrides."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from .constants import Constants
from .errors import ConfigError

logger = logging.getLogger(__name__)

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


def _as_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConfigError(f"{name} must be a boolean, got {value!r}")


def _as_paths(name: str, value: Any) -> List[str]:
    if isinstance(value, str):
        return [p for p in value.split(os.pathsep) if p]
    if isinstance(value, (list, tuple)):
        return [str(p) for p in value]
    raise ConfigError(f"{name} must be a list of paths, got {value!r}")


@dataclass
class ModuleFastConfig:
    """Configuration for one resolve/install run."""

    source: str = Constants.DEFAULT_SOURCE
    destination: Optional[str] = None
    search_paths: List[str] = field(default_factory=list)
    update: bool = False
    strict: bool = False
    timeout: float = Constants.REQUEST_TIMEOUT
    max_downloads: int = Constants.MAX_CONCURRENT_DOWNLOADS
    max_workers: int = Constants.MAX_EXTRACT_WORKERS
    poll_interval: float = Constants.POLL_INTERVAL_SEC

    def __post_init__(self):
        self.update = _as_bool("update", self.update)
        self.strict = _as_bool("strict", self.strict)
        self.search_paths = _as_paths("search_paths", self.search_paths)
        try:
            self.timeout = float(self.timeout)
            self.poll_interval = float(self.poll_interval)
            self.max_downloads = int(self.max_downloads)
            self.max_workers = int(self.max_workers)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid numeric setting: {exc}") from exc
        if self.timeout <= 0 or self.poll_interval <= 0 or self.max_downloads < 1 or self.max_workers < 1:
            raise ConfigError("timeout, poll_interval, max_downloads and max_workers must be positive")

    @property
    def effective_search_paths(self) -> List[Path]:
        """Search roots, with the destination first when it is not listed."""
        paths = [Path(p) for p in self.search_paths]
        if self.destination and Path(self.destination) not in paths:
            paths.insert(0, Path(self.destination))
        return paths

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ModuleFastConfig":
        """Build a config from a mapping, ignoring unknown keys with a warning."""
        known = {f.name for f in fields(cls)}
        values: Dict[str, Any] = {}
        for key, value in data.items():
            if key in known:
                values[key] = value
            else:
                logger.warning("Ignoring unknown configuration key: %s", key)
        return cls(**values)

    @classmethod
    def from_env(
        cls, base: Optional[Mapping[str, Any]] = None, environ: Optional[Mapping[str, str]] = None
    ) -> "ModuleFastConfig":
        """Overlay MODULEFAST_<FIELD> environment variables on ``base``."""
        env = os.environ if environ is None else environ
        values = dict(base or {})
        for f in fields(cls):
            raw = env.get(f"{Constants.ENV_PREFIX}{f.name.upper()}")
            if raw is not None:
                values[f.name] = raw
        return cls.from_mapping(values)

    @classmethod
    def load(cls, path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> "ModuleFastConfig":
        """Load configuration from YAML then apply environment overrides.

        Args:
            path: YAML file; defaults to $MODULEFAST_CONFIG when set.
            environ: Environment mapping, os.environ when omitted.

        Returns:
            ModuleFastConfig instance.
        """
        env = os.environ if environ is None else environ
        path = path or env.get(Constants.ENV_CONFIG)
        data: Dict[str, Any] = {}
        if path:
            if not os.path.isfile(path):
                raise ConfigError(f"Config file not found: {path}")
            try:
                with open(path, "r", encoding="utf-8") as f:
                    loaded = yaml.safe_load(f)
            except yaml.YAMLError as exc:
                raise ConfigError(f"Failed to parse config {path}: {exc}") from exc
            if loaded is not None and not isinstance(loaded, dict):
                raise ConfigError(f"Config {path} must contain a mapping")
            loaded = loaded or {}
            # Extract modulefast section if present
            section = loaded.get("modulefast", loaded)
            if not isinstance(section, dict):
                raise ConfigError(f"Config {path}: 'modulefast' must be a mapping")
            data = section
        return cls.from_env(data, env)
