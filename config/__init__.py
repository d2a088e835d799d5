"""
Configuration Module for Work Order Classifier.

settings.yaml holds thresholds, image sizes, timeouts and model names.
Any leaf value can be overridden from the environment with a
double-underscore path, e.g.::

    WORKORDER__CLASSIFICATION__AUTO_ACCEPT_THRESHOLD=0.75
    WORKORDER__OCR__TIMEOUT_SECONDS=45

Override values are parsed as YAML scalars, so numbers and booleans keep
their types. Components read the merged result through the typed
settings objects in workorder.settings.
"""

import os
import yaml
from pathlib import Path
from typing import Any, Dict, List, Optional

ENV_PREFIX = "WORKORDER__"

# Keys that must hold a number inside [low, high]
_RANGE_RULES = {
    "classification.auto_accept_threshold": (0.0, 1.0),
    "classification.candidate_threshold": (0.0, 1.0),
    "ocr.timeout_seconds": (0.0, None),
    "ai.timeout_seconds": (0.0, None),
    "ai.max_retries": (0, None),
    "pipeline.normalization_timeout_seconds": (0.0, None),
    "pipeline.max_workers": (1, None),
}

# Relative paths resolved against the project root
_PATH_KEYS = ("paths.storage_root", "paths.database", "logging.file.path")


class ConfigurationManager:
    """
    Process-wide access to the work order classifier settings.

    The first instantiation loads the YAML file, applies environment
    overrides, resolves relative paths and validates numeric ranges.
    Later instantiations return the same object.

    Example:
        >>> config = ConfigurationManager()
        >>> config.get("classification.auto_accept_threshold")
        0.8
    """

    _instance: Optional['ConfigurationManager'] = None

    def __new__(cls, config_path: Optional[str] = None) -> 'ConfigurationManager':
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self, config_path: Optional[str] = None) -> None:
        """
        Args:
            config_path: Settings file. Defaults to $WORKORDER_CONFIG, then
                         config/settings.yaml.
        """
        if self._initialized:
            return

        config_path = config_path or os.environ.get("WORKORDER_CONFIG")
        self.config_path = Path(config_path) if config_path else Path(__file__).parent / "settings.yaml"
        self.overrides: List[str] = []

        self._load_config()
        self._initialized = True

    def _load_config(self) -> None:
        """
        Raises:
            FileNotFoundError: If the settings file doesn't exist.
            ValueError: If a value is outside its allowed range.
        """
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        with open(self.config_path, 'r', encoding='utf-8') as f:
            self._config: Dict[str, Any] = yaml.safe_load(f) or {}

        self.overrides = self._apply_env_overrides(os.environ)
        self._resolve_paths()
        self._validate()

    def _apply_env_overrides(self, environ) -> List[str]:
        applied = []
        for name, raw in sorted(environ.items()):
            if not name.startswith(ENV_PREFIX):
                continue
            keys = [part.lower() for part in name[len(ENV_PREFIX):].split("__") if part]
            if not keys:
                continue

            node = self._config
            for k in keys[:-1]:
                if not isinstance(node.get(k), dict):
                    node[k] = {}
                node = node[k]
            node[keys[-1]] = yaml.safe_load(raw) if raw.strip() else raw
            applied.append(".".join(keys))
        return applied

    def _resolve_paths(self) -> None:
        project_root = Path(__file__).parent.parent

        for key in _PATH_KEYS:
            value = self.get(key)
            if value and not Path(value).is_absolute():
                self._set(key, str(project_root / value))

    def _validate(self) -> None:
        problems = []
        for key, (low, high) in _RANGE_RULES.items():
            value = self.get(key)
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                problems.append(f"{key} must be a number, got {value!r}")
            elif (low is not None and value < low) or (high is not None and value > high):
                bounds = f"[{low}, {high if high is not None else 'inf'}]"
                problems.append(f"{key}={value} outside {bounds}")

        if problems:
            raise ValueError(f"Invalid configuration in {self.config_path}: " + "; ".join(problems))

    def _set(self, key: str, value: Any) -> None:
        *parents, leaf = key.split('.')
        node = self._config
        for k in parents:
            node = node[k]
        node[leaf] = value

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a value by dot-notation key, e.g. "image.main.max_width".

        Returns default when any part of the path is missing.
        """
        value = self._config
        try:
            for k in key.split('.'):
                value = value[k]
            return value
        except (KeyError, TypeError):
            return default

    def get_all(self) -> Dict[str, Any]:
        return self._config.copy()

    def reload(self) -> None:
        self._load_config()

    @classmethod
    def reset(cls) -> None:
        """Drop the shared instance so the next call reloads from disk."""
        cls._instance = None


def get_config(key: str, default: Any = None) -> Any:
    """Read one value from the shared configuration."""
    return ConfigurationManager().get(key, default)


__all__ = ['ConfigurationManager', 'get_config', 'ENV_PREFIX']
