"""Configuration management system"""

import dataclasses
from pathlib import Path
from typing import Any, Optional, TypeVar
import yaml

T = TypeVar("T")


class Config:
    """Centralized configuration manager with dot-notation access."""

    _instance: Optional["Config"] = None
    _config: dict = {}

    def __new__(cls, config_path: Optional[str] = None):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self, config_path: Optional[str] = None):
        if self._initialized and config_path is None:
            return

        self._load(config_path or self.default_path())
        self._initialized = True

    @staticmethod
    def default_path() -> str:
        """Find config.yaml next to the package or in a parent directory."""
        current = Path(__file__).parent
        for _ in range(5):
            config_file = current / "config.yaml"
            if config_file.exists():
                return str(config_file)
            current = current.parent

        raise FileNotFoundError("config.yaml not found")

    def _load(self, config_path: str) -> None:
        with open(config_path, "r") as f:
            self._config = yaml.safe_load(f) or {}
        self._config_path = config_path

    def reload(self) -> None:
        """Re-read the file, dropping runtime set() calls."""
        self._load(self._config_path)

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get config value using dot notation.

        Example:
            config.get("retargeting.visibility_threshold", 0.5)
            config.get("smoothing.outlier_threshold")
        """
        value = self._config
        for k in key.split("."):
            if not isinstance(value, dict) or k not in value:
                return default
            value = value[k]
        return value

    def set(self, key: str, value: Any) -> None:
        """Set config value using dot notation (runtime only, not persisted)."""
        keys = key.split(".")
        section = self._config
        for k in keys[:-1]:
            if not isinstance(section.get(k), dict):
                section[k] = {}
            section = section[k]
        section[keys[-1]] = value

    def save(self, path: Optional[str] = None) -> None:
        with open(path or self._config_path, "w") as f:
            yaml.dump(self._config, f, default_flow_style=False)

    @property
    def path(self) -> str:
        return self._config_path

    def section(self, name: str) -> dict:
        """Top-level section; empty when missing or null in the file."""
        return self._config.get(name) or {}

    def fill(self, defaults: T, section: str) -> T:
        """
        Copy of a settings dataclass with fields overridden from a section.

        Each value is coerced to the type of its default, so a YAML ``1``
        lands as ``1.0`` in a float field. Keys without a matching field
        are ignored.
        """
        values = self.section(section)
        overrides = {
            field.name: type(getattr(defaults, field.name))(values[field.name])
            for field in dataclasses.fields(defaults)
            if field.name in values
        }
        return dataclasses.replace(defaults, **overrides)

    @property
    def logging(self) -> dict:
        return self.section("logging")

    @property
    def pose_filter(self) -> dict:
        return self.section("pose_filter")

    @property
    def pose_mapping(self) -> dict:
        return self.section("pose_mapping")

    @property
    def smoothing(self) -> dict:
        return self.section("smoothing")

    @property
    def root_motion(self) -> dict:
        return self.section("root_motion")

    @property
    def retargeting(self) -> dict:
        return self.section("retargeting")
