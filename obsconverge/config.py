"""
Configuration management for obsconverge.

Loads and validates the operator's config.yaml and the desired
observability spec. Config lives in OBSCONVERGE_HOME (default
~/.obsconverge).
"""

import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from obsconverge.schemas import ObservabilitySpec


class ConfigError(Exception):
    """Configuration validation error."""
    pass


DEFAULT_CONFIG: Dict[str, Any] = {
    "logging": {
        "level": "INFO",
        "format": "pretty",
        "console": True,
        "output": None,
    },
    "reconcile": {
        "conflict_retries": 3,
        "tick_timeout_seconds": 60,
        "requeue_in_progress_seconds": 10,
        "resync_seconds": 300,
        "backoff_base_seconds": 5,
        "backoff_multiplier": 2.0,
        "backoff_max_seconds": 300,
        "fatal_backoff_seconds": 900,
    },
    "status": {
        "path": "status.json",
    },
    "store": {
        "backend": "kubernetes",
        "kubeconfig": None,
        "context": None,
        "request_timeout_seconds": 30,
    },
}

STORE_BACKENDS = ("kubernetes", "memory")
LOG_FORMATS = ("structured", "pretty")


def get_obsconverge_home() -> Path:
    """Get the obsconverge home directory."""
    return Path(os.environ.get("OBSCONVERGE_HOME", Path.home() / ".obsconverge")).expanduser()


def _merge(defaults: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(defaults)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class OperatorConfig:
    """Complete operator configuration."""

    def __init__(self, data: Optional[Dict[str, Any]] = None, base_dir: Optional[Path] = None):
        self.raw_config = _merge(DEFAULT_CONFIG, data or {})
        self.base_dir = base_dir or get_obsconverge_home()

        self.logging = self.raw_config["logging"]
        self.reconcile = self.raw_config["reconcile"]
        self.status = self.raw_config["status"]
        self.store = self.raw_config["store"]

        self.validate()

    @classmethod
    def from_file(cls, config_path: Path) -> "OperatorConfig":
        """Load and parse a YAML configuration file."""
        data = _load_yaml(config_path, "Configuration")
        return cls(data, base_dir=config_path.parent)

    # Reconcile behaviour

    def get_conflict_retries(self) -> int:
        return int(self.reconcile["conflict_retries"])

    def get_tick_timeout(self) -> Optional[float]:
        timeout = self.reconcile.get("tick_timeout_seconds")
        return float(timeout) if timeout else None

    # Status persistence

    def get_status_path(self) -> Path:
        """Status file path, relative paths resolved against the config directory."""
        path = Path(self.status["path"]).expanduser()
        if not path.is_absolute():
            path = self.base_dir / path
        return path

    # Logging

    def get_log_file_path(self) -> Optional[Path]:
        """Get log file path with date interpolation."""
        output = self.logging.get("output")
        if not output:
            return None
        output = output.replace("{date}", datetime.now().strftime("%Y-%m-%d"))
        path = Path(output).expanduser()
        return path if path.is_absolute() else self.base_dir / path

    def get_log_level(self) -> str:
        return str(self.logging.get("level", "INFO")).upper()

    def get_log_format(self) -> str:
        return self.logging.get("format", "pretty")

    def should_log_to_console(self) -> bool:
        return bool(self.logging.get("console", True))

    # Store

    def get_store_backend(self) -> str:
        return self.store["backend"]

    def validate(self) -> None:
        """Validate entire configuration."""
        if self.store.get("backend") not in STORE_BACKENDS:
            raise ConfigError(
                f"store.backend must be one of {STORE_BACKENDS}, got {self.store.get('backend')!r}"
            )
        if self.logging.get("format") not in LOG_FORMATS:
            raise ConfigError(
                f"logging.format must be one of {LOG_FORMATS}, got {self.logging.get('format')!r}"
            )
        if self.get_log_level() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ConfigError(f"logging.level is not a valid level: {self.logging.get('level')!r}")

        try:
            retries = int(self.reconcile["conflict_retries"])
            numbers = {
                key: float(self.reconcile[key])
                for key in (
                    "requeue_in_progress_seconds",
                    "resync_seconds",
                    "backoff_base_seconds",
                    "backoff_multiplier",
                    "backoff_max_seconds",
                    "fatal_backoff_seconds",
                )
            }
        except (TypeError, ValueError) as e:
            raise ConfigError(f"reconcile settings must be numeric: {e}")

        if retries < 1:
            raise ConfigError("reconcile.conflict_retries must be at least 1")
        if any(value < 0 for value in numbers.values()):
            raise ConfigError("reconcile delays must not be negative")
        if numbers["backoff_multiplier"] < 1:
            raise ConfigError("reconcile.backoff_multiplier must be at least 1")
        if numbers["backoff_base_seconds"] > numbers["backoff_max_seconds"]:
            raise ConfigError("reconcile.backoff_base_seconds exceeds backoff_max_seconds")

    def to_dict(self) -> Dict[str, Any]:
        return self.raw_config

    def __repr__(self) -> str:
        return f"OperatorConfig(backend={self.get_store_backend()}, status={self.get_status_path()})"


def _load_yaml(path: Path, what: str) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"{what} file not found: {path}")

    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax in {path}: {e}")

    if not data:
        raise ConfigError(f"{what} file is empty: {path}")
    if not isinstance(data, dict):
        raise ConfigError(f"{what} file must contain a mapping: {path}")
    return data


def load_config(config_path: Optional[Path] = None) -> OperatorConfig:
    """
    Load operator configuration from YAML file.

    Args:
        config_path: Path to config file. Defaults to $OBSCONVERGE_HOME/config.yaml

    Returns:
        OperatorConfig instance

    Raises:
        ConfigError: If config is invalid or missing
    """
    if config_path is None:
        config_path = get_obsconverge_home() / "config.yaml"
    return OperatorConfig.from_file(Path(config_path))


def load_spec(spec_path: Path) -> ObservabilitySpec:
    """
    Load the desired observability spec from YAML.

    Raises:
        ConfigError: If the file is missing or not YAML
        PermanentError: If the spec is malformed
    """
    data = _load_yaml(Path(spec_path), "Observability spec")
    # accept either a bare spec or a manifest-style document with a spec block
    if "spec" in data and isinstance(data["spec"], dict):
        metadata = data.get("metadata") or {}
        data = {"name": metadata.get("name", ""), "namespace": metadata.get("namespace", ""), **data["spec"]}
    return ObservabilitySpec.from_dict(data)
