#!/usr/bin/env python3
"""Layered configuration manager with hot-reload for STHub.

This module provides configuration management with:
- 6-level precedence hierarchy
- YAML configuration files
- Environment variable overrides (STHUB_CONFIG__SECTION__KEY=value)
- File watching for changes (drives rewrite-rule hot-reload)
- Thread-safe operations

Example:
    >>> config = ConfigManager()
    >>> config.load_file("conf.yaml")
    >>> config.get("network.port", default=8080)
    >>> config.add_watcher(on_config_change)
    >>> config.watch_file("conf.yaml")
"""

import copy
import os
import threading
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Set

import yaml

from sthub.core.constants import CONFIG_ENV_PREFIX, DEFAULT_CONFIG, ErrorCode
from sthub.core.logging import get_logger


class ConfigSource(Enum):
    """Configuration source precedence levels."""

    COMPILED_DEFAULTS = 1  # Lowest precedence
    SYSTEM_CONFIG = 2
    USER_CONFIG = 3
    ENVIRONMENT = 4
    CLI_ARGS = 5
    RUNTIME = 6  # Highest precedence


class ConfigError(Exception):
    """Configuration error."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.INVALID_INPUT):
        self.message = message
        self.error_code = error_code
        super().__init__(message)


def deep_merge(base: Dict[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    """Deep merge ``override`` into a copy of ``base``.

    Nested mappings are merged key by key; any other value in ``override``
    replaces the one in ``base``.
    """
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, Mapping):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


class ConfigManager:
    """Thread-safe layered configuration manager.

    Manages configuration from multiple sources with precedence:
    1. Compiled defaults (lowest)
    2. System config (/etc/sthub/conf.yaml)
    3. User config (--configuration-path)
    4. Environment variables (STHUB_CONFIG__*)
    5. CLI arguments
    6. Runtime updates (highest)
    """

    SYSTEM_CONFIG_DIR = "/etc/sthub"

    def __init__(
        self, config_file: Optional[str] = None, environ: Optional[Mapping[str, str]] = None
    ):
        """Initialize configuration manager.

        Args:
            config_file: Optional config file to load
            environ: Environment mapping to read overrides from (os.environ if None)
        """
        self._config: Dict[ConfigSource, Dict[str, Any]] = {}
        self._lock = threading.RLock()
        self._watchers: List[Callable[[Dict[str, Any]], None]] = []
        self._watch_thread: Optional[threading.Thread] = None
        self._watch_files: Set[str] = set()
        self._file_mtimes: Dict[str, float] = {}
        self._stop_watching = threading.Event()
        self._logger = get_logger("sthub.config")

        self._config[ConfigSource.COMPILED_DEFAULTS] = copy.deepcopy(DEFAULT_CONFIG)

        if config_file:
            self.load_file(config_file)

        self._load_environment(os.environ if environ is None else environ)

    def _source_for(self, file_path: str) -> ConfigSource:
        if file_path.startswith(self.SYSTEM_CONFIG_DIR):
            return ConfigSource.SYSTEM_CONFIG
        return ConfigSource.USER_CONFIG

    def load_file(self, file_path: str, source: Optional[ConfigSource] = None) -> None:
        """Load configuration from YAML file.

        Args:
            file_path: Path to YAML config file
            source: Configuration source level (derived from the path if None)

        Raises:
            ConfigError: If file cannot be loaded or parsed
        """
        path = Path(file_path).expanduser().resolve()

        if not path.exists():
            raise ConfigError(f"Config file not found: {file_path}", ErrorCode.NOT_FOUND)

        if source is None:
            source = self._source_for(str(path))

        try:
            with open(path, "r", encoding="utf-8") as f:
                config_data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"YAML parse error in {file_path}: {e}", ErrorCode.INVALID_INPUT)
        except OSError as e:
            raise ConfigError(f"Error loading config {file_path}: {e}", ErrorCode.INTERNAL_ERROR)

        if not isinstance(config_data, dict):
            raise ConfigError(f"Invalid config format in {file_path}", ErrorCode.INVALID_INPUT)

        with self._lock:
            self._config[source] = config_data
            self._file_mtimes[str(path)] = path.stat().st_mtime

    def load_dict(
        self, config_data: Dict[str, Any], source: ConfigSource = ConfigSource.RUNTIME
    ) -> None:
        """Load configuration from dictionary.

        Args:
            config_data: Configuration dictionary
            source: Configuration source level
        """
        with self._lock:
            self._config[source] = copy.deepcopy(config_data)

    def _load_environment(self, environ: Mapping[str, str]) -> None:
        """Load overrides from STHUB_CONFIG__SECTION__KEY=value variables."""
        env_config: Dict[str, Any] = {}

        for key, value in environ.items():
            if not key.startswith(CONFIG_ENV_PREFIX):
                continue

            parts = [p.lower() for p in key[len(CONFIG_ENV_PREFIX):].split("__") if p]
            if not parts:
                continue

            current = env_config
            for part in parts[:-1]:
                if not isinstance(current.get(part), dict):
                    current[part] = {}
                current = current[part]
            current[parts[-1]] = self._parse_env_value(value)

        if env_config:
            with self._lock:
                self._config[ConfigSource.ENVIRONMENT] = env_config

    def _parse_env_value(self, value: str) -> Any:
        """Parse environment variable value into bool, int, float or str."""
        if value.lower() in ("true", "yes", "on"):
            return True
        if value.lower() in ("false", "no", "off"):
            return False

        try:
            return int(value)
        except ValueError:
            pass

        try:
            return float(value)
        except ValueError:
            pass

        return value

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by key.

        Args:
            key: Dot-separated key path (e.g., "hubs.static.path")
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        with self._lock:
            for source in sorted(self._config.keys(), key=lambda s: s.value, reverse=True):
                value = self._get_nested(self._config[source], key)
                if value is not None:
                    return value

            return default

    def _get_nested(self, config: Dict[str, Any], key: str) -> Optional[Any]:
        current: Any = config
        for part in key.split("."):
            if not isinstance(current, dict) or part not in current:
                return None
            current = current[part]
        return current

    def set(self, key: str, value: Any, source: ConfigSource = ConfigSource.RUNTIME) -> None:
        """Set configuration value and notify watchers.

        Args:
            key: Dot-separated key path
            value: Value to set
            source: Configuration source level
        """
        with self._lock:
            current = self._config.setdefault(source, {})
            parts = key.split(".")
            for part in parts[:-1]:
                if not isinstance(current.get(part), dict):
                    current[part] = {}
                current = current[part]
            current[parts[-1]] = value

        self._notify_watchers()

    def get_all(self) -> Dict[str, Any]:
        """Get merged configuration from all sources.

        Returns:
            Merged configuration dictionary
        """
        with self._lock:
            merged: Dict[str, Any] = {}
            for source in sorted(self._config.keys(), key=lambda s: s.value):
                merged = deep_merge(merged, self._config[source])
            return merged

    def validate(self) -> bool:
        """Validate the merged configuration.

        Raises:
            ConfigError: If validation fails
        """
        from sthub.core.validators import ValidationError, validate_config

        try:
            return validate_config(self.get_all())
        except ValidationError as e:
            raise ConfigError(str(e), e.error_code)

    def reload(self) -> None:
        """Reload all file-based configurations and notify watchers."""
        with self._lock:
            files_to_reload = list(self._file_mtimes.keys())

        for file_path in files_to_reload:
            try:
                self.load_file(file_path)
            except ConfigError as e:
                self._logger.error("Config reload failed", file=file_path, error=e.message)

        self._notify_watchers()

    def watch_file(self, file_path: str, interval: float = 1.0) -> None:
        """Watch configuration file for changes.

        Args:
            file_path: Path to file to watch
            interval: Check interval in seconds
        """
        path = Path(file_path).expanduser().resolve()

        with self._lock:
            self._watch_files.add(str(path))
            self._file_mtimes.setdefault(str(path), path.stat().st_mtime if path.exists() else 0)

            if self._watch_thread is None or not self._watch_thread.is_alive():
                self._stop_watching.clear()
                self._watch_thread = threading.Thread(
                    target=self._watch_loop, args=(interval,), daemon=True, name="ConfigWatcher"
                )
                self._watch_thread.start()

    def _watch_loop(self, interval: float) -> None:
        while not self._stop_watching.is_set():
            with self._lock:
                files = list(self._watch_files)

            for file_path in files:
                if self._check_file(file_path):
                    self._notify_watchers()

            self._stop_watching.wait(interval)

    def _check_file(self, file_path: str) -> bool:
        """Reload ``file_path`` if its mtime moved; return True when reloaded."""
        path = Path(file_path)
        try:
            mtime = path.stat().st_mtime
        except OSError:
            return False

        if mtime <= self._file_mtimes.get(file_path, 0):
            return False

        try:
            self.load_file(file_path)
        except ConfigError as e:
            # Broken file: wait for its next change
            self._file_mtimes[file_path] = mtime
            self._logger.error(
                "Config file changed but could not be loaded", file=file_path, error=e.message
            )
            return False

        self._logger.info("Config file reloaded", file=file_path)
        return True

    def stop_watching(self) -> None:
        """Stop file watching."""
        self._stop_watching.set()
        if self._watch_thread and self._watch_thread is not threading.current_thread():
            self._watch_thread.join(timeout=2.0)

    def add_watcher(self, callback: Callable[[Dict[str, Any]], None]) -> None:
        """Add configuration change watcher.

        Args:
            callback: Function called with merged config on changes
        """
        with self._lock:
            self._watchers.append(callback)

    def remove_watcher(self, callback: Callable[[Dict[str, Any]], None]) -> None:
        """Remove configuration change watcher."""
        with self._lock:
            if callback in self._watchers:
                self._watchers.remove(callback)

    def _notify_watchers(self) -> None:
        merged = self.get_all()
        with self._lock:
            watchers = list(self._watchers)

        for watcher in watchers:
            try:
                watcher(merged)
            except Exception as e:
                self._logger.exception("Config watcher failed", e)

    def clear(self, source: Optional[ConfigSource] = None) -> None:
        """Clear configuration.

        Args:
            source: Specific source to clear, or None for all except defaults
        """
        with self._lock:
            if source:
                if source != ConfigSource.COMPILED_DEFAULTS:
                    self._config.pop(source, None)
                return

            for s in [s for s in self._config if s != ConfigSource.COMPILED_DEFAULTS]:
                del self._config[s]
