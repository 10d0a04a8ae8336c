"""
STHub Core: Input Validators.

This module provides validation for the hub configuration, custom response
headers and the mapping of request paths onto the document root.
"""
import os
import re
from typing import Any, Dict, Mapping, Optional

from sthub.core.constants import ENV_TREE_SEPARATOR, ConfigKey, ErrorCode, Limits

# RFC 7230 token characters
_HEADER_NAME_RE = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")
# Visible ASCII, space and tab; no CR/LF or other controls
_HEADER_VALUE_RE = re.compile(r"^[\t\x20-\x7e\x80-\xff]*$")


class ValidationError(Exception):
    """Base exception for validation errors."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.INVALID_INPUT):
        """Initialize ValidationError.

        Args:
            message: Error message
            error_code: Associated error code
        """
        super().__init__(message)
        self.error_code = error_code


def validate_config(config: Dict[str, Any]) -> bool:
    """Validate STHub configuration structure.

    Only the shape of known keys is checked; unknown keys are ignored so
    configuration files can carry extra sections.

    Args:
        config: Merged configuration dictionary

    Returns:
        True if valid

    Raises:
        ValidationError: If configuration is invalid
    """
    if not isinstance(config, dict):
        raise ValidationError("Configuration must be a dictionary")

    network = _section(config, ConfigKey.NETWORK)
    if ConfigKey.PORT in network:
        validate_port(network[ConfigKey.PORT])
    if ConfigKey.HOST in network and not isinstance(network[ConfigKey.HOST], str):
        raise ValidationError(f"network.host must be a string: {network[ConfigKey.HOST]!r}")

    global_section = _section(config, ConfigKey.GLOBAL)
    validate_headers(global_section.get(ConfigKey.HEADERS), "global.headers")

    hubs = _section(config, ConfigKey.HUBS)
    static = _section(hubs, ConfigKey.STATIC, "hubs.static")
    if static:
        validate_static_hub(static)

    configuration = _section(hubs, ConfigKey.CONFIGURATION, "hubs.configuration")
    if configuration:
        validate_configuration_hub(configuration)

    cache = _section(config, ConfigKey.CACHE)
    if ConfigKey.CACHE_TTL in cache:
        ttl = cache[ConfigKey.CACHE_TTL]
        if isinstance(ttl, bool) or not isinstance(ttl, (int, float)) or ttl <= 0:
            raise ValidationError(f"cache.ttl_seconds must be a positive number: {ttl!r}")

    return True


def _section(config: Mapping[str, Any], key: str, label: Optional[str] = None) -> Dict[str, Any]:
    value = config.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValidationError(f"{label or key} must be a mapping")
    return value


def validate_port(port: Any) -> bool:
    """Validate a TCP port number.

    Raises:
        ValidationError: If port is not an integer within 1-65535
    """
    if isinstance(port, bool) or not isinstance(port, int):
        raise ValidationError(f"network.port must be an integer: {port!r}")
    if not Limits.MIN_PORT <= port <= Limits.MAX_PORT:
        raise ValidationError(f"network.port out of range: {port}")
    return True


def validate_static_hub(static: Dict[str, Any]) -> bool:
    """Validate the ``hubs.static`` section."""
    path = static.get(ConfigKey.PATH)
    if path is not None and (not isinstance(path, str) or not path):
        raise ValidationError(f"hubs.static.path must be a non-empty string: {path!r}")

    validate_remote_path(static.get(ConfigKey.REMOTE_PATH), "hubs.static.remote_path")

    document = static.get(ConfigKey.DEFAULT_DOCUMENT)
    if document is not None:
        if not isinstance(document, str) or not document or "/" in document:
            raise ValidationError(f"hubs.static.default_document must be a file name: {document!r}")

    rules = static.get(ConfigKey.REWRITE_RULES)
    if rules is not None and not isinstance(rules, str):
        raise ValidationError("hubs.static.rewrite_rules must be a text block")

    validate_headers(static.get(ConfigKey.HEADERS), "hubs.static.headers")
    return True


def validate_configuration_hub(configuration: Dict[str, Any]) -> bool:
    """Validate the ``hubs.configuration`` section."""
    validate_remote_path(configuration.get(ConfigKey.REMOTE_PATH), "hubs.configuration.remote_path")
    validate_headers(configuration.get(ConfigKey.HEADERS), "hubs.configuration.headers")

    cache = configuration.get("cache")
    if cache is not None and not isinstance(cache, bool):
        raise ValidationError(f"hubs.configuration.cache must be boolean: {cache!r}")

    providers = _section(configuration, ConfigKey.PROVIDERS, "hubs.configuration.providers")
    env = _section(providers, ConfigKey.ENV, "hubs.configuration.providers.env")
    if ConfigKey.PREFIX in env:
        validate_env_prefix(env[ConfigKey.PREFIX])
    return True


def validate_remote_path(remote_path: Any, label: str) -> bool:
    """Validate a mount prefix; None means "use the default"."""
    if remote_path is None:
        return True
    if not isinstance(remote_path, str) or not remote_path.startswith("/"):
        raise ValidationError(f"{label} must be an absolute URL path: {remote_path!r}")
    return True


def validate_env_prefix(prefix: Any) -> bool:
    """Validate an environment provider prefix (without the trailing separator)."""
    if not isinstance(prefix, str) or not prefix:
        raise ValidationError(f"Environment prefix must be a non-empty string: {prefix!r}")
    if ENV_TREE_SEPARATOR in prefix:
        raise ValidationError(
            f"Environment prefix must not contain '{ENV_TREE_SEPARATOR}': {prefix}"
        )
    return True


def validate_headers(headers: Any, label: str = "headers") -> bool:
    """Validate that ``headers`` is a mapping of strings (None is allowed)."""
    if headers is None:
        return True
    if not isinstance(headers, dict):
        raise ValidationError(f"{label} must be a mapping")
    for key, value in headers.items():
        if not isinstance(key, str) or not isinstance(value, (str, int, float)):
            raise ValidationError(f"{label} entries must be strings: {key!r}")
    return True


def is_header_name(name: str) -> bool:
    """Return True if ``name`` is a valid HTTP header field name."""
    return bool(_HEADER_NAME_RE.fullmatch(name))


def is_header_value(value: str) -> bool:
    """Return True if ``value`` carries no control characters."""
    return bool(_HEADER_VALUE_RE.fullmatch(value))


def safe_join(root: str, url_path: str) -> Optional[str]:
    """Map a URL path onto a real path under ``root``.

    Args:
        root: Document root directory
        url_path: Path relative to the mount prefix (leading "/" allowed)

    Returns:
        Normalized real path, or None if the path escapes ``root``,
        contains NUL bytes or exceeds the path limit
    """
    if "\x00" in url_path or len(url_path) > Limits.MAX_PATH_LENGTH:
        return None

    root = os.path.abspath(root)
    candidate = os.path.normpath(os.path.join(root, url_path.lstrip("/")))

    if candidate != root and not candidate.startswith(root.rstrip(os.sep) + os.sep):
        return None
    return candidate
