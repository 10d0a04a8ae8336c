"""
STHub Core: Constants

This module provides system-wide constants, error codes and default configuration
shared by the rewrite engine, the HTTP shell and the configuration layer.
"""
from enum import Enum, IntEnum


# Version information
STHUB_VERSION = "1.0.0"
SERVER_SOFTWARE = f"sthub/{STHUB_VERSION}"


# Error codes (0-9 range)
class ErrorCode(IntEnum):
    """Standardized error codes for STHub operations."""

    SUCCESS = 0  # Operation completed successfully
    INVALID_INPUT = 1  # Bad path, invalid configuration
    NOT_FOUND = 2  # File or resource doesn't exist
    PERMISSION_DENIED = 3  # Request refused
    CONFLICT = 4  # Resource conflict (port in use)
    DEPENDENCY_ERROR = 5  # Missing dependency
    INTERNAL_ERROR = 6  # Bug in STHub or a bad rewrite at run time
    TIMEOUT = 7  # Operation timed out
    RATE_LIMITED = 8  # Too many operations
    DEGRADED = 9  # Running with reduced functionality


# Resource limits and defaults
class Limits:
    """System resource limits and default values."""

    # Path limits
    MAX_PATH_LENGTH = 4096

    # Rewrite limits
    MAX_DIRECTIVE_LENGTH = 8192
    DEFAULT_REDIRECT_STATUS = 302
    MIN_REDIRECT_STATUS = 300
    MAX_REDIRECT_STATUS = 399
    MAX_REWRITE_PASSES = 10

    # Network defaults
    DEFAULT_HOST = "127.0.0.1"
    DEFAULT_PORT = 8080
    MIN_PORT = 1
    MAX_PORT = 65535

    # Cache configuration
    DEFAULT_CACHE_TTL_SECONDS = 5
    CACHE_MAX_ENTRIES = 10000
    CACHE_MAX_SIZE_BYTES = 16 * 1024 * 1024

    # File serving
    READ_CHUNK_SIZE = 64 * 1024


# Rewrite directive keywords (case-sensitive)
class Directive(Enum):
    """Directive kinds accepted in a rewrite block."""

    ENGINE = "RewriteEngine"
    CONDITION = "RewriteCond"
    RULE = "RewriteRule"


# Configuration keys
class ConfigKey:
    """Configuration key constants."""

    # Top-level keys
    NETWORK = "network"
    GLOBAL = "global"
    HUBS = "hubs"
    CACHE = "cache"
    LOGGING = "logging"

    # Network
    HOST = "host"
    PORT = "port"

    # Hubs
    STATIC = "static"
    CONFIGURATION = "configuration"
    PATH = "path"
    REMOTE_PATH = "remote_path"
    DEFAULT_DOCUMENT = "default_document"
    REWRITE_RULES = "rewrite_rules"
    HEADERS = "headers"
    PROVIDERS = "providers"
    ENV = "env"
    PREFIX = "prefix"

    # Cache configuration
    CACHE_ENABLED = "enabled"
    CACHE_TTL = "ttl_seconds"


ENV_TREE_SEPARATOR = "__"
CONFIG_ENV_PREFIX = "STHUB_CONFIG__"
DEFAULT_CONFIG_PATH = "conf.yaml"
DEFAULT_DOCUMENT = "index.html"
DEFAULT_STATIC_PATH = "/var/www/html"
DEFAULT_CONFIGURATION_REMOTE_PATH = "/env"
DEFAULT_ENV_PREFIX = "STHUB"

# Default configuration values
DEFAULT_CONFIG = {
    ConfigKey.NETWORK: {
        ConfigKey.HOST: Limits.DEFAULT_HOST,
        ConfigKey.PORT: Limits.DEFAULT_PORT,
    },
    ConfigKey.GLOBAL: {
        ConfigKey.HEADERS: {},
    },
    ConfigKey.HUBS: {
        ConfigKey.STATIC: {
            ConfigKey.PATH: DEFAULT_STATIC_PATH,
            ConfigKey.REMOTE_PATH: "/",
            ConfigKey.DEFAULT_DOCUMENT: DEFAULT_DOCUMENT,
            ConfigKey.REWRITE_RULES: None,
            ConfigKey.HEADERS: {},
        },
        ConfigKey.CONFIGURATION: {
            ConfigKey.REMOTE_PATH: DEFAULT_CONFIGURATION_REMOTE_PATH,
            "cache": False,
            ConfigKey.HEADERS: {},
            ConfigKey.PROVIDERS: {
                ConfigKey.ENV: {ConfigKey.PREFIX: DEFAULT_ENV_PREFIX},
            },
        },
    },
    ConfigKey.CACHE: {
        ConfigKey.CACHE_ENABLED: True,
        ConfigKey.CACHE_TTL: Limits.DEFAULT_CACHE_TTL_SECONDS,
    },
    ConfigKey.LOGGING: {
        "level": "INFO",
        "file": None,
    },
}
