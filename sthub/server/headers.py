"""Custom response headers for the static and configuration hubs.

``global.headers`` apply to every response; ``hubs.static.headers`` and
``hubs.configuration.headers`` are merged on top for their hub. Blank
entries are dropped, and names or values that cannot go on the wire are
replaced by placeholders so a typo never breaks a response.
"""

from typing import Any, Dict, List, Mapping, Optional, Tuple

from sthub.core.constants import ConfigKey
from sthub.core.logging import Logger, get_logger
from sthub.core.validators import is_header_name, is_header_value

DEFAULT_HEADER_NAME = "x-unknown-header"
DEFAULT_HEADER_VALUE = "unknown-value"

HeaderList = List[Tuple[str, str]]


def merge_headers(*layers: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    """Merge header mappings; later layers win, names compare case-insensitively."""
    merged: Dict[str, Tuple[str, str]] = {}
    for layer in layers:
        for name, value in (layer or {}).items():
            name = str(name)
            merged[name.strip().lower()] = (name, "" if value is None else str(value))
    return dict(merged.values())


def sanitize_headers(headers: Mapping[str, str], logger: Optional[Logger] = None) -> HeaderList:
    """Turn a merged mapping into wire-safe (name, value) pairs.

    Args:
        headers: Merged header mapping
        logger: Logger for skipped and replaced entries

    Returns:
        Header pairs in insertion order
    """
    logger = logger or get_logger("sthub.server")
    result: Dict[str, Tuple[str, str]] = {}

    for name, value in headers.items():
        name, value = name.strip(), value.strip()
        if not name or not value:
            logger.warning("Skipping invalid header", header=repr(name), value=repr(value))
            continue

        if not is_header_name(name):
            logger.warning("Invalid header name replaced", header=repr(name))
            name = DEFAULT_HEADER_NAME
        if not is_header_value(value):
            logger.warning("Invalid header value replaced", header=name)
            value = DEFAULT_HEADER_VALUE

        result[name.lower()] = (name, value)

    return list(result.values())


class HeaderPolicy:
    """Precomputed header lists per hub."""

    def __init__(
        self,
        global_headers: Optional[Mapping[str, Any]] = None,
        static_headers: Optional[Mapping[str, Any]] = None,
        configuration_headers: Optional[Mapping[str, Any]] = None,
        logger: Optional[Logger] = None,
    ):
        """Initialize header policy.

        Args:
            global_headers: Headers for every response
            static_headers: Extra headers for the static hub
            configuration_headers: Extra headers for the configuration endpoint
            logger: Logger for skipped and replaced entries
        """
        self.global_headers = sanitize_headers(merge_headers(global_headers), logger)
        self.static_headers = sanitize_headers(
            merge_headers(global_headers, static_headers), logger
        )
        self.configuration_headers = sanitize_headers(
            merge_headers(global_headers, configuration_headers), logger
        )

    @classmethod
    def from_config(
        cls, config: Mapping[str, Any], logger: Optional[Logger] = None
    ) -> "HeaderPolicy":
        """Build from the merged hub configuration."""
        hubs = config.get(ConfigKey.HUBS) or {}
        return cls(
            global_headers=(config.get(ConfigKey.GLOBAL) or {}).get(ConfigKey.HEADERS),
            static_headers=(hubs.get(ConfigKey.STATIC) or {}).get(ConfigKey.HEADERS),
            configuration_headers=(hubs.get(ConfigKey.CONFIGURATION) or {}).get(ConfigKey.HEADERS),
            logger=logger,
        )
