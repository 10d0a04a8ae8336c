"""STHub Core - Shared utilities and infrastructure.

Import specific functions from submodules:
    from sthub.core.cache import CacheManager
    from sthub.core.config import ConfigManager
    from sthub.core import constants
    from sthub.core.logging import Logger
    from sthub.core import validators
"""

from sthub.core import (
    cache,
    config,
    constants,
    logging,
    validators,
)

__all__ = [
    "cache",
    "config",
    "constants",
    "logging",
    "validators",
]
