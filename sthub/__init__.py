"""STHub - lightweight HTTP delivery hub.

Serves static assets through an Apache mod_rewrite style routing engine and
exposes environment-derived runtime configuration as JSON.
"""

from sthub.core.constants import STHUB_VERSION

__version__ = STHUB_VERSION

__all__ = ["__version__"]
