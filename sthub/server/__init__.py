"""STHub HTTP Shell.

This package serves the two hubs over HTTP:
- HubServer: threaded server with hot-swappable settings
- HubRequestHandler: routing, rewrite execution and file delivery
- HeaderPolicy: custom response headers per hub
- ErrorPages: HTML status pages

Usage:
    from sthub.server import HubServer, HubSettings

    server = HubServer(HubSettings.from_config(config), engine, cache, probe)
    server.start()
"""

from sthub.server.handler import HubRequestHandler
from sthub.server.headers import HeaderPolicy
from sthub.server.hub import HubServer, HubServerError, HubSettings
from sthub.server.pages import ErrorPages

__all__ = [
    "ErrorPages",
    "HeaderPolicy",
    "HubRequestHandler",
    "HubServer",
    "HubServerError",
    "HubSettings",
]
