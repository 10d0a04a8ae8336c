#!/usr/bin/env python3
"""HTTP delivery hub server.

This module runs the static hub and the configuration endpoint:
- HubSettings: the request-routing view of the merged configuration
- HubServer: threaded HTTP server running in a background thread

Settings and rule sets can be swapped while the server is running; each
request reads the references once.

Example:
    >>> from sthub.server.hub import HubServer, HubSettings
    >>> server = HubServer(HubSettings.from_config(config), engine, cache, probe)
    >>> server.start()
    >>> server.get_url()
    'http://127.0.0.1:8080'
"""

import http.server
import os
import threading
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Mapping, Optional

from sthub.core.cache import CacheManager
from sthub.core.constants import (
    DEFAULT_CONFIGURATION_REMOTE_PATH,
    DEFAULT_DOCUMENT,
    DEFAULT_ENV_PREFIX,
    DEFAULT_STATIC_PATH,
    ConfigKey,
    ErrorCode,
    Limits,
)
from sthub.core.logging import get_logger
from sthub.rewrite.engine import RewriteEngine
from sthub.rewrite.probe import FileProbe
from sthub.server.handler import HubRequestHandler
from sthub.server.headers import HeaderPolicy
from sthub.server.pages import ErrorPages


class HubServerError(Exception):
    """Exception raised when the hub server cannot start."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.INTERNAL_ERROR):
        self.message = message
        self.error_code = error_code
        super().__init__(message)


def normalize_prefix(prefix: Optional[str]) -> str:
    """Normalize a mount prefix: leading "/", no trailing "/" (except root)."""
    if not prefix:
        return "/"
    prefix = "/" + prefix.strip("/")
    return prefix


@dataclass(frozen=True)
class HubSettings:
    """Routing-relevant part of the configuration."""

    host: str = Limits.DEFAULT_HOST
    port: int = Limits.DEFAULT_PORT
    document_root: str = DEFAULT_STATIC_PATH
    static_prefix: str = "/"
    default_document: str = DEFAULT_DOCUMENT
    configuration_path: str = DEFAULT_CONFIGURATION_REMOTE_PATH
    configuration_cache: bool = False
    env_prefix: str = DEFAULT_ENV_PREFIX
    headers: HeaderPolicy = field(default_factory=HeaderPolicy, compare=False)

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "HubSettings":
        """Build settings from the merged configuration dictionary."""
        network = config.get(ConfigKey.NETWORK) or {}
        hubs = config.get(ConfigKey.HUBS) or {}
        static = hubs.get(ConfigKey.STATIC) or {}
        configuration = hubs.get(ConfigKey.CONFIGURATION) or {}
        env = (configuration.get(ConfigKey.PROVIDERS) or {}).get(ConfigKey.ENV) or {}

        return cls(
            host=network.get(ConfigKey.HOST) or Limits.DEFAULT_HOST,
            port=int(network.get(ConfigKey.PORT, Limits.DEFAULT_PORT)),
            document_root=os.path.abspath(static.get(ConfigKey.PATH) or DEFAULT_STATIC_PATH),
            static_prefix=normalize_prefix(static.get(ConfigKey.REMOTE_PATH)),
            default_document=static.get(ConfigKey.DEFAULT_DOCUMENT) or DEFAULT_DOCUMENT,
            configuration_path=(
                configuration.get(ConfigKey.REMOTE_PATH) or DEFAULT_CONFIGURATION_REMOTE_PATH
            ),
            configuration_cache=bool(configuration.get("cache", False)),
            env_prefix=env.get(ConfigKey.PREFIX) or DEFAULT_ENV_PREFIX,
            headers=HeaderPolicy.from_config(config),
        )

    def strip_prefix(self, path: str) -> Optional[str]:
        """Return ``path`` relative to the static mount, or None if outside it."""
        if self.static_prefix == "/":
            return path
        if path == self.static_prefix:
            return "/"
        if path.startswith(self.static_prefix + "/"):
            return path[len(self.static_prefix):]
        return None

    def add_prefix(self, path: str) -> str:
        """Re-prepend the static mount to a prefix-relative path."""
        if self.static_prefix == "/":
            return path
        return self.static_prefix + path


class _HubHTTPServer(http.server.ThreadingHTTPServer):
    daemon_threads = True
    hub: "HubServer"


class HubServer:
    """Threaded HTTP server for the static and configuration hubs."""

    def __init__(
        self,
        settings: HubSettings,
        engine: RewriteEngine,
        cache: CacheManager,
        probe: FileProbe,
        pages: Optional[ErrorPages] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        """Initialize hub server.

        Args:
            settings: Routing settings
            engine: Rewrite engine for the static hub
            cache: Cache manager (configuration payloads)
            probe: Filesystem probe given to rewrite conditions
            pages: Error page renderer
            environ: Environment for ``%{ENV:...}`` and the configuration
                endpoint (os.environ when None)
        """
        self.settings = settings
        self.engine = engine
        self.cache = cache
        self.probe = probe
        self.pages = pages or ErrorPages()
        self.environ = os.environ if environ is None else environ
        self.host = settings.host
        self.port = settings.port
        self.logger = get_logger("sthub.server")

        self.server: Optional[_HubHTTPServer] = None
        self.server_thread: Optional[threading.Thread] = None
        self.running = False

    def start(self) -> None:
        """Start serving in a background thread.

        Raises:
            HubServerError: If the listening socket cannot be opened
        """
        if self.running:
            self.logger.warning("Hub server already running")
            return

        try:
            self.server = _HubHTTPServer((self.host, self.port), HubRequestHandler)
        except OSError as e:
            raise HubServerError(
                f"Failed to listen on {self.host}:{self.port}: {e}", ErrorCode.CONFLICT
            )

        self.server.hub = self
        # Port 0 asks the OS for a free port
        self.port = self.server.server_address[1]

        self.server_thread = threading.Thread(
            target=self._run_server, daemon=True, name="HubServer"
        )
        self.server_thread.start()
        self.running = True

        self.logger.info(
            "Hub server started",
            url=self.get_url(),
            static_prefix=self.settings.static_prefix,
            document_root=self.settings.document_root,
            configuration_path=self.settings.configuration_path,
            mode=self.engine.mode,
        )

    def _run_server(self) -> None:
        try:
            self.server.serve_forever()
        except Exception as e:
            self.logger.exception("Hub server loop failed", e)
            self.running = False

    def stop(self) -> None:
        """Stop serving and close the listening socket."""
        if not self.running:
            return

        self.logger.info("Stopping hub server...")

        if self.server:
            self.server.shutdown()
            self.server.server_close()

        if self.server_thread:
            self.server_thread.join(timeout=5.0)

        self.running = False
        self.logger.info("Hub server stopped")

    def apply_config(self, config: Dict[str, Any]) -> None:
        """Publish new routing settings (host and port changes need a restart)."""
        settings = HubSettings.from_config(config)
        if (settings.host, settings.port) != (self.settings.host, self.settings.port):
            self.logger.warning(
                "Listening address change ignored until restart",
                host=settings.host,
                port=settings.port,
            )
            settings = replace(settings, host=self.settings.host, port=self.settings.port)
        self.settings = settings

    def get_url(self) -> str:
        """Get server base URL."""
        return f"http://{self.host}:{self.port}"

    def is_running(self) -> bool:
        return self.running
