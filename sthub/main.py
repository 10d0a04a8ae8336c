#!/usr/bin/env python3
"""Main entry point for the STHub delivery hub.

This module handles:
- Component initialization (cache, file probe, rewrite engine, HTTP server)
- Startup refusal when the rewrite rules do not compile
- Hot-reload of rules, headers and hub settings on configuration changes
- Signal handling for graceful shutdown
- Cleanup on exit

Example:
    >>> from sthub.main import run_sthub
    >>> run_sthub(args, config_manager, logger)
"""

import argparse
import signal
import sys
import threading
from typing import Any, Dict, Optional

from sthub.cli import resolve_config_path
from sthub.core.cache import CacheManager
from sthub.core.config import ConfigManager
from sthub.core.constants import ConfigKey
from sthub.core.logging import Logger
from sthub.core.validators import ValidationError, validate_config
from sthub.rewrite.engine import RewriteEngine
from sthub.rewrite.errors import RewriteCompileError
from sthub.rewrite.fallback import TryFiles
from sthub.rewrite.probe import CachingFileProbe, OsFileProbe
from sthub.server.hub import HubServer, HubServerError, HubSettings


def rewrite_rules_of(config: Dict[str, Any]) -> Optional[str]:
    """Return the configured directive block (None selects try-files mode)."""
    static = (config.get(ConfigKey.HUBS) or {}).get(ConfigKey.STATIC) or {}
    return static.get(ConfigKey.REWRITE_RULES)


class HubMain:
    """
    Main class for the delivery hub process.

    Handles component lifecycle, configuration reloads, and shutdown.
    """

    def __init__(self, args: argparse.Namespace, config_manager: ConfigManager, logger: Logger):
        """
        Initialize hub main controller.

        Args:
            args: Parsed command-line arguments
            config_manager: Loaded and validated configuration
            logger: Logger instance
        """
        self.args = args
        self.config_manager = config_manager
        self.logger = logger
        self.shutdown_event = threading.Event()

        # Components
        self.cache_manager: Optional[CacheManager] = None
        self.probe: Optional[CachingFileProbe] = None
        self.engine: Optional[RewriteEngine] = None
        self.server: Optional[HubServer] = None

    def initialize_components(self) -> None:
        """
        Initialize all hub components.

        Creates and configures:
        - CacheManager
        - CachingFileProbe
        - RewriteEngine (with its TryFiles fallback)
        - HubServer

        Raises:
            RewriteCompileError: If the configured rewrite rules do not compile
        """
        self.logger.info("Initializing components...")
        config = self.config_manager.get_all()

        self.logger.debug("Creating CacheManager")
        self.cache_manager = CacheManager.from_config(config.get(ConfigKey.CACHE) or {})

        self.logger.debug("Creating file probe")
        self.probe = CachingFileProbe(OsFileProbe(), self.cache_manager)

        settings = HubSettings.from_config(config)

        self.logger.debug("Creating RewriteEngine")
        try_files = TryFiles(settings.document_root, self.probe, settings.default_document)
        self.engine = RewriteEngine(try_files, rewrite_rules_of(config))

        self.logger.debug("Creating HubServer")
        self.server = HubServer(settings, self.engine, self.cache_manager, self.probe)

        self.logger.info("All components initialized successfully")

    def setup_signal_handlers(self) -> None:
        """
        Setup signal handlers for graceful shutdown.

        Handles:
        - SIGTERM: Graceful shutdown
        - SIGINT: Graceful shutdown (Ctrl+C)
        """
        if threading.current_thread() is not threading.main_thread():
            self.logger.debug("Not on the main thread, signal handlers skipped")
            return

        def signal_handler(signum, frame):
            """Handle shutdown signals."""
            sig_name = signal.Signals(signum).name
            self.logger.info(f"Received signal {sig_name}, shutting down...")
            self.shutdown_event.set()

        signal.signal(signal.SIGTERM, signal_handler)
        signal.signal(signal.SIGINT, signal_handler)

        self.logger.debug("Signal handlers registered")

    def setup_hot_reload(self) -> None:
        """Watch the configuration file when --watch was given."""
        if not getattr(self.args, "watch", False):
            return

        config_path = resolve_config_path(self.args)
        if config_path is None:
            self.logger.warning("No configuration file to watch")
            return

        self.config_manager.add_watcher(self._on_config_change)
        self.config_manager.watch_file(config_path)
        self.logger.info(f"Watching configuration file: {config_path}")

    def _on_config_change(self, config: Dict[str, Any]) -> None:
        """
        Apply a reloaded configuration.

        A configuration that fails validation is ignored. Rules that fail to
        compile are rejected and the running rule set stays in place; headers
        and hub settings are still refreshed.

        Args:
            config: New merged configuration
        """
        try:
            validate_config(config)
        except ValidationError as e:
            self.logger.error("Ignoring invalid configuration", error=str(e))
            return

        settings = HubSettings.from_config(config)

        self.engine.try_files = TryFiles(
            settings.document_root, self.probe, settings.default_document
        )
        try:
            self.engine.load(rewrite_rules_of(config))
        except RewriteCompileError as e:
            self.logger.error("Keeping previous rewrite rules", error=e.message)

        self.server.apply_config(config)
        self.probe.invalidate()

    def serve(self) -> int:
        """
        Start the HTTP server and wait for shutdown.

        Returns:
            Exit code (0 for success, non-zero for failure)
        """
        try:
            self.server.start()
        except HubServerError as e:
            self.logger.error(f"Hub server failed to start: {e.message}")
            return 1

        self.logger.info(f"Serving on {self.server.get_url()}")

        while not self.shutdown_event.is_set():
            if not self.server.is_running():
                self.logger.error("Hub server stopped unexpectedly")
                return 1
            self.shutdown_event.wait(0.5)

        return 0

    def request_shutdown(self) -> None:
        """Ask serve() to return."""
        self.shutdown_event.set()

    def cleanup(self) -> None:
        """
        Cleanup resources on shutdown.

        Performs:
        - Config watcher stop
        - Server shutdown
        - Cache flush
        """
        self.logger.info("Cleaning up...")

        self.config_manager.stop_watching()

        if self.server:
            try:
                self.server.stop()
            except Exception as e:
                self.logger.warning(f"Failed to stop server: {e}")

        if self.cache_manager:
            try:
                self.logger.debug(f"Final cache statistics: {self.cache_manager.get_stats()}")
                self.cache_manager.clear()
            except Exception as e:
                self.logger.warning(f"Failed to clear cache: {e}")

        self.logger.info("Cleanup complete")

    def run(self) -> int:
        """
        Run the hub main loop.

        Returns:
            Exit code (0 for success, non-zero for failure)
        """
        try:
            self.initialize_components()
            self.setup_signal_handlers()
            self.setup_hot_reload()
            return self.serve()

        except RewriteCompileError as e:
            self.logger.error(f"Refusing to start, invalid rewrite rules: {e.message}")
            return 1

        except KeyboardInterrupt:
            self.logger.info("Interrupted by user")
            return 130

        except Exception as e:
            self.logger.exception("Fatal error", e)
            return 1

        finally:
            self.cleanup()


def run_sthub(args: argparse.Namespace, config_manager: ConfigManager, logger: Logger) -> int:
    """
    Main entry point for running the hub.

    Args:
        args: Parsed command-line arguments
        config_manager: Loaded configuration
        logger: Logger instance

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    main = HubMain(args, config_manager, logger)
    return main.run()


def main():
    """Process entry point; delegates to the CLI."""
    from sthub.cli import main as cli_main

    sys.exit(cli_main())


if __name__ == "__main__":
    main()
