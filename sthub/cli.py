#!/usr/bin/env python3
"""Command-line interface for STHub.

This module provides the CLI for running the delivery hub:
- Argument parsing and validation
- Layered configuration (YAML file, environment, command line)
- Logging setup
- Rewrite rule checking (--check)

Example:
    >>> from sthub.cli import parse_arguments
    >>> args = parse_arguments(["-c", "conf.yaml", "--port", "9000"])
"""

import argparse
import os
import sys
from typing import Any, Dict, List, Optional

from sthub.core.config import ConfigError, ConfigManager, ConfigSource
from sthub.core.constants import DEFAULT_CONFIG_PATH, STHUB_VERSION, ConfigKey, ErrorCode, Limits
from sthub.core.logging import Logger, configure_logging, get_logger
from sthub.rewrite.compiler import compile_rules
from sthub.rewrite.errors import RewriteCompileError

DESCRIPTION = "STHub - static asset and runtime configuration delivery hub"


class CLIError(Exception):
    """Exception raised for CLI-related errors."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.INVALID_INPUT):
        self.message = message
        self.error_code = error_code
        super().__init__(message)


def parse_arguments(args: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Args:
        args: Argument list to parse (defaults to sys.argv[1:])

    Returns:
        Parsed arguments namespace

    Raises:
        SystemExit: On invalid arguments or --help/--version
        CLIError: If argument values are inconsistent
    """
    parser = argparse.ArgumentParser(
        prog="sthub",
        description=DESCRIPTION,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Serve with ./conf.yaml
  sthub

  # Serve a directory on another port
  sthub -c /etc/sthub/conf.yaml --static-path /srv/www --port 9000

  # Check the rewrite rules of a configuration and exit
  sthub -c conf.yaml --check

  # Reload rewrite rules when the configuration file changes
  sthub -c conf.yaml --watch --debug
        """,
    )

    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"%(prog)s {STHUB_VERSION}",
    )

    parser.add_argument(
        "-c",
        "--configuration-path",
        metavar="FILE",
        type=str,
        default=None,
        help=f"Configuration file path (YAML format, default: {DEFAULT_CONFIG_PATH})",
    )

    # Network options
    net_group = parser.add_argument_group("network options")

    net_group.add_argument("--host", metavar="HOST", type=str, help="Listening address")

    net_group.add_argument("--port", metavar="PORT", type=int, help="Listening port")

    # Hub options
    hub_group = parser.add_argument_group("hub options")

    hub_group.add_argument(
        "--static-path",
        metavar="DIR",
        type=str,
        help="Document root of the static hub",
    )

    hub_group.add_argument(
        "--watch",
        action="store_true",
        help="Reload rewrite rules and headers when the configuration file changes",
    )

    hub_group.add_argument(
        "--check",
        action="store_true",
        help="Compile the configured rewrite rules and exit",
    )

    # Logging options
    log_group = parser.add_argument_group("logging options")

    log_group.add_argument("--debug", action="store_true", help="Enable debug logging")

    log_group.add_argument("--log-file", metavar="FILE", type=str, help="Rotating log file path")

    parsed = parser.parse_args(args)

    _validate_arguments(parsed)

    return parsed


def _validate_arguments(args: argparse.Namespace) -> None:
    """
    Validate parsed arguments.

    Raises:
        CLIError: If validation fails
    """
    if args.port is not None and not Limits.MIN_PORT <= args.port <= Limits.MAX_PORT:
        raise CLIError(f"Port out of range: {args.port}")

    if args.static_path is not None and not os.path.isdir(args.static_path):
        raise CLIError(f"Static path is not a directory: {args.static_path}")

    if args.configuration_path is not None:
        if not os.path.exists(args.configuration_path):
            raise CLIError(
                f"Configuration file does not exist: {args.configuration_path}",
                ErrorCode.NOT_FOUND,
            )
        if not os.path.isfile(args.configuration_path):
            raise CLIError(f"Configuration path is not a file: {args.configuration_path}")


def resolve_config_path(args: argparse.Namespace) -> Optional[str]:
    """Return the configuration file to load, or None when the default is absent."""
    if args.configuration_path:
        return args.configuration_path
    if os.path.isfile(DEFAULT_CONFIG_PATH):
        return DEFAULT_CONFIG_PATH
    return None


def build_config_from_args(args: argparse.Namespace) -> Dict[str, Any]:
    """
    Build the command-line configuration layer.

    Only options given on the command line appear in the result, so file
    values survive for everything else.

    Args:
        args: Parsed arguments namespace

    Returns:
        Partial configuration dictionary
    """
    config: Dict[str, Any] = {}

    network = {}
    if args.host is not None:
        network[ConfigKey.HOST] = args.host
    if args.port is not None:
        network[ConfigKey.PORT] = args.port
    if network:
        config[ConfigKey.NETWORK] = network

    if args.static_path is not None:
        static = {ConfigKey.PATH: os.path.abspath(args.static_path)}
        config[ConfigKey.HUBS] = {ConfigKey.STATIC: static}

    logging_config = {}
    if args.debug:
        logging_config["level"] = "DEBUG"
    if args.log_file:
        logging_config["file"] = args.log_file
    if logging_config:
        config[ConfigKey.LOGGING] = logging_config

    return config


def build_config_manager(
    args: argparse.Namespace, environ: Optional[Dict[str, str]] = None
) -> ConfigManager:
    """
    Load and validate the layered configuration.

    Args:
        args: Parsed arguments namespace
        environ: Environment for STHUB_CONFIG__* overrides (os.environ if None)

    Returns:
        Configuration manager with file, environment and CLI layers

    Raises:
        CLIError: If the file cannot be loaded or the result is invalid
    """
    config_manager = ConfigManager(environ=environ)

    config_path = resolve_config_path(args)
    try:
        if config_path:
            config_manager.load_file(config_path)
        config_manager.load_dict(build_config_from_args(args), ConfigSource.CLI_ARGS)
        config_manager.validate()
    except ConfigError as e:
        raise CLIError(e.message, e.error_code)

    return config_manager


def setup_logging(args: argparse.Namespace, config: Dict[str, Any]) -> Logger:
    """
    Setup logging based on arguments and configuration.

    Args:
        args: Parsed arguments namespace
        config: Merged configuration dictionary

    Returns:
        CLI logger instance
    """
    logging_config = config.get(ConfigKey.LOGGING) or {}
    log_level = "DEBUG" if args.debug else logging_config.get("level", "INFO")
    log_file = args.log_file or logging_config.get("file")

    try:
        configure_logging(log_level, log_file)
    except (KeyError, ValueError):
        raise CLIError(f"Invalid log level: {log_level}")
    except OSError as e:
        raise CLIError(f"Cannot open log file {log_file}: {e}")

    logger = get_logger("sthub.cli")
    if log_file:
        logger.info(f"Logging to file: {log_file}")
    return logger


def check_rules(config: Dict[str, Any]) -> int:
    """
    Compile the configured rewrite rules and report the result.

    Args:
        config: Merged configuration dictionary

    Returns:
        Exit code (0 if the rules compile or none are configured)
    """
    static = (config.get(ConfigKey.HUBS) or {}).get(ConfigKey.STATIC) or {}
    rules = static.get(ConfigKey.REWRITE_RULES)

    if rules is None or not rules.strip():
        print("No rewrite rules configured (try-files mode)")
        return 0

    try:
        rule_set = compile_rules(rules)
    except RewriteCompileError as e:
        print(f"Invalid rewrite rules: {e}", file=sys.stderr)
        return 1

    print(f"Rewrite rules OK: {len(rule_set)} rule groups ({len(rule_set.active_groups)} active)")
    return 0


def print_banner(logger: Logger) -> None:
    """
    Print startup banner with version information.

    Args:
        logger: Logger instance
    """
    logger.info("=" * 60)
    logger.info(f"STHub v{STHUB_VERSION}")
    logger.info(DESCRIPTION)
    logger.info("=" * 60)


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Handles argument parsing and configuration loading, then passes control
    to sthub.main for serving.

    Returns:
        Exit code (0 success, 1 error, 130 interrupted)
    """
    try:
        args = parse_arguments(argv)

        config_manager = build_config_manager(args)
        config = config_manager.get_all()

        if args.check:
            return check_rules(config)

        logger = setup_logging(args, config)
        print_banner(logger)

        from sthub.main import run_sthub

        return run_sthub(args, config_manager, logger)

    except CLIError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return 130

    except Exception as e:
        print(f"Unexpected error: {e}", file=sys.stderr)
        import traceback

        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
