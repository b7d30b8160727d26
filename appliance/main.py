"""
Main entry point for the Market Appliance client.

Provides the command line interface used to register a worker with the
Market using a one-time code, to run the token refresh daemon, and to show
the state of the stored credentials.
"""

import sys
import json
import uuid
import signal
import asyncio
import argparse
import logging
from typing import List, Optional

from appliance.api_client import MarketAuthClient
from appliance.auth.token_manager import TokenManager
from appliance.auth.token_storage import TokenStorage
from appliance.config import ApplianceConfiguration
from shared.exceptions import (
    MarketAuthError, ConfigurationError, TokenStorageError, TokenParseError
)
from shared.logging_config import LogFormat, LogLevel, setup_logging, log_structured_error
from shared.models import utcnow

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILED = 1
EXIT_REGISTRATION_FAILED = 2
EXIT_CONFIG_ERROR = 3
EXIT_INTERRUPTED = 130


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="market-appliance",
        description="Market appliance credential manager",
        epilog="""
Examples:
  %(prog)s register 3f1c5e2a-...      # Register using the OTP from the Market
  %(prog)s daemon                     # Keep the stored tokens fresh
  %(prog)s status --json              # Show token expiry as JSON
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    config_group = parser.add_argument_group('Configuration')
    config_group.add_argument("--config", type=str, metavar="FILE",
                              help="Path to configuration file")
    config_group.add_argument("--market-uri", type=str, metavar="URL",
                              help="The URL to query the market on")
    config_group.add_argument("--repo", type=str, metavar="PATH",
                              help="Worker repo path holding the token file")

    output_group = parser.add_argument_group('Output')
    level_group = output_group.add_mutually_exclusive_group()
    level_group.add_argument("--debug", action="store_true", help="Enable debug logging")
    level_group.add_argument("--verbose", "-v", action="store_true", help="Enable verbose output")
    level_group.add_argument("--quiet", "-q", action="store_true", help="Suppress non-error output")
    output_group.add_argument("--log-format", choices=[f.value for f in LogFormat],
                              help="Log output format")
    output_group.add_argument("--log-file", type=str, metavar="FILE", help="Also log to FILE")

    subparsers = parser.add_subparsers(dest="command", required=True)

    register_parser = subparsers.add_parser(
        "register",
        help="Register this worker using the Market's OTP",
        description="Register this worker with the Market. The OTP from the Market "
                    "is the first argument that parses as a UUID."
    )
    register_parser.add_argument("args", nargs="*", metavar="OTP")

    subparsers.add_parser("daemon", help="Run the token refresh loop until interrupted")

    status_parser = subparsers.add_parser("status", help="Show stored token expiry")
    status_parser.add_argument("--json", action="store_true", help="Output status in JSON format")

    return parser.parse_args(argv)


def load_configuration(args: argparse.Namespace) -> ApplianceConfiguration:
    config = ApplianceConfiguration(args.config)
    config.set_override('market.uri', args.market_uri)
    config.set_override('worker.repo_path', args.repo)
    config.set_override('logging.format', args.log_format)
    config.set_override('logging.file', args.log_file)
    return config


def configure_logging(args: argparse.Namespace, config: ApplianceConfiguration) -> None:
    """Configure logging from command line arguments and configuration."""
    if args.debug:
        level = LogLevel.DEBUG
    elif args.verbose:
        level = LogLevel.INFO
    elif args.quiet or getattr(args, 'json', False):
        level = LogLevel.ERROR
    else:
        try:
            level = LogLevel(config.get_log_level())
        except ValueError:
            level = LogLevel.INFO

    try:
        log_format = LogFormat(config.get_log_format())
    except ValueError:
        log_format = LogFormat.STANDARD

    setup_logging(log_level=level, log_format=log_format, log_file=config.get_log_file())


def find_otp(candidates: List[str]) -> Optional[str]:
    """Return the first argument that parses as a UUID."""
    for value in candidates:
        try:
            return str(uuid.UUID(value))
        except ValueError:
            continue
    return None


def open_token_manager(config: ApplianceConfiguration) -> TokenManager:
    """Build the token manager from configuration."""
    storage = TokenStorage.open(config.get_repo_path())
    api_client = MarketAuthClient(config.get_market_uri(), timeout=config.get_timeout())
    return TokenManager(
        storage,
        api_client,
        poll_interval=config.get_poll_interval(),
        refresh_threshold=config.get_refresh_threshold()
    )


async def run_register(config: ApplianceConfiguration, otp: str) -> int:
    print(f"Repo: {config.get_repo_path()}")
    manager = open_token_manager(config)
    try:
        await manager.register(otp)
    except MarketAuthError as e:
        log_structured_error(logger, e, operation="register")
        print(f"Error registering appliance: {e}", file=sys.stderr)
        return EXIT_REGISTRATION_FAILED
    finally:
        await manager.shutdown()

    print("successfully registered as a market appliance. you can now restart in daemon mode.")
    return EXIT_SUCCESS


async def run_daemon(config: ApplianceConfiguration) -> int:
    manager = open_token_manager(config)
    if manager.current_tokens().is_empty():
        logger.warning("No stored tokens; register this worker before running the daemon")

    loop = asyncio.get_running_loop()
    task = manager.start()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, manager.request_stop)
        except (NotImplementedError, RuntimeError):
            logger.debug(f"Signal handlers not supported for {signum}")

    try:
        await task
    finally:
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(signum)
            except (NotImplementedError, RuntimeError):
                pass
        await manager.shutdown()

    return EXIT_SUCCESS


def run_status(config: ApplianceConfiguration, as_json: bool) -> int:
    storage = TokenStorage.open(config.get_repo_path())
    tokens = storage.load()

    registered = not tokens.is_empty()
    refresh_due = tokens.time_until_expiry(utcnow()) <= config.get_refresh_threshold()
    status = {
        'registered': registered,
        'token_file': str(storage.path),
        'expires_at': tokens.expires_at.isoformat() if registered else None,
        'refresh_due': refresh_due if registered else None,
    }

    if as_json:
        print(json.dumps(status))
    elif not registered:
        print(f"Not registered (token file: {storage.path})")
    else:
        print(f"Token file: {storage.path}")
        print(f"Tokens expire at: {status['expires_at']}")
        print(f"Refresh due: {'yes' if status['refresh_due'] else 'no'}")

    return EXIT_SUCCESS if registered else EXIT_FAILED


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the client."""
    args = parse_arguments(argv)

    try:
        config = load_configuration(args)
        configure_logging(args, config)

        if args.command == "register":
            otp = find_otp(args.args)
            if otp is None:
                print("could not find OTP in command line arguments. Please try again with a valid OTP",
                      file=sys.stderr)
                return EXIT_FAILED
            return asyncio.run(run_register(config, otp))

        if args.command == "daemon":
            return asyncio.run(run_daemon(config))

        return run_status(config, args.json)

    except (ConfigurationError, TokenStorageError, TokenParseError) as e:
        log_structured_error(logger, e)
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())
