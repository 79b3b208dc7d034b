"""
APIC event listener - Entry point

Subscribes to an APIC managed object class and prints every event the
fabric pushes, recovering from login, subscription and connection failures.

Usage:
    aci-listener -a apic.example.com -u admin -c faultInst
    aci-listener --version
"""

import argparse
import asyncio
import getpass
import logging
import os
import signal
import sys
from logging.handlers import TimedRotatingFileHandler
from typing import Optional

from . import __version__
from .config import Config, DEFAULT_QUERY_PARAMS, HTTP_TIMEOUT
from .connection import create_ssl_context
from .supervisor import Supervisor

APP_NAME = "aci-listener"

logger = logging.getLogger(__name__)


def setup_logging(log_path: Optional[str], level: str = "INFO") -> None:
    """Log to stderr and, if given, to a daily rotated file.

    Events are printed on stdout, so logs never go there.
    """
    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_path:
        file_handler = TimedRotatingFileHandler(
            log_path,
            when="D",
            interval=1,
            backupCount=7,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


def parse_query_params(values: list[str]) -> dict[str, str]:
    """Merge KEY=VALUE arguments over the default paging parameters."""
    params = dict(DEFAULT_QUERY_PARAMS)
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise ValueError(f"Query parameter must be KEY=VALUE: {item!r}")
        params[key] = value
    return params


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="Stream APIC class events over WebSocket with automatic session recovery",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  aci-listener -a apic.example.com -u admin -c faultInst
  aci-listener -a 10.0.0.1 -u admin -c fvTenant -q query-target-filter='eq(fvTenant.name,"prod")'
  ACI_PASSWORD=secret aci-listener -a apic.example.com -u admin -c eventRecord

Environment variables:
  ACI_URL, ACI_USER, ACI_PASSWORD, ACI_CLASS, ACI_HTTP_TIMEOUT, ACI_WS_CONNECT_TIMEOUT
  ACI_VERIFY_SSL, ACI_CA_BUNDLE
  ACI_REFRESH_THRESHOLD, ACI_SUBSCRIPTION_REFRESH_THRESHOLD, ACI_RESTART_COOLDOWN
  ACI_HEARTBEAT_INTERVAL
        """,
    )
    parser.add_argument(
        "-a", "--apic",
        default=os.environ.get("ACI_URL"),
        help="APIC hostname or URL (env: ACI_URL)",
    )
    parser.add_argument(
        "-u", "--username",
        default=os.environ.get("ACI_USER"),
        help="APIC username (env: ACI_USER)",
    )
    parser.add_argument(
        "-p", "--password",
        default=os.environ.get("ACI_PASSWORD"),
        help="APIC password (env: ACI_PASSWORD, prompted if not set)",
    )
    parser.add_argument(
        "-c", "--class",
        dest="target_class",
        default=os.environ.get("ACI_CLASS"),
        help="Managed object class to subscribe to, e.g. faultInst (env: ACI_CLASS)",
    )
    parser.add_argument(
        "-q", "--query",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Extra class query parameter (repeatable, default page=0 page-size=1)",
    )
    parser.add_argument(
        "--http-timeout",
        type=int,
        default=HTTP_TIMEOUT,
        help=f"Timeout for each API request in seconds (default: {HTTP_TIMEOUT})",
    )
    parser.add_argument(
        "--verify-ssl",
        action="store_true",
        default=None,
        help="Verify the APIC certificate (default: trust any certificate)",
    )
    parser.add_argument(
        "--ca-bundle",
        metavar="FILE",
        help="CA certificate file used with --verify-ssl (env: ACI_CA_BUNDLE)",
    )
    parser.add_argument(
        "--strict-refresh",
        action="store_true",
        help="Treat an error payload in a token refresh reply as a failure",
    )
    parser.add_argument(
        "--log-file",
        help="Log file path (default: <class>.log)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"{APP_NAME} v{__version__}",
    )
    return parser


def config_from_args(args: argparse.Namespace) -> Config:
    """Build a Config from parsed arguments.

    Raises:
        ValueError: A required setting is missing or malformed
    """
    if not args.apic:
        raise ValueError("APIC address is required (--apic or ACI_URL)")
    if not args.username:
        raise ValueError("Username is required (--username or ACI_USER)")
    if not args.target_class:
        raise ValueError("Class is required (--class or ACI_CLASS)")

    overrides = {
        "http_timeout": args.http_timeout,
        "verify_ssl": args.verify_ssl,
        "ca_bundle": args.ca_bundle,
    }
    config = Config.from_env(
        apic_url=args.apic,
        username=args.username,
        password=args.password or "",
        target_class=args.target_class,
        query_params=parse_query_params(args.query),
        strict_refresh=args.strict_refresh,
        **overrides,
    )

    # Every attempt builds this context again; fail at startup, not in the loop
    try:
        create_ssl_context(verify=config.verify_ssl, ca_bundle=config.ca_bundle)
    except OSError as e:
        raise ValueError(f"Cannot load CA bundle {config.ca_bundle}: {e}") from e
    return config


async def run(config: Config) -> None:
    """Run the supervisor until SIGINT/SIGTERM."""
    stop_event = asyncio.Event()

    def signal_handler():
        logger.info("Shutting down...")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    supervisor = Supervisor(config, stop_event=stop_event, logger=logging.getLogger(APP_NAME))
    await supervisor.run()


def main(argv: Optional[list[str]] = None) -> int:
    """Entry point for the APIC listener."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.apic and args.username and args.target_class and not args.password:
        args.password = getpass.getpass(f"Password for {args.username}: ")

    try:
        config = config_from_args(args)
    except ValueError as e:
        parser.error(str(e))

    setup_logging(args.log_file or f"{config.target_class}.log", args.log_level)
    logger.info(f"{APP_NAME} v{__version__}")
    if not config.verify_ssl:
        logger.warning(
            "TLS certificate verification is DISABLED for APIC connections. "
            "Use --verify-ssl to enable it."
        )

    try:
        asyncio.run(run(config))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    return 0


if __name__ == "__main__":
    sys.exit(main())
