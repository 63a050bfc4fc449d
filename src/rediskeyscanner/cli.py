"""Command-line interface for redis-key-scanner."""

import argparse
import asyncio
import getpass
import json
import os
import sys
from typing import Any, Dict, List, Optional

from . import __version__
from .config import DEFAULT_REDIS_PORT, DEFAULT_SENTINEL_PORT
from .errors import ConfigurationError, ScanConnectionError
from .scanner import KeyRecord, async_main

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130

EPILOG = (
    "Timeframes <T> are of the form '<number><unit>' where unit may be any of "
    "'s' (seconds), 'm' (minutes), 'h' (hours), 'd' (days), or 'w' (weeks). "
    "Key values are never read. Reading TTL (--max-ttl, --min-ttl, --no-expiry) "
    "may reset idle time on some Redis versions."
)


def _env_int(name: str, default: Optional[int] = None) -> Optional[int]:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from None


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="redis-key-scanner",
        description="Scan a Redis server for keys matching a pattern and activity characteristics",
        epilog=EPILOG,
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "host",
        help="Redis host, or Sentinel host when --name is given",
    )

    parser.add_argument(
        "-p",
        "--port",
        type=int,
        default=_env_int("REDISKEYSCANNER_PORT"),
        help=f"Redis port (default: {DEFAULT_REDIS_PORT}, or {DEFAULT_SENTINEL_PORT} with --name)",
    )

    parser.add_argument(
        "--name",
        default=os.getenv("REDISKEYSCANNER_NAME"),
        help="Sentinel master name; the scan connects to one of its replicas",
    )

    parser.add_argument(
        "--db",
        type=int,
        default=_env_int("REDISKEYSCANNER_DB"),
        help="Logical database index",
    )

    parser.add_argument(
        "--password",
        action="store_true",
        help="Prompt for a password (or set REDISKEYSCANNER_PASSWORD)",
    )

    parser.add_argument(
        "--pattern",
        default=os.getenv("REDISKEYSCANNER_PATTERN", "*"),
        help="Key name glob pattern",
    )

    parser.add_argument(
        "--scan-batch",
        type=int,
        default=_env_int("REDISKEYSCANNER_SCAN_BATCH", 1000),
        help="Keys requested per SCAN page",
    )

    parser.add_argument(
        "--scan-limit",
        type=int,
        default=_env_int("REDISKEYSCANNER_SCAN_LIMIT", 0),
        help="Limit total number of keys to scan (0 = unlimited)",
    )

    parser.add_argument(
        "--limit",
        type=int,
        default=_env_int("REDISKEYSCANNER_LIMIT", 1000),
        help="Limit total number of keys to select (0 = unlimited)",
    )

    parser.add_argument("--max-idle", metavar="T", help="Select keys inactive for no more than T")
    parser.add_argument("--max-ttl", metavar="T", help="Select keys with a TTL of no more than T")
    parser.add_argument("--min-idle", metavar="T", help="Select keys inactive for at least T")
    parser.add_argument("--min-ttl", metavar="T", help="Select keys with a TTL of at least T")

    parser.add_argument(
        "--no-expiry",
        action="store_true",
        help="Select keys that have a TTL of -1 (ie. no expiry)",
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Debug logging",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default=os.getenv("REDISKEYSCANNER_LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"redis-key-scanner {__version__}",
    )

    return parser.parse_args(argv)


def build_options(args: argparse.Namespace) -> Dict[str, Any]:
    """Turn parsed arguments into scanner options, prompting for a password if asked."""
    options: Dict[str, Any] = {
        "host": args.host,
        "port": args.port if args.port is not None else (DEFAULT_SENTINEL_PORT if args.name else DEFAULT_REDIS_PORT),
        "pattern": args.pattern,
        "scan_batch": args.scan_batch,
        "scan_limit": args.scan_limit,
        "limit": args.limit,
        "no_expiry": args.no_expiry,
        "debug": args.debug,
    }

    if args.name:
        options["name"] = args.name
    if args.db is not None:
        options["db"] = args.db

    for option in ("max_idle", "max_ttl", "min_idle", "min_ttl"):
        value = getattr(args, option)
        if value is not None:
            options[option] = value

    password = os.getenv("REDISKEYSCANNER_PASSWORD")
    if args.password:
        password = getpass.getpass("Redis password: ")
    if password:
        options["password"] = password

    return options


def _write_json(obj: Dict[str, Any]) -> None:
    print(json.dumps(obj), flush=True)


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the CLI."""
    try:
        args = parse_args(argv)
    except ConfigurationError as e:
        print(f"Invalid options: {e}", file=sys.stderr)
        sys.exit(EXIT_USAGE)

    failures: List[ScanConnectionError] = []

    def on_record(record: KeyRecord) -> None:
        _write_json(record.to_dict())

    try:
        summary = asyncio.run(
            async_main(
                build_options(args),
                on_record=on_record,
                on_error=failures.append,
                log_level=args.log_level,
            )
        )
    except ConfigurationError as e:
        print(f"Invalid options: {e}", file=sys.stderr)
        sys.exit(EXIT_USAGE)
    except KeyboardInterrupt:
        print("\nScan cancelled by user", file=sys.stderr)
        sys.exit(EXIT_INTERRUPTED)
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        sys.exit(EXIT_FAILURE)

    if summary is None:
        for failure in failures:
            _write_json(failure.to_dict())
        sys.exit(EXIT_FAILURE)

    _write_json(summary.to_dict())
    sys.exit(EXIT_OK)


if __name__ == "__main__":
    main()
