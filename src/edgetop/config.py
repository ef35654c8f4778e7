"""Settings for edgetop."""

import argparse
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

import structlog

from edgetop.devtools import DEFAULT_HOST
from edgetop.models import InstanceType

MIN_POLL_RATE = 0.5
DEFAULT_POLL_RATE = 5.0


@dataclass(slots=True, frozen=True)
class Settings:
    """Runtime settings, built from the command line."""

    poll_rate: float = DEFAULT_POLL_RATE  # Seconds between timer-driven refreshes
    auto_refresh: bool = False
    correlate: bool = True  # Fetch per-tab urls from debugging ports
    devtools_host: str = DEFAULT_HOST
    connect_timeout: float = 0.2
    read_timeout: float = 1.0
    hidden_instance_types: frozenset[InstanceType] = field(
        default_factory=lambda: frozenset({InstanceType.WEBVIEW2})
    )
    show_args: bool = False  # Extra column with each process's switches
    log_file: str | None = None  # No file, no logging
    verbose: bool = False


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="edgetop",
        description="Browser process groups with live debugging urls.",
    )
    parser.add_argument(
        "-i",
        "--interval",
        type=float,
        default=DEFAULT_POLL_RATE,
        help="auto-refresh interval in seconds (default: %(default)s)",
    )
    parser.add_argument("-a", "--auto", action="store_true", help="start with auto-refresh enabled")
    parser.add_argument(
        "--no-debug-urls",
        action="store_true",
        help="do not query remote-debugging ports for tab urls",
    )
    parser.add_argument(
        "--host",
        default=DEFAULT_HOST,
        help="host of the remote-debugging endpoints (default: %(default)s)",
    )
    parser.add_argument("--show-webview2", action="store_true", help="show WebView2 groups on start")
    parser.add_argument("--show-args", action="store_true", help="show a column of command-line switches")
    parser.add_argument("--log-file", help="append structured log lines to this file")
    parser.add_argument("-v", "--verbose", action="store_true", help="log debug events")
    return parser


def parse_args(argv: Sequence[str] | None = None) -> Settings:
    """Build Settings from command-line arguments."""
    args = build_parser().parse_args(argv)
    hidden = frozenset() if args.show_webview2 else frozenset({InstanceType.WEBVIEW2})
    return Settings(
        poll_rate=max(MIN_POLL_RATE, args.interval),
        auto_refresh=args.auto,
        correlate=not args.no_debug_urls,
        devtools_host=args.host,
        hidden_instance_types=hidden,
        show_args=args.show_args,
        log_file=args.log_file,
        verbose=args.verbose,
    )


LOGGER_NAME = "edgetop"


def configure_logging(settings: Settings) -> logging.Handler | None:
    """
    Route structlog output to the log file, or drop it when there is none.

    Events go through the stdlib ``edgetop`` logger, whose file handler is
    returned so the caller can close it on exit.
    """
    if settings.log_file is None:
        structlog.configure(
            wrapper_class=structlog.make_filtering_bound_logger(logging.CRITICAL),
            logger_factory=structlog.ReturnLoggerFactory(),
            cache_logger_on_first_use=True,
        )
        return None

    level = logging.DEBUG if settings.verbose else logging.INFO
    handler = logging.FileHandler(settings.log_file, encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(message)s"))

    logger = logging.getLogger(LOGGER_NAME)
    for previous in logger.handlers:
        previous.close()
    logger.handlers[:] = [handler]
    logger.setLevel(level)
    logger.propagate = False

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.processors.KeyValueRenderer(key_order=["timestamp", "level", "event"]),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        # Module loggers are named edgetop.*, so they reach the file handler
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    return handler


def close_logging(handler: logging.Handler | None) -> None:
    """Detach and close a handler returned by configure_logging."""
    if handler is None:
        return
    logger = logging.getLogger(LOGGER_NAME)
    logger.removeHandler(handler)
    if not logger.handlers:
        logger.addHandler(logging.NullHandler())
    handler.close()
