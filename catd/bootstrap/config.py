"""Server configuration and CLI argument parsing."""

import argparse
import os
import re
from dataclasses import dataclass
from typing import Optional

from catd.domain.errors import ConfigurationError
from catd.domain.random_key import DEFAULT_KEY_LENGTH


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value is not None else default


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    return value if value else default


DEFAULT_HOST = _env_str("CATD_HOST", "localhost")
DEFAULT_PORT = _env_int("CATD_PORT", 4221)
DEFAULT_SOCKET_TIMEOUT = _env_int("CATD_SOCKET_TIMEOUT", 60)
DEFAULT_SHUTDOWN_GRACE_SECONDS = _env_int("CATD_SHUTDOWN_GRACE_SECONDS", 30)
DEFAULT_RANDOM_KEY_LENGTH = _env_int("CATD_RANDOM_KEY_LENGTH", DEFAULT_KEY_LENGTH)
MAX_HEADER_BYTES = _env_int("CATD_MAX_HEADER_BYTES", 64 * 1024)
MAX_FILE_PATH_LENGTH = 1_000_000

HEADER_DELIMITER = b"\r\n\r\n"
ALLOWED_METHODS = {"GET", "HEAD"}

SECURITY_HEADERS = {
    "Content-Security-Policy": "default-src 'self'",
    "X-Content-Type-Options": "nosniff",
}

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


@dataclass(frozen=True)
class ServerConfig:
    """Server configuration including timeouts and shutdown settings."""

    socket_timeout: float
    shutdown_grace_seconds: float


@dataclass(frozen=True)
class ListenerConfig:
    """Address and optional TLS material for the listening socket."""

    host: str
    port: int
    cert: Optional[str] = None
    key: Optional[str] = None

    @property
    def tls(self) -> bool:
        return bool(self.cert and self.key)


def parse_duration(text: str) -> float:
    """Parse a duration such as ``200ms``, ``1h30m`` or ``0`` into seconds.

    Every number needs a unit except a bare zero. Negative durations are
    rejected.
    """
    value = text.strip()
    if value in {"0", "+0", "-0"}:
        return 0.0
    if value.startswith("-"):
        raise ValueError(f"negative duration {text!r}")
    if value.startswith("+"):
        value = value[1:]
    if not value:
        raise ValueError(f"invalid duration {text!r}")

    total = 0.0
    position = 0
    while position < len(value):
        match = _DURATION_PART.match(value, position)
        if match is None:
            raise ValueError(f"invalid duration {text!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()
    return total


def _duration_argument(text: str) -> float:
    try:
        return parse_duration(text)
    except ValueError as error:
        raise argparse.ArgumentTypeError(str(error)) from error


class CatdArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that raises ConfigurationError instead of exiting."""

    def error(self, message: str):  # type: ignore[override]
        raise ConfigurationError(message)


def build_parser() -> CatdArgumentParser:
    """Return the parser for all command-line flags."""
    parser = CatdArgumentParser(
        prog="catd",
        description="Serve a single file over HTTP",
        allow_abbrev=False,
    )
    parser.add_argument(
        "--metadata",
        "--version",
        dest="metadata",
        action="store_true",
        help="Show build metadata and exit",
    )
    parser.add_argument("--file", default="", help="Path to file (required)")
    parser.add_argument(
        "--random-key",
        action="store_true",
        help="Serve the file only under a randomly generated path",
    )
    parser.add_argument(
        "--random-key-length",
        type=int,
        default=DEFAULT_RANDOM_KEY_LENGTH,
        help="Length of the generated key",
    )
    parser.add_argument(
        "--timeout",
        type=_duration_argument,
        default=0.0,
        help="Shut the server down after this duration, e.g. 90s or 1h (0 disables)",
    )
    parser.add_argument("--host", default=DEFAULT_HOST)
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    parser.add_argument("--cert", help="Path to TLS certificate file")
    parser.add_argument("--key", help="Path to TLS private key file")
    default_log_level = os.getenv("CATD_LOG_LEVEL", "INFO").upper()
    default_destination = os.getenv("CATD_LOG_DESTINATION", "stderr")
    parser.add_argument(
        "--log-level",
        default=default_log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
    )
    parser.add_argument(
        "--log-destination",
        default=default_destination,
        help="stdout, stderr or a file path",
    )
    parser.add_argument(
        "--socket-timeout",
        type=float,
        default=DEFAULT_SOCKET_TIMEOUT,
        help="Idle socket timeout in seconds for client connections",
    )
    parser.add_argument(
        "--shutdown-grace-seconds",
        type=float,
        default=DEFAULT_SHUTDOWN_GRACE_SECONDS,
        help="Grace period in seconds for in-flight requests on shutdown",
    )
    return parser


def validate_args(args: argparse.Namespace) -> None:
    """Check cross-field constraints that argparse cannot express."""
    if args.metadata:
        return
    if not args.file:
        raise ConfigurationError("file: cannot be blank")
    if len(args.file) > MAX_FILE_PATH_LENGTH:
        raise ConfigurationError(
            f"file: the length must be between 1 and {MAX_FILE_PATH_LENGTH}"
        )
    if args.random_key_length <= 0:
        raise ConfigurationError("random-key-length: must be positive")
    if not 0 <= args.port <= 65535:
        raise ConfigurationError("port: must be between 0 and 65535")
    if bool(args.cert) != bool(args.key):
        raise ConfigurationError("cert and key must be given together")
    if args.socket_timeout <= 0:
        raise ConfigurationError("socket-timeout: must be positive")
    if args.shutdown_grace_seconds < 0:
        raise ConfigurationError("shutdown-grace-seconds: cannot be negative")


def parse_cli_args(argv: list[str]) -> argparse.Namespace:
    """Return parsed and validated CLI arguments.

    Raises:
        ConfigurationError: on unknown flags, malformed values or missing file.
    """
    args = build_parser().parse_args(argv)
    validate_args(args)
    return args


def listener_config_from_args(args: argparse.Namespace) -> ListenerConfig:
    """Extract listener settings from parsed arguments."""
    return ListenerConfig(host=args.host, port=args.port, cert=args.cert, key=args.key)


def server_config_from_args(args: argparse.Namespace) -> ServerConfig:
    """Extract connection handling settings from parsed arguments."""
    return ServerConfig(
        socket_timeout=args.socket_timeout,
        shutdown_grace_seconds=args.shutdown_grace_seconds,
    )
