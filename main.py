"""catd: serve a single file over HTTP, optionally behind a random key."""

import logging
import sys
from typing import Optional

from catd.bootstrap.config import (
    build_parser,
    listener_config_from_args,
    parse_cli_args,
    server_config_from_args,
)
from catd.bootstrap.logging_setup import add_secret_redaction, configure_logging
from catd.bootstrap.socket_factory import create_server_socket
from catd.domain.correlation_id import CorrelationLoggerAdapter
from catd.domain.errors import (
    ConfigurationError,
    EntropySourceError,
    ListenerError,
    ServiceError,
)
from catd.domain.metadata import load_build_metadata
from catd.domain.random_key import generate_random_key
from catd.handlers.file_handler import SingleFileHandler
from catd.lifecycle.shutdown import ShutdownCoordinator, StopEvent
from catd.lifecycle.state import ServerLifecycle
from catd.transport.accept_loop import run_server

SERVER_LOGGER = CorrelationLoggerAdapter(logging.getLogger("catd.server"), {})

EXIT_OK = 0
EXIT_FAILURE = 1


def _report_usage_error(error: ConfigurationError) -> int:
    print(f"wrong arguments: {error}", file=sys.stderr)
    build_parser().print_usage(sys.stderr)
    return EXIT_FAILURE


def main(argv: Optional[list[str]] = None) -> int:
    """Parse flags, start serving and block until the server stops."""
    try:
        args = parse_cli_args(sys.argv[1:] if argv is None else argv)
    except ConfigurationError as error:
        return _report_usage_error(error)

    if args.metadata:
        print(load_build_metadata().render(), end="", flush=True)
        return EXIT_OK

    try:
        configure_logging(args.log_level, args.log_destination)
    except OSError as error:
        print(f"couldn't configure logging: {error}", file=sys.stderr)
        return EXIT_FAILURE

    key = None
    if args.random_key:
        try:
            key = generate_random_key(args.random_key_length)
        except EntropySourceError as error:
            SERVER_LOGGER.critical(
                "Failed to generate random key",
                extra={"event": "random_key_failed", "error_type": type(error).__name__},
            )
            print(str(error), file=sys.stderr)
            return EXIT_FAILURE
        print(f"RANDOM-KEY: {key}", flush=True)
        add_secret_redaction(key)

    listener_config = listener_config_from_args(args)
    config = server_config_from_args(args)
    handler = SingleFileHandler(args.file, key=key)

    SERVER_LOGGER.info(
        "Starting file server",
        extra={
            "event": "server_starting",
            "host": listener_config.host,
            "port": listener_config.port,
            "file": args.file,
            "key_protected": handler.key_protected,
            "timeout_seconds": args.timeout,
            "log_destination": args.log_destination,
            "log_level": args.log_level,
            "tls": listener_config.tls,
            "socket_timeout": config.socket_timeout,
            "shutdown_grace_seconds": config.shutdown_grace_seconds,
        },
    )

    lifecycle = ServerLifecycle()
    try:
        listener = create_server_socket(listener_config)
    except ListenerError as error:
        lifecycle.mark_stopped()
        print(str(error), file=sys.stderr)
        return EXIT_FAILURE

    stop_event = StopEvent()
    coordinator = ShutdownCoordinator(stop_event, timeout=args.timeout)
    coordinator.install_signal_handlers()
    coordinator.start()
    try:
        run_server(listener, handler, stop_event, config, lifecycle)
    except ServiceError as error:
        SERVER_LOGGER.critical(
            "Server stopped with an error",
            extra={"event": "server_failed", "error_type": type(error).__name__},
        )
        print(str(error), file=sys.stderr)
        return EXIT_FAILURE
    finally:
        coordinator.close()

    SERVER_LOGGER.info(
        "Server exited", extra={"event": "server_exited", "reason": stop_event.reason}
    )
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
