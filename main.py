"""Static file server with CGI-style handler dispatch."""

import logging
import signal
import sys

from webroot.bootstrap.config import SHUTDOWN_GRACE_SECONDS, load_config, parse_cli_args
from webroot.bootstrap.log_sinks import LogSinks
from webroot.bootstrap.logging_setup import configure_logging
from webroot.bootstrap.socket_factory import create_server_socket
from webroot.domain.correlation_id import CorrelationLoggerAdapter
from webroot.lifecycle.state import ServerLifecycle
from webroot.pipeline.dispatcher import RequestDispatcher
from webroot.transport.accept_loop import serve_forever
from webroot.transport.context import WorkerContext

SERVER_LOGGER = CorrelationLoggerAdapter(logging.getLogger("webroot.server"), {})


def main(argv: list[str] | None = None) -> int:
    """Run the server until SIGINT or SIGTERM, then shut down gracefully."""
    args = parse_cli_args(sys.argv[1:] if argv is None else argv)
    configure_logging(args.log_level, args.log_destination)
    config = load_config(args)

    try:
        server_socket = create_server_socket(config.host, config.port)
    except OSError as error:
        SERVER_LOGGER.critical(
            "Failed to bind listening socket",
            extra={
                "event": "bind_failed",
                "host": config.host,
                "port": config.port,
                "error_type": type(error).__name__,
            },
        )
        return 1

    sinks = LogSinks.open(config.access_log, config.error_log, config.handler_log)
    lifecycle = ServerLifecycle()

    def shutdown_handler(signum: int, _frame) -> None:
        lifecycle.request_stop(signum)

    signal.signal(signal.SIGTERM, shutdown_handler)
    signal.signal(signal.SIGINT, shutdown_handler)

    context = WorkerContext(
        dispatcher=RequestDispatcher(config, sinks),
        lifecycle=lifecycle,
        socket_timeout=config.socket_timeout,
    )
    SERVER_LOGGER.info(
        f"Serving {config.homedir} on HTTP port: {config.port}",
        extra={
            "event": "server_listening",
            "host": config.host or "0.0.0.0",
            "port": config.port,
            "homedir": config.homedir,
            "log_destination": args.log_destination,
            "log_level": args.log_level,
        },
    )
    try:
        drained = serve_forever(server_socket, context, lifecycle, SHUTDOWN_GRACE_SECONDS)
    finally:
        sinks.close()
    if drained:
        SERVER_LOGGER.info("Server stopped gracefully", extra={"event": "server_exit"})
    else:
        SERVER_LOGGER.warning(
            "Server forced to shutdown", extra={"event": "server_exit"}
        )
    return 0


if __name__ == "__main__":
    sys.exit(main())
