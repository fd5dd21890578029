"""
Entry point for the queue-to-db service.

Usage:
    python -m queue_to_db --db-host db.local -p 5432 -u iot -k secret -s iot \\
        --queue-host kafka.local -P 9092 -U iot -K secret

    # Same settings from the environment (highest precedence)
    IOT_QUICKSTART_DB_HOST=db.local ... python -m queue_to_db

    # Log to stdout only, with metrics on port 9100
    python -m queue_to_db --log-to-stdout --metrics-port 9100

Exit codes:
    0   normal or signal-driven shutdown
    1   fatal startup error (configuration, connection, registry, tenant pipeline)
    10  startup did not complete within startup_timeout_seconds
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from config.config import (
    RuntimeConfig,
    add_config_arguments,
    cli_values_from_args,
    load_config,
)
from core.errors.exceptions import ConfigValidationError, PipelineError, StartupTimeoutError
from core.logging import LogContext, log_exception, setup_logging
from core.utils import generate_worker_id
from queue_to_db import metrics
from queue_to_db.app import Application
from queue_to_db.broker import BrokerConnection
from queue_to_db.signals import setup_shutdown_signal_handlers
from queue_to_db.storage import StorageGateway, connect_database

# Project root directory (where .env file is located)
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_STARTUP_TIMEOUT = 10

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="python -m queue_to_db",
        description="Provision tenant schemas and persist their queue events",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        add_help=False,
        epilog="""
Every connection flag can also be set through IOT_QUICKSTART_<NAME>,
e.g. IOT_QUICKSTART_DB_HOST, which takes precedence over the flag.
        """,
    )
    add_config_arguments(parser)

    parser.add_argument(
        "--metrics-port",
        type=int,
        default=0,
        help="Port for Prometheus metrics server (default: 0, disabled)",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Console log level (default: INFO)",
    )

    parser.add_argument(
        "--log-dir",
        type=str,
        default=None,
        help="Directory for the rotating log file (default: from LOG_DIR env var or ./logs)",
    )

    parser.add_argument(
        "--log-to-stdout",
        action="store_true",
        help="Send all log output to stdout only, skipping the log file",
    )

    return parser.parse_args(argv)


async def open_connections(config: RuntimeConfig, broker: BrokerConnection) -> StorageGateway:
    """Connect the database and the broker concurrently.

    If either fails, whichever one succeeded is closed again before the
    first error is raised.
    """
    storage, broker_result = await asyncio.gather(
        connect_database(config),
        broker.connect(),
        return_exceptions=True,
    )
    errors = [r for r in (storage, broker_result) if isinstance(r, BaseException)]
    if errors:
        if isinstance(storage, StorageGateway):
            await storage.close()
        if broker.is_connected:
            await broker.close(grace_seconds=0)
        raise errors[0]

    metrics.update_connection_status("database", True)
    metrics.update_connection_status("broker", True)
    return storage


async def run(
    config: RuntimeConfig,
    client_id: str = "queue-to-db",
    shutdown_event: asyncio.Event | None = None,
    broker: BrokerConnection | None = None,
) -> int:
    """Start every tenant pipeline, serve until shutdown, return the exit code."""
    shutdown_event = shutdown_event or asyncio.Event()
    setup_shutdown_signal_handlers(asyncio.get_running_loop(), shutdown_event)

    broker = broker or BrokerConnection(config, client_id=client_id)
    app: Application | None = None

    async def startup() -> None:
        nonlocal app
        with LogContext(phase="connect"):
            storage = await open_connections(config, broker)
        app = Application(config, storage, broker)
        await app.init()

    try:
        await asyncio.wait_for(startup(), timeout=config.startup_timeout_seconds)
    except asyncio.TimeoutError:
        phase = app.phase if app is not None else "connect"
        error = StartupTimeoutError(config.startup_timeout_seconds, phase=phase)
        log_exception(
            logger,
            error,
            "Startup timed out, exiting without draining",
            level=logging.CRITICAL,
            include_traceback=False,
            exit_code=EXIT_STARTUP_TIMEOUT,
            timeout_seconds=config.startup_timeout_seconds,
            failed_phase=phase,
        )
        return EXIT_STARTUP_TIMEOUT
    except PipelineError as e:
        log_exception(
            logger,
            e,
            "Startup failed",
            level=logging.CRITICAL,
            include_traceback=False,
            exit_code=EXIT_FATAL,
        )
        if app is not None:
            await app.shutdown(grace_seconds=0)
        return EXIT_FATAL

    logger.info(
        "Service ready",
        extra={"subscribed_queues": sorted(broker.subscriptions)},
    )
    await shutdown_event.wait()

    await app.shutdown()
    logger.info("Service stopped", extra={"exit_code": EXIT_OK})
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    load_dotenv(PROJECT_ROOT / ".env")
    args = parse_args(argv)

    worker_id = os.getenv("WORKER_ID") or generate_worker_id("queue-to-db")
    json_logs = os.getenv("JSON_LOGS", "true").lower() in ("true", "1", "yes")
    log_to_stdout = args.log_to_stdout or os.getenv("LOG_TO_STDOUT", "false").lower() in (
        "true",
        "1",
        "yes",
    )
    log_dir = Path(args.log_dir or os.getenv("LOG_DIR") or "logs")

    setup_logging(
        log_dir=log_dir,
        json_format=json_logs,
        console_level=getattr(logging, args.log_level),
        worker_id=worker_id,
        log_to_stdout=log_to_stdout,
    )

    try:
        config = load_config(config_path=args.config, cli_values=cli_values_from_args(args))
    except ConfigValidationError as e:
        log_exception(
            logger,
            e,
            "Invalid configuration",
            level=logging.CRITICAL,
            include_traceback=False,
            exit_code=EXIT_FATAL,
        )
        return EXIT_FATAL

    logger.info("Configuration loaded", extra={"config": config.to_safe_dict()})

    if args.metrics_port:
        actual_port = metrics.start_metrics_server(args.metrics_port)
        logger.info("Metrics server started", extra={"port": actual_port})

    try:
        return asyncio.run(run(config, client_id=worker_id))
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received, shutting down...")
        return EXIT_OK
    except asyncio.CancelledError:
        logger.info("Tasks cancelled, shutting down...")
        return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
