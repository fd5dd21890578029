"""Signal handling for graceful shutdown."""

import asyncio
import logging
import signal
import sys

logger = logging.getLogger(__name__)


def setup_shutdown_signal_handlers(
    loop: asyncio.AbstractEventLoop,
    shutdown_event: asyncio.Event,
) -> None:
    """Set up SIGINT/SIGTERM handlers for graceful shutdown.

    First signal: sets shutdown_event, the application drains in-flight
    messages and closes its connections.
    Second signal: cancels all tasks for an immediate exit.
    Note: Signal handlers not supported on Windows, KeyboardInterrupt used instead.
    """

    def handle_signal(sig):
        if not shutdown_event.is_set():
            logger.info("Received signal, initiating graceful shutdown", extra={"signal": sig.name})
            shutdown_event.set()
        else:
            logger.warning("Received second signal, forcing immediate shutdown...")
            for task in asyncio.all_tasks(loop):
                task.cancel()

    if sys.platform == "win32":
        logger.debug("Signal handlers not supported on Windows, using KeyboardInterrupt")
        return

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))
