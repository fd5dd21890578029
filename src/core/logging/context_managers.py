"""Context managers for structured logging."""

import logging
import time
from contextlib import contextmanager
from typing import Any, Dict, Optional

from core.logging.context import get_log_context, set_log_context
from core.logging.utilities import log_exception, log_with_context


class LogContext:
    """
    Context manager for temporary log context.

    Usage:
        with LogContext(phase="provision"):
            # All logs in this block carry phase=provision
            do_work()
    """

    def __init__(
        self,
        phase: Optional[str] = None,
        worker_id: Optional[str] = None,
        tenant: Optional[str] = None,
        db_schema: Optional[str] = None,
        queue: Optional[str] = None,
    ):
        self.new_context = {
            "phase": phase,
            "worker_id": worker_id,
            "tenant": tenant,
            "db_schema": db_schema,
            "queue": queue,
        }
        self.old_context: Dict[str, str] = {}

    def __enter__(self) -> "LogContext":
        self.old_context = get_log_context()
        for key, value in self.new_context.items():
            if value is not None:
                set_log_context(**{key: value})
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        # Restore old context
        set_log_context(**{key: self.old_context.get(key, "") for key in self.new_context})
        return False


class TenantLogContext(LogContext):
    """
    Log context scoped to one tenant pipeline.

    Usage:
        with TenantLogContext(tenant):
            logger.info("Schema OK")  # carries tenant, db_schema and queue
    """

    def __init__(self, tenant: Any, phase: Optional[str] = None):
        super().__init__(
            phase=phase,
            tenant=tenant.code_name,
            db_schema=tenant.db_schema_name,
            queue=tenant.queue_name,
        )


@contextmanager
def log_phase(
    logger: logging.Logger,
    phase: str,
    level: int = logging.INFO,
    **context: Any,
):
    """
    Context manager for timing a startup phase.

    Sets the phase log context for the duration of the block and logs
    completion (or failure) with the elapsed time.

    Example:
        with log_phase(logger, "registry"):
            tenants = await registry.load_tenants()
    """
    start = time.perf_counter()
    with LogContext(phase=phase):
        try:
            yield
        except Exception as e:
            duration_ms = (time.perf_counter() - start) * 1000
            log_exception(
                logger,
                e,
                f"Phase failed: {phase}",
                include_traceback=False,
                duration_ms=round(duration_ms, 2),
                **context,
            )
            raise
        duration_ms = (time.perf_counter() - start) * 1000
        log_with_context(
            logger,
            level,
            f"Phase complete: {phase}",
            duration_ms=round(duration_ms, 2),
            **context,
        )
