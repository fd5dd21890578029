"""Context variables for structured logging."""

from contextvars import ContextVar
from typing import Dict, Optional

_phase: ContextVar[str] = ContextVar("phase", default="")
_worker_id: ContextVar[str] = ContextVar("worker_id", default="")
_tenant: ContextVar[str] = ContextVar("tenant", default="")
_db_schema: ContextVar[str] = ContextVar("db_schema", default="")
_queue: ContextVar[str] = ContextVar("queue", default="")


def set_log_context(
    phase: Optional[str] = None,
    worker_id: Optional[str] = None,
    tenant: Optional[str] = None,
    db_schema: Optional[str] = None,
    queue: Optional[str] = None,
) -> None:
    if phase is not None:
        _phase.set(phase)
    if worker_id is not None:
        _worker_id.set(worker_id)
    if tenant is not None:
        _tenant.set(tenant)
    if db_schema is not None:
        _db_schema.set(db_schema)
    if queue is not None:
        _queue.set(queue)


def get_log_context() -> Dict[str, str]:
    return {
        "phase": _phase.get(),
        "worker_id": _worker_id.get(),
        "tenant": _tenant.get(),
        "db_schema": _db_schema.get(),
        "queue": _queue.get(),
    }


def clear_log_context() -> None:
    _phase.set("")
    _worker_id.set("")
    _tenant.set("")
    _db_schema.set("")
    _queue.set("")
