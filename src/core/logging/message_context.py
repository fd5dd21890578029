"""Message transport context variables for structured logging."""

from contextvars import ContextVar
from typing import Any, Dict, Optional

_message_queue: ContextVar[str] = ContextVar("message_queue", default="")
_message_partition: ContextVar[int] = ContextVar("message_partition", default=-1)
_message_offset: ContextVar[int] = ContextVar("message_offset", default=-1)


def set_message_context(
    queue: Optional[str] = None,
    partition: Optional[int] = None,
    offset: Optional[int] = None,
) -> None:
    if queue is not None:
        _message_queue.set(queue)
    if partition is not None:
        _message_partition.set(partition)
    if offset is not None:
        _message_offset.set(offset)


def get_message_context() -> Dict[str, Any]:
    """Return the message context, or an empty dict outside of message processing."""
    queue = _message_queue.get()
    if not queue:
        return {}
    return {
        "message_queue": queue,
        "message_partition": _message_partition.get(),
        "message_offset": _message_offset.get(),
    }


def clear_message_context() -> None:
    _message_queue.set("")
    _message_partition.set(-1)
    _message_offset.set(-1)


class MessageLogContext:
    """
    Context manager for message processing with automatic context setting.

    Usage:
        with MessageLogContext(queue="q1", partition=0, offset=12345):
            # All logs in this block will include message context
            await handler(message)
    """

    def __init__(
        self,
        queue: Optional[str] = None,
        partition: Optional[int] = None,
        offset: Optional[int] = None,
    ):
        self.new_context = {"queue": queue, "partition": partition, "offset": offset}
        self.old_context: Dict[str, Any] = {}

    def __enter__(self) -> "MessageLogContext":
        self.old_context = {
            "queue": _message_queue.get(),
            "partition": _message_partition.get(),
            "offset": _message_offset.get(),
        }
        for key, value in self.new_context.items():
            if value is not None:
                set_message_context(**{key: value})
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        set_message_context(**self.old_context)
        return False
