"""
Structured logging module.

Provides JSON and console logging with tenant context propagation.
"""

from core.logging.context import (
    clear_log_context,
    get_log_context,
    set_log_context,
)
from core.logging.context_managers import (
    LogContext,
    TenantLogContext,
    log_phase,
)
from core.logging.formatters import ConsoleFormatter, JSONFormatter
from core.logging.message_context import (
    MessageLogContext,
    clear_message_context,
    get_message_context,
)
from core.logging.setup import setup_logging
from core.logging.utilities import format_payload, log_exception, log_with_context

__all__ = [
    # Setup
    "setup_logging",
    # Formatters
    "JSONFormatter",
    "ConsoleFormatter",
    # Context
    "set_log_context",
    "get_log_context",
    "clear_log_context",
    # Message Context
    "MessageLogContext",
    "get_message_context",
    "clear_message_context",
    # Context Managers
    "LogContext",
    "TenantLogContext",
    "log_phase",
    # Utilities
    "log_with_context",
    "log_exception",
    "format_payload",
]
