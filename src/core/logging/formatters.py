"""Log formatters for JSON and console output."""

import json
import logging
import re
import sys
from datetime import UTC, datetime
from typing import Any

from core.logging.context import get_log_context
from core.logging.message_context import get_message_context
from core.utils.json_serializers import json_serializer


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter with context injection.

    Produces one JSON object per line for easy parsing with jq/grep.
    Redacts credentials embedded in connection strings.
    """

    # Fields to extract from LogRecord extras
    EXTRA_FIELDS = [
        # Timing
        "duration_ms",
        # Errors
        "error_category",
        "error_message",
        "error_type",
        "error",
        "failed_phase",
        # Tenants
        "tenant_count",
        "tenants_ok",
        "tenants_failed",
        "failed_tenants",
        "cancelled_tenants",
        "failure_policy",
        "row_index",
        # Storage
        "entity",
        "owner",
        "rows",
        # Broker
        "queue_options",
        "consumer_group",
        "bootstrap_servers",
        "subscribed_queues",
        "in_flight",
        # Message transport metadata
        "message_queue",
        "message_partition",
        "message_offset",
        "payload",
        # Process
        "exit_code",
        "signal",
        "timeout_seconds",
        "config",
        "port",
        "preferred_port",
    ]

    NUMERIC_FIELDS = {
        "duration_ms": float,
        "timeout_seconds": float,
        "tenant_count": int,
        "tenants_ok": int,
        "tenants_failed": int,
        "row_index": int,
        "rows": int,
        "in_flight": int,
        "message_partition": int,
        "message_offset": int,
        "exit_code": int,
        "port": int,
        "preferred_port": int,
    }

    # user:password@host in DSNs and URLs
    CREDENTIALS_PATTERN = re.compile(r"(//[^:/@\s]+:)[^@\s]+@")

    def _sanitize_value(self, value: Any) -> Any:
        if isinstance(value, str):
            return self.CREDENTIALS_PATTERN.sub(r"\1[REDACTED]@", value)
        return value

    def _ensure_type(self, field: str, value: Any) -> Any:
        """Coerce numeric fields to their declared type, or None if coercion fails."""
        if field not in self.NUMERIC_FIELDS or value is None:
            return value

        expected_type = self.NUMERIC_FIELDS[field]
        try:
            return expected_type(value)
        except (ValueError, TypeError):
            return None

    @staticmethod
    def _base_log_entry(record: logging.LogRecord) -> dict[str, Any]:
        return {
            "ts": datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

    @staticmethod
    def _inject_context(log_entry: dict[str, Any], log_context: dict[str, Any]) -> None:
        for field, value in log_context.items():
            if value:
                log_entry[field] = value

    @staticmethod
    def _should_include_source_location(record: logging.LogRecord) -> bool:
        return record.levelno in (logging.DEBUG, logging.ERROR, logging.CRITICAL)

    def _inject_extra_fields(self, log_entry: dict[str, Any], record: logging.LogRecord) -> None:
        for field in self.EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                typed_value = self._ensure_type(field, value)
                log_entry[field] = self._sanitize_value(typed_value)

    def _inject_exception(self, log_entry: dict[str, Any], record: logging.LogRecord) -> None:
        if not record.exc_info:
            return

        exc_type, exc_value, _ = record.exc_info
        log_entry["exception"] = {
            "type": exc_type.__name__ if exc_type else None,
            "message": str(exc_value) if exc_value else None,
            "stacktrace": self.formatException(record.exc_info),
        }

    def format(self, record: logging.LogRecord) -> str:
        log_entry = self._base_log_entry(record)
        self._inject_context(log_entry, get_log_context())
        log_entry.update(get_message_context())

        if self._should_include_source_location(record):
            log_entry["file"] = f"{record.filename}:{record.lineno}"

        self._inject_extra_fields(log_entry, record)
        self._inject_exception(log_entry, record)

        return json.dumps(log_entry, default=json_serializer, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """
    Human-readable console formatter with color-coded log levels.

    Colors are auto-disabled when output is not a TTY (pipes, files).
    """

    # ANSI color codes
    COLORS = {
        logging.DEBUG: "\033[36m",  # Cyan
        logging.INFO: "\033[32m",  # Green
        logging.WARNING: "\033[33m",  # Yellow
        logging.ERROR: "\033[31m",  # Red
        logging.CRITICAL: "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._use_colors = sys.stdout.isatty()

    def _format_level_name(self, record: logging.LogRecord) -> str:
        level_name = record.levelname
        if not self._use_colors:
            return level_name

        color = self.COLORS.get(record.levelno, "")
        if not color:
            return level_name

        return f"{color}{level_name}{self.RESET}"

    @staticmethod
    def _build_prefix(level_name: str, log_context: dict[str, Any]) -> str:
        parts = [
            datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            level_name,
        ]

        if log_context["phase"]:
            parts.append(f"[{log_context['phase']}]")
        if log_context["tenant"]:
            parts.append(f"[{log_context['tenant']}]")

        return " - ".join(parts)

    def format(self, record: logging.LogRecord) -> str:
        """Format log record for console output with optional color coding."""
        log_context = get_log_context()

        level_name = self._format_level_name(record)
        prefix = self._build_prefix(level_name, log_context)
        line = f"{prefix} - {record.getMessage()}"

        error_message = getattr(record, "error_message", None)
        if error_message:
            line = f"{line} ({error_message})"

        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line
