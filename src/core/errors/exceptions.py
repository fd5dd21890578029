"""
Unified exception hierarchy for queue_to_db.

Startup errors (configuration, connections, registry, provisioning,
subscriptions) are fatal to the phase that raised them. Message-level errors
(validation, persistence) are caught by the ingestion handler and never
leave it.
"""

from core.types import ErrorCategory


class PipelineError(Exception):
    """
    Base exception for all pipeline errors.

    Attributes:
        message: Human-readable error description
        category: Error classification
        cause: Original exception if wrapping
        context: Additional context dict for debugging
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    @property
    def is_transient(self) -> bool:
        return self.category == ErrorCategory.TRANSIENT

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


class TransientError(PipelineError):
    """Base class for errors that may clear up on their own."""

    category = ErrorCategory.TRANSIENT


class PermanentError(PipelineError):
    """Base class for errors that will not succeed on retry."""

    category = ErrorCategory.PERMANENT


# =============================================================================
# Startup Errors
# =============================================================================


class ConfigValidationError(PermanentError):
    """Runtime configuration is missing or malformed."""

    def __init__(self, message: str, field: str | None = None, cause: Exception | None = None):
        super().__init__(message, cause, {"field": field} if field else None)
        self.field = field


class ConnectionError(TransientError):
    """Database or broker unreachable."""

    pass


class StartupTimeoutError(TransientError):
    """Startup sequence did not complete within its time bound."""

    def __init__(self, timeout_seconds: float, phase: str | None = None):
        message = f"Startup did not complete within {timeout_seconds:g} seconds"
        if phase:
            message = f"{message} (last phase: {phase})"
        super().__init__(message, context={"timeout_seconds": timeout_seconds, "phase": phase})
        self.timeout_seconds = timeout_seconds
        self.phase = phase


class QueryError(PipelineError):
    """A read query against the database failed."""

    pass


class RegistryLoadError(PipelineError):
    """The tenant registry could not be read or contained a malformed row."""

    pass


class TenantError(PipelineError):
    """Base class for failures scoped to a single tenant."""

    def __init__(
        self,
        message: str,
        tenant: str | None = None,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        context = dict(context or {})
        if tenant:
            context.setdefault("tenant", tenant)
        super().__init__(message, cause, context)
        self.tenant = tenant


class ProvisioningError(TenantError):
    """Schema or event table creation failed."""

    pass


class SubscriptionError(TenantError):
    """The broker rejected a queue binding."""

    pass


# =============================================================================
# Message Errors
# =============================================================================


class ValidationError(PermanentError):
    """An inbound message does not decode to a valid event."""

    pass


class PersistenceError(PipelineError):
    """The database rejected an event insert."""

    pass


__all__ = [
    "ErrorCategory",
    "PipelineError",
    "TransientError",
    "PermanentError",
    "ConfigValidationError",
    "ConnectionError",
    "StartupTimeoutError",
    "QueryError",
    "RegistryLoadError",
    "TenantError",
    "ProvisioningError",
    "SubscriptionError",
    "ValidationError",
    "PersistenceError",
]
