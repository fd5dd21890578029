"""
Error classification and exception hierarchy.

Provides:
- ErrorCategory enum for classifying errors
- PipelineError hierarchy for typed exceptions
"""

from core.errors.exceptions import (
    ConfigValidationError,
    ConnectionError,
    # Enums
    ErrorCategory,
    PermanentError,
    PersistenceError,
    # Base classes
    PipelineError,
    ProvisioningError,
    QueryError,
    RegistryLoadError,
    StartupTimeoutError,
    SubscriptionError,
    TenantError,
    TransientError,
    ValidationError,
)

__all__ = [
    # Enums
    "ErrorCategory",
    # Base classes
    "PipelineError",
    "TransientError",
    "PermanentError",
    "TenantError",
    # Startup errors
    "ConfigValidationError",
    "ConnectionError",
    "StartupTimeoutError",
    "QueryError",
    "RegistryLoadError",
    "ProvisioningError",
    "SubscriptionError",
    # Message errors
    "ValidationError",
    "PersistenceError",
]
