"""
Core types shared across modules.

Provides the error classification enum used by the exception hierarchy
and by the log formatters.
"""

from enum import Enum


class ErrorCategory(Enum):
    """
    Classification of error types for handling decisions.

    Categories:
        TRANSIENT: Temporary failures that may succeed when the process is
                   restarted (e.g., broker or database unreachable)
        PERMANENT: Failures that will not succeed on retry
                   (e.g., malformed messages, invalid configuration)
        UNKNOWN: Unclassified errors
    """

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


__all__ = [
    "ErrorCategory",
]
