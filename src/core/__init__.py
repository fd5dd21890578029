"""
Core library: infrastructure-agnostic building blocks.

Modules:
    logging     - Structured JSON/console logging with tenant context
    errors      - Error classification and exception hierarchy
    utils       - JSON serialization and worker id helpers
"""

from .types import ErrorCategory

__version__ = "1.0.0"

__all__ = [
    "ErrorCategory",
]
