"""TraceChain Exception Hierarchy.

Typed failures raised by the provenance and identity engines. Every
exception carries rich context for debugging and API error payloads.

Exception Hierarchy:
    TraceChainException (base)
    ├── InvalidInputError
    ├── NotFoundError
    │   ├── BatchNotFound
    │   └── ParticipantNotFound
    ├── TransientLedgerError
    │   ├── StaleViewpointError
    │   └── MalformedRecordError
    └── InconsistentTimeOrdering

All exceptions include:
- error_code: Unique error identifier (``TC_<NAME>``)
- context: Dictionary with error-specific details
- timestamp: When the error occurred

Example:
    >>> from tracechain.exceptions import BatchNotFound
    >>> raise BatchNotFound(42)
"""

from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional


# ==============================================================================
# Base Exception
# ==============================================================================

class TraceChainException(Exception):
    """Base exception for all TraceChain errors.

    Attributes:
        message: Human-readable error message
        error_code: Unique error identifier (e.g., "TC_BATCH_NOT_FOUND")
        context: Dictionary with error-specific details
        timestamp: When the error occurred
    """

    ERROR_PREFIX = "TC"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self._generate_error_code()
        self.context = context or {}
        self.timestamp = datetime.now(timezone.utc)

    def _generate_error_code(self) -> str:
        """Generate an error code from the class name.

        Returns:
            Error code like "TC_BATCH_NOT_FOUND"
        """
        error_type = re.sub(
            r'(?<!^)(?=[A-Z])', '_', self.__class__.__name__
        ).upper()
        return f"{self.ERROR_PREFIX}_{error_type}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for serialization.

        Returns:
            Dictionary with all error details
        """
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
        }

    def to_json(self) -> str:
        """Convert exception to JSON string."""
        return json.dumps(self.to_dict(), indent=2, default=str)

    def __str__(self) -> str:
        return f"[{self.error_code}] - {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message='{self.message}', "
            f"error_code='{self.error_code}')"
        )


class InvalidInputError(TraceChainException):
    """A batch id or address failed validation before any ledger read."""


# ==============================================================================
# Not Found
# ==============================================================================

class NotFoundError(TraceChainException):
    """A record required by the call is absent from the ledger.

    Fatal to the call that required it; never retried automatically.
    """


class BatchNotFound(NotFoundError):
    """The requested batch does not exist on the ledger."""

    def __init__(self, batch_id: int, context: Optional[Dict[str, Any]] = None):
        context = dict(context or {})
        context["batch_id"] = batch_id
        self.batch_id = batch_id
        super().__init__(f"Batch {batch_id} not found", context=context)


class ParticipantNotFound(NotFoundError):
    """The requested participant has never registered."""

    def __init__(self, address: str, context: Optional[Dict[str, Any]] = None):
        context = dict(context or {})
        context["address"] = address
        self.address = address
        super().__init__(f"Participant {address} not found", context=context)


# ==============================================================================
# Ledger Availability
# ==============================================================================

class TransientLedgerError(TraceChainException):
    """A ledger read failed for an infrastructural reason.

    Example:
        >>> raise TransientLedgerError(
        ...     message="connection refused",
        ...     operation="get_batch",
        ... )
    """

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        context = dict(context or {})
        if operation:
            context["operation"] = operation
        self.operation = operation
        super().__init__(message, context=context)


class StaleViewpointError(TransientLedgerError):
    """The node answered from a block it no longer serves (chain reset)."""


class MalformedRecordError(TransientLedgerError):
    """A raw ledger view could not be translated into a typed record.

    Example:
        >>> raise MalformedRecordError(
        ...     message="invalid literal for int()",
        ...     operation="get_participant",
        ...     record="participant",
        ... )
    """

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        record: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        context = dict(context or {})
        if record:
            context["record"] = record
        self.record = record
        super().__init__(message, operation=operation, context=context)


# ==============================================================================
# Data Defects
# ==============================================================================

class InconsistentTimeOrdering(TraceChainException):
    """A batch was acquired before it was created.

    Indicates an upstream ledger ordering defect. The resolver flags the
    node instead of raising; this is raised only on explicit request
    through ``LineageTree.assert_time_ordering``.
    """

    def __init__(self, batch_id: int, created_at: int, acquired_at: int):
        self.batch_id = batch_id
        self.created_at = created_at
        self.acquired_at = acquired_at
        super().__init__(
            f"Batch {batch_id} acquired at {acquired_at} before creation "
            f"at {created_at}",
            context={
                "batch_id": batch_id,
                "created_at": created_at,
                "acquired_at": acquired_at,
            },
        )


# ==============================================================================
# Utilities
# ==============================================================================

def is_retriable(exc: Exception) -> bool:
    """Check if a caller may retry the operation that raised ``exc``.

    Only stale-viewpoint failures qualify; the core itself never retries.

    Args:
        exc: Exception to check

    Returns:
        True if operation should be retried
    """
    return isinstance(exc, StaleViewpointError)


__all__ = [
    "TraceChainException",
    "InvalidInputError",
    "NotFoundError",
    "BatchNotFound",
    "ParticipantNotFound",
    "TransientLedgerError",
    "StaleViewpointError",
    "MalformedRecordError",
    "InconsistentTimeOrdering",
    "is_retriable",
]
