"""Result pattern for per-item outcomes in PocketLedger.

Batch operations such as the monthly savings sweep keep going when a single
item fails. Each item's outcome is captured as a Result instead of being
raised, so the caller can see which accounts were swept and which were not.
"""
from dataclasses import dataclass
from typing import Optional, TypeVar, Generic

from pocketledger.exceptions import (
    LedgerError,
    ValidationError,
    ConflictError,
    InsufficientFundsError,
    BlockedAccountError,
    StorageError,
)

T = TypeVar('T')


class ErrorType:
    """Standard error type constants."""
    VALIDATION = "VALIDATION"
    CONFLICT = "CONFLICT"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    BLOCKED = "BLOCKED"
    STORAGE = "STORAGE"
    UNKNOWN = "UNKNOWN"

    _BY_EXCEPTION = (
        (ValidationError, VALIDATION),
        (ConflictError, CONFLICT),
        (InsufficientFundsError, INSUFFICIENT_FUNDS),
        (BlockedAccountError, BLOCKED),
        (StorageError, STORAGE),
    )

    @classmethod
    def for_exception(cls, exc: Exception) -> str:
        for exc_type, error_type in cls._BY_EXCEPTION:
            if isinstance(exc, exc_type):
                return error_type
        return cls.UNKNOWN


@dataclass
class Result(Generic[T]):
    """Represents the outcome of an operation.

    Attributes:
        success: Whether the operation succeeded.
        value: The return value on success, None on failure.
        error: Error message on failure, None on success.
        error_type: One of the ErrorType constants.

    Usage:
        outcome = Result.ok(swept_amount)
        outcome = Result.from_exception(exc)
        if outcome:
            print(outcome.value)
    """
    success: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_type: Optional[str] = None

    @classmethod
    def ok(cls, value: T = None) -> 'Result[T]':
        """Create a successful result."""
        return cls(success=True, value=value)

    @classmethod
    def fail(cls, error: str, error_type: str = None) -> 'Result[T]':
        """Create a failure result."""
        return cls(success=False, error=error, error_type=error_type)

    @classmethod
    def from_exception(cls, exc: Exception) -> 'Result[T]':
        """Create a failure result describing a caught exception.

        LedgerError messages are used as-is; anything else is prefixed with
        its class name so unexpected failures stay recognizable in reports.
        """
        if isinstance(exc, LedgerError):
            message = str(exc)
        else:
            message = f"{type(exc).__name__}: {exc}"
        return cls.fail(message, ErrorType.for_exception(exc))

    def __bool__(self) -> bool:
        return self.success
