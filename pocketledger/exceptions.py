"""Custom exceptions for PocketLedger."""


class LedgerError(Exception):
    """Base exception for all PocketLedger errors."""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


class ValidationError(LedgerError):
    """Raised when caller input is rejected before any write."""

    def __init__(self, message: str, field: str = None, value=None):
        details = {}
        if field:
            details['field'] = field
            details['value'] = value
        super().__init__(message, details)


class ConflictError(LedgerError):
    """Raised when an operation conflicts with existing ledger state."""
    pass


class DuplicateUserError(ConflictError):
    """Raised when registering an email that is already taken."""

    def __init__(self, email: str):
        super().__init__(f"Email '{email}' already registered", {'email': email})


class NoActiveLoanError(ConflictError):
    """Raised when a repayment is requested but no loan has an outstanding balance."""

    def __init__(self, user_id: int = None):
        details = {}
        if user_id is not None:
            details['user_id'] = user_id
        super().__init__("No active loan to repay.", details)


class InsufficientFundsError(LedgerError):
    """Raised when a debit exceeds the current balance."""

    def __init__(self, required: float, available: float, owner_email: str = None):
        details = {
            'required': required,
            'available': available
        }
        if owner_email:
            details['owner_email'] = owner_email

        message = f"Insufficient balance: required {required}, available {available}"
        super().__init__(message, details)


class BlockedAccountError(LedgerError):
    """Raised when a user with an overdue loan attempts a debit or credit."""

    def __init__(self, owner_email: str):
        super().__init__(
            "Cannot perform transactions - you have overdue loans!",
            {'owner_email': owner_email}
        )


class StorageError(LedgerError):
    """Raised when a database operation fails."""
    pass


class StorageUnavailableError(StorageError):
    """Raised when the database cannot be opened or has been closed."""
    pass


class ConstraintViolationError(StorageError):
    """Raised when a write violates a schema constraint (e.g. a unique key)."""
    pass


class TransactionConflictError(StorageError):
    """Raised when the database is locked by a competing writer."""
    pass
