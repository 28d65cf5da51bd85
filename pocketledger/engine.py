"""Business logic engine for PocketLedger.

This module provides the LedgerEngine class, the single entry point used by
the menu, CLI and auth collaborators. It validates input, then sequences the
focused services in pocketledger/services/ inside one store transaction per operation.

Service Classes:
    - SavingsService: Savings activation, debit skims, monthly sweep
    - LoanService: Loan issuance, repayment, blocking, reminders
    - BalanceRecalculator: Log replay audits
    - SavingsScheduler: Month-end sweep trigger
"""
import hmac
import logging
import math
import numbers
import re

from pocketledger.config import (
    BALANCE_TOLERANCE,
    CSV_EXPORT_FILENAME,
    MAX_DESCRIPTION_LENGTH,
    MAX_SAVINGS_PERCENTAGE,
    MAX_TRANSACTION_AMOUNT,
    MIN_SAVINGS_PERCENTAGE,
    SCHEDULER_INTERVAL_SECONDS,
    SCHEDULER_SHUTDOWN_TIMEOUT,
)
from pocketledger.data_structures import CREDIT, DEBIT, LedgerSummary
from pocketledger.exceptions import (
    BlockedAccountError,
    DuplicateUserError,
    InsufficientFundsError,
    ValidationError,
)
from pocketledger.reports import HistoryQuery, ReportGenerator
from pocketledger.services import (
    BalanceRecalculator,
    LoanService,
    SavingsScheduler,
    SavingsService,
)

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[A-Za-z0-9+_.-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")
NAME_PATTERN = re.compile(r"^[a-zA-Z0-9]+$")


def _validate_amount(value, field, maximum=None, allow_zero=False):
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise ValidationError(f"{field} must be a number", field, value)
    if math.isnan(value) or math.isinf(value):
        raise ValidationError(f"{field} must be finite", field, value)
    if value < 0 or (value == 0 and not allow_zero):
        raise ValidationError(f"{field} must be positive", field, value)
    if maximum is not None and value > maximum:
        raise ValidationError(f"{field} must not exceed {maximum}", field, value)
    return float(value)


def _validate_whole(value, field, minimum, maximum=None):
    if isinstance(value, bool) or not isinstance(value, numbers.Integral):
        raise ValidationError(f"{field} must be a whole number", field, value)
    if value < minimum or (maximum is not None and value > maximum):
        bounds = f"between {minimum} and {maximum}" if maximum is not None else f"at least {minimum}"
        raise ValidationError(f"{field} must be {bounds}", field, value)
    return int(value)


def _validate_description(description):
    if not isinstance(description, str):
        raise ValidationError("Description must be text", 'description', description)
    if len(description) > MAX_DESCRIPTION_LENGTH:
        raise ValidationError(
            f"Description must be at most {MAX_DESCRIPTION_LENGTH} characters",
            'description', description
        )
    return description


class LedgerEngine:
    """Handles business logic, interfacing with DatabaseManager.

    Every mutating call opens one store transaction, checks its
    preconditions against the state read inside it, and commits the log rows
    and aggregate updates together.

    Attributes:
        db: DatabaseManager instance for data persistence.
        savings_service: SavingsService instance (lazy-loaded).
        loan_service: LoanService instance (lazy-loaded).
        balance_recalculator: BalanceRecalculator instance (lazy-loaded).
        report_generator: ReportGenerator instance (lazy-loaded).
        scheduler: SavingsScheduler, created by start_scheduler().
    """

    def __init__(self, db_manager):
        self.db = db_manager
        self._savings_service = None
        self._loan_service = None
        self._balance_recalculator = None
        self._report_generator = None
        self.scheduler = None

    @property
    def savings_service(self):
        """Lazy-load SavingsService instance."""
        if self._savings_service is None:
            self._savings_service = SavingsService(self.db)
        return self._savings_service

    @property
    def loan_service(self):
        """Lazy-load LoanService instance."""
        if self._loan_service is None:
            self._loan_service = LoanService(self.db)
        return self._loan_service

    @property
    def balance_recalculator(self):
        """Lazy-load BalanceRecalculator instance."""
        if self._balance_recalculator is None:
            self._balance_recalculator = BalanceRecalculator(self.db)
        return self._balance_recalculator

    @property
    def report_generator(self):
        """Lazy-load ReportGenerator instance."""
        if self._report_generator is None:
            self._report_generator = ReportGenerator(self.db)
        return self._report_generator

    # ========== AUTH COLLABORATOR ==========

    def user_exists(self, email):
        return self.db.user_exists(email)

    def register(self, name, email, password_hash):
        """Register a user whose password has already been hashed by the caller.

        Returns:
            The new user's id.

        Raises:
            ValidationError: Malformed name, email or hash.
            DuplicateUserError: The email is already registered.
        """
        if not isinstance(name, str) or not NAME_PATTERN.match(name):
            raise ValidationError(
                "Invalid name. Only letters and digits are allowed, no special characters.",
                'name', name
            )
        if not isinstance(email, str) or not EMAIL_PATTERN.match(email):
            raise ValidationError("Invalid email format.", 'email', email)
        if not isinstance(password_hash, str) or not password_hash:
            raise ValidationError("Password hash is required", 'password_hash', None)

        with self.db.transaction():
            if self.db.user_exists(email):
                raise DuplicateUserError(email)
            user_id = self.db.add_user(name, email, password_hash)
        logger.info("Registered user %s (%s)", user_id, email)
        return user_id

    def authenticate(self, email, password_hash):
        """Compare a caller-computed hash with the stored one."""
        user = self.db.get_user(email)
        if user is None or not isinstance(password_hash, str):
            return False
        return hmac.compare_digest(user['password_hash'].encode(), password_hash.encode())

    def user_id(self, email):
        """Return the user's id, or -1 when the email is not registered."""
        return self.db.get_user_id(email)

    def _require_user(self, email):
        user_id = self.db.get_user_id(email)
        if user_id == -1:
            raise ValidationError("Email not registered", 'email', email)
        return user_id

    def session(self, email):
        """Bind an authenticated email to the menu-facing call surface."""
        self._require_user(email)
        return UserSession(self, email)

    # ========== LEDGER OPERATIONS ==========

    def debit(self, email, amount, description):
        """Record a debit, skimming savings in the same transaction.

        Raises:
            ValidationError: Bad amount or description.
            BlockedAccountError: The user has an overdue loan.
            InsufficientFundsError: The amount exceeds the current balance.
        """
        amount = _validate_amount(amount, 'amount', maximum=MAX_TRANSACTION_AMOUNT)
        description = _validate_description(description)

        with self.db.transaction():
            user_id = self._require_user(email)
            if self.loan_service.is_blocked(user_id):
                raise BlockedAccountError(email)
            available = self.db.current_balance(email)
            if amount - available > BALANCE_TOLERANCE:
                raise InsufficientFundsError(amount, available, email)

            self.db.append_transaction(DEBIT, amount, description, email)
            skim = self.savings_service.skim_on_debit(email, amount)

        logger.info("Debit of %.2f recorded for %s (skimmed %.2f)", amount, email, skim)
        return self.summary(email)

    def credit(self, email, amount, description):
        """Record a credit.

        Raises:
            ValidationError: Bad amount or description.
            BlockedAccountError: The user has an overdue loan.
        """
        amount = _validate_amount(amount, 'amount')
        description = _validate_description(description)

        with self.db.transaction():
            user_id = self._require_user(email)
            if self.loan_service.is_blocked(user_id):
                raise BlockedAccountError(email)
            self.db.append_transaction(CREDIT, amount, description, email)

        logger.info("Credit of %.2f recorded for %s", amount, email)
        return self.summary(email)

    def activate_savings(self, email, percentage):
        percentage = _validate_whole(
            percentage, 'percentage', MIN_SAVINGS_PERCENTAGE, MAX_SAVINGS_PERCENTAGE
        )
        with self.db.transaction():
            self._require_user(email)
            return self.savings_service.activate(email, percentage)

    def apply_loan(self, email, principal, rate, period):
        principal = _validate_amount(principal, 'principal')
        rate = _validate_amount(rate, 'rate', allow_zero=True)
        period = _validate_whole(period, 'period', 1)

        with self.db.transaction():
            user_id = self._require_user(email)
            return self.loan_service.apply(user_id, principal, rate, period)

    def repay_loan(self, email):
        """Pay one installment on the user's active loan.

        Raises:
            NoActiveLoanError: Nothing to repay.
        """
        with self.db.transaction():
            user_id = self._require_user(email)
            return self.loan_service.repay(user_id)

    # ========== READS ==========

    def summary(self, email):
        with self.db.snapshot():
            user_id = self.db.get_user_id(email)
            return LedgerSummary(
                owner_email=email,
                balance=self.db.current_balance(email),
                savings=self.savings_service.get_savings(email),
                loan_outstanding=self.loan_service.get_outstanding_total(user_id),
            )

    def is_blocked(self, email):
        return self.loan_service.is_blocked(self._require_user(email))

    def loan_reminders(self, email):
        return self.loan_service.due_reminders(self._require_user(email))

    def transaction_log(self, email, newest_first=False):
        """Read-only DataFrame of the user's log for export/reporting."""
        return self.db.get_transactions(email, newest_first=newest_first)

    def history(self, email, **filters):
        """Filtered/sorted history; see HistoryQuery for the accepted options."""
        return self.report_generator.history(HistoryQuery(owner_email=email, **filters))

    def export_csv(self, email, path=CSV_EXPORT_FILENAME):
        return self.report_generator.export_csv(email, path)

    def predict_monthly_interest(self, deposit, bank):
        return self.savings_service.predict_monthly_interest(deposit, bank)

    def verify_balances(self, email=None):
        return self.balance_recalculator.verify(email)

    # ========== BACKGROUND SWEEP ==========

    def monthly_sweep(self):
        return self.savings_service.monthly_sweep()

    def start_scheduler(self, interval=SCHEDULER_INTERVAL_SECONDS, today=None):
        if self.scheduler is None:
            kwargs = {'interval': interval}
            if today is not None:
                kwargs['today'] = today
            self.scheduler = SavingsScheduler(self.savings_service, **kwargs)
        self.scheduler.start()
        return self.scheduler

    def shutdown(self, timeout=SCHEDULER_SHUTDOWN_TIMEOUT):
        """Stop the scheduler (bounded wait), then release the store."""
        if self.scheduler is not None:
            self.scheduler.shutdown(timeout)
        self.db.close()


class UserSession:
    """A logged-in user's view of the LedgerEngine.

    Mirrors the menu's calls, which carry no email of their own.
    """

    def __init__(self, engine, email):
        self.engine = engine
        self.email = email

    def debit(self, amount, description):
        return self.engine.debit(self.email, amount, description)

    def credit(self, amount, description):
        return self.engine.credit(self.email, amount, description)

    def apply_loan(self, principal, rate, period):
        return self.engine.apply_loan(self.email, principal, rate, period)

    def repay_loan(self):
        return self.engine.repay_loan(self.email)

    def activate_savings(self, percentage):
        return self.engine.activate_savings(self.email, percentage)

    def summary(self):
        return self.engine.summary(self.email)

    def reminders(self):
        return self.engine.loan_reminders(self.email)

    def is_blocked(self):
        return self.engine.is_blocked(self.email)

    def history(self, **filters):
        return self.engine.history(self.email, **filters)

    def transaction_log(self, newest_first=False):
        return self.engine.transaction_log(self.email, newest_first)
