"""Loan lifecycle service for PocketLedger.

This service handles all loan-related operations including:
- Loan issuance
- Fixed-installment repayment
- Overdue blocking
- Due-date reminders
"""
import logging
from datetime import date, datetime
from dateutil.relativedelta import relativedelta

from pocketledger.config import (
    LOAN_REMINDER_WINDOW_DAYS,
    LOAN_REPAID_EPSILON,
    LOAN_REPAYMENT_DESCRIPTION,
)
from pocketledger.data_structures import (
    DEBIT,
    LOAN_ACTIVE,
    LOAN_REPAID,
    LoanReminder,
    RepaymentOutcome,
)
from pocketledger.exceptions import NoActiveLoanError, StorageError

logger = logging.getLogger(__name__)


def due_date(loan):
    """A loan falls due ``period_months`` calendar months after it was created."""
    return (loan.created_at + relativedelta(months=loan.period_months)).date()


def _as_date(as_of):
    if as_of is None:
        return date.today()
    if isinstance(as_of, datetime):
        return as_of.date()
    return as_of


class LoanService:
    """Handles loan lifecycle operations.

    Loans are stored with their full repayable amount (principal plus
    interest) as the outstanding balance, and repaid in fixed installments of
    ``principal * (1 + rate) / period_months``.
    """

    def __init__(self, db_manager):
        """Initialize LoanService.

        Args:
            db_manager: DatabaseManager instance for data persistence.
        """
        self.db = db_manager

    def apply(self, user_id, principal, rate, period_months, created_at=None):
        """Issue a new loan.

        Users may hold several active loans at once.

        Args:
            user_id: ID of the borrowing user.
            principal: Amount borrowed.
            rate: Flat interest rate, e.g. 0.05 for 5%.
            period_months: Repayment horizon in months.
            created_at: Optional issue timestamp (defaults to now).

        Returns:
            The stored Loan.
        """
        if created_at is None:
            created_at = datetime.now().replace(microsecond=0)

        total_repayment = principal * (1 + rate)
        loan_id = self.db.add_loan_record(
            user_id, principal, rate, period_months, total_repayment, created_at
        )
        logger.info(
            "Loan %s issued to user %s: principal %.2f, total repayment %.2f over %dm",
            loan_id, user_id, principal, total_repayment, period_months
        )
        return self.db.get_loan(loan_id)

    def repay(self, user_id):
        """Pay one installment on the user's oldest loan with a balance.

        The debit and the loan update are written in one transaction. A
        remainder of at most LOAN_REPAID_EPSILON left after the installment is
        forgiven: the loan is written as 0 with no debit for it.

        Args:
            user_id: ID of the repaying user.

        Returns:
            RepaymentOutcome describing the installment and new loan state.

        Raises:
            NoActiveLoanError: If no active loan has a positive balance.
            StorageError: If the user no longer exists or a write fails.
        """
        with self.db.transaction():
            loan = self.db.get_repayable_loan(user_id)
            if loan is None:
                raise NoActiveLoanError(user_id)

            owner_email = self.db.get_user_email(user_id)
            if owner_email is None:
                raise StorageError(f"Loan {loan.id} belongs to unknown user {user_id}",
                                   {'loan_id': loan.id, 'user_id': user_id})

            installment = min(loan.outstanding, loan.total_repayable / loan.period_months)
            new_balance = loan.outstanding - installment
            status = LOAN_ACTIVE
            if new_balance <= LOAN_REPAID_EPSILON:
                new_balance = 0.0
                status = LOAN_REPAID

            record = self.db.append_transaction(DEBIT, installment, LOAN_REPAYMENT_DESCRIPTION, owner_email)
            self.db.update_loan_balance(loan.id, new_balance, status)

        logger.info(
            "Repayment of %.2f on loan %s; outstanding %.2f (%s)",
            installment, loan.id, new_balance, status
        )
        return RepaymentOutcome(
            loan_id=loan.id,
            installment=installment,
            outstanding=new_balance,
            status=status,
            transaction=record,
        )

    def is_blocked(self, user_id, as_of=None):
        """True if an active loan has passed its full horizon with a balance left."""
        today = _as_date(as_of)
        for loan in self.db.get_active_loans(user_id):
            if loan.outstanding > 0 and due_date(loan) <= today:
                return True
        return False

    def due_reminders(self, user_id, as_of=None):
        """List active loans falling due within the reminder window."""
        today = _as_date(as_of)
        reminders = []
        for loan in self.db.get_active_loans(user_id):
            due = due_date(loan)
            days_left = (due - today).days
            if 0 <= days_left <= LOAN_REMINDER_WINDOW_DAYS:
                reminders.append(LoanReminder(
                    loan_id=loan.id,
                    outstanding=loan.outstanding,
                    due_date=due,
                    days_left=days_left,
                ))
        return reminders

    def get_outstanding_total(self, user_id):
        return self.db.get_loan_outstanding_total(user_id)
