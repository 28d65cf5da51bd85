"""Savings service for PocketLedger.

This service handles all savings-related operations including:
- Activation (choosing the skim percentage)
- Skimming a percentage of every debit into the savings pool
- The monthly sweep that moves the pool back into balance
"""
import logging
from datetime import datetime

from pocketledger.config import BANK_DEPOSIT_RATES, SAVINGS_TRANSFER_DESCRIPTION
from pocketledger.data_structures import CREDIT, SweepReport
from pocketledger.exceptions import ValidationError
from pocketledger.result import Result

logger = logging.getLogger(__name__)


class SavingsService:
    """Handles savings account operations.

    The service keeps no state of its own; every figure is read from the
    store inside the caller's transaction.
    """

    def __init__(self, db_manager):
        """Initialize SavingsService.

        Args:
            db_manager: DatabaseManager instance for data persistence.
        """
        self.db = db_manager

    def get_savings(self, user_email):
        """Get accumulated savings for a user (0.0 without an account)."""
        return self.db.get_savings_amount(user_email)

    def activate(self, user_email, percentage):
        """Create the user's savings account or change its percentage.

        The percentage is trusted as given; range checks belong to the caller.

        Args:
            user_email: Owner of the account.
            percentage: Share of each future debit to set aside (1-100).

        Returns:
            The SavingsAccount as stored.
        """
        with self.db.transaction():
            self.db.upsert_savings_account(user_email, percentage)
            account = self.db.get_savings_account(user_email)
        logger.info("Savings activated for %s at %s%%", user_email, percentage)
        return account

    def skim_on_debit(self, user_email, debit_amount):
        """Set aside the account's percentage of a debit.

        Must run inside the same transaction as the debit it belongs to.

        Args:
            user_email: Owner of the debit.
            debit_amount: Amount debited.

        Returns:
            The amount added to savings, 0.0 if the user has no account.
        """
        account = self.db.get_savings_account(user_email)
        if account is None:
            return 0.0

        skim = debit_amount * (account.percentage / 100.0)
        self.db.add_to_savings(user_email, skim)
        logger.debug("Skimmed %.2f from debit of %.2f for %s", skim, debit_amount, user_email)
        return skim

    def sweep_account(self, user_email):
        """Move one account's accumulated savings into balance atomically.

        Returns:
            The amount transferred (0.0 if nothing had accumulated).
        """
        with self.db.transaction():
            amount = self.db.get_savings_amount(user_email)
            if amount <= 0:
                return 0.0
            self.db.append_transaction(CREDIT, amount, SAVINGS_TRANSFER_DESCRIPTION, user_email)
            self.db.reset_savings(user_email)
        logger.info("Transferred RM%.2f from savings to balance for %s", amount, user_email)
        return amount

    def monthly_sweep(self, should_stop=None):
        """Sweep every account with accumulated savings, one transaction each.

        A failing account is rolled back, logged and reported; the sweep then
        continues with the next account. Failed accounts are not retried
        until the next run.

        Args:
            should_stop: Optional callable; when it returns True the sweep
                stops before starting the next account.

        Returns:
            A SweepReport with one Result per account attempted.
        """
        report = SweepReport(started_at=datetime.now())
        accounts = self.db.get_all_savings_accounts(min_amount=0)

        for account in accounts:
            if should_stop is not None and should_stop():
                report.interrupted = True
                logger.warning("Savings sweep interrupted before %s", account.owner_email)
                break
            try:
                amount = self.sweep_account(account.owner_email)
                report.outcomes[account.owner_email] = Result.ok(amount)
            except Exception as e:
                logger.exception("Savings sweep failed for %s", account.owner_email)
                report.outcomes[account.owner_email] = Result.from_exception(e)

        logger.info(
            "Savings sweep finished: %d swept, %d failed, RM%.2f transferred",
            len(report.swept), len(report.failed), report.total_transferred
        )
        return report

    def predict_monthly_interest(self, deposit, bank):
        """Estimate monthly interest for a fixed deposit at one of the known banks.

        Args:
            deposit: Amount deposited.
            bank: Bank name, a key of BANK_DEPOSIT_RATES.

        Returns:
            Monthly interest earned.

        Raises:
            ValidationError: If the deposit is not positive or the bank is unknown.
        """
        if deposit is None or deposit <= 0:
            raise ValidationError("Deposit amount must be positive.", 'deposit', deposit)
        if bank not in BANK_DEPOSIT_RATES:
            raise ValidationError(f"Unknown bank '{bank}'", 'bank', bank)
        return deposit * BANK_DEPOSIT_RATES[bank] / 12 / 100
