"""Balance calculation service for PocketLedger.

This service replays the transaction log to audit the store's cached
aggregates:
- Per-owner balance fold (credits minus debits)
- Savings pool total
"""
import logging

import pandas as pd

from pocketledger.config import BALANCE_TOLERANCE
from pocketledger.data_structures import CREDIT
from pocketledger.exceptions import StorageError

logger = logging.getLogger(__name__)


class BalanceRecalculator:
    """Recomputes balances from the log and checks them against the store.

    The store maintains balances incrementally; this class is the slow,
    authoritative path used for audits and tests.
    """

    def __init__(self, db_manager):
        """Initialize BalanceRecalculator.

        Args:
            db_manager: DatabaseManager instance for data persistence.
        """
        self.db = db_manager

    def get_log_df(self):
        return self.db.read_dataframe("SELECT owner_email, kind, amount FROM transactions ORDER BY id")

    def recalculate_balances(self):
        """Fold the whole log into a balance per owner.

        Returns:
            Dict mapping owner email to balance.
        """
        df = self.get_log_df()
        if df.empty:
            return {}

        df['signed'] = df['amount'].where(df['kind'] == CREDIT, -df['amount'])
        folded = df.groupby('owner_email')['signed'].sum()
        return {email: float(balance) for email, balance in folded.items()}

    def recalculate_balance(self, owner_email):
        """Fold one owner's log record by record, oldest first."""
        records = self.db.get_transaction_records(owner_email)
        return float(sum(record.signed_amount for record in records))

    def recalculate_total_savings(self):
        df = self.db.read_dataframe("SELECT accumulated_amount FROM savings")
        if df.empty:
            return 0.0
        return float(pd.to_numeric(df['accumulated_amount']).sum())

    def verify(self, owner_email=None):
        """Check the cached aggregates against a fresh replay of the log.

        Args:
            owner_email: Limit the balance check to one owner; all owners and
                the savings total are checked when omitted.

        Returns:
            True when everything matches.

        Raises:
            StorageError: Listing every mismatch found.
        """
        mismatches = {}

        if owner_email is not None:
            expected = {owner_email: self.recalculate_balance(owner_email)}
        else:
            expected = self.recalculate_balances()
            for email in self.db.cached_balances():
                expected.setdefault(email, 0.0)

        for email, folded in expected.items():
            cached = self.db.current_balance(email)
            if abs(cached - folded) > BALANCE_TOLERANCE:
                mismatches[email] = {'cached': cached, 'folded': folded}

        if owner_email is None:
            savings = self.recalculate_total_savings()
            cached_savings = self.db.total_savings()
            if abs(cached_savings - savings) > BALANCE_TOLERANCE:
                mismatches['<savings>'] = {'cached': cached_savings, 'folded': savings}

        if mismatches:
            logger.error("Ledger aggregates out of sync: %s", mismatches)
            raise StorageError("Cached aggregates do not match the transaction log", mismatches)
        return True
