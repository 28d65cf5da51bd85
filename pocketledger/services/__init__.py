"""Services package for PocketLedger business logic.

This package contains the focused service classes the LedgerEngine facade
sequences: savings, loans, the month-end scheduler and balance audits.
"""

from .savings_service import SavingsService
from .loan_service import LoanService
from .balance_calculator import BalanceRecalculator
from .scheduler import SavingsScheduler

__all__ = ['SavingsService', 'LoanService', 'BalanceRecalculator', 'SavingsScheduler']
