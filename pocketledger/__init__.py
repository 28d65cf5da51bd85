"""PocketLedger: a personal ledger with savings skims and loans on SQLite."""

from pocketledger.database import DatabaseManager
from pocketledger.engine import LedgerEngine, UserSession

__all__ = ['DatabaseManager', 'LedgerEngine', 'UserSession']

__version__ = '0.1.0'
