"""Database management module for PocketLedger.

The store owns the sqlite3 connection, the schema, and the cached aggregates
derived from the transaction log (per-user balance and the savings total).
Every write goes through ``transaction()``: one writer at a time holds the
store lock from ``BEGIN IMMEDIATE`` until commit or rollback, and the cached
aggregates only move when the outermost scope commits.
"""
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime

import pandas as pd

from pocketledger.config import DEFAULT_DB_NAME, TIMESTAMP_FORMAT_STORAGE
from pocketledger.data_structures import (
    CREDIT,
    LOAN_ACTIVE,
    TRANSACTION_KINDS,
    Loan,
    SavingsAccount,
    TransactionRecord,
)
from pocketledger.exceptions import (
    ConstraintViolationError,
    StorageError,
    StorageUnavailableError,
    TransactionConflictError,
)

logger = logging.getLogger(__name__)


class DatabaseManager:
    """Handles all SQLite database operations."""

    def __init__(self, db_name=DEFAULT_DB_NAME):
        self.db_name = db_name
        self._lock = threading.RLock()
        self._depth = 0
        self._closed = True

        # Committed aggregates, and deltas staged by the open transaction
        self._balances = {}
        self._total_savings = 0.0
        self._pending_balances = {}
        self._pending_savings = 0.0

        try:
            self.conn = sqlite3.connect(db_name, check_same_thread=False, isolation_level=None)
        except sqlite3.Error as e:
            raise StorageUnavailableError(f"Cannot open database '{db_name}'", {'error': str(e)})
        self._closed = False

        self.create_tables()
        self.recompute_aggregates()
        logger.info("Opened ledger store %s", db_name)

    def close(self):
        """Close the database connection."""
        with self._lock:
            if self._closed:
                return
            if self._depth:
                self._rollback()
            self.conn.close()
            self._closed = True
        logger.info("Closed ledger store %s", self.db_name)

    def __del__(self):
        """Ensure connection is closed on garbage collection."""
        if getattr(self, '_closed', True):
            return
        try:
            self.close()
        except StorageError:
            pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    @property
    def closed(self):
        return self._closed

    @property
    def in_transaction(self):
        return self._depth > 0

    # ========== TRANSACTION SCOPE ==========

    @contextmanager
    def transaction(self):
        """Context manager for database transactions with automatic rollback on failure.

        Usage:
            with db.transaction():
                db.append_transaction("Debit", 50, "Groceries", email)
                db.add_to_savings(email, 5)

        Nested scopes join the outermost one. If any exception escapes, the
        whole transaction is rolled back and the staged aggregate deltas are
        discarded; sqlite errors are re-raised as StorageError subclasses.
        """
        with self._lock:
            self._ensure_open()
            outermost = self._depth == 0
            if outermost:
                try:
                    self.conn.execute("BEGIN IMMEDIATE")
                except sqlite3.Error as e:
                    raise self._translate(e) from e
            self._depth += 1
            try:
                yield self
            except sqlite3.Error as e:
                self._depth -= 1
                if outermost:
                    self._rollback()
                raise self._translate(e) from e
            except BaseException:
                self._depth -= 1
                if outermost:
                    self._rollback()
                raise
            else:
                self._depth -= 1
                if outermost:
                    self._commit()

    @contextmanager
    def snapshot(self):
        """Hold the store lock so several reads see one committed state."""
        with self._lock:
            self._ensure_open()
            yield self

    def with_transaction(self, fn, *args, **kwargs):
        """Run ``fn`` inside one transaction and return its result."""
        with self.transaction():
            return fn(*args, **kwargs)

    def _commit(self):
        try:
            self.conn.execute("COMMIT")
        except sqlite3.Error as e:
            self._rollback()
            raise self._translate(e) from e
        for email, delta in self._pending_balances.items():
            self._balances[email] = self._balances.get(email, 0.0) + delta
        self._total_savings += self._pending_savings
        self._clear_pending()

    def _rollback(self):
        self._clear_pending()
        try:
            self.conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            # No transaction active (e.g. BEGIN never ran); nothing to undo.
            logger.debug("Rollback skipped: %s", e)

    def _clear_pending(self):
        self._pending_balances = {}
        self._pending_savings = 0.0

    def _ensure_open(self):
        if self._closed:
            raise StorageUnavailableError("Database connection is closed", {'db_name': self.db_name})

    def _translate(self, error):
        """Map a sqlite3 error onto the StorageError hierarchy."""
        details = {'sqlite_error': type(error).__name__, 'error': str(error)}
        message = str(error).lower()
        if isinstance(error, sqlite3.IntegrityError):
            return ConstraintViolationError("Constraint violation", details)
        if isinstance(error, sqlite3.OperationalError) and ('locked' in message or 'busy' in message):
            return TransactionConflictError("Database is locked by another writer", details)
        if isinstance(error, sqlite3.ProgrammingError) and 'closed' in message:
            return StorageUnavailableError("Database connection is closed", details)
        return StorageError("Database operation failed", details)

    # ========== LOW-LEVEL HELPERS ==========

    def _execute(self, query, params=()):
        """Execute a write inside the current (or a fresh) transaction."""
        with self.transaction():
            return self.conn.execute(query, params)

    def _fetch_all(self, query, params=()):
        with self._lock:
            self._ensure_open()
            try:
                cursor = self.conn.execute(query, params)
                cols = [description[0] for description in cursor.description]
                return [dict(zip(cols, row)) for row in cursor.fetchall()]
            except sqlite3.Error as e:
                raise self._translate(e) from e

    def _fetch_one(self, query, params=()):
        rows = self._fetch_all(query, params)
        return rows[0] if rows else None

    def read_dataframe(self, query, params=()):
        """Run a read-only parameterized query into a DataFrame."""
        with self._lock:
            self._ensure_open()
            try:
                return pd.read_sql_query(query, self.conn, params=tuple(params))
            except sqlite3.Error as e:
                raise self._translate(e) from e
            except pd.errors.DatabaseError as e:
                raise StorageError("Database operation failed", {'error': str(e)}) from e

    def create_tables(self):
        with self.transaction():
            cursor = self.conn.cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL
                )
            """)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS transactions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    kind TEXT NOT NULL CHECK (kind IN ('Credit', 'Debit')),
                    amount REAL NOT NULL CHECK (amount > 0),
                    description TEXT NOT NULL,
                    owner_email TEXT NOT NULL,
                    timestamp DATETIME DEFAULT CURRENT_TIMESTAMP,
                    FOREIGN KEY (owner_email) REFERENCES users(email)
                )
            """)
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_transactions_owner ON transactions (owner_email)"
            )
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS loans (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    principal REAL NOT NULL CHECK (principal > 0),
                    rate REAL NOT NULL CHECK (rate >= 0),
                    period_months INTEGER NOT NULL CHECK (period_months > 0),
                    outstanding REAL NOT NULL,
                    status TEXT NOT NULL DEFAULT 'active',
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (user_id) REFERENCES users(id)
                )
            """)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS savings (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    owner_email TEXT NOT NULL UNIQUE,
                    percentage INTEGER NOT NULL,
                    accumulated_amount REAL NOT NULL DEFAULT 0 CHECK (accumulated_amount >= 0),
                    FOREIGN KEY (owner_email) REFERENCES users(email)
                )
            """)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
            """)

    def recompute_aggregates(self):
        """Rebuild cached balances and the savings total from persisted rows."""
        rows = self._fetch_all("""
            SELECT owner_email,
                   SUM(CASE WHEN kind = 'Credit' THEN amount ELSE -amount END) AS balance
            FROM transactions
            GROUP BY owner_email
        """)
        total = self._fetch_one("SELECT COALESCE(SUM(accumulated_amount), 0) AS total FROM savings")
        with self._lock:
            self._balances = {row['owner_email']: float(row['balance'] or 0.0) for row in rows}
            self._total_savings = float(total['total'])
        logger.debug("Recomputed aggregates for %d ledger owners", len(rows))

    # ========== USER OPERATIONS ==========

    def add_user(self, name, email, password_hash):
        cursor = self._execute(
            "INSERT INTO users (name, email, password_hash) VALUES (?, ?, ?)",
            (name, email, password_hash)
        )
        return cursor.lastrowid

    def user_exists(self, email):
        return self._fetch_one("SELECT 1 AS found FROM users WHERE email=?", (email,)) is not None

    def get_user(self, email):
        return self._fetch_one("SELECT * FROM users WHERE email=?", (email,))

    def get_user_id(self, email):
        """Return the user's id, or -1 when the email is not registered."""
        row = self._fetch_one("SELECT id FROM users WHERE email=?", (email,))
        return row['id'] if row else -1

    def get_user_email(self, user_id):
        row = self._fetch_one("SELECT email FROM users WHERE id=?", (user_id,))
        return row['email'] if row else None

    # ========== TRANSACTION LOG ==========

    def append_transaction(self, kind, amount, description, owner_email, timestamp=None):
        """Append one Credit/Debit row and stage its effect on the cached balance."""
        if kind not in TRANSACTION_KINDS:
            raise ConstraintViolationError(f"Unknown transaction kind '{kind}'", {'kind': kind})
        if timestamp is None:
            timestamp = datetime.now().strftime(TIMESTAMP_FORMAT_STORAGE)

        with self.transaction():
            cursor = self.conn.execute("""
                INSERT INTO transactions (kind, amount, description, owner_email, timestamp)
                VALUES (?, ?, ?, ?, ?)
            """, (kind, amount, description, owner_email, timestamp))
            delta = amount if kind == CREDIT else -amount
            self._pending_balances[owner_email] = self._pending_balances.get(owner_email, 0.0) + delta

        return TransactionRecord(
            id=cursor.lastrowid,
            kind=kind,
            amount=float(amount),
            description=description,
            owner_email=owner_email,
            timestamp=timestamp,
        )

    def current_balance(self, owner_email):
        """Return the cached fold of the owner's log.

        Inside a transaction the caller also sees its own staged writes.
        """
        with self._lock:
            balance = self._balances.get(owner_email, 0.0)
            if self._depth:
                balance += self._pending_balances.get(owner_email, 0.0)
            return balance

    def cached_balances(self):
        with self._lock:
            return dict(self._balances)

    def get_transaction_records(self, owner_email, newest_first=False):
        order = "DESC" if newest_first else "ASC"
        rows = self._fetch_all(
            f"SELECT * FROM transactions WHERE owner_email = ? ORDER BY id {order}",
            (owner_email,)
        )
        return [TransactionRecord.from_row(row) for row in rows]

    def get_transactions(self, owner_email, newest_first=False):
        """Get the owner's log as a DataFrame, oldest or newest first."""
        order = "DESC" if newest_first else "ASC"
        return self.read_dataframe(
            f"SELECT * FROM transactions WHERE owner_email = ? ORDER BY id {order}",
            (owner_email,)
        )

    # ========== LOAN OPERATIONS ==========

    def add_loan_record(self, user_id, principal, rate, period_months, outstanding, created_at):
        if isinstance(created_at, datetime):
            created_at = created_at.strftime(TIMESTAMP_FORMAT_STORAGE)
        cursor = self._execute("""
            INSERT INTO loans (user_id, principal, rate, period_months, outstanding, status, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (user_id, principal, rate, period_months, outstanding, LOAN_ACTIVE, created_at))
        return cursor.lastrowid

    def get_loan(self, loan_id):
        row = self._fetch_one("SELECT * FROM loans WHERE id=?", (loan_id,))
        return Loan.from_row(row, TIMESTAMP_FORMAT_STORAGE) if row else None

    def get_loans(self, user_id):
        """Get ALL loans (active and repaid) for a user."""
        rows = self._fetch_all("SELECT * FROM loans WHERE user_id=? ORDER BY id", (user_id,))
        return [Loan.from_row(row, TIMESTAMP_FORMAT_STORAGE) for row in rows]

    def get_active_loans(self, user_id):
        rows = self._fetch_all(
            "SELECT * FROM loans WHERE user_id=? AND status=? ORDER BY id",
            (user_id, LOAN_ACTIVE)
        )
        return [Loan.from_row(row, TIMESTAMP_FORMAT_STORAGE) for row in rows]

    def get_repayable_loan(self, user_id):
        """Return the oldest active loan with a positive outstanding balance."""
        row = self._fetch_one("""
            SELECT * FROM loans
            WHERE user_id=? AND status=? AND outstanding > 0
            ORDER BY id LIMIT 1
        """, (user_id, LOAN_ACTIVE))
        return Loan.from_row(row, TIMESTAMP_FORMAT_STORAGE) if row else None

    def update_loan_balance(self, loan_id, outstanding, status):
        """Write a loan's new outstanding balance and status.

        Only active loans may change; a repaid loan is final.
        """
        cursor = self._execute(
            "UPDATE loans SET outstanding=?, status=? WHERE id=? AND status=?",
            (outstanding, status, loan_id, LOAN_ACTIVE)
        )
        if cursor.rowcount != 1:
            raise TransactionConflictError(
                f"Loan {loan_id} is no longer active", {'loan_id': loan_id}
            )

    def get_loan_outstanding_total(self, user_id):
        row = self._fetch_one(
            "SELECT COALESCE(SUM(outstanding), 0) AS total FROM loans WHERE user_id=?",
            (user_id,)
        )
        return float(row['total'])

    # ========== SAVINGS OPERATIONS ==========

    def get_savings_account(self, owner_email):
        row = self._fetch_one("SELECT * FROM savings WHERE owner_email=?", (owner_email,))
        return SavingsAccount.from_row(row) if row else None

    def get_all_savings_accounts(self, min_amount=None):
        query = "SELECT * FROM savings"
        params = []
        if min_amount is not None:
            query += " WHERE accumulated_amount > ?"
            params.append(min_amount)
        query += " ORDER BY id"
        return [SavingsAccount.from_row(row) for row in self._fetch_all(query, params)]

    def upsert_savings_account(self, owner_email, percentage):
        self._execute("""
            INSERT INTO savings (owner_email, percentage) VALUES (?, ?)
            ON CONFLICT(owner_email) DO UPDATE SET percentage = excluded.percentage
        """, (owner_email, percentage))

    def add_to_savings(self, owner_email, amount):
        with self.transaction():
            cursor = self.conn.execute(
                "UPDATE savings SET accumulated_amount = accumulated_amount + ? WHERE owner_email=?",
                (amount, owner_email)
            )
            if cursor.rowcount:
                self._pending_savings += amount
            return cursor.rowcount == 1

    def reset_savings(self, owner_email):
        """Zero the accumulated savings and return the amount that was there."""
        with self.transaction():
            row = self._fetch_one(
                "SELECT accumulated_amount FROM savings WHERE owner_email=?", (owner_email,)
            )
            if row is None:
                return 0.0
            amount = float(row['accumulated_amount'])
            self.conn.execute(
                "UPDATE savings SET accumulated_amount = 0 WHERE owner_email=?", (owner_email,)
            )
            self._pending_savings -= amount
            return amount

    def get_savings_amount(self, owner_email):
        row = self._fetch_one(
            "SELECT accumulated_amount FROM savings WHERE owner_email=?", (owner_email,)
        )
        return float(row['accumulated_amount']) if row else 0.0

    def total_savings(self):
        with self._lock:
            total = self._total_savings
            if self._depth:
                total += self._pending_savings
            return total

    # ========== SETTINGS ==========

    def get_setting(self, key, default=None):
        row = self._fetch_one("SELECT value FROM settings WHERE key=?", (key,))
        return row['value'] if row else default

    def set_setting(self, key, value):
        self._execute("INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)", (key, str(value)))
