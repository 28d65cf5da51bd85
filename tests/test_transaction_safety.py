"""Tests for transaction safety and structured error handling."""
import os
import shutil
import sqlite3
import tempfile
import unittest
from unittest.mock import patch

from pocketledger.database import DatabaseManager
from pocketledger.engine import LedgerEngine
from pocketledger.exceptions import (
    ConstraintViolationError,
    LedgerError,
    NoActiveLoanError,
    StorageError,
    StorageUnavailableError,
    TransactionConflictError,
)


class TestExceptions(unittest.TestCase):
    """Test that custom exceptions carry their details."""

    def test_details_rendered(self):
        err = LedgerError("Something failed", {'loan_id': 7})
        self.assertEqual(err.message, "Something failed")
        self.assertIn("loan_id", str(err))

    def test_no_active_loan_message(self):
        err = NoActiveLoanError(3)
        self.assertIn("No active loan to repay.", str(err))
        self.assertEqual(err.details['user_id'], 3)


class TestConnectionManagement(unittest.TestCase):
    """Test database connection management."""

    def test_context_manager(self):
        """Test that DatabaseManager works as a context manager."""
        with DatabaseManager(":memory:") as db:
            db.add_user("Context", "ctx@test.com", "hash")
            self.assertTrue(db.user_exists("ctx@test.com"))

        self.assertTrue(db.closed)

    def test_explicit_close(self):
        db = DatabaseManager(":memory:")
        self.assertFalse(db.closed)
        db.close()
        self.assertTrue(db.closed)

        # Calling close again should not raise
        db.close()

    def test_use_after_close_is_storage_unavailable(self):
        db = DatabaseManager(":memory:")
        db.close()
        with self.assertRaises(StorageUnavailableError):
            db.get_user_id("x@test.com")
        with self.assertRaises(StorageUnavailableError):
            with db.transaction():
                pass

    def test_unopenable_path(self):
        missing = os.path.join(tempfile.gettempdir(), "pocketledger-missing-dir", "nope", "x.db")
        with self.assertRaises(StorageUnavailableError):
            DatabaseManager(missing)


class TestTransactionContextManager(unittest.TestCase):
    """Test the transaction context manager."""

    def setUp(self):
        self.db = DatabaseManager(":memory:")
        self.db.add_user("Trans", "trans@test.com", "hash")

    def tearDown(self):
        self.db.close()

    def test_transaction_commit_on_success(self):
        with self.db.transaction():
            self.db.append_transaction("Credit", 100, "Salary", "trans@test.com")
            self.db.append_transaction("Debit", 30, "Food", "trans@test.com")

        self.assertEqual(self.db.current_balance("trans@test.com"), 70)
        self.assertEqual(len(self.db.get_transactions("trans@test.com")), 2)

    def test_transaction_rollback_on_failure(self):
        try:
            with self.db.transaction():
                self.db.append_transaction("Credit", 100, "Salary", "trans@test.com")
                raise ValueError("Simulated error")
        except ValueError:
            pass

        self.assertEqual(len(self.db.get_transactions("trans@test.com")), 0)
        self.assertEqual(self.db.current_balance("trans@test.com"), 0)

    def test_own_writes_visible_inside_transaction(self):
        with self.db.transaction():
            self.db.append_transaction("Credit", 40, "Salary", "trans@test.com")
            self.assertEqual(self.db.current_balance("trans@test.com"), 40)
            self.assertEqual(self.db.cached_balances().get("trans@test.com", 0.0), 0.0)

    def test_nested_scope_joins_outer(self):
        with self.assertRaises(RuntimeError):
            with self.db.transaction():
                with self.db.transaction():
                    self.db.append_transaction("Credit", 50, "Inner", "trans@test.com")
                raise RuntimeError("outer fails after inner finished")

        self.assertEqual(len(self.db.get_transactions("trans@test.com")), 0)
        self.assertFalse(self.db.in_transaction)

    def test_with_transaction_returns_result(self):
        record = self.db.with_transaction(
            self.db.append_transaction, "Credit", 12.5, "Gift", "trans@test.com"
        )
        self.assertEqual(record.amount, 12.5)
        self.assertEqual(self.db.current_balance("trans@test.com"), 12.5)

    def test_sqlite_error_becomes_storage_error(self):
        with self.assertRaises(StorageError):
            with self.db.transaction():
                self.db.conn.execute("INSERT INTO no_such_table VALUES (1)")

    def test_duplicate_email_is_constraint_violation(self):
        with self.assertRaises(ConstraintViolationError):
            self.db.add_user("Again", "trans@test.com", "hash")

    def test_non_positive_amount_is_constraint_violation(self):
        with self.assertRaises(ConstraintViolationError):
            self.db.append_transaction("Credit", 0, "Nothing", "trans@test.com")
        self.assertEqual(self.db.current_balance("trans@test.com"), 0)

    def test_unknown_kind_rejected(self):
        with self.assertRaises(ConstraintViolationError):
            self.db.append_transaction("Refund", 10, "?", "trans@test.com")


class TestLockedDatabase(unittest.TestCase):
    """Another connection holding the write lock surfaces as a conflict."""

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.path = os.path.join(self.tmpdir, "ledger.db")
        self.db = DatabaseManager(self.path)
        self.db.conn.execute("PRAGMA busy_timeout = 0")

    def tearDown(self):
        self.db.close()
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_locked_is_transaction_conflict(self):
        other = sqlite3.connect(self.path, isolation_level=None, timeout=0)
        other.execute("BEGIN IMMEDIATE")
        try:
            with self.assertRaises(TransactionConflictError):
                with self.db.transaction():
                    pass
        finally:
            other.execute("ROLLBACK")
            other.close()

        self.assertFalse(self.db.in_transaction)


class TestRepaymentAtomicity(unittest.TestCase):
    """A failure between the repayment debit and the loan update leaves neither."""

    def setUp(self):
        self.db = DatabaseManager(":memory:")
        self.engine = LedgerEngine(self.db)
        self.email = "borrower@test.com"
        self.engine.register("Borrower", self.email, "hash")
        self.engine.credit(self.email, 2000, "Salary")
        self.loan = self.engine.apply_loan(self.email, 1000, 0.05, 2)

    def tearDown(self):
        self.db.close()

    def _assert_untouched(self):
        self.assertEqual(self.db.current_balance(self.email), 2000)
        log = self.db.get_transactions(self.email)
        self.assertEqual(len(log), 1)
        self.assertNotIn("Loan repayment", log['description'].tolist())
        loan = self.db.get_loan(self.loan.id)
        self.assertAlmostEqual(loan.outstanding, 1050)
        self.assertEqual(loan.status, "active")
        self.assertTrue(self.engine.verify_balances())

    def test_storage_error_after_debit_write(self):
        with patch.object(self.db, 'update_loan_balance', side_effect=StorageError("disk full")):
            with self.assertRaises(StorageError):
                self.engine.repay_loan(self.email)
        self._assert_untouched()

    def test_raw_sqlite_error_after_debit_write(self):
        with patch.object(self.db, 'update_loan_balance',
                          side_effect=sqlite3.OperationalError("disk I/O error")):
            with self.assertRaises(StorageError):
                self.engine.repay_loan(self.email)
        self._assert_untouched()

    def test_repay_works_after_failed_attempt(self):
        with patch.object(self.db, 'update_loan_balance', side_effect=StorageError("disk full")):
            with self.assertRaises(StorageError):
                self.engine.repay_loan(self.email)

        outcome = self.engine.repay_loan(self.email)
        self.assertAlmostEqual(outcome.installment, 525)
        self.assertAlmostEqual(self.db.current_balance(self.email), 1475)


class TestSQLInjectionSafety(unittest.TestCase):
    """Descriptions are stored verbatim through bound parameters."""

    def setUp(self):
        self.db = DatabaseManager(":memory:")
        self.engine = LedgerEngine(self.db)
        self.engine.register("Sql", "sql@test.com", "hash")

    def tearDown(self):
        self.db.close()

    def test_description_with_special_chars(self):
        malicious = "Test'; DROP TABLE transactions; --"
        self.engine.credit("sql@test.com", 10, malicious)

        log = self.db.get_transactions("sql@test.com")
        self.assertEqual(len(log), 1)
        self.assertEqual(log.iloc[0]['description'], malicious)


if __name__ == "__main__":
    unittest.main(verbosity=2)
