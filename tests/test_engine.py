import threading
import unittest

from pocketledger.database import DatabaseManager
from pocketledger.engine import LedgerEngine, UserSession
from pocketledger.exceptions import (
    DuplicateUserError,
    InsufficientFundsError,
    ValidationError,
)


class TestRegistration(unittest.TestCase):

    def setUp(self):
        self.db = DatabaseManager(":memory:")
        self.engine = LedgerEngine(self.db)

    def tearDown(self):
        self.db.close()

    def test_register_and_authenticate(self):
        user_id = self.engine.register("Alice1", "alice@test.com", "5e88489")
        self.assertGreater(user_id, 0)
        self.assertTrue(self.engine.user_exists("alice@test.com"))
        self.assertEqual(self.engine.user_id("alice@test.com"), user_id)

        self.assertTrue(self.engine.authenticate("alice@test.com", "5e88489"))
        self.assertFalse(self.engine.authenticate("alice@test.com", "wrong"))
        self.assertFalse(self.engine.authenticate("ghost@test.com", "5e88489"))

    def test_duplicate_email(self):
        self.engine.register("Alice", "alice@test.com", "hash")
        with self.assertRaises(DuplicateUserError):
            self.engine.register("Other", "alice@test.com", "hash")

    def test_invalid_registration(self):
        with self.assertRaises(ValidationError):
            self.engine.register("Bad Name!", "bad@test.com", "hash")
        with self.assertRaises(ValidationError):
            self.engine.register("", "empty@test.com", "hash")
        with self.assertRaises(ValidationError):
            self.engine.register("Bob", "not-an-email", "hash")
        with self.assertRaises(ValidationError):
            self.engine.register("Bob", "bob@test.com", "")
        self.assertFalse(self.engine.user_exists("bob@test.com"))

    def test_unknown_user_id(self):
        self.assertEqual(self.engine.user_id("ghost@test.com"), -1)
        with self.assertRaises(ValidationError):
            self.engine.session("ghost@test.com")


class TestLedgerOperations(unittest.TestCase):

    def setUp(self):
        self.db = DatabaseManager(":memory:")
        self.engine = LedgerEngine(self.db)
        self.email = "ops@test.com"
        self.engine.register("Ops", self.email, "hash")

    def tearDown(self):
        self.db.close()

    def test_credit_then_debit(self):
        summary = self.engine.credit(self.email, 250.5, "Salary")
        self.assertAlmostEqual(summary.balance, 250.5)

        summary = self.engine.debit(self.email, 50.5, "Lunch")
        self.assertAlmostEqual(summary.balance, 200)
        self.assertEqual(summary.owner_email, self.email)
        self.assertAlmostEqual(summary.loan_outstanding, 0)

    def test_insufficient_funds(self):
        self.engine.credit(self.email, 100, "Salary")
        with self.assertRaises(InsufficientFundsError) as ctx:
            self.engine.debit(self.email, 100.01, "Too much")

        self.assertAlmostEqual(ctx.exception.details['available'], 100)
        self.assertAlmostEqual(self.db.current_balance(self.email), 100)
        self.assertEqual(len(self.db.get_transactions(self.email)), 1)

    def test_debit_exact_balance(self):
        self.engine.credit(self.email, 100, "Salary")
        summary = self.engine.debit(self.email, 100, "Everything")
        self.assertAlmostEqual(summary.balance, 0)

    def test_debit_fractional_remaining_balance(self):
        self.engine.credit(self.email, 0.30, "Change")
        self.engine.debit(self.email, 0.10, "Sweet")

        # 0.30 - 0.10 leaves 0.19999999999999998 in float
        summary = self.engine.debit(self.email, 0.20, "Gum")
        self.assertAlmostEqual(summary.balance, 0)
        self.assertEqual(len(self.db.get_transactions(self.email)), 3)

        with self.assertRaises(InsufficientFundsError):
            self.engine.debit(self.email, 0.01, "Nothing left")
        self.assertTrue(self.engine.verify_balances())

    def test_amount_validation(self):
        self.engine.credit(self.email, 100, "Salary")
        for bad in (0, -5, "10", None, float('nan'), float('inf'), True):
            with self.subTest(amount=bad):
                with self.assertRaises(ValidationError):
                    self.engine.debit(self.email, bad, "Bad")
                with self.assertRaises(ValidationError):
                    self.engine.credit(self.email, bad, "Bad")
        self.assertEqual(len(self.db.get_transactions(self.email)), 1)

    def test_debit_limit(self):
        self.engine.credit(self.email, 2_000_000, "Windfall")
        with self.assertRaises(ValidationError):
            self.engine.debit(self.email, 1_000_001, "Too big")
        self.engine.debit(self.email, 1_000_000, "Just right")

    def test_description_validation(self):
        with self.assertRaises(ValidationError):
            self.engine.credit(self.email, 10, "x" * 101)
        with self.assertRaises(ValidationError):
            self.engine.credit(self.email, 10, None)
        self.engine.credit(self.email, 10, "x" * 100)
        self.engine.credit(self.email, 10, "")

    def test_savings_percentage_validation(self):
        for bad in (0, 101, 5.5, "10", True):
            with self.subTest(percentage=bad):
                with self.assertRaises(ValidationError):
                    self.engine.activate_savings(self.email, bad)
        self.assertIsNone(self.db.get_savings_account(self.email))

    def test_unregistered_email(self):
        with self.assertRaises(ValidationError):
            self.engine.credit("ghost@test.com", 10, "Gift")
        with self.assertRaises(ValidationError):
            self.engine.activate_savings("ghost@test.com", 10)
        self.assertEqual(len(self.db.get_transactions("ghost@test.com")), 0)

    def test_transaction_log_order(self):
        self.engine.credit(self.email, 10, "First")
        self.engine.credit(self.email, 20, "Second")

        oldest = self.engine.transaction_log(self.email)
        newest = self.engine.transaction_log(self.email, newest_first=True)
        self.assertEqual(oldest['description'].tolist(), ["First", "Second"])
        self.assertEqual(newest['description'].tolist(), ["Second", "First"])


class TestUserSession(unittest.TestCase):

    def setUp(self):
        self.db = DatabaseManager(":memory:")
        self.engine = LedgerEngine(self.db)
        self.engine.register("Sess", "sess@test.com", "hash")
        self.session = self.engine.session("sess@test.com")

    def tearDown(self):
        self.db.close()

    def test_session_calls(self):
        self.assertIsInstance(self.session, UserSession)
        self.session.credit(1000, "Salary")
        self.session.activate_savings(20)
        self.session.debit(100, "Rent")
        self.session.apply_loan(300, 0.1, 3)

        summary = self.session.summary()
        self.assertAlmostEqual(summary.balance, 900)
        self.assertAlmostEqual(summary.savings, 20)
        self.assertAlmostEqual(summary.loan_outstanding, 330)

        outcome = self.session.repay_loan()
        self.assertAlmostEqual(outcome.installment, 110)
        self.assertFalse(self.session.is_blocked())
        self.assertEqual(self.session.reminders(), [])
        self.assertEqual(len(self.session.transaction_log()), 3)
        self.assertEqual(len(self.session.history(kind="Debit")), 2)


class TestConcurrentAccess(unittest.TestCase):
    """A sweep running in another thread interleaves safely with user operations."""

    def setUp(self):
        self.db = DatabaseManager(":memory:")
        self.engine = LedgerEngine(self.db)
        self.emails = [f"user{i}@test.com" for i in range(4)]
        for i, email in enumerate(self.emails):
            self.engine.register(f"User{i}", email, "hash")
            self.engine.credit(email, 10000, "Salary")
            self.engine.activate_savings(email, 10)

    def tearDown(self):
        self.db.close()

    def test_sweeps_and_debits_keep_aggregates_consistent(self):
        stop = threading.Event()
        errors = []

        def sweeper():
            while not stop.is_set():
                report = self.engine.monthly_sweep()
                errors.extend(report.failed)

        def spender(email):
            try:
                for _ in range(25):
                    self.engine.debit(email, 10, "Coffee")
            except Exception as e:
                errors.append(e)

        sweep_thread = threading.Thread(target=sweeper)
        spenders = [threading.Thread(target=spender, args=(email,)) for email in self.emails]
        sweep_thread.start()
        for t in spenders:
            t.start()
        for t in spenders:
            t.join()
        stop.set()
        sweep_thread.join()
        self.engine.monthly_sweep()

        self.assertEqual(errors, [])
        for email in self.emails:
            # 25 debits of 10, with every 1.0 skim swept back
            self.assertAlmostEqual(self.db.current_balance(email), 10000 - 250 + 25)
            self.assertAlmostEqual(self.db.get_savings_amount(email), 0)
        self.assertAlmostEqual(self.db.total_savings(), 0)
        self.assertTrue(self.engine.verify_balances())


if __name__ == '__main__':
    unittest.main()
