"""Centralized configuration for PocketLedger.

This module contains the magic numbers, default values, and business rule
constants used by the store, the engines, and the facade.
"""

# =============================================================================
# STORAGE
# =============================================================================

# Default SQLite database file
DEFAULT_DB_NAME = "users.db"

# Date format for storage (ISO 8601)
DATE_FORMAT_STORAGE = "%Y-%m-%d"

# Timestamp format for storage (matches SQLite CURRENT_TIMESTAMP)
TIMESTAMP_FORMAT_STORAGE = "%Y-%m-%d %H:%M:%S"

# =============================================================================
# BUSINESS RULES
# =============================================================================

# Savings skim percentage bounds (inclusive)
MIN_SAVINGS_PERCENTAGE = 1
MAX_SAVINGS_PERCENTAGE = 100

# Largest single debit accepted from the menu; credits are unbounded
MAX_TRANSACTION_AMOUNT = 1_000_000

# Differences below this are float noise in balance comparisons
BALANCE_TOLERANCE = 0.001

# Longest free-text description accepted
MAX_DESCRIPTION_LENGTH = 100

# Outstanding balance at or below which a loan counts as repaid
LOAN_REPAID_EPSILON = 0.01

# Days ahead of a loan's due date at which reminders are emitted
LOAN_REMINDER_WINDOW_DAYS = 7

# =============================================================================
# LEDGER DESCRIPTIONS
# =============================================================================

SAVINGS_TRANSFER_DESCRIPTION = "Monthly savings transfer"

LOAN_REPAYMENT_DESCRIPTION = "Loan repayment"

# =============================================================================
# SCHEDULER
# =============================================================================

# Poll cadence for the month-end savings sweep (one day)
SCHEDULER_INTERVAL_SECONDS = 24 * 60 * 60

# Bounded wait for an in-flight sweep on shutdown
SCHEDULER_SHUTDOWN_TIMEOUT = 1.0

# Settings key holding the ISO date of the last completed sweep
LAST_SWEEP_SETTING = "last_savings_sweep"

# =============================================================================
# DEPOSIT INTEREST PREDICTOR
# =============================================================================

# Annual fixed-deposit rates in percent
BANK_DEPOSIT_RATES = {
    "RHB": 2.6,
    "Maybank": 2.5,
    "Hong Leong": 2.3,
    "Alliance": 2.85,
    "AmBank": 2.55,
    "Standard Chartered": 2.65,
}

# =============================================================================
# EXPORT & LOGGING
# =============================================================================

CSV_EXPORT_FILENAME = "transaction_history.csv"

LOG_FORMAT = "[%(asctime)s] <%(module)s> %(levelname)s:  %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"
