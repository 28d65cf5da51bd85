from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pocketledger.result import Result

CREDIT = "Credit"
DEBIT = "Debit"
TRANSACTION_KINDS = (CREDIT, DEBIT)

LOAN_ACTIVE = "active"
LOAN_REPAID = "repaid"


@dataclass(frozen=True)
class TransactionRecord:
    """One immutable row of the append-only transaction log."""
    id: int
    kind: str
    amount: float
    description: str
    owner_email: str
    timestamp: str

    @property
    def signed_amount(self) -> float:
        return self.amount if self.kind == CREDIT else -self.amount

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'TransactionRecord':
        return cls(
            id=int(row['id']),
            kind=row['kind'],
            amount=float(row['amount']),
            description=row['description'],
            owner_email=row['owner_email'],
            timestamp=str(row['timestamp']),
        )


@dataclass
class SavingsAccount:
    owner_email: str
    percentage: int
    accumulated_amount: float = 0.0
    id: Optional[int] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'SavingsAccount':
        return cls(
            id=row['id'],
            owner_email=row['owner_email'],
            percentage=int(row['percentage']),
            accumulated_amount=float(row['accumulated_amount'] or 0.0),
        )


@dataclass
class Loan:
    id: int
    user_id: int
    principal: float
    rate: float
    period_months: int
    outstanding: float
    status: str
    created_at: datetime

    @property
    def total_repayable(self) -> float:
        return self.principal * (1 + self.rate)

    @classmethod
    def from_row(cls, row: Dict[str, Any], timestamp_format: str) -> 'Loan':
        created = row['created_at']
        if isinstance(created, str):
            created = datetime.strptime(created, timestamp_format)
        return cls(
            id=int(row['id']),
            user_id=int(row['user_id']),
            principal=float(row['principal']),
            rate=float(row['rate']),
            period_months=int(row['period_months']),
            outstanding=float(row['outstanding']),
            status=row['status'],
            created_at=created,
        )


@dataclass
class RepaymentOutcome:
    """DTO returned by a loan repayment."""
    loan_id: int
    installment: float
    outstanding: float
    status: str
    transaction: TransactionRecord


@dataclass
class LoanReminder:
    loan_id: int
    outstanding: float
    due_date: date
    days_left: int

    def __str__(self):
        return (f"Reminder: RM {self.outstanding:.2f} loan is due on "
                f"{self.due_date.isoformat()} (in {self.days_left} days).")


@dataclass
class LedgerSummary:
    """Balance, savings and loan figures for one user, read in one snapshot."""
    owner_email: str
    balance: float
    savings: float
    loan_outstanding: float


@dataclass
class SweepReport:
    """Outcome of one monthly savings sweep, keyed by owner email."""
    started_at: datetime
    outcomes: Dict[str, Result] = field(default_factory=dict)
    interrupted: bool = False

    @property
    def swept(self) -> List[str]:
        return [email for email, outcome in self.outcomes.items() if outcome]

    @property
    def failed(self) -> List[str]:
        return [email for email, outcome in self.outcomes.items() if not outcome]

    @property
    def total_transferred(self) -> float:
        return sum(outcome.value for outcome in self.outcomes.values() if outcome)
