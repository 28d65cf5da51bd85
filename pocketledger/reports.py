"""
Report generation module for PocketLedger.
Handles transaction history queries and CSV export for one ledger owner.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Optional

import pandas as pd

from pocketledger.config import CSV_EXPORT_FILENAME, DATE_FORMAT_STORAGE
from pocketledger.data_structures import CREDIT, DEBIT, TRANSACTION_KINDS
from pocketledger.exceptions import ValidationError

logger = logging.getLogger(__name__)


class SortField(Enum):
    DATE = "date"
    AMOUNT = "amount"


class SortOrder(Enum):
    ASC = "asc"
    DESC = "desc"


# Only these column expressions ever reach the ORDER BY clause
_SORT_COLUMNS = {
    SortField.DATE: "timestamp",
    SortField.AMOUNT: "amount",
}


def _normalize_date(value, field):
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.strftime(DATE_FORMAT_STORAGE)
    if isinstance(value, date):
        return value.strftime(DATE_FORMAT_STORAGE)
    try:
        return datetime.strptime(str(value), DATE_FORMAT_STORAGE).strftime(DATE_FORMAT_STORAGE)
    except ValueError:
        raise ValidationError(f"Invalid date '{value}', expected YYYY-MM-DD", field, value)


@dataclass
class HistoryQuery:
    """Filter and sort options for one owner's transaction history.

    Every value is bound as a query parameter; sorting is limited to the
    SortField/SortOrder enums.
    """
    owner_email: str
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    kind: Optional[str] = None
    min_amount: Optional[float] = None
    max_amount: Optional[float] = None
    sort_by: Optional[SortField] = None
    order: SortOrder = SortOrder.ASC

    def build(self):
        """Return ``(sql, params)`` for this query.

        Raises:
            ValidationError: On an unknown kind, sort option, or an inverted range.
        """
        query = "SELECT id, kind, amount, description, owner_email, timestamp FROM transactions WHERE owner_email = ?"
        params = [self.owner_email]

        start = _normalize_date(self.start_date, 'start_date')
        end = _normalize_date(self.end_date, 'end_date')
        if start and end and start > end:
            raise ValidationError("Start date is after end date", 'start_date', start)
        if start:
            query += " AND DATE(timestamp) >= ?"
            params.append(start)
        if end:
            query += " AND DATE(timestamp) <= ?"
            params.append(end)

        if self.kind is not None:
            kind = str(self.kind).capitalize()
            if kind not in TRANSACTION_KINDS:
                raise ValidationError(f"Unknown transaction type '{self.kind}'", 'kind', self.kind)
            query += " AND kind = ?"
            params.append(kind)

        if (self.min_amount is not None and self.max_amount is not None
                and self.min_amount > self.max_amount):
            raise ValidationError("Minimum amount exceeds maximum", 'min_amount', self.min_amount)
        if self.min_amount is not None:
            query += " AND amount >= ?"
            params.append(float(self.min_amount))
        if self.max_amount is not None:
            query += " AND amount <= ?"
            params.append(float(self.max_amount))

        if self.sort_by is not None:
            if not isinstance(self.sort_by, SortField):
                raise ValidationError("Sort by date or amount", 'sort_by', self.sort_by)
            if not isinstance(self.order, SortOrder):
                raise ValidationError("Order must be asc or desc", 'order', self.order)
            query += f" ORDER BY {_SORT_COLUMNS[self.sort_by]} {self.order.value.upper()}, id"
        else:
            query += " ORDER BY id"

        return query, params


class ReportGenerator:
    def __init__(self, db_manager):
        self.db = db_manager

    def history(self, query: HistoryQuery) -> pd.DataFrame:
        sql, params = query.build()
        return self.db.read_dataframe(sql, params)

    def export_csv(self, owner_email, path=CSV_EXPORT_FILENAME):
        """
        Write the owner's transactions to CSV as Date,Description,Type,Amount.
        Commas inside descriptions are replaced with semicolons.
        Returns the number of rows written.
        """
        df = self.db.get_transactions(owner_email)
        export = pd.DataFrame({
            "Date": df["timestamp"].astype(str),
            "Description": df["description"].astype(str).str.replace(",", ";", regex=False),
            "Type": df["kind"],
            "Amount": df["amount"].astype(float),
        })
        export.to_csv(path, index=False, float_format="%.2f")
        logger.info("Exported %d transactions for %s to %s", len(export), owner_email, path)
        return len(export)

    def monthly_totals(self, owner_email) -> pd.DataFrame:
        """Credit, debit and net totals per calendar month (YYYY-MM)."""
        df = self.db.get_transactions(owner_email)
        columns = ["month", CREDIT, DEBIT, "net"]
        if df.empty:
            return pd.DataFrame(columns=columns)

        df["month"] = pd.to_datetime(df["timestamp"]).dt.strftime("%Y-%m")
        totals = df.pivot_table(index="month", columns="kind", values="amount",
                                aggfunc="sum", fill_value=0.0)
        for kind in (CREDIT, DEBIT):
            if kind not in totals.columns:
                totals[kind] = 0.0
        totals["net"] = totals[CREDIT] - totals[DEBIT]
        totals = totals.reset_index()
        totals.columns.name = None
        return totals[columns]
