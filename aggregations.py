"""Read-only sums over a user's transactions.

Everything the dashboard and budget views compute goes through
``AggregationRepository``. ``SqlAggregationRepository`` answers with SQL
aggregates; ``InMemoryAggregationRepository`` answers the same questions over a
plain list of entries and serves as the reference the SQL version is tested
against.

Both share one contract: periods are half-open (``start <= occurred_at < end``),
an empty match sums to ``Decimal("0")``, and per-category totals are ordered by
amount descending, then category id ascending.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional, Protocol

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from models import Category, Transaction, TransactionType
from periods import Period
from progress import ZERO


@dataclass(frozen=True)
class CategoryTotal:
    category_id: int
    category_name: str
    amount: Decimal


class AggregationRepository(Protocol):
    def sum_amount(
        self,
        user_id: int,
        txn_type: TransactionType,
        period: Period,
        category_id: Optional[int] = None,
    ) -> Decimal: ...

    def sum_by_category(
        self, user_id: int, txn_type: TransactionType, period: Period
    ) -> list[CategoryTotal]: ...


def _as_decimal(value: object) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


class SqlAggregationRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def sum_amount(
        self,
        user_id: int,
        txn_type: TransactionType,
        period: Period,
        category_id: Optional[int] = None,
    ) -> Decimal:
        stmt = select(func.coalesce(func.sum(Transaction.amount), 0)).where(
            Transaction.user_id == user_id,
            Transaction.type == txn_type,
            Transaction.occurred_at >= period.start,
            Transaction.occurred_at < period.end,
        )
        if category_id is not None:
            stmt = stmt.where(Transaction.category_id == category_id)
        return _as_decimal(self.session.execute(stmt).scalar_one())

    def sum_by_category(
        self, user_id: int, txn_type: TransactionType, period: Period
    ) -> list[CategoryTotal]:
        total = func.sum(Transaction.amount).label("total")
        stmt = (
            select(Category.id, Category.name, total)
            .select_from(Transaction)
            .join(Category, Transaction.category_id == Category.id)
            .where(
                Transaction.user_id == user_id,
                Category.user_id == user_id,
                Transaction.type == txn_type,
                Transaction.occurred_at >= period.start,
                Transaction.occurred_at < period.end,
            )
            .group_by(Category.id, Category.name)
            .order_by(total.desc(), Category.id.asc())
        )
        return [
            CategoryTotal(
                category_id=row.id,
                category_name=row.name,
                amount=_as_decimal(row.total),
            )
            for row in self.session.execute(stmt)
        ]


@dataclass(frozen=True)
class LedgerEntry:
    user_id: int
    type: TransactionType
    amount: Decimal
    occurred_at: datetime
    category_id: Optional[int] = None
    category_name: Optional[str] = None


class InMemoryAggregationRepository:
    def __init__(self, entries: Iterable[LedgerEntry] = ()) -> None:
        self.entries: list[LedgerEntry] = list(entries)

    @classmethod
    def from_transactions(
        cls, transactions: Iterable[Transaction]
    ) -> InMemoryAggregationRepository:
        return cls(
            LedgerEntry(
                user_id=txn.user_id,
                type=txn.type,
                amount=txn.amount,
                occurred_at=txn.occurred_at,
                category_id=txn.category_id,
                category_name=txn.category.name if txn.category else None,
            )
            for txn in transactions
        )

    def add(self, entry: LedgerEntry) -> None:
        self.entries.append(entry)

    def _matching(
        self, user_id: int, txn_type: TransactionType, period: Period
    ) -> list[LedgerEntry]:
        return [
            entry
            for entry in self.entries
            if entry.user_id == user_id
            and entry.type == txn_type
            and period.contains(entry.occurred_at)
        ]

    def sum_amount(
        self,
        user_id: int,
        txn_type: TransactionType,
        period: Period,
        category_id: Optional[int] = None,
    ) -> Decimal:
        return sum(
            (
                entry.amount
                for entry in self._matching(user_id, txn_type, period)
                if category_id is None or entry.category_id == category_id
            ),
            ZERO,
        )

    def sum_by_category(
        self, user_id: int, txn_type: TransactionType, period: Period
    ) -> list[CategoryTotal]:
        totals: dict[int, Decimal] = {}
        names: dict[int, str] = {}
        for entry in self._matching(user_id, txn_type, period):
            if entry.category_id is None:
                continue
            totals[entry.category_id] = totals.get(entry.category_id, ZERO) + entry.amount
            names.setdefault(entry.category_id, entry.category_name or "")
        rows = [
            CategoryTotal(category_id=cid, category_name=names[cid], amount=amount)
            for cid, amount in totals.items()
        ]
        rows.sort(key=lambda row: (-row.amount, row.category_id))
        return rows
