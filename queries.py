from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Iterable, Optional

from sqlalchemy import ColumnElement, Select, func, select
from sqlalchemy.orm import joinedload

from models import Transaction, TransactionType
from periods import to_utc


@dataclass
class TransactionFilters:
    occurred_from: Optional[datetime] = None
    occurred_to: Optional[datetime] = None
    type: Optional[TransactionType] = None
    category_id: Optional[int] = None
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    query: Optional[str] = None

    def active(self) -> dict[str, Any]:
        """Filters that actually constrain the result, keyed by predicate name.

        Instants are normalized to naive UTC and the free-text query is
        trimmed and case-folded; a blank query counts as absent.
        """
        query = (self.query or "").strip().casefold()
        values = {
            "occurred_from": to_utc(self.occurred_from),
            "occurred_to": to_utc(self.occurred_to),
            "type": self.type,
            "category_id": self.category_id,
            "min_amount": self.min_amount,
            "max_amount": self.max_amount,
            "query": query or None,
        }
        return {name: value for name, value in values.items() if value is not None}


@dataclass(frozen=True)
class FilterPredicate:
    name: str
    clause: Callable[[Any], ColumnElement[bool]]
    test: Callable[[Transaction, Any], bool]


def _note_contains(txn: Transaction, needle: str) -> bool:
    return needle in (txn.note or "").casefold()


# The upper bound is inclusive here, unlike the half-open month periods.
FILTER_PREDICATES: tuple[FilterPredicate, ...] = (
    FilterPredicate(
        "occurred_from",
        lambda value: Transaction.occurred_at >= value,
        lambda txn, value: txn.occurred_at >= value,
    ),
    FilterPredicate(
        "occurred_to",
        lambda value: Transaction.occurred_at <= value,
        lambda txn, value: txn.occurred_at <= value,
    ),
    FilterPredicate(
        "type",
        lambda value: Transaction.type == value,
        lambda txn, value: txn.type == value,
    ),
    FilterPredicate(
        "category_id",
        lambda value: Transaction.category_id == value,
        lambda txn, value: txn.category_id == value,
    ),
    FilterPredicate(
        "min_amount",
        lambda value: Transaction.amount >= value,
        lambda txn, value: txn.amount >= value,
    ),
    FilterPredicate(
        "max_amount",
        lambda value: Transaction.amount <= value,
        lambda txn, value: txn.amount <= value,
    ),
    FilterPredicate(
        "query",
        lambda value: func.casefold(Transaction.note).contains(
            value, autoescape=True
        ),
        _note_contains,
    ),
)


class QueryPath(str, Enum):
    unfiltered = "unfiltered"
    type_only = "type_only"
    general = "general"


@dataclass(frozen=True)
class Pagination:
    page: int = 0
    size: int = 20

    @property
    def offset(self) -> int:
        return self.page * self.size


@dataclass(frozen=True)
class TransactionQuery:
    user_id: int
    path: QueryPath
    active: dict[str, Any] = field(default_factory=dict)

    def conditions(self) -> list[ColumnElement[bool]]:
        conditions: list[ColumnElement[bool]] = [Transaction.user_id == self.user_id]
        if self.path is QueryPath.type_only:
            conditions.append(Transaction.type == self.active["type"])
        elif self.path is QueryPath.general:
            conditions.extend(
                predicate.clause(self.active[predicate.name])
                for predicate in FILTER_PREDICATES
                if predicate.name in self.active
            )
        return conditions

    def statement(self, pagination: Optional[Pagination] = None) -> Select:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(*self.conditions())
            .order_by(Transaction.occurred_at.desc(), Transaction.id.desc())
        )
        if pagination is not None:
            stmt = stmt.offset(pagination.offset).limit(pagination.size)
        return stmt

    def count_statement(self) -> Select:
        return select(func.count(Transaction.id)).where(*self.conditions())

    def matches(self, txn: Transaction) -> bool:
        if txn.user_id != self.user_id:
            return False
        return all(
            predicate.test(txn, self.active[predicate.name])
            for predicate in FILTER_PREDICATES
            if predicate.name in self.active
        )

    def apply(
        self, rows: Iterable[Transaction], pagination: Optional[Pagination] = None
    ) -> list[Transaction]:
        """Evaluate the query over rows already in memory."""
        matched = sorted(
            (txn for txn in rows if self.matches(txn)),
            key=lambda txn: (txn.occurred_at, txn.id),
            reverse=True,
        )
        if pagination is None:
            return matched
        return matched[pagination.offset : pagination.offset + pagination.size]


def compose_transaction_query(
    user_id: int, filters: TransactionFilters, *, allow_fast_path: bool = True
) -> TransactionQuery:
    active = filters.active()
    if allow_fast_path and not active:
        path = QueryPath.unfiltered
    elif allow_fast_path and set(active) == {"type"}:
        path = QueryPath.type_only
    else:
        path = QueryPath.general
    return TransactionQuery(user_id=user_id, path=path, active=active)
