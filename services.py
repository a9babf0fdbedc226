from __future__ import annotations

import logging
import math
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from aggregations import AggregationRepository, SqlAggregationRepository
from config import get_settings
from models import (
    Budget,
    Category,
    Theme,
    Transaction,
    TransactionType,
    UserPreference,
)
from periods import Period, month_period, to_utc
from progress import budget_progress
from queries import Pagination, TransactionFilters, compose_transaction_query
from schemas import (
    BudgetIn,
    BudgetOut,
    BudgetPreview,
    BudgetUpdateIn,
    CategoryBreakdown,
    CategoryIn,
    CategoryOut,
    DashboardSummary,
    PreferenceIn,
    TransactionIn,
    TransactionOut,
    TransactionPage,
)


logger = logging.getLogger(__name__)

MIN_YEAR = 2000
MAX_YEAR = 2100
TOP_CATEGORY_LIMIT = 5
BUDGET_PREVIEW_LIMIT = 3


class NotFoundError(ValueError):
    """Missing, or owned by someone else; callers cannot tell which."""


class DuplicateResourceError(ValueError):
    pass


class ValidationFailure(ValueError):
    pass


def validate_period(month: int, year: int) -> Period:
    if not 1 <= month <= 12:
        raise ValidationFailure("Month must be between 1 and 12")
    if not MIN_YEAR <= year <= MAX_YEAR:
        raise ValidationFailure(f"Year must be between {MIN_YEAR} and {MAX_YEAR}")
    return month_period(month, year)


def default_currency_for(session: Session, user_id: int) -> str:
    prefs = session.get(UserPreference, user_id)
    if prefs:
        return prefs.default_currency
    return get_settings().default_currency


def _commit_unique(session: Session, message: str) -> None:
    # the unique constraint decides races between concurrent writers
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise DuplicateResourceError(message) from exc


class CategoryService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self, txn_type: Optional[TransactionType] = None) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.type, Category.name, Category.id)
        )
        if txn_type:
            stmt = stmt.where(Category.type == txn_type)
        return self.session.scalars(stmt).all()

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise NotFoundError("Category not found")
        return category

    def _ensure_unique_name(
        self, name: str, txn_type: TransactionType, exclude_id: Optional[int] = None
    ) -> None:
        stmt = select(Category.id).where(
            Category.user_id == self.user_id,
            Category.type == txn_type,
            func.lower(Category.name) == name.lower(),
        )
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        if self.session.scalar(stmt) is not None:
            raise DuplicateResourceError(
                "Category already exists with this name and type"
            )

    def create(self, data: CategoryIn) -> Category:
        self._ensure_unique_name(data.name, data.type)
        category = Category(
            user_id=self.user_id,
            name=data.name,
            type=data.type,
            icon=data.icon,
            color=data.color,
        )
        self.session.add(category)
        _commit_unique(self.session, "Category already exists with this name and type")
        self.session.refresh(category)
        return category

    def update(self, category_id: int, data: CategoryIn) -> Category:
        category = self.get(category_id)
        self._ensure_unique_name(data.name, data.type, exclude_id=category.id)
        if data.type != category.type:
            attached = self.session.execute(
                select(func.count(Transaction.id)).where(
                    Transaction.user_id == self.user_id,
                    Transaction.category_id == category.id,
                )
            ).scalar_one()
            if attached:
                raise ValidationFailure(
                    "Cannot change the type of a category that has transactions"
                )
            if data.type != TransactionType.expense and category.budgets:
                raise ValidationFailure(
                    "Budgets can only be set for expense categories"
                )
        category.name = data.name
        category.type = data.type
        category.icon = data.icon
        category.color = data.color
        _commit_unique(self.session, "Category already exists with this name and type")
        self.session.refresh(category)
        return category

    def delete(self, category_id: int) -> None:
        category = self.get(category_id)
        # transactions keep their rows with the category detached, budgets go
        self.session.delete(category)
        self.session.commit()
        logger.info(f"category_deleted: user_id={self.user_id} id={category_id}")


class TransactionService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _category_for(
        self, category_id: Optional[int], txn_type: TransactionType
    ) -> Optional[Category]:
        if category_id is None:
            return None
        category = CategoryService(self.session, self.user_id).get(category_id)
        if category.type != txn_type:
            raise ValidationFailure("Category type mismatch")
        return category

    def get(self, transaction_id: int) -> Transaction:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(
                Transaction.user_id == self.user_id, Transaction.id == transaction_id
            )
        )
        txn = self.session.scalar(stmt)
        if not txn:
            raise NotFoundError("Transaction not found")
        return txn

    def create(self, data: TransactionIn) -> Transaction:
        category = self._category_for(data.category_id, data.type)
        txn = Transaction(
            user_id=self.user_id,
            type=data.type,
            amount=data.amount,
            currency=data.currency or default_currency_for(self.session, self.user_id),
            occurred_at=to_utc(data.occurred_at),
            category=category,
            note=data.note,
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        txn = self.get(transaction_id)
        category = self._category_for(data.category_id, data.type)
        txn.type = data.type
        txn.amount = data.amount
        if data.currency:
            txn.currency = data.currency
        txn.occurred_at = to_utc(data.occurred_at)
        txn.category = category
        txn.note = data.note
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        self.session.delete(txn)
        self.session.commit()

    def search(
        self, filters: TransactionFilters, pagination: Optional[Pagination] = None
    ) -> TransactionPage:
        settings = get_settings()
        pagination = pagination or Pagination(size=settings.page_size)
        if pagination.page < 0:
            raise ValidationFailure("Page must not be negative")
        if not 1 <= pagination.size <= settings.max_page_size:
            raise ValidationFailure(
                f"Page size must be between 1 and {settings.max_page_size}"
            )

        query = compose_transaction_query(self.user_id, filters)
        total = int(self.session.execute(query.count_statement()).scalar_one() or 0)
        items = self.session.scalars(query.statement(pagination)).unique().all()
        logger.debug(
            f"transaction_search: user_id={self.user_id} path={query.path.value} "
            f"filters={sorted(query.active)} total={total}"
        )

        total_pages = math.ceil(total / pagination.size) if total else 0
        return TransactionPage(
            content=[TransactionOut.model_validate(txn) for txn in items],
            total_elements=total,
            total_pages=total_pages,
            number=pagination.page,
            size=pagination.size,
            first=pagination.page == 0,
            last=pagination.page + 1 >= total_pages,
        )


class BudgetService:
    def __init__(
        self,
        session: Session,
        user_id: int,
        aggregations: Optional[AggregationRepository] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.aggregations = aggregations or SqlAggregationRepository(session)

    def list_for_month(
        self, month: int, year: int, limit: Optional[int] = None
    ) -> list[Budget]:
        validate_period(month, year)
        stmt = (
            select(Budget)
            .options(joinedload(Budget.category))
            .where(
                Budget.user_id == self.user_id,
                Budget.month == month,
                Budget.year == year,
            )
            .order_by(Budget.created_at.asc(), Budget.id.asc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return self.session.scalars(stmt).all()

    def get(self, budget_id: int) -> Budget:
        budget = self.session.get(Budget, budget_id)
        if not budget or budget.user_id != self.user_id:
            raise NotFoundError("Budget not found")
        return budget

    def create(self, data: BudgetIn) -> Budget:
        validate_period(data.month, data.year)
        category = CategoryService(self.session, self.user_id).get(data.category_id)
        if category.type != TransactionType.expense:
            raise ValidationFailure("Budgets can only be set for expense categories")

        existing = self.session.scalar(
            select(Budget.id).where(
                Budget.user_id == self.user_id,
                Budget.category_id == category.id,
                Budget.month == data.month,
                Budget.year == data.year,
            )
        )
        if existing is not None:
            raise DuplicateResourceError(
                "Budget already exists for this category and period"
            )

        budget = Budget(
            user_id=self.user_id,
            category=category,
            month=data.month,
            year=data.year,
            limit_amount=data.limit_amount,
            currency=data.currency or default_currency_for(self.session, self.user_id),
        )
        self.session.add(budget)
        _commit_unique(
            self.session, "Budget already exists for this category and period"
        )
        self.session.refresh(budget)
        logger.info(
            f"budget_created: user_id={self.user_id} id={budget.id} "
            f"category_id={category.id} period={data.year:04d}-{data.month:02d}"
        )
        return budget

    def update(self, budget_id: int, data: BudgetUpdateIn) -> Budget:
        budget = self.get(budget_id)
        budget.limit_amount = data.limit_amount
        if data.currency:
            budget.currency = data.currency
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def delete(self, budget_id: int) -> None:
        budget = self.get(budget_id)
        self.session.delete(budget)
        self.session.commit()

    def spent_and_progress(self, budget: Budget, period: Period) -> tuple[Decimal, float]:
        spent = self.aggregations.sum_amount(
            self.user_id, TransactionType.expense, period, budget.category_id
        )
        return spent, budget_progress(spent, budget.limit_amount)

    def with_progress(self, budget: Budget) -> BudgetOut:
        period = month_period(budget.month, budget.year)
        spent, percent = self.spent_and_progress(budget, period)
        return BudgetOut(
            id=budget.id,
            category=CategoryOut.model_validate(budget.category),
            month=budget.month,
            year=budget.year,
            limit_amount=budget.limit_amount,
            spent_amount=spent,
            currency=budget.currency,
            progress_percent=percent,
        )

    def list_with_progress(self, month: int, year: int) -> list[BudgetOut]:
        return [
            self.with_progress(budget) for budget in self.list_for_month(month, year)
        ]


class PreferenceService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def get(self) -> UserPreference:
        prefs = self.session.get(UserPreference, self.user_id)
        if not prefs:
            raise NotFoundError("User preferences not found")
        return prefs

    def ensure(self) -> UserPreference:
        """Return the user's preferences, provisioning defaults on first use."""
        prefs = self.session.get(UserPreference, self.user_id)
        if prefs:
            return prefs
        settings = get_settings()
        prefs = UserPreference(
            user_id=self.user_id,
            locale=settings.default_locale,
            theme=Theme.light,
            default_currency=settings.default_currency,
        )
        self.session.add(prefs)
        try:
            self.session.commit()
        except IntegrityError:
            # a concurrent request provisioned them first
            self.session.rollback()
            return self.get()
        logger.info(f"preferences_provisioned: user_id={self.user_id}")
        return prefs

    def update(self, data: PreferenceIn) -> UserPreference:
        prefs = self.ensure()
        if data.locale is not None:
            prefs.locale = data.locale
        if data.theme is not None:
            prefs.theme = data.theme
        if data.default_currency is not None:
            prefs.default_currency = data.default_currency
        self.session.commit()
        self.session.refresh(prefs)
        return prefs


class DashboardService:
    def __init__(
        self,
        session: Session,
        user_id: int,
        aggregations: Optional[AggregationRepository] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.aggregations = aggregations or SqlAggregationRepository(session)

    def summary(self, month: int, year: int) -> DashboardSummary:
        period = validate_period(month, year)

        income = self.aggregations.sum_amount(
            self.user_id, TransactionType.income, period
        )
        expense = self.aggregations.sum_amount(
            self.user_id, TransactionType.expense, period
        )

        totals = self.aggregations.sum_by_category(
            self.user_id, TransactionType.expense, period
        )
        top_categories = [
            CategoryBreakdown(
                category_id=row.category_id,
                category_name=row.category_name,
                amount=row.amount,
            )
            for row in totals[:TOP_CATEGORY_LIMIT]
        ]

        budgets = BudgetService(self.session, self.user_id, self.aggregations)
        previews: list[BudgetPreview] = []
        for budget in budgets.list_for_month(month, year, limit=BUDGET_PREVIEW_LIMIT):
            spent, percent = budgets.spent_and_progress(budget, period)
            previews.append(
                BudgetPreview(
                    category_name=budget.category.name,
                    limit_amount=budget.limit_amount,
                    spent_amount=spent,
                    progress_percent=percent,
                )
            )

        logger.info(
            f"dashboard_summary: user_id={self.user_id} period={period.label()} "
            f"categories={len(top_categories)} budgets={len(previews)}"
        )
        return DashboardSummary(
            total_income=income,
            total_expense=expense,
            balance=income - expense,
            top_categories=top_categories,
            budgets=previews,
        )
