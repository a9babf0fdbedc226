from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import TransactionType
from schemas import BudgetIn, BudgetUpdateIn, CategoryIn, PreferenceIn, TransactionIn
from services import (
    BudgetService,
    CategoryService,
    DuplicateResourceError,
    NotFoundError,
    PreferenceService,
    TransactionService,
    ValidationFailure,
)

USER = 1
OTHER_USER = 2


def _spend(session: Session, category_id: int, amount: str, occurred_at: datetime) -> None:
    TransactionService(session, USER).create(
        TransactionIn(
            type=TransactionType.expense,
            amount=Decimal(amount),
            occurred_at=occurred_at,
            category_id=category_id,
        )
    )


def test_budget_progress_follows_month_spending() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        food = CategoryService(session, USER).create(
            CategoryIn(name="Food", type=TransactionType.expense)
        )
        _spend(session, food.id, "100.00", datetime(2025, 3, 5, 12, 0))
        _spend(session, food.id, "50.00", datetime(2025, 3, 20, 8, 30))
        _spend(session, food.id, "999.00", datetime(2025, 4, 1, 0, 0))

        budgets = BudgetService(session, USER)
        budget = budgets.create(
            BudgetIn(
                category_id=food.id, month=3, year=2025, limit_amount=Decimal("200")
            )
        )

        out = budgets.with_progress(budget)
        assert out.spent_amount == Decimal("150.00")
        assert out.progress_percent == 75.0
        assert out.currency == "RUB"
        assert out.category.name == "Food"

        budgets.update(budget.id, BudgetUpdateIn(limit_amount=Decimal("100")))
        [listed] = budgets.list_with_progress(3, 2025)
        assert listed.limit_amount == Decimal("100")
        assert listed.spent_amount == Decimal("150.00")
        assert listed.progress_percent == 100.0


def test_budget_currency_defaults_to_user_preference() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        PreferenceService(session, USER).update(PreferenceIn(default_currency="eur"))
        food = CategoryService(session, USER).create(
            CategoryIn(name="Food", type=TransactionType.expense)
        )
        budgets = BudgetService(session, USER)
        implicit = budgets.create(
            BudgetIn(category_id=food.id, month=1, year=2025, limit_amount=Decimal("10"))
        )
        explicit = budgets.create(
            BudgetIn(
                category_id=food.id,
                month=2,
                year=2025,
                limit_amount=Decimal("10"),
                currency="usd",
            )
        )

        assert implicit.currency == "EUR"
        assert explicit.currency == "USD"


def test_duplicate_budget_for_same_period_is_rejected() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        food = CategoryService(session, USER).create(
            CategoryIn(name="Food", type=TransactionType.expense)
        )
        budgets = BudgetService(session, USER)
        data = BudgetIn(
            category_id=food.id, month=6, year=2025, limit_amount=Decimal("300")
        )
        budgets.create(data)

        with pytest.raises(DuplicateResourceError):
            budgets.create(data)

        # a different month is a different budget
        budgets.create(data.model_copy(update={"month": 7}))
        assert len(budgets.list_for_month(7, 2025)) == 1


def test_budget_requires_owned_expense_category() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        salary = CategoryService(session, USER).create(
            CategoryIn(name="Salary", type=TransactionType.income)
        )
        theirs = CategoryService(session, OTHER_USER).create(
            CategoryIn(name="Food", type=TransactionType.expense)
        )
        budgets = BudgetService(session, USER)

        with pytest.raises(ValidationFailure):
            budgets.create(
                BudgetIn(
                    category_id=salary.id,
                    month=1,
                    year=2025,
                    limit_amount=Decimal("10"),
                )
            )
        with pytest.raises(NotFoundError):
            budgets.create(
                BudgetIn(
                    category_id=theirs.id,
                    month=1,
                    year=2025,
                    limit_amount=Decimal("10"),
                )
            )


def test_budgets_are_invisible_to_other_users() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        food = CategoryService(session, USER).create(
            CategoryIn(name="Food", type=TransactionType.expense)
        )
        budget = BudgetService(session, USER).create(
            BudgetIn(category_id=food.id, month=1, year=2025, limit_amount=Decimal("10"))
        )
        intruder = BudgetService(session, OTHER_USER)

        assert intruder.list_for_month(1, 2025) == []
        with pytest.raises(NotFoundError):
            intruder.get(budget.id)
        with pytest.raises(NotFoundError):
            intruder.update(budget.id, BudgetUpdateIn(limit_amount=Decimal("1")))
        with pytest.raises(NotFoundError):
            intruder.delete(budget.id)

        BudgetService(session, USER).delete(budget.id)
        assert BudgetService(session, USER).list_for_month(1, 2025) == []


def test_budgets_list_in_creation_order() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        categories = CategoryService(session, USER)
        budgets = BudgetService(session, USER)
        names = ["Rent", "Food", "Transport"]
        for name in names:
            category = categories.create(
                CategoryIn(name=name, type=TransactionType.expense)
            )
            budgets.create(
                BudgetIn(
                    category_id=category.id,
                    month=9,
                    year=2025,
                    limit_amount=Decimal("100"),
                )
            )

        listed = budgets.list_for_month(9, 2025)
        assert [budget.category.name for budget in listed] == names
        assert len(budgets.list_for_month(9, 2025, limit=2)) == 2


@pytest.mark.parametrize(("month", "year"), [(0, 2025), (13, 2025), (5, 1999), (5, 2101)])
def test_listing_rejects_invalid_period(month: int, year: int) -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        with pytest.raises(ValidationFailure):
            BudgetService(session, USER).list_for_month(month, year)
