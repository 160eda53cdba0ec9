from datetime import date

from config import get_settings
from database import Database
from models import Category, Transaction, TransactionType, User
from services import MetricsService


def make_session():
    database = Database("sqlite+pysqlite:///:memory:")
    database.create_all()
    return database.session()


def seed(session):
    """Two users with rows written straight to the store, legacy dates included."""
    ada = User(name="Ada", email="ada@example.com", password_hash="x")
    bob = User(name="Bob", email="bob@example.com", password_hash="x")
    session.add_all([ada, bob])
    session.flush()

    salary = Category(user_id=ada.id, name="Salary", type=TransactionType.income)
    food = Category(user_id=ada.id, name="Food", type=TransactionType.expense)
    travel = Category(user_id=ada.id, name="Travel", type=TransactionType.expense)
    bobs_food = Category(user_id=bob.id, name="Food", type=TransactionType.expense)
    session.add_all([salary, food, travel, bobs_food])
    session.flush()

    def txn(user, category, cents, day):
        return Transaction(
            user_id=user.id,
            category_id=category.id,
            type=category.type,
            amount_cents=cents,
            date=day,
        )

    session.add_all(
        [
            txn(ada, salary, 100_000, "2025-03-01"),
            txn(ada, food, 1_200, "2025-03-01"),
            txn(ada, food, 800, "01-03-2025"),
            txn(ada, travel, 5_000, "14-03-2025"),
            txn(ada, food, 300, "2025-02-28"),
            txn(ada, food, 999, "not-a-date"),
            txn(ada, food, 111, "31-02-2025"),
            txn(bob, bobs_food, 7_777, "2025-03-01"),
        ]
    )
    ada.balance_cents = 100_000 - 1_200 - 800 - 5_000 - 300 - 999 - 111
    session.commit()
    return ada, bob


def test_totals_and_summary() -> None:
    session = make_session()
    ada, _ = seed(session)
    metrics = MetricsService(session, ada.id, get_settings())

    assert metrics.total_income() == 100_000
    assert metrics.total_expense() == 8_410
    summary = metrics.balance_summary()
    assert summary.total_income_cents == 100_000
    assert summary.total_expense_cents == 8_410
    assert summary.balance_cents == 91_590


def test_queries_are_repeatable() -> None:
    session = make_session()
    ada, _ = seed(session)
    metrics = MetricsService(session, ada.id, get_settings())

    first = (
        metrics.total_income(),
        metrics.total_expense(),
        metrics.category_totals(TransactionType.expense),
    )
    second = (
        metrics.total_income(),
        metrics.total_expense(),
        metrics.category_totals(TransactionType.expense),
    )
    assert first == second


def test_totals_for_user_without_rows_are_zero() -> None:
    session = make_session()
    user = User(name="New", email="new@example.com", password_hash="x")
    session.add(user)
    session.commit()
    metrics = MetricsService(session, user.id, get_settings())

    assert metrics.total_income() == 0
    assert metrics.total_expense() == 0
    assert metrics.category_totals(TransactionType.income) == []


def test_category_totals_sorted_and_scoped() -> None:
    session = make_session()
    ada, bob = seed(session)

    expense = MetricsService(session, ada.id, get_settings()).category_totals(
        TransactionType.expense
    )
    assert [(row.name, row.total_cents) for row in expense] == [
        ("Travel", 5_000),
        ("Food", 3_410),
    ]

    income = MetricsService(session, ada.id, get_settings()).category_totals(
        TransactionType.income
    )
    assert [(row.name, row.total_cents) for row in income] == [("Salary", 100_000)]

    bobs = MetricsService(session, bob.id, get_settings()).category_totals(
        TransactionType.expense
    )
    assert [(row.name, row.total_cents) for row in bobs] == [("Food", 7_777)]


def test_daily_totals_merge_both_date_shapes() -> None:
    session = make_session()
    ada, _ = seed(session)
    metrics = MetricsService(session, ada.id, get_settings())

    rows = metrics.daily_totals(today=date(2025, 3, 15))
    assert [(r.date, r.income_cents, r.expense_cents) for r in rows] == [
        ("2025-03-01", 100_000, 2_000),
        ("2025-03-14", 0, 5_000),
    ]


def test_daily_totals_for_explicit_month() -> None:
    session = make_session()
    ada, _ = seed(session)
    metrics = MetricsService(session, ada.id, get_settings())

    rows = metrics.daily_totals("2025-02", today=date(2025, 3, 15))
    assert [(r.date, r.income_cents, r.expense_cents) for r in rows] == [
        ("2025-02-28", 0, 300),
    ]
    assert metrics.daily_totals("2024-12") == []
