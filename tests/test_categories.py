from sqlalchemy import func, select

from database import Database
from models import Category, Transaction, TransactionType, User
from results import ErrorKind
from schemas import CategoryIn, CategoryUpdateIn, TransactionIn
from services import CategoryService, TransactionService, get_balance


def make_session():
    database = Database("sqlite+pysqlite:///:memory:")
    database.create_all()
    return database.session()


def make_user(session, email: str = "ada@example.com") -> User:
    user = User(name="Ada", email=email, password_hash="x", balance_cents=0)
    session.add(user)
    session.commit()
    return user


def add_txn(session, user: User, category: Category, amount_cents: int):
    result = TransactionService(session, user.id).create(
        TransactionIn(
            amount_cents=amount_cents,
            type=category.type,
            date="2025-03-01",
            category_id=category.id,
        )
    )
    assert result.ok
    return result.value


def count(session, model) -> int:
    return session.execute(select(func.count(model.id))).scalar_one()


def test_create_and_list_categories() -> None:
    session = make_session()
    user = make_user(session)
    categories = CategoryService(session, user.id)

    created = categories.create(
        CategoryIn(name="  Rent ", type=TransactionType.expense, icon_name="home")
    )
    assert created.ok
    assert created.value.name == "Rent"
    assert created.value.icon_name == "home"
    categories.create(CategoryIn(name="Bonus", type=TransactionType.income))

    assert [c.name for c in categories.list_all()] == ["Bonus", "Rent"]


def test_duplicate_name_conflicts_per_user_only() -> None:
    session = make_session()
    ada = make_user(session, "ada@example.com")
    bob = make_user(session, "bob@example.com")
    data = CategoryIn(name="Rent", type=TransactionType.expense)

    assert CategoryService(session, ada.id).create(data).ok
    again = CategoryService(session, ada.id).create(data)
    assert not again.ok
    assert again.kind == ErrorKind.conflict

    assert CategoryService(session, bob.id).create(data).ok


def test_update_changes_name_and_icon_only() -> None:
    session = make_session()
    user = make_user(session)
    categories = CategoryService(session, user.id)
    rent = categories.create(
        CategoryIn(name="Rent", type=TransactionType.expense)
    ).value

    result = categories.update(
        CategoryUpdateIn(id=rent.id, name="Housing", icon_name="home")
    )
    assert result.ok
    stored = categories.get(rent.id).value
    assert stored.name == "Housing"
    assert stored.icon_name == "home"
    assert stored.type == TransactionType.expense


def test_update_to_existing_name_conflicts() -> None:
    session = make_session()
    user = make_user(session)
    categories = CategoryService(session, user.id)
    categories.create(CategoryIn(name="Rent", type=TransactionType.expense))
    food = categories.create(
        CategoryIn(name="Food", type=TransactionType.expense)
    ).value

    result = categories.update(
        CategoryUpdateIn(id=food.id, name="Rent", icon_name="food")
    )
    assert not result.ok
    assert result.kind == ErrorKind.conflict
    assert categories.get(food.id).value.name == "Food"


def test_update_unknown_category_is_not_found() -> None:
    session = make_session()
    user = make_user(session)

    result = CategoryService(session, user.id).update(
        CategoryUpdateIn(id=42, name="Nope", icon_name="other")
    )
    assert not result.ok
    assert result.kind == ErrorKind.not_found


def test_delete_expense_category_refunds_its_total() -> None:
    session = make_session()
    user = make_user(session)
    categories = CategoryService(session, user.id)
    salary = categories.create(
        CategoryIn(name="Salary", type=TransactionType.income)
    ).value
    food = categories.create(
        CategoryIn(name="Food", type=TransactionType.expense)
    ).value
    add_txn(session, user, salary, 9_000)
    lunch = add_txn(session, user, food, 2_500)
    add_txn(session, user, food, 1_500)
    assert get_balance(session, user.id) == 5_000

    result = categories.delete(food.id)
    assert result.ok
    assert result.value == "Category deleted"
    assert get_balance(session, user.id) == 9_000
    assert count(session, Transaction) == 1
    assert categories.get(food.id).kind == ErrorKind.not_found
    lookup = TransactionService(session, user.id).get(lunch.id)
    assert lookup.kind == ErrorKind.not_found


def test_delete_income_category_that_would_go_negative_is_rejected() -> None:
    session = make_session()
    user = make_user(session)
    categories = CategoryService(session, user.id)
    salary = categories.create(
        CategoryIn(name="Salary", type=TransactionType.income)
    ).value
    food = categories.create(
        CategoryIn(name="Food", type=TransactionType.expense)
    ).value
    add_txn(session, user, salary, 10_000)
    add_txn(session, user, food, 3_000)

    result = categories.delete(salary.id)
    assert not result.ok
    assert result.kind == ErrorKind.insufficient_balance
    assert result.balance_cents == 7_000
    assert get_balance(session, user.id) == 7_000
    assert count(session, Transaction) == 2
    assert categories.get(salary.id).ok


def test_delete_income_category_covered_by_balance() -> None:
    session = make_session()
    user = make_user(session)
    categories = CategoryService(session, user.id)
    salary = categories.create(
        CategoryIn(name="Salary", type=TransactionType.income)
    ).value
    freelance = categories.create(
        CategoryIn(name="Freelance", type=TransactionType.income)
    ).value
    add_txn(session, user, salary, 4_000)
    add_txn(session, user, freelance, 6_000)

    assert categories.delete(salary.id).ok
    assert get_balance(session, user.id) == 6_000
    assert count(session, Transaction) == 1


def test_delete_empty_category_leaves_balance() -> None:
    session = make_session()
    user = make_user(session)
    categories = CategoryService(session, user.id)
    spare = categories.create(
        CategoryIn(name="Spare", type=TransactionType.income)
    ).value

    assert categories.delete(spare.id).ok
    assert get_balance(session, user.id) == 0
    assert count(session, Category) == 0


def test_delete_foreign_category_is_not_found() -> None:
    session = make_session()
    owner = make_user(session, "owner@example.com")
    intruder = make_user(session, "intruder@example.com")
    rent = CategoryService(session, owner.id).create(
        CategoryIn(name="Rent", type=TransactionType.expense)
    ).value

    result = CategoryService(session, intruder.id).delete(rent.id)
    assert not result.ok
    assert result.kind == ErrorKind.not_found
    assert count(session, Category) == 1


def test_seed_defaults_skips_other_marker() -> None:
    session = make_session()
    user = make_user(session)
    categories = CategoryService(session, user.id)

    seeded = categories.seed_defaults(
        [("food", "expense"), ("salary", "income"), ("other", "other")]
    )
    session.commit()

    assert [c.name for c in seeded] == ["Food", "Salary"]
    assert [c.icon_name for c in categories.list_all()] == ["food", "salary"]
