from __future__ import annotations

import functools
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from amounts import format_amount
from config import Settings, get_settings
from database import atomic
from models import Category, Transaction, TransactionType, User
from periods import normalize_date, resolve_month, today_in
from results import (
    Conflict,
    Err,
    ErrorKind,
    InsufficientBalance,
    InvalidAmount,
    InvalidCredentials,
    LedgerError,
    NotFound,
    Ok,
    PersistenceFailure,
    Result,
    ValidationFailure,
)
from schemas import (
    CategoryIn,
    CategoryUpdateIn,
    LoginIn,
    PasswordIn,
    RegisterIn,
    TransactionIn,
    TransactionUpdateIn,
    UserProfileIn,
)
from security import BcryptPasswordHasher, PasswordHasher

logger = logging.getLogger(__name__)

_PERSISTED_TYPES = {member.value for member in TransactionType}

# SQLite INTEGER is signed 64-bit; single amounts stay well inside it
MAX_AMOUNT_CENTS = 2**53 - 1
MAX_BALANCE_CENTS = 2**63 - 1


def ledger_operation(method):
    """Turn a service method into a Result-returning operation.

    Typed ledger errors become ``Err`` values with their own kind, store
    errors become a generic persistence failure. Writes are only made inside
    ``atomic()``, which undoes them on failure, so a rejected call leaves
    nothing half-applied.
    """

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        user_id = getattr(self, "user_id", None)
        try:
            return method(self, *args, **kwargs)
        except LedgerError as exc:
            # atomic() already undid its own writes; a plain rejection leaves
            # loaded objects alone
            session = self.session
            if session.new or session.dirty or session.deleted:
                session.rollback()
            logger.info(
                f"{method.__name__}_rejected: user={user_id} kind={exc.kind.value}"
            )
            return exc.to_result()
        except SQLAlchemyError:
            self.session.rollback()
            logger.error(f"{method.__name__}_failed: user={user_id}", exc_info=True)
            return Err(
                kind=ErrorKind.persistence_failure, message="Could not save changes"
            )

    return wrapper


def get_balance(session: Session, user_id: int) -> int:
    # always a fresh read, never the balance cached on a loaded User
    balance = session.execute(
        select(User.balance_cents).where(User.id == user_id)
    ).scalar_one_or_none()
    if balance is None:
        raise NotFound("User not found")
    return int(balance)


def set_balance(session: Session, user_id: int, balance_cents: int) -> None:
    if not -MAX_BALANCE_CENTS <= balance_cents <= MAX_BALANCE_CENTS:
        raise InvalidAmount("Resulting balance is out of range")
    session.execute(
        update(User).where(User.id == user_id).values(balance_cents=balance_cents)
    )


def check_amount(amount_cents: int) -> None:
    if amount_cents <= 0:
        raise InvalidAmount("Amount must be greater than zero")
    if amount_cents > MAX_AMOUNT_CENTS:
        raise InvalidAmount("Amount is too large")


def insufficient_balance(balance_cents: int) -> InsufficientBalance:
    return InsufficientBalance(
        f"Insufficient balance. Your current balance is {format_amount(balance_cents)}",
        balance_cents,
    )


@dataclass(frozen=True)
class TransactionWithCategory:
    id: int
    amount_cents: int
    type: TransactionType
    note: Optional[str]
    date: str
    category_id: int
    category_name: str
    category_icon: str


@dataclass(frozen=True)
class CategoryTotal:
    category_id: int
    name: str
    icon_name: str
    total_cents: int


@dataclass(frozen=True)
class DailyTotal:
    date: str
    income_cents: int
    expense_cents: int


@dataclass(frozen=True)
class BalanceSummary:
    total_income_cents: int
    total_expense_cents: int
    balance_cents: int


class CategoryService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.name)
        )
        return list(self.session.scalars(stmt).all())

    def _owned(self, category_id: int) -> Category:
        category = self.session.scalar(
            select(Category).where(
                Category.id == category_id, Category.user_id == self.user_id
            )
        )
        if not category:
            raise NotFound("Category not found")
        return category

    def _name_taken(self, name: str, *, exclude_id: Optional[int] = None) -> bool:
        stmt = select(Category.id).where(
            Category.user_id == self.user_id, Category.name == name
        )
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        return self.session.scalar(stmt) is not None

    @ledger_operation
    def get(self, category_id: int) -> Result[Category]:
        return Ok(self._owned(category_id))

    @ledger_operation
    def create(self, data: CategoryIn) -> Result[Category]:
        name = data.name.strip()
        if self._name_taken(name):
            raise Conflict("Category with this name already exists")
        category = Category(
            user_id=self.user_id,
            name=name,
            type=data.type,
            icon_name=data.icon_name,
        )
        try:
            with atomic(self.session):
                self.session.add(category)
        except PersistenceFailure as exc:
            if isinstance(exc.__cause__, IntegrityError):
                raise Conflict("Category with this name already exists") from exc
            raise
        logger.info(
            f"category_created: user={self.user_id} id={category.id} "
            f"type={category.type.value}"
        )
        return Ok(category)

    @ledger_operation
    def update(self, data: CategoryUpdateIn) -> Result[Category]:
        category = self._owned(data.id)
        name = data.name.strip()
        if self._name_taken(name, exclude_id=category.id):
            raise Conflict("Category with this name already exists")
        try:
            with atomic(self.session):
                category.name = name
                category.icon_name = data.icon_name
        except PersistenceFailure as exc:
            if isinstance(exc.__cause__, IntegrityError):
                raise Conflict("Category with this name already exists") from exc
            raise
        return Ok(category)

    def total_for(self, category_id: int) -> int:
        return int(
            self.session.execute(
                select(func.coalesce(func.sum(Transaction.amount_cents), 0)).where(
                    Transaction.category_id == category_id,
                    Transaction.user_id == self.user_id,
                )
            ).scalar_one()
            or 0
        )

    @ledger_operation
    def delete(self, category_id: int) -> Result[str]:
        category = self._owned(category_id)
        total = self.total_for(category.id)
        balance = get_balance(self.session, self.user_id)

        if category.type == TransactionType.income:
            if balance - total < 0:
                raise InsufficientBalance(
                    "Deleting this category would make your balance negative",
                    balance,
                )
            new_balance = balance - total
        else:
            new_balance = balance + total

        with atomic(self.session):
            set_balance(self.session, self.user_id, new_balance)
            # transactions under the category go with it (ON DELETE CASCADE)
            deleted = self.session.execute(
                delete(Category).where(
                    Category.id == category.id, Category.user_id == self.user_id
                )
            ).rowcount
            if not deleted:
                raise PersistenceFailure("Could not delete category")

        logger.info(
            f"category_deleted: user={self.user_id} id={category_id} "
            f"removed_cents={total} balance={new_balance}"
        )
        return Ok("Category deleted")

    def seed_defaults(self, table: list[tuple[str, str]]) -> list[Category]:
        """Add the starter categories for a fresh account.

        Entries typed "other" are skipped. Nothing is committed here; the
        caller owns the surrounding unit of work.
        """
        created: list[Category] = []
        for key, type_value in table:
            if type_value not in _PERSISTED_TYPES:
                continue
            category = Category(
                user_id=self.user_id,
                name=key.capitalize(),
                type=TransactionType(type_value),
                icon_name=key,
            )
            self.session.add(category)
            created.append(category)
        return created


class TransactionService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _owned(self, transaction_id: int) -> Transaction:
        txn = self.session.scalar(
            select(Transaction).where(
                Transaction.id == transaction_id, Transaction.user_id == self.user_id
            )
        )
        if not txn:
            raise NotFound("Transaction not found")
        return txn

    def _owned_category(self, category_id: int) -> Category:
        category = self.session.scalar(
            select(Category).where(
                Category.id == category_id, Category.user_id == self.user_id
            )
        )
        if not category:
            raise NotFound("Category not found")
        return category

    @ledger_operation
    def get(self, transaction_id: int) -> Result[Transaction]:
        return Ok(self._owned(transaction_id))

    def recent(self, limit: Optional[int] = 10) -> list[TransactionWithCategory]:
        stmt = (
            select(
                Transaction.id,
                Transaction.amount_cents,
                Transaction.type,
                Transaction.note,
                Transaction.date,
                Transaction.category_id,
                Category.name.label("category_name"),
                Category.icon_name.label("category_icon"),
            )
            .join(Category, Category.id == Transaction.category_id)
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return [
            TransactionWithCategory(
                id=row.id,
                amount_cents=row.amount_cents,
                type=row.type,
                note=row.note,
                date=row.date,
                category_id=row.category_id,
                category_name=row.category_name,
                category_icon=row.category_icon,
            )
            for row in self.session.execute(stmt)
        ]

    @ledger_operation
    def create(self, data: TransactionIn) -> Result[Transaction]:
        check_amount(data.amount_cents)
        category = self._owned_category(data.category_id)
        txn_type = data.type or category.type
        if txn_type != category.type:
            raise ValidationFailure("Category type mismatch")

        balance = get_balance(self.session, self.user_id)
        if txn_type == TransactionType.expense:
            if data.amount_cents > balance:
                raise insufficient_balance(balance)
            new_balance = balance - data.amount_cents
        else:
            new_balance = balance + data.amount_cents

        txn = Transaction(
            user_id=self.user_id,
            amount_cents=data.amount_cents,
            type=txn_type,
            note=data.note,
            date=data.date,
            category_id=category.id,
        )
        with atomic(self.session):
            set_balance(self.session, self.user_id, new_balance)
            self.session.add(txn)

        logger.info(
            f"transaction_created: user={self.user_id} id={txn.id} "
            f"type={txn_type.value} amount_cents={txn.amount_cents} "
            f"balance={new_balance}"
        )
        return Ok(txn)

    @ledger_operation
    def update(self, data: TransactionUpdateIn) -> Result[Transaction]:
        """Change amount, note and date of an existing transaction.

        The balance moves by ``delta = new - old``. Income and expense use
        the same bound, ``delta <= balance``, with the sign of the move
        flipped for expenses.
        """
        txn = self._owned(data.id)
        if data.type != txn.type:
            raise ValidationFailure("Transaction type cannot be changed")
        check_amount(data.amount_cents)

        delta = data.amount_cents - txn.amount_cents
        balance = get_balance(self.session, self.user_id)
        if delta > balance:
            raise insufficient_balance(balance)
        if txn.type == TransactionType.income:
            new_balance = balance + delta
        else:
            new_balance = balance - delta

        with atomic(self.session):
            set_balance(self.session, self.user_id, new_balance)
            txn.amount_cents = data.amount_cents
            txn.note = data.note
            txn.date = data.date

        logger.info(
            f"transaction_updated: user={self.user_id} id={txn.id} "
            f"delta_cents={delta} balance={new_balance}"
        )
        return Ok(txn)

    @ledger_operation
    def delete(self, transaction_id: int) -> Result[str]:
        txn = self._owned(transaction_id)
        balance = get_balance(self.session, self.user_id)

        if txn.type == TransactionType.income:
            if txn.amount_cents > balance:
                raise insufficient_balance(balance)
            new_balance = balance - txn.amount_cents
        else:
            new_balance = balance + txn.amount_cents

        with atomic(self.session):
            set_balance(self.session, self.user_id, new_balance)
            deleted = self.session.execute(
                delete(Transaction).where(
                    Transaction.id == txn.id, Transaction.user_id == self.user_id
                )
            ).rowcount
            if not deleted:
                raise PersistenceFailure("Could not delete transaction")

        logger.info(
            f"transaction_deleted: user={self.user_id} id={transaction_id} "
            f"balance={new_balance}"
        )
        return Ok("Transaction deleted")


class MetricsService:
    def __init__(
        self, session: Session, user_id: int, settings: Optional[Settings] = None
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.settings = settings or get_settings()

    def _total(self, txn_type: TransactionType) -> int:
        return int(
            self.session.execute(
                select(func.coalesce(func.sum(Transaction.amount_cents), 0)).where(
                    Transaction.user_id == self.user_id,
                    Transaction.type == txn_type,
                )
            ).scalar_one()
            or 0
        )

    def total_income(self) -> int:
        return self._total(TransactionType.income)

    def total_expense(self) -> int:
        return self._total(TransactionType.expense)

    def balance_summary(self) -> BalanceSummary:
        balance = self.session.execute(
            select(User.balance_cents).where(User.id == self.user_id)
        ).scalar_one_or_none()
        return BalanceSummary(
            total_income_cents=self.total_income(),
            total_expense_cents=self.total_expense(),
            balance_cents=int(balance or 0),
        )

    def category_totals(self, txn_type: TransactionType) -> list[CategoryTotal]:
        total = func.sum(Transaction.amount_cents).label("total")
        stmt = (
            select(Category.id, Category.name, Category.icon_name, total)
            .join(Category, Category.id == Transaction.category_id)
            .where(
                Transaction.user_id == self.user_id,
                Category.user_id == self.user_id,
                Category.type == txn_type,
            )
            .group_by(Category.id, Category.name, Category.icon_name)
            .order_by(total.desc(), Category.name.asc())
        )
        return [
            CategoryTotal(
                category_id=row.id,
                name=row.name,
                icon_name=row.icon_name,
                total_cents=int(row.total or 0),
            )
            for row in self.session.execute(stmt)
        ]

    def daily_totals(
        self, month: Optional[str] = None, *, today: Optional[date] = None
    ) -> list[DailyTotal]:
        """Income and expense per day of ``month`` (YYYY-MM).

        Defaults to the current month in the configured timezone. Rows whose
        date cannot be read are left out.
        """
        today = today or today_in(self.settings.timezone)
        month_key = resolve_month(month, today=today)

        rows = self.session.execute(
            select(Transaction.date, Transaction.amount_cents, Transaction.type)
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.date.asc())
        ).all()

        income_by_day: dict[str, int] = defaultdict(int)
        expense_by_day: dict[str, int] = defaultdict(int)
        for row in rows:
            day = normalize_date(row.date)
            if day is None:
                logger.debug(f"daily_totals: skipping unreadable date {row.date!r}")
                continue
            if not day.startswith(month_key + "-"):
                continue
            if row.type == TransactionType.income:
                income_by_day[day] += row.amount_cents
            else:
                expense_by_day[day] += row.amount_cents

        days = sorted(set(income_by_day) | set(expense_by_day))
        return [
            DailyTotal(
                date=day,
                income_cents=income_by_day.get(day, 0),
                expense_cents=expense_by_day.get(day, 0),
            )
            for day in days
        ]


class AuthService:
    def __init__(
        self,
        session: Session,
        hasher: Optional[PasswordHasher] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self.hasher = hasher or BcryptPasswordHasher(self.settings.bcrypt_rounds)

    def _by_email(self, email: str) -> Optional[User]:
        return self.session.scalar(select(User).where(User.email == email))

    @ledger_operation
    def register(self, data: RegisterIn) -> Result[User]:
        email = data.email.strip().lower()
        if self._by_email(email):
            raise Conflict("An account with this email already exists")

        user = User(
            name=data.name.strip(),
            email=email,
            password_hash=self.hasher.hash(data.password),
            balance_cents=0,
        )
        try:
            with atomic(self.session):
                self.session.add(user)
                self.session.flush()
                CategoryService(self.session, user.id).seed_defaults(
                    self.settings.default_categories
                )
        except PersistenceFailure as exc:
            if isinstance(exc.__cause__, IntegrityError):
                raise Conflict("An account with this email already exists") from exc
            raise
        logger.info(f"user_registered: user={user.id}")
        return Ok(user)

    @ledger_operation
    def login(self, data: LoginIn) -> Result[User]:
        user = self._by_email(data.email.strip().lower())
        # same answer for unknown email and wrong password
        if not user or not self.hasher.verify(data.password, user.password_hash):
            raise InvalidCredentials("Invalid email or password")
        return Ok(user)


class UserService:
    def __init__(
        self,
        session: Session,
        user_id: int,
        hasher: Optional[PasswordHasher] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.hasher = hasher
        self.settings = settings

    def _current(self) -> User:
        user = self.session.scalar(select(User).where(User.id == self.user_id))
        if not user:
            raise NotFound("User not found")
        return user

    @ledger_operation
    def get(self) -> Result[User]:
        return Ok(self._current())

    @ledger_operation
    def update_profile(self, data: UserProfileIn) -> Result[User]:
        user = self._current()
        email = data.email.strip().lower()
        existing = self.session.scalar(select(User).where(User.email == email))
        if existing and existing.id != user.id:
            raise Conflict("An account with this email already exists")
        try:
            with atomic(self.session):
                user.name = data.name.strip()
                user.email = email
        except PersistenceFailure as exc:
            if isinstance(exc.__cause__, IntegrityError):
                raise Conflict("An account with this email already exists") from exc
            raise
        return Ok(user)

    @ledger_operation
    def update_password(self, data: PasswordIn) -> Result[str]:
        user = self._current()
        if self.hasher is None:
            settings = self.settings or get_settings()
            self.hasher = BcryptPasswordHasher(settings.bcrypt_rounds)
        with atomic(self.session):
            user.password_hash = self.hasher.hash(data.password)
        logger.info(f"password_updated: user={user.id}")
        return Ok("Password updated")
