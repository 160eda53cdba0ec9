import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Path, Query, Request
from sqlalchemy.orm import Session

from amounts import cents_to_decimal, parse_amount
from config import Settings, get_settings
from database import Database
from models import Category, Transaction, TransactionType, User
from results import Err, ErrorKind, Result
from schemas import (
    MAX_ID,
    AuthOut,
    CategoryIn,
    CategoryOut,
    CategoryTotalOut,
    CategoryUpdateBody,
    CategoryUpdateIn,
    DailyTotalOut,
    ErrorOut,
    LoginIn,
    PasswordIn,
    RegisterIn,
    SummaryOut,
    TransactionBody,
    TransactionIn,
    TransactionOut,
    TransactionUpdateBody,
    TransactionUpdateIn,
    UserOut,
    UserProfileIn,
)
from security import (
    BcryptPasswordHasher,
    PasswordHasher,
    issue_session_token,
    resolve_session_token,
)
from services import (
    AuthService,
    CategoryService,
    MetricsService,
    TransactionService,
    TransactionWithCategory,
    UserService,
)

logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    ErrorKind.not_found: 404,
    ErrorKind.invalid_amount: 422,
    ErrorKind.insufficient_balance: 409,
    ErrorKind.conflict: 409,
    ErrorKind.validation_failure: 400,
    ErrorKind.invalid_credentials: 401,
    ErrorKind.persistence_failure: 500,
}

router = APIRouter()


def get_db(request: Request):
    db = request.app.state.database.session()
    try:
        yield db
    finally:
        db.close()


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_hasher(request: Request) -> PasswordHasher:
    return request.app.state.hasher


def current_user_id(request: Request) -> int:
    settings: Settings = request.app.state.settings
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=401, detail="Not authenticated")
    user_id = resolve_session_token(
        token.strip(),
        secret=settings.session_secret,
        max_age_hours=settings.session_max_age_hours,
    )
    if user_id is None:
        raise HTTPException(status_code=401, detail="Invalid or expired session")
    return user_id


def unwrap(result: Result):
    if result.ok:
        return result.value
    err: Err = result
    body = ErrorOut(
        kind=err.kind.value,
        message=err.message,
        balance=(
            cents_to_decimal(err.balance_cents)
            if err.balance_cents is not None
            else None
        ),
    )
    raise HTTPException(
        status_code=STATUS_BY_KIND[err.kind], detail=body.model_dump(mode="json")
    )


def amount_from_body(value) -> int:
    try:
        # non-positive amounts are the ledger's call
        return parse_amount(value, allow_negative=True)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def user_out(user: User) -> UserOut:
    return UserOut(
        id=user.id,
        name=user.name,
        email=user.email,
        balance=cents_to_decimal(user.balance_cents),
    )


def transaction_out(txn: Transaction) -> TransactionOut:
    return TransactionOut(
        id=txn.id,
        amount=cents_to_decimal(txn.amount_cents),
        type=txn.type,
        note=txn.note,
        date=txn.date,
        category_id=txn.category_id,
    )


def listed_transaction_out(row: TransactionWithCategory) -> TransactionOut:
    return TransactionOut(
        id=row.id,
        amount=cents_to_decimal(row.amount_cents),
        type=row.type,
        note=row.note,
        date=row.date,
        category_id=row.category_id,
        category_name=row.category_name,
        category_icon=row.category_icon,
    )


def _auth_response(user: User, settings: Settings) -> AuthOut:
    token = issue_session_token(user.id, secret=settings.session_secret)
    return AuthOut(token=token, user=user_out(user))


@router.post("/auth/register", response_model=AuthOut, status_code=201)
def register(
    data: RegisterIn,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    hasher: PasswordHasher = Depends(get_hasher),
):
    user = unwrap(AuthService(db, hasher, settings).register(data))
    return _auth_response(user, settings)


@router.post("/auth/login", response_model=AuthOut)
def login(
    data: LoginIn,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    hasher: PasswordHasher = Depends(get_hasher),
):
    user = unwrap(AuthService(db, hasher, settings).login(data))
    return _auth_response(user, settings)


@router.get("/me", response_model=UserOut)
def me(user_id: int = Depends(current_user_id), db: Session = Depends(get_db)):
    return user_out(unwrap(UserService(db, user_id).get()))


@router.put("/me", response_model=UserOut)
def update_me(
    data: UserProfileIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return user_out(unwrap(UserService(db, user_id).update_profile(data)))


@router.put("/me/password")
def update_my_password(
    data: PasswordIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
    hasher: PasswordHasher = Depends(get_hasher),
):
    message = unwrap(UserService(db, user_id, hasher).update_password(data))
    return {"message": message}


@router.get("/categories", response_model=list[CategoryOut])
def list_categories(
    user_id: int = Depends(current_user_id), db: Session = Depends(get_db)
):
    return CategoryService(db, user_id).list_all()


@router.post("/categories", response_model=CategoryOut, status_code=201)
def create_category(
    data: CategoryIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return unwrap(CategoryService(db, user_id).create(data))


@router.get("/categories/{category_id}", response_model=CategoryOut)
def get_category(
    category_id: int = Path(gt=0, le=MAX_ID),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    category: Category = unwrap(CategoryService(db, user_id).get(category_id))
    return category


@router.put("/categories/{category_id}", response_model=CategoryOut)
def update_category(
    body: CategoryUpdateBody,
    category_id: int = Path(gt=0, le=MAX_ID),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    data = CategoryUpdateIn(id=category_id, name=body.name, icon_name=body.icon_name)
    return unwrap(CategoryService(db, user_id).update(data))


@router.delete("/categories/{category_id}")
def delete_category(
    category_id: int = Path(gt=0, le=MAX_ID),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    message = unwrap(CategoryService(db, user_id).delete(category_id))
    summary = MetricsService(db, user_id, settings).balance_summary()
    return {
        "message": message,
        "balance": str(cents_to_decimal(summary.balance_cents)),
    }


@router.get("/transactions", response_model=list[TransactionOut])
def list_transactions(
    limit: Optional[int] = Query(default=None, ge=1, le=MAX_ID),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    rows = TransactionService(db, user_id).recent(limit)
    return [listed_transaction_out(row) for row in rows]


@router.post("/transactions", response_model=TransactionOut, status_code=201)
def create_transaction(
    body: TransactionBody,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        data = TransactionIn(
            amount_cents=amount_from_body(body.amount),
            type=body.type,
            note=body.note,
            date=body.date,
            category_id=body.category_id,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    txn = unwrap(TransactionService(db, user_id).create(data))
    return transaction_out(txn)


@router.get("/transactions/{transaction_id}", response_model=TransactionOut)
def get_transaction(
    transaction_id: int = Path(gt=0, le=MAX_ID),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    txn = unwrap(TransactionService(db, user_id).get(transaction_id))
    return transaction_out(txn)


@router.put("/transactions/{transaction_id}", response_model=TransactionOut)
def update_transaction(
    body: TransactionUpdateBody,
    transaction_id: int = Path(gt=0, le=MAX_ID),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        data = TransactionUpdateIn(
            id=transaction_id,
            amount_cents=amount_from_body(body.amount),
            type=body.type,
            note=body.note,
            date=body.date,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    txn = unwrap(TransactionService(db, user_id).update(data))
    return transaction_out(txn)


@router.delete("/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: int = Path(gt=0, le=MAX_ID),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    message = unwrap(TransactionService(db, user_id).delete(transaction_id))
    summary = MetricsService(db, user_id, settings).balance_summary()
    return {
        "message": message,
        "balance": str(cents_to_decimal(summary.balance_cents)),
    }


@router.get("/summary", response_model=SummaryOut)
def summary(
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    result = MetricsService(db, user_id, settings).balance_summary()
    return SummaryOut(
        total_income=cents_to_decimal(result.total_income_cents),
        total_expense=cents_to_decimal(result.total_expense_cents),
        balance=cents_to_decimal(result.balance_cents),
    )


@router.get("/stats/categories", response_model=list[CategoryTotalOut])
def category_stats(
    type: TransactionType = TransactionType.expense,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    rows = MetricsService(db, user_id, settings).category_totals(type)
    return [
        CategoryTotalOut(
            category_id=row.category_id,
            name=row.name,
            icon_name=row.icon_name,
            total=cents_to_decimal(row.total_cents),
        )
        for row in rows
    ]


@router.get("/stats/daily", response_model=list[DailyTotalOut])
def daily_stats(
    month: Optional[str] = None,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    try:
        rows = MetricsService(db, user_id, settings).daily_totals(month)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return [
        DailyTotalOut(
            date=row.date,
            income=cents_to_decimal(row.income_cents),
            expense=cents_to_decimal(row.expense_cents),
        )
        for row in rows
    ]


def create_app(
    database: Optional[Database] = None,
    settings: Optional[Settings] = None,
    hasher: Optional[PasswordHasher] = None,
) -> FastAPI:
    settings = settings or get_settings()
    owns_database = database is None
    database = database or Database(settings.database_url)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        database.create_all()
        logger.info(f"startup: database={database.database_url}")
        yield
        if owns_database:
            database.dispose()
        logger.info("shutdown: database released")

    app = FastAPI(title="Budget Ledger", lifespan=lifespan)
    app.state.database = database
    app.state.settings = settings
    app.state.hasher = hasher or BcryptPasswordHasher(settings.bcrypt_rounds)
    app.include_router(router)
    return app


def main():
    import uvicorn

    settings = get_settings()
    logging.basicConfig(level=settings.log_level)
    app = create_app(settings=settings)
    uvicorn.run(app, host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
