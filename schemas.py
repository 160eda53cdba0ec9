from decimal import Decimal
from typing import Annotated, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models import TransactionType
from periods import normalize_date

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+$"

# ids must fit a signed 64-bit SQLite INTEGER
MAX_ID = 2**63 - 1
RowId = Annotated[int, Field(gt=0, le=MAX_ID)]


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType
    icon_name: str = Field(default="other", min_length=1, max_length=50)


class CategoryUpdateIn(BaseModel):
    id: RowId
    name: str = Field(..., min_length=1, max_length=100)
    icon_name: str = Field(default="other", min_length=1, max_length=50)


def _canonical_date(value: str) -> str:
    normalized = normalize_date(value)
    if normalized is None:
        raise ValueError("Date must be YYYY-MM-DD")
    return normalized


class TransactionIn(BaseModel):
    # amount sign is checked by the ledger, not here
    amount_cents: int
    type: Optional[TransactionType] = None
    note: Optional[str] = Field(default=None, max_length=200)
    date: str
    category_id: RowId

    @field_validator("date")
    @classmethod
    def check_date(cls, value: str) -> str:
        return _canonical_date(value)


class TransactionUpdateIn(BaseModel):
    id: RowId
    amount_cents: int
    type: TransactionType
    note: Optional[str] = Field(default=None, max_length=200)
    date: str

    @field_validator("date")
    @classmethod
    def check_date(cls, value: str) -> str:
        return _canonical_date(value)


class RegisterIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., min_length=3, max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(..., min_length=6, max_length=128)


class LoginIn(BaseModel):
    email: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1, max_length=128)


class UserProfileIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., min_length=3, max_length=255, pattern=EMAIL_PATTERN)


class PasswordIn(BaseModel):
    password: str = Field(..., min_length=6, max_length=128)


# HTTP bodies carry decimal amounts; services work in cents.


class TransactionBody(BaseModel):
    amount: Union[Decimal, str]
    type: Optional[TransactionType] = None
    note: Optional[str] = Field(default=None, max_length=200)
    date: str
    category_id: RowId


class TransactionUpdateBody(BaseModel):
    amount: Union[Decimal, str]
    type: TransactionType
    note: Optional[str] = Field(default=None, max_length=200)
    date: str


class CategoryUpdateBody(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    icon_name: str = Field(default="other", min_length=1, max_length=50)


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    balance: Decimal


class AuthOut(BaseModel):
    token: str
    user: UserOut


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: TransactionType
    icon_name: str


class TransactionOut(BaseModel):
    id: int
    amount: Decimal
    type: TransactionType
    note: Optional[str]
    date: str
    category_id: int
    category_name: Optional[str] = None
    category_icon: Optional[str] = None


class CategoryTotalOut(BaseModel):
    category_id: int
    name: str
    icon_name: str
    total: Decimal


class DailyTotalOut(BaseModel):
    date: str
    income: Decimal
    expense: Decimal


class SummaryOut(BaseModel):
    total_income: Decimal
    total_expense: Decimal
    balance: Decimal


class ErrorOut(BaseModel):
    kind: str
    message: str
    balance: Optional[Decimal] = None
