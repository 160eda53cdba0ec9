from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar, Union

T = TypeVar("T")


class ErrorKind(str, Enum):
    not_found = "not_found"
    invalid_amount = "invalid_amount"
    insufficient_balance = "insufficient_balance"
    persistence_failure = "persistence_failure"
    validation_failure = "validation_failure"
    conflict = "conflict"
    invalid_credentials = "invalid_credentials"


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    kind: ErrorKind
    message: str
    balance_cents: Optional[int] = None

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[T], Err]


class LedgerError(ValueError):
    kind = ErrorKind.validation_failure

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_result(self) -> Err:
        return Err(kind=self.kind, message=self.message)


class NotFound(LedgerError):
    kind = ErrorKind.not_found


class InvalidAmount(LedgerError):
    kind = ErrorKind.invalid_amount


class InsufficientBalance(LedgerError):
    kind = ErrorKind.insufficient_balance

    def __init__(self, message: str, balance_cents: int) -> None:
        super().__init__(message)
        self.balance_cents = balance_cents

    def to_result(self) -> Err:
        return Err(
            kind=self.kind, message=self.message, balance_cents=self.balance_cents
        )


class PersistenceFailure(LedgerError):
    kind = ErrorKind.persistence_failure


class ValidationFailure(LedgerError):
    kind = ErrorKind.validation_failure


class Conflict(LedgerError):
    kind = ErrorKind.conflict


class InvalidCredentials(LedgerError):
    kind = ErrorKind.invalid_credentials
