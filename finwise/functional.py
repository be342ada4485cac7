from abc import ABC, abstractmethod
from typing import TypeVar, Generic, Callable, Iterable, Optional
from finwise.domain import Category, ScheduledPayment

T = TypeVar('T')
U = TypeVar('U')
E = TypeVar('E')

INVALID_AMOUNT = "invalid_amount"
CATEGORY_NOT_FOUND = "category_not_found"
INSUFFICIENT_FUNDS = "insufficient_funds"
PERCENTAGE_OVERFLOW = "percentage_overflow"
INVALID_FREQUENCY = "invalid_frequency"
SCHEDULED_PAYMENT_NOT_FOUND = "scheduled_payment_not_found"
PERSISTENCE_PARSE_FAILURE = "persistence_parse_failure"
INVALID_FIELD = "invalid_field"


class Maybe(Generic[T], ABC):

    @abstractmethod
    def get_or_else(self, default: T) -> T:
        pass

    @abstractmethod
    def is_some(self) -> bool:
        pass

    def is_none(self) -> bool:
        return not self.is_some()


class Some(Maybe[T]):

    def __init__(self, value: T):
        self._value = value

    def get_or_else(self, default: T) -> T:
        return self._value

    def is_some(self) -> bool:
        return True

    def __repr__(self) -> str:
        return f"Some({self._value!r})"

    def __eq__(self, other) -> bool:
        return isinstance(other, Some) and self._value == other._value


class Nothing(Maybe[T]):

    def get_or_else(self, default: T) -> T:
        return default

    def is_some(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "Nothing()"

    def __eq__(self, other) -> bool:
        return isinstance(other, Nothing)


class Either(Generic[E, T], ABC):
    """Outcome of an engine operation: ``Right(value)`` or ``Left(error_dict)``."""

    @abstractmethod
    def map(self, f: Callable[[T], U]) -> 'Either[E, U]':
        pass

    @abstractmethod
    def bind(self, f: Callable[[T], 'Either[E, U]']) -> 'Either[E, U]':
        pass

    @abstractmethod
    def get_or_else(self, default: T) -> T:
        pass

    @abstractmethod
    def is_right(self) -> bool:
        pass

    def is_left(self) -> bool:
        return not self.is_right()

    @abstractmethod
    def get_error(self) -> E:
        pass


class Right(Either[E, T]):

    def __init__(self, value: T):
        self._value = value

    def map(self, f: Callable[[T], U]) -> 'Either[E, U]':
        return Right(f(self._value))

    def bind(self, f: Callable[[T], 'Either[E, U]']) -> 'Either[E, U]':
        return f(self._value)

    def get_or_else(self, default: T) -> T:
        return self._value

    def is_right(self) -> bool:
        return True

    def get_error(self) -> E:
        raise ValueError("Cannot get error from Right")

    def __repr__(self) -> str:
        return f"Right({self._value!r})"

    def __eq__(self, other) -> bool:
        return isinstance(other, Right) and self._value == other._value


class Left(Either[E, T]):

    def __init__(self, error: E):
        self._error = error

    def map(self, f: Callable[[T], U]) -> 'Either[E, U]':
        return self

    def bind(self, f: Callable[[T], 'Either[E, U]']) -> 'Either[E, U]':
        return self

    def get_or_else(self, default: T) -> T:
        return default

    def is_right(self) -> bool:
        return False

    def get_error(self) -> E:
        return self._error

    def __repr__(self) -> str:
        return f"Left({self._error!r})"

    def __eq__(self, other) -> bool:
        return isinstance(other, Left) and self._error == other._error


def failure(code: str, message: str, **details) -> Left:
    return Left({"error": code, "message": message, **details})


def safe_category(cats: Iterable[Category], cat_id: Optional[str]) -> Maybe[Category]:
    for cat in cats:
        if cat.id == cat_id:
            return Some(cat)
    return Nothing()


def safe_scheduled(payments: Iterable[ScheduledPayment], payment_id: str) -> Maybe[ScheduledPayment]:
    for payment in payments:
        if payment.id == payment_id:
            return Some(payment)
    return Nothing()


def validate_amount(amount: float) -> Either[dict, float]:
    if amount is None or not amount > 0:
        return failure(INVALID_AMOUNT, "Please enter a positive amount", amount=amount)
    return Right(float(amount))


def require_categories(cats: Iterable[Category], cat_ids: Iterable[str]) -> Either[dict, tuple[str, ...]]:
    """Check that every id refers to an existing category; empty ids are skipped."""
    known = {c.id for c in cats}
    wanted = tuple(cid for cid in cat_ids if cid)
    for cid in wanted:
        if cid not in known:
            return failure(
                CATEGORY_NOT_FOUND,
                f"Category with ID {cid} does not exist",
                category_id=cid,
            )
    return Right(wanted)
