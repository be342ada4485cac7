from dataclasses import dataclass
from datetime import datetime
from typing import Optional

DAILY_USE = "Daily Use"
SAVINGS = "Savings"

INCOME = "income"
WITHDRAWAL = "withdrawal"
PAYMENT = "payment"

DAILY = "daily"
WEEKLY = "weekly"
MONTHLY = "monthly"
FREQUENCIES = (DAILY, WEEKLY, MONTHLY)

DEFAULT_PRIORITY = 999


@dataclass(frozen=True)
class Category:
    id: str
    name: str
    percentage: float                   # share of income, 0-100
    amount: float                       # current balance, never negative
    color: str = "#64748B"
    icon: str = "wallet"
    max_amount: Optional[float] = None  # only enforced while allocating
    priority: Optional[int] = None      # lower fills first

    @property
    def effective_priority(self) -> int:
        # 0 counts as missing, like the original form's `priority || 999`
        return self.priority or DEFAULT_PRIORITY

    @property
    def is_capped(self) -> bool:
        return self.max_amount is not None and self.name != DAILY_USE


@dataclass(frozen=True)
class Transaction:
    id: str
    amount: float          # always positive
    type: str              # income | withdrawal | payment
    date: datetime
    description: str = ""
    category: Optional[str] = None  # id, or comma-joined ids for payments

    @property
    def category_ids(self) -> tuple[str, ...]:
        if not self.category:
            return ()
        return tuple(c for c in self.category.split(",") if c)


@dataclass(frozen=True)
class ScheduledPayment:
    id: str
    amount: float
    description: str
    next_date: datetime
    category: str = ""     # preferred category, empty means Daily Use then Savings
    fallback_categories: tuple[str, ...] = ()
    recurring: bool = False
    frequency: Optional[str] = None
    time: str = ""         # HH:MM, informational
    active: bool = True


# The aggregate root; every engine operation returns a new one
@dataclass(frozen=True)
class Budget:
    total_balance: float
    categories: tuple[Category, ...] = ()
    transactions: tuple[Transaction, ...] = ()
    scheduled_payments: tuple[ScheduledPayment, ...] = ()
