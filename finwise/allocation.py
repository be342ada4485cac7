"""Income allocation: the priority/percentage/cap waterfall."""

import logging
from dataclasses import replace
from datetime import datetime
from typing import NamedTuple, Optional, Sequence

from finwise.domain import Budget, Category, INCOME, SAVINGS
from finwise.functional import Either, Right, validate_amount
from finwise.ledger import add_transaction, new_transaction

logger = logging.getLogger(__name__)


class Allocation(NamedTuple):
    categories: tuple[Category, ...]
    unallocated: float   # left over when caps absorbed less and no Savings exists


def distribute_income(categories: Sequence[Category], amount: float) -> Allocation:
    """Distribute ``amount`` over the categories.

    Categories are visited by priority (missing priority = 999, ties keep
    list order). Each takes ``percentage`` of whatever is still remaining
    when its turn comes; a capped category (any but "Daily Use") takes no
    more than the room left under its ``max_amount``. Whatever remains after
    the pass goes to "Savings". Without a Savings category the remainder is
    returned as ``unallocated``.

    The returned categories keep the order of the input.
    """
    balances = {c.id: c.amount for c in categories}
    remaining = amount

    for category in sorted(categories, key=lambda c: c.effective_priority):
        if remaining <= 0:
            break
        share = remaining * (category.percentage / 100)
        if category.is_capped:
            space = max(0.0, category.max_amount - balances[category.id])
            allocation = min(space, share)
        else:
            allocation = share
        balances[category.id] += allocation
        remaining -= allocation

    unallocated = 0.0
    if remaining > 0:
        savings = next((c for c in categories if c.name == SAVINGS), None)
        if savings is not None:
            balances[savings.id] += remaining
        else:
            logger.warning("No %s category; %.2f of income left unallocated", SAVINGS, remaining)
            unallocated = remaining

    updated = tuple(
        c if balances[c.id] == c.amount else replace(c, amount=balances[c.id])
        for c in categories
    )
    return Allocation(updated, unallocated)


def redistribute(categories: Sequence[Category], amount: float) -> tuple[Category, ...]:
    """Spread funds freed by a deleted category over the remaining ones.

    Everything goes to "Savings" when present; otherwise the amount is split
    in proportion to percentage share, or evenly if every share is zero.
    """
    cats = tuple(categories)
    if amount <= 0 or not cats:
        return cats

    savings = next((c for c in cats if c.name == SAVINGS), None)
    if savings is not None:
        return tuple(
            replace(c, amount=c.amount + amount) if c.id == savings.id else c
            for c in cats
        )

    total_percentage = sum(c.percentage for c in cats)
    if total_percentage > 0:
        return tuple(
            replace(c, amount=c.amount + amount * (c.percentage / total_percentage))
            for c in cats
        )
    return tuple(replace(c, amount=c.amount + amount / len(cats)) for c in cats)


def add_income(
    budget: Budget,
    amount: float,
    description: str,
    now: Optional[datetime] = None,
) -> Either[dict, Budget]:
    def _apply(valid_amount: float) -> Either[dict, Budget]:
        allocation = distribute_income(budget.categories, valid_amount)
        t = new_transaction(valid_amount, INCOME, description, date=now)
        logger.info("Income %.2f allocated (unallocated %.2f)", valid_amount, allocation.unallocated)
        return Right(replace(
            budget,
            total_balance=budget.total_balance + valid_amount,
            categories=allocation.categories,
            transactions=add_transaction(budget.transactions, t),
        ))

    return validate_amount(amount).bind(_apply)
