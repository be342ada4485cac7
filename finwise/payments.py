"""Payment engine: drains a payment from preferred, default and fallback categories."""

import logging
from dataclasses import replace
from datetime import datetime
from typing import NamedTuple, Optional, Sequence

from finwise.domain import Budget, Category, DAILY_USE, SAVINGS, PAYMENT, WITHDRAWAL
from finwise.functional import (
    Either, Right, failure, safe_category, validate_amount, require_categories,
    CATEGORY_NOT_FOUND, INSUFFICIENT_FUNDS,
)
from finwise.ledger import add_transaction, new_transaction

logger = logging.getLogger(__name__)

# Unmet remainders at or below this are float noise, not a shortfall
EPSILON = 0.01


class PaymentPlan(NamedTuple):
    categories: tuple[Category, ...]
    touched: tuple[str, ...]
    remaining: float

    @property
    def success(self) -> bool:
        return self.remaining <= EPSILON


def drain_order(
    categories: Sequence[Category],
    preferred_id: Optional[str] = None,
    fallback_ids: Sequence[str] = (),
) -> list[str]:
    """Ids in the order they are drained; each source appears once."""
    if preferred_id:
        chain = [preferred_id]
    else:
        chain = []
        for name in (DAILY_USE, SAVINGS):
            default = next((c for c in categories if c.name == name), None)
            if default is not None:
                chain.append(default.id)
    chain.extend(fid for fid in fallback_ids if fid)

    seen = set()
    order = []
    for cid in chain:
        if cid not in seen:
            seen.add(cid)
            order.append(cid)
    return order


def plan_payment(
    categories: Sequence[Category],
    amount: float,
    preferred_id: Optional[str] = None,
    fallback_ids: Sequence[str] = (),
) -> PaymentPlan:
    """Work out the drain on a copy of the categories; nothing is committed."""
    balances = {c.id: c.amount for c in categories}
    remaining = amount
    touched = []

    for cid in drain_order(categories, preferred_id, fallback_ids):
        if remaining <= 0:
            break
        if cid not in balances:
            logger.debug("Skipping unknown category %s", cid)
            continue
        taken = min(balances[cid], remaining)
        if taken > 0:
            balances[cid] -= taken
            remaining -= taken
            touched.append(cid)

    updated = tuple(
        replace(c, amount=balances[c.id]) if c.id in touched else c
        for c in categories
    )
    return PaymentPlan(updated, tuple(touched), max(0.0, remaining))


def process_payment(
    budget: Budget,
    amount: float,
    description: str,
    preferred_id: Optional[str] = None,
    fallback_ids: Sequence[str] = (),
    now: Optional[datetime] = None,
) -> Either[dict, Budget]:
    """Pay ``amount`` out of the budget.

    With a preferred category that one is drained first; without one,
    "Daily Use" then "Savings". The fallback ids follow in order. Success
    returns the new budget with one payment transaction listing every
    drained category; failure leaves ``budget`` untouched and reports the
    unmet ``remaining_amount``.
    """
    def _apply(valid_amount: float) -> Either[dict, Budget]:
        plan = plan_payment(budget.categories, valid_amount, preferred_id, fallback_ids)
        if not plan.success:
            logger.info("Payment %.2f short by %.2f", valid_amount, plan.remaining)
            return failure(
                INSUFFICIENT_FUNDS,
                "You don't have enough funds to complete this payment",
                remaining_amount=plan.remaining,
            )

        t = new_transaction(valid_amount, PAYMENT, description, ",".join(plan.touched), now)
        return Right(replace(
            budget,
            total_balance=budget.total_balance - valid_amount,
            categories=plan.categories,
            transactions=add_transaction(budget.transactions, t),
        ))

    return validate_amount(amount).bind(_apply)


def make_payment(
    budget: Budget,
    amount: float,
    description: str,
    preferred_id: Optional[str] = None,
    fallback_ids: Sequence[str] = (),
    now: Optional[datetime] = None,
) -> Either[dict, Budget]:
    """Immediate payment: like :func:`process_payment` but unknown ids are rejected."""
    return (
        validate_amount(amount)
        .bind(lambda _: require_categories(budget.categories, [preferred_id or "", *fallback_ids]))
        .bind(lambda _: process_payment(budget, amount, description, preferred_id, fallback_ids, now))
    )


def withdraw(
    budget: Budget,
    category_id: str,
    amount: float,
    description: str,
    now: Optional[datetime] = None,
) -> Either[dict, Budget]:
    def _apply(valid_amount: float) -> Either[dict, Budget]:
        category = safe_category(budget.categories, category_id).get_or_else(None)
        if category is None:
            return failure(
                CATEGORY_NOT_FOUND,
                "The selected category doesn't exist",
                category_id=category_id,
            )
        if category.amount < valid_amount:
            return failure(
                INSUFFICIENT_FUNDS,
                f"Not enough money in {category.name}",
                remaining_amount=valid_amount - category.amount,
                category_id=category_id,
            )

        t = new_transaction(valid_amount, WITHDRAWAL, description, category_id, now)
        return Right(replace(
            budget,
            total_balance=budget.total_balance - valid_amount,
            categories=tuple(
                replace(c, amount=c.amount - valid_amount) if c.id == category_id else c
                for c in budget.categories
            ),
            transactions=add_transaction(budget.transactions, t),
        ))

    return validate_amount(amount).bind(_apply)
