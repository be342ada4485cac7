"""
Scheduled and recurring payments.

A tick runs in two passes. The warning pass simulates every payment that
falls due within the look-ahead window against the current budget and
reports the ones that would fail; it never changes anything. The due pass
fires every active payment whose ``next_date`` has passed, one after the
other against the running result, and returns the final budget for the
caller to commit once.
"""

import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import NamedTuple, Optional, Sequence
from uuid import uuid4

import pandas as pd

from finwise.domain import Budget, ScheduledPayment, DAILY, WEEKLY, MONTHLY, FREQUENCIES
from finwise.functional import (
    Either, Right, failure, safe_scheduled, validate_amount, require_categories,
    INVALID_FREQUENCY, SCHEDULED_PAYMENT_NOT_FOUND,
)
from finwise.payments import process_payment

logger = logging.getLogger(__name__)

DEFAULT_WARNING_WINDOW = timedelta(minutes=3)


class LowFundsWarning(NamedTuple):
    payment: ScheduledPayment
    time_remaining: timedelta
    remaining_amount: float


class FiredPayment(NamedTuple):
    payment: ScheduledPayment      # state after firing
    success: bool
    error: Optional[dict] = None


class TickReport(NamedTuple):
    budget: Budget
    warnings: tuple[LowFundsWarning, ...]
    fired: tuple[FiredPayment, ...]

    @property
    def changed(self) -> bool:
        return bool(self.fired)


def advance_date(date: datetime, frequency: str) -> datetime:
    """Next occurrence after ``date``; monthly steps clamp to the month's last day."""
    if frequency == DAILY:
        return date + timedelta(days=1)
    if frequency == WEEKLY:
        return date + timedelta(weeks=1)
    if frequency == MONTHLY:
        return (pd.Timestamp(date) + pd.DateOffset(months=1)).to_pydatetime()
    raise ValueError(f"Unknown frequency: {frequency}")


def is_due(payment: ScheduledPayment, now: datetime) -> bool:
    return payment.active and payment.next_date <= now


def schedule_payment(
    budget: Budget,
    amount: float,
    description: str,
    date: datetime,
    recurring: bool = False,
    frequency: Optional[str] = None,
    preferred_id: Optional[str] = None,
    fallback_ids: Sequence[str] = (),
) -> Either[dict, Budget]:
    def _check_frequency(_) -> Either[dict, None]:
        if recurring and frequency not in FREQUENCIES:
            return failure(
                INVALID_FREQUENCY,
                f"Recurring payments need a frequency ({', '.join(FREQUENCIES)})",
                frequency=frequency,
            )
        return Right(None)

    def _apply(_) -> Either[dict, Budget]:
        payment = ScheduledPayment(
            id=str(uuid4()),
            amount=float(amount),
            description=description,
            next_date=date,
            category=preferred_id or "",
            fallback_categories=tuple(fid for fid in fallback_ids if fid),
            recurring=recurring,
            frequency=frequency if recurring else None,
            time=date.strftime("%H:%M"),
            active=True,
        )
        logger.info("Scheduled %s payment %s for %s", payment.frequency or "one-time", payment.id, date)
        return Right(replace(budget, scheduled_payments=(payment,) + budget.scheduled_payments))

    return (
        validate_amount(amount)
        .bind(_check_frequency)
        .bind(lambda _: require_categories(budget.categories, [preferred_id or "", *fallback_ids]))
        .bind(_apply)
    )


def _not_found(payment_id: str) -> Either[dict, Budget]:
    return failure(
        SCHEDULED_PAYMENT_NOT_FOUND,
        f"Scheduled payment {payment_id} does not exist",
        payment_id=payment_id,
    )


def toggle_scheduled(budget: Budget, payment_id: str, active: bool) -> Either[dict, Budget]:
    if safe_scheduled(budget.scheduled_payments, payment_id).is_none():
        return _not_found(payment_id)
    return Right(replace(
        budget,
        scheduled_payments=tuple(
            replace(p, active=active) if p.id == payment_id else p
            for p in budget.scheduled_payments
        ),
    ))


def cancel_scheduled(budget: Budget, payment_id: str) -> Either[dict, Budget]:
    if safe_scheduled(budget.scheduled_payments, payment_id).is_none():
        return _not_found(payment_id)
    return Right(replace(
        budget,
        scheduled_payments=tuple(p for p in budget.scheduled_payments if p.id != payment_id),
    ))


def low_funds_warnings(
    budget: Budget,
    now: datetime,
    window: timedelta = DEFAULT_WARNING_WINDOW,
) -> tuple[LowFundsWarning, ...]:
    warnings = []
    for payment in budget.scheduled_payments:
        if not payment.active or not now < payment.next_date <= now + window:
            continue
        simulated = process_payment(
            budget,
            payment.amount,
            payment.description,
            payment.category or None,
            payment.fallback_categories,
            now,
        )
        if simulated.is_left():
            warnings.append(LowFundsWarning(
                payment=payment,
                time_remaining=payment.next_date - now,
                remaining_amount=simulated.get_error().get("remaining_amount", payment.amount),
            ))
    return tuple(warnings)


def fire(budget: Budget, payment: ScheduledPayment, now: datetime) -> tuple[Budget, FiredPayment]:
    result = process_payment(
        budget,
        payment.amount,
        payment.description,
        payment.category or None,
        payment.fallback_categories,
        now,
    )
    if result.is_left():
        logger.warning("Scheduled payment %s failed and was deactivated", payment.id)
        return budget, FiredPayment(replace(payment, active=False), False, result.get_error())

    if payment.recurring and payment.frequency:
        updated = replace(payment, next_date=advance_date(payment.next_date, payment.frequency))
    else:
        updated = replace(payment, active=False)
    return result.get_or_else(budget), FiredPayment(updated, True)


def run_due_payments(budget: Budget, now: datetime) -> tuple[Budget, tuple[FiredPayment, ...]]:
    due = sorted(
        (p for p in budget.scheduled_payments if is_due(p, now)),
        key=lambda p: p.next_date,
    )
    current = budget
    fired = []
    for payment in due:
        current, outcome = fire(current, payment, now)
        fired.append(outcome)

    if not fired:
        return budget, ()

    by_id = {f.payment.id: f.payment for f in fired}
    return replace(
        current,
        scheduled_payments=tuple(by_id.get(p.id, p) for p in budget.scheduled_payments),
    ), tuple(fired)


def tick(
    budget: Budget,
    now: Optional[datetime] = None,
    window: timedelta = DEFAULT_WARNING_WINDOW,
) -> TickReport:
    now = now or datetime.now()
    warnings = low_funds_warnings(budget, now, window)
    updated, fired = run_due_payments(budget, now)
    return TickReport(updated, warnings, fired)
