import logging
from dataclasses import replace
from typing import Iterable, Mapping, Optional, Sequence
from uuid import uuid4

from finwise.allocation import redistribute
from finwise.domain import Budget, Category, DAILY_USE
from finwise.functional import (
    Either, Left, Right, failure, safe_category,
    CATEGORY_NOT_FOUND, INVALID_FIELD, PERCENTAGE_OVERFLOW,
)

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = frozenset({"name", "percentage", "color", "icon", "max_amount", "priority"})


def total_percentage(cats: Iterable[Category]) -> float:
    return sum(c.percentage for c in cats)


def daily_balance(budget: Budget) -> float:
    return next((c.amount for c in budget.categories if c.name == DAILY_USE), 0.0)


def unassigned_balance(budget: Budget) -> float:
    """Part of ``total_balance`` that no category holds."""
    return budget.total_balance - sum(c.amount for c in budget.categories)


def _check_percentage(
    others: Iterable[Category], percentage: float, enforce_percentage_cap: bool
) -> Optional[Left]:
    if not 0 <= percentage <= 100:
        return failure(PERCENTAGE_OVERFLOW, "Percentage must be between 0 and 100", percentage=percentage)
    if enforce_percentage_cap and total_percentage(others) + percentage > 100:
        return failure(PERCENTAGE_OVERFLOW, "Total allocation cannot exceed 100%", percentage=percentage)
    return None


def add_category(
    budget: Budget,
    name: str,
    percentage: float,
    color: str = "#64748B",
    icon: str = "wallet",
    max_amount: Optional[float] = None,
    priority: Optional[int] = None,
    enforce_percentage_cap: bool = False,
) -> Either[dict, Budget]:
    error = _check_percentage(budget.categories, percentage, enforce_percentage_cap)
    if error is not None:
        return error

    category = Category(
        id=str(uuid4()),
        name=name,
        percentage=percentage,
        amount=0.0,
        color=color,
        icon=icon,
        max_amount=max_amount,
        priority=priority,
    )
    logger.info("Category %s added", name)
    return Right(replace(budget, categories=budget.categories + (category,)))


def update_category(
    budget: Budget,
    category_id: str,
    enforce_percentage_cap: bool = False,
    **changes,
) -> Either[dict, Budget]:
    """Edit category metadata. Balance and id cannot be changed here."""
    current = safe_category(budget.categories, category_id).get_or_else(None)
    if current is None:
        return failure(
            CATEGORY_NOT_FOUND,
            "The category you're trying to update doesn't exist",
            category_id=category_id,
        )

    unknown = set(changes) - EDITABLE_FIELDS
    if unknown:
        return failure(
            INVALID_FIELD,
            f"Cannot update category fields: {', '.join(sorted(unknown))}",
            fields=sorted(unknown),
        )

    if "percentage" in changes:
        others = (c for c in budget.categories if c.id != category_id)
        error = _check_percentage(others, changes["percentage"], enforce_percentage_cap)
        if error is not None:
            return error

    updated = replace(current, **changes)
    return Right(replace(
        budget,
        categories=tuple(updated if c.id == category_id else c for c in budget.categories),
    ))


def delete_category(budget: Budget, category_id: str) -> Either[dict, Budget]:
    """Remove a category and hand its balance to the others.

    With no category left the balance stays in ``total_balance`` as
    unassigned money.
    """
    doomed = safe_category(budget.categories, category_id).get_or_else(None)
    if doomed is None:
        return failure(
            CATEGORY_NOT_FOUND,
            "The category you're trying to delete doesn't exist",
            category_id=category_id,
        )

    rest = tuple(c for c in budget.categories if c.id != category_id)
    logger.info("Category %s deleted, redistributing %.2f", doomed.name, doomed.amount)
    return Right(replace(budget, categories=redistribute(rest, doomed.amount)))


def update_priorities(budget: Budget, updates: Iterable[Mapping]) -> Either[dict, Budget]:
    """Apply ``{"id", "priority", "max_amount"}`` entries; unknown ids are ignored."""
    by_id = {u["id"]: u for u in updates}
    return Right(replace(
        budget,
        categories=tuple(
            replace(c, priority=by_id[c.id].get("priority"), max_amount=by_id[c.id].get("max_amount"))
            if c.id in by_id else c
            for c in budget.categories
        ),
    ))


def reorder_categories(budget: Budget, ordered_ids: Sequence[str]) -> Either[dict, Budget]:
    """Give the listed categories priorities 1..n in list order."""
    missing = [cid for cid in ordered_ids if safe_category(budget.categories, cid).is_none()]
    if missing:
        return failure(
            CATEGORY_NOT_FOUND,
            f"Category with ID {missing[0]} does not exist",
            category_id=missing[0],
        )
    rank = {cid: i + 1 for i, cid in enumerate(ordered_ids)}
    return Right(replace(
        budget,
        categories=tuple(
            replace(c, priority=rank[c.id]) if c.id in rank else c
            for c in budget.categories
        ),
    ))
