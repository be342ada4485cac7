from collections import defaultdict
from datetime import datetime
from functools import reduce
from typing import Callable, Iterable, Iterator, Optional
from uuid import uuid4

from finwise.domain import Category, Transaction, INCOME, WITHDRAWAL, PAYMENT


def new_transaction(
    amount: float,
    type: str,
    description: str,
    category: Optional[str] = None,
    date: Optional[datetime] = None,
) -> Transaction:
    return Transaction(
        id=str(uuid4()),
        amount=amount,
        type=type,
        date=date or datetime.now(),
        description=description,
        category=category,
    )


def add_transaction(
    trans: tuple[Transaction, ...], t: Transaction
) -> tuple[Transaction, ...]:
    # newest first
    return (t,) + trans


def iter_transactions(
    trans: Iterable[Transaction], pred: Callable[[Transaction], bool]
) -> Iterator[Transaction]:
    for t in trans:
        if pred(t):
            yield t


def by_type(*types: str):
    def _filter(t: Transaction) -> bool:
        return t.type in types

    return _filter


def by_category(cat_id: str):
    def _filter(t: Transaction) -> bool:
        return cat_id in t.category_ids

    return _filter


def by_date_range(start: datetime, end: datetime):
    def _filter(t: Transaction) -> bool:
        return start <= t.date <= end

    return _filter


def income_total(trans: Iterable[Transaction]) -> float:
    return reduce(lambda acc, t: acc + t.amount, iter_transactions(trans, by_type(INCOME)), 0.0)


def spent_total(trans: Iterable[Transaction]) -> float:
    return reduce(
        lambda acc, t: acc + t.amount,
        iter_transactions(trans, by_type(WITHDRAWAL, PAYMENT)),
        0.0,
    )


def top_spending_categories(
    trans: Iterable[Transaction], cats: Iterable[Category], k: int
) -> Iterator[tuple[str, float]]:
    """Yield ``(category name, amount spent)`` pairs, largest first.

    A payment drained from several categories is split evenly across them;
    the ledger only records which categories were touched, not how much each
    one gave.
    """
    category_name_by_id: dict[str, str] = {c.id: c.name for c in cats}
    totals_by_category: dict[str, float] = defaultdict(float)

    for t in iter_transactions(trans, by_type(WITHDRAWAL, PAYMENT)):
        ids = t.category_ids
        for cid in ids:
            totals_by_category[cid] += t.amount / len(ids)

    ordered = sorted(
        ((category_name_by_id.get(cid, cid), total) for cid, total in totals_by_category.items()),
        key=lambda item: item[1],
        reverse=True,
    )

    for name, total in ordered[: max(0, k)]:
        yield name, total
