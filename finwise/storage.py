"""Persistence of the budget snapshot.

The whole ``Budget`` is serialized to one JSON document and stored under a
single key in a key-value store. Dates travel as ISO 8601 strings and are
parsed back into ``datetime`` on load.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, Optional, Protocol

from finwise.config import STORAGE_KEY
from finwise.domain import Budget, Category, Transaction, ScheduledPayment, INCOME
from finwise.functional import Either, Right, failure, PERSISTENCE_PARSE_FAILURE

logger = logging.getLogger(__name__)

DEFAULT_KEY = STORAGE_KEY

DEFAULT_CATEGORIES = (
    Category("1", "Savings", 20, 200.0, "#3B82F6", "piggy-bank", priority=1),
    Category("2", "Bills", 30, 300.0, "#EF4444", "receipt", max_amount=500.0, priority=2),
    Category("3", "Entertainment", 10, 100.0, "#F59E0B", "tv", max_amount=200.0, priority=5),
    Category("4", "Groceries", 15, 150.0, "#10B981", "shopping-cart", max_amount=300.0, priority=3),
    Category("5", "Investments", 15, 150.0, "#8B5CF6", "trending-up", max_amount=1000.0, priority=4),
    Category("6", "Daily Use", 10, 100.0, "#0D9488", "coffee", priority=6),
)


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def put(self, key: str, value: str) -> None: ...


class MemoryStore:
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def put(self, key: str, value: str) -> None:
        self._data[key] = value


class JsonFileStore:
    """One ``<key>.json`` file per key inside ``directory``."""

    def __init__(self, directory: Path | str):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def get(self, key: str) -> Optional[str]:
        target = self._path(key)
        if not target.exists():
            return None
        with target.open('r', encoding='utf-8') as handle:
            return handle.read()

    def put(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        target = self._path(key)
        tmp = target.parent / (target.name + '.tmp')
        with tmp.open('w', encoding='utf-8') as handle:
            handle.write(value)
        tmp.replace(target)


def default_budget(now: Optional[datetime] = None) -> Budget:
    now = now or datetime.now()
    return Budget(
        total_balance=1000.0,
        categories=DEFAULT_CATEGORIES,
        transactions=(
            Transaction(
                id="1",
                amount=1000.0,
                type=INCOME,
                date=now - timedelta(days=7),
                description="Initial deposit",
            ),
        ),
        scheduled_payments=(),
    )


def budget_to_dict(budget: Budget) -> dict:
    data = asdict(budget)
    for t in data["transactions"]:
        t["date"] = t["date"].isoformat()
    for p in data["scheduled_payments"]:
        p["next_date"] = p["next_date"].isoformat()
        p["fallback_categories"] = list(p["fallback_categories"])
    return data


def _parse_date(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is not None:
        # snapshots compare against naive local clock values
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def budget_from_dict(data: dict) -> Budget:
    return Budget(
        total_balance=float(data["total_balance"]),
        categories=tuple(Category(**c) for c in data["categories"]),
        transactions=tuple(
            Transaction(**{**t, "date": _parse_date(t["date"])})
            for t in data.get("transactions", [])
        ),
        scheduled_payments=tuple(
            ScheduledPayment(**{
                **p,
                "next_date": _parse_date(p["next_date"]),
                "fallback_categories": tuple(p.get("fallback_categories") or ()),
            })
            for p in data.get("scheduled_payments", [])
        ),
    )


def dumps_budget(budget: Budget) -> str:
    return json.dumps(budget_to_dict(budget), indent=2)


def loads_budget(raw: str) -> Budget:
    return budget_from_dict(json.loads(raw))


def save_budget(store: KeyValueStore, budget: Budget, key: str = DEFAULT_KEY) -> None:
    store.put(key, dumps_budget(budget))


def load_budget(store: KeyValueStore, key: str = DEFAULT_KEY) -> Either[dict, Budget]:
    """Read the stored snapshot.

    A missing key yields the default budget. A snapshot that cannot be parsed
    yields ``Left`` with ``persistence_parse_failure``; the caller decides to
    reset to :func:`default_budget`.
    """
    try:
        raw = store.get(key)
    except (OSError, UnicodeDecodeError) as e:
        logger.error("Could not read stored budget %s: %s", key, e)
        return failure(PERSISTENCE_PARSE_FAILURE, f"Could not read saved budget: {e}", key=key)

    if raw is None:
        logger.info("No stored budget under %s, using defaults", key)
        return Right(default_budget())

    try:
        return Right(loads_budget(raw))
    except (json.JSONDecodeError, AttributeError, KeyError, TypeError, ValueError) as e:
        logger.error("Failed to parse saved budget %s: %s", key, e)
        return failure(PERSISTENCE_PARSE_FAILURE, f"Failed to parse saved budget: {e}", key=key)
