import asyncio
import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Callable, Optional, Sequence, Iterable, Mapping

from finwise import allocation, categories, payments, scheduler
from finwise.config import STORAGE_KEY, TICK_SECONDS, WARNING_WINDOW, ENFORCE_PERCENTAGE_CAP
from finwise.domain import Budget
from finwise.events import (
    EventBus, Notification, NOTIFICATION, BUDGET_COMMITTED, LOW_FUNDS,
)
from finwise.functional import (
    Either, INVALID_AMOUNT, CATEGORY_NOT_FOUND, INSUFFICIENT_FUNDS, PERCENTAGE_OVERFLOW,
    INVALID_FREQUENCY, SCHEDULED_PAYMENT_NOT_FOUND, PERSISTENCE_PARSE_FAILURE, INVALID_FIELD,
)
from finwise.storage import KeyValueStore, default_budget, load_budget, save_budget

logger = logging.getLogger(__name__)

ERROR_TITLES = {
    INVALID_AMOUNT: "Invalid amount",
    CATEGORY_NOT_FOUND: "Category not found",
    INSUFFICIENT_FUNDS: "Insufficient funds",
    PERCENTAGE_OVERFLOW: "Invalid percentage",
    INVALID_FREQUENCY: "Invalid frequency",
    SCHEDULED_PAYMENT_NOT_FOUND: "Scheduled payment not found",
    PERSISTENCE_PARSE_FAILURE: "Could not load saved budget",
    INVALID_FIELD: "Invalid field",
}

INTENTS = frozenset({
    "add_income", "withdraw", "make_payment",
    "schedule_payment", "toggle_scheduled", "cancel_scheduled",
    "add_category", "update_category", "delete_category",
    "update_priorities", "reorder_categories", "tick",
})


def error_notification(error: dict) -> Notification:
    message = error.get("message", "")
    if error.get("error") == INSUFFICIENT_FUNDS and "remaining_amount" in error:
        message = f"{message} (${error['remaining_amount']:.2f} short)"
    return Notification.error(ERROR_TITLES.get(error.get("error"), "Error"), message)


class BudgetController:
    """Single owner of the current budget snapshot.

    Every intent computes a new snapshot from the current one through the pure
    engine functions and commits it only on success. Intents are serialized:
    the synchronous methods hold one lock for compute-and-commit, and
    :meth:`submit`/:meth:`serve` give async callers a FIFO queue that the
    periodic scheduler tick shares with user actions.

    Each committed snapshot is saved to ``store`` and announced on ``bus``
    as ``BUDGET_COMMITTED``; every intent, accepted or rejected, publishes a
    ``NOTIFICATION``.
    """

    def __init__(
        self,
        store: KeyValueStore,
        key: str = STORAGE_KEY,
        bus: Optional[EventBus] = None,
        clock: Callable[[], datetime] = datetime.now,
        warning_window: timedelta = WARNING_WINDOW,
        enforce_percentage_cap: bool = ENFORCE_PERCENTAGE_CAP,
    ):
        self.store = store
        self.key = key
        self.bus = bus or EventBus()
        self.clock = clock
        self.warning_window = warning_window
        self.enforce_percentage_cap = enforce_percentage_cap
        self._lock = threading.RLock()
        self._queue: Optional[asyncio.Queue] = None

        loaded = load_budget(store, key)
        if loaded.is_left():
            self._budget = default_budget(clock())
            self._notify(Notification.error(
                ERROR_TITLES[PERSISTENCE_PARSE_FAILURE],
                "Your saved budget was unreadable and has been reset to the defaults",
            ))
        else:
            self._budget = loaded.get_or_else(None)

    @property
    def budget(self) -> Budget:
        return self._budget

    def _notify(self, notification: Notification) -> None:
        self.bus.publish(NOTIFICATION, {"notification": notification})

    def _commit(self, budget: Budget) -> None:
        self._budget = budget
        try:
            save_budget(self.store, budget, self.key)
        except OSError as e:
            logger.error("Could not save budget: %s", e)
            self._notify(Notification.error("Could not save budget", str(e)))
        self.bus.publish(BUDGET_COMMITTED, {"budget": budget})

    def _run(
        self,
        compute: Callable[[Budget], Either],
        describe: Callable[[Budget, Budget], Notification],
    ) -> Either:
        with self._lock:
            before = self._budget
            result = compute(before)
            if result.is_right():
                self._commit(result.get_or_else(before))
                notification = describe(before, self._budget)
            else:
                notification = error_notification(result.get_error())
        self._notify(notification)
        return result

    # --- ledger intents

    def add_income(self, amount: float, description: str = "") -> Either:
        def _describe(before: Budget, after: Budget) -> Notification:
            stranded = categories.unassigned_balance(after) - categories.unassigned_balance(before)
            message = f"${amount:.2f} has been distributed to your categories"
            if stranded > 1e-9:
                message += f"; ${stranded:.2f} could not be allocated"
            return Notification.info("Income added", message)

        return self._run(
            lambda b: allocation.add_income(b, amount, description, self.clock()),
            _describe,
        )

    def withdraw(self, category_id: str, amount: float, description: str = "") -> Either:
        def _describe(before: Budget, after: Budget) -> Notification:
            name = next(c.name for c in after.categories if c.id == category_id)
            return Notification.info("Withdrawal successful", f"${amount:.2f} withdrawn from {name}")

        return self._run(
            lambda b: payments.withdraw(b, category_id, amount, description, self.clock()),
            _describe,
        )

    def make_payment(
        self,
        amount: float,
        description: str = "",
        preferred_id: Optional[str] = None,
        fallback_ids: Sequence[str] = (),
    ) -> Either:
        return self._run(
            lambda b: payments.make_payment(b, amount, description, preferred_id, fallback_ids, self.clock()),
            lambda before, after: Notification.info("Payment successful", f"${amount:.2f} payment completed"),
        )

    # --- schedule intents

    def schedule_payment(
        self,
        amount: float,
        description: str,
        date: datetime,
        recurring: bool = False,
        frequency: Optional[str] = None,
        preferred_id: Optional[str] = None,
        fallback_ids: Sequence[str] = (),
    ) -> Either:
        kind = "Recurring" if recurring else "One-time"
        return self._run(
            lambda b: scheduler.schedule_payment(
                b, amount, description, date, recurring, frequency, preferred_id, fallback_ids,
            ),
            lambda before, after: Notification.info(
                "Payment scheduled", f"{kind} payment scheduled for {date:%Y-%m-%d %H:%M}",
            ),
        )

    def toggle_scheduled(self, payment_id: str, active: bool) -> Either:
        if active:
            notification = Notification.info("Payment activated", "Scheduled payment has been activated")
        else:
            notification = Notification.info("Payment paused", "Scheduled payment has been paused")
        return self._run(
            lambda b: scheduler.toggle_scheduled(b, payment_id, active),
            lambda before, after: notification,
        )

    def cancel_scheduled(self, payment_id: str) -> Either:
        return self._run(
            lambda b: scheduler.cancel_scheduled(b, payment_id),
            lambda before, after: Notification.info("Payment canceled", "Scheduled payment has been canceled"),
        )

    # --- category intents

    def add_category(self, name: str, percentage: float, **options) -> Either:
        return self._run(
            lambda b: categories.add_category(
                b, name, percentage, enforce_percentage_cap=self.enforce_percentage_cap, **options,
            ),
            lambda before, after: Notification.info("Category added", f"{name} has been added to your budget"),
        )

    def update_category(self, category_id: str, **changes) -> Either:
        def _describe(before: Budget, after: Budget) -> Notification:
            name = next(c.name for c in after.categories if c.id == category_id)
            return Notification.info("Category updated", f"{name} has been updated")

        return self._run(
            lambda b: categories.update_category(
                b, category_id, enforce_percentage_cap=self.enforce_percentage_cap, **changes,
            ),
            _describe,
        )

    def delete_category(self, category_id: str) -> Either:
        def _describe(before: Budget, after: Budget) -> Notification:
            name = next(c.name for c in before.categories if c.id == category_id)
            return Notification.info("Category deleted", f"{name} has been deleted and funds redistributed")

        return self._run(lambda b: categories.delete_category(b, category_id), _describe)

    def update_priorities(self, updates: Iterable[Mapping[str, Any]]) -> Either:
        updates = list(updates)
        return self._run(
            lambda b: categories.update_priorities(b, updates),
            lambda before, after: Notification.info(
                "Priorities updated", "Category priorities and limits have been updated",
            ),
        )

    def reorder_categories(self, ordered_ids: Sequence[str]) -> Either:
        return self._run(
            lambda b: categories.reorder_categories(b, ordered_ids),
            lambda before, after: Notification.info("Priorities updated", "Category order has been updated"),
        )

    # --- scheduler

    def tick(self, now: Optional[datetime] = None) -> scheduler.TickReport:
        """Warn about upcoming shortfalls, then fire everything that is due."""
        with self._lock:
            report = scheduler.tick(self._budget, now or self.clock(), self.warning_window)
            if report.changed:
                self._commit(report.budget)

        for warning in report.warnings:
            self.bus.publish(LOW_FUNDS, {"warning": warning})
            minutes = max(1, round(warning.time_remaining.total_seconds() / 60))
            self._notify(Notification.error(
                "Low funds for scheduled payment",
                f"'{warning.payment.description}' is due in {minutes} min and is "
                f"${warning.remaining_amount:.2f} short",
            ))

        for fired in report.fired:
            if fired.success:
                self._notify(Notification.info(
                    "Scheduled payment processed",
                    f"${fired.payment.amount:.2f} paid for '{fired.payment.description}'",
                ))
            else:
                self._notify(Notification.error(
                    "Scheduled payment failed",
                    f"Not enough funds for '{fired.payment.description}'; the payment has been deactivated",
                ))
        return report

    # --- async serialization

    def _get_queue(self) -> asyncio.Queue:
        if self._queue is None:
            self._queue = asyncio.Queue()
        return self._queue

    async def submit(self, intent: str, *args, **kwargs) -> Any:
        """Queue an intent for :meth:`serve` and wait for its result."""
        if intent not in INTENTS:
            raise ValueError(f"Unknown intent: {intent}")
        future = asyncio.get_running_loop().create_future()
        await self._get_queue().put((intent, args, kwargs, future))
        return await future

    async def serve(self) -> None:
        """Run queued intents one at a time until cancelled."""
        queue = self._get_queue()
        while True:
            intent, args, kwargs, future = await queue.get()
            try:
                result = getattr(self, intent)(*args, **kwargs)
            except Exception as e:
                logger.exception("Intent %s failed", intent)
                if not future.cancelled():
                    future.set_exception(e)
            else:
                if not future.cancelled():
                    future.set_result(result)
            finally:
                queue.task_done()

    async def run_scheduler(
        self,
        interval: float = TICK_SECONDS,
        stop: Optional[asyncio.Event] = None,
    ) -> None:
        """Queue a tick now and then every ``interval`` seconds until ``stop`` is set."""
        stop = stop or asyncio.Event()
        while not stop.is_set():
            await self.submit("tick")
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
