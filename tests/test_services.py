import asyncio
import contextlib
import json
from datetime import datetime, timedelta

import pytest

from finwise.domain import WEEKLY
from finwise.events import EventBus, NOTIFICATION, BUDGET_COMMITTED, LOW_FUNDS
from finwise.services import BudgetController
from finwise.storage import DEFAULT_KEY, JsonFileStore, MemoryStore, budget_to_dict, load_budget

NOW = datetime(2025, 3, 10, 12, 0)


def make_controller(store=None, enforce_percentage_cap=False):
    bus = EventBus()
    notes, commits, warnings = [], [], []
    bus.subscribe(NOTIFICATION, lambda e, p: notes.append(p["notification"]))
    bus.subscribe(BUDGET_COMMITTED, lambda e, p: commits.append(p["budget"]))
    bus.subscribe(LOW_FUNDS, lambda e, p: warnings.append(p["warning"]))
    controller = BudgetController(
        store if store is not None else MemoryStore(),
        bus=bus,
        clock=lambda: NOW,
        enforce_percentage_cap=enforce_percentage_cap,
    )
    return controller, notes, commits, warnings


def test_starts_from_default_budget():
    controller, notes, commits, _ = make_controller()
    assert controller.budget.total_balance == 1000
    assert notes == []
    assert commits == []


def test_corrupt_snapshot_resets_to_default():
    store = MemoryStore({DEFAULT_KEY: "garbage"})
    controller, notes, _, _ = make_controller(store)

    assert controller.budget.total_balance == 1000
    assert notes[0].is_error
    assert notes[0].title == "Could not load saved budget"


def test_income_commits_persists_and_notifies():
    store = MemoryStore()
    controller, notes, commits, _ = make_controller(store)

    result = controller.add_income(100, "Salary")

    assert result.is_right()
    assert controller.budget.total_balance == 1100
    assert commits == [controller.budget]
    assert load_budget(store).get_or_else(None) == controller.budget
    assert notes[-1].title == "Income added"
    assert not notes[-1].is_error


def test_rejected_intent_leaves_state_untouched():
    store = MemoryStore()
    controller, notes, commits, _ = make_controller(store)
    before = controller.budget

    result = controller.make_payment(5000, "Car")

    assert result.is_left()
    assert result.get_error()["remaining_amount"] == pytest.approx(5000 - 300)
    assert controller.budget is before
    assert commits == []
    assert store.get(DEFAULT_KEY) is None
    assert notes[-1].title == "Insufficient funds"
    assert "$4700.00 short" in notes[-1].message


def test_retry_with_fallback_after_shortfall():
    controller, notes, _, _ = make_controller()

    first = controller.make_payment(350, "Laptop")
    assert first.is_left()

    second = controller.make_payment(350, "Laptop", fallback_ids=["5"])
    assert second.is_right()
    cats = {c.name: c.amount for c in controller.budget.categories}
    assert cats["Daily Use"] == 0
    assert cats["Savings"] == 0
    assert cats["Investments"] == 100
    assert controller.budget.total_balance == 650


def test_withdraw_and_category_intents():
    controller, notes, _, _ = make_controller()

    assert controller.withdraw("4", 50, "Market").is_right()
    assert notes[-1].message == "$50.00 withdrawn from Groceries"

    assert controller.add_category("Travel", 5).is_right()
    travel = controller.budget.categories[-1]
    assert controller.update_category(travel.id, name="Trips").is_right()
    assert notes[-1].message == "Trips has been updated"

    assert controller.delete_category("3").is_right()
    assert notes[-1].message == "Entertainment has been deleted and funds redistributed"
    savings = next(c for c in controller.budget.categories if c.name == "Savings")
    assert savings.amount == 300

    assert controller.reorder_categories(["6", "1"]).is_right()
    assert controller.update_priorities([{"id": "2", "priority": 9, "max_amount": None}]).is_right()
    bills = next(c for c in controller.budget.categories if c.id == "2")
    assert bills.priority == 9 and bills.max_amount is None


def test_percentage_cap_policy_is_configurable():
    controller, notes, _, _ = make_controller(enforce_percentage_cap=True)
    result = controller.add_category("Extra", 10)

    assert result.is_left()
    assert notes[-1].title == "Invalid percentage"


def test_tick_fires_and_commits_once():
    store = MemoryStore()
    controller, notes, commits, _ = make_controller(store)
    controller.schedule_payment(20, "Gym", NOW - timedelta(minutes=1), recurring=True, frequency=WEEKLY)
    controller.schedule_payment(10, "Coffee", NOW - timedelta(minutes=2))
    commits.clear()

    report = controller.tick()

    assert len(report.fired) == 2
    assert len(commits) == 1
    assert controller.budget.total_balance == 970
    gym = next(p for p in controller.budget.scheduled_payments if p.description == "Gym")
    assert gym.active and gym.next_date == NOW - timedelta(minutes=1) + timedelta(days=7)
    assert [n.title for n in notes[-2:]] == ["Scheduled payment processed"] * 2


def test_tick_warns_without_committing():
    controller, notes, commits, warnings = make_controller()
    controller.schedule_payment(5000, "Rent", NOW + timedelta(minutes=2))
    commits.clear()

    report = controller.tick()

    assert not report.changed
    assert commits == []
    assert len(warnings) == 1
    assert notes[-1].title == "Low funds for scheduled payment"
    assert "due in 2 min" in notes[-1].message


def test_failed_scheduled_payment_is_deactivated():
    controller, notes, _, _ = make_controller()
    controller.schedule_payment(5000, "Rent", NOW, recurring=True, frequency=WEEKLY)

    controller.tick()

    assert not controller.budget.scheduled_payments[0].active
    assert notes[-1].title == "Scheduled payment failed"


def test_toggle_and_cancel_scheduled():
    controller, notes, _, _ = make_controller()
    controller.schedule_payment(5, "Tea", NOW + timedelta(days=1))
    pid = controller.budget.scheduled_payments[0].id

    controller.toggle_scheduled(pid, False)
    assert notes[-1].title == "Payment paused"
    controller.toggle_scheduled(pid, True)
    assert notes[-1].title == "Payment activated"
    controller.cancel_scheduled(pid)
    assert controller.budget.scheduled_payments == ()

    assert controller.cancel_scheduled(pid).is_left()
    assert notes[-1].title == "Scheduled payment not found"


@pytest.mark.asyncio
async def test_queue_serializes_intents():
    controller, _, commits, _ = make_controller()
    worker = asyncio.create_task(controller.serve())
    try:
        results = await asyncio.gather(
            controller.submit("add_income", 100, "a"),
            controller.submit("make_payment", 50, "b"),
            controller.submit("add_income", 100, "c"),
        )
    finally:
        worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await worker

    assert all(r.is_right() for r in results)
    assert len(commits) == 3
    assert controller.budget.total_balance == 1150
    assert [t.description for t in controller.budget.transactions[:3]] == ["c", "b", "a"]


@pytest.mark.asyncio
async def test_submit_rejects_unknown_intent():
    controller, _, _, _ = make_controller()
    with pytest.raises(ValueError):
        await controller.submit("drop_tables")


@pytest.mark.asyncio
async def test_scheduler_ticks_at_startup():
    controller, _, _, _ = make_controller()
    controller.schedule_payment(10, "Coffee", NOW - timedelta(minutes=1))
    stop = asyncio.Event()
    worker = asyncio.create_task(controller.serve())
    ticker = asyncio.create_task(controller.run_scheduler(interval=60, stop=stop))
    try:
        for _ in range(100):
            if not controller.budget.scheduled_payments[0].active:
                break
            await asyncio.sleep(0.01)
    finally:
        stop.set()
        await ticker
        worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await worker

    assert not controller.budget.scheduled_payments[0].active
    assert controller.budget.total_balance == 990


def test_undecodable_snapshot_file_resets_to_default(tmp_path):
    (tmp_path / f"{DEFAULT_KEY}.json").write_bytes(b'{"total_balance": \xff\xfe}')
    controller, notes, _, _ = make_controller(JsonFileStore(tmp_path))

    assert controller.budget.total_balance == 1000
    assert notes[0].title == "Could not load saved budget"


def test_update_category_rejects_unknown_field():
    controller, notes, commits, _ = make_controller()
    before = controller.budget

    result = controller.update_category("1", amount=5)

    assert result.is_left()
    assert controller.budget is before
    assert commits == []
    assert notes[-1].title == "Invalid field"
    assert notes[-1].is_error


def test_tick_handles_snapshot_with_offset_dates():
    store = MemoryStore()
    controller, _, _, _ = make_controller(store)
    controller.schedule_payment(10, "Coffee", NOW + timedelta(days=1))
    data = budget_to_dict(controller.budget)
    data["scheduled_payments"][0]["next_date"] = "2025-01-01T00:00:00+00:00"
    store.put(DEFAULT_KEY, json.dumps(data))

    reloaded, notes, _, _ = make_controller(store)
    report = reloaded.tick()

    assert len(report.fired) == 1 and report.fired[0].success
    assert reloaded.budget.total_balance == 990
    assert notes[-1].title == "Scheduled payment processed"
