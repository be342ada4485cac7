import pytest

from finwise.categories import (
    add_category, update_category, delete_category, update_priorities, reorder_categories,
    daily_balance, total_percentage, unassigned_balance,
)
from finwise.domain import Budget, Category
from finwise.functional import CATEGORY_NOT_FOUND, INVALID_FIELD, PERCENTAGE_OVERFLOW


def make_sample():
    cats = (
        Category("1", "Savings", 20, 200.0, priority=1),
        Category("2", "Bills", 30, 300.0, max_amount=500.0, priority=2),
        Category("6", "Daily Use", 10, 100.0, priority=6),
    )
    return Budget(total_balance=600.0, categories=cats)


def test_add_category_starts_empty():
    budget = make_sample()
    result = add_category(budget, "Travel", 15, color="#fff", icon="plane", max_amount=900.0, priority=3)

    new_budget = result.get_or_else(None)
    travel = new_budget.categories[-1]
    assert travel.name == "Travel"
    assert travel.amount == 0
    assert travel.max_amount == 900.0
    assert travel.id not in {c.id for c in budget.categories}
    assert len(budget.categories) == 3


def test_percentage_sum_unchecked_by_default():
    budget = make_sample()
    result = add_category(budget, "Fun", 80)
    assert result.is_right()
    assert total_percentage(result.get_or_else(None).categories) == 140


def test_percentage_cap_when_enforced():
    budget = make_sample()
    result = add_category(budget, "Fun", 80, enforce_percentage_cap=True)

    assert result.is_left()
    assert result.get_error()["error"] == PERCENTAGE_OVERFLOW


@pytest.mark.parametrize("percentage", [-1, 101])
def test_percentage_out_of_range(percentage):
    result = add_category(make_sample(), "Bad", percentage)
    assert result.get_error()["error"] == PERCENTAGE_OVERFLOW


def test_update_category_keeps_balance():
    budget = make_sample()
    result = update_category(budget, "2", name="Utilities", percentage=25)

    bills = result.get_or_else(None).categories[1]
    assert bills.name == "Utilities"
    assert bills.percentage == 25
    assert bills.amount == 300


def test_update_category_cannot_edit_balance():
    result = update_category(make_sample(), "2", amount=0)

    assert result.is_left()
    assert result.get_error()["error"] == INVALID_FIELD
    assert result.get_error()["fields"] == ["amount"]


def test_update_category_enforced_cap_excludes_itself():
    budget = make_sample()
    assert update_category(budget, "2", enforce_percentage_cap=True, percentage=70).is_right()
    assert update_category(budget, "2", enforce_percentage_cap=True, percentage=71).is_left()


def test_update_unknown_category():
    result = update_category(make_sample(), "nope", name="x")
    assert result.get_error()["error"] == CATEGORY_NOT_FOUND


def test_delete_moves_funds_to_savings():
    budget = make_sample()
    result = delete_category(budget, "2")

    cats = {c.name: c.amount for c in result.get_or_else(None).categories}
    assert cats == {"Savings": 500, "Daily Use": 100}
    assert result.get_or_else(None).total_balance == 600


def test_delete_without_savings_redistributes_proportionally():
    budget = Budget(total_balance=100.0, categories=(
        Category("a", "Groceries", 30, 10.0),
        Category("b", "Fun", 10, 10.0),
        Category("c", "Old", 50, 40.0),
        Category("d", "Trips", 0, 40.0),
    ))
    result = delete_category(budget, "c").get_or_else(None)
    cats = {c.name: c.amount for c in result.categories}

    assert cats["Groceries"] == pytest.approx(40)
    assert cats["Fun"] == pytest.approx(20)
    assert cats["Trips"] == pytest.approx(40)
    assert sum(cats.values()) == pytest.approx(100, abs=1e-6)


def test_delete_last_category_leaves_unassigned():
    budget = Budget(total_balance=50.0, categories=(Category("a", "Only", 100, 50.0),))
    result = delete_category(budget, "a").get_or_else(None)

    assert result.categories == ()
    assert unassigned_balance(result) == 50


def test_delete_unknown():
    assert delete_category(make_sample(), "x").get_error()["error"] == CATEGORY_NOT_FOUND


def test_update_priorities():
    budget = make_sample()
    result = update_priorities(budget, [
        {"id": "6", "priority": 1, "max_amount": None},
        {"id": "2", "priority": 3},
        {"id": "missing", "priority": 2, "max_amount": 5.0},
    ])
    cats = {c.id: c for c in result.get_or_else(None).categories}

    assert cats["6"].priority == 1
    assert cats["2"].priority == 3
    assert cats["2"].max_amount is None
    assert cats["1"].priority == 1


def test_update_priorities_can_clear_priority():
    result = update_priorities(make_sample(), [{"id": "2", "priority": None, "max_amount": 500.0}])
    bills = result.get_or_else(None).categories[1]

    assert bills.priority is None
    assert bills.effective_priority == 999


def test_reorder_categories():
    result = reorder_categories(make_sample(), ["6", "1", "2"])
    cats = {c.id: c.priority for c in result.get_or_else(None).categories}
    assert cats == {"6": 1, "1": 2, "2": 3}


def test_reorder_unknown():
    result = reorder_categories(make_sample(), ["6", "zzz"])
    assert result.get_error()["category_id"] == "zzz"


def test_daily_balance():
    assert daily_balance(make_sample()) == 100
    assert daily_balance(Budget(total_balance=0.0)) == 0
