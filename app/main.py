import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from datetime import datetime, time as dt_time

import pandas as pd
import streamlit as st

from finwise.config import DATA_DIR, TICK_SECONDS, configure_logging, ensure_data_dir
from finwise.categories import daily_balance, total_percentage, unassigned_balance
from finwise.domain import FREQUENCIES
from finwise.events import EventBus, NOTIFICATION, log_notification_handler
from finwise.ledger import top_spending_categories
from finwise.services import BudgetController
from finwise.storage import JsonFileStore

configure_logging()
st.set_page_config(page_title="Finance Wise", layout="wide")


def _remember_notification(event, payload):
    st.session_state.setdefault("notifications", []).append(payload["notification"])


if "controller" not in st.session_state:
    ensure_data_dir()
    bus = EventBus()
    bus.subscribe(NOTIFICATION, log_notification_handler)
    bus.subscribe(NOTIFICATION, _remember_notification)
    st.session_state.controller = BudgetController(JsonFileStore(DATA_DIR), bus=bus)

controller: BudgetController = st.session_state.controller


def show_notifications():
    pending = st.session_state.get("notifications", [])
    for n in pending:
        if n.is_error:
            st.error(f"**{n.title}**: {n.message}")
        else:
            st.success(f"**{n.title}**: {n.message}")
    st.session_state["notifications"] = []


def category_options(include_auto: bool = False) -> dict:
    options = {"Auto (Daily Use, then Savings)": None} if include_auto else {}
    options.update({c.name: c.id for c in controller.budget.categories})
    return options


def categories_df(budget) -> pd.DataFrame:
    return pd.DataFrame([
        {
            "Priority": c.effective_priority,
            "Name": c.name,
            "Percentage": c.percentage,
            "Balance": round(c.amount, 2),
            "Cap": c.max_amount,
            "Icon": c.icon,
        }
        for c in budget.categories
    ]).sort_values("Priority", kind="stable") if budget.categories else pd.DataFrame()


def transactions_df(budget) -> pd.DataFrame:
    names = {c.id: c.name for c in budget.categories}
    return pd.DataFrame([
        {
            "date": t.date,
            "type": t.type,
            "amount": t.amount,
            "categories": ", ".join(names.get(cid, cid) for cid in t.category_ids),
            "description": t.description,
        }
        for t in budget.transactions
    ])


@st.fragment(run_every=TICK_SECONDS)
def scheduler_tick():
    report = controller.tick()
    if report.changed:
        st.rerun()


scheduler_tick()
show_notifications()

menu = st.sidebar.radio(
    "Menu",
    ["🏠 Overview", "🧾 Transactions", "📅 Scheduled", "🗂 Categories"]
)

budget = controller.budget

if menu == "🏠 Overview":
    k1, k2, k3, k4 = st.columns(4)
    with k1:
        st.metric("Total Balance", f"${budget.total_balance:,.2f}")
    with k2:
        st.metric("Daily Use", f"${daily_balance(budget):,.2f}")
    with k3:
        st.metric("Categories", len(budget.categories))
    with k4:
        st.metric("Unassigned", f"${unassigned_balance(budget):,.2f}")

    st.subheader("🗂 Categories")
    st.table(categories_df(budget))

    top = list(top_spending_categories(budget.transactions, budget.categories, k=5))
    if top:
        st.subheader("💸 Top Spending")
        st.table(pd.DataFrame(top, columns=["Category", "Spent"]))

elif menu == "🧾 Transactions":
    st.title("🧾 Transactions")
    options = category_options()

    col_income, col_withdraw = st.columns(2)
    with col_income:
        with st.form("income_form", clear_on_submit=True):
            st.markdown("**Add Income**")
            amount = st.number_input("Amount", min_value=0.0, step=10.0, key="income_amount")
            description = st.text_input("Description", value="Income")
            if st.form_submit_button("Add Income"):
                controller.add_income(amount, description)
                st.rerun()

    with col_withdraw:
        with st.form("withdraw_form", clear_on_submit=True):
            st.markdown("**Withdraw**")
            category = st.selectbox("Category", list(options))
            amount = st.number_input("Amount", min_value=0.0, step=10.0, key="withdraw_amount")
            description = st.text_input("Description", value="Withdrawal")
            if st.form_submit_button("Withdraw") and category:
                controller.withdraw(options[category], amount, description)
                st.rerun()

    with st.form("payment_form", clear_on_submit=True):
        st.markdown("**Make Payment**")
        auto_options = category_options(include_auto=True)
        amount = st.number_input("Amount", min_value=0.0, step=10.0, key="payment_amount")
        description = st.text_input("Description", value="Payment")
        preferred = st.selectbox("Pay from", list(auto_options))
        fallbacks = st.multiselect("Fallback categories (in order)", list(options))
        if st.form_submit_button("Pay"):
            result = controller.make_payment(
                amount,
                description,
                auto_options[preferred],
                [options[name] for name in fallbacks],
            )
            if result.is_left() and "remaining_amount" in result.get_error():
                st.session_state["shortfall"] = result.get_error()["remaining_amount"]
            st.rerun()

    if st.session_state.get("shortfall"):
        st.warning(
            f"${st.session_state.pop('shortfall'):.2f} could not be covered. "
            "Choose a fallback category and try again."
        )

    df = transactions_df(budget)
    if not df.empty:
        type_filter = st.multiselect("Type", ["income", "withdrawal", "payment"], default=[])
        if type_filter:
            df = df[df["type"].isin(type_filter)]
        display_df = df.assign(
            date=lambda x: x["date"].apply(lambda d: d.strftime("%Y-%m-%d %H:%M")),
            amount=lambda x: x["amount"].map(lambda v: f"${v:,.2f}"),
        )
        st.dataframe(display_df, use_container_width=True, hide_index=True)
        st.download_button(
            "⬇️ Download CSV",
            df.to_csv(index=False),
            file_name="transactions.csv",
            mime="text/csv"
        )
    else:
        st.info("No transactions yet")

elif menu == "📅 Scheduled":
    st.title("📅 Scheduled Payments")
    options = category_options()
    auto_options = category_options(include_auto=True)

    with st.form("schedule_form", clear_on_submit=True):
        amount = st.number_input("Amount", min_value=0.0, step=10.0)
        description = st.text_input("Description", value="Scheduled payment")
        day = st.date_input("Date", value=datetime.now().date())
        at = st.time_input("Time", value=dt_time(12, 0))
        frequency = st.selectbox("Repeat", ["once", *FREQUENCIES])
        preferred = st.selectbox("Pay from", list(auto_options))
        fallbacks = st.multiselect("Fallback categories (in order)", list(options))
        if st.form_submit_button("Schedule"):
            controller.schedule_payment(
                amount,
                description,
                datetime.combine(day, at),
                recurring=frequency != "once",
                frequency=None if frequency == "once" else frequency,
                preferred_id=auto_options[preferred],
                fallback_ids=[options[name] for name in fallbacks],
            )
            st.rerun()

    if not budget.scheduled_payments:
        st.info("No scheduled payments")

    for payment in budget.scheduled_payments:
        cols = st.columns([3, 2, 2, 1, 1])
        with cols[0]:
            st.markdown(f"**{payment.description}** - ${payment.amount:,.2f}")
        with cols[1]:
            st.caption(f"Next: {payment.next_date:%Y-%m-%d} {payment.time}")
        with cols[2]:
            st.caption(payment.frequency or "one-time")
        with cols[3]:
            active = st.toggle("Active", value=payment.active, key=f"active_{payment.id}")
            if active != payment.active:
                controller.toggle_scheduled(payment.id, active)
                st.rerun()
        with cols[4]:
            if st.button("Cancel", key=f"cancel_{payment.id}"):
                controller.cancel_scheduled(payment.id)
                st.rerun()

elif menu == "🗂 Categories":
    st.title("🗂 Categories")
    st.caption(f"Total percentage: {total_percentage(budget.categories):.0f}%")

    with st.form("category_form", clear_on_submit=True):
        st.markdown("**Add Category**")
        name = st.text_input("Name")
        percentage = st.number_input("Percentage", min_value=0.0, max_value=100.0, step=1.0)
        color = st.color_picker("Color", value="#64748B")
        icon = st.text_input("Icon", value="wallet")
        max_amount = st.number_input("Cap (0 = none)", min_value=0.0, step=50.0)
        if st.form_submit_button("Add") and name:
            controller.add_category(
                name, percentage, color=color, icon=icon, max_amount=max_amount or None,
            )
            st.rerun()

    st.subheader("Priorities and caps")
    editor_df = pd.DataFrame([
        {"id": c.id, "name": c.name, "priority": c.priority, "max_amount": c.max_amount,
         "percentage": c.percentage}
        for c in budget.categories
    ])
    edited = st.data_editor(editor_df, disabled=["id", "name"], hide_index=True, key="priorities")
    if st.button("Save priorities"):
        controller.update_priorities(
            {
                "id": row["id"],
                "priority": None if pd.isna(row["priority"]) else int(row["priority"]),
                "max_amount": None if pd.isna(row["max_amount"]) else float(row["max_amount"]),
            }
            for row in edited.to_dict("records")
        )
        for row in edited.to_dict("records"):
            current = next(c for c in budget.categories if c.id == row["id"])
            if float(row["percentage"]) != current.percentage:
                controller.update_category(row["id"], percentage=float(row["percentage"]))
        st.rerun()

    options = category_options()
    to_delete = st.selectbox("Delete category", ["(none)", *options])
    if st.button("Delete") and to_delete != "(none)":
        controller.delete_category(options[to_delete])
        st.rerun()
