"""
Streamlit Frontend for the Household Ledger

This is the page household members use to keep their shared ledger.

DESIGN PRINCIPLES:
1. Simple, clear interface
2. Explicit action for every change
3. Clear error messages in simple language
4. Visual feedback for all operations
5. No hidden actions

The UI never touches the database directly. Everything goes through the
LedgerService, and the statement is re-read after every change.
"""

import asyncio
from datetime import date

import streamlit as st

from household_ledger.audit import create_correlation_id
from household_ledger.config import get_settings, validate_all_settings
from household_ledger.ledger import month_label, next_month, previous_month
from household_ledger.models.transaction import EntryKind, Statement
from household_ledger.orchestrator import LedgerService, create_ledger_service
from household_ledger.services.storage import ConnectionError, LedgerDatabase, StoreError
from household_ledger.validation import ValidationError


# Page configuration
st.set_page_config(
    page_title="Household Ledger",
    page_icon="📒",
    layout="wide",
    initial_sidebar_state="expanded",
)

# Custom CSS for better UX
st.markdown("""
<style>
    .stButton>button {
        width: 100%;
        margin-top: 10px;
    }
    .big-number {
        font-size: 2.5em;
        font-weight: bold;
        color: #2c3e50;
    }
</style>
""", unsafe_allow_html=True)


def run_async(coro):
    """Helper to run async functions in Streamlit."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@st.cache_resource
def get_components() -> tuple[LedgerService, LedgerDatabase]:
    """Get or create application components (cached)."""
    try:
        return create_ledger_service(use_audit_storage=True)
    except StoreError as e:
        st.error(f"Failed to initialize audit storage: {e}")
        return create_ledger_service(use_audit_storage=False)


def money(amount: int) -> str:
    symbol = get_settings().ledger.currency_symbol
    sign = "-" if amount < 0 else ""
    return f"{sign}{symbol}{abs(amount):,}"


def show_validation_error(error: ValidationError) -> None:
    st.error("❌ Nothing was saved:")
    for issue in error.issues:
        if issue.severity != "error":
            continue
        st.markdown(f"- {issue.message}")
        if issue.suggested_fix:
            st.caption(f"💡 {issue.suggested_fix}")


def main():
    """Main application entry point."""
    service, database = get_components()
    settings = get_settings()

    if "reference_date" not in st.session_state:
        st.session_state["reference_date"] = date.today()

    # Sidebar navigation
    st.sidebar.title("📒 Household Ledger")
    st.sidebar.markdown("---")

    group_id = st.sidebar.text_input(
        "Household",
        value=settings.ledger.default_group_id,
        help="Every household keeps its own ledger",
    ).strip() or settings.ledger.default_group_id
    member = st.sidebar.text_input("Your name", value="").strip() or None

    page = st.sidebar.radio(
        "Navigate to:",
        ["📒 Ledger", "🕘 History", "⚙️ Settings"],
        index=0,
    )

    st.sidebar.markdown("---")
    st.sidebar.markdown(
        """
        **How to use:**
        1. Pick the month with ◀ / ▶
        2. Add income and expenses as they happen
        3. Use **Balance** when the ledger drifts from your wallet
        """
    )

    # Route to appropriate page
    if page == "📒 Ledger":
        render_ledger_page(service, group_id, member)
    elif page == "🕘 History":
        render_history_page(service, group_id)
    elif page == "⚙️ Settings":
        render_settings_page(database)


def render_ledger_page(service: LedgerService, group_id: str, member):
    """Render the month statement with its entry and balance forms."""
    reference = st.session_state["reference_date"]

    col_prev, col_title, col_today, col_next = st.columns([1, 3, 1, 1])
    with col_prev:
        if st.button("◀ Previous"):
            st.session_state["reference_date"] = previous_month(reference)
            st.rerun()
    with col_title:
        st.title(f"📒 {month_label(reference)}")
    with col_today:
        if st.button("This month"):
            st.session_state["reference_date"] = date.today()
            st.rerun()
    with col_next:
        if st.button("Next ▶"):
            st.session_state["reference_date"] = next_month(reference)
            st.rerun()

    try:
        statement = run_async(service.get_statement(group_id, reference))
        summary = run_async(service.get_month_summary(group_id, reference))
    except StoreError as e:
        st.error(f"❌ Couldn't load the ledger: {e}")
        return

    # Headline
    st.markdown(
        f'<div class="big-number">{money(summary.balance)}</div>',
        unsafe_allow_html=True,
    )
    st.caption(f"Balance at the end of {month_label(reference)}")

    col1, col2, col3, col4 = st.columns(4)
    col1.metric("Carried over", money(statement.opening_balance))
    col2.metric("Income", money(statement.total_income))
    col3.metric("Expenses", money(statement.total_expense))
    col4.metric("Closing balance", money(statement.closing_balance))

    st.markdown("---")
    render_statement_table(statement)

    st.markdown("---")
    col_left, col_right = st.columns(2)
    with col_left:
        render_entry_form(service, group_id, member, reference)
    with col_right:
        render_balance_form(service, group_id, member)

    render_edit_section(service, statement)


def render_statement_table(statement: Statement):
    if not statement.rows:
        st.info("📋 No entries this month yet. Add the first one below.")
        return

    table = []
    for row in statement.rows:
        txn = row.transaction
        table.append({
            "Date": txn.transaction_date.isoformat(),
            "Note": txn.note,
            "Income": money(row.abs_amount) if row.is_income else "",
            "Expense": "" if row.is_income else money(row.abs_amount),
            "Balance": money(row.running_balance),
            "By": txn.created_by or "",
            "Receipt": "📎" if txn.attachment_ref else "",
        })
    st.dataframe(table, use_container_width=True, hide_index=True)


def render_entry_form(service: LedgerService, group_id: str, member, reference: date):
    st.markdown("### ➕ New entry")
    with st.form("new_entry", clear_on_submit=True):
        entry_type = st.radio("Type", ["Expense", "Income"], horizontal=True)
        amount = st.text_input("Amount", placeholder="e.g. 1200")
        entry_date = st.date_input("Date", value=reference)
        note = st.text_input("Note", max_chars=500)
        attachment_ref = st.text_input("Receipt link (optional)")
        submitted = st.form_submit_button("💾 Save entry", type="primary")

    if not submitted:
        return

    correlation_id = create_correlation_id()
    try:
        magnitude = service.validator.validate_adjustment_amount(amount, "add")
        signed = -magnitude if entry_type == "Income" else magnitude
        transaction = run_async(service.create_transaction(
            group_id=group_id,
            amount=signed,
            transaction_date=entry_date,
            note=note,
            attachment_ref=attachment_ref.strip() or None,
            created_by=member,
            correlation_id=correlation_id,
        ))
    except ValidationError as e:
        show_validation_error(e)
        return
    except StoreError as e:
        st.error(f"❌ Nothing was saved: {e}")
        return

    st.success(f"✅ Saved {entry_type.lower()} of {money(abs(transaction.amount))}")
    st.rerun()


def render_balance_form(service: LedgerService, group_id: str, member):
    st.markdown("### ⚖️ Balance")
    with st.form("balance"):
        mode = st.radio(
            "What do you want to do?",
            ["Add to balance", "Set balance to"],
            horizontal=True,
        )
        amount = st.text_input("Amount", placeholder="e.g. 10000")
        st.caption(
            "**Set** replaces earlier balance corrections; "
            "your entries stay untouched."
        )
        submitted = st.form_submit_button("Apply", type="primary")

    if not submitted:
        return

    correlation_id = create_correlation_id()
    try:
        if mode == "Add to balance":
            new_balance = run_async(service.add_balance(
                group_id, amount, created_by=member, correlation_id=correlation_id,
            ))
        else:
            new_balance = run_async(service.set_balance(
                group_id, amount, created_by=member, correlation_id=correlation_id,
            ))
    except ValidationError as e:
        show_validation_error(e)
        return
    except StoreError as e:
        st.error(f"❌ The balance wasn't changed: {e}")
        return

    st.success(f"✅ Balance is now {money(new_balance)}")
    st.rerun()


def render_edit_section(service: LedgerService, statement: Statement):
    if not statement.rows:
        return

    with st.expander("✏️ Edit or delete an entry"):
        rows = statement.rows
        choice = st.selectbox(
            "Entry",
            options=range(len(rows)),
            format_func=lambda i: (
                f"{rows[i].transaction.transaction_date} · "
                f"{rows[i].transaction.note or '(no note)'} · "
                f"{money(rows[i].abs_amount)}"
            ),
        )
        txn = rows[choice].transaction

        if txn.kind is not EntryKind.USER:
            st.info("This is a balance correction. It can be deleted but not edited.")
        else:
            with st.form(f"edit_{txn.id}"):
                amount = st.text_input("Amount", value=str(abs(txn.amount)))
                entry_date = st.date_input("Date", value=txn.transaction_date)
                note = st.text_input("Note", value=txn.note, max_chars=500)
                receipt = st.text_input("Receipt link", value=txn.attachment_ref or "")
                save = st.form_submit_button("💾 Save changes")

            if save:
                try:
                    run_async(service.update_transaction(
                        txn.id,
                        amount=amount,
                        transaction_date=entry_date,
                        note=note,
                        attachment_ref=receipt,
                    ))
                except ValidationError as e:
                    show_validation_error(e)
                except StoreError as e:
                    st.error(f"❌ Nothing was saved: {e}")
                else:
                    st.success("✅ Entry updated")
                    st.rerun()

        if st.button("🗑️ Delete this entry", key=f"delete_{txn.id}"):
            try:
                run_async(service.delete_transaction(txn.id))
            except StoreError as e:
                st.error(f"❌ Nothing was deleted: {e}")
            else:
                st.success("✅ Entry deleted")
                st.rerun()


def render_history_page(service: LedgerService, group_id: str):
    """Render the audit trail of the household."""
    st.title("🕘 History")
    st.markdown("Every change to this ledger, newest first.")

    try:
        events = run_async(service.get_audit_trail(group_id, limit=100))
    except StoreError as e:
        st.error(f"❌ Couldn't load the history: {e}")
        return

    if not events:
        st.info("📋 Nothing has happened in this ledger yet.")
        return

    st.dataframe(
        [
            {
                "When": event.timestamp.strftime("%Y-%m-%d %H:%M"),
                "What": event.description,
                "Type": event.event_type.value.replace("_", " "),
            }
            for event in events
        ],
        use_container_width=True,
        hide_index=True,
    )


def render_settings_page(database: LedgerDatabase):
    """Render the settings page."""
    st.title("⚙️ Settings")

    st.markdown("### Connection Status")

    try:
        database.check_connection()
        st.success(f"✅ Database - Connected ({database.engine.dialect.name})")
    except ConnectionError as e:
        st.error(f"❌ Database - {e}")

    status = validate_all_settings()
    sections = [
        ("Database settings", "database"),
        ("Ledger settings", "ledger"),
        ("Application settings", "app"),
    ]
    for name, key in sections:
        if status.get(key, False):
            st.success(f"✅ {name} - Valid")
        else:
            error = status.get(f"{key}_error", "Not configured")
            st.error(f"❌ {name} - {error}")

    st.markdown("---")
    st.markdown("### Configuration")
    st.markdown(
        "To configure the application, create a `.env` file. "
        "`LEDGER_DB_URL` selects the database, `LEDGER_SENTINEL_DATE` the date "
        "balance corrections are filed under and `LEDGER_CURRENCY_SYMBOL` "
        "the currency shown."
    )


if __name__ == "__main__":
    main()
