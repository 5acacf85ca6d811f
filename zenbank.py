import streamlit as st
import plotly.express as px
from datetime import datetime

from config import settings, configure_logging
from store import JsonAccountRepository, DEPOSIT, WITHDRAWAL
from suggestions import OllamaSuggestionClient, SuggestionEngine, SuggestionTracker
from idle_monitor import IdleMonitor, IdleState
from atm import Bank, format_currency, history_frame

configure_logging()

# ============================================================================
# SERVICES
# ============================================================================

@st.cache_resource
def get_bank() -> Bank:
    """One Bank per server process, shared by all browser sessions"""
    client = None
    if settings.USE_OLLAMA:
        client = OllamaSuggestionClient(
            settings.OLLAMA_URL,
            settings.OLLAMA_MODEL,
            timeout=settings.OLLAMA_TIMEOUT,
        )
    return Bank(JsonAccountRepository(settings.DATABASE_FILE), engine=SuggestionEngine(client))

bank = get_bank()

SESSION_DEFAULTS = {
    "user_id": None,
    "page": "dashboard",
    "balance_visible": False,
    "idle_monitor": None,
    "trackers": {},
    "session_expired": False,
    "flash": [],
}

# ============================================================================
# SESSION HELPERS
# ============================================================================

def init_state():
    for key, value in SESSION_DEFAULTS.items():
        if key not in st.session_state:
            st.session_state[key] = value.copy() if isinstance(value, (dict, list)) else value

def flash(message, icon="✅"):
    st.session_state.flash.append((message, icon))

def show_flash():
    while st.session_state.flash:
        message, icon = st.session_state.flash.pop(0)
        st.toast(message, icon=icon)

def start_session(user):
    monitor = IdleMonitor(
        on_idle=expire_session,
        idle_time=settings.IDLE_TIMEOUT_SECONDS * 1000,
        warning_time=settings.IDLE_WARNING_SECONDS * 1000,
    )
    # Streamlit scripts cannot be touched from a timer thread; the
    # session_timer fragment drives tick() instead.
    monitor.start(background=False)

    st.session_state.user_id = user.id
    st.session_state.page = "dashboard"
    st.session_state.balance_visible = False
    st.session_state.trackers = {DEPOSIT: SuggestionTracker(), WITHDRAWAL: SuggestionTracker()}
    st.session_state.idle_monitor = monitor
    st.session_state.session_expired = False

def end_session(reason="user"):
    message = bank.logout(st.session_state.user_id, reason)
    monitor = st.session_state.idle_monitor
    if monitor is not None:
        monitor.stop()
    for key in ("user_id", "page", "balance_visible", "idle_monitor", "trackers"):
        st.session_state[key] = SESSION_DEFAULTS[key]
    if reason == "idle":
        st.session_state.session_expired = True
    else:
        flash(message, icon="👋")

def expire_session():
    end_session("idle")

def touch_session():
    """A full script run only happens on user interaction, so it counts as activity."""
    monitor = st.session_state.idle_monitor
    if monitor is None:
        return
    if monitor.tick() is not IdleState.EXPIRED:
        monitor.record_activity()

def go_to(page):
    st.session_state.page = page

# ============================================================================
# STREAMLIT CONFIG
# ============================================================================

st.set_page_config(
    page_title="ZenBank ATM",
    page_icon="🏧",
    layout="wide",
    initial_sidebar_state="expanded"
)

st.markdown("""
<style>
    .stApp {
        background: linear-gradient(135deg, #0f172a 0%, #1a2e4a 50%, #0d1b2a 100%);
        font-family: 'Segoe UI', 'Roboto', sans-serif;
        color: #e0e0e0;
    }

    h1, h2, h3 {
        color: #ffffff;
        font-weight: 700;
    }

    .balance-card {
        background: linear-gradient(135deg, rgba(0, 217, 255, 0.1), rgba(0, 153, 255, 0.05));
        border-radius: 24px;
        padding: 28px;
        border: 1px solid rgba(0, 217, 255, 0.2);
        margin-bottom: 24px;
    }

    .session-timer {
        font-family: monospace;
        font-size: 1.2em;
        text-align: right;
        color: #a0aec0;
    }
</style>
""", unsafe_allow_html=True)

# -----------------------------------------------------------------------------
# 1. IDLE COUNTDOWN
# -----------------------------------------------------------------------------
@st.fragment(run_every=1)
def session_timer():
    monitor = st.session_state.get("idle_monitor")
    if monitor is None:
        return

    if monitor.tick() is IdleState.EXPIRED:
        st.rerun()

    st.markdown(
        f"<div class='session-timer'>⏱️ {monitor.countdown()}</div>",
        unsafe_allow_html=True,
    )
    if monitor.is_warning:
        st.warning(f"⏳ You will be logged out in {monitor.countdown()} due to inactivity.")
        st.button(
            "Stay signed in",
            key="stay_signed_in",
            on_click=monitor.record_activity,
            use_container_width=True,
        )

# -----------------------------------------------------------------------------
# 2. LOGIN / SIGNUP SCREEN
# -----------------------------------------------------------------------------
def login_screen():
    st.markdown("<br><br>", unsafe_allow_html=True)

    col1, col2, col3 = st.columns([1, 2, 1])

    with col2:
        st.markdown("""
            <div style='text-align: center; margin-bottom: 30px;'>
                <div style='font-size: 80px; margin-bottom: 10px;'>🏧</div>
                <h1 style='color: #667eea; font-size: 3em; margin: 0;'>ZenBank</h1>
                <p style='color: #a0aec0; font-size: 1.2em; margin-top: 10px;'>
                    Your ATM in the browser
                </p>
            </div>
        """, unsafe_allow_html=True)

        if st.session_state.session_expired:
            st.warning("⌛ **Session Expired.** You have been logged out due to inactivity. "
                       "Please log in again to continue.")

        login_tab, signup_tab = st.tabs(["🔓 Login", "📝 Sign Up"])

        with login_tab:
            with st.form("login_form"):
                st.markdown("##### Welcome Back")
                username = st.text_input("Username", placeholder="Your username")
                password = st.text_input("Password", type="password")
                submit = st.form_submit_button("🔓 Login", use_container_width=True, type="primary")

            if submit:
                ok, message, user = bank.login(username, password)
                if ok:
                    start_session(user)
                    flash(message)
                    st.rerun()
                else:
                    st.error(f"❌ {message}")

        with signup_tab:
            with st.form("signup_form"):
                st.markdown("##### Create an Account")
                c1, c2 = st.columns(2)
                with c1:
                    new_username = st.text_input("Username", key="signup_username")
                    new_password = st.text_input("Password", type="password", key="signup_password")
                    name = st.text_input("Full Name")
                    pin = st.text_input("4-digit PIN", type="password", max_chars=4, placeholder="••••")
                with c2:
                    email = st.text_input("Email")
                    phone = st.text_input("Phone")
                    address = st.text_area("Address", height=108)
                create = st.form_submit_button("📝 Sign Up", use_container_width=True, type="primary")

            if create:
                ok, message, user = bank.signup(
                    new_username, new_password, name, email, phone, pin, address=address
                )
                if ok:
                    start_session(user)
                    flash(message, icon="🎉")
                    st.rerun()
                else:
                    st.error(f"⚠️ {message}")

        st.markdown("---")
        st.caption("🔒 Passwords and PINs are stored as bcrypt hashes, never in plaintext.")

# -----------------------------------------------------------------------------
# 3. BALANCE
# -----------------------------------------------------------------------------
@st.dialog("Enter PIN to View Balance")
def pin_dialog():
    st.write("For your security, please enter your 4-digit PIN to view your account balance.")
    with st.form("balance_pin_form"):
        pin = st.text_input("PIN", type="password", max_chars=4, placeholder="••••")
        c1, c2 = st.columns(2)
        confirm = c1.form_submit_button("Confirm", type="primary", use_container_width=True)
        cancel = c2.form_submit_button("Cancel", use_container_width=True)

    if cancel:
        st.rerun()
    if confirm:
        ok, message = bank.verify_pin(st.session_state.user_id, pin)
        if ok:
            st.session_state.balance_visible = True
            flash("Balance is now visible.")
            st.rerun()
        else:
            st.error(f"❌ {message}")

def balance_card(user):
    shown = format_currency(user.balance) if st.session_state.balance_visible else "******"
    st.markdown(f"""
        <div class="balance-card">
            <span>Current Balance</span>
            <h1 style="margin:10px 0;">{shown}</h1>
        </div>
    """, unsafe_allow_html=True)

    if st.session_state.balance_visible:
        if st.button("🙈 Hide balance", key="hide_balance"):
            st.session_state.balance_visible = False
            st.rerun()
    elif st.button("👁️ Show balance", key="show_balance"):
        pin_dialog()

# -----------------------------------------------------------------------------
# 4. TRANSACTIONS
# -----------------------------------------------------------------------------
def use_suggestion(amount_key, amount):
    st.session_state[amount_key] = float(amount)

def transaction_form(kind):
    user_id = st.session_state.user_id
    tracker = st.session_state.trackers[kind]
    amount_key = f"{kind}_amount"
    clear_key = f"{kind}_clear"

    if st.session_state.pop(clear_key, False):
        st.session_state[amount_key] = 0.0

    title = "Deposit Funds" if kind == DEPOSIT else "Withdraw Cash"
    button_text = "Deposit" if kind == DEPOSIT else "Withdraw"
    st.markdown(f"#### {title}")

    st.number_input("Amount (₹)", min_value=0.0, step=100.0, key=amount_key)

    cols = st.columns(4)
    for i, amount in enumerate(tracker.amounts):
        cols[i].button(
            format_currency(amount),
            key=f"{kind}_suggestion_{i}",
            on_click=use_suggestion,
            args=(amount_key, amount),
            use_container_width=True,
        )
    if cols[3].button("✨ Suggest", key=f"{kind}_suggest", use_container_width=True):
        ticket = tracker.begin()
        with st.spinner("Finding amounts for you..."):
            amounts = bank.suggest_amounts(user_id, kind, previous=tracker.previous)
        tracker.deliver(ticket, amounts)
        st.rerun()

    with st.form(f"{kind}_form", clear_on_submit=True):
        pin = st.text_input("Confirm with PIN", type="password", max_chars=4, placeholder="••••")
        submitted = st.form_submit_button(button_text, type="primary", use_container_width=True)

    if submitted:
        amount = st.session_state.get(amount_key, 0.0)
        action = bank.deposit if kind == DEPOSIT else bank.withdraw
        ok, message, _ = action(user_id, amount, pin)
        if ok:
            tracker.clear()
            st.session_state[clear_key] = True
            flash(message)
            st.rerun()
        else:
            st.error(f"❌ Transaction Failed: {message}")

def history_section(user):
    st.subheader("📋 Transaction History")
    df = history_frame(user)
    if df.empty:
        st.info("No transactions yet. Make a deposit or withdrawal to get started.")
        return

    display = df[['date', 'type', 'amount']].copy()
    display['date'] = display['date'].dt.strftime("%b %d, %Y %H:%M")
    display['type'] = display['type'].str.capitalize()
    st.dataframe(
        display,
        use_container_width=True,
        hide_index=True,
        column_config={
            "date": "Date",
            "type": "Type",
            "amount": st.column_config.NumberColumn("Amount", format="₹%.2f"),
        },
    )

    totals = df.groupby('type')['amount'].sum().reset_index()
    fig = px.bar(
        totals,
        x='type',
        y='amount',
        color='type',
        color_discrete_map={DEPOSIT: '#00ff88', WITHDRAWAL: '#ff6b6b'},
        text='amount',
    )
    fig.update_traces(texttemplate='₹%{text:,.0f}', textposition='outside')
    fig.update_layout(
        paper_bgcolor='rgba(0,0,0,0)',
        plot_bgcolor='rgba(0,0,0,0)',
        font=dict(color='white'),
        xaxis_title="",
        yaxis_title="Total (₹)",
        showlegend=False,
        height=280,
    )
    st.plotly_chart(fig, use_container_width=True, config={'displayModeBar': False})

    csv = df[['id', 'type', 'amount', 'date']].to_csv(index=False).encode('utf-8')
    st.download_button("📥 Export CSV", csv, file_name="transactions.csv", mime="text/csv")

# -----------------------------------------------------------------------------
# 5. PROFILE
# -----------------------------------------------------------------------------
def profile_screen(user):
    st.button("← Back to Dashboard", on_click=go_to, args=("dashboard",))
    st.title("👤 Profile")

    col_info, col_edit = st.columns([1, 1.4])

    with col_info:
        st.markdown(f"""
            **{user.name}**  \n
            @{user.username}

            📧 {user.email}  \n
            📞 {user.phone}  \n
            🏠 {user.address or 'No address on file'}
        """)

    with col_edit:
        with st.form("profile_form"):
            st.markdown("##### Edit Details")
            name = st.text_input("Full Name", value=user.name)
            email = st.text_input("Email", value=user.email)
            phone = st.text_input("Phone", value=user.phone)
            address = st.text_area("Address", value=user.address)
            save = st.form_submit_button("💾 Save", type="primary", use_container_width=True)

        if save:
            ok, message, _ = bank.update_profile(user.id, name, email, phone, address)
            if ok:
                flash(message)
                st.rerun()
            else:
                st.error(f"⚠️ {message}")

        with st.form("change_pin_form", clear_on_submit=True):
            st.markdown("##### Change PIN")
            current_pin = st.text_input("Current PIN", type="password", max_chars=4)
            new_pin = st.text_input("New PIN", type="password", max_chars=4)
            confirm_pin = st.text_input("Confirm New PIN", type="password", max_chars=4)
            change = st.form_submit_button("🔑 Change PIN", use_container_width=True)

        if change:
            if new_pin != confirm_pin:
                st.error("⚠️ New PINs do not match.")
            else:
                ok, message = bank.change_pin(user.id, current_pin, new_pin)
                if ok:
                    flash(message)
                    st.rerun()
                else:
                    st.error(f"⚠️ {message}")

# -----------------------------------------------------------------------------
# 6. DASHBOARD
# -----------------------------------------------------------------------------
def dashboard_screen():
    user = bank.repository.get(st.session_state.user_id)
    if user is None:
        st.error("⚠️ Could not load your session. Please log in again.")
        end_session("missing account")
        st.rerun()
        return

    with st.sidebar:
        st.title("🏧 ZenBank")
        st.write(f"**{user.name}**")
        st.caption(f"@{user.username}")

        st.markdown("---")

        st.button("🏠 Dashboard", on_click=go_to, args=("dashboard",), use_container_width=True)
        st.button("👤 Profile", on_click=go_to, args=("profile",), use_container_width=True)
        if st.button("🚪 Logout", use_container_width=True):
            end_session()
            st.rerun()

    c1, c2 = st.columns([3, 1])
    with c1:
        st.title(f"Welcome, {user.name.split()[0]}!")
        st.caption(datetime.now().strftime("%B %d, %Y"))
    with c2:
        session_timer()

    if st.session_state.page == "profile":
        profile_screen(user)
        return

    col_left, col_right = st.columns([1.2, 2])

    with col_left:
        balance_card(user)

    with col_right:
        withdraw_tab, deposit_tab = st.tabs(["💸 Withdraw", "💰 Deposit"])
        with withdraw_tab:
            transaction_form(WITHDRAWAL)
        with deposit_tab:
            transaction_form(DEPOSIT)

    st.markdown("---")
    history_section(user)

# -----------------------------------------------------------------------------
# 7. MAIN EXECUTION
# -----------------------------------------------------------------------------
if __name__ == "__main__":
    init_state()
    show_flash()

    if st.session_state.user_id:
        touch_session()

    if st.session_state.user_id:
        dashboard_screen()
    else:
        login_screen()
