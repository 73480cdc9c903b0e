import logging
from dataclasses import replace

import pandas as pd
import plotly.express as px
import streamlit as st
from streamlit import runtime
from streamlit.runtime.scriptrunner import get_script_run_ctx
from streamlit_cookies_manager import EncryptedCookieManager

from config import ConfigError, load_settings
from fetcher import TABS, OrderFetchError, OrderListingClient
from normalizer import format_order_type, format_status, schedule_label
from order_feed import OrderFeedWatcher
from session_manager import SessionWatchdog, format_time_left

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("outlet_dashboard")

ORDER_STATUSES = ["pending", "confirmed", "ready_to_pickup", "on_the_way", "picked_up", "delivered", "completed", "cancelled"]

# --- CONFIGURATION ---
st.set_page_config(page_title="Outlet Dashboard", layout="wide")

try:
    settings = load_settings(st.secrets)
except ConfigError as e:
    st.error(f"Configuration error: {e}"); st.stop()
except Exception as e:
    st.error(f"Could not read secrets: {e}"); st.stop()

cookies = EncryptedCookieManager(prefix="outlet-dashboard/", password=st.secrets["cookie"]["encrypt_key"])
if not cookies.ready(): st.stop()

st.markdown("""<style>.stApp{background-color:black;color:white;}.stMetric{color:white;}.stDataFrame{color:white;}.stPlotlyChart{background-color:transparent;}</style>""", unsafe_allow_html=True)


# --- AUTH & SESSION ---
def get_user_details(username: str):
    users = st.secrets.get("users", {})
    for _, user_info in users.items():
        if user_info.get("username") == username: return dict(user_info)
    return None

def check_credentials(username, password):
    user_details = get_user_details(username)
    if user_details and user_details.get("password") == password: return user_details
    return None

def get_watcher() -> OrderFeedWatcher:
    if "order_feed" not in st.session_state:
        user_info = st.session_state["user_info"]
        client = OrderListingClient(settings.api_base_url, user_info["api_token"], timeout=settings.request_timeout_seconds)
        watcher = OrderFeedWatcher(client, user_info["user_id"], effective_settings())
        watcher.load_orders()
        watcher.load_summary()
        st.session_state["order_feed"] = watcher
    return st.session_state["order_feed"]

def get_watchdog() -> SessionWatchdog:
    if "session_watchdog" not in st.session_state:
        st.session_state["session_watchdog"] = SessionWatchdog(settings.session_timeout_minutes * 60, settings.session_warning_seconds)
    return st.session_state["session_watchdog"]

def effective_settings():
    try: interval = float(cookies.get("poll_interval") or settings.poll_interval_seconds)
    except (ValueError, TypeError): interval = settings.poll_interval_seconds
    return replace(settings, poll_interval_seconds=max(interval, 1))

def session_alive():
    ctx = get_script_run_ctx()
    if ctx is None: return lambda: True
    session_id = ctx.session_id
    return lambda: runtime.exists() and runtime.get_instance().is_active_session(session_id)

def logout():
    watcher = st.session_state.get("order_feed")
    if watcher is not None:
        watcher.stop_polling()
    for key in list(st.session_state.keys()): del st.session_state[key]
    cookies.clear(); cookies.save()


# --- RENDERING ---
def highlight_new_rows(row, new_ids):
    if row["ID"] in new_ids:
        return ["background-color: #4a3b00; color: #ffd54f; font-weight: bold;"] * len(row)
    return [""] * len(row)

def build_orders_table(orders: list) -> pd.DataFrame:
    rows = []
    for order in orders:
        is_delivery = (order["order_type"] or "").lower() == "delivery"
        rows.append({
            "ID": order["id"],
            "Order No": order["order_so"],
            "Customer Name": order["customer_name"],
            "Customer Phone": order["customer_phone"],
            "Customer Email": order["customer_email"],
            "Order Type": format_order_type(order["order_type"]),
            "Order Date": order["order_date"],
            "Pickup/Delivery Time": schedule_label(order["selected_date"], order["selected_time"]),
            "Status": format_status(order["status"]),
            "Payment Status": order["payment_status"],
            "Total": order["grand_total"],
            "Tracking Link": (order["tracking_link"] or "-") if is_delivery else "",
        })
    return pd.DataFrame(rows, columns=["ID", "Order No", "Customer Name", "Customer Phone", "Customer Email", "Order Type", "Order Date", "Pickup/Delivery Time", "Status", "Payment Status", "Total", "Tracking Link"])

def show_orders_table(orders: list, new_ids: set):
    orders_df = build_orders_table(orders)
    if orders_df.empty:
        st.write("No orders found for this tab and date."); return
    st.dataframe(
        orders_df.style.apply(highlight_new_rows, new_ids=new_ids, axis=1),
        column_config={"Tracking Link": st.column_config.LinkColumn("Tracking Link")},
        hide_index=True, use_container_width=True,
    )

def play_alert_sound():
    try:
        st.audio(settings.notification_sound_url, format="audio/mpeg", autoplay=True, loop=True)
    except Exception:
        logger.exception("Sound play error")

def on_tab_change():
    get_watcher().change_tab(st.session_state["tab_selector"])

def on_page_change():
    get_watcher().change_page(int(st.session_state["page_selector"]), int(st.session_state["per_page_selector"]))


@st.fragment(run_every=effective_settings().poll_interval_seconds)
def live_orders():
    watcher, watchdog = get_watcher(), get_watchdog()
    session_status = watchdog.status()
    if session_status.expired:
        logger.info("Session expired for %s", st.session_state["user_info"]["username"])
        logout(); st.rerun()
    if session_status.show_warning:
        warn_col, extend_col, logout_col = st.columns([4, 1, 1])
        warn_col.warning(f"Your session will expire in {format_time_left(session_status.time_left_seconds)}.")
        if extend_col.button("Extend session"): watchdog.extend(); st.rerun(scope="fragment")
        if logout_col.button("Log out now"): logout(); st.rerun()

    alert_playing = watcher.is_alert_playing()
    snapshot = watcher.snapshot()

    if snapshot["banner_notification"]:
        msg_col, close_col = st.columns([6, 1])
        msg_col.success(snapshot["banner_notification"])
        if close_col.button("✕", key="dismiss_message"): watcher.dismiss_message(); st.rerun(scope="fragment")
    if alert_playing:
        play_alert_sound()
        if st.button("Stop Alert", type="primary"): watcher.stop_alert(); st.rerun(scope="fragment")

    new_ids = {order["id"] for order in snapshot["new_orders"]}
    if snapshot["show_new_orders"]:
        with st.container(border=True):
            title_col, close_col = st.columns([6, 1])
            title_col.subheader(f"New Orders Received {len(snapshot['new_orders'])}")
            if close_col.button("✕", key="dismiss_new_orders"): watcher.dismiss_new_orders(); st.rerun(scope="fragment")
            show_orders_table(snapshot["new_orders"], new_ids)

    summary = snapshot["summary"]
    sales_col, orders_col = st.columns(2)
    sales_col.metric("TOTAL SALES", f"RM{summary['total_sales']:.2f}", f"{summary['total_orders']} orders")
    orders_col.metric("TOTAL ORDERS", summary["total_orders"])

    counts = snapshot["tab_counts"]
    st.radio("Status", options=TABS, index=TABS.index(snapshot["active_tab"]), key="tab_selector", horizontal=True, format_func=lambda tab: f"{tab} ({counts.get(tab, 0)})", on_change=on_tab_change)

    if snapshot["error"]: st.error(snapshot["error"])
    if snapshot["loading"]: st.caption("Loading orders...")
    refreshed = snapshot["last_refreshed"]
    status_line = f"*Last refreshed: {refreshed.strftime('%Y-%m-%d %H:%M:%S')}*" if refreshed else "*Not loaded yet*"
    if snapshot["background_refreshing"]: status_line += " · refreshing..."
    st.markdown(status_line)

    show_orders_table(snapshot["orders"], new_ids)

    pagination = snapshot["pagination"]
    total_pages = max(1, -(-pagination.total // max(pagination.per_page, 1)))
    page_col, per_page_col, total_col = st.columns([1, 1, 2])
    page_col.number_input("Page", min_value=1, max_value=total_pages, value=min(pagination.page, total_pages), step=1, key="page_selector", on_change=on_page_change)
    per_page_col.selectbox("Rows per page", options=[10, 25, 50, 100], index=[10, 25, 50, 100].index(pagination.per_page) if pagination.per_page in (10, 25, 50, 100) else 0, key="per_page_selector", on_change=on_page_change)
    total_col.markdown(f"**{pagination.total}** orders · page {pagination.page} of {total_pages}")

    counts_df = pd.DataFrame({"Tab": list(counts.keys()), "Orders": list(counts.values())})
    if counts_df["Orders"].sum() > 0:
        fig = px.bar(counts_df, x="Tab", y="Orders", template="plotly_dark", color_discrete_sequence=['#4A90E2'])
        fig.update_layout(xaxis_title=None, plot_bgcolor='rgba(0,0,0,0)', paper_bgcolor='rgba(0,0,0,0)', yaxis=dict(gridcolor='rgba(255,255,255,0.1)'))
        st.plotly_chart(fig, use_container_width=True)


# --- MAIN FLOW ---
if 'user_info' not in st.session_state:
    st.session_state['user_info'] = get_user_details(cookies.get('username'))

if not st.session_state['user_info']:
    st.title("Login")
    username, password = st.text_input("Username"), st.text_input("Password", type="password")
    if st.button("Log In"):
        user_details = check_credentials(username, password)
        if user_details:
            st.session_state['user_info'] = user_details
            cookies['username'] = user_details['username']; cookies.save(); st.rerun()
        else: st.error("Incorrect username or password")
else:
    user_info = st.session_state['user_info']
    st.sidebar.markdown(f"Welcome, **{user_info['username']}**")
    st.sidebar.title("Navigation")
    page = st.sidebar.radio("Choose a page:", ("Outlet Dashboard", "Order Lookup"))
    if st.sidebar.button("Log Out"):
        logout(); st.rerun()

    if user_info.get('role') == 'admin':
        current_interval = effective_settings().poll_interval_seconds
        new_interval = st.sidebar.number_input("Set Poll Interval (seconds)", min_value=1.0, value=float(current_interval), step=1.0)
        if new_interval != current_interval:
            cookies['poll_interval'] = str(new_interval); cookies.save()
            watcher = st.session_state.get("order_feed")
            if watcher is not None:
                watcher.scheduler.interval = new_interval
                if watcher.scheduler.is_running: watcher.scheduler.rearm()
            st.rerun()

    watcher = get_watcher()
    if page == "Outlet Dashboard":
        st.title("Outlet Dashboard")
        watcher.start_polling(keep_running=session_alive())

        date_col, button_col = st.columns([3, 1])
        search_date = date_col.date_input("Order date", value=watcher.snapshot()["search_date"], format="YYYY/MM/DD")
        if button_col.button("Search"):
            with st.spinner("Fetching orders..."): watcher.search(search_date)

        live_orders()

        with st.expander("Update order status"):
            order_ids = [order["id"] for order in watcher.snapshot()["orders"]]
            if order_ids:
                selected_id = st.selectbox("Order", options=order_ids)
                new_status = st.selectbox("New status", options=ORDER_STATUSES, format_func=format_status)
                if st.button("Update Status"):
                    if watcher.update_order_status(selected_id, new_status): st.success(f"Order {selected_id} updated to {format_status(new_status)}")
                    else: st.error(watcher.snapshot()["error"] or "Failed to update order status")
            else: st.write("No orders loaded.")

    elif page == "Order Lookup":
        # Leaving the dashboard tears the poller down.
        watcher.stop_polling()
        st.title("🔎 Order Lookup")
        order_id = st.text_input("Order ID")
        if order_id:
            with st.spinner("Fetching order..."):
                try:
                    order = watcher.client.get_order(order_id.strip())
                    st.json(order)
                except OrderFetchError as e: st.error(f"Error fetching order: {e}")
