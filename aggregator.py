import math
from datetime import date, datetime

import pandas as pd
import pytz

from fetcher import TABS
from normalizer import to_amount

TAB_STATUSES = {
    "Pending": ["pending"],
    "Ready to Pick Up": ["ready_to_pickup"],
    "On the Way": ["on_the_way"],
    "Picked Up": ["picked_up"],
    "Completed": ["completed", "delivered"],
}


def scheduled_at(order: dict):
    """Scheduled pickup/delivery time of an order as a naive local datetime, or None for ASAP."""
    selected_date, selected_time = order.get("selected_date"), order.get("selected_time")
    if not selected_date or not selected_time:
        return None
    parsed = pd.to_datetime(f"{selected_date} {selected_time}", errors="coerce")
    if pd.isna(parsed):
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.tz_localize(None)
    return parsed.to_pydatetime()


def is_pre_order(order: dict, now: datetime) -> bool:
    scheduled = scheduled_at(order)
    return scheduled is not None and scheduled > now


def calculate_tab_counts(orders: list, now: datetime = None) -> dict:
    """
    Counts the loaded orders per status tab.

    Args:
        orders (list): Normalized orders.
        now (datetime | None): Naive local "now" used by the Pre Order predicate.
    """
    now = now or datetime.now()
    counts = {tab: 0 for tab in TABS}
    if not orders:
        return counts
    orders_df = pd.DataFrame(orders)
    statuses = orders_df["status"] if "status" in orders_df else pd.Series(dtype=object)
    for tab, tab_statuses in TAB_STATUSES.items():
        counts[tab] = int(statuses.isin(tab_statuses).sum())
    counts["Pre Order"] = sum(1 for order in orders if is_pre_order(order, now))
    return counts


def _count(value) -> int:
    count = to_amount(value)
    if math.isinf(count) or count < 0:
        return 0
    return int(count)


def apply_server_counts(counts: dict, server_counts: dict) -> dict:
    """
    Overrides client counts with the server's; the server 'Today' bucket is added to Pending.
    Counts that are missing or not numeric are read as 0.
    """
    if not isinstance(server_counts, dict) or not server_counts:
        return dict(counts)
    merged = dict(counts)
    merged.update({tab: _count(value) for tab, value in server_counts.items() if tab != "Today"})
    merged["Pending"] = _count(server_counts.get("Pending")) + _count(server_counts.get("Today"))
    return merged


def _local_date(value, tz):
    created = pd.to_datetime(value, errors="coerce")
    if pd.isna(created):
        return None
    if created.tzinfo is not None:
        created = created.tz_convert(tz)
    return created.date()


def compute_summary(raw_orders: list, search_date: date, tz=pytz.utc) -> dict:
    """
    Total sales and order count of paid orders created on ``search_date``.

    Naive ``created_at`` values are taken as outlet-local time; aware ones are
    converted to ``tz`` before comparing dates.
    """
    summary = {"total_sales": 0.0, "total_orders": 0}
    if not raw_orders:
        return summary
    orders_df = pd.DataFrame(raw_orders)
    if "created_at" not in orders_df or "payment_status" not in orders_df:
        return summary

    orders_df["created_date"] = orders_df["created_at"].apply(lambda value: _local_date(value, tz))
    on_day = orders_df["created_date"].apply(lambda created: created == search_date)
    day_orders = orders_df[on_day & (orders_df["payment_status"] == "paid")]
    if day_orders.empty:
        return summary

    if "grand_total" in day_orders:
        totals = pd.to_numeric(day_orders["grand_total"], errors="coerce").fillna(0)
        summary["total_sales"] = round(float(totals.sum()), 2)
    summary["total_orders"] = int(len(day_orders))
    return summary
