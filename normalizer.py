import re

MONEY_FIELDS = ("subtotal_amount", "discount_amount", "tax_amount", "delivery_fee", "grand_total")


def to_amount(value) -> float:
    """Numeric value of a money field; anything unparseable counts as zero."""
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return 0.0
    if amount != amount:  # NaN
        return 0.0
    return amount


def format_currency(value) -> str:
    return f"RM{to_amount(value):.2f}"


def format_order_type(order_type) -> str:
    """'self_pickup' -> 'Self Pickup'; empty values become 'N/A'."""
    if not order_type:
        return "N/A"
    cleaned = re.sub(r"[-_]", " ", str(order_type)).strip()
    return cleaned.title() if cleaned else "N/A"


def format_status(status) -> str:
    if not status:
        return "-"
    return str(status).replace("_", " ").title()


def schedule_label(selected_date, selected_time) -> str:
    if selected_date is None or selected_time is None:
        return "ASAP"
    return f"{selected_date} {selected_time}"


def _text(value, default="-"):
    if value is None or value == "":
        return default
    return value


def _tracking_link(raw: dict):
    deliveries = raw.get("deliveries")
    if isinstance(deliveries, list) and deliveries and isinstance(deliveries[0], dict):
        return deliveries[0].get("tracking_link") or None
    return None


def normalize_order(raw: dict) -> dict:
    """
    Flattens a raw order record from the listing API into the display shape
    used by the tables and the new-order panel. Never raises on missing fields.
    """
    order = {
        "id": raw.get("id"),
        "order_so": _text(raw.get("order_so")),
        "order_date": raw.get("created_at"),
        "order_type": _text(raw.get("order_type"), ""),
        "customer_name": _text(raw.get("customer_name")),
        "customer_phone": _text(raw.get("customer_phone")),
        "customer_email": _text(raw.get("customer_email")),
        "status": _text(raw.get("status"), ""),
        "selected_date": raw.get("selected_date") or None,
        "selected_time": raw.get("selected_time") or None,
        "payment_status": _text(raw.get("payment_status")),
        "notes": _text(raw.get("notes")),
        "tracking_link": _tracking_link(raw),
    }
    for key in MONEY_FIELDS:
        order[key] = format_currency(raw.get(key))
    return order


def normalize_orders(raw_orders) -> list:
    return [normalize_order(raw) for raw in raw_orders or [] if isinstance(raw, dict)]
