from normalizer import format_currency, format_order_type, format_status, normalize_order, normalize_orders, schedule_label

from conftest import raw_order


def test_money_fields_are_formatted_as_ringgit():
    order = normalize_order(raw_order(1, subtotal_amount=12.5, discount_amount="1", tax_amount=None, grand_total="11.5"))
    assert order["subtotal_amount"] == "RM12.50"
    assert order["discount_amount"] == "RM1.00"
    assert order["tax_amount"] == "RM0.00"
    assert order["grand_total"] == "RM11.50"


def test_unparseable_money_becomes_zero():
    assert format_currency("abc") == "RM0.00"
    assert format_currency(float("nan")) == "RM0.00"


def test_tracking_link_comes_from_first_delivery():
    order = normalize_order(raw_order(1, order_type="delivery", deliveries=[{"tracking_link": "https://track/1"}, {"tracking_link": "https://track/2"}]))
    assert order["tracking_link"] == "https://track/1"
    assert normalize_order(raw_order(2, deliveries=[]))["tracking_link"] is None
    assert normalize_order(raw_order(3))["tracking_link"] is None


def test_missing_fields_get_defaults():
    order = normalize_order({"id": 7})
    assert order["id"] == 7
    assert order["notes"] == "-"
    assert order["customer_name"] == "-"
    assert order["selected_date"] is None
    assert order["grand_total"] == "RM0.00"


def test_normalize_orders_skips_non_records():
    assert [order["id"] for order in normalize_orders([raw_order(1), None, "x", raw_order(2)])] == [1, 2]
    assert normalize_orders(None) == []


def test_display_helpers():
    assert format_order_type("self_pickup") == "Self Pickup"
    assert format_order_type("dine-in") == "Dine In"
    assert format_order_type(None) == "N/A"
    assert format_status("ready_to_pickup") == "Ready To Pickup"
    assert schedule_label(None, "10:00") == "ASAP"
    assert schedule_label("2026-10-20", "10:00") == "2026-10-20 10:00"
