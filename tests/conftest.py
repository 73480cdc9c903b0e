import pytest

from config import Settings
from fetcher import OrderFetchError, OrderPage, Pagination


class FakeResponse:
    def __init__(self, payload=None, status_code=200, invalid_json=False):
        self.payload = payload
        self.status_code = status_code
        self.invalid_json = invalid_json

    @property
    def ok(self):
        return 200 <= self.status_code < 300

    def json(self):
        if self.invalid_json:
            raise ValueError("No JSON object could be decoded")
        return self.payload


class FakeSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class FakeOrderClient:
    """Serves queued pages of raw orders; an exception in the queue is raised instead."""

    def __init__(self, pages=None):
        self.pages = list(pages or [])
        self.calls = []
        self.status_updates = []

    def fetch_orders(self, user_id, filters, page=1, per_page=10):
        self.calls.append({"user_id": user_id, "filters": dict(filters), "page": page, "per_page": per_page})
        item = self.pages.pop(0) if self.pages else []
        if isinstance(item, Exception):
            raise item
        if isinstance(item, OrderPage):
            return item
        return OrderPage(orders=item, pagination=Pagination(page=page, per_page=per_page, total=len(item)))

    def update_order_status(self, order_id, status):
        self.status_updates.append((order_id, status))
        return {"id": order_id, "status": status}


def raw_order(order_id, status="pending", **fields):
    order = {
        "id": order_id,
        "order_so": f"SO-{order_id}",
        "created_at": "2026-10-19 10:00:00",
        "order_type": "pickup",
        "customer_name": "Aina",
        "customer_phone": "0123456789",
        "customer_email": "aina@example.com",
        "status": status,
        "selected_date": None,
        "selected_time": None,
        "payment_status": "paid",
        "subtotal_amount": "10.00",
        "discount_amount": "0",
        "tax_amount": "0.60",
        "delivery_fee": "0",
        "grand_total": "10.60",
    }
    order.update(fields)
    return order


@pytest.fixture
def settings():
    return Settings(api_base_url="https://api.example.com/api/", poll_interval_seconds=0.05)


@pytest.fixture
def fetch_error():
    return OrderFetchError("Order service returned HTTP 500", status_code=500)
