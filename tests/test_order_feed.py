import gc
import threading
import time
from datetime import date

import pytest

from conftest import FakeOrderClient, raw_order
from fetcher import OrderFetchError, OrderPage, Pagination
from order_feed import OrderFeedWatcher


def ids(orders):
    return [order["id"] for order in orders]


def page_of(*order_ids, page=1, per_page=10, total=None, counts=None):
    orders = [raw_order(order_id) for order_id in order_ids]
    return OrderPage(orders=orders, pagination=Pagination(page=page, per_page=per_page, total=total or len(orders)), counts=counts)


@pytest.fixture
def client():
    return FakeOrderClient()


@pytest.fixture
def watcher(client, settings):
    watcher = OrderFeedWatcher(client, 42, settings)
    yield watcher
    watcher.stop_polling()


def test_first_load_seeds_ledger_without_alert(watcher, client):
    client.pages = [page_of(1, 2, 3, total=23)]
    assert watcher.load_orders() is True

    state = watcher.snapshot()
    assert ids(state["orders"]) == [1, 2, 3]
    assert watcher.notifications.ledger.ids == {1, 2, 3}
    assert state["new_orders"] == []
    assert state["pagination"].total == 23
    assert state["loading"] is False
    assert client.calls[0]["filters"]["status"] == "pending"
    assert client.calls[0]["user_id"] == 42


def test_background_poll_on_page_one_flags_new_orders(watcher, client):
    client.pages = [page_of(1, 2, 3), page_of(2, 3, 4, 5)]
    watcher.load_orders()
    assert watcher.refresh_in_background() is True

    state = watcher.snapshot()
    assert ids(state["new_orders"]) == [4, 5]
    assert state["show_new_orders"] is True
    assert state["banner_notification"] == "🆕 2 new order(s) received!"
    assert watcher.is_alert_playing() is True
    assert ids(state["orders"]) == [2, 3, 4, 5]


def test_background_poll_on_other_pages_stays_silent(watcher, client):
    client.pages = [page_of(1, 2, 3), page_of(11, 12, page=2), page_of(2, 3, 4, 5, page=2)]
    watcher.load_orders()
    watcher.change_page(2)
    watcher.refresh_in_background()

    state = watcher.snapshot()
    assert state["new_orders"] == []
    assert state["show_new_orders"] is False
    assert watcher.is_alert_playing() is False
    assert client.calls[-1]["page"] == 2


def test_background_poll_keeps_page_but_refreshes_total(watcher, client):
    client.pages = [page_of(1, 2, page=3, per_page=25, total=80), page_of(9, page=1, total=81)]
    watcher.load_orders(page=3, per_page=25)
    watcher.refresh_in_background()

    pagination = watcher.snapshot()["pagination"]
    assert (pagination.page, pagination.per_page, pagination.total) == (3, 25, 81)
    assert (client.calls[-1]["page"], client.calls[-1]["per_page"]) == (3, 25)


def test_background_failure_is_silent(watcher, client, fetch_error):
    client.pages = [page_of(1, 2), fetch_error]
    watcher.load_orders()
    assert watcher.refresh_in_background() is False

    state = watcher.snapshot()
    assert state["error"] is None
    assert state["background_refreshing"] is False
    assert ids(state["orders"]) == [1, 2]


def test_user_failure_keeps_last_good_orders(watcher, client, fetch_error):
    client.pages = [page_of(1, 2), fetch_error]
    watcher.load_orders()
    assert watcher.load_orders() is False

    state = watcher.snapshot()
    assert state["error"] == "Order service returned HTTP 500"
    assert state["loading"] is False
    assert ids(state["orders"]) == [1, 2]


def test_stale_response_does_not_overwrite_newer_one(watcher, client):
    class RacingClient(FakeOrderClient):
        def fetch_orders(self, user_id, filters, page=1, per_page=10):
            result = super().fetch_orders(user_id, filters, page, per_page)
            if len(self.calls) == 1:
                # A user fetch is issued and finishes while the poll is still waiting.
                watcher.load_orders()
            return result

    watcher.client = RacingClient([page_of(99), page_of(10)])
    assert watcher.refresh_in_background() is False
    assert ids(watcher.snapshot()["orders"]) == [10]


def test_server_counts_override_client_counts(watcher, client):
    client.pages = [page_of(1, 2, counts={"Pending": 5, "Today": 2, "Completed": 1})]
    watcher.load_orders()
    counts = watcher.snapshot()["tab_counts"]
    assert counts["Pending"] == 7
    assert counts["Completed"] == 1


def test_malformed_server_counts_do_not_break_the_load(watcher, client):
    client.pages = [page_of(1, 2, counts={"Pending": None, "Today": "n/a", "Completed": "x", "On the Way": "3"})]
    assert watcher.load_orders() is True

    snapshot = watcher.snapshot()
    assert ids(snapshot["orders"]) == [1, 2]
    assert snapshot["error"] is None
    assert snapshot["tab_counts"]["Pending"] == 0
    assert snapshot["tab_counts"]["Completed"] == 0
    assert snapshot["tab_counts"]["On the Way"] == 3
    assert watcher.notifications.ledger.is_seeded
    assert watcher.notifications.ledger.ids == {1, 2}
    assert watcher.state["known_order_ids"] == {1, 2}


def test_change_tab_resets_ledger_and_page(watcher, client):
    client.pages = [page_of(1, 2, 3), page_of(11, page=2), page_of(20, 21), []]
    watcher.load_orders()
    watcher.change_page(2)
    watcher.change_tab("Completed")

    order_call, summary_call = client.calls[-2], client.calls[-1]
    assert order_call["page"] == 1
    assert order_call["filters"]["status"] == "completed"
    assert "status" not in summary_call["filters"]
    assert summary_call["per_page"] == 1000
    assert watcher.notifications.ledger.ids == {20, 21}
    assert watcher.snapshot()["new_orders"] == []


def test_change_tab_rejects_unknown_tab(watcher):
    with pytest.raises(ValueError):
        watcher.change_tab("Archived")


def test_search_uses_selected_date(watcher, client):
    client.pages = [page_of(1), []]
    watcher.search(date(2026, 10, 1))

    assert client.calls[0]["filters"]["start_date"] == "2026-10-01"
    assert client.calls[0]["filters"]["end_date"] == "2026-10-01"
    assert client.calls[1]["filters"] == {"start_date": "2026-10-01", "end_date": "2026-10-01"}
    assert watcher.snapshot()["search_date"] == date(2026, 10, 1)


def test_load_summary(watcher, client):
    today = watcher.today().strftime("%Y-%m-%d")
    client.pages = [[
        raw_order(1, created_at=f"{today} 09:00:00", grand_total="10.50"),
        raw_order(2, created_at=f"{today} 10:00:00", grand_total="20.00"),
        raw_order(3, created_at=f"{today} 11:00:00", grand_total="5.00", payment_status="unpaid"),
    ]]
    assert watcher.load_summary() is True
    assert watcher.snapshot()["summary"] == {"total_sales": 30.5, "total_orders": 2}


def test_summary_failure_keeps_previous_summary(watcher, client, fetch_error):
    client.pages = [fetch_error]
    assert watcher.load_summary() is False
    assert watcher.snapshot()["summary"] == {"total_sales": 0.0, "total_orders": 0}


def test_update_order_status_reloads_orders(watcher, client):
    client.pages = [page_of(1, 2)]
    assert watcher.update_order_status(1, "ready_to_pickup") is True
    assert client.status_updates == [(1, "ready_to_pickup")]
    assert len(client.calls) == 1


def test_stop_polling_issues_no_further_fetches(watcher, client):
    client.pages = [page_of(1)] * 1000
    watcher.start_polling()
    deadline = time.time() + 2
    while not client.calls and time.time() < deadline:
        time.sleep(0.01)
    assert client.calls

    watcher.stop_polling()
    issued = len(client.calls)
    time.sleep(0.2)
    assert len(client.calls) == issued


def wait_for(predicate, timeout=2.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


def test_polling_ends_once_the_session_drops_the_watcher(client, settings):
    client.pages = [page_of(1)] * 1000
    session = {"order_feed": OrderFeedWatcher(client, 42, settings)}
    scheduler = session["order_feed"].scheduler
    session["order_feed"].start_polling()
    assert wait_for(lambda: client.calls)

    session.clear()
    gc.collect()
    assert wait_for(lambda: not scheduler.is_running)
    issued = len(client.calls)
    time.sleep(0.2)
    assert len(client.calls) == issued


def test_polling_ends_when_the_session_disconnects(watcher, client):
    client.pages = [page_of(1)] * 1000
    connected = threading.Event()
    connected.set()
    watcher.start_polling(keep_running=connected.is_set)
    assert wait_for(lambda: client.calls)

    connected.clear()
    assert wait_for(lambda: not watcher.scheduler.is_running)
    issued = len(client.calls)
    time.sleep(0.2)
    assert len(client.calls) == issued


class BlockingClient(FakeOrderClient):
    """Holds the first fetch open until ``release`` is set."""

    def __init__(self, pages=None):
        super().__init__(pages)
        self.started = threading.Event()
        self.release = threading.Event()
        self.block_next = True

    def fetch_orders(self, user_id, filters, page=1, per_page=10):
        result = super().fetch_orders(user_id, filters, page, per_page)
        if self.block_next:
            self.block_next = False
            self.started.set()
            self.release.wait(5)
        return result


def test_change_tab_does_not_wait_for_a_slow_poll(settings):
    client = BlockingClient([page_of(1, 2), page_of(7, 8), page_of(7, 8)])
    watcher = OrderFeedWatcher(client, 42, settings)
    try:
        watcher.start_polling()
        assert client.started.wait(2)

        began = time.time()
        assert watcher.change_tab("Completed") is True
        assert time.time() - began < 0.5

        watcher.stop_polling()
        client.release.set()
        assert wait_for(lambda: not watcher.snapshot()["background_refreshing"])
        snapshot = watcher.snapshot()
        assert snapshot["active_tab"] == "Completed"
        assert ids(snapshot["orders"]) == [7, 8]
    finally:
        client.release.set()
        watcher.stop_polling()
