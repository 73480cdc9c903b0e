import copy
import logging
import threading
from dataclasses import replace
from datetime import date, datetime

from aggregator import apply_server_counts, calculate_tab_counts, compute_summary
from fetcher import TABS, OrderFetchError, Pagination, build_order_filters
from normalizer import normalize_orders
from notification_manager import NotificationManager
from poll_scheduler import PollScheduler

logger = logging.getLogger(__name__)


class OrderFeedWatcher:
    """
    Keeps the outlet's order list fresh and drives the new-order alert.

    User actions (tab switch, date search, page change) and the background
    poll share one fetch -> normalize -> diff -> aggregate pipeline. All state
    lives in ``self.state`` behind a lock; the UI reads it through
    ``snapshot()``. Every fetch is stamped with an epoch and only the most
    recently issued one may commit its result.
    """

    def __init__(self, client, user_id, settings, default_tab="Pending"):
        self.client = client
        self.user_id = user_id
        self.settings = settings
        self._lock = threading.RLock()
        self._epoch = 0
        self._user_epoch = 0
        self._summary_epoch = 0
        self.state = {
            "active_tab": default_tab,
            "search_date": None,
            "orders": [],
            "pagination": Pagination(page=1, per_page=settings.per_page, total=0),
            "tab_counts": {tab: 0 for tab in TABS},
            "summary": {"total_sales": 0.0, "total_orders": 0},
            "error": None,
            "loading": False,
            "background_refreshing": False,
            "last_refreshed": None,
        }
        self.notifications = NotificationManager(
            self.state,
            alert_timeout_seconds=settings.alert_timeout_seconds,
            dismiss_stops_alert=settings.dismiss_stops_alert,
        )
        self.scheduler = PollScheduler(self.refresh_in_background, interval=settings.poll_interval_seconds)

    # --- context ---

    def today(self) -> date:
        return datetime.now(self.settings.tz).date()

    def local_now(self) -> datetime:
        return datetime.now(self.settings.tz).replace(tzinfo=None)

    def _issue(self):
        """Stamps a new request and captures the filter context it runs with."""
        self._epoch += 1
        search_date = self.state["search_date"] or self.today()
        filters = build_order_filters(self.state["active_tab"], search_date)
        return self._epoch, filters, copy.copy(self.state["pagination"])

    def _commit_orders(self, orders, page, counts):
        tab_counts = apply_server_counts(calculate_tab_counts(orders, self.local_now()), counts)
        self.state["orders"] = orders
        self.state["tab_counts"] = tab_counts
        self.notifications.check_for_new_orders(orders, page)
        self.state["error"] = None
        self.state["last_refreshed"] = datetime.now(self.settings.tz)

    # --- fetches ---

    def load_orders(self, page: int = None, per_page: int = None) -> bool:
        """
        User-triggered fetch. Errors end up in ``state['error']`` and the
        previously loaded orders stay in place.

        Returns:
            bool: True if the result was committed.
        """
        with self._lock:
            if page is not None:
                self.state["pagination"].page = page
            if per_page is not None:
                self.state["pagination"].per_page = per_page
            epoch, filters, pagination = self._issue()
            self._user_epoch = epoch
            self.state["loading"] = True
            self.state["error"] = None

        try:
            result = self.client.fetch_orders(self.user_id, filters, pagination.page, pagination.per_page)
            orders = normalize_orders(result.orders)
        except Exception as e:
            logger.error("Failed to load orders: %s", e)
            with self._lock:
                if epoch == self._user_epoch:
                    self.state["loading"] = False
                if epoch == self._epoch:
                    self.state["error"] = str(e) or "Failed to load orders"
            return False

        with self._lock:
            if epoch == self._user_epoch:
                self.state["loading"] = False
            if epoch != self._epoch:
                logger.debug("Dropping stale order list (epoch %d, latest %d)", epoch, self._epoch)
                return False
            self.state["pagination"] = result.pagination
            self._commit_orders(orders, pagination.page, result.counts)
        return True

    def refresh_in_background(self) -> bool:
        """
        Timer-triggered fetch. Keeps the current page and page size, leaves the
        primary loading flag alone and only logs failures. The order total is
        taken from the server so the page count stays current.
        """
        with self._lock:
            epoch, filters, pagination = self._issue()
            self.state["background_refreshing"] = True

        try:
            result = self.client.fetch_orders(self.user_id, filters, pagination.page, pagination.per_page)
            orders = normalize_orders(result.orders)
        except Exception as e:
            logger.warning("Auto-refresh failed: %s", e)
            with self._lock:
                self.state["background_refreshing"] = False
            return False

        with self._lock:
            self.state["background_refreshing"] = False
            if epoch != self._epoch:
                logger.debug("Dropping stale background refresh (epoch %d, latest %d)", epoch, self._epoch)
                return False
            self.state["pagination"] = replace(self.state["pagination"], total=result.pagination.total)
            self._commit_orders(orders, pagination.page, result.counts)
        return True

    def load_summary(self) -> bool:
        """Recomputes today's paid sales from a full-day fetch without status filter."""
        with self._lock:
            self._summary_epoch += 1
            epoch = self._summary_epoch
            search_date = self.state["search_date"] or self.today()
        day = search_date.strftime("%Y-%m-%d")

        try:
            result = self.client.fetch_orders(
                self.user_id, {"start_date": day, "end_date": day}, 1, self.settings.summary_page_size
            )
        except Exception as e:
            logger.error("Failed to load summary data: %s", e)
            return False

        summary = compute_summary(result.orders, search_date, self.settings.tz)
        with self._lock:
            if epoch != self._summary_epoch:
                return False
            self.state["summary"] = summary
        return True

    # --- user actions ---

    def change_tab(self, tab: str) -> bool:
        if tab not in TABS:
            raise ValueError(f"Unknown status tab: {tab}")
        with self._lock:
            self.state["active_tab"] = tab
            self.state["pagination"].page = 1
            self.notifications.reset()
            # Anything still in flight belongs to the previous filter context.
            self._epoch += 1
        if self.scheduler.is_running:
            self.scheduler.rearm()
        loaded = self.load_orders()
        self.load_summary()
        return loaded

    def search(self, search_date: date) -> bool:
        with self._lock:
            self.state["search_date"] = search_date
            self.state["pagination"].page = 1
            self.notifications.reset()
            # Anything still in flight belongs to the previous filter context.
            self._epoch += 1
        loaded = self.load_orders()
        self.load_summary()
        return loaded

    def change_page(self, page: int, per_page: int = None) -> bool:
        return self.load_orders(page=page, per_page=per_page)

    def update_order_status(self, order_id, status: str) -> bool:
        try:
            self.client.update_order_status(order_id, status)
        except OrderFetchError as e:
            logger.error("Failed to update order %s: %s", order_id, e)
            with self._lock:
                self.state["error"] = str(e)
            return False
        return self.load_orders()

    # --- notifications ---

    def is_alert_playing(self, now=None) -> bool:
        with self._lock:
            return self.notifications.is_alert_playing(now)

    def stop_alert(self):
        with self._lock:
            self.notifications.stop_alert()

    def dismiss_new_orders(self):
        with self._lock:
            self.notifications.dismiss_new_orders()

    def dismiss_message(self):
        with self._lock:
            self.notifications.dismiss_message()

    # --- polling ---

    def start_polling(self, keep_running=None):
        """
        Starts the background poll. ``keep_running`` is an optional predicate
        the poll thread checks before every tick, e.g. whether the browser
        session that owns this watcher is still connected.
        """
        if keep_running is not None:
            self.scheduler.keep_running = keep_running
        self.scheduler.start()

    def stop_polling(self):
        self.scheduler.stop()

    def snapshot(self) -> dict:
        with self._lock:
            snapshot = copy.deepcopy(self.state)
        snapshot["search_date"] = snapshot["search_date"] or self.today()
        return snapshot
