import logging
import time

from ledger import KnownIdLedger

logger = logging.getLogger(__name__)


class NotificationManager:
    """
    Manages new-order detection and the flags the dashboard uses to show
    the new-orders panel, the toast message and the looping audio alert.
    """

    def __init__(self, state, alert_timeout_seconds=20, dismiss_stops_alert=False, session_state_key="known_order_ids"):
        """
        Initializes the NotificationManager.

        Args:
            state (MutableMapping): Store holding the ledger and notification flags.
            alert_timeout_seconds (float): The audio alert stops by itself after this long.
            dismiss_stops_alert (bool): Whether dismissing the new-orders panel also silences the alert.
            session_state_key (str): The key used to store seen order IDs in ``state``.
        """
        self.state = state
        self.alert_timeout_seconds = alert_timeout_seconds
        self.dismiss_stops_alert = dismiss_stops_alert
        self.ledger = KnownIdLedger(state, session_state_key)
        self.state.setdefault("new_orders", [])
        self.state.setdefault("show_new_orders", False)
        self.state.setdefault("banner_notification", "")
        self.state.setdefault("alert_playing", False)
        self.state.setdefault("alert_start_time", None)

    def check_for_new_orders(self, orders: list, page: int, now=None) -> list:
        """
        Records a fetched page in the ledger and raises the alert when it holds new orders.

        Args:
            orders (list): Normalized orders of the fetched page; each must contain an 'id' key.
            page (int): Page the fetch targeted. Only page 1 can raise a notification.
            now (float | None): Timestamp used as the alert start, defaults to time.time().

        Returns:
            list: The orders that triggered a notification, in fetch order.
        """
        new_ids = self.ledger.record((order["id"] for order in orders), page)
        if not new_ids or page != 1:
            return []

        new_orders = [order for order in orders if order["id"] in new_ids]
        logger.info("New orders detected: %s", [order["id"] for order in new_orders])

        self.state["new_orders"] = new_orders + list(self.state["new_orders"])
        self.state["show_new_orders"] = True
        self.state["banner_notification"] = f"🆕 {len(new_orders)} new order(s) received!"
        self.state["alert_playing"] = True
        self.state["alert_start_time"] = time.time() if now is None else now
        return new_orders

    def is_alert_playing(self, now=None) -> bool:
        """Whether the audio alert should still be playing; expires it after the timeout."""
        if not self.state["alert_playing"]:
            return False
        now = time.time() if now is None else now
        if now - self.state["alert_start_time"] >= self.alert_timeout_seconds:
            logger.debug("Audio alert timed out after %ss", self.alert_timeout_seconds)
            self.stop_alert()
            return False
        return True

    def stop_alert(self):
        self.state["alert_playing"] = False
        self.state["alert_start_time"] = None

    def dismiss_new_orders(self):
        self.state["new_orders"] = []
        self.state["show_new_orders"] = False
        if self.dismiss_stops_alert:
            self.stop_alert()

    def dismiss_message(self):
        self.state["banner_notification"] = ""

    def reset(self):
        """Forgets the known IDs; called when the status tab or search date changes."""
        self.ledger.reset()
