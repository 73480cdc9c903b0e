import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

import requests

logger = logging.getLogger(__name__)


# ==============================================================================
# STATUS TABS
# ==============================================================================

TABS = ["Pre Order", "Pending", "Ready to Pick Up", "On the Way", "Picked Up", "Completed"]

TAB_STATUS_MAPPING = {
    "Pre Order": None,
    "Pending": "pending",
    "Ready to Pick Up": "ready_to_pickup",
    "On the Way": "on_the_way",
    "Picked Up": "picked_up",
    "Completed": ["completed", "delivered"],
}

OPTIONAL_FILTER_KEYS = ("order_type", "payment_status", "payment_method", "search", "outlet_id")


def get_status_param(tab: str) -> Optional[str]:
    """Maps a status tab to the single status value sent to the order listing API."""
    if tab not in TAB_STATUS_MAPPING:
        raise KeyError(f"Unknown status tab: {tab}")
    mapped = TAB_STATUS_MAPPING[tab]
    if isinstance(mapped, list):
        # The listing endpoint takes one status; "delivered" is only picked up by the client-side counts.
        return mapped[0]
    return mapped


def build_order_filters(tab: str, search_date: date, **extra) -> dict:
    """Filters for one status tab on a single day."""
    day = search_date.strftime("%Y-%m-%d")
    filters = {"start_date": day, "end_date": day, "status": get_status_param(tab)}
    for key in OPTIONAL_FILTER_KEYS:
        if extra.get(key):
            filters[key] = extra[key]
    return filters


# ==============================================================================
# API CLIENT
# ==============================================================================

class OrderFetchError(Exception):
    """Raised when the order service cannot be reached or answers with an error."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class Pagination:
    page: int = 1
    per_page: int = 10
    total: int = 0


@dataclass
class OrderPage:
    orders: list
    pagination: Pagination
    counts: Optional[dict] = None
    raw: dict = field(default_factory=dict, repr=False)


class OrderListingClient:
    """Thin wrapper around the outlet order endpoints, authenticated with a bearer token."""

    def __init__(self, base_url: str, token: str, timeout: float = 15, session=None):
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.token}", "Content-Type": "application/json"}

    def _request(self, method: str, path: str, **kwargs):
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, headers=self._headers(), timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise OrderFetchError(f"Could not reach order service: {e}") from e

        if not response.ok:
            message = f"Order service returned HTTP {response.status_code}"
            try:
                body = response.json()
                if isinstance(body, dict) and body.get("message"):
                    message = body["message"]
            except ValueError:
                pass
            raise OrderFetchError(message, status_code=response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise OrderFetchError("Order service returned an invalid JSON body", status_code=response.status_code) from e

    def _unwrap(self, result, action: str):
        if not isinstance(result, dict) or result.get("status") != 200:
            message = result.get("message") if isinstance(result, dict) else None
            raise OrderFetchError(message or f"Failed to {action}")
        return result.get("data")

    def fetch_orders(self, user_id, filters: dict, page: int = 1, per_page: int = 10) -> OrderPage:
        """
        Fetches one page of the outlet's order list.

        Args:
            user_id: Outlet user id the listing is scoped to.
            filters (dict): start_date/end_date/status plus optional listing filters.
                            Empty values are not sent.
            page (int): 1-based page number.
            per_page (int): Page size.

        Returns:
            OrderPage: Raw order records, server pagination and optional tab counts.

        Raises:
            OrderFetchError: On network failures, non-2xx answers or undecodable bodies.
        """
        params = {"user_id": user_id, "page": page, "per_page": per_page}
        params.update({k: v for k, v in filters.items() if v})
        result = self._request("GET", "order/list", params=params)
        if not isinstance(result, dict):
            raise OrderFetchError("Order service returned an unexpected payload")

        orders = result.get("data")
        if not isinstance(orders, list):
            orders = []
        info = result.get("pagination") or {}
        pagination = Pagination(
            page=int(info.get("current_page") or page),
            per_page=int(info.get("per_page") or per_page),
            total=int(info.get("total") or len(orders)),
        )
        counts = result.get("counts") if isinstance(result.get("counts"), dict) else None
        logger.debug("Fetched %d orders (page %d) with filters %s", len(orders), pagination.page, filters)
        return OrderPage(orders=orders, pagination=pagination, counts=counts, raw=result)

    def get_order(self, order_id) -> dict:
        return self._unwrap(self._request("GET", f"order/{order_id}"), "fetch order")

    def update_order_status(self, order_id, status: str) -> dict:
        logger.info("Updating order %s to status %s", order_id, status)
        result = self._request("PUT", f"order/update-status/{order_id}", json={"status": status})
        return self._unwrap(result, "update order status")
