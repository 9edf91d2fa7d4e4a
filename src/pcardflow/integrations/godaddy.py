"""GoDaddy order history client (the Order Source for reconciliation)."""

import json
import logging
from datetime import date
from typing import Any

import requests
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from pcardflow.config import DEFAULT_GODADDY_API_URL

logger = logging.getLogger(__name__)

# Keys under which the orders endpoint has been seen to wrap its list.
ORDER_LIST_KEYS = ("orders", "data", "items")


class OrderSourceError(Exception):
    """Raised when the order API fails or answers with an unexpected shape.

    Attributes:
        status_code: HTTP status, when the failure was an HTTP response
        details: Raw (truncated) response text for the sync record
    """

    def __init__(self, message: str, status_code: int | None = None, details: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.details = details


class OrderSourceNotConfiguredError(OrderSourceError):
    """Raised when API credentials are missing."""


def _is_retryable_error(exception: BaseException) -> bool:
    """Retry network failures, rate limiting (429) and unavailability (503)."""
    if isinstance(exception, requests.ConnectionError | requests.Timeout):
        return True
    if isinstance(exception, OrderSourceError):
        return exception.status_code in (429, 503)
    return False


def extract_order_list(payload: Any) -> list[dict]:
    """Pull the list of orders out of an API response body.

    Raises:
        OrderSourceError: If the payload holds no recognizable order list
    """
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in ORDER_LIST_KEYS:
            if isinstance(payload.get(key), list):
                return payload[key]
    snippet = json.dumps(payload, default=str)[:200]
    raise OrderSourceError(
        f"Unexpected API response format: {snippet}", details=snippet
    )


class GoDaddyClient:
    """Client for the GoDaddy orders API.

    Attributes:
        api_key: API key (``sso-key`` auth)
        api_secret: API secret
        shopper_id: Optional shopper to scope order listing to
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        api_key: str | None,
        api_secret: str | None,
        shopper_id: str | None = None,
        base_url: str = DEFAULT_GODADDY_API_URL,
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ):
        self.api_key = api_key
        self.api_secret = api_secret
        self.shopper_id = shopper_id
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
        return self._session

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.api_secret)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"sso-key {self.api_key}:{self.api_secret}",
            "Content-Type": "application/json",
        }

    @retry(
        retry=retry_if_exception(_is_retryable_error),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    def _get(self, path: str, params: dict | None = None) -> Any:
        if not self.is_configured:
            raise OrderSourceNotConfiguredError("GoDaddy integration not configured")

        url = f"{self.base_url}{path}"
        logger.info("Fetching %s", url)
        response = self.session.get(
            url, headers=self._headers(), params=params, timeout=self.timeout
        )
        if not response.ok:
            logger.error("GoDaddy API error: %s %s", response.status_code, response.text)
            raise OrderSourceError(
                f"GoDaddy API returned {response.status_code}",
                status_code=response.status_code,
                details=response.text,
            )
        try:
            return response.json()
        except ValueError as e:
            raise OrderSourceError(
                "GoDaddy API returned a non-JSON body", details=response.text[:200]
            ) from e

    def list_orders(self, period_start: date) -> list[dict]:
        """List raw order records created on or after ``period_start``.

        Records are validated one at a time by the caller (see
        ``VendorOrder``), so one malformed order cannot sink a whole pass.

        Raises:
            OrderSourceNotConfiguredError: If credentials are missing
            OrderSourceError: On HTTP errors or an unexpected response shape
        """
        if self.shopper_id:
            path = f"/v1/shoppers/{self.shopper_id}/orders"
        else:
            path = "/v1/orders"
        payload = self._get(path, params={"periodStart": period_start.isoformat()})
        orders = extract_order_list(payload)
        logger.info("Fetched %d orders from GoDaddy", len(orders))
        return orders

    def get_order(self, order_id: str) -> dict:
        """Fetch the full details of one order, as returned by the API."""
        return self._get(f"/v1/orders/{order_id}")
