"""Unit tests for the GoDaddy order client."""

from datetime import date
from unittest.mock import MagicMock

import pytest
import requests
from tenacity import wait_none

from pcardflow.integrations.godaddy import (
    GoDaddyClient,
    OrderSourceError,
    OrderSourceNotConfiguredError,
    extract_order_list,
)
from tests.utils import make_order

pytestmark = pytest.mark.unit


@pytest.fixture(autouse=True)
def no_retry_wait(mocker):
    """Retry immediately instead of backing off."""
    mocker.patch.object(GoDaddyClient._get.retry, "wait", wait_none())


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def client(session):
    return GoDaddyClient(
        api_key="key",
        api_secret="secret",
        base_url="https://api.example.test/",
        session=session,
    )


def response(status_code=200, payload=None, text=""):
    mock = MagicMock()
    mock.status_code = status_code
    mock.ok = status_code < 400
    mock.json.return_value = payload
    mock.text = text
    return mock


class TestExtractOrderList:
    def test_bare_list(self):
        assert extract_order_list([{"orderId": "1"}]) == [{"orderId": "1"}]

    @pytest.mark.parametrize("key", ["orders", "data", "items"])
    def test_wrapped_list(self, key):
        assert extract_order_list({key: [{"orderId": "1"}]}) == [{"orderId": "1"}]

    def test_unexpected_shape(self):
        with pytest.raises(OrderSourceError) as exc_info:
            extract_order_list({"message": "hello"})
        assert "Unexpected API response format" in str(exc_info.value)
        assert "hello" in exc_info.value.details


class TestConfiguration:
    def test_configured_needs_key_and_secret(self):
        assert GoDaddyClient("k", "s").is_configured
        assert not GoDaddyClient("k", None).is_configured
        assert not GoDaddyClient(None, None).is_configured

    def test_unconfigured_list_raises_without_request(self, session):
        client = GoDaddyClient(None, None, session=session)
        with pytest.raises(OrderSourceNotConfiguredError):
            client.list_orders(date(2025, 1, 1))
        session.get.assert_not_called()


class TestListOrders:
    def test_list_orders(self, client, session):
        session.get.return_value = response(payload={"orders": [make_order()]})

        orders = client.list_orders(date(2025, 1, 1))

        assert orders[0]["orderId"] == "1001"
        args, kwargs = session.get.call_args
        assert args[0] == "https://api.example.test/v1/orders"
        assert kwargs["params"] == {"periodStart": "2025-01-01"}
        assert kwargs["headers"]["Authorization"] == "sso-key key:secret"
        assert kwargs["timeout"] == 30.0

    def test_shopper_scoped_path(self, session):
        client = GoDaddyClient("k", "s", shopper_id="42", session=session)
        session.get.return_value = response(payload=[])
        client.list_orders(date(2025, 1, 1))
        assert session.get.call_args.args[0].endswith("/v1/shoppers/42/orders")

    def test_http_error_not_retried(self, client, session):
        session.get.return_value = response(401, text='{"code":"UNABLE_TO_AUTHENTICATE"}')

        with pytest.raises(OrderSourceError) as exc_info:
            client.list_orders(date(2025, 1, 1))

        assert exc_info.value.status_code == 401
        assert "UNABLE_TO_AUTHENTICATE" in exc_info.value.details
        assert session.get.call_count == 1

    def test_rate_limit_retried(self, client, session):
        session.get.side_effect = [
            response(429, text="Too many requests"),
            response(payload=[make_order()]),
        ]
        orders = client.list_orders(date(2025, 1, 1))
        assert len(orders) == 1
        assert session.get.call_count == 2

    def test_connection_error_retried_then_raised(self, client, session):
        session.get.side_effect = requests.ConnectionError("unreachable")
        with pytest.raises(requests.ConnectionError):
            client.list_orders(date(2025, 1, 1))
        assert session.get.call_count == 3

    def test_non_json_body(self, client, session):
        bad = response(text="<html>")
        bad.json.side_effect = ValueError("no json")
        session.get.return_value = bad
        with pytest.raises(OrderSourceError):
            client.list_orders(date(2025, 1, 1))


class TestGetOrder:
    def test_get_order(self, client, session):
        session.get.return_value = response(payload={"orderId": "1001"})
        assert client.get_order("1001") == {"orderId": "1001"}
        assert session.get.call_args.args[0] == "https://api.example.test/v1/orders/1001"
