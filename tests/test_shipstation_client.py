"""Tests for the ShipStation REST client and its in-call retry."""

from __future__ import annotations

import base64
import json
from unittest.mock import patch

import httpx
import pytest

from shipnote.errors import DownstreamCallFailure
from shipnote.shipstation.client import ShipStationClient
from shipnote.shipstation.retry import Backoff, compute_delay, is_retryable


def _client(handler, **kwargs) -> ShipStationClient:
    return ShipStationClient(
        "key", "secret",
        base_url="https://ssapi.test",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


class TestRequests:

    def test_find_order_by_number(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            return httpx.Response(200, json={"orders": [{"orderId": 42, "orderNumber": "1001"}]})

        order = _client(handler).find_order_by_number("1001")

        assert order == {"orderId": 42, "orderNumber": "1001"}
        assert seen["url"] == "https://ssapi.test/orders?orderNumber=1001"
        assert seen["auth"] == "Basic " + base64.b64encode(b"key:secret").decode()

    def test_find_order_not_found(self):
        client = _client(lambda r: httpx.Response(200, json={"orders": [], "total": 0}))
        assert client.find_order_by_number("1001") is None

    def test_get_order(self):
        client = _client(lambda r: httpx.Response(200, json={"orderId": 42, "items": []}))
        assert client.get_order(42)["orderId"] == 42

    def test_get_order_empty_body(self):
        client = _client(lambda r: httpx.Response(200))
        with pytest.raises(DownstreamCallFailure):
            client.get_order(42)

    def test_create_or_update_posts_full_order(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["path"] = request.url.path
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={"orderId": 42})

        _client(handler).create_or_update_order({"orderId": 42, "giftMessage": "hi"})

        assert captured["path"] == "/orders/createorder"
        assert captured["body"] == {"orderId": 42, "giftMessage": "hi"}

    @pytest.mark.parametrize("payload", [
        [{"tagId": 7, "name": "Charm"}],
        {"tags": [{"tagId": 7, "name": "Charm"}]},
    ])
    def test_find_tag_id_case_insensitive(self, payload):
        client = _client(lambda r: httpx.Response(200, json=payload))
        assert client.find_tag_id("charm") == 7
        assert client.find_tag_id("customization") is None

    def test_add_tag(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["path"] = request.url.path
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={"success": True})

        _client(handler).add_tag(42, 7)

        assert captured == {"path": "/orders/addtag", "body": {"orderId": 42, "tagId": 7}}


class TestFailures:

    def test_client_error_raises_without_retry(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(401, text="Unauthorized")

        with pytest.raises(DownstreamCallFailure) as exc:
            _client(handler).find_order_by_number("1")

        assert exc.value.status_code == 401
        assert len(calls) == 1

    @patch("shipnote.shipstation.retry.time.sleep")
    def test_server_error_retried_then_raised(self, mock_sleep):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503)

        with pytest.raises(DownstreamCallFailure) as exc:
            _client(handler).find_order_by_number("1")

        assert exc.value.status_code == 503
        assert len(calls) == 3
        assert mock_sleep.call_count == 2

    @patch("shipnote.shipstation.retry.time.sleep")
    def test_rate_limit_recovers(self, mock_sleep):
        responses = [
            httpx.Response(429, headers={"X-Rate-Limit-Reset": "5"}),
            httpx.Response(200, json={"orders": []}),
        ]
        client = _client(lambda r: responses.pop(0))

        assert client.find_order_by_number("1") is None
        mock_sleep.assert_called_once_with(5.0)

    @patch("shipnote.shipstation.retry.time.sleep")
    def test_timeout_becomes_downstream_failure(self, mock_sleep):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(DownstreamCallFailure) as exc:
            _client(handler).get_order(1)

        assert exc.value.status_code is None
        assert "ReadTimeout" in str(exc.value)

    def test_invalid_json(self):
        client = _client(lambda r: httpx.Response(200, content=b"<html>"))
        with pytest.raises(DownstreamCallFailure):
            client.get_order(1)


class TestComputeDelay:

    def test_retry_after_header(self):
        response = httpx.Response(429, headers={"Retry-After": "12"})
        assert compute_delay(0, 1.0, 30.0, 0.3, response) == 12.0

    def test_hint_capped(self):
        response = httpx.Response(429, headers={"Retry-After": "600"})
        assert compute_delay(0, 1.0, 30.0, 0.3, response) == 30.0

    def test_exponential_without_hint(self):
        assert compute_delay(3, 1.0, 30.0, 0.0) == 8.0
        assert compute_delay(10, 1.0, 30.0, 0.0) == 30.0

    def test_jitter_bounds(self):
        for _ in range(50):
            assert 0.7 <= compute_delay(0, 1.0, 30.0, 0.3) <= 1.3

    def test_unparseable_hint_falls_back_to_schedule(self):
        response = httpx.Response(429, headers={"X-Rate-Limit-Reset": "soon"})
        assert compute_delay(2, 1.0, 30.0, 0.0, response) == 4.0


class TestBackoff:

    @staticmethod
    def _status_error(status: int) -> httpx.HTTPStatusError:
        request = httpx.Request("GET", "https://ssapi.test/orders")
        response = httpx.Response(status, request=request)
        return httpx.HTTPStatusError("error", request=request, response=response)

    @pytest.mark.parametrize("status,expected", [
        (429, True), (500, True), (503, True), (400, False), (401, False), (404, False),
    ])
    def test_retryable_statuses(self, status, expected):
        assert is_retryable(self._status_error(status)) is expected

    def test_transport_errors_retryable(self):
        assert is_retryable(httpx.ConnectError("refused")) is True

    @patch("shipnote.shipstation.retry.time.sleep")
    def test_pause_sleeps_until_retries_exhausted(self, mock_sleep):
        backoff = Backoff(max_retries=1, jitter=0.0)
        err = self._status_error(503)

        assert backoff.pause(0, err, "GET /orders") is True
        assert backoff.pause(1, err, "GET /orders") is False
        mock_sleep.assert_called_once_with(1.0)

    @patch("shipnote.shipstation.retry.time.sleep")
    def test_no_pause_for_client_error(self, mock_sleep):
        assert Backoff().pause(0, self._status_error(404), "GET /orders/1") is False
        mock_sleep.assert_not_called()

    @patch("shipnote.shipstation.retry.time.sleep")
    def test_client_uses_injected_backoff(self, mock_sleep):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503)

        with pytest.raises(DownstreamCallFailure):
            _client(handler, backoff=Backoff(max_retries=0)).get_order(1)

        assert len(calls) == 1
        mock_sleep.assert_not_called()
