"""Tests for the delivery attempt executor."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from src.webhooks.executor import DeliveryAttemptExecutor, parse_response_body

URL = "https://example.com/webhook"


def make_client(handler) -> httpx.AsyncClient:
    """Create an AsyncClient backed by a mock transport."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestParseResponseBody:
    """Tests for parse_response_body function."""

    def test_json_body(self):
        """Test JSON bodies are decoded."""
        assert parse_response_body('{"received": true}') == {"received": True}

    def test_text_body_preserved(self):
        """Test non-JSON bodies are kept as raw text."""
        assert parse_response_body("OK") == {"raw": "OK"}

    def test_empty_body(self):
        """Test an empty body is preserved as empty raw text."""
        assert parse_response_body("") == {"raw": ""}


class TestAttempt:
    """Tests for DeliveryAttemptExecutor.attempt."""

    @pytest.mark.asyncio
    async def test_successful_attempt(self):
        """Test a 200 response with a JSON body."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"ok": True})

        async with make_client(handler) as client:
            executor = DeliveryAttemptExecutor(client)
            result = await executor.attempt(
                URL,
                {"Content-Type": "application/json", "X-Webhook-Event": "job.completed"},
                '{"a":1}',
                timeout=5,
            )

        assert result.status_code == 200
        assert result.is_success is True
        assert result.response_data == {"ok": True}
        assert result.error is None
        assert len(seen) == 1
        assert seen[0].method == "POST"
        assert seen[0].content == b'{"a":1}'
        assert seen[0].headers["X-Webhook-Event"] == "job.completed"

    @pytest.mark.asyncio
    async def test_body_sent_as_utf8(self):
        """Test that the exact body bytes reach the endpoint."""
        bodies: list[bytes] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(request.content)
            return httpx.Response(204)

        async with make_client(handler) as client:
            await DeliveryAttemptExecutor(client).attempt(URL, {}, '{"name":"Café"}')

        assert bodies == ['{"name":"Café"}'.encode()]

    @pytest.mark.asyncio
    async def test_unparsable_body_preserved(self):
        """Test that a text response is kept raw."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="<html>Bad Gateway</html>")

        async with make_client(handler) as client:
            result = await DeliveryAttemptExecutor(client).attempt(URL, {}, "{}")

        assert result.status_code == 500
        assert result.response_text == "<html>Bad Gateway</html>"
        assert result.response_data == {"raw": "<html>Bad Gateway</html>"}

    @pytest.mark.asyncio
    async def test_client_error_status(self):
        """Test that a 404 is reported as a status, not an error."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, text="not found")

        async with make_client(handler) as client:
            result = await DeliveryAttemptExecutor(client).attempt(URL, {}, "{}")

        assert result.status_code == 404
        assert result.is_client_error is True
        assert result.error is None

    @pytest.mark.asyncio
    async def test_hard_timeout_cancels_request(self):
        """Test that a slow endpoint becomes a network failure."""
        cancelled = False

        async def handler(request: httpx.Request) -> httpx.Response:
            nonlocal cancelled
            try:
                await asyncio.sleep(5)
            except asyncio.CancelledError:
                cancelled = True
                raise
            return httpx.Response(200)

        async with make_client(handler) as client:
            result = await DeliveryAttemptExecutor(client).attempt(
                URL, {}, "{}", timeout=0.05
            )

        assert result.status_code is None
        assert result.is_network_error is True
        assert "timed out" in result.error.lower()
        assert cancelled is True

    @pytest.mark.asyncio
    async def test_httpx_timeout(self):
        """Test httpx's own timeout exception."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("read timed out", request=request)

        async with make_client(handler) as client:
            result = await DeliveryAttemptExecutor(client).attempt(URL, {}, "{}")

        assert result.status_code is None
        assert "timed out" in result.error.lower()

    @pytest.mark.asyncio
    async def test_connection_error(self):
        """Test connection failures."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("Connection refused", request=request)

        async with make_client(handler) as client:
            result = await DeliveryAttemptExecutor(client).attempt(URL, {}, "{}")

        assert result.status_code is None
        assert "connection" in result.error.lower()

    @pytest.mark.asyncio
    async def test_unexpected_error(self):
        """Test that other exceptions are captured, not raised."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise RuntimeError("boom")

        async with make_client(handler) as client:
            result = await DeliveryAttemptExecutor(client).attempt(URL, {}, "{}")

        assert result.is_network_error is True
        assert result.error == "boom"

    @pytest.mark.asyncio
    async def test_default_timeout_used(self):
        """Test that the executor's default timeout applies."""

        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(5)
            return httpx.Response(200)

        async with make_client(handler) as client:
            executor = DeliveryAttemptExecutor(client, default_timeout=0.05)
            result = await executor.attempt(URL, {}, "{}")

        assert "0.05s" in result.error

    @pytest.mark.asyncio
    async def test_client_created_per_attempt_without_shared_client(self):
        """Test that a temporary client is opened when none is injected."""
        mock_response = MagicMock()
        mock_response.status_code = 200
        mock_response.text = "OK"

        with patch("httpx.AsyncClient") as mock_client:
            post = AsyncMock(return_value=mock_response)
            mock_client.return_value.__aenter__.return_value.post = post

            result = await DeliveryAttemptExecutor().attempt(URL, {"A": "b"}, "{}", timeout=3)

        mock_client.assert_called_once_with(timeout=3)
        post.assert_awaited_once_with(URL, content=b"{}", headers={"A": "b"})
        assert result.status_code == 200
        assert result.response_data == {"raw": "OK"}
