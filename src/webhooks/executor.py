"""Single delivery attempt over HTTP.

Performs exactly one POST with a hard timeout and normalizes whatever
happens into a ``DeliveryAttemptResult``. Retrying is left to the caller.
"""

import asyncio
import json
import time

import httpx
import structlog

from src.config import settings
from src.webhooks.models import DeliveryAttemptResult

logger = structlog.get_logger(__name__)


def parse_response_body(text: str) -> object:
    """Parse a response body as JSON, preserving unparsable text.

    Args:
        text: Raw response body.

    Returns:
        Decoded JSON value, or ``{"raw": text}`` if it is not JSON.
    """
    try:
        return json.loads(text)
    except ValueError:
        return {"raw": text}


class DeliveryAttemptExecutor:
    """Sends one webhook request and reports what happened.

    A shared ``httpx.AsyncClient`` can be supplied for connection pooling;
    without one, a client is opened for each attempt.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        default_timeout: float | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            client: Optional shared HTTP client.
            default_timeout: Timeout in seconds when a call gives none.
        """
        self._client = client
        self._default_timeout = (
            default_timeout
            if default_timeout is not None
            else settings.WEBHOOK_TIMEOUT_SECONDS
        )
        self._logger = logger.bind(component="delivery_executor")

    async def attempt(
        self,
        url: str,
        headers: dict[str, str],
        body: str,
        timeout: float | None = None,
    ) -> DeliveryAttemptResult:
        """Make a single delivery attempt.

        The timeout bounds the whole exchange. When it expires the request
        is cancelled and reported as a network failure without a status.

        Args:
            url: Endpoint URL.
            headers: Request headers.
            body: Request body, sent as UTF-8 bytes.
            timeout: Hard timeout in seconds.

        Returns:
            Normalized attempt result.
        """
        timeout = timeout if timeout is not None else self._default_timeout
        started = time.monotonic()

        self._logger.debug("attempting_delivery", url=url, timeout=timeout)

        try:
            async with asyncio.timeout(timeout):
                response = await self._post(url, headers, body, timeout)

        except (TimeoutError, httpx.TimeoutException):
            self._logger.warning("delivery_timeout", url=url, timeout=timeout)
            return DeliveryAttemptResult(
                error=f"Request timed out after {timeout:g}s",
                duration_ms=_elapsed_ms(started),
            )

        except httpx.ConnectError as e:
            self._logger.warning("delivery_connection_error", url=url, error=str(e))
            return DeliveryAttemptResult(
                error=f"Connection error: {e}",
                duration_ms=_elapsed_ms(started),
            )

        except Exception as e:
            self._logger.warning(
                "delivery_unexpected_error",
                url=url,
                error=str(e),
                error_type=type(e).__name__,
            )
            return DeliveryAttemptResult(
                error=str(e) or type(e).__name__,
                duration_ms=_elapsed_ms(started),
            )

        text = response.text
        result = DeliveryAttemptResult(
            status_code=response.status_code,
            response_text=text,
            response_data=parse_response_body(text),
            duration_ms=_elapsed_ms(started),
        )

        self._logger.debug(
            "delivery_response_received",
            url=url,
            status_code=response.status_code,
            duration_ms=round(result.duration_ms, 1),
        )

        return result

    async def _post(
        self,
        url: str,
        headers: dict[str, str],
        body: str,
        timeout: float,
    ) -> httpx.Response:
        content = body.encode("utf-8")
        if self._client is not None:
            return await self._client.post(
                url, content=content, headers=headers, timeout=timeout
            )
        async with httpx.AsyncClient(timeout=timeout) as client:
            return await client.post(url, content=content, headers=headers)


def _elapsed_ms(started: float) -> float:
    return (time.monotonic() - started) * 1000
