"""Retry scheduling for a single webhook delivery.

Signs the payload once, then drives attempts with exponential backoff
(1, 2, 4, ... time units) until the endpoint accepts it, rejects it with
a 4xx, or the retry budget runs out.
"""

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from pydantic import SecretStr
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

from src.config import settings
from src.webhooks.events import EventPayload, WebhookEvent, canonical_json, event_name
from src.webhooks.executor import DeliveryAttemptExecutor
from src.webhooks.models import (
    AttemptRecord,
    DeliveryAttemptResult,
    DeliveryOutcome,
    DeliveryProgress,
    DeliveryState,
    FailureKind,
)
from src.webhooks.security import (
    EVENT_HEADER,
    create_signature_headers,
    current_timestamp_ms,
)

logger = structlog.get_logger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]


def _attempts_label(count: int) -> str:
    return f"{count} attempt" if count == 1 else f"{count} attempts"


class RetryScheduler:
    """Delivers one payload to one endpoint with retries.

    Features:
    - One signature and timestamp shared by every attempt
    - 4xx stops immediately, 5xx and network failures are retried
    - Uncapped exponential backoff unless a maximum is configured
    - Injectable sleep and clock for deterministic tests
    """

    def __init__(
        self,
        executor: DeliveryAttemptExecutor | None = None,
        *,
        timeout: float | None = None,
        time_unit_seconds: float | None = None,
        max_backoff_seconds: float | None = None,
        user_agent: str | None = None,
        sleep: SleepFunc | None = None,
        clock: Callable[[], int] | None = None,
        attempt_guard: contextlib.AbstractAsyncContextManager[Any] | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            executor: Attempt executor (a default one is created if omitted).
            timeout: Per-attempt timeout in seconds.
            time_unit_seconds: Length of one backoff unit.
            max_backoff_seconds: Optional cap on a single wait.
            user_agent: User-Agent header value.
            sleep: Coroutine used to wait between attempts.
            clock: Returns milliseconds since the epoch.
            attempt_guard: Async context manager held around each attempt,
                e.g. a semaphore shared by a dispatcher.
        """
        self._executor = executor or DeliveryAttemptExecutor()
        self._timeout = timeout if timeout is not None else settings.WEBHOOK_TIMEOUT_SECONDS
        self._time_unit = (
            time_unit_seconds
            if time_unit_seconds is not None
            else settings.WEBHOOK_BACKOFF_SECONDS
        )
        self._max_backoff = (
            max_backoff_seconds
            if max_backoff_seconds is not None
            else settings.WEBHOOK_MAX_BACKOFF_SECONDS
        )
        self._user_agent = user_agent or settings.WEBHOOK_USER_AGENT
        self._sleep = sleep or asyncio.sleep
        self._clock = clock or current_timestamp_ms
        self._attempt_guard = attempt_guard
        self._logger = logger.bind(component="retry_scheduler")

    def build_headers(
        self,
        body: str,
        secret: str,
        event: str,
        timestamp_ms: int,
    ) -> dict[str, str]:
        """Build the request headers for a delivery.

        Args:
            body: Canonical payload string.
            secret: Subscription secret.
            event: Event name.
            timestamp_ms: Delivery timestamp.

        Returns:
            Header dictionary.
        """
        return {
            "Content-Type": "application/json",
            "User-Agent": self._user_agent,
            EVENT_HEADER: event,
            **create_signature_headers(body, secret, timestamp_ms),
        }

    def _wait_strategy(self) -> wait_exponential:
        # Waits 2**n time units before retry n (n from 0).
        if self._max_backoff is None:
            return wait_exponential(multiplier=self._time_unit, exp_base=2)
        return wait_exponential(
            multiplier=self._time_unit, exp_base=2, max=self._max_backoff
        )

    async def deliver(
        self,
        url: str,
        secret: str | SecretStr,
        event: WebhookEvent | str,
        payload: Any,
        *,
        max_retries: int | None = None,
        subscription_id: str | None = None,
        attempt_guard: contextlib.AbstractAsyncContextManager[Any] | None = None,
    ) -> DeliveryOutcome:
        """Deliver a payload, retrying transient failures.

        Args:
            url: Endpoint URL.
            secret: Subscription secret.
            event: Event name.
            payload: Body (any JSON-serializable value or EventPayload).
            max_retries: Retries after the first attempt.
            subscription_id: Included in logs and the outcome.
            attempt_guard: Held around each attempt for this call instead
                of the scheduler's own guard.

        Returns:
            Terminal delivery outcome.

        Raises:
            ValueError: If the payload cannot be serialized as strict JSON.
        """
        name = event_name(event)
        if isinstance(payload, EventPayload):
            body = payload.canonical()
        else:
            body = canonical_json(payload)

        raw_secret = secret.get_secret_value() if isinstance(secret, SecretStr) else secret
        timestamp_ms = self._clock()
        headers = self.build_headers(body, raw_secret, name, timestamp_ms)

        retries = max_retries if max_retries is not None else settings.WEBHOOK_MAX_RETRIES
        retries = max(0, retries)
        progress = DeliveryProgress()
        records: list[AttemptRecord] = []
        guard = attempt_guard if attempt_guard is not None else self._attempt_guard
        log = self._logger.bind(
            subscription_id=subscription_id,
            event_name=name,
            url=url,
        )

        async def attempt_once() -> DeliveryAttemptResult:
            progress.advance(DeliveryState.ATTEMPTING)
            async with guard or contextlib.nullcontext():
                result = await self._executor.attempt(url, headers, body, self._timeout)
            records.append(result.to_record(progress.attempts))
            if not result.is_success:
                log.warning(
                    "delivery_attempt_failed",
                    attempt=progress.attempts,
                    status_code=result.status_code,
                    error=result.error,
                    failure_kind=result.failure_kind.value,
                )
            return result

        def before_sleep(retry_state: RetryCallState) -> None:
            progress.advance(DeliveryState.RETRYING)
            delay = retry_state.next_action.sleep if retry_state.next_action else None
            log.debug(
                "scheduling_retry",
                delay_seconds=delay,
                next_attempt=retry_state.attempt_number + 1,
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(retries + 1),
            wait=self._wait_strategy(),
            retry=retry_if_result(lambda r: r.is_transient),
            retry_error_callback=lambda rs: rs.outcome.result(),
            before_sleep=before_sleep,
            sleep=self._sleep,
        )

        result: DeliveryAttemptResult = await retrying(attempt_once)
        return self._finish(
            progress,
            result,
            event=name,
            subscription_id=subscription_id,
            timestamp_ms=timestamp_ms,
            body=body,
            records=records,
            log=log,
        )

    def _finish(
        self,
        progress: DeliveryProgress,
        result: DeliveryAttemptResult,
        *,
        event: str,
        subscription_id: str | None,
        timestamp_ms: int,
        body: str,
        records: list[AttemptRecord],
        log: Any,
    ) -> DeliveryOutcome:
        """Move to the terminal state and build the outcome."""
        attempts = progress.attempts

        if result.is_success:
            progress.advance(DeliveryState.SUCCEEDED)
            log.info(
                "delivery_succeeded",
                status_code=result.status_code,
                attempts=attempts,
            )
            return DeliveryOutcome(
                subscription_id=subscription_id,
                event=event,
                success=True,
                state=progress.state,
                attempts=attempts,
                status_code=result.status_code,
                response=result.response_data,
                timestamp_ms=timestamp_ms,
                payload=body,
                attempt_records=records,
            )

        if result.is_network_error:
            message = f"{result.describe()} ({_attempts_label(attempts)})"
        else:
            message = f"{result.describe()} after {_attempts_label(attempts)}"
        excerpt = result.response_text[: settings.WEBHOOK_RESPONSE_EXCERPT_LENGTH]
        if excerpt:
            message = f"{message}: {excerpt}"

        if result.is_client_error:
            progress.advance(DeliveryState.PERMANENTLY_FAILED)
            kind = FailureKind.CLIENT_REJECTION
            log.warning(
                "delivery_rejected",
                status_code=result.status_code,
                attempts=attempts,
            )
        else:
            progress.advance(DeliveryState.EXHAUSTED_FAILED)
            kind = FailureKind.EXHAUSTION
            log.error(
                "delivery_failed_permanently",
                status_code=result.status_code,
                error=result.error,
                attempts=attempts,
            )

        return DeliveryOutcome(
            subscription_id=subscription_id,
            event=event,
            success=False,
            state=progress.state,
            attempts=attempts,
            status_code=result.status_code,
            response=result.response_data,
            error=message,
            failure_kind=kind,
            timestamp_ms=timestamp_ms,
            payload=body,
            attempt_records=records,
        )
