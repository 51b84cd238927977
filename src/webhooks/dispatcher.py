"""Webhook event dispatcher.

Fans one event out to every matching subscription concurrently. Each
delivery is isolated: a failure, or even a crash, in one delivery never
skips, cancels or fails another.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import structlog

from src.config import settings
from src.webhooks.events import WebhookEvent, event_name
from src.webhooks.executor import DeliveryAttemptExecutor
from src.webhooks.metrics import DeliveryMetrics
from src.webhooks.models import (
    DeliveryOutcome,
    DeliveryState,
    FailureKind,
    WebhookSubscription,
)
from src.webhooks.retry import RetryScheduler
from src.webhooks.store import DeliveryLog, FailureCounter, SubscriptionStore

logger = structlog.get_logger(__name__)

T = TypeVar("T")


async def _resolve(result: T | Awaitable[T]) -> T:
    """Await ``result`` if a collaborator returned a coroutine."""
    if asyncio.iscoroutine(result):
        return await result
    return result  # type: ignore[return-value]


def _crashed_outcome(
    subscription_id: str, event: str, error: BaseException
) -> DeliveryOutcome:
    return DeliveryOutcome(
        subscription_id=subscription_id,
        event=event,
        success=False,
        state=DeliveryState.EXHAUSTED_FAILED,
        error=f"Delivery crashed: {error!r}",
        failure_kind=FailureKind.EXHAUSTION,
    )


class EventDispatcher:
    """Dispatches events to subscribed webhook endpoints.

    Features:
    - Concurrent fan-out with per-delivery isolation
    - Bounded number of simultaneous HTTP attempts
    - Best-effort delivery logging and failure counting
    - Optional fire-and-forget dispatch with graceful shutdown
    """

    def __init__(
        self,
        store: SubscriptionStore,
        delivery_log: DeliveryLog,
        failure_counter: FailureCounter,
        *,
        scheduler: RetryScheduler | None = None,
        executor: DeliveryAttemptExecutor | None = None,
        metrics: DeliveryMetrics | None = None,
        max_retries: int | None = None,
        max_concurrent_deliveries: int | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            store: Source of subscriptions.
            delivery_log: Sink for delivery outcomes.
            failure_counter: Per-subscription failure counter.
            scheduler: Retry scheduler (built from ``executor`` if omitted).
            executor: Attempt executor for the default scheduler.
            metrics: Metrics collector.
            max_retries: Retries per delivery.
            max_concurrent_deliveries: Max simultaneous HTTP attempts, applied
                to injected schedulers as well.
        """
        self._store = store
        self._delivery_log = delivery_log
        self._failure_counter = failure_counter
        self._max_retries = (
            max_retries if max_retries is not None else settings.WEBHOOK_MAX_RETRIES
        )
        self._max_concurrent = (
            max_concurrent_deliveries
            if max_concurrent_deliveries is not None
            else settings.WEBHOOK_MAX_CONCURRENT_DELIVERIES
        )
        self._semaphore = asyncio.Semaphore(self._max_concurrent)
        self._scheduler = scheduler or RetryScheduler(executor)
        self.metrics = metrics or DeliveryMetrics()
        self._background_tasks: set[asyncio.Task[list[DeliveryOutcome]]] = set()
        self._logger = logger.bind(component="event_dispatcher")

    async def trigger_event(
        self,
        owner_id: str,
        event: WebhookEvent | str,
        payload: Any,
        *,
        wait: bool = True,
    ) -> list[DeliveryOutcome]:
        """Deliver an event to all of an owner's matching subscriptions.

        Never raises for delivery or collaborator problems; every result
        is captured as an outcome.

        Args:
            owner_id: Owner whose subscriptions receive the event.
            event: Event name.
            payload: Event body.
            wait: If False, schedule the batch in the background and
                return immediately.

        Returns:
            One outcome per subscription (empty when not waiting).
        """
        if not wait:
            task = asyncio.create_task(self.trigger_event(owner_id, event, payload))
            self._background_tasks.add(task)
            task.add_done_callback(self._background_tasks.discard)
            return []

        name = event_name(event)
        log = self._logger.bind(owner_id=owner_id, event_name=name)

        try:
            subscriptions = await _resolve(self._store.active_for(owner_id, name))
        except Exception as e:
            log.error("subscription_lookup_failed", error=str(e))
            self.metrics.record_collaborator_error("subscription_store.active_for")
            return []

        if not subscriptions:
            log.debug("no_subscriptions_matched")
            return []

        log.info("dispatching_event", subscription_count=len(subscriptions))

        results = await asyncio.gather(
            *(self._run(subscription, name, payload) for subscription in subscriptions),
            return_exceptions=True,
        )

        outcomes = [
            result
            if isinstance(result, DeliveryOutcome)
            else _crashed_outcome(subscription.id, name, result)
            for subscription, result in zip(subscriptions, results, strict=True)
        ]

        log.info(
            "event_dispatched",
            subscription_count=len(subscriptions),
            succeeded=sum(1 for o in outcomes if o.success),
            failed=sum(1 for o in outcomes if not o.success),
        )

        return outcomes

    async def _run(
        self,
        subscription: WebhookSubscription,
        event: str,
        payload: Any,
    ) -> DeliveryOutcome:
        """Deliver to one subscription and report the outcome."""
        outcome: DeliveryOutcome | None = None
        try:
            outcome = await self._scheduler.deliver(
                str(subscription.url),
                subscription.secret,
                event,
                payload,
                max_retries=self._max_retries,
                subscription_id=subscription.id,
                attempt_guard=self._semaphore,
            )
        except Exception as e:
            outcome = _crashed_outcome(subscription.id, event, e)
            self._logger.error(
                "delivery_crashed",
                subscription_id=subscription.id,
                event_name=event,
                error=str(e),
                error_type=type(e).__name__,
            )
        finally:
            # Cancellation leaves no outcome to report.
            if outcome is not None:
                await self._report(subscription.id, outcome)
        return outcome

    async def _report(self, subscription_id: str, outcome: DeliveryOutcome) -> None:
        """Hand an outcome to the log and failure counter.

        Each call is guarded separately so a broken log does not stop the
        counter update, and neither affects the dispatch.
        """
        self.metrics.record_outcome(outcome)

        await self._guarded(
            "delivery_log.record",
            subscription_id,
            lambda: self._delivery_log.record(subscription_id, outcome),
        )

        if outcome.success:
            await self._guarded(
                "failure_counter.reset",
                subscription_id,
                lambda: self._failure_counter.reset(subscription_id),
            )
        else:
            await self._guarded(
                "failure_counter.increment",
                subscription_id,
                lambda: self._failure_counter.increment(subscription_id),
            )

    async def _guarded(
        self,
        operation: str,
        subscription_id: str,
        call: Callable[[], Any],
    ) -> None:
        try:
            await _resolve(call())
        except Exception as e:
            self.metrics.record_collaborator_error(operation)
            self._logger.warning(
                "collaborator_error",
                operation=operation,
                subscription_id=subscription_id,
                error=str(e),
            )

    @property
    def pending_count(self) -> int:
        """Background batches still running."""
        return len(self._background_tasks)

    async def shutdown(self) -> None:
        """Wait for background batches to finish."""
        if self._background_tasks:
            self._logger.info(
                "waiting_for_pending_deliveries",
                count=len(self._background_tasks),
            )
            await asyncio.gather(*self._background_tasks, return_exceptions=True)


# Global dispatcher instance
_dispatcher: EventDispatcher | None = None


def get_event_dispatcher() -> EventDispatcher:
    """Get the global event dispatcher.

    Returns:
        The dispatcher installed with ``set_event_dispatcher``.

    Raises:
        RuntimeError: If no dispatcher has been installed.
    """
    if _dispatcher is None:
        raise RuntimeError("Event dispatcher not configured; call set_event_dispatcher()")
    return _dispatcher


def set_event_dispatcher(dispatcher: EventDispatcher | None) -> None:
    """Set the global event dispatcher.

    Args:
        dispatcher: EventDispatcher instance, or None to clear it.
    """
    global _dispatcher
    _dispatcher = dispatcher
