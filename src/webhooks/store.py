"""Collaborator interfaces consumed by the dispatcher.

Delivery code depends only on these protocols. Persistence lives behind
them, so any backend that can answer "which subscriptions want this
event", store a log entry and keep a failure counter will do.

An in-memory implementation is included for local use and tests. It
mirrors production behaviour: subscriptions whose consecutive failure
count reaches the threshold are deactivated and stop receiving events.
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable
from datetime import UTC, datetime
from typing import Any, Protocol

import structlog
from pydantic import BaseModel, Field

from src.config import settings
from src.webhooks.models import AttemptRecord, DeliveryOutcome, WebhookSubscription

logger = structlog.get_logger(__name__)


class SubscriptionStore(Protocol):
    """Read-only source of subscriptions."""

    def active_for(
        self, owner_id: str, event_name: str
    ) -> list[WebhookSubscription] | Awaitable[list[WebhookSubscription]]:
        """Active subscriptions of ``owner_id`` that want ``event_name``."""
        ...


class DeliveryLog(Protocol):
    """Sink for delivery history."""

    def record(
        self, subscription_id: str, outcome: DeliveryOutcome
    ) -> None | Awaitable[None]:
        """Persist the outcome of one delivery."""
        ...


class FailureCounter(Protocol):
    """Consecutive-failure counter per subscription."""

    def reset(self, subscription_id: str) -> None | Awaitable[None]:
        """Set the counter back to zero after a success."""
        ...

    def increment(self, subscription_id: str) -> None | Awaitable[None]:
        """Add one failure."""
        ...


class DeliveryLogEntry(BaseModel):
    """Stored record of one delivery."""

    id: str = Field(
        default_factory=lambda: f"whl_{uuid.uuid4().hex[:12]}",
        description="Log entry identifier",
    )
    subscription_id: str = Field(..., description="Subscription identifier")
    event: str = Field(..., description="Event name")
    success: bool = Field(..., description="Whether delivery succeeded")
    attempts: int = Field(default=0, description="Attempts made")
    status_code: int | None = Field(default=None, description="Last HTTP status")
    response: Any = Field(default=None, description="Last parsed response")
    error: str | None = Field(default=None, description="Error message if failed")
    payload: str | None = Field(default=None, description="Delivered body")
    attempt_records: list[AttemptRecord] = Field(
        default_factory=list, description="Per-attempt results"
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When the entry was written",
    )

    @classmethod
    def from_outcome(
        cls, subscription_id: str, outcome: DeliveryOutcome
    ) -> DeliveryLogEntry:
        """Build a log entry from a delivery outcome."""
        return cls(
            subscription_id=subscription_id,
            event=outcome.event,
            success=outcome.success,
            attempts=outcome.attempts,
            status_code=outcome.status_code,
            response=outcome.response,
            error=outcome.error,
            payload=outcome.payload,
            attempt_records=[r.model_copy() for r in outcome.attempt_records],
        )


class InMemoryWebhookStore:
    """Subscription store, delivery log and failure counter in one object.

    Satisfies ``SubscriptionStore``, ``DeliveryLog`` and ``FailureCounter``.
    """

    def __init__(self, *, failure_threshold: int | None = None) -> None:
        """Initialize the store.

        Args:
            failure_threshold: Consecutive failures that deactivate a
                subscription.
        """
        self._subscriptions: dict[str, WebhookSubscription] = {}
        self._logs: list[DeliveryLogEntry] = []
        self._failure_threshold = (
            failure_threshold
            if failure_threshold is not None
            else settings.WEBHOOK_FAILURE_THRESHOLD
        )
        self._logger = logger.bind(component="webhook_store")

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def add(self, subscription: WebhookSubscription) -> WebhookSubscription:
        """Add or replace a subscription."""
        self._subscriptions[subscription.id] = subscription
        self._logger.debug(
            "subscription_added",
            subscription_id=subscription.id,
            owner_id=subscription.owner_id,
            event_count=len(subscription.events),
        )
        return subscription

    def get(self, subscription_id: str) -> WebhookSubscription | None:
        """Get a subscription by ID."""
        return self._subscriptions.get(subscription_id)

    def active_for(self, owner_id: str, event_name: str) -> list[WebhookSubscription]:
        """Get active subscriptions of an owner for an event.

        Subscriptions at or above the failure threshold are skipped even if
        still flagged active.

        Args:
            owner_id: Owner identifier.
            event_name: Event name.

        Returns:
            Snapshot copies of the matching subscriptions.
        """
        return [
            subscription.model_copy(deep=True)
            for subscription in self._subscriptions.values()
            if subscription.owner_id == owner_id
            and subscription.active
            and subscription.subscribes_to(event_name)
            and subscription.failure_count < self._failure_threshold
        ]

    # ------------------------------------------------------------------
    # Delivery log
    # ------------------------------------------------------------------

    def record(self, subscription_id: str, outcome: DeliveryOutcome) -> None:
        """Append a delivery log entry."""
        self._logs.append(DeliveryLogEntry.from_outcome(subscription_id, outcome))

    def logs_for(self, subscription_id: str, *, limit: int = 50) -> list[DeliveryLogEntry]:
        """List log entries for a subscription, newest first.

        Args:
            subscription_id: Subscription identifier.
            limit: Maximum results.

        Returns:
            List of log entries.
        """
        entries = [e for e in self._logs if e.subscription_id == subscription_id]
        entries.sort(key=lambda e: e.created_at, reverse=True)
        return entries[:limit]

    # ------------------------------------------------------------------
    # Failure counter
    # ------------------------------------------------------------------

    def reset(self, subscription_id: str) -> None:
        """Zero the failure counter and stamp last use."""
        subscription = self._subscriptions.get(subscription_id)
        if subscription is None:
            return
        subscription.failure_count = 0
        subscription.last_used_at = datetime.now(UTC)

    def increment(self, subscription_id: str) -> None:
        """Count a failure, deactivating at the threshold."""
        subscription = self._subscriptions.get(subscription_id)
        if subscription is None:
            return

        subscription.failure_count += 1
        subscription.last_failure_at = datetime.now(UTC)

        if subscription.failure_count >= self._failure_threshold and subscription.active:
            subscription.active = False
            self._logger.warning(
                "subscription_disabled",
                subscription_id=subscription_id,
                failure_count=subscription.failure_count,
            )
