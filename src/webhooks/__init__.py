"""Webhook delivery for external integrations.

This module provides:
- sign / verify: HMAC-SHA256 payload signatures
- DeliveryAttemptExecutor: One bounded-time HTTP attempt
- RetryScheduler: Retries with exponential backoff and failure classification
- EventDispatcher: Concurrent, isolated fan-out to subscribers
- Collaborator protocols and an in-memory store
"""

from src.webhooks.dispatcher import (
    EventDispatcher,
    get_event_dispatcher,
    set_event_dispatcher,
)
from src.webhooks.errors import InvalidTransitionError, SignatureHeaderError, WebhookError
from src.webhooks.events import EventPayload, WebhookEvent, canonical_json, event_name
from src.webhooks.executor import DeliveryAttemptExecutor
from src.webhooks.metrics import DeliveryMetrics
from src.webhooks.models import (
    AttemptRecord,
    DeliveryAttemptResult,
    DeliveryOutcome,
    DeliveryProgress,
    DeliveryState,
    FailureKind,
    WebhookSubscription,
)
from src.webhooks.retry import RetryScheduler
from src.webhooks.security import (
    create_signature_headers,
    sign,
    verify,
    verify_from_headers,
)
from src.webhooks.store import (
    DeliveryLog,
    DeliveryLogEntry,
    FailureCounter,
    InMemoryWebhookStore,
    SubscriptionStore,
)

__all__ = [
    # Events
    "EventPayload",
    "WebhookEvent",
    "canonical_json",
    "event_name",
    # Models
    "AttemptRecord",
    "DeliveryAttemptResult",
    "DeliveryOutcome",
    "DeliveryProgress",
    "DeliveryState",
    "FailureKind",
    "WebhookSubscription",
    # Security
    "create_signature_headers",
    "sign",
    "verify",
    "verify_from_headers",
    # Delivery
    "DeliveryAttemptExecutor",
    "RetryScheduler",
    "EventDispatcher",
    "get_event_dispatcher",
    "set_event_dispatcher",
    # Collaborators
    "DeliveryLog",
    "DeliveryLogEntry",
    "FailureCounter",
    "InMemoryWebhookStore",
    "SubscriptionStore",
    # Observability
    "DeliveryMetrics",
    # Errors
    "InvalidTransitionError",
    "SignatureHeaderError",
    "WebhookError",
]
