"""Data model for webhook delivery.

Provides the subscription record read from the store, the per-attempt
result, the terminal outcome of a delivery and the state machine each
delivery walks through.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, HttpUrl, SecretStr

from src.webhooks.errors import InvalidTransitionError


class DeliveryState(str, Enum):
    """Lifecycle state of a single delivery."""

    PENDING = "pending"
    ATTEMPTING = "attempting"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    PERMANENTLY_FAILED = "permanently_failed"
    EXHAUSTED_FAILED = "exhausted_failed"

    @property
    def is_terminal(self) -> bool:
        """Whether no further transition is possible."""
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset(
    {
        DeliveryState.SUCCEEDED,
        DeliveryState.PERMANENTLY_FAILED,
        DeliveryState.EXHAUSTED_FAILED,
    }
)

_TRANSITIONS: dict[DeliveryState, frozenset[DeliveryState]] = {
    DeliveryState.PENDING: frozenset({DeliveryState.ATTEMPTING}),
    DeliveryState.ATTEMPTING: frozenset(
        {
            DeliveryState.SUCCEEDED,
            DeliveryState.PERMANENTLY_FAILED,
            DeliveryState.RETRYING,
            DeliveryState.EXHAUSTED_FAILED,
        }
    ),
    DeliveryState.RETRYING: frozenset({DeliveryState.ATTEMPTING}),
}


class FailureKind(str, Enum):
    """Classification of a failed delivery."""

    CLIENT_REJECTION = "client_rejection"  # 4xx, never retried
    SERVER_TRANSIENT = "server_transient"  # 5xx or network, retried
    EXHAUSTION = "exhaustion"  # Retry budget consumed


class WebhookSubscription(BaseModel):
    """A registered webhook destination.

    The secret is held as a ``SecretStr`` so it is masked in reprs, logs
    and serialized dumps.
    """

    id: str = Field(..., description="Subscription identifier")
    owner_id: str = Field(..., description="Owning user identifier")
    url: HttpUrl = Field(..., description="Endpoint URL")
    secret: SecretStr = Field(..., description="Shared HMAC secret")
    events: set[str] = Field(
        default_factory=set,
        description="Subscribed event names",
    )
    active: bool = Field(default=True, description="Whether deliveries are sent")
    failure_count: int = Field(
        default=0,
        ge=0,
        description="Consecutive failed deliveries",
    )
    last_used_at: datetime | None = Field(
        default=None,
        description="Last successful delivery",
    )
    last_failure_at: datetime | None = Field(
        default=None,
        description="Last failed delivery",
    )

    def subscribes_to(self, event: str) -> bool:
        """Check if this subscription wants an event.

        Args:
            event: Event name.

        Returns:
            True if the event is in the subscribed set.
        """
        return event in self.events


@dataclass
class DeliveryAttemptResult:
    """Normalized result of one HTTP attempt.

    ``status_code`` is None when the request never produced a response
    (timeout, connection failure); ``error`` then describes why.

    Attributes:
        status_code: HTTP status, if a response arrived.
        response_text: Raw response body.
        response_data: Parsed JSON body, or ``{"raw": text}`` when unparsable.
        error: Network-level error description.
        duration_ms: Wall time of the attempt.
    """

    status_code: int | None = None
    response_text: str = ""
    response_data: Any = None
    error: str | None = None
    duration_ms: float = 0.0

    @property
    def is_network_error(self) -> bool:
        """True when no HTTP response was received."""
        return self.status_code is None

    @property
    def is_success(self) -> bool:
        """True for a 2xx response."""
        return self.status_code is not None and 200 <= self.status_code < 300

    @property
    def is_client_error(self) -> bool:
        """True for a 4xx response."""
        return self.status_code is not None and 400 <= self.status_code < 500

    @property
    def is_transient(self) -> bool:
        """True when the attempt may be retried."""
        return not (self.is_success or self.is_client_error)

    @property
    def failure_kind(self) -> FailureKind | None:
        """Failure class of this attempt, None on success."""
        if self.is_success:
            return None
        if self.is_client_error:
            return FailureKind.CLIENT_REJECTION
        return FailureKind.SERVER_TRANSIENT

    def describe(self) -> str:
        """Short description of the attempt for error messages."""
        if self.status_code is None:
            return self.error or "Unknown network error"
        return f"HTTP {self.status_code}"

    def to_record(self, attempt: int) -> AttemptRecord:
        """Summarize this result as entry ``attempt`` of a delivery history."""
        return AttemptRecord(
            attempt=attempt,
            status_code=self.status_code,
            error=self.error,
            duration_ms=self.duration_ms,
        )


class AttemptRecord(BaseModel):
    """One HTTP attempt as kept in delivery history."""

    attempt: int = Field(..., ge=1, description="1-based attempt number")
    status_code: int | None = Field(default=None, description="HTTP status")
    error: str | None = Field(default=None, description="Network error, if any")
    duration_ms: float = Field(default=0.0, description="Wall time of the attempt")


class DeliveryOutcome(BaseModel):
    """Terminal result of a full retry sequence for one subscription."""

    subscription_id: str | None = Field(
        default=None, description="Subscription the delivery belonged to"
    )
    event: str = Field(..., description="Event name")
    success: bool = Field(..., description="Whether the endpoint accepted it")
    state: DeliveryState = Field(..., description="Terminal delivery state")
    attempts: int = Field(default=0, ge=0, description="Attempts made")
    status_code: int | None = Field(
        default=None, description="Last observed HTTP status"
    )
    response: Any = Field(default=None, description="Last parsed response body")
    error: str | None = Field(default=None, description="Last error, if failed")
    failure_kind: FailureKind | None = Field(
        default=None, description="Failure classification"
    )
    timestamp_ms: int | None = Field(
        default=None, description="Delivery timestamp sent with every attempt"
    )
    payload: str | None = Field(
        default=None, description="Canonical body that was signed and sent"
    )
    attempt_records: list[AttemptRecord] = Field(
        default_factory=list, description="Per-attempt results, in order"
    )
    completed_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When the delivery reached its terminal state",
    )


@dataclass
class DeliveryProgress:
    """Tracks one delivery through its state machine.

    Attributes:
        state: Current state.
        attempts: Attempts started so far.
        history: States visited, in order.
    """

    state: DeliveryState = DeliveryState.PENDING
    attempts: int = 0
    history: list[DeliveryState] = field(
        default_factory=lambda: [DeliveryState.PENDING]
    )

    def advance(self, target: DeliveryState) -> None:
        """Move to ``target``.

        Raises:
            InvalidTransitionError: If ``target`` is not reachable.
        """
        allowed = _TRANSITIONS.get(self.state, frozenset())
        if target not in allowed:
            raise InvalidTransitionError(self.state.value, target.value)
        if target is DeliveryState.ATTEMPTING:
            self.attempts += 1
        self.state = target
        self.history.append(target)

    @property
    def is_terminal(self) -> bool:
        """Whether the delivery has finished."""
        return self.state.is_terminal
