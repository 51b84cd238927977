"""Webhook event names and payload canonicalization.

The same canonical string is signed and sent on the wire, so receivers can
verify the signature against the raw request body byte for byte.
"""

import json
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class WebhookEvent(str, Enum):
    """Event names that subscribers can register for.

    Events are organized by category:
    - job.*: Generation job lifecycle events
    - logo.*: Asset upload events
    - export.*: Export packaging events
    """

    # Job events
    JOB_CREATED = "job.created"
    JOB_COMPLETED = "job.completed"
    JOB_FAILED = "job.failed"

    # Asset events
    LOGO_UPLOADED = "logo.uploaded"

    # Export events
    EXPORT_READY = "export.ready"


def event_name(event: WebhookEvent | str) -> str:
    """Normalize an event to its wire name.

    Args:
        event: Enum member or plain event name.

    Returns:
        Event name string, e.g. ``"job.completed"``.
    """
    if isinstance(event, WebhookEvent):
        return event.value
    return event


def canonical_json(body: Any) -> str:
    """Serialize a payload body to its canonical JSON form.

    Compact separators and sorted keys make the output independent of
    dict insertion order. Pydantic models are dumped in JSON mode first.

    Args:
        body: Any JSON-serializable value or pydantic model.

    Returns:
        Canonical JSON string.

    Raises:
        ValueError: If the body contains NaN or infinite floats, which have
            no JSON representation.
    """
    if isinstance(body, BaseModel):
        body = body.model_dump(mode="json")
    return json.dumps(
        body,
        separators=(",", ":"),
        sort_keys=True,
        ensure_ascii=False,
        allow_nan=False,
        default=str,
    )


class EventPayload(BaseModel):
    """An event name together with its serializable body."""

    event: str = Field(..., description="Event name, e.g. job.completed")
    body: Any = Field(default=None, description="Event-specific data")

    @classmethod
    def create(cls, event: WebhookEvent | str, body: Any) -> "EventPayload":
        """Build a payload from an enum member or plain event name."""
        return cls(event=event_name(event), body=body)

    def canonical(self) -> str:
        """Return the canonical string that is signed and transmitted."""
        return canonical_json(self.body)
