"""Exceptions raised by the webhook subsystem.

Delivery failures are reported as values on ``DeliveryOutcome`` and never
raised past the dispatcher. The exceptions here cover misuse and
receiver-side verification only.

Exception Hierarchy:
    WebhookError (base)
    ├── SignatureHeaderError - Missing or malformed signature headers
    └── InvalidTransitionError - Illegal delivery state change
"""

from typing import Any


class WebhookError(Exception):
    """Base exception for webhook errors.

    Attributes:
        message: Human-readable error message.
        details: Additional error details.
    """

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/API responses."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class SignatureHeaderError(WebhookError):
    """Signature headers are missing or malformed.

    Attributes:
        header: Name of the offending header.
    """

    def __init__(
        self,
        message: str,
        *,
        header: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.header = header

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        base = super().to_dict()
        base["header"] = self.header
        return base


class InvalidTransitionError(WebhookError):
    """A delivery tried to move between states that are not connected."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(
            f"Cannot transition delivery from {current} to {target}",
            details={"current": current, "target": target},
        )
        self.current = current
        self.target = target
