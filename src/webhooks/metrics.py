"""Delivery metrics for observability.

Counts delivery results and, separately, failures of the log and counter
collaborators. Those failures never affect a dispatch, so this collector
is where they become visible.
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import structlog

from src.webhooks.models import DeliveryOutcome

logger = structlog.get_logger(__name__)


@dataclass
class DeliveryMetrics:
    """Running counters for webhook deliveries.

    Attributes:
        deliveries_succeeded: Outcomes with success=True.
        deliveries_failed: Outcomes with success=False.
        attempts: Total HTTP attempts across all deliveries.
        failures_by_kind: Failed outcomes keyed by failure kind.
        collaborator_errors: Errors raised by log/counter collaborators,
            keyed by operation name.
        started_at: When collection began.
    """

    deliveries_succeeded: int = 0
    deliveries_failed: int = 0
    attempts: int = 0
    failures_by_kind: Counter[str] = field(default_factory=Counter)
    collaborator_errors: Counter[str] = field(default_factory=Counter)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def record_outcome(self, outcome: DeliveryOutcome) -> None:
        """Record the terminal outcome of one delivery.

        Args:
            outcome: Delivery outcome.
        """
        self.attempts += outcome.attempts
        if outcome.success:
            self.deliveries_succeeded += 1
        else:
            self.deliveries_failed += 1
            if outcome.failure_kind is not None:
                self.failures_by_kind[outcome.failure_kind.value] += 1

    def record_collaborator_error(self, operation: str) -> None:
        """Record a failed collaborator call.

        Args:
            operation: Operation name, e.g. ``"delivery_log.record"``.
        """
        self.collaborator_errors[operation] += 1
        logger.debug("collaborator_error_recorded", operation=operation)

    @property
    def total_deliveries(self) -> int:
        """Deliveries that reached a terminal state."""
        return self.deliveries_succeeded + self.deliveries_failed

    @property
    def success_rate(self) -> float:
        """Fraction of successful deliveries (0-1)."""
        total = self.total_deliveries
        if total == 0:
            return 0.0
        return self.deliveries_succeeded / total

    def get_summary(self) -> dict[str, Any]:
        """Get aggregated summary.

        Returns:
            Dictionary with counters and success rate.
        """
        return {
            "deliveries_succeeded": self.deliveries_succeeded,
            "deliveries_failed": self.deliveries_failed,
            "total_deliveries": self.total_deliveries,
            "attempts": self.attempts,
            "success_rate": self.success_rate,
            "failures_by_kind": dict(self.failures_by_kind),
            "collaborator_errors": dict(self.collaborator_errors),
            "started_at": self.started_at.isoformat(),
        }

    def reset(self) -> None:
        """Clear all counters."""
        self.deliveries_succeeded = 0
        self.deliveries_failed = 0
        self.attempts = 0
        self.failures_by_kind.clear()
        self.collaborator_errors.clear()
        self.started_at = datetime.now(UTC)
