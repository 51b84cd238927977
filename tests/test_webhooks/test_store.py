"""Tests for the in-memory webhook store."""

from datetime import UTC, datetime, timedelta

import pytest

from src.webhooks.models import (
    AttemptRecord,
    DeliveryOutcome,
    DeliveryState,
    WebhookSubscription,
)
from src.webhooks.store import DeliveryLogEntry, InMemoryWebhookStore


def make_subscription(sub_id: str = "wh_1", **kwargs) -> WebhookSubscription:
    """Create a sample subscription."""
    defaults = {
        "owner_id": "user_1",
        "url": "https://example.com/hook",
        "secret": "whsec_test",
        "events": {"job.completed", "job.failed"},
    }
    defaults.update(kwargs)
    return WebhookSubscription(id=sub_id, **defaults)


def make_outcome(success: bool = True, **kwargs) -> DeliveryOutcome:
    """Create a sample outcome."""
    state = DeliveryState.SUCCEEDED if success else DeliveryState.EXHAUSTED_FAILED
    return DeliveryOutcome(
        event=kwargs.pop("event", "job.completed"),
        success=success,
        state=state,
        attempts=kwargs.pop("attempts", 1),
        **kwargs,
    )


@pytest.fixture
def store():
    """Create store with the default threshold of five."""
    return InMemoryWebhookStore(failure_threshold=5)


# ============================================================================
# Subscription Lookup Tests
# ============================================================================


class TestActiveFor:
    """Tests for active_for."""

    def test_matches_owner_and_event(self, store):
        """Test basic filtering."""
        store.add(make_subscription("wh_1"))
        store.add(make_subscription("wh_2", owner_id="user_2"))
        store.add(make_subscription("wh_3", events={"logo.uploaded"}))

        result = store.active_for("user_1", "job.completed")

        assert [s.id for s in result] == ["wh_1"]

    def test_inactive_skipped(self, store):
        """Test that inactive subscriptions are excluded."""
        store.add(make_subscription("wh_1", active=False))

        assert store.active_for("user_1", "job.completed") == []

    def test_failure_threshold_skipped(self, store):
        """Test that subscriptions at the threshold are excluded."""
        store.add(make_subscription("wh_1", failure_count=5))
        store.add(make_subscription("wh_2", failure_count=4))

        result = store.active_for("user_1", "job.completed")

        assert [s.id for s in result] == ["wh_2"]

    def test_returns_copies(self, store):
        """Test that callers cannot mutate stored subscriptions."""
        store.add(make_subscription("wh_1"))

        store.active_for("user_1", "job.completed")[0].active = False

        assert store.get("wh_1").active is True

    def test_get_missing(self, store):
        """Test getting an unknown subscription."""
        assert store.get("missing") is None


# ============================================================================
# Delivery Log Tests
# ============================================================================


class TestDeliveryLog:
    """Tests for record and logs_for."""

    def test_record_copies_outcome_fields(self, store):
        """Test that entries mirror the outcome."""
        store.record(
            "wh_1",
            make_outcome(
                success=False,
                attempts=4,
                status_code=503,
                response={"raw": "busy"},
                error="HTTP 503 after 4 attempts: busy",
            ),
        )

        [entry] = store.logs_for("wh_1")

        assert entry.id.startswith("whl_")
        assert entry.event == "job.completed"
        assert entry.success is False
        assert entry.attempts == 4
        assert entry.status_code == 503
        assert entry.response == {"raw": "busy"}
        assert entry.error == "HTTP 503 after 4 attempts: busy"

    def test_record_keeps_payload_and_attempt_history(self, store):
        """Test that the delivered body and attempts are persisted."""
        store.record(
            "wh_1",
            make_outcome(
                success=True,
                attempts=2,
                payload='{"jobId":"j1"}',
                attempt_records=[
                    AttemptRecord(attempt=1, error="Connection error: refused"),
                    AttemptRecord(attempt=2, status_code=200, duration_ms=12.5),
                ],
            ),
        )

        [entry] = store.logs_for("wh_1")

        assert entry.payload == '{"jobId":"j1"}'
        assert [r.attempt for r in entry.attempt_records] == [1, 2]
        assert entry.attempt_records[0].error == "Connection error: refused"
        assert entry.attempt_records[1].status_code == 200

    def test_logs_filtered_by_subscription(self, store):
        """Test that logs are per subscription."""
        store.record("wh_1", make_outcome())
        store.record("wh_2", make_outcome())

        assert len(store.logs_for("wh_1")) == 1
        assert store.logs_for("wh_3") == []

    def test_logs_newest_first_with_limit(self, store):
        """Test ordering and limit."""
        base = datetime(2024, 1, 1, tzinfo=UTC)
        for i in range(5):
            store._logs.append(
                DeliveryLogEntry(
                    subscription_id="wh_1",
                    event=f"event.{i}",
                    success=True,
                    created_at=base + timedelta(minutes=i),
                )
            )

        result = store.logs_for("wh_1", limit=3)

        assert [e.event for e in result] == ["event.4", "event.3", "event.2"]


# ============================================================================
# Failure Counter Tests
# ============================================================================


class TestFailureCounter:
    """Tests for reset and increment."""

    def test_increment(self, store):
        """Test counting failures."""
        store.add(make_subscription("wh_1"))

        store.increment("wh_1")
        store.increment("wh_1")

        subscription = store.get("wh_1")
        assert subscription.failure_count == 2
        assert subscription.last_failure_at is not None
        assert subscription.active is True

    def test_deactivates_at_threshold(self, store):
        """Test auto-disable after consecutive failures."""
        store.add(make_subscription("wh_1"))

        for _ in range(5):
            store.increment("wh_1")

        assert store.get("wh_1").active is False
        assert store.active_for("user_1", "job.completed") == []

    def test_custom_threshold(self):
        """Test a non-default threshold."""
        store = InMemoryWebhookStore(failure_threshold=2)
        store.add(make_subscription("wh_1"))

        store.increment("wh_1")
        assert store.get("wh_1").active is True

        store.increment("wh_1")
        assert store.get("wh_1").active is False

    def test_reset(self, store):
        """Test that a success clears the counter."""
        store.add(make_subscription("wh_1", failure_count=3))

        store.reset("wh_1")

        subscription = store.get("wh_1")
        assert subscription.failure_count == 0
        assert subscription.last_used_at is not None

    def test_unknown_subscription_ignored(self, store):
        """Test that counters for deleted subscriptions are no-ops."""
        store.reset("missing")
        store.increment("missing")

        assert store.get("missing") is None
