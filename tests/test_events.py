"""
Tests for source coordination events.
"""

from unittest.mock import Mock

import pytest

from fpl_gateway.orchestrator.events import (
    CircuitOpened,
    EventPublisher,
    SourceRateLimited,
    SourceSwitched,
)


class TestEvents:
    """Test event payloads."""

    def test_to_dict_includes_type(self):
        event = SourceSwitched("api_football", previous="rapidapi_fpl", operation="teams", timestamp=100.0)

        assert event.to_dict() == {
            "event_type": "source_switched",
            "source": "api_football",
            "timestamp": 100.0,
            "previous": "rapidapi_fpl",
            "operation": "teams",
            "reason": "fallback",
        }

    def test_events_are_immutable(self):
        event = CircuitOpened("rapidapi_fpl", next_attempt_at=60.0)

        with pytest.raises(AttributeError):
            event.source = "api_football"


class TestEventPublisher:
    """Test listener dispatch and history."""

    def test_listeners_called_in_order(self):
        publisher = EventPublisher()
        calls = []
        publisher.add_listener(lambda e: calls.append(("first", e.event_type)))
        publisher.add_listener(lambda e: calls.append(("second", e.event_type)))

        publisher.publish(CircuitOpened("rapidapi_fpl"))

        assert calls == [("first", "circuit_opened"), ("second", "circuit_opened")]

    def test_failing_listener_does_not_interrupt(self):
        publisher = EventPublisher()
        broken = Mock(side_effect=RuntimeError("listener bug"))
        healthy = Mock()
        publisher.add_listener(broken)
        publisher.add_listener(healthy)

        publisher.publish(SourceRateLimited("api_football", day_exhausted=True))

        healthy.assert_called_once()

    def test_remove_listener(self):
        publisher = EventPublisher()
        listener = Mock()
        publisher.add_listener(listener)
        publisher.remove_listener(listener)
        publisher.remove_listener(listener)

        publisher.publish(CircuitOpened("rapidapi_fpl"))

        listener.assert_not_called()

    def test_recent_history_bounded_and_filtered(self):
        publisher = EventPublisher(history_size=3)
        for _ in range(4):
            publisher.publish(CircuitOpened("rapidapi_fpl"))
        publisher.publish(SourceRateLimited("api_football"))

        recent = publisher.recent()
        assert len(recent) == 3
        assert recent[-1]["event_type"] == "source_rate_limited"
        assert len(publisher.recent("circuit_opened")) == 2
