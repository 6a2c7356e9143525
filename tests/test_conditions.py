"""Tests for status condition helpers."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from azure_mock import make_virtual_network

from resource_controller.conditions import get_condition, has_stale_condition, set_condition
from resource_controller.kinds import VIRTUAL_NETWORK
from resource_controller.models import READY_CONDITION, ConditionStatus

T0 = datetime(2026, 1, 1, tzinfo=UTC)


def vnet():
    return VIRTUAL_NETWORK.parse(make_virtual_network())


class TestSetCondition:
    """Tests for set_condition."""

    def test_adds_missing_condition(self) -> None:
        """Test a new condition takes the current time."""
        obj = vnet()

        set_condition(obj, READY_CONDITION, ConditionStatus.FALSE, reason="Failed", now=T0)

        condition = get_condition(obj, READY_CONDITION)
        assert condition.status == ConditionStatus.FALSE
        assert condition.last_transition_time == T0

    def test_same_status_keeps_transition_time(self) -> None:
        """Test repeated failures keep the time of the first one."""
        obj = vnet()
        set_condition(obj, READY_CONDITION, ConditionStatus.FALSE, reason="A", now=T0)

        set_condition(
            obj, READY_CONDITION, ConditionStatus.FALSE, reason="B", now=T0 + timedelta(hours=1)
        )

        condition = get_condition(obj, READY_CONDITION)
        assert condition.reason == "B"
        assert condition.last_transition_time == T0
        assert len(obj.status.conditions) == 1

    def test_status_change_moves_transition_time(self) -> None:
        """Test a status flip records the new transition."""
        obj = vnet()
        set_condition(obj, READY_CONDITION, ConditionStatus.FALSE, now=T0)
        later = T0 + timedelta(minutes=5)

        set_condition(obj, READY_CONDITION, ConditionStatus.TRUE, now=later)

        assert get_condition(obj, READY_CONDITION).last_transition_time == later


class TestHasStaleCondition:
    """Tests for has_stale_condition."""

    def test_missing_condition_not_stale(self) -> None:
        """Test an object without the condition is never stale."""
        assert has_stale_condition(vnet(), READY_CONDITION, 0, now=T0) is False

    def test_stale_at_boundary(self) -> None:
        """Test the condition turns stale exactly at the timeout."""
        obj = vnet()
        set_condition(obj, READY_CONDITION, ConditionStatus.FALSE, now=T0)

        before = T0 + timedelta(seconds=59)
        at = T0 + timedelta(seconds=60)

        assert has_stale_condition(obj, READY_CONDITION, 60, now=before) is False
        assert has_stale_condition(obj, READY_CONDITION, 60, now=at) is True

    def test_zero_timeout_immediately_stale(self) -> None:
        """Test a zero timeout makes a fresh condition stale."""
        obj = vnet()
        set_condition(obj, READY_CONDITION, ConditionStatus.FALSE, now=T0)

        assert has_stale_condition(obj, READY_CONDITION, 0, now=T0) is True
