"""Helpers for status conditions.

Conditions follow Kubernetes semantics: the last transition time only moves
when the condition's status changes, so it records when the current state
began. The time-windowed retry relies on this.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from .models import Condition, ConditionStatus, ManagedObject


def get_condition(obj: ManagedObject, condition_type: str) -> Condition | None:
    """Return the condition of the given type, if present."""
    for condition in obj.status.conditions:
        if condition.type == condition_type:
            return condition
    return None


def set_condition(
    obj: ManagedObject,
    condition_type: str,
    status: ConditionStatus,
    reason: str = "",
    message: str = "",
    now: datetime | None = None,
) -> Condition:
    """Set a condition, preserving its transition time if the status is unchanged."""
    now = now or datetime.now(UTC)
    existing = get_condition(obj, condition_type)

    if existing is None:
        condition = Condition(
            type=condition_type,
            status=status,
            reason=reason,
            message=message,
            last_transition_time=now,
        )
        obj.status.conditions.append(condition)
        return condition

    if existing.status != status:
        existing.last_transition_time = now
    existing.status = status
    existing.reason = reason
    existing.message = message
    return existing


def has_stale_condition(
    obj: ManagedObject,
    condition_type: str,
    timeout_seconds: float,
    now: datetime | None = None,
) -> bool:
    """Check whether a condition has held its status for at least the timeout.

    A missing condition is never stale.
    """
    condition = get_condition(obj, condition_type)
    if condition is None:
        return False
    now = now or datetime.now(UTC)
    return now >= condition.last_transition_time + timedelta(seconds=timeout_seconds)
