"""Deletion guard and retention policy.

The guard refuses to delete a remote resource while compute nodes are still
attached to it or to any of its children that are about to be deleted. It
never forces deletion: once the wait-for-detach window is exhausted the
decision becomes a terminal failure and the resource is left in place.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from .clients import RemoteChild, RemoteResource
from .config import ReconcileTimings
from .models import ManagedObject, SubnetSpec

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetentionPolicy:
    """Which parts of a managed object survive its deletion."""

    retain_parent: bool
    retained_children: frozenset[str]
    declared_children: frozenset[str]

    @classmethod
    def for_object(cls, obj: ManagedObject) -> RetentionPolicy:
        children = obj.spec.children()
        return cls(
            retain_parent=obj.spec.retain,
            retained_children=frozenset(c.label for c in children if c.retain),
            declared_children=frozenset(c.label for c in children),
        )

    def is_retained(self, label: str) -> bool:
        return label in self.retained_children

    def children_to_delete(self, remote: RemoteResource) -> list[RemoteChild]:
        """Declared, non-retained children that exist remotely, in remote order."""
        return [
            child
            for child in remote.children
            if child.label in self.declared_children and not self.is_retained(child.label)
        ]

    def release_children(self, children: Iterable[SubnetSpec]) -> None:
        """Forget the IDs of non-retained children; retained children keep theirs."""
        for child in children:
            if not child.retain:
                child.subnet_id = None


def count_blocking_dependents(remote: RemoteResource, policy: RetentionPolicy) -> int:
    """Dependents attached to the parent or to any child that will not be retained.

    Undeclared children are never deleted but still hold the deletion.
    """
    count = remote.attached_count
    for child in remote.children:
        if not policy.is_retained(child.label):
            count += child.attached_count
    return count


class GuardAction(str, Enum):
    PROCEED = "proceed"
    WAIT = "wait"
    REFUSE = "refuse"


@dataclass(frozen=True)
class GuardDecision:
    """Outcome of a deletion guard check."""

    action: GuardAction
    dependents: int
    requeue_after: float | None = None

    @property
    def allowed(self) -> bool:
        return self.action == GuardAction.PROCEED


class DeletionGuard:
    """Decides whether deletion may proceed given attached dependents."""

    def __init__(self, timings: ReconcileTimings) -> None:
        self._timings = timings

    def evaluate(
        self,
        remote: RemoteResource,
        obj: ManagedObject,
        policy: RetentionPolicy,
        now: datetime,
    ) -> GuardDecision:
        dependents = count_blocking_dependents(remote, policy)
        if dependents == 0:
            return GuardDecision(GuardAction.PROCEED, 0)

        deletion_timestamp = obj.metadata.deletion_timestamp or now
        deadline = deletion_timestamp + timedelta(
            seconds=self._timings.wait_for_detach_timeout_seconds
        )
        if now < deadline:
            logger.info(
                "Waiting for dependents to detach",
                extra={
                    "object": str(obj.key),
                    "resource_id": remote.id,
                    "dependents": dependents,
                    "deadline": deadline.isoformat(),
                },
            )
            return GuardDecision(
                GuardAction.WAIT,
                dependents,
                requeue_after=self._timings.wait_for_detach_delay_seconds,
            )

        return GuardDecision(GuardAction.REFUSE, dependents)
