"""Filters applied where object changes are turned into reconcile requests."""

from __future__ import annotations

from .models import PAUSED_ANNOTATION, ManagedObject


def is_resource_id_bind(old: ManagedObject, new: ManagedObject) -> bool:
    """True when the only interesting change is the controller binding the resource ID."""
    return old.spec.resource_id is None and new.spec.resource_id is not None


def should_enqueue_update(old: ManagedObject, new: ManagedObject) -> bool:
    """Decide whether an observed update warrants a reconcile.

    The controller's own ``resourceID: None -> value`` write is suppressed so
    that a successful create does not immediately trigger a redundant pass.
    Deletion, spec generation and pause changes are enqueued.
    """
    if old.metadata.deletion_timestamp != new.metadata.deletion_timestamp:
        return True
    if is_resource_id_bind(old, new):
        return False
    if old.metadata.generation != new.metadata.generation:
        return True
    return (PAUSED_ANNOTATION in old.metadata.annotations) != (
        PAUSED_ANNOTATION in new.metadata.annotations
    )
