"""Pause signalling.

An object is paused while it carries the paused annotation (any value) or
while its owning cluster has ``spec.paused`` set. Paused objects are left
untouched: no remote calls and no status writes.
"""

from __future__ import annotations

from typing import Any

from .models import PAUSED_ANNOTATION, ManagedObject


def has_paused_annotation(obj: ManagedObject) -> bool:
    return PAUSED_ANNOTATION in obj.metadata.annotations


def is_cluster_paused(cluster: dict[str, Any] | None) -> bool:
    if not cluster:
        return False
    return bool((cluster.get("spec") or {}).get("paused", False))


def is_paused(obj: ManagedObject, cluster: dict[str, Any] | None = None) -> bool:
    """Check whether reconciliation of ``obj`` is suspended."""
    return has_paused_annotation(obj) or is_cluster_paused(cluster)
