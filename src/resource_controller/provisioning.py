"""Idempotent create-or-adopt of the remote resource.

A create that succeeded remotely but was never recorded (crash, lost patch,
conflict) must not produce a duplicate on the next attempt. Before creating,
the remote side is listed and the first resource matching the object's ID
or label is adopted instead.
"""

from __future__ import annotations

import logging

from .clients import RemoteResource
from .errors import InvariantViolationError
from .events import EVENT_TYPE_NORMAL
from .filters import ListFilter
from .kinds import subnet_create_options
from .scope import ResourceScope
from .security import log_security_audit_event

logger = logging.getLogger(__name__)


async def _ensure_children(scope: ResourceScope, remote: RemoteResource) -> None:
    """Bind declared children by label, creating the ones missing remotely."""
    for child in scope.obj.spec.children():
        existing = remote.child_by_label(child.label)
        if existing is None:
            existing = await scope.client.create_child(
                remote.id, subnet_create_options(child.label, child.address_prefix)
            )
            remote.children.append(existing)
            logger.info(
                "Created missing child resource",
                extra={"object": str(scope.obj.key), "label": child.label, "child_id": existing.id},
            )
        child.subnet_id = existing.id


async def create_or_adopt(scope: ResourceScope) -> RemoteResource:
    """Adopt the first matching remote resource or create a new one.

    The resource ID is bound only once every declared child exists, so a
    partial failure is retried through adoption on the next attempt.

    Raises:
        InvariantViolationError: The create call returned no resource and no error.
        AzureError: The remote API failed.
        StoreError: The credentials Secret could not be updated.
    """
    obj = scope.obj
    kind = scope.kind

    await scope.add_credentials_finalizer()

    list_filter = ListFilter(resource_id=obj.spec.resource_id, label=obj.metadata.name)
    matches = list_filter.apply(await scope.client.list())

    if matches:
        remote = matches[0]
        logger.info(
            f"Adopting existing {kind.display_name}",
            extra={"object": str(obj.key), "resource_id": remote.id, "matches": len(matches)},
        )
        action = "Adopted"
    else:
        options = kind.create_options(obj)
        created = await scope.client.create(options)
        if created is None:
            raise InvariantViolationError(
                f"create returned no {kind.display_name} and no error for {obj.key}"
            )
        remote = created
        log_security_audit_event(
            "resource_create", target_resource=remote.id, action="create", result="success"
        )
        logger.info(
            f"Created {kind.display_name}",
            extra={"object": str(obj.key), "resource_id": remote.id},
        )
        action = "Created"

    await _ensure_children(scope, remote)
    obj.spec.resource_id = remote.id

    scope.recorder.event(
        obj,
        EVENT_TYPE_NORMAL,
        "Created",
        f"{action} {kind.display_name} {remote.id}",
    )
    return remote
