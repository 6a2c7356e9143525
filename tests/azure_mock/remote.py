"""Mock Azure remote state and client.

Provides an in-memory stand-in for the placement group and virtual network
APIs with error injection and call recording.
"""

from __future__ import annotations

import copy
from typing import Any

from azure.core.exceptions import ResourceNotFoundError

from resource_controller.clients import (
    RemoteChild,
    RemoteClient,
    RemoteResource,
    SubnetCreateOptions,
)

SUBSCRIPTION_ID = "00000000-0000-0000-0000-000000000000"
RESOURCE_GROUP = "rg-test"

PLACEMENT_GROUP_TYPE = "Microsoft.Compute/proximityPlacementGroups"
VIRTUAL_NETWORK_TYPE = "Microsoft.Network/virtualNetworks"


def make_resource_id(resource_type: str, name: str) -> str:
    return (
        f"/subscriptions/{SUBSCRIPTION_ID}/resourceGroups/{RESOURCE_GROUP}"
        f"/providers/{resource_type}/{name}"
    )


class MockRemoteState:
    """In-memory resources of one type, kept in insertion (API) order."""

    def __init__(self, resource_type: str = VIRTUAL_NETWORK_TYPE) -> None:
        self.resource_type = resource_type
        self.resources: dict[str, RemoteResource] = {}

    def add(
        self,
        label: str,
        region: str = "westeurope",
        attached_count: int = 0,
        children: list[tuple[str, str, int]] | None = None,
        tags: dict[str, str] | None = None,
    ) -> RemoteResource:
        """Add a resource. ``children`` are (label, address_prefix, attached_count)."""
        resource_id = make_resource_id(self.resource_type, label)
        resource = RemoteResource(
            id=resource_id,
            label=label,
            region=region,
            tags=dict(tags or {}),
            attached_count=attached_count,
            children=[
                RemoteChild(
                    id=f"{resource_id}/subnets/{child_label}",
                    label=child_label,
                    address_prefix=prefix,
                    attached_count=attached,
                )
                for child_label, prefix, attached in children or []
            ],
        )
        self.resources[resource_id.lower()] = resource
        return resource

    def find(self, resource_id: str) -> RemoteResource | None:
        return self.resources.get(resource_id.lower())

    def find_by_label(self, label: str) -> RemoteResource | None:
        for resource in self.resources.values():
            if resource.label == label:
                return resource
        return None

    def count(self) -> int:
        return len(self.resources)


class MockRemoteClient(RemoteClient):
    """RemoteClient over MockRemoteState.

    Failures are injected per operation name (``list``, ``get``, ``create``,
    ``delete``, ``create_child``, ``delete_child``) and consumed in order.
    """

    def __init__(
        self, state: MockRemoteState | None = None, supports_children: bool = True
    ) -> None:
        self.state = state or MockRemoteState()
        self.supports_children = supports_children
        self.calls: list[tuple[str, Any]] = []
        self.create_returns_none = False
        self._failures: dict[str, list[Exception]] = {}

    def fail(self, operation: str, error: Exception, times: int = 1) -> None:
        """Make the next ``times`` calls of ``operation`` raise ``error``."""
        self._failures.setdefault(operation, []).extend([error] * times)

    def call_count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)

    def _record(self, operation: str, argument: Any = None) -> None:
        self.calls.append((operation, argument))
        pending = self._failures.get(operation)
        if pending:
            raise pending.pop(0)

    def _require(self, resource_id: str) -> RemoteResource:
        resource = self.state.find(resource_id)
        if resource is None:
            raise ResourceNotFoundError(f"Resource {resource_id} not found")
        return resource

    async def list(self) -> list[RemoteResource]:
        self._record("list")
        return [copy.deepcopy(r) for r in self.state.resources.values()]

    async def get(self, resource_id: str) -> RemoteResource:
        self._record("get", resource_id)
        return copy.deepcopy(self._require(resource_id))

    async def create(self, options: Any) -> RemoteResource | None:
        self._record("create", options)
        if self.create_returns_none:
            return None
        resource = self.state.add(
            options.label,
            region=options.region,
            children=[(s.label, s.address_prefix, 0) for s in getattr(options, "subnets", ())],
            tags=dict(options.tags),
        )
        return copy.deepcopy(resource)

    async def delete(self, resource_id: str) -> None:
        self._record("delete", resource_id)
        self._require(resource_id)
        del self.state.resources[resource_id.lower()]

    async def create_child(self, parent_id: str, options: SubnetCreateOptions) -> RemoteChild:
        if not self.supports_children:
            return await super().create_child(parent_id, options)
        self._record("create_child", options)
        parent = self._require(parent_id)
        child = RemoteChild(
            id=f"{parent.id}/subnets/{options.label}",
            label=options.label,
            address_prefix=options.address_prefix,
        )
        parent.children.append(child)
        return copy.deepcopy(child)

    async def delete_child(self, parent_id: str, child_id: str) -> None:
        if not self.supports_children:
            return await super().delete_child(parent_id, child_id)
        self._record("delete_child", child_id)
        parent = self._require(parent_id)
        remaining = [c for c in parent.children if c.id.lower() != child_id.lower()]
        if len(remaining) == len(parent.children):
            raise ResourceNotFoundError(f"Subnet {child_id} not found")
        parent.children = remaining
