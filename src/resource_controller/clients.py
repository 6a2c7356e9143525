"""Remote resource clients backed by the Azure SDK for Python.

The reconciler talks to Azure only through ``RemoteClient``. Each concrete
client wraps one management SDK client and converts SDK models into the
provider-neutral ``RemoteResource`` shape the deletion guard inspects.

Not-found responses surface as ``azure.core.exceptions.ResourceNotFoundError``;
every other failure is an ``AzureError``.

SECURITY: Timeouts are enforced on all Azure API calls to prevent indefinite hangs.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from azure.core.credentials import TokenCredential
from azure.core.exceptions import AzureError
from azure.mgmt.compute import ComputeManagementClient
from azure.mgmt.compute.models import (
    ProximityPlacementGroup,
    ProximityPlacementGroupPropertiesIntent,
)
from azure.mgmt.network import NetworkManagementClient
from azure.mgmt.network.models import AddressSpace, Subnet, VirtualNetwork

logger = logging.getLogger(__name__)

# Tag stamped on every resource this controller creates
MANAGED_BY_TAG = "managed-by"
MANAGED_BY_VALUE = "azure-resource-controller"


def parse_resource_name(resource_id: str) -> str:
    """Extract the resource name (last segment) from an Azure resource ID.

    Azure resource IDs follow the pattern:
    /subscriptions/{sub}/resourceGroups/{rg}/providers/{namespace}/{type}/{name}[/{childType}/{childName}]

    Raises:
        ValueError: If the ID has no name segment.
    """
    segments = [s for s in resource_id.split("/") if s]
    if len(segments) < 2 or "providers" not in (s.lower() for s in segments):
        raise ValueError(f"Not an Azure resource ID: {resource_id!r}")
    return segments[-1]


# =============================================================================
# Provider-neutral shapes
# =============================================================================


@dataclass
class RemoteChild:
    """A sub-resource (subnet) as reported by Azure."""

    id: str
    label: str
    address_prefix: str | None = None
    # Network interfaces bound to the subnet
    attached_count: int = 0


@dataclass
class RemoteResource:
    """A managed resource as reported by Azure."""

    id: str
    label: str
    region: str
    tags: dict[str, str] = field(default_factory=dict)
    # Compute nodes bound directly to the resource
    attached_count: int = 0
    children: list[RemoteChild] = field(default_factory=list)

    def child_by_label(self, label: str) -> RemoteChild | None:
        for child in self.children:
            if child.label == label:
                return child
        return None


@dataclass(frozen=True)
class PlacementGroupCreateOptions:
    """Parameters for creating a proximity placement group."""

    label: str
    region: str
    group_type: str
    vm_sizes: tuple[str, ...] = ()
    zones: tuple[str, ...] = ()
    tags: tuple[tuple[str, str], ...] = ()


@dataclass(frozen=True)
class SubnetCreateOptions:
    """Parameters for creating a subnet."""

    label: str
    address_prefix: str


@dataclass(frozen=True)
class VirtualNetworkCreateOptions:
    """Parameters for creating a virtual network with its subnets."""

    label: str
    region: str
    address_space: tuple[str, ...]
    subnets: tuple[SubnetCreateOptions, ...] = ()
    tags: tuple[tuple[str, str], ...] = ()


CreateOptions = PlacementGroupCreateOptions | VirtualNetworkCreateOptions


class RemoteClient(ABC):
    """Operations the reconciler needs against one Azure resource type."""

    @abstractmethod
    async def list(self) -> list[RemoteResource]:
        """List resources in API order."""

    @abstractmethod
    async def get(self, resource_id: str) -> RemoteResource:
        """Fetch one resource. Raises ResourceNotFoundError if it is gone."""

    @abstractmethod
    async def create(self, options: Any) -> RemoteResource | None:
        """Create a resource from create options."""

    @abstractmethod
    async def delete(self, resource_id: str) -> None:
        """Delete a resource. Raises ResourceNotFoundError if it is gone."""

    async def create_child(self, parent_id: str, options: SubnetCreateOptions) -> RemoteChild:
        """Create a sub-resource under the parent."""
        raise NotImplementedError(f"{type(self).__name__} has no child resources")

    async def delete_child(self, parent_id: str, child_id: str) -> None:
        """Delete a sub-resource. Raises ResourceNotFoundError if it is gone."""
        raise NotImplementedError(f"{type(self).__name__} has no child resources")


# =============================================================================
# Azure implementations
# =============================================================================


class _AzureClient(RemoteClient):
    """Shared plumbing: run blocking SDK calls off the event loop with a timeout."""

    def __init__(self, resource_group_name: str, timeout_seconds: float) -> None:
        self._resource_group = resource_group_name
        self._timeout_seconds = timeout_seconds

    async def _call(self, operation: Callable[[], Any], operation_name: str) -> Any:
        """Execute a blocking SDK call with timeout.

        Raises:
            AzureError: If the call times out or Azure returns an error.
        """
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, operation),
                timeout=self._timeout_seconds,
            )
        except TimeoutError as e:
            logger.error(
                f"{operation_name} timed out",
                extra={
                    "resource_group": self._resource_group,
                    "timeout_seconds": self._timeout_seconds,
                },
            )
            raise AzureError(f"{operation_name} timed out after {self._timeout_seconds}s") from e

    async def _poll(self, begin_operation: Callable[[], Any], operation_name: str) -> Any:
        """Start a long-running operation and wait for its result."""
        poller = await self._call(begin_operation, operation_name)
        return await self._call(poller.result, operation_name)


def _placement_group_to_remote(pg: ProximityPlacementGroup) -> RemoteResource:
    attached = len(pg.virtual_machines or []) + len(pg.virtual_machine_scale_sets or [])
    return RemoteResource(
        id=pg.id,
        label=pg.name,
        region=pg.location,
        tags=dict(pg.tags or {}),
        attached_count=attached,
    )


class AzurePlacementGroupClient(_AzureClient):
    """Proximity placement groups via ComputeManagementClient."""

    def __init__(
        self,
        credential: TokenCredential,
        subscription_id: str,
        resource_group_name: str,
        timeout_seconds: float,
    ) -> None:
        super().__init__(resource_group_name, timeout_seconds)
        self._client = ComputeManagementClient(
            credential=credential,
            subscription_id=subscription_id,
        )

    async def list(self) -> list[RemoteResource]:
        groups = await self._call(
            lambda: list(
                self._client.proximity_placement_groups.list_by_resource_group(self._resource_group)
            ),
            "List placement groups",
        )
        return [_placement_group_to_remote(pg) for pg in groups]

    async def get(self, resource_id: str) -> RemoteResource:
        name = parse_resource_name(resource_id)
        pg = await self._call(
            lambda: self._client.proximity_placement_groups.get(self._resource_group, name),
            "Get placement group",
        )
        return _placement_group_to_remote(pg)

    async def create(self, options: PlacementGroupCreateOptions) -> RemoteResource | None:
        parameters = ProximityPlacementGroup(
            location=options.region,
            proximity_placement_group_type=options.group_type,
            zones=list(options.zones) or None,
            intent=(
                ProximityPlacementGroupPropertiesIntent(vm_sizes=list(options.vm_sizes))
                if options.vm_sizes
                else None
            ),
            tags=dict(options.tags),
        )
        pg = await self._call(
            lambda: self._client.proximity_placement_groups.create_or_update(
                self._resource_group, options.label, parameters
            ),
            "Create placement group",
        )
        if pg is None:
            return None
        return _placement_group_to_remote(pg)

    async def delete(self, resource_id: str) -> None:
        name = parse_resource_name(resource_id)
        await self._call(
            lambda: self._client.proximity_placement_groups.delete(self._resource_group, name),
            "Delete placement group",
        )


def _subnet_to_remote(subnet: Subnet) -> RemoteChild:
    prefix = subnet.address_prefix
    if prefix is None and subnet.address_prefixes:
        prefix = subnet.address_prefixes[0]
    return RemoteChild(
        id=subnet.id,
        label=subnet.name,
        address_prefix=prefix,
        attached_count=len(subnet.ip_configurations or []),
    )


def _virtual_network_to_remote(vnet: VirtualNetwork) -> RemoteResource:
    return RemoteResource(
        id=vnet.id,
        label=vnet.name,
        region=vnet.location,
        tags=dict(vnet.tags or {}),
        children=[_subnet_to_remote(s) for s in vnet.subnets or []],
    )


class AzureVirtualNetworkClient(_AzureClient):
    """Virtual networks and subnets via NetworkManagementClient."""

    def __init__(
        self,
        credential: TokenCredential,
        subscription_id: str,
        resource_group_name: str,
        timeout_seconds: float,
    ) -> None:
        super().__init__(resource_group_name, timeout_seconds)
        self._client = NetworkManagementClient(
            credential=credential,
            subscription_id=subscription_id,
        )

    async def list(self) -> list[RemoteResource]:
        vnets = await self._call(
            lambda: list(self._client.virtual_networks.list(self._resource_group)),
            "List virtual networks",
        )
        return [_virtual_network_to_remote(v) for v in vnets]

    async def get(self, resource_id: str) -> RemoteResource:
        name = parse_resource_name(resource_id)
        vnet = await self._call(
            lambda: self._client.virtual_networks.get(self._resource_group, name),
            "Get virtual network",
        )
        return _virtual_network_to_remote(vnet)

    async def create(self, options: VirtualNetworkCreateOptions) -> RemoteResource | None:
        parameters = VirtualNetwork(
            location=options.region,
            address_space=AddressSpace(address_prefixes=list(options.address_space)),
            subnets=[
                Subnet(name=s.label, address_prefix=s.address_prefix) for s in options.subnets
            ],
            tags=dict(options.tags),
        )
        vnet = await self._poll(
            lambda: self._client.virtual_networks.begin_create_or_update(
                self._resource_group, options.label, parameters
            ),
            "Create virtual network",
        )
        if vnet is None:
            return None
        return _virtual_network_to_remote(vnet)

    async def delete(self, resource_id: str) -> None:
        name = parse_resource_name(resource_id)
        await self._poll(
            lambda: self._client.virtual_networks.begin_delete(self._resource_group, name),
            "Delete virtual network",
        )

    async def create_child(self, parent_id: str, options: SubnetCreateOptions) -> RemoteChild:
        vnet_name = parse_resource_name(parent_id)
        subnet = await self._poll(
            lambda: self._client.subnets.begin_create_or_update(
                self._resource_group,
                vnet_name,
                options.label,
                Subnet(address_prefix=options.address_prefix),
            ),
            "Create subnet",
        )
        return _subnet_to_remote(subnet)

    async def delete_child(self, parent_id: str, child_id: str) -> None:
        vnet_name = parse_resource_name(parent_id)
        subnet_name = parse_resource_name(child_id)
        await self._poll(
            lambda: self._client.subnets.begin_delete(self._resource_group, vnet_name, subnet_name),
            "Delete subnet",
        )


class AzureClientFactory:
    """Builds remote clients per managed identity, reusing them across reconciles.

    ``client_id=None`` selects the controller's default identity.
    """

    def __init__(
        self,
        client_cls: type[AzurePlacementGroupClient] | type[AzureVirtualNetworkClient],
        credential_provider: Callable[[str | None], TokenCredential],
        subscription_id: str,
        resource_group_name: str,
        timeout_seconds: float,
    ) -> None:
        self._client_cls = client_cls
        self._credential_provider = credential_provider
        self._subscription_id = subscription_id
        self._resource_group = resource_group_name
        self._timeout_seconds = timeout_seconds
        self._clients: dict[str | None, RemoteClient] = {}

    def __call__(self, client_id: str | None) -> RemoteClient:
        client = self._clients.get(client_id)
        if client is None:
            client = self._client_cls(
                self._credential_provider(client_id),
                self._subscription_id,
                self._resource_group,
                self._timeout_seconds,
            )
            self._clients[client_id] = client
        return client
