"""Per-kind wiring: CRD coordinates, finalizers, failure reasons and spec mapping.

The ``*_create_options`` functions are pure: they read only the object and
always produce the same options for the same object.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from .clients import (
    MANAGED_BY_TAG,
    MANAGED_BY_VALUE,
    PlacementGroupCreateOptions,
    SubnetCreateOptions,
    VirtualNetworkCreateOptions,
)
from .config import ReconcileTimings
from .models import (
    API_GROUP,
    API_VERSION,
    PLACEMENT_GROUP_FINALIZER,
    VIRTUAL_NETWORK_FINALIZER,
    FailureReason,
    ManagedObject,
    ManagedPlacementGroup,
    ManagedVirtualNetwork,
)


def _base_tags(obj: ManagedObject) -> tuple[tuple[str, str], ...]:
    return (
        (MANAGED_BY_TAG, MANAGED_BY_VALUE),
        ("k8s-namespace", obj.metadata.namespace),
        ("k8s-name", obj.metadata.name),
    )


def placement_group_create_options(obj: ManagedPlacementGroup) -> PlacementGroupCreateOptions:
    """Map a placement group object to create options."""
    spec = obj.spec
    return PlacementGroupCreateOptions(
        label=obj.metadata.name,
        region=spec.region,
        group_type=spec.placement_group_type.value,
        vm_sizes=tuple(spec.vm_sizes),
        zones=tuple(spec.zones),
        tags=_base_tags(obj),
    )


def subnet_create_options(label: str, address_prefix: str) -> SubnetCreateOptions:
    return SubnetCreateOptions(label=label, address_prefix=address_prefix)


def virtual_network_create_options(obj: ManagedVirtualNetwork) -> VirtualNetworkCreateOptions:
    """Map a virtual network object to create options, subnets included."""
    spec = obj.spec
    return VirtualNetworkCreateOptions(
        label=obj.metadata.name,
        region=spec.region,
        address_space=tuple(spec.address_space),
        subnets=tuple(subnet_create_options(s.label, s.address_prefix) for s in spec.subnets),
        tags=_base_tags(obj) + (("description", spec.description or ""),),
    )


@dataclass(frozen=True)
class ResourceKind:
    """Everything the engine and store need to know about one managed kind."""

    kind: str
    display_name: str
    plural: str
    finalizer: str
    model: type[ManagedObject]
    create_failure: FailureReason
    delete_failure: FailureReason
    create_options: Callable[[Any], Any]
    default_timings: ReconcileTimings = field(default_factory=ReconcileTimings)
    group: str = API_GROUP
    version: str = API_VERSION

    def parse(self, manifest: dict[str, Any]) -> ManagedObject:
        """Validate a raw manifest into this kind's model."""
        return self.model.model_validate(manifest)

    def credentials_finalizer(self, obj: ManagedObject) -> str:
        """Finalizer placed on the credentials Secret referenced by ``obj``."""
        return f"{self.kind.lower()}.{obj.metadata.namespace}/{obj.metadata.name}"


PLACEMENT_GROUP = ResourceKind(
    kind="AzurePlacementGroup",
    display_name="placement group",
    plural="azureplacementgroups",
    finalizer=PLACEMENT_GROUP_FINALIZER,
    model=ManagedPlacementGroup,
    create_failure=FailureReason.CREATE_PLACEMENT_GROUP,
    delete_failure=FailureReason.DELETE_PLACEMENT_GROUP,
    create_options=placement_group_create_options,
)

VIRTUAL_NETWORK = ResourceKind(
    kind="AzureVirtualNetwork",
    display_name="virtual network",
    plural="azurevirtualnetworks",
    finalizer=VIRTUAL_NETWORK_FINALIZER,
    model=ManagedVirtualNetwork,
    create_failure=FailureReason.CREATE_VIRTUAL_NETWORK,
    delete_failure=FailureReason.DELETE_VIRTUAL_NETWORK,
    create_options=virtual_network_create_options,
)

KINDS: dict[str, ResourceKind] = {
    PLACEMENT_GROUP.kind: PLACEMENT_GROUP,
    VIRTUAL_NETWORK.kind: VIRTUAL_NETWORK,
}


def resolve_kind(name: str) -> ResourceKind:
    """Look up a kind by its kind name, plural or short alias.

    Raises:
        KeyError: If no kind matches.
    """
    lowered = name.lower()
    aliases = {"pg": PLACEMENT_GROUP, "placementgroup": PLACEMENT_GROUP, "vnet": VIRTUAL_NETWORK}
    if lowered in aliases:
        return aliases[lowered]
    for kind in KINDS.values():
        if lowered in (kind.kind.lower(), kind.plural):
            return kind
    raise KeyError(f"Unknown kind: {name}")
