"""Pydantic models for the managed custom resources.

These models provide:
1. Type-safe parsing of the objects read from the object store
2. Validation at the boundary (fail fast, fail loudly)
3. Clean serialization back to the camelCase manifest the store expects
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, Field, field_validator

API_GROUP = "infrastructure.cluster.x-k8s.io"
API_VERSION = "v1alpha1"
GROUP_VERSION = f"{API_GROUP}/{API_VERSION}"

# Finalizer written by older releases; removed alongside the kind finalizer
LEGACY_GROUP_FINALIZER = GROUP_VERSION

PLACEMENT_GROUP_FINALIZER = f"azureplacementgroup.{API_GROUP}"
VIRTUAL_NETWORK_FINALIZER = f"azurevirtualnetwork.{API_GROUP}"

CLUSTER_NAME_LABEL = "cluster.x-k8s.io/cluster-name"
PAUSED_ANNOTATION = "cluster.x-k8s.io/paused"

READY_CONDITION = "Ready"


@dataclass(frozen=True)
class ObjectKey:
    """Namespaced name of a managed object."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


# =============================================================================
# Metadata and Status
# =============================================================================


class ObjectMeta(BaseModel):
    """Subset of Kubernetes object metadata the controller reads and writes."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    name: Annotated[str, Field(min_length=1, max_length=253)]
    namespace: str = "default"
    uid: str | None = None
    resource_version: str | None = Field(None, alias="resourceVersion")
    generation: int | None = None
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    finalizers: list[str] = Field(default_factory=list)
    creation_timestamp: datetime | None = Field(None, alias="creationTimestamp")
    deletion_timestamp: datetime | None = Field(None, alias="deletionTimestamp")


class ConditionStatus(str, Enum):
    """Kubernetes condition status values."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class Condition(BaseModel):
    """A timestamped observation of one aspect of the object's state."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    type: str
    status: ConditionStatus
    reason: str = ""
    message: str = ""
    last_transition_time: datetime = Field(alias="lastTransitionTime")


class FailureReason(str, Enum):
    """Machine-readable terminal failure reasons written to status."""

    CREATE_PLACEMENT_GROUP = "CreatePlacementGroupError"
    DELETE_PLACEMENT_GROUP = "DeletePlacementGroupError"
    CREATE_VIRTUAL_NETWORK = "CreateVirtualNetworkError"
    DELETE_VIRTUAL_NETWORK = "DeleteVirtualNetworkError"
    UNKNOWN = "UnknownError"


class ResourceStatus(BaseModel):
    """Observed state, authored by the controller."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    ready: bool = False
    failure_reason: FailureReason | None = Field(None, alias="failureReason")
    failure_message: str | None = Field(None, alias="failureMessage")
    conditions: list[Condition] = Field(default_factory=list)


# =============================================================================
# Specs
# =============================================================================


class CredentialsRef(BaseModel):
    """Reference to a Secret holding the managed identity to act as.

    The Secret carries a ``clientId`` key naming a user-assigned managed
    identity. It never carries secret material.
    """

    model_config = {"extra": "ignore"}

    name: Annotated[str, Field(min_length=1)]
    namespace: str | None = None


class SubnetSpec(BaseModel):
    """Desired subnet of a virtual network."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    label: Annotated[str, Field(min_length=1, max_length=80)]
    address_prefix: str = Field(alias="addressPrefix")
    subnet_id: str | None = Field(None, alias="subnetID")

    # Keep the subnet in Azure when the owning object is deleted
    retain: bool = False

    @field_validator("address_prefix")
    @classmethod
    def validate_cidr(cls, v: str) -> str:
        if "/" not in v:
            raise ValueError("addressPrefix must be in CIDR notation (e.g., 10.0.0.0/24)")
        try:
            ipaddress.ip_network(v, strict=False)
        except ValueError as e:
            raise ValueError(f"addressPrefix is not a valid CIDR: {v}") from e
        return v


class ManagedSpec(BaseModel):
    """Fields shared by every managed resource spec."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    # Azure resource ID; None until the resource is created or adopted
    resource_id: str | None = Field(None, alias="resourceID")
    region: Annotated[str, Field(min_length=1)]

    # Keep the Azure resource when the object is deleted
    retain: bool = False

    credentials_ref: CredentialsRef | None = Field(None, alias="credentialsRef")

    def children(self) -> list[SubnetSpec]:
        """Child resource descriptors; empty for resources without children."""
        return []


class PlacementGroupType(str, Enum):
    """Azure proximity placement group types."""

    STANDARD = "Standard"
    ULTRA = "Ultra"


class PlacementGroupSpec(ManagedSpec):
    """Desired proximity placement group. Immutable once bound."""

    placement_group_type: PlacementGroupType = Field(
        PlacementGroupType.STANDARD, alias="placementGroupType"
    )
    vm_sizes: list[str] = Field(default_factory=list, alias="vmSizes")
    zones: list[str] = Field(default_factory=list)


class VirtualNetworkSpec(ManagedSpec):
    """Desired virtual network and its subnets."""

    address_space: list[str] = Field(alias="addressSpace", min_length=1)
    description: str | None = None
    subnets: list[SubnetSpec] = Field(default_factory=list)

    @field_validator("address_space")
    @classmethod
    def validate_address_space(cls, v: list[str]) -> list[str]:
        for prefix in v:
            if "/" not in prefix:
                raise ValueError("addressSpace entries must be in CIDR notation")
        return v

    @field_validator("subnets")
    @classmethod
    def validate_unique_labels(cls, v: list[SubnetSpec]) -> list[SubnetSpec]:
        labels = [s.label for s in v]
        if len(labels) != len(set(labels)):
            raise ValueError("subnet labels must be unique")
        return v

    def children(self) -> list[SubnetSpec]:
        return self.subnets


# =============================================================================
# Managed Objects
# =============================================================================


class ManagedObject(BaseModel):
    """A declarative object under reconciliation."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    api_version: str = Field(GROUP_VERSION, alias="apiVersion")
    kind: str = ""
    metadata: ObjectMeta
    spec: ManagedSpec
    status: ResourceStatus = Field(default_factory=ResourceStatus)

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(namespace=self.metadata.namespace, name=self.metadata.name)

    @property
    def is_deleting(self) -> bool:
        return self.metadata.deletion_timestamp is not None

    def has_finalizer(self, finalizer: str) -> bool:
        return finalizer in self.metadata.finalizers

    def add_finalizer(self, finalizer: str) -> bool:
        """Add a finalizer. Returns True if the object changed."""
        if finalizer in self.metadata.finalizers:
            return False
        self.metadata.finalizers.append(finalizer)
        return True

    def remove_finalizer(self, finalizer: str) -> bool:
        """Remove a finalizer. Returns True if the object changed."""
        if finalizer not in self.metadata.finalizers:
            return False
        self.metadata.finalizers = [f for f in self.metadata.finalizers if f != finalizer]
        return True

    def to_manifest(self) -> dict[str, Any]:
        """Serialize to the camelCase manifest stored in the object store."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ManagedPlacementGroup(ManagedObject):
    """AzurePlacementGroup custom resource."""

    kind: str = "AzurePlacementGroup"
    spec: PlacementGroupSpec


class ManagedVirtualNetwork(ManagedObject):
    """AzureVirtualNetwork custom resource."""

    kind: str = "AzureVirtualNetwork"
    spec: VirtualNetworkSpec
