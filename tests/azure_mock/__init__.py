"""In-memory stand-ins for Azure and the Kubernetes object store.

This package lets the reconciler run end to end without Azure or a cluster.

Key Features:
- In-memory remote resources with attached dependents and subnets
- Error injection per remote operation
- Object store with resource versions, finalizer-driven erasure, clusters and Secrets
- Recorded events
- Managed Identity simulation

Usage:
    from azure_mock import MockObjectStore, MockRemoteClient, MockEventRecorder

    store = MockObjectStore()
    key = store.add(VIRTUAL_NETWORK, make_virtual_network())
    client = MockRemoteClient()
    reconciler = Reconciler(VIRTUAL_NETWORK, store, lambda _: client, MockEventRecorder())
    result = await reconciler.reconcile(key)

    assert client.state.count() == 1
"""

from .clock import FakeClock
from .credential import MockManagedIdentityCredential, create_mock_credential
from .events import MockEventRecorder, RecordedEvent
from .objects import make_placement_group, make_virtual_network
from .remote import (
    PLACEMENT_GROUP_TYPE,
    VIRTUAL_NETWORK_TYPE,
    MockRemoteClient,
    MockRemoteState,
    make_resource_id,
)
from .store import MockObjectStore

__all__ = [
    "PLACEMENT_GROUP_TYPE",
    "VIRTUAL_NETWORK_TYPE",
    "FakeClock",
    "MockEventRecorder",
    "MockManagedIdentityCredential",
    "MockObjectStore",
    "MockRemoteClient",
    "MockRemoteState",
    "RecordedEvent",
    "create_mock_credential",
    "make_placement_group",
    "make_resource_id",
    "make_virtual_network",
]
