"""Desired-state object store backed by Kubernetes custom resources.

The reconciler never touches the Kubernetes API directly; it goes through
``ObjectStore`` so tests can substitute an in-memory store. Writes use
optimistic concurrency: the object's ``resourceVersion`` is sent with every
replace and a stale version is rejected with ``ObjectConflictError``.

Objects whose deletion timestamp is set and whose finalizer list becomes
empty are erased by the API server.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from kubernetes import client, config
from kubernetes.client import ApiException

from .models import CLUSTER_NAME_LABEL, CredentialsRef, ManagedObject, ObjectKey

if TYPE_CHECKING:
    from .kinds import ResourceKind

logger = logging.getLogger(__name__)

CLUSTER_API_GROUP = "cluster.x-k8s.io"
CLUSTER_API_VERSION = "v1beta1"
CLUSTER_PLURAL = "clusters"

DEFAULT_STORE_TIMEOUT_SECONDS = 30


class StoreError(Exception):
    """Base class for object store failures."""

    pass


class ObjectNotFoundError(StoreError):
    """Raised when the requested object does not exist."""

    pass


class ObjectConflictError(StoreError):
    """Raised when a write is rejected because the object changed underneath."""

    pass


class ObjectStore(ABC):
    """Async access to managed objects and their collaborators."""

    @abstractmethod
    async def get(self, kind: ResourceKind, key: ObjectKey) -> ManagedObject:
        """Fetch an object. Raises ObjectNotFoundError if absent."""

    @abstractmethod
    async def list(self, kind: ResourceKind, namespace: str | None = None) -> list[ManagedObject]:
        """List objects of a kind, optionally within one namespace."""

    @abstractmethod
    async def patch(self, kind: ResourceKind, obj: ManagedObject) -> ManagedObject:
        """Persist spec, metadata and status; returns the stored object.

        Raises:
            ObjectNotFoundError: The object was erased.
            ObjectConflictError: ``resourceVersion`` is stale.
        """

    @abstractmethod
    async def get_owner_cluster(self, obj: ManagedObject) -> dict[str, Any] | None:
        """Return the owning cluster named by the cluster-name label.

        Returns None when the object carries no cluster-name label.

        Raises:
            ObjectNotFoundError: The label names a cluster that does not exist.
        """

    @abstractmethod
    async def get_credential_value(self, ref: CredentialsRef, namespace: str, key: str) -> str:
        """Read one key from the referenced Secret."""

    @abstractmethod
    async def add_credentials_finalizer(
        self, ref: CredentialsRef, namespace: str, finalizer: str
    ) -> None:
        """Place a finalizer on the referenced Secret (idempotent)."""

    @abstractmethod
    async def remove_credentials_finalizer(
        self, ref: CredentialsRef, namespace: str, finalizer: str
    ) -> None:
        """Remove a finalizer from the referenced Secret (idempotent, absent Secret is fine)."""


def load_kube_config(in_cluster: bool, kubeconfig: str | None = None) -> None:
    """Load Kubernetes client configuration."""
    if in_cluster:
        config.load_incluster_config()
    else:
        config.load_kube_config(config_file=kubeconfig or None)


def _translate(e: ApiException, what: str) -> StoreError:
    if e.status == 404:
        return ObjectNotFoundError(f"{what} not found")
    if e.status == 409:
        return ObjectConflictError(f"{what} was modified concurrently: {e.reason}")
    return StoreError(f"{what}: {e.status} {e.reason}")


class KubernetesObjectStore(ObjectStore):
    """ObjectStore implementation over the official kubernetes client."""

    def __init__(
        self,
        api_client: client.ApiClient | None = None,
        timeout_seconds: float = DEFAULT_STORE_TIMEOUT_SECONDS,
    ) -> None:
        self._custom = client.CustomObjectsApi(api_client)
        self._core = client.CoreV1Api(api_client)
        self._timeout_seconds = timeout_seconds

    async def _call(self, operation: Callable[[], Any], what: str) -> Any:
        """Run a blocking kubernetes client call off the event loop."""
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, operation),
                timeout=self._timeout_seconds,
            )
        except ApiException as e:
            raise _translate(e, what) from e
        except TimeoutError as e:
            raise StoreError(f"{what}: timed out after {self._timeout_seconds}s") from e

    async def get(self, kind: ResourceKind, key: ObjectKey) -> ManagedObject:
        manifest = await self._call(
            lambda: self._custom.get_namespaced_custom_object(
                kind.group, kind.version, key.namespace, kind.plural, key.name
            ),
            f"{kind.kind} {key}",
        )
        return kind.parse(manifest)

    async def list(self, kind: ResourceKind, namespace: str | None = None) -> list[ManagedObject]:
        if namespace:
            result = await self._call(
                lambda: self._custom.list_namespaced_custom_object(
                    kind.group, kind.version, namespace, kind.plural
                ),
                f"{kind.kind} list",
            )
        else:
            result = await self._call(
                lambda: self._custom.list_cluster_custom_object(
                    kind.group, kind.version, kind.plural
                ),
                f"{kind.kind} list",
            )

        objects = []
        for item in result.get("items", []):
            try:
                objects.append(kind.parse(item))
            except ValueError as e:
                # One malformed object must not stall the others
                name = item.get("metadata", {}).get("name")
                logger.warning(
                    f"Skipping invalid {kind.kind}",
                    extra={"object_name": name, "error": str(e)},
                )
        return objects

    async def patch(self, kind: ResourceKind, obj: ManagedObject) -> ManagedObject:
        key = obj.key
        what = f"{kind.kind} {key}"
        manifest = obj.to_manifest()

        # Status is a subresource; write it first so the main replace carries
        # the resourceVersion it produced.
        updated = await self._call(
            lambda: self._custom.replace_namespaced_custom_object_status(
                kind.group, kind.version, key.namespace, kind.plural, key.name, manifest
            ),
            what,
        )
        version = updated["metadata"]["resourceVersion"]
        manifest = {**manifest, "metadata": {**manifest["metadata"], "resourceVersion": version}}
        updated = await self._call(
            lambda: self._custom.replace_namespaced_custom_object(
                kind.group, kind.version, key.namespace, kind.plural, key.name, manifest
            ),
            what,
        )
        return kind.parse(updated)

    async def get_owner_cluster(self, obj: ManagedObject) -> dict[str, Any] | None:
        cluster_name = obj.metadata.labels.get(CLUSTER_NAME_LABEL)
        if not cluster_name:
            return None
        namespace = obj.metadata.namespace
        return await self._call(
            lambda: self._custom.get_namespaced_custom_object(
                CLUSTER_API_GROUP, CLUSTER_API_VERSION, namespace, CLUSTER_PLURAL, cluster_name
            ),
            f"Cluster {namespace}/{cluster_name}",
        )

    async def get_credential_value(self, ref: CredentialsRef, namespace: str, key: str) -> str:
        secret_namespace = ref.namespace or namespace
        what = f"Secret {secret_namespace}/{ref.name}"
        secret = await self._call(
            lambda: self._core.read_namespaced_secret(ref.name, secret_namespace),
            what,
        )
        data = secret.data or {}
        if key not in data:
            raise StoreError(f"{what} has no '{key}' key")
        return base64.b64decode(data[key]).decode("utf-8").strip()

    async def add_credentials_finalizer(
        self, ref: CredentialsRef, namespace: str, finalizer: str
    ) -> None:
        secret_namespace = ref.namespace or namespace
        what = f"Secret {secret_namespace}/{ref.name}"
        secret = await self._call(
            lambda: self._core.read_namespaced_secret(ref.name, secret_namespace),
            what,
        )
        finalizers = list(secret.metadata.finalizers or [])
        if finalizer in finalizers:
            return
        finalizers.append(finalizer)
        body = {
            "metadata": {
                "finalizers": finalizers,
                "resourceVersion": secret.metadata.resource_version,
            }
        }
        await self._call(
            lambda: self._core.patch_namespaced_secret(ref.name, secret_namespace, body),
            what,
        )

    async def remove_credentials_finalizer(
        self, ref: CredentialsRef, namespace: str, finalizer: str
    ) -> None:
        secret_namespace = ref.namespace or namespace
        what = f"Secret {secret_namespace}/{ref.name}"
        try:
            secret = await self._call(
                lambda: self._core.read_namespaced_secret(ref.name, secret_namespace),
                what,
            )
        except ObjectNotFoundError:
            return
        finalizers = list(secret.metadata.finalizers or [])
        if finalizer not in finalizers:
            return
        body = {
            "metadata": {
                "finalizers": [f for f in finalizers if f != finalizer],
                "resourceVersion": secret.metadata.resource_version,
            }
        }
        await self._call(
            lambda: self._core.patch_namespaced_secret(ref.name, secret_namespace, body),
            what,
        )
