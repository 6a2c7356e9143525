"""Per-reconcile resource scope.

A scope binds one managed object to the remote client acting for it and
owns persistence: every change made to ``scope.obj`` during a reconcile is
written back exactly once when the scope closes, whichever way the
reconcile exits.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from types import TracebackType
from typing import Any

from .clients import RemoteClient
from .events import EventRecorder
from .kinds import ResourceKind
from .models import LEGACY_GROUP_FINALIZER, ManagedObject
from .security import validate_client_id
from .store import ObjectNotFoundError, ObjectStore, StoreError

logger = logging.getLogger(__name__)

# Key in the credentials Secret naming the user-assigned managed identity
CLIENT_ID_KEY = "clientId"

ClientFactory = Callable[[str | None], RemoteClient]


class ResourceScope:
    """Async context manager wrapping one object for one reconcile."""

    def __init__(
        self,
        kind: ResourceKind,
        obj: ManagedObject,
        store: ObjectStore,
        client: RemoteClient,
        recorder: EventRecorder,
        cluster: dict[str, Any] | None = None,
    ) -> None:
        self.kind = kind
        self.obj = obj
        self.store = store
        self.client = client
        self.recorder = recorder
        self.cluster = cluster
        self._snapshot = obj.to_manifest()
        self._closed = False

    @classmethod
    async def create(
        cls,
        kind: ResourceKind,
        obj: ManagedObject,
        store: ObjectStore,
        client_factory: ClientFactory,
        recorder: EventRecorder,
        cluster: dict[str, Any] | None = None,
    ) -> ResourceScope:
        """Build a scope, selecting the identity named by the object's credentialsRef."""
        client_id = None
        ref = obj.spec.credentials_ref
        if ref is not None:
            client_id = validate_client_id(
                await store.get_credential_value(ref, obj.metadata.namespace, CLIENT_ID_KEY)
            )
            logger.debug(
                "Using identity from credentialsRef",
                extra={"object": str(obj.key), "secret": ref.name},
            )
        return cls(kind, obj, store, client_factory(client_id), recorder, cluster)

    async def __aenter__(self) -> ResourceScope:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> bool:
        try:
            await self.close()
        except ObjectNotFoundError:
            # Erased after its last finalizer was removed
            logger.debug("Object gone at close", extra={"object": str(self.obj.key)})
        except StoreError as e:
            if exc_type is not None and issubclass(exc_type, asyncio.CancelledError):
                logger.error(
                    "Failed to persist cancelled reconcile",
                    extra={"object": str(self.obj.key), "error": str(e)},
                )
                return False
            raise
        return False

    @property
    def changed(self) -> bool:
        return self.obj.to_manifest() != self._snapshot

    async def _persist(self) -> None:
        stored = await self.store.patch(self.kind, self.obj)
        self.obj.metadata.resource_version = stored.metadata.resource_version
        self._snapshot = self.obj.to_manifest()

    async def close(self) -> None:
        """Persist pending changes. Only the first call writes."""
        if self._closed:
            return
        self._closed = True
        if not self.changed:
            return
        await self._persist()

    async def add_finalizer(self) -> None:
        """Ensure the engine finalizer is present, persisting it immediately."""
        if self.obj.add_finalizer(self.kind.finalizer):
            await self._persist()
            logger.info(
                "Added finalizer",
                extra={"object": str(self.obj.key), "finalizer": self.kind.finalizer},
            )

    def remove_finalizers(self) -> None:
        """Drop the engine finalizer and the legacy group finalizer (persisted at close)."""
        self.obj.remove_finalizer(self.kind.finalizer)
        self.obj.remove_finalizer(LEGACY_GROUP_FINALIZER)

    async def add_credentials_finalizer(self) -> None:
        ref = self.obj.spec.credentials_ref
        if ref is None:
            return
        await self.store.add_credentials_finalizer(
            ref, self.obj.metadata.namespace, self.kind.credentials_finalizer(self.obj)
        )

    async def remove_credentials_finalizer(self) -> None:
        ref = self.obj.spec.credentials_ref
        if ref is None:
            return
        await self.store.remove_credentials_finalizer(
            ref, self.obj.metadata.namespace, self.kind.credentials_finalizer(self.obj)
        )
