"""Kubernetes event emission.

Events are fire-and-forget: a failure to record one is logged and never
affects the reconcile outcome.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import UTC, datetime

from kubernetes import client
from kubernetes.client import ApiException

from .models import ManagedObject

logger = logging.getLogger(__name__)

EVENT_TYPE_NORMAL = "Normal"
EVENT_TYPE_WARNING = "Warning"

COMPONENT_NAME = "azure-resource-controller"


class EventRecorder(ABC):
    """Records events against managed objects."""

    @abstractmethod
    def event(self, obj: ManagedObject, event_type: str, reason: str, message: str) -> None:
        """Record an event. Must not raise."""


class KubernetesEventRecorder(EventRecorder):
    """Writes core/v1 Events through the kubernetes client."""

    def __init__(self, api_client: client.ApiClient | None = None) -> None:
        self._core = client.CoreV1Api(api_client)

    def _build(
        self, obj: ManagedObject, event_type: str, reason: str, message: str
    ) -> client.CoreV1Event:
        now = datetime.now(UTC)
        return client.CoreV1Event(
            metadata=client.V1ObjectMeta(
                name=f"{obj.metadata.name}.{uuid.uuid4().hex[:16]}",
                namespace=obj.metadata.namespace,
            ),
            involved_object=client.V1ObjectReference(
                api_version=obj.api_version,
                kind=obj.kind,
                name=obj.metadata.name,
                namespace=obj.metadata.namespace,
                uid=obj.metadata.uid,
                resource_version=obj.metadata.resource_version,
            ),
            type=event_type,
            reason=reason,
            # Event messages are capped by the API server
            message=message[:1024],
            source=client.V1EventSource(component=COMPONENT_NAME),
            first_timestamp=now,
            last_timestamp=now,
            count=1,
        )

    def _send(self, body: client.CoreV1Event) -> None:
        try:
            self._core.create_namespaced_event(body.metadata.namespace, body)
        except ApiException as e:
            logger.warning(
                "Failed to record event",
                extra={"reason": body.reason, "status": e.status, "error": e.reason},
            )

    def event(self, obj: ManagedObject, event_type: str, reason: str, message: str) -> None:
        body = self._build(obj, event_type, reason, message)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._send(body)
            return
        loop.run_in_executor(None, self._send, body)
