"""Reconciliation engine for managed Azure resources.

One ``Reconciler`` drives one resource kind. Each call to ``reconcile``
handles a single request:

1. Load the object (absent = already deleted, nothing to do)
2. Resolve the owning cluster and honour pause signals
3. Open a ``ResourceScope`` and run the state machine
4. Persist the object exactly once when the scope closes

State machine:
- Deleting: delete the remote resource (respecting retention and attached
  dependents), then release finalizers
- Live with a resource ID: creation fields are immutable, so only status
  is refreshed
- Live without a resource ID: create or adopt

Transient failures are retried within time windows instead of being counted:
create failures against the Ready condition's last transition, delete
failures against the deletion timestamp. Inside a window the error is
swallowed and the request is requeued.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from azure.core.exceptions import AzureError, ResourceNotFoundError

from .conditions import has_stale_condition, set_condition
from .config import ReconcileTimings
from .deletion import DeletionGuard, GuardAction, RetentionPolicy
from .errors import (
    DeletionError,
    DependentsAttachedError,
    InvariantViolationError,
    ReconcileTimeoutError,
)
from .events import EVENT_TYPE_NORMAL, EVENT_TYPE_WARNING, EventRecorder
from .kinds import ResourceKind
from .models import READY_CONDITION, ConditionStatus, FailureReason, ManagedObject, ObjectKey
from .pause import is_paused
from .provisioning import create_or_adopt
from .scope import ClientFactory, ResourceScope
from .security import InvalidIdentityError, log_security_audit_event
from .store import ObjectNotFoundError, ObjectStore, StoreError

logger = logging.getLogger(__name__)

REASON_PROVISIONED = "Provisioned"
REASON_DELETED = "Deleted"


@dataclass
class ReconcileResult:
    """Result of a single reconcile request."""

    kind: str
    key: ObjectKey
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    action: str = "none"
    requeue_after: float | None = None
    error: Exception | None = None

    @property
    def duration_seconds(self) -> float:
        """Calculate duration in seconds."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        """Check if the reconcile finished without a terminal error."""
        return self.error is None

    @property
    def requeue(self) -> bool:
        return self.requeue_after is not None


class Reconciler:
    """Drives managed objects of one kind toward their declared state.

    The reconciler holds no per-object state between calls; everything it
    needs is read from the object store and the remote API on each request.
    """

    def __init__(
        self,
        kind: ResourceKind,
        store: ObjectStore,
        client_factory: ClientFactory,
        recorder: EventRecorder,
        timings: ReconcileTimings | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._kind = kind
        self._store = store
        self._client_factory = client_factory
        self._recorder = recorder
        self._timings = timings or kind.default_timings
        self._clock = clock or (lambda: datetime.now(UTC))

    @property
    def kind(self) -> ResourceKind:
        return self._kind

    @property
    def timings(self) -> ReconcileTimings:
        return self._timings

    async def reconcile(
        self, key: ObjectKey, timings: ReconcileTimings | None = None
    ) -> ReconcileResult:
        """Reconcile one object.

        Args:
            key: Namespaced name of the object.
            timings: Overrides the reconciler's timings for this call.

        Returns:
            ReconcileResult: done, requeue_after set, or error set.
        """
        timings = timings or self._timings
        result = ReconcileResult(kind=self._kind.kind, key=key)

        try:
            await self._reconcile(key, timings, result)
        except Exception as e:
            logger.exception(
                "Unexpected error during reconciliation",
                extra={"kind": self._kind.kind, "object": str(key)},
            )
            result.error = e

        result.end_time = datetime.now(UTC)
        self._log_result(result)
        return result

    async def _reconcile(
        self, key: ObjectKey, timings: ReconcileTimings, result: ReconcileResult
    ) -> None:
        # One deadline covers the whole attempt except the final persist
        deadline = asyncio.get_running_loop().time() + timings.loop_timeout_seconds
        obj: ManagedObject | None = None

        try:
            async with asyncio.timeout_at(deadline):
                obj = await self._store.get(self._kind, key)
                cluster = await self._resolve_cluster(obj, result)
                if result.action != "none":
                    return
                scope = await ResourceScope.create(
                    self._kind, obj, self._store, self._client_factory, self._recorder, cluster
                )
        except TimeoutError:
            error = self._timeout_error(key, timings)
            if obj is None:
                result.error = error
                return
            await self._report_unscoped_failure(obj, error, result)
            return
        except (StoreError, InvalidIdentityError) as e:
            if obj is None:
                if isinstance(e, ObjectNotFoundError):
                    logger.debug(
                        "Object not found", extra={"kind": self._kind.kind, "object": str(key)}
                    )
                    result.action = "not_found"
                    return
                raise
            logger.error(
                "Failed to prepare reconcile",
                extra={"kind": self._kind.kind, "object": str(key), "error": str(e)},
            )
            await self._report_unscoped_failure(obj, e, result)
            return

        try:
            async with scope:
                try:
                    async with asyncio.timeout_at(deadline):
                        await self._reconcile_scope(scope, timings, result)
                except TimeoutError:
                    error = self._timeout_error(key, timings)
                    self._record_failure(
                        scope.obj, self._failure_reason(scope.obj), error, self._clock()
                    )
                    result.error = error
        except StoreError as e:
            self._join_persist_error(result, e)

    async def _resolve_cluster(
        self, obj: ManagedObject, result: ReconcileResult
    ) -> dict[str, Any] | None:
        """Return the owning cluster; sets ``result.action`` when the object must be skipped."""
        cluster: dict[str, Any] | None = None
        try:
            cluster = await self._store.get_owner_cluster(obj)
        except ObjectNotFoundError:
            if not obj.is_deleting:
                logger.info(
                    "Owning cluster not found, skipping",
                    extra={"kind": self._kind.kind, "object": str(obj.key)},
                )
                result.action = "no_cluster"
                return None
            logger.info(
                "Owning cluster not found but object is being deleted, continuing deletion",
                extra={"kind": self._kind.kind, "object": str(obj.key)},
            )

        # A deleting object whose cluster is gone cannot be unpaused by anyone
        if (not obj.is_deleting or cluster is not None) and is_paused(obj, cluster):
            logger.info(
                "Object or owning cluster is paused, skipping",
                extra={"kind": self._kind.kind, "object": str(obj.key)},
            )
            result.action = "paused"
        return cluster

    def _timeout_error(self, key: ObjectKey, timings: ReconcileTimings) -> ReconcileTimeoutError:
        return ReconcileTimeoutError(
            f"reconcile of {self._kind.kind} {key} exceeded {timings.loop_timeout_seconds}s"
        )

    def _failure_reason(self, obj: ManagedObject) -> FailureReason:
        if obj.is_deleting:
            return self._kind.delete_failure
        if obj.spec.resource_id is None:
            return self._kind.create_failure
        return FailureReason.UNKNOWN

    async def _report_unscoped_failure(
        self, obj: ManagedObject, error: Exception, result: ReconcileResult
    ) -> None:
        """Record a failure raised before a scope could be opened and persist it."""
        obj.status.ready = False
        if obj.is_deleting:
            result.action = "delete"
        elif obj.spec.resource_id is None:
            result.action = "create"
        self._record_failure(obj, self._failure_reason(obj), error, self._clock())
        result.error = error
        try:
            await self._store.patch(self._kind, obj)
        except ObjectNotFoundError:
            logger.debug("Object gone at close", extra={"object": str(obj.key)})
        except StoreError as e:
            self._join_persist_error(result, e)

    def _join_persist_error(self, result: ReconcileResult, error: StoreError) -> None:
        logger.error(
            "Failed to persist object",
            extra={"kind": self._kind.kind, "object": str(result.key), "error": str(error)},
        )
        if result.error is None:
            result.error = error
        else:
            result.error = ExceptionGroup(
                f"reconcile of {self._kind.kind} {result.key} failed", [result.error, error]
            )

    async def _reconcile_scope(
        self, scope: ResourceScope, timings: ReconcileTimings, result: ReconcileResult
    ) -> None:
        obj = scope.obj
        obj.status.ready = False
        obj.status.failure_reason = None
        obj.status.failure_message = None

        failure_reason = FailureReason.UNKNOWN
        now = self._clock()

        try:
            if obj.is_deleting:
                failure_reason = self._kind.delete_failure
                result.action = "delete"
                result.requeue_after = await self._reconcile_delete(scope, timings, now)
                return

            await scope.add_finalizer()

            if obj.spec.resource_id is not None:
                # Creation fields are immutable; nothing to converge remotely
                result.action = "update"
                self._mark_ready(obj, now)
                return

            failure_reason = self._kind.create_failure
            result.action = "create"
            result.requeue_after = await self._reconcile_create(scope, timings, now)
        except Exception as e:
            self._record_failure(obj, failure_reason, e, now)
            result.error = e

    # =========================================================================
    # Create
    # =========================================================================

    async def _reconcile_create(
        self, scope: ResourceScope, timings: ReconcileTimings, now: datetime
    ) -> float | None:
        obj = scope.obj
        try:
            await create_or_adopt(scope)
        except InvariantViolationError:
            raise
        except (AzureError, StoreError) as e:
            set_condition(
                obj,
                READY_CONDITION,
                ConditionStatus.FALSE,
                reason=self._kind.create_failure.value,
                message=str(e),
                now=now,
            )
            if not has_stale_condition(
                obj, READY_CONDITION, timings.reconcile_timeout_seconds, now=now
            ):
                logger.warning(
                    f"Failed to create {self._kind.display_name}, requeueing",
                    extra={
                        "kind": self._kind.kind,
                        "object": str(obj.key),
                        "error": str(e),
                        "requeue_after": timings.reconcile_delay_seconds,
                    },
                )
                return timings.reconcile_delay_seconds
            raise

        self._mark_ready(obj, now)
        return None

    def _mark_ready(self, obj: ManagedObject, now: datetime) -> None:
        obj.status.ready = True
        set_condition(
            obj, READY_CONDITION, ConditionStatus.TRUE, reason=REASON_PROVISIONED, now=now
        )

    # =========================================================================
    # Delete
    # =========================================================================

    async def _reconcile_delete(
        self, scope: ResourceScope, timings: ReconcileTimings, now: datetime
    ) -> float | None:
        obj = scope.obj
        policy = RetentionPolicy.for_object(obj)
        resource_id = obj.spec.resource_id

        if resource_id is None:
            logger.info(
                f"No {self._kind.display_name} was created, releasing finalizers",
                extra={"kind": self._kind.kind, "object": str(obj.key)},
            )
            return await self._finish_delete(scope, timings, now)

        if policy.retain_parent:
            logger.info(
                f"Retaining {self._kind.display_name}, skipping remote deletion",
                extra={"kind": self._kind.kind, "object": str(obj.key), "resource_id": resource_id},
            )
            policy.release_children(obj.spec.children())
            return await self._finish_delete(scope, timings, now)

        try:
            remote = await scope.client.get(resource_id)
        except ResourceNotFoundError:
            logger.info(
                f"{self._kind.display_name} already gone",
                extra={"kind": self._kind.kind, "object": str(obj.key), "resource_id": resource_id},
            )
            policy.release_children(obj.spec.children())
            return await self._finish_delete(scope, timings, now)
        except AzureError as e:
            return self._retry_delete(obj, timings, now, e, "fetch")

        decision = DeletionGuard(timings).evaluate(remote, obj, policy, now)
        if decision.action == GuardAction.WAIT:
            return decision.requeue_after
        if decision.action == GuardAction.REFUSE:
            raise DependentsAttachedError(remote.id, decision.dependents)

        try:
            for child in policy.children_to_delete(remote):
                try:
                    await scope.client.delete_child(remote.id, child.id)
                except ResourceNotFoundError:
                    logger.debug("Child already gone", extra={"child_id": child.id})
            await scope.client.delete(remote.id)
        except ResourceNotFoundError:
            logger.debug("Resource already gone", extra={"resource_id": remote.id})
        except AzureError as e:
            return self._retry_delete(obj, timings, now, e, "delete")

        logger.info(
            f"Deleted {self._kind.display_name}",
            extra={"kind": self._kind.kind, "object": str(obj.key), "resource_id": remote.id},
        )
        log_security_audit_event(
            "resource_delete", target_resource=remote.id, action="delete", result="success"
        )
        policy.release_children(obj.spec.children())
        return await self._finish_delete(scope, timings, now)

    def _retry_delete(
        self,
        obj: ManagedObject,
        timings: ReconcileTimings,
        now: datetime,
        error: Exception,
        operation: str,
    ) -> float:
        """Requeue while inside the deletion window, else raise DeletionError."""
        deletion_timestamp = obj.metadata.deletion_timestamp or now
        deadline = deletion_timestamp + timedelta(seconds=timings.reconcile_timeout_seconds)
        if now < deadline:
            logger.warning(
                f"Failed to {operation} {self._kind.display_name}, requeueing deletion",
                extra={
                    "kind": self._kind.kind,
                    "object": str(obj.key),
                    "error": str(error),
                    "requeue_after": timings.reconcile_delay_seconds,
                },
            )
            return timings.reconcile_delay_seconds
        raise DeletionError(
            f"failed to {operation} {self._kind.display_name} for {obj.key}: {error}"
        ) from error

    async def _finish_delete(
        self, scope: ResourceScope, timings: ReconcileTimings, now: datetime
    ) -> float | None:
        obj = scope.obj
        set_condition(
            obj,
            READY_CONDITION,
            ConditionStatus.FALSE,
            reason=REASON_DELETED,
            message=f"{self._kind.display_name} deleted",
            now=now,
        )
        scope.recorder.event(
            obj, EVENT_TYPE_NORMAL, REASON_DELETED, f"{self._kind.display_name} has cleaned up"
        )
        obj.spec.resource_id = None

        try:
            await scope.remove_credentials_finalizer()
        except StoreError as e:
            return self._retry_delete(obj, timings, now, e, "release credentials of")

        scope.remove_finalizers()
        return None

    # =========================================================================
    # Failure reporting
    # =========================================================================

    def _record_failure(
        self,
        obj: ManagedObject,
        failure_reason: FailureReason,
        error: Exception,
        now: datetime,
    ) -> None:
        message = str(error)
        obj.status.failure_reason = failure_reason
        obj.status.failure_message = message
        set_condition(
            obj,
            READY_CONDITION,
            ConditionStatus.FALSE,
            reason=getattr(error, "condition_reason", None) or failure_reason.value,
            message=message,
            now=now,
        )
        self._recorder.event(obj, EVENT_TYPE_WARNING, failure_reason.value, message)

    def _log_result(self, result: ReconcileResult) -> None:
        """Log reconcile result with structured data."""
        extra: dict[str, Any] = {
            "kind": result.kind,
            "object": str(result.key),
            "action": result.action,
            "duration_seconds": result.duration_seconds,
        }
        if result.requeue_after is not None:
            extra["requeue_after"] = result.requeue_after

        if result.error is not None:
            extra["error"] = str(result.error)
            logger.error("Reconciliation failed", extra=extra)
        else:
            logger.info("Reconciliation result", extra=extra)
