"""Terminal reconcile errors.

Transient Azure and store failures are represented by the SDK exception types
(``azure.core.exceptions.AzureError`` and ``store.StoreError``). The classes
here mark failures the engine has decided are terminal for this attempt.
"""

from __future__ import annotations


class ReconcileError(Exception):
    """Base class for terminal reconcile errors.

    Attributes:
        condition_reason: Reason written to the Ready condition. None means
            the engine uses the path's failure reason.
    """

    condition_reason: str | None = None


class InvariantViolationError(ReconcileError):
    """Raised when the remote API contradicts its own contract.

    Never retried: a create call that succeeds without returning a resource
    will not start returning one on the next attempt.
    """

    pass


class DeletionError(ReconcileError):
    """Raised when fetching or deleting the remote resource kept failing past its timeout."""

    pass


class DependentsAttachedError(DeletionError):
    """Raised when dependents are still attached after the detach timeout.

    The remote resource is left in place.
    """

    condition_reason = "DeletionFailed"

    def __init__(self, resource_id: str, dependent_count: int) -> None:
        self.resource_id = resource_id
        self.dependent_count = dependent_count
        super().__init__(
            f"will not delete {resource_id} with {dependent_count} node(s) attached"
        )


class ReconcileTimeoutError(ReconcileError):
    """Raised when a reconcile attempt exceeds its loop deadline."""

    pass
