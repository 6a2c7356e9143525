"""Configuration management with validation.

Timeouts and delays are carried as explicit per-kind ``ReconcileTimings``
structures instead of package globals so that every reconciler receives its
budget at construction time and callers may override it per reconcile.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field, replace

# Reconcile budgets with documented defaults
DEFAULT_RECONCILE_TIMEOUT_SECONDS = 20 * 60  # failing create/delete calls retried for 20 minutes
DEFAULT_RECONCILE_DELAY_SECONDS = 5
DEFAULT_WAIT_FOR_DETACH_TIMEOUT_SECONDS = 20 * 60  # dependents given 20 minutes to detach
DEFAULT_WAIT_FOR_DETACH_DELAY_SECONDS = 5
DEFAULT_LOOP_TIMEOUT_SECONDS = 90 * 60  # hard deadline for one reconcile attempt

DEFAULT_API_TIMEOUT_SECONDS = 300

DEFAULT_RESYNC_INTERVAL_SECONDS = 300
MIN_RESYNC_INTERVAL_SECONDS = 60
MAX_RESYNC_INTERVAL_SECONDS = 3600

DEFAULT_POLL_INTERVAL_SECONDS = 10
DEFAULT_MAX_CONCURRENT_RECONCILES = 4
MAX_CONCURRENT_RECONCILES = 64

MAX_RESOURCE_GROUP_NAME_LENGTH = 90

VALID_SUBSCRIPTION_ID_PATTERN = r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$"
VALID_RESOURCE_GROUP_PATTERN = r"^[-\w\._\(\)]+$"


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


@dataclass(frozen=True)
class ReconcileTimings:
    """Timeouts and requeue delays for one resource kind.

    Attributes:
        reconcile_timeout_seconds: How long failing create, fetch or delete
            calls are retried before the error becomes terminal. Create
            failures are measured from the Ready condition's last transition,
            delete failures from the deletion timestamp.
        reconcile_delay_seconds: Requeue delay while inside that window.
        wait_for_detach_timeout_seconds: How long deletion waits for attached
            dependents (compute nodes) before giving up, measured from the
            deletion timestamp.
        wait_for_detach_delay_seconds: Requeue delay while waiting for detach.
        loop_timeout_seconds: Deadline for a whole reconcile attempt.
    """

    reconcile_timeout_seconds: float = DEFAULT_RECONCILE_TIMEOUT_SECONDS
    reconcile_delay_seconds: float = DEFAULT_RECONCILE_DELAY_SECONDS
    wait_for_detach_timeout_seconds: float = DEFAULT_WAIT_FOR_DETACH_TIMEOUT_SECONDS
    wait_for_detach_delay_seconds: float = DEFAULT_WAIT_FOR_DETACH_DELAY_SECONDS
    loop_timeout_seconds: float = DEFAULT_LOOP_TIMEOUT_SECONDS

    def __post_init__(self) -> None:
        errors: list[str] = []
        for name in (
            "reconcile_timeout_seconds",
            "reconcile_delay_seconds",
            "wait_for_detach_timeout_seconds",
            "wait_for_detach_delay_seconds",
        ):
            if getattr(self, name) < 0:
                errors.append(f"{name} must not be negative")
        if self.loop_timeout_seconds <= 0:
            errors.append("loop_timeout_seconds must be positive")
        if errors:
            raise ConfigurationError("Invalid reconcile timings:\n  - " + "\n  - ".join(errors))

    def with_overrides(self, **overrides: float) -> ReconcileTimings:
        """Return a copy with the given fields replaced."""
        return replace(self, **overrides)


@dataclass(frozen=True)
class Config:
    """Controller configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing at runtime.
    """

    # Required fields
    subscription_id: str
    resource_group_name: str

    # Scope of the object store watch (None = all namespaces)
    namespace: str | None = None

    # User-assigned identity used when an object carries no credentialsRef
    managed_identity_client_id: str | None = None

    # Per-kind reconcile budgets
    placement_group: ReconcileTimings = field(default_factory=ReconcileTimings)
    virtual_network: ReconcileTimings = field(default_factory=ReconcileTimings)

    # Timing
    api_timeout_seconds: int = DEFAULT_API_TIMEOUT_SECONDS
    resync_interval_seconds: int = DEFAULT_RESYNC_INTERVAL_SECONDS
    poll_interval_seconds: int = DEFAULT_POLL_INTERVAL_SECONDS

    # Concurrency
    max_concurrent_reconciles: int = DEFAULT_MAX_CONCURRENT_RECONCILES

    # Kubernetes client
    in_cluster: bool = True
    kubeconfig: str | None = None

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.subscription_id:
            errors.append("AZURE_SUBSCRIPTION_ID is required")
        elif not re.match(VALID_SUBSCRIPTION_ID_PATTERN, self.subscription_id.lower()):
            errors.append(f"AZURE_SUBSCRIPTION_ID must be a valid GUID: {self.subscription_id}")

        if not self.resource_group_name:
            errors.append("AZURE_RESOURCE_GROUP is required")
        elif len(self.resource_group_name) > MAX_RESOURCE_GROUP_NAME_LENGTH:
            errors.append(
                f"AZURE_RESOURCE_GROUP exceeds maximum length of {MAX_RESOURCE_GROUP_NAME_LENGTH}"
            )
        elif not re.match(VALID_RESOURCE_GROUP_PATTERN, self.resource_group_name):
            errors.append(
                f"AZURE_RESOURCE_GROUP contains invalid characters: {self.resource_group_name}"
            )

        if self.api_timeout_seconds < 1:
            errors.append("AZURE_API_TIMEOUT must be at least 1 second")

        if not (
            MIN_RESYNC_INTERVAL_SECONDS
            <= self.resync_interval_seconds
            <= MAX_RESYNC_INTERVAL_SECONDS
        ):
            errors.append(
                f"RESYNC_INTERVAL must be between {MIN_RESYNC_INTERVAL_SECONDS} "
                f"and {MAX_RESYNC_INTERVAL_SECONDS} seconds"
            )

        if self.poll_interval_seconds < 1:
            errors.append("POLL_INTERVAL must be at least 1 second")

        if not (1 <= self.max_concurrent_reconciles <= MAX_CONCURRENT_RECONCILES):
            errors.append(
                f"MAX_CONCURRENT_RECONCILES must be between 1 and {MAX_CONCURRENT_RECONCILES}"
            )

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            AZURE_SUBSCRIPTION_ID: Subscription holding the managed resources
            AZURE_RESOURCE_GROUP: Resource group the resources are created in
            WATCH_NAMESPACE: Namespace to reconcile (default: all namespaces)
            AZURE_CLIENT_ID: Default user-assigned managed identity client ID
            AZURE_API_TIMEOUT: Per-call timeout for Azure API calls (default: 300)
            RESYNC_INTERVAL: Seconds between periodic resyncs (default: 300)
            POLL_INTERVAL: Seconds between object store polls (default: 10)
            MAX_CONCURRENT_RECONCILES: Parallel reconciles (default: 4)
            IN_CLUSTER: Use in-cluster Kubernetes config (default: true)
            KUBECONFIG: Kubeconfig path when not running in-cluster

        Reconcile Budget Variables (seconds):
            PLACEMENT_GROUP_RECONCILE_TIMEOUT / PLACEMENT_GROUP_RECONCILE_DELAY
            VIRTUAL_NETWORK_RECONCILE_TIMEOUT / VIRTUAL_NETWORK_RECONCILE_DELAY
            VIRTUAL_NETWORK_WAIT_FOR_DETACH_TIMEOUT / VIRTUAL_NETWORK_WAIT_FOR_DETACH_DELAY
            RECONCILE_LOOP_TIMEOUT: Deadline for one reconcile attempt (default: 5400)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        loop_timeout = get_int("RECONCILE_LOOP_TIMEOUT", DEFAULT_LOOP_TIMEOUT_SECONDS)

        return cls(
            subscription_id=os.environ.get("AZURE_SUBSCRIPTION_ID", ""),
            resource_group_name=os.environ.get("AZURE_RESOURCE_GROUP", ""),
            namespace=os.environ.get("WATCH_NAMESPACE") or None,
            managed_identity_client_id=os.environ.get("AZURE_CLIENT_ID") or None,
            placement_group=ReconcileTimings(
                reconcile_timeout_seconds=get_int(
                    "PLACEMENT_GROUP_RECONCILE_TIMEOUT", DEFAULT_RECONCILE_TIMEOUT_SECONDS
                ),
                reconcile_delay_seconds=get_int(
                    "PLACEMENT_GROUP_RECONCILE_DELAY", DEFAULT_RECONCILE_DELAY_SECONDS
                ),
                loop_timeout_seconds=loop_timeout,
            ),
            virtual_network=ReconcileTimings(
                reconcile_timeout_seconds=get_int(
                    "VIRTUAL_NETWORK_RECONCILE_TIMEOUT", DEFAULT_RECONCILE_TIMEOUT_SECONDS
                ),
                reconcile_delay_seconds=get_int(
                    "VIRTUAL_NETWORK_RECONCILE_DELAY", DEFAULT_RECONCILE_DELAY_SECONDS
                ),
                wait_for_detach_timeout_seconds=get_int(
                    "VIRTUAL_NETWORK_WAIT_FOR_DETACH_TIMEOUT",
                    DEFAULT_WAIT_FOR_DETACH_TIMEOUT_SECONDS,
                ),
                wait_for_detach_delay_seconds=get_int(
                    "VIRTUAL_NETWORK_WAIT_FOR_DETACH_DELAY", DEFAULT_WAIT_FOR_DETACH_DELAY_SECONDS
                ),
                loop_timeout_seconds=loop_timeout,
            ),
            api_timeout_seconds=get_int("AZURE_API_TIMEOUT", DEFAULT_API_TIMEOUT_SECONDS),
            resync_interval_seconds=get_int("RESYNC_INTERVAL", DEFAULT_RESYNC_INTERVAL_SECONDS),
            poll_interval_seconds=get_int("POLL_INTERVAL", DEFAULT_POLL_INTERVAL_SECONDS),
            max_concurrent_reconciles=get_int(
                "MAX_CONCURRENT_RECONCILES", DEFAULT_MAX_CONCURRENT_RECONCILES
            ),
            in_cluster=get_bool("IN_CLUSTER", True),
            kubeconfig=os.environ.get("KUBECONFIG") or None,
        )
