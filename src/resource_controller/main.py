"""Main entry point for the Azure Resource Controller.

SECRETLESS ARCHITECTURE:
- ALL Azure authentication uses Managed Identities
- NO service principal secrets or passwords are allowed
- Objects may select a user-assigned identity through a credentialsRef Secret
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
from datetime import UTC, datetime

from azure.core.credentials import TokenCredential
from kubernetes.config import ConfigException

from .clients import AzureClientFactory, AzurePlacementGroupClient, AzureVirtualNetworkClient
from .config import Config, ConfigurationError
from .engine import Reconciler
from .events import KubernetesEventRecorder
from .kinds import PLACEMENT_GROUP, VIRTUAL_NETWORK
from .manager import ControllerManager
from .security import (
    SecretlessViolationError,
    enforce_secretless_architecture,
    get_managed_identity_credential,
)
from .store import KubernetesObjectStore, ObjectStore, load_kube_config

# LogRecord attributes that are not structured extra fields
_RESERVED_LOG_ATTRS = frozenset(
    (
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    )
)


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        # Add extra fields from the record
        for key, value in record.__dict__.items():
            if key not in _RESERVED_LOG_ATTRS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(level: int = logging.INFO) -> None:
    """Configure structured logging with JSON output for production."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Reduce noise from SDKs
    logging.getLogger("azure").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("kubernetes").setLevel(logging.WARNING)


def build_reconcilers(config: Config, store: ObjectStore) -> list[Reconciler]:
    """Wire one reconciler per managed kind."""

    def credential_provider(client_id: str | None) -> TokenCredential:
        return get_managed_identity_credential(client_id or config.managed_identity_client_id)

    recorder = KubernetesEventRecorder()
    return [
        Reconciler(
            PLACEMENT_GROUP,
            store,
            AzureClientFactory(
                AzurePlacementGroupClient,
                credential_provider,
                config.subscription_id,
                config.resource_group_name,
                config.api_timeout_seconds,
            ),
            recorder,
            timings=config.placement_group,
        ),
        Reconciler(
            VIRTUAL_NETWORK,
            store,
            AzureClientFactory(
                AzureVirtualNetworkClient,
                credential_provider,
                config.subscription_id,
                config.resource_group_name,
                config.api_timeout_seconds,
            ),
            recorder,
            timings=config.virtual_network,
        ),
    ]


def build_manager(config: Config) -> ControllerManager:
    """Load Kubernetes configuration and assemble the controller manager."""
    load_kube_config(config.in_cluster, config.kubeconfig)
    store = KubernetesObjectStore()
    return ControllerManager(
        build_reconcilers(config, store),
        store,
        namespace=config.namespace,
        poll_interval_seconds=config.poll_interval_seconds,
        resync_interval_seconds=config.resync_interval_seconds,
        max_concurrent_reconciles=config.max_concurrent_reconciles,
    )


async def main() -> int:
    """Run the controller.

    Returns:
        Exit code: 0 on clean shutdown, 1 on configuration or runtime
        error, 2 on a security violation.
    """
    setup_logging()
    logger = logging.getLogger(__name__)

    try:
        config = Config.from_env()
    except ConfigurationError as e:
        logger.error("Configuration error", extra={"error": str(e)})
        return 1

    logger.info(
        "Starting Azure Resource Controller",
        extra={
            "subscription_id": config.subscription_id,
            "resource_group": config.resource_group_name,
            "namespace": config.namespace or "*",
        },
    )

    try:
        enforce_secretless_architecture()
        manager = build_manager(config)
    except SecretlessViolationError as e:
        # SECURITY: Credential detected - fatal security error
        logger.critical(
            "Security violation: credentials detected in environment",
            extra={"error": str(e)},
        )
        return 2
    except ConfigException as e:
        logger.error("Failed to load Kubernetes configuration", extra={"error": str(e)})
        return 1

    # Set up signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()

    def signal_handler(sig: signal.Signals) -> None:
        logger.info("Received signal", extra={"signal": sig.name})
        manager.shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))

    try:
        await manager.run()
    except Exception as e:
        logger.exception("Unhandled exception", extra={"error": str(e)})
        return 1

    logger.info("Controller stopped")
    return 0


def run() -> None:
    """Entry point for running the controller."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
