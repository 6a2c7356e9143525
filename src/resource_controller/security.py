"""Security enforcement for secretless architecture.

This module enforces the secretless security model where:
- ALL Azure access uses Managed Identities
- NO service principal secrets are allowed
- A credentialsRef Secret names a user-assigned identity; it never holds secret material

SECURITY INVARIANTS:
1. AZURE_CLIENT_SECRET must never be present in the environment
2. ManagedIdentityCredential is the ONLY allowed credential type
3. Identity client IDs read from Secrets must be GUIDs
"""

from __future__ import annotations

import logging
import os
import re

from azure.identity import ManagedIdentityCredential

logger = logging.getLogger(__name__)

# Environment variables that indicate credential leakage
FORBIDDEN_CREDENTIAL_ENV_VARS: tuple[str, ...] = (
    "AZURE_CLIENT_SECRET",
    "AZURE_CLIENT_CERTIFICATE_PATH",
    "AZURE_CLIENT_CERTIFICATE_PASSWORD",
    "AZURE_USERNAME",
    "AZURE_PASSWORD",
)

CLIENT_ID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)

SECRETLESS_VIOLATION_MESSAGE = (
    "SECURITY VIOLATION: {env_var} is set. This controller authenticates with "
    "Managed Identity only. Remove all credential environment variables, assign "
    "a managed identity to the pod and grant it RBAC roles on the resource group."
)


class SecretlessViolationError(Exception):
    """Raised when secretless architecture is violated.

    This is a fatal security error that prevents controller startup.
    """

    pass


class InvalidIdentityError(ValueError):
    """Raised when a credentialsRef Secret does not name a managed identity."""

    pass


def enforce_secretless_architecture() -> None:
    """Enforce that no credential secrets are present in the environment.

    Raises:
        SecretlessViolationError: If any credential environment variables detected.
    """
    for env_var in FORBIDDEN_CREDENTIAL_ENV_VARS:
        if os.environ.get(env_var):
            logger.critical(
                "Secretless architecture violation",
                extra={
                    "security_event": "credential_detected",
                    "env_var": env_var,
                    "action": "startup_blocked",
                },
            )
            raise SecretlessViolationError(SECRETLESS_VIOLATION_MESSAGE.format(env_var=env_var))

    logger.info(
        "Secretless architecture verified",
        extra={
            "security_event": "secretless_verified",
            "credential_type": "ManagedIdentity",
        },
    )


def validate_client_id(client_id: str) -> str:
    """Check that a client ID read from a Secret looks like an identity, not a secret.

    Raises:
        InvalidIdentityError: If the value is not a GUID.
    """
    value = client_id.strip()
    if not CLIENT_ID_PATTERN.match(value):
        raise InvalidIdentityError(
            "credentialsRef clientId must be a managed identity client ID (GUID)"
        )
    return value


def _redact(client_id: str) -> str:
    return client_id[:8] + "..." if len(client_id) > 8 else client_id


def get_managed_identity_credential(client_id: str | None = None) -> ManagedIdentityCredential:
    """Get a ManagedIdentityCredential after verifying secretless architecture.

    This is the ONLY way to obtain credentials in this codebase.

    Args:
        client_id: Client ID of a user-assigned managed identity.
                   If None, uses system-assigned managed identity.

    Raises:
        SecretlessViolationError: If credential environment variables detected.
    """
    enforce_secretless_architecture()

    if client_id:
        logger.info(
            "Using user-assigned managed identity",
            extra={"client_id": _redact(client_id)},
        )
        return ManagedIdentityCredential(client_id=client_id)

    logger.info("Using system-assigned managed identity")
    return ManagedIdentityCredential()


def log_security_audit_event(
    event_type: str,
    target_resource: str | None = None,
    action: str | None = None,
    result: str | None = None,
) -> None:
    """Log a security-relevant audit event for SIEM ingestion."""
    logger.info(
        f"Security audit: {event_type}",
        extra={
            "security_audit": True,
            "event_type": event_type,
            "target_resource": target_resource,
            "action": action,
            "result": result,
        },
    )
