"""Tests for configuration loading."""

import os
from unittest.mock import patch

import pytest

from resource_controller.config import (
    DEFAULT_LOOP_TIMEOUT_SECONDS,
    DEFAULT_RECONCILE_TIMEOUT_SECONDS,
    Config,
    ConfigurationError,
    ReconcileTimings,
)

SUBSCRIPTION_ID = "12345678-1234-1234-1234-123456789012"


class TestReconcileTimings:
    """Tests for ReconcileTimings."""

    def test_defaults(self) -> None:
        """Test the documented default budgets."""
        timings = ReconcileTimings()

        assert timings.reconcile_timeout_seconds == DEFAULT_RECONCILE_TIMEOUT_SECONDS
        assert timings.reconcile_delay_seconds == 5
        assert timings.wait_for_detach_timeout_seconds == 20 * 60
        assert timings.wait_for_detach_delay_seconds == 5
        assert timings.loop_timeout_seconds == DEFAULT_LOOP_TIMEOUT_SECONDS

    def test_zero_timeout_allowed(self) -> None:
        """Test a zero reconcile timeout is valid (fail on first error)."""
        assert ReconcileTimings(reconcile_timeout_seconds=0).reconcile_timeout_seconds == 0

    def test_negative_values_rejected(self) -> None:
        """Test negative durations are rejected with every offending field named."""
        with pytest.raises(ConfigurationError) as exc_info:
            ReconcileTimings(reconcile_delay_seconds=-1, wait_for_detach_timeout_seconds=-5)

        assert "reconcile_delay_seconds" in str(exc_info.value)
        assert "wait_for_detach_timeout_seconds" in str(exc_info.value)

    def test_loop_timeout_must_be_positive(self) -> None:
        """Test the loop deadline cannot be zero."""
        with pytest.raises(ConfigurationError):
            ReconcileTimings(loop_timeout_seconds=0)

    def test_with_overrides(self) -> None:
        """Test overrides return a new value and leave the original intact."""
        base = ReconcileTimings()
        changed = base.with_overrides(reconcile_delay_seconds=30)

        assert changed.reconcile_delay_seconds == 30
        assert base.reconcile_delay_seconds == 5


class TestConfig:
    """Tests for Config class."""

    def test_valid_config(self) -> None:
        """Test creating a valid configuration."""
        config = Config(subscription_id=SUBSCRIPTION_ID, resource_group_name="rg-network")

        assert config.namespace is None
        assert config.in_cluster is True
        assert config.max_concurrent_reconciles == 4

    def test_missing_required_fields(self) -> None:
        """Test that all missing required fields are reported together."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(subscription_id="", resource_group_name="")

        assert "AZURE_SUBSCRIPTION_ID" in str(exc_info.value)
        assert "AZURE_RESOURCE_GROUP" in str(exc_info.value)

    def test_invalid_subscription_id(self) -> None:
        """Test subscription ID must be a GUID."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(subscription_id="not-a-guid", resource_group_name="rg")

        assert "valid GUID" in str(exc_info.value)

    def test_invalid_resource_group(self) -> None:
        """Test resource group names with invalid characters are rejected."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(subscription_id=SUBSCRIPTION_ID, resource_group_name="rg/with/slashes")

        assert "invalid characters" in str(exc_info.value)

    def test_resync_interval_bounds(self) -> None:
        """Test resync interval must stay within its bounds."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(
                subscription_id=SUBSCRIPTION_ID,
                resource_group_name="rg",
                resync_interval_seconds=10,
            )

        assert "RESYNC_INTERVAL" in str(exc_info.value)

    def test_concurrency_bounds(self) -> None:
        """Test max concurrent reconciles must be at least one."""
        with pytest.raises(ConfigurationError):
            Config(
                subscription_id=SUBSCRIPTION_ID,
                resource_group_name="rg",
                max_concurrent_reconciles=0,
            )


class TestConfigFromEnv:
    """Tests for loading configuration from the environment."""

    def test_from_env(self) -> None:
        """Test loading config from environment variables."""
        env = {
            "AZURE_SUBSCRIPTION_ID": SUBSCRIPTION_ID,
            "AZURE_RESOURCE_GROUP": "rg-network",
            "WATCH_NAMESPACE": "capi-system",
            "AZURE_CLIENT_ID": "aaaaaaaa-bbbb-cccc-dddd-eeeeeeeeeeee",
            "VIRTUAL_NETWORK_WAIT_FOR_DETACH_TIMEOUT": "3600",
            "PLACEMENT_GROUP_RECONCILE_DELAY": "15",
            "RECONCILE_LOOP_TIMEOUT": "600",
            "IN_CLUSTER": "false",
            "KUBECONFIG": "/tmp/kubeconfig",
        }

        with patch.dict(os.environ, env, clear=True):
            config = Config.from_env()

        assert config.namespace == "capi-system"
        assert config.managed_identity_client_id == "aaaaaaaa-bbbb-cccc-dddd-eeeeeeeeeeee"
        assert config.virtual_network.wait_for_detach_timeout_seconds == 3600
        assert config.placement_group.reconcile_delay_seconds == 15
        assert config.placement_group.loop_timeout_seconds == 600
        assert config.virtual_network.loop_timeout_seconds == 600
        assert config.in_cluster is False
        assert config.kubeconfig == "/tmp/kubeconfig"

    def test_defaults_from_empty_optional_env(self) -> None:
        """Test optional variables fall back to defaults."""
        env = {"AZURE_SUBSCRIPTION_ID": SUBSCRIPTION_ID, "AZURE_RESOURCE_GROUP": "rg"}

        with patch.dict(os.environ, env, clear=True):
            config = Config.from_env()

        assert config.namespace is None
        assert config.managed_identity_client_id is None
        assert config.placement_group == ReconcileTimings()

    def test_non_integer_value(self) -> None:
        """Test non-integer numeric variables raise a configuration error."""
        env = {
            "AZURE_SUBSCRIPTION_ID": SUBSCRIPTION_ID,
            "AZURE_RESOURCE_GROUP": "rg",
            "POLL_INTERVAL": "often",
        }

        with patch.dict(os.environ, env, clear=True):
            with pytest.raises(ConfigurationError) as exc_info:
                Config.from_env()

        assert "POLL_INTERVAL" in str(exc_info.value)
