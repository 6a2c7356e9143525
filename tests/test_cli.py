"""Tests for the azrc command line."""

from __future__ import annotations

from unittest import mock

import pytest
import yaml
from click.testing import CliRunner

from resource_controller.cli import cli
from resource_controller.engine import ReconcileResult
from resource_controller.kinds import VIRTUAL_NETWORK
from resource_controller.models import ObjectKey

SUBSCRIPTION_ID = "12345678-1234-1234-1234-123456789012"

VALID_MANIFESTS = """
apiVersion: infrastructure.cluster.x-k8s.io/v1alpha1
kind: AzureVirtualNetwork
metadata:
  name: vnet1
  namespace: team-a
spec:
  region: westeurope
  addressSpace: ["10.0.0.0/16"]
  subnets:
    - label: nodes
      addressPrefix: 10.0.1.0/24
---
apiVersion: infrastructure.cluster.x-k8s.io/v1alpha1
kind: AzurePlacementGroup
metadata:
  name: pg1
spec:
  region: westeurope
"""

INVALID_MANIFESTS = """
kind: AzureVirtualNetwork
metadata:
  name: broken
spec:
  region: westeurope
  addressSpace: []
---
kind: AzureLoadBalancer
metadata:
  name: lb
"""


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def controller_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AZURE_SUBSCRIPTION_ID", SUBSCRIPTION_ID)
    monkeypatch.setenv("AZURE_RESOURCE_GROUP", "rg-test")


class TestVersion:
    """Tests for --version."""

    def test_version(self, runner: CliRunner) -> None:
        """Test the version flag prints the program name."""
        result = runner.invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert "azrc" in result.output


class TestConfigCommand:
    """Tests for azrc config."""

    def test_prints_resolved_config(self, runner: CliRunner, controller_env: None) -> None:
        """Test the resolved configuration is printed as YAML."""
        result = runner.invoke(cli, ["config"])

        assert result.exit_code == 0
        data = yaml.safe_load(result.output)
        assert data["subscription_id"] == SUBSCRIPTION_ID
        assert data["resource_group_name"] == "rg-test"
        assert data["virtual_network"]["reconcile_delay_seconds"] == 5

    def test_missing_configuration(
        self, runner: CliRunner, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test missing configuration is a usage error."""
        monkeypatch.delenv("AZURE_SUBSCRIPTION_ID", raising=False)
        monkeypatch.delenv("AZURE_RESOURCE_GROUP", raising=False)

        result = runner.invoke(cli, ["config"])

        assert result.exit_code == 1
        assert "AZURE_SUBSCRIPTION_ID is required" in result.output


class TestValidateCommand:
    """Tests for azrc validate."""

    def test_valid_file(self, runner: CliRunner, tmp_path) -> None:
        """Test every valid manifest is reported."""
        path = tmp_path / "manifests.yaml"
        path.write_text(VALID_MANIFESTS)

        result = runner.invoke(cli, ["validate", str(path)])

        assert result.exit_code == 0
        assert "AzureVirtualNetwork team-a/vnet1" in result.output
        assert "AzurePlacementGroup default/pg1" in result.output

    def test_invalid_file(self, runner: CliRunner, tmp_path) -> None:
        """Test invalid and unsupported manifests fail the command."""
        path = tmp_path / "manifests.yaml"
        path.write_text(INVALID_MANIFESTS)

        result = runner.invoke(cli, ["validate", str(path)])

        assert result.exit_code == 1
        assert "broken" in result.output
        assert "addressSpace" in result.output
        assert "unsupported kind: AzureLoadBalancer" in result.output
        assert "2 of 2 manifest(s) invalid" in result.output

    def test_malformed_yaml(self, runner: CliRunner, tmp_path) -> None:
        """Test unparseable YAML is reported."""
        path = tmp_path / "manifests.yaml"
        path.write_text("kind: [unclosed\n")

        result = runner.invoke(cli, ["validate", str(path)])

        assert result.exit_code == 1
        assert "Invalid YAML" in result.output


class TestReconcileCommand:
    """Tests for azrc reconcile."""

    def test_unknown_kind(self, runner: CliRunner) -> None:
        """Test an unknown kind is a parameter error."""
        result = runner.invoke(cli, ["reconcile", "AzureLoadBalancer", "lb"])

        assert result.exit_code == 2
        assert "known:" in result.output

    def test_reconciles_one_object(self, runner: CliRunner, controller_env: None) -> None:
        """Test the selected reconciler runs once for the named object."""
        reconciler = mock.Mock()
        reconciler.kind = VIRTUAL_NETWORK
        reconciler.reconcile = mock.AsyncMock(
            return_value=ReconcileResult(
                kind="AzureVirtualNetwork",
                key=ObjectKey(namespace="team-a", name="vnet1"),
                action="create",
            )
        )

        with (
            mock.patch("resource_controller.cli.setup_logging"),
            mock.patch("resource_controller.cli.load_kube_config"),
            mock.patch("resource_controller.cli.KubernetesObjectStore"),
            mock.patch("resource_controller.cli.build_reconcilers", return_value=[reconciler]),
        ):
            result = runner.invoke(cli, ["reconcile", "vnet", "vnet1", "-n", "team-a"])

        assert result.exit_code == 0, result.output
        reconciler.reconcile.assert_awaited_once_with(ObjectKey(namespace="team-a", name="vnet1"))
        assert "AzureVirtualNetwork team-a/vnet1: create" in result.output

    def test_reconcile_error(self, runner: CliRunner, controller_env: None) -> None:
        """Test a failed reconcile exits with 1."""
        reconciler = mock.Mock()
        reconciler.kind = VIRTUAL_NETWORK
        reconciler.reconcile = mock.AsyncMock(
            return_value=ReconcileResult(
                kind="AzureVirtualNetwork",
                key=ObjectKey(namespace="default", name="vnet1"),
                action="create",
                error=RuntimeError("quota exceeded"),
            )
        )

        with (
            mock.patch("resource_controller.cli.setup_logging"),
            mock.patch("resource_controller.cli.load_kube_config"),
            mock.patch("resource_controller.cli.KubernetesObjectStore"),
            mock.patch("resource_controller.cli.build_reconcilers", return_value=[reconciler]),
        ):
            result = runner.invoke(cli, ["reconcile", "AzureVirtualNetwork", "vnet1"])

        assert result.exit_code == 1
        assert "quota exceeded" in result.output
