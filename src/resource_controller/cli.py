"""Azure Resource Controller CLI (azrc).

Usage:
    azrc run                                  # Run the controller
    azrc reconcile AzureVirtualNetwork vnet1  # Reconcile one object and exit
    azrc config                               # Show resolved configuration
    azrc validate manifests.yaml              # Validate manifests offline
"""

from __future__ import annotations

import asyncio
import dataclasses
import sys
from pathlib import Path

import click
import yaml
from kubernetes.config import ConfigException
from pydantic import ValidationError

from .config import Config, ConfigurationError
from .kinds import KINDS, resolve_kind
from .main import build_reconcilers, main as run_controller, setup_logging
from .models import ObjectKey
from .security import SecretlessViolationError, enforce_secretless_architecture
from .store import KubernetesObjectStore, load_kube_config


def _load_config() -> Config:
    try:
        return Config.from_env()
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e


@click.group()
@click.version_option(version="0.1.0", prog_name="azrc")
def cli() -> None:
    """Azure Resource Controller CLI (azrc).

    Reconciles AzurePlacementGroup and AzureVirtualNetwork objects against
    Azure Resource Manager.
    """
    pass


@cli.command()
def run() -> None:
    """Run the controller until SIGTERM/SIGINT."""
    sys.exit(asyncio.run(run_controller()))


@cli.command()
@click.argument("kind_name", metavar="KIND")
@click.argument("name")
@click.option("--namespace", "-n", default="default", show_default=True, help="Object namespace")
def reconcile(kind_name: str, name: str, namespace: str) -> None:
    """Reconcile a single object once and print the result."""
    try:
        kind = resolve_kind(kind_name)
    except KeyError as e:
        known = ", ".join(KINDS)
        raise click.BadParameter(f"{kind_name} (known: {known})", param_hint="KIND") from e

    config = _load_config()
    setup_logging()

    try:
        enforce_secretless_architecture()
    except SecretlessViolationError as e:
        click.secho(str(e), fg="red", err=True)
        sys.exit(2)

    try:
        load_kube_config(config.in_cluster, config.kubeconfig)
    except ConfigException as e:
        raise click.ClickException(f"Failed to load Kubernetes configuration: {e}") from e
    store = KubernetesObjectStore()
    reconciler = next(r for r in build_reconcilers(config, store) if r.kind is kind)

    result = asyncio.run(reconciler.reconcile(ObjectKey(namespace=namespace, name=name)))

    click.echo(f"{kind.kind} {result.key}: {result.action}")
    if result.requeue_after is not None:
        click.echo(f"  requeue after {result.requeue_after}s")
    if result.error is not None:
        click.secho(f"  error: {result.error}", fg="red", err=True)
        sys.exit(1)
    click.secho("✓ done", fg="green")


@cli.command("config")
def show_config() -> None:
    """Print the resolved configuration as YAML."""
    config = _load_config()
    click.echo(yaml.safe_dump(dataclasses.asdict(config), sort_keys=False))


@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def validate(path: Path) -> None:
    """Validate managed object manifests in a YAML file."""
    try:
        documents = [d for d in yaml.safe_load_all(path.read_text(encoding="utf-8")) if d]
    except yaml.YAMLError as e:
        raise click.ClickException(f"Invalid YAML in {path}: {e}") from e

    failures = 0
    for document in documents:
        kind_name = document.get("kind", "") if isinstance(document, dict) else ""
        try:
            obj = resolve_kind(kind_name).parse(document)
        except KeyError:
            click.secho(f"✗ unsupported kind: {kind_name or '<missing>'}", fg="red")
            failures += 1
            continue
        except ValidationError as e:
            name = document.get("metadata", {}).get("name", "<unnamed>")
            click.secho(f"✗ {kind_name} {name}:", fg="red")
            for error in e.errors():
                location = ".".join(str(p) for p in error["loc"])
                click.echo(f"    {location}: {error['msg']}")
            failures += 1
            continue
        click.secho(f"✓ {obj.kind} {obj.key}", fg="green")

    if failures:
        raise click.ClickException(f"{failures} of {len(documents)} manifest(s) invalid")


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
