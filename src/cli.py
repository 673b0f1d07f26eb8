#!/usr/bin/env python3
"""
vsctl - kubectl-like CLI for the VirtualService controller.

Reads and writes objects directly in the object store and runs reconcile
passes against the configured control plane.
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager

import click
import yaml
from tabulate import tabulate

from cloud import RestControlPlaneClient
from config import ControllerConfig, get_config
from controller import VirtualServiceReconciler
from db import DatabaseManager
from errors import NotFoundError, ReconcileError
from models import (
    KIND_MESH,
    KIND_VIRTUAL_SERVICE,
    Mesh,
    ObjectKey,
    VirtualService,
    format_timestamp,
    object_from_manifest,
)
from references import ReferenceIndex

logger = logging.getLogger(__name__)


@asynccontextmanager
async def open_stores():
    """Connect to the database and yield the per-kind object stores."""
    db_config = get_config().database
    db = DatabaseManager(
        host=db_config.host,
        port=db_config.port,
        database=db_config.database,
        user=db_config.user,
        password=db_config.password,
        min_pool_size=db_config.min_pool_size,
        max_pool_size=db_config.max_pool_size,
    )
    await db.connect()
    try:
        await db.initialize_schema()
        yield {
            KIND_VIRTUAL_SERVICE: db.store_for(VirtualService),
            KIND_MESH: db.store_for(Mesh),
        }
    finally:
        await db.close()


def _load_manifests(filename):
    with open(filename, "r") as f:
        if filename.endswith(".yaml") or filename.endswith(".yml"):
            return [doc for doc in yaml.safe_load_all(f) if doc]
        data = json.load(f)
    return data if isinstance(data, list) else [data]


def _parse_key(value: str) -> ObjectKey:
    try:
        return ObjectKey.parse(value)
    except ValueError as e:
        raise click.BadParameter(str(e))


async def _apply(stores, manifest):
    obj = object_from_manifest(manifest)
    store = stores[obj.kind]
    try:
        existing = await store.get(obj.metadata.namespace, obj.metadata.name)
    except NotFoundError:
        await store.create(obj)
        return "created"

    if isinstance(obj, VirtualService):
        existing.spec = obj.spec
        await store.update(existing)
    else:
        # Mesh status is owned outside this controller; apply carries it in.
        existing.conditions = obj.conditions
        await store.update_status(existing)
    return "configured"


@click.group()
def cli():
    """vsctl - manage and reconcile App Mesh VirtualServices"""
    logging.basicConfig(
        level=ControllerConfig.from_env().log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@cli.command()
@click.argument("filename", type=click.Path(exists=True))
def apply(filename):
    """Create or update Mesh/VirtualService objects from a YAML/JSON file"""

    async def run():
        async with open_stores() as stores:
            for manifest in _load_manifests(filename):
                outcome = await _apply(stores, manifest)
                name = manifest.get("metadata", {}).get("name")
                click.echo(f"{manifest.get('kind')}/{name} {outcome}")

    try:
        asyncio.run(run())
    except (ValueError, KeyError, ReconcileError) as e:
        raise click.ClickException(str(e))


@cli.command()
@click.argument("kind", type=click.Choice([KIND_MESH, KIND_VIRTUAL_SERVICE]))
@click.argument("key")
def delete(kind, key):
    """Request deletion of an object (NAMESPACE/NAME)"""
    object_key = _parse_key(key)

    async def run():
        async with open_stores() as stores:
            return await stores[kind].mark_deleted(
                object_key.namespace, object_key.name
            )

    try:
        remaining = asyncio.run(run())
    except ReconcileError as e:
        raise click.ClickException(str(e))

    if remaining is None:
        click.echo(f"{kind}/{object_key} deleted")
    else:
        click.echo(
            f"{kind}/{object_key} marked for deletion, "
            f"waiting on: {', '.join(remaining.metadata.finalizers)}"
        )


@cli.command()
@click.argument("kind", type=click.Choice([KIND_MESH, KIND_VIRTUAL_SERVICE]))
@click.argument("key")
@click.option("--output", "-o", type=click.Choice(["json", "yaml"]), default="yaml")
def describe(kind, key, output):
    """Show an object as stored"""
    object_key = _parse_key(key)

    async def run():
        async with open_stores() as stores:
            return await stores[kind].get(object_key.namespace, object_key.name)

    try:
        obj = asyncio.run(run())
    except ReconcileError as e:
        raise click.ClickException(str(e))

    if output == "yaml":
        click.echo(yaml.safe_dump(obj.to_dict(), default_flow_style=False))
    else:
        click.echo(json.dumps(obj.to_dict(), indent=2))


@cli.command()
@click.argument("key")
def reconcile(key):
    """Run one reconcile pass for a VirtualService (NAMESPACE/NAME)"""
    object_key = _parse_key(key)
    cfg = get_config()

    async def run():
        client = RestControlPlaneClient(
            base_url=cfg.control_plane.url,
            token=cfg.control_plane.token,
            timeout=cfg.control_plane.timeout,
        )
        try:
            async with open_stores() as stores:
                reconciler = VirtualServiceReconciler(
                    vservice_store=stores[KIND_VIRTUAL_SERVICE],
                    mesh_store=stores[KIND_MESH],
                    client=client,
                    finalizer_name=cfg.controller.finalizer_name,
                )
                return await reconciler.reconcile(object_key)
        finally:
            await client.close()

    try:
        result = asyncio.run(run())
    except ReconcileError as e:
        raise click.ClickException(f"reconcile {object_key} failed: {e}")

    click.echo(f"{result.key}: {result.action.value}")
    if result.message:
        click.echo(f"Message: {result.message}")
    changed = [c for c in result.route_changes if c.action.value != "none"]
    if changed:
        rows = [[c.name, c.action.value] for c in changed]
        click.echo(tabulate(rows, headers=["Route", "Action"], tablefmt="grid"))


@cli.command()
@click.argument("key")
def conditions(key):
    """Show status conditions of a VirtualService (NAMESPACE/NAME)"""
    object_key = _parse_key(key)

    async def run():
        async with open_stores() as stores:
            return await stores[KIND_VIRTUAL_SERVICE].get(
                object_key.namespace, object_key.name
            )

    try:
        vservice = asyncio.run(run())
    except ReconcileError as e:
        raise click.ClickException(str(e))

    rows = [
        [c.type, c.status.value, format_timestamp(c.last_transition_time) or "-"]
        for c in sorted(vservice.conditions, key=lambda c: c.type)
    ]
    if not rows:
        click.echo("No conditions reported")
        return
    click.echo(
        tabulate(rows, headers=["Type", "Status", "Last Transition"], tablefmt="grid")
    )


@cli.command()
@click.option("--namespace", "-n", default=None, help="Limit to one namespace")
def refs(namespace):
    """Show which VirtualServices reference each VirtualNode/VirtualRouter"""

    async def run():
        async with open_stores() as stores:
            return await stores[KIND_VIRTUAL_SERVICE].list(namespace=namespace)

    index = ReferenceIndex()
    for vservice in asyncio.run(run()):
        index.upsert(vservice)

    rows = [
        [kind, str(key), ", ".join(str(d) for d in dependents)]
        for kind, key, dependents in index.items()
    ]
    if not rows:
        click.echo("No references found")
        return
    click.echo(
        tabulate(
            rows, headers=["Kind", "Referenced", "VirtualServices"], tablefmt="grid"
        )
    )


if __name__ == "__main__":
    cli()
