#!/usr/bin/env python3
"""
CLI tool for the bootstrap configuration ensurer
Inspects live configuration objects and toggles their auto-update annotation
"""

import asyncio
import json
from contextlib import asynccontextmanager
from typing import AsyncIterator, Tuple

import click
import yaml
from tabulate import tabulate

from bootstrap import BootstrapConfiguration
from cache import ObjectCache
from config import get_config
from configuration import new_access
from controller import BootstrapController
from db import DatabaseManager, StoreError
from ensurer import get_remove_candidates
from objects import AUTO_UPDATE_ANNOTATION, KINDS, is_auto_update_enabled

KIND_CHOICE = click.Choice(sorted(KINDS), case_sensitive=False)


@asynccontextmanager
async def connect_store() -> AsyncIterator[Tuple[DatabaseManager, ObjectCache]]:
    """Open a store connection and an (event-less) cache over it."""
    db_config = get_config().database
    db = DatabaseManager(
        host=db_config.host,
        port=db_config.port,
        database=db_config.database,
        user=db_config.user,
        password=db_config.password,
        min_pool_size=1,
        max_pool_size=2,
    )
    await db.connect()
    try:
        yield db, ObjectCache(db)
    finally:
        await db.close()


def _run(coro):
    """Run a coroutine, turning store errors into CLI errors"""
    try:
        return asyncio.run(coro)
    except StoreError as e:
        raise click.ClickException(e.message)


@click.group()
def cli():
    """Bootstrap configuration CLI - inspect and manage default objects"""
    pass


@cli.command("list")
@click.argument("kind", type=KIND_CHOICE)
def list_objects(kind):
    """List live objects of a kind"""

    async def _list():
        async with connect_store() as (db, cache):
            return await new_access(kind, db, cache).list()

    objects = _run(_list())
    if not objects:
        click.echo(f"No {kind} objects found")
        return

    rows = [
        [
            obj.name,
            obj.metadata.resource_version,
            obj.metadata.generation,
            obj.annotations.get(AUTO_UPDATE_ANNOTATION, "<unset>"),
            obj.metadata.field_manager or "",
        ]
        for obj in objects
    ]
    headers = ["Name", "Version", "Generation", "Auto-update", "Manager"]
    click.echo(tabulate(rows, headers=headers, tablefmt="grid"))


@cli.command()
@click.argument("kind", type=KIND_CHOICE)
@click.argument("name")
@click.option("--output", "-o", type=click.Choice(["json", "yaml"]), default="yaml")
def get(kind, name, output):
    """Show a single live object"""

    async def _get():
        async with connect_store() as (db, cache):
            return await new_access(kind, db, cache).get(name)

    obj = _run(_get())
    data = {"kind": obj.kind, **obj.model_dump(mode="json", exclude_none=True)}
    if output == "yaml":
        click.echo(yaml.dump(data, default_flow_style=False, sort_keys=False))
    else:
        click.echo(json.dumps(data, indent=2))


@cli.command()
def ensure():
    """Run one bootstrap ensure pass now"""

    async def _ensure():
        async with connect_store() as (db, cache):
            controller = BootstrapController(
                priority_levels=new_access("PriorityLevelConfiguration", db, cache),
                flow_schemas=new_access("FlowSchema", db, cache),
                config=get_config().ensurer,
            )
            await controller.ensure_once()

    _run(_ensure())
    click.echo("Bootstrap configuration ensured")


@cli.command()
@click.argument("kind", type=KIND_CHOICE)
def stale(kind):
    """List dangling defaults that the next pass would remove"""

    async def _stale():
        async with connect_store() as (db, cache):
            access = new_access(kind, db, cache)
            names = await get_remove_candidates(
                access, BootstrapConfiguration().all_of_kind(kind)
            )
            return [await access.get(name) for name in names]

    objects = _run(_stale())
    if not objects:
        click.echo(f"No dangling {kind} objects")
        return

    missing_policy = get_config().ensurer.missing_annotation_auto_update
    rows = [
        [
            obj.name,
            "yes" if is_auto_update_enabled(obj, missing_policy) else "no (kept)",
        ]
        for obj in objects
    ]
    click.echo(tabulate(rows, headers=["Name", "Removable"], tablefmt="grid"))


@cli.command("auto-update")
@click.argument("kind", type=KIND_CHOICE)
@click.argument("name")
@click.argument("state", type=click.Choice(["on", "off"]))
def auto_update(kind, name, state):
    """Hand an object back to the system (on) or take it over (off)"""
    value = "true" if state == "on" else "false"

    async def _set():
        async with connect_store() as (db, _cache):
            return await db.set_annotation(kind, name, AUTO_UPDATE_ANNOTATION, value)

    record = _run(_set())
    click.echo(
        f"{kind} {name!r}: {AUTO_UPDATE_ANNOTATION}={value} "
        f"(resource version {record['resource_version']})"
    )


if __name__ == "__main__":
    cli()
