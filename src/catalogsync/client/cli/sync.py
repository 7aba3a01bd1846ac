"""Sync commands for catalogsync CLI.

Commands:
- sync: Pull remote collections into the local record store
- push: Write locally edited records back to the remote API
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from catalogsync.client.cli.config import (
    build_settings,
    build_shop_config,
    get_state_db,
    load_config,
)
from catalogsync.client.sync import SYNC_ORDER, FetchProgress, ProgressCallback, SyncEngine
from catalogsync.core.config import ConfigError


def open_engine(on_progress: ProgressCallback | None = None) -> SyncEngine:
    """Build a sync engine from the stored configuration.

    Exits with an error message when the configuration is incomplete.
    """
    config = load_config()
    try:
        shop = build_shop_config(config)
        settings = build_settings(config)
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    return SyncEngine.create(shop, get_state_db(), settings, on_progress=on_progress)


@click.command()
@click.option(
    "--kind",
    "-k",
    "kinds",
    multiple=True,
    type=click.Choice(list(SYNC_ORDER)),
    help="Record kind to sync (repeatable, default: all).",
)
@click.option("--incremental", is_flag=True, help="Only fetch records updated since the last sync.")
@click.option("--force-refresh", is_flag=True, help="Ignore cached collections.")
@click.option("--no-progress", is_flag=True, help="Disable per-page progress output.")
def sync(
    kinds: tuple[str, ...],
    incremental: bool,
    force_refresh: bool,
    no_progress: bool,
) -> None:
    """Pull remote collections into the local record store.

    Only records whose canonical fields changed are written. Kinds are
    synced in dependency order (products first).
    """

    def on_progress(progress: FetchProgress) -> None:
        click.echo(
            f"  {progress.resource_type}: {progress.item_count} items "
            f"(page {progress.page}, {progress.items_per_second:.0f}/s)"
        )

    with open_engine(None if no_progress else on_progress) as engine:
        click.echo(f"Syncing with {engine.client.config.shop_domain}...")
        results = engine.sync_all(
            list(kinds) or None, incremental=incremental, force_refresh=force_refresh
        )

    failed = 0
    for name, result in results.items():
        if result.success:
            summary = result.changes.summary() if result.changes else {}
            source = " (cached)" if result.from_cache else ""
            click.echo(
                f"  ✓ {name}: {result.fetched} fetched{source}, "
                f"{summary.get('added', 0)} added, "
                f"{summary.get('updated', 0)} updated, "
                f"{summary.get('deleted', 0)} deleted, "
                f"{summary.get('unchanged', 0)} unchanged"
            )
            if result.truncated:
                click.echo(
                    click.style(
                        "    Fetch stopped at the item ceiling; deletions were not detected.",
                        fg="yellow",
                    )
                )
        else:
            failed += 1
            click.echo(click.style(f"  ✗ {name}: sync failed", fg="red"))
            for error in result.errors:
                click.echo(f"    {error}")

    if failed:
        click.echo(f"\n{failed} of {len(results)} kinds failed.", err=True)
        sys.exit(1)
    click.echo("\nSync complete.")


@click.command()
@click.argument("kind", type=click.Choice(list(SYNC_ORDER)))
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def push(kind: str, file: Path) -> None:
    """Push records from FILE (a JSON list) to the remote API.

    Records whose canonical fields match the stored copy are skipped;
    records unknown locally are created.
    """
    try:
        records = json.loads(file.read_text())
    except ValueError as e:
        click.echo(f"Error: {file} is not valid JSON: {e}", err=True)
        sys.exit(1)
    if not isinstance(records, list) or not all(isinstance(r, dict) for r in records):
        click.echo(f"Error: {file} must contain a JSON list of objects.", err=True)
        sys.exit(1)

    with open_engine() as engine:
        if engine.settings.read_only:
            click.echo("Error: Read-only mode is enabled; push is disabled.", err=True)
            sys.exit(1)
        result = engine.push(kind, records)

    if not result.items:
        click.echo("Everything is up to date.")
        return

    for item in result.items:
        if not item.success:
            click.echo(
                f"  ✗ {item.operation.method} {item.operation.endpoint}: {item.error}"
            )
    click.echo(f"\nPush complete: {result.succeeded} succeeded, {result.failed} failed")
    if result.failed:
        sys.exit(1)
