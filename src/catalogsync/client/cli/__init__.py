"""Command-line interface for catalogsync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- configure: Store the shop connection and sync settings
- test-connection: Check credentials against the remote API
- sync: Pull remote collections into the local record store
- push: Write locally edited records back to the remote API
- cache: Inspect and sweep the durable cache
- retry: Inspect and drop persisted retry state
- audit: Inspect the audit log
"""

from __future__ import annotations

import click

from catalogsync.client.cli.config import (
    get_config_dir,
    get_config_file,
    get_state_db,
    load_config,
    save_config,
    setup_logging,
)
from catalogsync.client.cli.maintenance import audit, cache, retry
from catalogsync.client.cli.shop import configure, test_connection
from catalogsync.client.cli.sync import push, sync


@click.group()
@click.version_option(package_name="catalogsync")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """catalogsync - Incremental sync of a shop catalog."""
    setup_logging(verbose)


# Connection commands
cli.add_command(configure)
cli.add_command(test_connection)

# Sync commands
cli.add_command(sync)
cli.add_command(push)

# Maintenance commands
cli.add_command(cache)
cli.add_command(retry)
cli.add_command(audit)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    # Main entry points
    "cli",
    "main",
    # Config utilities
    "get_config_dir",
    "get_config_file",
    "get_state_db",
    "load_config",
    "save_config",
]
