"""Maintenance commands for catalogsync CLI.

These commands work on the local state database only; they never contact
the remote API and do not need credentials.

Commands:
- cache stats / clear / purge: Inspect and sweep the durable cache
- retry list / clear: Inspect and drop persisted retry state
- audit sessions / report: Inspect the audit log
"""

from __future__ import annotations

import json
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager

import click

from catalogsync.client.audit import AuditLog
from catalogsync.client.cache import TieredCache
from catalogsync.client.cli.config import build_settings, get_state_db, load_config
from catalogsync.client.kvstore import SQLiteKeyValueStore
from catalogsync.client.sync.retry import RetryController
from catalogsync.core.config import ConfigError, SyncSettings


def _load_settings() -> SyncSettings:
    try:
        return build_settings(load_config())
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@contextmanager
def _open_store() -> Iterator[SQLiteKeyValueStore]:
    store = SQLiteKeyValueStore(get_state_db())
    try:
        yield store
    finally:
        store.close()


def _format_time(timestamp: float | None) -> str:
    if not timestamp:
        return "-"
    return time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(timestamp))


# === Cache ===


@click.group()
def cache() -> None:
    """Inspect and maintain the durable cache."""


def _open_cache(store: SQLiteKeyValueStore, settings: SyncSettings) -> TieredCache:
    return TieredCache(
        store,
        max_entries=settings.max_cache_entries,
        default_ttl_minutes=settings.cache_ttl_minutes,
        compression_threshold=settings.compression_threshold,
    )


@cache.command("stats")
def cache_stats() -> None:
    """Show durable cache statistics."""
    settings = _load_settings()
    with _open_store() as store:
        summary = _open_cache(store, settings).durable_stats()

    click.echo(f"Entries: {summary['entries']}")
    click.echo(f"Expired: {summary['expired']}")
    click.echo(f"Compressed: {summary['compressed']}")
    click.echo(f"Size: {summary['bytes']} bytes (uncompressed)")


@cache.command("clear")
def cache_clear() -> None:
    """Remove every cache entry."""
    settings = _load_settings()
    with _open_store() as store:
        removed = _open_cache(store, settings).clear_all()
    click.echo(f"Removed {removed} cache entries.")


@cache.command("purge")
def cache_purge() -> None:
    """Remove expired cache entries."""
    settings = _load_settings()
    with _open_store() as store:
        removed = _open_cache(store, settings).purge_expired()
    click.echo(f"Purged {removed} expired cache entries.")


# === Retry state ===


@click.group()
def retry() -> None:
    """Inspect persisted retry state of failing operations."""


@retry.command("list")
def retry_list() -> None:
    """List operations with pending retry state."""
    settings = _load_settings()
    with _open_store() as store:
        states = RetryController.from_settings(settings, store).pending_states()

    if not states:
        click.echo("No pending retries.")
        return

    for state in sorted(states, key=lambda s: s.updated_at):
        click.echo(f"{state.operation_id}")
        click.echo(f"  Attempts: {state.attempts}")
        click.echo(f"  Next retry: {_format_time(state.next_retry_at)}")
        if state.last_error:
            click.echo(f"  Last error: {state.last_error}")


@retry.command("clear")
@click.argument("operation_id", required=False)
def retry_clear(operation_id: str | None) -> None:
    """Drop retry state for OPERATION_ID, or for every operation."""
    settings = _load_settings()
    with _open_store() as store:
        controller = RetryController.from_settings(settings, store)
        if operation_id is None:
            removed = controller.clear_all()
            click.echo(f"Cleared {removed} retry states.")
            return
        if controller.load_state(operation_id) is None:
            click.echo(f"Error: No retry state for '{operation_id}'.", err=True)
            sys.exit(1)
        controller.clear_state(operation_id)
    click.echo(f"Cleared retry state for {operation_id}.")


# === Audit log ===


@click.group()
def audit() -> None:
    """Inspect the audit log of past sessions."""


@audit.command("sessions")
@click.option("--limit", "-n", type=int, default=20, show_default=True, help="Sessions to show.")
def audit_sessions(limit: int) -> None:
    """List recorded sessions, newest first."""
    with _open_store() as store:
        sessions = AuditLog(store).list_sessions()

    if not sessions:
        click.echo("No audit sessions recorded.")
        return

    for session in sessions[:limit]:
        metadata = session.get("metadata") or {}
        label = " ".join(
            str(metadata[k]) for k in ("operation", "kind") if metadata.get(k) is not None
        )
        click.echo(
            f"{session['session_id']}  {session.get('status', '?'):<10} "
            f"{_format_time(session.get('started_at'))}  "
            f"{session.get('record_count', 0)} records  {label}"
        )


@audit.command("report")
@click.argument("session_id")
@click.option("--json", "as_json", is_flag=True, help="Print the raw report as JSON.")
def audit_report(session_id: str, as_json: bool) -> None:
    """Show the report of SESSION_ID."""
    with _open_store() as store:
        report = AuditLog(store).load_report(session_id)

    if report is None:
        click.echo(f"Error: No report for session '{session_id}'.", err=True)
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(report, indent=2))
        return

    click.echo(f"Session: {report['session_id']}")
    click.echo(f"Status: {report['status']}")
    click.echo(f"Started: {_format_time(report.get('started_at'))}")
    click.echo(f"Ended: {_format_time(report.get('ended_at'))}")
    click.echo(f"Batches: {report['batches']}")
    click.echo(
        f"Operations: {report['total_operations']} "
        f"({report['succeeded']} succeeded, {report['failed']} failed, "
        f"{report['success_rate']:.0%} success rate)"
    )
    click.echo(f"Average duration: {report['average_duration']:.3f}s")
    click.echo(f"Pass duration: {report.get('timed_duration', 0.0):.1f}s")
    if report.get("error_messages"):
        click.echo(click.style("\nErrors:", fg="red"))
        for message in report["error_messages"]:
            click.echo(f"  ✗ {message}")
