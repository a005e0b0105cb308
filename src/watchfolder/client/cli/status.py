"""Status command for the watchfolder CLI.

Commands:
- status: Show the persisted sync state of every tracked file
"""

from __future__ import annotations

import sys
from datetime import datetime
from pathlib import Path

import click

from watchfolder.client.cli.run import config_option, load_config_or_exit
from watchfolder.client.scanner import list_directory
from watchfolder.client.state import (
    FileSyncRecord,
    StateStoreError,
    SyncStateStore,
    format_timestamp,
    truncate_to_second,
)


def describe(record: FileSyncRecord, mtime: datetime | None, max_attempts: int) -> str:
    """Summarize a record against the file currently on disk.

    Does not mutate the record; this is a read-only preview of what the
    next cycle would see.
    """
    if mtime is None:
        return "missing"
    if record.last_sync_time == mtime:
        return "in sync"
    if record.candidate_time != mtime:
        return "changed"
    if record.attempts >= max_attempts:
        return "exhausted"
    if record.attempts:
        return f"retrying ({record.attempts}/{max_attempts})"
    return f"tracking ({max(record.stable_seconds, 0)}s stable)"


@click.command()
@config_option
def status(config_path: Path | None) -> None:
    """Show the sync state of every tracked file."""
    config = load_config_or_exit(config_path)

    try:
        records = SyncStateStore(config.state_file).load()
    except StateStoreError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    on_disk: dict[str, datetime] = {}
    for path in list_directory(config.watch_folder, config.extensions):
        try:
            mtime = path.stat().st_mtime
        except OSError:
            # Removed between listing and stat
            continue
        on_disk[path.name] = truncate_to_second(datetime.fromtimestamp(mtime))

    if not records and not on_disk:
        click.echo("No files tracked.")
        return

    for name in sorted(set(records) | set(on_disk)):
        record = records.get(name)
        if record is None:
            click.echo(f"  {name}: new")
            continue
        last = format_timestamp(record.last_sync_time) if record.ever_synced else "never"
        state = describe(record, on_disk.get(name), config.max_attempts)
        click.echo(f"  {name}: {state} (last upload: {last})")
