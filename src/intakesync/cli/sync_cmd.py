"""Sync commands: push, queue."""

from __future__ import annotations

import asyncio
import sys

import click
from rich.table import Table

from ..config import get_device_id
from ..models import Draft, DraftType
from ..session import DraftSession
from ..sync.engine import read_queue, read_state
from ..sync.models import SyncStatus
from ._common import (
    INTAKE_HOME,
    console,
    home_path,
    load_config,
    open_audit,
    open_cipher,
    open_remote,
    open_storage,
    status_icon,
)


def register_sync_commands(main: click.Group) -> None:
    """Register the sync command group."""

    @main.group()
    def sync():
        """Push local drafts to the remote store."""

    @sync.command("push")
    @click.argument("draft_id")
    @click.option("--home", default=INTAKE_HOME, type=click.Path())
    @click.option("--user", "user_id", required=True, help="User pushing the draft.")
    @click.option("--type", "draft_type", type=click.Choice([t.value for t in DraftType]),
                  default=DraftType.ASSESSMENT.value)
    @click.option("--client", "client_name", default="", help="Client name for the remote row.")
    def sync_push(draft_id, home, user_id, draft_type, client_name):
        """Push one local draft now, with the normal version check."""
        home_p = home_path(home)
        config = load_config(home_p)
        remote = open_remote(config)
        storage = open_storage(home_p)
        cipher = open_cipher(home_p)
        audit = open_audit(home_p, config, cipher)

        session = DraftSession.build(
            Draft(id=draft_id, type=DraftType(draft_type), client_name=client_name),
            remote,
            storage,
            cipher,
            user_id,
            get_device_id(home_p),
            config=config,
            audit=audit,
        )
        if not session.store.has_draft():
            console.print(f"\n  [yellow]No local draft[/] {draft_id}\n")
            sys.exit(1)

        async def _push() -> int:
            await session.store.load()
            session.engine.schedule_sync(session.to_draft())
            pushed = await session.engine.flush_sync()
            await session.engine.close()
            return pushed

        console.print(f"\n  Pushing [cyan]{draft_id}[/]...", end=" ")
        pushed = asyncio.run(_push())
        engine = session.engine
        console.print(status_icon(engine.status))

        if engine.status is SyncStatus.CONFLICT and engine.conflict_info:
            info = engine.conflict_info
            console.print(
                f"  [yellow]Remote is at version {info.remote_version}"
                f" (updated {info.remote_updated_at or 'unknown'}).[/]"
            )
            sys.exit(2)
        if pushed == 0:
            console.print(f"  [red]{engine.last_error or 'Nothing pushed'}[/]\n")
            sys.exit(1)
        console.print(f"  [dim]Remote version {engine.known_version(draft_id)}[/]\n")

    @sync.command("queue")
    @click.option("--home", default=INTAKE_HOME, type=click.Path())
    def sync_queue(home):
        """List operations waiting for connectivity."""
        home_p = home_path(home)
        storage = open_storage(home_p)
        items = read_queue(storage)
        if not items:
            console.print("\n  [dim]Offline queue is empty.[/]\n")
            return

        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("Action", style="cyan")
        table.add_column("Draft")
        table.add_column("Queued", style="dim")
        for item in items:
            table.add_row(item.action.value, item.draft_id, item.timestamp)
        console.print(table)

        state = read_state(storage)
        console.print(
            f"\n  [dim]Pushes: {state.push_count}  Conflicts: {state.conflict_count}"
            f"  Last push: {state.last_push or 'never'}[/]\n"
        )
