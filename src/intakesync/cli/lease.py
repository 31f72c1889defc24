"""Lease commands: info, release."""

from __future__ import annotations

import asyncio
import sys

import click

from ..remote.base import RemoteStoreError
from ._common import INTAKE_HOME, console, home_path, load_config, open_remote


def register_lease_commands(main: click.Group) -> None:
    """Register the lease command group."""

    @main.group()
    def lease():
        """Inspect and release edit leases on the remote store."""

    @lease.command("info")
    @click.argument("draft_id")
    @click.option("--home", default=INTAKE_HOME, type=click.Path())
    def lease_info(draft_id, home):
        """Show who holds the edit lease on a draft."""
        remote = open_remote(load_config(home_path(home)))
        try:
            info = asyncio.run(remote.get_lease_info(draft_id))
        except RemoteStoreError as exc:
            console.print(f"\n  [red]Error:[/] {exc}\n")
            sys.exit(1)

        if info is None:
            console.print(f"\n  [green]Unlocked:[/] {draft_id}\n")
            return
        console.print(f"\n  [yellow]Locked:[/] {draft_id}")
        console.print(f"    [bold]By:[/] {info.locked_by}")
        console.print(f"    [bold]Since:[/] {info.locked_at or '-'}")
        console.print(f"    [dim]Device: {info.lock_device_id or '-'}[/]\n")

    @lease.command("release")
    @click.argument("draft_id")
    @click.option("--home", default=INTAKE_HOME, type=click.Path())
    @click.option("--user", "user_id", required=True, help="User the lease belongs to.")
    def lease_release(draft_id, home, user_id):
        """Release a lease held by a user (e.g. after a crashed session)."""
        remote = open_remote(load_config(home_path(home)))
        try:
            asyncio.run(remote.release_lease(draft_id, user_id))
        except RemoteStoreError as exc:
            console.print(f"\n  [red]Error:[/] {exc}\n")
            sys.exit(1)
        console.print(f"\n  [green]Released:[/] {draft_id} for {user_id}\n")
