"""Draft commands: show, exists, clear, migrate."""

from __future__ import annotations

import asyncio
import json
import sys

import click
from rich.panel import Panel

from ..crypto import DecryptionError
from ..models import DraftType
from ..session import draft_storage_key
from ..store import MODIFIED_FIELD, SCHEMA_FIELD, EncryptedDraftStore
from ..templates import initial_data
from ._common import (
    INTAKE_HOME,
    console,
    home_path,
    load_config,
    open_audit,
    open_cipher,
    open_storage,
)


def register_draft_commands(main: click.Group) -> None:
    """Register the draft command group."""

    @main.group()
    def draft():
        """Inspect and maintain locally stored drafts."""

    @draft.command("show")
    @click.argument("draft_id")
    @click.option("--home", default=INTAKE_HOME, type=click.Path())
    def draft_show(draft_id, home):
        """Decrypt and print a stored draft."""
        home_p = home_path(home)
        storage = open_storage(home_p)
        raw = storage.get_item(draft_storage_key(draft_id))
        if raw is None:
            console.print(f"\n  [yellow]No local draft[/] {draft_id}\n")
            sys.exit(1)

        cipher = open_cipher(home_p)
        try:
            value = cipher.decrypt(raw) if cipher.is_encrypted(raw) else json.loads(raw)
        except (DecryptionError, ValueError) as exc:
            console.print(f"\n  [red]Error:[/] {exc}\n")
            sys.exit(1)

        if isinstance(value, dict) and SCHEMA_FIELD in value:
            schema, modified, data = value[SCHEMA_FIELD], value.get(MODIFIED_FIELD), value.get("data")
        else:
            schema, modified, data = 0, None, value

        encrypted = "[green]encrypted[/]" if cipher.is_encrypted(raw) else "[red]plaintext[/]"
        console.print()
        console.print(Panel(
            f"[bold]Schema:[/] {schema}  [bold]Modified:[/] {modified or '-'}  {encrypted}",
            title=f"Draft {draft_id}", border_style="bright_blue",
        ))
        console.print_json(data=data)

    @draft.command("exists")
    @click.argument("draft_id")
    @click.option("--home", default=INTAKE_HOME, type=click.Path())
    def draft_exists(draft_id, home):
        """Exit 0 if a local draft is stored, 1 otherwise."""
        storage = open_storage(home_path(home))
        if storage.has_item(draft_storage_key(draft_id)):
            console.print(f"  [green]yes[/] {draft_id}")
        else:
            console.print(f"  [dim]no[/] {draft_id}")
            sys.exit(1)

    @draft.command("clear")
    @click.argument("draft_id")
    @click.option("--home", default=INTAKE_HOME, type=click.Path())
    @click.option("--type", "draft_type", type=click.Choice([t.value for t in DraftType]),
                  default=DraftType.ASSESSMENT.value)
    def draft_clear(draft_id, home, draft_type):
        """Delete a local draft."""
        store = _open_store(home, draft_id, draft_type)
        asyncio.run(store.clear_draft())
        console.print(f"\n  [green]Cleared:[/] {draft_id}\n")

    @draft.command("migrate")
    @click.argument("draft_id")
    @click.option("--home", default=INTAKE_HOME, type=click.Path())
    @click.option("--type", "draft_type", type=click.Choice([t.value for t in DraftType]),
                  required=True, help="Wizard the draft belongs to.")
    def draft_migrate(draft_id, home, draft_type):
        """Upgrade a stored draft to the current template and rewrite it encrypted."""
        store = _open_store(home, draft_id, draft_type)
        if not store.has_draft():
            console.print(f"\n  [yellow]No local draft[/] {draft_id}\n")
            sys.exit(1)

        async def _migrate() -> bool:
            await store.load()
            store.update(lambda data: data, silent=True)
            return await store.flush()

        if asyncio.run(_migrate()):
            console.print(f"\n  [green]Migrated:[/] {draft_id} ({len(store.data)} sections)\n")
        else:
            console.print(f"\n  [red]Migration write failed:[/] {store.last_error}\n")
            sys.exit(1)


def _open_store(home: str, draft_id: str, draft_type: str) -> EncryptedDraftStore:
    home_p = home_path(home)
    config = load_config(home_p)
    cipher = open_cipher(home_p)
    return EncryptedDraftStore(
        open_storage(home_p),
        cipher,
        initial_data(DraftType(draft_type)),
        draft_storage_key(draft_id),
        debounce_seconds=config.save_debounce_seconds,
        audit=open_audit(home_p, config, cipher),
    )
