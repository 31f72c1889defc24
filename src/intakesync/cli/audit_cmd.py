"""Audit command: read and verify the audit trail."""

from __future__ import annotations

import sys

import click
from rich.table import Table
from rich.text import Text

from ._common import INTAKE_HOME, console, home_path, load_config, open_audit, open_cipher


def register_audit_commands(main: click.Group) -> None:
    """Register the audit command."""

    @main.command("audit")
    @click.option("--home", default=INTAKE_HOME, type=click.Path())
    @click.option("--limit", default=20, type=int, help="Show the last N entries (0 = all).")
    @click.option("--verify", is_flag=True, help="Check HMAC seals on every entry.")
    def audit(home, limit, verify):
        """Show recent audit events."""
        home_p = home_path(home)
        config = load_config(home_p)
        log = open_audit(home_p, config, open_cipher(home_p))

        if verify:
            verified, tampered = log.verify_entries()
            style = "red" if tampered else "green"
            console.print(
                f"\n  [{style}]{verified} verified, {tampered} tampered[/]\n"
            )
            if tampered:
                sys.exit(1)
            return

        entries = log.read_entries(limit=limit)
        if not entries:
            console.print("\n  [dim]No audit events.[/]\n")
            return

        severity_colors = {"failure": "red", "success": "green", "info": "dim"}
        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("Time", style="dim")
        table.add_column("Kind", style="cyan")
        table.add_column("Subject")
        table.add_column("Severity")
        table.add_column("Message")
        for e in entries:
            table.add_row(
                e.timestamp[:19], e.kind, e.subject,
                Text(e.severity.upper(), style=severity_colors.get(e.severity, "dim")),
                e.message,
            )
        console.print(table)
