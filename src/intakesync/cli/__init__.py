"""
intakesync CLI: operator tools for drafts, leases, sync, and audit.

Each command group lives in its own module and is registered on the
main Click group here.

Entry point: intakesync.cli:main
"""

from __future__ import annotations

import logging

import click

from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="intakesync")
@click.option("-v", "--verbose", is_flag=True, help="Log debug output to stderr.")
def main(verbose):
    """intakesync: offline-first intake-form drafts."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )


# ---------------------------------------------------------------------------
# Register all command groups/commands from modular files
# ---------------------------------------------------------------------------

from .draft import register_draft_commands
from .lease import register_lease_commands
from .sync_cmd import register_sync_commands
from .audit_cmd import register_audit_commands

register_draft_commands(main)
register_lease_commands(main)
register_sync_commands(main)
register_audit_commands(main)
