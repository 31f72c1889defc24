"""Shared utilities for all CLI command modules.

Provides the Rich console instance and the helpers that open the
storage, cipher, audit log, and remote store for a home directory.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console

from .. import INTAKE_HOME
from ..audit import AuditLog
from ..config import IntakeConfig, load_config
from ..crypto import DraftCipher
from ..remote.base import RemoteDraftStore
from ..remote.http import HttpRemoteStore
from ..storage import FileStorage
from ..sync.models import SyncStatus

console = Console()
logger = logging.getLogger("intakesync.cli")

DRAFTS_DIR = "drafts"


def status_icon(status: SyncStatus) -> str:
    """Map sync status to a Rich-formatted indicator."""
    return {
        SyncStatus.SYNCED: "[bold green]SYNCED[/]",
        SyncStatus.SYNCING: "[cyan]SYNCING[/]",
        SyncStatus.IDLE: "[dim]IDLE[/]",
        SyncStatus.OFFLINE: "[yellow]OFFLINE[/]",
        SyncStatus.CONFLICT: "[bold yellow]CONFLICT[/]",
        SyncStatus.ERROR: "[bold red]ERROR[/]",
    }.get(status, "[dim]UNKNOWN[/]")


def home_path(home: str) -> Path:
    return Path(home).expanduser()


def open_storage(home: Path) -> FileStorage:
    return FileStorage(home / DRAFTS_DIR)


def open_cipher(home: Path) -> DraftCipher:
    return DraftCipher.from_home(home)


def open_audit(home: Path, config: IntakeConfig, cipher: Optional[DraftCipher] = None) -> AuditLog:
    seal_key = cipher.audit_seal_key() if cipher else None
    return AuditLog(home, seal_key=seal_key, enabled=config.audit_enabled)


def open_remote(config: IntakeConfig) -> RemoteDraftStore:
    """Build the configured remote store, or exit if none is set."""
    if not config.remote_url:
        console.print(
            "[bold red]No remote configured.[/] Set remote_url in config.yaml."
        )
        sys.exit(1)
    return HttpRemoteStore(
        config.remote_url,
        timeout=config.request_timeout_seconds,
        token_env_var=config.remote_token_env_var,
    )
