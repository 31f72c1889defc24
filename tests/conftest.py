"""Shared test fixtures for intakesync."""

from __future__ import annotations

from pathlib import Path

import pytest

from intakesync.audit import AuditLog
from intakesync.crypto import DraftCipher
from intakesync.remote.memory import InMemoryRemoteStore
from intakesync.storage import MemoryStorage

DRAFT_ID = "4f6c1a2e-8b3d-4e5f-9a7b-1c2d3e4f5a6b"


@pytest.fixture
def tmp_home(tmp_path: Path) -> Path:
    """Provide a temporary intakesync home directory for testing."""
    home = tmp_path / ".intakesync"
    home.mkdir()
    return home


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def cipher() -> DraftCipher:
    """Cipher with a fixed key so tests can decrypt what the store wrote."""
    return DraftCipher(b"\x07" * 32)


@pytest.fixture
def audit() -> AuditLog:
    """In-memory audit log."""
    return AuditLog()


@pytest.fixture
def remote() -> InMemoryRemoteStore:
    return InMemoryRemoteStore()


@pytest.fixture
def draft_id() -> str:
    return DRAFT_ID
