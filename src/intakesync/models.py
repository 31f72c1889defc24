"""
Pydantic models for drafts and edit leases.

A Draft is the unit of persistence and synchronization. Its ``data``
payload belongs to the form layer; the core only migrates and moves it.
"""

from __future__ import annotations

import re
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def new_draft_id() -> str:
    """Generate a draft ID that can travel to the remote store."""
    return str(uuid.uuid4())


def is_remote_id(draft_id: Optional[str]) -> bool:
    """Whether a draft ID is eligible for remote locking and sync.

    Legacy IDs such as ``draft-1708000000000`` never existed remotely,
    so they stay local-only.
    """
    return bool(draft_id) and bool(_UUID_RE.match(draft_id))


class DraftType(str, Enum):
    """Which wizard a draft belongs to."""

    ASSESSMENT = "assessment"
    SERVICE_CONTRACT = "serviceContract"


class DraftStatus(str, Enum):
    """Draft lifecycle."""

    DRAFT = "draft"
    SUBMITTED = "submitted"


class Draft(BaseModel):
    """One in-progress or submitted form.

    ``remote_version`` is the remote version this copy last read; it is
    the expected version on the next compare-and-swap push.
    """

    id: str = Field(default_factory=new_draft_id)
    client_name: str = ""
    type: DraftType = DraftType.ASSESSMENT
    status: DraftStatus = DraftStatus.DRAFT
    current_step: int = Field(default=0, ge=0)
    data: dict[str, Any] = Field(default_factory=dict)
    last_modified: str = Field(default_factory=utc_now_iso)
    linked_assessment_id: Optional[str] = None
    remote_version: Optional[int] = None


class LeaseInfo(BaseModel):
    """Who holds the edit lease on a draft, for human-readable notices."""

    locked_by: str
    locked_at: str = ""
    lock_device_id: str = ""


class LeaseState(str, Enum):
    """Edit lease state for one draft on this device."""

    UNLEASED = "unleased"
    HELD = "held"
    BLOCKED_BY_OTHER = "blocked_by_other"
