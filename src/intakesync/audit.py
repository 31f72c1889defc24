"""
Audit trail for the draft core.

Migration failures, encryption failures, and conflict resolutions are
recorded for later review. The log format is JSONL (one JSON object per
line) so it stays append-only and machine-parseable.

Logging is fire-and-forget: ``log_event`` never raises, and a broken
audit sink never stops the caller from saving a draft.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import re
import socket
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

logger = logging.getLogger("intakesync.audit")

AUDIT_LOG_NAME = "audit.log"
MEMORY_LIMIT = 1000

_PHI_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\b\d{3}-\d{2}-\d{4}\b"), "[SSN-REDACTED]"),
    (re.compile(r"(?<!\d)\(\d{3}\)\s?\d{3}-\d{4}\b"), "[PHONE-REDACTED]"),
    (re.compile(r"\b\d{3}-\d{3}-\d{4}\b"), "[PHONE-REDACTED]"),
    (re.compile(r"\b[\w.-]+@[\w.-]+\.\w{2,}\b"), "[EMAIL-REDACTED]"),
]


def redact(text: str) -> str:
    """Strip obvious PHI (SSNs, phone numbers, emails) from free text."""
    for pattern, replacement in _PHI_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


class AuditEntry(BaseModel):
    """A single structured audit log entry."""

    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    kind: str
    subject: str = ""
    message: str = ""
    severity: str = "info"
    host: str = Field(default_factory=socket.gethostname)
    hmac: Optional[str] = None

    def seal_payload(self) -> bytes:
        """Bytes covered by the integrity seal."""
        return f"{self.timestamp}|{self.kind}|{self.subject}|{self.message}".encode("utf-8")


class AuditLog:
    """Append-only audit sink.

    Args:
        home: Home directory; entries go to ``<home>/security/audit.log``.
            When None, only the last MEMORY_LIMIT entries are kept in memory.
        seal_key: Optional HMAC key. When set, each entry is sealed.
        enabled: When False, ``log_event`` does nothing.
    """

    def __init__(
        self,
        home: Optional[Path] = None,
        seal_key: Optional[bytes] = None,
        enabled: bool = True,
    ) -> None:
        self._path = (
            Path(home).expanduser() / "security" / AUDIT_LOG_NAME if home else None
        )
        self._seal_key = seal_key
        self._enabled = enabled
        self._memory: deque[AuditEntry] = deque(maxlen=MEMORY_LIMIT)

    @property
    def path(self) -> Optional[Path]:
        return self._path

    def log_event(
        self,
        kind: str,
        subject: str,
        message: str,
        severity: str = "info",
    ) -> Optional[AuditEntry]:
        """Record an event. Never raises.

        Args:
            kind: Event category (``error``, ``draft_migrated``, ``sync_conflict``...).
            subject: What the event is about (storage key or draft ID).
            message: Human-readable detail; PHI patterns are redacted.
            severity: ``success``, ``failure``, or ``info``.

        Returns:
            The written entry, or None if it could not be written.
        """
        if not self._enabled:
            return None
        try:
            entry = AuditEntry(
                kind=kind,
                subject=subject,
                message=redact(message),
                severity=severity,
            )
            if self._seal_key:
                entry.hmac = self._compute_seal(entry)

            if self._path is None:
                self._memory.append(entry)
            else:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                with self._path.open("a", encoding="utf-8") as f:
                    f.write(entry.model_dump_json() + "\n")
            return entry
        except Exception as exc:
            logger.debug("Audit event skipped (%s): %s", kind, exc)
            return None

    def read_entries(self, limit: int = 0) -> list[AuditEntry]:
        """Read audit entries, oldest first.

        Args:
            limit: Return only the last N entries. 0 means all.
        """
        if self._path is None:
            entries = list(self._memory)
        else:
            entries = []
            if self._path.exists():
                for line in self._path.read_text(encoding="utf-8").splitlines():
                    if not line.strip():
                        continue
                    try:
                        entries.append(AuditEntry.model_validate_json(line))
                    except ValueError:
                        logger.warning("Skipping malformed audit line")
        if limit > 0:
            entries = entries[-limit:]
        return entries

    def verify_entries(self) -> tuple[int, int]:
        """Check HMAC seals on every sealed entry.

        Returns:
            Tuple of (verified, tampered). Unsealed entries count as neither.

        Raises:
            ValueError: If no seal key is configured.
        """
        if not self._seal_key:
            raise ValueError("Audit log has no seal key configured")

        verified = tampered = 0
        for entry in self.read_entries():
            if entry.hmac is None:
                continue
            if hmac.compare_digest(entry.hmac, self._compute_seal(entry)):
                verified += 1
            else:
                tampered += 1
        return verified, tampered

    def _compute_seal(self, entry: AuditEntry) -> str:
        return hmac.new(self._seal_key, entry.seal_payload(), hashlib.sha256).hexdigest()
