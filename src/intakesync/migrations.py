"""
Schema migration for drafts loaded from the device.

Two passes run on every load:

1. Point migrations fix known historical shape changes on the raw
   record. Each one is idempotent, so data that already went through
   an earlier version of the same migration is left alone.
2. A two-level merge over the current template fills every field the
   current code expects while keeping whatever the user already typed.

Top-level keys the template no longer knows about are dropped.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Callable, Optional

logger = logging.getLogger("intakesync.migrations")

Record = dict[str, Any]
PointMigration = Callable[[Record], Record]

_LEGACY_HOSPITAL_KEYS = ("hospitalPreference1", "hospitalPreference2")

DAY_NAMES = {
    "mon": "monday",
    "tue": "tuesday",
    "wed": "wednesday",
    "thu": "thursday",
    "fri": "friday",
    "sat": "saturday",
    "sun": "sunday",
}

_CONSENT_FLAGS: dict[str, tuple[str, ...]] = {
    "consent": ("hipaaConsent", "benefitsConsent"),
    "customerPacket": ("acknowledgeHipaa", "acknowledgeHiringStandards"),
}


def promote_hospital_preferences(record: Record) -> Record:
    """Fold ``hospitalPreference1/2`` scalars into a ``hospitals`` list."""
    section = record.get("clientHelpList")
    if not isinstance(section, dict):
        return record
    if not any(key in section for key in _LEGACY_HOSPITAL_KEYS):
        return record

    names = [section.pop(key, "") for key in _LEGACY_HOSPITAL_KEYS]
    if not section.get("hospitals"):
        named = [n.strip() for n in names if isinstance(n, str) and n.strip()]
        section["hospitals"] = [
            {"name": name, "preference": rank}
            for rank, name in enumerate(named, start=1)
        ]
    return record


def expand_day_names(record: Record) -> Record:
    """Rename ``mon``..``sun`` frequency flags and schedules to full day names."""
    agreement = record.get("serviceAgreement")
    if not isinstance(agreement, dict):
        return record
    frequency = agreement.get("frequency")
    if not isinstance(frequency, dict):
        return record

    for abbr, full in DAY_NAMES.items():
        if abbr in frequency:
            legacy = frequency.pop(abbr)
            frequency[full] = bool(frequency.get(full)) or bool(legacy)

    schedules = frequency.get("daySchedules")
    if isinstance(schedules, dict):
        for abbr, full in DAY_NAMES.items():
            if abbr in schedules:
                entry = schedules.pop(abbr)
                schedules.setdefault(full, entry)
    return record


def convert_consent_flags(record: Record) -> Record:
    """Turn boolean consent checkboxes into ``{checked, timestamp}`` objects."""
    for section_key, flags in _CONSENT_FLAGS.items():
        section = record.get(section_key)
        if not isinstance(section, dict):
            continue
        for flag in flags:
            value = section.get(flag)
            if isinstance(value, bool):
                section[flag] = {"checked": value, "timestamp": ""}
    return record


POINT_MIGRATIONS: list[PointMigration] = [
    promote_hospital_preferences,
    expand_day_names,
    convert_consent_flags,
]

CURRENT_SCHEMA_VERSION = len(POINT_MIGRATIONS)


def _merge_section(template: Record, saved: Record) -> Record:
    # Second level: template sub-keys win only where the saved record is silent.
    result = copy.deepcopy(template)
    for key, init_val in template.items():
        if key not in saved:
            continue
        saved_val = saved[key]
        if isinstance(init_val, dict) and isinstance(saved_val, dict):
            result[key] = {**copy.deepcopy(init_val), **saved_val}
        else:
            result[key] = saved_val
    return result


def merge_with_template(saved: Record, template: Record) -> Record:
    """Overlay a saved record on the template, two levels deep.

    Record-of-records sections get new nested fields from the template;
    scalars and lists from the saved record win outright.

    Example:
        >>> merge_with_template({"a": 5}, {"a": 1, "b": {"c": 2}})
        {'a': 5, 'b': {'c': 2}}
    """
    result = copy.deepcopy(template)
    for key, init_val in template.items():
        if key not in saved:
            continue
        saved_val = saved[key]
        if isinstance(init_val, dict) and isinstance(saved_val, dict):
            result[key] = _merge_section(init_val, saved_val)
        else:
            result[key] = saved_val
    return result


def migrate_data(
    saved: Any,
    template: Record,
    migrations: Optional[list[PointMigration]] = None,
) -> Record:
    """Bring a stored record up to the current template shape.

    Args:
        saved: The decrypted record.
        template: The current initial value for this wizard.
        migrations: Point migrations to apply. Defaults to POINT_MIGRATIONS.

    Returns:
        A new record containing every template key.

    Raises:
        ValueError: If ``saved`` is not a JSON object.
    """
    if not isinstance(saved, dict):
        raise ValueError(f"Stored draft is not a record: {type(saved).__name__}")

    record = copy.deepcopy(saved)
    for migration in POINT_MIGRATIONS if migrations is None else migrations:
        record = migration(record)
    dropped = set(record) - set(template)
    if dropped:
        logger.debug("Dropping sections unknown to the template: %s", sorted(dropped))
    return merge_with_template(record, template)
