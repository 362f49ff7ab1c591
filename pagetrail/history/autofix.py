"""Deterministic repairs for the fixable defects the validator reports."""

import copy
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime

from pagetrail.history.document import (
    CURRENT_VERSION,
    empty_document,
    format_timestamp,
    parse_timestamp,
    unwrap_reading_days,
    utcnow,
)
from pagetrail.schemas.history import EntrySource

logger = logging.getLogger(__name__)


@dataclass
class AutoFixResult:
    fixed: int
    failed: int
    updated_history: dict


def _backfill_metadata(history: dict, now: datetime) -> int:
    fixed = 0
    version = history.get("version")
    if not isinstance(version, int) or isinstance(version, bool) or version < 1:
        history["version"] = CURRENT_VERSION
        fixed += 1

    for key in ("lastSyncDate", "lastCalculated"):
        if parse_timestamp(history.get(key)) is None:
            history[key] = format_timestamp(now)
            fixed += 1

    if not isinstance(history.get("bookPeriods"), list):
        history["bookPeriods"] = []
        fixed += 1

    if not isinstance(history.get("readingDayEntries"), list):
        history["readingDayEntries"] = []
        fixed += 1
    else:
        # Entries without a date cannot be placed in readingDays
        entries = history["readingDayEntries"]
        history["readingDayEntries"] = [
            e for e in entries if isinstance(e, Mapping) and isinstance(e.get("date"), str)
        ]
        fixed += len(entries) - len(history["readingDayEntries"])

    days = history.get("readingDays")
    if not isinstance(days, (list, tuple, set, frozenset)) or not all(isinstance(d, str) for d in days):
        # A set serialized as an index->date record still holds recoverable dates
        history["readingDays"] = [d for d in unwrap_reading_days(days) if isinstance(d, str)]
        fixed += 1

    for entry in history["readingDayEntries"]:
        created = parse_timestamp(entry.get("createdAt"))
        modified = parse_timestamp(entry.get("modifiedAt"))
        if created is None or modified is None:
            created = created or modified or now
            modified = modified or created
            entry["createdAt"] = format_timestamp(created)
            entry["modifiedAt"] = format_timestamp(modified)
            fixed += 1
    return fixed


def _deduplicate_entries(history: dict) -> int:
    latest: dict = {}
    for entry in history["readingDayEntries"]:
        day = entry["date"]
        existing = latest.get(day)
        if existing is None:
            latest[day] = entry
            continue
        stamp = parse_timestamp(entry.get("modifiedAt"))
        existing_stamp = parse_timestamp(existing.get("modifiedAt"))
        if stamp and (existing_stamp is None or stamp > existing_stamp):
            latest[day] = entry

    before = len(history["readingDayEntries"])
    history["readingDayEntries"] = list(latest.values())
    return 1 if len(history["readingDayEntries"]) < before else 0


def _synchronize_days(history: dict, now: datetime) -> int:
    fixed = 0
    stamp = format_timestamp(now)
    entry_dates = {e["date"] for e in history["readingDayEntries"]}
    days = list(dict.fromkeys(history["readingDays"]))

    for day in days:
        if day not in entry_dates:
            history["readingDayEntries"].append(
                {"date": day, "source": EntrySource.MANUAL.value, "createdAt": stamp, "modifiedAt": stamp}
            )
            entry_dates.add(day)
            fixed += 1

    known = set(days)
    for day in sorted(entry_dates - known):
        days.append(day)
        fixed += 1

    history["readingDays"] = sorted(days)
    return fixed


def auto_fix(history) -> AutoFixResult:
    """Apply every known repair to a copy of ``history``.

    Steps run in a fixed order: backfill metadata (entries that are not
    objects or carry no date are dropped here), drop duplicate dates (the
    latest ``modifiedAt`` wins), then bring ``readingDays`` and the entries to
    their union. A step that blows up is counted in ``failed`` and the later
    steps still run. This never raises.
    """
    if not isinstance(history, Mapping):
        logger.error("Cannot auto-fix history of type %s", type(history).__name__)
        return AutoFixResult(fixed=0, failed=1, updated_history=empty_document())

    updated = copy.deepcopy(dict(history))
    now = utcnow()
    fixed = failed = 0

    steps = (
        ("backfill metadata", lambda: _backfill_metadata(updated, now)),
        ("deduplicate entries", lambda: _deduplicate_entries(updated)),
        ("synchronize reading days", lambda: _synchronize_days(updated, now)),
    )
    for name, step in steps:
        try:
            fixed += step()
        except Exception:
            logger.exception("Auto-fix step '%s' failed", name)
            failed += 1

    if fixed:
        logger.info("Auto-fix applied %d corrections (%d failed)", fixed, failed)
    return AutoFixResult(fixed=fixed, failed=failed, updated_history=updated)
