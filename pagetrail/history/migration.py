"""Migrate historical reading-history records into the canonical document."""

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime

from pydantic import ValidationError

from pagetrail.history.detector import FormatDetection, HistoryFormat, detect_format, entry_map
from pagetrail.history.document import (
    CURRENT_VERSION,
    ReadingHistory,
    parse_calendar_date,
    parse_timestamp,
    unwrap_reading_days,
    utcnow,
)
from pagetrail.history.validator import validate
from pagetrail.schemas.history import EntrySource, ReadingDayEntry, ReadingPeriod

logger = logging.getLogger(__name__)

# Provenance sub-record types, strongest first
SOURCE_PRIORITY = (
    ("book_completion", EntrySource.BOOK),
    ("progress_update", EntrySource.PROGRESS),
    ("manual", EntrySource.MANUAL),
)

_SOURCE_VALUES = {s.value for s in EntrySource}

PRESERVED_SCALARS = {
    "currentStreak": "legacyCurrentStreak",
    "longestStreak": "legacyLongestStreak",
    "lastReadDate": "legacyLastReadDate",
    "totalDaysRead": "legacyTotalDaysRead",
}

# Fields the canonical structure absorbs directly
CANONICAL_FIELDS = {
    "readingDays",
    "readingDayEntries",
    "readingDayMap",
    "bookPeriods",
    "lastCalculated",
    "lastSyncDate",
    "version",
}


@dataclass
class MigrationResult:
    success: bool = False
    canonical_history: dict | None = None
    data_points_migrated: int = 0
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    preserved_metadata: dict = field(default_factory=dict)
    format: HistoryFormat = HistoryFormat.UNKNOWN
    discarded_dates: list = field(default_factory=list)


@dataclass
class MigrationStats:
    total_reading_days: int
    preserved_book_periods: int
    migrated_reading_day_entries: int
    recovered_metadata: int
    data_integrity_score: int


def _load_periods(raw, result: MigrationResult) -> list[ReadingPeriod]:
    periods = []
    for item in raw or []:
        try:
            periods.append(item if isinstance(item, ReadingPeriod) else ReadingPeriod.model_validate(item))
        except ValidationError as exc:
            result.warnings.append(f"Skipped unreadable book period: {exc.error_count()} validation errors")
    return periods


def _fallback_timestamp(data: Mapping) -> datetime:
    return parse_timestamp(data.get("lastCalculated")) or utcnow()


def _migrate_basic(data: Mapping, history: ReadingHistory, result: MigrationResult) -> None:
    stamp = _fallback_timestamp(data)

    for raw_day in unwrap_reading_days(data.get("readingDays")):
        day = parse_calendar_date(raw_day)
        if day is None:
            result.discarded_dates.append(raw_day)
            continue

        book_ids = [p.book_id for p in history.book_periods if p.covers(day)]
        history.put(
            ReadingDayEntry(
                date=raw_day,
                source=EntrySource.BOOK if book_ids else EntrySource.MANUAL,
                book_ids=book_ids,
                created_at=stamp,
                modified_at=stamp,
            )
        )


def _infer_source(entry: Mapping, sources: list[Mapping]) -> EntrySource:
    if sources:
        types = {s.get("type") for s in sources}
        for source_type, source in SOURCE_PRIORITY:
            if source_type in types:
                return source
        return EntrySource.MANUAL

    declared = entry.get("source")
    if declared in _SOURCE_VALUES:
        return EntrySource(declared)
    return EntrySource.BOOK if entry.get("bookIds") else EntrySource.MANUAL


def _collapse_entry(day: str, entry: Mapping, fallback: datetime) -> ReadingDayEntry:
    """Fold an entry and its provenance sub-records into one canonical entry."""
    sources = [s for s in entry.get("sources") or [] if isinstance(s, Mapping)]
    stamps = [parse_timestamp(s.get("timestamp")) for s in sources]

    entry_created = parse_timestamp(entry.get("createdAt"))
    entry_modified = parse_timestamp(entry.get("modifiedAt"))

    created = (stamps[0] if stamps else None) or entry_created or entry_modified or fallback
    modified = (stamps[-1] if stamps else None) or entry_modified or created
    # Stamps borrowed from elsewhere in the record must not run backwards
    modified = max(modified, created)

    return ReadingDayEntry(
        date=day,
        source=_infer_source(entry, sources),
        book_ids=entry.get("bookIds") or None,
        notes=entry.get("notes"),
        created_at=created,
        modified_at=modified,
    )


def _migrate_entries(items: Iterable[tuple], data: Mapping, history: ReadingHistory, result: MigrationResult) -> None:
    fallback = _fallback_timestamp(data)
    for key, entry in items:
        if not isinstance(entry, Mapping):
            result.warnings.append(f"Skipped reading day entry that is not an object: {key}")
            continue
        day = entry.get("date") or (key if isinstance(key, str) else None)
        if day is None:
            result.warnings.append(f"Skipped reading day entry without a date: {key}")
            continue
        if not history.merge(_collapse_entry(str(day), entry, fallback)):
            result.warnings.append(f"Dropped older duplicate entry for {day}")


def _migrate_enhanced_legacy(data: Mapping, history: ReadingHistory, result: MigrationResult) -> None:
    _migrate_entries(((i, e) for i, e in enumerate(data["readingDayEntries"])), data, history, result)


def _migrate_reading_day_map(data: Mapping, history: ReadingHistory, result: MigrationResult) -> None:
    _migrate_entries(entry_map(data).items(), data, history, result)


TRANSFORMS: dict[HistoryFormat, Callable[[Mapping, ReadingHistory, MigrationResult], None]] = {
    HistoryFormat.BASIC_LEGACY: _migrate_basic,
    HistoryFormat.ENHANCED_LEGACY: _migrate_enhanced_legacy,
    HistoryFormat.READING_DAY_MAP: _migrate_reading_day_map,
}


def preserve_metadata(data: Mapping) -> dict:
    preserved = {}
    for key, value in data.items():
        if key in PRESERVED_SCALARS:
            if value is not None:
                preserved[PRESERVED_SCALARS[key]] = value
        elif key not in CANONICAL_FIELDS:
            preserved[f"legacy_{key}"] = value
    return preserved


def migrate(data, book_periods: Iterable | None = None) -> MigrationResult:
    """Turn any supported historical record into a canonical history document.

    ``book_periods`` stands in for the record's own periods when it carries none;
    they are only used to work out which book a reading day belongs to.
    """
    result = MigrationResult()
    detection: FormatDetection = detect_format(data)
    result.format = detection.format
    result.warnings.extend(detection.warnings)

    if detection.format == HistoryFormat.UNKNOWN:
        result.issues.extend(detection.issues)
        result.issues.append("Cannot migrate unknown data format")
        return result

    if detection.format == HistoryFormat.ENHANCED_CURRENT:
        result.success = True
        result.canonical_history = data
        result.data_points_migrated = detection.data_points
        result.warnings.append("Data already in enhanced format; no migration needed")
        return result

    logger.info("Migrating %s reading history (%d data points)", detection.format.value, detection.data_points)
    try:
        history = ReadingHistory(
            book_periods=_load_periods(data.get("bookPeriods") or book_periods, result),
            last_calculated=_fallback_timestamp(data),
            version=CURRENT_VERSION,
        )
        TRANSFORMS[detection.format](data, history, result)
        history.touch()
        document = history.to_document()
    except (ValidationError, TypeError, ValueError) as exc:
        logger.exception("Migration of %s history failed", detection.format.value)
        result.issues.append(f"Migration failed: {exc}")
        return result

    if result.discarded_dates:
        logger.warning("Discarded %d malformed reading days during migration", len(result.discarded_dates))
        result.warnings.append(
            f"Discarded {len(result.discarded_dates)} reading days with malformed dates: "
            + ", ".join(str(d) for d in result.discarded_dates[:10])
        )

    validation = validate(document)
    if not validation.is_valid:
        result.issues.extend(str(issue) for issue in validation.blocking_issues)
        return result
    result.warnings.extend(w.message for w in validation.warnings)

    result.preserved_metadata = preserve_metadata(data)
    result.data_points_migrated = len(history)
    result.canonical_history = document
    result.success = True
    return result


def migration_stats(original, migrated: Mapping) -> MigrationStats:
    recovered = [key for key in original if key not in CANONICAL_FIELDS] if isinstance(original, Mapping) else []
    return MigrationStats(
        total_reading_days=len(migrated.get("readingDays") or []),
        preserved_book_periods=len(migrated.get("bookPeriods") or []),
        migrated_reading_day_entries=len(migrated.get("readingDayEntries") or []),
        recovered_metadata=len(recovered),
        data_integrity_score=validate(migrated).score,
    )
