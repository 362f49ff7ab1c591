"""Classify a stored reading-history record by the shape it was written in."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum

from pagetrail.history.document import unwrap_reading_days


class HistoryFormat(str, Enum):
    UNKNOWN = "unknown"
    BASIC_LEGACY = "basic_legacy"
    ENHANCED_LEGACY = "enhanced_legacy"
    READING_DAY_MAP = "reading_day_map"
    ENHANCED_CURRENT = "enhanced_current"


LEGACY_SCALARS = ("currentStreak", "longestStreak", "lastReadDate", "totalDaysRead", "lastCalculated")


@dataclass
class FormatDetection:
    format: HistoryFormat = HistoryFormat.UNKNOWN
    version: int = 0
    data_points: int = 0
    has_reading_day_entries: bool = False
    has_book_periods: bool = False
    has_metadata: bool = False
    estimated_migration_time: str = "Unknown"
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def needs_migration(self) -> bool:
        return self.format not in (HistoryFormat.UNKNOWN, HistoryFormat.ENHANCED_CURRENT)


def _present(data: Mapping, key: str) -> bool:
    return data.get(key) is not None


def _entry_based_estimate(points: int) -> str:
    return "2-3s" if points >= 1000 else "<1s"


def _day_set_estimate(points: int) -> str:
    return "1-2s" if points > 500 else "<1s"


def entry_map(data: Mapping) -> Mapping | None:
    """The date-keyed entry record of a map-shaped history, if there is one."""
    for key in ("readingDayMap", "readingDayEntries"):
        value = data.get(key)
        if isinstance(value, Mapping):
            return value
    return None


def detect_format(data) -> FormatDetection:
    result = FormatDetection()

    if not isinstance(data, Mapping):
        result.issues.append("Invalid data: not an object")
        return result

    entries = data.get("readingDayEntries")
    periods = data.get("bookPeriods")
    result.has_reading_day_entries = isinstance(entries, (list, Mapping)) or isinstance(
        data.get("readingDayMap"), Mapping
    )
    result.has_book_periods = isinstance(periods, list) and len(periods) > 0
    result.has_metadata = any(_present(data, key) for key in LEGACY_SCALARS)

    version = data.get("version")
    declared_version = version if isinstance(version, int) and not isinstance(version, bool) else 0

    if _present(data, "version") and isinstance(entries, list) and _present(data, "lastSyncDate"):
        result.format = HistoryFormat.ENHANCED_CURRENT
        result.version = declared_version
        result.data_points = len(entries)
        result.estimated_migration_time = "No migration needed"
        return result

    if isinstance(entries, list):
        result.format = HistoryFormat.ENHANCED_LEGACY
        result.version = declared_version
        result.data_points = len(entries)
        result.estimated_migration_time = _entry_based_estimate(result.data_points)
        return result

    keyed = entry_map(data)
    if keyed is not None:
        result.format = HistoryFormat.READING_DAY_MAP
        result.version = declared_version
        result.data_points = len(keyed)
        result.estimated_migration_time = _entry_based_estimate(result.data_points)
        return result

    if any(_present(data, key) for key in ("readingDays", "currentStreak", "longestStreak")):
        result.format = HistoryFormat.BASIC_LEGACY
        days = unwrap_reading_days(data.get("readingDays"))
        result.data_points = len(days)
        result.estimated_migration_time = _day_set_estimate(result.data_points)
        if days and not result.has_book_periods:
            result.warnings.append(
                "Reading days have no book periods; book provenance cannot be inferred "
                "and entries will be recorded as manual"
            )
        return result

    result.issues.append("Unknown or unsupported data format")
    return result
