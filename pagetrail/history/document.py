"""Canonical reading-activity history and the helpers shared across the engine.

A history travels in two forms. The *document* is the persisted, JSON-safe
mapping with camelCase keys that the storage layer reads and writes. The
*model* (:class:`ReadingHistory`) keys entries by date, so the set of reading
days is always computed from the entries instead of being kept alongside them.
"""

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, date, datetime

from pydantic import TypeAdapter

from pagetrail.schemas.history import EntrySource, ReadingDayEntry, ReadingPeriod

CURRENT_VERSION = 1

_DATE_PATTERN = re.compile(r"\d{4}-\d{2}-\d{2}")
_timestamp_adapter = TypeAdapter(datetime)


def utcnow() -> datetime:
    return datetime.now(UTC)


def is_iso_date(value) -> bool:
    """True for strings shaped like ``YYYY-MM-DD`` (the shape only, not the calendar)."""
    return isinstance(value, str) and _DATE_PATTERN.fullmatch(value) is not None


def parse_calendar_date(value) -> date | None:
    if not is_iso_date(value):
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def parse_timestamp(value) -> datetime | None:
    """Accept datetimes or ISO-8601 strings; naive values are read as UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def format_timestamp(value: datetime) -> str:
    return _timestamp_adapter.dump_python(value, mode="json")


def unwrap_reading_days(value) -> list:
    """Flatten every historical representation of the reading-day collection.

    Lists and sets come through as-is. A mapping is a set that went through
    generic object serialization (``{"0": "2024-01-10", ...}``), so its values
    are the dates. Anything else yields nothing.
    """
    if isinstance(value, (list, tuple)):
        return list(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    if isinstance(value, Mapping):
        return list(value.values())
    return []


@dataclass
class ReadingHistory:
    entries: dict[str, ReadingDayEntry] = field(default_factory=dict)
    book_periods: list[ReadingPeriod] = field(default_factory=list)
    last_calculated: datetime = field(default_factory=utcnow)
    last_sync_date: datetime = field(default_factory=utcnow)
    version: int = CURRENT_VERSION

    @property
    def reading_days(self) -> frozenset[str]:
        return frozenset(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, day: str) -> bool:
        return day in self.entries

    def get(self, day: str) -> ReadingDayEntry | None:
        return self.entries.get(day)

    def put(self, entry: ReadingDayEntry) -> None:
        self.entries[entry.date] = entry

    def merge(self, entry: ReadingDayEntry) -> bool:
        """Keep whichever entry for the date was modified last. Returns True if stored."""
        existing = self.entries.get(entry.date)
        if existing is None or entry.modified_at > existing.modified_at:
            self.entries[entry.date] = entry
            return True
        return False

    def discard(self, day: str) -> ReadingDayEntry | None:
        return self.entries.pop(day, None)

    def adopt_days(self, days: Iterable, at: datetime | None = None) -> list[str]:
        """Create manual entries for valid dates that have no entry yet."""
        stamp = at or utcnow()
        adopted = []
        for day in days:
            if is_iso_date(day) and day not in self.entries:
                self.entries[day] = ReadingDayEntry(
                    date=day, source=EntrySource.MANUAL, created_at=stamp, modified_at=stamp
                )
                adopted.append(day)
        return adopted

    def in_range(self, start: str, end: str) -> list[ReadingDayEntry]:
        return sorted(
            (e for day, e in self.entries.items() if start <= day <= end),
            key=lambda e: e.date,
        )

    def touch(self) -> None:
        self.last_sync_date = utcnow()

    def to_document(self) -> dict:
        return {
            "readingDays": sorted(self.entries),
            "readingDayEntries": [e.to_document() for e in self.entries.values()],
            "bookPeriods": [p.to_document() for p in self.book_periods],
            "lastCalculated": format_timestamp(self.last_calculated),
            "lastSyncDate": format_timestamp(self.last_sync_date),
            "version": self.version,
        }

    @classmethod
    def from_document(cls, document: Mapping) -> "ReadingHistory":
        """Load a canonical document; duplicate dates keep the later ``modifiedAt``.

        Raises pydantic's ``ValidationError`` for entries or periods that do not
        fit the canonical shape.
        """
        history = cls(
            book_periods=[ReadingPeriod.model_validate(p) for p in document.get("bookPeriods") or []],
            last_calculated=parse_timestamp(document.get("lastCalculated")) or utcnow(),
            last_sync_date=parse_timestamp(document.get("lastSyncDate")) or utcnow(),
            version=document.get("version") or CURRENT_VERSION,
        )
        for raw in document.get("readingDayEntries") or []:
            history.merge(ReadingDayEntry.model_validate(raw))
        return history


def empty_document() -> dict:
    return ReadingHistory().to_document()
