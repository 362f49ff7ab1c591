"""Score the integrity of a canonical reading-activity history.

Every finding is returned as data. Nothing here raises on bad input: a history
that is broken in every possible way still produces a result with a score of 0.
"""

from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum

from pagetrail import config
from pagetrail.history.document import (
    CURRENT_VERSION,
    ReadingHistory,
    parse_calendar_date,
    parse_timestamp,
    utcnow,
)
from pagetrail.schemas.history import EntrySource

CRITICAL_PENALTY = 25
ERROR_PENALTY = 10
WARNING_PENALTY = 2
FIXABLE_BONUS = 2
MAX_FIXABLE_BONUS = 10

_SOURCES = {s.value for s in EntrySource}


class Severity(str, Enum):
    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"


@dataclass
class ValidationIssue:
    severity: Severity
    category: str
    message: str
    affected_items: list[str] = field(default_factory=list)
    impact: str = "medium"
    fixable: bool = False

    @property
    def blocking(self) -> bool:
        return self.severity in (Severity.CRITICAL, Severity.ERROR)

    def __str__(self) -> str:
        return f"{self.severity.value}: {self.message}"


@dataclass
class ValidationWarning:
    kind: str  # data_loss | inconsistency | performance | best_practice
    message: str
    affected_items: list[str] = field(default_factory=list)
    recommendation: str = ""


@dataclass
class FixableIssue:
    kind: str
    message: str
    estimated_impact: str


@dataclass
class ValidationResult:
    is_valid: bool = True
    score: int = 100
    issues: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationWarning] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    fixable_issues: list[FixableIssue] = field(default_factory=list)

    @property
    def blocking_issues(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.blocking]

    def count(self, severity: Severity) -> int:
        return sum(1 for i in self.issues if i.severity == severity)

    def add_issue(
        self,
        severity: Severity,
        category: str,
        message: str,
        affected_items: list[str],
        impact: str = "medium",
        fix: FixableIssue | None = None,
    ) -> None:
        self.issues.append(
            ValidationIssue(severity, category, message, affected_items, impact, fixable=fix is not None)
        )
        if fix is not None:
            self.fixable_issues.append(fix)

    def add_warning(self, kind: str, message: str, affected_items: list[str], recommendation: str) -> None:
        self.warnings.append(ValidationWarning(kind, message, affected_items, recommendation))


@dataclass
class ValidationStats:
    total_entries: int
    valid_entries: int
    invalid_entries: int
    duplicate_entries: int
    future_entries: int
    missing_metadata: int
    consistency_score: int
    data_quality_score: int


def _is_day_collection(value) -> bool:
    return isinstance(value, (list, tuple, set, frozenset)) and all(isinstance(d, str) for d in value)


def _entry_records(history: Mapping) -> list[Mapping]:
    entries = history.get("readingDayEntries")
    if not isinstance(entries, list):
        return []
    return [e for e in entries if isinstance(e, Mapping)]


def _check_structure(history: Mapping, result: ValidationResult) -> None:
    entries = history.get("readingDayEntries")
    if not isinstance(entries, list):
        result.add_issue(
            Severity.CRITICAL, "structure", "Missing or invalid readingDayEntries list",
            ["readingDayEntries"], impact="high",
        )
    else:
        malformed = [str(i) for i, e in enumerate(entries) if not isinstance(e, Mapping)]
        if malformed:
            result.add_issue(
                Severity.ERROR, "structure", f"{len(malformed)} reading day entries are not objects",
                malformed, impact="high",
            )

    if not _is_day_collection(history.get("readingDays")):
        result.add_issue(
            Severity.CRITICAL, "structure", "Missing or invalid readingDays set",
            ["readingDays"], impact="high",
            fix=FixableIssue("invalid_structure", "Rebuild readingDays from entries", "Recreate the readingDays set"),
        )

    if not isinstance(history.get("bookPeriods"), list):
        result.add_warning(
            "inconsistency", "Missing or invalid bookPeriods list", ["bookPeriods"],
            "Initialize an empty bookPeriods list",
        )

    version = history.get("version")
    if not isinstance(version, int) or isinstance(version, bool) or version < 1:
        result.add_issue(
            Severity.ERROR, "structure", "Missing or invalid version number", ["version"],
            fix=FixableIssue("missing_metadata", "Set version to current schema version", f"version = {CURRENT_VERSION}"),
        )
    elif version > CURRENT_VERSION:
        result.add_issue(
            Severity.ERROR, "structure",
            f"History version {version} is newer than supported version {CURRENT_VERSION}", ["version"],
        )

    for key in ("lastSyncDate", "lastCalculated"):
        if parse_timestamp(history.get(key)) is None:
            result.add_issue(
                Severity.ERROR, "structure", f"Missing or invalid {key}", [key],
                fix=FixableIssue("missing_metadata", f"Backfill {key} with the current time", f"Set {key}"),
            )


def _check_consistency(history: Mapping, result: ValidationResult) -> None:
    days = history.get("readingDays")
    if not isinstance(history.get("readingDayEntries"), list) or not _is_day_collection(days):
        return

    entry_dates = [e.get("date") for e in _entry_records(history)]
    date_set = {d for d in entry_dates if isinstance(d, str)}
    day_set = set(days)

    missing_from_entries = sorted(day_set - date_set)
    if missing_from_entries:
        result.add_issue(
            Severity.ERROR, "consistency",
            f"{len(missing_from_entries)} reading days missing from detailed entries",
            missing_from_entries, impact="high",
            fix=FixableIssue(
                "missing_dates", f"Add {len(missing_from_entries)} missing reading day entries",
                f"Create {len(missing_from_entries)} new manual entries",
            ),
        )

    missing_from_days = sorted(date_set - day_set)
    if missing_from_days:
        result.add_issue(
            Severity.ERROR, "consistency",
            f"{len(missing_from_days)} detailed entries missing from reading days set",
            missing_from_days, impact="high",
            fix=FixableIssue(
                "missing_dates", f"Add {len(missing_from_days)} dates to reading days set",
                f"Add {len(missing_from_days)} dates to readingDays",
            ),
        )

    counts = Counter(d for d in entry_dates if isinstance(d, str))
    duplicates = sorted(d for d, n in counts.items() if n > 1)
    if duplicates:
        extra = sum(counts[d] - 1 for d in duplicates)
        result.add_issue(
            Severity.ERROR, "consistency",
            f"Duplicate reading day entries found for {len(duplicates)} dates",
            duplicates, impact="high",
            fix=FixableIssue(
                "duplicate_entries", f"Remove duplicate entries for {len(duplicates)} dates",
                f"Remove {extra} duplicate entries, keeping the latest modification",
            ),
        )


def _check_dates(history: Mapping, result: ValidationResult) -> None:
    future_limit = utcnow().date() + timedelta(days=config.MAX_FUTURE_DAYS)
    invalid_dates, future_dates, ancient_dates = [], [], []
    invalid_timestamps, invalid_sources = [], []

    for entry in _entry_records(history):
        day = entry.get("date")
        parsed = parse_calendar_date(day)
        if parsed is None:
            invalid_dates.append(str(day))
            continue

        if parsed < config.MIN_READING_DATE:
            ancient_dates.append(day)
        elif parsed > future_limit:
            future_dates.append(day)

        if parse_timestamp(entry.get("createdAt")) is None or parse_timestamp(entry.get("modifiedAt")) is None:
            invalid_timestamps.append(day)

        if entry.get("source") not in _SOURCES:
            invalid_sources.append(day)

    if invalid_dates:
        # No safe way to guess the intended date
        result.add_issue(
            Severity.ERROR, "format", f"{len(invalid_dates)} entries have invalid date format",
            invalid_dates, impact="high",
        )
    if future_dates:
        result.add_warning(
            "data_loss", f"{len(future_dates)} entries have future dates", future_dates,
            "Review future dates for accuracy",
        )
    if ancient_dates:
        result.add_warning(
            "data_loss", f"{len(ancient_dates)} entries have unusually old dates", ancient_dates,
            "Verify old dates are correct",
        )
    if invalid_timestamps:
        result.add_issue(
            Severity.ERROR, "format", f"{len(invalid_timestamps)} entries have invalid timestamps",
            invalid_timestamps,
            fix=FixableIssue(
                "missing_metadata", f"Backfill timestamps on {len(invalid_timestamps)} entries",
                "Set missing createdAt/modifiedAt values",
            ),
        )
    if invalid_sources:
        result.add_issue(
            Severity.ERROR, "format", f"{len(invalid_sources)} entries have an unknown source",
            invalid_sources,
        )


def _check_logic(history: Mapping, result: ValidationResult) -> None:
    illogical, unattributed = [], []

    for entry in _entry_records(history):
        created = parse_timestamp(entry.get("createdAt"))
        modified = parse_timestamp(entry.get("modifiedAt"))
        if created and modified and modified < created:
            illogical.append(str(entry.get("date")))
        if entry.get("source") == EntrySource.BOOK.value and not entry.get("bookIds"):
            unattributed.append(str(entry.get("date")))

    if illogical:
        result.add_issue(
            Severity.ERROR, "logic", f"{len(illogical)} entries have modifiedAt before createdAt", illogical,
        )
    if unattributed:
        result.add_warning(
            "inconsistency", f"{len(unattributed)} entries marked as 'book' source but have no book IDs",
            unattributed, "Review source classification or add book IDs",
        )


def _check_performance(history: Mapping, result: ValidationResult) -> None:
    entries = _entry_records(history)
    if len(entries) > config.MAX_ENTRIES:
        result.add_warning(
            "performance", f"Large number of reading day entries ({len(entries)})", ["readingDayEntries"],
            "Consider data archival for very old entries",
        )

    long_notes = [
        str(e.get("date")) for e in entries
        if isinstance(e.get("notes"), str) and len(e["notes"]) > config.MAX_NOTES_LENGTH
    ]
    if long_notes:
        result.add_warning(
            "performance", f"{len(long_notes)} entries have very long notes", long_notes,
            "Consider truncating or moving long notes to separate storage",
        )

    periods = history.get("bookPeriods")
    if isinstance(periods, list) and len(periods) > config.MAX_BOOK_PERIODS:
        result.add_warning(
            "performance", f"Large number of book periods ({len(periods)})", ["bookPeriods"],
            "Consider periodic cleanup of old book periods",
        )


def _catalog_ids(book_catalog: Iterable) -> set:
    ids = set()
    for book in book_catalog:
        if isinstance(book, Mapping):
            ids.add(book.get("id"))
        elif hasattr(book, "id"):
            ids.add(book.id)
        else:
            ids.add(book)
    return ids


def _check_book_references(history: Mapping, book_catalog: Iterable, result: ValidationResult) -> None:
    known = _catalog_ids(book_catalog)
    orphaned = []
    for entry in _entry_records(history):
        book_ids = entry.get("bookIds") or []
        if isinstance(book_ids, list) and any(book_id not in known for book_id in book_ids):
            orphaned.append(str(entry.get("date")))

    if orphaned:
        result.add_warning(
            "inconsistency", f"{len(orphaned)} entries reference non-existent books", orphaned,
            "Clean up orphaned book references",
        )


def _score(result: ValidationResult) -> int:
    score = 100
    score -= result.count(Severity.CRITICAL) * CRITICAL_PENALTY
    score -= result.count(Severity.ERROR) * ERROR_PENALTY
    score -= (len(result.warnings) + result.count(Severity.WARNING)) * WARNING_PENALTY
    if result.fixable_issues:
        # Recoverable problems are less severe than unrecoverable ones
        score += min(MAX_FIXABLE_BONUS, len(result.fixable_issues) * FIXABLE_BONUS)
    return max(0, min(100, score))


def _recommendations(result: ValidationResult) -> list[str]:
    recommendations = []
    if result.count(Severity.CRITICAL):
        recommendations.append("Address critical data structure issues immediately")
    if result.count(Severity.ERROR):
        recommendations.append("Fix data consistency errors to prevent data loss")
    if result.fixable_issues:
        recommendations.append(f"Consider running auto-fix for {len(result.fixable_issues)} fixable issues")
    if any(w.kind == "performance" for w in result.warnings):
        recommendations.append("Optimize data structure for better performance")
    if any(w.kind in ("data_loss", "inconsistency") for w in result.warnings):
        recommendations.append("Review data quality issues to improve accuracy")

    if result.score >= 95:
        recommendations.append("Data integrity is excellent - no action needed")
    elif result.score >= 85:
        recommendations.append("Data integrity is good - minor cleanup recommended")
    elif result.score >= 70:
        recommendations.append("Data integrity needs attention - schedule maintenance")
    else:
        recommendations.append("Data integrity is poor - immediate action required")
    return recommendations


def validate(history, book_catalog: Iterable | None = None) -> ValidationResult:
    """Run every integrity check over a history document (or a ReadingHistory)."""
    result = ValidationResult()
    if isinstance(history, ReadingHistory):
        history = history.to_document()

    if not isinstance(history, Mapping):
        result.add_issue(Severity.CRITICAL, "structure", "History is not an object", ["history"], impact="high")
    else:
        _check_structure(history, result)
        _check_consistency(history, result)
        _check_dates(history, result)
        _check_logic(history, result)
        _check_performance(history, result)
        if book_catalog is not None:
            _check_book_references(history, book_catalog, result)

    result.score = _score(result)
    result.is_valid = not result.blocking_issues
    result.recommendations = _recommendations(result)
    return result


def validation_stats(history) -> ValidationStats:
    validation = validate(history)
    if isinstance(history, ReadingHistory):
        history = history.to_document()
    entries = _entry_records(history) if isinstance(history, Mapping) else []

    invalid = {
        item for issue in validation.issues if issue.category == "format" for item in issue.affected_items
    }
    duplicates = sum(
        len(issue.affected_items) for issue in validation.issues if issue.message.startswith("Duplicate")
    )
    future = sum(len(w.affected_items) for w in validation.warnings if "future" in w.message)
    missing = sum(len(issue.affected_items) for issue in validation.issues if "Missing" in issue.message)

    return ValidationStats(
        total_entries=len(entries),
        valid_entries=max(0, len(entries) - len(invalid)),
        invalid_entries=len(invalid),
        duplicate_entries=duplicates,
        future_entries=future,
        missing_metadata=missing,
        consistency_score=max(0, 100 - len(validation.blocking_issues) * ERROR_PENALTY),
        data_quality_score=validation.score,
    )
