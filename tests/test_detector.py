from conftest import make_history

from pagetrail.history import HistoryFormat, detect_format


def test_detect_not_an_object():
    for raw in (None, "2024-01-10", 42, ["2024-01-10"]):
        result = detect_format(raw)
        assert result.format == HistoryFormat.UNKNOWN
        assert result.issues == ["Invalid data: not an object"]


def test_detect_enhanced_current():
    result = detect_format(make_history("2024-01-10", "2024-01-11"))
    assert result.format == HistoryFormat.ENHANCED_CURRENT
    assert result.version == 1
    assert result.data_points == 2
    assert result.estimated_migration_time == "No migration needed"
    assert result.needs_migration is False


def test_detect_enhanced_legacy():
    raw = {"readingDayEntries": [{"date": "2024-01-10"}, {"date": "2024-01-11"}]}
    result = detect_format(raw)
    assert result.format == HistoryFormat.ENHANCED_LEGACY
    assert result.data_points == 2
    assert result.estimated_migration_time == "<1s"
    assert result.has_reading_day_entries


def test_detect_enhanced_legacy_estimate_threshold():
    under = {"readingDayEntries": [{"date": "2024-01-10"}] * 999}
    assert detect_format(under).estimated_migration_time == "<1s"
    over = {"readingDayEntries": [{"date": "2024-01-10"}] * 1000}
    assert detect_format(over).estimated_migration_time == "2-3s"


def test_detect_basic_legacy_estimate_threshold():
    at_limit = {"readingDays": [f"day-{i}" for i in range(500)]}
    assert detect_format(at_limit).estimated_migration_time == "<1s"
    over = {"readingDays": [f"day-{i}" for i in range(501)]}
    assert detect_format(over).estimated_migration_time == "1-2s"


def test_detect_missing_sync_date_is_legacy():
    raw = make_history("2024-01-10")
    del raw["lastSyncDate"]
    assert detect_format(raw).format == HistoryFormat.ENHANCED_LEGACY


def test_detect_reading_day_map():
    raw = {"readingDayMap": {"2024-01-10": {"sources": []}, "2024-01-11": {}}}
    result = detect_format(raw)
    assert result.format == HistoryFormat.READING_DAY_MAP
    assert result.data_points == 2


def test_detect_entries_keyed_by_date():
    raw = {"readingDayEntries": {"2024-01-10": {"notes": "x"}}}
    assert detect_format(raw).format == HistoryFormat.READING_DAY_MAP


def test_detect_basic_legacy_list():
    raw = {"readingDays": ["2024-01-10", "2024-01-11"], "currentStreak": 2}
    result = detect_format(raw)
    assert result.format == HistoryFormat.BASIC_LEGACY
    assert result.data_points == 2
    assert result.has_metadata
    # no book periods to infer provenance from
    assert len(result.warnings) == 1


def test_detect_basic_legacy_set_and_serialized_set():
    as_set = detect_format({"readingDays": {"2024-01-10", "2024-01-11", "2024-01-12"}})
    assert as_set.data_points == 3
    serialized = detect_format({"readingDays": {"0": "2024-01-10", "1": "2024-01-11"}})
    assert serialized.format == HistoryFormat.BASIC_LEGACY
    assert serialized.data_points == 2


def test_detect_basic_legacy_counters_only():
    result = detect_format({"longestStreak": 10})
    assert result.format == HistoryFormat.BASIC_LEGACY
    assert result.data_points == 0
    assert result.warnings == []


def test_detect_basic_legacy_with_periods_has_no_warning():
    raw = {
        "readingDays": ["2024-01-10"],
        "bookPeriods": [{"bookId": 1, "startDate": "2024-01-01", "endDate": "2024-01-31"}],
    }
    result = detect_format(raw)
    assert result.has_book_periods
    assert result.warnings == []


def test_detect_unknown_object():
    result = detect_format({"books": []})
    assert result.format == HistoryFormat.UNKNOWN
    assert result.issues == ["Unknown or unsupported data format"]
