"""Tests for the reading-history endpoints."""

import asyncio
from datetime import date

import pytest
from conftest import make_entry, make_history

import pagetrail.routers.history as history_router
from pagetrail.history import HistoryStore
from pagetrail.models import Book, Reading
from pagetrail.services.history_service import load_history, save_history

BASE = "/api/reading-history"


# --- helpers ---

async def _seed_book(session, title="Dune", author="Frank Herbert", started=None, finished=None):
    book = Book(title=title, author=author)
    session.add(book)
    await session.flush()
    if started:
        session.add(Reading(book_id=book.id, started_at=started, finished_at=finished))
    await session.commit()
    return book


async def _migrate(client, raw):
    resp = await client.post(f"{BASE}/migrate", json=raw)
    assert resp.status_code == 200
    return resp.json()


# --- read ---

@pytest.mark.asyncio
async def test_get_history_not_found(client):
    resp = await client.get(BASE)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_detect(client):
    resp = await client.post(f"{BASE}/detect", json={"readingDays": ["2024-01-10"], "currentStreak": 1})
    assert resp.status_code == 200
    data = resp.json()
    assert data["format"] == "basic_legacy"
    assert data["data_points"] == 1


@pytest.mark.asyncio
async def test_detect_not_an_object(client):
    resp = await client.post(f"{BASE}/detect", json=["2024-01-10"])
    assert resp.status_code == 200
    assert resp.json()["format"] == "unknown"


# --- migrate ---

@pytest.mark.asyncio
async def test_migrate_and_fetch(client):
    data = await _migrate(client, {"readingDays": ["2024-01-10", "2024-01-11"], "currentStreak": 2})
    assert data["success"] is True
    assert data["format"] == "basic_legacy"
    assert data["data_points_migrated"] == 2
    assert data["preserved_metadata"] == {"legacyCurrentStreak": 2}

    resp = await client.get(BASE)
    assert resp.status_code == 200
    assert resp.json()["readingDays"] == ["2024-01-10", "2024-01-11"]


@pytest.mark.asyncio
async def test_migrate_uses_catalog_readings(client, session):
    book = await _seed_book(session, started=date(2024, 1, 1), finished=date(2024, 1, 31))
    await _seed_book(session, title="Emma", author="Jane Austen", started=date(2024, 3, 1))

    data = await _migrate(client, {"readingDays": ["2024-01-15", "2024-03-05"]})
    entries = {e["date"]: e for e in data["canonical_history"]["readingDayEntries"]}
    assert entries["2024-01-15"]["source"] == "book"
    assert entries["2024-01-15"]["bookIds"] == [book.id]
    # unfinished readings are not periods
    assert entries["2024-03-05"]["source"] == "manual"


@pytest.mark.asyncio
async def test_migrate_unknown_format(client):
    resp = await client.post(f"{BASE}/migrate", json={"shelves": []})
    assert resp.status_code == 422
    assert "Cannot migrate unknown data format" in resp.json()["detail"]["issues"]


# --- validate / stats / auto-fix ---

@pytest.mark.asyncio
async def test_validate(client, session):
    book = await _seed_book(session)
    history = make_history(entries=[
        make_entry("2024-01-10", source="book", book_ids=[book.id]),
        make_entry("2024-01-11", source="book", book_ids=[book.id + 100]),
    ])
    await save_history(session, history)

    resp = await client.get(f"{BASE}/validate")
    assert resp.status_code == 200
    data = resp.json()
    assert data["is_valid"] is True
    assert data["score"] == 98
    assert data["warnings"][0]["affected_items"] == ["2024-01-11"]


@pytest.mark.asyncio
async def test_validate_not_found(client):
    resp = await client.get(f"{BASE}/validate")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_stats(client, session):
    await save_history(session, make_history("2024-01-10", "2024-01-11"))
    resp = await client.get(f"{BASE}/stats")
    assert resp.status_code == 200
    data = resp.json()
    assert data["total_entries"] == 2
    assert data["data_quality_score"] == 100


@pytest.mark.asyncio
async def test_auto_fix(client, session):
    history = make_history("2024-01-10", "2024-01-11")
    history["readingDays"] = ["2024-01-10"]
    await save_history(session, history)

    resp = await client.post(f"{BASE}/auto-fix")
    assert resp.status_code == 200
    assert resp.json() == {"fixed": 1, "failed": 0, "score": 100}

    resp = await client.get(f"{BASE}/validate")
    assert resp.json()["is_valid"] is True


# --- reading days ---

@pytest.mark.asyncio
async def test_add_reading_day(client):
    resp = await client.post(f"{BASE}/days", json={"date": "2024-01-10", "notes": "first chapter"})
    assert resp.status_code == 201
    data = resp.json()
    assert data["readingDays"] == ["2024-01-10"]
    assert data["readingDayEntries"][0]["notes"] == "first chapter"


@pytest.mark.asyncio
async def test_add_reading_day_invalid_date(client):
    resp = await client.post(f"{BASE}/days", json={"date": "01/10/2024"})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_list_reading_days(client, session):
    await save_history(session, make_history("2024-01-10", "2024-01-20", "2024-02-01"))
    resp = await client.get(f"{BASE}/days", params={"start": "2024-01-15", "end": "2024-02-28"})
    assert resp.status_code == 200
    data = resp.json()
    assert [e["date"] for e in data] == ["2024-01-20", "2024-02-01"]
    assert "createdAt" in data[0]


@pytest.mark.asyncio
async def test_update_reading_day(client, session):
    await save_history(session, make_history("2024-01-10"))
    resp = await client.put(f"{BASE}/days/2024-01-10", json={"notes": "re-read", "source": "progress"})
    assert resp.status_code == 200
    entry = resp.json()["readingDayEntries"][0]
    assert entry["notes"] == "re-read"
    assert entry["source"] == "progress"


@pytest.mark.asyncio
async def test_update_reading_day_not_found(client, session):
    await save_history(session, make_history("2024-01-10"))
    resp = await client.put(f"{BASE}/days/2024-01-11", json={"notes": "x"})
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_delete_reading_day(client, session):
    await save_history(session, make_history("2024-01-10", "2024-01-11"))
    resp = await client.delete(f"{BASE}/days/2024-01-10")
    assert resp.status_code == 204

    resp = await client.get(BASE)
    assert resp.json()["readingDays"] == ["2024-01-11"]


@pytest.mark.asyncio
async def test_delete_reading_day_not_found(client, session):
    await save_history(session, make_history("2024-01-10"))
    resp = await client.delete(f"{BASE}/days/2024-01-11")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_store_busy(client, session, monkeypatch):
    await save_history(session, make_history("2024-01-10"))
    store = HistoryStore()
    monkeypatch.setattr(history_router, "store", store)

    with store._mutation():
        resp = await client.post(f"{BASE}/days", json={"date": "2024-01-11"})
        assert resp.status_code == 409
        resp = await client.post(f"{BASE}/bulk", json={"operations": [{"type": "remove", "date": "2024-01-10"}]})
        assert resp.status_code == 409
        resp = await client.delete(f"{BASE}/days/2024-01-10")
        assert resp.status_code == 409

    resp = await client.get(BASE)
    assert resp.json()["readingDays"] == ["2024-01-10"]


@pytest.mark.asyncio
async def test_concurrent_bulk_updates(client, session, monkeypatch):
    await save_history(session, make_history("2024-02-01"))
    monkeypatch.setattr(history_router, "store", HistoryStore())

    async def slow_load(session):
        await asyncio.sleep(0.05)
        return await load_history(session)

    monkeypatch.setattr(history_router, "load_history", slow_load)

    def add(day):
        return client.post(f"{BASE}/bulk", json={"operations": [{"type": "add", "date": day, "entry": {}}]})

    first, second = await asyncio.gather(add("2024-02-02"), add("2024-02-03"))
    assert sorted([first.status_code, second.status_code]) == [200, 409]

    winner = first if first.status_code == 200 else second
    resp = await client.get(BASE)
    assert resp.json()["readingDays"] == winner.json()["readingDays"]
    assert len(resp.json()["readingDays"]) == 2

    # the slot is free again once the winner has saved
    resp = await add("2024-02-04")
    assert resp.status_code == 200
    assert len(resp.json()["readingDays"]) == 3


# --- bulk ---

@pytest.mark.asyncio
async def test_bulk_update(client, session):
    await save_history(session, make_history("2024-02-01", "2024-02-02"))
    resp = await client.post(f"{BASE}/bulk", json={"operations": [
        {"type": "add", "date": "2024-02-03", "entry": {"source": "book", "bookIds": [1]}},
        {"type": "remove", "date": "2024-02-02"},
    ]})
    assert resp.status_code == 200
    assert resp.json()["readingDays"] == ["2024-02-01", "2024-02-03"]


@pytest.mark.asyncio
async def test_bulk_update_is_atomic(client, session):
    history = make_history("2024-02-01")
    await save_history(session, history)

    resp = await client.post(f"{BASE}/bulk", json={"operations": [
        {"type": "update", "date": "2024-02-01", "updates": {"notes": "never saved"}},
        {"type": "remove", "date": "2099-01-01"},
    ]})
    assert resp.status_code == 404

    resp = await client.get(BASE)
    assert resp.json() == history


@pytest.mark.asyncio
async def test_bulk_update_rejects_unknown_operation(client):
    resp = await client.post(f"{BASE}/bulk", json={"operations": [{"type": "rename", "date": "2024-02-01"}]})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_history_persists_per_owner(session):
    await save_history(session, make_history("2024-01-10"), owner="alice")
    assert await load_history(session) is None
    assert (await load_history(session, owner="alice"))["readingDays"] == ["2024-01-10"]
