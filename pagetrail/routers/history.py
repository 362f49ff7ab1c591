from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from pagetrail.database import get_session
from pagetrail.history import (
    HistoryError,
    HistoryStore,
    auto_fix,
    detect_format,
    migrate,
    validate,
    validation_stats,
)
from pagetrail.schemas.history import BulkRequest, EntryUpdate, ReadingDayCreate, ReadingDayEntry
from pagetrail.services.history_service import (
    catalog_book_ids,
    extract_reading_periods,
    load_history,
    save_history,
)

router = APIRouter(prefix="/api/reading-history", tags=["reading-history"])

store = HistoryStore()

_STATUS_BY_CODE = {"not_found": 404, "busy": 409}


async def _get_history_or_404(session: AsyncSession) -> dict:
    history = await load_history(session)
    if history is None:
        raise HTTPException(status_code=404, detail="No reading history found")
    return history


def _http_error(exc: HistoryError) -> HTTPException:
    return HTTPException(status_code=_STATUS_BY_CODE.get(exc.code, 422), detail=str(exc))


@asynccontextmanager
async def _writing() -> AsyncIterator[None]:
    """Hold the store's writer slot from loading the document until it is saved."""
    try:
        async with store.transaction():
            yield
    except HistoryError as exc:
        raise _http_error(exc) from exc


@router.get("")
async def get_history(session: AsyncSession = Depends(get_session)):
    return await _get_history_or_404(session)


@router.post("/detect")
async def detect_history_format(data: Any = Body(None)):
    return detect_format(data)


@router.post("/migrate")
async def migrate_history(data: Any = Body(None), session: AsyncSession = Depends(get_session)):
    async with _writing():
        periods = await extract_reading_periods(session)
        result = migrate(data, book_periods=periods)
        if not result.success:
            raise HTTPException(status_code=422, detail={"issues": result.issues, "warnings": result.warnings})
        await save_history(session, result.canonical_history)
    return result


@router.get("/validate")
async def validate_history(session: AsyncSession = Depends(get_session)):
    history = await _get_history_or_404(session)
    return validate(history, await catalog_book_ids(session))


@router.get("/stats")
async def history_stats(session: AsyncSession = Depends(get_session)):
    return validation_stats(await _get_history_or_404(session))


@router.post("/auto-fix")
async def auto_fix_history(session: AsyncSession = Depends(get_session)):
    async with _writing():
        history = await _get_history_or_404(session)
        result = auto_fix(history)
        if result.fixed:
            await save_history(session, result.updated_history)
    return {
        "fixed": result.fixed,
        "failed": result.failed,
        "score": validate(result.updated_history).score,
    }


@router.post("/bulk")
async def bulk_update(data: BulkRequest, session: AsyncSession = Depends(get_session)):
    async with _writing():
        history = await load_history(session)
        result = store.bulk_apply(history, data.operations)
        if not result.committed:
            status = _STATUS_BY_CODE.get(result.rejection.code, 422)
            raise HTTPException(status_code=status, detail=result.rejection.message)
        await save_history(session, result.history)
    return result.history


@router.get("/days", response_model=list[ReadingDayEntry])
async def list_reading_days(
    start: str = Query("0000-01-01", description="First date to include (YYYY-MM-DD)"),
    end: str = Query("9999-12-31", description="Last date to include (YYYY-MM-DD)"),
    session: AsyncSession = Depends(get_session),
):
    history = await load_history(session)
    try:
        return store.entries_in_range(history, start, end)
    except HistoryError as exc:
        raise _http_error(exc) from exc


@router.post("/days", status_code=201)
async def add_reading_day(data: ReadingDayCreate, session: AsyncSession = Depends(get_session)):
    async with _writing():
        history = await load_history(session)
        updated = store.add(history, data)
        await save_history(session, updated)
    return updated


@router.put("/days/{day}")
async def update_reading_day(day: str, data: EntryUpdate, session: AsyncSession = Depends(get_session)):
    async with _writing():
        history = await _get_history_or_404(session)
        updated = store.update(history, day, data)
        await save_history(session, updated)
    return updated


@router.delete("/days/{day}", status_code=204)
async def delete_reading_day(day: str, session: AsyncSession = Depends(get_session)):
    async with _writing():
        history = await _get_history_or_404(session)
        updated = store.remove(history, day)
        await save_history(session, updated)
