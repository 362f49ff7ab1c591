"""Persist the reading-history document and read the book catalog around it."""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pagetrail.config import HISTORY_OWNER
from pagetrail.models import Book, Reading, ReadingHistoryRecord
from pagetrail.schemas.history import ReadingPeriod

logger = logging.getLogger(__name__)


async def _get_record(session: AsyncSession, owner: str) -> ReadingHistoryRecord | None:
    result = await session.execute(select(ReadingHistoryRecord).where(ReadingHistoryRecord.owner == owner))
    return result.scalar_one_or_none()


async def load_history(session: AsyncSession, owner: str = HISTORY_OWNER) -> dict | None:
    record = await _get_record(session, owner)
    return record.document if record else None


async def save_history(
    session: AsyncSession, document: dict, owner: str = HISTORY_OWNER
) -> ReadingHistoryRecord:
    record = await _get_record(session, owner)
    version = document.get("version") if isinstance(document.get("version"), int) else 1
    if record is None:
        record = ReadingHistoryRecord(owner=owner, document=document, version=version)
        session.add(record)
    else:
        record.document = document
        record.version = version
    await session.commit()
    logger.debug("Saved reading history for %s (%d entries)", owner, len(document.get("readingDayEntries") or []))
    return record


async def catalog_book_ids(session: AsyncSession) -> set[int]:
    result = await session.execute(select(Book.id))
    return set(result.scalars().all())


async def extract_reading_periods(session: AsyncSession) -> list[ReadingPeriod]:
    """Turn every finished reading in the catalog into a reading period."""
    result = await session.execute(
        select(Reading, Book)
        .join(Book, Reading.book_id == Book.id)
        .where(Reading.started_at.is_not(None), Reading.finished_at.is_not(None))
        .order_by(Reading.started_at)
    )
    periods = []
    for reading, book in result.all():
        if reading.finished_at < reading.started_at:
            logger.warning("Skipping reading %d of book %d: finished before it started", reading.id, book.id)
            continue
        periods.append(
            ReadingPeriod(
                book_id=book.id,
                title=book.title,
                author=book.author,
                start_date=reading.started_at,
                end_date=reading.finished_at,
            )
        )
    return periods
