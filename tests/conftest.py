import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from pagetrail.database import Base, get_session
from pagetrail.app import create_app
import pagetrail.models  # noqa: F401

TEST_DB_URL = "sqlite+aiosqlite://"  # in-memory

engine = create_async_engine(TEST_DB_URL, echo=False)
TestSession = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture(autouse=True)
async def setup_db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def session():
    async with TestSession() as s:
        yield s


@pytest.fixture
async def client():
    app = create_app()

    async def override_session():
        async with TestSession() as s:
            yield s

    app.dependency_overrides[get_session] = override_session
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


def make_entry(day, source="manual", book_ids=None, notes=None,
               created="2024-01-01T08:00:00Z", modified="2024-01-01T08:00:00Z"):
    entry = {"date": day, "source": source, "createdAt": created, "modifiedAt": modified}
    if book_ids:
        entry["bookIds"] = book_ids
    if notes is not None:
        entry["notes"] = notes
    return entry


def make_history(*days, entries=None):
    """A structurally perfect canonical history document."""
    entries = entries if entries is not None else [make_entry(d) for d in days]
    return {
        "readingDays": sorted({e["date"] for e in entries}),
        "readingDayEntries": entries,
        "bookPeriods": [],
        "lastCalculated": "2024-03-01T00:00:00Z",
        "lastSyncDate": "2024-03-01T00:00:00Z",
        "version": 1,
    }
