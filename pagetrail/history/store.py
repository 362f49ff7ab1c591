"""Point and bulk edits to a canonical history document.

Every mutation works on a private copy of the caller's document and hands back
a new one. The caller's document is never touched, so a rejected edit leaves
nothing behind. The store itself holds no history; the persistence layer
passes the current document in and stores whatever comes back.
"""

import logging
import threading
from collections.abc import AsyncIterator, Iterator, Mapping, Sequence
from contextlib import asynccontextmanager, contextmanager
from contextvars import ContextVar
from dataclasses import dataclass

from pydantic import BaseModel, ValidationError

from pagetrail.history.document import (
    ReadingHistory,
    parse_calendar_date,
    unwrap_reading_days,
    utcnow,
)
from pagetrail.history.errors import (
    EntryNotFoundError,
    HistoryError,
    HistoryValidationError,
    InvalidEntryError,
    StoreBusyError,
)
from pagetrail.history.validator import validate
from pagetrail.schemas.history import (
    AddOperation,
    EntryPayload,
    EntryUpdate,
    ReadingDayCreate,
    ReadingDayEntry,
    UpdateOperation,
    bulk_operations_adapter,
)

logger = logging.getLogger(__name__)

# The store whose transaction the current task is running inside, if any
_holder: ContextVar["HistoryStore | None"] = ContextVar("history_store_holder", default=None)


@dataclass
class Rejection:
    code: str
    message: str


@dataclass
class BulkResult:
    committed: bool
    history: dict
    rejection: Rejection | None = None


def _load(history: Mapping | None) -> ReadingHistory:
    if history is None:
        return ReadingHistory()
    try:
        working = ReadingHistory.from_document(history)
    except ValidationError as exc:
        raise InvalidEntryError(f"Stored history is not canonical: {exc.error_count()} validation errors") from exc
    # Dates recorded only in the legacy set still count as reading days
    working.adopt_days(unwrap_reading_days(history.get("readingDays")))
    return working


def _commit(working: ReadingHistory) -> dict:
    working.touch()
    document = working.to_document()
    validation = validate(document)
    if not validation.is_valid:
        raise HistoryValidationError(validation)
    return document


def _add(working: ReadingHistory, day: str, payload: EntryPayload) -> None:
    if parse_calendar_date(day) is None:
        raise InvalidEntryError(f"Invalid date {day!r}. Expected YYYY-MM-DD format.")

    now = utcnow()
    existing = working.get(day)
    if existing is None:
        working.put(ReadingDayEntry(date=day, **payload.model_dump(exclude={"date"}), created_at=now, modified_at=now))
    else:
        changes = payload.model_dump(exclude_unset=True, exclude={"date"})
        working.put(ReadingDayEntry.model_validate({**existing.model_dump(), **changes, "modified_at": now}))


def _update(working: ReadingHistory, day: str, updates: EntryUpdate) -> None:
    existing = working.get(day)
    if existing is None:
        raise EntryNotFoundError(f"Reading day entry for {day} not found")

    changes = updates.model_dump(exclude_unset=True)
    if changes.get("source") is None:
        changes.pop("source", None)
    working.put(ReadingDayEntry.model_validate({**existing.model_dump(), **changes, "modified_at": utcnow()}))


def _remove(working: ReadingHistory, day: str) -> None:
    if working.discard(day) is None:
        raise EntryNotFoundError(f"Reading day entry for {day} not found")


class HistoryStore:
    """Serializes mutations: only one may be in flight at a time.

    A second mutation arriving while one is running is turned away at once
    instead of waiting. Bulk calls report that as a ``busy`` rejection; point
    calls raise :class:`StoreBusyError`.

    Callers that load and save the document around a mutation hold the writer
    slot for the whole round-trip with :meth:`transaction`. Mutations made
    from inside it run under the held slot.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._in_flight = False

    @property
    def busy(self) -> bool:
        return self._in_flight

    @contextmanager
    def _mutation(self) -> Iterator[None]:
        if _holder.get() is self:
            yield
            return

        with self._lock:
            if self._in_flight:
                raise StoreBusyError("Another transaction is already in progress")
            self._in_flight = True
        try:
            yield
        finally:
            with self._lock:
                self._in_flight = False

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Hold the writer slot across awaits, e.g. load → mutate → save.

        Raises :class:`StoreBusyError` on entry if another transaction or
        mutation is already in flight.
        """
        with self._mutation():
            token = _holder.set(self)
            try:
                yield
            finally:
                _holder.reset(token)

    # --- point operations ---

    def add(self, history: Mapping | None, entry: ReadingDayCreate | Mapping) -> dict:
        with self._mutation():
            if not isinstance(entry, ReadingDayCreate):
                try:
                    entry = ReadingDayCreate.model_validate(entry)
                except ValidationError as exc:
                    raise InvalidEntryError(f"Invalid reading day entry: {exc.error_count()} validation errors") from exc
            working = _load(history)
            _add(working, entry.date, entry)
            return _commit(working)

    def update(self, history: Mapping | None, day: str, updates: EntryUpdate | Mapping) -> dict:
        with self._mutation():
            if not isinstance(updates, EntryUpdate):
                try:
                    updates = EntryUpdate.model_validate(updates)
                except ValidationError as exc:
                    raise InvalidEntryError(f"Invalid update for {day}: {exc.error_count()} validation errors") from exc
            working = _load(history)
            _update(working, day, updates)
            return _commit(working)

    def remove(self, history: Mapping | None, day: str) -> dict:
        with self._mutation():
            working = _load(history)
            _remove(working, day)
            return _commit(working)

    def entries_in_range(self, history: Mapping | None, start: str, end: str) -> list[ReadingDayEntry]:
        return _load(history).in_range(start, end)

    # --- bulk ---

    def _apply_operation(self, working: ReadingHistory, operation) -> None:
        if isinstance(operation, AddOperation):
            if operation.entry is None:
                raise InvalidEntryError(f"Add operation for {operation.date} missing entry data")
            _add(working, operation.date, operation.entry)
        elif isinstance(operation, UpdateOperation):
            if operation.updates is None:
                raise InvalidEntryError(f"Update operation for {operation.date} missing update data")
            _update(working, operation.date, operation.updates)
        else:
            _remove(working, operation.date)

    def bulk_apply(self, history: Mapping | None, operations: Sequence) -> BulkResult:
        """Apply every operation or none of them.

        Operations run in order against one working copy, which is checked once
        at the end. On any failure the caller gets its own ``history`` back,
        untouched, along with the reason.
        """
        try:
            with self._mutation():
                parsed = bulk_operations_adapter.validate_python(
                    [op.model_dump(exclude_unset=True) if isinstance(op, BaseModel) else op for op in operations]
                )
                working = _load(history)
                for operation in parsed:
                    self._apply_operation(working, operation)
                document = _commit(working)
        except ValidationError as exc:
            return self._reject(history, InvalidEntryError.code, f"Invalid bulk operation: {exc}")
        except HistoryError as exc:
            return self._reject(history, exc.code, str(exc))

        logger.info("Committed bulk update of %d operations", len(parsed))
        return BulkResult(committed=True, history=document)

    def _reject(self, history, code: str, message: str) -> BulkResult:
        logger.warning("Bulk update rejected (%s): %s", code, message)
        return BulkResult(committed=False, history=history, rejection=Rejection(code, message))
