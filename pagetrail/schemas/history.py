import datetime as dt
from enum import Enum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator
from pydantic.alias_generators import to_camel


class EntrySource(str, Enum):
    MANUAL = "manual"
    BOOK = "book"
    PROGRESS = "progress"


def _as_utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.UTC)
    return value.astimezone(dt.UTC)


class ReadingDayEntry(BaseModel):
    """Canonical record of reading activity on one calendar date."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    date: str
    source: EntrySource = EntrySource.MANUAL
    book_ids: list[int] | None = None
    notes: str | None = None
    created_at: dt.datetime
    modified_at: dt.datetime

    @field_validator("created_at", "modified_at")
    @classmethod
    def normalize_timezone(cls, value: dt.datetime) -> dt.datetime:
        return _as_utc(value)

    @model_validator(mode="after")
    def drop_empty_book_ids(self):
        if not self.book_ids:
            self.book_ids = None
        return self

    def to_document(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ReadingPeriod(BaseModel):
    """A book's active reading span, used to infer where a reading day came from."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    book_id: int
    title: str = ""
    author: str = ""
    start_date: dt.date
    end_date: dt.date
    total_days: int | None = None

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def strip_time(cls, value):
        # Older exports stored full timestamps for period bounds
        if isinstance(value, dt.datetime):
            return value.date()
        if isinstance(value, str) and "T" in value:
            return value[:10]
        return value

    @model_validator(mode="after")
    def compute_duration(self):
        if self.total_days is None:
            self.total_days = (self.end_date - self.start_date).days
        return self

    def covers(self, day: dt.date) -> bool:
        return self.start_date <= day <= self.end_date

    def to_document(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


# --- mutations ---


class EntryPayload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    source: EntrySource = EntrySource.MANUAL
    book_ids: list[int] | None = None
    notes: str | None = None


class EntryUpdate(BaseModel):
    """Fields that may change on an existing entry. Date and createdAt are fixed."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    source: EntrySource | None = None
    book_ids: list[int] | None = None
    notes: str | None = None


class ReadingDayCreate(EntryPayload):
    date: str


class AddOperation(BaseModel):
    type: Literal["add"]
    date: str
    entry: EntryPayload | None = None


class UpdateOperation(BaseModel):
    type: Literal["update"]
    date: str
    updates: EntryUpdate | None = None


class RemoveOperation(BaseModel):
    type: Literal["remove"]
    date: str


BulkOperation = Annotated[AddOperation | UpdateOperation | RemoveOperation, Field(discriminator="type")]

bulk_operations_adapter = TypeAdapter(list[BulkOperation])


class BulkRequest(BaseModel):
    operations: list[BulkOperation]
