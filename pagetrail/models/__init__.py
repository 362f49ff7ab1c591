from pagetrail.models.book import Book
from pagetrail.models.history import ReadingHistoryRecord
from pagetrail.models.reading import Reading

__all__ = ["Book", "Reading", "ReadingHistoryRecord"]
