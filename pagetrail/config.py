import os
from datetime import date
from pathlib import Path

DB_PATH = os.environ.get("PAGETRAIL_DB_PATH", str(Path.cwd() / "pagetrail.db"))
DATABASE_URL = f"sqlite+aiosqlite:///{DB_PATH}"

# Integrity validation thresholds
MIN_READING_DATE = date.fromisoformat(os.environ.get("PAGETRAIL_MIN_READING_DATE", "2000-01-01"))
MAX_FUTURE_DAYS = int(os.environ.get("PAGETRAIL_MAX_FUTURE_DAYS", "1"))  # timezone slack
MAX_ENTRIES = int(os.environ.get("PAGETRAIL_MAX_ENTRIES", "10000"))
MAX_NOTES_LENGTH = int(os.environ.get("PAGETRAIL_MAX_NOTES_LENGTH", "1000"))
MAX_BOOK_PERIODS = int(os.environ.get("PAGETRAIL_MAX_BOOK_PERIODS", "1000"))

# A single personal library keeps one history document
HISTORY_OWNER = os.environ.get("PAGETRAIL_HISTORY_OWNER", "default")
