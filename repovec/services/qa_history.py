"""Read adapter for the Q&A history store"""

import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from repovec.exceptions import ProviderError
from repovec.models.embedding_item import ensure_utc
from repovec.models.records import QARecord

logger = logging.getLogger(__name__)


class QAHistoryError(ProviderError):
    """Raised when the Q&A history store cannot be read"""

    pass


class QAHistorySource(Protocol):
    """Source of Q&A history records"""

    def fetch_since(self, timestamp: datetime) -> list[QARecord]:
        """Records created strictly after timestamp, oldest first"""
        ...


class SqliteQAHistorySource:
    """Reads Q&A records from a SQLite qa_history table"""

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)

    def fetch_since(self, timestamp: datetime) -> list[QARecord]:
        """
        Fetch Q&A records newer than timestamp

        Raises:
            QAHistoryError: If the database or table is missing or unreadable
        """
        if not self.db_path.exists():
            raise QAHistoryError(f"Q&A history database not found: {self.db_path}")

        since = ensure_utc(timestamp)
        try:
            with sqlite3.connect(self.db_path) as conn:
                conn.row_factory = sqlite3.Row
                rows = conn.execute(
                    """
                    SELECT id, question, question_summary, category, session_id, created_at
                    FROM qa_history
                    ORDER BY created_at
                """
                ).fetchall()
        except sqlite3.Error as e:
            raise QAHistoryError(f"Failed to read Q&A history: {e}", e) from e

        records: list[QARecord] = []
        for row in rows:
            try:
                record = QARecord(**dict(row))
            except ValidationError as e:
                logger.warning(f"Skipping malformed Q&A record {row['id']}: {e}")
                continue
            if record.created_at > since:
                records.append(record)

        records.sort(key=lambda record: record.created_at)
        logger.info(f"Found {len(records)} Q&A records since {since.isoformat()}")
        return records
