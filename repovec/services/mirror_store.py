"""Durable SQLite mirror of embedding items with sqlite_vec extension"""

import json
import logging
import sqlite3
import struct
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

import sqlite_vec

from repovec.config import config
from repovec.models.embedding_item import EmbeddingItem
from repovec.services.retention import item_date

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MirrorFilter:
    """Selects mirror rows; unset fields match everything"""

    ids: tuple[str, ...] | None = None
    item_type: str | None = None
    older_than: datetime | None = None

    def to_sql(self) -> tuple[str, list]:
        clauses: list[str] = []
        params: list = []
        if self.ids is not None:
            if not self.ids:
                return "0", []
            clauses.append(f"id IN ({', '.join('?' for _ in self.ids)})")
            params.extend(self.ids)
        if self.item_type is not None:
            clauses.append("type = ?")
            params.append(self.item_type)
        if self.older_than is not None:
            clauses.append("item_date IS NOT NULL AND item_date < ?")
            params.append(_to_db_time(self.older_than))
        return (" AND ".join(clauses) or "1"), params


def _to_db_time(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat()


class MirrorStore:
    """SQLite copy of the embedding collection used for external queries and audits"""

    def __init__(self, db_path: str, dimension: int | None = None):
        self.db_path = db_path
        self.dimension = dimension or config.embedding_dimension
        # For :memory: databases, we need to keep a persistent connection
        # because each connection gets a separate in-memory database
        self._memory_conn: sqlite3.Connection | None = None

    def _get_connection(self) -> sqlite3.Connection:
        """
        Create and configure a new database connection

        For :memory: databases, returns the persistent connection.
        For file databases, creates a new connection.
        """
        if self.db_path == ":memory:" and self._memory_conn is not None:
            return self._memory_conn

        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            conn.enable_load_extension(True)
            sqlite_vec.load(conn)
            conn.enable_load_extension(False)
        except Exception as e:
            # sqlite_vec might be statically linked
            logger.warning(f"Could not load sqlite_vec extension: {e}")

        if self.db_path == ":memory:":
            self._memory_conn = conn
        return conn

    def _ensure_connection(
        self, conn: sqlite3.Connection | None
    ) -> tuple[sqlite3.Connection, bool]:
        """
        Ensure we have a connection, creating one if needed

        Returns:
            Tuple of (connection, should_close)
        """
        if conn is not None:
            return conn, False

        new_conn = self._get_connection()
        # Never close :memory: connections (they're persistent)
        should_close = self.db_path != ":memory:"
        return new_conn, should_close

    async def initialize(self) -> None:
        """Create database schema"""
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        conn, should_close = self._ensure_connection(None)
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS items (
                    id TEXT PRIMARY KEY,
                    type TEXT NOT NULL,
                    content TEXT NOT NULL,
                    metadata TEXT NOT NULL,
                    item_date TEXT,
                    updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
                )
            """)

            conn.execute("CREATE INDEX IF NOT EXISTS idx_items_type ON items(type)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_items_item_date ON items(item_date)")

            # vec0 virtual table holds one embedding per item
            conn.execute(f"""
                CREATE VIRTUAL TABLE IF NOT EXISTS vec_items USING vec0(
                    item_id TEXT PRIMARY KEY,
                    embedding FLOAT[{self.dimension}]
                )
            """)

            conn.commit()
        finally:
            if should_close:
                conn.close()

    async def upsert(self, items: list[EmbeddingItem]) -> int:
        """
        Insert or replace items and their embeddings

        Returns:
            Number of items written
        """
        if not items:
            return 0

        conn, should_close = self._ensure_connection(None)
        try:
            for item in items:
                if len(item.embedding) != self.dimension:
                    raise ValueError(
                        f"Embedding dimension mismatch for {item.id}: "
                        f"expected {self.dimension}, got {len(item.embedding)}"
                    )

                date = item_date(item)
                conn.execute(
                    """
                    INSERT OR REPLACE INTO items (id, type, content, metadata, item_date, updated_at)
                    VALUES (?, ?, ?, ?, ?, datetime('now'))
                """,
                    (
                        item.id,
                        item.type,
                        item.content,
                        item.metadata.model_dump_json(),
                        _to_db_time(date) if date else None,
                    ),
                )

                # vec0 does not support REPLACE, delete first
                conn.execute("DELETE FROM vec_items WHERE item_id = ?", (item.id,))
                embedding_bytes = struct.pack(f"{len(item.embedding)}f", *item.embedding)
                conn.execute(
                    "INSERT INTO vec_items (item_id, embedding) VALUES (?, ?)",
                    (item.id, embedding_bytes),
                )

            conn.commit()
            logger.info(f"Mirrored {len(items)} items to {self.db_path}")
            return len(items)
        except Exception:
            conn.rollback()
            raise
        finally:
            if should_close:
                conn.close()

    async def count_where(self, where: MirrorFilter) -> int:
        """Count rows matching the filter"""
        conn, should_close = self._ensure_connection(None)
        try:
            clause, params = where.to_sql()
            row = conn.execute(f"SELECT COUNT(*) FROM items WHERE {clause}", params).fetchone()
            return row[0]
        finally:
            if should_close:
                conn.close()

    async def delete_where(self, where: MirrorFilter) -> int:
        """
        Delete rows matching the filter

        Returns:
            Number of deleted items
        """
        conn, should_close = self._ensure_connection(None)
        try:
            clause, params = where.to_sql()
            ids = [row[0] for row in conn.execute(f"SELECT id FROM items WHERE {clause}", params)]
            if not ids:
                return 0

            placeholders = ", ".join("?" for _ in ids)
            conn.execute(f"DELETE FROM vec_items WHERE item_id IN ({placeholders})", ids)
            conn.execute(f"DELETE FROM items WHERE id IN ({placeholders})", ids)
            conn.commit()
            return len(ids)
        except Exception:
            conn.rollback()
            raise
        finally:
            if should_close:
                conn.close()

    async def delete_ids(self, ids: list[str], batch_size: int | None = None) -> list[str]:
        """
        Delete items by id in batches

        A failed batch is logged and skipped; later batches still run.

        Returns:
            Description of each failed batch
        """
        batch_size = batch_size or config.mirror_delete_batch_size
        failures: list[str] = []

        for i in range(0, len(ids), batch_size):
            batch = ids[i : i + batch_size]
            try:
                deleted = await self.delete_where(MirrorFilter(ids=tuple(batch)))
                logger.debug(f"Deleted {deleted} mirror rows (batch {i // batch_size + 1})")
            except sqlite3.Error as e:
                logger.warning(f"Mirror delete batch {i // batch_size + 1} failed: {e}")
                failures.append(f"mirror delete batch {i // batch_size + 1}: {e}")

        return failures

    async def get_ids(self) -> set[str]:
        """All mirrored item ids"""
        conn, should_close = self._ensure_connection(None)
        try:
            return {row[0] for row in conn.execute("SELECT id FROM items")}
        finally:
            if should_close:
                conn.close()

    async def get_metadata(self, item_id: str) -> dict | None:
        """Stored metadata of one item"""
        conn, should_close = self._ensure_connection(None)
        try:
            row = conn.execute("SELECT metadata FROM items WHERE id = ?", (item_id,)).fetchone()
            return json.loads(row["metadata"]) if row else None
        finally:
            if should_close:
                conn.close()

    def close(self) -> None:
        """Close the persistent in-memory connection"""
        if self._memory_conn is not None:
            self._memory_conn.close()
            self._memory_conn = None
