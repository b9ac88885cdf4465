"""SQLite metadata for indexed chunks."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import TYPE_CHECKING, Any

from docchat.config import config

if TYPE_CHECKING:
    from docchat.models import DocumentChunk

logger = config.get_logger(__name__)


class ChunkMetadataStore:
    """Chunk text and provenance keyed by the vector id used in the index."""

    def __init__(self, db_path: Path) -> None:
        """Initialize metadata store and ensure schema exists."""
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(exist_ok=True, parents=True)
        self._create_tables()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self.db_path))

    def _create_tables(self) -> None:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS chunks (
                    vector_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    chunk_id TEXT NOT NULL UNIQUE,
                    document_id TEXT NOT NULL,
                    user_id TEXT,
                    filename TEXT,
                    ordinal INTEGER NOT NULL,
                    content TEXT NOT NULL,
                    char_start INTEGER,
                    char_len INTEGER,
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                )
            """)
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_chunks_document ON chunks(document_id)"
            )
            conn.commit()

    @staticmethod
    def _insert_chunk_row(
        cursor: sqlite3.Cursor,
        chunk: DocumentChunk,
        metadata: dict[str, Any],
    ) -> int:
        """Persist a chunk row, replacing an earlier row with the same chunk id.

        Returns:
            The vector id assigned to the chunk.

        Raises:
            RuntimeError: If the row cannot be inserted.
        """
        cursor.execute("DELETE FROM chunks WHERE chunk_id = ?", (chunk.id,))
        cursor.execute(
            """
            INSERT INTO chunks (
                chunk_id, document_id, user_id, filename, ordinal,
                content, char_start, char_len
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                chunk.id,
                chunk.document_id,
                metadata.get("user_id"),
                metadata.get("filename"),
                chunk.ordinal,
                chunk.text,
                chunk.char_start,
                chunk.char_len,
            ),
        )
        if cursor.lastrowid is None:
            msg = f"Failed to insert chunk row {chunk.id}"
            raise RuntimeError(msg)
        return int(cursor.lastrowid)

    @staticmethod
    def _fetch_by_vector_id(
        cursor: sqlite3.Cursor, vector_id: int
    ) -> tuple[str, dict[str, Any]] | None:
        """Fetch chunk text and metadata by vector id.

        Returns:
            ``(text, metadata)`` if found; otherwise None.
        """
        cursor.execute(
            """
            SELECT chunk_id, document_id, user_id, filename, ordinal,
                   content, char_start, char_len
            FROM chunks WHERE vector_id = ?
            """,
            (int(vector_id),),
        )
        row = cursor.fetchone()
        if row is None:
            return None
        chunk_id, document_id, user_id, filename, ordinal, content, start, length = row
        return content, {
            "chunk_id": chunk_id,
            "document_id": document_id,
            "user_id": user_id,
            "filename": filename,
            "ordinal": ordinal,
            "char_start": start,
            "char_len": length,
            "vector_id": int(vector_id),
        }

    def vector_ids_for_document(self, document_id: str) -> list[int]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT vector_id FROM chunks WHERE document_id = ? ORDER BY vector_id",
                (document_id,),
            ).fetchall()
        return [int(row[0]) for row in rows]

    def _delete_document_rows(self, document_id: str) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM chunks WHERE document_id = ?", (document_id,)
            )
            conn.commit()
            return cursor.rowcount

    def chunk_count(self) -> int:
        with self._connect() as conn:
            return int(conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0])
