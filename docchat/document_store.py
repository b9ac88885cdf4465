"""SQLite document store."""

import datetime
import json
import sqlite3
import uuid
from pathlib import Path
from typing import Any

from .config import config
from .errors import DocumentStoreError
from .models import StoredDocument

logger = config.get_logger(__name__)


class SQLiteDocumentStore:
    """Keeps each user's uploaded documents and their extracted text."""

    def __init__(self, db_path: Path = config.DOCUMENT_STORE_DB_PATH) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(exist_ok=True, parents=True)
        self._create_tables()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self.db_path))

    def _create_tables(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    user_id TEXT NOT NULL,
                    filename TEXT NOT NULL,
                    uploaded_at TEXT NOT NULL,
                    text TEXT NOT NULL,
                    metadata TEXT
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_documents_user ON documents(user_id)"
            )
            conn.commit()

    def add_document(
        self,
        user_id: str,
        filename: str,
        text: str,
        metadata: dict[str, Any] | None = None,
    ) -> StoredDocument:
        """Store a document.

        Returns:
            The stored document with its new id.

        Raises:
            DocumentStoreError: If the write fails.
        """
        document = StoredDocument(
            id=uuid.uuid4().hex,
            user_id=user_id,
            filename=filename,
            uploaded_at=datetime.datetime.now(tz=datetime.UTC).isoformat(
                timespec="seconds"
            ),
            text=text,
        )
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO documents
                        (id, user_id, filename, uploaded_at, text, metadata)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        document.id,
                        user_id,
                        filename,
                        document.uploaded_at,
                        text,
                        json.dumps(metadata or {}, default=str),
                    ),
                )
                conn.commit()
        except sqlite3.Error as exc:
            msg = f"Could not store document {filename}"
            raise DocumentStoreError(msg) from exc
        logger.info(
            "Stored document %s (%s) for user %s", filename, document.id, user_id
        )
        return document

    def list_documents(self, user_id: str) -> list[StoredDocument]:
        """List a user's documents in upload order, without their text.

        Raises:
            DocumentStoreError: If the read fails.
        """
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    """
                    SELECT id, user_id, filename, uploaded_at FROM documents
                    WHERE user_id = ? ORDER BY seq
                    """,
                    (user_id,),
                ).fetchall()
        except sqlite3.Error as exc:
            msg = f"Could not list documents for user {user_id}"
            raise DocumentStoreError(msg) from exc
        return [StoredDocument(*row) for row in rows]

    def get_document_text(self, document_id: str) -> str:
        """Return the stored text of a document.

        Raises:
            DocumentStoreError: If the document is missing or the read fails.
        """
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT text FROM documents WHERE id = ?", (document_id,)
                ).fetchone()
        except sqlite3.Error as exc:
            msg = f"Could not read document {document_id}"
            raise DocumentStoreError(msg) from exc
        if row is None:
            msg = f"Document {document_id} not found"
            raise DocumentStoreError(msg)
        return row[0]

    def delete_document(self, user_id: str, document_id: str) -> bool:
        """Delete one of the user's documents.

        Returns:
            True if a document was deleted.

        Raises:
            DocumentStoreError: If the delete fails.
        """
        try:
            with self._connect() as conn:
                cursor = conn.execute(
                    "DELETE FROM documents WHERE id = ? AND user_id = ?",
                    (document_id, user_id),
                )
                conn.commit()
        except sqlite3.Error as exc:
            msg = f"Could not delete document {document_id}"
            raise DocumentStoreError(msg) from exc
        return cursor.rowcount > 0
