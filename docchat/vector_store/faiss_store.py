"""FAISS-backed vector storage with SQLite metadata."""

from __future__ import annotations

import threading
from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Any

import faiss
import numpy as np

from docchat.config import config
from docchat.models import VectorHit
from docchat.vector_store.base import ChunkMetadataStore

if TYPE_CHECKING:
    from docchat.models import DocumentChunk

logger = config.get_logger(__name__)


class FaissVectorStore(ChunkMetadataStore):
    """Cosine-similarity search over chunk embeddings.

    Vectors live in a FAISS ``IndexIDMap`` over inner product, keyed by the
    SQLite row id of each chunk, so hits resolve back to text and provenance.
    """

    def __init__(
        self,
        db_path: Path = config.VECTOR_STORE_DB_PATH,
        index_path: Path = config.FAISS_INDEX_PATH,
        raw_top_k_multiplier: int = config.VECTOR_RAW_TOP_K_MULTIPLIER,
    ) -> None:
        """Configure FAISS-backed vector store."""
        self.index_path = Path(index_path)
        self.index_path.parent.mkdir(exist_ok=True, parents=True)
        self.index: faiss.IndexIDMap | None = None
        self.raw_top_k_multiplier = max(1, raw_top_k_multiplier)
        self._lock = threading.Lock()
        super().__init__(db_path)

    @staticmethod
    def _normalize(vectors: np.ndarray) -> np.ndarray:
        """L2-normalize rows so inner product equals cosine similarity.

        Returns:
            A float32 copy with unit-length rows; zero rows stay zero.
        """
        matrix = np.array(vectors, dtype="float32", ndmin=2)
        norms = np.linalg.norm(matrix, axis=1, keepdims=True)
        norms[norms == 0] = 1.0
        return matrix / norms

    def _init_index(self, dimension: int) -> None:
        self.index = faiss.IndexIDMap(faiss.IndexFlatIP(dimension))
        logger.info("Initialized FAISS IndexIDMap with dimension %d", dimension)

    def add_chunks(
        self,
        chunks: Sequence[DocumentChunk],
        embeddings: Sequence[np.ndarray],
        metadata: dict[str, Any] | None = None,
    ) -> int:
        """Add chunks and their embeddings.

        Returns:
            Number of vectors added.

        Raises:
            ValueError: If counts or embedding dimensions do not match.
        """
        if len(chunks) != len(embeddings):
            msg = f"Got {len(chunks)} chunks but {len(embeddings)} embeddings"
            raise ValueError(msg)
        if not chunks:
            return 0

        vectors = self._normalize(np.vstack(embeddings))
        with self._lock:
            if self.index is None:
                self._init_index(vectors.shape[1])
            elif vectors.shape[1] != self.index.d:
                msg = (
                    f"Embedding dimension {vectors.shape[1]} does not match "
                    f"FAISS index dimension {self.index.d}"
                )
                raise ValueError(msg)

            with self._connect() as conn:
                cursor = conn.cursor()
                vector_ids = [
                    self._insert_chunk_row(cursor, chunk, metadata or {})
                    for chunk in chunks
                ]
                conn.commit()

            self.index.add_with_ids(vectors, np.asarray(vector_ids, dtype="int64"))  # pyright: ignore[reportCallIssue]

        logger.info("Added %d vectors to FAISS index", len(vector_ids))
        return len(vector_ids)

    def search(self, query_embedding: np.ndarray, top_k: int = 5) -> list[VectorHit]:
        """Search similar chunks.

        Returns:
            Hits ranked by cosine similarity, highest first.
        """
        with self._lock:
            index = self.index
            if index is None or index.ntotal == 0 or top_k <= 0:
                return []
            raw_top_k = min(self.raw_top_k_multiplier * top_k, index.ntotal)
            scores, vector_ids = index.search(self._normalize(query_embedding), raw_top_k)  # pyright: ignore[reportCallIssue]

        hits: list[VectorHit] = []
        with self._connect() as conn:
            cursor = conn.cursor()
            for score, vector_id in zip(scores[0], vector_ids[0], strict=True):
                if int(vector_id) == -1:  # faiss pads missing results with -1
                    continue
                row = self._fetch_by_vector_id(cursor, int(vector_id))
                if row is not None:
                    text, metadata = row
                    hits.append(VectorHit(text=text, metadata=metadata, score=float(score)))
        return hits[:top_k]

    def delete_document(self, document_id: str) -> int:
        """Remove every vector and metadata row of a document.

        Returns:
            Number of vectors removed.
        """
        vector_ids = self.vector_ids_for_document(document_id)
        with self._lock:
            if vector_ids and self.index is not None:
                self.index.remove_ids(np.asarray(vector_ids, dtype="int64"))
        self._delete_document_rows(document_id)
        logger.info("Removed %d vectors for document %s", len(vector_ids), document_id)
        return len(vector_ids)

    def save(self) -> None:
        """Persist FAISS index to disk."""
        with self._lock:
            if self.index is None:
                logger.warning("No FAISS index to save")
                return
            self.index_path.parent.mkdir(exist_ok=True, parents=True)
            faiss.write_index(self.index, str(self.index_path))
        logger.info("Saved FAISS index to %s", self.index_path)

    def load(self) -> None:
        """Load the FAISS index from disk, or start empty when none exists."""
        with self._lock:
            if not self.index_path.exists():
                logger.warning(
                    "FAISS index not found at %s. Start with an empty index.",
                    self.index_path,
                )
                self.index = None
                return

            index = faiss.read_index(str(self.index_path))
            if not isinstance(index, (faiss.IndexIDMap, faiss.IndexIDMap2)):
                logger.warning(
                    "Loaded FAISS index is %s; wrapping with IndexIDMap to enable IDs",
                    type(index).__name__,
                )
                index = faiss.IndexIDMap(index)
            self.index = index
        logger.info(
            "Loaded FAISS index from %s with %d vectors", self.index_path, index.ntotal
        )
