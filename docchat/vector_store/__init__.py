"""Vector index adapter and factory."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Any

from docchat.config import config
from docchat.errors import VectorIndexUnavailableError

from .faiss_store import FaissVectorStore

if TYPE_CHECKING:
    from docchat.embeddings import EmbeddingService
    from docchat.models import DocumentChunk, VectorHit

logger = config.get_logger(__name__)


class FaissVectorIndex:
    """Text-in, hits-out vector index over a ``FaissVectorStore``.

    Embedding and FAISS calls block, so they run in worker threads. Any
    failure surfaces as ``VectorIndexUnavailableError``.
    """

    def __init__(
        self,
        store: FaissVectorStore,
        embedding_service: EmbeddingService,
        *,
        autosave: bool = True,
    ) -> None:
        self.store = store
        self.embedding_service = embedding_service
        self.autosave = autosave

    async def index(
        self,
        document_id: str,
        chunks: Sequence[DocumentChunk],
        metadata: dict[str, Any],
    ) -> int:
        """Embed and store the chunks of one document.

        Returns:
            Number of vectors added.

        Raises:
            VectorIndexUnavailableError: If embedding or storage fails.
        """
        if not chunks:
            return 0
        try:
            embeddings = await asyncio.to_thread(
                self.embedding_service.embed_batch, [chunk.text for chunk in chunks]
            )
            added = await asyncio.to_thread(
                self.store.add_chunks, chunks, embeddings, metadata
            )
            if self.autosave:
                await asyncio.to_thread(self.store.save)
        except VectorIndexUnavailableError:
            raise
        except Exception as exc:
            logger.exception("Indexing failed for document %s", document_id)
            msg = f"Could not index document {document_id}"
            raise VectorIndexUnavailableError(msg) from exc
        return added

    async def search(self, query_text: str, k: int) -> list[VectorHit]:
        """Return the ``k`` chunks most similar to ``query_text``.

        Raises:
            VectorIndexUnavailableError: If embedding or search fails.
        """
        try:
            embedding = await asyncio.to_thread(self.embedding_service.embed, query_text)
            return await asyncio.to_thread(self.store.search, embedding, k)
        except VectorIndexUnavailableError:
            raise
        except Exception as exc:
            msg = "Vector search failed"
            raise VectorIndexUnavailableError(msg) from exc

    async def delete_document(self, document_id: str) -> int:
        try:
            removed = await asyncio.to_thread(self.store.delete_document, document_id)
            if self.autosave and removed:
                await asyncio.to_thread(self.store.save)
        except Exception as exc:
            msg = f"Could not delete document {document_id} from the index"
            raise VectorIndexUnavailableError(msg) from exc
        return removed


def get_vector_index(
    embedding_service: EmbeddingService,
    *,
    db_path: Path | None = None,
    index_path: Path | None = None,
    raw_top_k_multiplier: int | None = None,
) -> FaissVectorIndex:
    """Return a configured vector index, loading any persisted FAISS index."""
    store = FaissVectorStore(
        db_path=db_path if db_path is not None else config.VECTOR_STORE_DB_PATH,
        index_path=index_path if index_path is not None else config.FAISS_INDEX_PATH,
        raw_top_k_multiplier=(
            raw_top_k_multiplier
            if raw_top_k_multiplier is not None
            else config.VECTOR_RAW_TOP_K_MULTIPLIER
        ),
    )
    store.load()
    return FaissVectorIndex(store, embedding_service)


__all__ = ["FaissVectorIndex", "FaissVectorStore", "get_vector_index"]
