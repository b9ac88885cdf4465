"""Contracts for the services the question-answering core depends on."""

from collections.abc import Sequence
from typing import Any, Protocol, runtime_checkable

from .models import DocumentChunk, StoredDocument, VectorHit


@runtime_checkable
class VectorIndex(Protocol):
    """Similarity search over document chunks.

    Embedding happens inside the index; callers only see text.
    """

    async def index(
        self,
        document_id: str,
        chunks: Sequence[DocumentChunk],
        metadata: dict[str, Any],
    ) -> int: ...

    async def search(self, query_text: str, k: int) -> list[VectorHit]: ...

    async def delete_document(self, document_id: str) -> int: ...


@runtime_checkable
class GenerationService(Protocol):
    async def generate(
        self, prompt: str, temperature: float, max_tokens: int
    ) -> str: ...


@runtime_checkable
class DocumentStore(Protocol):
    def add_document(
        self,
        user_id: str,
        filename: str,
        text: str,
        metadata: dict[str, Any] | None = None,
    ) -> StoredDocument: ...

    def list_documents(self, user_id: str) -> list[StoredDocument]: ...

    def get_document_text(self, document_id: str) -> str: ...

    def delete_document(self, user_id: str, document_id: str) -> bool: ...
