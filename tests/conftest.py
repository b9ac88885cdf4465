"""Test configuration and fixtures for DocChat tests.

This module provides reusable test fixtures organized by functionality:
- Constants and test data
- Mock embedding, generation and vector index services
- Store fixtures
- Pipeline factories
"""

import hashlib
from unittest.mock import Mock, patch

import numpy as np
import pytest

from docchat import (
    ConversationMemory,
    DocChatPipeline,
    QueryAnalyzer,
    TextChunker,
    VectorIndexUnavailableError,
)
from docchat.document_store import SQLiteDocumentStore
from docchat.embeddings import EmbeddingService
from docchat.models import StoredDocument, VectorHit


class TestConstants:
    """Centralized test constants shared across the test suite."""

    TEST_API_KEY = "test-key"
    TEST_OPENAI_MODEL = "text-embedding-3-small"
    DEFAULT_EMBEDDING_DIMENSION = 64
    USER_ID = "user-1"
    CHAT_ID = "chat-1"

    RESUME_TEXT = (
        "Jane Smith is a data engineer based in Berlin.\n"
        "Skills: Python, SQL, Airflow and Spark.\n"
        "Experience: five years of pipeline work at Acme Corp.\n"
        "Education: MSc in Computer Science from TU Berlin."
    )
    REPORT_TEXT = (
        "The quarterly report covers revenue and hiring.\n"
        "Revenue grew twelve percent compared to the previous quarter. "
        "Machine learning is mentioned as a focus area for the next year. "
        "Hiring slowed in the second half."
    )


class MockEmbeddingService:
    """Deterministic embeddings derived from a hash of the text."""

    def __init__(
        self, dimension: int = TestConstants.DEFAULT_EMBEDDING_DIMENSION
    ) -> None:
        self.dimension = dimension

    def embed(self, text: str) -> np.ndarray:
        seed = int.from_bytes(
            hashlib.sha256(text.lower().encode("utf-8")).digest()[:8],
            byteorder="big",
            signed=False,
        )
        rng = np.random.default_rng(seed)
        embedding = rng.normal(0, 1, self.dimension)
        return (embedding / np.linalg.norm(embedding)).astype(np.float32)

    def embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        return [self.embed(text) for text in texts]


class FakeVectorIndex:
    """In-memory vector index that records how it was called.

    Search returns every indexed chunk whose text shares a word with the
    query, scored by the share of query words found.
    """

    def __init__(self, *, available: bool = True) -> None:
        self.available = available
        self.chunks: dict[str, list] = {}
        self.metadata: dict[str, dict] = {}
        self.search_calls: list[tuple[str, int]] = []
        self.deleted: list[str] = []

    def _check(self) -> None:
        if not self.available:
            msg = "vector index offline"
            raise VectorIndexUnavailableError(msg)

    async def index(self, document_id, chunks, metadata) -> int:
        self._check()
        self.chunks[document_id] = list(chunks)
        self.metadata[document_id] = dict(metadata)
        return len(chunks)

    async def search(self, query_text: str, k: int) -> list[VectorHit]:
        self.search_calls.append((query_text, k))
        self._check()
        words = set(query_text.lower().split())
        hits = []
        for document_id, chunks in self.chunks.items():
            for chunk in chunks:
                found = words & set(chunk.text.lower().split())
                if found:
                    hits.append(
                        VectorHit(
                            text=chunk.text,
                            metadata={
                                "document_id": document_id,
                                "filename": self.metadata[document_id].get("filename"),
                                "chunk_id": chunk.id,
                            },
                            score=len(found) / len(words),
                        )
                    )
        hits.sort(key=lambda hit: hit.score, reverse=True)
        return hits[:k]

    async def delete_document(self, document_id: str) -> int:
        self._check()
        self.deleted.append(document_id)
        return len(self.chunks.pop(document_id, []))


class FakeGenerationService:
    """Generation service returning a fixed response and recording prompts."""

    model = "fake-model"

    def __init__(self, response: str = "Generated answer.", error=None) -> None:
        self.response = response
        self.error = error
        self.calls: list[dict] = []

    async def generate(self, prompt: str, temperature: float, max_tokens: int) -> str:
        self.calls.append(
            {"prompt": prompt, "temperature": temperature, "max_tokens": max_tokens}
        )
        if self.error is not None:
            raise self.error
        return self.response

    @property
    def prompts(self) -> list[str]:
        return [call["prompt"] for call in self.calls]


def create_mock_openai_response(embeddings: list[list[float]]) -> Mock:
    mock_response = Mock()
    mock_response.data = [Mock(embedding=emb) for emb in embeddings]
    return mock_response


def create_mock_chat_response(content: str | None) -> Mock:
    mock_response = Mock()
    mock_response.choices = [Mock(message=Mock(content=content))]
    return mock_response


def make_document(
    doc_id: str, filename: str, text: str = "", user_id: str = TestConstants.USER_ID
) -> StoredDocument:
    return StoredDocument(
        id=doc_id,
        user_id=user_id,
        filename=filename,
        uploaded_at="2024-05-01T10:00:00+00:00",
        text=text,
    )


@pytest.fixture
def openai_embeddings_api_mock():
    """Patch the OpenAI embeddings endpoint and hand back the mock."""
    with patch("openai.resources.embeddings.Embeddings.create") as mock_create:
        yield mock_create


@pytest.fixture
def embedding_service_factory():
    """Factory for EmbeddingService instances with a test API key."""

    def _create_service(api_key=None, model=None, batch_size=100):
        return EmbeddingService(
            api_key=api_key or TestConstants.TEST_API_KEY,
            model=model,
            batch_size=batch_size,
        )

    return _create_service


@pytest.fixture
def embedding_service(embedding_service_factory):
    return embedding_service_factory()


@pytest.fixture(scope="session")
def mock_embedding_service():
    """Pre-configured MockEmbeddingService for consistent test embeddings."""
    return MockEmbeddingService()


@pytest.fixture
def text_chunker_factory():
    """Factory fixture that creates ``TextChunker`` instances on demand."""

    def _create_chunker(
        chunk_size: int = 200, overlap: int = 50, *, preserve_sentences: bool = True
    ) -> TextChunker:
        return TextChunker(
            chunk_size=chunk_size,
            overlap=overlap,
            preserve_sentences=preserve_sentences,
        )

    return _create_chunker


@pytest.fixture
def analyzer():
    return QueryAnalyzer()


@pytest.fixture
def memory():
    return ConversationMemory()


@pytest.fixture
def document_store(tmp_path) -> SQLiteDocumentStore:
    """Temporary SQLite document store."""
    return SQLiteDocumentStore(tmp_path / "documents.db")


@pytest.fixture
def fake_vector_index():
    return FakeVectorIndex()


@pytest.fixture
def fake_generation():
    return FakeGenerationService()


@pytest.fixture
def pipeline_factory(document_store):
    """Factory for pipelines over the temporary store and fake services."""

    def _create_pipeline(
        generation_service=None,
        vector_index=None,
        **kwargs,
    ) -> DocChatPipeline:
        return DocChatPipeline(
            document_store=document_store,
            generation_service=generation_service or FakeGenerationService(),
            vector_index=vector_index,
            chunker=kwargs.pop("chunker", TextChunker(chunk_size=200, overlap=50)),
            **kwargs,
        )

    return _create_pipeline
