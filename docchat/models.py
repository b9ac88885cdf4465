"""Data models for the document question-answering pipeline."""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


@dataclass(frozen=True)
class DocumentChunk:
    """An overlap-preserving slice of one document's text."""

    id: str
    document_id: str
    text: str
    ordinal: int
    char_start: int
    char_len: int
    context_before: str = ""
    context_after: str = ""
    document_metadata: dict[str, Any] = field(default_factory=dict)
    overlap_length: int = 0

    @property
    def new_text(self) -> str:
        """Text of the chunk without the part repeated from the previous chunk."""
        return self.text[self.overlap_length :]


@dataclass(frozen=True)
class StoredDocument:
    """A document as returned by the document store."""

    id: str
    user_id: str
    filename: str
    uploaded_at: str
    text: str = ""


@dataclass(frozen=True)
class VectorHit:
    """One result from the vector index."""

    text: str
    metadata: dict[str, Any]
    score: float


class IntentType(StrEnum):
    DOCUMENT_LIST = "document_list"
    EXTRACTION = "extraction"
    SUMMARY = "summary"
    COMPARISON = "comparison"
    SEARCH = "search"
    QUESTION = "question"
    GENERAL = "general"
    HYBRID = "hybrid"


@dataclass(frozen=True)
class Intent:
    type: IntentType
    confidence: float
    pattern: str | None = None


@dataclass(frozen=True)
class DocumentReference:
    document_id: str
    filename: str
    match_type: str = "explicit"
    confidence: float = 0.9


@dataclass(frozen=True)
class QueryAnalysis:
    """Classification and expansion of a single query.

    Created fresh per query and never persisted beyond the turn.
    """

    raw_query: str
    intent: Intent
    keywords: tuple[str, ...] = ()
    expanded_keywords: tuple[str, ...] = ()
    entities: dict[str, tuple[str, ...]] = field(default_factory=dict)
    document_references: tuple[DocumentReference, ...] = ()
    suggested_temperature: float = 0.7
    suggested_scope: str = "general"
    extraction_type: str | None = None

    @property
    def intent_type(self) -> IntentType:
        return self.intent.type


class RetrievalStrategy(StrEnum):
    METADATA = "metadata"
    VECTOR = "vector"
    DOCUMENT_TARGETED = "document_targeted"
    ENTITY = "entity"
    KEYWORD = "keyword"


@dataclass(frozen=True, kw_only=True)
class RetrievalCandidate:
    """Evidence produced by one retrieval strategy.

    ``order`` is the position in which the candidate was produced and breaks
    ties after re-ranking.
    """

    text: str
    document_id: str
    filename: str
    source_strategy: RetrievalStrategy
    raw_score: float
    final_score: float = 0.0
    order: int = 0


@dataclass(frozen=True, kw_only=True)
class MetadataCandidate(RetrievalCandidate):
    source_strategy: RetrievalStrategy = RetrievalStrategy.METADATA
    uploaded_at: str = ""


@dataclass(frozen=True, kw_only=True)
class VectorCandidate(RetrievalCandidate):
    source_strategy: RetrievalStrategy = RetrievalStrategy.VECTOR
    reformulation: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, kw_only=True)
class TextCandidate(RetrievalCandidate):
    source_strategy: RetrievalStrategy = RetrievalStrategy.KEYWORD
    unit_index: int = 0


@dataclass(frozen=True, kw_only=True)
class EntityCandidate(RetrievalCandidate):
    source_strategy: RetrievalStrategy = RetrievalStrategy.ENTITY
    entity_type: str = ""
    unit_index: int = 0


@dataclass(frozen=True)
class RetrievalReport:
    """Candidates of one retrieval run plus what produced them."""

    candidates: list[RetrievalCandidate]
    strategies: tuple[str, ...] = ()
    degraded: tuple[str, ...] = ()


@dataclass(frozen=True)
class ConversationTurn:
    """A single answered query inside one chat."""

    id: str
    chat_id: str
    user_id: str
    timestamp: str
    user_message: str
    bot_response: str
    documents_referenced: tuple[str, ...] = ()
    topics_discussed: tuple[str, ...] = ()
    entities_found: tuple[str, ...] = ()
    query_type: str = "general"
    confidence: float = 0.5


@dataclass(frozen=True)
class DocumentContextSummary:
    document_id: str
    filename: str
    summary: str
    key_topics: tuple[str, ...] = ()
    uploaded_at: str = ""


@dataclass(frozen=True)
class CacheEntry:
    query_text: str
    response_text: str
    metadata: dict[str, Any] = field(default_factory=dict)
    cached_at: str = ""


@dataclass
class QueryOptions:
    """Per-call options for ``DocChatPipeline.answer_query``."""

    max_results: int | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    use_cache: bool = True
    include_history: bool = True


@dataclass
class AnswerResult:
    response: str
    relevant_chunks: list[RetrievalCandidate]
    metadata: dict[str, Any]

    @property
    def from_cache(self) -> bool:
        return bool(self.metadata.get("from_cache", False))


@dataclass
class IngestionResult:
    document_id: str
    filename: str
    chunks_created: int
    indexed: bool
    summary: str
    key_topics: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
