"""DocChat - question answering over uploaded documents."""

from .conversation import ConversationMemory, InMemoryMemoryStore
from .document_processing import DocumentLoader, TextChunker
from .errors import (
    DocChatError,
    DocumentStoreError,
    GenerationError,
    QueryValidationError,
    VectorIndexUnavailableError,
)
from .models import (
    AnswerResult,
    ConversationTurn,
    DocumentChunk,
    IntentType,
    QueryAnalysis,
    QueryOptions,
    RetrievalCandidate,
    RetrievalStrategy,
)
from .pipeline import DocChatPipeline
from .query_analysis import QueryAnalyzer
from .response_policy import ResponsePolicySelector
from .retrieval import RetrievalOrchestrator

__all__ = [
    "AnswerResult",
    "ConversationMemory",
    "ConversationTurn",
    "DocChatError",
    "DocChatPipeline",
    "DocumentChunk",
    "DocumentLoader",
    "DocumentStoreError",
    "GenerationError",
    "InMemoryMemoryStore",
    "IntentType",
    "QueryAnalysis",
    "QueryAnalyzer",
    "QueryOptions",
    "QueryValidationError",
    "ResponsePolicySelector",
    "RetrievalCandidate",
    "RetrievalOrchestrator",
    "RetrievalStrategy",
    "TextChunker",
    "VectorIndexUnavailableError",
]
