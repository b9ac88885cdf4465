"""Question-answering pipeline over a user's documents."""

from __future__ import annotations

import asyncio
import dataclasses
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from .config import config
from .conversation import ConversationMemory
from .document_processing import (
    DocumentLoader,
    TextChunker,
    extract_document_metadata,
    extract_key_topics,
    normalize_text,
)
from .errors import GenerationError, QueryValidationError
from .interfaces import DocumentStore, GenerationService, VectorIndex
from .models import (
    AnswerResult,
    DocumentContextSummary,
    IngestionResult,
    IntentType,
    QueryAnalysis,
    QueryOptions,
    RetrievalCandidate,
    StoredDocument,
)
from .query_analysis import (
    GROUNDING_DOCUMENTS,
    GROUNDING_GENERAL,
    GROUNDING_HYBRID,
    QueryAnalyzer,
    can_answer_with_metadata,
)
from .response_policy import (
    ResponsePolicySelector,
    apply_source_footer,
    build_conversation_fallback,
    build_fallback_response,
    suggest_temperature,
)
from .retrieval import RetrievalOrchestrator, rerank

logger = config.get_logger(__name__)

SUMMARY_SOURCE_CHARS = 3000
SUMMARY_FALLBACK_CHARS = 300
ERROR_RESPONSE = (
    "Sorry, something went wrong while answering your question. Please try again."
)


class DocChatPipeline:
    """Answers queries against a user's documents.

    Query analysis decides whether a query is grounded in documents; retrieval,
    conversation memory and the response policy then shape the prompt sent to
    the generation service. Failures of the store, the index or the generator
    degrade the answer and are reported in ``metadata["degraded"]``; the only
    error a caller sees is ``QueryValidationError`` for an empty query.
    """

    def __init__(
        self,
        document_store: DocumentStore,
        generation_service: GenerationService,
        vector_index: VectorIndex | None = None,
        *,
        memory: ConversationMemory | None = None,
        analyzer: QueryAnalyzer | None = None,
        orchestrator: RetrievalOrchestrator | None = None,
        policy_selector: ResponsePolicySelector | None = None,
        chunker: TextChunker | None = None,
        generation_timeout: float = config.GENERATION_TIMEOUT_S,
    ) -> None:
        """Wire the pipeline from its collaborators.

        Args:
            document_store: Where documents and their text live.
            generation_service: Text generation backend.
            vector_index: Similarity search; retrieval falls back to text
                scans when None.
            memory: Conversation memory; a fresh in-memory one when None.
            analyzer: Query analyzer.
            orchestrator: Retrieval orchestrator; built over ``vector_index``
                when None.
            policy_selector: Response policy selector.
            chunker: Chunker used at ingestion.
            generation_timeout: Seconds a generation call may take.
        """
        self.document_store = document_store
        self.generation_service = generation_service
        self.vector_index = vector_index
        self.memory = memory or ConversationMemory()
        self.analyzer = analyzer or QueryAnalyzer()
        self.orchestrator = orchestrator or RetrievalOrchestrator(vector_index)
        self.policy_selector = policy_selector or ResponsePolicySelector()
        self.chunker = chunker or TextChunker()
        self.generation_timeout = generation_timeout

    @classmethod
    def from_config(cls, openai_api_key: str | None = None) -> DocChatPipeline:
        """Build a pipeline with the OpenAI, FAISS and SQLite backends."""
        from .document_store import SQLiteDocumentStore
        from .embeddings import EmbeddingService
        from .generation import OpenAIGenerationService
        from .vector_store import get_vector_index

        embedding_service = EmbeddingService(api_key=openai_api_key)
        return cls(
            document_store=SQLiteDocumentStore(config.DOCUMENT_STORE_DB_PATH),
            generation_service=OpenAIGenerationService(api_key=openai_api_key),
            vector_index=get_vector_index(embedding_service),
        )

    async def answer_query(
        self,
        user_id: str,
        chat_id: str,
        query_text: str,
        options: QueryOptions | None = None,
    ) -> AnswerResult:
        """Answer one query.

        Args:
            user_id: Owner of the documents and the chat.
            chat_id: Conversation the query belongs to.
            query_text: The user's query.
            options: Per-call overrides.

        Returns:
            The response, the candidates it was grounded in and metadata with
            the intent, confidence, temperature and contributing strategies.

        Raises:
            QueryValidationError: If the query is empty or whitespace only.
        """
        if not query_text or not query_text.strip():
            msg = "Query must not be empty"
            raise QueryValidationError(msg)

        query = query_text.strip()
        options = options or QueryOptions()
        try:
            return await self._answer(user_id, chat_id, query, options)
        except Exception:
            logger.exception(
                "Unhandled error while answering query for chat %s", chat_id
            )
            return AnswerResult(
                response=ERROR_RESPONSE,
                relevant_chunks=[],
                metadata={
                    "intent": IntentType.GENERAL.value,
                    "confidence": 0.0,
                    "temperature": None,
                    "strategies": [],
                    "mode": "error",
                    "from_cache": False,
                    "degraded": ["pipeline"],
                },
            )

    def answer_query_sync(
        self,
        user_id: str,
        chat_id: str,
        query_text: str,
        options: QueryOptions | None = None,
    ) -> AnswerResult:
        return asyncio.run(self.answer_query(user_id, chat_id, query_text, options))

    async def _answer(
        self, user_id: str, chat_id: str, query: str, options: QueryOptions
    ) -> AnswerResult:
        if options.use_cache:
            cached = self.memory.get_cached_response(user_id, query)
            if cached is not None:
                metadata = {**cached.metadata, "from_cache": True, "degraded": []}
                self.memory.record_turn(
                    chat_id, user_id, query, cached.response_text, metadata
                )
                return AnswerResult(
                    response=cached.response_text, relevant_chunks=[], metadata=metadata
                )

        degraded: list[str] = []
        documents = await self._list_documents(user_id, degraded)
        analysis = self.analyzer.analyze(query, documents)
        mode = self.analyzer.grounding_mode(analysis, bool(documents))

        recent = self.memory.history(user_id, chat_id)
        dependency = self.memory.classify_context_dependency(query, recent[-3:])
        history = (
            self.memory.select_relevant_history(
                chat_id, query, user_id=user_id, dependency=dependency
            )
            if options.include_history
            else []
        )

        candidates: list[RetrievalCandidate] = []
        strategies: tuple[str, ...] = ()
        if mode != GROUNDING_GENERAL:
            if not can_answer_with_metadata(analysis):
                documents = await self._load_texts(documents, degraded)
            report = await self.orchestrator.retrieve_with_report(
                query, documents, analysis, options.max_results
            )
            candidates = report.candidates
            strategies = report.strategies
            degraded.extend(report.degraded)
            if mode == GROUNDING_HYBRID and not candidates:
                logger.info("No evidence for hybrid query; answering conversationally")
                mode = GROUNDING_GENERAL
            elif mode == GROUNDING_DOCUMENTS and not candidates and documents:
                logger.info("No content matched; falling back to document metadata")
                candidates = rerank(
                    self.orchestrator.metadata_candidates(documents), analysis
                )
                strategies = ("metadata",)
                degraded.append("metadata_fallback")

        policy = self.policy_selector.select_policy(analysis, mode, options.temperature)
        notes = self.memory.build_context_sections(user_id, chat_id, dependency)
        prompt = policy.prompt_builder.build(analysis, candidates, history, notes)

        response, generated = await self._generate(
            prompt, policy.temperature, options.max_tokens or policy.max_tokens
        )
        if not generated:
            degraded.append("generation")
            response = (
                build_conversation_fallback(query)
                if mode == GROUNDING_GENERAL
                else build_fallback_response(analysis, candidates)
            )
        if mode != GROUNDING_GENERAL:
            response = apply_source_footer(
                response, candidates, analysis, len(documents)
            )

        metadata = self._metadata(
            analysis,
            policy.temperature,
            strategies,
            mode,
            degraded,
            dependency,
            len(history),
            len(documents),
            candidates,
        )
        self.memory.record_turn(chat_id, user_id, query, response, metadata)
        if generated and options.use_cache:
            self.memory.cache_response(user_id, query, response, metadata)

        logger.info(
            "Answered query for chat %s: intent=%s mode=%s candidates=%d",
            chat_id,
            analysis.intent_type,
            mode,
            len(candidates),
        )
        return AnswerResult(
            response=response, relevant_chunks=candidates, metadata=metadata
        )

    def _metadata(
        self,
        analysis: QueryAnalysis,
        temperature: float,
        strategies: Sequence[str],
        mode: str,
        degraded: Sequence[str],
        dependency: str,
        history_turns: int,
        document_count: int,
        candidates: Sequence[RetrievalCandidate],
    ) -> dict[str, Any]:
        return {
            "intent": analysis.intent_type.value,
            "confidence": analysis.intent.confidence,
            "temperature": temperature,
            "strategies": list(strategies),
            "mode": mode,
            "from_cache": False,
            "degraded": list(dict.fromkeys(degraded)),
            "context_dependency": dependency,
            "history_turns_used": history_turns,
            "documents_analyzed": document_count,
            "chunks_retrieved": len(candidates),
            "documents_referenced": list(
                dict.fromkeys(candidate.filename for candidate in candidates)
            ),
            "model": getattr(self.generation_service, "model", None),
        }

    async def _list_documents(
        self, user_id: str, degraded: list[str]
    ) -> list[StoredDocument]:
        try:
            return await asyncio.to_thread(self.document_store.list_documents, user_id)
        except Exception:
            logger.exception("Could not list documents for user %s", user_id)
            degraded.append("document_store")
            return []

    async def _load_texts(
        self, documents: Sequence[StoredDocument], degraded: list[str]
    ) -> list[StoredDocument]:
        loaded = []
        for document in documents:
            try:
                text = await asyncio.to_thread(
                    self.document_store.get_document_text, document.id
                )
            except Exception:
                logger.exception("Could not read text of document %s", document.id)
                degraded.append("document_store")
                text = ""
            loaded.append(dataclasses.replace(document, text=text))
        return loaded

    async def _generate(
        self, prompt: str, temperature: float, max_tokens: int
    ) -> tuple[str, bool]:
        try:
            response = await asyncio.wait_for(
                self.generation_service.generate(prompt, temperature, max_tokens),
                timeout=self.generation_timeout,
            )
            if not response or not response.strip():
                msg = "Empty response from generation service"
                raise GenerationError(msg)
        except TimeoutError:
            logger.warning("Generation timed out after %.1fs", self.generation_timeout)
            return "", False
        except Exception:
            logger.exception("Generation failed; using templated response")
            return "", False
        return response.strip(), True

    async def ingest_document(
        self,
        user_id: str,
        filename: str,
        text: str,
        metadata: dict[str, Any] | None = None,
    ) -> IngestionResult:
        """Store, chunk, index and summarize a document.

        A failing vector index leaves the document stored but unindexed.

        Returns:
            What was created for the document.

        Raises:
            ValueError: If the document has no text.
            DocumentStoreError: If the document cannot be stored.
        """
        clean = normalize_text(text)
        if not clean:
            msg = f"Document {filename} has no extractable text"
            raise ValueError(msg)

        document_metadata = extract_document_metadata(
            clean, {**(metadata or {}), "filename": filename}
        )
        stored = await asyncio.to_thread(
            self.document_store.add_document,
            user_id,
            filename,
            clean,
            document_metadata,
        )
        chunks = self.chunker.chunk_text(
            clean, stored.id, {"filename": filename, "user_id": user_id}
        )

        indexed = False
        if self.vector_index is not None:
            try:
                await self.vector_index.index(
                    stored.id, chunks, {"filename": filename, "user_id": user_id}
                )
                indexed = True
            except Exception:
                logger.exception(
                    "Indexing failed for %s; text search still works", filename
                )

        key_topics = extract_key_topics(clean)
        summary = await self._summarize(clean)
        self.memory.save_document_summary(
            user_id,
            DocumentContextSummary(
                document_id=stored.id,
                filename=filename,
                summary=summary,
                key_topics=tuple(key_topics),
                uploaded_at=stored.uploaded_at,
            ),
        )

        logger.info(
            "Ingested %s as %s: %d chunks, indexed=%s",
            filename,
            stored.id,
            len(chunks),
            indexed,
        )
        return IngestionResult(
            document_id=stored.id,
            filename=filename,
            chunks_created=len(chunks),
            indexed=indexed,
            summary=summary,
            key_topics=key_topics,
            metadata=document_metadata,
        )

    async def ingest_file(
        self, user_id: str, file_path: Path, filename: str | None = None
    ) -> IngestionResult:
        """Load a PDF, TXT or Markdown file and ingest it.

        Raises:
            ValueError: If the file type is not supported.
        """
        text = await asyncio.to_thread(DocumentLoader.load_document, Path(file_path))
        return await self.ingest_document(
            user_id, filename or Path(file_path).name, text
        )

    async def _summarize(self, text: str) -> str:
        prompt = (
            "Summarize the following document in three or four sentences, "
            f"covering its main topics.\n\n{text[:SUMMARY_SOURCE_CHARS]}\n\nSummary:"
        )
        summary, generated = await self._generate(
            prompt, suggest_temperature(IntentType.SUMMARY), config.SUMMARY_MAX_TOKENS
        )
        if generated:
            return summary
        if len(text) <= SUMMARY_FALLBACK_CHARS:
            return text
        return text[:SUMMARY_FALLBACK_CHARS] + "..."

    async def delete_document(self, user_id: str, document_id: str) -> bool:
        """Remove a document from the store, the index and memory.

        Returns:
            True if the user owned the document and it was removed.
        """
        deleted = await asyncio.to_thread(
            self.document_store.delete_document, user_id, document_id
        )
        if not deleted:
            logger.warning(
                "Document %s not found for user %s; nothing removed",
                document_id,
                user_id,
            )
            return False
        if self.vector_index is not None:
            try:
                await self.vector_index.delete_document(document_id)
            except Exception:
                logger.exception(
                    "Could not remove document %s from the index", document_id
                )
        self.memory.remove_document_summary(user_id, document_id)
        return deleted
