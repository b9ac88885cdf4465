"""Multi-strategy retrieval with deduplication and re-ranking."""

import asyncio
import dataclasses
import re
from collections.abc import Awaitable, Callable, Sequence

from .config import config
from .document_processing import split_sentences
from .interfaces import VectorIndex
from .models import (
    EntityCandidate,
    IntentType,
    MetadataCandidate,
    QueryAnalysis,
    RetrievalCandidate,
    RetrievalReport,
    RetrievalStrategy,
    StoredDocument,
    TextCandidate,
    VectorCandidate,
    VectorHit,
)
from .query_analysis import can_answer_with_metadata, generate_search_queries

logger = config.get_logger(__name__)

STRATEGY_WEIGHTS: dict[RetrievalStrategy, float] = {
    RetrievalStrategy.METADATA: 1.0,
    RetrievalStrategy.VECTOR: 1.0,
    RetrievalStrategy.DOCUMENT_TARGETED: 0.95,
    RetrievalStrategy.ENTITY: 0.9,
    RetrievalStrategy.KEYWORD: 0.8,
}

# Lower index wins ties and deduplication.
STRATEGY_PRIORITY: tuple[RetrievalStrategy, ...] = (
    RetrievalStrategy.METADATA,
    RetrievalStrategy.VECTOR,
    RetrievalStrategy.DOCUMENT_TARGETED,
    RetrievalStrategy.ENTITY,
    RetrievalStrategy.KEYWORD,
)

DEGRADED_TAGS: dict[RetrievalStrategy, str] = {
    RetrievalStrategy.VECTOR: "vector_search",
    RetrievalStrategy.DOCUMENT_TARGETED: "document_targeted",
    RetrievalStrategy.ENTITY: "entity_search",
    RetrievalStrategy.KEYWORD: "keyword_search",
}

ENTITY_CUES: dict[str, tuple[str, ...]] = {
    "skills": (
        r"skills?:", r"proficient in", r"experienced with", r"expertise in",
        r"knowledge of", r"familiar with", r"competent in",
    ),
    "experience": (
        r"experience:", r"worked at", r"employed at", r"position at",
        r"role at", r"years? of", r"background in",
    ),
    "education": (
        r"education:", r"degree in", r"studied at", r"university",
        r"college", r"graduated", r"bachelor", r"master", r"phd",
    ),
    "qualifications": (
        r"qualified in", r"certified in", r"license", r"accredited",
        r"trained in", r"qualification",
    ),
    "contact": (
        r"contact", r"phone:", r"email:", r"[\w.+-]+@[\w-]+\.\w+",
        r"\d{3}[-.]?\d{3}[-.]?\d{4}",
    ),
}  # fmt: skip

DEDUP_PREFIX_CHARS = 100
CONTEXT_UNITS = 2
KEYWORD_HIT_SCORE = 0.3
WORD_BOUNDARY_BONUS = 0.2
LONG_KEYWORD_LENGTH = 4
LONG_KEYWORD_WEIGHT = 1.2
MIN_UNIT_SCORE = 0.1
ENTITY_CUE_SCORE = 0.3
OPENING_EXCERPT_CHARS = 500
OPENING_EXCERPT_SCORE = 0.3
TARGETED_EXCERPT_SCORE = 0.5
REFERENCED_DOCUMENT_BOOST = 1.2
INTENT_MATCH_BONUS = 1.3
SHORT_TEXT_CHARS = 50
SHORT_TEXT_FACTOR = 0.7
LONG_TEXT_CHARS = 200
LONG_TEXT_FACTOR = 1.1


def text_units(text: str) -> list[str]:
    """Split a document into sentence units, never crossing a line break."""
    units = []
    for line in text.split("\n"):
        if line.strip():
            units.extend(line[start:end] for start, end in split_sentences(line))
    return units


def score_unit(unit: str, keywords: Sequence[str]) -> float:
    """Weighted keyword presence of one unit.

    A substring hit scores 0.3 and a whole-word hit adds 0.2; keywords longer
    than four characters count 1.2 times.

    Returns:
        The score, capped at 1.0.
    """
    unit_lower = unit.lower()
    score = 0.0
    for keyword in keywords:
        keyword_lower = keyword.lower()
        if not keyword_lower or keyword_lower not in unit_lower:
            continue
        hit = KEYWORD_HIT_SCORE
        if re.search(rf"\b{re.escape(keyword_lower)}\b", unit_lower):
            hit += WORD_BOUNDARY_BONUS
        if len(keyword_lower) > LONG_KEYWORD_LENGTH:
            hit *= LONG_KEYWORD_WEIGHT
        score += hit
    return min(score, 1.0)


def with_context(units: Sequence[str], index: int) -> str:
    start = max(0, index - CONTEXT_UNITS)
    return " ".join(units[start : index + CONTEXT_UNITS + 1])


def opening_excerpt(text: str) -> str:
    return text.strip()[:OPENING_EXCERPT_CHARS]


def deduplicate(candidates: Sequence[RetrievalCandidate]) -> list[RetrievalCandidate]:
    """Keep the first candidate for every 100-character text prefix."""
    seen: set[str] = set()
    unique = []
    for candidate in candidates:
        key = candidate.text[:DEDUP_PREFIX_CHARS]
        if key in seen:
            continue
        seen.add(key)
        unique.append(candidate)
    return unique


def length_factor(text: str) -> float:
    if len(text) < SHORT_TEXT_CHARS:
        return SHORT_TEXT_FACTOR
    if len(text) > LONG_TEXT_CHARS:
        return LONG_TEXT_FACTOR
    return 1.0


def rerank(
    candidates: Sequence[RetrievalCandidate], analysis: QueryAnalysis
) -> list[RetrievalCandidate]:
    """Compute final scores and sort.

    ``final = raw * strategy weight * length factor * intent bonus`` with an
    extra boost for documents the query names. Ties fall back to strategy
    priority and then to production order.

    Returns:
        Candidates sorted by final score, highest first.
    """
    referenced = {reference.document_id for reference in analysis.document_references}
    rescored = []
    for candidate in candidates:
        score = candidate.raw_score * STRATEGY_WEIGHTS[candidate.source_strategy]
        score *= length_factor(candidate.text)
        if (
            isinstance(candidate, EntityCandidate)
            and analysis.intent_type == IntentType.EXTRACTION
            and candidate.entity_type == analysis.extraction_type
        ):
            score *= INTENT_MATCH_BONUS
        if candidate.document_id in referenced:
            score *= REFERENCED_DOCUMENT_BOOST
        rescored.append(dataclasses.replace(candidate, final_score=score))

    return sorted(
        rescored,
        key=lambda candidate: (
            -candidate.final_score,
            STRATEGY_PRIORITY.index(candidate.source_strategy),
            candidate.order,
        ),
    )


class RetrievalOrchestrator:
    """Runs the retrieval strategies an analyzed query calls for.

    Strategies run concurrently, each under its own timeout. A strategy that
    fails or times out contributes nothing and is reported as degraded; the
    others still answer.
    """

    def __init__(
        self,
        vector_index: VectorIndex | None = None,
        strategy_timeout: float = config.STRATEGY_TIMEOUT_S,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            vector_index: Similarity search service; vector search is skipped
                when None.
            strategy_timeout: Seconds each strategy may take.
        """
        self.vector_index = vector_index
        self.strategy_timeout = strategy_timeout

    async def retrieve(
        self,
        query: str,
        documents: Sequence[StoredDocument],
        analysis: QueryAnalysis,
        max_results: int | None = None,
    ) -> list[RetrievalCandidate]:
        report = await self.retrieve_with_report(
            query, documents, analysis, max_results
        )
        return report.candidates

    async def retrieve_with_report(
        self,
        query: str,
        documents: Sequence[StoredDocument],
        analysis: QueryAnalysis,
        max_results: int | None = None,
    ) -> RetrievalReport:
        """Gather, deduplicate and re-rank candidates for one query.

        Args:
            query: The query text.
            documents: The caller's documents, with text loaded.
            analysis: The analyzed query.
            max_results: Maximum candidates returned for content queries.

        Returns:
            The ranked candidates, the strategies that produced them and the
            strategies that degraded.
        """
        max_results = max_results or config.MAX_RESULTS

        if can_answer_with_metadata(analysis):
            candidates = self.metadata_candidates(documents)
            logger.info("Listing %d documents from metadata", len(candidates))
            return RetrievalReport(
                candidates=rerank(candidates, analysis),
                strategies=(RetrievalStrategy.METADATA.value,),
            )

        runs: dict[
            RetrievalStrategy, Callable[[], Awaitable[list[RetrievalCandidate]]]
        ] = {}
        if self.vector_index is not None:
            runs[RetrievalStrategy.VECTOR] = lambda: self.vector_search(
                analysis, documents, max_results
            )
        if analysis.document_references:
            runs[RetrievalStrategy.DOCUMENT_TARGETED] = lambda: asyncio.to_thread(
                self.document_targeted_scan, documents, analysis
            )
        if analysis.intent_type == IntentType.EXTRACTION:
            runs[RetrievalStrategy.ENTITY] = lambda: asyncio.to_thread(
                self.entity_scan, documents, analysis
            )
        runs[RetrievalStrategy.KEYWORD] = lambda: asyncio.to_thread(
            self.keyword_scan, documents, analysis
        )

        strategies = list(runs)
        results = await asyncio.gather(
            *(self._run_strategy(strategy, runs[strategy]) for strategy in strategies)
        )

        by_strategy = dict(zip(strategies, results, strict=True))
        degraded = tuple(
            DEGRADED_TAGS[strategy]
            for strategy in STRATEGY_PRIORITY
            if strategy in by_strategy and by_strategy[strategy] is None
        )
        collected: list[RetrievalCandidate] = []
        contributed: list[str] = []
        for strategy in STRATEGY_PRIORITY:
            found = by_strategy.get(strategy)
            if found:
                contributed.append(strategy.value)
                collected.extend(found)

        ordered = [
            dataclasses.replace(candidate, order=position)
            for position, candidate in enumerate(collected)
        ]
        unique = deduplicate(ordered)
        ranked = rerank(unique, analysis)[:max_results]

        logger.info(
            "Retrieved %d candidates (%d unique) via %s",
            len(collected),
            len(unique),
            ", ".join(contributed) or "no strategy",
        )
        if degraded:
            logger.warning("Degraded retrieval strategies: %s", ", ".join(degraded))

        return RetrievalReport(
            candidates=ranked, strategies=tuple(contributed), degraded=degraded
        )

    async def _run_strategy(
        self,
        strategy: RetrievalStrategy,
        run: Callable[[], Awaitable[list[RetrievalCandidate]]],
    ) -> list[RetrievalCandidate] | None:
        try:
            return await asyncio.wait_for(run(), timeout=self.strategy_timeout)
        except TimeoutError:
            logger.warning(
                "%s strategy timed out after %.1fs",
                strategy.value,
                self.strategy_timeout,
            )
        except Exception:
            logger.exception("%s strategy failed", strategy.value)
        return None

    @staticmethod
    def metadata_candidates(
        documents: Sequence[StoredDocument],
    ) -> list[RetrievalCandidate]:
        return [
            MetadataCandidate(
                text=f"{document.filename} (uploaded {document.uploaded_at})",
                document_id=document.id,
                filename=document.filename,
                raw_score=1.0,
                uploaded_at=document.uploaded_at,
                order=position,
            )
            for position, document in enumerate(documents)
        ]

    async def vector_search(
        self,
        analysis: QueryAnalysis,
        documents: Sequence[StoredDocument],
        max_results: int,
    ) -> list[RetrievalCandidate]:
        """Search the vector index with every reformulation concurrently.

        Hits from documents outside ``documents`` are dropped.

        Raises:
            Exception: The first search error when every reformulation failed.
        """
        if self.vector_index is None:
            return []
        reformulations = generate_search_queries(analysis)
        allowed = {document.id: document.filename for document in documents}

        outcomes = await asyncio.gather(
            *(self.vector_index.search(text, max_results) for text in reformulations),
            return_exceptions=True,
        )
        errors = [outcome for outcome in outcomes if isinstance(outcome, BaseException)]
        if errors and len(errors) == len(outcomes):
            raise errors[0]

        candidates: list[RetrievalCandidate] = []
        for reformulation, outcome in zip(reformulations, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                logger.warning(
                    "Vector search failed for %r: %s", reformulation, outcome
                )
                continue
            candidates.extend(self._vector_candidates(reformulation, outcome, allowed))
        return candidates

    @staticmethod
    def _vector_candidates(
        reformulation: str, hits: Sequence[VectorHit], allowed: dict[str, str]
    ) -> list[RetrievalCandidate]:
        candidates: list[RetrievalCandidate] = []
        for hit in hits:
            document_id = str(hit.metadata.get("document_id", ""))
            if document_id not in allowed:
                continue
            candidates.append(
                VectorCandidate(
                    text=hit.text,
                    document_id=document_id,
                    filename=str(hit.metadata.get("filename") or allowed[document_id]),
                    raw_score=float(hit.score),
                    reformulation=reformulation,
                    metadata=dict(hit.metadata),
                )
            )
        return candidates

    @staticmethod
    def _keywords(analysis: QueryAnalysis) -> tuple[str, ...]:
        return analysis.expanded_keywords or analysis.keywords

    def keyword_scan(
        self, documents: Sequence[StoredDocument], analysis: QueryAnalysis
    ) -> list[RetrievalCandidate]:
        """Score every sentence unit of every document against the keywords.

        Summary and comparison queries also get the opening of each document.
        """
        keywords = self._keywords(analysis)
        candidates: list[RetrievalCandidate] = []
        for document in documents:
            if analysis.intent_type in (IntentType.SUMMARY, IntentType.COMPARISON):
                excerpt = opening_excerpt(document.text)
                if excerpt:
                    candidates.append(
                        TextCandidate(
                            text=excerpt,
                            document_id=document.id,
                            filename=document.filename,
                            raw_score=OPENING_EXCERPT_SCORE,
                        )
                    )
            candidates.extend(
                self._scan_units(document, keywords, RetrievalStrategy.KEYWORD)
            )
        return candidates

    def document_targeted_scan(
        self, documents: Sequence[StoredDocument], analysis: QueryAnalysis
    ) -> list[RetrievalCandidate]:
        referenced = {
            reference.document_id for reference in analysis.document_references
        }
        keywords = self._keywords(analysis)
        candidates: list[RetrievalCandidate] = []
        for document in documents:
            if document.id not in referenced:
                continue
            excerpt = opening_excerpt(document.text)
            if excerpt:
                candidates.append(
                    TextCandidate(
                        text=excerpt,
                        document_id=document.id,
                        filename=document.filename,
                        source_strategy=RetrievalStrategy.DOCUMENT_TARGETED,
                        raw_score=TARGETED_EXCERPT_SCORE,
                    )
                )
            candidates.extend(
                self._scan_units(
                    document, keywords, RetrievalStrategy.DOCUMENT_TARGETED
                )
            )
        return candidates

    @staticmethod
    def _scan_units(
        document: StoredDocument,
        keywords: Sequence[str],
        strategy: RetrievalStrategy,
    ) -> list[RetrievalCandidate]:
        if not keywords:
            return []
        units = text_units(document.text)
        candidates: list[RetrievalCandidate] = []
        for index, unit in enumerate(units):
            score = score_unit(unit, keywords)
            if score > MIN_UNIT_SCORE:
                candidates.append(
                    TextCandidate(
                        text=with_context(units, index),
                        document_id=document.id,
                        filename=document.filename,
                        source_strategy=strategy,
                        raw_score=score,
                        unit_index=index,
                    )
                )
        return candidates

    def entity_scan(
        self, documents: Sequence[StoredDocument], analysis: QueryAnalysis
    ) -> list[RetrievalCandidate]:
        """Score sentence units against the cue phrases of each entity type."""
        if analysis.extraction_type in ENTITY_CUES:
            entity_types = [analysis.extraction_type]
        else:
            entity_types = list(ENTITY_CUES)

        candidates: list[RetrievalCandidate] = []
        for document in documents:
            units = text_units(document.text)
            for index, unit in enumerate(units):
                unit_lower = unit.lower()
                best_type, best_score = "", 0.0
                for entity_type in entity_types:
                    hits = sum(
                        1
                        for cue in ENTITY_CUES[entity_type]
                        if re.search(cue, unit_lower)
                    )
                    score = min(hits * ENTITY_CUE_SCORE, 1.0)
                    if score > best_score:
                        best_type, best_score = entity_type, score
                if best_score > 0:
                    candidates.append(
                        EntityCandidate(
                            text=with_context(units, index),
                            document_id=document.id,
                            filename=document.filename,
                            raw_score=best_score,
                            entity_type=best_type,
                            unit_index=index,
                        )
                    )
        return candidates
