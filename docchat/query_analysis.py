"""Query intent classification, entity extraction and keyword expansion.

Every table in this module is ordered data. The analyzer walks the tables in
declaration order, so the first matching entry decides the outcome and an
ambiguous query always resolves the same way.
"""

import re
from collections.abc import Sequence
from pathlib import PurePath

from .config import config
from .models import (
    DocumentReference,
    Intent,
    IntentType,
    QueryAnalysis,
    StoredDocument,
)
from .response_policy import suggest_temperature

logger = config.get_logger(__name__)

# (intent, confidence, patterns) groups, checked top to bottom.
INTENT_PATTERNS: tuple[tuple[IntentType, float, tuple[str, ...]], ...] = (
    (
        IntentType.DOCUMENT_LIST,
        0.95,
        (
            r"what.*documents?.*have.*been.*upload",
            r"what.*files?.*have.*been.*upload",
            r"\bwhat\b.*\b(documents?|files?)\b.*\bupload",
            r"show.*me.*all.*documents?",
            r"list.*all.*documents?",
            r"list.*my.*documents?",
            r"list.*uploaded.*files",
            r"what.*documents?.*are.*available",
            r"what.*files?.*are.*available",
            r"show.*uploaded.*documents?",
            r"display.*document.*list",
            r"which.*documents?.*upload",
            r"how.*many.*documents?",
            r"what.*files.*do.*have",
        ),
    ),
    (
        IntentType.EXTRACTION,
        0.9,
        (
            r"extract.*skills?",
            r"what.*skills?",
            r"list.*skills?",
            r"find.*experience",
            r"show.*qualifications?",
            r"education.*details?",
            r"work.*experience",
            r"contact.*information",
            r"phone.*number",
            r"email.*address",
            r"name.*person",
            r"\bwho\s+is\b",
            r"\bread\b.*\b(document|resume|file|it)\b",
            r"what.*document.*contain",
            r"what.*file.*contain",
            r"what.*resume.*say",
        ),
    ),
    (
        IntentType.SUMMARY,
        0.9,
        (
            r"summari[sz]e",
            r"summary.*of",
            r"overview.*of",
            r"tell.*about",
            r"describe.*document",
            r"what.*about",
            r"main.*points",
            r"key.*information",
            r"brief.*about",
            r"what.*does.*document.*say",
            r"what.*does.*file.*contain",
            r"what.*is.*in.*document",
            r"what.*is.*in.*file",
            r"explain.*document",
            r"content.*of.*document",
            r"what.*document.*covers",
            r"give.*me.*overview",
            r"what.*can.*you.*tell.*me",
            r"read.*this",
            r"what.*this.*document",
        ),
    ),
    (
        IntentType.COMPARISON,
        0.85,
        (
            r"compare",
            r"difference.*between",
            r"similarities.*between",
            r"versus",
            r"\bvs\b\.?",
            r"better.*than",
            r"contrast.*with",
        ),
    ),
    (
        IntentType.SEARCH,
        0.8,
        (
            r"find.*in",
            r"search.*for",
            r"look.*for",
            r"where.*mentioned",
            r"contains?.*mention",
            r"appears?.*in",
            r"what.*does.*it.*say.*about",
            r"information.*about",
            r"details.*about",
            r"explain.*about",
            r"what.*is.*said.*about",
        ),
    ),
)

QUESTION_CONFIDENCE = 0.7
GENERAL_CONFIDENCE = 0.5

# (entity type, pattern, flags)
ENTITY_PATTERNS: tuple[tuple[str, str, int], ...] = (
    ("person", r"\b[A-Z][a-z]+\s+[A-Z][a-z]+\b", 0),
    ("email", r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b", 0),
    ("phone", r"\b\d{3}[-.]?\d{3}[-.]?\d{4}\b", 0),
    (
        "skills",
        r"\b(?:JavaScript|Python|React|Node\.js|SQL|Excel|Tally|SAP"
        r"|Project Management|Accounting|Finance)\b",
        re.IGNORECASE,
    ),
)

STOP_WORDS = frozenset(
    {
        "the", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with",
        "by", "can", "you", "what", "how", "where", "when", "why", "who", "are",
        "is", "was", "were", "have", "has", "had", "not", "all", "her", "one",
        "our", "this", "that", "these", "those", "from", "about", "does", "did",
        "your", "there", "their", "they", "them", "then", "than", "into", "any",
        "some", "would", "could", "should", "will", "been", "being", "which",
        "while", "also", "just", "very", "more", "most", "such", "only", "other",
        "please", "tell", "give", "show", "me", "my",
    }
)  # fmt: skip

SYNONYMS: dict[str, tuple[str, ...]] = {
    "skills": (
        "expertise",
        "abilities",
        "competencies",
        "proficiencies",
        "capabilities",
    ),
    "experience": ("background", "history", "work", "employment", "career"),
    "education": ("qualifications", "degrees", "studies", "academic", "learning"),
    "contact": ("phone", "email", "address", "details", "information"),
    "summary": ("overview", "profile", "about", "description", "brief"),
    "documents": ("files", "uploads", "papers", "content"),
    "name": ("title", "filename", "called", "named"),
}  # fmt: skip

# (scope, pattern), checked before the multi-document rule.
SCOPE_PATTERNS: tuple[tuple[str, str], ...] = (
    ("comparison", r"\b(compare|difference|versus|vs)\b"),
    ("summary", r"\b(summari[sz]e|summary|overview)\b"),
    ("extraction", r"\b(skills?|experience|education|qualifications?)\b"),
    ("search", r"\b(find|search|look for)\b"),
)
MULTI_DOCUMENT_PATTERN = r"\b(all|each|every|across)\b.*\b(documents?|files?)\b"

EXTRACTION_TYPES: tuple[tuple[str, str], ...] = (
    ("skills", r"\bskills?\b"),
    ("experience", r"\bexperience\b"),
    ("education", r"\beducation\b"),
    ("qualifications", r"\bqualifications?\b"),
    ("contact", r"\b(contact|phone|email)\b"),
)

# Greetings and creation requests that never need the user's documents.
CONVERSATIONAL_PATTERNS: tuple[str, ...] = (
    r"^\s*(hi|hello|hey|good (morning|afternoon|evening))\b",
    r"^\s*(thanks|thank you)\b",
    r"\bhow are you\b",
    r"(can|could) you (write|create|generate|make|build)\b",
    r"\bwrite (a|an|some) (code|program|script|function|poem|story)\b",
    r"^\s*(how to|how do i)\b(?!.*\b(document|file|resume|report)s?\b)",
)

DOCUMENT_INTENTS = frozenset(
    {
        IntentType.DOCUMENT_LIST,
        IntentType.EXTRACTION,
        IntentType.SUMMARY,
        IntentType.COMPARISON,
        IntentType.SEARCH,
    }
)
GROUNDING_GENERAL = "general_conversation"
GROUNDING_DOCUMENTS = "documents"
GROUNDING_HYBRID = "hybrid"


def extract_keywords(text: str) -> list[str]:
    """Lower-case, strip punctuation, and drop stop-words and short words.

    Returns:
        Unique keywords in order of first appearance.
    """
    words = re.sub(r"[^\w\s]", " ", text.lower()).split()
    keywords = [word for word in words if len(word) > 2 and word not in STOP_WORDS]
    return list(dict.fromkeys(keywords))


def expand_keywords(keywords: Sequence[str]) -> list[str]:
    """Add synonyms after the original keywords. Never removes a keyword."""
    expanded = list(keywords)
    for keyword in keywords:
        expanded.extend(SYNONYMS.get(keyword, ()))
    return list(dict.fromkeys(expanded))


def filename_stem(filename: str) -> str:
    return PurePath(filename).stem


class QueryAnalyzer:
    """Pure, deterministic query classifier.

    The same query and document list always produce an equal ``QueryAnalysis``.
    """

    def analyze(
        self, query: str, documents: Sequence[StoredDocument] = ()
    ) -> QueryAnalysis:
        """Classify a query and expand it into search terms.

        Args:
            query: The user's raw query text.
            documents: Documents the user currently has.

        Returns:
            The analysis of the query.
        """
        intent = self.detect_intent(query)
        keywords = extract_keywords(query)
        references = self.find_document_references(query, documents)
        analysis = QueryAnalysis(
            raw_query=query,
            intent=intent,
            keywords=tuple(keywords),
            expanded_keywords=tuple(expand_keywords(keywords)),
            entities=self.extract_entities(query),
            document_references=tuple(references),
            suggested_temperature=suggest_temperature(intent.type, query),
            suggested_scope=self.suggest_scope(query, references),
            extraction_type=self.detect_extraction_type(query)
            if intent.type == IntentType.EXTRACTION
            else None,
        )
        logger.debug(
            "Analyzed query: intent=%s confidence=%.2f keywords=%d references=%d",
            intent.type,
            intent.confidence,
            len(keywords),
            len(references),
        )
        return analysis

    @staticmethod
    def detect_intent(query: str) -> Intent:
        for intent_type, confidence, patterns in INTENT_PATTERNS:
            for pattern in patterns:
                if re.search(pattern, query, re.IGNORECASE):
                    return Intent(intent_type, confidence, pattern)

        if "?" in query:
            return Intent(IntentType.QUESTION, QUESTION_CONFIDENCE)
        return Intent(IntentType.GENERAL, GENERAL_CONFIDENCE)

    @staticmethod
    def extract_entities(query: str) -> dict[str, tuple[str, ...]]:
        """Run every entity extractor over the query.

        Returns:
            Mapping of entity type to unique matches; types without matches
            are omitted.
        """
        entities: dict[str, tuple[str, ...]] = {}
        for entity_type, pattern, flags in ENTITY_PATTERNS:
            matches = re.findall(pattern, query, flags)
            if matches:
                entities[entity_type] = tuple(dict.fromkeys(matches))
        return entities

    @staticmethod
    def find_document_references(
        query: str, documents: Sequence[StoredDocument]
    ) -> list[DocumentReference]:
        query_lower = query.lower()
        references = []
        for document in documents:
            names = {
                document.filename.lower(),
                filename_stem(document.filename).lower(),
            }
            for name in sorted(names, key=len, reverse=True):
                if name and re.search(
                    rf"(?<!\w){re.escape(name)}(?!\w)", query_lower
                ):
                    references.append(
                        DocumentReference(
                            document_id=document.id, filename=document.filename
                        )
                    )
                    break
        return references

    @staticmethod
    def suggest_scope(query: str, references: Sequence[DocumentReference]) -> str:
        query_lower = query.lower()
        for scope, pattern in SCOPE_PATTERNS:
            if re.search(pattern, query_lower):
                return scope
        if len(references) > 1 or re.search(MULTI_DOCUMENT_PATTERN, query_lower):
            return "multi-document"
        return "general"

    @staticmethod
    def detect_extraction_type(query: str) -> str | None:
        query_lower = query.lower()
        for extraction_type, pattern in EXTRACTION_TYPES:
            if re.search(pattern, query_lower):
                return extraction_type
        return None

    @staticmethod
    def is_conversational(query: str) -> bool:
        return any(
            re.search(pattern, query, re.IGNORECASE)
            for pattern in CONVERSATIONAL_PATTERNS
        )

    def grounding_mode(self, analysis: QueryAnalysis, has_documents: bool) -> str:
        """Decide whether a query should be grounded in the user's documents.

        Returns:
            ``general_conversation`` when there is nothing to ground in or the
            query is small talk, ``documents`` for document intents, and
            ``hybrid`` for plain questions that retrieve first and fall back to
            conversation when nothing is found.
        """
        if not has_documents:
            return GROUNDING_GENERAL
        if analysis.intent_type in DOCUMENT_INTENTS or analysis.document_references:
            return GROUNDING_DOCUMENTS
        if self.is_conversational(analysis.raw_query):
            return GROUNDING_GENERAL
        return GROUNDING_HYBRID


def generate_search_queries(analysis: QueryAnalysis) -> list[str]:
    """Build the reformulations sent to the vector index.

    Returns:
        The raw query followed by intent-specific reformulations and the
        joined expanded keywords, without duplicates.
    """
    queries = [analysis.raw_query]
    query_lower = analysis.raw_query.lower()

    if analysis.intent_type == IntentType.DOCUMENT_LIST:
        queries.extend(["uploaded documents files list", "document names filenames"])
    elif analysis.intent_type == IntentType.EXTRACTION:
        if "name" in query_lower:
            queries.append("name person contact information")
        if "file" in query_lower:
            queries.append("filename document name title")
        if analysis.extraction_type:
            queries.append(
                " ".join(
                    (
                        analysis.extraction_type,
                        *SYNONYMS.get(analysis.extraction_type, ()),
                    )
                )
            )
    elif analysis.intent_type == IntentType.SUMMARY:
        queries.append("summary overview about")

    if analysis.expanded_keywords:
        queries.append(" ".join(analysis.expanded_keywords))

    return list(dict.fromkeys(query for query in queries if query.strip()))


def can_answer_with_metadata(analysis: QueryAnalysis) -> bool:
    return analysis.intent_type == IntentType.DOCUMENT_LIST
