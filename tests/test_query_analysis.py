"""Tests for query intent classification and expansion."""

import pytest

from docchat.models import IntentType
from docchat.query_analysis import (
    GROUNDING_DOCUMENTS,
    GROUNDING_GENERAL,
    GROUNDING_HYBRID,
    can_answer_with_metadata,
    expand_keywords,
    extract_keywords,
    generate_search_queries,
)
from tests.conftest import make_document

DOCUMENTS = [
    make_document("doc-a", "document A.txt"),
    make_document("doc-b", "document B.txt"),
    make_document("doc-r", "resume.pdf"),
]


@pytest.mark.parametrize(
    ("query", "intent", "confidence"),
    [
        ("What documents have I uploaded?", IntentType.DOCUMENT_LIST, 0.95),
        ("List my documents", IntentType.DOCUMENT_LIST, 0.95),
        ("How many documents do I have?", IntentType.DOCUMENT_LIST, 0.95),
        ("What skills does she have?", IntentType.EXTRACTION, 0.9),
        ("Who is the candidate?", IntentType.EXTRACTION, 0.9),
        ("Summarize the resume", IntentType.SUMMARY, 0.9),
        ("Give me an overview of the report", IntentType.SUMMARY, 0.9),
        ("Compare document A and document B", IntentType.COMPARISON, 0.85),
        ("Python vs Java", IntentType.COMPARISON, 0.85),
        ("Where is machine learning mentioned?", IntentType.SEARCH, 0.8),
        ("Is the budget approved?", IntentType.QUESTION, 0.7),
        ("Hello", IntentType.GENERAL, 0.5),
    ],
)
def test_detect_intent(analyzer, query, intent, confidence):
    detected = analyzer.detect_intent(query)
    assert detected.type == intent
    assert detected.confidence == confidence


def test_document_list_wins_over_later_groups(analyzer):
    # Matches both the listing and the summary patterns.
    detected = analyzer.detect_intent("Tell me about what documents are available")
    assert detected.type == IntentType.DOCUMENT_LIST


def test_extraction_wins_over_summary(analyzer):
    detected = analyzer.detect_intent("What skills are in the summary of the resume?")
    assert detected.type == IntentType.EXTRACTION


def test_analyze_is_deterministic(analyzer):
    query = "Compare the skills in resume.pdf with document A"
    assert analyzer.analyze(query, DOCUMENTS) == analyzer.analyze(query, DOCUMENTS)


def test_extract_keywords_drops_stop_words_and_short_words():
    assert extract_keywords("What are the key skills of an AI engineer?") == [
        "key",
        "skills",
        "engineer",
    ]


def test_expand_keywords_only_adds():
    expanded = expand_keywords(["skills", "budget"])

    assert expanded[:2] == ["skills", "budget"]
    assert "expertise" in expanded
    assert len(expanded) == len(set(expanded))


def test_extract_entities(analyzer):
    entities = analyzer.extract_entities(
        "does Jane Smith know Python and SQL? mail jane@example.com or 555-123-4567"
    )

    assert entities["person"] == ("Jane Smith",)
    assert entities["email"] == ("jane@example.com",)
    assert entities["phone"] == ("555-123-4567",)
    assert entities["skills"] == ("Python", "SQL")


def test_extract_entities_omits_empty_types(analyzer):
    assert analyzer.extract_entities("nothing to see here") == {}


def test_document_references_match_filename_stem(analyzer):
    references = analyzer.find_document_references(
        "Compare document A and document B", DOCUMENTS
    )

    assert [reference.document_id for reference in references] == ["doc-a", "doc-b"]
    assert all(reference.match_type == "explicit" for reference in references)
    assert all(reference.confidence == 0.9 for reference in references)


def test_document_references_need_whole_names(analyzer):
    documents = [make_document("doc-1", "cv.pdf")]
    assert analyzer.find_document_references("Show me the cvs", documents) == []
    assert len(analyzer.find_document_references("Read cv.pdf", documents)) == 1


@pytest.mark.parametrize(
    ("query", "scope"),
    [
        ("Compare the two reports", "comparison"),
        ("Give me a summary", "summary"),
        ("What experience does he have?", "extraction"),
        ("Search for the deadline", "search"),
        ("Check every document for dates", "multi-document"),
        ("Hello there", "general"),
    ],
)
def test_suggest_scope(analyzer, query, scope):
    assert analyzer.analyze(query).suggested_scope == scope


def test_analysis_carries_temperature_and_extraction_type(analyzer):
    analysis = analyzer.analyze("What skills are listed in the resume?", DOCUMENTS)

    assert analysis.intent_type == IntentType.EXTRACTION
    assert analysis.extraction_type == "skills"
    assert analysis.suggested_temperature == 0.1
    assert [ref.filename for ref in analysis.document_references] == ["resume.pdf"]


@pytest.mark.parametrize(
    ("query", "has_documents", "mode"),
    [
        ("Summarize the resume", False, GROUNDING_GENERAL),
        ("Summarize the resume", True, GROUNDING_DOCUMENTS),
        ("Hello", True, GROUNDING_GENERAL),
        ("Can you write a poem about autumn?", True, GROUNDING_GENERAL),
        ("Is the budget approved?", True, GROUNDING_HYBRID),
        ("Is resume.pdf complete?", True, GROUNDING_DOCUMENTS),
    ],
)
def test_grounding_mode(analyzer, query, has_documents, mode):
    analysis = analyzer.analyze(query, DOCUMENTS if has_documents else [])
    assert analyzer.grounding_mode(analysis, has_documents) == mode


def test_generate_search_queries_for_document_list(analyzer):
    analysis = analyzer.analyze("List my documents")
    queries = generate_search_queries(analysis)

    assert queries[0] == "List my documents"
    assert "uploaded documents files list" in queries
    assert len(queries) == len(set(queries))


def test_generate_search_queries_for_extraction(analyzer):
    analysis = analyzer.analyze("What skills does the file mention?")
    queries = generate_search_queries(analysis)

    assert "filename document name title" in queries
    assert any(query.startswith("skills expertise") for query in queries)


def test_can_answer_with_metadata(analyzer):
    assert can_answer_with_metadata(analyzer.analyze("List my documents"))
    assert not can_answer_with_metadata(analyzer.analyze("Summarize the resume"))
