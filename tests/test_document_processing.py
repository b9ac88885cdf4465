"""Unit tests for document loading and chunking."""

from pathlib import Path
from unittest.mock import Mock, patch

import pytest

from docchat.document_processing import (
    DocumentLoader,
    TextChunker,
    extract_document_metadata,
    extract_key_topics,
    normalize_text,
    split_sentences,
)
from tests.conftest import TestConstants

SENTENCE_TEXT = " ".join(f"Sentence number {i} is here." for i in range(20))


def test_unsupported_file_type():
    with pytest.raises(ValueError, match="Unsupported file type"):
        DocumentLoader.load_document(Path("test.invalid"))


def test_load_nonexistent_file():
    with pytest.raises(FileNotFoundError):
        DocumentLoader.load_document(Path("nonexistent_file.txt"))


@pytest.mark.parametrize("suffix", [".txt", ".md", ".TXT"])
def test_load_text_documents(tmp_path, suffix):
    path = tmp_path / f"notes{suffix}"
    path.write_text("Hello from a text file.", encoding="utf-8")

    assert DocumentLoader.load_document(path) == "Hello from a text file."


def test_load_pdf_joins_pages(tmp_path):
    path = tmp_path / "report.pdf"
    path.write_bytes(b"%PDF-1.4")
    reader = Mock()
    reader.pages = [
        Mock(extract_text=Mock(return_value="Page one")),
        Mock(extract_text=Mock(return_value=None)),
        Mock(extract_text=Mock(return_value="Page three")),
    ]

    with patch("docchat.document_processing.pypdf.PdfReader", return_value=reader):
        text = DocumentLoader.load_document(path)

    assert text == "Page one\n\n\n\nPage three"


def test_normalize_text():
    raw = "Line one\r\nLine\ttwo   with   gaps\n\n\n\n\nLast  "
    assert normalize_text(raw) == "Line one\nLine two with gaps\n\nLast"
    assert not normalize_text("")


def test_split_sentences_returns_trimmed_spans():
    text = "One. Two!  Three?"
    spans = split_sentences(text)
    assert [text[start:end] for start, end in spans] == ["One.", "Two!", "Three?"]


def test_extract_key_topics_prefers_long_frequent_words():
    text = "Machine learning helps machine translation. Learning rates matter. Data."
    topics = extract_key_topics(text, limit=3)

    assert topics[0] in {"machine", "learning"}
    assert "data" not in topics
    assert len(topics) == 3


def test_extract_document_metadata_detects_resume():
    metadata = extract_document_metadata(
        TestConstants.RESUME_TEXT, {"filename": "cv.txt"}
    )

    assert metadata["filename"] == "cv.txt"
    assert metadata["document_type"] == "resume"
    assert metadata["word_count"] == len(TestConstants.RESUME_TEXT.split())
    assert metadata["character_count"] == len(TestConstants.RESUME_TEXT)
    assert metadata["paragraph_count"] == 1


@pytest.mark.parametrize("text", ["", "   \n\t  "])
def test_blank_text_produces_no_chunks(text_chunker_factory, text):
    assert text_chunker_factory().chunk_text(text, "doc") == []


def test_sentence_chunks_respect_size(text_chunker_factory):
    chunker = text_chunker_factory(chunk_size=120, overlap=30)
    chunks = chunker.chunk_text(SENTENCE_TEXT, "doc", {"filename": "doc.txt"})

    assert len(chunks) > 1
    for ordinal, chunk in enumerate(chunks):
        assert len(chunk.text) <= 120
        assert chunk.id == f"doc:{ordinal}"
        assert chunk.ordinal == ordinal
        assert chunk.document_id == "doc"
        assert chunk.document_metadata == {"filename": "doc.txt"}


def test_sentence_chunks_never_split_sentences(text_chunker_factory):
    chunks = text_chunker_factory(chunk_size=120, overlap=0).chunk_text(SENTENCE_TEXT)

    for chunk in chunks:
        assert chunk.text.endswith(".")
        assert chunk.text.startswith("Sentence number")


def test_sentence_chunks_carry_trailing_words_forward(text_chunker_factory):
    chunks = text_chunker_factory(chunk_size=120, overlap=30).chunk_text(SENTENCE_TEXT)

    assert chunks[0].overlap_length == 0
    for previous, current in zip(chunks, chunks[1:], strict=False):
        seed = " ".join(previous.text.split()[-3:]) + " "
        assert current.overlap_length == len(seed)
        assert current.text.startswith(seed)


def test_new_text_reconstructs_document(text_chunker_factory):
    chunks = text_chunker_factory(chunk_size=100, overlap=40).chunk_text(SENTENCE_TEXT)

    rebuilt = " ".join(chunk.new_text for chunk in chunks)
    assert rebuilt.split() == SENTENCE_TEXT.split()


def test_char_offsets_locate_new_text(text_chunker_factory):
    chunks = text_chunker_factory(chunk_size=100, overlap=40).chunk_text(SENTENCE_TEXT)

    for chunk in chunks:
        located = SENTENCE_TEXT[chunk.char_start : chunk.char_start + chunk.char_len]
        assert located == chunk.new_text
        assert chunk.context_before == SENTENCE_TEXT[
            max(0, chunk.char_start - 100) : chunk.char_start
        ]


def test_oversized_sentence_becomes_its_own_chunk(text_chunker_factory):
    long_sentence = "word " * 60 + "end."
    text = f"Short one. {long_sentence} Short two."
    chunks = text_chunker_factory(chunk_size=50, overlap=0).chunk_text(text)

    assert [chunk.text for chunk in chunks] == [
        "Short one.",
        long_sentence.strip(),
        "Short two.",
    ]


@pytest.mark.parametrize(("smaller", "larger"), [(60, 120), (120, 240), (240, 1000)])
def test_larger_chunks_never_produce_more_chunks(text_chunker_factory, smaller, larger):
    small = text_chunker_factory(chunk_size=smaller, overlap=0).chunk_text(
        SENTENCE_TEXT
    )
    large = text_chunker_factory(chunk_size=larger, overlap=0).chunk_text(SENTENCE_TEXT)

    assert len(large) <= len(small)


def test_character_mode_windows(text_chunker_factory):
    chunker = text_chunker_factory(chunk_size=50, overlap=10, preserve_sentences=False)
    text = "A" * 100

    chunks = chunker.chunk_text(text, "test")

    assert [len(chunk.text) for chunk in chunks] == [50, 50, 20]
    assert chunks[1].overlap_length == 10
    assert chunks[1].char_start == 50
    assert "".join(chunk.new_text for chunk in chunks) == text


@pytest.mark.parametrize(
    ("kwargs", "message"),
    [
        ({"chunk_size": 0, "overlap": 0}, "chunk_size must be positive"),
        ({"chunk_size": 100, "overlap": -1}, "overlap must not be negative"),
        (
            {"chunk_size": 100, "overlap": 100, "preserve_sentences": False},
            "overlap must be smaller",
        ),
    ],
)
def test_invalid_chunker_settings(kwargs, message):
    with pytest.raises(ValueError, match=message):
        TextChunker(**kwargs)


def test_sentence_mode_allows_large_overlap():
    chunker = TextChunker(chunk_size=100, overlap=250, preserve_sentences=True)
    assert chunker.overlap == 250
