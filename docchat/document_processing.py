"""Document loading, text normalization and chunking."""

import re
from collections import Counter
from pathlib import Path
from typing import Any

import pypdf

from .config import config
from .models import DocumentChunk
from .query_analysis import STOP_WORDS

logger = config.get_logger(__name__)

SENTENCE_BREAK = re.compile(r"(?<=[.!?])\s+")
CONTEXT_CHARS = 100
WORDS_PER_OVERLAP_UNIT = 10

DOCUMENT_TYPE_HINTS: tuple[tuple[str, str], ...] = (
    ("resume", r"\b(skills?|experience|education)\b"),
    ("academic", r"\b(abstract|introduction|conclusion)\b"),
    ("financial", r"\b(budget|cost|price|financial)\b"),
)


class DocumentLoader:
    """Handles loading of PDF, TXT and Markdown documents."""

    TEXT_SUFFIXES = (".txt", ".md")

    @staticmethod
    def load_pdf(file_path: Path) -> str:
        """Load text content from a PDF file.

        Returns:
            The extracted text content from the PDF as a string.
        """
        try:
            with file_path.open("rb") as file:
                pdf_reader = pypdf.PdfReader(file)
                pages = [page.extract_text() or "" for page in pdf_reader.pages]
        except Exception:
            logger.exception("Error loading PDF %s", file_path)
            raise
        else:
            logger.info("Loaded %d pages from %s", len(pages), file_path.name)
            return "\n\n".join(pages)

    @staticmethod
    def load_txt(file_path: Path) -> str:
        """Load text content from a plain text file.

        Returns:
            The file content as a string.
        """
        try:
            text = file_path.read_text(encoding="utf-8")
        except Exception:
            logger.exception("Error loading text file %s", file_path)
            raise
        else:
            logger.info("Loaded text file %s", file_path.name)
            return text

    @classmethod
    def load_document(cls, file_path: Path) -> str:
        """Load document based on file extension.

        Args:
            file_path: Path to the document file.

        Returns:
            The text content of the document as a string.

        Raises:
            ValueError: If the file type is not supported.
        """
        file_ext = file_path.suffix.lower()
        if file_ext == ".pdf":
            return cls.load_pdf(file_path)
        if file_ext in cls.TEXT_SUFFIXES:
            return cls.load_txt(file_path)
        msg = f"Unsupported file type: {file_ext}"
        raise ValueError(msg)


def normalize_text(text: str) -> str:
    """Normalize line endings and collapse runs of whitespace.

    Returns:
        The cleaned text, stripped at both ends.
    """
    if not text:
        return ""
    text = text.replace("\r\n", "\n").replace("\t", " ")
    text = re.sub(r" {3,}", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def split_sentences(text: str) -> list[tuple[int, int]]:
    """Find sentence spans in ``text``.

    Returns:
        ``(start, end)`` offsets of each non-empty sentence, whitespace trimmed.
    """
    spans = []
    start = 0
    for match in SENTENCE_BREAK.finditer(text):
        spans.append((start, match.start()))
        start = match.end()
    spans.append((start, len(text)))

    sentences = []
    for span_start, span_end in spans:
        piece = text[span_start:span_end]
        stripped = piece.strip()
        if not stripped:
            continue
        offset = span_start + len(piece) - len(piece.lstrip())
        sentences.append((offset, offset + len(stripped)))
    return sentences


def extract_key_topics(text: str, limit: int = 15) -> list[str]:
    """Pick topic words weighted by frequency and length.

    Returns:
        Up to ``limit`` words longer than four characters, best first.
    """
    words = re.sub(r"[^\w\s]", " ", text.lower()).split()
    counts = Counter(
        word for word in words if len(word) > 4 and word not in STOP_WORDS
    )
    scored = sorted(
        counts.items(),
        key=lambda item: item[1] * (1.5 if len(item[0]) > 6 else 1.0),
        reverse=True,
    )
    return [word for word, _ in scored[:limit]]


def extract_document_metadata(
    text: str, provided: dict[str, Any] | None = None
) -> dict[str, Any]:
    """Compute basic statistics and a coarse document type hint.

    Returns:
        ``provided`` merged with word, character and paragraph counts and
        ``document_type``.
    """
    metadata = dict(provided or {})
    metadata["word_count"] = len(text.split())
    metadata["character_count"] = len(text)
    metadata["paragraph_count"] = len(
        [part for part in re.split(r"\n\s*\n", text) if part.strip()]
    )
    metadata["document_type"] = "general"
    for document_type, pattern in DOCUMENT_TYPE_HINTS:
        if re.search(pattern, text, re.IGNORECASE):
            metadata["document_type"] = document_type
            break
    return metadata


class TextChunker:
    """Splits text into overlapping chunks.

    In sentence mode sentences are packed greedily up to ``chunk_size`` and each
    new chunk is seeded with the trailing ``overlap // 10`` words of the one
    before it. In character mode fixed windows of ``chunk_size`` advance by
    ``chunk_size - overlap``.
    """

    def __init__(
        self,
        chunk_size: int = config.CHUNK_SIZE,
        overlap: int = config.CHUNK_OVERLAP,
        preserve_sentences: bool = config.PRESERVE_SENTENCES,
    ) -> None:
        """Initialize the TextChunker.

        Args:
            chunk_size: Maximum characters per chunk; a single longer sentence
                still becomes one chunk.
            overlap: Overlap between consecutive chunks, in characters.
            preserve_sentences: Split on sentence boundaries instead of fixed
                character windows.

        Raises:
            ValueError: If the sizes are not positive or the overlap would stop
                character windows from advancing.
        """
        if chunk_size <= 0:
            msg = "chunk_size must be positive"
            raise ValueError(msg)
        if overlap < 0:
            msg = "overlap must not be negative"
            raise ValueError(msg)
        if not preserve_sentences and overlap >= chunk_size:
            msg = "overlap must be smaller than chunk_size"
            raise ValueError(msg)
        self.chunk_size = chunk_size
        self.overlap = overlap
        self.preserve_sentences = preserve_sentences

    def chunk_text(
        self,
        text: str,
        document_id: str = "document",
        metadata: dict[str, Any] | None = None,
    ) -> list[DocumentChunk]:
        """Split text into overlapping chunks.

        Returns:
            The chunks in document order; empty when ``text`` is blank.
        """
        if not text or not text.strip():
            return []

        if self.preserve_sentences:
            chunks = self._chunk_sentences(text, document_id, metadata or {})
        else:
            chunks = self._chunk_characters(text, document_id, metadata or {})

        logger.info("Text split into %d chunks", len(chunks))
        return chunks

    def _chunk_sentences(
        self, text: str, document_id: str, metadata: dict[str, Any]
    ) -> list[DocumentChunk]:
        chunks: list[DocumentChunk] = []
        overlap_words = self.overlap // WORDS_PER_OVERLAP_UNIT
        seed = ""
        current: list[tuple[int, int]] = []
        current_len = 0

        for start, end in split_sentences(text):
            sentence_len = end - start
            projected = len(seed) + current_len + (1 if current else 0) + sentence_len
            if current and projected > self.chunk_size:
                chunk = self._build_chunk(
                    text, document_id, metadata, seed, current, len(chunks)
                )
                chunks.append(chunk)
                seed = self._overlap_seed(chunk.text, overlap_words)
                current = []
                current_len = 0
            current_len += sentence_len + (1 if current else 0)
            current.append((start, end))

        if current:
            chunks.append(
                self._build_chunk(
                    text, document_id, metadata, seed, current, len(chunks)
                )
            )
        return chunks

    @staticmethod
    def _overlap_seed(previous_text: str, overlap_words: int) -> str:
        if overlap_words <= 0:
            return ""
        words = previous_text.split()[-overlap_words:]
        return " ".join(words) + " " if words else ""

    @staticmethod
    def _build_chunk(
        text: str,
        document_id: str,
        metadata: dict[str, Any],
        seed: str,
        sentences: list[tuple[int, int]],
        ordinal: int,
    ) -> DocumentChunk:
        char_start = sentences[0][0]
        char_end = sentences[-1][1]
        body = " ".join(text[start:end] for start, end in sentences)
        return DocumentChunk(
            id=f"{document_id}:{ordinal}",
            document_id=document_id,
            text=seed + body,
            ordinal=ordinal,
            char_start=char_start,
            char_len=char_end - char_start,
            context_before=text[max(0, char_start - CONTEXT_CHARS) : char_start],
            context_after=text[char_end : char_end + CONTEXT_CHARS],
            document_metadata=dict(metadata),
            overlap_length=len(seed),
        )

    def _chunk_characters(
        self, text: str, document_id: str, metadata: dict[str, Any]
    ) -> list[DocumentChunk]:
        chunks: list[DocumentChunk] = []
        stride = self.chunk_size - self.overlap
        start = 0

        while True:
            end = min(start + self.chunk_size, len(text))
            lead = self.overlap if chunks else 0
            char_start = start + lead
            chunks.append(
                DocumentChunk(
                    id=f"{document_id}:{len(chunks)}",
                    document_id=document_id,
                    text=text[start:end],
                    ordinal=len(chunks),
                    char_start=char_start,
                    char_len=end - char_start,
                    context_before=text[
                        max(0, char_start - CONTEXT_CHARS) : char_start
                    ],
                    context_after=text[end : end + CONTEXT_CHARS],
                    document_metadata=dict(metadata),
                    overlap_length=lead,
                )
            )
            if end >= len(text):
                break
            start += stride

        return chunks
