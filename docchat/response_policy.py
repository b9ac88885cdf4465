"""Generation temperature and prompt template selection."""

import re
from collections.abc import Sequence
from dataclasses import dataclass

from .config import config
from .models import (
    ConversationTurn,
    IntentType,
    MetadataCandidate,
    QueryAnalysis,
    RetrievalCandidate,
)

logger = config.get_logger(__name__)

TEMPERATURE_TABLE: dict[IntentType, float] = {
    IntentType.DOCUMENT_LIST: 0.1,
    IntentType.EXTRACTION: 0.1,
    IntentType.SEARCH: 0.2,
    IntentType.COMPARISON: 0.3,
    IntentType.QUESTION: 0.3,
    IntentType.HYBRID: 0.3,
    IntentType.SUMMARY: 0.4,
    IntentType.GENERAL: 0.7,
}
DEFAULT_TEMPERATURE = 0.7
CREATIVE_TEMPERATURE = 0.9
CREATIVE_PATTERN = r"\b(creative|story|poem|imagine|brainstorm|invent|fiction)\b"

MIN_TEMPERATURE = 0.0
MAX_TEMPERATURE = 2.0


def clamp_temperature(value: float) -> float:
    """Keep a temperature inside the range every supported model accepts."""
    return max(MIN_TEMPERATURE, min(MAX_TEMPERATURE, float(value)))


def suggest_temperature(intent_type: IntentType, query: str = "") -> float:
    """Look up the generation temperature for an intent.

    Creative wording in a general query raises the temperature.

    Returns:
        The temperature for the intent.
    """
    if intent_type == IntentType.GENERAL and re.search(
        CREATIVE_PATTERN, query, re.IGNORECASE
    ):
        return CREATIVE_TEMPERATURE
    return TEMPERATURE_TABLE.get(intent_type, DEFAULT_TEMPERATURE)


def group_by_document(
    candidates: Sequence[RetrievalCandidate],
) -> dict[str, list[RetrievalCandidate]]:
    """Group candidates by filename, keeping rank order inside each group."""
    groups: dict[str, list[RetrievalCandidate]] = {}
    for candidate in candidates:
        groups.setdefault(candidate.filename, []).append(candidate)
    return groups


def format_history(turns: Sequence[ConversationTurn]) -> str:
    return "\n\n".join(
        f"User: {turn.user_message}\nAssistant: {turn.bot_response}" for turn in turns
    )


class PromptBuilder:
    """Assembles history, evidence, an instruction and the query into a prompt.

    History, context notes and evidence together never exceed
    ``max_context_chars`` characters. Evidence is packed first, history gets
    what is left.
    """

    name = "general"
    preamble = (
        "You are a helpful assistant answering questions about the user's "
        "uploaded documents. Use only the document content below and say so "
        "when the answer is not in it."
    )

    def __init__(
        self,
        max_context_chars: int = config.PROMPT_MAX_CONTEXT_CHARS,
        max_candidates: int = 8,
    ) -> None:
        self.max_context_chars = max_context_chars
        self.max_candidates = max_candidates

    def instruction(self, analysis: QueryAnalysis) -> str:
        return (
            "Answer the question using the document content above. "
            "Be specific and mention which document the information comes from."
        )

    def format_candidate(self, candidate: RetrievalCandidate) -> str:
        return candidate.text.strip()

    def format_evidence(
        self, candidates: Sequence[RetrievalCandidate], budget: int
    ) -> str:
        sections: list[str] = []
        used = 0
        grouped = group_by_document(candidates[: self.max_candidates])
        for filename, group in grouped.items():
            header = f"=== Document: {filename} ==="
            if used + len(header) + 2 > budget:
                break
            parts = [header]
            section_len = len(header)
            for candidate in group:
                text = self.format_candidate(candidate)
                remaining = budget - used - section_len - 2
                if remaining <= 0:
                    break
                if len(text) > remaining:
                    text = text[:remaining]
                parts.append(text)
                section_len += len(text) + 2
            sections.append("\n\n".join(parts))
            used += section_len + 2
        return "\n\n".join(sections)

    def assemble_context(
        self,
        candidates: Sequence[RetrievalCandidate],
        history: Sequence[ConversationTurn] = (),
        context_notes: str = "",
    ) -> str:
        """Join notes, history and evidence within the character budget.

        Returns:
            The capped context block.
        """
        budget = self.max_context_chars
        evidence = self.format_evidence(candidates, budget)
        budget -= len(evidence)

        notes = context_notes.strip()
        if len(notes) + 2 > budget:
            notes = ""
        if notes:
            budget -= len(notes) + 2

        history_text = ""
        if history:
            label = "Previous conversation:\n"
            rendered = format_history(history)
            available = budget - len(label) - 4
            if available > 0:
                history_text = label + rendered[-available:]

        parts = [part for part in (notes, history_text, evidence) if part]
        context = "\n\n".join(parts)
        return context[: self.max_context_chars]

    def build(
        self,
        analysis: QueryAnalysis,
        candidates: Sequence[RetrievalCandidate],
        history: Sequence[ConversationTurn] = (),
        context_notes: str = "",
    ) -> str:
        """Build the final prompt for the generation service.

        Returns:
            The prompt text.
        """
        context = self.assemble_context(candidates, history, context_notes)
        return (
            f"{self.preamble}\n\n{context}\n\n"
            f"Instructions: {self.instruction(analysis)}\n\n"
            f"Question: {analysis.raw_query}\n\nAnswer:"
        )


class DocumentListPromptBuilder(PromptBuilder):
    name = "document_list"
    preamble = "You are a helpful assistant describing the user's uploaded documents."

    def format_evidence(
        self, candidates: Sequence[RetrievalCandidate], budget: int
    ) -> str:
        lines = ["Uploaded documents:"]
        for index, candidate in enumerate(candidates, start=1):
            uploaded = (
                f" (uploaded {candidate.uploaded_at})"
                if isinstance(candidate, MetadataCandidate) and candidate.uploaded_at
                else ""
            )
            lines.append(f"{index}. {candidate.filename}{uploaded}")
        return "\n".join(lines)[:budget]

    def instruction(self, analysis: QueryAnalysis) -> str:
        return (
            "List every uploaded document by filename with its upload date. "
            "Do not describe their content."
        )


class ExtractionPromptBuilder(PromptBuilder):
    name = "extraction"

    def instruction(self, analysis: QueryAnalysis) -> str:
        target = analysis.extraction_type or "requested information"
        return (
            f"Extract the {target} from the document content above. "
            "Return a concise bulleted list with exact values as written in "
            "the documents. Do not invent entries that are not present."
        )


class SummaryPromptBuilder(PromptBuilder):
    name = "summary"

    def instruction(self, analysis: QueryAnalysis) -> str:
        return (
            "Summarize the document content above. Cover the main points and "
            "key details in a few short paragraphs, one per document when "
            "several documents are present."
        )


class GeneralPromptBuilder(PromptBuilder):
    """Prompt for comparison, search, plain questions and open conversation."""

    name = "general"
    conversation_preamble = (
        "You are a friendly, knowledgeable assistant. Answer the user's message "
        "directly and naturally."
    )
    instructions = {
        IntentType.COMPARISON: (
            "Compare the documents above point by point. Name each document "
            "and state their similarities and differences."
        ),
        IntentType.SEARCH: (
            "Find where the document content above addresses the question and "
            "quote the relevant passages with their document names."
        ),
    }

    def instruction(self, analysis: QueryAnalysis) -> str:
        return self.instructions.get(
            analysis.intent_type, super().instruction(analysis)
        )

    def build(
        self,
        analysis: QueryAnalysis,
        candidates: Sequence[RetrievalCandidate],
        history: Sequence[ConversationTurn] = (),
        context_notes: str = "",
    ) -> str:
        if candidates:
            return super().build(analysis, candidates, history, context_notes)

        context = self.assemble_context((), history, context_notes)
        body = f"{context}\n\n" if context else ""
        return (
            f"{self.conversation_preamble}\n\n{body}"
            f"User: {analysis.raw_query}\nAssistant:"
        )


@dataclass(frozen=True)
class ResponsePolicy:
    name: str
    intent_type: IntentType
    temperature: float
    prompt_builder: PromptBuilder
    max_tokens: int


class ResponsePolicySelector:
    """Maps an analyzed query to a temperature and a prompt builder."""

    def __init__(
        self, max_context_chars: int = config.PROMPT_MAX_CONTEXT_CHARS
    ) -> None:
        self.builders: dict[IntentType, PromptBuilder] = {
            IntentType.DOCUMENT_LIST: DocumentListPromptBuilder(max_context_chars),
            IntentType.EXTRACTION: ExtractionPromptBuilder(max_context_chars),
            IntentType.SUMMARY: SummaryPromptBuilder(max_context_chars),
        }
        self.general_builder = GeneralPromptBuilder(max_context_chars)

    def select_policy(
        self,
        analysis: QueryAnalysis,
        grounding: str = "documents",
        temperature: float | None = None,
    ) -> ResponsePolicy:
        """Pick the policy for one query.

        Args:
            analysis: The analyzed query.
            grounding: ``documents``, ``hybrid`` or ``general_conversation``.
            temperature: Caller override, clamped to the accepted range.

        Returns:
            The selected response policy.
        """
        if grounding == "general_conversation":
            intent_type = IntentType.GENERAL
            chosen = suggest_temperature(intent_type, analysis.raw_query)
            max_tokens = config.GENERAL_MAX_TOKENS
        elif grounding == "hybrid":
            intent_type = IntentType.HYBRID
            chosen = suggest_temperature(intent_type)
            max_tokens = config.CHAT_MAX_TOKENS
        else:
            intent_type = analysis.intent_type
            chosen = analysis.suggested_temperature
            max_tokens = config.CHAT_MAX_TOKENS

        if temperature is not None:
            chosen = temperature
        builder = self.builders.get(intent_type, self.general_builder)
        policy = ResponsePolicy(
            name=builder.name,
            intent_type=intent_type,
            temperature=clamp_temperature(chosen),
            prompt_builder=builder,
            max_tokens=max_tokens,
        )
        logger.debug(
            "Selected policy %s (temperature=%.2f)", policy.name, policy.temperature
        )
        return policy


def apply_source_footer(
    response: str,
    candidates: Sequence[RetrievalCandidate],
    analysis: QueryAnalysis,
    document_count: int,
) -> str:
    """Append the list of contributing documents to a multi-document answer.

    Returns:
        The response, with a ``*From: ...*`` line when more than one document
        contributed and the query was not an extraction.
    """
    if document_count <= 1 or not candidates:
        return response
    if analysis.intent_type == IntentType.EXTRACTION:
        return response
    filenames = list(dict.fromkeys(candidate.filename for candidate in candidates))
    if len(filenames) <= 1:
        return response
    return f"{response}\n\n*From: {', '.join(filenames)}*"


def build_fallback_response(
    analysis: QueryAnalysis, candidates: Sequence[RetrievalCandidate]
) -> str:
    """Build a templated answer when generation is unavailable.

    Returns:
        A response assembled from the retrieved evidence.
    """
    if analysis.intent_type == IntentType.DOCUMENT_LIST and candidates:
        lines = [f"You have uploaded {len(candidates)} document(s):"]
        lines.extend(f"- {candidate.filename}" for candidate in candidates)
        return "\n".join(lines)

    if candidates:
        best = candidates[0]
        excerpt = best.text.strip()[:500]
        return (
            "I couldn't generate a full answer right now. Here is the most "
            f"relevant passage from {best.filename}:\n\n> {excerpt}"
        )

    return (
        "I couldn't find information about that in your documents. "
        "Try rephrasing the question or naming the document you mean."
    )


def build_conversation_fallback(query: str) -> str:
    if re.search(r"^\s*(hi|hello|hey)\b", query, re.IGNORECASE):
        return (
            "Hello! I'm here to help. "
            "Ask me anything or upload a document to discuss."
        )
    return (
        "I'm having trouble generating a response right now. "
        "Please try again in a moment."
    )
