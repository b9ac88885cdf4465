"""Conversation memory: turn history, history selection and the semantic cache."""

import datetime
import re
import threading
import uuid
from collections import Counter, OrderedDict, deque
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from .config import config
from .models import CacheEntry, ConversationTurn, DocumentContextSummary
from .query_analysis import STOP_WORDS

logger = config.get_logger(__name__)

DEPENDENCY_LOW = "low"
DEPENDENCY_MEDIUM = "medium"
DEPENDENCY_HIGH = "high"

RECENCY_WEIGHT = 0.2
SIMILARITY_WEIGHT = 0.6
FOLLOW_UP_BONUS = 0.2
FOLLOW_UP_WINDOW = 2
RELEVANCE_FLOOR = 0.3
MAX_TRACKED_ITEMS = 100

REFERENCES_PREVIOUS = (
    r"\b(you mentioned|earlier|before|previous|previously|last time)\b"
)
COMPARISON_REQUEST = r"\b(compare|difference|versus|vs|between)\b"
CONTINUATION_WORDS = (
    r"\b(also|too|additionally|furthermore|what about|how about|tell me more)\b"
)
PRONOUN_REFERENCE = r"\b(it|its|they|them|their|this|that|those|he|she|his|her)\b"

DOCUMENT_NAME_PATTERN = r"\b[\w-]+\.(?:pdf|docx?|txt|md)\b"

ENTITY_TEXT_PATTERNS: tuple[tuple[str, str, int], ...] = (
    ("email", r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b", 0),
    ("phone", r"\b\d{3}[-.]?\d{3}[-.]?\d{4}\b", 0),
    ("name", r"\b[A-Z][a-z]+ [A-Z][a-z]+\b", 0),
    (
        "skill",
        r"\b(?:javascript|python|java|react|node|sql|aws|azure)\b",
        re.IGNORECASE,
    ),
)

CONTRACTIONS: tuple[tuple[str, str], ...] = (
    (r"\bwon't\b", "will not"),
    (r"\bcan't\b", "can not"),
    (r"n't\b", " not"),
    (r"'re\b", " are"),
    (r"'s\b", " is"),
    (r"'d\b", " would"),
    (r"'ll\b", " will"),
    (r"'ve\b", " have"),
    (r"'m\b", " am"),
)


def tokenize(text: str) -> set[str]:
    """Lower-case word set with contractions expanded and punctuation removed."""
    text = text.lower().replace("’", "'")
    for pattern, replacement in CONTRACTIONS:
        text = re.sub(pattern, replacement, text)
    return set(re.sub(r"[^\w\s]", " ", text).split())


def jaccard_similarity(first: str, second: str) -> float:
    """Token-overlap similarity shared by history selection and the cache.

    Returns:
        Size of the token intersection over the size of the union, 0.0 when
        both texts are empty.
    """
    first_tokens = tokenize(first)
    second_tokens = tokenize(second)
    union = first_tokens | second_tokens
    if not union:
        return 0.0
    return len(first_tokens & second_tokens) / len(union)


def extract_topics(text: str, limit: int = 5) -> list[str]:
    words = re.sub(r"[^\w\s]", " ", text.lower()).split()
    topics = [word for word in words if len(word) > 4 and word not in STOP_WORDS]
    return list(dict.fromkeys(topics))[:limit]


def extract_entities_from_text(text: str) -> list[str]:
    """Find emails, phone numbers, names and skills.

    Returns:
        Unique ``type:value`` strings in order of first appearance.
    """
    entities: list[str] = []
    for entity_type, pattern, flags in ENTITY_TEXT_PATTERNS:
        entities.extend(
            f"{entity_type}:{match}" for match in re.findall(pattern, text, flags)
        )
    return list(dict.fromkeys(entities))


def _remember(
    tracked: "OrderedDict[str, None]", items: Iterable[str], limit: int
) -> None:
    for item in items:
        tracked[item] = None
        tracked.move_to_end(item)
    while len(tracked) > limit:
        tracked.popitem(last=False)


@dataclass
class ChatMemory:
    """Turn history of one chat plus what the chat has talked about."""

    turns: deque[ConversationTurn]
    documents: OrderedDict[str, None] = field(default_factory=OrderedDict)
    topics: OrderedDict[str, None] = field(default_factory=OrderedDict)
    entities: OrderedDict[str, None] = field(default_factory=OrderedDict)

    @classmethod
    def create(cls, max_turns: int) -> "ChatMemory":
        return cls(turns=deque(maxlen=max_turns))


@dataclass
class UserMemory:
    """Response cache and document summaries of one user."""

    cache: OrderedDict[str, CacheEntry] = field(default_factory=OrderedDict)
    summaries: OrderedDict[str, DocumentContextSummary] = field(
        default_factory=OrderedDict
    )


class MemoryStore(Protocol):
    """Storage for chat and user memory, keyed by user and chat ids."""

    def get_chat(self, user_id: str, chat_id: str) -> ChatMemory | None: ...

    def put_chat(self, user_id: str, chat_id: str, memory: ChatMemory) -> None: ...

    def evict_chat(self, user_id: str, chat_id: str) -> None: ...

    def chat_ids(self, user_id: str) -> list[str]: ...

    def get_user(self, user_id: str) -> UserMemory | None: ...

    def put_user(self, user_id: str, memory: UserMemory) -> None: ...

    def evict_user(self, user_id: str) -> None: ...


class InMemoryMemoryStore:
    """Process-local memory store."""

    def __init__(self) -> None:
        self._chats: dict[tuple[str, str], ChatMemory] = {}
        self._users: dict[str, UserMemory] = {}
        self._lock = threading.Lock()

    def get_chat(self, user_id: str, chat_id: str) -> ChatMemory | None:
        with self._lock:
            return self._chats.get((user_id, chat_id))

    def put_chat(self, user_id: str, chat_id: str, memory: ChatMemory) -> None:
        with self._lock:
            self._chats[(user_id, chat_id)] = memory

    def evict_chat(self, user_id: str, chat_id: str) -> None:
        with self._lock:
            self._chats.pop((user_id, chat_id), None)

    def chat_ids(self, user_id: str) -> list[str]:
        with self._lock:
            return [chat for user, chat in self._chats if user == user_id]

    def get_user(self, user_id: str) -> UserMemory | None:
        with self._lock:
            return self._users.get(user_id)

    def put_user(self, user_id: str, memory: UserMemory) -> None:
        with self._lock:
            self._users[user_id] = memory

    def evict_user(self, user_id: str) -> None:
        with self._lock:
            self._users.pop(user_id, None)


class ConversationMemory:
    """Per-chat turn history, history selection and the per-user response cache.

    Every write enforces its bound: turn history drops its oldest turn past
    ``max_turns`` and the cache drops its oldest entry past ``cache_capacity``.
    Cached answers are never invalidated when documents change; they only age
    out.

    All reads and writes go through one re-entrant lock, so the memory can be
    shared by threads such as the ones ``asyncio.to_thread`` hands work to.
    """

    def __init__(
        self,
        store: MemoryStore | None = None,
        max_turns: int = config.MAX_TURNS_PER_CHAT,
        cache_capacity: int = config.CACHE_CAPACITY,
        cache_threshold: float = config.CACHE_SIMILARITY_THRESHOLD,
    ) -> None:
        """Initialize ConversationMemory.

        Args:
            store: Backing store; a fresh in-memory store when omitted.
            max_turns: Turns kept per chat.
            cache_capacity: Cached responses kept per user.
            cache_threshold: Default similarity needed for a cache hit.
        """
        if max_turns <= 0 or cache_capacity <= 0:
            msg = "max_turns and cache_capacity must be positive"
            raise ValueError(msg)
        self.store: MemoryStore = store if store is not None else InMemoryMemoryStore()
        self.max_turns = max_turns
        self.cache_capacity = cache_capacity
        self.cache_threshold = cache_threshold
        self._lock = threading.RLock()

    def _chat(self, user_id: str, chat_id: str) -> ChatMemory:
        memory = self.store.get_chat(user_id, chat_id)
        if memory is None:
            memory = ChatMemory.create(self.max_turns)
        return memory

    def _user(self, user_id: str) -> UserMemory:
        memory = self.store.get_user(user_id)
        if memory is None:
            memory = UserMemory()
        return memory

    def history(self, user_id: str, chat_id: str) -> list[ConversationTurn]:
        with self._lock:
            memory = self.store.get_chat(user_id, chat_id)
            return list(memory.turns) if memory else []

    def record_turn(
        self,
        chat_id: str,
        user_id: str,
        query: str,
        response: str,
        metadata: dict[str, Any] | None = None,
    ) -> ConversationTurn:
        """Append a turn to the chat history.

        Args:
            chat_id: Chat the turn belongs to.
            user_id: Owner of the chat.
            query: The user's message.
            response: The answer that was returned.
            metadata: Answer metadata; ``documents_referenced``, ``intent`` and
                ``confidence`` are read when present.

        Returns:
            The recorded turn.
        """
        metadata = metadata or {}
        combined = f"{query} {response}"
        documents = list(
            dict.fromkeys(
                [
                    *metadata.get("documents_referenced", ()),
                    *re.findall(DOCUMENT_NAME_PATTERN, combined, re.IGNORECASE),
                ]
            )
        )
        topics = extract_topics(combined)
        entities = extract_entities_from_text(combined)

        turn = ConversationTurn(
            id=uuid.uuid4().hex,
            chat_id=chat_id,
            user_id=user_id,
            timestamp=datetime.datetime.now(tz=datetime.UTC).isoformat(),
            user_message=query,
            bot_response=response,
            documents_referenced=tuple(documents),
            topics_discussed=tuple(topics),
            entities_found=tuple(entities),
            query_type=str(metadata.get("intent", "general")),
            confidence=float(metadata.get("confidence", 0.5)),
        )

        with self._lock:
            memory = self._chat(user_id, chat_id)
            memory.turns.append(turn)
            _remember(memory.documents, documents, MAX_TRACKED_ITEMS)
            _remember(memory.topics, topics, MAX_TRACKED_ITEMS)
            _remember(memory.entities, entities, MAX_TRACKED_ITEMS)
            self.store.put_chat(user_id, chat_id, memory)

        logger.debug(
            "Recorded turn for chat %s: %d documents, %d topics, %d entities",
            chat_id,
            len(documents),
            len(topics),
            len(entities),
        )
        return turn

    @staticmethod
    def classify_context_dependency(
        query: str, recent_turns: Sequence[ConversationTurn]
    ) -> str:
        """Judge how much the query depends on earlier turns.

        Returns:
            ``high`` for explicit references to earlier turns, ``medium`` for
            follow-ups and comparisons, otherwise ``low``.
        """
        query_lower = query.lower()
        if re.search(REFERENCES_PREVIOUS, query_lower):
            return DEPENDENCY_HIGH
        if re.search(COMPARISON_REQUEST, query_lower):
            return DEPENDENCY_MEDIUM
        if not recent_turns:
            return DEPENDENCY_LOW
        if re.search(CONTINUATION_WORDS, query_lower) or re.search(
            PRONOUN_REFERENCE, query_lower
        ):
            return DEPENDENCY_MEDIUM
        last_topics = set(recent_turns[-1].topics_discussed)
        if last_topics.intersection(extract_topics(query)):
            return DEPENDENCY_MEDIUM
        return DEPENDENCY_LOW

    def select_relevant_history(
        self,
        chat_id: str,
        query: str,
        max_turns: int = config.HISTORY_MAX_TURNS,
        max_char_budget: int = config.HISTORY_CHAR_BUDGET,
        *,
        user_id: str,
        dependency: str | None = None,
    ) -> list[ConversationTurn]:
        """Pick the earlier turns worth showing the generation service.

        Each turn scores ``0.2 * recency + 0.6 * similarity`` plus a 0.2 bonus
        for the two most recent turns. Turns under the relevance floor are
        dropped, the best ``max_turns`` are packed into ``max_char_budget``,
        and the survivors come back oldest first.

        Returns:
            Selected turns in chronological order; empty for low dependency.
        """
        turns = self.history(user_id, chat_id)
        if not turns:
            return []
        if dependency is None:
            dependency = self.classify_context_dependency(query, turns[-3:])
        if dependency == DEPENDENCY_LOW:
            return []

        total = len(turns)
        scored = []
        for index, turn in enumerate(turns):
            score = RECENCY_WEIGHT * (index + 1) / total
            score += SIMILARITY_WEIGHT * jaccard_similarity(query, turn.user_message)
            if index >= total - FOLLOW_UP_WINDOW:
                score += FOLLOW_UP_BONUS
            if score >= RELEVANCE_FLOOR:
                scored.append((score, index))

        scored.sort(key=lambda item: (-item[0], -item[1]))

        selected: list[int] = []
        used = 0
        for _, index in scored[:max_turns]:
            turn = turns[index]
            size = len(turn.user_message) + len(turn.bot_response)
            if used + size > max_char_budget:
                continue
            selected.append(index)
            used += size

        logger.debug(
            "Selected %d of %d turns for chat %s (%s dependency)",
            len(selected),
            total,
            chat_id,
            dependency,
        )
        return [turns[index] for index in sorted(selected)]

    def get_cached_response(
        self, user_id: str, query: str, threshold: float | None = None
    ) -> CacheEntry | None:
        """Look up a cached answer for a near-duplicate query.

        Returns:
            The most similar entry at or above ``threshold``, else None.
        """
        threshold = self.cache_threshold if threshold is None else threshold
        with self._lock:
            memory = self.store.get_user(user_id)
            entries = list(memory.cache.values()) if memory is not None else []

        best: CacheEntry | None = None
        best_score = -1.0
        for entry in entries:
            score = jaccard_similarity(query, entry.query_text)
            if score >= threshold and score > best_score:
                best, best_score = entry, score

        if best is not None:
            logger.info("Cache hit for user %s (similarity %.2f)", user_id, best_score)
        return best

    def cache_response(
        self,
        user_id: str,
        query: str,
        response: str,
        metadata: dict[str, Any] | None = None,
    ) -> CacheEntry:
        entry = CacheEntry(
            query_text=query,
            response_text=response,
            metadata=dict(metadata or {}),
            cached_at=datetime.datetime.now(tz=datetime.UTC).isoformat(),
        )
        with self._lock:
            memory = self._user(user_id)
            memory.cache.pop(query, None)
            memory.cache[query] = entry
            while len(memory.cache) > self.cache_capacity:
                memory.cache.popitem(last=False)
            self.store.put_user(user_id, memory)
        return entry

    def save_document_summary(
        self, user_id: str, summary: DocumentContextSummary
    ) -> None:
        with self._lock:
            memory = self._user(user_id)
            memory.summaries.pop(summary.document_id, None)
            memory.summaries[summary.document_id] = summary
            self.store.put_user(user_id, memory)

    def document_summaries(
        self, user_id: str, limit: int | None = None
    ) -> list[DocumentContextSummary]:
        """Return the user's document summaries, newest first."""
        with self._lock:
            memory = self.store.get_user(user_id)
            if memory is None:
                return []
            summaries = list(reversed(memory.summaries.values()))
        return summaries[:limit] if limit is not None else summaries

    def remove_document_summary(self, user_id: str, document_id: str) -> None:
        with self._lock:
            memory = self.store.get_user(user_id)
            if memory is None:
                return
            if memory.summaries.pop(document_id, None) is not None:
                self.store.put_user(user_id, memory)

    def build_context_sections(
        self, user_id: str, chat_id: str, dependency: str
    ) -> str:
        """Short notes on the documents and topics this chat has covered.

        Topics are only mentioned when the query depends on earlier turns.
        """
        with self._lock:
            memory = self.store.get_chat(user_id, chat_id)
            if memory is None or not memory.turns:
                return ""
            documents = list(memory.documents)
            topics = list(memory.topics)[-10:]

        sections = []
        if documents:
            sections.append(
                f"Documents discussed in this conversation: {', '.join(documents)}"
            )
        if dependency != DEPENDENCY_LOW and topics:
            note = f"Topics covered so far: {', '.join(topics)}"
            if dependency == DEPENDENCY_MEDIUM:
                note += "\nThis looks like a follow-up to the earlier discussion."
            sections.append(note)
        return "\n".join(sections)

    def chat_statistics(self, user_id: str, chat_id: str) -> dict[str, Any]:
        with self._lock:
            memory = self.store.get_chat(user_id, chat_id)
            if memory is None or not memory.turns:
                return {"total_turns": 0}
            turns = list(memory.turns)
            tracked = (len(memory.documents), len(memory.topics), len(memory.entities))
        return {
            "total_turns": len(turns),
            "documents_referenced": tracked[0],
            "topics_covered": tracked[1],
            "entities_tracked": tracked[2],
            "query_types": dict(Counter(turn.query_type for turn in turns)),
            "average_confidence": sum(turn.confidence for turn in turns) / len(turns),
            "first_turn_at": turns[0].timestamp,
            "last_turn_at": turns[-1].timestamp,
        }

    def user_statistics(self, user_id: str) -> dict[str, Any]:
        with self._lock:
            memory = self.store.get_user(user_id)
            return {
                "chats": len(self.store.chat_ids(user_id)),
                "cached_responses": len(memory.cache) if memory else 0,
                "document_summaries": len(memory.summaries) if memory else 0,
            }

    def clear_chat(self, user_id: str, chat_id: str) -> None:
        with self._lock:
            self.store.evict_chat(user_id, chat_id)
        logger.info("Cleared chat %s for user %s", chat_id, user_id)

    def clear_user(self, user_id: str) -> None:
        with self._lock:
            for chat_id in self.store.chat_ids(user_id):
                self.store.evict_chat(user_id, chat_id)
            self.store.evict_user(user_id)
        logger.info("Cleared all memory for user %s", user_id)
