"""
Session Manager - Per-Conversation Grounding State.

Tracks which graph nodes a conversation keeps referring to, the dominant
concept, the detected intent of the last question and a confidence score
describing how consistently recent turns resolved to known nodes. Sessions
live until they sit idle longer than a fixed time-to-live.
"""

import re
import threading
from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import ValidationError

from semgraph.knowledge.graph_store import GraphNode, GraphSnapshot, GraphStore
from semgraph.knowledge.schemas import Entity, EntityType
from semgraph.reasoning.schemas import ChatMessage, Intent, Session, utcnow
from semgraph.utils.logger import get_logger

logger = get_logger(__name__)


# ============================================================================
# Intent detection
# ============================================================================

INTENT_PATTERNS: list[tuple[re.Pattern[str], Intent]] = [
    (re.compile(r"\b(?:define|definition|what is|what are|explain|describe)\b"), Intent.DEFINE_CONCEPT),
    (re.compile(r"\b(?:filter|show|list|find|search)\b"), Intent.FILTER_DATA),
    (re.compile(r"\b(?:analy[sz]e|compare|statistics|win rate|performance)\b"), Intent.ANALYZE_DATA),
    (re.compile(r"\b(?:how|why|when|where)\b"), Intent.EXPLAIN_MECHANISM),
    (re.compile(r"\b(?:relationships?|connections?|links?|related)\b"), Intent.EXPLORE_RELATIONSHIPS),
]

NEUTRAL_CONFIDENCE = 0.5
MIN_CONCEPT_WEIGHT = 0.01


def infer_intent(text: str) -> Intent:
    """Classify a question by the first matching keyword family."""
    lowered = text.lower()
    for pattern, intent in INTENT_PATTERNS:
        if pattern.search(lowered):
            return intent
    return Intent.GENERAL_QUERY


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


# ============================================================================
# Session Manager
# ============================================================================


class SessionManager:
    """
    Owns every session record; hosts refer to sessions by id only.

    Lifecycle per session: absent -> active -> expired (removed). All reads,
    updates and removals go through one re-entrant lock, so an expiry sweep
    never observes a session in the middle of an update. Updates are applied
    to a copy that replaces the stored record in one step.

    Usage:
        manager = SessionManager(store, ttl_seconds=3600)
        session = manager.create_or_update("chat-1", messages)
        manager.get("chat-1")
        manager.clear_expired()
    """

    def __init__(
        self,
        store: GraphStore,
        ttl_seconds: float = 24 * 60 * 60,
        confidence_window: int = 5,
        confidence_decay: float = 0.8,
        mention_decay: float = 0.85,
        focus_max_nodes: int = 20,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """
        Initialize the session manager.

        Args:
            store: Graph store used to resolve mentions against the live graph
            ttl_seconds: Idle time after which a session expires
            confidence_window: Recent turns considered for confidence
            confidence_decay: Weight multiplier per turn of age in confidence
            mention_decay: Multiplier applied to concept weights on every turn
            focus_max_nodes: Maximum focus nodes in a session's context
            clock: Source of "now" when callers do not pass one
        """
        self.store = store
        self.ttl = timedelta(seconds=ttl_seconds)
        self.confidence_window = confidence_window
        self.confidence_decay = confidence_decay
        self.mention_decay = mention_decay
        self.focus_max_nodes = focus_max_nodes
        self._clock = clock
        self._sessions: dict[str, Session] = {}
        self._lock = threading.RLock()

    @classmethod
    def from_settings(cls, store: GraphStore, settings, clock: Callable[[], datetime] = utcnow) -> "SessionManager":  # type: ignore[no-untyped-def]
        return cls(
            store,
            ttl_seconds=settings.session_ttl_seconds,
            confidence_window=settings.session_confidence_window,
            confidence_decay=settings.session_confidence_decay,
            mention_decay=settings.session_mention_decay,
            focus_max_nodes=settings.session_focus_max_nodes,
            clock=clock,
        )

    def now(self) -> datetime:
        return _as_utc(self._clock())

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def create_or_update(
        self,
        session_id: str,
        messages: Sequence[ChatMessage | Mapping[str, Any]],
        live_entities: Iterable[Entity | Mapping[str, Any]] | None = None,
        now: datetime | None = None,
    ) -> Session:
        """
        Fold new conversation turns into a session, creating it if needed.

        The full message history is passed on every call; only messages past
        the ones already processed count as new turns. A history shorter than
        what was processed is treated as a restarted conversation.

        Args:
            session_id: Conversation id
            messages: Full message history, oldest first
            live_entities: When given, only these entity ids may be resolved
            now: Current time (defaults to the manager's clock)

        Returns:
            A copy of the updated session
        """
        now = _as_utc(now) if now is not None else self.now()
        history = [m if isinstance(m, ChatMessage) else ChatMessage.model_validate(m) for m in messages]
        allowed = _entity_ids(live_entities) if live_entities is not None else None
        snapshot = self.store.snapshot

        with self._lock:
            existing = self._sessions.get(session_id)
            if existing is not None and self.is_expired(existing, now):
                logger.debug(f"Session {session_id} expired before update, starting fresh")
                existing = None

            if existing is None:
                session = Session(session_id=session_id, created_at=now, last_active_at=now)
            else:
                session = existing.model_copy(deep=True)

            if session.processed_messages > len(history):
                logger.debug(f"Session {session_id} history rewound, replaying {len(history)} messages")
                session = Session(session_id=session_id, created_at=session.created_at, last_active_at=now)

            for message in history[session.processed_messages:]:
                self._apply_turn(session, message, snapshot, allowed)

            session.processed_messages = len(history)
            self._refresh(session, snapshot)
            session.last_active_at = now

            self._sessions[session_id] = session
            logger.debug(
                f"Session {session_id}: topic={session.conversation_topic!r}, "
                f"confidence={session.confidence_score:.2f}, turns={session.processed_messages}"
            )
            return session.model_copy(deep=True)

    def get(self, session_id: str, now: datetime | None = None) -> Session | None:
        """
        Read a session without changing it.

        Returns:
            A copy of the session, or None if unknown or already past its TTL
        """
        now = _as_utc(now) if now is not None else self.now()
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or self.is_expired(session, now):
                return None
            return session.model_copy(deep=True)

    def clear_expired(self, now: datetime | None = None) -> int:
        """
        Remove every session idle for longer than the TTL.

        Returns:
            Number of sessions removed
        """
        now = _as_utc(now) if now is not None else self.now()
        with self._lock:
            expired = [sid for sid, s in self._sessions.items() if self.is_expired(s, now)]
            for sid in expired:
                del self._sessions[sid]

        if expired:
            logger.info(f"Cleared {len(expired)} expired sessions")
        return len(expired)

    def is_expired(self, session: Session, now: datetime) -> bool:
        return _as_utc(now) - _as_utc(session.last_active_at) > self.ttl

    def session_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def session_ids(self) -> list[str]:
        with self._lock:
            return list(self._sessions)

    def export_session(self, session_id: str) -> str | None:
        """Serialize a session to JSON (None if unknown)."""
        with self._lock:
            session = self._sessions.get(session_id)
            return session.model_dump_json(indent=2) if session is not None else None

    def import_session(self, payload: str) -> bool:
        """
        Restore a session exported with export_session.

        Returns:
            True if the payload was valid and the session stored
        """
        try:
            session = Session.model_validate_json(payload)
        except ValidationError as e:
            logger.warning(f"Rejected session import: {e.error_count()} validation error(s)")
            return False

        with self._lock:
            self._sessions[session.session_id] = session
        logger.debug(f"Imported session {session.session_id}")
        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _apply_turn(
        self,
        session: Session,
        message: ChatMessage,
        snapshot: GraphSnapshot,
        allowed: set[str] | None,
    ) -> None:
        resolved = [node.id for node, _ in snapshot.find_mentions(message.content)]
        resolved.extend(sid for sid in message.source_ids if sid in snapshot)
        if allowed is not None:
            resolved = [nid for nid in resolved if nid in allowed]
        resolved = list(dict.fromkeys(resolved))

        weights = {
            nid: w * self.mention_decay
            for nid, w in session.referenced_concepts.items()
            if w * self.mention_decay >= MIN_CONCEPT_WEIGHT
        }
        for nid in resolved:
            weights[nid] = weights.get(nid, 0.0) + 1.0
            if nid not in session.active_entities:
                session.active_entities.append(nid)
        session.referenced_concepts = weights

        if message.role == "user":
            session.query_history.append(message.content)
            session.last_inference = infer_intent(message.content)

        session.turn_groundings.append(bool(resolved))
        del session.turn_groundings[: -self.confidence_window]

    def _refresh(self, session: Session, snapshot: GraphSnapshot) -> None:
        topic = self._topic(session, snapshot)
        session.topic_node_id = topic.id if topic is not None else None
        session.conversation_topic = topic.label if topic is not None else None
        session.confidence_score = self._confidence(session.turn_groundings)

        focus = [nid for nid in session.top_concepts(len(session.referenced_concepts)) if nid in snapshot]
        session.focus_nodes = focus[: self.focus_max_nodes]
        session.context_nodes = snapshot.get_neighborhood(
            session.focus_nodes,
            hops=1,
            max_nodes=self.focus_max_nodes * 3,
        ).node_ids

    def _topic(self, session: Session, snapshot: GraphSnapshot) -> GraphNode | None:
        best: GraphNode | None = None
        best_key: tuple[float, int] | None = None
        for nid, weight in session.referenced_concepts.items():
            node = snapshot.get(nid)
            if node is None or node.kind != EntityType.CONCEPT:
                continue
            key = (-weight, node.position)
            if best_key is None or key < best_key:
                best, best_key = node, key
        return best

    def _confidence(self, groundings: list[bool]) -> float:
        """Recency-weighted share of grounded turns; newest turn weighs most."""
        if not groundings:
            return NEUTRAL_CONFIDENCE
        total = 0.0
        grounded = 0.0
        for age, hit in enumerate(reversed(groundings)):
            w = self.confidence_decay**age
            total += w
            if hit:
                grounded += w
        return min(max(grounded / total, 0.0), 1.0)


def _entity_ids(entities: Iterable[Entity | Mapping[str, Any]]) -> set[str]:
    ids: set[str] = set()
    for entity in entities:
        entity_id = entity.id if isinstance(entity, Entity) else entity.get("id")
        if entity_id:
            ids.add(str(entity_id))
    return ids
