"""
Tests for Conversation Sessions.
"""

from datetime import timedelta

import pytest

from semgraph.knowledge.graph_store import GraphStore
from semgraph.reasoning.schemas import ChatMessage, Intent, Session
from semgraph.reasoning.session_manager import SessionManager, infer_intent
from tests.conftest import T0, FakeClock


def user(content: str) -> dict:
    return {"role": "user", "content": content}


def assistant(content: str, source_ids: list[str] | None = None) -> dict:
    return {"role": "assistant", "content": content, "source_ids": source_ids or []}


class TestSessionUpdates:
    """Tests for SessionManager.create_or_update."""

    def test_create_session(self, session_manager: SessionManager) -> None:
        """Test a first turn grounds the session."""
        session = session_manager.create_or_update("chat-1", [user("What is a Fair Value Gap?")])

        assert session.session_id == "chat-1"
        assert session.created_at == T0
        assert session.last_active_at == T0
        assert session.referenced_concepts == {"A": 1.0}
        assert session.active_entities == ["A"]
        assert session.conversation_topic == "Fair Value Gap"
        assert session.topic_node_id == "A"
        assert session.last_inference == Intent.DEFINE_CONCEPT
        assert session.confidence_score == 1.0
        assert session.query_history == ["What is a Fair Value Gap?"]
        assert session.turn_count == 1

    def test_focus_and_context(self, session_manager: SessionManager) -> None:
        """Test the focus nodes and their one-hop context."""
        session = session_manager.create_or_update("chat-1", [user("Tell me about the fair value gap")])

        assert session.focus_nodes == ["A"]
        assert session.context_nodes == ["A", "B"]

    def test_mentions_decay(self, session_manager: SessionManager) -> None:
        """Test older mentions lose weight and the topic follows the conversation."""
        messages = [
            user("What is a Fair Value Gap?"),
            assistant("It often appears next to an Order Block."),
        ]

        session = session_manager.create_or_update("chat-1", messages)

        assert session.referenced_concepts["A"] == pytest.approx(0.85)
        assert session.referenced_concepts["B"] == pytest.approx(1.0)
        assert session.conversation_topic == "Order Block"
        assert session.top_concepts(1) == ["B"]

    def test_topic_ignores_non_concepts(self, session_manager: SessionManager) -> None:
        """Test models never become the conversation topic."""
        session = session_manager.create_or_update(
            "chat-1",
            [user("How does Turtle Soup work?"), user("Compare turtle soup and turtle soup again")],
        )

        assert session.referenced_concepts == {"C": pytest.approx(1.85)}
        assert session.conversation_topic is None
        assert session.topic_node_id is None

    def test_source_ids_count_as_grounding(self, session_manager: SessionManager) -> None:
        session = session_manager.create_or_update(
            "chat-1",
            [user("hello"), assistant("Here is what I found.", ["B", "ghost"])],
        )

        assert session.active_entities == ["B"]
        assert session.turn_groundings == [False, True]

    def test_sources_count_as_grounding(self, session_manager: SessionManager) -> None:
        """Test entity dicts under ``sources`` ground the turn like source ids."""
        reply = {
            "role": "assistant",
            "content": "Here is what I found.",
            "sources": [{"id": "B", "name": "Order Block"}, {"name": "no id"}],
        }

        session = session_manager.create_or_update("chat-1", [user("hello"), reply])

        assert session.active_entities == ["B"]
        assert session.turn_groundings == [False, True]

    def test_confidence_weights_recent_turns(self, session_manager: SessionManager) -> None:
        """Test an ungrounded latest turn lowers confidence more than an old one."""
        grounded_last = session_manager.create_or_update(
            "s1", [user("anything new?"), user("Order Block please")]
        )
        grounded_first = session_manager.create_or_update(
            "s2", [user("Order Block please"), user("anything new?")]
        )

        assert grounded_last.confidence_score == pytest.approx(1.0 / 1.8)
        assert grounded_first.confidence_score == pytest.approx(0.8 / 1.8)
        assert grounded_last.confidence_score > grounded_first.confidence_score

    def test_confidence_window(self, scenario_store: GraphStore, clock: FakeClock) -> None:
        """Test only the most recent turns count towards confidence."""
        manager = SessionManager(scenario_store, confidence_window=2, clock=clock)

        session = manager.create_or_update(
            "chat-1",
            [user("Order Block"), user("nothing"), user("still nothing")],
        )

        assert session.turn_groundings == [False, False]
        assert session.confidence_score == 0.0

    def test_incremental_updates(self, session_manager: SessionManager) -> None:
        """Test only messages past the processed ones are applied."""
        history = [user("What is a Fair Value Gap?")]
        session_manager.create_or_update("chat-1", history)

        history.append(user("And an Order Block?"))
        session = session_manager.create_or_update("chat-1", history)

        assert session.processed_messages == 2
        assert session.query_history == ["What is a Fair Value Gap?", "And an Order Block?"]
        assert session.referenced_concepts["A"] == pytest.approx(0.85)

    def test_rewound_history_restarts(self, session_manager: SessionManager) -> None:
        """Test a shorter history is treated as a new conversation."""
        session_manager.create_or_update("chat-1", [user("Fair Value Gap"), user("Order Block")])

        session = session_manager.create_or_update("chat-1", [user("Turtle Soup")])

        assert session.processed_messages == 1
        assert session.query_history == ["Turtle Soup"]
        assert session.referenced_concepts == {"C": 1.0}

    def test_live_entities_restrict_resolution(self, session_manager: SessionManager) -> None:
        session = session_manager.create_or_update(
            "chat-1",
            [user("Fair Value Gap and Order Block")],
            live_entities=[{"id": "B"}],
        )

        assert session.active_entities == ["B"]

    def test_unknown_mentions_leave_neutral_state(self, session_manager: SessionManager) -> None:
        session = session_manager.create_or_update("chat-1", [])

        assert session.referenced_concepts == {}
        assert session.confidence_score == 0.5
        assert session.conversation_topic is None

    def test_returned_session_is_a_copy(self, session_manager: SessionManager) -> None:
        session = session_manager.create_or_update("chat-1", [user("Fair Value Gap")])
        session.referenced_concepts.clear()

        assert session_manager.get("chat-1").referenced_concepts == {"A": 1.0}

    def test_accepts_chat_message_models(self, session_manager: SessionManager) -> None:
        session = session_manager.create_or_update(
            "chat-1",
            [ChatMessage(role="user", content="list every Order Block")],
        )

        assert session.last_inference == Intent.FILTER_DATA


class TestSessionExpiry:
    """Tests for TTL handling."""

    def test_get_unknown(self, session_manager: SessionManager) -> None:
        assert session_manager.get("nope") is None

    def test_expired_session_removed(self, session_manager: SessionManager) -> None:
        """Test clear_expired removes idle sessions and get stops returning them."""
        session_manager.create_or_update("chat-1", [user("Fair Value Gap")], now=T0)

        assert session_manager.get("chat-1", now=T0 + timedelta(minutes=30)) is not None
        assert session_manager.clear_expired(now=T0 + timedelta(minutes=30)) == 0

        assert session_manager.clear_expired(now=T0 + timedelta(hours=2)) == 1
        assert session_manager.get("chat-1", now=T0 + timedelta(hours=2)) is None
        assert session_manager.session_count() == 0

    def test_get_hides_expired_before_sweep(self, session_manager: SessionManager) -> None:
        session_manager.create_or_update("chat-1", [user("Fair Value Gap")], now=T0)

        assert session_manager.get("chat-1", now=T0 + timedelta(hours=2)) is None
        assert session_manager.session_ids() == ["chat-1"]

    def test_update_resets_ttl(self, session_manager: SessionManager) -> None:
        """Test a session touched near expiry gets a fresh TTL."""
        session_manager.create_or_update("chat-1", [user("Fair Value Gap")], now=T0)
        session_manager.create_or_update("chat-1", [user("Fair Value Gap")], now=T0 + timedelta(minutes=50))

        assert session_manager.clear_expired(now=T0 + timedelta(minutes=100)) == 0
        assert session_manager.clear_expired(now=T0 + timedelta(minutes=111)) == 1

    def test_exactly_at_ttl_is_kept(self, session_manager: SessionManager) -> None:
        session_manager.create_or_update("chat-1", [user("hi")], now=T0)

        assert session_manager.clear_expired(now=T0 + timedelta(hours=1)) == 0

    def test_update_after_expiry_starts_fresh(self, session_manager: SessionManager) -> None:
        session_manager.create_or_update("chat-1", [user("Fair Value Gap")], now=T0)
        later = T0 + timedelta(days=1)

        session = session_manager.create_or_update("chat-1", [user("Fair Value Gap"), user("Order Block")], now=later)

        assert session.created_at == later
        assert session.processed_messages == 2
        assert session.referenced_concepts == {"A": pytest.approx(0.85), "B": 1.0}

    def test_uses_injected_clock(self, session_manager: SessionManager, clock: FakeClock) -> None:
        session_manager.create_or_update("chat-1", [user("hi")])

        clock.advance(hours=2)

        assert session_manager.get("chat-1") is None
        assert session_manager.clear_expired() == 1

    def test_naive_times_are_utc(self, session_manager: SessionManager) -> None:
        naive = T0.replace(tzinfo=None)

        session = session_manager.create_or_update("chat-1", [user("hi")], now=naive)

        assert session.last_active_at == T0


class TestSessionPersistence:
    """Tests for session export/import."""

    def test_export_import(self, session_manager: SessionManager, scenario_store: GraphStore) -> None:
        session_manager.create_or_update("chat-1", [user("What is a Fair Value Gap?")])
        payload = session_manager.export_session("chat-1")

        other = SessionManager(scenario_store, ttl_seconds=3600, clock=lambda: T0)
        assert other.import_session(payload) is True

        restored = other.get("chat-1")
        assert restored is not None
        assert restored.referenced_concepts == {"A": 1.0}
        assert restored.last_inference == Intent.DEFINE_CONCEPT

    def test_export_unknown(self, session_manager: SessionManager) -> None:
        assert session_manager.export_session("nope") is None

    def test_import_rejects_garbage(self, session_manager: SessionManager) -> None:
        assert session_manager.import_session("not json") is False
        assert session_manager.import_session('{"created_at": "2026-01-01T00:00:00Z"}') is False
        assert session_manager.session_count() == 0


class TestSessionSchema:
    """Tests for the Session model."""

    def test_chat_message_folds_sources(self, scenario_entities) -> None:
        """Test ``sources`` entries of every shape become deduplicated source ids."""
        message = ChatMessage.model_validate(
            {
                "role": "assistant",
                "source_ids": ["A"],
                "sources": ["C", {"id": "A"}, scenario_entities[1], {"id": ""}],
            }
        )

        assert message.source_ids == ["A", "C", "B"]

    def test_chat_message_without_sources(self) -> None:
        assert ChatMessage(role="assistant", source_ids=["A"]).source_ids == ["A"]
        assert ChatMessage().source_ids == []

    def test_confidence_is_clamped(self) -> None:
        assert Session(session_id="s", confidence_score=1.7).confidence_score == 1.0
        assert Session(session_id="s", confidence_score=-0.2).confidence_score == 0.0

    def test_top_concepts(self) -> None:
        session = Session(session_id="s", referenced_concepts={"a": 0.2, "b": 1.5, "c": 0.9})

        assert session.top_concepts(2) == ["b", "c"]


class TestIntent:
    """Tests for intent detection."""

    @pytest.mark.parametrize(
        ("question", "intent"),
        [
            ("What is an order block?", Intent.DEFINE_CONCEPT),
            ("show me last week's trades", Intent.FILTER_DATA),
            ("compare the win rate of both setups", Intent.ANALYZE_DATA),
            ("How does a liquidity sweep work?", Intent.EXPLAIN_MECHANISM),
            ("relationships between gaps and blocks", Intent.EXPLORE_RELATIONSHIPS),
            ("hello there", Intent.GENERAL_QUERY),
        ],
    )
    def test_infer_intent(self, question: str, intent: Intent) -> None:
        assert infer_intent(question) == intent
