"""
Pytest Configuration and Fixtures.

All fixtures use REAL components - no mocks.
Feature vectors are computed offline, so no external services are needed.
"""

from datetime import datetime, timedelta, timezone

import pytest

from app.config import Settings
from semgraph.engine import KnowledgeGraphEngine
from semgraph.knowledge.graph_store import GraphStore
from semgraph.knowledge.schemas import Entity, EntityType, Relationship, RelationshipType
from semgraph.reasoning.session_manager import SessionManager


# ============================================================================
# Clock
# ============================================================================

T0 = datetime(2026, 1, 5, 9, 30, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock for TTL tests."""

    def __init__(self, start: datetime = T0) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


@pytest.fixture
def clock() -> FakeClock:
    """A clock frozen at a fixed instant."""
    return FakeClock()


# ============================================================================
# Snapshot Fixtures
# ============================================================================

@pytest.fixture
def scenario_entities() -> list[Entity]:
    """Three-node snapshot: two concepts and one model."""
    return [
        Entity(
            id="A",
            kind=EntityType.CONCEPT,
            domain="ict",
            name="Fair Value Gap",
            description="A price imbalance left by three candles when price moves aggressively in one direction.",
            tags=("imbalance",),
        ),
        Entity(
            id="B",
            kind=EntityType.CONCEPT,
            domain="ict",
            name="Order Block",
            description="The last opposing candle before an impulsive move that breaks market structure.",
            tags=("institutional",),
        ),
        Entity(
            id="C",
            kind=EntityType.MODEL,
            domain="ict",
            name="Turtle Soup",
            description="A false breakout reversal model that fades stop runs beyond old highs or lows.",
            tags=("reversal",),
        ),
    ]


@pytest.fixture
def scenario_relationships() -> list[Relationship]:
    """Single edge: A related_to B."""
    return [
        Relationship(
            id="r-ab",
            type=RelationshipType.CONCEPT_RELATED_TO,
            source_id="A",
            target_id="B",
        ),
    ]


@pytest.fixture
def corpus_entities() -> list[dict]:
    """A larger snapshot as plain dicts, the way hosts send it."""
    return [
        {
            "id": "fvg",
            "kind": "concept",
            "domain": "ict",
            "name": "Fair Value Gap",
            "description": "A three-candle price imbalance left when price moves aggressively.",
            "tags": ["imbalance", "price action"],
            "sources": ["notes/fvg.md"],
        },
        {
            "id": "ob",
            "kind": "concept",
            "domain": "ict",
            "name": "Order Block",
            "description": "The last opposing candle before an impulsive move that breaks structure.",
            "tags": ["institutional", "supply demand"],
        },
        {
            "id": "sweep",
            "kind": "concept",
            "domain": "ict",
            "name": "Liquidity Sweep",
            "description": "A run on resting stop orders above swing highs or below swing lows.",
            "tags": ["liquidity", "stops"],
        },
        {
            "id": "turtle",
            "kind": "model",
            "domain": "ict",
            "name": "Turtle Soup",
            "description": "A false breakout reversal setup that fades stop runs beyond old highs.",
            "tags": ["reversal"],
            "content": "Wait for price to sweep the prior high, then enter on the close back inside the range.",
        },
        {
            "id": "trade-1",
            "kind": "trade",
            "domain": "journal",
            "name": "EURUSD Long",
            "description": "Long entry from a fair value gap after a liquidity sweep of the Asian low.",
        },
        {
            "id": "schema-trade",
            "kind": "schema",
            "domain": "platform",
            "name": "Trade Schema",
            "description": "JSON schema that validates journal trade records.",
        },
    ]


@pytest.fixture
def corpus_relationships() -> list[dict]:
    """Relationships for the larger snapshot."""
    return [
        {"id": "r1", "type": "concept_related_to", "source_id": "fvg", "target_id": "ob"},
        {"id": "r2", "type": "concept_used_in_model", "source_id": "sweep", "target_id": "turtle"},
        {"id": "r3", "type": "model_produces_trade", "source_id": "turtle", "target_id": "trade-1"},
        {"id": "r4", "type": "trade_uses_concept", "source_id": "trade-1", "target_id": "fvg"},
        {"id": "r5", "type": "schema_validates", "source_id": "schema-trade", "target_id": "trade-1"},
    ]


@pytest.fixture
def scenario_store(
    scenario_entities: list[Entity],
    scenario_relationships: list[Relationship],
) -> GraphStore:
    """Graph store loaded with the three-node snapshot."""
    store = GraphStore()
    store.rebuild(scenario_entities, scenario_relationships)
    return store


@pytest.fixture
def corpus_store(corpus_entities: list[dict], corpus_relationships: list[dict]) -> GraphStore:
    """Graph store loaded with the larger snapshot."""
    store = GraphStore()
    store.rebuild(corpus_entities, corpus_relationships)
    return store


# ============================================================================
# Engine Fixtures
# ============================================================================

@pytest.fixture
def settings() -> Settings:
    """Default settings, independent of the environment's .env file."""
    return Settings(_env_file=None)


@pytest.fixture
def session_manager(scenario_store: GraphStore, clock: FakeClock) -> SessionManager:
    """Session manager with a one-hour TTL on the three-node graph."""
    return SessionManager(scenario_store, ttl_seconds=3600, clock=clock)


@pytest.fixture
def engine(settings: Settings, clock: FakeClock) -> KnowledgeGraphEngine:
    """An engine with nothing loaded."""
    return KnowledgeGraphEngine(settings=settings, clock=clock)


@pytest.fixture
def scenario_engine(
    engine: KnowledgeGraphEngine,
    scenario_entities: list[Entity],
    scenario_relationships: list[Relationship],
) -> KnowledgeGraphEngine:
    """An engine loaded with the three-node snapshot."""
    engine.build_from_entities(scenario_entities, scenario_relationships)
    return engine
