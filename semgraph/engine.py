"""
Knowledge-Graph Engine - The Facade Hosts Talk To.

Owns the graph store and the session table of one host session and delegates
search, clustering, enrichment and reasoning to the specialised components.
Construct one engine per host session and pass it to whatever needs it;
several engines (e.g. in tests) coexist without sharing state.
"""

import asyncio
from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import datetime
from typing import Any

from app.config import Settings, get_settings
from semgraph.knowledge.clustering import ClusteringEngine
from semgraph.knowledge.enrichment import TextEnricher
from semgraph.knowledge.feature_extractor import FeatureConfig, FeatureExtractor
from semgraph.knowledge.graph_store import GraphNode, GraphStore
from semgraph.knowledge.schemas import (
    ConnectionType,
    Entity,
    MarkdownEnrichment,
    RebuildReport,
    Relationship,
    RelationshipType,
    SearchHit,
    SimilarityMode,
    SimilarNode,
)
from semgraph.reasoning.logic_flow import LogicFlowPlanner
from semgraph.reasoning.schemas import ChatMessage, LogicFlow, Session, utcnow
from semgraph.reasoning.session_manager import SessionManager
from semgraph.reasoning.sweeper import SessionSweeper
from semgraph.utils.logger import get_logger, log_duration

logger = get_logger(__name__)


class KnowledgeGraphEngine:
    """
    Single entry point for the semantic knowledge-graph engine.

    All methods are safe on an empty or not-yet-built graph (they return
    empty results). Read operations capture the current snapshot once, so a
    concurrent rebuild never mixes two generations within one call.

    Usage:
        engine = KnowledgeGraphEngine()
        engine.build_from_entities(entities, relationships)
        hits = engine.semantic_search("imbalance in price", limit=5)
        similar = engine.find_similar_nodes("fvg", 5, SimilarityMode.DIRECT)
        clusters = engine.cluster_nodes(0.65)
    """

    def __init__(
        self,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """
        Initialize the engine.

        Args:
            settings: Engine settings (defaults to the cached environment settings)
            clock: Source of "now" for session bookkeeping
        """
        self.settings = settings or get_settings()
        self.store = GraphStore(FeatureExtractor(FeatureConfig.from_settings(self.settings)))
        self.sessions = SessionManager.from_settings(self.store, self.settings, clock=clock)
        self._enrichments: dict[str, MarkdownEnrichment] = {}
        self._sweeper: SessionSweeper | None = None

    # ------------------------------------------------------------------
    # Graph lifecycle
    # ------------------------------------------------------------------

    def build_from_entities(
        self,
        entities: Iterable[Entity | Mapping[str, Any]],
        relationships: Iterable[Relationship | Mapping[str, Any]],
    ) -> RebuildReport:
        """
        Rebuild the graph and its feature statistics from a fresh snapshot.

        Args:
            entities: Entities (models or plain dicts)
            relationships: Relationships (models or plain dicts)

        Returns:
            RebuildReport with counts and dropped-edge diagnostics
        """
        with log_duration(logger, "build_from_entities") as timing:
            self.store.rebuild(entities, relationships)
        snapshot = self.store.snapshot
        # Reports were mined against the previous generation's names
        self._enrichments.clear()

        return RebuildReport(
            generation=snapshot.generation,
            node_count=snapshot.node_count(),
            edge_count=snapshot.edge_count(),
            dropped_edges=snapshot.dropped_edges,
            duplicate_nodes=snapshot.duplicate_nodes,
            invalid_entities=snapshot.invalid_entities,
            invalid_relationships=snapshot.invalid_relationships,
            duration_seconds=timing["seconds"],
        )

    @property
    def generation(self) -> int:
        return self.store.snapshot.generation

    def get_node(self, node_id: str) -> Entity | None:
        """The entity behind a node id, or None if not in the current graph."""
        node = self.store.get(node_id)
        return node.entity if node is not None else None

    def neighbors(
        self,
        node_id: str,
        edge_types: Iterable[RelationshipType | str] | None = None,
    ) -> list[str]:
        return self.store.neighbors(node_id, edge_types)

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def semantic_search(self, query: str, limit: int = 10) -> list[SearchHit]:
        """
        Rank nodes by meaning against free text.

        Args:
            query: Free-text query
            limit: Maximum results (capped by search_max_results)

        Returns:
            Hits over all nodes, best first (zero-score nodes included)
        """
        limit = self._cap(limit)
        snapshot = self.store.snapshot
        if limit == 0 or snapshot.features is None or not query.strip():
            return []

        ranked = snapshot.index.search(snapshot.features.embed(query), k=limit)
        hits = [
            SearchHit(node=self._node(snapshot.get(node_id)), similarity=score)
            for node_id, score in ranked
        ]
        logger.debug(f"semantic_search({query[:50]!r}) -> {len(hits)} hits")
        return hits

    def find_similar_nodes(
        self,
        node_id: str,
        limit: int = 10,
        mode: SimilarityMode = SimilarityMode.GLOBAL,
    ) -> list[SimilarNode]:
        """
        Nodes most similar to an existing node (never the node itself).

        Args:
            node_id: Seed node
            limit: Maximum results (capped by search_max_results)
            mode: DIRECT ranks only graph neighbors; GLOBAL ranks the whole graph

        Returns:
            Similar nodes, best first; empty for unknown seeds
        """
        limit = self._cap(limit)
        snapshot = self.store.snapshot
        if limit == 0 or node_id not in snapshot:
            return []

        mode = SimilarityMode(mode)
        if mode is SimilarityMode.DIRECT:
            candidates: list[str] | None = snapshot.neighbors(node_id)
            if not candidates:
                return []
            connection = ConnectionType.DIRECT
        else:
            candidates = None
            connection = ConnectionType.SIMILAR

        ranked = snapshot.index.top_k(node_id, k=limit, exclude_self=True, candidate_ids=candidates)
        return [
            SimilarNode(
                node=self._node(snapshot.get(nid)),
                similarity=score,
                connection_type=connection,
            )
            for nid, score in ranked
        ]

    def cluster_nodes(self, threshold: float) -> dict[str, list[str]]:
        """Group all nodes by seed similarity above a threshold."""
        return ClusteringEngine(self.store.snapshot).cluster(threshold)

    async def semantic_search_async(self, query: str, limit: int = 10) -> list[SearchHit]:
        return await asyncio.to_thread(self.semantic_search, query, limit)

    async def find_similar_nodes_async(
        self,
        node_id: str,
        limit: int = 10,
        mode: SimilarityMode = SimilarityMode.GLOBAL,
    ) -> list[SimilarNode]:
        return await asyncio.to_thread(self.find_similar_nodes, node_id, limit, mode)

    async def cluster_nodes_async(self, threshold: float) -> dict[str, list[str]]:
        return await asyncio.to_thread(self.cluster_nodes, threshold)

    # ------------------------------------------------------------------
    # Enrichment
    # ------------------------------------------------------------------

    def enrich_from_markdown(self, title: str, text: str) -> MarkdownEnrichment:
        """
        Mine a markdown document for concepts and candidate relationships.

        The report is advisory and cached by title until the next rebuild; the
        graph is not changed.
        """
        enricher = TextEnricher(
            self.store.snapshot,
            relationship_confidence=self.settings.enrichment_relationship_confidence,
        )
        report = enricher.enrich(title, text)
        self._enrichments[title] = report
        return report

    def get_enrichment(self, title: str) -> MarkdownEnrichment | None:
        return self._enrichments.get(title)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_or_update_session(
        self,
        session_id: str,
        messages: Sequence[ChatMessage | Mapping[str, Any]],
        live_entities: Iterable[Entity | Mapping[str, Any]] | None = None,
        now: datetime | None = None,
    ) -> Session:
        return self.sessions.create_or_update(session_id, messages, live_entities, now)

    def get_session(self, session_id: str, now: datetime | None = None) -> Session | None:
        return self.sessions.get(session_id, now)

    def clear_expired_sessions(self, now: datetime | None = None) -> int:
        return self.sessions.clear_expired(now)

    def build_logic_flow(self, question: str, session: str | Session | None = None) -> LogicFlow:
        """
        Plan how a question would be grounded, for logging and diagnostics.

        Args:
            question: The user question
            session: Session id or Session (unknown ids plan without context)
        """
        if isinstance(session, str):
            session = self.sessions.get(session)
        return LogicFlowPlanner(self.store.snapshot).build(question, session)

    def start_session_sweeper(self, interval_seconds: float | None = None) -> SessionSweeper:
        """
        Start the periodic expiry sweep on the running event loop.

        Returns:
            The sweeper; ``await sweeper.stop()`` cancels it
        """
        if self._sweeper is None or not self._sweeper.running:
            self._sweeper = SessionSweeper(
                self.sessions,
                interval_seconds=interval_seconds or self.settings.session_sweep_interval_seconds,
            )
        self._sweeper.start()
        return self._sweeper

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _cap(self, limit: int) -> int:
        return max(0, min(int(limit), self.settings.search_max_results))

    @staticmethod
    def _node(node: GraphNode | None) -> Entity:
        assert node is not None
        return node.entity
