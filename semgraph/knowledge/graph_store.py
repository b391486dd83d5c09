"""
Graph Store - NetworkX Snapshot Graph.

Holds the current generation of nodes and typed, directed edges as an
immutable snapshot. Every rebuild computes a complete new snapshot to the side
(graph, feature vectors, similarity index, name index) and publishes it with a
single assignment, so readers never see a half-built graph.
"""

import logging
import re
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, TypeVar

import networkx as nx
from pydantic import BaseModel, ValidationError

from semgraph.knowledge.feature_extractor import FeatureExtractor, FeatureSpace
from semgraph.knowledge.schemas import (
    Entity,
    EntityType,
    FlowDirection,
    Relationship,
    RelationshipType,
)
from semgraph.knowledge.similarity_index import SimilarityIndex
from semgraph.utils.logger import LogContext, get_logger, log_duration

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


# ============================================================================
# Weights
# ============================================================================

KIND_WEIGHTS = {
    EntityType.CONCEPT: 2.0,
    EntityType.MODEL: 1.5,
    EntityType.TRADE: 0.5,
}

EDGE_WEIGHTS = {
    RelationshipType.CONCEPT_PREREQUISITE: 2.5,
    RelationshipType.CONCEPT_USED_IN_MODEL: 2.0,
    RelationshipType.MODEL_PRODUCES_TRADE: 1.5,
    RelationshipType.CONCEPT_RELATED_TO: 1.2,
    RelationshipType.TRADE_USES_CONCEPT: 1.0,
}

FLOW_DIRECTIONS = {
    RelationshipType.CONCEPT_RELATED_TO: FlowDirection.BIDIRECTIONAL,
    RelationshipType.CONCEPT_DETECTED_BY: FlowDirection.BACKWARD,
}

MIN_NAME_LENGTH = 2


def node_weight(entity: Entity) -> float:
    """Importance of an entity: kind bonus plus tag and source counts."""
    return 1.0 + KIND_WEIGHTS.get(entity.kind, 0.0) + 0.1 * len(entity.tags) + 0.2 * len(entity.sources)


def edge_weight(relationship: Relationship) -> float:
    return EDGE_WEIGHTS.get(relationship.type, 1.0)


def flow_direction(relationship_type: RelationshipType) -> FlowDirection:
    return FLOW_DIRECTIONS.get(relationship_type, FlowDirection.FORWARD)


# ============================================================================
# Graph records
# ============================================================================


@dataclass(frozen=True)
class GraphNode:
    """A node in the knowledge graph (wrapper around Entity)."""

    entity: Entity
    position: int  # canonical snapshot order
    weight: float = 1.0

    @property
    def id(self) -> str:
        return self.entity.id

    @property
    def label(self) -> str:
        return self.entity.name

    @property
    def kind(self) -> EntityType:
        return self.entity.kind

    def to_dict(self) -> dict[str, Any]:
        return self.entity.model_dump(mode="json")


@dataclass(frozen=True)
class GraphEdge:
    """An edge in the knowledge graph (wrapper around Relationship)."""

    relationship: Relationship
    weight: float = 1.0
    flow_direction: FlowDirection = FlowDirection.FORWARD

    @property
    def id(self) -> str:
        return self.relationship.id

    @property
    def source(self) -> str:
        return self.relationship.source_id

    @property
    def target(self) -> str:
        return self.relationship.target_id

    @property
    def type(self) -> RelationshipType:
        return self.relationship.type

    def to_dict(self) -> dict[str, Any]:
        return self.relationship.model_dump(mode="json")


@dataclass
class SubGraph:
    """A subgraph extracted from a snapshot."""

    nodes: list[GraphNode] = field(default_factory=list)
    edges: list[GraphEdge] = field(default_factory=list)

    @property
    def node_count(self) -> int:
        return len(self.nodes)

    @property
    def edge_count(self) -> int:
        return len(self.edges)

    @property
    def node_ids(self) -> list[str]:
        return [n.id for n in self.nodes]


# ============================================================================
# Snapshot
# ============================================================================


@dataclass(frozen=True, eq=False)
class GraphSnapshot:
    """
    One immutable generation of the graph.

    Holds everything derived from the entity/relationship snapshot, so a
    reader that captured a GraphSnapshot reference can finish its work even
    if a rebuild publishes a newer generation meanwhile.
    """

    generation: int
    nodes: tuple[GraphNode, ...]
    edges: tuple[GraphEdge, ...]
    graph: nx.MultiDiGraph
    features: FeatureSpace | None
    index: SimilarityIndex
    vocabulary: frozenset[str] = frozenset()
    name_pattern: re.Pattern[str] | None = None
    names: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    dropped_edges: int = 0
    duplicate_nodes: int = 0
    invalid_entities: int = 0
    invalid_relationships: int = 0
    _by_id: Mapping[str, GraphNode] = field(default_factory=dict)

    @classmethod
    def empty(cls, generation: int = 0) -> "GraphSnapshot":
        return cls(
            generation=generation,
            nodes=(),
            edges=(),
            graph=nx.MultiDiGraph(),
            features=None,
            index=SimilarityIndex((), None),
        )

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._by_id

    @property
    def node_ids(self) -> list[str]:
        return [n.id for n in self.nodes]

    def node_count(self) -> int:
        return len(self.nodes)

    def edge_count(self) -> int:
        return len(self.edges)

    def get(self, node_id: str) -> GraphNode | None:
        """The node with this id, or None if it is not in this generation."""
        return self._by_id.get(node_id)

    def neighbors(
        self,
        node_id: str,
        edge_types: Iterable[RelationshipType | str] | None = None,
    ) -> list[str]:
        """
        Ids connected to a node by an edge in either direction.

        Args:
            node_id: Center node
            edge_types: Optional filter by relationship type

        Returns:
            Neighbor ids in snapshot order, without the node itself; empty for
            unknown ids
        """
        if node_id not in self._by_id:
            return []

        allowed = _edge_type_filter(edge_types) if edge_types is not None else None
        found: set[str] = set()

        for _, target, rel_type in self.graph.out_edges(node_id, data="relationship_type"):
            if allowed is None or rel_type in allowed:
                found.add(target)
        for source, _, rel_type in self.graph.in_edges(node_id, data="relationship_type"):
            if allowed is None or rel_type in allowed:
                found.add(source)

        found.discard(node_id)
        return sorted(found, key=lambda nid: self._by_id[nid].position)

    def find_nodes_by_kind(self, kind: EntityType, domain: str | None = None) -> list[GraphNode]:
        """All nodes of a kind (optionally within one domain), in snapshot order."""
        return [
            n for n in self.nodes
            if n.kind == kind and (domain is None or n.entity.domain == domain)
        ]

    def find_nodes_by_name(self, value: str, fuzzy: bool = False) -> list[GraphNode]:
        """
        Find nodes by name.

        Args:
            value: Name to look for (case-insensitive)
            fuzzy: Whether to do substring matching

        Returns:
            Matching nodes in snapshot order
        """
        value_lower = value.strip().lower()
        if not value_lower:
            return []

        results: list[GraphNode] = []
        for node in self.nodes:
            name = node.label.lower()
            if (fuzzy and value_lower in name) or value_lower == name:
                results.append(node)
        return results

    def find_mentions(self, text: str) -> list[tuple[GraphNode, int]]:
        """
        Nodes whose names appear in a text, with the offset of the first mention.

        Matching is case-insensitive and word-bounded; at one offset the
        longest name wins. Results are ordered by first mention, then snapshot
        order for nodes sharing a name.
        """
        if not text or self.name_pattern is None:
            return []

        first_seen: dict[str, int] = {}
        for match in self.name_pattern.finditer(text):
            for node_id in self.names.get(match.group(1).lower(), ()):
                first_seen.setdefault(node_id, match.start())

        ordered = sorted(first_seen.items(), key=lambda kv: (kv[1], self._by_id[kv[0]].position))
        return [(self._by_id[node_id], offset) for node_id, offset in ordered]

    def get_neighborhood(
        self,
        node_ids: Iterable[str],
        hops: int = 1,
        max_nodes: int = 50,
    ) -> SubGraph:
        """
        Get a subgraph around a set of focus nodes.

        Args:
            node_ids: Focus nodes (unknown ids are ignored)
            hops: Number of relationship hops to include
            max_nodes: Maximum nodes to return

        Returns:
            SubGraph with focus nodes first, then neighbors by hop distance
        """
        visited: list[str] = []
        seen: set[str] = set()
        current_layer = [nid for nid in node_ids if nid in self._by_id]

        for _ in range(hops + 1):
            next_layer: list[str] = []
            for nid in current_layer:
                if nid in seen or len(visited) >= max_nodes:
                    continue
                seen.add(nid)
                visited.append(nid)
                next_layer.extend(self.neighbors(nid))
            current_layer = next_layer

        nodes = [self._by_id[nid] for nid in visited]
        edges = [e for e in self.edges if e.source in seen and e.target in seen]

        logger.debug(f"Extracted subgraph: {len(nodes)} nodes, {len(edges)} edges")
        return SubGraph(nodes=nodes, edges=edges)


# ============================================================================
# Store
# ============================================================================


class GraphStore:
    """
    NetworkX-based graph store, rebuilt wholesale from each snapshot.

    Provides:
    - Atomic snapshot replacement (no partial-update API)
    - Dangling edge filtering with diagnostics
    - Adjacency lookup in either direction, optionally by edge type
    - Feature vectors and similarity index kept in step with the graph

    Usage:
        store = GraphStore()
        dropped = store.rebuild(entities, relationships)
        neighbor_ids = store.neighbors("fvg")
    """

    def __init__(self, extractor: FeatureExtractor | None = None) -> None:
        """
        Initialize the graph store.

        Args:
            extractor: Feature extractor used to vectorize each snapshot
        """
        self.extractor = extractor or FeatureExtractor()
        self._snapshot = GraphSnapshot.empty()
        self._rebuild_lock = threading.Lock()

    @property
    def snapshot(self) -> GraphSnapshot:
        """The current generation; capture once per operation."""
        return self._snapshot

    @property
    def graph(self) -> nx.MultiDiGraph:
        """Get the underlying NetworkX graph of the current generation."""
        return self._snapshot.graph

    def rebuild(
        self,
        entities: Iterable[Entity | Mapping[str, Any]],
        relationships: Iterable[Relationship | Mapping[str, Any]],
    ) -> int:
        """
        Replace the snapshot with one built from new entities and relationships.

        Args:
            entities: Entities (models or plain dicts)
            relationships: Relationships (models or plain dicts)

        Returns:
            Number of edges dropped because an endpoint was unknown
        """
        with self._rebuild_lock:
            generation = self._snapshot.generation + 1
            log = LogContext(logger, generation=generation)
            with log_duration(log, f"Rebuild of generation {generation}"):
                snapshot = self._build_snapshot(generation, entities, relationships, log)
            self._snapshot = snapshot

            log.info(
                f"Rebuilt graph generation {generation} "
                f"({snapshot.node_count()} nodes, {snapshot.edge_count()} edges, "
                f"{snapshot.dropped_edges} dangling edges dropped)"
            )
            return snapshot.dropped_edges

    def get(self, node_id: str) -> GraphNode | None:
        """Get a node by id (None if not found)."""
        return self._snapshot.get(node_id)

    def neighbors(
        self,
        node_id: str,
        edge_types: Iterable[RelationshipType | str] | None = None,
    ) -> list[str]:
        """Neighbor ids of a node in the current generation."""
        return self._snapshot.neighbors(node_id, edge_types)

    def node_count(self) -> int:
        """Get total number of nodes."""
        return self._snapshot.node_count()

    def edge_count(self) -> int:
        """Get total number of edges."""
        return self._snapshot.edge_count()

    def clear(self) -> None:
        """Publish an empty generation."""
        with self._rebuild_lock:
            self._snapshot = GraphSnapshot.empty(self._snapshot.generation + 1)
        logger.info("Cleared graph store")

    def _build_snapshot(
        self,
        generation: int,
        entities: Iterable[Entity | Mapping[str, Any]],
        relationships: Iterable[Relationship | Mapping[str, Any]],
        log: logging.Logger | logging.LoggerAdapter = logger,
    ) -> GraphSnapshot:
        valid_entities, invalid_entities = _coerce(Entity, entities, log)
        valid_relationships, invalid_relationships = _coerce(Relationship, relationships, log)

        graph = nx.MultiDiGraph()
        by_id: dict[str, GraphNode] = {}
        nodes: list[GraphNode] = []
        duplicates = 0

        for entity in valid_entities:
            if entity.id in by_id:
                duplicates += 1
                log.warning(f"Duplicate entity id {entity.id!r} ignored")
                continue

            node = GraphNode(entity=entity, position=len(nodes), weight=node_weight(entity))
            by_id[entity.id] = node
            nodes.append(node)
            graph.add_node(entity.id, kind=entity.kind.value, name=entity.name, weight=node.weight)

        edges: list[GraphEdge] = []
        dropped = 0

        for rel in valid_relationships:
            if rel.source_id not in by_id or rel.target_id not in by_id:
                dropped += 1
                log.debug(f"Dropped dangling edge {rel.id}: {rel.source_id} -> {rel.target_id}")
                continue

            edge = GraphEdge(
                relationship=rel,
                weight=edge_weight(rel),
                flow_direction=flow_direction(rel.type),
            )
            edges.append(edge)
            graph.add_edge(
                rel.source_id,
                rel.target_id,
                key=rel.id,
                relationship_type=rel.type,
                weight=edge.weight,
            )

        ids = [n.id for n in nodes]
        features = self.extractor.fit([self.extractor.entity_text(n.entity) for n in nodes])
        index = SimilarityIndex(ids, features.matrix if features is not None else None)
        names, name_pattern = _build_name_index(nodes)

        return GraphSnapshot(
            generation=generation,
            nodes=tuple(nodes),
            edges=tuple(edges),
            graph=graph,
            features=features,
            index=index,
            vocabulary=_build_vocabulary(nodes),
            name_pattern=name_pattern,
            names=names,
            dropped_edges=dropped,
            duplicate_nodes=duplicates,
            invalid_entities=invalid_entities,
            invalid_relationships=invalid_relationships,
            _by_id=by_id,
        )


# ============================================================================
# Helpers
# ============================================================================


def _coerce(
    model: type[ModelT],
    items: Iterable[ModelT | Mapping[str, Any]],
    log: logging.Logger | logging.LoggerAdapter = logger,
) -> tuple[list[ModelT], int]:
    """Validate plain dicts into models, skipping (and counting) bad records."""
    valid: list[ModelT] = []
    invalid = 0
    for item in items:
        if isinstance(item, model):
            valid.append(item)
            continue
        try:
            valid.append(model.model_validate(item))
        except ValidationError as e:
            invalid += 1
            log.warning(f"Skipping invalid {model.__name__.lower()}: {e.error_count()} error(s)")
    return valid, invalid


def _edge_type_filter(edge_types: Iterable[RelationshipType | str]) -> set[RelationshipType]:
    """Known relationship types among the requested ones; unknown names match nothing."""
    allowed: set[RelationshipType] = set()
    for edge_type in edge_types:
        try:
            allowed.add(RelationshipType(edge_type))
        except ValueError:
            logger.debug(f"Ignoring unknown relationship type {edge_type!r}")
    return allowed


def _build_name_index(
    nodes: list[GraphNode],
) -> tuple[dict[str, tuple[str, ...]], re.Pattern[str] | None]:
    names: dict[str, list[str]] = {}
    for node in nodes:
        name = node.label.strip().lower()
        if len(name) >= MIN_NAME_LENGTH:
            names.setdefault(name, []).append(node.id)

    if not names:
        return {}, None

    # Longest alternatives first so "order block" beats "order" at one offset
    alternatives = sorted(names, key=lambda n: (-len(n), n))
    pattern = re.compile(
        r"(?<!\w)(" + "|".join(re.escape(n) for n in alternatives) + r")(?!\w)",
        re.IGNORECASE,
    )
    return {name: tuple(ids) for name, ids in names.items()}, pattern


def _build_vocabulary(nodes: list[GraphNode]) -> frozenset[str]:
    """Domain terms: tokens of node names and tags."""
    vocab: set[str] = set()
    for node in nodes:
        for text in (node.label, *node.entity.tags):
            vocab.update(t for t in re.findall(r"\w+", text.lower()) if len(t) >= 3)
    return frozenset(vocab)
