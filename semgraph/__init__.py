"""
Semantic Knowledge-Graph Engine.

This package contains the core functionality for:
- Building an in-memory graph from entity/relationship snapshots
- Meaning-based search and similarity clustering (fully offline)
- Markdown enrichment
- Per-conversation grounding state
"""

from semgraph.engine import KnowledgeGraphEngine
from semgraph.knowledge import (
    ClusteringEngine,
    Entity,
    EntityType,
    FeatureExtractor,
    GraphStore,
    Relationship,
    RelationshipType,
    SimilarityIndex,
    SimilarityMode,
    TextEnricher,
)
from semgraph.reasoning import LogicFlowPlanner, SessionManager, SessionSweeper

__all__ = [
    # Facade
    "KnowledgeGraphEngine",
    # Knowledge
    "FeatureExtractor",
    "SimilarityIndex",
    "GraphStore",
    "ClusteringEngine",
    "TextEnricher",
    "Entity",
    "Relationship",
    "EntityType",
    "RelationshipType",
    "SimilarityMode",
    # Reasoning
    "SessionManager",
    "SessionSweeper",
    "LogicFlowPlanner",
]
