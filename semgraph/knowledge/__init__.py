"""
Knowledge Layer - Graph, Features, Similarity.

Hashed TF-IDF features + cosine index for meaning-based search, and a
snapshot graph store for typed entity relationships.
"""

from semgraph.knowledge.clustering import ClusteringEngine, average_cluster_size
from semgraph.knowledge.enrichment import TextEnricher
from semgraph.knowledge.feature_extractor import FeatureConfig, FeatureExtractor, FeatureSpace
from semgraph.knowledge.graph_store import (
    GraphEdge,
    GraphNode,
    GraphSnapshot,
    GraphStore,
    SubGraph,
)
from semgraph.knowledge.schemas import (
    CandidateRelationship,
    ConnectionType,
    Entity,
    EntityType,
    MarkdownEnrichment,
    RebuildReport,
    Relationship,
    RelationshipType,
    SearchHit,
    SimilarityMode,
    SimilarNode,
)
from semgraph.knowledge.similarity_index import SimilarityIndex

__all__ = [
    # Stores
    "GraphStore",
    "GraphSnapshot",
    "GraphNode",
    "GraphEdge",
    "SubGraph",
    # Features & similarity
    "FeatureExtractor",
    "FeatureConfig",
    "FeatureSpace",
    "SimilarityIndex",
    # Clustering
    "ClusteringEngine",
    "average_cluster_size",
    # Enrichment
    "TextEnricher",
    # Schemas
    "Entity",
    "Relationship",
    "EntityType",
    "RelationshipType",
    "SimilarityMode",
    "ConnectionType",
    "SearchHit",
    "SimilarNode",
    "RebuildReport",
    "MarkdownEnrichment",
    "CandidateRelationship",
]
