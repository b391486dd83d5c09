"""
Pydantic Schemas for the Knowledge Layer.

Defines the entity/relationship snapshot the host feeds in, and the plain-data
results the engine hands back (search hits, enrichment reports, rebuild stats).
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class EntityType(str, Enum):
    """
    Closed set of entity kinds in the knowledge base.

    These are the "nodes" in the graph.
    """

    CONCEPT = "concept"
    MODEL = "model"
    TRADE = "trade"
    SCHEMA = "schema"
    CODE_MODULE = "code_module"
    DOCUMENT = "document"
    JOURNAL = "journal"
    TRAINING_DATA = "training_data"
    CHART = "chart"


class RelationshipType(str, Enum):
    """
    Closed set of semantic links between entities.

    These are the "edges" in the graph.
    """

    CONCEPT_USED_IN_MODEL = "concept_used_in_model"
    MODEL_PRODUCES_TRADE = "model_produces_trade"
    CONCEPT_RELATED_TO = "concept_related_to"
    CONCEPT_DETECTED_BY = "concept_detected_by"
    TRADE_USES_CONCEPT = "trade_uses_concept"
    SCHEMA_VALIDATES = "schema_validates"
    DOCUMENT_DEFINES = "document_defines"
    CONCEPT_PREREQUISITE = "concept_prerequisite"


class FlowDirection(str, Enum):
    """Which way reasoning may travel along an edge."""

    FORWARD = "forward"
    BACKWARD = "backward"
    BIDIRECTIONAL = "bidirectional"


class SimilarityMode(str, Enum):
    """Candidate pool for node-seeded similarity search."""

    DIRECT = "direct"  # only graph neighbors of the seed
    GLOBAL = "global"  # the whole snapshot


class ConnectionType(str, Enum):
    """How a similar node relates to the seed node."""

    DIRECT = "direct"
    SIMILAR = "similar"


class Entity(BaseModel):
    """
    One knowledge-base entity as supplied by the host.

    The engine never mutates these; nodes are built from frozen copies.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Opaque stable identifier")
    kind: EntityType = Field(..., description="Entity category")
    domain: str = Field(default="", description="Grouping label")
    name: str = Field(..., description="Display name")
    description: str = Field(default="", description="Short description")
    tags: tuple[str, ...] = Field(default=(), description="Free-form tags")
    content: str | None = Field(default=None, description="Optional full text body")
    sources: tuple[str, ...] = Field(
        default=(),
        description="Where the entity came from (file paths, upload ids)",
    )
    metadata: dict[str, Any] = Field(default_factory=dict)


class Relationship(BaseModel):
    """
    One directed, typed relationship between two entities.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Unique relationship ID")
    type: RelationshipType = Field(..., description="Type of relationship")
    source_id: str = Field(..., description="Source entity ID")
    target_id: str = Field(..., description="Target entity ID")
    metadata: dict[str, Any] = Field(default_factory=dict)


class RebuildReport(BaseModel):
    """Diagnostics for one snapshot rebuild."""

    generation: int
    node_count: int = 0
    edge_count: int = 0
    dropped_edges: int = Field(default=0, description="Edges referencing unknown nodes")
    duplicate_nodes: int = Field(default=0, description="Entities whose id was already seen")
    invalid_entities: int = 0
    invalid_relationships: int = 0
    duration_seconds: float = 0.0


class SearchHit(BaseModel):
    """A node returned by free-text semantic search."""

    node: Entity
    similarity: float = Field(ge=-1.0, le=1.0)


class SimilarNode(BaseModel):
    """A node returned by node-seeded similarity search."""

    node: Entity
    similarity: float = Field(ge=-1.0, le=1.0)
    connection_type: ConnectionType


# ============================================================================
# Enrichment
# ============================================================================


class CandidateRelationship(BaseModel):
    """
    A relationship suggested by text co-occurrence.

    Advisory only: the engine never turns these into graph edges.
    """

    source: str = Field(..., description="First concept name")
    target: str = Field(..., description="Second concept name")
    relation: str = Field(default="related")
    suggested_type: RelationshipType | None = Field(
        default=None,
        description="Typed hint when a linking verb joins the two concepts",
    )
    confidence: float = Field(default=0.3, ge=0.0, le=1.0)
    paragraph_index: int = Field(default=0, ge=0)
    context: str = Field(default="", description="Paragraph excerpt")


class MarkdownSection(BaseModel):
    """A heading and the text under it."""

    heading: str
    level: int = Field(ge=1, le=6)
    content: str = ""


class CodeBlock(BaseModel):
    """A fenced code block."""

    language: str = ""
    content: str = ""


class MarkdownEnrichment(BaseModel):
    """Everything the enricher found in one document."""

    title: str
    concepts: list[str] = Field(default_factory=list)
    matched_node_ids: list[str] = Field(default_factory=list)
    relationships: list[CandidateRelationship] = Field(default_factory=list)
    sections: list[MarkdownSection] = Field(default_factory=list)
    code_blocks: list[CodeBlock] = Field(default_factory=list)
    word_count: int = 0
    concept_density: float = Field(default=0.0, description="Concepts per 100 words")
    complexity: float = Field(default=0.0, ge=0.0, le=1.0)

    @property
    def concept_count(self) -> int:
        return len(self.concepts)
