"""
Pydantic Schemas for Conversational Reasoning State.

Chat messages coming from the host, the per-session grounding record the
engine keeps, and the diagnostic logic-flow plan built for a question.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Intent(str, Enum):
    """Coarse intent of a user question."""

    DEFINE_CONCEPT = "define_concept"
    FILTER_DATA = "filter_data"
    ANALYZE_DATA = "analyze_data"
    EXPLAIN_MECHANISM = "explain_mechanism"
    EXPLORE_RELATIONSHIPS = "explore_relationships"
    GENERAL_QUERY = "general_query"


class ChatMessage(BaseModel):
    """One turn of a conversation, as supplied by the host."""

    id: str = ""
    role: Literal["user", "assistant"] = "user"
    content: str = ""
    source_ids: list[str] = Field(
        default_factory=list,
        description="Entity ids the answer was grounded on (assistant turns)",
    )
    timestamp: datetime | None = None

    @model_validator(mode="before")
    @classmethod
    def fold_sources(cls, data: Any) -> Any:
        """Accept ``sources`` (entities, entity dicts or ids) as source ids."""
        if not isinstance(data, dict) or "sources" not in data:
            return data
        data = dict(data)
        ids = list(data.get("source_ids") or [])
        for source in data.pop("sources") or []:
            if isinstance(source, str):
                ids.append(source)
            elif isinstance(source, dict) and source.get("id"):
                ids.append(str(source["id"]))
            elif getattr(source, "id", None):
                ids.append(str(source.id))
        data["source_ids"] = list(dict.fromkeys(ids))
        return data


class Session(BaseModel):
    """
    Grounding state of one conversation.

    Owned by the SessionManager; callers only ever receive copies.
    """

    session_id: str
    created_at: datetime = Field(default_factory=utcnow)
    last_active_at: datetime = Field(default_factory=utcnow)

    referenced_concepts: dict[str, float] = Field(
        default_factory=dict,
        description="Node id -> recency-decayed mention weight",
    )
    active_entities: list[str] = Field(default_factory=list)
    query_history: list[str] = Field(default_factory=list)

    conversation_topic: str | None = Field(default=None, description="Name of the dominant concept")
    topic_node_id: str | None = None
    confidence_score: float = Field(default=0.5, ge=0.0, le=1.0)
    last_inference: Intent | None = None

    turn_groundings: list[bool] = Field(
        default_factory=list,
        description="Whether each recent turn resolved to a known node (oldest first)",
    )
    focus_nodes: list[str] = Field(default_factory=list)
    context_nodes: list[str] = Field(
        default_factory=list,
        description="Focus nodes plus their one-hop neighbors",
    )
    processed_messages: int = Field(default=0, ge=0)

    @field_validator("confidence_score", mode="before")
    @classmethod
    def clamp_confidence(cls, value: Any) -> Any:
        if isinstance(value, (int, float)):
            return min(max(float(value), 0.0), 1.0)
        return value

    @property
    def turn_count(self) -> int:
        return self.processed_messages

    def top_concepts(self, limit: int = 5) -> list[str]:
        """Referenced node ids, heaviest first."""
        ranked = sorted(self.referenced_concepts.items(), key=lambda kv: -kv[1])
        return [node_id for node_id, _ in ranked[:limit]]


# ============================================================================
# Logic Flow
# ============================================================================


class StepKind(str, Enum):
    """What a logic-flow step does."""

    QUERY = "query"
    INFERENCE = "inference"
    AGGREGATION = "aggregation"
    CONDITION = "condition"
    ACTION = "action"


class LogicFlowStep(BaseModel):
    """One step of a retrieval plan."""

    id: str
    kind: StepKind
    operation: str
    inputs: list[str] = Field(default_factory=list)
    output: str
    candidates: list[str] = Field(
        default_factory=list,
        description="Node ids this step contributed (each id appears in one step only)",
    )
    note: str = ""


class LogicFlow(BaseModel):
    """A deterministic decomposition of a question into retrieval steps."""

    id: str
    question: str
    session_id: str | None = None
    intent: Intent
    steps: list[LogicFlowStep] = Field(default_factory=list)
    entry_point: str = ""
    exit_points: list[str] = Field(default_factory=list)

    @property
    def candidates(self) -> list[str]:
        """All contributed node ids, in step order."""
        return [c for step in self.steps for c in step.candidates]

    def contributor_of(self, node_id: str) -> str | None:
        """Operation of the step that contributed a node."""
        for step in self.steps:
            if node_id in step.candidates:
                return step.operation
        return None
