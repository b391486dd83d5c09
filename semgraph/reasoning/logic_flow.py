"""
Logic Flow Planner - Diagnostic Retrieval Plans.

Decomposes a question into the ordered retrieval steps the engine would take
to ground it (explicit mentions, carried session context, semantic fallback,
one-hop expansion) and records which step contributed which node. Planning
reads the graph but never changes engine or session state.
"""

import hashlib

from semgraph.knowledge.graph_store import GraphSnapshot
from semgraph.reasoning.schemas import Intent, LogicFlow, LogicFlowStep, Session, StepKind
from semgraph.reasoning.session_manager import infer_intent
from semgraph.utils.logger import get_logger

logger = get_logger(__name__)


# Terminal steps per intent: (kind, operation, output)
INTENT_STEPS: dict[Intent, list[tuple[StepKind, str, str]]] = {
    Intent.FILTER_DATA: [
        (StepKind.AGGREGATION, "sort_and_rank", "results"),
    ],
    Intent.DEFINE_CONCEPT: [
        (StepKind.INFERENCE, "synthesize_explanation", "explanation"),
    ],
    Intent.ANALYZE_DATA: [
        (StepKind.AGGREGATION, "calculate_statistics", "metrics"),
        (StepKind.INFERENCE, "generate_insights", "analysis"),
    ],
    Intent.EXPLORE_RELATIONSHIPS: [
        (StepKind.AGGREGATION, "summarize_connections", "relationship_map"),
    ],
}
DEFAULT_INTENT_STEPS = [(StepKind.INFERENCE, "generate_response", "answer")]


class LogicFlowPlanner:
    """
    Build deterministic retrieval plans against one graph snapshot.

    The same question, session and snapshot always yield the same plan,
    including its id.

    Usage:
        planner = LogicFlowPlanner(store.snapshot)
        flow = planner.build("What is a fair value gap?", session)
        for step in flow.steps:
            print(step.operation, step.candidates)
    """

    def __init__(
        self,
        snapshot: GraphSnapshot,
        search_k: int = 5,
        context_k: int = 5,
        expand_k: int = 10,
    ) -> None:
        """
        Initialize the planner.

        Args:
            snapshot: Graph generation to plan against
            search_k: Candidates taken from the semantic fallback
            context_k: Candidates carried over from the session
            expand_k: Candidates added by one-hop expansion
        """
        self.snapshot = snapshot
        self.search_k = search_k
        self.context_k = context_k
        self.expand_k = expand_k

    def build(self, question: str, session: Session | None = None) -> LogicFlow:
        """
        Plan how a question would be grounded.

        Args:
            question: The user question
            session: Conversation state, if any

        Returns:
            LogicFlow with ordered steps and per-step candidates
        """
        session_id = session.session_id if session is not None else None
        flow_id = _flow_id(question, session_id, self.snapshot.generation)
        intent = infer_intent(question)

        steps: list[LogicFlowStep] = []
        claimed: list[str] = []

        def add_step(
            kind: StepKind,
            operation: str,
            inputs: list[str],
            output: str,
            candidates: list[str] | None = None,
            note: str = "",
        ) -> None:
            fresh = [c for c in dict.fromkeys(candidates or []) if c not in claimed]
            claimed.extend(fresh)
            steps.append(
                LogicFlowStep(
                    id=f"{flow_id}-step-{len(steps) + 1}",
                    kind=kind,
                    operation=operation,
                    inputs=inputs,
                    output=output,
                    candidates=fresh,
                    note=note,
                )
            )

        explicit = [node.id for node, _ in self.snapshot.find_mentions(question)]
        add_step(StepKind.QUERY, "resolve_mentions", ["question", "graph"], "explicit_entities", explicit)

        if session is not None:
            carried = [nid for nid in session.top_concepts(self.context_k) if nid in self.snapshot]
            add_step(StepKind.QUERY, "session_context", ["session"], "context_entities", carried)

        if not explicit:
            add_step(
                StepKind.QUERY,
                "semantic_search",
                ["question", "feature_index"],
                "similar_entities",
                self._semantic_candidates(question),
                note="no explicit entity mentions",
            )

        if claimed:
            add_step(
                StepKind.QUERY,
                "expand_relationships",
                ["candidates", "relationships"],
                "related_entities",
                self._expand(claimed),
            )

        for kind, operation, output in INTENT_STEPS.get(intent, DEFAULT_INTENT_STEPS):
            add_step(kind, operation, ["candidates", "context"], output)

        flow = LogicFlow(
            id=flow_id,
            question=question,
            session_id=session_id,
            intent=intent,
            steps=steps,
            entry_point=steps[0].id,
            exit_points=[steps[-1].id],
        )
        logger.debug(f"Planned {flow_id}: {len(steps)} steps, {len(claimed)} candidates ({intent.value})")
        return flow

    def _semantic_candidates(self, question: str) -> list[str]:
        features = self.snapshot.features
        if features is None or not question.strip():
            return []
        hits = self.snapshot.index.search(features.embed(question), k=self.search_k)
        return [node_id for node_id, score in hits if score > 0.0]

    def _expand(self, seeds: list[str]) -> list[str]:
        expanded: list[str] = []
        seen = set(seeds)
        for seed in seeds:
            for neighbor in self.snapshot.neighbors(seed):
                if neighbor not in seen:
                    seen.add(neighbor)
                    expanded.append(neighbor)
        return expanded[: self.expand_k]


def _flow_id(question: str, session_id: str | None, generation: int) -> str:
    digest = hashlib.sha1(f"{session_id or ''}\x00{generation}\x00{question}".encode("utf-8"))
    return f"flow-{digest.hexdigest()[:12]}"
