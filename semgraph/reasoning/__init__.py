"""
Reasoning Layer - Conversation Grounding.

Per-session concept tracking, logic-flow plans and the expiry sweeper.
"""

from semgraph.reasoning.logic_flow import LogicFlowPlanner
from semgraph.reasoning.schemas import (
    ChatMessage,
    Intent,
    LogicFlow,
    LogicFlowStep,
    Session,
    StepKind,
)
from semgraph.reasoning.session_manager import SessionManager, infer_intent
from semgraph.reasoning.sweeper import SessionSweeper, SweeperError

__all__ = [
    # Sessions
    "SessionManager",
    "SessionSweeper",
    "SweeperError",
    "infer_intent",
    # Planning
    "LogicFlowPlanner",
    # Schemas
    "ChatMessage",
    "Session",
    "Intent",
    "LogicFlow",
    "LogicFlowStep",
    "StepKind",
]
