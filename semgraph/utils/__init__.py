"""
Utility modules for the knowledge-graph engine.

Provides logging utilities.
"""

from semgraph.utils.logger import (
    LogContext,
    get_logger,
    log_duration,
    setup_logging,
)

__all__ = [
    "get_logger",
    "setup_logging",
    "LogContext",
    "log_duration",
]
