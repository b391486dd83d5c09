"""
Semantic Knowledge-Graph Engine - Application Settings.

Environment-driven configuration shared by the engine, its scripts and tests.
"""

from app.config import Settings, get_settings

__all__ = [
    "get_settings",
    "Settings",
]
