"""
Application layer for the OrbGuard forensic engine.

This module contains the engine facade used by the UI layer and the CLI.
"""

from .forensic_engine import ForensicEngine

__all__ = [
    'ForensicEngine'
]
