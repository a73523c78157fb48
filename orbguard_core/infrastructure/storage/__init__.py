"""
Storage implementations for analysis history.
"""

from .history_store import HistoryStore

__all__ = ['HistoryStore']
