"""
Infrastructure layer for the OrbGuard forensic engine.

This module contains technical concerns: indicator loading, artifact
extraction, history storage and logging.
"""

from .ioc import IocStore, IocSet, ToggleIoc, parse_ioc_feed
from .extractors import ExtractorRegistry
from .storage import HistoryStore
from .logging import enhanced_logger

__all__ = [
    'IocStore',
    'IocSet',
    'ToggleIoc',
    'parse_ioc_feed',
    'ExtractorRegistry',
    'HistoryStore',
    'enhanced_logger'
]
