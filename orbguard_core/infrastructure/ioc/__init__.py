"""
Indicator-of-Compromise storage and matching.
"""

from .ioc_store import IocStore, IocSet, ToggleIoc, parse_ioc_feed

__all__ = ['IocStore', 'IocSet', 'ToggleIoc', 'parse_ioc_feed']
