"""
Enhanced logging infrastructure for the OrbGuard forensic engine.
"""

from .enhanced_logging import EnhancedLogger, enhanced_logger

__all__ = [
    'EnhancedLogger',
    'enhanced_logger'
]
