"""
Artifact extractors turning raw forensic inputs into observations.
"""

from .base_extractor import BaseExtractor, ExtractionResult, ExtractionState, Checkpoint
from .shutdown_log_extractor import ShutdownLogExtractor
from .backup_extractor import BackupExtractor
from .sysdiagnose_extractor import SysdiagnoseExtractor
from .logcat_extractor import LogcatExtractor
from .data_usage_extractor import DataUsageExtractor
from .indicator_list_extractor import IndicatorListExtractor
from .extractor_registry import ExtractorRegistry

__all__ = [
    'BaseExtractor',
    'ExtractionResult',
    'ExtractionState',
    'Checkpoint',
    'ShutdownLogExtractor',
    'BackupExtractor',
    'SysdiagnoseExtractor',
    'LogcatExtractor',
    'DataUsageExtractor',
    'IndicatorListExtractor',
    'ExtractorRegistry'
]
