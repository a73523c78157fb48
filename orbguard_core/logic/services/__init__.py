"""
Business logic services for the OrbGuard forensic engine.
"""

from .correlation_service import CorrelationService
from .orchestrator import AnalysisOrchestrator, RunHandle, ProgressEvent, RunFailure
from .report_service import ReportService

__all__ = [
    'CorrelationService',
    'AnalysisOrchestrator',
    'RunHandle',
    'ProgressEvent',
    'RunFailure',
    'ReportService'
]
