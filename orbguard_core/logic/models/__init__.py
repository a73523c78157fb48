"""
Domain models for the OrbGuard forensic engine.

This module contains all the core data structures used throughout the system.
These models represent the business domain and are independent of any external concerns.
"""

from .ioc import IocRecord, IocStats, IocCategory, PatternKind, IocSource, Severity
from .observation import Observation, ObservationKind, AnalysisType
from .finding import Finding, strongest_indicator
from .analysis_result import AnalysisResult, RunState
from .configuration import EngineConfig, CorrelationConfig, DataUsageConfig, ExtractorConfig, HistoryConfig
from .errors import (
    ForensicError,
    IocLoadError,
    MalformedIocError,
    EmptyIocSetError,
    ExtractError,
    InvalidFormatError,
    NoRecognizedContentError,
    TruncatedError,
    OrchestratorError,
    OrchestratorBusyError,
    RunCancelledError,
    EngineNotReadyError,
    CorrelationError,
)

__all__ = [
    'IocRecord',
    'IocStats',
    'IocCategory',
    'PatternKind',
    'IocSource',
    'Severity',
    'Observation',
    'ObservationKind',
    'AnalysisType',
    'Finding',
    'strongest_indicator',
    'AnalysisResult',
    'RunState',
    'EngineConfig',
    'CorrelationConfig',
    'DataUsageConfig',
    'ExtractorConfig',
    'HistoryConfig',
    'ForensicError',
    'IocLoadError',
    'MalformedIocError',
    'EmptyIocSetError',
    'ExtractError',
    'InvalidFormatError',
    'NoRecognizedContentError',
    'TruncatedError',
    'OrchestratorError',
    'OrchestratorBusyError',
    'RunCancelledError',
    'EngineNotReadyError',
    'CorrelationError'
]
