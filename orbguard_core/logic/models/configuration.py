"""
Configuration domain models.

Contains the data structures for managing engine configuration and settings.
"""

from dataclasses import dataclass, field
from typing import Dict, Any, Optional
import json
from pathlib import Path

import yaml


@dataclass
class CorrelationConfig:
    """Configuration for indicator correlation."""
    max_evidence: int = 5
    parallel_workers: int = 4
    # Below this many observations, lookups run inline instead of on the pool
    parallel_threshold: int = 2000
    chunk_size: int = 500

    def __post_init__(self):
        """Validate correlation configuration."""
        if self.max_evidence < 1:
            raise ValueError("max_evidence must be at least 1")

        if self.parallel_workers < 1:
            raise ValueError("parallel_workers must be at least 1")

        if self.chunk_size < 1:
            raise ValueError("chunk_size must be positive")


@dataclass
class DataUsageConfig:
    """Configuration for the outbound-traffic outlier rule."""
    multiplier: float = 3.0
    baseline_window: int = 7
    min_baseline_samples: int = 1

    def __post_init__(self):
        """Validate data usage configuration."""
        if self.multiplier <= 1.0:
            raise ValueError("multiplier must be greater than 1.0")

        if self.baseline_window < 1:
            raise ValueError("baseline_window must be at least 1")

        if not 1 <= self.min_baseline_samples <= self.baseline_window:
            raise ValueError("min_baseline_samples must be between 1 and baseline_window")


@dataclass
class ExtractorConfig:
    """Work caps applied by every extractor."""
    max_lines: int = 1000000
    max_files: int = 50000
    max_line_length: int = 8000
    chunk_size: int = 500

    def __post_init__(self):
        """Validate extractor configuration."""
        for name in ('max_lines', 'max_files', 'max_line_length', 'chunk_size'):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")


@dataclass
class HistoryConfig:
    """Configuration for the analysis history archive."""
    path: Optional[str] = None


@dataclass
class EngineConfig:
    """
    Main configuration for the forensic engine.

    This centralizes all tunables instead of having magic numbers scattered throughout the code.
    """
    correlation: CorrelationConfig = field(default_factory=CorrelationConfig)
    data_usage: DataUsageConfig = field(default_factory=DataUsageConfig)
    extractors: ExtractorConfig = field(default_factory=ExtractorConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)

    # Optional IOC feed loaded at engine start
    ioc_feed: Optional[str] = None

    @classmethod
    def from_file(cls, file_path: str) -> 'EngineConfig':
        """Load configuration from a file (JSON or YAML)."""
        path = Path(file_path)

        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {file_path}")

        with open(path, 'r', encoding='utf-8') as f:
            if path.suffix.lower() in ['.yml', '.yaml']:
                data = yaml.safe_load(f) or {}
            else:
                data = json.load(f)

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EngineConfig':
        """Create configuration from dictionary."""
        correlation_data = data.get('correlation', {}) or {}
        correlation = CorrelationConfig(
            max_evidence=correlation_data.get('max_evidence', 5),
            parallel_workers=correlation_data.get('parallel_workers', 4),
            parallel_threshold=correlation_data.get('parallel_threshold', 2000),
            chunk_size=correlation_data.get('chunk_size', 500)
        )

        usage_data = data.get('data_usage', {}) or {}
        data_usage = DataUsageConfig(
            multiplier=float(usage_data.get('multiplier', 3.0)),
            baseline_window=usage_data.get('baseline_window', 7),
            min_baseline_samples=usage_data.get('min_baseline_samples', 1)
        )

        extractor_data = data.get('extractors', {}) or {}
        extractors = ExtractorConfig(
            max_lines=extractor_data.get('max_lines', 1000000),
            max_files=extractor_data.get('max_files', 50000),
            max_line_length=extractor_data.get('max_line_length', 8000),
            chunk_size=extractor_data.get('chunk_size', 500)
        )

        history_data = data.get('history', {}) or {}
        history = HistoryConfig(path=history_data.get('path'))

        return cls(
            correlation=correlation,
            data_usage=data_usage,
            extractors=extractors,
            history=history,
            ioc_feed=data.get('ioc_feed')
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            'correlation': {
                'max_evidence': self.correlation.max_evidence,
                'parallel_workers': self.correlation.parallel_workers,
                'parallel_threshold': self.correlation.parallel_threshold,
                'chunk_size': self.correlation.chunk_size
            },
            'data_usage': {
                'multiplier': self.data_usage.multiplier,
                'baseline_window': self.data_usage.baseline_window,
                'min_baseline_samples': self.data_usage.min_baseline_samples
            },
            'extractors': {
                'max_lines': self.extractors.max_lines,
                'max_files': self.extractors.max_files,
                'max_line_length': self.extractors.max_line_length,
                'chunk_size': self.extractors.chunk_size
            },
            'history': {
                'path': self.history.path
            },
            'ioc_feed': self.ioc_feed
        }

    def save_to_file(self, file_path: str):
        """Save configuration to a file."""
        path = Path(file_path)

        with open(path, 'w', encoding='utf-8') as f:
            if path.suffix.lower() in ['.yml', '.yaml']:
                yaml.dump(self.to_dict(), f, default_flow_style=False, indent=2)
            else:
                json.dump(self.to_dict(), f, indent=2)
