"""
Analysis result domain models.

Contains the immutable result of one analysis run and the run state machine.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .finding import Finding
from .ioc import Severity
from .observation import AnalysisType


class RunState(Enum):
    """Lifecycle states of a single analysis run."""
    IDLE = "idle"
    EXTRACTING = "extracting"
    CORRELATING = "correlating"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RunState.COMPLETED, RunState.FAILED, RunState.CANCELLED)

    @property
    def is_cancellable(self) -> bool:
        return self in (RunState.EXTRACTING, RunState.CORRELATING)


@dataclass(frozen=True)
class AnalysisResult:
    """
    Complete result of one analysis run.

    Created at run start with no findings, replaced by the orchestrator as the
    run progresses, and frozen for good once ``completed_at`` is stamped.
    """
    id: str
    type: AnalysisType
    started_at: datetime
    completed_at: Optional[datetime] = None
    findings: Tuple[Finding, ...] = field(default_factory=tuple)

    # Quality indicators
    truncated: bool = False
    observations_analyzed: int = 0
    indicators_checked: int = 0
    ioc_version: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, 'findings', tuple(self.findings))

    @property
    def has_threat(self) -> bool:
        return any(f.severity >= Severity.MEDIUM for f in self.findings)

    @property
    def is_complete(self) -> bool:
        return self.completed_at is not None

    @property
    def matched_indicators(self) -> int:
        return len({ioc_id for f in self.findings for ioc_id in f.matched_ioc_ids})

    def complete(self, findings: List[Finding], completed_at: datetime, **changes) -> 'AnalysisResult':
        """Return the frozen, completed copy of this result."""
        if self.is_complete:
            raise ValueError(f"Analysis {self.id} is already complete")
        return replace(self, findings=tuple(findings), completed_at=completed_at, **changes)

    def get_findings_by_severity(self, severity: Severity) -> List[Finding]:
        return [f for f in self.findings if f.severity == severity]

    def get_summary_statistics(self) -> Dict[str, Any]:
        """Get summary statistics for the analysis."""
        severity_counts = {s.value: 0 for s in Severity}
        category_counts: Dict[str, int] = {}
        for finding in self.findings:
            severity_counts[finding.severity.value] += 1
            category_counts[finding.category.value] = category_counts.get(finding.category.value, 0) + 1

        return {
            'total_findings': len(self.findings),
            'severity_counts': severity_counts,
            'category_counts': category_counts,
            'matched_indicators': self.matched_indicators,
            'has_threat': self.has_threat,
            'truncated': self.truncated,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert analysis result to dictionary for serialization."""
        return {
            'id': self.id,
            'type': self.type.value,
            'startedAt': self.started_at.isoformat(),
            'completedAt': self.completed_at.isoformat() if self.completed_at else None,
            'findings': [finding.to_dict() for finding in self.findings],
            'hasThreat': self.has_threat,
            'truncated': self.truncated,
            'observationsAnalyzed': self.observations_analyzed,
            'indicatorsChecked': self.indicators_checked,
            'iocVersion': self.ioc_version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AnalysisResult':
        completed_at = data.get('completedAt')
        return cls(
            id=data['id'],
            type=AnalysisType.from_value(data['type']),
            started_at=datetime.fromisoformat(data['startedAt']),
            completed_at=datetime.fromisoformat(completed_at) if completed_at else None,
            findings=tuple(Finding.from_dict(f) for f in data.get('findings', [])),
            truncated=bool(data.get('truncated', False)),
            observations_analyzed=int(data.get('observationsAnalyzed', 0)),
            indicators_checked=int(data.get('indicatorsChecked', 0)),
            ioc_version=data.get('iocVersion'),
        )
