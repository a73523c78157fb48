"""
Finding domain model.

A finding is the correlated, severity-ranked outcome of matching one or more
observations against the indicator set.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, Tuple

from .ioc import IocCategory, IocRecord, Severity, parse_enum


def strongest_indicator(records: Iterable[IocRecord]) -> IocRecord:
    """
    Pick the record that determines a finding's severity and category.

    Highest severity wins; equal severities fall back to category priority
    (pegasus > predator > stalkerware > other), then feed order.
    """
    best = None
    for record in records:
        if best is None or (record.severity.rank, record.category.priority) > \
                (best.severity.rank, best.category.priority):
            best = record
    if best is None:
        raise ValueError("At least one indicator record is required")
    return best


@dataclass(frozen=True)
class Finding:
    """Represents a correlated detection with its supporting evidence."""
    title: str
    description: str
    category: IocCategory
    severity: Severity
    matched_ioc_ids: FrozenSet[str] = field(default_factory=frozenset)
    evidence: Tuple[str, ...] = field(default_factory=tuple)
    confidence: float = 0.0

    def __post_init__(self):
        """Validate finding after initialization."""
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Confidence must be between 0.0 and 1.0, got {self.confidence}")

        if not self.title:
            raise ValueError("Finding must have a title")

        object.__setattr__(self, 'matched_ioc_ids', frozenset(self.matched_ioc_ids))
        object.__setattr__(self, 'evidence', tuple(self.evidence))

    @property
    def dedup_key(self) -> Tuple[IocCategory, FrozenSet[str]]:
        return (self.category, self.matched_ioc_ids)

    def get_summary(self) -> str:
        """Generate summary string for display."""
        return f"[{self.severity.value.upper()}] {self.title} ({self.confidence:.0%})"

    def to_dict(self) -> Dict[str, Any]:
        """Convert finding to dictionary for serialization."""
        return {
            'title': self.title,
            'description': self.description,
            'category': self.category.value,
            'severity': self.severity.value,
            'matchedIocIds': sorted(self.matched_ioc_ids),
            'evidence': list(self.evidence),
            'confidence': round(self.confidence, 6),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Finding':
        return cls(
            title=data['title'],
            description=data.get('description', ""),
            category=parse_enum(IocCategory, data['category'], 'category'),
            severity=parse_enum(Severity, data['severity'], 'severity'),
            matched_ioc_ids=frozenset(data.get('matchedIocIds', [])),
            evidence=tuple(data.get('evidence', [])),
            confidence=float(data.get('confidence', 0.0)),
        )
