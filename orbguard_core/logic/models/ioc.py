"""
Indicator-of-Compromise domain models.

Contains the indicator record, its closed enumerations, and the derived
statistics view.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional, Union


class Severity(Enum):
    """Severity levels shared by indicators and findings."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def __lt__(self, other):
        """Enable comparison between severity levels."""
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank >= other.rank


_SEVERITY_RANK = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class IocCategory(Enum):
    """Spyware family an indicator belongs to."""
    PEGASUS = "pegasus"
    PREDATOR = "predator"
    STALKERWARE = "stalkerware"
    OTHER = "other"

    @property
    def priority(self) -> int:
        """Tie-break priority when severities are equal (higher wins)."""
        return _CATEGORY_PRIORITY[self]

    @property
    def display_name(self) -> str:
        return _CATEGORY_DISPLAY[self]


_CATEGORY_PRIORITY = {
    IocCategory.PEGASUS: 4,
    IocCategory.PREDATOR: 3,
    IocCategory.STALKERWARE: 2,
    IocCategory.OTHER: 1,
}

_CATEGORY_DISPLAY = {
    IocCategory.PEGASUS: "Pegasus",
    IocCategory.PREDATOR: "Predator",
    IocCategory.STALKERWARE: "Stalkerware",
    IocCategory.OTHER: "Other",
}


class PatternKind(Enum):
    """How an indicator's pattern is matched against an observation value."""
    LITERAL = "literal"
    REGEX = "regex"
    HASH = "hash"
    PATH_GLOB = "path-glob"


class IocSource(Enum):
    """Where an indicator was published."""
    CITIZEN_LAB = "citizen-lab"
    MVT = "mvt"
    PROPRIETARY = "proprietary"
    COMMUNITY = "community"


def parse_enum(enum_cls, raw: Any, field_name: str):
    """Convert a raw feed value into a member of ``enum_cls``."""
    if isinstance(raw, enum_cls):
        return raw
    if not isinstance(raw, str):
        raise ValueError(f"{field_name} must be a string, got {type(raw).__name__}")
    normalized = raw.strip().lower().replace("_", "-")
    for member in enum_cls:
        if member.value == normalized:
            return member
    allowed = ", ".join(m.value for m in enum_cls)
    raise ValueError(f"Invalid {field_name} '{raw}' (expected one of: {allowed})")


@dataclass(frozen=True)
class IocRecord:
    """
    A single indicator of compromise.

    Immutable once loaded and uniquely identified by ``id`` within a set.
    """
    id: str
    pattern: Union[str, bytes]
    pattern_kind: PatternKind
    category: IocCategory
    severity: Severity
    source: IocSource = IocSource.COMMUNITY
    added_at: Optional[datetime] = None
    description: str = ""

    def __post_init__(self):
        """Validate record after initialization."""
        if not self.id or not str(self.id).strip():
            raise ValueError("IOC record must have an id")

        if not isinstance(self.pattern, (str, bytes)):
            raise ValueError(f"IOC {self.id}: pattern must be str or bytes")

        if not self.pattern or (isinstance(self.pattern, str) and not self.pattern.strip()):
            raise ValueError(f"IOC {self.id}: pattern cannot be empty")

        if not isinstance(self.category, IocCategory):
            raise ValueError(f"IOC {self.id}: category must be set")

        if not isinstance(self.severity, Severity):
            raise ValueError(f"IOC {self.id}: severity must be set")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'IocRecord':
        """Create a record from a feed entry (camelCase or snake_case keys)."""
        if not isinstance(data, dict):
            raise ValueError(f"IOC entry must be a mapping, got {type(data).__name__}")

        pattern_kind = data.get('pattern_kind', data.get('patternKind'))
        added_at = data.get('added_at', data.get('addedAt'))

        if isinstance(added_at, str):
            added_at = datetime.fromisoformat(added_at.replace('Z', '+00:00'))
        elif added_at is not None and not isinstance(added_at, datetime):
            raise ValueError(f"addedAt must be an ISO-8601 string, got {added_at!r}")

        raw_id = data.get('id')
        return cls(
            id=str(raw_id) if raw_id is not None else "",
            pattern=data.get('pattern', ""),
            pattern_kind=parse_enum(PatternKind, pattern_kind, 'patternKind'),
            category=parse_enum(IocCategory, data.get('category'), 'category'),
            severity=parse_enum(Severity, data.get('severity'), 'severity'),
            source=parse_enum(IocSource, data.get('source', 'community'), 'source'),
            added_at=added_at,
            description=data.get('description', "") or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert record to dictionary for serialization."""
        pattern = self.pattern
        if isinstance(pattern, bytes):
            pattern = pattern.hex()
        return {
            'id': self.id,
            'pattern': pattern,
            'patternKind': self.pattern_kind.value,
            'category': self.category.value,
            'severity': self.severity.value,
            'source': self.source.value,
            'addedAt': self.added_at.isoformat() if self.added_at else None,
            'description': self.description,
        }


@dataclass(frozen=True)
class IocStats:
    """Derived statistics over the active indicator set. Never persisted."""
    total_iocs: int
    by_category: Dict[IocCategory, int] = field(default_factory=dict)
    last_updated: Optional[datetime] = None
    version: Optional[str] = None

    def count(self, category: IocCategory) -> int:
        return self.by_category.get(category, 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'totalIOCs': self.total_iocs,
            'byCategory': {category.value: self.count(category) for category in IocCategory},
            'lastUpdated': self.last_updated.isoformat() if self.last_updated else None,
            'version': self.version,
        }
