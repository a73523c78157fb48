"""
Observation domain models.

An observation is one normalized fact pulled out of a raw forensic artifact,
ready to be matched against the indicator set. Observations only live for the
duration of a single analysis run.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional


class AnalysisType(Enum):
    """Kinds of forensic analysis the engine can run."""
    FULL_SCAN = "fullScan"
    SHUTDOWN_LOG = "shutdownLog"
    BACKUP = "backup"
    SYSDIAGNOSE = "sysdiagnose"
    LOGCAT = "logcat"
    DATA_USAGE = "dataUsage"

    @property
    def display_name(self) -> str:
        return _ANALYSIS_TYPE_INFO[self][0]

    @property
    def description(self) -> str:
        return _ANALYSIS_TYPE_INFO[self][1]

    @classmethod
    def from_value(cls, raw: str) -> 'AnalysisType':
        """Resolve either the wire value (``shutdownLog``) or member name (``SHUTDOWN_LOG``)."""
        for member in cls:
            if raw == member.value or raw.upper() == member.name:
                return member
        raise ValueError(f"Unknown analysis type: {raw}")


_ANALYSIS_TYPE_INFO = {
    AnalysisType.FULL_SCAN: ("Full Analysis", "Comprehensive forensic scan"),
    AnalysisType.SHUTDOWN_LOG: ("Shutdown Log", "Analyze iOS shutdown.log for Pegasus indicators"),
    AnalysisType.BACKUP: ("Backup Analysis", "Scan iOS backup for spyware artifacts"),
    AnalysisType.SYSDIAGNOSE: ("Sysdiagnose", "Deep analysis of iOS system diagnostics"),
    AnalysisType.LOGCAT: ("Logcat Analysis", "Analyze Android logcat for malware"),
    AnalysisType.DATA_USAGE: ("Data Usage", "Analyze suspicious data usage patterns"),
}


class ObservationKind(Enum):
    """Type of fact an observation represents."""
    PROCESS = "process"
    FILE = "file"
    NETWORK = "network"
    LOG_LINE = "log-line"
    COUNTER = "counter"


@dataclass(frozen=True)
class Observation:
    """A single typed fact extracted from an artifact."""
    kind: ObservationKind
    value: str
    extracted_from: AnalysisType
    context: Mapping[str, Any] = field(default_factory=dict)
    timestamp: Optional[datetime] = None

    def __post_init__(self):
        """Freeze the context mapping so observations can be shared across worker threads."""
        if not isinstance(self.value, str):
            raise ValueError(f"Observation value must be a string, got {type(self.value).__name__}")
        object.__setattr__(self, 'context', MappingProxyType(dict(self.context)))

    def excerpt(self, max_length: int = 200) -> str:
        """Short human-readable representation used as finding evidence."""
        details = []
        for key in sorted(self.context):
            value = self.context[key]
            if isinstance(value, (list, tuple, set, frozenset)):
                value = ",".join(str(v) for v in sorted(value))
            details.append(f"{key}={value}")

        text = f"[{self.kind.value}] {self.value}"
        if details:
            text += f" ({'; '.join(details)})"
        if self.timestamp:
            text += f" @ {self.timestamp.isoformat()}"

        if len(text) > max_length:
            text = text[:max_length - 3] + "..."
        return text

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind.value,
            'value': self.value,
            'context': dict(self.context),
            'extractedFrom': self.extracted_from.value,
            'timestamp': self.timestamp.isoformat() if self.timestamp else None,
        }
