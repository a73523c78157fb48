"""
History store implementation.

Append-only archive of completed analysis results, optionally persisted as
JSON lines (one result per line).
"""

import json
import logging
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from orbguard_core.logic.models import AnalysisResult, Finding, Severity


class HistoryStore:
    """
    Storage service for completed analysis results.

    Results are never updated or removed. Reads return snapshots taken under
    the lock, so iteration is consistent even while an append is in flight.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        """
        Initialize the history store.

        Args:
            path: Optional JSON-lines file; existing entries are loaded
        """
        self.path = Path(path) if path else None
        self._results: List[AnalysisResult] = []
        self._lock = threading.Lock()
        self.logger = logging.getLogger("history.store")

        if self.path is not None and self.path.exists():
            self._results = self._load(self.path)
            self.logger.info(f"Loaded {len(self._results)} analyses from {self.path}")

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)

    def append(self, result: AnalysisResult) -> None:
        """
        Append a completed result.

        Raises:
            ValueError: If the result is not complete or already stored
        """
        if not result.is_complete:
            raise ValueError(f"Analysis {result.id} is not complete")

        with self._lock:
            if any(existing.id == result.id for existing in self._results):
                raise ValueError(f"Analysis {result.id} is already in history")

            if self.path is not None:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.path, 'a', encoding='utf-8') as f:
                    f.write(json.dumps(result.to_dict(), ensure_ascii=False) + '\n')

            self._results.append(result)

        self.logger.debug(f"Stored analysis {result.id} ({len(result.findings)} findings)")

    def all(self) -> Tuple[AnalysisResult, ...]:
        """All results, newest first."""
        with self._lock:
            return tuple(reversed(self._results))

    def stats_since(self, duration: timedelta, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Summary of analyses completed within ``duration`` of ``now``."""
        cutoff = (now or datetime.now(timezone.utc)) - duration
        recent = [r for r in self.all() if r.completed_at and r.completed_at >= cutoff]

        by_severity = {s.value: 0 for s in Severity}
        by_category: Dict[str, int] = {}
        for result in recent:
            for finding in result.findings:
                by_severity[finding.severity.value] += 1
                by_category[finding.category.value] = by_category.get(finding.category.value, 0) + 1

        return {
            'since': cutoff.isoformat(),
            'analyses': len(recent),
            'analyses_with_threats': sum(1 for r in recent if r.has_threat),
            'findings': sum(len(r.findings) for r in recent),
            'by_severity': by_severity,
            'by_category': by_category,
            'last_analysis': recent[0].completed_at.isoformat() if recent else None,
        }

    def recent_threats(self, limit: int = 10) -> List[Tuple[AnalysisResult, Finding]]:
        """High and critical findings across history, newest analysis first."""
        threats = []
        for result in self.all():
            for finding in result.findings:
                if finding.severity >= Severity.HIGH:
                    threats.append((result, finding))
                    if len(threats) >= limit:
                        return threats
        return threats

    def _load(self, path: Path) -> List[AnalysisResult]:
        results = []
        with open(path, 'r', encoding='utf-8') as f:
            for line_number, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    results.append(AnalysisResult.from_dict(json.loads(line)))
                except (ValueError, KeyError, TypeError) as e:
                    self.logger.warning(f"Skipping unreadable history entry {path}:{line_number}: {e}")
        return results
