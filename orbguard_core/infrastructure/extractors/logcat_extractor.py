"""
Logcat extractor for Android system logs.

Supports the ``threadtime``, ``time`` and ``brief`` logcat formats and turns
each entry into a ``log-line`` observation. Package install and permission
grant events additionally yield ``process`` observations keyed by package.
"""

import re
from datetime import datetime, timezone
from typing import Any, Optional, Tuple

from orbguard_core.logic.models import AnalysisType, ObservationKind, NoRecognizedContentError

from .base_extractor import BaseExtractor, ExtractionState


class LogcatExtractor(BaseExtractor):
    """
    Extractor for Android logcat output in various formats.

    Preserves the package name and any permission strings of each entry in the
    observation context so indicators can key on either.
    """

    # threadtime: 03-17 10:15:42.123  1234  1250 I PackageManager: message
    THREADTIME_PATTERN = re.compile(
        r'^(\d{2}-\d{2} \d{2}:\d{2}:\d{2}\.\d{3})\s+(\d+)\s+(\d+)\s+([VDIWEFS])\s+([^:]+?)\s*:\s?(.*)$'
    )
    # time: 03-17 10:15:42.123 I/PackageManager( 1234): message
    TIME_PATTERN = re.compile(
        r'^(\d{2}-\d{2} \d{2}:\d{2}:\d{2}\.\d{3})\s+([VDIWEFS])/([^(]+)\(\s*(\d+)\):\s?(.*)$'
    )
    # brief: I/PackageManager( 1234): message
    BRIEF_PATTERN = re.compile(r'^([VDIWEFS])/([^(]+)\(\s*(\d+)\):\s?(.*)$')

    PACKAGE_FIELD_PATTERN = re.compile(
        r'\b(?:pkg|package|packageName|pkgName|callingPackage)\s*[=:]\s*'
        r'\{?([a-zA-Z][\w]*(?:\.[\w]+)+)'
    )
    PACKAGE_TOKEN_PATTERN = re.compile(r'\b([a-z][a-z0-9_]*(?:\.[a-zA-Z0-9_]+){1,})\b')
    PERMISSION_PATTERN = re.compile(r'\b((?:android|com\.[\w.]+?)\.permission\.[A-Z][A-Z0-9_]*)\b')

    INSTALL_PATTERN = re.compile(
        r'(?i)\b(package added|installpackageli|installing package|installed package|'
        r'package_added|install(?:ation)? (?:succeeded|complete))\b'
    )
    GRANT_PATTERN = re.compile(
        r'(?i)\b(grantruntimepermission|granting permission|granted permission|'
        r'grant(?:ed)? runtime permission|permission granted)\b'
    )

    def __init__(self, config=None, reference_year: Optional[int] = None):
        """
        Args:
            config: Extractor configuration
            reference_year: Year applied to logcat timestamps, which carry none
        """
        super().__init__(config)
        self.reference_year = reference_year

    @property
    def analysis_type(self) -> AnalysisType:
        return AnalysisType.LOGCAT

    @property
    def phase_label(self) -> str:
        return "Parsing logcat"

    def _extract(self, raw_input: Any, state: ExtractionState) -> None:
        text = self.read_text(raw_input)
        year = self.reference_year or datetime.now(timezone.utc).year
        events = 0

        for line_number, line in state.iter_lines(text):
            # Buffer separators
            if line.startswith('--------- beginning of'):
                continue

            entry = self._parse_entry(line)
            if entry is None:
                state.skipped += 1
                continue

            state.recognized += 1
            raw_time, pid, priority, tag, message = entry
            timestamp = self._parse_timestamp(raw_time, year)
            package = self._find_package(message)
            permissions = tuple(sorted(set(self.PERMISSION_PATTERN.findall(message))))

            state.add(self.observation(
                ObservationKind.LOG_LINE,
                message,
                {
                    'tag': tag,
                    'pid': pid,
                    'priority': priority,
                    'package': package,
                    'permissions': permissions or None,
                    'line': line_number,
                },
                timestamp
            ))

            event = self._classify_event(message, permissions)
            if event and package:
                events += 1
                state.add(self.observation(
                    ObservationKind.PROCESS,
                    package,
                    {
                        'event': event,
                        'tag': tag,
                        'permissions': permissions or None,
                        'line': line_number,
                    },
                    timestamp
                ))

        if state.recognized == 0:
            raise NoRecognizedContentError("logcat", state.lines_seen)

        state.metadata['package_events'] = events

    def _parse_entry(self, line: str) -> Optional[Tuple[Optional[str], Optional[int], str, str, str]]:
        """Return (timestamp, pid, priority, tag, message) or None for unknown formats."""
        match = self.THREADTIME_PATTERN.match(line)
        if match:
            return match.group(1), int(match.group(2)), match.group(4), match.group(5).strip(), match.group(6)

        match = self.TIME_PATTERN.match(line)
        if match:
            return match.group(1), int(match.group(4)), match.group(2), match.group(3).strip(), match.group(5)

        match = self.BRIEF_PATTERN.match(line)
        if match:
            return None, int(match.group(3)), match.group(1), match.group(2).strip(), match.group(4)

        return None

    def _find_package(self, message: str) -> Optional[str]:
        match = self.PACKAGE_FIELD_PATTERN.search(message)
        if match:
            return match.group(1)

        if self.INSTALL_PATTERN.search(message) or self.GRANT_PATTERN.search(message):
            for candidate in self.PACKAGE_TOKEN_PATTERN.findall(message):
                if '.permission.' not in candidate and not candidate.startswith('android.permission'):
                    return candidate
        return None

    def _classify_event(self, message: str, permissions: Tuple[str, ...]) -> Optional[str]:
        if self.INSTALL_PATTERN.search(message):
            return "install"
        if permissions and self.GRANT_PATTERN.search(message):
            return "grant"
        return None

    @staticmethod
    def _parse_timestamp(raw: Optional[str], year: int) -> Optional[datetime]:
        if not raw:
            return None
        try:
            parsed = datetime.strptime(f"{year}-{raw}", "%Y-%m-%d %H:%M:%S.%f")
        except ValueError:
            return None
        return parsed.replace(tzinfo=timezone.utc)
