"""
Indicator list extractor for quick checks.

Turns a user-supplied list of indicator strings (domains, URLs, IP
addresses, file paths, hashes, package names) into observations so they can
be matched against the indicator set without a device artifact.
"""

import ipaddress
import re
from collections import abc
from typing import Any, Optional, Tuple
from urllib.parse import urlsplit

from orbguard_core.logic.models import AnalysisType, ObservationKind, InvalidFormatError, NoRecognizedContentError

from .base_extractor import BaseExtractor, ExtractionState


class IndicatorListExtractor(BaseExtractor):
    """Extractor for ad-hoc indicator lists; not tied to a device artifact."""

    HEX_DIGEST = re.compile(r'^(?:[a-z0-9]+:)?(?:[0-9a-f]{32}|[0-9a-f]{40}|[0-9a-f]{64})$', re.IGNORECASE)
    # First labels of reverse-DNS application identifiers
    PACKAGE_PREFIXES = ('com', 'org', 'net', 'io', 'android', 'de', 'me')

    @property
    def analysis_type(self) -> AnalysisType:
        return AnalysisType.FULL_SCAN

    @property
    def phase_label(self) -> str:
        return "Checking indicators"

    @property
    def artifact_name(self) -> str:
        return "indicator list"

    def _extract(self, raw_input: Any, state: ExtractionState) -> None:
        if isinstance(raw_input, (str, bytes)) or not isinstance(raw_input, abc.Iterable):
            raise InvalidFormatError("list of indicator strings", f"got {type(raw_input).__name__}")

        values = list(raw_input)
        total = len(values) or 1
        for position, raw in enumerate(values, 1):
            if state.lines_seen >= self.config.max_lines:
                state.truncated = True
                break
            state.lines_seen += 1
            state.tick(position / total)

            value = str(raw).strip() if raw is not None else ''
            if not value or len(value) > self.config.max_line_length:
                state.skipped += 1
                continue

            kind, normalized, url = self._classify(value)
            state.recognized += 1
            state.add(self.observation(kind, normalized, {'indicator': value, 'url': url, 'index': position - 1}))

        if state.recognized == 0:
            raise NoRecognizedContentError(self.artifact_name, state.lines_seen)

    def _classify(self, value: str) -> Tuple[ObservationKind, str, Optional[str]]:
        if '://' in value:
            try:
                host = urlsplit(value).hostname
            except ValueError:
                host = None
            if host:
                return ObservationKind.NETWORK, host, value

        try:
            ipaddress.ip_address(value)
            return ObservationKind.NETWORK, value, None
        except ValueError:
            pass

        if value.startswith('/') or self.HEX_DIGEST.match(value):
            return ObservationKind.FILE, value, None

        labels = value.split('.')
        if len(labels) > 1 and ' ' not in value:
            if labels[0].lower() in self.PACKAGE_PREFIXES and len(labels) > 2:
                return ObservationKind.PROCESS, value, None
            return ObservationKind.NETWORK, value.lower().rstrip('.'), None

        return ObservationKind.PROCESS, value, None
