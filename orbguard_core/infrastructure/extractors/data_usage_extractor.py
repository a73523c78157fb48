"""
Data usage extractor for per-app network counters.

Accepts samples as JSON text, CSV text, a list of mappings or a
``{"samples": [...]}`` document and emits one ``counter`` observation per
sample. Counters feed the outbound-volume outlier rule, not pattern lookup.
"""

import csv
import io
import json
from collections import abc
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Mapping, Optional

from orbguard_core.logic.models import (
    AnalysisType, ObservationKind, InvalidFormatError, NoRecognizedContentError,
)

from .base_extractor import BaseExtractor, ExtractionState


class DataUsageExtractor(BaseExtractor):
    """Extractor for network usage samples."""

    APP_FIELDS = ('app', 'bundleId', 'bundle_id', 'package', 'process')
    BYTES_OUT_FIELDS = ('bytes_out', 'bytesOut', 'bytesSent', 'bytes_sent', 'tx')
    BYTES_IN_FIELDS = ('bytes_in', 'bytesIn', 'bytesReceived', 'bytes_received', 'rx')
    BUCKET_FIELDS = ('bucket', 'timestamp', 'time', 'date')

    @property
    def analysis_type(self) -> AnalysisType:
        return AnalysisType.DATA_USAGE

    @property
    def phase_label(self) -> str:
        return "Reading data usage samples"

    def _extract(self, raw_input: Any, state: ExtractionState) -> None:
        samples = self._load_samples(raw_input)
        total = len(samples) or 1

        for position, sample in enumerate(samples, 1):
            if state.lines_seen >= self.config.max_lines:
                state.truncated = True
                break
            state.lines_seen += 1
            state.tick(position / total)

            if not isinstance(sample, abc.Mapping):
                state.skipped += 1
                continue

            app = self._first(sample, self.APP_FIELDS)
            bytes_out = self._to_int(self._first(sample, self.BYTES_OUT_FIELDS))
            if not app or bytes_out is None:
                state.skipped += 1
                continue

            bucket = self._first(sample, self.BUCKET_FIELDS)
            state.recognized += 1
            state.add(self.observation(
                ObservationKind.COUNTER,
                str(app),
                {
                    'bytes_out': bytes_out,
                    'bytes_in': self._to_int(self._first(sample, self.BYTES_IN_FIELDS)),
                    'bucket': None if bucket is None else str(bucket),
                    'index': position - 1,
                },
                self._parse_bucket(bucket)
            ))

        if state.recognized == 0:
            raise NoRecognizedContentError("data usage", state.lines_seen)

        state.metadata['apps'] = len({o.value for o in state.observations})

    def _load_samples(self, raw_input: Any) -> List[Any]:
        if isinstance(raw_input, abc.Mapping):
            samples = raw_input.get('samples')
            if not isinstance(samples, list):
                raise InvalidFormatError("data usage document", "missing 'samples' list")
            return samples

        if isinstance(raw_input, (list, tuple)):
            return list(raw_input)

        if isinstance(raw_input, (str, bytes, bytearray, Path)):
            return self._parse_text(self.read_text(raw_input))

        raise InvalidFormatError("data usage samples", f"unsupported input type {type(raw_input).__name__}")

    def _parse_text(self, text: str) -> List[Any]:
        stripped = text.strip()
        if not stripped:
            raise NoRecognizedContentError("data usage", 0)

        if stripped[0] in '[{':
            try:
                document = json.loads(stripped)
            except json.JSONDecodeError as e:
                raise InvalidFormatError("data usage JSON", str(e))
            return self._load_samples(document)

        reader = csv.DictReader(io.StringIO(stripped))
        if not reader.fieldnames or not any(f in reader.fieldnames for f in self.APP_FIELDS):
            raise InvalidFormatError("data usage CSV with an app column")
        return [{k.strip(): v for k, v in row.items() if k} for row in reader]

    @staticmethod
    def _first(sample: Mapping[str, Any], fields) -> Optional[Any]:
        for name in fields:
            value = sample.get(name)
            if value not in (None, ''):
                return value
        return None

    @staticmethod
    def _to_int(raw: Any) -> Optional[int]:
        if raw is None or isinstance(raw, bool):
            return None
        try:
            value = int(float(raw))
        except (TypeError, ValueError, OverflowError):
            return None
        return value if value >= 0 else None

    @staticmethod
    def _parse_bucket(raw: Any) -> Optional[datetime]:
        if raw is None:
            return None
        if isinstance(raw, (int, float)) and not isinstance(raw, bool):
            try:
                return datetime.fromtimestamp(raw, tz=timezone.utc)
            except (OverflowError, OSError, ValueError):
                return None
        try:
            parsed = datetime.fromisoformat(str(raw).replace('Z', '+00:00'))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
