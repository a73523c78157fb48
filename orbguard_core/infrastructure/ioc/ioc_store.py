"""
IOC store implementation.

Loads, validates and indexes a versioned collection of indicator records and
answers ``lookup`` queries for observations. An ``IocSet`` is an immutable
snapshot; the ``IocStore`` only ever replaces its current snapshot as a whole.
"""

import copy
import fnmatch
import hashlib
import json
import logging
import re
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from collections import abc
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Pattern, Tuple, Union

import yaml

from orbguard_core.logic.models import (
    IocRecord, IocStats, IocCategory, PatternKind, Observation,
    MalformedIocError, EmptyIocSetError, IocLoadError,
)


# Hex digest length -> hashlib algorithm
_DIGEST_LENGTHS = {32: 'md5', 40: 'sha1', 64: 'sha256'}
_HEX_RE = re.compile(r'^[0-9a-f]+$')

FeedSource = Union[str, Path, bytes, Mapping[str, Any], Iterable[Mapping[str, Any]]]


@dataclass(frozen=True)
class ToggleIoc:
    """Command enabling or disabling a single indicator."""
    ioc_id: str
    enabled: bool


def _normalize_digest(record: IocRecord) -> Tuple[str, str]:
    """Return (algorithm, lowercase hex digest) for a hash indicator."""
    pattern = record.pattern
    if isinstance(pattern, bytes):
        pattern = pattern.hex()
    pattern = pattern.strip().lower()

    algorithm = None
    if ':' in pattern:
        algorithm, pattern = pattern.split(':', 1)

    if not _HEX_RE.match(pattern):
        raise ValueError(f"hash pattern is not a hex digest: {record.pattern!r}")

    inferred = _DIGEST_LENGTHS.get(len(pattern))
    if inferred is None:
        raise ValueError(f"unsupported digest length {len(pattern)}")
    if algorithm and algorithm != inferred:
        raise ValueError(f"digest length does not match algorithm {algorithm}")
    return inferred, pattern


def _pattern_text(record: IocRecord) -> str:
    if isinstance(record.pattern, bytes):
        return record.pattern.decode('utf-8')
    return record.pattern


class IocSet:
    """
    Immutable, indexed snapshot of indicator records.

    Lookup is a pure function of (IocSet, Observation): the same observation
    always yields the same records, in feed order.
    """

    def __init__(
        self,
        records: Iterable[IocRecord],
        version: Optional[str] = None,
        loaded_at: Optional[datetime] = None,
        disabled: FrozenSet[str] = frozenset()
    ):
        self._records: Tuple[IocRecord, ...] = tuple(records)
        self.version = version
        self.loaded_at = loaded_at or datetime.now(timezone.utc)
        self._disabled: FrozenSet[str] = frozenset(disabled)

        if not self._records:
            raise EmptyIocSetError()

        self._by_id: Dict[str, int] = {}
        self._literal: Dict[str, List[int]] = {}
        self._literal_bytes: Dict[bytes, List[int]] = {}
        self._hash: Dict[str, Dict[str, List[int]]] = {}
        self._regex: List[Tuple[int, Pattern]] = []
        self._glob: List[Tuple[int, Pattern]] = []
        self._build_indexes()

    def _build_indexes(self) -> None:
        for index, record in enumerate(self._records):
            if record.id in self._by_id:
                raise MalformedIocError(f"duplicate id '{record.id}'", index)
            self._by_id[record.id] = index

            try:
                if record.pattern_kind == PatternKind.LITERAL:
                    if isinstance(record.pattern, bytes):
                        self._literal_bytes.setdefault(record.pattern, []).append(index)
                    else:
                        self._literal.setdefault(record.pattern, []).append(index)
                elif record.pattern_kind == PatternKind.HASH:
                    algorithm, digest = _normalize_digest(record)
                    self._hash.setdefault(algorithm, {}).setdefault(digest, []).append(index)
                elif record.pattern_kind == PatternKind.REGEX:
                    self._regex.append((index, re.compile(_pattern_text(record))))
                elif record.pattern_kind == PatternKind.PATH_GLOB:
                    self._glob.append((index, re.compile(fnmatch.translate(_pattern_text(record)))))
                else:
                    raise ValueError(f"unhandled pattern kind {record.pattern_kind}")
            except (re.error, ValueError, UnicodeDecodeError) as e:
                raise MalformedIocError(f"{record.id}: {e}", index)

    def __len__(self) -> int:
        return len(self._records)

    @property
    def records(self) -> Tuple[IocRecord, ...]:
        return self._records

    @property
    def disabled_ids(self) -> FrozenSet[str]:
        return self._disabled

    def get(self, ioc_id: str) -> Optional[IocRecord]:
        index = self._by_id.get(ioc_id)
        return self._records[index] if index is not None else None

    def is_enabled(self, ioc_id: str) -> bool:
        return ioc_id in self._by_id and ioc_id not in self._disabled

    def enabled_records(self) -> List[IocRecord]:
        return [r for r in self._records if r.id not in self._disabled]

    def lookup(self, observation: Observation) -> Tuple[IocRecord, ...]:
        """Return all enabled records whose pattern matches the observation value."""
        value = observation.value
        hits = set()

        hits.update(self._literal.get(value, ()))
        if self._literal_bytes:
            hits.update(self._literal_bytes.get(value.encode('utf-8', errors='surrogateescape'), ()))

        if self._hash:
            encoded = value.encode('utf-8', errors='surrogateescape')
            for algorithm, digests in self._hash.items():
                digest = hashlib.new(algorithm, encoded).hexdigest()
                hits.update(digests.get(digest, ()))

        for index, compiled in self._regex:
            if compiled.fullmatch(value):
                hits.add(index)

        if '/' in value:
            for index, compiled in self._glob:
                if compiled.match(value):
                    hits.add(index)

        return tuple(
            self._records[index] for index in sorted(hits)
            if self._records[index].id not in self._disabled
        )

    def with_toggled(self, command: ToggleIoc) -> 'IocSet':
        """Return a new snapshot with one indicator enabled or disabled."""
        if command.ioc_id not in self._by_id:
            raise KeyError(f"Unknown IOC id: {command.ioc_id}")

        if command.enabled:
            disabled = self._disabled - {command.ioc_id}
        else:
            disabled = self._disabled | {command.ioc_id}

        # Indexes are read-only after construction, so the copy can share them
        toggled = copy.copy(self)
        toggled._disabled = frozenset(disabled)
        return toggled

    def stats(self) -> IocStats:
        """Recompute statistics over the enabled records."""
        by_category = {category: 0 for category in IocCategory}
        enabled = self.enabled_records()
        for record in enabled:
            by_category[record.category] += 1

        return IocStats(
            total_iocs=len(enabled),
            by_category=by_category,
            last_updated=self.loaded_at,
            version=self.version
        )


def parse_ioc_feed(source: FeedSource, version: Optional[str] = None) -> IocSet:
    """
    Parse and validate an IOC feed into an ``IocSet``.

    Args:
        source: Path to a JSON-lines/JSON/YAML file, raw JSON-lines text or
            bytes, a mapping with an ``indicators`` list, or an iterable of
            record mappings
        version: Feed version, overriding any version carried by the feed

    Raises:
        MalformedIocError: If any record is corrupt
        EmptyIocSetError: If the feed holds zero records
    """
    entries, feed_version = _read_entries(source)

    records = []
    for index, entry in enumerate(entries):
        try:
            records.append(IocRecord.from_dict(entry))
        except (ValueError, TypeError, KeyError) as e:
            raise MalformedIocError(str(e), index)

    if not records:
        raise EmptyIocSetError()

    return IocSet(records, version=version or feed_version)


def _read_entries(source: FeedSource) -> Tuple[List[Any], Optional[str]]:
    if isinstance(source, Path):
        return _read_file(source)

    if isinstance(source, bytes):
        try:
            source = source.decode('utf-8')
        except UnicodeDecodeError as e:
            raise MalformedIocError(f"feed is not valid UTF-8: {e}")

    if isinstance(source, str):
        if _looks_like_path(source):
            path = Path(source.strip())
            if not path.is_file():
                raise IocLoadError(f"Could not read IOC feed {path}: file not found")
            return _read_file(path)
        return _parse_text(source)

    if isinstance(source, abc.Mapping):
        return _unwrap_document(source)

    try:
        return list(source), None
    except TypeError:
        raise IocLoadError(f"Unsupported IOC source type: {type(source).__name__}")


def _looks_like_path(candidate: str) -> bool:
    """Single-line, non-JSON text with a separator or a file suffix is taken as a path."""
    text = candidate.strip()
    if not text or '\n' in text or len(text) >= 4096 or text[0] in '{[':
        return False
    if _is_existing_file(text):
        return True
    try:
        return '/' in text or '\\' in text or bool(Path(text).suffix)
    except ValueError:
        return False


def _is_existing_file(candidate: str) -> bool:
    try:
        return Path(candidate).is_file()
    except (OSError, ValueError):
        return False


def _read_file(path: Path) -> Tuple[List[Any], Optional[str]]:
    try:
        text = path.read_text(encoding='utf-8')
    except UnicodeDecodeError as e:
        raise MalformedIocError(f"feed is not valid UTF-8: {e}")
    except OSError as e:
        raise IocLoadError(f"Could not read IOC feed {path}: {e}")

    suffix = path.suffix.lower()
    if suffix in ('.yml', '.yaml'):
        try:
            document = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise MalformedIocError(f"invalid YAML: {e}")
        return _unwrap_document(document)

    if suffix == '.json':
        try:
            document = json.loads(text)
        except json.JSONDecodeError as e:
            raise MalformedIocError(f"invalid JSON: {e}")
        return _unwrap_document(document)

    return _parse_text(text)


def _parse_text(text: str) -> Tuple[List[Any], Optional[str]]:
    stripped = text.strip()
    if stripped.startswith('['):
        try:
            return _unwrap_document(json.loads(stripped))
        except json.JSONDecodeError as e:
            raise MalformedIocError(f"invalid JSON: {e}")

    # A whole {"version", "indicators": [...]} document; anything else is JSON lines
    if stripped.startswith('{'):
        try:
            document = json.loads(stripped)
        except json.JSONDecodeError:
            document = None
        if isinstance(document, dict) and ('indicators' in document or 'iocs' in document):
            return _unwrap_document(document)

    entries = []
    version = None
    for line in stripped.splitlines():
        line = line.strip()
        if not line or line.startswith('#'):
            continue
        try:
            entry = json.loads(line)
        except json.JSONDecodeError as e:
            raise MalformedIocError(f"invalid JSON line: {e}", len(entries))

        # A leading {"version": "..."} header line carries the feed version
        if isinstance(entry, dict) and set(entry) == {'version'}:
            version = str(entry['version'])
            continue
        entries.append(entry)
    return entries, version


def _unwrap_document(document: Any) -> Tuple[List[Any], Optional[str]]:
    if document is None:
        return [], None
    if isinstance(document, list):
        return document, None
    if isinstance(document, abc.Mapping):
        indicators = document.get('indicators', document.get('iocs'))
        if indicators is None:
            raise MalformedIocError("feed document has no 'indicators' list")
        if not isinstance(indicators, list):
            raise MalformedIocError("'indicators' must be a list")
        version = document.get('version')
        return indicators, str(version) if version is not None else None
    raise MalformedIocError(f"unexpected feed document type {type(document).__name__}")


class IocStore:
    """
    Holder of the active indicator snapshot.

    Swaps replace the whole set under a lock, so readers always see a complete
    snapshot and category counts never change mid-scan.
    """

    def __init__(self):
        """Initialize an empty store; ``load`` must succeed before scans run."""
        self._lock = threading.Lock()
        self._current: Optional[IocSet] = None
        self.logger = logging.getLogger("ioc.store")

    @property
    def current(self) -> Optional[IocSet]:
        with self._lock:
            return self._current

    @property
    def is_loaded(self) -> bool:
        return self.current is not None

    def load(self, source: FeedSource, version: Optional[str] = None) -> IocSet:
        """
        Load a feed and make it the active set.

        Raises:
            IocLoadError: On malformed or empty feeds; the previous set stays active
        """
        try:
            ioc_set = parse_ioc_feed(source, version)
        except IocLoadError as e:
            self.logger.error(f"IOC feed rejected: {e}")
            raise

        self.swap(ioc_set)
        return ioc_set

    def swap(self, ioc_set: IocSet) -> None:
        """Replace the active set as a whole."""
        with self._lock:
            self._current = ioc_set

        stats = ioc_set.stats()
        self.logger.info(
            f"Active IOC set: {stats.total_iocs} indicators "
            f"(version={ioc_set.version or 'unversioned'}, "
            + ", ".join(f"{c.value}={n}" for c, n in stats.by_category.items()) + ")"
        )

    def apply(self, command: ToggleIoc) -> IocSet:
        """Apply a toggle command and return the resulting snapshot."""
        with self._lock:
            if self._current is None:
                raise IocLoadError("No IOC set loaded")
            self._current = self._current.with_toggled(command)
            updated = self._current

        self.logger.info(f"IOC {command.ioc_id} {'enabled' if command.enabled else 'disabled'}")
        return updated

    def stats(self) -> IocStats:
        ioc_set = self.current
        if ioc_set is None:
            return IocStats(total_iocs=0, by_category={c: 0 for c in IocCategory})
        return ioc_set.stats()

    def lookup(self, observation: Observation) -> Tuple[IocRecord, ...]:
        ioc_set = self.current
        if ioc_set is None:
            return ()
        return ioc_set.lookup(observation)
