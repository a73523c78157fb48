"""
Backup extractor for unencrypted iOS backups.

An iTunes/Finder backup stores every file under ``<fileID[:2]>/<fileID>``
and indexes them in ``Manifest.db``. The extractor walks the manifest, then
opens a handful of known databases to recover process names and visited
hosts.
"""

import re
import sqlite3
from contextlib import closing
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlsplit

from orbguard_core.logic.models import AnalysisType, ObservationKind, InvalidFormatError
from orbguard_core.infrastructure.shared.error_handling import log_and_continue

from .base_extractor import BaseExtractor, ExtractionState


class BackupExtractor(BaseExtractor):
    """
    Extractor for iOS backup directories.

    Emits ``file`` observations for plists, SQLite databases and known
    staging directories, ``process`` observations from the data usage
    databases and ``network`` observations from Safari history and message
    bodies.
    """

    DATABASE_SUFFIXES = ('.plist', '.sqlite', '.sqlitedb', '.db')

    # Directories used by known implants to stage payloads
    STAGING_DIRECTORIES = (
        'Library/Caches/com.apple.xpc.roleaccountd.staging',
        'Library/Preferences/com.apple.CrashReporter',
        'Library/SMS/Drafts',
        'Library/com.apple.itunesstored',
        'tmp/',
    )

    DATA_USAGE_DATABASES = (
        ('WirelessDomain', 'Library/Databases/DataUsage.sqlite'),
        ('WirelessDomain', 'Library/Databases/netusage.sqlite'),
    )
    SAFARI_HISTORY = ('AppDomain-com.apple.mobilesafari', 'Library/Safari/History.db')
    SMS_DATABASE = ('HomeDomain', 'Library/SMS/sms.db')

    URL_PATTERN = re.compile(r'https?://[^\s<>"\']+', re.IGNORECASE)

    @property
    def analysis_type(self) -> AnalysisType:
        return AnalysisType.BACKUP

    @property
    def phase_label(self) -> str:
        return "Parsing iOS backup"

    def _extract(self, raw_input: Any, state: ExtractionState) -> None:
        if not isinstance(raw_input, (str, Path)):
            raise InvalidFormatError("iOS backup directory", f"unsupported input type {type(raw_input).__name__}")

        root = Path(raw_input)
        manifest = root / 'Manifest.db'
        if not root.is_dir() or not manifest.is_file():
            raise InvalidFormatError("iOS backup directory with Manifest.db", str(root))

        entries = self._read_manifest(manifest, state)
        total = len(entries) or 1
        index: Dict[Tuple[str, str], str] = {}

        for position, (file_id, domain, relative_path, flags) in enumerate(entries, 1):
            state.lines_seen += 1
            state.tick(0.8 * position / total)
            index[(domain, relative_path)] = file_id

            is_directory = flags == 2
            staging = self._staging_directory(relative_path)
            if staging is None and (is_directory or not relative_path.lower().endswith(self.DATABASE_SUFFIXES)):
                state.skipped += 1
                continue

            state.recognized += 1
            state.add(self.observation(
                ObservationKind.FILE,
                relative_path,
                {
                    'domain': domain,
                    'file_id': file_id,
                    'directory': True if is_directory else None,
                    'staging': staging,
                }
            ))

        for key in self.DATA_USAGE_DATABASES:
            self._recover_processes(root, index.get(key), key[1], state)
        state.report(0.85)

        self._recover_safari_hosts(root, index.get(self.SAFARI_HISTORY), state)
        state.report(0.9)

        self._recover_message_hosts(root, index.get(self.SMS_DATABASE), state)

        state.metadata['manifest_entries'] = len(entries)

    def _read_manifest(self, manifest: Path, state: ExtractionState) -> List[Tuple[str, str, str, Optional[int]]]:
        try:
            with closing(self._connect(manifest)) as connection:
                rows = connection.execute(
                    "SELECT fileID, domain, relativePath, flags FROM Files ORDER BY domain, relativePath LIMIT ?",
                    (self.config.max_files + 1,)
                ).fetchall()
        except sqlite3.DatabaseError as e:
            raise InvalidFormatError("iOS backup Manifest.db", str(e))

        if len(rows) > self.config.max_files:
            state.truncated = True
            rows = rows[:self.config.max_files]

        return [
            (str(file_id), str(domain or ''), str(relative_path or ''), flags)
            for file_id, domain, relative_path, flags in rows
            if file_id
        ]

    def _staging_directory(self, relative_path: str) -> Optional[str]:
        for staging in self.STAGING_DIRECTORIES:
            if relative_path.startswith(staging) or f'/{staging}' in relative_path:
                return staging
        return None

    def _resolve(self, root: Path, file_id: Optional[str]) -> Optional[Path]:
        if not file_id:
            return None
        path = root / file_id[:2] / file_id
        if path.is_file():
            return path
        # Older backups keep a flat layout
        flat = root / file_id
        return flat if flat.is_file() else None

    def _recover_processes(self, root: Path, file_id: Optional[str], name: str, state: ExtractionState) -> None:
        path = self._resolve(root, file_id)
        if path is None:
            return

        rows = self._query(path, "SELECT ZPROCNAME, ZBUNDLENAME FROM ZPROCESS ORDER BY Z_PK", name, state)
        for process_name, bundle in rows:
            if not process_name:
                continue
            state.recognized += 1
            state.add(self.observation(
                ObservationKind.PROCESS,
                str(process_name),
                {'bundle_id': bundle, 'source': name}
            ))

    def _recover_safari_hosts(self, root: Path, file_id: Optional[str], state: ExtractionState) -> None:
        path = self._resolve(root, file_id)
        if path is None:
            return

        rows = self._query(path, "SELECT url, visit_count FROM history_items ORDER BY id", "Safari History.db", state)
        for url, visit_count in rows:
            host = self._host(url)
            if host is None:
                continue
            state.recognized += 1
            state.add(self.observation(
                ObservationKind.NETWORK,
                host,
                {'url': url, 'visits': visit_count, 'source': 'safari'}
            ))

    def _recover_message_hosts(self, root: Path, file_id: Optional[str], state: ExtractionState) -> None:
        path = self._resolve(root, file_id)
        if path is None:
            return

        rows = self._query(path, "SELECT ROWID, text FROM message WHERE text IS NOT NULL ORDER BY ROWID", "sms.db", state)
        for row_id, text in rows:
            for url in self.URL_PATTERN.findall(str(text)):
                host = self._host(url)
                if host is None:
                    continue
                state.recognized += 1
                state.add(self.observation(
                    ObservationKind.NETWORK,
                    host,
                    {'url': url, 'message_id': row_id, 'source': 'sms'}
                ))

    def _query(self, path: Path, sql: str, name: str, state: ExtractionState) -> List[Tuple[Any, ...]]:
        """
        Run a read-only query against a backed-up database; unreadable files are skipped.

        At most ``max_lines`` rows are returned; a table holding more marks the
        extraction as truncated.
        """
        limit = self.config.max_lines
        try:
            with closing(self._connect(path)) as connection:
                rows = connection.execute(f"{sql} LIMIT ?", (limit + 1,)).fetchall()
        except sqlite3.DatabaseError as e:
            log_and_continue(f"Skipping {name}: {e}", component="BackupExtractor", file=str(path))
            return []

        if len(rows) > limit:
            self.logger.warning(f"{name} holds more than {limit} rows; remaining rows not scanned")
            state.truncated = True
            rows = rows[:limit]
        return rows

    @staticmethod
    def _connect(path: Path) -> sqlite3.Connection:
        return sqlite3.connect(f"{path.resolve().as_uri()}?mode=ro", uri=True)

    @staticmethod
    def _host(url: Any) -> Optional[str]:
        if not url:
            return None
        try:
            host = urlsplit(str(url)).hostname
        except ValueError:
            return None
        return host or None
