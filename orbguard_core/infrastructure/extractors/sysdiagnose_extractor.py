"""
Sysdiagnose extractor for Apple system diagnostic archives.

Reads the process enumeration (``ps.txt``, ``ps_thread.txt``) and the
connection tables (``netstat*.txt``) straight out of an extracted sysdiagnose
directory or a ``.tar``/``.tar.gz`` archive, without unpacking it to disk.
"""

import io
import re
import tarfile
from pathlib import Path
from typing import Any, Iterator, List, Optional, Tuple

from orbguard_core.logic.models import (
    AnalysisType, ObservationKind, InvalidFormatError, NoRecognizedContentError,
)
from orbguard_core.infrastructure.shared.error_handling import log_and_continue

from .base_extractor import BaseExtractor, ExtractionState


class SysdiagnoseExtractor(BaseExtractor):
    """
    Extractor for iOS sysdiagnose archives.

    Emits ``process`` observations for running and recently run processes and
    ``network`` observations for remote endpoints in the connection tables.
    """

    PROCESS_FILE_PATTERN = re.compile(r'^ps(_thread)?\.txt$', re.IGNORECASE)
    NETWORK_FILE_PATTERN = re.compile(r'^netstat.*\.txt$', re.IGNORECASE)
    CONNECTION_PATTERN = re.compile(
        r'^(tcp[46]{0,2}|udp[46]{0,2})\s+\d+\s+\d+\s+(\S+)\s+(\S+)(?:\s+(\S+))?', re.IGNORECASE
    )
    ARCHIVE_SUFFIXES = ('.tar', '.tar.gz', '.tgz')

    @property
    def analysis_type(self) -> AnalysisType:
        return AnalysisType.SYSDIAGNOSE

    @property
    def phase_label(self) -> str:
        return "Parsing sysdiagnose archive"

    def _extract(self, raw_input: Any, state: ExtractionState) -> None:
        snapshots = list(self._iter_snapshots(raw_input, state))
        if not snapshots:
            raise InvalidFormatError("sysdiagnose archive", "no process or network snapshots found")

        total = len(snapshots)
        for index, (name, kind, text) in enumerate(snapshots, 1):
            if kind == 'process':
                self._parse_process_table(name, text, state)
            else:
                self._parse_connection_table(name, text, state)
            state.report(index / total)

        if state.recognized == 0:
            raise NoRecognizedContentError("sysdiagnose", state.lines_seen)

        state.metadata['snapshots'] = [name for name, _, _ in snapshots]

    def _iter_snapshots(self, raw_input: Any, state: ExtractionState) -> Iterator[Tuple[str, str, str]]:
        """Yield (member name, 'process'|'network', text) for every relevant file."""
        if isinstance(raw_input, (bytes, bytearray)):
            yield from self._iter_tar(tarfile.open(fileobj=io.BytesIO(bytes(raw_input)), mode='r:*'), state)
            return

        if not isinstance(raw_input, (str, Path)):
            raise InvalidFormatError("sysdiagnose archive", f"unsupported input type {type(raw_input).__name__}")

        path = Path(raw_input)
        if path.is_dir():
            yield from self._iter_directory(path, state)
        elif path.is_file() and path.name.lower().endswith(self.ARCHIVE_SUFFIXES):
            yield from self._iter_tar(tarfile.open(path, mode='r:*'), state)
        else:
            raise InvalidFormatError("sysdiagnose directory or tar archive", str(path))

    def _iter_directory(self, root: Path, state: ExtractionState) -> Iterator[Tuple[str, str, str]]:
        for scanned, file_path in enumerate(sorted(p for p in root.rglob('*') if p.is_file())):
            if scanned >= self.config.max_files:
                state.truncated = True
                break

            kind = self._classify(file_path.name)
            if kind is None:
                continue

            try:
                text = file_path.read_text(encoding='utf-8', errors='replace')
            except OSError as e:
                log_and_continue(f"Unreadable snapshot {file_path}: {e}", component="SysdiagnoseExtractor")
                continue
            yield str(file_path.relative_to(root)), kind, text

    def _iter_tar(self, archive: tarfile.TarFile, state: ExtractionState) -> Iterator[Tuple[str, str, str]]:
        with archive:
            for scanned, member in enumerate(archive):
                if scanned >= self.config.max_files:
                    state.truncated = True
                    break

                if not member.isfile():
                    continue

                kind = self._classify(member.name.rsplit('/', 1)[-1])
                if kind is None:
                    continue

                handle = archive.extractfile(member)
                if handle is None:
                    continue
                with handle:
                    text = handle.read().decode('utf-8', errors='replace')
                yield member.name, kind, text

    def _classify(self, file_name: str) -> Optional[str]:
        if self.PROCESS_FILE_PATTERN.match(file_name):
            return 'process'
        if self.NETWORK_FILE_PATTERN.match(file_name):
            return 'network'
        return None

    def _parse_process_table(self, source: str, text: str, state: ExtractionState) -> None:
        """Parse ``ps aux``-style output; the COMMAND column is last and may contain spaces."""
        header: Optional[List[str]] = None

        for line_number, line in state.iter_lines(text):
            columns = line.split()
            if header is None:
                if 'PID' in columns and ('COMMAND' in columns or 'CMD' in columns):
                    header = columns
                    state.recognized += 1
                else:
                    state.skipped += 1
                continue

            fields = line.split(None, len(header) - 1)
            if len(fields) < len(header):
                state.skipped += 1
                continue

            row = dict(zip(header, fields))
            command = row.get('COMMAND', row.get('CMD', '')).strip()
            if not command:
                state.skipped += 1
                continue

            state.recognized += 1
            executable = command.split()[0]
            state.add(self.observation(
                ObservationKind.PROCESS,
                executable,
                {
                    'pid': self._to_int(row.get('PID')),
                    'user': row.get('USER'),
                    'name': executable.rsplit('/', 1)[-1],
                    'command': command if command != executable else None,
                    'source': source,
                    'line': line_number,
                }
            ))

    def _parse_connection_table(self, source: str, text: str, state: ExtractionState) -> None:
        for line_number, line in state.iter_lines(text):
            match = self.CONNECTION_PATTERN.match(line)
            if not match:
                state.skipped += 1
                continue

            state.recognized += 1
            proto, local, foreign, connection_state = match.groups()
            host, port = self._split_endpoint(foreign)
            if host is None:
                # Listening sockets have no remote endpoint
                continue

            state.add(self.observation(
                ObservationKind.NETWORK,
                host,
                {
                    'port': port,
                    'proto': proto.lower(),
                    'state': connection_state,
                    'local': local,
                    'source': source,
                    'line': line_number,
                }
            ))

    @staticmethod
    def _split_endpoint(endpoint: str) -> Tuple[Optional[str], Optional[int]]:
        """
        Split a netstat endpoint into host and port.

        BSD netstat separates the port with a dot (``17.57.144.10.443``), Linux
        style with a colon (``17.57.144.10:443``).
        """
        if endpoint.startswith('*'):
            return None, None

        if endpoint.count(':') == 1:
            host, _, port = endpoint.partition(':')
        elif '.' in endpoint:
            host, _, port = endpoint.rpartition('.')
        else:
            host, port = endpoint, ''

        if not host or host == '*':
            return None, None
        return host, SysdiagnoseExtractor._to_int(port)

    @staticmethod
    def _to_int(raw: Optional[str]) -> Optional[int]:
        try:
            return int(raw)
        except (TypeError, ValueError):
            return None
