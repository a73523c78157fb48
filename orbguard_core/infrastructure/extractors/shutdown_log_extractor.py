"""
Shutdown log extractor for iOS ``shutdown.log``.

The shutdown log records, for every reboot, the processes that were still
running while the system waited to terminate them:

    After 3.21s, these clients are still here:
            remaining client pid: 412 (/private/var/db/com.apple.xpc.roleaccountd.staging/rolexd)
    SIGTERM: [1612345678]

Spyware that stays resident across reboots shows up as a lingering client.
"""

import re
from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple

from orbguard_core.logic.models import AnalysisType, ObservationKind, NoRecognizedContentError

from .base_extractor import BaseExtractor, ExtractionState


class ShutdownLogExtractor(BaseExtractor):
    """
    Extractor for iOS shutdown logs.

    Emits one ``process`` observation per lingering client, carrying its pid
    and the hang duration before SIGTERM in the context.
    """

    CLIENT_PATTERN = re.compile(r'remaining client pid:\s*(\d+)\s*\((.+)\)\s*$', re.IGNORECASE)
    DELAY_PATTERN = re.compile(r'After\s+(\d+(?:\.\d+)?)s?,\s*these clients are still here', re.IGNORECASE)
    SIGTERM_PATTERN = re.compile(r'^SIGTERM:\s*\[(\d+)\]')

    # Locations a legitimate system daemon never runs from
    SUSPICIOUS_LOCATIONS = (
        '/private/var/tmp/',
        '/private/var/root/',
        '/private/var/db/',
        '/private/var/mobile/Library/SMS/Drafts/',
        '/private/var/containers/Bundle/',
    )

    @property
    def analysis_type(self) -> AnalysisType:
        return AnalysisType.SHUTDOWN_LOG

    @property
    def phase_label(self) -> str:
        return "Parsing shutdown log"

    def _extract(self, raw_input: Any, state: ExtractionState) -> None:
        text = self.read_text(raw_input)

        # (pid, path, delay, line_number) awaiting the SIGTERM that closes the block
        pending: List[Tuple[int, str, Optional[float], int]] = []
        current_delay: Optional[float] = None
        reboots = 0

        for line_number, line in state.iter_lines(text):
            client = self.CLIENT_PATTERN.search(line)
            if client:
                state.recognized += 1
                pending.append((int(client.group(1)), client.group(2).strip(), current_delay, line_number))
                continue

            delay = self.DELAY_PATTERN.search(line)
            if delay:
                state.recognized += 1
                current_delay = float(delay.group(1))
                continue

            sigterm = self.SIGTERM_PATTERN.match(line)
            if sigterm:
                state.recognized += 1
                reboots += 1
                timestamp = self._parse_epoch(sigterm.group(1))
                self._flush(pending, timestamp, reboots, state)
                pending = []
                current_delay = None
                continue

            state.skipped += 1

        # Clients listed after the last SIGTERM line (log cut short)
        self._flush(pending, None, reboots + 1, state)

        if state.recognized == 0:
            raise NoRecognizedContentError("shutdown log", state.lines_seen)

        state.metadata['reboots'] = reboots
        if state.skipped:
            self.logger.debug(f"Skipped {state.skipped} unrecognized shutdown log lines")

    def _flush(
        self,
        pending: List[Tuple[int, str, Optional[float], int]],
        timestamp: Optional[datetime],
        reboot_index: int,
        state: ExtractionState
    ) -> None:
        for pid, path, delay, line_number in pending:
            context = {
                'pid': pid,
                'name': path.rsplit('/', 1)[-1],
                'delay_seconds': delay,
                'reboot': reboot_index,
                'line': line_number,
            }
            if path.startswith(self.SUSPICIOUS_LOCATIONS):
                context['suspicious_location'] = True
            state.add(self.observation(ObservationKind.PROCESS, path, context, timestamp))

    @staticmethod
    def _parse_epoch(raw: str) -> Optional[datetime]:
        try:
            return datetime.fromtimestamp(int(raw), tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
