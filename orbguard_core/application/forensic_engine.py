"""
Forensic engine facade.

The single entry point consumed by the UI layer and the CLI: wires the IOC
store, extractor registry, correlation service, orchestrator and history
store together from an ``EngineConfig``.
"""

import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from orbguard_core.logic.models import (
    AnalysisResult, AnalysisType, EngineConfig, Finding, IocStats, EngineNotReadyError,
)
from orbguard_core.logic.services import (
    AnalysisOrchestrator, CorrelationService, ProgressEvent, ReportService, RunFailure, RunHandle,
)
from orbguard_core.infrastructure.extractors import ExtractorRegistry
from orbguard_core.infrastructure.ioc import IocSet, IocStore, ToggleIoc, parse_ioc_feed
from orbguard_core.infrastructure.shared.error_handling import error_context, get_error_reporter
from orbguard_core.infrastructure.storage import HistoryStore


class ForensicEngine:
    """
    Forensic spyware detection engine.

    Scans are refused with ``EngineNotReadyError`` until a valid indicator
    feed has been loaded. Indicator updates requested while a run is active
    are queued and applied once it finishes, so a run always matches against
    the set it started with.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        ioc_feed: Any = None,
        extractors: Optional[ExtractorRegistry] = None,
        history: Optional[HistoryStore] = None
    ):
        """
        Initialize the engine.

        Args:
            config: Engine configuration (defaults when omitted)
            ioc_feed: Indicator feed loaded at start; falls back to ``config.ioc_feed``

        Raises:
            IocLoadError: If the start-up feed is malformed or empty
        """
        self.config = config or EngineConfig()
        self.logger = logging.getLogger("forensic.engine")

        self.ioc_store = IocStore()
        self.extractors = extractors or ExtractorRegistry(self.config.extractors)
        self.history_store = history or HistoryStore(self.config.history.path)
        self.correlation = CorrelationService(self.config.correlation, self.config.data_usage)
        self.orchestrator = AnalysisOrchestrator(
            self.extractors, self.ioc_store, self.history_store, self.correlation
        )
        self.reports = ReportService()

        self._lock = threading.Lock()
        self._pending_update: Optional[IocSet] = None
        self.orchestrator.add_finished_listener(self._apply_pending_update)

        feed = ioc_feed if ioc_feed is not None else self.config.ioc_feed
        if feed is not None:
            self.load_iocs(feed)

    # Indicators

    def load_iocs(self, source: Any, version: Optional[str] = None) -> IocStats:
        """
        Load an indicator feed, replacing the active set (queued while a run is active).

        Raises:
            IocLoadError: If the feed is malformed or empty
        """
        self.update_iocs(source, version)
        return self.ioc_stats()

    def update_iocs(self, source: Any, version: Optional[str] = None) -> bool:
        """
        Hot-swap the indicator set.

        Returns:
            True if applied immediately, False if queued behind the active run
        """
        with error_context("update_iocs", "ForensicEngine"):
            ioc_set = parse_ioc_feed(source, version)

        with self._lock:
            if self.orchestrator.is_busy:
                self._pending_update = ioc_set
                self.logger.info(f"IOC update {ioc_set.version or 'unversioned'} queued until the active run ends")
                return False
            self._pending_update = None
            self.ioc_store.swap(ioc_set)
            return True

    def toggle_ioc(self, ioc_id: str, enabled: bool) -> IocSet:
        """
        Enable or disable one indicator.

        Returns:
            The new indicator snapshot

        Raises:
            KeyError: If the indicator id is unknown
        """
        command = ToggleIoc(ioc_id, enabled)
        with self._lock:
            updated = self.ioc_store.apply(command)
            if self._pending_update is not None and self._pending_update.get(ioc_id) is not None:
                self._pending_update = self._pending_update.with_toggled(command)
        return updated

    def ioc_stats(self) -> IocStats:
        return self.ioc_store.stats()

    @property
    def has_pending_ioc_update(self) -> bool:
        with self._lock:
            return self._pending_update is not None

    def _apply_pending_update(self, handle: RunHandle) -> None:
        with self._lock:
            pending, self._pending_update = self._pending_update, None
            if pending is not None:
                self.logger.info(f"Applying queued IOC update after analysis {handle.id}")
                self.ioc_store.swap(pending)

    # Analyses

    def start_analysis(self, analysis_type: Union[AnalysisType, str], raw_input: Any) -> RunHandle:
        """
        Start an analysis in the background.

        Raises:
            EngineNotReadyError: If no indicator set is loaded
            OrchestratorBusyError: If a run is already active
        """
        if not isinstance(analysis_type, AnalysisType):
            analysis_type = AnalysisType.from_value(analysis_type)

        with error_context("start_analysis", "ForensicEngine", analysis_type=analysis_type.value):
            if not self.ioc_store.is_loaded:
                raise EngineNotReadyError()
            return self.orchestrator.start(analysis_type, raw_input)

    def analyze(
        self,
        analysis_type: Union[AnalysisType, str],
        raw_input: Any,
        timeout: Optional[float] = None
    ) -> RunHandle:
        """Run an analysis and wait for it to reach a terminal state."""
        handle = self.start_analysis(analysis_type, raw_input)
        handle.wait(timeout)
        return handle

    def quick_check(self, indicators: Sequence[str]) -> RunHandle:
        """
        Check a list of indicator strings (domains, URLs, IPs, paths, package
        names) against the loaded set in the background.

        Raises:
            EngineNotReadyError: If no indicator set is loaded
            OrchestratorBusyError: If a run is already active
            ValueError: If given a single string instead of a list
        """
        with error_context("quick_check", "ForensicEngine"):
            if not self.ioc_store.is_loaded:
                raise EngineNotReadyError()
            return self.orchestrator.start_quick_check(indicators)

    def cancel(self, handle: RunHandle) -> bool:
        return self.orchestrator.cancel(handle)

    def subscribe_progress(self, handle: RunHandle, callback: Callable[[ProgressEvent], None]) -> Callable[[], None]:
        """Subscribe to ``{phase, fraction}`` events of a run; returns an unsubscribe function."""
        return handle.subscribe(callback)

    def current_result(self) -> Optional[AnalysisResult]:
        return self.orchestrator.current_result

    def current_failure(self) -> Optional[RunFailure]:
        return self.orchestrator.current_failure

    def clear_current_analysis(self) -> None:
        self.orchestrator.clear_current_analysis()

    # History and reporting

    def history(self) -> Tuple[AnalysisResult, ...]:
        return self.history_store.all()

    def recent_threats(self, limit: int = 10) -> List[Tuple[AnalysisResult, Finding]]:
        return self.history_store.recent_threats(limit)

    def capabilities(self) -> List[Dict[str, str]]:
        """Supported analysis types with their descriptions."""
        return [
            {
                'type': analysis_type.value,
                'name': analysis_type.display_name,
                'description': analysis_type.description,
            }
            for analysis_type in self.extractors.supported_types()
        ]

    def error_stats(self) -> Dict[str, int]:
        """Reported error counts keyed by ``component_severity``."""
        return get_error_reporter().get_error_stats()
