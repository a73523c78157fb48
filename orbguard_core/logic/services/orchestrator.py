"""
Analysis orchestrator.

Sequences extraction and correlation for one requested analysis type on a
background worker thread, reports phase/progress, enforces that at most one
run is active and hands completed results to the history store.

Progress is split across the phases: extraction covers 0.0-0.6, correlation
0.6-0.95, and a completed run ends at exactly 1.0.
"""

import logging
import threading
import time
import uuid
from collections import abc
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, Sequence, Tuple

from orbguard_core.logic.models import (
    AnalysisResult, AnalysisType, Observation, RunState,
    ForensicError, InvalidFormatError, OrchestratorBusyError, RunCancelledError, EngineNotReadyError,
)
from .correlation_service import CorrelationService


EXTRACTION_SHARE = 0.6
CORRELATION_SHARE = 0.35
CORRELATION_PHASE = "Matching indicators"
COMPLETED_PHASE = "Completed"


@dataclass(frozen=True)
class ProgressEvent:
    """One progress notification for a run."""
    run_id: str
    state: RunState
    phase: str
    fraction: float


@dataclass(frozen=True)
class RunFailure:
    """Error and phase reached by the last failed run, kept for display."""
    run_id: str
    analysis_type: AnalysisType
    error: BaseException
    phase: Optional[str]

    @property
    def message(self) -> str:
        return str(self.error)


ProgressCallback = Callable[[ProgressEvent], None]


class RunHandle:
    """
    Handle to a single analysis run.

    Consumers may poll ``state``/``progress``/``phase`` or ``subscribe`` to
    progress events. Events are only delivered while the run is live; a
    cancelled or failed run goes quiet.
    """

    def __init__(self, analysis_type: AnalysisType, run_id: Optional[str] = None):
        self.id = run_id or str(uuid.uuid4())
        self.analysis_type = analysis_type
        self._state = RunState.IDLE
        self._progress = 0.0
        self._phase = "Queued"
        self._result: Optional[AnalysisResult] = None
        self._error: Optional[BaseException] = None
        self._subscribers: List[ProgressCallback] = []
        self._lock = threading.RLock()
        self._cancel_requested = threading.Event()
        self._done = threading.Event()
        self.logger = logging.getLogger("analysis.orchestrator")

    @property
    def state(self) -> RunState:
        with self._lock:
            return self._state

    @property
    def progress(self) -> float:
        with self._lock:
            return self._progress

    @property
    def phase(self) -> str:
        with self._lock:
            return self._phase

    @property
    def result(self) -> Optional[AnalysisResult]:
        with self._lock:
            return self._result

    @property
    def error(self) -> Optional[BaseException]:
        with self._lock:
            return self._error

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested.is_set()

    def subscribe(self, callback: ProgressCallback) -> Callable[[], None]:
        """Register a progress callback; returns a function that unsubscribes it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the run reaches a terminal state; False on timeout."""
        return self._done.wait(timeout)

    # Orchestrator side

    def request_cancel(self) -> bool:
        with self._lock:
            if not self._state.is_cancellable:
                return False
            self._cancel_requested.set()
            return True

    def check_cancelled(self) -> None:
        if self._cancel_requested.is_set():
            raise RunCancelledError(self.id, self.phase)

    def transition(self, state: RunState, phase: str, fraction: float) -> None:
        with self._lock:
            self._state = state
        self.report(phase, fraction)

    def report(self, phase: str, fraction: float) -> None:
        """Record progress and notify subscribers; never moves backwards."""
        with self._lock:
            if self._state.is_terminal or self._cancel_requested.is_set():
                return
            self._progress = max(self._progress, min(1.0, max(0.0, fraction)))
            self._phase = phase
            event = ProgressEvent(self.id, self._state, phase, self._progress)
            subscribers = list(self._subscribers)
        self._notify(subscribers, event)

    def complete(self, result: AnalysisResult, commit: Callable[[AnalysisResult], None]) -> None:
        """
        Finish the run successfully.

        ``commit`` runs under the handle lock, so a cancel request either
        lands before it (and the run is cancelled) or is refused.
        """
        with self._lock:
            self.check_cancelled()
            commit(result)
            self._state = RunState.COMPLETED
            self._progress = 1.0
            self._phase = COMPLETED_PHASE
            self._result = result
            event = ProgressEvent(self.id, self._state, self._phase, 1.0)
            subscribers = list(self._subscribers)
        self._notify(subscribers, event)

    def abort(self, state: RunState, error: Optional[BaseException] = None) -> None:
        with self._lock:
            self._state = state
            self._error = error

    def mark_done(self) -> None:
        self._done.set()

    def _notify(self, subscribers: List[ProgressCallback], event: ProgressEvent) -> None:
        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                self.logger.exception(f"Progress subscriber failed for run {self.id}")


class AnalysisOrchestrator:
    """
    Runs analyses one at a time.

    Collaborators are injected: an extractor registry, the IOC store, the
    history store and the correlation service.
    """

    def __init__(self, extractors, ioc_store, history, correlation: Optional[CorrelationService] = None):
        self.extractors = extractors
        self.ioc_store = ioc_store
        self.history = history
        self.correlation = correlation or CorrelationService()
        self.logger = logging.getLogger("analysis.orchestrator")

        self._lock = threading.Lock()
        # Guards current result/failure; taken under a handle lock, never the other way round
        self._current_lock = threading.Lock()
        self._active: Optional[RunHandle] = None
        self._current_result: Optional[AnalysisResult] = None
        self._current_failure: Optional[RunFailure] = None
        self._finished_listeners: List[Callable[[RunHandle], None]] = []

    @property
    def active_run(self) -> Optional[RunHandle]:
        with self._lock:
            if self._active is not None and not self._active.state.is_terminal:
                return self._active
            return None

    @property
    def is_busy(self) -> bool:
        return self.active_run is not None

    @property
    def current_result(self) -> Optional[AnalysisResult]:
        with self._current_lock:
            return self._current_result

    @property
    def current_failure(self) -> Optional[RunFailure]:
        with self._current_lock:
            return self._current_failure

    def clear_current_analysis(self) -> None:
        with self._current_lock:
            self._current_result = None
            self._current_failure = None

    def add_finished_listener(self, callback: Callable[[RunHandle], None]) -> None:
        """Called on the worker thread once a run reaches a terminal state."""
        self._finished_listeners.append(callback)

    def start(self, analysis_type: AnalysisType, raw_input: Any) -> RunHandle:
        """
        Start an analysis on a background worker.

        Raises:
            OrchestratorBusyError: If a run is already in progress
            EngineNotReadyError: If no IOC set is loaded
            ValueError: If no extractor serves the analysis type
        """
        if not self.extractors.supports(analysis_type):
            raise ValueError(f"Unsupported analysis type: {analysis_type.value}")

        return self._launch(analysis_type, lambda handle: self._extract(handle, raw_input))

    def start_quick_check(self, indicators: Sequence[str]) -> RunHandle:
        """
        Match a list of indicator strings against the indicator set.

        Runs as a ``fullScan`` analysis with the same busy guard, progress and
        history commit as artifact analyses; ``indicators_checked`` on the
        result is the number of supplied indicators.

        Raises:
            OrchestratorBusyError: If a run is already in progress
            EngineNotReadyError: If no IOC set is loaded
            ValueError: If ``indicators`` is a single string rather than a list
        """
        if isinstance(indicators, (str, bytes)):
            raise ValueError("Quick check takes a list of indicator strings")

        values = list(indicators)
        return self._launch(
            AnalysisType.FULL_SCAN,
            lambda handle: self._extract_indicators(handle, values),
            indicators_checked=len(values)
        )

    def _launch(
        self,
        analysis_type: AnalysisType,
        extract: Callable[[RunHandle], Tuple[List[Observation], bool]],
        indicators_checked: Optional[int] = None
    ) -> RunHandle:
        with self._lock:
            if self._active is not None and not self._active.state.is_terminal:
                raise OrchestratorBusyError(self._active.id)

            # Snapshot: the set is fixed for the whole run
            ioc_set = self.ioc_store.current
            if ioc_set is None:
                raise EngineNotReadyError()

            handle = RunHandle(analysis_type)
            self._active = handle

        self.logger.info(f"Starting {analysis_type.value} analysis {handle.id}")
        worker = threading.Thread(
            target=self._run,
            args=(handle, ioc_set, extract, indicators_checked),
            name=f"analysis-{handle.id[:8]}",
            daemon=True
        )
        worker.start()
        return handle

    def run(self, analysis_type: AnalysisType, raw_input: Any, timeout: Optional[float] = None) -> RunHandle:
        """Start an analysis and block until it reaches a terminal state."""
        handle = self.start(analysis_type, raw_input)
        handle.wait(timeout)
        return handle

    def cancel(self, handle: RunHandle) -> bool:
        """
        Request cooperative cancellation.

        Returns:
            True if the request was accepted (run in EXTRACTING/CORRELATING)
        """
        accepted = handle.request_cancel()
        if accepted:
            self.logger.info(f"Cancellation requested for analysis {handle.id}")
        return accepted

    def _run(self, handle: RunHandle, ioc_set, extract, indicators_checked: Optional[int]) -> None:
        start_time = time.time()
        result = AnalysisResult(id=handle.id, type=handle.analysis_type, started_at=datetime.now(timezone.utc))

        try:
            handle.transition(RunState.EXTRACTING, "Reading artifacts", 0.0)
            observations, truncated = extract(handle)
            handle.check_cancelled()

            handle.transition(RunState.CORRELATING, CORRELATION_PHASE, EXTRACTION_SHARE)

            def correlation_checkpoint(fraction: float) -> None:
                handle.check_cancelled()
                handle.report(CORRELATION_PHASE, EXTRACTION_SHARE + CORRELATION_SHARE * fraction)

            findings = self.correlation.correlate(observations, ioc_set, correlation_checkpoint)

            completed = result.complete(
                findings,
                datetime.now(timezone.utc),
                truncated=truncated,
                observations_analyzed=len(observations),
                indicators_checked=(
                    len(ioc_set.enabled_records()) if indicators_checked is None else indicators_checked
                ),
                ioc_version=ioc_set.version
            )
            handle.complete(completed, self._commit)

            self.logger.info(
                f"Analysis {handle.id} completed in {time.time() - start_time:.1f}s: "
                f"{len(completed.findings)} findings{' (partial)' if truncated else ''}"
            )

        except RunCancelledError:
            handle.abort(RunState.CANCELLED)
            self.logger.info(f"Analysis {handle.id} cancelled during '{handle.phase}'")

        except ForensicError as e:
            self._fail(handle, e)

        except Exception as e:
            self.logger.error(f"Analysis {handle.id} crashed: {e}", exc_info=True)
            self._fail(handle, e)

        finally:
            try:
                for listener in self._finished_listeners:
                    listener(handle)
            finally:
                handle.mark_done()

    def _commit(self, result: AnalysisResult) -> None:
        self.history.append(result)
        with self._current_lock:
            self._current_result = result
            self._current_failure = None

    def _fail(self, handle: RunHandle, error: BaseException) -> None:
        phase = handle.phase
        handle.abort(RunState.FAILED, error)
        with self._current_lock:
            self._current_failure = RunFailure(handle.id, handle.analysis_type, error, phase)
        self.logger.warning(f"Analysis {handle.id} failed during '{phase}': {error}")

    def _extract(self, handle: RunHandle, raw_input: Any) -> Tuple[List[Observation], bool]:
        """Run the extractor(s) for the handle's analysis type."""
        if handle.analysis_type == AnalysisType.FULL_SCAN:
            plan = self._full_scan_plan(raw_input)
        else:
            plan = [(handle.analysis_type, raw_input)]

        observations: List[Observation] = []
        truncated = False

        for position, (analysis_type, artifact) in enumerate(plan):
            extraction = self._extract_step(
                handle, self.extractors.get(analysis_type), artifact, position, len(plan)
            )
            observations.extend(extraction.observations)
            truncated = truncated or extraction.truncated

        return observations, truncated

    def _extract_indicators(self, handle: RunHandle, values: List[str]) -> Tuple[List[Observation], bool]:
        extraction = self._extract_step(handle, self.extractors.indicators, values)
        return list(extraction.observations), extraction.truncated

    def _extract_step(self, handle: RunHandle, extractor, artifact: Any, position: int = 0, count: int = 1):
        """Run one extractor over its slice of the extraction progress share."""
        low = EXTRACTION_SHARE * position / count
        span = EXTRACTION_SHARE / count

        handle.check_cancelled()
        handle.report(extractor.phase_label, low)

        def checkpoint(fraction: float) -> None:
            handle.check_cancelled()
            handle.report(extractor.phase_label, low + span * fraction)

        return extractor.extract(artifact, checkpoint)

    def _full_scan_plan(self, raw_input: Any) -> List[Tuple[AnalysisType, Any]]:
        """Resolve a ``{analysis type: input}`` mapping into declaration order."""
        if not isinstance(raw_input, abc.Mapping) or not raw_input:
            raise InvalidFormatError("fullScan mapping of analysis type to input", "no artifacts supplied")

        requested = {}
        for key, artifact in raw_input.items():
            try:
                analysis_type = key if isinstance(key, AnalysisType) else AnalysisType.from_value(str(key))
            except ValueError as e:
                raise InvalidFormatError("fullScan mapping of analysis type to input", str(e))
            if analysis_type == AnalysisType.FULL_SCAN or not self.extractors.supports(analysis_type):
                raise InvalidFormatError(
                    "fullScan mapping of analysis type to input", f"unsupported artifact type {key}"
                )
            requested[analysis_type] = artifact

        return [(t, requested[t]) for t in AnalysisType if t in requested]
