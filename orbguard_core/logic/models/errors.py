"""
Error taxonomy for the forensic engine.

Every error carries an ``error_type`` classification and a ``recoverable``
flag so callers can decide whether the engine itself is still usable.
"""

from typing import Optional


class ForensicError(Exception):
    """Base class for all engine errors."""

    error_type = "general"
    recoverable = False

    def __init__(self, message: str, phase: Optional[str] = None):
        """
        Initialize a forensic error.

        Args:
            message: Error message
            phase: Analysis phase reached when the error occurred
        """
        super().__init__(message)
        self.phase = phase
        if phase:
            self.message = f"{message} (phase: {phase})"
        else:
            self.message = message

    def __str__(self) -> str:
        return self.message


# IOC loading

class IocLoadError(ForensicError):
    """IOC feed could not be loaded. Fatal to engine start."""
    error_type = "load"


class MalformedIocError(IocLoadError):
    """A record in the IOC feed is corrupt."""

    def __init__(self, message: str, record_index: Optional[int] = None):
        if record_index is not None:
            message = f"Malformed IOC record #{record_index}: {message}"
        super().__init__(message)
        self.record_index = record_index


class EmptyIocSetError(IocLoadError):
    """The IOC feed contained zero usable records."""

    def __init__(self, message: str = "IOC feed contains no records"):
        super().__init__(message)


# Extraction

class ExtractError(ForensicError):
    """Artifact extraction failed. Aborts only the current run."""
    error_type = "extract"
    recoverable = True


class InvalidFormatError(ExtractError):
    """Input is missing the structure the extractor expects."""

    def __init__(self, expected_format: str, detail: str = ""):
        message = f"Invalid input: expected {expected_format}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)
        self.expected_format = expected_format


class NoRecognizedContentError(ExtractError):
    """Not a single line/record of the input could be parsed."""

    def __init__(self, artifact: str, lines_seen: int = 0):
        super().__init__(f"No recognized {artifact} content in {lines_seen} lines")
        self.artifact = artifact
        self.lines_seen = lines_seen


class TruncatedError(ExtractError):
    """
    Extraction hit its work cap.

    Extractors report truncation through ``ExtractionResult.truncated`` rather
    than raising; this type exists for callers that want to escalate it.
    """

    def __init__(self, artifact: str, limit: int):
        super().__init__(f"{artifact} extraction stopped after {limit} items")
        self.limit = limit


# Orchestration

class OrchestratorError(ForensicError):
    """Errors raised by the analysis orchestrator."""
    error_type = "orchestrator"
    recoverable = True


class OrchestratorBusyError(OrchestratorError):
    """A run is already in progress."""

    def __init__(self, active_run_id: str):
        super().__init__(f"Analysis {active_run_id} is already running")
        self.active_run_id = active_run_id


class RunCancelledError(OrchestratorError):
    """Raised inside a run when its cancellation flag is observed."""

    def __init__(self, run_id: str, phase: Optional[str] = None):
        super().__init__(f"Analysis {run_id} was cancelled", phase)
        self.run_id = run_id


class EngineNotReadyError(OrchestratorError):
    """A scan was requested before a valid IOC set was loaded."""

    def __init__(self):
        super().__init__("No valid IOC set loaded; scans are refused until one is")
        self.recoverable = False


# Correlation

class CorrelationError(ForensicError):
    """Reserved for indicator pattern compile failures during correlation."""
    error_type = "correlation"
