"""
Base extractor interface for forensic artifacts.

Defines the contract that all artifact extractors must implement: turn an
opaque, format-specific input into a normalized sequence of observations.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from orbguard_core.logic.models import (
    AnalysisType, ExtractorConfig, Observation, ObservationKind,
    ExtractError, InvalidFormatError, RunCancelledError,
)


# Receives the extractor-local completion fraction; raises RunCancelledError to stop
Checkpoint = Callable[[float], None]


@dataclass(frozen=True)
class ExtractionResult:
    """Observations produced from one artifact plus parse quality counters."""
    observations: Tuple[Observation, ...]
    truncated: bool = False
    lines_seen: int = 0
    recognized: int = 0
    skipped: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)


class ExtractionState:
    """
    Mutable bookkeeping for a single ``extract`` call.

    Counts recognized and skipped input, enforces the work caps and calls the
    checkpoint once per chunk so the orchestrator can report progress and
    observe cancellation.
    """

    def __init__(self, config: ExtractorConfig, checkpoint: Optional[Checkpoint] = None):
        self.config = config
        self.checkpoint = checkpoint
        self.observations: List[Observation] = []
        self.lines_seen = 0
        self.recognized = 0
        self.skipped = 0
        self.truncated = False
        self.metadata: Dict[str, Any] = {}
        self._since_checkpoint = 0

    def add(self, observation: Observation) -> None:
        self.observations.append(observation)

    def tick(self, fraction: float) -> None:
        """Account for one unit of work; reports progress every ``chunk_size`` units."""
        self._since_checkpoint += 1
        if self._since_checkpoint >= self.config.chunk_size:
            self._since_checkpoint = 0
            self.report(fraction)

    def report(self, fraction: float) -> None:
        if self.checkpoint is not None:
            self.checkpoint(max(0.0, min(1.0, fraction)))

    def iter_lines(self, text: str) -> Iterator[Tuple[int, str]]:
        """Yield stripped, non-empty lines, honouring the line caps."""
        lines = text.splitlines()
        total = len(lines) or 1
        for line_number, line in enumerate(lines, 1):
            if self.lines_seen >= self.config.max_lines:
                self.truncated = True
                break

            self.lines_seen += 1
            self.tick(line_number / total)

            line = line.strip()
            if not line:
                continue

            # Very long lines are likely binary data or corruption
            if len(line) > self.config.max_line_length:
                self.skipped += 1
                continue

            yield line_number, line

    def result(self) -> ExtractionResult:
        self.report(1.0)
        return ExtractionResult(
            observations=tuple(self.observations),
            truncated=self.truncated,
            lines_seen=self.lines_seen,
            recognized=self.recognized,
            skipped=self.skipped,
            metadata=dict(self.metadata)
        )


class BaseExtractor(ABC):
    """
    Base interface for all artifact extractors.

    Subclasses implement ``_extract``; ``extract`` wraps it so that any
    unexpected failure on malformed input surfaces as an ``ExtractError``.
    """

    def __init__(self, config: Optional[ExtractorConfig] = None):
        """Initialize extractor with configuration."""
        self.config = config or ExtractorConfig()
        self.logger = logging.getLogger(f"extractor.{self.__class__.__name__}")

    @property
    @abstractmethod
    def analysis_type(self) -> AnalysisType:
        """Analysis type this extractor serves."""
        pass

    @property
    @abstractmethod
    def phase_label(self) -> str:
        """Human-readable label reported while this extractor runs."""
        pass

    @property
    def artifact_name(self) -> str:
        return self.analysis_type.display_name.lower()

    @abstractmethod
    def _extract(self, raw_input: Any, state: ExtractionState) -> None:
        """
        Parse ``raw_input`` and record observations on ``state``.

        Raises:
            ExtractError: If the input is not the expected artifact
        """
        pass

    def extract(self, raw_input: Any, checkpoint: Optional[Checkpoint] = None) -> ExtractionResult:
        """
        Extract observations from a raw artifact.

        Args:
            raw_input: Opaque, format-specific input
            checkpoint: Called with the completion fraction after each chunk

        Returns:
            ExtractionResult with observations and truncation flag

        Raises:
            ExtractError: If the input cannot be used
            RunCancelledError: If the checkpoint signals cancellation
        """
        state = ExtractionState(self.config, checkpoint)

        try:
            self._extract(raw_input, state)
        except (ExtractError, RunCancelledError):
            raise
        except Exception as e:
            self.logger.warning(f"Malformed {self.artifact_name} input: {type(e).__name__}: {e}")
            raise InvalidFormatError(self.artifact_name, f"{type(e).__name__}: {e}") from e

        result = state.result()
        self.logger.info(
            f"Extracted {len(result.observations)} observations from {result.lines_seen} lines "
            f"({result.recognized} recognized, {result.skipped} skipped"
            f"{', truncated' if result.truncated else ''})"
        )
        return result

    def observation(
        self,
        kind: ObservationKind,
        value: str,
        context: Optional[Dict[str, Any]] = None,
        timestamp=None
    ) -> Observation:
        """Helper to build an observation tagged with this extractor's analysis type."""
        return Observation(
            kind=kind,
            value=value,
            extracted_from=self.analysis_type,
            context={k: v for k, v in (context or {}).items() if v is not None},
            timestamp=timestamp
        )

    def read_text(self, raw_input: Any) -> str:
        """
        Coerce a text-like input to ``str``.

        ``pathlib.Path`` inputs are read from disk; ``bytes`` are decoded as
        UTF-8 with replacement so malformed bytes never raise.
        """
        if isinstance(raw_input, Path):
            try:
                with open(raw_input, 'r', encoding='utf-8', errors='replace') as f:
                    return f.read()
            except OSError as e:
                raise InvalidFormatError(self.artifact_name, f"cannot read {raw_input}: {e}")

        if isinstance(raw_input, (bytes, bytearray)):
            return bytes(raw_input).decode('utf-8', errors='replace')

        if isinstance(raw_input, str):
            return raw_input

        raise InvalidFormatError(self.artifact_name, f"unsupported input type {type(raw_input).__name__}")
