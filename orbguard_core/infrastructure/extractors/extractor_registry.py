"""
Extractor registry mapping analysis types to artifact extractors.
"""

import logging
from typing import Dict, List, Optional

from orbguard_core.logic.models import AnalysisType, ExtractorConfig

from .base_extractor import BaseExtractor
from .backup_extractor import BackupExtractor
from .data_usage_extractor import DataUsageExtractor
from .indicator_list_extractor import IndicatorListExtractor
from .logcat_extractor import LogcatExtractor
from .shutdown_log_extractor import ShutdownLogExtractor
from .sysdiagnose_extractor import SysdiagnoseExtractor


class ExtractorRegistry:
    """
    Registry holding one extractor instance per analysis type.

    ``fullScan`` has no extractor of its own; the orchestrator composes it
    from the registered ones. Quick checks of indicator lists go through
    ``indicators``, which is held outside the per-type table.
    """

    DEFAULT_EXTRACTORS = (
        ShutdownLogExtractor,
        BackupExtractor,
        SysdiagnoseExtractor,
        LogcatExtractor,
        DataUsageExtractor,
    )

    def __init__(self, config: Optional[ExtractorConfig] = None, register_defaults: bool = True):
        self.config = config or ExtractorConfig()
        self._extractors: Dict[AnalysisType, BaseExtractor] = {}
        self.indicators = IndicatorListExtractor(self.config)
        self.logger = logging.getLogger("extractor.registry")

        if register_defaults:
            for extractor_class in self.DEFAULT_EXTRACTORS:
                self.register(extractor_class(self.config))

    def register(self, extractor: BaseExtractor) -> None:
        """
        Register an extractor instance for the analysis type it serves.

        Raises:
            ValueError: If the instance is not an extractor or serves ``fullScan``
        """
        if not isinstance(extractor, BaseExtractor):
            raise ValueError(f"{extractor!r} must inherit from BaseExtractor")

        analysis_type = extractor.analysis_type
        if analysis_type == AnalysisType.FULL_SCAN:
            raise ValueError("fullScan is composed from the other extractors and cannot be registered")

        if analysis_type in self._extractors:
            self.logger.debug(f"Replacing extractor for {analysis_type.value}")
        self._extractors[analysis_type] = extractor
        self.logger.debug(f"Registered {type(extractor).__name__} for {analysis_type.value}")

    def get(self, analysis_type: AnalysisType) -> BaseExtractor:
        """
        Get the extractor for an analysis type.

        Raises:
            ValueError: If no extractor is registered for the type
        """
        try:
            return self._extractors[analysis_type]
        except KeyError:
            available = [t.value for t in self._extractors]
            raise ValueError(
                f"No extractor registered for {analysis_type.value}. Available: {available}"
            ) from None

    def supports(self, analysis_type: AnalysisType) -> bool:
        if analysis_type == AnalysisType.FULL_SCAN:
            return bool(self._extractors)
        return analysis_type in self._extractors

    def supported_types(self) -> List[AnalysisType]:
        """Registered analysis types in declaration order, ``fullScan`` first when available."""
        types = [t for t in AnalysisType if t in self._extractors]
        if types:
            types.insert(0, AnalysisType.FULL_SCAN)
        return types
