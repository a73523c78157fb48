"""
Enhanced logging system for the OrbGuard forensic engine.

Logs to stderr (keeping stdout clean for JSON output) and, when an output
directory is given, to a timestamped DEBUG log file kept next to the report
for troubleshooting.
"""

import atexit
import logging
import platform
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


class EnhancedLogger:
    """
    Logging setup shared by the CLI and embedding applications.

    Installs handlers on the root logger and restores the previous ones on
    ``cleanup`` (also registered with ``atexit``).
    """

    def __init__(self):
        self.handlers: List[logging.Handler] = []
        self.original_handlers: List[logging.Handler] = []
        self.original_level: Optional[int] = None
        self.log_file_path: Optional[Path] = None

        atexit.register(self.cleanup)

    def setup_logging(
        self,
        output_directory: Optional[str] = None,
        log_filename: str = "forensics.log",
        verbose: bool = False
    ) -> Optional[str]:
        """
        Set up console and optional file logging.

        Args:
            output_directory: Directory for the log file; no file log when None
            log_filename: Base name of the log file, prefixed with a timestamp
            verbose: Show INFO on the console instead of WARNING and above

        Returns:
            Path to the log file, or None when file logging is off
        """
        self.cleanup()
        self.log_file_path = None

        root_logger = logging.getLogger()
        self.original_handlers = root_logger.handlers[:]
        self.original_level = root_logger.level
        root_logger.handlers.clear()
        root_logger.setLevel(logging.DEBUG)

        formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(formatter)
        console_handler.setLevel(logging.INFO if verbose else logging.WARNING)
        root_logger.addHandler(console_handler)
        self.handlers.append(console_handler)

        if output_directory:
            output_dir = Path(output_directory)
            output_dir.mkdir(parents=True, exist_ok=True)
            timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
            self.log_file_path = output_dir / f"{timestamp}_{log_filename}"

            file_handler = logging.FileHandler(self.log_file_path, mode='w', encoding='utf-8')
            file_handler.setFormatter(formatter)
            file_handler.setLevel(logging.DEBUG)
            root_logger.addHandler(file_handler)
            self.handlers.append(file_handler)

        logger = logging.getLogger("enhanced.logging")
        logger.info(f"Console logging level: {'INFO' if verbose else 'WARNING'}")
        if self.log_file_path:
            logger.info(f"Log file: {self.log_file_path}")
        logger.debug(f"Platform: {platform.platform()}, Python {platform.python_version()}")

        return self.get_log_file_path()

    def create_analysis_log_entry(self, stage: str, message: str, details: Optional[Dict[str, Any]] = None):
        """Create a structured log entry for an analysis stage."""
        logger = logging.getLogger(f"analysis.{stage}")

        log_message = f"[{stage.upper()}] {message}"
        if details:
            log_message += f" | Details: {details}"

        logger.info(log_message)

    def log_analysis_summary(self, result, execution_time: float):
        """Log the outcome of a completed analysis."""
        logger = logging.getLogger("analysis.summary")
        statistics = result.get_summary_statistics()

        logger.info("=== Analysis Summary ===")
        logger.info(f"Analysis: {result.id} ({result.type.value})")
        logger.info(f"Observations analyzed: {result.observations_analyzed:,}")
        logger.info(f"Indicators checked: {result.indicators_checked:,} (version {result.ioc_version})")
        logger.info(f"Findings: {statistics['total_findings']} {statistics['severity_counts']}")
        for finding in result.findings:
            logger.info(f"  {finding.get_summary()}")
        if result.truncated:
            logger.warning("Partial analysis: extraction hit its work cap")
        logger.info(f"Execution time: {execution_time:.2f} seconds")

    def log_error_details(self, error: Exception, context: str = ""):
        """Log detailed error information for troubleshooting."""
        logger = logging.getLogger("error.details")

        if context:
            logger.error(f"Context: {context}")
        logger.error(f"Error type: {getattr(error, 'error_type', type(error).__name__)}")
        logger.error(f"Error message: {error}")
        phase = getattr(error, 'phase', None)
        if phase:
            logger.error(f"Phase reached: {phase}")

        # Stack trace goes to the file log only
        logger.debug("Full stack trace:", exc_info=(type(error), error, error.__traceback__))

    def finalize_logging(self, success: bool = True):
        """Finalize logging with completion status."""
        logger = logging.getLogger("enhanced.logging")

        if success:
            logger.info("Analysis completed successfully")
        else:
            logger.error("Analysis completed with errors")

        if self.log_file_path and self.log_file_path.exists():
            logger.info(f"Log saved: {self.log_file_path} ({self.log_file_path.stat().st_size:,} bytes)")

        for handler in self.handlers:
            handler.flush()

    def cleanup(self):
        """Close installed handlers and restore the original root configuration."""
        if not self.handlers:
            return

        root_logger = logging.getLogger()
        for handler in self.handlers:
            root_logger.removeHandler(handler)
            handler.close()
        self.handlers.clear()

        for handler in self.original_handlers:
            root_logger.addHandler(handler)
        self.original_handlers.clear()
        if self.original_level is not None:
            root_logger.setLevel(self.original_level)
            self.original_level = None

    def get_log_file_path(self) -> Optional[str]:
        """Get the path to the current log file."""
        return str(self.log_file_path) if self.log_file_path else None


# Global instance for use throughout the application
enhanced_logger = EnhancedLogger()
