import sys
import json
import time
import logging
from pathlib import Path

from . import __version__

USAGE = (
    "usage: orbguard-forensics --ioc FEED --type TYPE INPUT [INPUT ...] "
    "[--config PATH] [--report] [--log-dir DIR] [-v] [--version]\n"
    "  TYPE is one of shutdownLog, backup, sysdiagnose, logcat, dataUsage, fullScan;\n"
    "  fullScan takes TYPE=PATH inputs, e.g. shutdownLog=shutdown.log logcat=logcat.txt"
)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


def _default_config_path():
    # when frozen by PyInstaller, sys._MEIPASS points to bundle root
    if getattr(sys, "frozen", False):
        base = Path(getattr(sys, "_MEIPASS", Path.cwd()))
        return base / "config.yaml"
    # source mode: config lives next to this file
    return Path(__file__).parent / "config.yaml"


def _pop_option(argv, name):
    """Remove ``name VALUE`` from argv (anywhere) and return VALUE."""
    if name not in argv:
        return None
    i = argv.index(name)
    if i + 1 >= len(argv):
        raise ValueError(f"{name} requires a value")
    value = argv[i + 1]
    del argv[i:i + 2]
    return value


def _pop_flag(argv, *names):
    found = False
    for name in names:
        while name in argv:
            argv.remove(name)
            found = True
    return found


def _build_input(analysis_type, inputs):
    from .logic.models import AnalysisType

    if analysis_type == AnalysisType.FULL_SCAN:
        artifacts = {}
        for item in inputs:
            key, sep, path = item.partition("=")
            if not sep or not path:
                raise ValueError(f"fullScan inputs must be TYPE=PATH, got '{item}'")
            artifacts[AnalysisType.from_value(key)] = Path(path)
        return artifacts

    if len(inputs) != 1:
        raise ValueError(f"{analysis_type.value} takes exactly one INPUT")
    return Path(inputs[0])


def main(argv=None):
    argv = list(sys.argv[1:] if argv is None else argv)

    # Fast path for version
    if "--version" in argv:
        print(__version__)
        return EXIT_OK

    if _pop_flag(argv, "--help", "-h"):
        print(USAGE)
        return EXIT_OK

    verbose = _pop_flag(argv, "--verbose", "-v")
    report = _pop_flag(argv, "--report")

    try:
        config_path = _pop_option(argv, "--config")
        ioc_feed = _pop_option(argv, "--ioc")
        type_name = _pop_option(argv, "--type")
        log_dir = _pop_option(argv, "--log-dir")
    except ValueError as e:
        print(f"{e}\n{USAGE}", file=sys.stderr)
        return EXIT_USAGE

    if not type_name or not argv:
        print(USAGE, file=sys.stderr)
        return EXIT_USAGE

    if not config_path:
        default_config = _default_config_path()
        if default_config.exists():
            config_path = str(default_config)

    # Lazy import to avoid pulling heavy deps on --version, etc.
    import yaml
    from .application import ForensicEngine
    from .infrastructure.logging import enhanced_logger
    from .logic.models import AnalysisType, EngineConfig, ForensicError, RunState

    enhanced_logger.setup_logging(log_dir, "forensics.log", verbose=verbose)
    progress_logger = logging.getLogger("progress")

    try:
        analysis_type = AnalysisType.from_value(type_name)
        raw_input = _build_input(analysis_type, argv)
    except ValueError as e:
        print(f"{e}\n{USAGE}", file=sys.stderr)
        enhanced_logger.cleanup()
        return EXIT_USAGE

    try:
        config = EngineConfig.from_file(config_path) if config_path else EngineConfig()
    except (OSError, ValueError, yaml.YAMLError) as e:
        print(f"Invalid configuration {config_path}: {e}", file=sys.stderr)
        enhanced_logger.cleanup()
        return EXIT_USAGE

    start_time = time.time()
    try:
        engine = ForensicEngine(config, ioc_feed=ioc_feed)

        enhanced_logger.create_analysis_log_entry(
            "start",
            f"Starting {analysis_type.display_name}",
            {"indicators": engine.ioc_stats().total_iocs, "inputs": len(argv)}
        )
        handle = engine.start_analysis(analysis_type, raw_input)
        engine.subscribe_progress(
            handle,
            lambda event: progress_logger.info(f"{event.phase}: {event.fraction:.0%}")
        )
        handle.wait()

        if handle.state != RunState.COMPLETED:
            failure = engine.current_failure()
            error = failure.error if failure else handle.error
            phase = failure.phase if failure else handle.phase
            if error is not None:
                enhanced_logger.log_error_details(error, f"phase: {phase}")
            print(json.dumps({
                "error": {
                    "type": getattr(error, "error_type", type(error).__name__) if error else handle.state.value,
                    "message": str(error) if error else f"analysis {handle.state.value}",
                    "phase": phase,
                },
                "metadata": {"engineVersion": __version__, "schemaVersion": 1},
            }, indent=2))
            enhanced_logger.finalize_logging(success=False)
            return EXIT_FAILED

        result = handle.result
        enhanced_logger.log_analysis_summary(result, time.time() - start_time)

    except (ForensicError, OSError) as e:
        enhanced_logger.log_error_details(e, "engine start")
        print(json.dumps({
            "error": {"type": getattr(e, "error_type", type(e).__name__), "message": str(e)},
            "metadata": {"engineVersion": __version__, "schemaVersion": 1},
        }, indent=2))
        enhanced_logger.finalize_logging(success=False)
        return EXIT_FAILED

    if report:
        print(engine.reports.remediation_report(result), end="")
    else:
        document = json.loads(engine.reports.export_json(result))
        # Enrich with metadata (camelCase)
        document["metadata"] = {"engineVersion": __version__, "schemaVersion": 1}
        print(json.dumps(document, indent=2, ensure_ascii=False))

    enhanced_logger.finalize_logging(success=True)
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
