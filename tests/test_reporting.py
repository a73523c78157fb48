import io
import json
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from datetime import datetime, timedelta, timezone
from pathlib import Path

from orbguard_core import __version__
from orbguard_core.cli import main
from orbguard_core.infrastructure.logging import enhanced_logger
from orbguard_core.logic.models import (
    AnalysisResult, AnalysisType, DataUsageConfig, EngineConfig, Finding, IocCategory, Severity,
)
from orbguard_core.logic.services import ReportService

from forensic_samples import SHUTDOWN_LOG, feed_jsonl

STARTED = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


def result_with(findings, truncated=False):
    return AnalysisResult("run-1", AnalysisType.SHUTDOWN_LOG, STARTED).complete(
        findings, STARTED + timedelta(seconds=4), truncated=truncated,
        ioc_version="2024.06", indicators_checked=4
    )


PEGASUS_FINDING = Finding(
    title="Pegasus-class indicator detected",
    description="Process matched a known Pegasus indicator",
    category=IocCategory.PEGASUS,
    severity=Severity.CRITICAL,
    matched_ioc_ids=frozenset({"pegasus-rolexd"}),
    evidence=("process: /private/var/db/rolexd",),
    confidence=0.5
)


class ReportServiceTest(unittest.TestCase):
    def setUp(self):
        self.reports = ReportService()

    def test_compromised_report(self):
        report = self.reports.remediation_report(result_with([PEGASUS_FINDING]))

        self.assertIn("## DEVICE MAY BE COMPROMISED", report)
        self.assertIn("- Critical: 1", report)
        self.assertIn("### Pegasus-class indicator detected", report)
        self.assertIn("`process: /private/var/db/rolexd`", report)
        self.assertIn("Factory reset the device", report)
        self.assertIn("**Indicator Set:** 2024.06 (4 indicators)", report)

    def test_clean_and_partial_report(self):
        report = self.reports.remediation_report(result_with([], truncated=True))

        self.assertIn("## No Indicators of Compromise Found", report)
        self.assertIn("Partial analysis", report)
        self.assertNotIn("## Detailed Findings", report)
        self.assertIn("Keep the operating system updated", report)

    def test_export_json(self):
        document = json.loads(self.reports.export_json(result_with([PEGASUS_FINDING])))

        self.assertEqual(document["id"], "run-1")
        self.assertEqual(document["type"], "shutdownLog")
        self.assertTrue(document["hasThreat"])
        self.assertEqual(document["findings"][0]["matchedIocIds"], ["pegasus-rolexd"])
        self.assertEqual(document["summary"]["severity_counts"]["critical"], 1)


class EngineConfigTest(unittest.TestCase):
    def test_defaults(self):
        config = EngineConfig()
        self.assertEqual(config.data_usage.multiplier, 3.0)
        self.assertEqual(config.correlation.max_evidence, 5)
        self.assertIsNone(config.history.path)

    def test_yaml_round_trip(self):
        config = EngineConfig.from_dict({
            "data_usage": {"multiplier": 5, "baseline_window": 3},
            "history": {"path": "/tmp/history.jsonl"},
        })
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "config.yaml"
            config.save_to_file(str(path))
            loaded = EngineConfig.from_file(str(path))

        self.assertEqual(loaded.data_usage.multiplier, 5.0)
        self.assertEqual(loaded.data_usage.baseline_window, 3)
        self.assertEqual(loaded.history.path, "/tmp/history.jsonl")
        self.assertEqual(loaded.to_dict(), config.to_dict())

    def test_invalid_values(self):
        with self.assertRaises(ValueError):
            DataUsageConfig(multiplier=1.0)
        with self.assertRaises(ValueError):
            EngineConfig.from_dict({"extractors": {"max_lines": 0}})
        with self.assertRaises(FileNotFoundError):
            EngineConfig.from_file("/nonexistent/orbguard.yaml")


class CliTest(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(self.tmp.name)
        self.feed = self.root / "feed.jsonl"
        self.feed.write_text(feed_jsonl(), encoding="utf-8")
        self.log = self.root / "shutdown.log"
        self.log.write_text(SHUTDOWN_LOG, encoding="utf-8")

    def tearDown(self):
        enhanced_logger.cleanup()
        self.tmp.cleanup()

    def run_cli(self, *argv):
        stdout, stderr = io.StringIO(), io.StringIO()
        with redirect_stdout(stdout), redirect_stderr(stderr):
            code = main(list(argv))
        return code, stdout.getvalue(), stderr.getvalue()

    def test_version(self):
        code, out, _ = self.run_cli("--version")
        self.assertEqual(code, 0)
        self.assertEqual(out.strip(), __version__)

    def test_usage_errors(self):
        code, _, err = self.run_cli("--ioc", str(self.feed))
        self.assertEqual(code, 2)
        self.assertIn("usage:", err)

        code, _, _ = self.run_cli("--ioc", str(self.feed), "--type", "floppyDisk", str(self.log))
        self.assertEqual(code, 2)

    def test_shutdown_log_json(self):
        code, out, _ = self.run_cli("--ioc", str(self.feed), "--type", "shutdownLog", str(self.log))

        self.assertEqual(code, 0)
        document = json.loads(out)
        self.assertEqual(document["findings"][0]["category"], "pegasus")
        self.assertEqual(document["metadata"], {"engineVersion": __version__, "schemaVersion": 1})

    def test_markdown_report(self):
        code, out, _ = self.run_cli("--ioc", str(self.feed), "--type", "shutdownLog", "--report", str(self.log))
        self.assertEqual(code, 0)
        self.assertTrue(out.startswith("# Forensic Analysis Report"))

    def test_failed_run(self):
        garbage = self.root / "garbage.log"
        garbage.write_text("nothing useful here\n", encoding="utf-8")

        code, out, _ = self.run_cli("--ioc", str(self.feed), "--type", "shutdownLog", str(garbage))

        self.assertEqual(code, 1)
        error = json.loads(out)["error"]
        self.assertEqual(error["type"], "extract")
        self.assertEqual(error["phase"], "Parsing shutdown log")

    def test_missing_feed_fails(self):
        code, out, _ = self.run_cli("--type", "shutdownLog", str(self.log))
        self.assertEqual(code, 1)
        self.assertEqual(json.loads(out)["error"]["type"], "orchestrator")

    def test_missing_feed_file_fails(self):
        code, out, _ = self.run_cli("--ioc", str(self.root / "absent.jsonl"), "--type", "shutdownLog", str(self.log))
        self.assertEqual(code, 1)
        error = json.loads(out)["error"]
        self.assertEqual(error["type"], "load")
        self.assertIn("Could not read IOC feed", error["message"])


if __name__ == "__main__":
    unittest.main()
