import json
import tempfile
import unittest
from datetime import datetime, timezone
from pathlib import Path

from orbguard_core.infrastructure.extractors import (
    BackupExtractor, BaseExtractor, DataUsageExtractor, ExtractorRegistry, IndicatorListExtractor,
    LogcatExtractor, ShutdownLogExtractor, SysdiagnoseExtractor,
)
from orbguard_core.logic.models import (
    AnalysisType, ExtractorConfig, ObservationKind,
    ExtractError, InvalidFormatError, NoRecognizedContentError, RunCancelledError,
)

from forensic_samples import (
    LOGCAT, PEGASUS_PROCESS, SHUTDOWN_LOG, build_backup, data_usage_samples, sysdiagnose_tar_bytes,
)


def values(result, kind):
    return [o.value for o in result.observations if o.kind == kind]


class ShutdownLogExtractorTest(unittest.TestCase):
    def test_lingering_clients(self):
        result = ShutdownLogExtractor().extract(SHUTDOWN_LOG)

        self.assertEqual(len(result.observations), 3)
        self.assertFalse(result.truncated)
        self.assertEqual(result.metadata["reboots"], 2)

        rolexd = result.observations[1]
        self.assertEqual(rolexd.kind, ObservationKind.PROCESS)
        self.assertEqual(rolexd.value, PEGASUS_PROCESS)
        self.assertEqual(rolexd.context["pid"], 733)
        self.assertEqual(rolexd.context["name"], "rolexd")
        self.assertEqual(rolexd.context["delay_seconds"], 3.21)
        self.assertTrue(rolexd.context["suspicious_location"])
        self.assertEqual(rolexd.timestamp, datetime.fromtimestamp(1612345678, tz=timezone.utc))
        self.assertEqual(rolexd.extracted_from, AnalysisType.SHUTDOWN_LOG)

    def test_unknown_lines_are_counted(self):
        result = ShutdownLogExtractor().extract("garbage line\n" + SHUTDOWN_LOG)
        self.assertEqual(result.skipped, 1)
        self.assertEqual(len(result.observations), 3)

    def test_garbage_input(self):
        with self.assertRaises(NoRecognizedContentError):
            ShutdownLogExtractor().extract("hello\nworld\n")
        with self.assertRaises(NoRecognizedContentError):
            ShutdownLogExtractor().extract("")

    def test_malformed_bytes_only_raise_extract_errors(self):
        with self.assertRaises(ExtractError):
            ShutdownLogExtractor().extract(b"\xff\xfe\x00\x81garbage\x00")
        with self.assertRaises(InvalidFormatError):
            ShutdownLogExtractor().extract(12345)

    def test_line_cap_truncates(self):
        result = ShutdownLogExtractor(ExtractorConfig(max_lines=2)).extract(SHUTDOWN_LOG)
        self.assertTrue(result.truncated)
        self.assertEqual(result.lines_seen, 2)
        self.assertEqual(len(result.observations), 1)
        self.assertIsNone(result.observations[0].timestamp)

    def test_checkpoint_can_cancel(self):
        def checkpoint(fraction):
            raise RunCancelledError("run-1")

        with self.assertRaises(RunCancelledError):
            ShutdownLogExtractor(ExtractorConfig(chunk_size=1)).extract(SHUTDOWN_LOG, checkpoint)

    def test_reads_path_input(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "shutdown.log"
            path.write_text(SHUTDOWN_LOG, encoding="utf-8")
            self.assertEqual(len(ShutdownLogExtractor().extract(path).observations), 3)


class LogcatExtractorTest(unittest.TestCase):
    def test_entries_and_package_events(self):
        result = LogcatExtractor(reference_year=2024).extract(LOGCAT)

        self.assertEqual(result.recognized, 4)
        self.assertEqual(len(values(result, ObservationKind.LOG_LINE)), 4)
        self.assertEqual(values(result, ObservationKind.PROCESS), ["com.spy.tracker", "com.spy.tracker"])
        self.assertEqual(result.metadata["package_events"], 2)

        grant = [o for o in result.observations if o.kind == ObservationKind.PROCESS][1]
        self.assertEqual(grant.context["event"], "grant")
        self.assertEqual(grant.context["permissions"], ("android.permission.READ_SMS",))
        self.assertEqual(grant.timestamp, datetime(2024, 3, 17, 10, 15, 43, 1000, tzinfo=timezone.utc))

    def test_brief_format_has_no_timestamp(self):
        result = LogcatExtractor().extract("W/Watchdog(  512): Blocked in handler\n")
        entry = result.observations[0]
        self.assertEqual(entry.context["tag"], "Watchdog")
        self.assertEqual(entry.context["pid"], 512)
        self.assertIsNone(entry.timestamp)

    def test_garbage_input(self):
        with self.assertRaises(NoRecognizedContentError):
            LogcatExtractor().extract("not a logcat\n")


class DataUsageExtractorTest(unittest.TestCase):
    def test_list_of_samples(self):
        result = DataUsageExtractor().extract(data_usage_samples("com.app", [100, 200, 300]))
        self.assertEqual(values(result, ObservationKind.COUNTER), ["com.app"] * 3)
        self.assertEqual(result.observations[2].context["bytes_out"], 300)
        self.assertIsNotNone(result.observations[0].timestamp)

    def test_json_document_and_csv(self):
        document = json.dumps({"samples": [{"bundleId": "com.a", "bytesSent": 10, "timestamp": "2024-06-01T10:00:00Z"}]})
        result = DataUsageExtractor().extract(document)
        self.assertEqual(result.observations[0].value, "com.a")
        self.assertEqual(result.observations[0].context["bytes_out"], 10)

        csv_text = "app,bytes_out,bytes_in,bucket\ncom.b,42,7,2024-06-01T10:00:00\ncom.b,oops,1,2024-06-01T11:00:00\n"
        result = DataUsageExtractor().extract(csv_text)
        self.assertEqual(len(result.observations), 1)
        self.assertEqual(result.skipped, 1)

    def test_out_of_range_counters_are_skipped(self):
        samples = [{"app": "com.a", "bytes_out": 10}, {"app": "com.b", "bytes_out": float("inf")}]
        result = DataUsageExtractor().extract(samples)
        self.assertEqual(values(result, ObservationKind.COUNTER), ["com.a"])
        self.assertEqual(result.skipped, 1)

    def test_invalid_inputs(self):
        with self.assertRaises(InvalidFormatError):
            DataUsageExtractor().extract("hello world")
        with self.assertRaises(InvalidFormatError):
            DataUsageExtractor().extract({"rows": []})
        with self.assertRaises(NoRecognizedContentError):
            DataUsageExtractor().extract([{"unrelated": 1}])


class SysdiagnoseExtractorTest(unittest.TestCase):
    def test_tar_archive_bytes(self):
        result = SysdiagnoseExtractor().extract(sysdiagnose_tar_bytes())

        self.assertEqual(values(result, ObservationKind.PROCESS), ["/sbin/launchd", PEGASUS_PROCESS])
        self.assertEqual(values(result, ObservationKind.NETWORK), ["api.cdn-predator.net"])

        connection = [o for o in result.observations if o.kind == ObservationKind.NETWORK][0]
        self.assertEqual(connection.context["port"], 443)
        self.assertEqual(connection.context["state"], "ESTABLISHED")

    def test_tar_file_and_directory(self):
        with tempfile.TemporaryDirectory() as tmp:
            archive = Path(tmp) / "sysdiagnose.tar.gz"
            archive.write_bytes(sysdiagnose_tar_bytes())
            self.assertEqual(len(SysdiagnoseExtractor().extract(archive).observations), 3)

            directory = Path(tmp) / "extracted"
            directory.mkdir()
            (directory / "netstat-an.txt").write_text(
                "tcp4  0  0  10.0.0.2:50000  203.0.113.9:8443  ESTABLISHED\n", encoding="utf-8"
            )
            result = SysdiagnoseExtractor().extract(str(directory))
            self.assertEqual(values(result, ObservationKind.NETWORK), ["203.0.113.9"])

    def test_invalid_inputs(self):
        with self.assertRaises(InvalidFormatError):
            SysdiagnoseExtractor().extract(b"definitely not a tar archive")
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(InvalidFormatError):
                SysdiagnoseExtractor().extract(tmp)


class BackupExtractorTest(unittest.TestCase):
    def test_backup_databases(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = build_backup(Path(tmp) / "backup")
            result = BackupExtractor().extract(root)

        files = values(result, ObservationKind.FILE)
        self.assertIn("Library/SMS/sms.db", files)
        self.assertIn("Library/SMS/Drafts", files)
        self.assertNotIn("Media/DCIM/100APPLE/IMG_0001.JPG", files)
        self.assertEqual(len(files), 5)

        self.assertEqual(values(result, ObservationKind.PROCESS), ["com.apple.WebKit.Networking", "bh"])
        self.assertEqual(
            values(result, ObservationKind.NETWORK),
            ["www.example.org", "login.cdn-predator.net", "track.cdn-predator.net"]
        )
        self.assertEqual(result.metadata["manifest_entries"], 6)
        self.assertFalse(result.truncated)

    def test_not_a_backup(self):
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(InvalidFormatError):
                BackupExtractor().extract(tmp)

            (Path(tmp) / "Manifest.db").write_text("not sqlite", encoding="utf-8")
            with self.assertRaises(InvalidFormatError):
                BackupExtractor().extract(tmp)

    def test_file_cap_truncates(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = build_backup(Path(tmp) / "backup")
            result = BackupExtractor(ExtractorConfig(max_files=2)).extract(root)
        self.assertTrue(result.truncated)
        self.assertEqual(result.metadata["manifest_entries"], 2)


    def test_row_cap_truncates_recovered_tables(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = build_backup(Path(tmp) / "backup")
            result = BackupExtractor(ExtractorConfig(max_lines=1)).extract(root)

        self.assertTrue(result.truncated)
        self.assertEqual(values(result, ObservationKind.PROCESS), ["com.apple.WebKit.Networking"])
        self.assertEqual(
            values(result, ObservationKind.NETWORK),
            ["www.example.org", "track.cdn-predator.net"]
        )


class IndicatorListExtractorTest(unittest.TestCase):
    def test_classifies_indicators(self):
        result = IndicatorListExtractor().extract([
            "https://Login.cdn-predator.net/x",
            "10.0.0.7",
            "Evil.Example.",
            PEGASUS_PROCESS,
            "d41d8cd98f00b204e9800998ecf8427e",
            "com.spy.tracker",
            "",
        ])

        self.assertEqual(
            values(result, ObservationKind.NETWORK),
            ["login.cdn-predator.net", "10.0.0.7", "evil.example"]
        )
        self.assertEqual(
            values(result, ObservationKind.FILE),
            [PEGASUS_PROCESS, "d41d8cd98f00b204e9800998ecf8427e"]
        )
        self.assertEqual(values(result, ObservationKind.PROCESS), ["com.spy.tracker"])
        self.assertEqual(result.observations[0].context["url"], "https://Login.cdn-predator.net/x")
        self.assertEqual(result.skipped, 1)

    def test_invalid_inputs(self):
        with self.assertRaises(InvalidFormatError):
            IndicatorListExtractor().extract("example.org")
        with self.assertRaises(NoRecognizedContentError):
            IndicatorListExtractor().extract(["", "  "])


class RegistryTest(unittest.TestCase):
    def test_defaults(self):
        registry = ExtractorRegistry()
        self.assertEqual(registry.supported_types()[0], AnalysisType.FULL_SCAN)
        self.assertEqual(len(registry.supported_types()), 6)
        self.assertIsInstance(registry.get(AnalysisType.LOGCAT), LogcatExtractor)

    def test_replacement_and_errors(self):
        registry = ExtractorRegistry(register_defaults=False)
        self.assertFalse(registry.supports(AnalysisType.FULL_SCAN))
        with self.assertRaises(ValueError):
            registry.get(AnalysisType.BACKUP)

        replacement = ShutdownLogExtractor(ExtractorConfig(max_lines=10))
        registry.register(replacement)
        self.assertIs(registry.get(AnalysisType.SHUTDOWN_LOG), replacement)

        class FullScanExtractor(BaseExtractor):
            analysis_type = AnalysisType.FULL_SCAN
            phase_label = "Everything"

            def _extract(self, raw_input, state):
                pass

        with self.assertRaises(ValueError):
            registry.register(FullScanExtractor())


if __name__ == "__main__":
    unittest.main()
