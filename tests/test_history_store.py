import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from orbguard_core.infrastructure.storage import HistoryStore
from orbguard_core.logic.models import AnalysisResult, AnalysisType, Finding, IocCategory, Severity

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


def finding(category=IocCategory.PEGASUS, severity=Severity.CRITICAL):
    return Finding(
        title=f"{category.value} indicator",
        description="test finding",
        category=category,
        severity=severity,
        matched_ioc_ids=frozenset({f"{category.value}-1"}),
        evidence=("process: /tmp/x",),
        confidence=0.5
    )


def completed(result_id, findings=(), age=timedelta(0)):
    started = NOW - age - timedelta(seconds=3)
    return AnalysisResult(result_id, AnalysisType.SHUTDOWN_LOG, started).complete(
        list(findings), NOW - age, ioc_version="2024.06", observations_analyzed=3
    )


class HistoryStoreTest(unittest.TestCase):
    def test_newest_first(self):
        store = HistoryStore()
        store.append(completed("a"))
        store.append(completed("b", [finding()]))

        self.assertEqual([r.id for r in store.all()], ["b", "a"])
        self.assertEqual(len(store), 2)

    def test_snapshots_are_stable(self):
        store = HistoryStore()
        store.append(completed("a"))
        snapshot = store.all()
        store.append(completed("b"))
        self.assertEqual([r.id for r in snapshot], ["a"])

    def test_rejects_incomplete_and_duplicate_results(self):
        store = HistoryStore()
        with self.assertRaises(ValueError):
            store.append(AnalysisResult("x", AnalysisType.LOGCAT, NOW))

        store.append(completed("a"))
        with self.assertRaises(ValueError):
            store.append(completed("a"))
        self.assertEqual(len(store), 1)

    def test_persists_as_json_lines(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "nested" / "history.jsonl"
            store = HistoryStore(path)
            store.append(completed("a", [finding()]))
            store.append(completed("b"))

            self.assertEqual(len(path.read_text(encoding="utf-8").splitlines()), 2)

            reloaded = HistoryStore(path)
            self.assertEqual([r.id for r in reloaded.all()], ["b", "a"])
            self.assertEqual(reloaded.all()[1].findings, (finding(),))
            self.assertEqual(reloaded.all()[1].completed_at, NOW)

    def test_unreadable_lines_are_skipped(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "history.jsonl"
            HistoryStore(path).append(completed("a"))
            with open(path, "a", encoding="utf-8") as f:
                f.write("{not json\n")

            with self.assertLogs("history.store", level="WARNING"):
                reloaded = HistoryStore(path)
            self.assertEqual(len(reloaded), 1)

    def test_stats_since(self):
        store = HistoryStore()
        store.append(completed("old", [finding()], age=timedelta(days=10)))
        store.append(completed("clean", age=timedelta(days=2)))
        store.append(completed("hit", [finding(), finding(IocCategory.OTHER, Severity.LOW)], age=timedelta(hours=1)))

        stats = store.stats_since(timedelta(days=7), now=NOW)

        self.assertEqual(stats["analyses"], 2)
        self.assertEqual(stats["analyses_with_threats"], 1)
        self.assertEqual(stats["findings"], 2)
        self.assertEqual(stats["by_severity"]["critical"], 1)
        self.assertEqual(stats["by_severity"]["low"], 1)
        self.assertEqual(stats["by_category"], {"pegasus": 1, "other": 1})
        self.assertEqual(stats["last_analysis"], (NOW - timedelta(hours=1)).isoformat())

    def test_stats_on_empty_history(self):
        stats = HistoryStore().stats_since(timedelta(days=7), now=NOW)
        self.assertEqual(stats["analyses"], 0)
        self.assertIsNone(stats["last_analysis"])

    def test_recent_threats(self):
        store = HistoryStore()
        store.append(completed("a", [finding(IocCategory.STALKERWARE, Severity.HIGH)]))
        store.append(completed("b", [finding(IocCategory.OTHER, Severity.MEDIUM)]))
        store.append(completed("c", [finding(), finding(IocCategory.PREDATOR, Severity.HIGH)]))

        threats = store.recent_threats()
        self.assertEqual([(r.id, f.category) for r, f in threats], [
            ("c", IocCategory.PEGASUS), ("c", IocCategory.PREDATOR), ("a", IocCategory.STALKERWARE),
        ])
        self.assertEqual(len(store.recent_threats(limit=1)), 1)


if __name__ == "__main__":
    unittest.main()
