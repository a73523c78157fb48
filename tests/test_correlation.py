import unittest

from orbguard_core.infrastructure.extractors import DataUsageExtractor
from orbguard_core.infrastructure.ioc import IocSet, parse_ioc_feed
from orbguard_core.logic.models import (
    AnalysisType, CorrelationConfig, IocCategory, IocRecord, Observation, ObservationKind,
    PatternKind, Severity,
)
from orbguard_core.logic.services import CorrelationService

from forensic_samples import PEGASUS_PROCESS, data_usage_samples, feed_jsonl


def process(value, **context):
    return Observation(ObservationKind.PROCESS, value, AnalysisType.SHUTDOWN_LOG, context)


def network(value):
    return Observation(ObservationKind.NETWORK, value, AnalysisType.SYSDIAGNOSE)


def counters(samples):
    return DataUsageExtractor().extract(samples).observations


class IndicatorCorrelationTest(unittest.TestCase):
    def setUp(self):
        self.ioc_set = parse_ioc_feed(feed_jsonl())
        self.service = CorrelationService()

    def test_pegasus_process(self):
        findings = self.service.correlate(
            [process("/usr/libexec/backboardd"), process(PEGASUS_PROCESS, pid=733)], self.ioc_set
        )

        self.assertEqual(len(findings), 1)
        finding = findings[0]
        self.assertEqual(finding.category, IocCategory.PEGASUS)
        self.assertEqual(finding.severity, Severity.CRITICAL)
        self.assertEqual(finding.matched_ioc_ids, frozenset({"pegasus-rolexd"}))
        self.assertEqual(finding.title, "Pegasus-class indicator detected")
        self.assertAlmostEqual(finding.confidence, 0.5)
        self.assertIn(PEGASUS_PROCESS, finding.evidence[0])

    def test_no_matches(self):
        self.assertEqual(self.service.correlate([process("/usr/libexec/backboardd")], self.ioc_set), ())
        self.assertEqual(self.service.correlate([], self.ioc_set), ())

    def test_same_indicator_many_observations_yields_one_finding(self):
        observations = [process(PEGASUS_PROCESS, pid=pid) for pid in range(10)]
        findings = self.service.correlate(observations, self.ioc_set)

        self.assertEqual(len(findings), 1)
        self.assertEqual(findings[0].confidence, 1.0)
        self.assertEqual(len(findings[0].evidence), 5)

    def test_sorted_by_severity(self):
        findings = self.service.correlate(
            [process("/private/var/tmp/x"), network("a.cdn-predator.net"), process(PEGASUS_PROCESS)],
            self.ioc_set
        )
        self.assertEqual(
            [f.category for f in findings],
            [IocCategory.PEGASUS, IocCategory.PREDATOR, IocCategory.OTHER]
        )

    def test_severity_is_max_of_matched_indicators(self):
        records = [
            IocRecord("low", "/bin/*", PatternKind.PATH_GLOB, IocCategory.STALKERWARE, Severity.LOW),
            IocRecord("high", "/bin/spy", PatternKind.LITERAL, IocCategory.STALKERWARE, Severity.HIGH),
        ]
        ioc_set = IocSet(records)
        findings = self.service.correlate([process("/bin/ls"), process("/bin/spy")], ioc_set)

        self.assertEqual(len(findings), 1)
        self.assertEqual(findings[0].severity, Severity.HIGH)
        self.assertEqual(findings[0].matched_ioc_ids, frozenset({"low", "high"}))
        for finding in findings:
            self.assertLessEqual(0.0, finding.confidence)
            self.assertLessEqual(finding.confidence, 1.0)
            self.assertEqual(
                finding.severity,
                max((ioc_set.get(i).severity for i in finding.matched_ioc_ids), key=lambda s: s.rank)
            )

    def test_parallel_lookup_is_deterministic(self):
        observations = []
        for i in range(200):
            observations.append(process(f"/usr/bin/tool{i}"))
            if i % 7 == 0:
                observations.append(process(PEGASUS_PROCESS, pid=i))
            if i % 11 == 0:
                observations.append(network(f"n{i}.cdn-predator.net"))

        sequential = CorrelationService(CorrelationConfig(parallel_workers=1)).correlate(observations, self.ioc_set)
        parallel = CorrelationService(
            CorrelationConfig(parallel_workers=4, parallel_threshold=1, chunk_size=3)
        ).correlate(observations, self.ioc_set)

        self.assertEqual(sequential, parallel)
        self.assertEqual(parallel, CorrelationService(
            CorrelationConfig(parallel_workers=4, parallel_threshold=1, chunk_size=3)
        ).correlate(observations, self.ioc_set))

    def test_checkpoint_receives_increasing_fractions(self):
        fractions = []
        CorrelationService(CorrelationConfig(chunk_size=1)).correlate(
            [process("/a"), process("/b"), process(PEGASUS_PROCESS)], self.ioc_set, fractions.append
        )
        self.assertEqual(fractions, sorted(fractions))
        self.assertEqual(fractions[-1], 1.0)


class DataUsageRuleTest(unittest.TestCase):
    def setUp(self):
        self.ioc_set = parse_ioc_feed(feed_jsonl())
        self.service = CorrelationService()

    def test_five_times_baseline_is_flagged(self):
        findings = self.service.correlate(counters(data_usage_samples("com.exfil", [1000, 5000])), self.ioc_set)

        self.assertEqual(len(findings), 1)
        self.assertEqual(findings[0].category, IocCategory.OTHER)
        self.assertEqual(findings[0].severity, Severity.MEDIUM)
        self.assertEqual(findings[0].matched_ioc_ids, frozenset())
        self.assertIn("com.exfil", findings[0].description)
        self.assertTrue(0.0 <= findings[0].confidence <= 1.0)

    def test_one_and_a_half_times_baseline_is_not(self):
        self.assertEqual(
            self.service.correlate(counters(data_usage_samples("com.app", [1000, 1500])), self.ioc_set), ()
        )

    def test_rolling_baseline_and_one_finding_per_app(self):
        samples = (
            data_usage_samples("com.a", [100, 100, 100, 1000, 2000])
            + data_usage_samples("com.b", [50, 400])
            + data_usage_samples("com.c", [10, 12, 11])
        )
        findings = self.service.correlate(counters(samples), self.ioc_set)

        self.assertEqual(len(findings), 2)
        self.assertEqual(sorted(f.description.split()[0] for f in findings), ["com.a", "com.b"])

    def test_samples_are_ordered_by_time(self):
        samples = data_usage_samples("com.a", [5000, 1000])
        samples.reverse()
        # After ordering by bucket the 5000 sample comes first and has no baseline
        self.assertEqual(self.service.correlate(counters(samples), self.ioc_set), ())


if __name__ == "__main__":
    unittest.main()
