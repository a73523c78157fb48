"""
Correlation service matching observations against the indicator set.

Turns the observations of one analysis run into ranked findings: indicator
matches grouped by category, plus the outbound data usage outlier rule for
counter observations.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

from orbguard_core.logic.models import (
    CorrelationConfig, DataUsageConfig, Finding, IocCategory, IocRecord,
    Observation, ObservationKind, Severity, strongest_indicator,
)


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


CATEGORY_TEMPLATES = {
    IocCategory.PEGASUS: (
        "Pegasus-class indicator detected",
        "Artifacts match indicators attributed to Pegasus-class mercenary spyware. "
        "Treat the device as compromised and follow the remediation steps."
    ),
    IocCategory.PREDATOR: (
        "Predator-class indicator detected",
        "Artifacts match indicators attributed to Predator-class mercenary spyware. "
        "Treat the device as compromised and follow the remediation steps."
    ),
    IocCategory.STALKERWARE: (
        "Stalkerware indicator detected",
        "Artifacts match indicators of consumer-grade covert monitoring software."
    ),
    IocCategory.OTHER: (
        "Known malicious indicator detected",
        "Artifacts match known malicious indicators."
    ),
}

DATA_USAGE_TITLE = "Anomalous outbound data usage"


class CorrelationService:
    """
    Service for correlating observations with indicators.

    Lookup is per observation and may fan out over a thread pool for large
    runs; results are always merged by observation index, so the output does
    not depend on worker scheduling.
    """

    def __init__(
        self,
        config: Optional[CorrelationConfig] = None,
        data_usage_config: Optional[DataUsageConfig] = None
    ):
        """Initialize the correlation service."""
        self.config = config or CorrelationConfig()
        self.data_usage_config = data_usage_config or DataUsageConfig()
        self.logger = logging.getLogger("correlation.service")

    def correlate(
        self,
        observations: Sequence[Observation],
        ioc_set,
        checkpoint: Optional[Callable[[float], None]] = None
    ) -> Tuple[Finding, ...]:
        """
        Correlate the observations of one run.

        Args:
            observations: Observations in extraction order
            ioc_set: Anything exposing ``lookup(observation)`` (IocSet, IocStore)
            checkpoint: Called with the completion fraction between chunks;
                may raise to abort correlation

        Returns:
            Findings sorted by severity then confidence, descending
        """
        counters = [o for o in observations if o.kind == ObservationKind.COUNTER]
        lookups = [o for o in observations if o.kind != ObservationKind.COUNTER]

        matches = self._lookup_all(lookups, ioc_set, checkpoint)
        findings = self._dedupe(self._indicator_findings(lookups, matches))
        findings.extend(self._data_usage_findings(counters))

        # Stable: ties keep first-seen order
        findings.sort(key=lambda f: (f.severity.rank, f.confidence), reverse=True)

        if checkpoint is not None:
            checkpoint(1.0)

        self.logger.info(
            f"Correlated {len(lookups)} observations and {len(counters)} counters "
            f"into {len(findings)} findings"
        )
        return tuple(findings)

    def _lookup_all(
        self,
        observations: Sequence[Observation],
        ioc_set,
        checkpoint: Optional[Callable[[float], None]]
    ) -> List[Tuple[IocRecord, ...]]:
        """Return the matched records for each observation, indexed like the input."""
        total = len(observations)
        chunk_size = max(1, self.config.chunk_size)
        chunks = [(start, observations[start:start + chunk_size]) for start in range(0, total, chunk_size)]
        results: List[Tuple[IocRecord, ...]] = [()] * total

        def lookup_chunk(chunk: Sequence[Observation]) -> List[Tuple[IocRecord, ...]]:
            return [ioc_set.lookup(observation) for observation in chunk]

        parallel = self.config.parallel_workers > 1 and total >= self.config.parallel_threshold
        if not parallel:
            for done, (start, chunk) in enumerate(chunks, 1):
                results[start:start + len(chunk)] = lookup_chunk(chunk)
                if checkpoint is not None:
                    checkpoint(0.9 * done / len(chunks))
            return results

        self.logger.debug(
            f"Parallel lookup of {total} observations on {self.config.parallel_workers} workers"
        )
        with ThreadPoolExecutor(max_workers=self.config.parallel_workers,
                                thread_name_prefix="correlation") as executor:
            futures = [(start, executor.submit(lookup_chunk, chunk)) for start, chunk in chunks]
            try:
                for done, (start, future) in enumerate(futures, 1):
                    chunk_result = future.result()
                    results[start:start + len(chunk_result)] = chunk_result
                    if checkpoint is not None:
                        checkpoint(0.9 * done / len(futures))
            except BaseException:
                for _, future in futures:
                    future.cancel()
                raise
        return results

    def _indicator_findings(
        self,
        observations: Sequence[Observation],
        matches: Sequence[Tuple[IocRecord, ...]]
    ) -> List[Finding]:
        """Group matched records by category, one finding per non-empty group."""
        kinds_seen: Dict[ObservationKind, int] = {}
        for observation in observations:
            kinds_seen[observation.kind] = kinds_seen.get(observation.kind, 0) + 1

        # Insertion order of the dicts is first-seen order
        records: Dict[IocCategory, Dict[str, IocRecord]] = {}
        matched: Dict[IocCategory, List[Observation]] = {}

        for observation, hits in zip(observations, matches):
            categories_hit: Set[IocCategory] = set()
            for record in hits:
                records.setdefault(record.category, {}).setdefault(record.id, record)
                categories_hit.add(record.category)
            for category in sorted(categories_hit, key=lambda c: c.priority, reverse=True):
                matched.setdefault(category, []).append(observation)

        findings = []
        for category, group in records.items():
            group_observations = matched[category]
            strongest = strongest_indicator(group.values())
            kinds = {o.kind for o in group_observations}
            seen = sum(kinds_seen[kind] for kind in kinds)
            confidence = max(0.0, min(1.0, len(group_observations) / seen)) if seen else 0.0
            title, description = CATEGORY_TEMPLATES[category]

            findings.append(Finding(
                title=title,
                description=description,
                category=category,
                severity=strongest.severity,
                matched_ioc_ids=frozenset(group),
                evidence=tuple(o.excerpt() for o in group_observations[:self.config.max_evidence]),
                confidence=confidence
            ))

            self.logger.debug(
                f"{category.value}: {len(group)} indicators over {len(group_observations)} observations, "
                f"severity {strongest.severity.value}"
            )
        return findings

    @staticmethod
    def _dedupe(findings: List[Finding]) -> List[Finding]:
        seen = set()
        unique = []
        for finding in findings:
            if finding.dedup_key in seen:
                continue
            seen.add(finding.dedup_key)
            unique.append(finding)
        return unique

    def _data_usage_findings(self, counters: Sequence[Observation]) -> List[Finding]:
        """
        Flag apps whose outbound volume exceeds their rolling baseline.

        Per app, samples are ordered by time; each sample is compared with the
        mean outbound bytes of up to ``baseline_window`` preceding samples and
        flagged when it exceeds ``multiplier`` times that mean.
        """
        config = self.data_usage_config
        per_app: Dict[str, List[Observation]] = {}
        for observation in counters:
            per_app.setdefault(observation.value, []).append(observation)

        findings = []
        for app, samples in per_app.items():
            samples = sorted(samples, key=lambda o: (o.timestamp is None, o.timestamp or _EPOCH))
            flagged: List[Tuple[Observation, float, float]] = []

            for position, sample in enumerate(samples):
                window = samples[max(0, position - config.baseline_window):position]
                if len(window) < config.min_baseline_samples:
                    continue

                baseline = sum(o.context.get('bytes_out', 0) for o in window) / len(window)
                if baseline <= 0:
                    continue

                ratio = sample.context.get('bytes_out', 0) / baseline
                if ratio > config.multiplier:
                    flagged.append((sample, baseline, ratio))

            if not flagged:
                continue

            peak = max(ratio for _, _, ratio in flagged)
            confidence = max(0.0, min(1.0, (peak - config.multiplier) / config.multiplier + 0.5))
            evidence = tuple(
                f"{sample.excerpt(160)} baseline={baseline:.0f} ratio={ratio:.2f}"
                for sample, baseline, ratio in flagged[:self.config.max_evidence]
            )

            findings.append(Finding(
                title=DATA_USAGE_TITLE,
                description=(
                    f"{app} sent {peak:.1f}x its baseline outbound volume "
                    f"({len(flagged)} anomalous samples), consistent with data exfiltration."
                ),
                category=IocCategory.OTHER,
                severity=Severity.MEDIUM,
                evidence=evidence,
                confidence=confidence
            ))
            self.logger.debug(f"Data usage outlier for {app}: peak ratio {peak:.2f}")

        return findings
