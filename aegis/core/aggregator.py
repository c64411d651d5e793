"""
Finding Aggregator for Aegis
Merges detector output per target, deduplicates, and groups findings
into portfolio-wide patterns.
"""

import dataclasses
from typing import Dict, Iterable, List, Mapping, Sequence, Tuple

from .errors import AggregationError
from .model import Finding, FindingPattern, Severity, Target, finding_sort_key
from .scorer import score as default_score


def aggregate(findings_by_detector: Mapping[str, Sequence[Finding]], target: str) -> List[Finding]:
    """Merge every detector's findings for one target.

    Duplicate ids collapse to a single finding; when detectors disagree on
    severity the higher one wins. Output order is severity descending, then id.
    """
    merged: Dict[str, Finding] = {}

    for detector_name in sorted(findings_by_detector):
        for finding in findings_by_detector[detector_name]:
            if finding.target != target:
                raise AggregationError(
                    f"Finding {finding.id} from {detector_name} belongs to "
                    f"{finding.target!r}, not {target!r}"
                )

            existing = merged.get(finding.id)
            if existing is None:
                merged[finding.id] = finding
            elif finding.severity.rank > existing.severity.rank:
                merged[finding.id] = dataclasses.replace(existing, severity=finding.severity)

    return sorted(merged.values(), key=finding_sort_key)


def scan_sources(findings: Iterable[Finding]) -> Tuple[str, ...]:
    """Distinct detector names observed in the findings."""
    return tuple(sorted({f.detected_by for f in findings}))


def group_by_pattern(findings: Iterable[Finding]) -> List[FindingPattern]:
    """Count (type, severity) pairs across targets, most common first."""
    counts: Dict[Tuple[str, Severity], int] = {}
    for finding in findings:
        key = (finding.type, finding.severity)
        counts[key] = counts.get(key, 0) + 1

    patterns = [
        FindingPattern(type=finding_type, severity=severity, count=count)
        for (finding_type, severity), count in counts.items()
    ]
    patterns.sort(key=lambda p: (-p.count, p.type, p.severity.value))
    return patterns


def build_target(identifier: str,
                 findings_by_detector: Mapping[str, Sequence[Finding]],
                 scorer=default_score) -> Target:
    """Aggregate one target's detector output into an immutable Target."""
    findings = aggregate(findings_by_detector, identifier)
    return Target(
        identifier=identifier,
        findings=tuple(findings),
        score=scorer(findings),
        scan_sources=scan_sources(findings),
    )
