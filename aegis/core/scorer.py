"""
Scorer & Recommender for Aegis
Linear deduction scoring, the unified compliance threshold table,
ranked recommendations and due-dated action items.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from .errors import AggregationError
from .model import (
    ActionItem,
    CheckResult,
    Finding,
    Priority,
    RankedRecommendation,
    Report,
    Severity,
)
from ..data.remediations import remediation_for

MAX_SCORE = 100.0
MIN_SCORE = 0.0

DEFAULT_PENALTIES: Dict[Severity, float] = {
    Severity.CRITICAL: 25,
    Severity.HIGH: 15,
    Severity.MEDIUM: 8,
    Severity.LOW: 3,
}

DEFAULT_THRESHOLDS: Tuple[Tuple[float, str], ...] = (
    (90, "FULLY_COMPLIANT"),
    (75, "MOSTLY_COMPLIANT"),
    (60, "PARTIALLY_COMPLIANT"),
    (40, "NEEDS_IMPROVEMENT"),
    (0, "NON_COMPLIANT"),
)

DEFAULT_DUE_OFFSETS: Dict[Priority, int] = {
    Priority.CRITICAL: 3,
    Priority.HIGH: 7,
    Priority.MEDIUM: 14,
    Priority.LOW: 30,
}

DEFAULT_SCORE_FLOOR = 60
DEFAULT_TARGET_SCORE = 90


def score(findings: Iterable[Finding],
          penalties: Optional[Mapping[Severity, float]] = None) -> float:
    """Linear deduction score in [0, 100].

    Every finding subtracts its severity's penalty; many low findings can
    still drive the score to zero.
    """
    penalties = penalties or DEFAULT_PENALTIES
    total = MAX_SCORE

    for finding in findings:
        try:
            total -= penalties[finding.severity]
        except KeyError:
            raise AggregationError(
                f"No penalty configured for severity {finding.severity!r} (finding {finding.id})"
            ) from None

    return max(MIN_SCORE, min(MAX_SCORE, float(total)))


class ThresholdTable:
    """Single table mapping a score to a status label.

    Rows are (min_score, label); the first row whose minimum the score meets
    wins. Used for both security and compliance contexts.
    """

    def __init__(self, rows: Sequence[Tuple[float, str]] = DEFAULT_THRESHOLDS,
                 below_all: str = "NON_COMPLIANT"):
        if not rows:
            raise ValueError("threshold table needs at least one row")
        self.rows: Tuple[Tuple[float, str], ...] = tuple(
            sorted(((float(m), str(label)) for m, label in rows), key=lambda r: -r[0])
        )
        self.below_all = below_all

    @classmethod
    def from_config(cls, rows: Union[Mapping[str, str], Sequence]) -> "ThresholdTable":
        """Accept {"90": "FULLY_COMPLIANT", ...} or [[90, "FULLY_COMPLIANT"], ...]."""
        if isinstance(rows, Mapping):
            return cls([(float(k), v) for k, v in rows.items()])
        return cls([(float(m), label) for m, label in rows])

    def status_for(self, score_value: float) -> str:
        for minimum, label in self.rows:
            if score_value >= minimum:
                return label
        return self.below_all

    @staticmethod
    def is_compliant(score_value: float, floor: float = DEFAULT_SCORE_FLOOR) -> bool:
        return score_value >= floor

    def to_list(self) -> List[List]:
        return [[m, label] for m, label in self.rows]


DEFAULT_TABLE = ThresholdTable()


def compliance_status(score_value: float, table: Optional[ThresholdTable] = None) -> str:
    return (table or DEFAULT_TABLE).status_for(score_value)


def _priority_for_severity(severity: Severity) -> Priority:
    if severity is Severity.CRITICAL:
        return Priority.CRITICAL
    if severity is Severity.HIGH:
        return Priority.HIGH
    return Priority.MEDIUM


def recommend(findings: Iterable[Finding],
              limit: Optional[int] = None,
              remediations: Optional[Callable[[str], str]] = None) -> List[RankedRecommendation]:
    """Rank one remediation per finding type.

    Priority follows the type's highest severity; ties break on how many
    targets the type affects. `limit=None` leaves the list uncapped.
    """
    lookup = remediations or remediation_for
    grouped: Dict[str, Dict] = {}

    for finding in findings:
        group = grouped.setdefault(finding.type, {
            "severity": finding.severity,
            "targets": set(),
            "categories": set(),
        })
        if finding.severity.rank > group["severity"].rank:
            group["severity"] = finding.severity
        group["targets"].add(finding.target)
        group["categories"].add(finding.category)

    ranked = [
        RankedRecommendation(
            priority=_priority_for_severity(group["severity"]),
            category=min(group["categories"]),
            text=lookup(finding_type),
            finding_type=finding_type,
            affected_target_count=len(group["targets"]),
        )
        for finding_type, group in grouped.items()
    ]
    ranked.sort(key=RankedRecommendation.sort_key)

    if limit is not None:
        ranked = ranked[:max(0, limit)]
    return ranked


def priority_for_score(score_value: float) -> Priority:
    if score_value < 40:
        return Priority.CRITICAL
    if score_value < 60:
        return Priority.HIGH
    return Priority.MEDIUM


@dataclass(frozen=True)
class ActionSubject:
    """Anything that can fall below the score floor: a report or a sub-check."""

    key: str
    title: str
    description: str
    category: str
    score: float


def subject_for_report(report: Report) -> ActionSubject:
    identifier = report.target.identifier
    return ActionSubject(
        key=identifier,
        title=f"Improve security posture of {identifier}",
        description=f"{len(report.findings)} findings detected; security score {report.score:g}",
        category=identifier,
        score=report.score,
    )


def subject_for_check(check: CheckResult) -> ActionSubject:
    return ActionSubject(
        key=f"{check.framework}_{check.id}",
        title=f"Improve {check.name}",
        description=check.description,
        category=check.framework,
        score=check.score,
    )


def slugify(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", value.lower()).strip("_")


def _as_date(now: Optional[Union[date, datetime]]) -> date:
    if now is None:
        return date.today()
    if isinstance(now, datetime):
        return now.date()
    return now


def action_items(subjects: Iterable[Union[ActionSubject, Report, CheckResult]],
                 score_floor: float = DEFAULT_SCORE_FLOOR,
                 now: Optional[Union[date, datetime]] = None,
                 due_offsets: Optional[Mapping[Priority, int]] = None,
                 target_score: float = DEFAULT_TARGET_SCORE,
                 assignee: str = "Security Team") -> List[ActionItem]:
    """One pending action item per subject scoring below the floor.

    Ordered by priority (CRITICAL first), then worst score first.
    """
    offsets = dict(DEFAULT_DUE_OFFSETS)
    offsets.update(due_offsets or {})
    today = _as_date(now)
    items = []

    for subject in subjects:
        if isinstance(subject, Report):
            subject = subject_for_report(subject)
        elif isinstance(subject, CheckResult):
            subject = subject_for_check(subject)

        if subject.score >= score_floor:
            continue

        priority = priority_for_score(subject.score)
        items.append(ActionItem(
            id=f"action_{slugify(subject.key)}",
            title=subject.title,
            description=subject.description,
            category=subject.category,
            priority=priority,
            current_score=subject.score,
            target_score=target_score,
            due_date=today + timedelta(days=offsets[priority]),
            assignee=assignee,
        ))

    items.sort(key=lambda item: (item.priority.order, item.current_score, item.id))
    return items


def weighted_score(results: Iterable) -> float:
    """Sum(score * weight) / Sum(weight); 0 when the weights sum to 0.

    Errored checks arrive with score 0 and keep their declared weight.
    """
    total_weight = 0.0
    weighted = 0.0
    for result in results:
        total_weight += result.weight
        weighted += result.score * result.weight

    if total_weight == 0:
        return 0.0
    return weighted / total_weight
