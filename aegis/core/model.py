"""
Core models for Aegis

Defines the central dataclasses and enums shared by the normalizer,
aggregator, scorer, engine and detectors.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Callable, Awaitable, Dict, List, Optional, Tuple

from .errors import UnknownSeverity


class Severity(str, Enum):
    """Ordinal severity of a finding (critical > high > medium > low)."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @classmethod
    def parse(cls, value: Any) -> "Severity":
        """Parse a severity name case-insensitively.

        Raises UnknownSeverity for anything outside the four levels, including
        "info", so that unknown values never default into scoring.
        """
        if isinstance(value, Severity):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        raise UnknownSeverity(value)


_SEVERITY_RANK = {
    Severity.CRITICAL: 3,
    Severity.HIGH: 2,
    Severity.MEDIUM: 1,
    Severity.LOW: 0,
}


class Priority(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @property
    def order(self) -> int:
        return _PRIORITY_ORDER[self]


_PRIORITY_ORDER = {
    Priority.CRITICAL: 0,
    Priority.HIGH: 1,
    Priority.MEDIUM: 2,
    Priority.LOW: 3,
}


class ScanStatus(str, Enum):
    """Lifecycle of one scan run. PARTIAL is a terminal success."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    PARTIAL = "PARTIAL"
    FAILED = "FAILED"


@dataclass(frozen=True)
class Finding:
    """Standard Finding object produced by the normalizer.

    Note: `timestamp` is an ISO8601 string to ease serialization and report generation.
    """

    id: str
    type: str
    category: str
    severity: Severity
    description: str
    location: str
    detected_by: str
    target: str
    timestamp: str
    recommendation: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "severity", Severity.parse(self.severity))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "category": self.category,
            "severity": self.severity.value,
            "description": self.description,
            "location": self.location,
            "detectedBy": self.detected_by,
            "target": self.target,
            "timestamp": self.timestamp,
            "recommendation": self.recommendation,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Finding":
        return cls(
            id=data["id"],
            type=data["type"],
            category=data.get("category", ""),
            severity=data["severity"],
            description=data.get("description", ""),
            location=data.get("location", ""),
            detected_by=data.get("detectedBy", data.get("detected_by", "")),
            target=data.get("target", ""),
            timestamp=data.get("timestamp", ""),
            recommendation=data.get("recommendation", ""),
        )


def finding_sort_key(finding: Finding) -> Tuple[int, str]:
    """Deterministic report order: severity descending, then id."""
    return (-finding.severity.rank, finding.id)


@dataclass(frozen=True)
class Target:
    identifier: str
    findings: Tuple[Finding, ...]
    score: float
    scan_sources: Tuple[str, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identifier": self.identifier,
            "findings": [f.to_dict() for f in self.findings],
            "score": self.score,
            "scanSources": list(self.scan_sources),
        }


@dataclass(frozen=True)
class Report:
    """Per-target result of one scan call. Never partially updated."""

    target: Target
    recommendations: Tuple[str, ...]
    timestamp: str

    @property
    def findings(self) -> Tuple[Finding, ...]:
        return self.target.findings

    @property
    def score(self) -> float:
        return self.target.score

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": self.target.identifier,
            "scanSources": list(self.target.scan_sources),
            "findings": [f.to_dict() for f in self.findings],
            "score": self.score,
            "recommendations": list(self.recommendations),
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class TargetResult:
    """Result-or-error container crossing the fan-in boundary."""

    identifier: str
    report: Optional[Report] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.report is not None and self.error is None


@dataclass(frozen=True)
class FindingPattern:
    type: str
    severity: Severity
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "severity": self.severity.value, "count": self.count}


@dataclass(frozen=True)
class RankedRecommendation:
    priority: Priority
    category: str
    text: str
    finding_type: str
    affected_target_count: int

    def sort_key(self) -> Tuple[int, int, str]:
        return (self.priority.order, -self.affected_target_count, self.finding_type)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "priority": self.priority.value,
            "category": self.category,
            "text": self.text,
            "type": self.finding_type,
            "affectedTargetCount": self.affected_target_count,
        }


@dataclass(frozen=True)
class ActionItem:
    id: str
    title: str
    description: str
    category: str
    priority: Priority
    current_score: float
    target_score: float
    due_date: date
    assignee: str
    status: str = "PENDING"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "priority": self.priority.value,
            "currentScore": self.current_score,
            "targetScore": self.target_score,
            "dueDate": self.due_date.isoformat(),
            "assignee": self.assignee,
            "status": self.status,
        }


@dataclass(frozen=True)
class PortfolioSummary:
    timestamp: str
    status: ScanStatus
    total_targets: int
    total_findings: int
    counts_by_severity: Dict[str, int]
    average_score: Optional[float]
    compliance_status: str
    common_finding_patterns: Tuple[FindingPattern, ...]
    recommendations: Tuple[RankedRecommendation, ...]
    action_items: Tuple[ActionItem, ...]
    reports: Tuple[Report, ...]
    errors: Dict[str, str] = field(default_factory=dict)
    # unrounded average; thresholds compare against this
    mean_score: Optional[float] = None

    @property
    def critical_count(self) -> int:
        return self.counts_by_severity.get(Severity.CRITICAL.value, 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "status": self.status.value,
            "totalTargets": self.total_targets,
            "totalFindings": self.total_findings,
            "countsBySeverity": dict(self.counts_by_severity),
            "averageScore": self.average_score,
            "complianceStatus": self.compliance_status,
            "commonFindingPatterns": [p.to_dict() for p in self.common_finding_patterns],
            "recommendations": [r.to_dict() for r in self.recommendations],
            "actionItems": [a.to_dict() for a in self.action_items],
            "reports": [r.to_dict() for r in self.reports],
            "errors": dict(self.errors),
        }


@dataclass(frozen=True)
class ScanRun:
    run_id: str
    status: ScanStatus
    started_at: str
    finished_at: str
    results: Tuple[TargetResult, ...]
    summary: Optional[PortfolioSummary] = None
    reason: Optional[str] = None

    @property
    def errors(self) -> Dict[str, str]:
        return {r.identifier: r.error for r in self.results if r.error}


# Compliance records

CheckFunction = Callable[[], Awaitable[Dict[str, Any]]]


@dataclass
class ComplianceCheck:
    id: str
    name: str
    description: str
    weight: float
    checker: CheckFunction
    recommendation: str = ""


@dataclass
class ComplianceFramework:
    name: str
    checks: List[ComplianceCheck]
    enabled: bool = True


@dataclass(frozen=True)
class CheckResult:
    id: str
    name: str
    description: str
    weight: float
    score: float
    status: str
    framework: str
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)
    recommendation: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "weight": self.weight,
            "score": self.score,
            "status": self.status,
            "framework": self.framework,
            "message": self.message,
            "details": dict(self.details),
        }


@dataclass(frozen=True)
class FrameworkResult:
    framework: str
    checks: Tuple[CheckResult, ...]
    score: float
    status: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "framework": self.framework,
            "score": self.score,
            "status": self.status,
            "checks": [c.to_dict() for c in self.checks],
        }


@dataclass(frozen=True)
class ComplianceRecommendation:
    framework: str
    check: str
    priority: Priority
    text: str
    current_score: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "framework": self.framework,
            "check": self.check,
            "priority": self.priority.value,
            "recommendation": self.text,
            "currentScore": self.current_score,
        }


@dataclass(frozen=True)
class ComplianceSummary:
    timestamp: str
    overall_score: float
    status: str
    frameworks: Tuple[FrameworkResult, ...]
    recommendations: Tuple[ComplianceRecommendation, ...]
    action_items: Tuple[ActionItem, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "overallScore": self.overall_score,
            "status": self.status,
            "frameworks": [f.to_dict() for f in self.frameworks],
            "recommendations": [r.to_dict() for r in self.recommendations],
            "actionItems": [a.to_dict() for a in self.action_items],
        }
