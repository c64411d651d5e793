"""
Portfolio Summary construction for Aegis
Combines per-target results into counts, averages, patterns and actions
"""

from datetime import datetime
from typing import List, Optional, Sequence

from .aggregator import group_by_pattern
from .config import ScanConfig
from .errors import AggregationError
from .model import PortfolioSummary, Report, ScanStatus, Severity, TargetResult
from .scorer import action_items, recommend


def mean_score(reports: Sequence[Report]) -> Optional[float]:
    """Unrounded mean of valid report scores, or None with no valid reports."""
    if not reports:
        return None
    return sum(r.score for r in reports) / len(reports)


def average_score(reports: Sequence[Report]) -> Optional[float]:
    """Mean score rounded to two decimals for display."""
    mean = mean_score(reports)
    return round(mean, 2) if mean is not None else None


def build_portfolio_summary(results: Sequence[TargetResult],
                            config: Optional[ScanConfig] = None,
                            now: Optional[datetime] = None) -> PortfolioSummary:
    """Build the portfolio summary once, from every settled target result.

    Errored targets add nothing to finding counts and are excluded from the
    average; they are listed under `errors`.
    """
    if not results:
        raise AggregationError("cannot build a portfolio summary from an empty target list")

    config = config or ScanConfig.default()
    now = now or datetime.now()

    reports: List[Report] = [r.report for r in results if r.ok]
    errors = {r.identifier: r.error or "no report produced" for r in results if not r.ok}
    all_findings = [f for report in reports for f in report.findings]

    counts = {severity.value: 0 for severity in Severity}
    for finding in all_findings:
        counts[finding.severity.value] += 1

    mean = mean_score(reports)
    table = config.threshold_table()

    return PortfolioSummary(
        timestamp=now.isoformat(),
        status=ScanStatus.PARTIAL if errors else ScanStatus.COMPLETED,
        total_targets=len(results),
        total_findings=len(all_findings),
        counts_by_severity=counts,
        average_score=round(mean, 2) if mean is not None else None,
        compliance_status=table.status_for(mean) if mean is not None else "UNKNOWN",
        common_finding_patterns=tuple(group_by_pattern(all_findings)),
        recommendations=tuple(recommend(all_findings, limit=config.recommendation_limit)),
        action_items=tuple(action_items(
            reports,
            score_floor=config.score_floor,
            now=now,
            due_offsets=config.priority_due_offsets(),
            target_score=config.target_score,
            assignee=config.security_assignee,
        )),
        reports=tuple(reports),
        errors=errors,
        mean_score=mean,
    )
