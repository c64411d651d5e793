"""
Compliance Engine for Aegis
Runs weighted multi-check frameworks and derives recommendations and
action items from the shared scoring primitives.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .config import ScanConfig
from .events import EventObserver, LoggingObserver, emit
from .model import (
    CheckResult,
    ComplianceCheck,
    ComplianceFramework,
    ComplianceRecommendation,
    ComplianceSummary,
    FrameworkResult,
    Priority,
)
from .scorer import action_items, weighted_score

GENERIC_COMPLIANCE_RECOMMENDATION = "Review and improve compliance for this requirement"


def feature_checklist(features: Mapping[str, bool]):
    """Checker scoring the share of implemented features, 0-100."""
    snapshot = {name: bool(value) for name, value in features.items()}

    async def check() -> Dict[str, Any]:
        if not snapshot:
            raise ValueError("no features declared for this check")
        implemented = sum(1 for value in snapshot.values() if value)
        return {
            "score": implemented / len(snapshot) * 100,
            "details": dict(snapshot),
            "message": f"{implemented}/{len(snapshot)} features implemented",
        }

    return check


def frameworks_from_config(definitions: Iterable[Mapping[str, Any]]) -> List[ComplianceFramework]:
    frameworks = []
    for definition in definitions:
        checks = [
            ComplianceCheck(
                id=check["id"],
                name=check.get("name", check["id"]),
                description=check.get("description", ""),
                weight=float(check.get("weight", 0)),
                checker=feature_checklist(check.get("features", {})),
                recommendation=check.get("recommendation", ""),
            )
            for check in definition.get("checks", [])
        ]
        frameworks.append(ComplianceFramework(
            name=definition["name"],
            checks=checks,
            enabled=definition.get("enabled", True),
        ))
    return frameworks


class ComplianceEngine:
    """Evaluates compliance frameworks composed of weighted sub-checks."""

    def __init__(self,
                 config: Optional[ScanConfig] = None,
                 frameworks: Optional[List[ComplianceFramework]] = None,
                 observer: Optional[EventObserver] = None):
        self.config = config or ScanConfig.default()
        self.frameworks = frameworks if frameworks is not None else frameworks_from_config(self.config.frameworks)
        self.logger = logging.getLogger(__name__)
        self.observer = observer or LoggingObserver(self.logger)
        self.table = self.config.threshold_table()

    def get_framework(self, name: str) -> Optional[ComplianceFramework]:
        for framework in self.frameworks:
            if framework.name.lower() == name.lower():
                return framework
        return None

    async def run_check(self, framework: ComplianceFramework, check: ComplianceCheck) -> CheckResult:
        try:
            outcome = await check.checker()
            score = max(0.0, min(100.0, float(outcome["score"])))
            return CheckResult(
                id=check.id,
                name=check.name,
                description=check.description,
                weight=check.weight,
                score=score,
                status=self.table.status_for(score),
                framework=framework.name,
                message=outcome.get("message", ""),
                details=dict(outcome.get("details", {})),
                recommendation=check.recommendation,
            )
        except Exception as e:
            self.logger.error(f"Failed to run check {check.id}: {e}")
            emit(self.observer, "check_failed", f"{framework.name}/{check.id} errored: {e}",
                 level=logging.ERROR, framework=framework.name, check=check.id)
            return CheckResult(
                id=check.id,
                name=check.name,
                description=check.description,
                weight=check.weight,
                score=0.0,
                status="ERROR",
                framework=framework.name,
                message=str(e),
                recommendation=check.recommendation,
            )

    async def run_framework(self, framework: ComplianceFramework) -> FrameworkResult:
        """Run every check; errored checks keep their weight with score 0."""
        self.logger.info(f"Running compliance checks for {framework.name}")
        results = [await self.run_check(framework, check) for check in framework.checks]
        score = round(weighted_score(results), 2)
        status = self.table.status_for(score)

        emit(self.observer, "framework_completed", f"{framework.name} scored {score}",
             framework=framework.name, score=score, status=status)
        return FrameworkResult(framework=framework.name, checks=tuple(results), score=score, status=status)

    def generate_recommendations(self, results: Iterable[FrameworkResult]) -> List[ComplianceRecommendation]:
        floor = self.config.compliance_recommendation_floor
        recommendations = [
            ComplianceRecommendation(
                framework=framework.framework,
                check=check.name,
                priority=Priority.HIGH if check.score < 50 else Priority.MEDIUM,
                text=check.recommendation or GENERIC_COMPLIANCE_RECOMMENDATION,
                current_score=check.score,
            )
            for framework in results
            for check in framework.checks
            if check.score < floor
        ]
        recommendations.sort(key=lambda r: r.priority.order)
        return recommendations

    async def run_full_check(self,
                             now: Optional[datetime] = None,
                             framework_names: Optional[List[str]] = None) -> ComplianceSummary:
        now = now or datetime.now()
        selected = [
            f for f in self.frameworks
            if f.enabled and (not framework_names or f.name.lower() in {n.lower() for n in framework_names})
        ]

        emit(self.observer, "compliance_started", f"Running {len(selected)} compliance frameworks",
             frameworks=[f.name for f in selected])

        results = [await self.run_framework(framework) for framework in selected]

        if results:
            overall = round(sum(r.score for r in results) / len(results), 2)
            status = self.table.status_for(overall)
        else:
            overall, status = 0.0, "UNKNOWN"

        all_checks = [check for framework in results for check in framework.checks]
        summary = ComplianceSummary(
            timestamp=now.isoformat(),
            overall_score=overall,
            status=status,
            frameworks=tuple(results),
            recommendations=tuple(self.generate_recommendations(results)),
            action_items=tuple(action_items(
                all_checks,
                score_floor=self.config.score_floor,
                now=now,
                due_offsets=self.config.priority_due_offsets(),
                target_score=self.config.target_score,
                assignee=self.config.compliance_assignee,
            )),
        )

        emit(self.observer, "compliance_completed", f"Overall compliance {overall} ({status})",
             score=overall, status=status, frameworks=len(results))
        return summary
