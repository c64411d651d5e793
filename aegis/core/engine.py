"""
Aegis Scan Engine
Main orchestrator for portfolio scans and compliance checks
"""

import asyncio
import functools
import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .aggregator import build_target
from .alerting import AlertDispatcher, LogSink, WebhookSink
from .compliance import ComplianceEngine
from .config import ScanConfig
from .detector_loader import DetectorLoader
from .errors import (
    AggregationError,
    AlertDeliveryError,
    DetectorError,
    PersistenceError,
    ScanRunFailed,
)
from .events import EventObserver, LoggingObserver, emit
from .model import (
    ComplianceSummary,
    Finding,
    PortfolioSummary,
    Report,
    ScanRun,
    ScanStatus,
    TargetResult,
)
from .normalizer import normalize
from .portfolio import build_portfolio_summary
from .result_manager import ResultManager
from .scorer import recommend, score
from ..detectors.context import DetectorContext

CANCELLED = "scan cancelled"
NO_SUCCESSFUL_TARGETS = "no targets were scanned successfully"


class ScanEngine:
    """Fans a scan out over targets and detectors, then folds it into one summary."""

    def __init__(self,
                 config: Optional[ScanConfig] = None,
                 detector_loader: Optional[DetectorLoader] = None,
                 result_manager: Optional[ResultManager] = None,
                 alert_dispatcher: Optional[AlertDispatcher] = None,
                 compliance_engine: Optional[ComplianceEngine] = None,
                 observer: Optional[EventObserver] = None,
                 logger: Optional[logging.Logger] = None):

        self.config = config or ScanConfig.default()
        self.logger = logger or logging.getLogger(__name__)
        self.observer = observer or LoggingObserver(self.logger)

        self.detector_loader = detector_loader or DetectorLoader()
        self.result_manager = result_manager
        self.alert_dispatcher = alert_dispatcher or self._default_dispatcher()
        self.compliance_engine = compliance_engine or ComplianceEngine(self.config, observer=self.observer)

        self._score = functools.partial(score, penalties=self.config.severity_penalties())

        # Targets and detector runs are bounded separately so a target never
        # waits on a slot held by its own detectors
        self.target_slots = asyncio.Semaphore(self.config.concurrency)
        self.semaphore = asyncio.Semaphore(self.config.concurrency)
        self._cancel = asyncio.Event()

        self._running = False
        self._last_scan: Optional[ScanRun] = None
        self._last_compliance: Optional[ComplianceSummary] = None
        self._scheduled_tasks: List[Any] = []

        # Statistics
        self.start_time: Optional[datetime] = None
        self.end_time: Optional[datetime] = None
        self.total_findings = 0

    def _default_dispatcher(self) -> AlertDispatcher:
        if self.config.alert_webhook_url:
            sink = WebhookSink(self.config.alert_webhook_url)
        else:
            sink = LogSink()
        return AlertDispatcher(sink, score_floor=self.config.score_floor)

    async def initialize(self) -> bool:
        """Load detectors and prepare persistence."""
        try:
            self.logger.info("Initializing Aegis Scan Engine")

            if not self.detector_loader.loaded_detectors:
                loaded_count = self.detector_loader.load_all_detectors()
            else:
                loaded_count = len(self.detector_loader.loaded_detectors)

            if loaded_count == 0:
                self.logger.warning("No detectors loaded - targets will report no findings")

            if self.result_manager is None:
                try:
                    self.result_manager = ResultManager(self.config.output_dir)
                except PersistenceError as e:
                    self.logger.error(f"Results will not be persisted: {e}")
                    emit(self.observer, "persistence_failed", str(e), level=logging.ERROR,
                         output_dir=self.config.output_dir)

            self.logger.info(f"Engine initialized with {loaded_count} detectors")
            return True

        except Exception as e:
            self.logger.error(f"Failed to initialize engine: {e}")
            return False

    def normalize_target(self, target: str) -> str:
        """Strip whitespace and trailing slashes; expand ~ for local paths."""
        normalized = target.strip()
        if normalized.startswith("~"):
            normalized = str(Path(normalized).expanduser())
        if len(normalized) > 1:
            normalized = normalized.rstrip("/") or "/"
        return normalized

    def cancel(self) -> None:
        """Stop starting new targets. In-flight detectors finish or time out."""
        self.logger.warning("Scan cancellation requested")
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    async def run_detector(self,
                           detector_name: str,
                           detector_module: Any,
                           target: str,
                           context: DetectorContext,
                           now: Optional[datetime] = None) -> List[Finding]:
        """Run one detector against one target and normalize its output.

        Any failure, including the timeout, is raised as DetectorError.
        """
        timeout = detector_module.METADATA.get("timeout", self.config.detector_timeout)
        self.logger.debug(f"Running detector: {detector_name} on {target}")

        try:
            async with self.semaphore:
                raw_output = await asyncio.wait_for(detector_module.run(target, context), timeout)
            findings = normalize(raw_output, detector_name, target, observer=self.observer, now=now)
        except asyncio.TimeoutError:
            raise DetectorError(detector_name, target,
                                TimeoutError(f"timed out after {timeout}s")) from None
        except Exception as e:
            raise DetectorError(detector_name, target, e) from e

        self.logger.debug(f"Detector {detector_name} found {len(findings)} findings on {target}")
        return findings

    async def scan_target(self,
                          identifier: str,
                          detectors: Dict[str, Any],
                          now: Optional[datetime] = None) -> TargetResult:
        """Scan one target with every detector.

        Detector failures are returned as an errored TargetResult and never
        escape. AggregationError does escape: it is an internal fault.
        """
        now = now or datetime.now()

        async with self.target_slots:
            if self._cancel.is_set():
                emit(self.observer, "target_skipped", f"{identifier} skipped: {CANCELLED}",
                     level=logging.WARNING, target=identifier)
                return TargetResult(identifier=identifier, error=CANCELLED)

            emit(self.observer, "target_started", f"Scanning {identifier}",
                 target=identifier, detectors=sorted(detectors))

            context = DetectorContext.from_config(self.config)
            names = list(detectors)
            outcomes = await asyncio.gather(
                *(self.run_detector(name, detectors[name], identifier, context, now) for name in names),
                return_exceptions=True,
            )

        findings_by_detector: Dict[str, List[Finding]] = {}
        failures: List[str] = []

        for name, outcome in zip(names, outcomes):
            if isinstance(outcome, DetectorError):
                self.logger.error(f"Error running detector {name}: {outcome}")
                emit(self.observer, "detector_failed", str(outcome), level=logging.ERROR,
                     target=identifier, detector=name)
                failures.append(str(outcome))
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                findings_by_detector[name] = outcome

        if failures:
            emit(self.observer, "target_failed", f"{identifier} failed", level=logging.ERROR,
                 target=identifier, errors=failures)
            return TargetResult(identifier=identifier, error="; ".join(failures))

        target = build_target(identifier, findings_by_detector, scorer=self._score)
        report = Report(
            target=target,
            recommendations=tuple(r.text for r in recommend(target.findings)),
            timestamp=now.isoformat(),
        )

        emit(self.observer, "target_completed",
             f"{identifier}: {len(target.findings)} findings, score {target.score:g}",
             target=identifier, findings=len(target.findings), score=target.score)
        return TargetResult(identifier=identifier, report=report)

    def _persist(self, results: List[TargetResult]) -> None:
        if self.result_manager is None:
            self.logger.warning("No result manager available - skipping persistence")
            return

        for result in results:
            if not result.ok:
                continue
            try:
                for finding in result.report.findings:
                    self.result_manager.record_finding(finding)
                self.result_manager.record_report(result.report)
            except PersistenceError as e:
                self.logger.error(f"Failed to persist results for {result.identifier}: {e}")
                emit(self.observer, "persistence_failed", str(e), level=logging.ERROR,
                     target=result.identifier)

    async def _alert(self, summary) -> None:
        try:
            await self.alert_dispatcher.dispatch(summary)
        except AlertDeliveryError as e:
            self.logger.error(f"Failed to deliver alerts: {e}")
            emit(self.observer, "alert_failed", str(e), level=logging.ERROR)

    async def run_scan(self,
                       targets: List[str],
                       detector_list: Optional[List[str]] = None,
                       now: Optional[datetime] = None) -> ScanRun:
        """Run one portfolio scan.

        Returns a FAILED ScanRun when no target succeeds; raises ScanRunFailed
        for an empty target list or an internal aggregation fault.
        """
        now = now or datetime.now()
        run_id = f"scan_{now.strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:8]}"
        identifiers = list(dict.fromkeys(t for t in (self.normalize_target(t) for t in targets) if t))

        if not identifiers:
            emit(self.observer, "scan_failed", "No targets to scan", level=logging.ERROR, run_id=run_id)
            raise ScanRunFailed("no targets to scan",
                                cause=AggregationError("cannot scan an empty target list"))

        if not await self.initialize():
            raise ScanRunFailed("failed to initialize scan engine")

        detectors = self.detector_loader.filter_detectors(detector_list=detector_list)
        if not detectors:
            self.logger.warning("No matching detectors found for scan")

        self._cancel.clear()
        self._running = True
        self.start_time = datetime.now()
        started_at = self.start_time.isoformat()

        emit(self.observer, "scan_started",
             f"Running scan with {len(detectors)} detectors against {len(identifiers)} targets",
             run_id=run_id, targets=identifiers, detectors=sorted(detectors))

        try:
            # Every target settles before a fault is raised, so none is left running
            outcomes = await asyncio.gather(
                *(self.scan_target(identifier, detectors, now) for identifier in identifiers),
                return_exceptions=True,
            )
            faults = [o for o in outcomes if isinstance(o, BaseException)]
            if faults:
                fault = faults[0]
                if not isinstance(fault, Exception):
                    raise fault
                reason = "aggregation failed" if isinstance(fault, AggregationError) else "scan target failed unexpectedly"
                emit(self.observer, "scan_failed", f"{reason}: {fault}", level=logging.ERROR,
                     run_id=run_id)
                raise ScanRunFailed(reason, cause=fault) from fault

            results = list(outcomes)
            self._persist(results)

            if not any(r.ok for r in results):
                self.end_time = datetime.now()
                emit(self.observer, "scan_failed", NO_SUCCESSFUL_TARGETS, level=logging.ERROR,
                     run_id=run_id, errors={r.identifier: r.error for r in results})
                return ScanRun(
                    run_id=run_id,
                    status=ScanStatus.FAILED,
                    started_at=started_at,
                    finished_at=self.end_time.isoformat(),
                    results=tuple(results),
                    reason=NO_SUCCESSFUL_TARGETS,
                )

            try:
                summary = build_portfolio_summary(results, self.config, now)
            except Exception as e:
                emit(self.observer, "scan_failed", f"Summary failed: {e}", level=logging.ERROR,
                     run_id=run_id)
                raise ScanRunFailed("failed to build portfolio summary", cause=e) from e

            self.end_time = datetime.now()
            self.total_findings = summary.total_findings
            run = ScanRun(
                run_id=run_id,
                status=summary.status,
                started_at=started_at,
                finished_at=self.end_time.isoformat(),
                results=tuple(results),
                summary=summary,
            )
            self._last_scan = run

            emit(self.observer, "scan_completed",
                 f"Scan {run.status.value}: {summary.total_findings} findings, "
                 f"average score {summary.average_score}",
                 run_id=run_id, status=run.status.value, findings=summary.total_findings,
                 average_score=summary.average_score, critical=summary.critical_count)

            await self._alert(summary)
            return run

        finally:
            self._running = False
            if self.end_time is None or self.end_time < self.start_time:
                self.end_time = datetime.now()

    async def run_compliance_check(self,
                                   now: Optional[datetime] = None,
                                   framework_names: Optional[List[str]] = None) -> ComplianceSummary:
        summary = await self.compliance_engine.run_full_check(now, framework_names)
        self._last_compliance = summary

        try:
            await self.alert_dispatcher.on_compliance_below_threshold(summary)
        except AlertDeliveryError as e:
            self.logger.error(f"Failed to deliver compliance alert: {e}")
            emit(self.observer, "alert_failed", str(e), level=logging.ERROR)

        return summary

    def get_last_scan_run(self) -> Optional[ScanRun]:
        return self._last_scan

    def get_last_scan_results(self) -> Optional[PortfolioSummary]:
        return self._last_scan.summary if self._last_scan else None

    def get_last_compliance_results(self) -> Optional[ComplianceSummary]:
        return self._last_compliance

    def attach_scheduled_task(self, handle: Any) -> None:
        """Register a task owned by an external scheduler."""
        self._scheduled_tasks.append(handle)

    def get_system_status(self) -> Dict[str, Any]:
        active = [t for t in self._scheduled_tasks if not (hasattr(t, "done") and t.done())]
        return {
            "is_running": self._running,
            "scheduled_task_count": len(active),
            "last_scan_timestamp": self._last_scan.summary.timestamp if self._last_scan else None,
            "last_compliance_timestamp": self._last_compliance.timestamp if self._last_compliance else None,
            "detectors_loaded": len(self.detector_loader.loaded_detectors),
        }

    def get_scan_stats(self) -> Dict[str, Any]:
        duration = None
        if self.start_time and self.end_time:
            duration = (self.end_time - self.start_time).total_seconds()

        return {
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_seconds": duration,
            "total_findings": self.total_findings,
            "concurrency": self.config.concurrency,
            "detector_stats": self.detector_loader.get_detector_stats(),
        }
