"""
Test suite for Aegis Scan Engine
"""

import asyncio
from datetime import date
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from aegis.core.aggregator import build_target as real_build_target
from aegis.core.alerting import AlertDispatcher, LogSink
from aegis.core.config import ScanConfig
from aegis.core.detector_loader import DetectorLoader
from aegis.core.engine import CANCELLED, NO_SUCCESSFUL_TARGETS, ScanEngine
from aegis.core.errors import AggregationError, DetectorError, PersistenceError, ScanRunFailed
from aegis.core.events import CollectingObserver
from aegis.core.model import Priority, ScanStatus

REPO_A_RECORDS = [
    {"type": "exposed_secrets", "severity": "critical", "file": "cfg.py", "line": 1, "category": "secret_exposure"},
    {"type": "sql_injection", "severity": "high", "file": "db.py", "line": 4, "category": "injection"},
    {"type": "sql_injection", "severity": "high", "file": "db.py", "line": 9, "category": "injection"},
]


class FailingSink:
    async def send(self, payload):
        raise ConnectionError("webhook unreachable")


class TestScanEngine:
    """Test cases for the main scan engine."""

    @pytest.fixture
    def observer(self):
        return CollectingObserver()

    @pytest.fixture
    def sink(self):
        return LogSink()

    @pytest.fixture
    def build_engine(self, observer, sink):
        """Engine factory wired with in-memory detectors and a mocked result manager."""

        def _build(*detectors, config=None, result_manager=None, dispatcher=None):
            config = config or ScanConfig.default()
            loader = DetectorLoader()
            for detector in detectors:
                assert loader.register(detector.METADATA["id"], detector)
            return ScanEngine(
                config=config,
                detector_loader=loader,
                result_manager=result_manager or MagicMock(),
                alert_dispatcher=dispatcher or AlertDispatcher(sink, score_floor=config.score_floor),
                observer=observer,
            )

        return _build

    def test_normalize_target(self, build_engine):
        """Test target normalization."""
        engine = build_engine()

        assert engine.normalize_target("  repo-a/ ") == "repo-a"
        assert engine.normalize_target("/srv/repos/app//") == "/srv/repos/app"
        assert engine.normalize_target("/") == "/"
        assert not engine.normalize_target("~/code").startswith("~")

    @pytest.mark.asyncio
    async def test_initialize_keeps_registered_detectors(self, build_engine, make_detector):
        """Test that initialize does not reload when detectors are registered."""
        engine = build_engine(make_detector())

        with patch.object(engine.detector_loader, "load_all_detectors") as load_all:
            assert await engine.initialize() is True
            load_all.assert_not_called()

    @pytest.mark.asyncio
    async def test_end_to_end_scan(self, build_engine, make_detector, observer, sink, now):
        """Test a full scan of one target through scoring, persistence and alerts."""
        engine = build_engine(make_detector("secret_patterns", records=REPO_A_RECORDS))

        run = await engine.run_scan(["repo-a"], now=now)

        assert run.status is ScanStatus.COMPLETED
        assert run.run_id.startswith("scan_20240115_103000_")
        summary = run.summary
        assert summary.total_findings == 3
        assert summary.average_score == 45
        assert summary.compliance_status == "NEEDS_IMPROVEMENT"
        assert summary.reports[0].recommendations[0] == (
            "Implement proper secret management using environment variables or secret management services"
        )

        item = summary.action_items[0]
        assert item.id == "action_repo_a"
        assert item.priority is Priority.HIGH
        assert item.due_date == date(2024, 1, 22)

        assert [p["type"] for p in sink.sent] == ["critical_vulnerabilities", "compliance_below_threshold"]
        assert engine.get_last_scan_results() is summary
        assert engine.total_findings == 3

        assert engine.result_manager.record_finding.call_count == 3
        engine.result_manager.record_report.assert_called_once()

        kinds = observer.kinds()
        assert kinds[0] == "scan_started"
        assert kinds[-1] == "scan_completed"
        assert "target_completed" in kinds

    @pytest.mark.asyncio
    async def test_rescan_is_deterministic(self, build_engine, make_detector, now):
        """Test that the same inputs produce the same ids and scores."""
        engine = build_engine(make_detector("secret_patterns", records=REPO_A_RECORDS))

        first = await engine.run_scan(["repo-a"], now=now)
        second = await engine.run_scan(["repo-a"], now=now)

        assert [f.id for f in first.summary.reports[0].findings] == [f.id for f in second.summary.reports[0].findings]
        assert first.summary.average_score == second.summary.average_score

    @pytest.mark.asyncio
    async def test_clean_portfolio_sends_no_alerts(self, build_engine, make_detector, sink, now):
        """Test that targets without findings score 100 and stay quiet."""
        engine = build_engine(make_detector())

        run = await engine.run_scan(["repo-a", "repo-b", "repo-a/"], now=now)

        assert [r.identifier for r in run.results] == ["repo-a", "repo-b"]
        assert run.summary.average_score == 100
        assert run.summary.compliance_status == "FULLY_COMPLIANT"
        assert sink.sent == []

    @pytest.mark.asyncio
    async def test_detector_failure_errors_only_that_target(self, build_engine, make_detector, observer, now):
        """Test that a failing detector marks its target errored and the run partial."""

        def records(target):
            if target == "repo-b":
                raise RuntimeError("parser crashed")
            return [{"type": "weak_encryption", "severity": "medium", "file": "a.py", "line": 2}]

        engine = build_engine(make_detector("flaky", records=records), make_detector("clean"))

        run = await engine.run_scan(["repo-a", "repo-b"], now=now)

        assert run.status is ScanStatus.PARTIAL
        assert set(run.errors) == {"repo-b"}
        assert "parser crashed" in run.errors["repo-b"]
        assert run.summary.errors == run.errors
        assert run.summary.total_findings == 1
        assert run.summary.average_score == 92
        assert "detector_failed" in observer.kinds()
        assert "target_failed" in observer.kinds()

    @pytest.mark.asyncio
    async def test_timeout_on_every_target_fails_the_run(self, build_engine, make_detector, observer, now):
        """Test that a run with no successful target is FAILED and not published."""
        engine = build_engine(make_detector("slow", delay=0.5, timeout=0.01))

        run = await engine.run_scan(["repo-a", "repo-b"], now=now)

        assert run.status is ScanStatus.FAILED
        assert run.summary is None
        assert run.reason == NO_SUCCESSFUL_TARGETS
        assert all("timed out after 0.01s" in error for error in run.errors.values())
        assert engine.get_last_scan_run() is None
        assert observer.kinds()[-1] == "scan_failed"

    @pytest.mark.asyncio
    async def test_run_detector_wraps_errors(self, build_engine, make_detector):
        """Test that detector exceptions surface as DetectorError."""
        detector = make_detector("broken", error=ValueError("bad input"))
        engine = build_engine(detector)

        with pytest.raises(DetectorError) as exc_info:
            await engine.run_detector("broken", detector, "repo-a", MagicMock())

        assert isinstance(exc_info.value.cause, ValueError)
        assert exc_info.value.target == "repo-a"

    @pytest.mark.asyncio
    async def test_malformed_detector_output_errors_only_that_target(self, build_engine, make_detector,
                                                                      observer, now):
        """Test that output that cannot be normalized is a detector failure for that target."""
        engine = build_engine(make_detector("odd", records=lambda target: 5 if target == "repo-b" else []))

        run = await engine.run_scan(["repo-a", "repo-b"], now=now)

        assert run.status is ScanStatus.PARTIAL
        assert set(run.errors) == {"repo-b"}
        assert "odd" in run.errors["repo-b"]
        assert "detector_failed" in observer.kinds()

    @pytest.mark.asyncio
    async def test_malformed_output_surfaces_as_detector_error(self, build_engine, make_detector):
        """Test that run_detector wraps normalization errors."""
        detector = make_detector("odd", records=lambda target: 5)
        engine = build_engine(detector)

        with pytest.raises(DetectorError) as exc_info:
            await engine.run_detector("odd", detector, "repo-a", MagicMock())

        assert isinstance(exc_info.value.cause, TypeError)

    @pytest.mark.asyncio
    async def test_cancel_skips_unstarted_targets(self, build_engine, make_detector, observer, now):
        """Test that cancellation stops new targets while finished ones are kept."""
        engine = None

        def cancel_after_first(target):
            engine.cancel()

        config = ScanConfig.load(concurrency=1)
        engine = build_engine(make_detector(hook=cancel_after_first), config=config)

        run = await engine.run_scan(["repo-a", "repo-b", "repo-c"], now=now)

        assert run.status is ScanStatus.PARTIAL
        assert [r.identifier for r in run.results if r.ok] == ["repo-a"]
        assert run.errors == {"repo-b": CANCELLED, "repo-c": CANCELLED}
        assert observer.kinds().count("target_skipped") == 2
        assert engine.cancelled

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, build_engine, make_detector, now):
        """Test that detector runs never exceed the configured concurrency."""
        active = 0
        peak = 0

        async def run(target, context):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return []

        detector = make_detector("counted")
        detector.run = run
        engine = build_engine(detector, config=ScanConfig.load(concurrency=2))

        run_result = await engine.run_scan([f"repo-{i}" for i in range(6)], now=now)

        assert run_result.status is ScanStatus.COMPLETED
        assert 1 <= peak <= 2

    @pytest.mark.asyncio
    async def test_persistence_failure_is_tolerated(self, build_engine, make_detector, observer, now):
        """Test that a failed write is reported but the run still completes."""
        result_manager = MagicMock()
        result_manager.record_report.side_effect = PersistenceError("disk full")
        engine = build_engine(make_detector(), result_manager=result_manager)

        run = await engine.run_scan(["repo-a"], now=now)

        assert run.status is ScanStatus.COMPLETED
        assert engine.get_last_scan_run() is run
        assert "persistence_failed" in observer.kinds()

    @pytest.mark.asyncio
    async def test_unwritable_output_dir_still_completes(self, make_detector, observer, sink, tmp_path, now):
        """Test that an output directory that cannot be created only disables persistence."""
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        config = ScanConfig.load(output_dir=str(blocker / "reports"))
        loader = DetectorLoader()
        loader.register("fake", make_detector())
        engine = ScanEngine(config=config, detector_loader=loader,
                            alert_dispatcher=AlertDispatcher(sink), observer=observer)

        run = await engine.run_scan(["repo-a"], now=now)

        assert run.status is ScanStatus.COMPLETED
        assert engine.result_manager is None
        assert "persistence_failed" in observer.kinds()
        assert engine.get_last_scan_run() is run

    @pytest.mark.asyncio
    async def test_alert_failure_is_tolerated(self, build_engine, make_detector, observer, now):
        """Test that undeliverable alerts never fail the scan."""
        engine = build_engine(
            make_detector("secret_patterns", records=REPO_A_RECORDS),
            dispatcher=AlertDispatcher(FailingSink()),
        )

        run = await engine.run_scan(["repo-a"], now=now)

        assert run.status is ScanStatus.COMPLETED
        assert engine.get_last_scan_results() is run.summary
        assert "alert_failed" in observer.kinds()

    @pytest.mark.asyncio
    async def test_dispatches_the_published_summary(self, build_engine, make_detector, now):
        """Test that alerting sees exactly the summary that was published."""
        dispatcher = MagicMock()
        dispatcher.dispatch = AsyncMock(return_value=[])
        engine = build_engine(make_detector(), dispatcher=dispatcher)

        run = await engine.run_scan(["repo-a"], now=now)

        dispatcher.dispatch.assert_awaited_once_with(run.summary)

    @pytest.mark.asyncio
    async def test_summary_failure_raises_scan_run_failed(self, build_engine, make_detector, now):
        """Test that a failure building the summary aborts the run."""
        engine = build_engine(make_detector())

        with patch("aegis.core.engine.build_portfolio_summary", side_effect=RuntimeError("boom")):
            with pytest.raises(ScanRunFailed) as exc_info:
                await engine.run_scan(["repo-a"], now=now)

        assert exc_info.value.reason == "failed to build portfolio summary"
        assert engine.get_last_scan_results() is None

    @pytest.mark.asyncio
    async def test_aggregation_fault_aborts_the_run(self, build_engine, make_detector, now):
        """Test that a severity with no configured penalty is an internal fault."""
        config = ScanConfig.load(penalties={"critical": 25})
        engine = build_engine(
            make_detector(records=[{"type": "weak_encryption", "severity": "low", "file": "a.py", "line": 1}]),
            config=config,
        )

        with pytest.raises(ScanRunFailed) as exc_info:
            await engine.run_scan(["repo-a"], now=now)

        assert exc_info.value.reason == "aggregation failed"
        assert isinstance(exc_info.value.cause, AggregationError)
        assert engine.get_system_status()["is_running"] is False

    @pytest.mark.asyncio
    async def test_unexpected_target_fault_becomes_scan_run_failed(self, build_engine, make_detector,
                                                                    observer, now):
        """Test that an unexpected error in one target aborts the run after every target settles."""
        settled = []

        def build(identifier, findings_by_detector, scorer):
            settled.append(identifier)
            if identifier == "repo-b":
                raise RuntimeError("unexpected")
            return real_build_target(identifier, findings_by_detector, scorer=scorer)

        engine = build_engine(make_detector())

        with patch("aegis.core.engine.build_target", side_effect=build):
            with pytest.raises(ScanRunFailed) as exc_info:
                await engine.run_scan(["repo-a", "repo-b", "repo-c"], now=now)

        assert exc_info.value.reason == "scan target failed unexpectedly"
        assert isinstance(exc_info.value.cause, RuntimeError)
        assert sorted(settled) == ["repo-a", "repo-b", "repo-c"]
        assert observer.kinds()[-1] == "scan_failed"
        assert engine.get_system_status()["is_running"] is False

    @pytest.mark.asyncio
    async def test_empty_target_list(self, build_engine, make_detector):
        """Test that scanning nothing is rejected."""
        engine = build_engine(make_detector())

        with pytest.raises(ScanRunFailed) as exc_info:
            await engine.run_scan(["", "   "])

        assert isinstance(exc_info.value.cause, AggregationError)

    @pytest.mark.asyncio
    async def test_detector_filter(self, build_engine, make_detector, now):
        """Test that only the requested detectors run."""
        engine = build_engine(
            make_detector("secret_patterns", records=REPO_A_RECORDS),
            make_detector("clean"),
        )

        run = await engine.run_scan(["repo-a"], detector_list=["clean"], now=now)

        assert run.summary.total_findings == 0

    @pytest.mark.asyncio
    async def test_compliance_check_is_published(self, build_engine, sink, now):
        """Test that compliance results are stored and alerting is evaluated."""
        engine = build_engine()

        summary = await engine.run_compliance_check(now=now, framework_names=["DPDPA 2023"])

        assert summary.overall_score == 82.5
        assert engine.get_last_compliance_results() is summary
        assert sink.sent == []

    @pytest.mark.asyncio
    async def test_system_status(self, build_engine, make_detector, now):
        """Test status reporting before and after a scan."""
        engine = build_engine(make_detector())

        status = engine.get_system_status()
        assert status == {
            "is_running": False,
            "scheduled_task_count": 0,
            "last_scan_timestamp": None,
            "last_compliance_timestamp": None,
            "detectors_loaded": 1,
        }

        engine.attach_scheduled_task(SimpleNamespace(done=lambda: False))
        engine.attach_scheduled_task(SimpleNamespace(done=lambda: True))
        await engine.run_scan(["repo-a"], now=now)

        status = engine.get_system_status()
        assert status["scheduled_task_count"] == 1
        assert status["last_scan_timestamp"] == now.isoformat()

        stats = engine.get_scan_stats()
        assert stats["total_findings"] == 0
        assert stats["duration_seconds"] >= 0
        assert stats["detector_stats"]["total_detectors"] == 1
