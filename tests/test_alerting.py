"""
Test suite for alert dispatch and delivery
"""

import json

import httpx
import pytest

from aegis.core.alerting import AlertDispatcher, LogSink, WebhookSink
from aegis.core.config import ScanConfig
from aegis.core.errors import AlertDeliveryError
from aegis.core.model import ComplianceSummary, Report, Target, TargetResult
from aegis.core.portfolio import build_portfolio_summary


class RecordingTransport:
    """httpx MockTransport that keeps every request body."""

    def __init__(self, status_code=200):
        self.status_code = status_code
        self.requests = []
        self.transport = httpx.MockTransport(self.handle)

    def handle(self, request):
        self.requests.append(request)
        return httpx.Response(self.status_code, json={"ok": self.status_code < 400})


class ExplodingSink:
    def __init__(self):
        self.attempts = 0

    async def send(self, payload):
        self.attempts += 1
        raise OSError("socket closed")


@pytest.fixture
def risky_summary(make_finding, make_result, now):
    findings = [
        make_finding(type="exposed_secrets", severity="critical", location="cfg.py:1"),
        make_finding(type="sql_injection", severity="high", location="db.py:4"),
        make_finding(type="sql_injection", severity="high", location="db.py:9"),
    ]
    return build_portfolio_summary([make_result("repo-a", findings)], ScanConfig.default(), now)


@pytest.fixture
def healthy_summary(make_finding, make_result, now):
    results = [
        make_result("repo-a", [make_finding(target="repo-a", severity="medium", location="a:1"),
                               make_finding(target="repo-a", severity="low", location="a:2")]),
        make_result("repo-b", [make_finding(target="repo-b", severity="high", location="b:1"),
                               make_finding(target="repo-b", severity="high", location="b:2")]),
        make_result("repo-c", [make_finding(target="repo-c", severity="high", location="c:1"),
                               make_finding(target="repo-c", severity="high", location="c:2"),
                               make_finding(target="repo-c", severity="high", location="c:3"),
                               make_finding(target="repo-c", severity="low", location="c:4")]),
    ]
    return build_portfolio_summary(results, ScanConfig.default(), now)


def compliance_summary(score):
    return ComplianceSummary(timestamp="2024-01-15T10:30:00", overall_score=score, status="X",
                             frameworks=(), recommendations=(), action_items=())


class TestAlertDispatcher:

    @pytest.mark.asyncio
    async def test_critical_and_low_average_both_alert(self, risky_summary):
        sink = LogSink()

        sent = await AlertDispatcher(sink).dispatch(risky_summary)

        assert [p["type"] for p in sent] == ["critical_vulnerabilities", "compliance_below_threshold"]
        assert sink.sent == sent

        critical = sent[0]
        assert critical["severity"] == "critical"
        assert critical["summary"]["countsBySeverity"]["critical"] == 1
        assert [r["type"] for r in critical["recommendations"]] == ["exposed_secrets", "sql_injection"]

        below = sent[1]
        assert below["severity"] == "high"
        assert below["summary"]["source"] == "security"
        assert below["summary"]["score"] == 45

    @pytest.mark.asyncio
    async def test_healthy_portfolio_sends_nothing(self, healthy_summary):
        sink = LogSink()

        assert [r.score for r in healthy_summary.reports] == [89, 70, 52]
        assert await AlertDispatcher(sink).dispatch(healthy_summary) == []
        assert sink.sent == []

    @pytest.mark.asyncio
    async def test_recommendations_are_capped(self, make_finding, make_result, now):
        findings = [make_finding(type=f"type_{i}", severity="critical", location=f"a:{i}") for i in range(5)]
        summary = build_portfolio_summary([make_result("repo-a", findings)], ScanConfig.default(), now)

        payload = await AlertDispatcher(LogSink()).on_critical_threshold_crossed(summary)

        assert len(payload["recommendations"]) == 3

    @pytest.mark.asyncio
    async def test_compliance_summary_only_checks_the_floor(self):
        sink = LogSink()
        dispatcher = AlertDispatcher(sink, score_floor=60)

        assert await dispatcher.dispatch(compliance_summary(60)) == []
        sent = await dispatcher.dispatch(compliance_summary(59.5))

        assert [p["summary"]["source"] for p in sent] == ["compliance"]

    @pytest.mark.asyncio
    async def test_average_just_under_the_floor_alerts(self, now):
        results = [
            TargetResult(identifier=name, report=Report(Target(name, (), 59.996, ()), (), now.isoformat()))
            for name in ("repo-a", "repo-b")
        ]
        summary = build_portfolio_summary(results, ScanConfig.default(), now)

        payload = await AlertDispatcher(LogSink(), score_floor=60).on_compliance_below_threshold(summary)

        assert summary.average_score == 60.0
        assert payload is not None
        assert payload["summary"]["score"] == pytest.approx(59.996)

    @pytest.mark.asyncio
    async def test_every_rule_is_attempted_before_failing(self, risky_summary):
        sink = ExplodingSink()

        with pytest.raises(AlertDeliveryError) as exc_info:
            await AlertDispatcher(sink).dispatch(risky_summary)

        assert sink.attempts == 2
        assert "socket closed" in str(exc_info.value)


class TestWebhookSink:

    @pytest.mark.asyncio
    async def test_posts_json_payload(self, risky_summary):
        recorder = RecordingTransport()
        sink = WebhookSink("https://hooks.example.com/aegis", transport=recorder.transport)

        await AlertDispatcher(sink).dispatch(risky_summary)

        assert len(recorder.requests) == 2
        request = recorder.requests[0]
        assert request.method == "POST"
        assert str(request.url) == "https://hooks.example.com/aegis"
        assert json.loads(request.content)["type"] == "critical_vulnerabilities"

    @pytest.mark.asyncio
    async def test_http_error_is_a_delivery_error(self):
        recorder = RecordingTransport(status_code=503)
        sink = WebhookSink("https://hooks.example.com/aegis", transport=recorder.transport)

        with pytest.raises(AlertDeliveryError):
            await sink.send({"type": "critical_vulnerabilities", "message": "x"})

    @pytest.mark.asyncio
    async def test_connection_error_is_a_delivery_error(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        sink = WebhookSink("https://hooks.example.com/aegis", transport=httpx.MockTransport(refuse))

        with pytest.raises(AlertDeliveryError):
            await sink.send({"type": "critical_vulnerabilities", "message": "x"})
