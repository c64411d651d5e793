"""
Alerting for Aegis
Threshold hooks over portfolio and compliance summaries, delivered through
an injected sink.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Union

import httpx

from .errors import AlertDeliveryError
from .model import ComplianceSummary, PortfolioSummary
from .scorer import DEFAULT_SCORE_FLOOR

TOP_RECOMMENDATIONS = 3

Summary = Union[PortfolioSummary, ComplianceSummary]


class AlertSink(Protocol):
    async def send(self, payload: Dict[str, Any]) -> None:
        ...


class LogSink:
    """Writes alerts to the log only."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("aegis.alerts")
        self.sent: List[Dict[str, Any]] = []

    async def send(self, payload: Dict[str, Any]) -> None:
        self.sent.append(payload)
        self.logger.warning(f"ALERT {payload['type']}: {payload['message']}")


class WebhookSink:
    """POSTs alert payloads as JSON to a webhook URL."""

    def __init__(self, url: str, timeout: float = 10.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = url
        self.timeout = timeout
        self.transport = transport
        self.logger = logging.getLogger(__name__)

    async def send(self, payload: Dict[str, Any]) -> None:
        try:
            async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout),
                                         transport=self.transport) as client:
                response = await client.post(self.url, json=payload)
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise AlertDeliveryError(f"Webhook delivery to {self.url} failed: {e}") from e

        self.logger.info(f"Alert {payload['type']} delivered to {self.url}")


class AlertDispatcher:
    """Evaluates alert rules and hands payloads to the sink."""

    def __init__(self, sink: Optional[AlertSink] = None, score_floor: float = DEFAULT_SCORE_FLOOR):
        self.sink = sink or LogSink()
        self.score_floor = score_floor
        self.logger = logging.getLogger(__name__)

    async def _deliver(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            await self.sink.send(payload)
        except AlertDeliveryError:
            raise
        except Exception as e:
            raise AlertDeliveryError(f"Alert {payload['type']} could not be delivered: {e}") from e
        return payload

    async def on_critical_threshold_crossed(self, summary: PortfolioSummary) -> Optional[Dict[str, Any]]:
        """Alert when the portfolio holds any critical finding."""
        if summary.critical_count <= 0:
            return None

        payload = {
            "type": "critical_vulnerabilities",
            "severity": "critical",
            "message": f"{summary.critical_count} critical vulnerabilities found across the portfolio",
            "summary": {
                "totalTargets": summary.total_targets,
                "totalFindings": summary.total_findings,
                "countsBySeverity": dict(summary.counts_by_severity),
                "averageScore": summary.average_score,
            },
            "recommendations": [r.to_dict() for r in summary.recommendations[:TOP_RECOMMENDATIONS]],
            "timestamp": datetime.now().isoformat(),
        }
        return await self._deliver(payload)

    async def on_compliance_below_threshold(self, summary: Summary) -> Optional[Dict[str, Any]]:
        """Alert when the portfolio average or a compliance score is under the floor."""
        if isinstance(summary, ComplianceSummary):
            score = summary.overall_score
            source = "compliance"
        else:
            score = summary.mean_score if summary.mean_score is not None else summary.average_score
            source = "security"

        if score is None or score >= self.score_floor:
            return None

        payload = {
            "type": "compliance_below_threshold",
            "severity": "high",
            "message": f"{source.capitalize()} score {score:g} is below the floor of {self.score_floor:g}",
            "summary": {
                "source": source,
                "score": score,
                "status": summary.status if isinstance(summary, ComplianceSummary) else summary.compliance_status,
                "floor": self.score_floor,
            },
            "recommendations": [r.to_dict() for r in summary.recommendations[:TOP_RECOMMENDATIONS]],
            "timestamp": datetime.now().isoformat(),
        }
        return await self._deliver(payload)

    async def dispatch(self, summary: Summary) -> List[Dict[str, Any]]:
        """Evaluate every rule for the summary and return the payloads sent.

        All rules are attempted; delivery failures are raised together at the end.
        """
        hooks = [self.on_compliance_below_threshold]
        if isinstance(summary, PortfolioSummary):
            hooks.insert(0, self.on_critical_threshold_crossed)

        sent, failures = [], []
        for hook in hooks:
            try:
                payload = await hook(summary)
            except AlertDeliveryError as e:
                self.logger.error(f"Alert delivery failed: {e}")
                failures.append(str(e))
                continue
            if payload is not None:
                sent.append(payload)

        if failures:
            raise AlertDeliveryError("; ".join(failures))
        return sent
