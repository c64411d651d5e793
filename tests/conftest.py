"""
Shared fixtures for the Aegis test suite
"""

import asyncio
import types
from datetime import datetime

import pytest

from aegis.core.aggregator import build_target
from aegis.core.model import Finding, Report, TargetResult
from aegis.core.normalizer import finding_id
from aegis.core.scorer import recommend

SCAN_TIME = datetime(2024, 1, 15, 10, 30, 0)


@pytest.fixture
def now():
    return SCAN_TIME


@pytest.fixture
def make_finding():
    """Factory for Finding records with deterministic ids."""

    def _make(type="sql_injection", severity="high", target="repo-a", location="app.py:1",
              detected_by="secret_patterns", category="injection"):
        return Finding(
            id=finding_id(detected_by, type, target, location),
            type=type,
            category=category,
            severity=severity,
            description=f"{type} detected",
            location=location,
            detected_by=detected_by,
            target=target,
            timestamp=SCAN_TIME.isoformat(),
        )

    return _make


@pytest.fixture
def make_result():
    """Factory for successful TargetResults built through the real aggregator."""

    def _make(identifier, findings=(), detector="secret_patterns"):
        target = build_target(identifier, {detector: list(findings)})
        report = Report(
            target=target,
            recommendations=tuple(r.text for r in recommend(target.findings)),
            timestamp=SCAN_TIME.isoformat(),
        )
        return TargetResult(identifier=identifier, report=report)

    return _make


@pytest.fixture
def make_detector():
    """Factory for in-memory detector modules accepted by DetectorLoader.register."""

    def _make(detector_id="fake", records=None, error=None, delay=0.0, timeout=None,
              category="code_security", hook=None):
        async def run(target, context):
            if hook is not None:
                hook(target)
            if delay:
                await asyncio.sleep(delay)
            if error is not None:
                raise error
            if callable(records):
                return records(target)
            return list(records or [])

        metadata = {
            "id": detector_id,
            "name": f"{detector_id} detector",
            "category": category,
            "severity_hint": "high",
            "implemented": True,
        }
        if timeout is not None:
            metadata["timeout"] = timeout
        return types.SimpleNamespace(METADATA=metadata, run=run)

    return _make
