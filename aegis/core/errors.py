"""
Error taxonomy for the Aegis scan pipeline.

Failures local to one finding or one target are isolated by the engine;
failures in aggregation or scoring abort the whole run as ScanRunFailed.
"""

from typing import Optional


class AegisError(Exception):
    """Base class for all Aegis errors."""


class DetectorError(AegisError):
    """A single detector failed for one target."""

    def __init__(self, detector: str, target: str, cause: Optional[BaseException] = None):
        self.detector = detector
        self.target = target
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Detector {detector} failed for {target}{detail}")


class UnknownSeverity(AegisError, ValueError):
    """A finding carried a severity outside critical/high/medium/low."""

    def __init__(self, value):
        self.value = value
        super().__init__(f"Unknown severity: {value!r}")


class AggregationError(AegisError):
    """Internal invariant violation in aggregation or scoring."""


class ScanRunFailed(AegisError):
    """Terminal failure of a scan run, surfaced to the caller."""

    def __init__(self, reason: str, cause: Optional[BaseException] = None):
        self.reason = reason
        self.cause = cause
        super().__init__(reason)


class PersistenceError(AegisError):
    """A durable write failed. Results stay valid in memory."""


class AlertDeliveryError(AegisError):
    """An alert could not be delivered."""
