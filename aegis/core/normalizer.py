"""
Finding Normalizer for Aegis
Converts heterogeneous detector output into uniform Finding records
"""

import hashlib
import logging
from datetime import datetime
from typing import Any, Iterable, List, Mapping, Optional, Union

from .errors import UnknownSeverity
from .events import EventObserver, LoggingObserver, emit
from .model import Finding, Severity
from ..data.remediations import remediation_for

logger = logging.getLogger(__name__)

RawFinding = Union[Mapping[str, Any], Finding]

_ID_HASH_LENGTH = 16


def finding_id(detector_name: str, finding_type: str, target: str, location: str) -> str:
    """Content-derived finding id.

    Identical (detector, type, target, location) tuples always yield the same
    id, so repeated scans deduplicate cleanly.
    """
    key = "\x1f".join([detector_name, finding_type, target, location])
    digest = hashlib.sha256(key.encode("utf-8")).hexdigest()[:_ID_HASH_LENGTH]
    return f"{detector_name}_{digest}"


def line_number(source: str, offset: int) -> int:
    """1-based line number of a character offset within source."""
    offset = max(0, min(int(offset), len(source)))
    return source.count("\n", 0, offset) + 1


def _location(raw: Mapping[str, Any]) -> str:
    if raw.get("location"):
        return str(raw["location"])

    path = raw.get("file") or raw.get("path") or ""
    line = raw.get("line")
    if line is None and "offset" in raw and "source" in raw:
        line = line_number(raw["source"], raw["offset"])

    if path and line is not None:
        return f"{path}:{line}"
    if path:
        return str(path)
    if line is not None:
        return f"line:{line}"
    return ""


def normalize_one(raw: RawFinding,
                  detector_name: str,
                  target_identifier: str,
                  timestamp: Optional[str] = None) -> Finding:
    """Normalize a single raw record. Raises UnknownSeverity or ValueError."""
    if isinstance(raw, Finding):
        raw = raw.to_dict()

    finding_type = raw.get("type")
    if not finding_type:
        raise ValueError("raw finding has no type")

    severity = Severity.parse(raw.get("severity"))
    location = _location(raw)

    return Finding(
        id=finding_id(detector_name, finding_type, target_identifier, location),
        type=finding_type,
        category=raw.get("category") or "uncategorized",
        severity=severity,
        description=raw.get("description", ""),
        location=location,
        detected_by=detector_name,
        target=target_identifier,
        timestamp=timestamp or raw.get("timestamp") or datetime.now().isoformat(),
        recommendation=raw.get("recommendation") or remediation_for(finding_type),
    )


def normalize(raw_output: Iterable[RawFinding],
              detector_name: str,
              target_identifier: str,
              observer: Optional[EventObserver] = None,
              now: Optional[datetime] = None) -> List[Finding]:
    """Normalize a detector's raw output into Finding records.

    Malformed records are dropped one at a time and reported to the observer;
    the rest of the batch is kept.
    """
    observer = observer if observer is not None else LoggingObserver(logger)
    timestamp = (now or datetime.now()).isoformat()
    findings = []

    for index, raw in enumerate(raw_output or []):
        try:
            findings.append(normalize_one(raw, detector_name, target_identifier, timestamp))
        except UnknownSeverity as e:
            emit(observer, "finding_dropped",
                 f"{detector_name} reported unknown severity {e.value!r} for {target_identifier}",
                 level=logging.WARNING,
                 detector=detector_name, target=target_identifier,
                 index=index, reason="unknown_severity", severity=e.value)
        except (ValueError, TypeError, AttributeError) as e:
            emit(observer, "finding_dropped",
                 f"{detector_name} produced a malformed finding for {target_identifier}: {e}",
                 level=logging.WARNING,
                 detector=detector_name, target=target_identifier,
                 index=index, reason="malformed")

    return findings
