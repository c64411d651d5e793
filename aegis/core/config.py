"""
Configuration for Aegis
Loads scoring tables, engine limits and compliance frameworks from JSON
"""

import copy
import json
import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

from .model import Priority, Severity
from .scorer import ThresholdTable

_DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "data" / "default_config.json"

logger = logging.getLogger(__name__)


def _load_defaults() -> Dict[str, Any]:
    with open(_DEFAULT_CONFIG_PATH, "r", encoding="utf-8") as f:
        return json.load(f)


@dataclass
class ScanConfig:
    """Runtime configuration shared by the engine, scorer and compliance checks."""

    penalties: Dict[str, float] = field(default_factory=dict)
    thresholds: List[List] = field(default_factory=list)
    score_floor: float = 60
    target_score: float = 90
    due_offsets: Dict[str, int] = field(default_factory=dict)
    recommendation_limit: int = 10
    compliance_recommendation_floor: float = 80
    concurrency: int = 5
    detector_timeout: float = 30.0
    output_dir: str = "./reports"
    alert_webhook_url: Optional[str] = None
    security_assignee: str = "Security Team"
    compliance_assignee: str = "Compliance Team"
    max_file_bytes: int = 1024 * 1024
    source_suffixes: List[str] = field(default_factory=list)
    frameworks: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def default(cls) -> "ScanConfig":
        return cls.from_dict(_load_defaults())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScanConfig":
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {sorted(unknown)}")
        return cls(**{k: copy.deepcopy(v) for k, v in data.items() if k in known})

    @classmethod
    def load(cls, path: Optional[str] = None, **overrides: Any) -> "ScanConfig":
        """Load defaults, overlay an optional JSON file, then keyword overrides.

        Overrides whose value is None are ignored so CLI options can be passed
        through unconditionally.
        """
        data = _load_defaults()

        if path:
            config_path = Path(path)
            with open(config_path, "r", encoding="utf-8") as f:
                user_data = json.load(f)
            data.update(user_data)
            logger.info(f"Loaded configuration from {config_path}")

        data.update({k: v for k, v in overrides.items() if v is not None})
        return cls.from_dict(data)

    def threshold_table(self) -> ThresholdTable:
        if not self.thresholds:
            return ThresholdTable()
        return ThresholdTable.from_config(self.thresholds)

    def severity_penalties(self) -> Dict[Severity, float]:
        return {Severity.parse(name): float(value) for name, value in self.penalties.items()}

    def priority_due_offsets(self) -> Dict[Priority, int]:
        return {Priority(name.upper()): int(days) for name, days in self.due_offsets.items()}

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: copy.deepcopy(getattr(self, f.name)) for f in fields(self)}
