"""
Aegis Core Components
Normalization, aggregation, scoring, orchestration and persistence
"""

from .compliance import ComplianceEngine
from .config import ScanConfig
from .detector_loader import DetectorLoader
from .engine import ScanEngine
from .model import Finding, PortfolioSummary, Report, ScanRun, Severity
from .result_manager import ResultManager

__all__ = [
    "ComplianceEngine",
    "DetectorLoader",
    "Finding",
    "PortfolioSummary",
    "Report",
    "ResultManager",
    "ScanConfig",
    "ScanEngine",
    "ScanRun",
    "Severity",
]
