"""
Aegis Utility Modules
Logging, reporting and console progress
"""

from .logger import AuditObserver, setup_logger
from .progress_manager import ProgressObserver
from .report import ReportGenerator

__all__ = [
    "AuditObserver",
    "ProgressObserver",
    "ReportGenerator",
    "setup_logger",
]
