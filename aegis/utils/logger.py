"""
Logger Utility for Aegis
Console/file logging setup and the audit trail observer
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

from ..core.events import ScanEvent

FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s"


def setup_logger(verbosity: int = 1,
                 log_file: Optional[str] = None,
                 logger_name: str = "aegis",
                 logs_dir: str = "logs") -> logging.Logger:
    """Set up logger with rich console output and a detailed log file."""

    logger = logging.getLogger(logger_name)
    logger.setLevel(logging.DEBUG if verbosity >= 2 else logging.INFO)
    logger.handlers.clear()
    logger.propagate = False

    console_handler = RichHandler(
        console=Console(stderr=True),
        show_time=True,
        show_path=(verbosity >= 2),
        rich_tracebacks=True,
        markup=False,
    )
    if verbosity <= 0:
        console_handler.setLevel(logging.WARNING)
    else:
        console_handler.setLevel(logging.DEBUG if verbosity >= 2 else logging.INFO)
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
    else:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_path = Path(logs_dir) / f"aegis_scan_{timestamp}.log"
        log_path.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
    logger.addHandler(file_handler)

    if not log_file:
        logger.info(f"Detailed logs saved to: {log_path}")

    # Suppress overly verbose third-party loggers unless in debug
    for name in ("httpx", "httpcore", "asyncio"):
        logging.getLogger(name).setLevel(logging.WARNING if verbosity < 2 else logging.INFO)

    return logger


class AuditObserver:
    """Writes one audit line per scan event to a dedicated file."""

    def __init__(self, audit_log_file: str = "logs/security_audit.log"):
        self.audit_log_file = Path(audit_log_file)
        self.audit_log_file.parent.mkdir(parents=True, exist_ok=True)

        self.logger = logging.getLogger("aegis.audit")
        self.logger.setLevel(logging.INFO)
        self.logger.propagate = False
        self.logger.handlers.clear()

        handler = logging.FileHandler(self.audit_log_file, encoding="utf-8")
        handler.setLevel(logging.INFO)
        handler.setFormatter(logging.Formatter("%(asctime)s - AUDIT - %(levelname)s - %(message)s"))
        self.logger.addHandler(handler)

    @staticmethod
    def format_event(event: ScanEvent) -> str:
        fields = " - ".join(f"{key}: {value}" for key, value in sorted(event.data.items()))
        line = f"{event.kind.upper()} - {event.message}"
        return f"{line} - {fields}" if fields else line

    def notify(self, event: ScanEvent) -> None:
        self.logger.log(max(event.level, logging.INFO), self.format_event(event))

    def close(self) -> None:
        for handler in list(self.logger.handlers):
            handler.close()
            self.logger.removeHandler(handler)
