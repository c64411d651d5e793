"""
Structured scan events and the observer interface.

Pipeline stages report anomalies and progress as ScanEvent objects handed to
an injected observer instead of calling a shared, type-tagged logger.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Protocol


@dataclass(frozen=True)
class ScanEvent:
    kind: str
    message: str
    data: Dict[str, Any] = field(default_factory=dict)
    level: int = logging.INFO
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())


class EventObserver(Protocol):
    def notify(self, event: ScanEvent) -> None:
        ...


class LoggingObserver:
    """Forward events to the standard logging tree."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("aegis.events")

    def notify(self, event: ScanEvent) -> None:
        self.logger.log(
            event.level,
            f"{event.kind}: {event.message}",
            extra={"event_kind": event.kind, "event_data": event.data},
        )


class CollectingObserver:
    """Keeps every event in memory. Handy for tests and dashboards."""

    def __init__(self):
        self.events: List[ScanEvent] = []

    def notify(self, event: ScanEvent) -> None:
        self.events.append(event)

    def kinds(self) -> List[str]:
        return [e.kind for e in self.events]


class CompositeObserver:
    def __init__(self, observers: Iterable[EventObserver]):
        self.observers = list(observers)

    def notify(self, event: ScanEvent) -> None:
        for observer in self.observers:
            observer.notify(event)


def emit(observer: Optional[EventObserver], kind: str, message: str,
         level: int = logging.INFO, **data: Any) -> ScanEvent:
    """Build an event and hand it to the observer (if any)."""
    event = ScanEvent(kind=kind, message=message, data=data, level=level)
    if observer is not None:
        observer.notify(event)
    return event
