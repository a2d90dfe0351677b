"""Structured progress events emitted during a build."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Protocol

from ..common.logger import get_logger

TASK_STARTED = "task_started"
TASK_SUCCEEDED = "task_succeeded"
TASK_FAILED = "task_failed"
TASK_SKIPPED = "task_skipped"
RUN_SUMMARY = "run_summary"


@dataclass(frozen=True)
class RunEvent:
    """One progress event."""

    kind: str
    message: str
    source: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)


class EventSink(Protocol):
    """Receives events; may be called from worker threads."""

    def emit(self, event: RunEvent) -> None:
        ...


class LoggingEventSink:
    """Writes events through the project logger."""

    def __init__(self, name: str = "events"):
        self.logger = get_logger(name)

    def emit(self, event: RunEvent) -> None:
        prefix = f"[{event.source}] " if event.source else ""
        if event.kind == TASK_FAILED:
            self.logger.warning(f"{prefix}{event.message}")
        elif event.kind == TASK_STARTED:
            self.logger.debug(f"{prefix}{event.message}")
        else:
            self.logger.info(f"{prefix}{event.message}")


class CollectingEventSink:
    """Keeps every event in memory."""

    def __init__(self):
        self.events = []

    def emit(self, event: RunEvent) -> None:
        self.events.append(event)

    def of_kind(self, kind: str):
        return [e for e in self.events if e.kind == kind]
