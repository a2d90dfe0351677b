"""Build orchestration: from configured sources to a published tree."""

from .events import CollectingEventSink, EventSink, LoggingEventSink, RunEvent
from .orchestrator import RepositoryBuilder
from .report import RunOutcome, RunReport, SourceFailure

__all__ = [
    "CollectingEventSink",
    "EventSink",
    "LoggingEventSink",
    "RepositoryBuilder",
    "RunEvent",
    "RunOutcome",
    "RunReport",
    "SourceFailure",
]
