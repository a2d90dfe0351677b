"""Outcome reporting for repository builds."""

from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from typing import Dict, List, Optional

from ..common.errors import ErrorClass, RepoBuildError


class RunOutcome(Enum):
    """Overall result of a build."""

    SUCCESS = auto()
    PARTIAL = auto()  # Published, some sources failed
    ABORTED = auto()  # Nothing published


@dataclass(frozen=True)
class SourceFailure:
    """A failure attributed to one package source."""

    source: str
    error_class: ErrorClass
    message: str
    stage: str = ""

    @classmethod
    def from_error(cls, source: str, error: BaseException, stage: str = "") -> "SourceFailure":
        if isinstance(error, RepoBuildError):
            return cls(source, error.error_class, str(error), stage)
        if isinstance(error, OSError):
            return cls(source, ErrorClass.TRANSIENT, str(error), stage)
        return cls(source, ErrorClass.FATAL, str(error), stage)


@dataclass
class RunReport:
    """Result of a build run."""

    outcome: RunOutcome = RunOutcome.ABORTED
    build_id: Optional[str] = None
    failures: List[SourceFailure] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    ingested: Dict[str, int] = field(default_factory=dict)
    packages_published: int = 0
    carried_forward: int = 0
    published_path: Optional[Path] = None
    signed: bool = False
    error_message: Optional[str] = None
    duration_seconds: float = 0.0

    @property
    def failed_sources(self) -> List[str]:
        seen = []
        for failure in self.failures:
            if failure.source not in seen:
                seen.append(failure.source)
        return seen

    @property
    def published(self) -> bool:
        return self.outcome is not RunOutcome.ABORTED

    def summary(self) -> str:
        parts = [f"outcome={self.outcome.name}"]
        if self.build_id:
            parts.append(f"build={self.build_id}")
        parts.append(f"ingested={sum(self.ingested.values())}")
        parts.append(f"published={self.packages_published}")
        if self.skipped:
            parts.append(f"skipped={len(self.skipped)}")
        if self.failures:
            parts.append(f"failed={','.join(self.failed_sources)}")
        if self.error_message:
            parts.append(f"error={self.error_message}")
        return " ".join(parts)
