"""Package source declarations and fetch work units.

A PackageSource is what the configuration declares; the resolver turns each
one into a ResolvedSource holding concrete FetchTasks.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple, Union

from ..common.checksum import Checksum
from ..common.errors import RepoBuildError
from .retry import RetryPolicy, RetryState


class ListingSelect(Enum):
    """Which matching links of an HTML listing to fetch."""

    LATEST = "latest"
    ALL = "all"


@dataclass(frozen=True)
class LocalSource:
    """A .deb file already on disk."""

    name: str
    component: str
    path: str
    sha256: Optional[str] = None


@dataclass(frozen=True)
class UrlSource:
    """A .deb file at a direct URL."""

    name: str
    component: str
    url: str
    sha256: Optional[str] = None


@dataclass(frozen=True)
class ListingSource:
    """An HTML directory listing; matching links are fetched."""

    name: str
    component: str
    url: str
    pattern: str = r".*\.deb"
    select: ListingSelect = ListingSelect.LATEST


@dataclass(frozen=True)
class BuildSource:
    """A git repository built into packages by sbuild.

    ``build_on`` is "changelog" or "commit" to skip rebuilding when the
    changelog version or the checked-out commit was already built.
    ``depends`` names pool packages handed to sbuild as extra packages.
    """

    name: str
    component: str
    git: str
    branch: Optional[str] = None
    prebuild: Tuple[str, ...] = ()
    starting_build: Tuple[str, ...] = ()
    depends: Tuple[str, ...] = ()
    build_on: Optional[str] = None


PackageSource = Union[LocalSource, UrlSource, ListingSource, BuildSource]


@dataclass
class FetchTask:
    """One artifact to obtain.

    ``target`` is a URL for remote tasks and a filesystem path for local ones.
    """

    source: str
    component: str
    target: str
    destination: Path
    expected_sha256: Optional[str] = None
    local: bool = False
    retry: RetryState = field(default_factory=lambda: RetryPolicy().new_state())

    @property
    def filename(self) -> str:
        return self.destination.name

    @property
    def partial_path(self) -> Path:
        return self.destination.with_name(f"._partial_.{self.destination.name}")


@dataclass(frozen=True)
class LocalArtifact:
    """A verified package file ready for ingestion."""

    path: Path
    checksum: Checksum
    source: str
    component: str
    downloaded: bool = False

    @property
    def sha256(self) -> str:
        return self.checksum.sha256

    @property
    def size(self) -> int:
        return self.checksum.size


@dataclass
class ResolvedSource:
    """Resolution result for exactly one configured source."""

    source: PackageSource
    tasks: List[FetchTask] = field(default_factory=list)
    error: Optional[RepoBuildError] = None

    @property
    def name(self) -> str:
        return self.source.name

    @property
    def ok(self) -> bool:
        return self.error is None
