"""Shared data structures for repository trees and their artifacts."""

import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from ..common.checksum import Checksum

DATE_FORMAT = "%a, %d %b %Y %H:%M:%S UTC"


@dataclass(frozen=True)
class RepositoryMetadata:
    """Identity fields written into the Release manifest."""

    suite: str
    codename: str
    architectures: List[str]
    components: List[str]
    date: datetime
    origin: str = ""
    label: str = ""
    version: str = ""
    description: str = ""
    valid_until: Optional[datetime] = None

    @property
    def date_string(self) -> str:
        return self.date.strftime(DATE_FORMAT)

    @property
    def valid_until_string(self) -> Optional[str]:
        if self.valid_until is None:
            return None
        return self.valid_until.strftime(DATE_FORMAT)


@dataclass(frozen=True)
class IndexArtifact:
    """One emitted index file.

    ``path`` is relative to the distribution directory (``dists/<suite>``),
    which is also how the Release manifest lists it.
    """

    path: str
    data: bytes = field(repr=False)
    checksum: Checksum

    @property
    def size(self) -> int:
        return self.checksum.size

    def write(self, dist_dir: Path) -> Path:
        target = dist_dir / self.path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(self.data)
        return target


@dataclass(frozen=True)
class StagingTree:
    """A repository tree under construction."""

    build_id: str
    root: Path

    @property
    def pool_dir(self) -> Path:
        return self.root / "pool"

    def dist_dir(self, suite: str) -> Path:
        return self.root / "dists" / suite

    def link_codename(self, suite: str, codename: str) -> None:
        """Make ``dists/<codename>`` resolve to ``dists/<suite>``."""
        if not codename or codename == suite:
            return
        link = self.root / "dists" / codename
        if link.is_symlink() or link.exists():
            return
        link.parent.mkdir(parents=True, exist_ok=True)
        os.symlink(suite, link)
