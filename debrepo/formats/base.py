"""Base classes for package format handlers.

Defines the interface a format handler implements and the PackageRecord
produced by ingestion.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Optional, Tuple

from debian.debian_support import Version

from ..common.checksum import Checksum
from ..sources.base import LocalArtifact

# Relationship fields are carried verbatim; nothing here solves them
RELATIONSHIP_FIELDS = (
    "Pre-Depends",
    "Depends",
    "Recommends",
    "Suggests",
    "Enhances",
    "Breaks",
    "Conflicts",
    "Replaces",
    "Provides",
    "Built-Using",
)


@dataclass(frozen=True)
class PackageRecord:
    """Identity and metadata of one binary package.

    ``control`` keeps the package's own control fields in their original
    order; pool and checksum fields are added at index time.
    """

    name: str
    version: str
    architecture: str
    component: str
    checksum: Checksum
    control: Tuple[Tuple[str, str], ...] = ()
    source: Optional[str] = None
    filename: Optional[str] = None

    @property
    def key(self) -> str:
        """Unique identity ``name_version_architecture``."""
        return f"{self.name}_{self.version}_{self.architecture}"

    @property
    def debian_version(self) -> Version:
        return Version(self.version)

    @property
    def sha256(self) -> str:
        return self.checksum.sha256

    @property
    def size(self) -> int:
        return self.checksum.size

    @property
    def fields(self) -> Dict[str, str]:
        return dict(self.control)

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        for key, value in self.control:
            if key.lower() == name.lower():
                return value
        return default

    @property
    def relationships(self) -> Dict[str, str]:
        return {k: v for k, v in self.control if k in RELATIONSHIP_FIELDS}

    def sort_key(self) -> Tuple:
        return (self.name, self.debian_version, self.architecture, self.sha256)


class PackageFormat(ABC):
    """Turns fetched package files of one format into PackageRecords."""

    @abstractmethod
    def validate_integrity(self, path: Path) -> bool:
        """Check the container is structurally sound before reading it."""

    @abstractmethod
    def parse_metadata(self, path: Path) -> Dict[str, str]:
        """Read the package's control fields without unpacking its payload.

        Args:
            path: Path to the package file

        Returns:
            Control fields in file order

        Raises:
            MalformedPackage: If the file cannot be read as this format
        """

    @abstractmethod
    def ingest(
        self,
        artifact: LocalArtifact,
        architectures: Iterable[str],
        component: Optional[str] = None,
    ) -> Optional[PackageRecord]:
        """Build the record for a verified artifact.

        Returns:
            PackageRecord, or None when the package targets an architecture
            that is not configured

        Raises:
            IngestError: If the package or its metadata is malformed
        """
