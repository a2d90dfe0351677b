"""Debian package (.deb) format handler.

Reads control metadata from binary packages with python-debian and turns
it into PackageRecords.
"""

import re
import tarfile
from pathlib import Path
from typing import Dict, Iterable, Optional

from debian.arfile import ArError
from debian.debfile import DebError, DebFile
from debian.debian_support import Version

from ..common.errors import MalformedMetadata, MalformedPackage
from ..common.logger import get_logger
from ..sources.base import LocalArtifact
from .base import PackageFormat, PackageRecord

logger = get_logger("format.deb")

AR_MAGIC = b"!<arch>\n"

PACKAGE_NAME_RE = re.compile(r"^[a-z0-9][a-z0-9+.-]+$")

# Fields regenerated for every index; never copied from the package
GENERATED_FIELDS = {"filename", "size", "md5sum", "sha1", "sha256", "sha512"}

REQUIRED_FIELDS = ("Package", "Version", "Architecture")


def validate_version(version: str) -> Version:
    """Parse a version string under Debian rules.

    Raises:
        ValueError: If the version is not a valid Debian version or its
            upstream part does not start with a digit
    """
    parsed = Version(version)
    if not parsed.upstream_version or not parsed.upstream_version[0].isdigit():
        raise ValueError(f"upstream version must start with a digit: {version!r}")
    return parsed


class DebPackageFormat(PackageFormat):
    """Handler for Debian package format (.deb files).

    Debian packages are ar archives containing:
    - debian-binary: Version information
    - control.tar.gz/xz/zst: Control files and maintainer scripts
    - data.tar.gz/xz/zst: Package contents
    """

    def validate_integrity(self, path: Path) -> bool:
        """Check the file is a non-empty ar archive.

        Args:
            path: Path to .deb file

        Returns:
            True if package passes container validation
        """
        if not path.is_file():
            return False
        if path.stat().st_size == 0:
            logger.warning(f"Package file is empty: {path}")
            return False
        with open(path, "rb") as f:
            if f.read(len(AR_MAGIC)) != AR_MAGIC:
                logger.warning(f"Invalid package file header (not ar archive): {path}")
                return False
        return True

    def parse_metadata(self, path: Path) -> Dict[str, str]:
        """Read the control paragraph of a .deb.

        Args:
            path: Path to .deb file

        Returns:
            Control fields in file order

        Raises:
            MalformedPackage: If the archive or its control member is unreadable
        """
        if not self.validate_integrity(path):
            raise MalformedPackage("not a Debian package archive", item=str(path))
        try:
            deb = DebFile(filename=str(path))
            try:
                control = deb.debcontrol()
                return {key: control[key] for key in control.keys()}
            finally:
                deb.close()
        except (DebError, ArError, tarfile.TarError, EOFError, KeyError, ValueError, OSError) as e:
            raise MalformedPackage(f"unreadable control data: {e}", item=str(path)) from e

    def ingest(
        self,
        artifact: LocalArtifact,
        architectures: Iterable[str],
        component: Optional[str] = None,
    ) -> Optional[PackageRecord]:
        """Build a PackageRecord from a verified artifact.

        Args:
            artifact: The fetched package file
            architectures: Configured target architectures
            component: Component override; defaults to the artifact's

        Returns:
            PackageRecord, or None when the package's architecture is not a
            configured target

        Raises:
            MalformedPackage: Unreadable archive
            MalformedMetadata: Missing fields, bad name or bad version
        """
        item = artifact.path.name
        fields = self.parse_metadata(artifact.path)

        missing = [f for f in REQUIRED_FIELDS if not fields.get(f, "").strip()]
        if missing:
            raise MalformedMetadata(f"missing control field(s): {', '.join(missing)}", item=item)

        name = fields["Package"].strip()
        version = fields["Version"].strip()
        arch = fields["Architecture"].strip()

        if not PACKAGE_NAME_RE.match(name):
            raise MalformedMetadata(f"invalid package name {name!r}", item=item)
        try:
            validate_version(version)
        except ValueError as e:
            raise MalformedMetadata(f"invalid version: {e}", item=item) from e

        targets = set(architectures)
        if arch != "all" and arch not in targets:
            logger.warning(
                f"Skipping {name} {version}: architecture {arch} is not one of "
                f"{', '.join(sorted(targets))}"
            )
            return None

        control = tuple(
            (key, value) for key, value in fields.items()
            if key.lower() not in GENERATED_FIELDS
        )
        return PackageRecord(
            name=name,
            version=version,
            architecture=arch,
            component=component or artifact.component,
            checksum=artifact.checksum,
            control=control,
            source=artifact.source,
        )
