"""Packages index generation and parsing.

Index bytes are a pure function of the pool entries: stanzas are sorted,
fields are written in a fixed order and compressed variants carry no
timestamps.
"""

import bz2
import gzip
import lzma
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, List, Tuple

from debian import deb822

from ..common.checksum import (
    DEFAULT_ALGORITHMS,
    PACKAGES_FIELDS,
    Checksum,
    digest_bytes,
)
from ..common.errors import CompositionError
from ..common.logger import get_logger
from ..formats.base import PackageRecord
from .base import IndexArtifact, RepositoryMetadata

logger = get_logger("index")

# Field order APT itself uses when rewriting package stanzas
PACKAGE_FIELD_ORDER = (
    "Package",
    "Essential",
    "Status",
    "Priority",
    "Section",
    "Installed-Size",
    "Maintainer",
    "Original-Maintainer",
    "Architecture",
    "Source",
    "Version",
    "Replaces",
    "Provides",
    "Depends",
    "Pre-Depends",
    "Recommends",
    "Suggests",
    "Conflicts",
    "Breaks",
    "Conffiles",
    "Filename",
    "Size",
    "MD5sum",
    "SHA1",
    "SHA256",
    "SHA512",
    "Description",
)

_FIELD_RANK = {name.lower(): rank for rank, name in enumerate(PACKAGE_FIELD_ORDER)}

_GENERATED = {"filename", "size"} | {f.lower() for f in PACKAGES_FIELDS.values()}

COMPRESSORS: Dict[str, Tuple[str, Callable[[bytes], bytes]]] = {
    "gz": (".gz", lambda data: gzip.compress(data, compresslevel=9, mtime=0)),
    "xz": (
        ".xz",
        lambda data: lzma.compress(
            data, format=lzma.FORMAT_XZ, check=lzma.CHECK_CRC64, preset=6
        ),
    ),
    "bz2": (".bz2", lambda data: bz2.compress(data, compresslevel=9)),
}


@dataclass
class ComponentIndex:
    """Pool entries belonging to one (component, architecture) index."""

    component: str
    architecture: str
    entries: List = field(default_factory=list)

    @property
    def directory(self) -> str:
        return f"{self.component}/binary-{self.architecture}"

    def sorted_entries(self) -> List:
        return sorted(self.entries, key=lambda e: e.record.sort_key())


def format_field(name: str, value: str) -> str:
    """Render one control field, folding multi-line values."""
    lines = value.split("\n")
    first = lines[0].strip()
    out = [f"{name}: {first}" if first else f"{name}:"]
    for line in lines[1:]:
        if not line.strip():
            out.append(" .")
        elif line[0] in " \t":
            out.append(line.rstrip())
        else:
            out.append(f" {line.rstrip()}")
    return "\n".join(out)


def _field_sort_key(name: str) -> Tuple[int, str]:
    return (_FIELD_RANK.get(name.lower(), len(_FIELD_RANK)), name.lower())


def read_packages_index(path: Path, component: str) -> Iterator[PackageRecord]:
    """Parse a Packages file back into PackageRecords.

    Stanzas without a Filename or SHA256 are skipped.

    Args:
        path: Uncompressed Packages file
        component: Component the records belong to

    Yields:
        PackageRecord with ``filename`` set to the pool path
    """
    with open(path, "r", encoding="utf-8") as f:
        for paragraph in deb822.Packages.iter_paragraphs(f, use_apt_pkg=False):
            fields = {key: paragraph[key] for key in paragraph.keys()}
            filename = fields.get("Filename")
            sha256 = fields.get("SHA256")
            if not filename or not sha256:
                logger.warning(
                    f"Ignoring stanza for {fields.get('Package')} in {path}: "
                    "no Filename or SHA256"
                )
                continue
            digests = {
                algorithm: fields[name]
                for algorithm, name in PACKAGES_FIELDS.items()
                if name in fields
            }
            yield PackageRecord(
                name=fields["Package"],
                version=fields["Version"],
                architecture=fields["Architecture"],
                component=component,
                checksum=Checksum(size=int(fields.get("Size", 0)), digests=digests),
                control=tuple(
                    (k, v) for k, v in fields.items() if k.lower() not in _GENERATED
                ),
                filename=filename,
            )


class IndexBuilder:
    """Renders Packages indices and their per-directory Release files."""

    def __init__(
        self,
        metadata: RepositoryMetadata,
        compression: Iterable[str] = ("gz", "xz"),
        hashes: Iterable[str] = ("md5", "sha256"),
    ):
        """Initialize the builder.

        Args:
            metadata: Repository identity for per-directory Release files
            compression: Compressed variants to emit (gz, xz, bz2)
            hashes: Checksum fields written into each stanza; SHA256 is
                always written
        """
        self.metadata = metadata
        self.compression = list(compression)
        for name in self.compression:
            if name not in COMPRESSORS:
                raise ValueError(f"Unsupported compression: {name}")
        wanted = {h.lower() for h in hashes} | {"sha256"}
        self.hashes = [a for a in PACKAGES_FIELDS if a in wanted]

    def render_stanza(self, entry) -> str:
        record = entry.record
        fields = [
            (k, v) for k, v in record.control if k.lower() not in _GENERATED
        ]
        fields.append(("Filename", entry.path))
        fields.append(("Size", str(record.size)))
        for algorithm in self.hashes:
            value = record.checksum.get(algorithm)
            if value:
                fields.append((PACKAGES_FIELDS[algorithm], value))
        fields.sort(key=lambda kv: _field_sort_key(kv[0]))
        return "\n".join(format_field(k, v) for k, v in fields) + "\n"

    def render_packages(self, index: ComponentIndex) -> bytes:
        stanzas = [self.render_stanza(e) for e in index.sorted_entries()]
        return "\n".join(stanzas).encode("utf-8")

    def render_release(self, index: ComponentIndex) -> bytes:
        meta = self.metadata
        fields = [
            ("Archive", meta.suite),
            ("Version", meta.version),
            ("Component", index.component),
            ("Origin", meta.origin),
            ("Label", meta.label),
            ("Architecture", index.architecture),
        ]
        return "".join(f"{k}: {v}\n" for k, v in fields if v).encode("utf-8")

    def build(self, index: ComponentIndex) -> List[IndexArtifact]:
        """Build every artifact of one component/architecture directory.

        Args:
            index: Entries for the directory

        Returns:
            Packages, its compressed variants and the directory's Release

        Raises:
            CompositionError: If rendering or compression fails
        """
        try:
            packages = self.render_packages(index)
            blobs = [("Packages", packages)]
            for name in self.compression:
                suffix, compress = COMPRESSORS[name]
                blobs.append((f"Packages{suffix}", compress(packages)))
            blobs.append(("Release", self.render_release(index)))
        except (UnicodeError, lzma.LZMAError, OSError, ValueError) as e:
            raise CompositionError(f"cannot render index: {e}", item=index.directory) from e

        logger.debug(f"Built {index.directory} with {len(index.entries)} package(s)")
        return [
            IndexArtifact(
                path=f"{index.directory}/{name}",
                data=data,
                checksum=digest_bytes(data, DEFAULT_ALGORITHMS),
            )
            for name, data in blobs
        ]
