"""Release manifest composition and signing."""

import os
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from ..common.checksum import RELEASE_FIELDS, STRONG_ALGORITHMS
from ..common.config import DebRepoConfig
from ..common.errors import CompositionError
from ..common.logger import get_logger
from .base import IndexArtifact, RepositoryMetadata
from .signing import Signer

logger = get_logger("release")


def build_date(now: Optional[datetime] = None) -> datetime:
    """Release date, honouring SOURCE_DATE_EPOCH for reproducible builds."""
    epoch = os.environ.get("SOURCE_DATE_EPOCH")
    if epoch:
        return datetime.fromtimestamp(int(epoch), tz=timezone.utc)
    if now is not None:
        return now.astimezone(timezone.utc)
    return datetime.now(timezone.utc).replace(microsecond=0)


def metadata_from_config(config: DebRepoConfig, now: Optional[datetime] = None) -> RepositoryMetadata:
    """Build RepositoryMetadata from configuration."""
    repo = config.repository
    date = build_date(now)
    valid_until = None
    if config.index.valid_for_days:
        valid_until = date + timedelta(days=config.index.valid_for_days)
    return RepositoryMetadata(
        suite=repo.suite,
        codename=repo.codename or repo.suite,
        architectures=list(repo.architectures),
        components=repo.component_names,
        date=date,
        origin=repo.origin,
        label=repo.label,
        version=repo.version,
        description=repo.description,
        valid_until=valid_until,
    )


@dataclass(frozen=True)
class ReleaseManifest:
    """The top-level Release file and its optional signatures."""

    metadata: RepositoryMetadata
    artifacts: Tuple[IndexArtifact, ...]
    hashes: Tuple[str, ...]
    signature: Optional[bytes] = None
    inline: Optional[bytes] = None

    @property
    def signed(self) -> bool:
        return self.signature is not None and self.inline is not None

    def render(self) -> str:
        meta = self.metadata
        header = [
            ("Origin", meta.origin),
            ("Label", meta.label),
            ("Suite", meta.suite),
            ("Version", meta.version),
            ("Codename", meta.codename),
            ("Date", meta.date_string),
            ("Valid-Until", meta.valid_until_string),
            ("Architectures", " ".join(meta.architectures)),
            ("Components", " ".join(meta.components)),
            ("Description", meta.description),
        ]
        lines = [f"{k}: {v}" for k, v in header if v]
        for algorithm in self.hashes:
            lines.append(f"{RELEASE_FIELDS[algorithm]}:")
            for artifact in self.artifacts:
                lines.append(
                    f" {artifact.checksum.digests[algorithm]} {artifact.size:>16} {artifact.path}"
                )
        return "\n".join(lines) + "\n"

    @property
    def content(self) -> bytes:
        return self.render().encode("utf-8")

    def write(self, dist_dir: Path) -> List[Path]:
        """Write Release and, when signed, Release.gpg and InRelease.

        Returns:
            Paths written
        """
        dist_dir.mkdir(parents=True, exist_ok=True)
        written = [dist_dir / "Release"]
        written[0].write_bytes(self.content)
        if self.signature is not None:
            (dist_dir / "Release.gpg").write_bytes(self.signature)
            written.append(dist_dir / "Release.gpg")
        if self.inline is not None:
            (dist_dir / "InRelease").write_bytes(self.inline)
            written.append(dist_dir / "InRelease")
        return written


class ReleaseComposer:
    """Aggregates index artifacts into a Release manifest."""

    def __init__(self, hashes: Iterable[str] = ("md5", "sha256")):
        """Initialize the composer.

        Args:
            hashes: Checksum algorithms listed in the manifest; must include
                sha256 or sha512

        Raises:
            ValueError: For unknown algorithms or no strong algorithm
        """
        wanted = [h.lower() for h in hashes]
        unknown = [h for h in wanted if h not in RELEASE_FIELDS]
        if unknown:
            raise ValueError(f"Unsupported Release hash(es): {', '.join(unknown)}")
        if not any(h in STRONG_ALGORITHMS for h in wanted):
            raise ValueError("Release hashes must include sha256 or sha512")
        self.hashes = tuple(a for a in RELEASE_FIELDS if a in wanted)

    def compose(
        self, metadata: RepositoryMetadata, artifacts: Iterable[IndexArtifact]
    ) -> ReleaseManifest:
        """Compose an unsigned manifest.

        Args:
            metadata: Repository identity fields
            artifacts: Every index artifact of the distribution

        Returns:
            ReleaseManifest listing the artifacts sorted by path

        Raises:
            CompositionError: On duplicate paths or missing digests
        """
        ordered = sorted(artifacts, key=lambda a: a.path)
        seen = set()
        for artifact in ordered:
            if artifact.path in seen:
                raise CompositionError(f"duplicate index artifact {artifact.path}")
            seen.add(artifact.path)
            missing = [h for h in self.hashes if h not in artifact.checksum.digests]
            if missing:
                raise CompositionError(
                    f"no {', '.join(missing)} digest for {artifact.path}"
                )
        logger.debug(f"Composed Release over {len(ordered)} artifact(s)")
        return ReleaseManifest(
            metadata=metadata, artifacts=tuple(ordered), hashes=self.hashes
        )

    def sign(self, manifest: ReleaseManifest, signer: Signer) -> ReleaseManifest:
        """Return a signed copy of the manifest.

        Raises:
            SigningError: Propagated from the signer
        """
        content = manifest.content
        signature = signer.sign_detached(content)
        inline = signer.clearsign(content)
        return replace(manifest, signature=signature, inline=inline)
