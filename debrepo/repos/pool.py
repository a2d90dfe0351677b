"""Content-addressed package pool.

Every package lives once under ``pool/<component>/<bucket>/<name>/``. The
pool deduplicates by sha256, refuses two different files for the same
``name_version_architecture`` and tracks which components reference each
entry so indices can be built from it.
"""

import os
import shutil
import threading
from collections import defaultdict
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from ..common.errors import ConflictingVersion, PoolError
from ..common.logger import get_logger
from ..formats.base import PackageRecord
from ..sources.base import LocalArtifact
from .index import read_packages_index

logger = get_logger("pool")


def pool_bucket(name: str) -> str:
    """Return the pool subdirectory for a package name (``libf`` or ``f``)."""
    if name.startswith("lib") and len(name) > 3:
        return name[:4]
    return name[0]


def strip_epoch(version: str) -> str:
    return version.split(":", 1)[1] if ":" in version else version


def placement_key(record: PackageRecord) -> str:
    """Key shared by every record that can clash with ``record`` in the pool.

    Versions differing only by epoch share a pool file name, so the epoch is
    dropped. The component is left out because identities clash across
    components.
    """
    return f"{record.name}_{strip_epoch(record.version)}_{record.architecture}"


def pool_path(record: PackageRecord) -> str:
    """Pool-relative path of a package, e.g. ``pool/main/c/curl/curl_7.8-1_amd64.deb``."""
    filename = f"{record.name}_{strip_epoch(record.version)}_{record.architecture}.deb"
    return "/".join(
        ("pool", record.component, pool_bucket(record.name), record.name, filename)
    )


@dataclass(frozen=True)
class PoolEntry:
    """A package file present in the pool."""

    path: str
    record: PackageRecord
    carried: bool = False

    @property
    def sha256(self) -> str:
        return self.record.sha256


class PoolManager:
    """Places packages into a staging tree's pool.

    ``place`` may be called from many threads. Placements of the same
    package identity or the same pool path are serialized; unrelated
    placements run concurrently.
    """

    def __init__(self, root: Path, keep_versions: int = 3):
        """Initialize the pool.

        Args:
            root: Root of the tree the pool belongs to
            keep_versions: Versions retained per (component, name, architecture)
        """
        if keep_versions < 1:
            raise ValueError("keep_versions must be at least 1")
        self.root = Path(root)
        self.keep_versions = keep_versions
        self._previous_root: Optional[Path] = None

        self._lock = threading.Lock()
        self._key_locks: Dict[str, threading.Lock] = {}
        self._path_locks: Dict[str, threading.Lock] = {}
        self._by_sha256: Dict[str, PoolEntry] = {}
        self._by_key: Dict[str, PoolEntry] = {}
        self._by_path: Dict[str, PoolEntry] = {}
        self._members: Dict[str, Dict[str, PoolEntry]] = defaultdict(dict)

    def _named_lock(self, table: Dict[str, threading.Lock], name: str) -> threading.Lock:
        with self._lock:
            lock = table.get(name)
            if lock is None:
                lock = table[name] = threading.Lock()
            return lock

    def _register(self, component: str, entry: PoolEntry) -> None:
        # caller holds self._lock
        self._by_sha256[entry.sha256] = entry
        self._by_key[entry.record.key] = entry
        self._by_path[entry.path] = entry
        self._members[component][entry.record.key] = entry

    @property
    def entries(self) -> List[PoolEntry]:
        with self._lock:
            return sorted(self._by_path.values(), key=lambda e: e.path)

    def lookup(self, key: str) -> Optional[PoolEntry]:
        with self._lock:
            return self._by_key.get(key)

    def carry_forward(self, previous_root: Path, suite: str, components: Iterable[str]) -> int:
        """Register the packages published by a previous tree.

        Files are not linked until ``finalize`` so entries that fall out of
        retention never reach the new tree.

        Args:
            previous_root: Root of the live tree
            suite: Suite whose indices are read
            components: Components to carry

        Returns:
            Number of entries registered
        """
        dist_dir = Path(previous_root) / "dists" / suite
        count = 0
        for component in components:
            component_dir = dist_dir / component
            if not component_dir.is_dir():
                continue
            for index in sorted(component_dir.glob("binary-*/Packages")):
                for record in read_packages_index(index, component):
                    source = Path(previous_root) / record.filename
                    if not source.is_file():
                        logger.warning(f"Previously published file is missing: {source}")
                        continue
                    with self._lock:
                        existing = self._by_key.get(record.key)
                        if existing is not None:
                            self._members[component][record.key] = existing
                            continue
                        entry = PoolEntry(path=record.filename, record=record, carried=True)
                        self._register(component, entry)
                        count += 1
        self._previous_root = Path(previous_root)
        logger.info(f"Carried forward {count} package(s) from {previous_root}")
        return count

    def place(self, record: PackageRecord, artifact: LocalArtifact) -> PoolEntry:
        """Place an ingested package into the pool.

        Args:
            record: Ingested package metadata
            artifact: The verified local file

        Returns:
            The pool entry now holding the package. When identical content is
            already present the existing entry is returned.

        Raises:
            ConflictingVersion: If a different file already holds the same
                identity or pool path
            PoolError: If the file cannot be linked or copied into the pool
        """
        rel = pool_path(record)
        with self._named_lock(self._key_locks, record.key):
            with self._named_lock(self._path_locks, rel):
                with self._lock:
                    existing = self._by_sha256.get(record.sha256)
                    if existing is not None:
                        self._members[record.component][existing.record.key] = existing
                        logger.debug(f"{record.key} already pooled at {existing.path}")
                        return existing
                    clash = self._by_key.get(record.key) or self._by_path.get(rel)
                    if clash is not None:
                        raise ConflictingVersion(
                            record.key, clash.sha256, record.sha256, item=record.source
                        )

                target = self.root / rel
                self._link(artifact.path, target)
                entry = PoolEntry(path=rel, record=replace(record, filename=rel))
                with self._lock:
                    self._register(record.component, entry)
                logger.debug(f"Placed {record.key} at {rel}")
                return entry

    def retained(self, component: str) -> List[PoolEntry]:
        """Entries of a component surviving version retention.

        The newest ``keep_versions`` versions are kept per (name, architecture).
        """
        with self._lock:
            members = list(self._members.get(component, {}).values())
        groups: Dict[tuple, List[PoolEntry]] = defaultdict(list)
        for entry in members:
            groups[(entry.record.name, entry.record.architecture)].append(entry)
        kept = []
        for group in groups.values():
            group.sort(key=lambda e: e.record.debian_version, reverse=True)
            kept.extend(group[: self.keep_versions])
        return sorted(kept, key=lambda e: e.record.sort_key())

    def finalize(self, components: Iterable[str]) -> Dict[str, List[PoolEntry]]:
        """Apply retention and settle the tree's pool on disk.

        Retained carried entries are linked in from the previous tree; newly
        placed files nothing retains are removed from this tree.

        Returns:
            Retained entries per component
        """
        result = {component: self.retained(component) for component in components}
        keep = {entry.path for entries in result.values() for entry in entries}

        for entry in self.entries:
            target = self.root / entry.path
            if entry.path in keep:
                if entry.carried and not target.exists() and self._previous_root:
                    self._link(self._previous_root / entry.path, target)
            elif not entry.carried and target.exists():
                logger.info(f"Dropping {entry.record.key}: outside version retention")
                target.unlink()
        return result

    def _link(self, source: Path, target: Path) -> None:
        if target.exists():
            raise PoolError(f"pool path already occupied: {target}", item=target.name)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            try:
                os.link(source, target)
            except OSError:
                # cross-device or unsupported filesystem
                shutil.copy2(source, target)
        except OSError as e:
            raise PoolError(f"cannot place {source} into pool: {e}", item=target.name) from e
