"""Atomic publication of repository trees.

Layout under the repository root::

    current -> snapshots/<build-id>    live tree, swapped with one rename
    snapshots/<build-id>/              published trees
    .staging/<build-id>/               tree under construction
    .lock                              held for the whole build

Readers following ``current`` see either the old tree or the new one,
never a mixture.
"""

import fcntl
import os
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from ..common.errors import PublishError
from ..common.logger import get_logger
from .base import StagingTree

logger = get_logger("publisher")

BUILD_ID_FORMAT = "%Y%m%dT%H%M%SZ"


class AtomicPublisher:
    """Stages, publishes, prunes and rolls back repository trees."""

    def __init__(self, root: Path, keep_snapshots: int = 2):
        """Initialize the publisher.

        Args:
            root: Repository root directory
            keep_snapshots: Published trees kept, including the live one
        """
        if keep_snapshots < 2:
            raise ValueError("keep_snapshots must be at least 2")
        self.root = Path(root)
        self.keep_snapshots = keep_snapshots
        self._lock_file = None

    @property
    def current(self) -> Path:
        return self.root / "current"

    @property
    def snapshots_dir(self) -> Path:
        return self.root / "snapshots"

    @property
    def staging_dir(self) -> Path:
        return self.root / ".staging"

    @property
    def lock_path(self) -> Path:
        return self.root / ".lock"

    def live_root(self) -> Optional[Path]:
        """The tree ``current`` points at, or None before the first publish."""
        if not self.current.is_symlink():
            return None
        target = self.current.resolve()
        return target if target.is_dir() else None

    def snapshots(self) -> List[Path]:
        """Published trees, oldest first."""
        if not self.snapshots_dir.is_dir():
            return []
        return sorted(p for p in self.snapshots_dir.iterdir() if p.is_dir())

    def previous_snapshots(self) -> List[Path]:
        """Published trees older than the live one, newest first."""
        live = self.live_root()
        older = [p for p in self.snapshots() if live is None or p.name < live.name]
        return list(reversed(older))

    def acquire(self) -> None:
        """Take the repository lock.

        Raises:
            PublishError: If another build holds it
        """
        if self._lock_file is not None:
            return
        self.root.mkdir(parents=True, exist_ok=True)
        lock_file = open(self.lock_path, "w")
        try:
            fcntl.flock(lock_file, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as e:
            lock_file.close()
            raise PublishError(f"repository {self.root} is locked by another build") from e
        self._lock_file = lock_file

    def release(self) -> None:
        if self._lock_file is None:
            return
        fcntl.flock(self._lock_file, fcntl.LOCK_UN)
        self._lock_file.close()
        self._lock_file = None

    def _new_build_id(self) -> str:
        base = datetime.now(timezone.utc).strftime(BUILD_ID_FORMAT)
        taken = [p.name for p in self.snapshots()]
        if self.staging_dir.is_dir():
            taken.extend(p.name for p in self.staging_dir.iterdir())
        same_second = [n for n in taken if n == base or n.startswith(base + "-")]
        if not same_second:
            return base
        # later builds in the same second sort after earlier ones
        suffixes = [int(n[len(base) + 1:]) for n in same_second if n[len(base) + 1:].isdigit()]
        return f"{base}-{max(suffixes, default=0) + 1}"

    def begin(self, build_id: Optional[str] = None) -> StagingTree:
        """Lock the repository and create an empty staging tree.

        Raises:
            PublishError: If the repository is locked or ``current`` is not
                a symlink
        """
        if self.current.exists() and not self.current.is_symlink():
            raise PublishError(f"{self.current} exists and is not a symlink")
        self.acquire()
        try:
            self.staging_dir.mkdir(parents=True, exist_ok=True)
            self.snapshots_dir.mkdir(parents=True, exist_ok=True)
            build_id = build_id or self._new_build_id()
            root = self.staging_dir / build_id
            root.mkdir()
        except OSError as e:
            self.release()
            raise PublishError(f"cannot create staging tree: {e}") from e
        logger.info(f"Staging build {build_id} in {root}")
        return StagingTree(build_id=build_id, root=root)

    def publish(self, staging: StagingTree) -> Path:
        """Make a staged tree live.

        Args:
            staging: Completed staging tree

        Returns:
            Path of the new live tree

        Raises:
            PublishError: If the swap fails; the live tree is left unchanged
        """
        target = self.snapshots_dir / staging.build_id
        try:
            os.rename(staging.root, target)
        except OSError as e:
            self.abort(staging)
            raise PublishError(f"cannot move staging tree into place: {e}") from e

        try:
            self._point_current(target)
        except OSError as e:
            shutil.rmtree(target, ignore_errors=True)
            self.release()
            raise PublishError(f"cannot swap live tree: {e}") from e

        logger.info(f"Published build {staging.build_id}")
        try:
            self.prune()
        except OSError as e:
            logger.error(f"Pruning old snapshots failed: {e}")
        finally:
            self.release()
        return target

    def abort(self, staging: StagingTree) -> None:
        """Discard a staging tree and release the lock."""
        logger.info(f"Discarding staging tree {staging.root}")
        shutil.rmtree(staging.root, ignore_errors=True)
        self.release()

    def _point_current(self, target: Path) -> None:
        tmp = self.root / ".current.tmp"
        if tmp.is_symlink() or tmp.exists():
            tmp.unlink()
        os.symlink(os.path.relpath(target, self.root), tmp)
        os.replace(tmp, self.current)

    def prune(self) -> List[Path]:
        """Delete published trees beyond the retention count.

        The live tree is never deleted.

        Returns:
            Trees removed
        """
        live = self.live_root()
        snapshots = self.snapshots()
        excess = snapshots[: max(0, len(snapshots) - self.keep_snapshots)]
        removed = []
        for path in excess:
            if live is not None and path.resolve() == live:
                continue
            logger.info(f"Pruning snapshot {path.name}")
            shutil.rmtree(path)
            removed.append(path)
        return removed

    def rollback(self) -> Path:
        """Point ``current`` back at the newest older snapshot.

        Returns:
            Path of the restored tree

        Raises:
            PublishError: If there is no older snapshot
        """
        self.acquire()
        try:
            previous = self.previous_snapshots()
            if not previous:
                raise PublishError("no previous snapshot to roll back to")
            try:
                self._point_current(previous[0])
            except OSError as e:
                raise PublishError(f"cannot swap live tree: {e}") from e
            logger.info(f"Rolled back to {previous[0].name}")
            return previous[0]
        finally:
            self.release()
