"""Builds packages from git sources with sbuild.

A build source is cloned (or fast-forwarded) into the work directory, its
prebuild commands run in the checkout, and ``sbuild`` produces the binary
packages that are then ingested like any local file.

Sources with ``build_on`` keep a record under ``<work_dir>/record/<name>``:
the trigger on the first line, then one built revision per line. When the
checkout's revision is already recorded the previous output is reused
instead of running sbuild again.
"""

import shutil
import subprocess
from pathlib import Path
from typing import List, Optional, Protocol, Tuple

from debian.changelog import Changelog, ChangelogParseError

from ..common.errors import BuildFailed
from ..common.logger import get_logger
from ..sources.base import BuildSource

logger = get_logger("build.sbuild")


class PackageBuilder(Protocol):
    """Anything that can turn a BuildSource into .deb files."""

    def build(self, source: BuildSource) -> List[Path]:
        ...


def changelog_version(checkout: Path) -> str:
    """Version of the newest entry in ``debian/changelog``.

    Raises:
        BuildFailed: If the changelog is missing, unparseable or empty
    """
    path = checkout / "debian" / "changelog"
    try:
        with open(path) as f:
            changelog = Changelog(f, max_blocks=1)
    except (OSError, ChangelogParseError, ValueError) as e:
        raise BuildFailed(f"cannot read {path}: {e}") from e
    if len(changelog) == 0:
        raise BuildFailed(f"no version in {path}")
    return changelog.full_version


def read_record(path: Path) -> Tuple[Optional[str], List[str]]:
    """Trigger and built revisions from a record file; (None, []) if absent."""
    if not path.is_file():
        return None, []
    lines = [line.strip() for line in path.read_text().splitlines() if line.strip()]
    if not lines:
        return None, []
    return lines[0], lines[1:]


class SbuildInvoker:
    """Runs git and sbuild for build sources."""

    def __init__(
        self,
        work_dir: Path,
        distribution: str,
        sbuild: str = "sbuild",
        git: str = "git",
        timeout: int = 3600,
        force: bool = False,
        pool_root: Optional[Path] = None,
    ):
        """Initialize the invoker.

        Args:
            work_dir: Directory holding checkouts, build output, records and logs
            distribution: Value passed to ``sbuild --dist``
            sbuild: sbuild executable
            git: git executable
            timeout: Timeout in seconds for each command
            force: Rebuild even when the record says the revision was built
            pool_root: Published tree searched for ``depends`` packages
        """
        self.work_dir = Path(work_dir)
        self.distribution = distribution
        self.sbuild = sbuild
        self.git = git
        self.timeout = timeout
        self.force = force
        self.pool_root = Path(pool_root) if pool_root else None

    def checkout_dir(self, source: BuildSource) -> Path:
        return self.work_dir / "sources" / source.name

    def output_dir(self, source: BuildSource) -> Path:
        return self.work_dir / "output" / source.name

    def log_path(self, source: BuildSource) -> Path:
        return self.work_dir / "logs" / f"{source.name}.log"

    def record_path(self, source: BuildSource) -> Path:
        return self.work_dir / "record" / source.name

    def build(self, source: BuildSource) -> List[Path]:
        """Build a source into binary packages.

        Args:
            source: Git build source

        Returns:
            Sorted paths of the produced .deb files

        Raises:
            BuildFailed: If any step fails or no package is produced
        """
        logger.info(f"Building {source.name} from {source.git}")
        checkout = self._checkout(source)
        output = self.output_dir(source)

        revision = self.revision(source, checkout)
        if revision is not None and self.already_built(source, revision):
            previous = sorted(output.glob("*.deb"))
            if previous:
                logger.info(f"{source.name} has already been built at {revision}, skipping")
                return previous
            logger.info(f"Output of {source.name} at {revision} is gone, rebuilding")

        for command in source.prebuild:
            logger.info(f"Running prebuild step for {source.name}: {command}")
            self._run(["sh", "-c", command], source, cwd=checkout)

        if output.exists():
            shutil.rmtree(output)
        output.mkdir(parents=True)

        cmd = [
            self.sbuild,
            "--arch-all",
            f"--dist={self.distribution}",
            f"--build-dir={output}",
            "--nolog",
        ]
        cmd += [f"--extra-package={p}" for p in self.extra_packages(source)]
        cmd += [f"--starting-build-commands={c}" for c in source.starting_build]
        cmd.append(str(checkout))

        result = self._run(cmd, source, cwd=checkout)
        self._write_log(source, result)

        packages = sorted(output.glob("*.deb"))
        if not packages:
            raise BuildFailed("sbuild produced no packages", item=source.name)
        logger.info(f"Built {len(packages)} package(s) for {source.name}")

        if revision is not None:
            self._update_record(source, revision)
        return packages

    def revision(self, source: BuildSource, checkout: Path) -> Optional[str]:
        """The revision ``build_on`` tracks for the checkout, or None."""
        if source.build_on == "changelog":
            try:
                return changelog_version(checkout)
            except BuildFailed as e:
                raise BuildFailed(e.message, item=source.name) from e
        if source.build_on == "commit":
            branch = self._git_output(source, "rev-parse", "--abbrev-ref", "HEAD")
            commit = self._git_output(source, "rev-parse", "HEAD")
            return f"{branch} {commit}"
        return None

    def already_built(self, source: BuildSource, revision: str) -> bool:
        if self.force:
            return False
        trigger, revisions = read_record(self.record_path(source))
        return trigger == source.build_on and revision in revisions

    def extra_packages(self, source: BuildSource) -> List[Path]:
        """Published pool files matching ``depends``, in declaration order."""
        if not source.depends or self.pool_root is None:
            return []
        pool = self.pool_root / "pool" / source.component
        if not pool.is_dir():
            return []
        debs = sorted(pool.rglob("*.deb"))
        found = []
        for name in source.depends:
            matches = [p.resolve() for p in debs if p.name.split("_", 1)[0] == name]
            if not matches:
                logger.warning(f"{source.name}: no published package named {name}")
            found.extend(matches)
        return found

    def _update_record(self, source: BuildSource, revision: str) -> None:
        path = self.record_path(source)
        trigger, revisions = read_record(path)
        # commit records accumulate one line per built branch and commit
        if source.build_on == "commit" and trigger == "commit":
            revisions = [r for r in revisions if r != revision] + [revision]
        else:
            revisions = [revision]
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text("\n".join([source.build_on] + revisions) + "\n")
        except OSError as e:
            raise BuildFailed(f"cannot update build record: {e}", item=source.name) from e

    def _git_output(self, source: BuildSource, *args: str) -> str:
        checkout = self.checkout_dir(source)
        result = self._run([self.git, "-C", str(checkout), *args], source)
        return result.stdout.decode(errors="replace").strip()

    def _checkout(self, source: BuildSource) -> Path:
        checkout = self.checkout_dir(source)
        if (checkout / ".git").is_dir():
            logger.debug(f"Updating existing checkout {checkout}")
            self._run([self.git, "-C", str(checkout), "fetch", "origin"], source)
            ref = f"origin/{source.branch}" if source.branch else "FETCH_HEAD"
            if source.branch:
                self._run([self.git, "-C", str(checkout), "checkout", source.branch], source)
            self._run([self.git, "-C", str(checkout), "merge", "--ff-only", ref], source)
        else:
            checkout.parent.mkdir(parents=True, exist_ok=True)
            cmd = [self.git, "clone"]
            if source.branch:
                cmd += ["--branch", source.branch]
            cmd += [source.git, str(checkout)]
            self._run(cmd, source)
        return checkout

    def _run(
        self,
        cmd: List[str],
        source: BuildSource,
        cwd: Optional[Path] = None,
    ) -> subprocess.CompletedProcess:
        """Run one build command.

        Args:
            cmd: Command and arguments
            source: Source being built, for error reporting
            cwd: Working directory

        Returns:
            CompletedProcess result

        Raises:
            BuildFailed: On non-zero exit, timeout or a missing executable
        """
        try:
            return subprocess.run(
                cmd,
                cwd=str(cwd) if cwd else None,
                capture_output=True,
                timeout=self.timeout,
                check=True,
            )
        except subprocess.CalledProcessError as e:
            stderr = e.stderr.decode(errors="replace").strip() if e.stderr else str(e)
            raise BuildFailed(f"{cmd[0]} failed: {stderr}", item=source.name) from e
        except subprocess.TimeoutExpired as e:
            raise BuildFailed(
                f"{cmd[0]} timed out after {self.timeout}s", item=source.name
            ) from e
        except FileNotFoundError as e:
            raise BuildFailed(f"{cmd[0]} not found", item=source.name) from e

    def _write_log(self, source: BuildSource, result: subprocess.CompletedProcess) -> None:
        log = self.log_path(source)
        log.parent.mkdir(parents=True, exist_ok=True)
        with open(log, "wb") as f:
            f.write(result.stdout or b"")
            f.write(result.stderr or b"")
