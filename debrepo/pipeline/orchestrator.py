"""End-to-end repository build.

A run resolves and fetches every source on a fixed worker pool, places the
ingested packages into a fresh staging tree, renders indices and the
Release manifest, and finally swaps the staging tree live. Failures of
individual sources are collected into the RunReport; only fatal errors
abort the run, and an aborted run never touches the live tree.
"""

import threading
import time
from collections import OrderedDict, defaultdict
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, Iterable, List, Optional, Tuple

from ..build.sbuild import PackageBuilder, SbuildInvoker
from ..common.config import DebRepoConfig
from ..common.errors import (
    CompositionError,
    FatalBuildError,
    RepoBuildError,
    SigningError,
)
from ..common.logger import get_logger
from ..formats.base import PackageRecord
from ..formats.deb import DebPackageFormat
from ..repos.base import IndexArtifact, RepositoryMetadata, StagingTree
from ..repos.index import ComponentIndex, IndexBuilder
from ..repos.pool import PoolEntry, PoolManager, placement_key
from ..repos.publisher import AtomicPublisher
from ..repos.release import ReleaseComposer, ReleaseManifest, metadata_from_config
from ..repos.signing import GpgSigner, Signer
from ..sources.base import FetchTask, LocalArtifact
from ..sources.fetcher import Fetcher
from ..sources.resolver import SourceResolver
from .events import (
    RUN_SUMMARY,
    TASK_FAILED,
    TASK_SKIPPED,
    TASK_STARTED,
    TASK_SUCCEEDED,
    EventSink,
    LoggingEventSink,
    RunEvent,
)
from .report import RunOutcome, RunReport, SourceFailure

logger = get_logger("orchestrator")

Order = Tuple[int, int]
Ingested = Tuple[Order, PackageRecord, LocalArtifact]


class RepositoryBuilder:
    """Builds and publishes one repository from its configuration."""

    def __init__(
        self,
        config: DebRepoConfig,
        fetcher: Optional[Fetcher] = None,
        builder: Optional[PackageBuilder] = None,
        signer: Optional[Signer] = None,
        publisher: Optional[AtomicPublisher] = None,
        sinks: Optional[Iterable[EventSink]] = None,
    ):
        """Initialize the builder.

        Args:
            config: Parsed configuration
            fetcher: Artifact fetcher; one is created from ``config.fetch``
                when omitted
            builder: Package builder for git sources; sbuild by default
            signer: Release signer; gpg with ``signing.key_id`` by default
            publisher: Publisher for ``repository.root``
            sinks: Event receivers; a LoggingEventSink by default
        """
        self.config = config
        if fetcher is None:
            fetcher = Fetcher(
                policy=config.fetch.retry_policy(),
                timeout=config.fetch.timeout,
                user_agent=config.fetch.user_agent,
            )
            self._owns_fetcher = True
        else:
            self._owns_fetcher = False
        self.fetcher = fetcher
        self.cancel_event: threading.Event = fetcher.cancel_event

        repo = config.repository
        self.builder = builder or SbuildInvoker(
            work_dir=config.work_dir,
            distribution=repo.codename or repo.suite,
            sbuild=config.build.sbuild,
            timeout=config.build.timeout,
            force=config.build.force,
            pool_root=config.root / "current",
        )
        self.resolver = SourceResolver(
            fetcher,
            config.cache_dir,
            policy=config.fetch.retry_policy(),
            builder=self.builder,
        )
        self.signer = signer
        self.publisher = publisher or AtomicPublisher(
            config.root, keep_snapshots=config.retention.snapshots
        )
        self.format = DebPackageFormat()
        self.sinks: List[EventSink] = list(sinks) if sinks is not None else [LoggingEventSink()]

    def close(self) -> None:
        if self._owns_fetcher:
            self.fetcher.close()

    def __enter__(self) -> "RepositoryBuilder":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def cancel(self) -> None:
        """Stop the run; in-flight work winds down and nothing is published."""
        logger.warning("Cancellation requested")
        self.cancel_event.set()

    def _emit(self, kind: str, message: str, source: Optional[str] = None, **data) -> None:
        event = RunEvent(kind=kind, message=message, source=source, data=data)
        for sink in self.sinks:
            sink.emit(event)

    def _check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise FatalBuildError("build cancelled")

    def _fail(self, report: RunReport, source: str, error: BaseException, stage: str) -> None:
        failure = SourceFailure.from_error(source, error, stage)
        report.failures.append(failure)
        self._emit(
            TASK_FAILED,
            f"{stage} failed ({failure.error_class.name}): {failure.message}",
            source=source,
            stage=stage,
            error_class=failure.error_class.name,
        )

    def run(self) -> RunReport:
        """Run one complete build.

        Returns:
            RunReport describing the outcome; ABORTED runs left the live tree
            unchanged
        """
        started = time.monotonic()
        report = RunReport()
        staging: Optional[StagingTree] = None
        try:
            staging = self.publisher.begin()
            report.build_id = staging.build_id
            self._build(staging, report)
            self._check_cancelled()
            if report.failures and not self.config.publish_partial:
                raise FatalBuildError(
                    f"{len(report.failed_sources)} source(s) failed and partial "
                    "publishing is disabled"
                )
            report.published_path = self.publisher.publish(staging)
            staging = None
            report.outcome = RunOutcome.PARTIAL if report.failures else RunOutcome.SUCCESS
        except RepoBuildError as e:
            logger.error(f"Build aborted: {e}")
            report.outcome = RunOutcome.ABORTED
            report.error_message = str(e)
        except KeyboardInterrupt:
            self.cancel_event.set()
            logger.error("Build interrupted")
            report.outcome = RunOutcome.ABORTED
            report.error_message = "interrupted"
        finally:
            if staging is not None:
                self.publisher.abort(staging)
            report.duration_seconds = time.monotonic() - started

        self._emit(
            RUN_SUMMARY,
            report.summary(),
            outcome=report.outcome.name,
            failures=len(report.failures),
        )
        return report

    def _build(self, staging: StagingTree, report: RunReport) -> None:
        config = self.config
        repo = config.repository
        components = repo.component_names
        metadata = metadata_from_config(config)

        tasks = self._resolve(report)
        self._check_cancelled()

        executor = ThreadPoolExecutor(
            max_workers=config.worker_count, thread_name_prefix="debrepo"
        )
        try:
            ingested = self._fetch_and_ingest(executor, tasks, report)
            self._check_cancelled()

            pool = PoolManager(staging.root, keep_versions=config.retention.versions)
            live = self.publisher.live_root()
            if live is not None:
                report.carried_forward = pool.carry_forward(live, repo.suite, components)

            self._place(executor, pool, ingested, report)
            self._check_cancelled()
            self._check_required(report)

            retained = pool.finalize(components)
            report.packages_published = len(
                {e.path for entries in retained.values() for e in entries}
            )
            artifacts = self._build_indices(executor, metadata, retained)
        except KeyboardInterrupt:
            self.cancel_event.set()
            raise
        finally:
            executor.shutdown(wait=True, cancel_futures=True)
        self._check_cancelled()

        dist_dir = staging.dist_dir(repo.suite)
        try:
            for artifact in artifacts:
                artifact.write(dist_dir)
            manifest = self._compose(metadata, artifacts, report)
            manifest.write(dist_dir)
            staging.link_codename(repo.suite, metadata.codename)
        except OSError as e:
            raise FatalBuildError(f"cannot write indices: {e}", cause=e) from e

    def _resolve(self, report: RunReport) -> List[Tuple[Order, FetchTask]]:
        tasks = []
        resolved = self.resolver.resolve(self.config.all_sources())
        for i, source in enumerate(resolved):
            if not source.ok:
                self._fail(report, source.name, source.error, "resolve")
                continue
            for j, task in enumerate(source.tasks):
                tasks.append(((i, j), task))
        logger.info(f"Resolved {len(resolved)} source(s) into {len(tasks)} fetch task(s)")
        return tasks

    def _fetch_one(self, task: FetchTask) -> Tuple[LocalArtifact, Optional[PackageRecord]]:
        self._emit(TASK_STARTED, f"fetching {task.target}", source=task.source)
        artifact = self.fetcher.fetch(task)
        record = self.format.ingest(
            artifact, self.config.repository.architectures, task.component
        )
        return artifact, record

    def _fetch_and_ingest(
        self,
        executor: ThreadPoolExecutor,
        tasks: List[Tuple[Order, FetchTask]],
        report: RunReport,
    ) -> List[Ingested]:
        futures = {executor.submit(self._fetch_one, task): (order, task) for order, task in tasks}
        ingested: List[Ingested] = []
        failed = []
        for future in as_completed(futures):
            order, task = futures[future]
            try:
                artifact, record = future.result()
            except (RepoBuildError, OSError) as e:
                failed.append((order, task.source, e))
                continue
            if record is None:
                report.skipped.append(f"{task.source}:{artifact.path.name}")
                self._emit(
                    TASK_SKIPPED,
                    f"{artifact.path.name} skipped: architecture not configured",
                    source=task.source,
                )
                continue
            ingested.append((order, record, artifact))

        for _, source, error in sorted(failed, key=lambda f: f[0]):
            self._fail(report, source, error, "fetch")
        return sorted(ingested, key=lambda item: item[0])

    def _place(
        self,
        executor: ThreadPoolExecutor,
        pool: PoolManager,
        ingested: List[Ingested],
        report: RunReport,
    ) -> None:
        # records that can clash share a group, placed in declaration order
        groups: Dict[str, List[Ingested]] = OrderedDict()
        for item in ingested:
            groups.setdefault(placement_key(item[1]), []).append(item)

        def place_group(group: List[Ingested]):
            outcomes = []
            for _, record, artifact in group:
                try:
                    outcomes.append((record, pool.place(record, artifact), None))
                except (RepoBuildError, OSError) as e:
                    outcomes.append((record, None, e))
            return outcomes

        futures = [executor.submit(place_group, group) for group in groups.values()]
        counts: Dict[str, int] = defaultdict(int)
        for future in futures:
            for record, entry, error in future.result():
                if error is not None:
                    self._fail(report, record.source or record.name, error, "place")
                    continue
                counts[record.component] += 1
                self._emit(
                    TASK_SUCCEEDED,
                    f"{record.key} -> {entry.path}",
                    source=record.source,
                    component=record.component,
                )
        report.ingested = dict(counts)

    def _check_required(self, report: RunReport) -> None:
        for component in self.config.repository.components:
            if not component.required or not component.sources:
                continue
            if report.ingested.get(component.name, 0) == 0:
                raise FatalBuildError(
                    f"required component {component.name} has no successfully "
                    "ingested packages"
                )

    def _build_indices(
        self,
        executor: ThreadPoolExecutor,
        metadata: RepositoryMetadata,
        retained: Dict[str, List[PoolEntry]],
    ) -> List[IndexArtifact]:
        index_builder = IndexBuilder(
            metadata,
            compression=self.config.index.compression,
            hashes=self.config.index.hashes,
        )
        indices = [
            ComponentIndex(
                component=component,
                architecture=arch,
                entries=[
                    e for e in retained.get(component, [])
                    if e.record.architecture in (arch, "all")
                ],
            )
            for component in metadata.components
            for arch in metadata.architectures
        ]
        futures = [executor.submit(index_builder.build, index) for index in indices]
        artifacts: List[IndexArtifact] = []
        for future in futures:
            try:
                artifacts.extend(future.result())
            except CompositionError as e:
                raise FatalBuildError(f"index composition failed: {e}", cause=e) from e
        return artifacts

    def _make_signer(self) -> Signer:
        if self.signer is not None:
            return self.signer
        signing = self.config.signing
        return GpgSigner(
            signing.key_id,
            gpg=signing.gpg,
            homedir=signing.homedir,
            timeout=signing.timeout,
            cancel_event=self.cancel_event,
        )

    def _compose(
        self,
        metadata: RepositoryMetadata,
        artifacts: List[IndexArtifact],
        report: RunReport,
    ) -> ReleaseManifest:
        composer = ReleaseComposer(self.config.index.hashes)
        try:
            manifest = composer.compose(metadata, artifacts)
        except CompositionError as e:
            raise FatalBuildError(f"release composition failed: {e}", cause=e) from e

        try:
            manifest = composer.sign(manifest, self._make_signer())
            report.signed = True
        except SigningError as e:
            self._check_cancelled()
            if self.config.signing.fatal:
                raise FatalBuildError(f"signing failed: {e}", cause=e) from e
            logger.warning(f"Publishing unsigned Release: {e}")
        return manifest
