"""Classification of package sources into fetch tasks.

Each configured source yields exactly one ResolvedSource, whether it fans
out into many artifacts (listings) or fails outright.
"""

from pathlib import Path
from typing import Iterable, List, Optional

from ..build.sbuild import PackageBuilder
from ..common.errors import ConfigError, NotFound, RepoBuildError
from ..common.logger import get_logger
from .base import (
    BuildSource,
    FetchTask,
    ListingSource,
    LocalSource,
    PackageSource,
    ResolvedSource,
    UrlSource,
)
from .fetcher import Fetcher
from .listing import parse_links, select_links, url_filename
from .retry import RetryPolicy

logger = get_logger("resolver")


class SourceResolver:
    """Turns package source declarations into fetch tasks."""

    def __init__(
        self,
        fetcher: Fetcher,
        cache_dir: Path,
        policy: Optional[RetryPolicy] = None,
        builder: Optional[PackageBuilder] = None,
    ):
        """Initialize the resolver.

        Args:
            fetcher: Used to download HTML listings
            cache_dir: Root of the per-source download cache
            policy: Retry policy given to every created task
            builder: Builds git sources into local packages
        """
        self.fetcher = fetcher
        self.cache_dir = Path(cache_dir)
        self.policy = policy or fetcher.policy
        self.builder = builder

    def resolve(self, sources: Iterable[PackageSource]) -> List[ResolvedSource]:
        """Resolve every source, in order.

        Failures are attached to the ResolvedSource rather than raised, so one
        broken listing never hides the others.
        """
        resolved = []
        for source in sources:
            try:
                tasks = self.resolve_one(source)
                resolved.append(ResolvedSource(source=source, tasks=tasks))
                logger.debug(f"Resolved {source.name} into {len(tasks)} task(s)")
            except RepoBuildError as e:
                if e.item is None:
                    e.item = source.name
                logger.warning(f"Could not resolve source {source.name}: {e}")
                resolved.append(ResolvedSource(source=source, error=e))
        return resolved

    def resolve_one(self, source: PackageSource) -> List[FetchTask]:
        if isinstance(source, LocalSource):
            if not Path(source.path).expanduser().is_file():
                raise NotFound("no such file", item=source.path)
            return [self._local_task(source.name, source.component, source.path, source.sha256)]
        if isinstance(source, UrlSource):
            return [self._url_task(source.name, source.component, source.url, source.sha256)]
        if isinstance(source, ListingSource):
            return self._listing_tasks(source)
        if isinstance(source, BuildSource):
            return self._build_tasks(source)
        raise TypeError(f"Unknown source type: {type(source).__name__}")

    def _local_task(
        self, name: str, component: str, path: str, sha256: Optional[str]
    ) -> FetchTask:
        local = Path(path).expanduser()
        return FetchTask(
            source=name,
            component=component,
            target=str(local),
            destination=local,
            expected_sha256=sha256,
            local=True,
            retry=self.policy.new_state(),
        )

    def _url_task(
        self, name: str, component: str, url: str, sha256: Optional[str]
    ) -> FetchTask:
        filename = url_filename(url)
        if not filename:
            raise ConfigError(f"URL has no file name: {url}", item=name)
        return FetchTask(
            source=name,
            component=component,
            target=url,
            destination=self.cache_dir / name / filename,
            expected_sha256=sha256,
            retry=self.policy.new_state(),
        )

    def _listing_tasks(self, source: ListingSource) -> List[FetchTask]:
        html = self.fetcher.fetch_text(source.url)
        urls = select_links(parse_links(html, source.url), source.pattern, source.select)
        logger.info(f"Listing {source.url} selected {len(urls)} artifact(s)")
        return [self._url_task(source.name, source.component, url, None) for url in urls]

    def _build_tasks(self, source: BuildSource) -> List[FetchTask]:
        if self.builder is None:
            raise ConfigError("no package builder configured", item=source.name)
        packages = self.builder.build(source)
        return [
            self._local_task(source.name, source.component, str(path), None)
            for path in packages
        ]
