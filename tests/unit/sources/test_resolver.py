"""Tests for source resolution."""

from unittest.mock import MagicMock

import httpx
import pytest

from debrepo.common.errors import BuildFailed, ConfigError, MalformedListing, NotFound
from debrepo.sources.base import (
    BuildSource,
    ListingSelect,
    ListingSource,
    LocalSource,
    UrlSource,
)
from debrepo.sources.fetcher import Fetcher
from debrepo.sources.resolver import SourceResolver
from debrepo.sources.retry import RetryPolicy

LISTING = """
<a href="../">../</a>
<a href="app_1.0_amd64.deb">app_1.0_amd64.deb</a>
<a href="app_1.1_amd64.deb">app_1.1_amd64.deb</a>
"""


def listing_handler(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/debs/":
        return httpx.Response(200, text=LISTING)
    if request.url.path == "/empty/":
        return httpx.Response(200, text="<html>no links</html>")
    return httpx.Response(404)


@pytest.fixture
def fetcher():
    client = httpx.Client(transport=httpx.MockTransport(listing_handler))
    return Fetcher(policy=RetryPolicy(max_retries=0), client=client, sleep=lambda _: None)


class TestSourceResolver:
    """Tests for SourceResolver."""

    def test_local_source(self, fetcher, tmp_path):
        """Local sources resolve to a single in-place task."""
        deb = tmp_path / "a_1_amd64.deb"
        deb.write_bytes(b"!<arch>\n")
        resolver = SourceResolver(fetcher, tmp_path / "cache")
        resolved = resolver.resolve([LocalSource("local", "main", str(deb))])

        assert len(resolved) == 1
        task = resolved[0].tasks[0]
        assert task.local
        assert task.destination == deb

    def test_missing_local_file(self, fetcher, tmp_path):
        resolver = SourceResolver(fetcher, tmp_path / "cache")
        resolved = resolver.resolve([LocalSource("local", "main", str(tmp_path / "none.deb"))])
        assert isinstance(resolved[0].error, NotFound)

    def test_url_source_cached_by_name(self, fetcher, tmp_path):
        """URL sources download into the source's cache directory."""
        resolver = SourceResolver(fetcher, tmp_path / "cache")
        source = UrlSource("remote", "main", "https://example.com/x/b_2_amd64.deb", sha256="ab" * 32)

        task = resolver.resolve_one(source)[0]

        assert not task.local
        assert task.destination == tmp_path / "cache" / "remote" / "b_2_amd64.deb"
        assert task.expected_sha256 == "ab" * 32

    def test_url_without_filename(self, fetcher, tmp_path):
        """A URL ending in a slash names no artifact."""
        resolver = SourceResolver(fetcher, tmp_path / "cache")
        resolved = resolver.resolve([UrlSource("bad", "main", "https://example.com/")])
        assert isinstance(resolved[0].error, ConfigError)

    def test_listing_source(self, fetcher, tmp_path):
        """Listings fan out into one task per selected link."""
        resolver = SourceResolver(fetcher, tmp_path / "cache")
        source = ListingSource("apps", "main", "https://example.com/debs/", select=ListingSelect.ALL)

        tasks = resolver.resolve_one(source)

        assert [t.target for t in tasks] == [
            "https://example.com/debs/app_1.0_amd64.deb",
            "https://example.com/debs/app_1.1_amd64.deb",
        ]

    def test_listing_latest(self, fetcher, tmp_path):
        """LATEST keeps only the newest version."""
        resolver = SourceResolver(fetcher, tmp_path / "cache")
        tasks = resolver.resolve_one(ListingSource("apps", "main", "https://example.com/debs/"))
        assert [t.filename for t in tasks] == ["app_1.1_amd64.deb"]

    def test_one_result_per_source(self, fetcher, tmp_path):
        """Failing sources still produce exactly one result, in order."""
        local = tmp_path / "c_1_amd64.deb"
        local.write_bytes(b"!<arch>\n")
        resolver = SourceResolver(fetcher, tmp_path / "cache")
        sources = [
            ListingSource("good", "main", "https://example.com/debs/"),
            ListingSource("empty", "main", "https://example.com/empty/"),
            ListingSource("gone", "main", "https://example.com/gone/"),
            LocalSource("local", "main", str(local)),
        ]

        resolved = resolver.resolve(sources)

        assert [r.name for r in resolved] == ["good", "empty", "gone", "local"]
        assert resolved[0].ok
        assert isinstance(resolved[1].error, MalformedListing)
        assert isinstance(resolved[2].error, NotFound)
        assert resolved[3].ok

    def test_build_source_uses_builder(self, fetcher, tmp_path):
        """Build sources become local tasks for the built packages."""
        builder = MagicMock()
        builder.build.return_value = [tmp_path / "out" / "app_1.0_amd64.deb"]
        resolver = SourceResolver(fetcher, tmp_path / "cache", builder=builder)
        source = BuildSource("app", "main", "https://example.com/app.git")

        tasks = resolver.resolve_one(source)

        builder.build.assert_called_once_with(source)
        assert len(tasks) == 1
        assert tasks[0].local
        assert tasks[0].source == "app"

    def test_build_failure_recorded(self, fetcher, tmp_path):
        """Build failures are attached to the source."""
        builder = MagicMock()
        builder.build.side_effect = BuildFailed("sbuild failed")
        resolver = SourceResolver(fetcher, tmp_path / "cache", builder=builder)

        resolved = resolver.resolve([BuildSource("app", "main", "https://example.com/app.git")])

        assert isinstance(resolved[0].error, BuildFailed)
        assert resolved[0].error.item == "app"

    def test_build_source_without_builder(self, fetcher, tmp_path):
        """Without a builder, build sources cannot resolve."""
        resolver = SourceResolver(fetcher, tmp_path / "cache")
        resolved = resolver.resolve([BuildSource("app", "main", "https://example.com/app.git")])
        assert isinstance(resolved[0].error, ConfigError)
