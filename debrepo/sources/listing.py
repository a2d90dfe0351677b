"""HTML directory listing parsing and artifact selection."""

import re
from html.parser import HTMLParser
from typing import Dict, List, Optional, Tuple
from urllib.parse import unquote, urljoin, urlparse

from debian.debian_support import Version

from ..common.errors import MalformedListing
from .base import ListingSelect


class _FileListingParser(HTMLParser):
    """Extract file links from a simple HTML index."""

    def __init__(self):
        super().__init__()
        self._links: List[str] = []
        self.anchors = 0

    def handle_starttag(self, tag, attrs):  # noqa: D401 - HTMLParser hook
        if tag.lower() != "a":
            return
        self.anchors += 1
        href = dict(attrs).get("href", "")
        if not href or href.startswith(("?", "#", "mailto:")):
            return
        if href in {"../", "/"} or href.endswith("/"):
            return
        if href not in self._links:
            self._links.append(href)

    def get_links(self) -> List[str]:
        """Return discovered file links preserving server order."""
        return list(self._links)


def parse_links(html: str, base_url: str) -> List[str]:
    """Parse anchor hrefs from an HTML listing into absolute URLs.

    Args:
        html: Listing page body
        base_url: URL the page was fetched from

    Returns:
        Absolute URLs of linked files, in page order

    Raises:
        MalformedListing: If the page contains no anchors at all
    """
    if not base_url.endswith("/"):
        base_url += "/"

    parser = _FileListingParser()
    try:
        parser.feed(html)
        parser.close()
    except (AssertionError, ValueError) as e:
        raise MalformedListing(f"unparseable HTML listing: {e}", item=base_url) from e

    if parser.anchors == 0:
        raise MalformedListing("listing contains no links", item=base_url)

    return [urljoin(base_url, href) for href in parser.get_links()]


def url_filename(url: str) -> str:
    """Last path segment of a URL, percent-decoded."""
    return unquote(urlparse(url).path.rstrip("/").rsplit("/", 1)[-1])


def split_deb_filename(filename: str) -> Optional[Tuple[str, str, str]]:
    """Split ``name_version_arch.deb`` into its parts.

    Epochs are percent-encoded in some archives (``1%3a2.0``); those are
    decoded by url_filename before this is called.

    Returns:
        (name, version, architecture), or None if the name doesn't follow the convention
    """
    stem = filename
    for ext in (".deb", ".udeb"):
        if stem.endswith(ext):
            stem = stem[: -len(ext)]
            break
    else:
        return None
    parts = stem.split("_")
    if len(parts) != 3 or not all(parts):
        return None
    return parts[0], parts[1], parts[2]


def select_links(urls: List[str], pattern: str, select: ListingSelect) -> List[str]:
    """Apply a listing source's selection rule.

    Args:
        urls: Absolute candidate URLs
        pattern: Regular expression that must fully match the file name
        select: LATEST keeps the highest version per (name, architecture);
            ALL keeps every match

    Returns:
        Selected URLs, sorted by file name

    Raises:
        MalformedListing: If nothing matches
    """
    regex = re.compile(pattern)
    matching = [u for u in urls if regex.fullmatch(url_filename(u))]
    if not matching:
        raise MalformedListing(f"no links match pattern {pattern!r}")

    if select is ListingSelect.ALL:
        return sorted(matching, key=url_filename)

    latest: Dict[Tuple[str, str], Tuple[Version, str]] = {}
    for url in matching:
        parts = split_deb_filename(url_filename(url))
        if parts is None:
            continue
        name, version, arch = parts
        try:
            parsed = Version(version)
        except ValueError:
            continue
        current = latest.get((name, arch))
        if current is None or parsed > current[0]:
            latest[(name, arch)] = (parsed, url)

    if not latest:
        raise MalformedListing(
            f"links match {pattern!r} but none are named name_version_arch.deb"
        )
    return sorted((url for _, url in latest.values()), key=url_filename)
