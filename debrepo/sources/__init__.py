"""Package sources: declarations, resolution and fetching."""

from .base import (
    BuildSource,
    FetchTask,
    ListingSelect,
    ListingSource,
    LocalArtifact,
    LocalSource,
    PackageSource,
    ResolvedSource,
    UrlSource,
)
from .retry import RetryPolicy, RetryState

__all__ = [
    "BuildSource",
    "FetchTask",
    "ListingSelect",
    "ListingSource",
    "LocalArtifact",
    "LocalSource",
    "PackageSource",
    "ResolvedSource",
    "RetryPolicy",
    "RetryState",
    "UrlSource",
]
