"""Repository tree construction: pool, indices, Release and publication."""

from .base import IndexArtifact, RepositoryMetadata, StagingTree
from .index import ComponentIndex, IndexBuilder, read_packages_index
from .pool import PoolEntry, PoolManager, pool_path
from .publisher import AtomicPublisher
from .release import ReleaseComposer, ReleaseManifest, metadata_from_config
from .signing import GpgSigner, Signer

__all__ = [
    "AtomicPublisher",
    "ComponentIndex",
    "GpgSigner",
    "IndexArtifact",
    "IndexBuilder",
    "PoolEntry",
    "PoolManager",
    "ReleaseComposer",
    "ReleaseManifest",
    "RepositoryMetadata",
    "Signer",
    "StagingTree",
    "metadata_from_config",
    "pool_path",
    "read_packages_index",
]
