"""Package format handlers.

Only Debian binary packages are ingested; the abstract base keeps the
ingestion seam separate from the pipeline.
"""

from .base import PackageFormat, PackageRecord, RELATIONSHIP_FIELDS
from .deb import DebPackageFormat

__all__ = [
    "DebPackageFormat",
    "PackageFormat",
    "PackageRecord",
    "RELATIONSHIP_FIELDS",
]
