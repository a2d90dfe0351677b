"""Building packages from git sources."""

from .sbuild import PackageBuilder, SbuildInvoker

__all__ = ["PackageBuilder", "SbuildInvoker"]
