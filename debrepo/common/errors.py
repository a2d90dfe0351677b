"""Error taxonomy for repository builds.

Every exception raised by the pipeline derives from RepoBuildError and
carries an ErrorClass so the orchestrator can decide whether a failure is
retried, recorded against a single source, or aborts the run.
"""

from enum import Enum
from typing import Optional


class ErrorClass(Enum):
    """Classification of build failures."""

    TRANSIENT = "transient"
    INTEGRITY = "integrity"
    MALFORMED_INPUT = "malformed_input"
    FATAL = "fatal"


class RepoBuildError(Exception):
    """Base class for all repository build errors."""

    error_class = ErrorClass.FATAL

    def __init__(self, message: str, item: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.item = item

    def __str__(self) -> str:
        if self.item:
            return f"{self.item}: {self.message}"
        return self.message


class ConfigError(RepoBuildError, ValueError):
    """Configuration is missing or invalid."""


# Checksums


class ChecksumMismatch(RepoBuildError):
    """Content digest does not match the expected value."""

    error_class = ErrorClass.INTEGRITY

    def __init__(self, algorithm: str, expected: str, actual: str, item: Optional[str] = None):
        super().__init__(
            f"{algorithm} mismatch: expected {expected}, got {actual}", item=item
        )
        self.algorithm = algorithm
        self.expected = expected
        self.actual = actual


# Fetching


class FetchError(RepoBuildError):
    """Base class for fetch failures."""

    error_class = ErrorClass.TRANSIENT


class Unreachable(FetchError):
    """Network-level failure that persisted through every retry."""


class NotFound(FetchError):
    """The artifact does not exist (HTTP 404/410 or missing local file)."""

    error_class = ErrorClass.MALFORMED_INPUT


class RequestRejected(FetchError):
    """The server refused the request with a non-retryable 4xx status."""

    error_class = ErrorClass.MALFORMED_INPUT

    def __init__(self, message: str, status_code: int, item: Optional[str] = None):
        super().__init__(message, item=item)
        self.status_code = status_code


class IntegrityViolation(FetchError):
    """A fully downloaded artifact failed checksum verification."""

    error_class = ErrorClass.INTEGRITY


class FetchCancelled(FetchError):
    """The run was cancelled while the fetch was in flight."""

    error_class = ErrorClass.FATAL


class BadResponse(FetchError):
    """The response could not be followed or decoded."""

    error_class = ErrorClass.MALFORMED_INPUT


class MalformedListing(FetchError):
    """An HTML index could not be parsed or had no matching links."""

    error_class = ErrorClass.MALFORMED_INPUT


# Building and ingesting


class BuildFailed(RepoBuildError):
    """The external package builder did not produce packages."""

    error_class = ErrorClass.MALFORMED_INPUT


class IngestError(RepoBuildError):
    """Base class for package ingestion failures."""

    error_class = ErrorClass.MALFORMED_INPUT


class MalformedPackage(IngestError):
    """The artifact is not a readable Debian package."""


class MalformedMetadata(IngestError):
    """The control paragraph is missing fields or has an invalid version."""


# Pool


class PoolError(RepoBuildError):
    """Base class for pool placement failures."""

    error_class = ErrorClass.INTEGRITY


class ConflictingVersion(PoolError):
    """Same name, version and architecture with different content."""

    def __init__(self, key: str, existing: str, incoming: str, item: Optional[str] = None):
        super().__init__(
            f"conflicting content for {key}: pool has {existing}, incoming {incoming}",
            item=item,
        )
        self.key = key
        self.existing = existing
        self.incoming = incoming


# Signing


class SigningError(RepoBuildError):
    """Base class for signing failures."""


class KeyUnavailable(SigningError):
    """No usable secret key for the configured key id."""


class SigningProcessFailed(SigningError):
    """The signing process exited abnormally or timed out."""


# Run-level


class CompositionError(RepoBuildError):
    """Index or release composition failed."""


class PublishError(RepoBuildError):
    """Staging could not be swapped into the live location."""


class FatalBuildError(RepoBuildError):
    """Aborts the whole run; the live tree is left untouched."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause
