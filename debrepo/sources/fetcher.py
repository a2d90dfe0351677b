"""Artifact fetching with bounded retries and integrity verification.

Remote artifacts are streamed into a partial file beside their destination,
hashed while they are written, verified, and only then renamed into place.
A crash mid-download can therefore never leave a file that looks complete.
"""

import os
import threading
from pathlib import Path
from typing import Callable, Iterable, Optional

import httpx

from ..common.checksum import (
    CHUNK_SIZE,
    DEFAULT_ALGORITHMS,
    Hasher,
    compare,
    digest_file,
)
from ..common.errors import (
    BadResponse,
    ChecksumMismatch,
    FetchCancelled,
    FetchError,
    IntegrityViolation,
    NotFound,
    RequestRejected,
    Unreachable,
)
from ..common.logger import get_logger
from .base import FetchTask, LocalArtifact
from .retry import RetryPolicy, RetryState, is_retryable

logger = get_logger("fetcher")

RETRYABLE_STATUS = {408, 425, 429}


def classify_response(response: httpx.Response, item: str) -> None:
    """Raise the FetchError matching a non-success response.

    Args:
        response: Response whose status has been received
        item: URL for error messages

    Raises:
        BadResponse: An unfollowed redirect
        NotFound: 404 or 410
        FetchError: 5xx and throttling statuses (transient)
        RequestRejected: Any other 4xx
    """
    status = response.status_code
    if status < 300:
        return
    if status < 400:
        raise BadResponse(f"HTTP {status} redirect not followed", item=item)
    if status in (404, 410):
        raise NotFound(f"HTTP {status}", item=item)
    if status >= 500 or status in RETRYABLE_STATUS:
        raise FetchError(f"HTTP {status}", item=item)
    raise RequestRejected(f"HTTP {status}", status_code=status, item=item)


def request_error(error: httpx.HTTPError, item: str) -> FetchError:
    """Map an httpx exception onto the fetch error taxonomy.

    Transport failures are transient. Anything else httpx raises, such as a
    redirect loop or an undecodable body, will not improve on retry.
    """
    message = f"{type(error).__name__}: {error}"
    if isinstance(error, httpx.TransportError):
        return FetchError(message, item=item)
    return BadResponse(message, item=item)


def content_length(response: httpx.Response) -> Optional[int]:
    """The declared body size, or None when absent or unparseable."""
    try:
        return int(response.headers["content-length"])
    except (KeyError, ValueError):
        return None


class Fetcher:
    """Retrieves package artifacts and listing pages.

    The HTTP client and the sleep function are injectable so the retry
    schedule can be exercised without a network.
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        timeout: float = 60.0,
        user_agent: str = "debrepo/0.1",
        client: Optional[httpx.Client] = None,
        sleep: Optional[Callable[[float], None]] = None,
        cancel_event: Optional[threading.Event] = None,
        hash_algorithms: Iterable[str] = DEFAULT_ALGORITHMS,
    ):
        """Initialize the fetcher.

        Args:
            policy: Retry policy for new listing requests
            timeout: Per-request timeout in seconds
            user_agent: User-Agent header
            client: Pre-built httpx client (owned by the caller)
            sleep: Replacement for waiting between attempts
            cancel_event: Set to abort in-flight and future fetches
            hash_algorithms: Digests computed for every artifact
        """
        self.policy = policy or RetryPolicy()
        self.cancel_event = cancel_event or threading.Event()
        self.hash_algorithms = tuple(hash_algorithms)
        self._sleep = sleep
        self._owns_client = client is None
        self.client = client or httpx.Client(
            follow_redirects=True,
            timeout=timeout,
            headers={"User-Agent": user_agent},
        )

    def close(self) -> None:
        if self._owns_client:
            self.client.close()

    def __enter__(self) -> "Fetcher":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def fetch(self, task: FetchTask) -> LocalArtifact:
        """Obtain and verify one artifact.

        Args:
            task: The fetch task; its retry state is updated in place

        Returns:
            LocalArtifact pointing at the verified file

        Raises:
            NotFound: Missing local file or HTTP 404/410
            IntegrityViolation: Checksum mismatch against the declared value
            Unreachable: Transient failures outlasted the retry budget
            RequestRejected: Non-retryable client error
            BadResponse: Redirect loop or undecodable body
            FetchCancelled: The run was cancelled
        """
        if task.local:
            return self._fetch_local(task)

        logger.debug(f"Fetching {task.target} -> {task.destination}")
        return self._with_retries(task.retry, lambda: self._download(task), task.target)

    def fetch_text(self, url: str) -> str:
        """Fetch a text page (such as an HTML listing) under the retry policy."""
        state = self.policy.new_state()

        def attempt() -> str:
            try:
                response = self.client.get(url)
            except httpx.HTTPError as e:
                raise request_error(e, url) from e
            classify_response(response, url)
            return response.text

        return self._with_retries(state, attempt, url)

    def _with_retries(self, state: RetryState, attempt: Callable, item: str):
        while True:
            self._check_cancelled(item)
            number = state.start_attempt()
            try:
                return attempt()
            except FetchError as e:
                delay = state.record_failure(e)
                if delay is None:
                    if is_retryable(e):
                        raise Unreachable(
                            f"giving up after {state.attempts} attempts: {e.message}",
                            item=item,
                        ) from e
                    raise
                logger.warning(
                    f"Fetch attempt {number} failed for {item}: {e.message}; "
                    f"retrying in {delay:.1f}s ({state.remaining} retries left)"
                )
                self._wait(delay, item)

    def _wait(self, delay: float, item: str) -> None:
        if self._sleep is not None:
            self._sleep(delay)
            self._check_cancelled(item)
        elif self.cancel_event.wait(delay):
            raise FetchCancelled("cancelled during backoff", item=item)

    def _check_cancelled(self, item: str) -> None:
        if self.cancel_event.is_set():
            raise FetchCancelled("run cancelled", item=item)

    def _fetch_local(self, task: FetchTask) -> LocalArtifact:
        path = Path(task.target)
        if not path.is_file():
            raise NotFound("no such file", item=str(path))

        checksum = digest_file(path, self.hash_algorithms)
        if task.expected_sha256:
            try:
                compare(checksum, {"sha256": task.expected_sha256}, item=str(path))
            except ChecksumMismatch as e:
                raise IntegrityViolation(e.message, item=str(path)) from e

        return LocalArtifact(
            path=path,
            checksum=checksum,
            source=task.source,
            component=task.component,
        )

    def _reuse_cached(self, task: FetchTask) -> Optional[LocalArtifact]:
        """Return the cached destination if it is still valid."""
        dest = task.destination
        checksum = digest_file(dest, self.hash_algorithms)

        if task.expected_sha256:
            if checksum.sha256.lower() != task.expected_sha256.lower():
                logger.info(f"Cached {dest.name} does not match declared checksum, refetching")
                return None
        else:
            try:
                response = self.client.head(task.target)
            except httpx.HTTPError as e:
                logger.debug(f"HEAD {task.target} failed, refetching: {e}")
                return None
            if response.status_code >= 400 or content_length(response) != checksum.size:
                return None

        logger.debug(f"Using cached {dest}")
        return LocalArtifact(
            path=dest,
            checksum=checksum,
            source=task.source,
            component=task.component,
        )

    def _download(self, task: FetchTask) -> LocalArtifact:
        dest = task.destination
        dest.parent.mkdir(parents=True, exist_ok=True)

        if dest.is_file():
            cached = self._reuse_cached(task)
            if cached is not None:
                return cached

        partial = task.partial_path
        algorithms = self.hash_algorithms
        if "sha256" not in algorithms:
            algorithms += ("sha256",)
        hasher = Hasher(algorithms)
        try:
            with self.client.stream("GET", task.target) as response:
                classify_response(response, task.target)
                expected_length = content_length(response)
                if response.headers.get("content-encoding"):
                    # decoded size differs from the transferred size
                    expected_length = None
                with open(partial, "wb") as f:
                    for chunk in response.iter_bytes(CHUNK_SIZE):
                        self._check_cancelled(task.target)
                        f.write(chunk)
                        hasher.update(chunk)
        except httpx.HTTPError as e:
            partial.unlink(missing_ok=True)
            raise request_error(e, task.target) from e
        except BaseException:
            partial.unlink(missing_ok=True)
            raise

        checksum = hasher.result()
        if expected_length is not None and expected_length != checksum.size:
            partial.unlink(missing_ok=True)
            raise FetchError(
                f"truncated download: {checksum.size} of {expected_length} bytes",
                item=task.target,
            )

        if task.expected_sha256:
            try:
                compare(checksum, {"sha256": task.expected_sha256}, item=task.target)
            except ChecksumMismatch as e:
                partial.unlink(missing_ok=True)
                raise IntegrityViolation(e.message, item=task.target) from e

        os.replace(partial, dest)
        logger.info(f"Downloaded {task.target} ({checksum.size} bytes)")
        return LocalArtifact(
            path=dest,
            checksum=checksum,
            source=task.source,
            component=task.component,
            downloaded=True,
        )
