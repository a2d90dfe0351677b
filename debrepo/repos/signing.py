"""OpenPGP signing of Release manifests through gpg."""

import subprocess
import threading
from typing import List, Optional, Protocol

from ..common.errors import KeyUnavailable, SigningProcessFailed
from ..common.logger import get_logger

logger = get_logger("signing")

# gpg stderr fragments meaning the key, not the process, is the problem
_MISSING_KEY_MARKERS = (
    "no secret key",
    "secret key not available",
    "unusable secret key",
    "skipped: no secret key",
    "no default secret key",
)


class Signer(Protocol):
    """Produces detached and inline signatures."""

    def sign_detached(self, data: bytes) -> bytes:
        ...

    def clearsign(self, data: bytes) -> bytes:
        ...


class GpgSigner:
    """Signs with a key held in a gpg keyring."""

    def __init__(
        self,
        key_id: str,
        gpg: str = "gpg",
        homedir: Optional[str] = None,
        timeout: int = 60,
        cancel_event: Optional[threading.Event] = None,
    ):
        """Initialize the signer.

        Args:
            key_id: Key ID, fingerprint or user ID passed to ``--local-user``
            gpg: gpg executable
            homedir: Keyring directory; gpg's default when None
            timeout: Timeout in seconds for each gpg call
            cancel_event: When set, no further gpg call is started
        """
        if not key_id:
            raise KeyUnavailable("no signing key configured")
        self.key_id = key_id
        self.gpg = gpg
        self.homedir = homedir
        self.timeout = timeout
        self.cancel_event = cancel_event or threading.Event()

    def _command(self, args: List[str]) -> List[str]:
        cmd = [self.gpg, "--batch", "--yes", "--no-tty"]
        if self.homedir:
            cmd += ["--homedir", self.homedir]
        cmd += ["--local-user", self.key_id, "--digest-algo", "SHA512"]
        return cmd + args

    def _run(self, args: List[str], data: bytes) -> bytes:
        """Feed data to gpg and return its output.

        Raises:
            KeyUnavailable: If gpg reports the key missing or unusable
            SigningProcessFailed: For any other gpg failure, or when the run
                was cancelled
        """
        if self.cancel_event.is_set():
            raise SigningProcessFailed("signing cancelled")
        cmd = self._command(args)
        try:
            result = subprocess.run(
                cmd,
                input=data,
                capture_output=True,
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError as e:
            raise SigningProcessFailed(f"{self.gpg} not found") from e
        except subprocess.TimeoutExpired as e:
            raise SigningProcessFailed(f"gpg timed out after {self.timeout}s") from e

        if result.returncode != 0:
            stderr = result.stderr.decode(errors="replace").strip() if result.stderr else ""
            if any(marker in stderr.lower() for marker in _MISSING_KEY_MARKERS):
                raise KeyUnavailable(f"key {self.key_id} unavailable: {stderr}")
            raise SigningProcessFailed(
                f"gpg exited with status {result.returncode}: {stderr}"
            )
        if not result.stdout:
            raise SigningProcessFailed("gpg produced no output")
        return result.stdout

    def sign_detached(self, data: bytes) -> bytes:
        logger.debug(f"Creating detached signature with {self.key_id}")
        return self._run(["--armor", "--detach-sign"], data)

    def clearsign(self, data: bytes) -> bytes:
        logger.debug(f"Creating inline signature with {self.key_id}")
        return self._run(["--clearsign"], data)
