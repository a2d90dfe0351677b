"""Tests for gpg signing."""

import subprocess
import threading
from unittest.mock import patch

import pytest

from debrepo.common.errors import KeyUnavailable, SigningProcessFailed
from debrepo.repos.signing import GpgSigner


def result(returncode=0, stdout=b"SIGNATURE", stderr=b""):
    return subprocess.CompletedProcess([], returncode, stdout=stdout, stderr=stderr)


class TestGpgSigner:
    """Tests for GpgSigner."""

    def test_requires_key(self):
        """A signer without a key is unusable."""
        with pytest.raises(KeyUnavailable):
            GpgSigner("")

    @patch("subprocess.run")
    def test_detached_signature(self, mock_run):
        """Detached signatures are armored and use the configured key."""
        mock_run.return_value = result(stdout=b"-----BEGIN PGP SIGNATURE-----")
        signer = GpgSigner("ABCDEF12", homedir="/keys", timeout=30)

        signature = signer.sign_detached(b"Release contents")

        assert signature.startswith(b"-----BEGIN PGP SIGNATURE")
        cmd = mock_run.call_args[0][0]
        assert cmd[0] == "gpg"
        assert "--batch" in cmd
        assert cmd[cmd.index("--homedir") + 1] == "/keys"
        assert cmd[cmd.index("--local-user") + 1] == "ABCDEF12"
        assert cmd[-2:] == ["--armor", "--detach-sign"]
        assert mock_run.call_args.kwargs["input"] == b"Release contents"
        assert mock_run.call_args.kwargs["timeout"] == 30

    @patch("subprocess.run")
    def test_clearsign(self, mock_run):
        mock_run.return_value = result(stdout=b"-----BEGIN PGP SIGNED MESSAGE-----")
        GpgSigner("ABCDEF12").clearsign(b"data")
        assert mock_run.call_args[0][0][-1] == "--clearsign"

    @patch("subprocess.run")
    def test_missing_secret_key(self, mock_run):
        """gpg reporting no secret key maps to KeyUnavailable."""
        mock_run.return_value = result(
            returncode=2, stdout=b"", stderr=b"gpg: signing failed: No secret key"
        )
        with pytest.raises(KeyUnavailable):
            GpgSigner("ABCDEF12").sign_detached(b"data")

    @patch("subprocess.run")
    def test_other_failure(self, mock_run):
        """Other gpg failures are process failures."""
        mock_run.return_value = result(returncode=2, stdout=b"", stderr=b"gpg: agent died")
        with pytest.raises(SigningProcessFailed, match="agent died"):
            GpgSigner("ABCDEF12").sign_detached(b"data")

    @patch("subprocess.run")
    def test_timeout(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired("gpg", 60)
        with pytest.raises(SigningProcessFailed, match="timed out"):
            GpgSigner("ABCDEF12").clearsign(b"data")

    @patch("subprocess.run")
    def test_gpg_missing(self, mock_run):
        mock_run.side_effect = FileNotFoundError("gpg")
        with pytest.raises(SigningProcessFailed, match="not found"):
            GpgSigner("ABCDEF12", gpg="/opt/gpg").sign_detached(b"data")

    @patch("subprocess.run")
    def test_empty_output(self, mock_run):
        mock_run.return_value = result(stdout=b"")
        with pytest.raises(SigningProcessFailed):
            GpgSigner("ABCDEF12").sign_detached(b"data")

    @patch("subprocess.run")
    def test_cancelled_run_starts_no_gpg(self, mock_run):
        """A set cancel event stops signing before gpg is started."""
        event = threading.Event()
        event.set()
        with pytest.raises(SigningProcessFailed, match="cancelled"):
            GpgSigner("ABCDEF12", cancel_event=event).clearsign(b"data")
        mock_run.assert_not_called()
