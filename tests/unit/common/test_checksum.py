"""Tests for checksum computation and verification."""

import hashlib
import io

import pytest

from debrepo.common.checksum import (
    CHUNK_SIZE,
    Checksum,
    Hasher,
    compare,
    digest,
    digest_bytes,
    digest_file,
    verify,
    verify_file,
)
from debrepo.common.errors import ChecksumMismatch, ErrorClass


class TestDigest:
    """Tests for single-pass digests."""

    def test_digest_bytes_all_algorithms(self):
        """Every default algorithm is computed along with the size."""
        data = b"hello world"
        result = digest_bytes(data)

        assert result.size == len(data)
        assert result.digests["md5"] == hashlib.md5(data).hexdigest()
        assert result.digests["sha1"] == hashlib.sha1(data).hexdigest()
        assert result.sha256 == hashlib.sha256(data).hexdigest()
        assert result.digests["sha512"] == hashlib.sha512(data).hexdigest()

    def test_sha256_always_included(self):
        """sha256 is added even when not requested."""
        result = digest_bytes(b"abc", ["md5"])
        assert set(result.digests) == {"md5", "sha256"}

    def test_stream_larger_than_chunk(self):
        """Streams spanning several chunks hash the same as in-memory data."""
        data = b"x" * (CHUNK_SIZE * 2 + 17)
        result = digest(io.BytesIO(data), ["sha256"])
        assert result.size == len(data)
        assert result.sha256 == hashlib.sha256(data).hexdigest()

    def test_empty_input(self):
        """Empty input has size zero and the empty-string digest."""
        result = digest(io.BytesIO(b""))
        assert result.size == 0
        assert result.sha256 == hashlib.sha256(b"").hexdigest()

    def test_digest_file(self, tmp_path):
        """Files are digested from disk."""
        path = tmp_path / "data.bin"
        path.write_bytes(b"package data")
        assert digest_file(path).sha256 == hashlib.sha256(b"package data").hexdigest()

    def test_unsupported_algorithm(self):
        """Unknown algorithms are rejected."""
        with pytest.raises(ValueError):
            Hasher(["crc32"])

    def test_incremental_hasher(self):
        """Feeding chunks is equivalent to hashing the whole buffer."""
        hasher = Hasher(["sha256"])
        hasher.update(b"foo")
        hasher.update(b"bar")
        result = hasher.result()
        assert result.size == 6
        assert result.sha256 == hashlib.sha256(b"foobar").hexdigest()


class TestVerify:
    """Tests for checksum verification."""

    def test_verify_success(self):
        """Matching digests return the computed checksum."""
        data = b"content"
        expected = {"sha256": hashlib.sha256(data).hexdigest()}
        result = verify(io.BytesIO(data), expected)
        assert result.size == len(data)

    def test_verify_is_case_insensitive(self):
        """Upper-case hex digests are accepted."""
        data = b"content"
        expected = {"sha256": hashlib.sha256(data).hexdigest().upper()}
        verify(io.BytesIO(data), expected)

    def test_verify_mismatch(self):
        """A differing digest raises ChecksumMismatch with both values."""
        with pytest.raises(ChecksumMismatch) as exc_info:
            verify(io.BytesIO(b"content"), {"sha256": "0" * 64}, item="pkg.deb")

        err = exc_info.value
        assert err.algorithm == "sha256"
        assert err.expected == "0" * 64
        assert err.item == "pkg.deb"
        assert err.error_class is ErrorClass.INTEGRITY

    def test_verify_file_mismatch(self, tmp_path):
        """File verification reports the path."""
        path = tmp_path / "a.deb"
        path.write_bytes(b"abc")
        with pytest.raises(ChecksumMismatch) as exc_info:
            verify_file(path, {"md5": "f" * 32})
        assert str(path) in str(exc_info.value)

    def test_compare_checks_every_present_algorithm(self):
        """A correct sha256 does not hide a wrong md5."""
        actual = digest_bytes(b"abc")
        expected = {"sha256": actual.sha256, "md5": "0" * 32}
        with pytest.raises(ChecksumMismatch) as exc_info:
            compare(actual, expected)
        assert exc_info.value.algorithm == "md5"

    def test_compare_without_supported_algorithm(self):
        """Expectations in unknown algorithms cannot be verified."""
        actual = Checksum(size=3, digests={"sha256": "a" * 64})
        with pytest.raises(ValueError):
            compare(actual, {"blake2": "abc"})
