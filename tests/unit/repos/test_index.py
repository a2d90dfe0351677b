"""Tests for Packages index generation."""

import bz2
import gzip
import lzma
from datetime import datetime, timezone

import pytest

from debrepo.common.checksum import digest_bytes
from debrepo.formats.base import PackageRecord
from debrepo.repos.base import RepositoryMetadata
from debrepo.repos.index import (
    ComponentIndex,
    IndexBuilder,
    format_field,
    read_packages_index,
)
from debrepo.repos.pool import PoolEntry, pool_path

METADATA = RepositoryMetadata(
    suite="stable",
    codename="bookworm",
    architectures=["amd64"],
    components=["main"],
    date=datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
    origin="Example",
    label="Example Repo",
)


def entry(name, version, arch="amd64", extra=(), payload=None):
    data = payload or f"{name}-{version}-{arch}".encode()
    control = (
        ("Package", name),
        ("Version", version),
        ("Architecture", arch),
        ("Maintainer", "Test <test@example.com>"),
    ) + tuple(extra) + (("Description", "short\n long text\n .\n more"),)
    record = PackageRecord(
        name=name,
        version=version,
        architecture=arch,
        component="main",
        checksum=digest_bytes(data),
        control=control,
    )
    return PoolEntry(path=pool_path(record), record=record)


class TestFormatField:
    """Tests for control field rendering."""

    def test_single_line(self):
        assert format_field("Package", "foo") == "Package: foo"

    def test_continuation_lines(self):
        """Continuation lines are indented and blank lines become dots."""
        rendered = format_field("Description", "summary\nfirst\n\n  indented")
        assert rendered == "Description: summary\n first\n .\n  indented"

    def test_empty_first_line(self):
        assert format_field("Conffiles", "\n /etc/foo abc") == "Conffiles:\n /etc/foo abc"


class TestIndexBuilder:
    """Tests for IndexBuilder."""

    def setup_method(self):
        """Set up test fixtures."""
        self.builder = IndexBuilder(METADATA, compression=["gz", "xz"], hashes=["md5", "sha256"])

    def test_stanza_field_order(self):
        """Known fields follow APT's order; unknown fields come last, alphabetically."""
        e = entry("foo", "1.0", extra=[("X-Custom", "1"), ("Homepage", "https://x"), ("Depends", "libc6")])
        stanza = self.builder.render_stanza(e)
        names = [line.split(":", 1)[0] for line in stanza.splitlines() if not line.startswith(" ")]

        assert names == [
            "Package",
            "Maintainer",
            "Architecture",
            "Version",
            "Depends",
            "Filename",
            "Size",
            "MD5sum",
            "SHA256",
            "Description",
            "Homepage",
            "X-Custom",
        ]

    def test_stanza_values(self):
        """Generated fields come from the pool entry."""
        e = entry("foo", "1.0")
        stanza = self.builder.render_stanza(e)

        assert f"Filename: {e.path}\n" in stanza
        assert f"Size: {e.record.size}\n" in stanza
        assert f"SHA256: {e.record.sha256}\n" in stanza
        assert "SHA512" not in stanza
        assert stanza.endswith("\n")

    def test_sorted_stanzas(self):
        """Stanzas are ordered by name then Debian version."""
        index = ComponentIndex("main", "amd64", [
            entry("zeta", "1.0"), entry("alpha", "1.10"), entry("alpha", "1.9"),
        ])
        text = self.builder.render_packages(index).decode()
        packages = [
            (line.split(": ")[1])
            for line in text.splitlines()
            if line.startswith(("Package:", "Version:"))
        ]
        assert packages == ["alpha", "1.9", "alpha", "1.10", "zeta", "1.0"]
        assert "\n\nPackage: alpha" in text

    def test_order_independent_of_input(self):
        """Identical entry sets render identical bytes regardless of order."""
        entries = [entry("a", "1"), entry("b", "2"), entry("c", "3")]
        first = self.builder.build(ComponentIndex("main", "amd64", entries))
        second = self.builder.build(ComponentIndex("main", "amd64", list(reversed(entries))))
        assert [a.data for a in first] == [a.data for a in second]

    def test_artifacts(self):
        """Plain, compressed and Release artifacts are produced with checksums."""
        index = ComponentIndex("main", "amd64", [entry("foo", "1.0")])
        artifacts = {a.path: a for a in self.builder.build(index)}

        assert set(artifacts) == {
            "main/binary-amd64/Packages",
            "main/binary-amd64/Packages.gz",
            "main/binary-amd64/Packages.xz",
            "main/binary-amd64/Release",
        }
        plain = artifacts["main/binary-amd64/Packages"].data
        assert gzip.decompress(artifacts["main/binary-amd64/Packages.gz"].data) == plain
        assert lzma.decompress(artifacts["main/binary-amd64/Packages.xz"].data) == plain
        for artifact in artifacts.values():
            assert artifact.checksum == digest_bytes(artifact.data)

    def test_gzip_is_reproducible(self):
        """Compressed output carries no timestamp."""
        index = ComponentIndex("main", "amd64", [entry("foo", "1.0")])
        first = self.builder.build(index)
        second = self.builder.build(index)
        assert [a.checksum.sha256 for a in first] == [a.checksum.sha256 for a in second]

    def test_bz2(self):
        builder = IndexBuilder(METADATA, compression=["bz2"])
        artifacts = {a.path: a for a in builder.build(ComponentIndex("main", "amd64", [entry("x", "1")]))}
        data = artifacts["main/binary-amd64/Packages.bz2"].data
        assert bz2.decompress(data) == artifacts["main/binary-amd64/Packages"].data

    def test_directory_release(self):
        """Each binary directory has its own small Release file."""
        index = ComponentIndex("main", "amd64", [])
        release = {a.path: a for a in self.builder.build(index)}["main/binary-amd64/Release"]
        assert release.data.decode() == (
            "Archive: stable\n"
            "Component: main\n"
            "Origin: Example\n"
            "Label: Example Repo\n"
            "Architecture: amd64\n"
        )

    def test_empty_index(self):
        """An empty index is an empty Packages file."""
        artifacts = {a.path: a for a in self.builder.build(ComponentIndex("main", "amd64", []))}
        assert artifacts["main/binary-amd64/Packages"].data == b""

    def test_unknown_compression(self):
        with pytest.raises(ValueError):
            IndexBuilder(METADATA, compression=["zstd"])


class TestReadPackagesIndex:
    """Tests for parsing Packages files back."""

    def test_round_trip_identity(self, tmp_path):
        """Rendered stanzas parse back to the same identity and checksums."""
        builder = IndexBuilder(METADATA, hashes=["md5", "sha1", "sha256", "sha512"])
        entries = [entry("foo", "1:1.0-1"), entry("bar", "2.0", arch="all")]
        path = tmp_path / "Packages"
        path.write_bytes(builder.render_packages(ComponentIndex("main", "amd64", entries)))

        records = {r.name: r for r in read_packages_index(path, "main")}

        assert records["foo"].version == "1:1.0-1"
        assert records["foo"].filename == entries[0].path
        assert records["foo"].checksum == entries[0].record.checksum
        assert records["bar"].architecture == "all"
        assert records["bar"].get("Filename") is None

    def test_stanza_without_sha256_skipped(self, tmp_path):
        path = tmp_path / "Packages"
        path.write_text("Package: old\nVersion: 1\nArchitecture: amd64\nFilename: pool/o.deb\n")
        assert list(read_packages_index(path, "main")) == []
