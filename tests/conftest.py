"""Pytest configuration and shared fixtures."""

import gzip
import io
import tarfile
from pathlib import Path
from typing import Dict, Optional

import pytest


def create_ar_member(name: str, content: bytes) -> bytes:
    """Create an ar archive member."""
    name_padded = name.ljust(16)
    timestamp = "0".ljust(12)
    owner = "0".ljust(6)
    group = "0".ljust(6)
    mode = "100644".ljust(8)
    size_str = str(len(content)).ljust(10)
    header = f"{name_padded}{timestamp}{owner}{group}{mode}{size_str}`\n".encode()
    result = header + content
    if len(content) % 2:
        result += b"\n"  # Padding for even alignment
    return result


def create_tar_gz(files: Dict[str, str]) -> bytes:
    """Create a tar.gz archive with the given files; identical input gives identical bytes."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as tf:
        for name, content in files.items():
            info = tarfile.TarInfo(name=name)
            data = content.encode() if isinstance(content, str) else content
            info.size = len(data)
            tf.addfile(info, io.BytesIO(data))
    return gzip.compress(buffer.getvalue(), mtime=0)


def create_deb_package(
    name: str,
    version: str,
    arch: str = "amd64",
    extra_fields: Optional[Dict[str, str]] = None,
    description: Optional[str] = None,
    control: Optional[str] = None,
) -> bytes:
    """Create a minimal valid .deb package."""
    if control is None:
        lines = [
            f"Package: {name}",
            f"Version: {version}",
            f"Architecture: {arch}",
            "Maintainer: Test <test@example.com>",
        ]
        for key, value in (extra_fields or {}).items():
            lines.append(f"{key}: {value}")
        lines.append(f"Description: {description or f'Test package {name}'}")
        lines.append(" This is a test package.")
        control = "\n".join(lines) + "\n"

    result = b"!<arch>\n"
    result += create_ar_member("debian-binary", b"2.0\n")
    result += create_ar_member("control.tar.gz", create_tar_gz({"./control": control}))
    result += create_ar_member(
        "data.tar.gz", create_tar_gz({f"./usr/share/doc/{name}/README": "Test file\n"})
    )
    return result


@pytest.fixture
def deb_bytes():
    """Factory returning the bytes of a generated .deb."""
    return create_deb_package


@pytest.fixture
def make_deb(tmp_path):
    """Factory writing a generated .deb and returning its path."""

    def _make(
        name: str = "hello",
        version: str = "1.0-1",
        arch: str = "amd64",
        directory: Optional[Path] = None,
        filename: Optional[str] = None,
        **kwargs,
    ) -> Path:
        directory = directory or tmp_path / "debs"
        directory.mkdir(parents=True, exist_ok=True)
        filename = filename or f"{name}_{version.split(':')[-1]}_{arch}.deb"
        path = directory / filename
        path.write_bytes(create_deb_package(name, version, arch, **kwargs))
        return path

    return _make


@pytest.fixture
def sample_config(tmp_path):
    """Sample configuration dictionary for a repository under tmp_path."""
    return {
        "repository": {
            "root": str(tmp_path / "repo"),
            "origin": "Example",
            "label": "Example",
            "suite": "stable",
            "codename": "bookworm",
            "description": "Example packages",
            "architectures": ["amd64", "arm64"],
            "components": {
                "main": {"sources": []},
            },
        },
        "retention": {"versions": 3, "snapshots": 2},
        "fetch": {"max_retries": 2, "backoff": 0.01, "max_backoff": 0.05},
        "signing": {"policy": "warn"},
        "index": {"compression": ["gz", "xz"], "hashes": ["md5", "sha256"]},
        "workers": 4,
        "logging": {"level": "DEBUG"},
    }
