"""Shared fixtures: an in-memory object store and a controllable clock."""

import threading
from pathlib import Path

import pytest

from src.config_manager import LockConfig, RepositoryConfig
from src.errors import IOFailure
from src.models import DigestSet, PackageRecord, Visibility

EMPTY_DIGESTS = DigestSet(
    md5="d41d8cd98f00b204e9800998ecf8427e",
    sha1="da39a3ee5e6b4b0d3255bfef95601890afd80709",
    sha256="e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855",
)


class InMemoryObjectStore:
    """Thread-safe dict-backed store with the same interface as S3ObjectStore."""

    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.acls: dict[str, str] = {}
        self.content_types: dict[str, str] = {}
        self.writes: list[str] = []
        self.fail_puts: set[str] = set()
        self.fail_gets: set[str] = set()
        self._mutex = threading.Lock()

    def get(self, key):
        with self._mutex:
            if key in self.fail_gets:
                raise IOFailure(f"simulated read failure for {key}", key=key)
            return self.objects.get(key)

    def put(self, key, data, visibility=Visibility.PUBLIC, content_type="text/plain"):
        with self._mutex:
            if key in self.fail_puts:
                raise IOFailure(f"simulated write failure for {key}", key=key)
            self.objects[key] = bytes(data)
            self.acls[key] = visibility.acl
            self.content_types[key] = content_type
            self.writes.append(key)

    def put_file(
        self,
        key,
        file_path,
        visibility=Visibility.PUBLIC,
        content_type="application/vnd.debian.binary-package",
    ):
        self.put(key, Path(file_path).read_bytes(), visibility, content_type)

    def delete(self, key):
        with self._mutex:
            self.objects.pop(key, None)


class FakeClock:
    """Clock whose sleep advances time instantly."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start
        self.sleeps: list[float] = []

    def time(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def make_record(name: str, version: str = "1.0", architecture: str = "amd64", **kwargs):
    """Build a PackageRecord with plausible defaults for tests."""
    defaults = {
        "maintainer": "Repo Team <repo@example.com>",
        "description": f"{name} package",
        "filename": f"pool/main/{name[0]}/{name}/{name}_{version}_{architecture}.deb",
        "size": 1024,
        "digests": EMPTY_DIGESTS,
    }
    defaults.update(kwargs)
    return PackageRecord(name=name, version=version, architecture=architecture, **defaults)


def control(name: str, version: str = "1.0", architecture: str = "amd64", **extra):
    """Control metadata as the package reader would return it."""
    fields = {
        "Package": name,
        "Version": version,
        "Architecture": architecture,
        "Maintainer": "Repo Team <repo@example.com>",
        "Description": f"{name} package\n Longer description of {name}.",
    }
    fields.update(extra)
    return fields


@pytest.fixture
def store():
    return InMemoryObjectStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fast_lock_config():
    return LockConfig(
        stale_after=300.0, max_wait=1.0, settle=0.0, min_backoff=0.0, max_backoff=0.0
    )


@pytest.fixture
def repo_config(fast_lock_config):
    return RepositoryConfig(bucket="test-bucket", lock=fast_lock_config)


@pytest.fixture
def deb_file(tmp_path):
    """Factory writing a fake package payload and returning its path."""

    def _make(name: str, version: str = "1.0", content: bytes | None = None) -> Path:
        path = tmp_path / f"{name}_{version}.deb"
        path.write_bytes(content if content is not None else f"{name}-{version}".encode() * 64)
        return path

    return _make
