"""Unit tests for src/release.py."""

import hashlib
from datetime import UTC, datetime

import pytest

from src.errors import CorruptIndex, IncompleteAggregate
from src.release import IndexFiles, build, known_pairs_from_release, release_key

RELEASE_DATE = datetime(2024, 1, 15, 12, 0, 0, tzinfo=UTC)

AMD64 = b"Package: foo\nVersion: 1.0\nArchitecture: amd64\n"
I386 = b"Package: foo\nVersion: 1.0\nArchitecture: i386\n"


def checksum_lines(text: str, field_name: str) -> dict[str, tuple[str, int]]:
    """Map path -> (digest, size) for one checksum block of a Release file."""
    lines = text.split(f"{field_name}:\n", 1)[1].splitlines()
    result = {}
    for line in lines:
        if not line.startswith(" "):
            break
        digest, size, path = line.split()
        result[path] = (digest, int(size))
    return result


class TestBuild:
    def test_lists_every_known_pair(self):
        release = build(
            "stable",
            {
                ("main", "amd64"): IndexFiles(AMD64, b"gz-amd64"),
                ("main", "i386"): IndexFiles(I386),
            },
            [("main", "amd64"), ("main", "i386")],
            date=RELEASE_DATE,
        )
        assert [e.path for e in release.entries] == [
            "main/binary-amd64/Packages",
            "main/binary-amd64/Packages.gz",
            "main/binary-i386/Packages",
        ]
        assert release.architectures == ("amd64", "i386")
        assert release.components == ("main",)
        assert release.key == release_key("stable") == "dists/stable/Release"

    def test_digests_match_supplied_bytes(self):
        release = build(
            "stable", {("main", "amd64"): IndexFiles(AMD64)}, [("main", "amd64")]
        )
        entry = release.entries[0]
        assert entry.size == len(AMD64)
        assert entry.digests.md5 == hashlib.md5(AMD64).hexdigest()
        assert entry.digests.sha256 == hashlib.sha256(AMD64).hexdigest()

    def test_missing_known_pair_raises(self):
        with pytest.raises(IncompleteAggregate) as excinfo:
            build(
                "stable",
                {("main", "amd64"): IndexFiles(AMD64)},
                [("main", "amd64"), ("contrib", "amd64")],
            )
        assert excinfo.value.missing == [("contrib", "amd64")]

    def test_absent_packages_bytes_raise(self):
        with pytest.raises(IncompleteAggregate):
            build("stable", {("main", "amd64"): IndexFiles(None)}, [("main", "amd64")])


class TestSerialize:
    def make_release(self, **kwargs):
        return build(
            "stable",
            {
                ("main", "i386"): IndexFiles(I386),
                ("main", "amd64"): IndexFiles(AMD64, b"gz"),
                ("contrib", "amd64"): IndexFiles(b""),
            },
            [("main", "i386"), ("contrib", "amd64"), ("main", "amd64")],
            date=RELEASE_DATE,
            **kwargs,
        )

    def test_header_fields(self):
        text = self.make_release(origin="Example", label="Example").serialize()
        assert text.startswith(
            "Origin: Example\n"
            "Label: Example\n"
            "Codename: stable\n"
            "Date: Mon, 15 Jan 2024 12:00:00 UTC\n"
            "Architectures: amd64 i386\n"
            "Components: contrib main\n"
            "MD5Sum:\n"
        )

    def test_optional_fields_omitted(self):
        text = self.make_release().serialize()
        assert "Origin:" not in text
        assert "Label:" not in text
        assert text.startswith("Codename: stable\n")

    def test_checksum_blocks(self):
        text = self.make_release().serialize()
        for field_name in ("MD5Sum", "SHA1", "SHA256"):
            entries = checksum_lines(text, field_name)
            assert list(entries) == [
                "contrib/binary-amd64/Packages",
                "main/binary-amd64/Packages",
                "main/binary-amd64/Packages.gz",
                "main/binary-i386/Packages",
            ]
        assert checksum_lines(text, "SHA256")["main/binary-amd64/Packages"] == (
            hashlib.sha256(AMD64).hexdigest(),
            len(AMD64),
        )
        assert f" {hashlib.md5(b'').hexdigest()}                0 contrib" in text

    def test_serialization_is_deterministic(self):
        assert self.make_release().serialize() == self.make_release().serialize()


class TestKnownPairsFromRelease:
    def test_recovers_pairs_from_serialized_release(self):
        text = build(
            "stable",
            {
                ("main", "amd64"): IndexFiles(AMD64, b"gz"),
                ("contrib", "arm64"): IndexFiles(I386),
            },
            [("main", "amd64"), ("contrib", "arm64")],
            date=RELEASE_DATE,
        ).serialize()
        assert known_pairs_from_release(text) == {("main", "amd64"), ("contrib", "arm64")}

    @pytest.mark.parametrize("text", [None, ""])
    def test_no_release_means_no_pairs(self, text):
        assert known_pairs_from_release(text) == set()

    def test_ignores_non_package_indices(self):
        text = (
            "Codename: stable\n"
            "SHA256:\n"
            " abc 12 main/i18n/Translation-en\n"
            " def 34 main/binary-amd64/Packages\n"
        )
        assert known_pairs_from_release(text) == {("main", "amd64")}

    def test_malformed_checksum_line_raises(self):
        text = "Codename: stable\nSHA256:\n not-a-valid-line\n"
        with pytest.raises(CorruptIndex):
            known_pairs_from_release(text, key="dists/stable/Release")
