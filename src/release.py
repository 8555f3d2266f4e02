"""Release index aggregation for a repository codename."""

import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime

from debian.deb822 import Deb822

from src.checksums import digest_bytes
from src.errors import CorruptIndex, IncompleteAggregate
from src.models import DigestSet

logger = logging.getLogger(__name__)

DIGEST_FIELDS = (("MD5Sum", "md5"), ("SHA1", "sha1"), ("SHA256", "sha256"))

INDEX_PATH_PATTERN = re.compile(
    r"^(?P<component>[^/\s]+)/binary-(?P<architecture>[^/\s]+)/Packages(?:\.gz)?$"
)


def release_key(codename: str) -> str:
    """Object key of the Release file of a codename."""
    return f"dists/{codename}/Release"


@dataclass(frozen=True)
class IndexFiles:
    """Stored bytes of one component/architecture's Packages index."""

    packages: bytes | None
    packages_gz: bytes | None = None


@dataclass(frozen=True)
class ReleaseEntry:
    """One index file listed in a Release file."""

    path: str
    size: int
    digests: DigestSet


@dataclass(frozen=True)
class ReleaseIndex:
    """Top-level summary of every Packages index published under a codename."""

    codename: str
    date: datetime
    components: tuple[str, ...]
    architectures: tuple[str, ...]
    entries: tuple[ReleaseEntry, ...]
    origin: str | None = None
    label: str | None = None
    suite: str | None = None
    description: str | None = None

    @property
    def key(self) -> str:
        return release_key(self.codename)

    def serialize(self) -> str:
        """Render the Release file text with a fixed field and line order."""
        header = [
            ("Origin", self.origin),
            ("Label", self.label),
            ("Suite", self.suite),
            ("Codename", self.codename),
            ("Date", self.date.strftime("%a, %d %b %Y %H:%M:%S UTC")),
            ("Architectures", " ".join(self.architectures)),
            ("Components", " ".join(self.components)),
            ("Description", self.description),
        ]
        lines = [f"{name}: {value}" for name, value in header if value]

        for field_name, attr in DIGEST_FIELDS:
            lines.append(f"{field_name}:")
            for entry in self.entries:
                lines.append(
                    f" {getattr(entry.digests, attr)} {entry.size:>16} {entry.path}"
                )

        return "\n".join(lines) + "\n"


def build(
    codename: str,
    index_files: Mapping[tuple[str, str], IndexFiles],
    known_pairs: Iterable[tuple[str, str]],
    date: datetime | None = None,
    origin: str | None = None,
    label: str | None = None,
    suite: str | None = None,
    description: str | None = None,
) -> ReleaseIndex:
    """Build the Release index of a codename from already-fetched index bytes.

    Args:
        codename: Distribution codename
        index_files: Stored bytes per (component, architecture)
        known_pairs: Every (component, architecture) published under the codename
        date: Release date, defaults to now (UTC)
        origin: Optional ``Origin`` field
        label: Optional ``Label`` field
        suite: Optional ``Suite`` field
        description: Optional ``Description`` field

    Returns:
        ReleaseIndex listing every known index file

    Raises:
        IncompleteAggregate: If a known pair has no Packages bytes
    """
    pairs = sorted(set(known_pairs))
    missing = [
        pair
        for pair in pairs
        if pair not in index_files or index_files[pair].packages is None
    ]
    if missing:
        raise IncompleteAggregate(
            f"Missing Packages index for {', '.join('/'.join(p) for p in missing)} "
            f"in {codename}",
            missing=missing,
        )

    entries = []
    for component, architecture in pairs:
        files = index_files[(component, architecture)]
        base = f"{component}/binary-{architecture}/Packages"
        entries.append(_entry(base, files.packages))
        if files.packages_gz is not None:
            entries.append(_entry(f"{base}.gz", files.packages_gz))

    logger.debug(f"Aggregated {len(entries)} index files for {codename}")

    return ReleaseIndex(
        codename=codename,
        date=date or datetime.now(UTC),
        components=tuple(sorted({component for component, _ in pairs})),
        architectures=tuple(sorted({architecture for _, architecture in pairs})),
        entries=tuple(sorted(entries, key=lambda e: e.path)),
        origin=origin,
        label=label,
        suite=suite,
        description=description,
    )


def _entry(path: str, data: bytes) -> ReleaseEntry:
    return ReleaseEntry(path=path, size=len(data), digests=digest_bytes(data))


def known_pairs_from_release(text: str | None, key: str | None = None) -> set[tuple[str, str]]:
    """Return the (component, architecture) pairs an existing Release lists.

    Raises:
        CorruptIndex: If a checksum line is not ``<digest> <size> <path>``
    """
    pairs: set[tuple[str, str]] = set()
    if not text:
        return pairs

    paragraphs = list(
        Deb822.iter_paragraphs(text.splitlines(), use_apt_pkg=False)
    )
    if not paragraphs:
        raise CorruptIndex("Release file has no fields", key=key)

    release = paragraphs[0]
    for field_name, _ in DIGEST_FIELDS:
        for line in release.get(field_name, "").splitlines():
            if not line.strip():
                continue
            parts = line.split()
            if len(parts) != 3 or not parts[1].isdigit():
                raise CorruptIndex(f"Malformed {field_name} line: {line!r}", key=key)
            match = INDEX_PATH_PATTERN.match(parts[2])
            if match:
                pairs.add((match.group("component"), match.group("architecture")))

    return pairs
