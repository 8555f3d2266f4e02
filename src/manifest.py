"""Packages index (manifest) for one codename, component and architecture."""

import gzip
import logging
from dataclasses import dataclass, replace

from debian.deb822 import Deb822
from debian.debian_support import Version

from src.errors import CorruptIndex
from src.models import DigestSet, PackageRecord, split_depends

logger = logging.getLogger(__name__)


def packages_key(codename: str, component: str, architecture: str) -> str:
    """Object key of the Packages index for a codename/component/architecture."""
    return f"dists/{codename}/{component}/binary-{architecture}/Packages"


@dataclass(frozen=True)
class Manifest:
    """The set of package records published for one component/architecture.

    Records are kept sorted by identity key (name, architecture) and no two
    records share a key.
    """

    codename: str
    component: str
    architecture: str
    records: tuple[PackageRecord, ...] = ()

    @property
    def key(self) -> str:
        return packages_key(self.codename, self.component, self.architecture)

    @property
    def gzip_key(self) -> str:
        return f"{self.key}.gz"

    @property
    def relative_path(self) -> str:
        """Path of the index relative to ``dists/<codename>/``."""
        return f"{self.component}/binary-{self.architecture}/Packages"

    def find(self, name: str, architecture: str) -> PackageRecord | None:
        """Return the record with the given identity key, if any."""
        for record in self.records:
            if record.key == (name, architecture):
                return record
        return None

    def merge(self, record: PackageRecord) -> "Manifest":
        """Return a new Manifest with ``record`` added or replacing its key."""
        records = {existing.key: existing for existing in self.records}
        records[record.key] = record
        ordered = tuple(records[key] for key in sorted(records))
        return replace(self, records=ordered)

    def serialize(self) -> str:
        """Render the Packages index text.

        Two Manifests holding the same records always render to identical
        text, whatever order the records were merged in.
        """
        return "\n".join(serialize_record(record) for record in self.records)

    @classmethod
    def parse(
        cls, text: str | None, codename: str, component: str, architecture: str
    ) -> "Manifest":
        """Parse Packages index text into a Manifest.

        Args:
            text: Index text; None or empty yields an empty Manifest
            codename: Distribution codename the index belongs to
            component: Repository component (section)
            architecture: Architecture of the ``binary-<arch>`` directory

        Returns:
            Manifest holding one record per stanza

        Raises:
            CorruptIndex: If a stanza lacks Package/Architecture or has a bad
                Size or Version
        """
        key = packages_key(codename, component, architecture)
        records: dict[tuple[str, str], PackageRecord] = {}

        for stanza in iter_stanzas(text or ""):
            record = parse_record(stanza, key)
            if record.key in records:
                logger.warning(
                    f"Duplicate entry for {record.name}/{record.architecture} in {key}, "
                    "keeping the last one"
                )
            records[record.key] = record

        ordered = tuple(records[k] for k in sorted(records))
        return cls(codename, component, architecture, ordered)


def compress(text: str) -> bytes:
    """Gzip index text reproducibly for the ``Packages.gz`` companion file."""
    return gzip.compress(text.encode("utf-8"), mtime=0)


def iter_stanzas(text: str):
    """Yield each blank-line separated stanza as an ordered field list."""
    for paragraph in Deb822.iter_paragraphs(
        text.splitlines(), use_apt_pkg=False
    ):
        if not paragraph:
            continue
        yield [(name, _clean_value(value)) for name, value in paragraph.items()]


def _clean_value(value: str) -> str:
    first, *continuation = value.split("\n")
    lines = [first.rstrip()] + [line.rstrip() for line in continuation if line.strip()]
    return "\n".join(lines)


def parse_record(stanza: list[tuple[str, str]], key: str) -> PackageRecord:
    """Build a PackageRecord from one parsed stanza of a stored index."""
    fields = {name.lower(): (name, value) for name, value in stanza}

    def take(name: str) -> str | None:
        entry = fields.pop(name.lower(), None)
        return entry[1] if entry else None

    name = take("Package")
    architecture = take("Architecture")
    if not name or not architecture:
        raise CorruptIndex(
            f"Stanza without Package/Architecture in {key}: {stanza[:2]}", key=key
        )

    size_text = take("Size")
    try:
        size = int(size_text) if size_text is not None else None
    except ValueError:
        raise CorruptIndex(
            f"Invalid Size {size_text!r} for {name} in {key}", key=key
        ) from None

    version = take("Version")
    if version is not None:
        try:
            Version(version)
        except ValueError:
            raise CorruptIndex(
                f"Invalid version {version!r} for {name} in {key}", key=key
            ) from None

    md5, sha1, sha256 = take("MD5sum"), take("SHA1"), take("SHA256")
    digests = None
    if md5 is not None or sha1 is not None or sha256 is not None:
        digests = DigestSet(md5=md5 or "", sha1=sha1 or "", sha256=sha256 or "")

    record = PackageRecord(
        name=name,
        architecture=architecture,
        version=version,
        maintainer=take("Maintainer"),
        description=take("Description"),
        depends=split_depends(take("Depends")),
        filename=take("Filename"),
        size=size,
        digests=digests,
    )
    # Everything left over is carried through untouched
    extras = tuple(fields[n.lower()] for n, _ in stanza if n.lower() in fields)
    return replace(record, extra_fields=extras)


def serialize_record(record: PackageRecord) -> str:
    """Render one record as a stanza in canonical field order."""
    lines: list[str] = []

    def emit(name: str, value: str | int | None, keep_empty: bool = False) -> None:
        if value is None or (value == "" and not keep_empty):
            return
        value = str(value)
        if not value or value.startswith("\n"):
            lines.append(f"{name}:{value}")
        else:
            lines.append(f"{name}: {value}")

    emit("Package", record.name)
    emit("Version", record.version)
    emit("Architecture", record.architecture)
    emit("Maintainer", record.maintainer)
    emit("Depends", ", ".join(record.depends))
    for name, value in record.extra_fields:
        emit(name, value, keep_empty=True)
    emit("Filename", record.filename)
    emit("Size", record.size)
    if record.digests is not None:
        emit("MD5sum", record.digests.md5)
        emit("SHA1", record.digests.sha1)
        emit("SHA256", record.digests.sha256)
    emit("Description", record.description)

    return "\n".join(lines) + "\n"
