"""Data models for the S3 APT repository publisher."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum

from debian.debian_support import Version

from src.errors import MalformedMetadata

# Fields computed by the publisher; values from the control file are discarded.
COMPUTED_FIELDS = ("Filename", "Size", "MD5sum", "SHA1", "SHA256")

# Fields modelled explicitly on PackageRecord.
MODELLED_FIELDS = (
    "Package",
    "Version",
    "Architecture",
    "Maintainer",
    "Depends",
    "Description",
) + COMPUTED_FIELDS

# Identity fields; a continuation line here would not round-trip cleanly.
SINGLE_LINE_FIELDS = ("Package", "Version", "Architecture")


class Visibility(Enum):
    """Access policy applied to every object written by a publish."""

    PUBLIC = "public"
    PRIVATE = "private"
    AUTHENTICATED = "authenticated"

    @property
    def acl(self) -> str:
        """S3 canned ACL for this visibility."""
        return {
            Visibility.PUBLIC: "public-read",
            Visibility.PRIVATE: "private",
            Visibility.AUTHENTICATED: "authenticated-read",
        }[self]

    @classmethod
    def parse(cls, value: "str | Visibility") -> "Visibility":
        """Parse a visibility name, raising ValueError for unknown names."""
        if isinstance(value, Visibility):
            return value
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(
                f"Invalid visibility setting {value!r}. "
                "Can be public, private, or authenticated."
            ) from None


@dataclass(frozen=True)
class DigestSet:
    """Digests of a payload, in the strengths APT index files expect."""

    md5: str
    sha1: str
    sha256: str


@dataclass(frozen=True)
class PackageRecord:
    """One binary package entry of a Packages index.

    Attributes:
        name: Package name (``Package`` field)
        architecture: Debian architecture (``Architecture`` field)
        version: Debian version string, or None if the stanza has none
        maintainer: ``Maintainer`` field
        description: ``Description`` field, continuation lines included verbatim
        depends: Dependency expressions from ``Depends``, kept as opaque strings
        filename: Path of the payload relative to the repository root
        size: Payload size in bytes
        digests: MD5/SHA1/SHA256 of the payload
        extra_fields: Every other control field, in original order
    """

    name: str
    architecture: str
    version: str | None = None
    maintainer: str | None = None
    description: str | None = None
    depends: tuple[str, ...] = ()
    filename: str | None = None
    size: int | None = None
    digests: DigestSet | None = None
    extra_fields: tuple[tuple[str, str], ...] = field(default=())

    @property
    def key(self) -> tuple[str, str]:
        """Identity key of the record within a Manifest."""
        return (self.name, self.architecture)

    @property
    def debian_version(self) -> Version:
        """Version object implementing Debian version ordering."""
        return Version(self.version or "0")

    @classmethod
    def build(
        cls,
        metadata: Mapping[str, str],
        digests: DigestSet,
        filename: str,
        size: int,
    ) -> "PackageRecord":
        """Create a record from control metadata and computed payload facts.

        Args:
            metadata: Control fields of the package, e.g. a Deb822 paragraph
            digests: Digests of the payload
            filename: Repository-relative path the payload is stored under
            size: Payload size in bytes

        Returns:
            The new PackageRecord

        Raises:
            MalformedMetadata: If ``Package`` or ``Architecture`` is missing
                or a value cannot be written back as a Packages field
        """
        fields = check_metadata(metadata)
        version = _optional(fields.get("Version"))

        extras = tuple(
            (name, value)
            for name, value in fields.items()
            if name not in MODELLED_FIELDS
        )

        return cls(
            name=fields["Package"].strip(),
            architecture=fields["Architecture"].strip(),
            version=version,
            maintainer=_optional(fields.get("Maintainer")),
            description=fields.get("Description"),
            depends=split_depends(fields.get("Depends")),
            filename=filename,
            size=size,
            digests=digests,
            extra_fields=extras,
        )


def check_metadata(metadata: Mapping[str, str]) -> dict[str, str]:
    """Validate control metadata, returning it with canonical field names.

    Raises:
        MalformedMetadata: If ``Package`` or ``Architecture`` is missing
            or a value cannot be written back as a Packages field
    """
    fields = _normalize_fields(metadata)
    for required in ("Package", "Architecture"):
        if not fields.get(required, "").strip():
            raise MalformedMetadata(
                f"Package metadata is missing required field {required}",
                field=required,
            )
    for name, value in fields.items():
        if name not in COMPUTED_FIELDS:
            _check_field(name, value)

    version = _optional(fields.get("Version"))
    if version is not None:
        try:
            Version(version)
        except ValueError:
            raise MalformedMetadata(
                f"Invalid Debian version {version!r}", field="Version"
            ) from None
    return fields


def split_depends(value: str | None) -> tuple[str, ...]:
    """Split a ``Depends`` value into its comma separated expressions."""
    if not value:
        return ()
    return tuple(part.strip() for part in value.split(",") if part.strip())


def _normalize_fields(metadata: Mapping[str, str]) -> dict[str, str]:
    """Map field names onto canonical capitalization, keeping order.

    Control field names are case-insensitive; the canonical spelling of
    modelled fields is used so lookups do not depend on the source's casing.
    """
    canonical = {name.lower(): name for name in MODELLED_FIELDS}
    normalized: dict[str, str] = {}
    for name, value in metadata.items():
        normalized[canonical.get(name.lower(), name)] = str(value).rstrip("\n")
    return normalized


def _check_field(name: str, value: str) -> None:
    """Reject a field that would not survive as a single Packages stanza entry.

    Continuation lines must be indented and non-blank; a blank line inside a
    description is written as `` .`` in control files.
    """
    if not name or name[0] in "#-" or ":" in name or any(c.isspace() for c in name):
        raise MalformedMetadata(f"Invalid control field name {name!r}", field=name)
    if name in SINGLE_LINE_FIELDS and "\n" in value.strip():
        raise MalformedMetadata(f"{name} must be a single line", field=name)

    for line in value.split("\n")[1:]:
        if not line.startswith((" ", "\t")):
            raise MalformedMetadata(
                f"Continuation line of {name} is not indented: {line!r}", field=name
            )
        if not line.strip():
            raise MalformedMetadata(
                f"Blank continuation line in {name}; use ' .' for empty lines",
                field=name,
            )


def _optional(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


@dataclass(frozen=True)
class LockToken:
    """Contents of the lock object guarding one Packages index."""

    owner: str
    acquired_at: float


@dataclass
class PublishResult:
    """Outcome of a successful publish."""

    codename: str
    component: str
    architecture: str
    record: PackageRecord
    replaced: PackageRecord | None
    written_keys: list[str] = field(default_factory=list)
