"""Exceptions raised while publishing packages to the S3 APT repository."""


class PublishError(Exception):
    """Base class for every error that aborts a publish attempt."""


class MalformedMetadata(PublishError):
    """Package control metadata is missing a required identity field."""

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class CorruptIndex(PublishError):
    """A stored Packages or Release file could not be parsed."""

    def __init__(self, message: str, key: str | None = None):
        self.key = key
        super().__init__(message)


class IOFailure(PublishError):
    """Reading a payload or talking to the object store failed."""

    def __init__(self, message: str, key: str | None = None):
        self.key = key
        super().__init__(message)


class LockTimeout(PublishError):
    """The repository lock could not be acquired within the allowed wait."""

    def __init__(self, message: str, key: str, holder: str | None = None):
        self.key = key
        self.holder = holder
        super().__init__(message)


class IncompleteAggregate(PublishError):
    """A known index file was not supplied when building the Release file."""

    def __init__(self, message: str, missing: list[tuple[str, str]]):
        self.missing = missing
        super().__init__(message)
