"""Publishes a package into the bucket-hosted APT repository.

A publish is a read-merge-write cycle performed under the repository lock:
the current Packages index is fetched, the new package is merged in, the
codename's Release file is rebuilt from every known index, and the changed
objects are written back payload first, Release last. A Release file
therefore never lists an index that was not written before it.
"""

import logging
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from pathlib import Path

from src.checksums import digest_file
from src.config_manager import RepositoryConfig
from src.errors import CorruptIndex, IOFailure, MalformedMetadata
from src.lock import RepositoryLock
from src.manifest import Manifest, compress, packages_key
from src.models import PackageRecord, PublishResult, Visibility, check_metadata
from src.object_store import ObjectStore
from src.package_reader import read_control
from src.release import (
    IndexFiles,
    ReleaseIndex,
    build,
    known_pairs_from_release,
    release_key,
)

logger = logging.getLogger(__name__)


def pool_path(component: str, name: str, version: str | None, architecture: str) -> str:
    """Repository-relative path a package payload is stored under.

    Follows the Debian pool layout, e.g. ``pool/main/libf/libfoo/...``.
    The epoch is not part of the file name.
    """
    prefix = name[:4] if name.startswith("lib") and len(name) > 3 else name[0]
    upstream = (version or "0").split(":", 1)[-1]
    return f"pool/{component}/{prefix}/{name}/{name}_{upstream}_{architecture}.deb"


class Publisher:
    """Runs publishes against one object store."""

    def __init__(
        self,
        store: ObjectStore,
        config: RepositoryConfig,
        now: Callable[[], datetime] | None = None,
        lock_factory: Callable[..., RepositoryLock] = RepositoryLock,
    ):
        """Initialize the publisher.

        Args:
            store: Object store holding the repository
            config: Repository configuration
            now: Source of the Release date, defaults to the current UTC time
            lock_factory: Builds the lock for a codename/component/architecture
        """
        self.store = store
        self.config = config
        self.now = now or (lambda: datetime.now(UTC))
        self.lock_factory = lock_factory

    def publish(
        self,
        codename: str,
        component: str,
        architecture: str | None,
        package_file: str | Path,
        visibility: Visibility | str = Visibility.PUBLIC,
        metadata: Mapping[str, str] | None = None,
    ) -> PublishResult:
        """Add one package to the repository.

        Args:
            codename: Distribution codename (e.g., "stable")
            component: Repository component (e.g., "main")
            architecture: Target architecture; None uses the package's own
            package_file: Path of the .deb payload
            visibility: Access policy for every object written
            metadata: Control fields; read from ``package_file`` when None

        Returns:
            PublishResult describing the published record

        Raises:
            MalformedMetadata: If the package metadata is incomplete or invalid
            CorruptIndex: If a stored index cannot be parsed
            IOFailure: If reading the payload or talking to the store fails
            LockTimeout: If the repository lock cannot be acquired or is lost
            IncompleteAggregate: If a known index is missing from the store
        """
        visibility = Visibility.parse(visibility)
        if metadata is None:
            metadata = read_control(package_file)
        metadata = dict(metadata)

        package_arch = _control_value(metadata, "Architecture")
        arch = architecture or package_arch
        if not arch:
            raise MalformedMetadata(
                "No architecture given and unable to determine one from the file. "
                "Please specify one with --arch.",
                field="Architecture",
            )
        if not package_arch:
            metadata["Architecture"] = arch

        check_metadata(metadata)
        name = _control_value(metadata, "Package")

        lock = self.lock_factory(
            self.store, codename, component, arch, config=self.config.lock
        )
        with lock:
            result = self._publish_locked(
                lock, codename, component, arch, package_file, visibility, metadata, name
            )

        logger.info(
            f"Published {result.record.name} {result.record.version} to "
            f"{codename}/{component}/{arch}"
        )

        if self.config.verify_uploads and visibility is Visibility.PUBLIC:
            verify = getattr(self.store, "verify_public_access", None)
            if verify is not None and not verify(result.written_keys):
                raise IOFailure("Upload verification failed")

        return result

    def _publish_locked(
        self,
        lock: RepositoryLock,
        codename: str,
        component: str,
        arch: str,
        package_file: str | Path,
        visibility: Visibility,
        metadata: dict[str, str],
        name: str,
    ) -> PublishResult:
        logger.info("Retrieving existing package manifest")
        key = packages_key(codename, component, arch)
        manifest = Manifest.parse(
            _decode(self.store.get(key), key), codename, component, arch
        )
        logger.debug(f"{key} holds {len(manifest.records)} package(s)")

        digests, size = digest_file(package_file)
        filename = pool_path(
            component,
            name,
            _control_value(metadata, "Version"),
            _control_value(metadata, "Architecture") or arch,
        )
        record = PackageRecord.build(metadata, digests, filename, size)

        replaced = manifest.find(*record.key)
        if replaced is not None:
            if replaced.debian_version > record.debian_version:
                logger.warning(
                    f"Replacing {record.name} {replaced.version} with older version "
                    f"{record.version}"
                )
            else:
                logger.info(f"Replacing {record.name} {replaced.version}")
        manifest = manifest.merge(record)

        packages_text = manifest.serialize()
        packages_bytes = packages_text.encode("utf-8")
        packages_gz = compress(packages_text)

        release = self._build_release(
            codename, (component, arch), IndexFiles(packages_bytes, packages_gz)
        )

        # Restart the staleness clock before the uploads
        lock.refresh()
        logger.info("Uploading package and new manifests to S3")
        written: list[str] = []

        self.store.put_file(record.filename, package_file, visibility=visibility)
        written.append(record.filename)
        self.store.put(manifest.key, packages_bytes, visibility=visibility)
        written.append(manifest.key)
        self.store.put(
            manifest.gzip_key,
            packages_gz,
            visibility=visibility,
            content_type="application/gzip",
        )
        written.append(manifest.gzip_key)
        self.store.put(
            release.key, release.serialize().encode("utf-8"), visibility=visibility
        )
        written.append(release.key)
        for written_key in written:
            logger.debug(f"Transferred {written_key}")

        return PublishResult(
            codename=codename,
            component=component,
            architecture=arch,
            record=record,
            replaced=replaced,
            written_keys=written,
        )

    def _build_release(
        self, codename: str, touched: tuple[str, str], touched_files: IndexFiles
    ) -> ReleaseIndex:
        """Rebuild the Release index from the new index and every stored one."""
        key = release_key(codename)
        known = known_pairs_from_release(_decode(self.store.get(key), key), key=key)
        known.add(touched)

        index_files = {touched: touched_files}
        for component, arch in sorted(known - {touched}):
            other = packages_key(codename, component, arch)
            index_files[(component, arch)] = IndexFiles(
                packages=self.store.get(other),
                packages_gz=self.store.get(f"{other}.gz"),
            )

        return build(
            codename,
            index_files,
            known,
            date=self.now(),
            origin=self.config.origin,
            label=self.config.label,
            suite=self.config.suite,
            description=self.config.description,
        )


def _control_value(metadata: Mapping[str, str], name: str) -> str | None:
    """Case-insensitive control field lookup, blank values read as None."""
    for field_name, value in metadata.items():
        if field_name.lower() == name.lower():
            value = str(value).strip()
            return value or None
    return None


def _decode(data: bytes | None, key: str) -> str | None:
    if data is None:
        return None
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise CorruptIndex(f"{key} is not valid UTF-8: {e}", key=key) from e
