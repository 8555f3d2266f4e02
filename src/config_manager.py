"""Repository configuration loaded from YAML files and the environment.

Precedence, highest first: explicit arguments (the CLI), the YAML file,
environment variables, then the dataclass defaults.
"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path

import yaml

from src.models import Visibility

# Environment variable names
ENV_S3_BUCKET = "S3_BUCKET_NAME"
ENV_AWS_REGION = "AWS_REGION"
ENV_LOG_LEVEL = "LOG_LEVEL"
ENV_CODENAME = "APT_CODENAME"
ENV_COMPONENT = "APT_COMPONENT"
ENV_VISIBILITY = "APT_VISIBILITY"
ENV_LOCK_STALE_SECONDS = "LOCK_STALE_SECONDS"
ENV_LOCK_MAX_WAIT_SECONDS = "LOCK_MAX_WAIT_SECONDS"


@dataclass
class LockConfig:
    """Timing policy of the repository lock.

    Attributes:
        stale_after: Age in seconds after which a lock token counts as abandoned
        max_wait: Longest time in seconds to wait for the lock before giving up
        settle: Delay in seconds between writing a token and reading it back
        min_backoff: Lower bound of the jittered retry delay in seconds
        max_backoff: Upper bound of the jittered retry delay in seconds
    """

    stale_after: float = 300.0
    max_wait: float = 120.0
    settle: float = 1.0
    min_backoff: float = 0.5
    max_backoff: float = 5.0

    def __post_init__(self) -> None:
        if self.stale_after <= 0:
            raise ValueError("lock stale_after must be positive")
        if self.max_wait < 0:
            raise ValueError("lock max_wait must not be negative")
        if self.min_backoff > self.max_backoff:
            raise ValueError("lock min_backoff must not exceed max_backoff")

    @classmethod
    def from_mapping(cls, data: dict, base: "LockConfig | None" = None) -> "LockConfig":
        """Overlay the numeric settings found in ``data`` onto ``base``.

        Raises:
            ValueError: If a setting is not a number or the result is invalid
        """
        base = base or cls()
        values = {f.name: getattr(base, f.name) for f in fields(cls)}
        for name in values:
            if data.get(name) is not None:
                values[name] = _to_seconds(f"lock {name}", data[name])
        return cls(**values)


@dataclass(frozen=True)
class EnvSettings:
    """Repository settings taken from the process environment.

    Unset and blank variables read as None so that callers can layer them
    under file and command line values.
    """

    bucket: str | None = None
    region: str | None = None
    log_level: str | None = None
    codename: str | None = None
    component: str | None = None
    visibility: str | None = None
    lock_stale_after: float | None = None
    lock_max_wait: float | None = None

    @classmethod
    def load(cls, environ=None) -> "EnvSettings":
        """Read settings from ``environ`` (defaults to ``os.environ``).

        Raises:
            ValueError: If a lock duration is not a number
        """
        environ = os.environ if environ is None else environ

        def text(name: str) -> str | None:
            value = environ.get(name, "").strip()
            return value or None

        def seconds(name: str) -> float | None:
            value = text(name)
            return None if value is None else _to_seconds(name, value)

        return cls(
            bucket=text(ENV_S3_BUCKET),
            region=text(ENV_AWS_REGION),
            log_level=text(ENV_LOG_LEVEL),
            codename=text(ENV_CODENAME),
            component=text(ENV_COMPONENT),
            visibility=text(ENV_VISIBILITY),
            lock_stale_after=seconds(ENV_LOCK_STALE_SECONDS),
            lock_max_wait=seconds(ENV_LOCK_MAX_WAIT_SECONDS),
        )

    def lock_overrides(self) -> dict:
        return {"stale_after": self.lock_stale_after, "max_wait": self.lock_max_wait}


@dataclass
class RepositoryConfig:
    """Configuration of the bucket-hosted APT repository.

    Attributes:
        bucket: S3 bucket holding the repository
        region: AWS region of the bucket
        codename: Default distribution codename (e.g., "stable")
        component: Default component, also called section (e.g., "main")
        visibility: Access policy applied to uploaded objects
        origin: Optional ``Origin`` field of the Release file
        label: Optional ``Label`` field of the Release file
        suite: Optional ``Suite`` field of the Release file (e.g., "stable")
        description: Optional ``Description`` field of the Release file
        verify_uploads: Whether to check public objects over HTTPS after publishing
        lock: Lock timing policy
    """

    bucket: str
    region: str = "us-east-1"
    codename: str = "stable"
    component: str = "main"
    visibility: Visibility = Visibility.PUBLIC
    origin: str | None = None
    label: str | None = None
    suite: str | None = None
    description: str | None = None
    verify_uploads: bool = False
    lock: LockConfig = field(default_factory=LockConfig)

    @classmethod
    def from_env(
        cls, bucket: str | None = None, env: EnvSettings | None = None
    ) -> "RepositoryConfig":
        """Build a configuration from environment variables.

        Args:
            bucket: Bucket name overriding S3_BUCKET_NAME
            env: Pre-loaded environment settings, read from os.environ if None

        Raises:
            ValueError: If S3_BUCKET_NAME is not set or a value is invalid
        """
        return cls.from_dict({}, bucket=bucket, env=env, source=ENV_S3_BUCKET)

    @classmethod
    def from_yaml(
        cls, yaml_path: Path, bucket: str | None = None, env: EnvSettings | None = None
    ) -> "RepositoryConfig":
        """Load configuration from a YAML file.

        Values missing from the file fall back to the environment, then to
        the defaults above.

        Args:
            yaml_path: Path to the YAML configuration file
            bucket: Bucket name overriding the file and S3_BUCKET_NAME
            env: Pre-loaded environment settings, read from os.environ if None

        Returns:
            RepositoryConfig populated from the YAML file

        Raises:
            FileNotFoundError: If the YAML file does not exist
            ValueError: If no bucket is configured or a value is invalid
        """
        with open(yaml_path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{yaml_path} must contain a mapping of settings")

        return cls.from_dict(
            data, bucket=bucket, env=env, source=f"{yaml_path} or {ENV_S3_BUCKET}"
        )

    @classmethod
    def from_dict(
        cls,
        data: dict,
        bucket: str | None = None,
        env: EnvSettings | None = None,
        source: str = "configuration",
    ) -> "RepositoryConfig":
        """Layer file settings in ``data`` over the environment and defaults."""
        env = env or EnvSettings.load()

        bucket = bucket or data.get("bucket") or env.bucket
        if not bucket:
            raise ValueError(f"No bucket configured in {source}")

        lock = LockConfig.from_mapping(env.lock_overrides())
        lock = LockConfig.from_mapping(data.get("lock") or {}, base=lock)

        defaults = cls(bucket=bucket)
        return cls(
            bucket=bucket,
            region=data.get("region") or env.region or defaults.region,
            codename=data.get("codename") or env.codename or defaults.codename,
            component=data.get("component") or env.component or defaults.component,
            visibility=Visibility.parse(
                data.get("visibility") or env.visibility or defaults.visibility
            ),
            origin=data.get("origin"),
            label=data.get("label"),
            suite=data.get("suite"),
            description=data.get("description"),
            verify_uploads=bool(data.get("verify_uploads", False)),
            lock=lock,
        )


def _to_seconds(name: str, value) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be a number of seconds, got {value!r}") from None
