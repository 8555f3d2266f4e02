"""Command line entry point for publishing packages to an S3 APT repository."""

import argparse
import logging
import sys
from pathlib import Path

from src.config_manager import EnvSettings, RepositoryConfig
from src.errors import PublishError
from src.models import Visibility
from src.object_store import S3ObjectStore
from src.publisher import Publisher

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# AWS SDK loggers only report from WARNING up
QUIET_LOGGERS = ("boto3", "botocore", "s3transfer", "urllib3")


def configure_logging(level: str | None = None) -> None:
    """Send log records to stdout at ``level``, INFO when not given.

    Raises:
        ValueError: If the level name is not a logging level
    """
    name = (level or "INFO").strip().upper()
    numeric = logging.getLevelName(name)
    if not isinstance(numeric, int):
        raise ValueError(f"Unknown log level {name!r}")

    logging.basicConfig(level=numeric, format=LOG_FORMAT, stream=sys.stdout)
    for noisy in QUIET_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="deb-s3-publish",
        description="Maintain an APT repository stored in an S3 bucket.",
    )
    parser.add_argument("--config", type=Path, help="YAML repository configuration file")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")

    subparsers = parser.add_subparsers(dest="command", required=True)

    upload = subparsers.add_parser(
        "upload", help="Upload a .deb file to the bucket as an APT repository"
    )
    upload.add_argument("file", type=Path, help="Package file to publish")
    upload.add_argument("--bucket", help="The name of the S3 bucket to upload to")
    upload.add_argument("--region", help="AWS region of the bucket")
    upload.add_argument("--codename", help="The codename of the APT repository")
    upload.add_argument(
        "--component",
        "--section",
        dest="component",
        help="The component (section) of the APT repository",
    )
    upload.add_argument(
        "--arch", help="Architecture of the package; defaults to the package's own"
    )
    upload.add_argument(
        "--visibility",
        choices=[v.value for v in Visibility],
        help="Access policy for the uploaded files",
    )
    return parser


def load_config(
    args: argparse.Namespace, env: EnvSettings | None = None
) -> RepositoryConfig:
    """Merge the config file (or environment) with command line overrides."""
    if args.config:
        config = RepositoryConfig.from_yaml(args.config, bucket=args.bucket, env=env)
    else:
        config = RepositoryConfig.from_env(bucket=args.bucket, env=env)

    if args.region:
        config.region = args.region
    if args.codename:
        config.codename = args.codename
    if args.component:
        config.component = args.component
    if args.visibility:
        config.visibility = Visibility.parse(args.visibility)
    return config


def main(argv: list[str] | None = None) -> int:
    """Run the command line interface and return the process exit status."""
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        env = EnvSettings.load()
        configure_logging(args.log_level or env.log_level)
    except ValueError as e:
        parser.error(str(e))

    try:
        config = load_config(args, env)
    except (ValueError, FileNotFoundError) as e:
        logger.error(str(e))
        return 1

    if not args.file.is_file():
        logger.error(f"File doesn't exist: {args.file}")
        return 1

    store = S3ObjectStore(bucket_name=config.bucket, region=config.region)
    publisher = Publisher(store, config)

    try:
        result = publisher.publish(
            config.codename,
            config.component,
            args.arch,
            args.file,
            config.visibility,
        )
    except PublishError as e:
        logger.error(f"Publish failed: {e}")
        return 1

    for key in result.written_keys:
        logger.info(f"Transferred {key}")
    logger.info("Update complete.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
