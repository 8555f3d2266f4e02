"""Tests for the command line entry point."""

import logging
from unittest.mock import Mock, patch

import pytest

from conftest import make_record
from src.errors import LockTimeout
from src.main import build_parser, configure_logging, load_config, main
from src.models import PublishResult, Visibility


@pytest.fixture
def package(tmp_path):
    path = tmp_path / "foo_1.0_amd64.deb"
    path.write_bytes(b"!<arch>\n")
    return path


@pytest.fixture
def env(monkeypatch):
    monkeypatch.setenv("S3_BUCKET_NAME", "env-bucket")
    for name in (
        "APT_CODENAME",
        "APT_COMPONENT",
        "APT_VISIBILITY",
        "AWS_REGION",
        "LOG_LEVEL",
        "LOCK_STALE_SECONDS",
        "LOCK_MAX_WAIT_SECONDS",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def fake_result():
    return PublishResult(
        codename="stable",
        component="main",
        architecture="amd64",
        record=make_record("foo"),
        replaced=None,
        written_keys=["pool/main/f/foo/foo_1.0_amd64.deb", "dists/stable/Release"],
    )


class TestLoadConfig:
    def test_cli_overrides_environment(self, env, package):
        args = build_parser().parse_args(
            [
                "upload",
                str(package),
                "--bucket",
                "cli-bucket",
                "--codename",
                "bookworm",
                "--section",
                "contrib",
                "--visibility",
                "private",
            ]
        )
        config = load_config(args)
        assert config.bucket == "cli-bucket"
        assert config.codename == "bookworm"
        assert config.component == "contrib"
        assert config.visibility is Visibility.PRIVATE

    def test_yaml_config(self, env, package, tmp_path):
        config_path = tmp_path / "repo.yaml"
        config_path.write_text("bucket: yaml-bucket\ncodename: jammy\n")
        args = build_parser().parse_args(
            ["--config", str(config_path), "upload", str(package)]
        )
        config = load_config(args)
        assert config.bucket == "yaml-bucket"
        assert config.codename == "jammy"

    def test_invalid_visibility_rejected_by_parser(self, package):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["upload", str(package), "--visibility", "world"])


class TestMain:
    def test_successful_upload(self, env, package):
        publisher = Mock()
        publisher.publish.return_value = fake_result()
        with (
            patch("src.main.S3ObjectStore") as store_cls,
            patch("src.main.Publisher", return_value=publisher),
        ):
            assert main(["upload", str(package), "--arch", "amd64"]) == 0

        store_cls.assert_called_once_with(bucket_name="env-bucket", region="us-east-1")
        publisher.publish.assert_called_once_with(
            "stable", "main", "amd64", package, Visibility.PUBLIC
        )

    def test_publish_error_exit_code(self, env, package):
        publisher = Mock()
        publisher.publish.side_effect = LockTimeout(
            "Could not acquire lock", key="dists/stable/main/binary-amd64/lockfile"
        )
        with (
            patch("src.main.S3ObjectStore"),
            patch("src.main.Publisher", return_value=publisher),
        ):
            assert main(["upload", str(package)]) == 1

    def test_missing_file(self, env, tmp_path):
        with patch("src.main.S3ObjectStore") as store_cls:
            assert main(["upload", str(tmp_path / "missing.deb")]) == 1
        store_cls.assert_not_called()

    def test_missing_bucket(self, monkeypatch, package):
        monkeypatch.delenv("S3_BUCKET_NAME", raising=False)
        with patch("src.main.S3ObjectStore") as store_cls:
            assert main(["upload", str(package)]) == 1
        store_cls.assert_not_called()


class TestConfigureLogging:
    def test_unknown_level_rejected(self):
        with pytest.raises(ValueError, match="Unknown log level"):
            configure_logging("chatty")

    def test_quiets_aws_loggers(self):
        configure_logging("debug")
        assert logging.getLogger("botocore").level == logging.WARNING
        assert logging.getLogger("s3transfer").level == logging.WARNING

    def test_bad_log_level_is_usage_error(self, env, package):
        env.setenv("LOG_LEVEL", "loud")
        with pytest.raises(SystemExit) as excinfo:
            main(["upload", str(package)])
        assert excinfo.value.code == 2
