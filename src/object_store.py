"""S3 object store used as the sole backing store of the APT repository."""

import logging
import time
from pathlib import Path
from typing import Protocol

import boto3
import requests
from botocore.exceptions import BotoCoreError, ClientError

from src.errors import IOFailure
from src.models import Visibility

logger = logging.getLogger(__name__)

MISSING_KEY_CODES = {"NoSuchKey", "404", "NotFound"}

DEB_CONTENT_TYPE = "application/vnd.debian.binary-package"


class ObjectStore(Protocol):
    """Key-value capability the publisher needs from a storage backend.

    Implementations offer no compare-and-swap and may be eventually
    consistent; a missing key reads as None.
    """

    def get(self, key: str) -> bytes | None: ...

    def put(
        self,
        key: str,
        data: bytes,
        visibility: Visibility = Visibility.PUBLIC,
        content_type: str = "text/plain",
    ) -> None: ...

    def put_file(
        self,
        key: str,
        file_path: str | Path,
        visibility: Visibility = Visibility.PUBLIC,
        content_type: str = DEB_CONTENT_TYPE,
    ) -> None: ...

    def delete(self, key: str) -> None: ...


class S3ObjectStore:
    """Eventually-consistent get/put/delete over a single S3 bucket."""

    def __init__(
        self,
        bucket_name: str,
        region: str = "us-east-1",
        max_retries: int = 3,
    ):
        """Initialize S3ObjectStore.

        Args:
            bucket_name: S3 bucket name
            region: AWS region of the bucket
            max_retries: Attempts per request before giving up.
        """
        self.bucket_name = bucket_name
        self.region = region
        self.max_retries = max_retries

        self.s3_client = boto3.client("s3", region_name=self.region)

        logger.info(f"Initialized S3ObjectStore for bucket: {self.bucket_name}")

    def get(self, key: str) -> bytes | None:
        """Fetch an object, returning None if it does not exist.

        Raises:
            IOFailure: If the object exists but cannot be read
        """

        def fetch():
            response = self.s3_client.get_object(Bucket=self.bucket_name, Key=key)
            return response["Body"].read()

        try:
            return self._with_retry("get", key, fetch)
        except ClientError as e:
            if _error_code(e) in MISSING_KEY_CODES:
                logger.debug(f"Object s3://{self.bucket_name}/{key} does not exist")
                return None
            raise IOFailure(f"Failed to fetch {key}: {e}", key=key) from e
        except BotoCoreError as e:
            raise IOFailure(f"Failed to fetch {key}: {e}", key=key) from e

    def put(
        self,
        key: str,
        data: bytes,
        visibility: Visibility = Visibility.PUBLIC,
        content_type: str = "text/plain",
    ) -> None:
        """Store bytes under ``key`` with the visibility's canned ACL.

        Raises:
            IOFailure: If all upload attempts fail
        """
        self._call(
            "put",
            key,
            lambda: self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=data,
                ContentType=content_type,
                ACL=visibility.acl,
            ),
        )

    def put_file(
        self,
        key: str,
        file_path: str | Path,
        visibility: Visibility = Visibility.PUBLIC,
        content_type: str = DEB_CONTENT_TYPE,
    ) -> None:
        """Upload a local file, streaming it rather than loading it whole.

        Raises:
            IOFailure: If the file is missing or all upload attempts fail
        """
        if not Path(file_path).exists():
            raise IOFailure(f"File not found: {file_path}", key=key)

        self._call(
            "upload",
            key,
            lambda: self.s3_client.upload_file(
                str(file_path),
                self.bucket_name,
                key,
                ExtraArgs={"ContentType": content_type, "ACL": visibility.acl},
            ),
        )

    def delete(self, key: str) -> None:
        """Delete an object; deleting a missing object is not an error."""
        self._call(
            "delete",
            key,
            lambda: self.s3_client.delete_object(Bucket=self.bucket_name, Key=key),
        )

    def public_url(self, key: str) -> str:
        return f"https://{self.bucket_name}.s3.amazonaws.com/{key}"

    def verify_public_access(self, keys: list[str]) -> bool:
        """Verify that published objects are reachable anonymously over HTTPS.

        Args:
            keys: Object keys to check

        Returns:
            True if every object answered a HEAD request with 200
        """
        logger.info(f"Verifying accessibility of {len(keys)} uploaded files")

        for key in keys:
            url = self.public_url(key)
            try:
                response = requests.head(url, timeout=10)
            except requests.RequestException as e:
                logger.error(f"Failed to verify accessibility of {url}: {e}")
                return False

            if response.status_code != 200:
                logger.error(
                    f"File not accessible: {url} (status: {response.status_code})"
                )
                return False
            logger.debug(f"Verified accessibility: {url}")

        logger.info("All uploaded files are accessible")
        return True

    def _call(self, operation: str, key: str, func) -> None:
        try:
            self._with_retry(operation, key, func)
        except (ClientError, BotoCoreError) as e:
            raise IOFailure(f"Failed to {operation} {key}: {e}", key=key) from e

    def _with_retry(self, operation: str, key: str, func):
        """Run an S3 request, retrying transient failures with backoff."""
        for attempt in range(self.max_retries):
            try:
                logger.debug(
                    f"{operation} s3://{self.bucket_name}/{key} (attempt {attempt + 1})"
                )
                return func()

            except (ClientError, BotoCoreError) as e:
                if isinstance(e, ClientError) and _error_code(e) in MISSING_KEY_CODES:
                    raise

                logger.warning(
                    f"{operation} attempt {attempt + 1} failed for {key}: {e}"
                )
                if attempt == self.max_retries - 1:
                    logger.error(f"All {operation} attempts failed for {key}")
                    raise

                # Exponential backoff
                time.sleep(2**attempt)


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", "Unknown"))
