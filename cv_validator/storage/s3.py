import time
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

import boto3
from botocore.client import BaseClient, Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from cv_validator.core.config import Settings
from cv_validator.core.errors import NotFoundError, StorageError

# Configure logging
logger = logging.getLogger(__name__)

NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}
MISSING_BUCKET_CODES = {"NoSuchBucket", "404", "NotFound"}


@dataclass
class StoredObject:
    key: str
    size: int
    modified_at: datetime


def generate_object_key(original_filename: str, timestamp_ms: Optional[int] = None) -> str:
    """
    Builds the object key for an upload: `{unixMillis}-{originalFileName}`.
    The millisecond prefix keeps keys unique without any coordination.
    """
    if not original_filename:
        raise ValueError("Original filename cannot be empty")
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return f"{timestamp_ms}-{original_filename}"


def _error_code(error: Exception) -> str:
    if isinstance(error, ClientError):
        return str(error.response.get("Error", {}).get("Code", ""))
    return ""


def _normalize_endpoint(endpoint: str, secure: bool) -> str:
    """Adds the scheme to a bare host[:port] endpoint."""
    if endpoint.startswith("http://") or endpoint.startswith("https://"):
        return endpoint
    scheme = "https" if secure else "http"
    return f"{scheme}://{endpoint}"


class ObjectStore:
    """
    Thin adapter over an S3 compatible bucket (MinIO in development).

    Every backend failure is re-raised as StorageError with the original
    message. The only backend error code interpreted here is "not found",
    which `get` turns into NotFoundError and `exists` turns into False.
    """

    def __init__(
        self,
        client: BaseClient,
        bucket_name: str,
        presign_client: Optional[BaseClient] = None,
        init_attempts: int = 3,
        init_backoff_seconds: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.bucket_name = bucket_name
        # Signs URLs for the externally reachable host when it differs from the internal one
        self.presign_client = presign_client or client
        self.init_attempts = init_attempts
        self.init_backoff_seconds = init_backoff_seconds
        self._sleep = sleep

    # --- Bucket ---

    def _create_bucket_if_missing(self) -> None:
        try:
            self.client.head_bucket(Bucket=self.bucket_name)
            logger.info(f"S3: Bucket '{self.bucket_name}' already exists.")
            return
        except ClientError as e:
            if _error_code(e) not in MISSING_BUCKET_CODES:
                raise

        logger.info(f"S3: Bucket '{self.bucket_name}' not found, creating...")
        region = self.client.meta.region_name
        if region and region != "us-east-1":
            self.client.create_bucket(
                Bucket=self.bucket_name,
                CreateBucketConfiguration={"LocationConstraint": region},
            )
        else:
            self.client.create_bucket(Bucket=self.bucket_name)
        logger.info(f"S3: Bucket '{self.bucket_name}' created.")

    def ensure_bucket(self) -> None:
        """
        Makes sure the bucket exists, creating it if needed. Idempotent.
        Retries with exponential backoff (2s, 4s, ...) before giving up.
        """
        delay = self.init_backoff_seconds
        for attempt in range(1, self.init_attempts + 1):
            try:
                self._create_bucket_if_missing()
                return
            except (ClientError, BotoCoreError) as e:
                if attempt == self.init_attempts:
                    logger.error(
                        f"S3: Could not initialize bucket '{self.bucket_name}' after {attempt} attempts: {e}"
                    )
                    raise StorageError(f"Failed to initialize file storage: {e}") from e
                logger.warning(
                    f"S3: Bucket initialization attempt {attempt}/{self.init_attempts} failed, "
                    f"retrying in {delay}s: {e}"
                )
                self._sleep(delay)
                delay *= 2

    # --- Objects ---

    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        if not key:
            raise ValueError("Object key cannot be empty")
        logger.info(f"S3: Uploading {key} to bucket {self.bucket_name} (size: {len(data)} bytes)")
        try:
            self.client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=data,
                ContentLength=len(data),
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"S3 Error uploading {key} to bucket {self.bucket_name}: {e}")
            raise StorageError(str(e)) from e

    def get(self, key: str) -> bytes:
        if not key:
            raise ValueError("Object key cannot be empty")
        try:
            response = self.client.get_object(Bucket=self.bucket_name, Key=key)
        except ClientError as e:
            if _error_code(e) in NOT_FOUND_CODES:
                logger.warning(f"S3: Object not found: {key} in bucket {self.bucket_name}")
                raise NotFoundError(f"File not found: {key}") from e
            logger.error(f"S3 Error downloading {key} from bucket {self.bucket_name}: {e}")
            raise StorageError(str(e)) from e
        except BotoCoreError as e:
            logger.error(f"S3 Error downloading {key} from bucket {self.bucket_name}: {e}")
            raise StorageError(str(e)) from e

        body = response["Body"]
        try:
            content = body.read()
        except BotoCoreError as e:
            raise StorageError(str(e)) from e
        finally:
            body.close()
        logger.info(f"S3: Downloaded {key} ({len(content)} bytes)")
        return content

    def remove(self, key: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket_name, Key=key)
            logger.info(f"S3: Deleted {key} from bucket {self.bucket_name}")
        except (ClientError, BotoCoreError) as e:
            logger.error(f"S3 Error deleting {key}: {e}")
            raise StorageError(str(e)) from e

    def exists(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket_name, Key=key)
            return True
        except ClientError as e:
            if _error_code(e) in NOT_FOUND_CODES:
                return False
            raise StorageError(str(e)) from e
        except BotoCoreError as e:
            raise StorageError(str(e)) from e

    def list_objects(self, prefix: str = "", limit: int = 20) -> List[StoredObject]:
        """Lists up to `limit` objects whose key starts with `prefix`."""
        objects: List[StoredObject] = []
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=prefix or ""):
                for item in page.get("Contents", []):
                    objects.append(StoredObject(
                        key=item["Key"],
                        size=item["Size"],
                        modified_at=item["LastModified"],
                    ))
                    if len(objects) >= limit:
                        return objects
        except (ClientError, BotoCoreError) as e:
            logger.error(f"S3 Error listing bucket {self.bucket_name}: {e}")
            raise StorageError(f"Failed to list files: {e}") from e
        return objects

    # --- Presigned URLs ---

    def _presign(self, method: str, key: str, expires_in_seconds: int) -> str:
        try:
            url = self.presign_client.generate_presigned_url(
                method,
                Params={"Bucket": self.bucket_name, "Key": key},
                ExpiresIn=expires_in_seconds,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"S3 Error generating presigned URL for {key}: {e}")
            raise StorageError(str(e)) from e
        logger.info(f"S3: Generated presigned {method} URL for {key} (expires in {expires_in_seconds}s)")
        return url

    def presign_put(self, key: str, expires_in_seconds: int) -> str:
        return self._presign("put_object", key, expires_in_seconds)

    def presign_get(self, key: str, expires_in_seconds: int) -> str:
        return self._presign("get_object", key, expires_in_seconds)


def _make_client(endpoint_url: str, settings: Settings) -> BaseClient:
    return boto3.client(
        "s3",
        endpoint_url=endpoint_url,
        aws_access_key_id=settings.S3_ACCESS_KEY,
        aws_secret_access_key=settings.S3_SECRET_KEY,
        region_name=settings.S3_REGION,
        config=BotoConfig(signature_version="s3v4", s3={"addressing_style": "path"}),
    )


def build_object_store(settings: Settings) -> ObjectStore:
    """Creates the S3 client(s) from settings. Does not touch the network."""
    endpoint = _normalize_endpoint(settings.S3_ENDPOINT_URL, settings.S3_SECURE)
    logger.info(f"S3: Connecting to endpoint: {endpoint}, bucket: {settings.S3_BUCKET_NAME}")
    logger.info(f"S3: Using access key: {settings.S3_ACCESS_KEY[:4]}...")
    client = _make_client(endpoint, settings)

    # Presigned URLs embed the host in the signature, so a URL meant for the
    # browser has to be signed against the public host, not rewritten afterwards.
    presign_client = None
    if settings.S3_PUBLIC_ENDPOINT_URL:
        public_endpoint = _normalize_endpoint(settings.S3_PUBLIC_ENDPOINT_URL, settings.S3_SECURE)
        if public_endpoint != endpoint:
            logger.info(f"S3: Presigned URLs will use public endpoint {public_endpoint}")
            presign_client = _make_client(public_endpoint, settings)

    return ObjectStore(
        client,
        settings.S3_BUCKET_NAME,
        presign_client=presign_client,
        init_attempts=settings.STORAGE_INIT_ATTEMPTS,
        init_backoff_seconds=settings.STORAGE_INIT_BACKOFF_SECONDS,
    )
