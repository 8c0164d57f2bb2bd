from unittest.mock import MagicMock

import boto3
import pytest
from botocore.exceptions import ClientError, EndpointConnectionError
from moto import mock_aws

from cv_validator.core.config import Settings
from cv_validator.core.errors import NotFoundError, StorageError
from cv_validator.storage.s3 import ObjectStore, build_object_store, generate_object_key

BUCKET = "cv-uploads"


@pytest.fixture
def s3_client():
    with mock_aws():
        yield boto3.client("s3", region_name="us-east-1")


@pytest.fixture
def store(s3_client):
    object_store = ObjectStore(s3_client, BUCKET, sleep=lambda seconds: None)
    object_store.ensure_bucket()
    return object_store


def test_generate_object_key_prefixes_timestamp():
    assert generate_object_key("cv.pdf", timestamp_ms=1700000000123) == "1700000000123-cv.pdf"
    key = generate_object_key("John Doe CV.pdf")
    prefix, name = key.split("-", 1)
    assert prefix.isdigit() and len(prefix) >= 13
    assert name == "John Doe CV.pdf"


def test_generate_object_key_rejects_empty_name():
    with pytest.raises(ValueError):
        generate_object_key("")


def test_ensure_bucket_creates_and_is_idempotent(s3_client):
    object_store = ObjectStore(s3_client, BUCKET)

    object_store.ensure_bucket()
    object_store.ensure_bucket()

    names = [b["Name"] for b in s3_client.list_buckets()["Buckets"]]
    assert names == [BUCKET]


def test_put_then_get_returns_same_bytes(store):
    store.put("1700000000000-cv.pdf", b"%PDF-1.4 content", "application/pdf")

    assert store.get("1700000000000-cv.pdf") == b"%PDF-1.4 content"
    assert store.exists("1700000000000-cv.pdf") is True


def test_get_missing_key_raises_not_found(store):
    with pytest.raises(NotFoundError):
        store.get("missing.pdf")
    assert store.exists("missing.pdf") is False


def test_remove_deletes_object(store):
    store.put("a.pdf", b"data")
    store.remove("a.pdf")

    assert store.exists("a.pdf") is False


def test_list_objects_honours_prefix_and_limit(store):
    for key in ("2024-a.pdf", "2024-b.pdf", "2024-c.pdf", "2025-a.pdf"):
        store.put(key, b"x" * 3)

    listed = store.list_objects(prefix="2024-", limit=2)

    assert [o.key for o in listed] == ["2024-a.pdf", "2024-b.pdf"]
    assert all(o.size == 3 for o in listed)
    assert len(store.list_objects()) == 4


def test_put_into_missing_bucket_raises_storage_error(s3_client):
    object_store = ObjectStore(s3_client, "never-created")

    with pytest.raises(StorageError):
        object_store.put("cv.pdf", b"data")


def test_ensure_bucket_retries_with_backoff_then_fails():
    client = MagicMock()
    client.head_bucket.side_effect = EndpointConnectionError(endpoint_url="http://minio:9000")
    delays = []
    object_store = ObjectStore(client, BUCKET, sleep=delays.append)

    with pytest.raises(StorageError):
        object_store.ensure_bucket()

    assert client.head_bucket.call_count == 3
    assert delays == [2.0, 4.0]
    client.create_bucket.assert_not_called()


def test_ensure_bucket_recovers_after_transient_failure():
    client = MagicMock()
    client.meta.region_name = "us-east-1"
    missing = ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, "HeadBucket")
    client.head_bucket.side_effect = [EndpointConnectionError(endpoint_url="http://minio:9000"), missing]
    delays = []
    object_store = ObjectStore(client, BUCKET, sleep=delays.append)

    object_store.ensure_bucket()

    client.create_bucket.assert_called_once_with(Bucket=BUCKET)
    assert delays == [2.0]


def test_presigned_urls_use_public_endpoint():
    settings = Settings(
        S3_ENDPOINT_URL="minio:9000",
        S3_PUBLIC_ENDPOINT_URL="http://localhost:9000",
        S3_ACCESS_KEY="minioadmin",
        S3_SECRET_KEY="minioadmin",
        S3_BUCKET_NAME=BUCKET,
    )
    object_store = build_object_store(settings)

    url = object_store.presign_get("1700000000000-cv.pdf", 3600)

    assert object_store.client.meta.endpoint_url == "http://minio:9000"
    assert url.startswith(f"http://localhost:9000/{BUCKET}/1700000000000-cv.pdf?")
    assert "X-Amz-Expires=3600" in url
