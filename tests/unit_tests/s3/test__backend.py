import boto3
from botocore.config import Config

from files_storage.backend import S3Backend
from files_storage.schemas import StorageConfig, StoredObjectSource, TransferMode
from files_storage.strategy import decide
from tests.consts import TEST_BUCKET_NAME, TEST_REGION

MINIO_ENDPOINT = "http://minio.local:9000"


def minio_client(access_key="minio-a"):
    return boto3.client(
        "s3",
        endpoint_url=MINIO_ENDPOINT,
        region_name=TEST_REGION,
        aws_access_key_id=access_key,
        aws_secret_access_key="secret",
        config=Config(s3={"addressing_style": "path"}),
    )


def test_injected_client_keeps_its_endpoint():
    backend = S3Backend(TEST_BUCKET_NAME, client=minio_client())

    assert backend.identity.endpoint == MINIO_ENDPOINT
    assert backend.public_url("a.txt", {}) == f"{MINIO_ENDPOINT}/{TEST_BUCKET_NAME}/a.txt"
    assert backend.sign("get_object", "a.txt", {}, 60).startswith(f"{MINIO_ENDPOINT}/{TEST_BUCKET_NAME}/a.txt?")


def test_injected_clients_without_identity_are_not_copy_eligible():
    source = S3Backend(TEST_BUCKET_NAME, client=minio_client("minio-a"))
    destination = S3Backend(TEST_BUCKET_NAME, client=minio_client("minio-b"))
    config = StorageConfig(bucket=TEST_BUCKET_NAME)

    plan = decide(StoredObjectSource(source, "a.txt", 10), "b.txt", config, destination.identity)

    assert plan.mode is TransferMode.WRITE


def test_injected_clients_with_same_identity_copy():
    source = S3Backend(TEST_BUCKET_NAME, client=minio_client(), credential_identity="minio-a")
    destination = S3Backend(TEST_BUCKET_NAME, client=minio_client(), credential_identity="minio-a")
    config = StorageConfig(bucket=TEST_BUCKET_NAME)

    plan = decide(StoredObjectSource(source, "a.txt", 10), "b.txt", config, destination.identity)

    assert plan.mode is TransferMode.COPY


def test_built_client_identity_uses_access_key():
    backend = S3Backend(TEST_BUCKET_NAME, region_name=TEST_REGION)

    assert backend.identity == ("s3", None, "testing")
