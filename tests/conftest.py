import boto3
import pytest
from moto import mock_aws

from files_storage.settings import get_settings
from tests.consts import TEST_ACCESS_KEY_ID, TEST_BUCKET_NAME, TEST_REGION

from tests.fixtures.storage_fixtures import (  # noqa: F401
    path_style_storage,
    recording_backend,
    recording_storage,
    s3_object,
    storage,
)

# variables that would point boto3 or the settings somewhere else
UNSET_ENV_VARS = [
    "AWS_ENDPOINT_URL",
    "AWS_PROFILE",
    "AWS_SESSION_TOKEN",
    "S3_BUCKET_NAME",
    "S3_PREFIX",
    "S3_HOST",
    "S3_UPLOAD_OPTIONS",
    "S3_UPLOAD_MULTIPART_THRESHOLD",
    "S3_COPY_MULTIPART_THRESHOLD",
    "S3_MULTIPART_CONCURRENCY",
    "S3_DELETE_CONCURRENCY",
    "S3_FORCE_PATH_STYLE",
    "S3_CA_BUNDLE",
    "LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Fake credentials so nothing can reach a real AWS account."""
    for name in UNSET_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", TEST_ACCESS_KEY_ID)
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", TEST_REGION)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def mocked_aws(aws_credentials):
    """Run the test against moto's in-memory S3 with the test bucket created."""
    with mock_aws():
        s3_client = boto3.client("s3", region_name=TEST_REGION)
        s3_client.create_bucket(Bucket=TEST_BUCKET_NAME)
        yield s3_client
