import pytest

from files_storage.paths import resolve_path
from files_storage.storage import S3Storage
from tests.consts import TEST_BUCKET_NAME


@pytest.mark.parametrize("object_id", ["foo.jpg", "nested/dir/foo.jpg", "ünï.txt"])
def test_prefix_is_joined_with_slash(object_id):
    assert resolve_path("cache", object_id) == f"cache/{object_id}"


@pytest.mark.parametrize("prefix", [None, ""])
def test_no_prefix_returns_id(prefix):
    assert resolve_path(prefix, "foo.jpg") == "foo.jpg"


def test_storage_path_uses_normalised_prefix(recording_backend):
    storage = S3Storage(bucket=TEST_BUCKET_NAME, prefix="/store/", backend=recording_backend)
    assert storage.prefix == "store"
    assert storage.path("foo.jpg") == "store/foo.jpg"
