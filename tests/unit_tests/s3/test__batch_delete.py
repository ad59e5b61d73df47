import pytest

from files_storage.errors import PartialBatchFailure, TransportError
from files_storage.storage import S3Storage
from tests.consts import TEST_BUCKET_NAME
from tests.fixtures.storage_fixtures import RecordingBackend


def make_storage(backend, delete_concurrency=1):
    return S3Storage(
        bucket=TEST_BUCKET_NAME,
        prefix="cache",
        delete_concurrency=delete_concurrency,
        backend=backend,
    )


def test_delete_all_chunks_by_thousand(recording_storage, recording_backend):
    ids = [f"file-{i}" for i in range(2500)]

    recording_storage.delete_all(ids)

    calls = recording_backend.batch_delete_calls
    assert [len(call) for call in calls] == [1000, 1000, 500]
    keys = [obj["Key"] for call in calls for obj in call]
    assert len(keys) == len(set(keys)) == 2500
    assert set(keys) == {f"cache/{id}" for id in ids}


@pytest.mark.parametrize("count, requests", [
    (1, 1),
    (999, 1),
    (1000, 1),
    (1001, 2),
    (2000, 2),
    (2001, 3),
])
def test_one_request_per_thousand_keys(count, requests):
    backend = RecordingBackend()
    storage = make_storage(backend)

    storage.delete_all(f"file-{i}" for i in range(count))

    assert len(backend.batch_delete_calls) == requests
    assert sum(len(call) for call in backend.batch_delete_calls) == count


def test_delete_all_accepts_a_generator(recording_storage, recording_backend):
    recording_storage.delete_all(f"file-{i}" for i in range(3))

    assert recording_backend.batch_delete_calls == [
        [{"Key": "cache/file-0"}, {"Key": "cache/file-1"}, {"Key": "cache/file-2"}],
    ]


def test_delete_all_with_no_ids(recording_storage, recording_backend):
    recording_storage.delete_all([])

    assert recording_backend.batch_delete_calls == []


def test_failing_chunk_does_not_stop_later_chunks():
    backend = RecordingBackend(failing_chunks={0})
    storage = make_storage(backend)

    with pytest.raises(PartialBatchFailure) as exc_info:
        storage.delete_all(f"file-{i}" for i in range(1500))

    assert len(backend.batch_delete_calls) == 2
    failure = exc_info.value
    assert failure.failed_chunks == [0]
    assert len(failure.failed_keys) == 1000
    assert failure.failed_keys[0] == "cache/file-0"
    assert isinstance(failure.errors[0], TransportError)


def test_undeletable_keys_are_reported():
    backend = RecordingBackend(undeletable_keys={"cache/locked"})
    storage = make_storage(backend)

    with pytest.raises(PartialBatchFailure) as exc_info:
        storage.delete_all(["free", "locked"])

    assert exc_info.value.failed_keys == ["cache/locked"]
    assert exc_info.value.failed_chunks == [0]
    assert exc_info.value.errors[0]["Code"] == "AccessDenied"


def test_concurrent_batch_delete():
    backend = RecordingBackend(failing_chunks={2})
    storage = make_storage(backend, delete_concurrency=4)

    with pytest.raises(PartialBatchFailure) as exc_info:
        storage.delete_all(f"file-{i}" for i in range(4500))

    sizes = sorted(len(call) for call in backend.batch_delete_calls)
    assert sizes == [500, 1000, 1000, 1000, 1000]
    keys = {obj["Key"] for call in backend.batch_delete_calls for obj in call}
    assert len(keys) == 4500
    assert len(exc_info.value.failed_chunks) == 1
    assert len(exc_info.value.failed_keys) in (500, 1000)
