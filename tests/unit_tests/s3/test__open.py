from unittest.mock import MagicMock, patch

import pytest
import requests

from files_storage.errors import AccessDeniedError, NotFoundError, TransportError


def fake_response(status_code=200, chunks=(b"hello ", b"world")):
    response = MagicMock(spec=requests.Response)
    response.status_code = status_code
    response.iter_content.return_value = iter(chunks)
    return response


def test_open_streams_chunks(recording_storage):
    response = fake_response()
    with patch("files_storage.storage.requests.get", return_value=response) as get:
        chunks = recording_storage.open("greeting.txt", chunk_size=6)

        get.assert_called_once()
        assert list(chunks) == [b"hello ", b"world"]

    url = get.call_args.args[0]
    assert url.startswith("https://s3.amazonaws.com/test-bucket/cache/greeting.txt")
    assert get.call_args.kwargs["stream"] is True
    assert get.call_args.kwargs["headers"] == {}
    response.iter_content.assert_called_once_with(chunk_size=6)
    response.close.assert_called_once()


def test_open_byte_range(recording_storage):
    with patch("files_storage.storage.requests.get", return_value=fake_response(206)) as get:
        list(recording_storage.open("video.mp4", byte_range=(100, 199)))
        list(recording_storage.open("video.mp4", byte_range=(100, None)))

    assert get.call_args_list[0].kwargs["headers"] == {"Range": "bytes=100-199"}
    assert get.call_args_list[1].kwargs["headers"] == {"Range": "bytes=100-"}


def test_open_uses_ca_bundle(recording_storage):
    recording_storage.ca_bundle = "/etc/ssl/custom.pem"
    with patch("files_storage.storage.requests.get", return_value=fake_response()) as get:
        recording_storage.open("a")

    assert get.call_args.kwargs["verify"] == "/etc/ssl/custom.pem"


@pytest.mark.parametrize("status_code, error_class", [
    (404, NotFoundError),
    (403, AccessDeniedError),
    (500, TransportError),
])
def test_open_error_status(recording_storage, status_code, error_class):
    response = fake_response(status_code)
    with patch("files_storage.storage.requests.get", return_value=response):
        with pytest.raises(error_class):
            recording_storage.open("missing.txt")

    response.close.assert_called_once()


def test_open_connection_failure(recording_storage):
    error = requests.exceptions.ConnectionError("connection refused")
    with patch("files_storage.storage.requests.get", side_effect=error):
        with pytest.raises(TransportError) as exc_info:
            recording_storage.open("a")

    assert exc_info.value.original is error
