"""Error taxonomy for the storage adapter.

Backend failures are translated into these classes at the boto3 boundary
(``files_storage.backend``). The original botocore exception is always kept
as ``__cause__`` and on the ``original`` attribute; nothing is retried or
swallowed here.
"""
import logging
from contextlib import contextmanager
from typing import Any, Iterator, List, Optional, Sequence

from boto3.exceptions import Boto3Error
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionError as BotoConnectionError,
    EndpointConnectionError,
    NoCredentialsError,
    PartialCredentialsError,
    ReadTimeoutError,
)

logger = logging.getLogger(__name__)

NOT_FOUND_CODES = {"404", "NoSuchKey", "NoSuchBucket", "NotFound", "NoSuchVersion"}
ACCESS_DENIED_CODES = {
    "401",
    "403",
    "AccessDenied",
    "AllAccessDisabled",
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "ExpiredToken",
    "InvalidToken",
}
TRANSPORT_CODES = {
    "500",
    "502",
    "503",
    "504",
    "InternalError",
    "ServiceUnavailable",
    "SlowDown",
    "RequestTimeout",
    "Throttling",
}


class StorageError(Exception):
    """Base class for every error raised by the storage adapter."""

    def __init__(self, message: str, original: Optional[BaseException] = None):
        super().__init__(message)
        self.original = original


class TransportError(StorageError):
    """Backend unreachable, timed out or reporting a server-side failure."""


class NotFoundError(StorageError):
    """The requested object (or its bucket) does not exist."""


class AccessDeniedError(StorageError, PermissionError):
    """The configured credentials lack rights for the operation."""


class ConfigurationError(StorageError, ValueError):
    """Raised eagerly when the adapter is constructed with invalid settings."""


class PartialBatchFailure(StorageError):
    """Some chunks or keys of a batch delete failed.

    Attributes:
        failed_keys: Object keys the backend reported as not deleted.
        failed_chunks: Indexes of chunks whose request raised outright.
        errors: The underlying errors, in the order they were collected.
    """

    def __init__(
        self,
        failed_keys: Sequence[str],
        failed_chunks: Sequence[int],
        errors: Sequence[Any] = (),
    ):
        self.failed_keys: List[str] = list(failed_keys)
        self.failed_chunks: List[int] = list(failed_chunks)
        self.errors: List[Any] = list(errors)
        super().__init__(
            f"Batch delete failed for {len(self.failed_keys)} key(s) "
            f"in chunk(s) {self.failed_chunks}"
        )


def error_code(error: ClientError) -> str:
    """Extract the error code from a botocore ``ClientError``."""
    return str(error.response.get("Error", {}).get("Code", ""))


def is_not_found(error: ClientError) -> bool:
    return error_code(error) in NOT_FOUND_CODES


def translate_error(error: Exception) -> StorageError:
    """Map a botocore exception to the adapter's error taxonomy."""
    if isinstance(error, Boto3Error) and isinstance(error.__context__, ClientError):
        # managed transfers wrap the client error, e.g. S3UploadFailedError
        error = error.__context__
    if isinstance(error, ClientError):
        code = error_code(error)
        message = str(error)
        if code in NOT_FOUND_CODES:
            return NotFoundError(message, original=error)
        if code in ACCESS_DENIED_CODES:
            return AccessDeniedError(message, original=error)
        if code in TRANSPORT_CODES:
            return TransportError(message, original=error)
        return StorageError(message, original=error)
    if isinstance(error, (NoCredentialsError, PartialCredentialsError)):
        return AccessDeniedError(str(error), original=error)
    if isinstance(error, (EndpointConnectionError, BotoConnectionError, ReadTimeoutError)):
        return TransportError(str(error), original=error)
    return StorageError(str(error), original=error)


@contextmanager
def translate_client_errors(operation: str) -> Iterator[None]:
    """Re-raise botocore failures inside the block as ``StorageError``s."""
    try:
        yield
    except (ClientError, BotoCoreError, Boto3Error) as e:
        translated = translate_error(e)
        logger.error(f"{operation} failed: {type(translated).__name__}: {str(e)}")
        raise translated from e
