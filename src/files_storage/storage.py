"""
S3 storage adapter.

Stores, retrieves and serves uploaded files in one bucket, optionally under a
prefix. Uploads pick between a server-side copy and a byte write, and between
a single request and a multipart transfer, based on the source and its size.
"""
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from itertools import islice
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union
from urllib.parse import urlsplit

import requests

from files_storage.backend import DEFAULT_URL_EXPIRY, ObjectStorageBackend, S3Backend, to_s3_param_name
from files_storage.encoding import encode_content_disposition
from files_storage.errors import (
    AccessDeniedError,
    ConfigurationError,
    NotFoundError,
    PartialBatchFailure,
    StorageError,
    TransportError,
)
from files_storage.paths import resolve_path
from files_storage.schemas import (
    BATCH_DELETE_LIMIT,
    DEFAULT_DELETE_CONCURRENCY,
    DEFAULT_MULTIPART_CONCURRENCY,
    DownloadedFile,
    PresignedCredential,
    StorageConfig,
    StoredObjectSource,
    StreamSource,
    TransferMode,
    TransferPlan,
    TransferSource,
    to_transfer_source,
)
from files_storage.settings import Settings, get_settings
from files_storage.strategy import decide
from files_storage.utils.decorators import log_storage_operation

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024
DEFAULT_STREAM_TIMEOUT = 30.0

DISPOSITION_PARAMS = {"ContentDisposition", "ResponseContentDisposition"}


def _chunked(items: Iterable[Any], size: int) -> Iterator[List[Any]]:
    iterator = iter(items)
    while True:
        chunk = list(islice(iterator, size))
        if not chunk:
            return
        yield chunk


def _encode_dispositions(options: Mapping[str, Any]) -> Dict[str, Any]:
    """Copy of ``options`` with every disposition value filename-encoded."""
    encoded = dict(options)
    for name, value in options.items():
        if value and to_s3_param_name(name) in DISPOSITION_PARAMS:
            encoded[name] = encode_content_disposition(value)
    return encoded


def _has_param(options: Mapping[str, Any], param: str) -> bool:
    return any(to_s3_param_name(name) == param and value for name, value in options.items())


class S3Storage:
    """
    Storage adapter for one S3 bucket.

    Usage:
        storage = S3Storage(bucket="my-app", prefix="cache", region_name="eu-west-1")
        storage.upload(b"%PDF-1.4 ...", "invoice.pdf", metadata={"mime_type": "application/pdf"})
        storage.url("invoice.pdf", download=True)
    """

    def __init__(
        self,
        bucket: str,
        prefix: Optional[str] = None,
        host: Optional[str] = None,
        upload_options: Optional[Mapping[str, Any]] = None,
        multipart_threshold: Optional[Mapping[str, int]] = None,
        multipart_concurrency: int = DEFAULT_MULTIPART_CONCURRENCY,
        delete_concurrency: int = DEFAULT_DELETE_CONCURRENCY,
        backend: Optional[ObjectStorageBackend] = None,
        ca_bundle: Optional[str] = None,
        **client_options: Any,
    ):
        """
        Initialize the adapter.

        Args:
            bucket: Bucket name
            prefix: Namespace inside the bucket every id is stored under
            host: CDN host used by ``url`` unless a call passes its own
            upload_options: Defaults for uploads, copies and presigns, e.g. ``{"acl": "private"}``
            multipart_threshold: ``{"upload": bytes, "copy": bytes}``, defaults 15 MiB and 100 MiB
            multipart_concurrency: Worker threads per multipart transfer
            delete_concurrency: Batch delete requests in flight at once
            backend: Ready backend; when omitted an ``S3Backend`` is built
            ca_bundle: CA bundle for TLS verification in ``open``
            **client_options: Passed to ``S3Backend`` (credentials, region, endpoint, client)
        """
        self.config = StorageConfig.build(
            bucket=bucket,
            prefix=prefix,
            host=host,
            upload_options=upload_options,
            multipart_threshold=multipart_threshold,
            multipart_concurrency=multipart_concurrency,
            delete_concurrency=delete_concurrency,
        )

        if backend is not None and client_options:
            raise ConfigurationError(
                f"Client options {sorted(client_options)} cannot be combined with an explicit backend"
            )
        self.backend = backend or S3Backend(bucket, **client_options)
        self.ca_bundle = ca_bundle

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **overrides: Any) -> "S3Storage":
        """Build an adapter from environment settings."""
        settings = settings or get_settings()
        options: Dict[str, Any] = dict(
            bucket=settings.s3_bucket_name,
            prefix=settings.s3_prefix,
            host=settings.s3_host,
            upload_options=settings.s3_upload_options,
            multipart_threshold=settings.multipart_threshold,
            multipart_concurrency=settings.multipart_concurrency,
            delete_concurrency=settings.delete_concurrency,
            ca_bundle=settings.s3_ca_bundle,
        )
        if "backend" not in overrides:
            options.update(settings.client_options())
            options["force_path_style"] = settings.s3_force_path_style
        options.update(overrides)
        return cls(**options)

    @property
    def bucket(self) -> str:
        return self.config.bucket

    @property
    def prefix(self) -> Optional[str]:
        return self.config.prefix

    @property
    def host(self) -> Optional[str]:
        return self.config.host

    @property
    def upload_options(self) -> Mapping[str, Any]:
        return self.config.upload_options

    def path(self, id: str) -> str:
        """Bucket key of the object with the given id."""
        return resolve_path(self.config.prefix, id)

    def stored(self, id: str, size: Optional[int] = None) -> StoredObjectSource:
        """Reference an object of this storage as the source of another upload."""
        return StoredObjectSource(backend=self.backend, key=self.path(id), size=size)

    @log_storage_operation("upload")
    def upload(
        self,
        io: Union[TransferSource, bytes, str, Path, Any],
        id: str,
        metadata: Optional[Mapping[str, Any]] = None,
        **options: Any,
    ) -> TransferPlan:
        """
        Upload ``io`` under ``id``.

        Content type and disposition are derived from ``metadata`` (``mime_type``,
        ``filename``), then the adapter's ``upload_options`` and finally the call's
        ``options`` are applied on top. Objects of a storage with the same backend
        identity are copied server-side.

        Args:
            io: Bytes, a binary file object, a local path or a ``TransferSource``
            id: Object id inside the namespace
            metadata: File metadata, ``mime_type`` and ``filename`` are used
            **options: Upload options, ``max_concurrency`` tunes multipart transfers

        Returns:
            TransferPlan describing how the bytes were moved
        """
        metadata = metadata or {}
        content_type = metadata.get("mime_type")
        filename = metadata.get("filename")

        upload_options: Dict[str, Any] = {}
        if content_type:
            upload_options["content_type"] = content_type
        if filename:
            upload_options["content_disposition"] = f'inline; filename="{filename}"'

        upload_options.update(self.config.upload_options)
        upload_options.update(options)
        upload_options = _encode_dispositions(upload_options)
        max_concurrency = upload_options.pop("max_concurrency", self.config.multipart_concurrency)

        if isinstance(io, (str, Path)):
            with open(io, "rb") as file:
                source = StreamSource(stream=file, size=os.fstat(file.fileno()).st_size)
                return self._transfer(source, self.path(id), upload_options, max_concurrency)

        return self._transfer(to_transfer_source(io), self.path(id), upload_options, max_concurrency)

    def _transfer(
        self,
        source: TransferSource,
        key: str,
        options: Dict[str, Any],
        max_concurrency: int,
    ) -> TransferPlan:
        plan = decide(source, key, self.config, self.backend.identity)

        if plan.mode is TransferMode.COPY:
            self.backend.copy(
                source.bucket,
                source.key,
                key,
                options,
                multipart=plan.multipart,
                threshold=plan.threshold,
                size=plan.size,
                max_concurrency=max_concurrency,
            )
        elif isinstance(source, StoredObjectSource):
            # stored elsewhere, so the bytes have to travel through this process
            with NamedTemporaryFile(prefix="files-storage-") as tempfile:
                source.backend.get(source.key, tempfile)
                tempfile.seek(0)
                self.backend.put(
                    key,
                    tempfile,
                    options,
                    multipart=plan.multipart,
                    threshold=plan.threshold,
                    max_concurrency=max_concurrency,
                )
        else:
            self.backend.put(
                key,
                source.stream,
                options,
                multipart=plan.multipart,
                threshold=plan.threshold,
                max_concurrency=max_concurrency,
            )
        return plan

    @log_storage_operation("download")
    def download(self, id: str) -> DownloadedFile:
        """
        Download the object into a temporary file.

        The returned file is rewound and removed once closed:

            with storage.download("invoice.pdf") as downloaded:
                data = downloaded.file.read()
        """
        tempfile = NamedTemporaryFile(prefix="files-storage-", suffix=Path(id).suffix)
        try:
            content_type = self.backend.get(self.path(id), tempfile)
        except Exception:
            tempfile.close()
            raise
        tempfile.seek(0)
        return DownloadedFile(file=tempfile, content_type=content_type)

    def open(
        self,
        id: str,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        byte_range: Optional[Tuple[int, Optional[int]]] = None,
        timeout: Optional[float] = DEFAULT_STREAM_TIMEOUT,
        **url_options: Any,
    ) -> Iterator[bytes]:
        """
        Stream the object's bytes over HTTP.

        The request is sent right away so a missing object fails here; the
        body is read lazily. The iterator is not restartable.

        Args:
            id: Object id
            chunk_size: Bytes per yielded chunk
            byte_range: ``(first, last)`` byte offsets, ``last`` may be None
            timeout: Connect/read timeout handed to ``requests``
            **url_options: Passed to ``url``
        """
        url = self.url(id, **url_options)
        headers = {}
        if byte_range is not None:
            first, last = byte_range
            headers["Range"] = f"bytes={first}-{'' if last is None else last}"

        try:
            response = requests.get(
                url,
                headers=headers,
                stream=True,
                timeout=timeout,
                verify=self.ca_bundle or True,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Opening {self.path(id)} failed: {str(e)}")
            raise TransportError(str(e), original=e) from e

        if response.status_code >= 400:
            response.close()
            message = f"GET {self.path(id)} returned {response.status_code}"
            if response.status_code == 404:
                raise NotFoundError(message)
            if response.status_code in (401, 403):
                raise AccessDeniedError(message)
            raise TransportError(message)

        return self._iter_response(response, chunk_size)

    @staticmethod
    def _iter_response(response: requests.Response, chunk_size: int) -> Iterator[bytes]:
        try:
            for chunk in response.iter_content(chunk_size=chunk_size):
                if chunk:
                    yield chunk
        except requests.exceptions.RequestException as e:
            raise TransportError(str(e), original=e) from e
        finally:
            response.close()

    def exists(self, id: str) -> bool:
        """Check for the object with a HEAD request."""
        try:
            self.backend.head(self.path(id))
            return True
        except NotFoundError:
            return False

    def delete(self, id: str) -> None:
        """Delete one object; missing objects are not an error."""
        self.backend.delete(self.path(id))
        logger.info(f"Deleted {self.path(id)}")

    @log_storage_operation("delete_all")
    def delete_all(self, ids: Iterable[str]) -> None:
        """
        Delete many objects with one request per 1000 keys.

        Every chunk is attempted even when earlier ones fail.

        Raises:
            PartialBatchFailure: listing the keys and chunk indexes that failed
        """
        objects = ({"Key": self.path(id)} for id in ids)
        self._delete_batches(_chunked(objects, BATCH_DELETE_LIMIT))

    @log_storage_operation("clear")
    def clear(self, prefix: Optional[str] = None) -> None:
        """
        Delete every object version under the namespace.

        Args:
            prefix: Sub-namespace below the adapter's prefix; the whole
                namespace (the whole bucket without a prefix) when omitted
        """
        namespace = self.path(prefix) if prefix else self.config.prefix
        list_prefix = f"{namespace.rstrip('/')}/" if namespace else None

        # "null" is the version id of objects written before versioning was enabled
        objects = (
            {"Key": version["Key"], "VersionId": version["VersionId"]}
            if version.get("VersionId")
            else {"Key": version["Key"]}
            for version in self.backend.list_versions(list_prefix)
        )
        self._delete_batches(_chunked(objects, BATCH_DELETE_LIMIT))
        logger.info(f"Cleared {list_prefix or 'bucket ' + self.bucket}")

    def _delete_batches(self, batches: Iterable[List[Dict[str, str]]]) -> None:
        def delete_batch(indexed_batch):
            index, batch = indexed_batch
            try:
                return index, batch, self.backend.batch_delete(batch), None
            except StorageError as e:
                logger.error(f"Batch delete chunk {index} failed: {str(e)}")
                return index, batch, [], e

        if self.config.delete_concurrency > 1:
            with ThreadPoolExecutor(max_workers=self.config.delete_concurrency) as executor:
                results = list(executor.map(delete_batch, enumerate(batches)))
        else:
            results = [delete_batch(indexed_batch) for indexed_batch in enumerate(batches)]

        failed_keys: List[str] = []
        failed_chunks: List[int] = []
        errors: List[Any] = []
        for index, batch, batch_errors, exception in results:
            if exception is not None:
                failed_chunks.append(index)
                failed_keys.extend(obj["Key"] for obj in batch)
                errors.append(exception)
            elif batch_errors:
                failed_chunks.append(index)
                failed_keys.extend(error["Key"] for error in batch_errors)
                errors.extend(batch_errors)

        logger.info(f"Batch deleted {len(results)} chunk(s), {len(failed_chunks)} failed")
        if failed_chunks:
            raise PartialBatchFailure(failed_keys, failed_chunks, errors)

    def url(
        self,
        id: str,
        download: bool = False,
        public: bool = False,
        host: Optional[str] = None,
        **options: Any,
    ) -> str:
        """
        URL of the object.

        Args:
            id: Object id
            download: Force a download (``attachment`` disposition) unless a
                ``response_content_disposition`` is given
            public: Unsigned URL; the object must be publicly readable
            host: CDN host replacing the S3 host, defaults to the adapter's ``host``
            **options: ``expires_in`` and ``GetObject`` parameters such as
                ``response_content_type``, forwarded to the signer

        Returns:
            Signed URL valid for ``expires_in`` seconds, or a public URL
        """
        if download and not _has_param(options, "ResponseContentDisposition"):
            options["response_content_disposition"] = "attachment"
        options = _encode_dispositions(options)
        expires_in = options.pop("expires_in", DEFAULT_URL_EXPIRY)

        key = self.path(id)
        if public:
            url = self.backend.public_url(key, options)
        else:
            url = self.backend.sign("get_object", key, options, expires_in)

        host = host or self.config.host
        if host:
            url = self._rewrite_host(url, host)
        return url

    def _rewrite_host(self, url: str, host: str) -> str:
        """Point the URL at ``host``, dropping a path-style bucket segment.

        The segment stays when the bucket name appears in either host; that is
        a substring check, so a host that merely contains the bucket name also
        keeps it.
        """
        parsed = urlsplit(url)
        path = parsed.path
        bucket_segment = f"/{self.bucket}"

        if self.bucket not in host and self.bucket not in parsed.netloc:
            if path == bucket_segment or path.startswith(bucket_segment + "/"):
                path = path[len(bucket_segment):]

        request_uri = path + (f"?{parsed.query}" if parsed.query else "")
        return host.rstrip("/") + request_uri

    def presign(self, id: str, method: str = "post", **options: Any) -> PresignedCredential:
        """
        Issue a credential for one direct upload to ``id``.

        Args:
            id: Object id the upload is authorised for
            method: ``post`` for a policy form upload, ``put`` for a signed PUT URL
            **options: Upload options over the adapter's ``upload_options``,
                plus ``expires_in`` and ``content_length_range`` (POST only)
        """
        options = _encode_dispositions({**self.config.upload_options, **options})
        expires_in = options.pop("expires_in", DEFAULT_URL_EXPIRY)
        options.pop("max_concurrency", None)
        key = self.path(id)

        if method == "put":
            options.pop("content_length_range", None)
            url, headers = self.backend.presign_put(key, options, expires_in)
            return PresignedCredential(method="put", url=url, key=key, headers=headers, expires_in=expires_in)

        if method != "post":
            raise ValueError(f"Unsupported presign method: {method}. Must be 'post' or 'put'")

        presigned = self.backend.presign_post(key, options, expires_in)
        return PresignedCredential(
            method="post",
            url=presigned["url"],
            key=key,
            fields={name: str(value) for name, value in presigned["fields"].items()},
            expires_in=expires_in,
        )
