"""
S3 backend for the storage adapter.

``ObjectStorageBackend`` is the capability set the adapter depends on;
``S3Backend`` implements it with boto3. This is the only module that talks
to boto3 directly, and every call goes through ``translate_client_errors``.
"""
import logging
from typing import IO, TYPE_CHECKING, Any, BinaryIO, Dict, Iterator, List, Mapping, Optional, Protocol, Tuple

import boto3
from boto3.s3.transfer import TransferConfig, create_transfer_manager
from botocore import UNSIGNED
from botocore.config import Config
from s3transfer.subscribers import BaseSubscriber

from files_storage.errors import translate_client_errors
from files_storage.schemas import BackendIdentity

if TYPE_CHECKING:
    from mypy_boto3_s3 import S3Client

logger = logging.getLogger(__name__)

DEFAULT_URL_EXPIRY = 3600

# keyword arguments that configure the boto3 session rather than the client
SESSION_OPTIONS = {
    "aws_access_key_id",
    "aws_secret_access_key",
    "aws_session_token",
    "region_name",
    "profile_name",
}

SPECIAL_PARAM_NAMES = {
    "acl": "ACL",
    "content_md5": "ContentMD5",
    "sse_customer_algorithm": "SSECustomerAlgorithm",
    "sse_customer_key": "SSECustomerKey",
    "sse_customer_key_md5": "SSECustomerKeyMD5",
    "sse_kms_key_id": "SSEKMSKeyId",
    "sse_kms_encryption_context": "SSEKMSEncryptionContext",
    "copy_source_sse_customer_algorithm": "CopySourceSSECustomerAlgorithm",
    "copy_source_sse_customer_key": "CopySourceSSECustomerKey",
}

# copies only replace the destination's metadata when told to
METADATA_PARAMS = {
    "ContentType",
    "ContentDisposition",
    "ContentEncoding",
    "ContentLanguage",
    "CacheControl",
    "Expires",
    "Metadata",
}


def to_s3_param_name(name: str) -> str:
    """``content_type`` -> ``ContentType``; names with capitals pass through."""
    if name in SPECIAL_PARAM_NAMES:
        return SPECIAL_PARAM_NAMES[name]
    if name != name.lower():
        return name
    return "".join(part.capitalize() for part in name.split("_"))


def to_s3_params(options: Mapping[str, Any]) -> Dict[str, Any]:
    """Convert adapter options to boto3 request parameters, later keys win."""
    params: Dict[str, Any] = {}
    for name, value in options.items():
        params[to_s3_param_name(name)] = value
    return params


# boto3 parameter name -> field name of a POST policy form (and PUT header)
FORM_FIELD_NAMES = {
    "ACL": "acl",
    "CacheControl": "Cache-Control",
    "ContentType": "Content-Type",
    "ContentDisposition": "Content-Disposition",
    "ContentEncoding": "Content-Encoding",
    "ContentLanguage": "Content-Language",
    "Expires": "Expires",
    "StorageClass": "x-amz-storage-class",
    "ServerSideEncryption": "x-amz-server-side-encryption",
    "SSEKMSKeyId": "x-amz-server-side-encryption-aws-kms-key-id",
    "WebsiteRedirectLocation": "x-amz-website-redirect-location",
    "Tagging": "tagging",
    "SuccessActionStatus": "success_action_status",
    "SuccessActionRedirect": "success_action_redirect",
}


def to_form_fields(options: Mapping[str, Any]) -> Dict[str, str]:
    """Convert adapter options to S3 form field names; ``metadata`` becomes ``x-amz-meta-*``."""
    fields: Dict[str, str] = {}
    for name, value in to_s3_params(options).items():
        if name == "Metadata":
            for meta_name, meta_value in value.items():
                fields[f"x-amz-meta-{meta_name}"] = str(meta_value)
        else:
            fields[FORM_FIELD_NAMES.get(name, name)] = str(value)
    return fields


class ObjectStorageBackend(Protocol):
    """What the storage adapter needs from an object-storage service."""

    bucket: str

    @property
    def identity(self) -> BackendIdentity: ...

    def put(self, key: str, stream: BinaryIO, options: Mapping[str, Any], multipart: bool = False,
            threshold: Optional[int] = None, max_concurrency: Optional[int] = None) -> None: ...

    def copy(self, source_bucket: str, source_key: str, key: str, options: Mapping[str, Any],
             multipart: bool = False, threshold: Optional[int] = None, size: Optional[int] = None,
             max_concurrency: Optional[int] = None) -> None: ...

    def head(self, key: str) -> Dict[str, Any]: ...

    def get(self, key: str, target: IO[bytes]) -> Optional[str]: ...

    def delete(self, key: str) -> None: ...

    def batch_delete(self, objects: List[Dict[str, str]]) -> List[Dict[str, Any]]: ...

    def list_versions(self, prefix: Optional[str]) -> Iterator[Dict[str, str]]: ...

    def sign(self, method: str, key: str, options: Mapping[str, Any], expires_in: int) -> str: ...

    def public_url(self, key: str, options: Mapping[str, Any]) -> str: ...

    def presign_post(self, key: str, options: Mapping[str, Any], expires_in: int) -> Dict[str, Any]: ...

    def presign_put(self, key: str, options: Mapping[str, Any], expires_in: int) -> Tuple[str, Dict[str, str]]: ...


def _transfer_config(threshold: Optional[int], max_concurrency: Optional[int]) -> TransferConfig:
    options = {}
    if threshold is not None:
        options["multipart_threshold"] = threshold
    if max_concurrency is not None:
        options["max_concurrency"] = max_concurrency
    return TransferConfig(**options)


class _ProvideSizeSubscriber(BaseSubscriber):
    """Hands a known object size to s3transfer so it skips the HEAD request."""

    def __init__(self, size: int):
        self.size = size

    def on_queued(self, future, **kwargs):
        future.meta.provide_transfer_size(self.size)


class S3Backend:
    """boto3 implementation of ``ObjectStorageBackend`` for one bucket."""

    kind = "s3"

    def __init__(
        self,
        bucket: str,
        client: Optional["S3Client"] = None,
        credential_identity: Optional[str] = None,
        force_path_style: bool = False,
        **client_options: Any,
    ):
        """
        Initialize the backend.

        Args:
            bucket: Bucket every operation works in
            client: Existing boto3 S3 client; built from ``client_options`` if omitted
            credential_identity: Identity of an injected client, used for copy eligibility;
                without it an injected client never takes part in server-side copies
            force_path_style: Use ``https://host/bucket/key`` URLs
            **client_options: ``boto3.session.Session`` and ``Session.client`` arguments
        """
        self.bucket = bucket
        self.endpoint_url = client_options.get("endpoint_url")

        if client is None:
            session_options = {k: v for k, v in client_options.items() if k in SESSION_OPTIONS}
            other_options = {k: v for k, v in client_options.items() if k not in SESSION_OPTIONS}
            session = boto3.session.Session(**session_options)

            config = other_options.pop("config", None) or Config()
            if force_path_style:
                config = config.merge(Config(s3={"addressing_style": "path"}))

            client = session.client("s3", config=config, **other_options)

            credentials = session.get_credentials()
            if credentials is not None and credential_identity is None:
                credential_identity = credentials.get_frozen_credentials().access_key
        elif self.endpoint_url is None:
            self.endpoint_url = client.meta.endpoint_url

        self.client = client
        self._credential_identity = credential_identity
        self._unsigned_client = None

        logger.info(f"S3 backend ready for bucket '{bucket}' (endpoint: {self.endpoint_url or 'aws'})")

    @property
    def identity(self) -> BackendIdentity:
        return BackendIdentity(self.kind, self.endpoint_url, self._credential_identity)

    def put(self, key, stream, options, multipart=False, threshold=None, max_concurrency=None):
        params = to_s3_params(options)
        with translate_client_errors(f"Upload of '{key}'"):
            if multipart:
                config = _transfer_config(threshold, max_concurrency)
                self.client.upload_fileobj(stream, self.bucket, key, ExtraArgs=params, Config=config)
            else:
                self.client.put_object(Bucket=self.bucket, Key=key, Body=stream, **params)
        logger.info(f"Uploaded s3://{self.bucket}/{key} (multipart={multipart})")

    def copy(self, source_bucket, source_key, key, options, multipart=False, threshold=None,
             size=None, max_concurrency=None):
        params = to_s3_params(options)
        if METADATA_PARAMS.intersection(params):
            params.setdefault("MetadataDirective", "REPLACE")

        copy_source = {"Bucket": source_bucket, "Key": source_key}
        with translate_client_errors(f"Copy of '{source_key}' to '{key}'"):
            if multipart:
                config = _transfer_config(threshold, max_concurrency)
                subscribers = [_ProvideSizeSubscriber(size)] if size is not None else None
                with create_transfer_manager(self.client, config) as manager:
                    future = manager.copy(
                        copy_source, self.bucket, key, extra_args=params, subscribers=subscribers
                    )
                    future.result()
            else:
                self.client.copy_object(CopySource=copy_source, Bucket=self.bucket, Key=key, **params)
        logger.info(f"Copied s3://{source_bucket}/{source_key} to s3://{self.bucket}/{key} (multipart={multipart})")

    def head(self, key):
        with translate_client_errors(f"HEAD of '{key}'"):
            return self.client.head_object(Bucket=self.bucket, Key=key)

    def get(self, key, target):
        with translate_client_errors(f"Download of '{key}'"):
            response = self.client.get_object(Bucket=self.bucket, Key=key)
            for chunk in response["Body"].iter_chunks():
                target.write(chunk)
        return response.get("ContentType")

    def delete(self, key):
        with translate_client_errors(f"Delete of '{key}'"):
            self.client.delete_object(Bucket=self.bucket, Key=key)

    def batch_delete(self, objects):
        with translate_client_errors(f"Batch delete of {len(objects)} object(s)"):
            response = self.client.delete_objects(
                Bucket=self.bucket,
                Delete={"Objects": objects, "Quiet": True},
            )
        return response.get("Errors", [])

    def list_versions(self, prefix):
        paginator = self.client.get_paginator("list_object_versions")
        kwargs = {"Bucket": self.bucket}
        if prefix:
            kwargs["Prefix"] = prefix

        with translate_client_errors(f"Listing versions under '{prefix or ''}'"):
            for page in paginator.paginate(**kwargs):
                for entry in page.get("Versions", []) + page.get("DeleteMarkers", []):
                    yield {"Key": entry["Key"], "VersionId": entry["VersionId"]}

    def sign(self, method, key, options, expires_in=DEFAULT_URL_EXPIRY):
        params = {"Bucket": self.bucket, "Key": key, **to_s3_params(options)}
        with translate_client_errors(f"Signing {method} for '{key}'"):
            return self.client.generate_presigned_url(
                ClientMethod=method,
                Params=params,
                ExpiresIn=expires_in,
            )

    def public_url(self, key, options):
        params = {"Bucket": self.bucket, "Key": key, **to_s3_params(options)}
        with translate_client_errors(f"Public URL for '{key}'"):
            return self._get_unsigned_client().generate_presigned_url(
                ClientMethod="get_object",
                Params=params,
            )

    def presign_post(self, key, options, expires_in=DEFAULT_URL_EXPIRY):
        """Sign a POST policy; every option becomes a form field and a policy condition."""
        options = dict(options)
        content_length_range = options.pop("content_length_range", None)

        fields = to_form_fields(options)
        conditions: List[Any] = [{name: value} for name, value in fields.items()]
        if content_length_range is not None:
            minimum, maximum = content_length_range
            conditions.append(["content-length-range", minimum, maximum])

        with translate_client_errors(f"Presigning POST for '{key}'"):
            return self.client.generate_presigned_post(
                Bucket=self.bucket,
                Key=key,
                Fields=fields,
                Conditions=conditions,
                ExpiresIn=expires_in,
            )

    def presign_put(self, key, options, expires_in=DEFAULT_URL_EXPIRY):
        """Sign a PUT URL; returns it with the headers the client has to send."""
        url = self.sign("put_object", key, options, expires_in)
        fields = to_form_fields(options)
        headers = {
            name: value
            for name, value in fields.items()
            if name.startswith(("Content-", "Cache-", "Expires", "x-amz-"))
        }
        if "acl" in fields:
            headers["x-amz-acl"] = fields["acl"]
        return url, headers

    def _get_unsigned_client(self):
        """Client with signing disabled; its presigned URLs are plain public URLs."""
        if self._unsigned_client is None:
            meta = self.client.meta
            self._unsigned_client = boto3.client(
                "s3",
                region_name=meta.region_name,
                endpoint_url=self.endpoint_url,
                config=meta.config.merge(Config(signature_version=UNSIGNED)),
            )
        return self._unsigned_client
