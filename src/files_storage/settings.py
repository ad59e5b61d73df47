# src/files_storage/settings.py
import json
from functools import lru_cache
from typing import Any, Dict, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from files_storage.schemas import (
    DEFAULT_COPY_MULTIPART_THRESHOLD,
    DEFAULT_DELETE_CONCURRENCY,
    DEFAULT_MULTIPART_CONCURRENCY,
    DEFAULT_UPLOAD_MULTIPART_THRESHOLD,
)


class Settings(BaseSettings):
    """
    Single source of truth for storage settings.

    Configuration precedence:
    1. Environment variables (highest priority)
    2. .env file (if exists)
    3. Default values in this class (lowest priority)

    Usage:
        from files_storage.settings import get_settings
        settings = get_settings()
        bucket_name = settings.s3_bucket_name
    """

    # AWS Core Settings
    aws_region: str = Field(
        default="us-east-1",
        alias="AWS_DEFAULT_REGION"
    )

    aws_access_key_id: Optional[str] = Field(
        default=None,
        alias="AWS_ACCESS_KEY_ID"
    )

    aws_secret_access_key: Optional[str] = Field(
        default=None,
        alias="AWS_SECRET_ACCESS_KEY"
    )

    aws_session_token: Optional[str] = Field(
        default=None,
        alias="AWS_SESSION_TOKEN"
    )

    aws_endpoint_url: Optional[str] = Field(
        default=None,
        alias="AWS_ENDPOINT_URL",
        description="Custom endpoint for S3-compatible services (MinIO, R2, moto server)"
    )

    # S3 Configuration
    s3_bucket_name: str = Field(
        default="files-storage",
        alias="S3_BUCKET_NAME",
        description="Bucket that holds the stored files"
    )

    s3_prefix: Optional[str] = Field(
        default=None,
        alias="S3_PREFIX",
        description="Logical namespace inside the bucket, e.g. 'cache' or 'store'"
    )

    s3_host: Optional[str] = Field(
        default=None,
        alias="S3_HOST",
        description="CDN host that replaces the S3 host in generated URLs"
    )

    s3_upload_options: Dict[str, Any] = Field(
        default_factory=dict,
        alias="S3_UPLOAD_OPTIONS",
        description="JSON object of default upload options, e.g. {\"acl\": \"private\"}"
    )

    s3_force_path_style: bool = Field(
        default=False,
        alias="S3_FORCE_PATH_STYLE"
    )

    s3_ca_bundle: Optional[str] = Field(
        default=None,
        alias="S3_CA_BUNDLE",
        description="CA bundle used to verify TLS when streaming objects"
    )

    # Transfer Configuration
    upload_multipart_threshold: int = Field(
        default=DEFAULT_UPLOAD_MULTIPART_THRESHOLD,
        alias="S3_UPLOAD_MULTIPART_THRESHOLD",
        description="Uploads of at least this many bytes use multipart upload"
    )

    copy_multipart_threshold: int = Field(
        default=DEFAULT_COPY_MULTIPART_THRESHOLD,
        alias="S3_COPY_MULTIPART_THRESHOLD",
        description="Copies of at least this many bytes use multipart copy"
    )

    multipart_concurrency: int = Field(
        default=DEFAULT_MULTIPART_CONCURRENCY,
        alias="S3_MULTIPART_CONCURRENCY",
        description="Worker threads per multipart transfer"
    )

    delete_concurrency: int = Field(
        default=DEFAULT_DELETE_CONCURRENCY,
        alias="S3_DELETE_CONCURRENCY",
        description="Batch delete requests sent in parallel"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        alias="LOG_LEVEL"
    )

    @field_validator("s3_upload_options", mode="before")
    @classmethod
    def parse_upload_options(cls, v):
        """Accept the upload options as a JSON string."""
        if isinstance(v, str):
            return json.loads(v) if v.strip() else {}
        return v

    @field_validator(
        "upload_multipart_threshold",
        "copy_multipart_threshold",
        "multipart_concurrency",
        "delete_concurrency",
    )
    @classmethod
    def validate_positive(cls, v, info):
        """Thresholds and worker counts must be positive."""
        if v <= 0:
            raise ValueError(f"{info.field_name} must be positive, got {v}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        level = v.upper()
        if level not in valid_levels:
            raise ValueError(f"Invalid log_level: {v}. Must be one of {valid_levels}")
        return level

    @property
    def multipart_threshold(self) -> Dict[str, int]:
        """Thresholds in the shape the storage adapter takes them."""
        return {
            "upload": self.upload_multipart_threshold,
            "copy": self.copy_multipart_threshold,
        }

    def client_options(self) -> Dict[str, Any]:
        """Keyword arguments for the boto3 session and client."""
        options: Dict[str, Any] = {"region_name": self.aws_region}
        if self.aws_access_key_id:
            options["aws_access_key_id"] = self.aws_access_key_id
        if self.aws_secret_access_key:
            options["aws_secret_access_key"] = self.aws_secret_access_key
        if self.aws_session_token:
            options["aws_session_token"] = self.aws_session_token
        if self.aws_endpoint_url:
            options["endpoint_url"] = self.aws_endpoint_url
        return options

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    This ensures we only create one Settings instance per process.
    """
    return Settings()
