"""S3-compatible storage backend for captured artifacts."""

from dataclasses import dataclass
from typing import Any, Dict

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger

from .config import S3_BUCKET
from .errors import ConfigurationError
from .storage import CONTENT_TYPES, ArtifactKind, StorageAdapter, _image_kind, build_artifact_name


def _normalize_segment(value: str) -> str:
    """Normalize a path segment for an S3 object key."""
    return "/".join(part for part in value.replace("\\", "/").split("/") if part)


def build_object_key(name: str, prefix: str = "") -> str:
    """Build an S3 object key from an artifact name and optional prefix."""
    normalized_prefix = _normalize_segment(prefix) if prefix else ""
    if normalized_prefix:
        return f"{normalized_prefix}/{name}"
    return name


@dataclass
class S3Config:
    """Configuration for S3-compatible storage."""

    endpoint_url: str
    region: str
    access_key: str
    secret_key: str
    bucket: str = S3_BUCKET
    prefix: str = ""
    verify_ssl: bool = True
    path_style: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "S3Config":
        """Build and validate S3 config from mapping."""
        required_fields = ("endpoint_url", "region", "access_key", "secret_key")
        missing = [field for field in required_fields if not data.get(field)]
        if missing:
            raise ConfigurationError(
                f"Missing required S3 configuration fields: {', '.join(missing)}"
            )

        return cls(
            endpoint_url=str(data["endpoint_url"]),
            region=str(data["region"]),
            access_key=str(data["access_key"]),
            secret_key=str(data["secret_key"]),
            bucket=str(data.get("bucket") or S3_BUCKET),
            prefix=str(data.get("prefix") or ""),
            verify_ssl=bool(data.get("verify_ssl", True)),
            path_style=bool(data.get("path_style", True)),
        )


class S3StorageAdapter(StorageAdapter):
    """Uploads artifacts to S3-compatible object storage."""

    def __init__(self, config: S3Config) -> None:
        """Initialize uploader client with S3-compatible settings."""
        self._config = config
        addressing_style = "path" if config.path_style else "virtual"

        self._client = boto3.client(
            "s3",
            endpoint_url=config.endpoint_url,
            aws_access_key_id=config.access_key,
            aws_secret_access_key=config.secret_key,
            region_name=config.region,
            verify=config.verify_ssl,
            config=Config(s3={"addressing_style": addressing_style}),
        )

    @property
    def bucket(self) -> str:
        """Return configured bucket name."""
        return self._config.bucket

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "S3StorageAdapter":
        """Build the adapter directly from dictionary config."""
        return cls(S3Config.from_dict(data))

    def store_audio(self, buffer: bytes, timestamp: str) -> str:
        return self._put(ArtifactKind.AUDIO, buffer, timestamp)

    def store_image(self, buffer: bytes, kind: ArtifactKind, timestamp: str) -> str:
        return self._put(_image_kind(kind), buffer, timestamp)

    def describe(self) -> str:
        return f"s3 bucket {self._config.bucket} at {self._config.endpoint_url}"

    def _put(self, kind: ArtifactKind, buffer: bytes, timestamp: str) -> str:
        object_key = build_object_key(build_artifact_name(kind, timestamp), self._config.prefix)
        self._client.put_object(
            Bucket=self._config.bucket,
            Key=object_key,
            Body=buffer,
            ContentType=CONTENT_TYPES[kind],
        )
        return object_key

    def check(self) -> bool:
        """Probe the bucket with ``head_bucket``.

        Returns ``False`` instead of raising when the bucket is missing, the
        credentials are rejected or the endpoint cannot be reached.
        """
        try:
            self._client.head_bucket(Bucket=self._config.bucket)
        except (BotoCoreError, ClientError) as error:
            logger.debug(f"Bucket check for {self._config.bucket} failed: {error}")
            return False
        return True
