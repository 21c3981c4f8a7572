from __future__ import annotations

from dataclasses import dataclass

import aioboto3
from botocore.config import Config as BotoConfig

from downloadgate.config import Settings


class ObjectStorageConfigError(ValueError):
    pass


@dataclass(frozen=True, slots=True)
class ObjectStorageConfig:
    endpoint: str | None
    bucket: str
    access_key: str
    secret_key: str
    region: str
    presign_seconds: int

    @staticmethod
    def from_settings(settings: Settings) -> "ObjectStorageConfig":
        if not settings.object_storage_bucket:
            raise ObjectStorageConfigError(
                "OBJECT_STORAGE_BUCKET is required when object storage is enabled"
            )
        if not settings.object_storage_access_key:
            raise ObjectStorageConfigError(
                "OBJECT_STORAGE_ACCESS_KEY is required when object storage is enabled"
            )
        if not settings.object_storage_secret_key:
            raise ObjectStorageConfigError(
                "OBJECT_STORAGE_SECRET_KEY is required when object storage is enabled"
            )
        if settings.object_storage_presign_seconds <= 0:
            raise ObjectStorageConfigError("OBJECT_STORAGE_PRESIGN_SECONDS must be positive")

        return ObjectStorageConfig(
            endpoint=settings.object_storage_endpoint,
            bucket=settings.object_storage_bucket,
            access_key=settings.object_storage_access_key,
            secret_key=settings.object_storage_secret_key,
            region=settings.object_storage_region,
            presign_seconds=settings.object_storage_presign_seconds,
        )


class ObjectStorageService:
    """
    Turns a fetch authorization's asset location into a short-lived URL.

    Bytes are served by the object store itself; this service only signs GET
    requests for the asset's object key.
    """

    def __init__(self, settings: Settings) -> None:
        self._enabled = settings.object_storage_enabled
        self._config = ObjectStorageConfig.from_settings(settings) if self._enabled else None

    @property
    def enabled(self) -> bool:
        return self._enabled

    def _require_enabled(self) -> ObjectStorageConfig:
        if not self._enabled or self._config is None:
            raise RuntimeError("Object storage is not enabled (set OBJECT_STORAGE_ENABLED=true)")
        return self._config

    def _client_kwargs(self, config: ObjectStorageConfig) -> dict:
        return {
            "service_name": "s3",
            "endpoint_url": config.endpoint,
            "aws_access_key_id": config.access_key,
            "aws_secret_access_key": config.secret_key,
            "region_name": config.region,
            "config": BotoConfig(signature_version="s3v4", s3={"addressing_style": "path"}),
        }

    async def presign_download(self, *, object_key: str, filename: str | None = None) -> str:
        """Presigned GET URL for an object, valid for the configured window."""
        config = self._require_enabled()
        params = {"Bucket": config.bucket, "Key": object_key}
        if filename:
            params["ResponseContentDisposition"] = f'attachment; filename="{filename}"'

        session = aioboto3.Session()
        async with session.client(**self._client_kwargs(config)) as s3:
            return await s3.generate_presigned_url(
                "get_object",
                Params=params,
                ExpiresIn=config.presign_seconds,
            )

