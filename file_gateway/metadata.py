from __future__ import annotations

import logging
from typing import Protocol

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict
from redis.asyncio import Redis
from redis.exceptions import RedisError

from .errors import (
    MetadataCorruptError,
    MetadataNotFoundError,
    MetadataUnavailableError,
)

LOG = logging.getLogger("file_gateway.metadata")


class FileMetadata(BaseModel):
    """Descriptive metadata written by the upload service."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    etag: str = Field(
        default="",
        validation_alias=AliasChoices("e_tag", "e_tage", "etag"),
    )
    header: str = ""
    file_size: int = 0
    file_extension: str = ""


class MetadataSettings(BaseSettings):
    """Configuration for the metadata key-value store."""

    model_config = SettingsConfigDict(
        env_prefix="", case_sensitive=False, extra="ignore"
    )

    redis_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("FILE_GATEWAY_REDIS_URL", "REDIS_URL"),
    )
    timeout: float = Field(
        default=5.0,
        validation_alias="FILE_GATEWAY_REDIS_TIMEOUT",
    )

    @property
    def enabled(self) -> bool:
        return bool(self.redis_url)


def load_metadata_settings_from_env() -> MetadataSettings:
    """Load metadata store settings from environment variables.

    Returns:
        MetadataSettings instance populated from environment variables.
    """
    return MetadataSettings()


class MetadataStore(Protocol):
    async def get(self, key: str) -> bytes | None: ...

    async def close(self) -> None: ...


class RedisMetadataStore:
    def __init__(self, client: Redis):
        self._client = client

    @classmethod
    def from_settings(cls, settings: MetadataSettings) -> RedisMetadataStore | None:
        if not settings.enabled:
            return None
        assert settings.redis_url is not None
        client = Redis.from_url(
            settings.redis_url,
            socket_timeout=settings.timeout,
            socket_connect_timeout=settings.timeout,
        )
        return cls(client)

    async def get(self, key: str) -> bytes | None:
        try:
            return await self._client.get(key)
        except RedisError as error:
            raise MetadataUnavailableError(str(error)) from error

    async def close(self) -> None:
        await self._client.aclose()


def metadata_key(bucket: str, file_name: str) -> str:
    return f"{bucket}/{file_name}"


async def fetch_metadata(
    store: MetadataStore | None, bucket: str, file_name: str
) -> FileMetadata:
    """Load and decode the metadata stored under ``bucket/file_name``.

    Raises:
        MetadataUnavailableError: no store is configured or it is unreachable.
        MetadataNotFoundError: nothing is stored under the key.
        MetadataCorruptError: the stored value is not valid metadata JSON.
    """
    if store is None:
        msg = "metadata store not configured"
        raise MetadataUnavailableError(msg)

    key = metadata_key(bucket, file_name)
    raw = await store.get(key)
    if raw is None:
        msg = f"no metadata for {key}"
        raise MetadataNotFoundError(msg)

    try:
        return FileMetadata.model_validate_json(raw)
    except ValidationError as error:
        LOG.debug("undecodable metadata for %s: %r", key, raw[:256])
        msg = f"invalid metadata for {key}: {error.error_count()} error(s)"
        raise MetadataCorruptError(msg) from error
