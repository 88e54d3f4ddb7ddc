from __future__ import annotations

import logging
from functools import partial
from typing import TYPE_CHECKING, Literal, Protocol

import anyio
import httpx
from boto3.session import Session
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .concurrency import run_sync
from .errors import DownloadError

if TYPE_CHECKING:
    from botocore.client import BaseClient

LOG = logging.getLogger("file_gateway.remote")


class RemoteSettings(BaseSettings):
    """Configuration for the remote storage node."""

    model_config = SettingsConfigDict(
        env_prefix="", case_sensitive=False, extra="ignore"
    )

    kind: Literal["http", "s3"] = Field(
        default="http",
        validation_alias="FILE_GATEWAY_REMOTE_KIND",
    )
    endpoint: str | None = Field(
        default=None,
        validation_alias="FILE_GATEWAY_REMOTE_ENDPOINT",
    )
    timeout: float = Field(
        default=60.0,
        validation_alias="FILE_GATEWAY_REMOTE_TIMEOUT",
    )
    access_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "FILE_GATEWAY_REMOTE_ACCESS_KEY_ID",
            "AWS_ACCESS_KEY_ID",
        ),
    )
    secret_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "FILE_GATEWAY_REMOTE_SECRET_ACCESS_KEY",
            "AWS_SECRET_ACCESS_KEY",
        ),
    )
    session_token: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "FILE_GATEWAY_REMOTE_SESSION_TOKEN",
            "AWS_SESSION_TOKEN",
        ),
    )
    region: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "FILE_GATEWAY_REMOTE_REGION",
            "AWS_REGION",
        ),
    )
    addressing_style: Literal["auto", "virtual", "path"] = Field(
        default="path",
        validation_alias="FILE_GATEWAY_REMOTE_ADDRESSING_STYLE",
    )
    bucket_mapping: dict[str, str] | None = Field(
        default=None,
        validation_alias="FILE_GATEWAY_BUCKET_MAPPING",
    )

    @field_validator("bucket_mapping", mode="before")
    @classmethod
    def _parse_bucket_mapping(cls, value: object) -> dict[str, str] | None:
        if value is None:
            return None
        if isinstance(value, dict):
            return {str(k).strip(): str(v).strip() for k, v in value.items()}
        if isinstance(value, str):
            mapping: dict[str, str] = {}
            for pair in value.split(","):
                if ":" in pair:
                    local, remote = pair.split(":", 1)
                    mapping[local.strip()] = remote.strip()
            return mapping or None
        msg = "Invalid bucket mapping format"
        raise ValueError(msg)

    @property
    def enabled(self) -> bool:
        """Check if a remote node is configured."""
        if self.kind == "s3":
            return bool(self.endpoint or self.access_key or self.region)
        return bool(self.endpoint)


def load_remote_settings_from_env() -> RemoteSettings:
    """Load remote node settings from environment variables.

    Returns:
        RemoteSettings instance populated from environment variables.
    """
    return RemoteSettings()


class RemoteFetcher(Protocol):
    async def startup(self) -> None: ...

    async def shutdown(self) -> None: ...

    async def download(self, bucket: str, file_name: str) -> bytes: ...

    def describe(self) -> str: ...


class HttpNodeFetcher:
    """Downloads whole files from a storage node's ``/download`` endpoint."""

    def __init__(
        self,
        endpoint: str,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._endpoint = endpoint
        self._timeout = timeout
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None

    async def startup(self) -> None:
        self._http_client = httpx.AsyncClient(
            base_url=self._endpoint,
            timeout=httpx.Timeout(self._timeout),
            transport=self._transport,
            trust_env=False,
        )

    async def shutdown(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def download(self, bucket: str, file_name: str) -> bytes:
        if self._http_client is None:
            msg = "remote fetcher not initialised"
            raise RuntimeError(msg)

        payload = {"bucket": bucket, "file_name": file_name, "exist": False}
        try:
            response = await self._http_client.post("/download", json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as error:
            msg = (
                f"storage node answered {error.response.status_code} "
                f"for {bucket}/{file_name}"
            )
            raise DownloadError(msg) from error
        except httpx.HTTPError as error:
            msg = f"storage node request failed for {bucket}/{file_name}: {error}"
            raise DownloadError(msg) from error
        return response.content

    def describe(self) -> str:
        return self._endpoint


class S3NodeFetcher:
    """Downloads whole objects from an S3-compatible storage node.

    The first bucket segment names the S3 bucket; any further segments
    become a key prefix in front of the file name.
    """

    def __init__(self, settings: RemoteSettings, client: BaseClient | None = None):
        self._settings = settings
        self._client = client if client is not None else self._build_client()

    def _build_client(self) -> BaseClient:
        session = Session(
            aws_access_key_id=self._settings.access_key,
            aws_secret_access_key=self._settings.secret_key,
            aws_session_token=self._settings.session_token,
            region_name=self._settings.region,
        )
        return session.client(
            "s3",
            endpoint_url=self._settings.endpoint,
            config=BotoConfig(
                signature_version="s3v4",
                retries={"max_attempts": 1},
                connect_timeout=self._settings.timeout,
                read_timeout=self._settings.timeout,
                s3={"addressing_style": self._settings.addressing_style},
            ),
        )

    async def startup(self) -> None:
        pass

    async def shutdown(self) -> None:
        pass

    def object_location(self, bucket: str, file_name: str) -> tuple[str, str]:
        head, _, prefix = bucket.partition("/")
        if not head:
            msg = f"no S3 bucket for {bucket}/{file_name}"
            raise DownloadError(msg)
        mapping = self._settings.bucket_mapping or {}
        remote_bucket = mapping.get(head, head)
        key = f"{prefix}/{file_name}" if prefix else file_name
        return remote_bucket, key

    async def download(self, bucket: str, file_name: str) -> bytes:
        remote_bucket, key = self.object_location(bucket, file_name)
        try:
            remote_obj = await run_sync(
                partial(self._client.get_object, Bucket=remote_bucket, Key=key)
            )
            body = remote_obj["Body"]
            try:
                return await run_sync(body.read)
            finally:
                await run_sync(body.close)
        except (ClientError, BotoCoreError) as error:
            msg = f"s3://{remote_bucket}/{key}: {error}"
            raise DownloadError(msg) from error

    def describe(self) -> str:
        endpoint = self._settings.endpoint or "aws"
        region = self._settings.region or "default"
        return f"{endpoint} ({region})"


class _Download:
    def __init__(self) -> None:
        self.done = anyio.Event()
        self.content: bytes | None = None
        self.error: Exception | None = None


class CoalescingFetcher:
    """Shares one upstream download between concurrent requests for a file."""

    def __init__(self, fetcher: RemoteFetcher):
        self._fetcher = fetcher
        self._inflight: dict[tuple[str, str], _Download] = {}

    @property
    def inner(self) -> RemoteFetcher:
        return self._fetcher

    async def startup(self) -> None:
        await self._fetcher.startup()

    async def shutdown(self) -> None:
        await self._fetcher.shutdown()

    def describe(self) -> str:
        return f"{self._fetcher.describe()} (coalesced)"

    async def download(self, bucket: str, file_name: str) -> bytes:
        key = (bucket, file_name)
        pending = self._inflight.get(key)
        if pending is not None:
            LOG.debug("joining in-flight download of %s/%s", bucket, file_name)
            await pending.done.wait()
            if pending.error is not None:
                raise pending.error
            assert pending.content is not None
            return pending.content

        pending = _Download()
        self._inflight[key] = pending
        try:
            pending.content = await self._fetcher.download(bucket, file_name)
        except Exception as error:
            pending.error = error
            raise
        except BaseException:
            pending.error = DownloadError(
                f"download of {bucket}/{file_name} was abandoned"
            )
            raise
        finally:
            del self._inflight[key]
            pending.done.set()
        return pending.content


def build_fetcher(settings: RemoteSettings) -> HttpNodeFetcher | S3NodeFetcher | None:
    if not settings.enabled:
        return None
    if settings.kind == "s3":
        return S3NodeFetcher(settings)
    assert settings.endpoint is not None
    return HttpNodeFetcher(settings.endpoint, timeout=settings.timeout)
