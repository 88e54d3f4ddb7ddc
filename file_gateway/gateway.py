from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from litestar.enums import MediaType
from litestar.response import Response, Stream

from .cache import CacheSettings, LocalCache, load_cache_settings_from_env
from .content_type import resolve_content_type
from .errors import (
    DownloadError,
    FileReadError,
    GatewayError,
    IllegalParameterError,
)
from .metadata import (
    MetadataSettings,
    RedisMetadataStore,
    fetch_metadata,
    load_metadata_settings_from_env,
)
from .paths import RequestPath, resolve_path
from .remote import (
    CoalescingFetcher,
    RemoteSettings,
    build_fetcher,
    load_remote_settings_from_env,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from litestar import Request

    from .metadata import FileMetadata, MetadataStore
    from .remote import RemoteFetcher

LOG = logging.getLogger("file_gateway.gateway")

DEFAULT_MEDIA_TYPE = "application/octet-stream"


def header_value(value: str) -> str:
    """Carry a UTF-8 value through Litestar's latin-1 header encoding.

    The raw UTF-8 bytes go on the wire unchanged.
    """
    return value.encode("utf-8").decode("latin-1")


class FileGateway:
    """Serves cached files, filling the cache from a remote node on a miss."""

    def __init__(
        self,
        metadata: MetadataStore | None,
        fetcher: RemoteFetcher | None,
        cache: LocalCache,
    ):
        self._metadata = metadata
        self._fetcher = fetcher
        self._cache = cache

    @classmethod
    def from_settings(
        cls,
        cache: CacheSettings,
        metadata: MetadataSettings,
        remote: RemoteSettings,
    ) -> FileGateway:
        fetcher: RemoteFetcher | None = build_fetcher(remote)
        if fetcher is not None and cache.coalesce_downloads:
            fetcher = CoalescingFetcher(fetcher)
        return cls(
            metadata=RedisMetadataStore.from_settings(metadata),
            fetcher=fetcher,
            cache=LocalCache(cache.root, chunk_size=cache.chunk_size),
        )

    @classmethod
    def from_env(cls) -> FileGateway:
        """Create a FileGateway instance from environment variables.

        Returns:
            FileGateway configured from environment variables.
        """
        return cls.from_settings(
            cache=load_cache_settings_from_env(),
            metadata=load_metadata_settings_from_env(),
            remote=load_remote_settings_from_env(),
        )

    async def startup(self) -> None:
        if self._fetcher is not None:
            await self._fetcher.startup()
        LOG.info(
            "file gateway ready (cache=%s, metadata=%s, remote=%s)",
            self._cache.root,
            "enabled" if self._metadata is not None else "disabled",
            self._describe_remote(),
        )

    async def shutdown(self) -> None:
        if self._fetcher is not None:
            await self._fetcher.shutdown()
        if self._metadata is not None:
            await self._metadata.close()

    async def handle(self, request: Request, path: str) -> Response:
        LOG.debug("handle method=%s path=%s", request.method, path)
        head = request.method == "HEAD"
        if request.method not in {"GET", "HEAD"}:
            error = IllegalParameterError(f"method {request.method} not allowed")
            return self._error_response(error, status_code=405)
        try:
            return await self._serve(path, head=head)
        except GatewayError as error:
            LOG.warning(
                "request for %s failed: %s (%s)",
                path,
                type(error).__name__,
                error,
            )
            return self._error_response(error, head=head)

    async def _serve(self, path: str, head: bool = False) -> Response:
        target = resolve_path(path)
        metadata = await fetch_metadata(
            self._metadata, target.bucket, target.file_name
        )
        media_type = (
            resolve_content_type(metadata, target.file_name) or DEFAULT_MEDIA_TYPE
        )
        # an explicit Content-Type keeps Litestar from appending a charset
        headers = {
            "Content-Type": header_value(media_type),
            **self._metadata_headers(metadata),
        }

        local_path = self._cache.path_for(target.bucket, target.file_name)
        if self._cache.exists(local_path):
            LOG.debug("cache hit for %s/%s", target.bucket, target.file_name)
            if head:
                headers["Content-Length"] = str(self._cache.size(local_path))
                return Response(content=b"", headers=headers, media_type=media_type)
            content = await self._cache.read(local_path)
            return Stream(
                content=self._guard_stream(target, content),
                status_code=200,
                headers=headers,
                media_type=media_type,
            )

        LOG.debug("cache miss for %s/%s", target.bucket, target.file_name)
        payload = await self._download(target)
        await self._cache.write(target.bucket, target.file_name, payload)
        if head:
            headers["Content-Length"] = str(len(payload))
            return Response(content=b"", headers=headers, media_type=media_type)
        return Response(
            content=payload,
            status_code=200,
            headers=headers,
            media_type=media_type,
        )

    async def _download(self, target: RequestPath) -> bytes:
        if self._fetcher is None:
            msg = "remote node not configured"
            raise DownloadError(msg)
        return await self._fetcher.download(target.bucket, target.file_name)

    @staticmethod
    async def _guard_stream(
        target: RequestPath, content: AsyncIterator[bytes]
    ) -> AsyncIterator[bytes]:
        try:
            async for chunk in content:
                yield chunk
        except FileReadError:
            # the status line is already sent; dropping the connection is all
            # that is left to signal the failure
            LOG.exception(
                "reading cached %s/%s failed mid-stream",
                target.bucket,
                target.file_name,
            )
            raise

    @staticmethod
    def _metadata_headers(metadata: FileMetadata) -> dict[str, str]:
        return {
            "e_tag": header_value(metadata.etag),
            "header_custom": header_value(metadata.header),
            "file_size": str(metadata.file_size),
            "file_extension": header_value(metadata.file_extension),
        }

    @staticmethod
    def _error_response(
        error: GatewayError, status_code: int | None = None, head: bool = False
    ) -> Response[Any]:
        return Response(
            content=b"" if head else error.to_envelope(),
            status_code=status_code or error.status_code,
            media_type=MediaType.JSON,
        )

    def _describe_remote(self) -> str:
        if self._fetcher is None:
            return "disabled"
        return self._fetcher.describe()

    @property
    def cache(self) -> LocalCache:
        return self._cache

