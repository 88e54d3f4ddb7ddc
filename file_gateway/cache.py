from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .concurrency import run_sync
from .errors import (
    FileCreateError,
    FileOpenError,
    FileReadError,
    FileWriteError,
    IllegalParameterError,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from typing import BinaryIO

LOG = logging.getLogger("file_gateway.cache")

DIR_MODE = 0o777
FILE_MODE = 0o644


class CacheSettings(BaseSettings):
    """Configuration for the on-disk file cache."""

    model_config = SettingsConfigDict(
        env_prefix="", case_sensitive=False, extra="ignore"
    )

    base_dir: Path = Field(
        default_factory=Path.cwd,
        validation_alias="FILE_GATEWAY_BASE_DIR",
    )
    chunk_size: int = Field(
        default=64 * 1024,
        validation_alias="FILE_GATEWAY_CHUNK_SIZE",
    )
    coalesce_downloads: bool = Field(
        default=False,
        validation_alias="FILE_GATEWAY_COALESCE_DOWNLOADS",
    )

    @property
    def root(self) -> Path:
        return self.base_dir / "data"


def load_cache_settings_from_env() -> CacheSettings:
    """Load cache settings from environment variables.

    Returns:
        CacheSettings instance populated from environment variables.
    """
    return CacheSettings()


class LocalCache:
    """Files cached on local disk under ``<root>/<bucket>/<file_name>``."""

    def __init__(self, root: Path, chunk_size: int = 64 * 1024):
        self._root = root
        self._chunk_size = chunk_size

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, bucket: str, file_name: str) -> Path:
        root = self._root.resolve()
        candidate = (root / bucket / file_name).resolve(strict=False)
        if not candidate.is_relative_to(root):
            msg = f"{bucket}/{file_name} escapes the cache directory"
            raise IllegalParameterError(msg)
        return candidate

    @staticmethod
    def exists(path: Path) -> bool:
        try:
            path.stat()
        except OSError:
            return False
        return True

    @staticmethod
    def size(path: Path) -> int:
        try:
            return path.stat().st_size
        except OSError as error:
            raise FileOpenError(str(error)) from error

    async def read(self, path: Path) -> AsyncIterator[bytes]:
        """Open ``path`` and return an iterator over its content.

        The file is opened before this returns, so an unreadable file raises
        FileOpenError here rather than once the response has started.
        """
        try:
            handle: BinaryIO = await run_sync(path.open, "rb")
        except OSError as error:
            raise FileOpenError(str(error)) from error

        chunk_size = self._chunk_size

        async def iterator() -> AsyncIterator[bytes]:
            try:
                while True:
                    try:
                        chunk = await run_sync(handle.read, chunk_size)
                    except OSError as error:
                        raise FileReadError(str(error)) from error
                    if not chunk:
                        break
                    yield chunk
            finally:
                await run_sync(handle.close)

        return iterator()

    async def write(self, bucket: str, file_name: str, content: bytes) -> Path:
        path = self.path_for(bucket, file_name)
        await run_sync(self._write_file, path, content)
        LOG.info(
            "cached %s/%s at %s (%d bytes)", bucket, file_name, path, len(content)
        )
        return path

    @staticmethod
    def _write_file(path: Path, content: bytes) -> None:
        try:
            path.parent.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
        except OSError:
            # mkstemp() below reports the real failure
            LOG.debug("could not create %s", path.parent, exc_info=True)

        # written beside the target and renamed over it, so readers never see
        # a partial file
        try:
            fd, name = tempfile.mkstemp(
                dir=path.parent, prefix=f".{path.name}.", suffix=".part"
            )
        except OSError as error:
            raise FileCreateError(str(error)) from error

        partial = Path(name)
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(content)
            partial.chmod(FILE_MODE)
            os.replace(partial, path)
        except OSError as error:
            partial.unlink(missing_ok=True)
            raise FileWriteError(str(error)) from error
