"""Tests for the on-disk file cache."""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest
from file_gateway.cache import CacheSettings, LocalCache, load_cache_settings_from_env
from file_gateway.concurrency import run_sync
from file_gateway.errors import (
    FileCreateError,
    FileOpenError,
    FileReadError,
    FileWriteError,
    IllegalParameterError,
)


async def _collect(iterator) -> bytes:
    return b"".join([chunk async for chunk in iterator])


class TestCacheSettings:
    """Test CacheSettings configuration."""

    def test_default_root_is_under_working_directory(self, monkeypatch):
        """Test that the cache root defaults to ./data."""
        monkeypatch.delenv("FILE_GATEWAY_BASE_DIR", raising=False)
        settings = CacheSettings()
        assert settings.root == Path.cwd() / "data"
        assert settings.coalesce_downloads is False

    def test_load_from_env(self, gateway_env):
        """Test that cache settings load from environment."""
        settings = load_cache_settings_from_env()
        assert settings.root == Path(gateway_env["FILE_GATEWAY_BASE_DIR"]) / "data"


class TestLocalCache:
    """Test LocalCache disk operations."""

    def test_path_for(self, cache_root):
        """Test that cache paths nest the bucket under the root."""
        cache = LocalCache(cache_root)
        path = cache.path_for("tenant/images", "logo.png")
        assert path == cache_root.resolve() / "tenant" / "images" / "logo.png"

    def test_path_for_rejects_escape(self, cache_root):
        """Test that paths resolving outside the root are rejected."""
        cache = LocalCache(cache_root)
        with pytest.raises(IllegalParameterError):
            cache.path_for("images/../..", "secret.txt")

    def test_exists(self, cache_root):
        """Test the existence check before and after a file appears."""
        cache = LocalCache(cache_root)
        path = cache.path_for("images", "logo.png")
        assert cache.exists(path) is False

        path.parent.mkdir(parents=True)
        path.write_bytes(b"x")
        assert cache.exists(path) is True

    def test_exists_swallows_stat_errors(self, cache_root):
        """Test that stat errors read as absent."""
        cache = LocalCache(cache_root)
        with patch.object(Path, "stat", side_effect=PermissionError("denied")):
            assert cache.exists(cache_root / "images" / "logo.png") is False

    @pytest.mark.anyio
    async def test_write_then_read(self, cache_root):
        """Test that written bytes stream back unchanged."""
        cache = LocalCache(cache_root, chunk_size=4)
        content = b"0123456789"

        path = await cache.write("a/b", "c.bin", content)

        assert path == cache_root.resolve() / "a" / "b" / "c.bin"
        assert path.read_bytes() == content
        assert await _collect(await cache.read(path)) == content

    @pytest.mark.anyio
    async def test_write_truncates_existing(self, cache_root):
        """Test that a rewrite replaces longer old content."""
        cache = LocalCache(cache_root)
        await cache.write("a", "c.bin", b"a much longer old payload")
        path = await cache.write("a", "c.bin", b"new")
        assert path.read_bytes() == b"new"

    @pytest.mark.anyio
    async def test_read_missing_file(self, cache_root):
        """Test that opening a missing file raises FileOpenError."""
        cache = LocalCache(cache_root)
        with pytest.raises(FileOpenError):
            await cache.read(cache_root / "nope" / "missing.bin")

    @pytest.mark.anyio
    async def test_read_directory_is_open_error(self, cache_root):
        """Test that a directory at the file path fails to open."""
        cache = LocalCache(cache_root)
        (cache_root / "images" / "logo.png").mkdir(parents=True)
        path = cache.path_for("images", "logo.png")
        assert cache.exists(path) is True
        with pytest.raises(FileOpenError):
            await cache.read(path)

    @pytest.mark.anyio
    async def test_read_failure_mid_stream(self, cache_root):
        """Test that a read error while streaming raises FileReadError."""
        cache = LocalCache(cache_root)
        path = await cache.write("a", "c.bin", b"payload")
        iterator = await cache.read(path)

        async def failing_read(func, *args):
            if getattr(func, "__name__", "") == "read":
                raise OSError(5, "Input/output error")
            return await run_sync(func, *args)

        with patch("file_gateway.cache.run_sync", failing_read):
            with pytest.raises(FileReadError):
                await _collect(iterator)

    @pytest.mark.anyio
    async def test_create_failure(self, cache_root):
        """Test that an unusable bucket directory raises FileCreateError."""
        cache = LocalCache(cache_root)
        # a regular file where the bucket directory should be
        cache_root.mkdir(parents=True)
        (cache_root / "a").write_bytes(b"")
        with pytest.raises(FileCreateError):
            await cache.write("a", "c.bin", b"payload")

    @pytest.mark.anyio
    async def test_write_failure_removes_partial_file(self, cache_root):
        """Test that a failed write leaves no partial file behind."""
        cache = LocalCache(cache_root)
        real_fdopen = os.fdopen

        class FailingWriter:
            def __init__(self, fd):
                self._handle = real_fdopen(fd, "wb")

            def write(self, data):
                self._handle.write(data[:3])
                self._handle.flush()
                raise OSError(28, "No space left on device")

            def __enter__(self):
                return self

            def __exit__(self, *exc_info):
                self._handle.close()

        with patch("file_gateway.cache.os.fdopen", lambda fd, mode: FailingWriter(fd)):
            with pytest.raises(FileWriteError):
                await cache.write("a", "c.bin", b"payload")

        assert not (cache_root / "a" / "c.bin").exists()
        assert list((cache_root / "a").iterdir()) == []

    @pytest.mark.anyio
    async def test_target_appears_only_when_complete(self, cache_root):
        """Test that the target only appears once fully written."""
        cache = LocalCache(cache_root)
        target = cache.path_for("a", "c.bin")
        real_replace = os.replace
        seen = []

        def checking_replace(src, dst):
            seen.append((Path(dst).exists(), Path(src).read_bytes()))
            real_replace(src, dst)

        with patch("file_gateway.cache.os.replace", checking_replace):
            await cache.write("a", "c.bin", b"payload")

        assert seen == [(False, b"payload")]
        assert target.read_bytes() == b"payload"
        assert [p.name for p in target.parent.iterdir()] == ["c.bin"]

    @pytest.mark.anyio
    async def test_rename_failure_keeps_previous_copy(self, cache_root):
        """Test that a failed rename keeps the previous copy intact."""
        cache = LocalCache(cache_root)
        path = await cache.write("a", "c.bin", b"old")

        with patch("file_gateway.cache.os.replace", side_effect=OSError(18, "EXDEV")):
            with pytest.raises(FileWriteError):
                await cache.write("a", "c.bin", b"new payload")

        assert path.read_bytes() == b"old"
        assert [p.name for p in path.parent.iterdir()] == ["c.bin"]

    def test_size(self, cache_root):
        """Test that size reports the cached byte count."""
        cache = LocalCache(cache_root)
        path = cache.path_for("a", "c.bin")
        path.parent.mkdir(parents=True)
        path.write_bytes(b"12345")
        assert cache.size(path) == 5
        with pytest.raises(FileOpenError):
            cache.size(path.with_name("missing.bin"))
