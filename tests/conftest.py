from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest
from file_gateway import FileGateway, LocalCache

from .fakes import FakeFetcher, FakeMetadataStore

if TYPE_CHECKING:
    from collections.abc import Generator
    from pathlib import Path


@pytest.fixture
def metadata_store() -> FakeMetadataStore:
    store = FakeMetadataStore()
    store.put(
        "images/logo.png",
        e_tage="5d41402abc4b2a76",
        header="",
        file_size=9,
        file_extension=".png",
    )
    return store


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher({("images", "logo.png"): b"\x89PNG-data"})


@pytest.fixture
def cache_root(tmp_path: Path) -> Path:
    return tmp_path / "data"


@pytest.fixture
def gateway(
    metadata_store: FakeMetadataStore, fetcher: FakeFetcher, cache_root: Path
) -> FileGateway:
    return FileGateway(
        metadata=metadata_store,
        fetcher=fetcher,
        cache=LocalCache(cache_root),
    )


@pytest.fixture
def gateway_env(tmp_path: Path) -> Generator[dict[str, str]]:
    """Set up environment variables for a fully configured gateway."""
    env_vars = {
        "FILE_GATEWAY_BASE_DIR": str(tmp_path),
        "FILE_GATEWAY_REDIS_URL": "redis://127.0.0.1:6379/3",
        "FILE_GATEWAY_REMOTE_ENDPOINT": "http://storage-node:8080",
        "FILE_GATEWAY_REMOTE_TIMEOUT": "12.5",
    }

    # Set environment variables
    original_values = {}
    for key, value in env_vars.items():
        original_values[key] = os.environ.get(key)
        os.environ[key] = value

    yield env_vars

    # Restore original values
    for key, original_value in original_values.items():
        if original_value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = original_value
