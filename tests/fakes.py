"""In-memory collaborators for gateway tests."""

from __future__ import annotations

import json

from file_gateway.errors import DownloadError


class FakeMetadataStore:
    """In-memory stand-in for the Redis metadata store."""

    def __init__(self, values: dict[str, bytes] | None = None):
        self.values = dict(values or {})
        self.keys: list[str] = []
        self.closed = False

    async def get(self, key: str) -> bytes | None:
        self.keys.append(key)
        return self.values.get(key)

    async def close(self) -> None:
        self.closed = True

    def put(self, key: str, **fields: object) -> None:
        self.values[key] = json.dumps(fields).encode()


class FakeFetcher:
    """Remote fetcher serving payloads from a dict and recording calls."""

    def __init__(self, payloads: dict[tuple[str, str], bytes] | None = None):
        self.payloads = dict(payloads or {})
        self.calls: list[tuple[str, str]] = []
        self.running = False

    async def startup(self) -> None:
        self.running = True

    async def shutdown(self) -> None:
        self.running = False

    async def download(self, bucket: str, file_name: str) -> bytes:
        self.calls.append((bucket, file_name))
        try:
            return self.payloads[(bucket, file_name)]
        except KeyError:
            msg = f"{bucket}/{file_name} not on node"
            raise DownloadError(msg) from None

    def describe(self) -> str:
        return "fake node"
