"""Read-through file gateway backed by a local disk cache."""

from .app import create_app
from .cache import LocalCache
from .gateway import FileGateway
from .metadata import FileMetadata, RedisMetadataStore
from .remote import CoalescingFetcher, HttpNodeFetcher, S3NodeFetcher

__all__ = [
    "CoalescingFetcher",
    "FileGateway",
    "FileMetadata",
    "HttpNodeFetcher",
    "LocalCache",
    "RedisMetadataStore",
    "S3NodeFetcher",
    "create_app",
]
