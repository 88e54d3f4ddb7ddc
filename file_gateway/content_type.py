from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .metadata import FileMetadata

CONTENT_TYPES = {
    ".gif": "image/gif",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".pdf": "application/pdf",
    ".xml": "text/xml",
}


def resolve_content_type(metadata: FileMetadata, file_name: str) -> str:
    """Pick the Content-Type value for a file.

    A custom header stored with the metadata wins; its last ``:`` separated
    segment is the value. Otherwise the token after the first ``.`` of the
    file name is looked up, so ``a.png.bak`` resolves as png while
    ``a.tar.png`` does not. Unknown names resolve to an empty string.
    """
    if metadata.header:
        return metadata.header.split(":")[-1]

    parts = file_name.split(".")
    if len(parts) > 1:
        return CONTENT_TYPES.get(f".{parts[1]}", "")
    return ""
