from __future__ import annotations

from dataclasses import dataclass

from .errors import IllegalParameterError


@dataclass(frozen=True)
class RequestPath:
    bucket: str
    file_name: str


def resolve_path(path: str) -> RequestPath:
    """Split a request path into its bucket and file name.

    Every segment except the last forms the bucket, so nested bucket
    prefixes such as ``/a/b/c.png`` resolve to bucket ``a/b``.

    Raises:
        IllegalParameterError: the path has fewer than two segments or no
            file name.
    """
    segments = path.split("/")
    if len(segments) < 2:
        msg = f"path {path!r} has no bucket"
        raise IllegalParameterError(msg)

    file_name = segments[-1]
    if not file_name:
        msg = f"path {path!r} has no file name"
        raise IllegalParameterError(msg)

    bucket = "/".join(segments[:-1]).lstrip("/")
    return RequestPath(bucket=bucket, file_name=file_name)
