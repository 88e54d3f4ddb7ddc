from __future__ import annotations

from enum import IntEnum


class ErrorCode(IntEnum):
    """Codes carried in the JSON error envelope."""

    IllegalParam = 10001
    ErrorGetFileMetadata = 20001
    ErrorFileOpen = 20002
    ErrorFileRead = 20003
    ErrorDownloadFile = 20004
    ErrorCreateFile = 20005
    ErrorWriteFile = 20006

    @property
    def message(self) -> str:
        return _MESSAGES[self]


_MESSAGES = {
    ErrorCode.IllegalParam: "illegal parameter",
    ErrorCode.ErrorGetFileMetadata: "get file metadata error",
    ErrorCode.ErrorFileOpen: "open file error",
    ErrorCode.ErrorFileRead: "read file error",
    ErrorCode.ErrorDownloadFile: "download file error",
    ErrorCode.ErrorCreateFile: "create file error",
    ErrorCode.ErrorWriteFile: "write file error",
}


class GatewayError(Exception):
    """Base class for failures that terminate a gateway request."""

    code: ErrorCode = ErrorCode.IllegalParam
    status_code: int = 404

    def __init__(self, detail: str = "") -> None:
        super().__init__(detail or self.code.message)
        self.detail = detail

    def to_envelope(self) -> dict[str, object]:
        return {
            "code": int(self.code),
            "message": self.code.message,
            "data": self.detail or None,
        }


class IllegalParameterError(GatewayError):
    code = ErrorCode.IllegalParam
    status_code = 400


class MetadataError(GatewayError):
    code = ErrorCode.ErrorGetFileMetadata


class MetadataUnavailableError(MetadataError):
    """The metadata store is not configured or cannot be reached."""


class MetadataNotFoundError(MetadataError):
    """No metadata is stored under the requested key."""


class MetadataCorruptError(MetadataError):
    """The stored value does not decode into file metadata."""


class FileOpenError(GatewayError):
    code = ErrorCode.ErrorFileOpen


class FileReadError(GatewayError):
    code = ErrorCode.ErrorFileRead


class DownloadError(GatewayError):
    code = ErrorCode.ErrorDownloadFile


class FileCreateError(GatewayError):
    code = ErrorCode.ErrorCreateFile


class FileWriteError(GatewayError):
    code = ErrorCode.ErrorWriteFile
