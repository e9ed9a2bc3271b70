"""Error taxonomy for blob storage operations.

Every failure raised by a BlobStore is a ``BlobStoreError`` carrying an
``ErrorCode``. Mapping codes to transport statuses is left to the caller.
"""

from enum import Enum


class ErrorCode(str, Enum):
    NOT_FOUND = "not_found"
    BAD_CHECKSUM = "bad_checksum"
    UNSUPPORTED_CHECKSUM_ALGORITHM = "unsupported_checksum_algorithm"
    REQUEST_TOO_LARGE = "request_too_large"
    BAD_REQUEST = "bad_request"
    IS_A_DIRECTORY = "is_a_directory"
    INTERNAL = "internal"


class BlobStoreError(Exception):
    code = ErrorCode.INTERNAL

    def __init__(self, message: str = ""):
        super().__init__(message or self.code.value)
        self.message = message or self.code.value


class BlobNotFoundError(BlobStoreError):
    """The blob, or the home/parent directory it should live in, is missing."""
    code = ErrorCode.NOT_FOUND


class BadChecksumError(BlobStoreError):
    code = ErrorCode.BAD_CHECKSUM

    def __init__(self, server_checksum: str, client_checksum: str):
        super().__init__(
            f"checksums differ. server checksum: {server_checksum!r} "
            f"client checksum: {client_checksum!r}"
        )
        self.server_checksum = server_checksum
        self.client_checksum = client_checksum


class UnsupportedChecksumAlgorithmError(BlobStoreError):
    code = ErrorCode.UNSUPPORTED_CHECKSUM_ALGORITHM

    def __init__(self, algorithm: str):
        super().__init__(f"checksum algorithm not supported: {algorithm!r}")
        self.algorithm = algorithm


class RequestTooLargeError(BlobStoreError):
    code = ErrorCode.REQUEST_TOO_LARGE

    def __init__(self, max_size: int):
        super().__init__(f"request body exceeds max size of {max_size} bytes")
        self.max_size = max_size


class BadRequestError(BlobStoreError):
    code = ErrorCode.BAD_REQUEST


class BlobIsADirectoryError(BadRequestError):
    code = ErrorCode.IS_A_DIRECTORY


class InternalError(BlobStoreError):
    code = ErrorCode.INTERNAL
