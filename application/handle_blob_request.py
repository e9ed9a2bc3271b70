from typing import AsyncIterable, Iterator, Optional

from application.dtos import RequestContext, UploadResponse
from domain.errors import BlobStoreError, ErrorCode
from infrastructure.file_system_blob_store import FileSystemBlobStore, iter_blob


# Failures caused by the client are not server errors
CLIENT_ERROR_CODES = {
    ErrorCode.NOT_FOUND,
    ErrorCode.BAD_CHECKSUM,
    ErrorCode.REQUEST_TOO_LARGE,
    ErrorCode.BAD_REQUEST,
    ErrorCode.IS_A_DIRECTORY,
}


class HandleBlobRequest:
    """Orchestrates blob uploads and downloads for one authenticated caller."""

    def __init__(self, blob_store: FileSystemBlobStore, max_upload_size: Optional[int] = None):
        self.blob_store = blob_store
        self.max_upload_size = max_upload_size

    async def upload_chunks(
        self,
        ctx: RequestContext,
        path: str,
        chunks: AsyncIterable[bytes],
        client_checksum: str = "",
    ) -> UploadResponse:
        """Store a blob received as an async stream of chunks, e.g. a request body."""
        ctx.log.info("upload of %r started", path)
        try:
            with self.blob_store.open_upload(
                ctx.identity,
                path,
                max_size=self.max_upload_size,
                client_checksum=client_checksum,
                log=ctx.log,
            ) as session:
                async for chunk in chunks:
                    session.write(chunk)
                checksum = session.commit()
        except BlobStoreError as e:
            self._log_failure(ctx, "upload", e)
            raise
        ctx.log.info("upload of %r finished, %d bytes", path, session.bytes_written)
        return UploadResponse(path=path, checksum=checksum, size=session.bytes_written)

    def download(self, ctx: RequestContext, path: str) -> Iterator[bytes]:
        """
        Open the blob and return an iterator over its content.
        The underlying file is closed when the iterator is exhausted or closed.
        """
        ctx.log.info("download of %r started", path)
        try:
            handle = self.blob_store.download(ctx.identity, path, log=ctx.log)
        except BlobStoreError as e:
            self._log_failure(ctx, "download", e)
            raise
        return iter_blob(handle)

    def _log_failure(self, ctx: RequestContext, op: str, error: BlobStoreError) -> None:
        if error.code in CLIENT_ERROR_CODES:
            ctx.log.warning("%s failed (%s): %s", op, error.code.value, error.message)
        else:
            ctx.log.error("%s failed (%s): %s", op, error.code.value, error.message)
