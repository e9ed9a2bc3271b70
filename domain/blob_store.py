from abc import ABC, abstractmethod
from typing import BinaryIO, Optional
import logging

from .checksum import ByteSource
from .identity import Identity


class BlobStore(ABC):
    """
    Abstract store interface for uploading and downloading blobs.

    Blobs live under the home directory of the identity that owns them.
    Implementations must make an upload visible all at once: a reader sees
    either the previous content or the new content, never a partial write.
    """

    @abstractmethod
    def upload(
        self,
        identity: Identity,
        logical_path: str,
        stream: ByteSource,
        max_size: Optional[int] = None,
        client_checksum: str = "",
        log: Optional[logging.LoggerAdapter] = None,
    ) -> str:
        """
        Store the content of stream at logical_path.

        This should:
        1. Buffer the stream into a scratch file, bounded by max_size
        2. Compute the server checksum if one is configured
        3. Verify client_checksum if verification is enabled
        4. Atomically move the scratch file onto the storage path

        Args:
            identity: Verified owner of the blob
            logical_path: Untrusted path relative to the owner's home
            stream: Binary file-like object or iterable of byte chunks
            max_size: Maximum number of bytes accepted, None for no bound
            client_checksum: "<algorithm>:<hex>" supplied by the client, or ""
            log: Request scoped logger

        Returns:
            The server checksum, or "" if checksumming is disabled

        Raises:
            BlobStoreError: on any failure; the stored blob is left unchanged
        """
        pass

    @abstractmethod
    def download(
        self,
        identity: Identity,
        logical_path: str,
        log: Optional[logging.LoggerAdapter] = None,
    ) -> BinaryIO:
        """
        Open the blob at logical_path for reading.

        The caller owns the returned handle and must close it.

        Raises:
            BlobNotFoundError: if the blob does not exist
            BlobIsADirectoryError: if the path names a directory
            InternalError: on any other I/O failure
        """
        pass
