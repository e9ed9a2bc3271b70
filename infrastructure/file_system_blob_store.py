import errno
import logging
import os
import stat
import tempfile
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Iterator, Optional, Union

from domain.blob_store import BlobStore
from domain.checksum import (
    ByteSource,
    digests_equal,
    format_digest,
    iter_chunks,
    new_hasher,
    normalize_algorithm,
    parse_checksum,
)
from domain.errors import (
    BadChecksumError,
    BadRequestError,
    BlobIsADirectoryError,
    BlobNotFoundError,
    BlobStoreError,
    InternalError,
    RequestTooLargeError,
)
from domain.hash_constants import BLOCK_SIZE
from domain.identity import Identity
from domain.path_resolver import is_contained, storage_path


logger = logging.getLogger(__name__)

TEMP_PREFIX = "blob-upload-"

Log = Union[logging.Logger, logging.LoggerAdapter]


class UploadState(str, Enum):
    START = "start"
    BUFFERING = "buffering"
    CHECKSUMMING = "checksumming"
    VERIFYING = "verifying"
    COMMITTING = "committing"
    DONE = "done"
    FAILED = "failed"


class UploadSession:
    """
    A single in-flight upload.

    Content is written to a private scratch file and only becomes visible
    at the storage path through the rename in commit(). Any failure moves
    the session to FAILED and removes the scratch file.
    """

    def __init__(
        self,
        store: "FileSystemBlobStore",
        identity: Identity,
        logical_path: str,
        max_size: Optional[int] = None,
        client_checksum: str = "",
        log: Optional[Log] = None,
    ):
        self.store = store
        self.identity = identity
        self.logical_path = logical_path
        self.max_size = max_size
        self.client_checksum = client_checksum or ""
        self.log = log or logger
        self.state = UploadState.START
        self.temp_path: Optional[str] = None
        self.bytes_written = 0
        self._file: Optional[BinaryIO] = None
        self._hasher = None

    def start(self) -> "UploadSession":
        self._expect(UploadState.START)
        try:
            if self.store.checksum:
                self._hasher = new_hasher(self.store.checksum)
            fd, self.temp_path = tempfile.mkstemp(dir=self.store.temp_dir, prefix=TEMP_PREFIX)
            self._file = os.fdopen(fd, "wb")
        except BlobStoreError:
            self._fail()
            raise
        except OSError as e:
            self._fail()
            raise InternalError(f"cannot create temp file in {self.store.temp_dir}: {e}") from e
        self.log.info("created temp file %s", self.temp_path)
        self.state = UploadState.BUFFERING
        return self

    def write(self, chunk: bytes) -> None:
        self._expect(UploadState.BUFFERING)
        if not chunk:
            return
        if self.max_size is not None and self.bytes_written + len(chunk) > self.max_size:
            self._fail()
            raise RequestTooLargeError(self.max_size)
        try:
            self._file.write(chunk)
        except OSError as e:
            self._fail()
            raise InternalError(f"error writing temp file {self.temp_path}: {e}") from e
        if self._hasher is not None:
            self._hasher.update(chunk)
        self.bytes_written += len(chunk)

    def commit(self) -> str:
        """
        Verify and publish the buffered blob. Returns the server checksum,
        or "" if checksumming is disabled.
        """
        self._expect(UploadState.BUFFERING)
        try:
            self._close_temp_file()
            checksum = ""
            if self._hasher is not None:
                self.state = UploadState.CHECKSUMMING
                checksum = format_digest(self.store.checksum, self._hasher.hexdigest())
                self.log.info("computed checksum %s for %s", checksum, self.temp_path)
            if checksum and self.store.verify_client_checksum and self.client_checksum:
                self.state = UploadState.VERIFYING
                self._verify(checksum)
            self.state = UploadState.COMMITTING
            target = self.store.resolve(self.identity, self.logical_path)
            self._rename(target)
        except BlobStoreError:
            self._fail()
            raise
        self.state = UploadState.DONE
        self.log.info("renamed temp file %s to %s", self.temp_path, target)
        return checksum

    def abort(self) -> None:
        if self.state not in (UploadState.DONE, UploadState.FAILED):
            self._fail()

    def __enter__(self) -> "UploadSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.abort()

    def _verify(self, checksum: str) -> None:
        if self.store.lenient_client_algorithm:
            client_algorithm = parse_checksum(self.client_checksum).algorithm
            if client_algorithm != normalize_algorithm(self.store.checksum):
                self.log.warning(
                    "skipping client checksum %s: server algorithm is %s",
                    self.client_checksum, self.store.checksum,
                )
                return
        if not digests_equal(checksum, self.client_checksum):
            self.log.warning(
                "checksums differ. server checksum: %s client checksum: %s",
                checksum, self.client_checksum,
            )
            raise BadChecksumError(checksum, self.client_checksum)

    def _rename(self, target: Path) -> None:
        try:
            os.replace(self.temp_path, target)
        except FileNotFoundError as e:
            raise BlobNotFoundError(f"parent directory of {target} does not exist") from e
        except OSError as e:
            if e.errno == errno.EXDEV:
                self.log.error("temp dir %s and data dir %s are on different filesystems",
                               self.store.temp_dir, self.store.data_dir)
            raise InternalError(f"cannot rename {self.temp_path} to {target}: {e}") from e

    def _close_temp_file(self) -> None:
        try:
            self._file.flush()
            os.fsync(self._file.fileno())
            self._file.close()
        except OSError as e:
            raise InternalError(f"error closing temp file {self.temp_path}: {e}") from e

    def _fail(self) -> None:
        self.state = UploadState.FAILED
        if self._file is not None and not self._file.closed:
            try:
                self._file.close()
            except OSError as e:
                self.log.warning("error closing temp file %s: %s", self.temp_path, e)
        if self.temp_path is None:
            return
        try:
            os.remove(self.temp_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            self.log.warning("error removing temp file %s: %s", self.temp_path, e)
        else:
            self.log.info("removed temp file %s", self.temp_path)

    def _expect(self, state: UploadState) -> None:
        if self.state != state:
            raise InternalError(f"upload session is {self.state.value}, expected {state.value}")


class FileSystemBlobStore(BlobStore):
    """
    Stores blobs as plain files under <data_dir>/<letter>/<username>/<path>.

    Home directories are provisioned externally; uploading into a missing
    home is reported as BlobNotFoundError. temp_dir should live on the same
    filesystem as data_dir so the final rename is atomic.
    """

    def __init__(
        self,
        data_dir: Union[str, Path],
        temp_dir: Union[str, Path],
        checksum: str = "",
        verify_client_checksum: bool = False,
        lenient_client_algorithm: bool = False,
    ):
        self.data_dir = Path(data_dir)
        self.temp_dir = Path(temp_dir)
        self.checksum = normalize_algorithm(checksum)
        self.verify_client_checksum = verify_client_checksum
        self.lenient_client_algorithm = lenient_client_algorithm

    def resolve(self, identity: Identity, logical_path: str) -> Path:
        """Physical path of logical_path for identity, always under data_dir."""
        if "\x00" in logical_path:
            raise BadRequestError(f"path {logical_path!r} contains a NUL byte")
        path = storage_path(str(self.data_dir), identity, logical_path)
        if not is_contained(str(self.data_dir), path):
            raise InternalError(f"resolved path {path} escapes {self.data_dir}")
        return Path(path)

    def open_upload(
        self,
        identity: Identity,
        logical_path: str,
        max_size: Optional[int] = None,
        client_checksum: str = "",
        log: Optional[Log] = None,
    ) -> UploadSession:
        """Starts an upload that the caller feeds chunk by chunk."""
        session = UploadSession(self, identity, logical_path, max_size, client_checksum, log)
        return session.start()

    def upload(
        self,
        identity: Identity,
        logical_path: str,
        stream: ByteSource,
        max_size: Optional[int] = None,
        client_checksum: str = "",
        log: Optional[Log] = None,
    ) -> str:
        with self.open_upload(identity, logical_path, max_size, client_checksum, log) as session:
            try:
                for chunk in iter_chunks(stream):
                    session.write(chunk)
            except OSError as e:
                raise InternalError(f"error reading upload stream: {e}") from e
            return session.commit()

    def download(
        self,
        identity: Identity,
        logical_path: str,
        log: Optional[Log] = None,
    ) -> BinaryIO:
        log = log or logger
        path = self.resolve(identity, logical_path)
        log.info("physical path is %s", path)
        try:
            handle = open(path, "rb")
        except (FileNotFoundError, NotADirectoryError) as e:
            raise BlobNotFoundError(f"blob {logical_path!r} not found") from e
        except IsADirectoryError as e:
            raise BlobIsADirectoryError(f"{logical_path!r} is a directory") from e
        except OSError as e:
            raise InternalError(f"cannot open {path}: {e}") from e

        try:
            is_dir = stat.S_ISDIR(os.fstat(handle.fileno()).st_mode)
        except OSError as e:
            handle.close()
            raise InternalError(f"cannot stat {path}: {e}") from e
        if is_dir:
            handle.close()
            raise BlobIsADirectoryError(f"{logical_path!r} is a directory")
        log.info("opened %s", path)
        return handle


def iter_blob(handle: BinaryIO, block_size: int = BLOCK_SIZE) -> Iterator[bytes]:
    """Yields the content of handle in blocks, closing it on every exit path."""
    try:
        while True:
            chunk = handle.read(block_size)
            if not chunk:
                break
            yield chunk
    finally:
        handle.close()
