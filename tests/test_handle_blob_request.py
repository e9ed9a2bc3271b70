import asyncio
import io
import logging
import pytest
from unittest.mock import MagicMock, Mock

from application.dtos import RequestContext, UploadResponse
from application.handle_blob_request import HandleBlobRequest
from domain.errors import BadChecksumError, BlobNotFoundError, InternalError, RequestTooLargeError
from domain.identity import Identity
from infrastructure.file_system_blob_store import FileSystemBlobStore


async def achunks(*chunks):
    for chunk in chunks:
        yield chunk


class TestHandleBlobRequest:
    """Test cases for HandleBlobRequest orchestration."""

    @pytest.fixture
    def mock_blob_store(self):
        return Mock(spec=FileSystemBlobStore)

    @pytest.fixture
    def handler(self, mock_blob_store):
        return HandleBlobRequest(blob_store=mock_blob_store, max_upload_size=1024)

    @pytest.fixture
    def ctx(self):
        return RequestContext(identity=Identity("alice"), trace_id="trace-1")

    def test_upload_client_error_is_logged_as_warning(self, handler, mock_blob_store, ctx, caplog):
        mock_blob_store.open_upload.side_effect = BadChecksumError("md5:abc", "md5:")

        with caplog.at_level(logging.INFO):
            with pytest.raises(BadChecksumError):
                asyncio.run(handler.upload_chunks(ctx, "a", achunks(b"1")))

        failures = [r for r in caplog.records if "upload failed" in r.getMessage()]
        assert len(failures) == 1
        assert failures[0].levelno == logging.WARNING
        assert "trace=trace-1" in failures[0].getMessage()

    def test_upload_internal_error_is_logged_as_error(self, handler, mock_blob_store, ctx, caplog):
        mock_blob_store.open_upload.side_effect = InternalError("disk full")

        with caplog.at_level(logging.INFO):
            with pytest.raises(InternalError):
                asyncio.run(handler.upload_chunks(ctx, "a", achunks(b"1")))

        failures = [r for r in caplog.records if "upload failed" in r.getMessage()]
        assert failures[0].levelno == logging.ERROR

    def test_upload_chunks_feeds_session(self, handler, mock_blob_store, ctx):
        session = MagicMock()
        session.__enter__.return_value = session
        session.commit.return_value = "sha1:xyz"
        session.bytes_written = 5
        mock_blob_store.open_upload.return_value = session

        response = asyncio.run(handler.upload_chunks(ctx, "f", achunks(b"ab", b"cde"), "sha1:xyz"))

        assert response == UploadResponse(path="f", checksum="sha1:xyz", size=5)
        assert [c.args[0] for c in session.write.call_args_list] == [b"ab", b"cde"]
        mock_blob_store.open_upload.assert_called_once_with(
            ctx.identity, "f", max_size=1024, client_checksum="sha1:xyz", log=ctx.log,
        )

    def test_upload_chunks_with_real_store(self, tmp_path, ctx):
        (tmp_path / "data" / "a" / "alice").mkdir(parents=True)
        (tmp_path / "tmp").mkdir()
        store = FileSystemBlobStore(tmp_path / "data", tmp_path / "tmp", checksum="md5")
        handler = HandleBlobRequest(store, max_upload_size=4)

        response = asyncio.run(handler.upload_chunks(ctx, "one", achunks(b"1")))
        assert response.checksum == "md5:c4ca4238a0b923820dcc509a6f75849b"
        assert response.size == 1

        with pytest.raises(RequestTooLargeError):
            asyncio.run(handler.upload_chunks(ctx, "big", achunks(b"123", b"45")))
        assert not (tmp_path / "data" / "a" / "alice" / "big").exists()
        assert list((tmp_path / "tmp").iterdir()) == []

    def test_download_returns_closing_iterator(self, handler, mock_blob_store, ctx):
        handle = io.BytesIO(b"content")
        mock_blob_store.download.return_value = handle

        assert b"".join(handler.download(ctx, "a")) == b"content"
        assert handle.closed
        mock_blob_store.download.assert_called_once_with(ctx.identity, "a", log=ctx.log)

    def test_download_error_propagates(self, handler, mock_blob_store, ctx):
        mock_blob_store.download.side_effect = BlobNotFoundError("missing")
        with pytest.raises(BlobNotFoundError):
            handler.download(ctx, "a")


class TestRequestContext:
    def test_generates_trace_id(self):
        first = RequestContext(identity=Identity("alice"))
        second = RequestContext(identity=Identity("alice"))
        assert first.trace_id and first.trace_id != second.trace_id

    def test_log_prefixes_trace_and_user(self):
        ctx = RequestContext(identity=Identity("alice"), trace_id="t-1")
        msg, _ = ctx.log.process("hello", {})
        assert msg == "[trace=t-1 user=alice] hello"
