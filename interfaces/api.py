from typing import Dict, NoReturn, Optional
import logging
import re
import time
import uuid
from pathlib import Path
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Depends, Header, Request, Response
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field
from starlette.requests import ClientDisconnect

from application.dtos import RequestContext
from application.handle_blob_request import HandleBlobRequest
from domain.checksum import new_hasher
from domain.errors import BlobStoreError, ErrorCode, UnsupportedChecksumAlgorithmError
from domain.identity import Identity
from infrastructure.file_system_blob_store import FileSystemBlobStore
from infrastructure.token_validator import TokenValidator


logger = logging.getLogger(__name__)

PREFIX = "/clawio/v1/data"
TRACE_HEADER = "CIO-TraceID"
DEFAULT_MAX_UPLOAD_SIZE = 8 * 1024 ** 3  # 8GiB

STATUS_BY_CODE = {
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.BAD_CHECKSUM: 412,
    ErrorCode.REQUEST_TOO_LARGE: 413,
    ErrorCode.BAD_REQUEST: 400,
    ErrorCode.IS_A_DIRECTORY: 400,
    ErrorCode.UNSUPPORTED_CHECKSUM_ALGORITHM: 500,
    ErrorCode.INTERNAL: 500,
}

_TRACE_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,128}$")


class Config:
    def __init__(
        self,
        data_dir: str,
        temp_dir: str,
        checksum: str = "",
        verify_client_checksum: bool = False,
        max_upload_size: int = DEFAULT_MAX_UPLOAD_SIZE,
        tokens: Optional[Dict[str, str]] = None,
        lenient_client_algorithm: bool = False,
    ):
        self.data_dir = data_dir
        self.temp_dir = temp_dir
        self.checksum = checksum
        self.verify_client_checksum = verify_client_checksum
        self.max_upload_size = max_upload_size
        self.tokens = tokens or {}
        self.lenient_client_algorithm = lenient_client_algorithm


class UploadResponseDTO(BaseModel):
    path: str = Field(..., description="Logical path the blob was stored at")
    checksum: str = Field("", description="Server checksum as <algorithm>:<hex>, empty if disabled")


config: Optional[Config] = None
blob_store: Optional[FileSystemBlobStore] = None
token_validator: Optional[TokenValidator] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    global blob_store
    if config:
        blob_store = FileSystemBlobStore(
            data_dir=config.data_dir,
            temp_dir=config.temp_dir,
            checksum=config.checksum,
            verify_client_checksum=config.verify_client_checksum,
            lenient_client_algorithm=config.lenient_client_algorithm,
        )
        if config.checksum:
            try:
                new_hasher(config.checksum)
            except UnsupportedChecksumAlgorithmError:
                logger.warning("Checksum algorithm %r is not supported, every upload will fail",
                               config.checksum)
    yield
    # Shutdown
    blob_store = None


app = FastAPI(
    title="Blob Data Service",
    description="Per-user blob upload and download on the local filesystem",
    version="1.0.0",
    lifespan=lifespan
)


@app.middleware("http")
async def access_log(request: Request, call_next):
    """Assigns a trace id to the request and logs one access line for it."""
    trace_id = request.headers.get(TRACE_HEADER, "")
    if not _TRACE_ID_PATTERN.match(trace_id):
        trace_id = str(uuid.uuid4())
    request.state.trace_id = trace_id

    start = time.monotonic()
    try:
        response = await call_next(request)
    except Exception:
        logger.exception("[trace=%s] unhandled error on %s %s", trace_id, request.method, request.url.path)
        response = JSONResponse(status_code=500, content={"detail": "Internal server error"})
    duration = time.monotonic() - start

    response.headers[TRACE_HEADER] = trace_id
    logger.info(
        "[trace=%s] %s %s %03d %.3fs",
        trace_id, request.method, request.url.path, response.status_code, duration,
    )
    return response


def get_token(request: Request, authorization: Optional[str]) -> str:
    """Token from Authorization: Bearer, a token header, or a token query parameter."""
    if authorization and authorization[:7].lower() == "bearer ":
        return authorization[7:].strip()
    for value in (
        request.headers.get("token"),
        request.query_params.get("token"),
        request.query_params.get("access_token"),
    ):
        if value:
            return value
    return ""


def get_identity(request: Request, authorization: Optional[str] = Header(None)) -> Identity:
    """Resolve the caller identity from the request token."""
    if not token_validator:
        raise HTTPException(status_code=500, detail="Server configuration error")

    token = get_token(request, authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Missing access token")

    identity = token_validator.resolve(token)
    if identity is None:
        raise HTTPException(status_code=401, detail="Invalid access token")
    return identity


def get_handler() -> HandleBlobRequest:
    if not config or not blob_store:
        raise HTTPException(status_code=500, detail="Server not properly configured")
    return HandleBlobRequest(blob_store, max_upload_size=config.max_upload_size)


def get_client_checksum(request: Request) -> str:
    return request.headers.get("checksum") or request.query_params.get("checksum") or ""


def raise_http_error(error: BlobStoreError) -> NoReturn:
    status_code = STATUS_BY_CODE.get(error.code, 500)
    detail = error.message if status_code < 500 else "Internal server error"
    raise HTTPException(status_code=status_code, detail=detail) from error


@app.put(f"{PREFIX}/upload/{{path:path}}", status_code=201, response_model=UploadResponseDTO)
async def upload_blob(
    path: str,
    request: Request,
    response: Response,
    identity: Identity = Depends(get_identity),
    handler: HandleBlobRequest = Depends(get_handler),
):
    """
    Upload a blob to the caller's home directory.

    The body is streamed to a scratch file and renamed into place once it
    is complete and, if configured, its checksum has been verified.
    """
    content_length = request.headers.get("content-length", "")
    if content_length.isdigit() and int(content_length) > config.max_upload_size:
        raise HTTPException(status_code=413, detail="Request body too large")

    ctx = RequestContext(identity=identity, trace_id=request.state.trace_id)
    try:
        result = await handler.upload_chunks(
            ctx, path, request.stream(), client_checksum=get_client_checksum(request)
        )
    except BlobStoreError as e:
        raise_http_error(e)
    except ClientDisconnect:
        ctx.log.warning("client disconnected during upload of %r", path)
        raise HTTPException(status_code=400, detail="Client disconnected")

    if result.checksum:
        response.headers["checksum"] = result.checksum
    return UploadResponseDTO(path=result.path, checksum=result.checksum)


@app.get(f"{PREFIX}/download/{{path:path}}")
async def download_blob(
    path: str,
    request: Request,
    identity: Identity = Depends(get_identity),
    handler: HandleBlobRequest = Depends(get_handler),
):
    """
    Stream a blob from the caller's home directory.
    """
    ctx = RequestContext(identity=identity, trace_id=request.state.trace_id)
    try:
        chunks = handler.download(ctx, path)
    except BlobStoreError as e:
        raise_http_error(e)

    return StreamingResponse(chunks, media_type="application/octet-stream")


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


def initialize_app(
    data_dir: str,
    temp_dir: str,
    checksum: str = "",
    verify_client_checksum: bool = False,
    max_upload_size: int = DEFAULT_MAX_UPLOAD_SIZE,
    tokens: Optional[Dict[str, str]] = None,
    lenient_client_algorithm: bool = False,
):
    """Initialize the FastAPI application with configuration."""
    global config, token_validator

    config = Config(
        data_dir=data_dir,
        temp_dir=temp_dir,
        checksum=checksum,
        verify_client_checksum=verify_client_checksum,
        max_upload_size=max_upload_size,
        tokens=tokens,
        lenient_client_algorithm=lenient_client_algorithm,
    )

    token_validator = TokenValidator(config.tokens)

    # Create the data and scratch directories if they don't exist
    Path(data_dir).mkdir(parents=True, exist_ok=True)
    Path(temp_dir).mkdir(parents=True, exist_ok=True)

    return app
