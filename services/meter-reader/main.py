"""FastAPI meter reader service.

Accepts a meter photo, has the vision model read it, stores the normalized
reading for the authenticated user and serves the stored readings back.
Clients are built once in the lifespan and handed to handlers through
dependencies, so tests can swap them via ``app.dependency_overrides``.
"""

import contextlib
import logging
import os
import tempfile
import time
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import APIRouter, Depends, FastAPI, File, Header, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import AuthContext, SupabaseAuth, bearer_token
from config import Settings, settings
from encoder import encode_image
from errors import MeterReaderError, NotFoundError, ValidationError
from extraction import extract_reading
from models import ApiResponse, ReadingResult, utc_now_iso
from persistence import DEFAULT_LIMIT, ReadingStore
from vision_client import VisionClient

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Validate configuration and build the outbound clients."""
    missing = settings.missing_required()
    if missing:
        raise RuntimeError(f"Missing required environment variables: {', '.join(missing)}")

    Path(settings.UPLOAD_DIR).mkdir(parents=True, exist_ok=True)

    app.state.vision_client = VisionClient()
    app.state.store = ReadingStore()
    app.state.authenticator = SupabaseAuth()
    logger.info(
        "Meter reader ready (model=%s, max upload %dMB)",
        settings.VISION_MODEL, settings.MAX_FILE_SIZE_MB,
    )

    yield

    app.state.vision_client.close()
    app.state.store.close()
    app.state.authenticator.close()


app = FastAPI(title="Meter Reader", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins(),
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Origin", "X-Requested-With", "Content-Type", "Accept", "Authorization"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.monotonic()
    response = await call_next(request)
    elapsed_ms = int((time.monotonic() - start) * 1000)
    logger.info("%s %s -> %d (%dms)", request.method, request.url.path, response.status_code, elapsed_ms)
    return response


def _ok(data) -> dict:
    return ApiResponse(success=True, data=data).model_dump(exclude={"error"})


def _error_response(status_code: int, message: str) -> JSONResponse:
    body = ApiResponse(success=False, error=message)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude={"data"}))


@app.exception_handler(MeterReaderError)
async def meter_reader_error_handler(request: Request, exc: MeterReaderError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return _error_response(exc.status_code, exc.message)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404:
        not_found = NotFoundError("Endpoint not found")
        return _error_response(not_found.status_code, not_found.message)
    return _error_response(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error_response(500, str(exc) or "Unknown error")


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    problems = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}" for err in exc.errors()
    )
    return _error_response(400, f"Invalid request: {problems}")


# Dependencies

def get_settings() -> Settings:
    return settings


def get_vision_client(request: Request) -> VisionClient:
    return request.app.state.vision_client


def get_store(request: Request) -> ReadingStore:
    return request.app.state.store


def get_authenticator(request: Request) -> SupabaseAuth:
    return request.app.state.authenticator


def require_user(
    authorization: str | None = Header(None),
    authenticator: SupabaseAuth = Depends(get_authenticator),
) -> AuthContext:
    """Resolve the bearer token to an AuthContext or fail with 401."""
    return authenticator.verify(bearer_token(authorization))


# Upload staging

def stage_upload(image_bytes: bytes, filename: str | None, upload_dir: str) -> Path:
    """Write the upload to a temp file that keeps the original extension."""
    directory = Path(upload_dir)
    directory.mkdir(parents=True, exist_ok=True)
    suffix = Path(filename or "").suffix.lower()
    fd, path = tempfile.mkstemp(suffix=suffix, dir=directory)
    with os.fdopen(fd, "wb") as f:
        f.write(image_bytes)
    return Path(path)


def discard_upload(path: Path) -> None:
    # Best effort, failures ignored
    with contextlib.suppress(OSError):
        path.unlink()


# Routes

router = APIRouter()


@router.post("/meter-reading")
async def create_meter_reading(
    image: UploadFile | None = File(None),
    ctx: AuthContext = Depends(require_user),
    vision_client: VisionClient = Depends(get_vision_client),
    store: ReadingStore = Depends(get_store),
    cfg: Settings = Depends(get_settings),
):
    """Read a meter photo and store the result for the caller."""
    if image is None:
        raise ValidationError("No image uploaded")

    if not (image.content_type or "").startswith("image/"):
        raise ValidationError("Only image files are allowed")

    image_bytes = await image.read()

    if not image_bytes:
        raise ValidationError("Empty file uploaded")

    if len(image_bytes) > cfg.max_file_size_bytes:
        raise ValidationError(f"File too large. Maximum: {cfg.MAX_FILE_SIZE_MB}MB")

    logger.info("Processing upload: size=%d bytes type=%s", len(image_bytes), image.content_type)

    path = stage_upload(image_bytes, image.filename, cfg.UPLOAD_DIR)
    try:
        encoded = encode_image(path)
        reading, metrics = await run_in_threadpool(extract_reading, encoded, vision_client)
        persisted_id = await run_in_threadpool(store.save, reading, metrics, ctx)
    finally:
        discard_upload(path)

    result = ReadingResult(**reading.model_dump(), metrics=metrics, persisted_id=persisted_id)
    return _ok(result.model_dump())


@router.get("/readings")
def list_readings(
    meter_id: str | None = None,
    limit: int = Query(DEFAULT_LIMIT, ge=1),
    offset: int = Query(0, ge=0),
    ctx: AuthContext = Depends(require_user),
    store: ReadingStore = Depends(get_store),
):
    rows = store.list_readings(ctx, meter_id=meter_id, limit=limit, offset=offset)
    return _ok([r.model_dump() for r in rows])


@router.get("/readings/{meter_id}")
def list_meter_readings(
    meter_id: str,
    limit: int = Query(DEFAULT_LIMIT, ge=1),
    offset: int = Query(0, ge=0),
    ctx: AuthContext = Depends(require_user),
    store: ReadingStore = Depends(get_store),
):
    rows = store.list_readings(ctx, meter_id=meter_id, limit=limit, offset=offset)
    return _ok([r.model_dump() for r in rows])


@router.get("/stats")
def stats(
    ctx: AuthContext = Depends(require_user),
    store: ReadingStore = Depends(get_store),
):
    return _ok(store.stats(ctx).model_dump())


app.include_router(router, prefix=settings.API_PREFIX)


@app.get("/health")
async def health():
    """Liveness probe; no authentication."""
    return {"status": "ok", "timestamp": utc_now_iso()}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
