# =============================================================================
# FastAPI Application Entry Point
# =============================================================================
#
# Run locally:
#   uvicorn jobtrackr.main:app --reload
#
# Run a worker (queued mode):
#   celery -A jobtrackr.workers.celery_app worker --loglevel=info
#
# STARTUP:
#   1. logging.basicConfig at settings.log_level
#   2. lifespan: build the job dispatcher once (chooses queued vs sync)
#
# ERROR MAPPING (domain exception → HTTP):
#   NotFound                → 404
#   ValidationError         → 400   (request body validation too)
#   InvalidProviderResponse → 502
#   TransientProviderError  → 503
#   StorageFailure          → 502
# Every error body has the same envelope:
#   {"error": {"code": "...", "message": "...", "details": ...}}
# =============================================================================

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from jobtrackr.api import analyses, applications, audit
from jobtrackr.config import settings
from jobtrackr.models.responses import ErrorBody, ErrorResponse, HealthResponse
from jobtrackr.services.errors import (
    InvalidProviderResponse,
    NotFound,
    StorageFailure,
    TransientProviderError,
    ValidationError,
)
from jobtrackr.workers.dispatcher import get_dispatcher

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    dispatcher = get_dispatcher()
    logger.info(
        "%s %s started (analysis mode=%s)",
        settings.app_name, settings.app_version, dispatcher.strategy.value,
    )
    yield


app = FastAPI(
    title=settings.app_name,
    description="Job application tracker: audited writes, coordinated deletes, cached fit analyses.",
    version=settings.app_version,
    lifespan=lifespan,
)

app.include_router(applications.router)
app.include_router(analyses.router)
app.include_router(audit.router)


# ---------------------------------------------------------------------------
# Exception Handlers
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, details=None) -> JSONResponse:
    body = ErrorResponse(error=ErrorBody(code=code, message=message, details=details))
    return JSONResponse(status_code=status_code, content=body.model_dump())


@app.exception_handler(NotFound)
def _not_found(request: Request, exc: NotFound) -> JSONResponse:
    return _error(404, "NOT_FOUND", str(exc))


@app.exception_handler(ValidationError)
def _validation_error(request: Request, exc: ValidationError) -> JSONResponse:
    return _error(400, "VALIDATION_ERROR", str(exc), exc.details)


@app.exception_handler(RequestValidationError)
def _request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")}
        for e in exc.errors()
    ]
    return _error(400, "VALIDATION_ERROR", "Request validation failed", details)


@app.exception_handler(InvalidProviderResponse)
def _invalid_provider_response(request: Request, exc: InvalidProviderResponse) -> JSONResponse:
    logger.warning("Invalid provider response on %s: %s", request.url.path, exc)
    return _error(502, "INVALID_PROVIDER_RESPONSE", "AI returned an invalid response format.")


@app.exception_handler(TransientProviderError)
def _transient_provider_error(request: Request, exc: TransientProviderError) -> JSONResponse:
    logger.warning("Transient provider failure on %s: %s", request.url.path, exc)
    return _error(503, "PROVIDER_UNAVAILABLE", "AI service unavailable. Please try again later.")


@app.exception_handler(StorageFailure)
def _storage_failure(request: Request, exc: StorageFailure) -> JSONResponse:
    logger.error("Storage failure on %s: %s", request.url.path, exc)
    return _error(502, "STORAGE_FAILURE", "File storage is unavailable.")


@app.exception_handler(StarletteHTTPException)
def _http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    codes = {401: "UNAUTHORIZED", 403: "FORBIDDEN", 404: "NOT_FOUND", 405: "METHOD_NOT_ALLOWED"}
    return _error(exc.status_code, codes.get(exc.status_code, "HTTP_ERROR"), str(exc.detail))


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@app.get("/health", response_model=HealthResponse, tags=["Health"])
def health() -> HealthResponse:
    return HealthResponse(
        version=settings.app_version,
        service=settings.app_name,
        analysis_mode=get_dispatcher().strategy.value,
    )
