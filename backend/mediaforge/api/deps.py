"""FastAPI dependencies and error translation shared by the routers."""
from __future__ import annotations

import logging
from typing import NoReturn

from fastapi import HTTPException, Request

from mediaforge.services.error_handling import (
    GenerationFailedError,
    MediaForgeError,
    ModelNotFoundError,
    NoAssetsProducedError,
    RequestValidationError,
    StorageError,
    StorageErrorCode,
    get_user_message,
    log_storage_error,
)
from mediaforge.services.generation_pipeline import GenerationPipeline

logger = logging.getLogger(__name__)

_STATUS_BY_CODE = {
    StorageErrorCode.VALIDATION_ERROR: 422,
    StorageErrorCode.FILE_NOT_FOUND: 404,
    StorageErrorCode.TIMEOUT_ERROR: 504,
    StorageErrorCode.STORAGE_QUOTA_EXCEEDED: 429,
    StorageErrorCode.MISSING_ENVIRONMENT: 503,
    StorageErrorCode.INVALID_CONFIG: 503,
}


def get_pipeline(request: Request) -> GenerationPipeline:
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(status_code=503, detail="Generation pipeline not initialized")
    return pipeline


def raise_http_error(exc: MediaForgeError) -> NoReturn:
    """Translate a pipeline error into an HTTPException carrying only user-safe text."""
    if isinstance(exc, RequestValidationError):
        raise HTTPException(
            status_code=422,
            detail={
                "code": exc.code.value,
                "message": get_user_message(exc),
                "issues": [{"param": i.param, "message": i.message} for i in exc.issues],
            },
        ) from exc
    if isinstance(exc, StorageError):
        log_storage_error(exc, {"surface": "api"})
        raise HTTPException(
            status_code=_STATUS_BY_CODE.get(exc.code, 502),
            detail={"code": exc.code.value, "message": get_user_message(exc)},
        ) from exc
    if isinstance(exc, ModelNotFoundError):
        raise HTTPException(status_code=404, detail=exc.user_message) from exc
    if isinstance(exc, (GenerationFailedError, NoAssetsProducedError)):
        logger.warning("Generation %s not usable: %s", exc.job_id, exc)
        raise HTTPException(
            status_code=502,
            detail={"job_id": exc.job_id, "status": exc.status, "message": exc.user_message},
        ) from exc
    logger.error("Unhandled pipeline error: %r", exc)
    raise HTTPException(status_code=500, detail=exc.user_message) from exc
