import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from backend.app.api.v1.router import router as v1_router
from backend.app.core.config import APP_NAME
from backend.app.core.logging import configure_logging
from backend.services.errors import (
    ConsistencyError,
    EngineError,
    NotFoundError,
    TransactionConflictError,
    ValidationError,
)

configure_logging()
logger = logging.getLogger(__name__)

# ordre : de la plus spécifique à la plus générale
ERROR_STATUS = (
    (NotFoundError, 404),
    (ValidationError, 400),
    (ConsistencyError, 409),
    (TransactionConflictError, 409),
)

app = FastAPI(title=APP_NAME, version="0.1.0")
app.include_router(v1_router, prefix="/v1")


@app.exception_handler(EngineError)
def engine_error_handler(request: Request, exc: EngineError):
    status = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 500)
    body = {"detail": str(exc)}
    if isinstance(exc, TransactionConflictError):
        body["retryable"] = True
    if status >= 500:
        logger.error("Unhandled engine error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content=body)
