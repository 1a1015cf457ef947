import json
import logging
import logging.config
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.domain import models  # noqa: F401
from app.interfaces.api.router import api_router
from app.interfaces.http.middleware import MetricsMiddleware, RequestIDMiddleware, SecurityHeadersMiddleware

logging_config_path = Path(__file__).with_name("logging.json")
if logging_config_path.exists():
    logging.config.dictConfig(json.loads(logging_config_path.read_text(encoding="utf-8")))
else:
    logging.basicConfig(level=logging.INFO)

logger = logging.getLogger("app")


@asynccontextmanager
async def lifespan(_: FastAPI):
    logger.info(
        "publication_api_started env=%s queue=%s concurrency_limit=%s max_retries=%s",
        settings.app_env,
        settings.publication_queue_name,
        settings.dispatch_concurrency_limit,
        settings.default_max_retries,
    )
    yield


app = FastAPI(title=settings.app_name, lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestIDMiddleware)
app.add_middleware(MetricsMiddleware)


def _error_body(request: Request, error_code: str, message: str, **extra) -> dict:
    body = {
        "error_code": error_code,
        "message": message,
        "trace_id": getattr(request.state, "request_id", None),
    }
    body.update(extra)
    return body


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, dict) and {"error_code", "message"} <= detail.keys():
        body = _error_body(request, str(detail["error_code"]), str(detail["message"]))
    else:
        message = detail if isinstance(detail, str) else "Request failed"
        body = _error_body(request, str(exc.status_code), message)
    return JSONResponse(status_code=exc.status_code, content=body, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = [".".join(str(part) for part in error.get("loc", ())) for error in exc.errors()]
    logger.info("request_validation_failed path=%s fields=%s", request.url.path, fields)
    return JSONResponse(
        status_code=422,
        content=_error_body(request, "validation_error", "Request validation failed", fields=fields),
    )


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception("database_error path=%s method=%s", request.url.path, request.method)
    return JSONResponse(
        status_code=503,
        content=_error_body(request, "database_unavailable", "Job store is temporarily unavailable"),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_exception path=%s method=%s", request.url.path, request.method)
    return JSONResponse(
        status_code=500,
        content=_error_body(request, "internal_server_error", "Internal server error"),
    )


app.include_router(api_router)
