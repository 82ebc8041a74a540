from __future__ import annotations

import logging
import os
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware

from jobdesk.errors import ApiError
from jobdesk.routes import documents, jobs
from jobdesk.routes._deps import error_response, request_id_from_request, trace_id_from_request
from jobdesk.schemas import success_envelope
from jobdesk.security import (
    JwtSecurityConfig,
    actor_from_headers,
    parse_and_validate_bearer_token,
    redact_sensitive,
)

logger = logging.getLogger(__name__)

SECURITY_CODES = {"AUTH_UNAUTHORIZED", "AUTH_FORBIDDEN"}


def create_app() -> FastAPI:
    app = FastAPI(title="Repair Job Desk API", version="0.1.0")
    security_cfg = JwtSecurityConfig.from_env()
    app.state.security_cfg = security_cfg
    cors_origins = os.environ.get("CORS_ALLOW_ORIGINS", "http://127.0.0.1:5173,http://localhost:5173")
    allow_origins = [x.strip() for x in cors_origins.split(",") if x.strip()]
    if allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=allow_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    def _log_security_block(request: Request, exc: ApiError) -> None:
        logger.warning(
            "security_blocked code=%s path=%s detail=%s headers=%s",
            exc.code,
            request.url.path,
            exc.message,
            redact_sensitive(dict(request.headers.items())),
        )

    @app.middleware("http")
    async def add_trace_id(request: Request, call_next):
        request.state.trace_id = request.headers.get("x-trace-id", "").strip() or uuid.uuid4().hex
        request.state.request_id = request.headers.get("x-request-id", f"req_{uuid.uuid4().hex[:12]}")
        try:
            if request.url.path.startswith("/api/v1/"):
                if security_cfg.enabled:
                    request.state.actor = parse_and_validate_bearer_token(
                        authorization=request.headers.get("Authorization"),
                        cfg=security_cfg,
                    )
                else:
                    request.state.actor = actor_from_headers(request.headers)
            response = await call_next(request)
        except ApiError as exc:
            _log_security_block(request, exc)
            response = error_response(
                request,
                code=exc.code,
                message=exc.message,
                error_class=exc.error_class,
                retryable=exc.retryable,
                status_code=exc.http_status,
            )
        response.headers["x-trace-id"] = trace_id_from_request(request)
        response.headers["x-request-id"] = request_id_from_request(request)
        return response

    @app.exception_handler(ApiError)
    async def handle_api_error(request: Request, exc: ApiError):
        if exc.code in SECURITY_CODES:
            _log_security_block(request, exc)
        elif exc.retryable:
            logger.warning("request_conflict code=%s path=%s detail=%s", exc.code, request.url.path, exc.message)
        return error_response(
            request,
            code=exc.code,
            message=exc.message,
            error_class=exc.error_class,
            retryable=exc.retryable,
            status_code=exc.http_status,
            details=exc.details,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        return error_response(
            request,
            code="REQ_VALIDATION_FAILED",
            message="invalid payload",
            error_class="validation",
            retryable=False,
            status_code=400,
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return error_response(
                request,
                code="REQ_NOT_FOUND",
                message="resource not found",
                error_class="validation",
                retryable=False,
                status_code=404,
            )
        return error_response(
            request,
            code="REQ_HTTP_ERROR",
            message=str(exc.detail),
            error_class="validation",
            retryable=False,
            status_code=exc.status_code,
        )

    @app.get("/healthz")
    def healthz(request: Request) -> dict[str, object]:
        return success_envelope({"status": "ok"}, trace_id_from_request(request))

    app.include_router(jobs.router)
    app.include_router(documents.router)
    return app


app = create_app()
