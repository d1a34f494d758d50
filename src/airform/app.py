from __future__ import annotations

import logging

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from airform.auth import Authenticator
from airform.config import Settings
from airform.errors import AirformError, ValidationError
from airform.forms import FormService
from airform.protocols import Storage
from airform.routes.airtable import router as airtable_router
from airform.routes.auth import router as auth_router
from airform.routes.forms import router as forms_router
from airform.routes.public import router as public_router
from airform.storage import init_storage
from airform.tokens import TokenService

logger = logging.getLogger(__name__)


async def _airform_error(request: Request, exc: AirformError) -> JSONResponse:
    body: dict = {"error": exc.message}
    if isinstance(exc, ValidationError) and exc.details:
        body["details"] = exc.details
    return JSONResponse(body, status_code=exc.status_code)


async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse({"error": str(exc.detail)}, status_code=exc.status_code)


async def _request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg', '')}"
        for error in exc.errors()
    ]
    return JSONResponse({"error": "Invalid request", "details": details}, status_code=400)


async def _unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse({"error": "Internal server error"}, status_code=500)


def create_app(
    settings: Settings | None = None,
    storage: Storage | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    settings = settings or Settings()
    if settings.uses_fallback_secret:
        logger.warning("JWT_SECRET is not set; using the insecure fallback secret")
    storage = storage or init_storage(settings)
    tokens = TokenService(settings, storage.users, transport)

    app = FastAPI(
        title="airform",
        openapi_tags=[
            {"name": "auth", "description": "Airtable OAuth and sessions"},
            {"name": "airtable", "description": "Airtable bases, tables and records"},
            {"name": "forms", "description": "Form definitions"},
            {"name": "public", "description": "Published forms"},
            {"name": "system", "description": "System"},
        ],
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.storage = storage
    app.state.http_transport = transport
    app.state.tokens = tokens
    app.state.authenticator = Authenticator(tokens, storage.users)
    app.state.form_service = FormService(storage.forms)

    app.add_exception_handler(AirformError, _airform_error)
    app.add_exception_handler(StarletteHTTPException, _http_error)
    app.add_exception_handler(RequestValidationError, _request_validation_error)
    app.add_exception_handler(Exception, _unexpected_error)

    @app.get("/healthz", tags=["system"])
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(auth_router)
    app.include_router(airtable_router)
    app.include_router(forms_router)
    app.include_router(public_router)

    return app
