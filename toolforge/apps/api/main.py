from __future__ import annotations

from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.openapi.utils import get_openapi
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from toolforge.apps.api.errors import (
    http_exception_handler,
    integrity_error_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from toolforge.apps.api.response import API_VERSION
from toolforge.apps.api.routes.admin import router as admin_router
from toolforge.apps.api.routes.analytics import router as analytics_router
from toolforge.apps.api.routes.catalog import router as catalog_router
from toolforge.apps.api.routes.forum import router as forum_router
from toolforge.apps.api.routes.health import router as health_router
from toolforge.apps.api.routes.me import router as me_router
from toolforge.apps.api.routes.news import router as news_router
from toolforge.core.config import get_settings
from toolforge.core.logging import configure_logging


# Reachable without a bearer key; everything else is documented as BearerAuth.
_PUBLIC_PATHS = {
    "/v1/health",
    "/v1/tools",
    "/v1/tools/{slug}",
    "/v1/workflows",
    "/v1/workflows/{slug}",
    "/v1/news",
    "/v1/news/featured",
    "/v1/news/categories",
    "/v1/news/{slug}",
    "/v1/forum/categories",
    "/v1/forum/categories/{category_slug}/threads",
    "/v1/forum/threads/{thread_slug}",
    "/v1/analytics/track",
}


def _split_origins(value: str) -> list[str]:
    return [origin.strip() for origin in value.split(",") if origin.strip()]


def create_app() -> FastAPI:
    configure_logging()
    settings = get_settings()
    # Built-in docs routes are replaced by the versioned ones below.
    app = FastAPI(title="Toolforge API", docs_url=None, redoc_url=None, openapi_url=None)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Echo the caller's X-Request-Id so envelopes and logs share one id.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_split_origins(settings.cors_allowed_origins),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Request-Id"],
    )

    # FastAPI's HTTPException subclasses Starlette's, so one handler covers both.
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(IntegrityError, integrity_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    for router in (
        health_router,
        catalog_router,
        news_router,
        forum_router,
        me_router,
        analytics_router,
        admin_router,
    ):
        app.include_router(router, prefix=f"/{API_VERSION}")

    # Docs live under the version prefix; /docs redirects there.
    @app.get("/v1/openapi.json", include_in_schema=False)
    async def openapi_json() -> JSONResponse:
        return JSONResponse(app.openapi())

    @app.get("/v1/docs", include_in_schema=False)
    async def v1_docs() -> HTMLResponse:
        return get_swagger_ui_html(openapi_url="/v1/openapi.json", title="Toolforge API v1")

    @app.get("/docs", include_in_schema=False)
    async def docs_redirect() -> RedirectResponse:
        return RedirectResponse(url="/v1/docs")

    def custom_openapi() -> dict:
        # Built once, then cached on the app.
        if app.openapi_schema:
            return app.openapi_schema
        schema = get_openapi(
            title="Toolforge API",
            version=API_VERSION,
            routes=app.routes,
        )
        schema["servers"] = [{"url": "http://localhost:8000"}]
        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes["BearerAuth"] = {"type": "http", "scheme": "bearer"}
        for path, operations in schema.get("paths", {}).items():
            for method, operation in operations.items():
                # Public reads stay open; writes on the same path still need a key.
                if path in _PUBLIC_PATHS and (method == "get" or path == "/v1/analytics/track"):
                    continue
                operation.setdefault("security", [{"BearerAuth": []}])
        app.openapi_schema = schema
        return app.openapi_schema

    app.openapi = custom_openapi

    return app


app = create_app()
