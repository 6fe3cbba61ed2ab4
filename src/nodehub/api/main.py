import logging
from contextlib import asynccontextmanager

import anyio
import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from nodehub.api.responses import fail
from nodehub.api.routers import agent, health, metrics, nodes, releases, sub, subscriptions, system, templates
from nodehub.cli.migrate_db import migrate_db
from nodehub.enums import ErrorCode
from nodehub.errors import NodeHubError
from nodehub.observability import configure_logging, install_http_observability
from nodehub.settings import get_settings
from nodehub.version import app_version

logger = logging.getLogger("nodehub.api")

_HTTP_STATUS_CODES = {
    400: ErrorCode.VALIDATION,
    401: ErrorCode.UNAUTHORIZED,
    403: ErrorCode.UNAUTHORIZED,
    404: ErrorCode.NOT_FOUND,
    405: ErrorCode.VALIDATION,
    422: ErrorCode.VALIDATION,
}


@asynccontextmanager
async def lifespan(_: FastAPI):
    if get_settings().database_url:
        # Migrations are sync (Alembic). Run them before serving any traffic.
        await anyio.to_thread.run_sync(migrate_db)
    else:
        logger.warning("migrations_skipped reason=database_url_missing")
    yield


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = str(first.get("msg") or "invalid value")
    return f"{location}: {message}" if location else message


def install_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(NodeHubError)
    async def _nodehub_error(request: Request, exc: NodeHubError):  # noqa: ANN202
        if exc.status_code >= 500:
            logger.error("request_error code=%s message=%s", exc.code.value, exc.message)
        return fail(request, exc.code, exc.message, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):  # noqa: ANN202
        return fail(request, ErrorCode.VALIDATION, _validation_message(exc), status_code=400)

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):  # noqa: ANN202
        code = _HTTP_STATUS_CODES.get(exc.status_code, ErrorCode.INTERNAL)
        return fail(request, code, str(exc.detail), status_code=exc.status_code)

    @app.exception_handler(Exception)
    async def _unhandled_error(request: Request, exc: Exception):  # noqa: ANN202
        logger.exception("unhandled_error path=%s", request.url.path)
        return fail(request, ErrorCode.INTERNAL, "Internal server error", status_code=500)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title="NodeHub Control Plane", version=app_version(), lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Admin-Key", "X-Node-Token", "X-Request-Id"],
        expose_headers=["X-Request-Id"],
    )
    install_http_observability(app, component="api")
    install_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(metrics.router)
    app.include_router(agent.router)
    app.include_router(system.router)
    app.include_router(nodes.router)
    app.include_router(templates.router)
    app.include_router(releases.router)
    app.include_router(subscriptions.router)
    app.include_router(sub.router)
    return app


settings = get_settings()
configure_logging(settings.log_level)

app = create_app()


def run() -> None:
    if not settings.admin_key:
        raise RuntimeError("ADMIN_KEY is required")
    uvicorn.run(
        "nodehub.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
