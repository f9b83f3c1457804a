from __future__ import annotations

from contextlib import asynccontextmanager
from time import perf_counter
from typing import AsyncIterator, Awaitable, Callable, Optional
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from pgplane.config import DEFAULT_AUTH_SECRET_KEY, get_settings
from pgplane.dependencies import dispose_engines
from pgplane.errors import ControlPlaneError
from pgplane.logger import configure_logging, get_logger
from pgplane.metrics import observe_http_request
from pgplane.routes import audit, auth, clusters, nodes, system

settings = get_settings()
configure_logging(settings.log_level, settings.log_file)
logger = get_logger("api")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info("app.startup", "Starting app", env=settings.app_env, version=settings.app_version)
    if settings.app_env.strip().lower() not in {"prod", "production"}:
        if settings.auth_secret_key == DEFAULT_AUTH_SECRET_KEY:
            logger.warning(
                "security.defaults",
                "AUTH_SECRET_KEY is using a default placeholder; set a unique secret before production",
            )
        if not settings.auth_cookie_secure:
            logger.warning(
                "security.cookies",
                "AUTH_COOKIE_SECURE is disabled; enable it when serving over HTTPS",
            )
    yield
    await dispose_engines()
    logger.info("app.shutdown", "Shutting down app")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)


@app.exception_handler(ControlPlaneError)
async def control_plane_error_handler(request: Request, exc: ControlPlaneError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "request.unhandled",
        "Unhandled error",
        method=request.method,
        path=request.url.path,
        error_type=type(exc).__name__,
    )
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def _route_label(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


@app.middleware("http")
async def request_logging(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    request_id = request.headers.get("x-request-id") or str(uuid4())
    client: Optional[str] = None
    if request.client:
        client = request.client.host

    start = perf_counter()
    with logger.context(request_id=request_id):
        logger.info(
            "request.start",
            "Started",
            method=request.method,
            path=request.url.path,
            client=client,
        )
        try:
            response = await call_next(request)
        except Exception as exc:
            duration = perf_counter() - start
            observe_http_request(
                method=request.method,
                path=_route_label(request),
                status=500,
                duration_seconds=duration,
            )
            logger.exception(
                "request.error",
                "Failed",
                method=request.method,
                path=request.url.path,
                duration_ms=round(duration * 1000, 1),
                error_type=type(exc).__name__,
            )
            raise

        duration = perf_counter() - start
        observe_http_request(
            method=request.method,
            path=_route_label(request),
            status=response.status_code,
            duration_seconds=duration,
        )
        logger.info(
            "request.complete",
            "Completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(duration * 1000, 1),
        )

    response.headers["X-Request-ID"] = request_id
    return response


app.include_router(system.router)
app.include_router(auth.router)
app.include_router(clusters.router)
app.include_router(nodes.router)
app.include_router(audit.router)
