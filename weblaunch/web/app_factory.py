"""FastAPI application construction: middleware, index route and custom routes."""

import time

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import FileResponse, PlainTextResponse

from weblaunch.bootstrap.config import ServerConfig
from weblaunch.bootstrap.logging_setup import configure_logging
from weblaunch.domain.correlation_id import (
    REQUEST_ID_HEADER,
    generate_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)
from weblaunch.domain.errors import RenderError
from weblaunch.rendering.templates import TemplateRenderer

HTTP_LOGGER_NAME = "weblaunch.http"


def _client_address(request: Request) -> str:
    if request.client is None:
        return "-"
    return f"{request.client.host}:{request.client.port}"


def create_app(config: ServerConfig, renderer: TemplateRenderer) -> FastAPI:
    """Build the application for a resolved ``config``.

    The route-registration callback, when present, is invoked exactly once,
    after the index route is mounted.
    """
    http_logger = configure_logging(
        config.log_level, config.log_output, name=HTTP_LOGGER_NAME
    )

    app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)
    app.state.renderer = renderer
    app.state.config = config

    @app.middleware("http")
    async def log_and_recover(request: Request, call_next) -> Response:
        correlation_id = request.headers.get(REQUEST_ID_HEADER) or generate_correlation_id()
        token = set_correlation_id(correlation_id)
        started = time.perf_counter()
        try:
            try:
                response = await call_next(request)
            except Exception as error:  # pylint: disable=broad-except
                http_logger.error(
                    "Unhandled error while serving request",
                    exc_info=error,
                    extra={
                        "event": "request_failed",
                        "route": request.url.path,
                        "error_type": type(error).__name__,
                    },
                )
                response = PlainTextResponse("Internal Server Error", status_code=500)
            response.headers[REQUEST_ID_HEADER] = correlation_id
            http_logger.info(
                "Request completed",
                extra={
                    "event": "request_completed",
                    "client": _client_address(request),
                    "method": request.method,
                    "route": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 3),
                },
            )
            return response
        finally:
            reset_correlation_id(token)

    @app.exception_handler(RenderError)
    async def render_error_handler(request: Request, error: RenderError) -> Response:
        http_logger.error(
            "Template rendering failed",
            extra={
                "event": "render_failed",
                "route": request.url.path,
                "template": error.name,
                "error_type": type(error).__name__,
            },
        )
        return PlainTextResponse("Internal Server Error", status_code=500)

    index_file = config.filesystem / config.index_path

    @app.get("/", include_in_schema=False)
    async def index() -> FileResponse:
        if not index_file.is_file():
            raise HTTPException(status_code=404, detail="Not Found")
        return FileResponse(index_file)

    if config.routes_register is not None:
        config.routes_register(app)

    return app
