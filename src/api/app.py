"""FastAPI application factory and server entrypoint."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .metrics import instrument_app, router as metrics_router
from .routers import health, live, transcribe
from .schemas import ErrorResponse
from .services.inference import InferenceInvoker
from .services.whisper_engine import WhisperEngine
from .settings import APISettings, get_settings

LOGGER = logging.getLogger("livescribe.app")


def configure_logging(settings: APISettings) -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def _log_warm_up_result(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        LOGGER.error("Failed to load Whisper model: %s", exc)


def create_app(settings: APISettings | None = None) -> FastAPI:
    if settings is None:
        settings = get_settings()
    invoker = InferenceInvoker(WhisperEngine(settings), sample_rate=settings.live_sample_rate)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        warm_up = None
        if settings.whisper_preload:
            warm_up = asyncio.create_task(invoker.warm_up())
            warm_up.add_done_callback(_log_warm_up_result)
        yield
        if warm_up is not None and not warm_up.done():
            warm_up.cancel()

    app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)
    app.state.invoker = invoker
    app.dependency_overrides[get_settings] = lambda: settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type"],
    )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        body = ErrorResponse(error=str(exc.detail))
        return JSONResponse(status_code=exc.status_code, content=body.model_dump(exclude_none=True))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        LOGGER.error("Error handling request %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(error="Internal server error", message=str(exc)).model_dump(),
        )

    app.include_router(health.router)
    app.include_router(transcribe.router)
    app.include_router(live.router)
    app.include_router(metrics_router)
    return instrument_app(app)


def main() -> None:  # pragma: no cover - process entrypoint
    import uvicorn

    settings = get_settings()
    configure_logging(settings)
    LOGGER.info("Starting LiveScribe backend on http://%s:%s", settings.host, settings.port)
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":  # pragma: no cover
    main()
