"""NPC Chat API entry point."""

import logging
import time

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from npc_chat import config
from npc_chat.errors import ErrorCode, PipelineError, ValidationError, status_for, system_error
from npc_chat.pipeline import Pipeline, build_pipeline
from npc_chat.routes import error_envelope, router

logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger(__name__)


def create_app(pipeline: Pipeline | None = None) -> FastAPI:
    """Build the API around a pipeline; the default one is wired from config."""
    app = FastAPI(
        title="NPC Chat API",
        description="Conversation pipeline for user/agent chats with asynchronous replies",
        version=config.API_VERSION,
    )
    app.state.pipeline = pipeline or build_pipeline()
    app.include_router(router)

    @app.exception_handler(PipelineError)
    async def pipeline_error_handler(request: Request, exc: PipelineError):
        status = status_for(exc.code)
        if status >= 500:
            logger.error(f"[HTTP] {request.method} {request.url.path}: {exc.code.value} {exc.message}")
        return JSONResponse(status_code=status, content=error_envelope(exc))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        field = ".".join(str(part) for part in first.get("loc", ())[1:]) or None
        error = ValidationError(first.get("msg", "Invalid request"), field)
        return JSONResponse(status_code=400, content=error_envelope(error))

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            error = PipelineError(ErrorCode.NOT_FOUND, f"Route {request.method} {request.url.path} does not exist")
        else:
            error = PipelineError(ErrorCode.VALIDATION_ERROR, str(exc.detail))
        return JSONResponse(status_code=exc.status_code, content=error_envelope(error))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"[HTTP] Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(status_code=500, content=error_envelope(system_error()))

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(f"[HTTP] {request.method} {request.url.path} -> {response.status_code} ({duration_ms:.1f}ms)")
        return response

    @app.on_event("startup")
    def startup():
        """Initialize storage on startup."""
        app.state.pipeline.init_storage()

    @app.on_event("shutdown")
    async def shutdown():
        """Let pending replies land before the process exits."""
        await app.state.pipeline.shutdown()

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
