"""Main FastAPI application entry point."""
import logging
import threading
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from contractflow.api.dependencies import get_queue
from contractflow.api.routes import router
from contractflow.config import get_settings
from contractflow.database import SessionLocal, init_db
from contractflow.errors import AppError, RateLimitedError
from contractflow.observability import configure_logging
from contractflow.queue.memory import InMemoryQueue
from contractflow.services.rate_limit import rate_limit_headers, retry_after_seconds
from contractflow.worker import DraftWorker

logger = logging.getLogger(__name__)


def _error_body(code: str, message: str, details=None) -> dict:
    return {"ok": False, "error": {"code": code, "message": message, "details": details}}


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    headers = None
    if isinstance(exc, RateLimitedError):
        headers = {
            **rate_limit_headers(exc.result),
            "retry-after": str(retry_after_seconds(exc.result)),
        }
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.code, exc.message, jsonable_encoder(exc.details)),
        headers=headers,
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content=_error_body("VALIDATION", "Request validation failed.", jsonable_encoder(exc.errors())),
    )


async def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
    # Detail stays in the log; callers only get the stable code
    logger.exception("Unhandled API error (%s %s)", request.method, request.url.path)
    return JSONResponse(status_code=500, content=_error_body("INTERNAL", "Unexpected server error."))


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level)
    init_db()

    stop_event = threading.Event()
    queue = get_queue()
    if isinstance(queue, InMemoryQueue):
        # The in-process queue is only visible to a worker in this process
        worker = DraftWorker(SessionLocal, timeout_seconds=settings.generation_timeout_seconds)
        thread = threading.Thread(
            target=worker.run,
            args=(queue, stop_event, settings.worker_poll_interval_seconds),
            name="draft-worker",
            daemon=True,
        )
        thread.start()
    yield
    stop_event.set()


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(
        title="ContractFlow",
        description="Contract and proposal lifecycle: draft generation, approvals, audit and notifications.",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in settings.cors_origins.split(",")],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, internal_error_handler)

    app.include_router(router, prefix="/api", tags=["ContractFlow"])

    @app.get("/health")
    def health_check():
        return {"status": "healthy", "service": "ContractFlow"}

    return app


app = create_app()


def run() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "contractflow.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
