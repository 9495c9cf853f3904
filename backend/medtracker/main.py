import logging
import os
import traceback
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from medtracker.auth import AuthRateLimiter
from medtracker.config import Settings, get_settings
from medtracker.database import build_engine, build_sessionmaker, create_tables
from medtracker.exceptions import AppError
from medtracker.middleware.request_logging import RequestLoggingMiddleware
from medtracker.routers import auth, dashboard, medications, prescriptions, records
from medtracker.utils import utcnow

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("medtracker").setLevel(level.upper())


class NoCacheMiddleware(BaseHTTPMiddleware):
    """Middleware to add no-cache headers to prevent browser caching."""
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, proxy-revalidate, max-age=0"
        response.headers["Expires"] = "0"
        response.headers["Pragma"] = "no-cache"
        return response


def _validation_response(errors) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content=jsonable_encoder({"status": "fail", "message": "Invalid input data", "errors": errors}),
    )


def register_exception_handlers(app: FastAPI, settings: Settings) -> None:
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        return JSONResponse(status_code=exc.status_code, content={"status": exc.status, "message": exc.message})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return _validation_response(exc.errors())

    @app.exception_handler(PydanticValidationError)
    async def payload_validation_handler(request: Request, exc: PydanticValidationError):
        # Raised when multipart/JSON record payloads are validated inside a handler
        return _validation_response(exc.errors(include_url=False))

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        status = "fail" if 400 <= exc.status_code < 500 else "error"
        message = exc.detail if isinstance(exc.detail, str) else "Request failed"
        if exc.status_code == 404 and exc.detail == "Not Found":
            message = f"Can't find {request.url.path} on this server!"
        return JSONResponse(
            status_code=exc.status_code,
            content={"status": status, "message": message},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(IntegrityError)
    async def integrity_error_handler(request: Request, exc: IntegrityError):
        logger.warning("Integrity error on %s %s: %s", request.method, request.url.path, exc.orig)
        return JSONResponse(status_code=409, content={"status": "fail", "message": "Duplicate field value"})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        if settings.is_production:
            return JSONResponse(status_code=500, content={"status": "error", "message": "Something went wrong!"})
        return JSONResponse(
            status_code=500,
            content={
                "status": "error",
                "message": str(exc) or "Something went wrong!",
                "error": type(exc).__name__,
                "stack": traceback.format_exception(type(exc), exc, exc.__traceback__),
            },
        )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    settings.check_production()

    engine = build_engine(settings.database_url)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup: create tables and the upload directory
        await create_tables(engine)
        os.makedirs(settings.upload_dir, exist_ok=True)
        logger.info("MedTracker API started (env=%s)", settings.env)
        yield
        # Shutdown
        await engine.dispose()

    app = FastAPI(
        title="MedTracker API",
        description="Personal medical history tracker: records, reminders, medications and prescriptions",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.engine = engine
    app.state.sessionmaker = build_sessionmaker(engine)
    app.state.auth_rate_limiter = AuthRateLimiter(
        max_attempts=settings.auth_rate_limit_max,
        window_seconds=settings.auth_rate_limit_window_minutes * 60,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(NoCacheMiddleware)
    app.add_middleware(RequestLoggingMiddleware)

    register_exception_handlers(app, settings)

    app.include_router(auth.router, prefix="/api/auth", tags=["Auth"])
    app.include_router(records.router, prefix="/api/records", tags=["Records"])
    app.include_router(medications.router, prefix="/api/medications", tags=["Medications"])
    app.include_router(prescriptions.router, prefix="/api/prescriptions", tags=["Prescriptions"])
    app.include_router(dashboard.router, prefix="/api/dashboard", tags=["Dashboard"])

    @app.get("/api/health")
    async def health_check():
        return {"status": "OK", "message": "MedTracker API is running", "timestamp": utcnow().isoformat()}

    return app
