"""
Main FastAPI application entry point.
"""
from contextlib import asynccontextmanager
from typing import Optional
import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from prometheus_fastapi_instrumentator import Instrumentator

from medquiz.core.config import Settings, get_settings
from medquiz.core.database import Database
from medquiz.core.errors import ContentError
from medquiz.api.admin import router as admin_router
from medquiz.api.content import router as content_router
from medquiz.api.quizzes import router as quizzes_router

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def configure_sentry(settings: Settings) -> None:
    if not settings.SENTRY_DSN:
        return
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
        ],
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    """
    settings: Settings = app.state.settings
    db: Database = app.state.db
    logger.info(f"Starting {settings.APP_NAME} ({settings.ENVIRONMENT})...")

    if settings.AUTO_CREATE_TABLES:
        await db.create_all()
        logger.info("Database tables ensured")

    yield

    logger.info(f"Shutting down {settings.APP_NAME}...")
    await db.dispose()
    logger.info("Shutdown complete")


def register_exception_handlers(app: FastAPI, settings: Settings) -> None:
    @app.exception_handler(ContentError)
    async def content_error_handler(request: Request, exc: ContentError):
        """Typed store failures: identifier, field and invariant for the admin UI."""
        if exc.retryable:
            logger.warning(f"{request.method} {request.url.path}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Handle HTTP exceptions."""
        return JSONResponse(
            status_code=exc.status_code,
            headers=getattr(exc, "headers", None),
            content={
                "error": {
                    "message": exc.detail,
                    "type": "http_error",
                    "status_code": exc.status_code
                }
            }
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle validation errors."""
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "error": {
                    "message": "Validation error",
                    "type": "validation_error",
                    "status_code": status.HTTP_422_UNPROCESSABLE_ENTITY,
                    "details": jsonable_errors(exc.errors()),
                }
            }
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle general exceptions."""
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        content = {"error": {"message": "An internal error occurred", "type": "internal_error"}}
        if not settings.is_production():
            content["error"].update(message=str(exc), debug=True)
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content)


def jsonable_errors(errors):
    # pydantic puts the raw exception under "ctx", which json can't encode
    cleaned = []
    for error in errors:
        error = dict(error)
        if "ctx" in error:
            error["ctx"] = {k: str(v) for k, v in error["ctx"].items()}
        cleaned.append(error)
    return cleaned


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)
    configure_sentry(settings)

    app = FastAPI(
        title=settings.APP_NAME,
        description=settings.APP_DESCRIPTION,
        version=settings.APP_VERSION,
        docs_url=settings.DOCS_URL if not settings.is_production() else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.db = Database.from_settings(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    if settings.PROMETHEUS_ENABLED:
        Instrumentator().instrument(app).expose(app, endpoint="/metrics")

    register_exception_handlers(app, settings)

    @app.get("/health", tags=["Health"])
    async def health_check():
        """Basic health check endpoint."""
        return {
            "status": "healthy",
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT
        }

    @app.get("/health/ready", tags=["Health"])
    async def readiness_check(request: Request):
        """Readiness check endpoint."""
        checks = {"database": False}
        try:
            checks["database"] = await request.app.state.db.ping()
        except Exception as e:
            logger.error(f"Database health check failed: {e}")

        all_healthy = all(checks.values())
        return JSONResponse(
            status_code=status.HTTP_200_OK if all_healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "ready" if all_healthy else "not_ready",
                "checks": checks
            }
        )

    app.include_router(content_router, prefix=settings.API_PREFIX, tags=["content"])
    app.include_router(quizzes_router, prefix=settings.API_PREFIX, tags=["quizzes"])
    app.include_router(admin_router, prefix=f"{settings.API_PREFIX}/admin", tags=["admin"])
    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "medquiz.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.RELOAD,
        log_level=settings.LOG_LEVEL.lower(),
        access_log=True,
    )
