"""
Acervo - FastAPI application entry point
Institutional document retrieval and question answering service
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from acervo import __version__
from acervo.api.api_v1.api import api_router
from acervo.core.config import settings
from acervo.core.exceptions import AcervoError
from acervo.core.logging import configure_logging
from acervo.db.database import SessionLocal
from acervo.db.init_db import init_db
from acervo.services.document_service import DocumentLockRegistry
from acervo.services.query_logger import QueryLogger

configure_logging()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle"""
    logger.info("Starting Acervo", version=__version__)

    if not settings.SECRET_KEY and not settings.DISABLE_AUTH:
        if settings.DEBUG:
            # Fixed dev key so tokens survive restarts
            settings.SECRET_KEY = "dev-insecure-secret-key"
        else:
            logger.error("SECRET_KEY must be set unless DISABLE_AUTH is enabled")
            raise RuntimeError("SECRET_KEY is required in production")

    init_db()

    yield

    pending = app.state.query_logger.pending_count
    if pending:
        app.state.query_logger.flush_pending()
        logger.warning(
            "Shutting down with parked query log writes",
            remaining=app.state.query_logger.pending_count,
        )
    logger.info("Stopping Acervo")


async def acervo_error_handler(request: Request, exc: AcervoError) -> JSONResponse:
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "Request failed",
        path=request.url.path,
        error_type=type(exc).__name__,
        status=exc.status_code,
        error=exc.message,
    )
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors:
        err = errors[0]
        field = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        message = f"{field}: {err.get('msg')}" if field else str(err.get("msg"))
    else:
        message = "Invalid request"
    return JSONResponse(status_code=400, content={"error": message})


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error", path=request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def create_application() -> FastAPI:
    """Create the FastAPI application"""

    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="Institutional document retrieval and question answering",
        version=__version__,
        openapi_url=f"{settings.API_V1_STR}/openapi.json",
        docs_url=f"{settings.API_V1_STR}/docs",
        redoc_url=f"{settings.API_V1_STR}/redoc",
        lifespan=lifespan,
    )

    # Process-wide state shared by requests
    app.state.document_locks = DocumentLockRegistry()
    app.state.query_logger = QueryLogger(SessionLocal)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_allowed_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AcervoError, acervo_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(api_router, prefix=settings.API_V1_STR)

    @app.get("/health")
    async def health_check():
        """Health check"""
        return {"status": "healthy", "service": "acervo", "version": __version__}

    return app


app = create_application()

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "acervo.main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG, log_level="info"
    )
