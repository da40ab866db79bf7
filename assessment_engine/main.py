import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .db import init_db, ping, close_client
from .dependencies import (
    get_grading_pipeline,
    get_notification_service,
    get_sandbox_client,
    get_statistics_updater,
    get_submission_service,
)
from .errors import AssessmentError
from .jobs.expiry_sweeper import ExpirySweeper
from .middleware import LoggingMiddleware
from .routers.execution import router as execution_router
from .routers.submissions import router as submissions_router
from .routers.tests import router as tests_router

logger = logging.getLogger(__name__)


# Lifespan context manager for startup and shutdown events
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info("Initializing database connection...")
    try:
        await init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.warning(f"Database initialization warning: {str(e)}")

    notifications = get_notification_service()
    submissions = get_submission_service(
        grading=get_grading_pipeline(get_sandbox_client()),
        statistics=get_statistics_updater(),
        notifications=notifications,
    )
    sweeper = ExpirySweeper(submissions, settings.EXPIRY_SWEEP_INTERVAL_SECONDS)
    sweeper.start()

    yield  # App runs here

    await sweeper.stop()
    await notifications.drain()
    await get_sandbox_client().aclose()
    close_client()
    logger.info("Shutdown complete")


# Initialize FastAPI app with lifespan
app = FastAPI(
    title="Assessment Engine API",
    description="Timed online assessments with sandboxed code grading",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(LoggingMiddleware)


@app.exception_handler(AssessmentError)
async def assessment_error_handler(request: Request, exc: AssessmentError):
    """Domain errors go back to the caller verbatim"""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": exc.error_code},
    )


# Include routers
app.include_router(tests_router)
app.include_router(submissions_router)
app.include_router(execution_router)


# Health check endpoints
@app.get("/")
async def root():
    return {"message": "Assessment Engine API is running!", "status": "healthy"}


@app.get("/health")
async def health_check():
    try:
        ping_ms = await ping()
        return {"status": "healthy", "service": "assessment-engine", "db_ping_ms": ping_ms}
    except Exception as e:
        return JSONResponse(
            status_code=503,
            content={
                "status": "degraded",
                "service": "assessment-engine",
                "error": str(e),
                "error_type": type(e).__name__,
            },
        )


if __name__ == "__main__":
    uvicorn.run("assessment_engine.main:app", host="0.0.0.0", port=8000, reload=True)
