import asyncio
from functools import lru_cache

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from .auth import AuthService, Principal
from .config import settings
from .db import init_db
from .models.enums import UserRole
from .services.eligibility_service import EligibilityService
from .services.grading_service import GradingPipeline
from .services.notification_service import NotificationService
from .services.proctoring_service import ProctoringMonitor
from .services.sandbox_client import ExecutionSandboxClient
from .services.scheduler_service import SubmissionScheduler
from .services.scoring_service import StatisticsUpdater
from .services.submission_service import SubmissionService

# Security setup
security = HTTPBearer()


async def ensure_db():
    """
    FastAPI dependency: call on routes/routers requiring DB.
    First call triggers init_beanie once; subsequent calls are cheap.
    """
    await init_db()


# Dependency to get current user
async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Principal:
    """Resolve the caller from the bearer token"""
    return AuthService.verify_token(credentials.credentials)


async def issuer_required(current_user: Principal = Depends(get_current_user)):
    """Check if current user is an issuer"""
    if current_user.role != UserRole.ISSUER:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Issuer access required",
        )
    return current_user


async def candidate_required(current_user: Principal = Depends(get_current_user)):
    """Check if current user is a candidate"""
    if current_user.role != UserRole.CANDIDATE:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Candidate access required",
        )
    return current_user


# ================ Service wiring (one instance per process) ================


@lru_cache
def get_sandbox_client() -> ExecutionSandboxClient:
    return ExecutionSandboxClient(
        base_url=settings.JUDGE0_API_URL,
        api_key=settings.JUDGE0_API_KEY,
        timeout_seconds=settings.SANDBOX_HTTP_TIMEOUT_SECONDS,
        max_concurrency=settings.SANDBOX_MAX_CONCURRENCY,
        cpu_limit_seconds=settings.SANDBOX_CPU_LIMIT_SECONDS,
        memory_limit_kb=settings.SANDBOX_MEMORY_LIMIT_KB,
    )


@lru_cache
def get_sandbox_gate() -> asyncio.Semaphore:
    return asyncio.Semaphore(settings.SANDBOX_MAX_CONCURRENCY)


@lru_cache
def get_statistics_updater() -> StatisticsUpdater:
    return StatisticsUpdater()


@lru_cache
def get_notification_service() -> NotificationService:
    return NotificationService()


@lru_cache
def get_eligibility_service() -> EligibilityService:
    return EligibilityService()


def get_grading_pipeline(
    sandbox: ExecutionSandboxClient = Depends(get_sandbox_client),
) -> GradingPipeline:
    return GradingPipeline(sandbox, gate=get_sandbox_gate())


def get_submission_service(
    grading: GradingPipeline = Depends(get_grading_pipeline),
    statistics: StatisticsUpdater = Depends(get_statistics_updater),
    notifications: NotificationService = Depends(get_notification_service),
) -> SubmissionService:
    return SubmissionService(grading, statistics, notifications)


def get_proctoring_monitor(
    submissions: SubmissionService = Depends(get_submission_service),
) -> ProctoringMonitor:
    return ProctoringMonitor(submissions)


def get_scheduler(
    eligibility: EligibilityService = Depends(get_eligibility_service),
    notifications: NotificationService = Depends(get_notification_service),
) -> SubmissionScheduler:
    return SubmissionScheduler(eligibility, notifications)
