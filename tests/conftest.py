import asyncio
from datetime import timedelta
from typing import Dict, List, Optional

import httpx
import pytest
from mongomock_motor import AsyncMongoMockClient

from assessment_engine import db
from assessment_engine.auth import AuthService
from assessment_engine.errors import SandboxUnavailableError
from assessment_engine.models.enums import UserRole
from assessment_engine.models.submission import TestSubmission
from assessment_engine.services.eligibility_service import EligibilityService
from assessment_engine.services.grading_service import GradingPipeline
from assessment_engine.services.notification_service import NotificationService
from assessment_engine.services.proctoring_service import ProctoringMonitor
from assessment_engine.services.sandbox_client import ExecutionResult
from assessment_engine.services.scheduler_service import SubmissionScheduler
from assessment_engine.services.scoring_service import StatisticsUpdater
from assessment_engine.services.submission_service import SubmissionService
from assessment_engine.services.test_definition_service import TestDefinitionService
from assessment_engine.utils import utcnow

ISSUER_ID = "issuer-1"
OTHER_ISSUER_ID = "issuer-2"
CANDIDATE_ID = "candidate-1"
OTHER_CANDIDATE_ID = "candidate-2"

# stdin -> expected stdout for the sample coding question
SUM_CASES = {"1 2": "3", "2 3": "5", "10 20": "30", "7 8": "15"}


def sample_test_payload(**overrides) -> Dict:
    """Two 10-point MCQs and one 20-point coding question (2 visible + 2 hidden cases)"""
    payload = {
        "title": "Backend Screening",
        "description": "Sample assessment",
        "duration_minutes": 30,
        "passing_percentage": 50,
        "questions": [
            {
                "type": "mcq",
                "title": "Idempotent method",
                "prompt": "Which HTTP method is idempotent?",
                "options": [
                    {"text": "POST", "is_correct": False},
                    {"text": "PUT", "is_correct": True},
                    {"text": "PATCH", "is_correct": False},
                ],
                "points": 10,
            },
            {
                "type": "mcq",
                "title": "Not found",
                "prompt": "Which status code means not found?",
                "options": [
                    {"text": "404", "is_correct": True},
                    {"text": "500", "is_correct": False},
                ],
                "points": 10,
            },
            {
                "type": "coding",
                "title": "Sum two numbers",
                "problem_statement": "Read two integers and print their sum.",
                "sample_input": "1 2",
                "sample_output": "3",
                "test_cases": [
                    {"input": "1 2", "expected_output": "3", "points": 5},
                    {"input": "2 3", "expected_output": "5", "points": 5},
                    {"input": "10 20", "expected_output": "30", "is_hidden": True, "points": 5},
                    {"input": "7 8", "expected_output": "15", "is_hidden": True, "points": 5},
                ],
                "points": 20,
            },
        ],
    }
    payload.update(overrides)
    return payload


def accepted(stdout: str, time_ms: float = 12.0, memory_kb: float = 2048.0) -> ExecutionResult:
    return ExecutionResult(
        stdout=stdout,
        stderr="",
        compile_output="",
        status_code=3,
        status="Accepted",
        time_ms=time_ms,
        memory_kb=memory_kb,
    )


class FakeSandbox:
    """Scripted executor keyed by stdin; unknown input prints nothing"""

    def __init__(
        self,
        outputs: Optional[Dict[str, str]] = None,
        hang_on: Optional[List[str]] = None,
        fail_on: Optional[List[str]] = None,
        unavailable: bool = False,
    ):
        self.outputs = dict(SUM_CASES if outputs is None else outputs)
        self.hang_on = set(hang_on or [])
        self.fail_on = set(fail_on or [])
        self.unavailable = unavailable
        self.calls: List[Dict] = []

    async def execute(
        self,
        source_code: str,
        language: str,
        stdin: str = "",
        cpu_limit_seconds=None,
        memory_limit_kb=None,
    ) -> ExecutionResult:
        self.calls.append({"language": language, "stdin": stdin})
        if self.unavailable:
            raise SandboxUnavailableError("Sandbox unreachable")
        if stdin in self.hang_on:
            await asyncio.sleep(5)
        if stdin in self.fail_on:
            raise RuntimeError("container crashed")
        return accepted(self.outputs.get(stdin, "") + "\n")


def auth_headers(user_id: str, role: UserRole) -> Dict[str, str]:
    token = AuthService.create_access_token(user_id, role)
    return {"Authorization": f"Bearer {token}"}


async def backdate_start(submission_id: str, minutes: int) -> TestSubmission:
    """Pretend the attempt started ``minutes`` ago"""
    submission = await SubmissionService.load(submission_id)
    submission.started_at = utcnow() - timedelta(minutes=minutes)
    await submission.save()
    return submission


# ================ Fixtures ================


@pytest.fixture(autouse=True)
async def database():
    client = AsyncMongoMockClient()
    await db.init_db(client)
    yield client


@pytest.fixture
def fake_sandbox():
    return FakeSandbox()


@pytest.fixture
def notifications():
    return NotificationService(webhook_url="")


@pytest.fixture
def statistics():
    return StatisticsUpdater(max_retries=2, backoff_seconds=0)


@pytest.fixture
def grading(fake_sandbox):
    return GradingPipeline(fake_sandbox, case_timeout_seconds=0.5)


@pytest.fixture
def submission_service(grading, statistics, notifications):
    return SubmissionService(grading, statistics, notifications)


@pytest.fixture
def scheduler(notifications):
    return SubmissionScheduler(EligibilityService(base_url=""), notifications)


@pytest.fixture
def monitor(submission_service):
    return ProctoringMonitor(submission_service, flag_threshold=3, terminate_threshold=5)


@pytest.fixture
async def published_test():
    test = await TestDefinitionService.create(ISSUER_ID, sample_test_payload())
    return await TestDefinitionService.publish(str(test.id), ISSUER_ID)


@pytest.fixture
async def scheduled_submission(published_test, scheduler):
    result = await scheduler.assign_test(str(published_test.id), ISSUER_ID, [CANDIDATE_ID])
    return await SubmissionService.load(result.submission_ids[0])


@pytest.fixture
async def started_submission(scheduled_submission, submission_service):
    await submission_service.start(str(scheduled_submission.id), CANDIDATE_ID)
    return await SubmissionService.load(str(scheduled_submission.id))


@pytest.fixture
async def api_client(fake_sandbox, statistics, notifications):
    from assessment_engine.dependencies import (
        get_eligibility_service,
        get_notification_service,
        get_sandbox_client,
        get_sandbox_gate,
        get_statistics_updater,
    )
    from assessment_engine.main import app

    # Semaphores bind to the first loop that waits on them
    get_sandbox_gate.cache_clear()
    app.dependency_overrides[get_sandbox_client] = lambda: fake_sandbox
    app.dependency_overrides[get_statistics_updater] = lambda: statistics
    app.dependency_overrides[get_notification_service] = lambda: notifications
    app.dependency_overrides[get_eligibility_service] = lambda: EligibilityService(base_url="")

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
