"""
Models for one candidate's attempt at a test, including the status transition
table every write is checked against.
"""

from datetime import datetime, timezone, timedelta
from enum import Enum
from typing import List, Dict, Optional, Any

from beanie import UpdateResponse
from pydantic import BaseModel, Field
from pymongo import ASCENDING, IndexModel

from .base import BaseDocument
from .enums import (
    SubmissionStatus,
    FinalizeTrigger,
    ReviewDecision,
)
from ..utils import UTCDateTime, ensure_utc


# Explicit transition table; anything not listed here is rejected.
ALLOWED_TRANSITIONS: Dict[SubmissionStatus, set] = {
    SubmissionStatus.SCHEDULED: {SubmissionStatus.IN_PROGRESS, SubmissionStatus.EXPIRED},
    SubmissionStatus.IN_PROGRESS: {SubmissionStatus.SUBMITTED},
    SubmissionStatus.SUBMITTED: {SubmissionStatus.EVALUATED},
    SubmissionStatus.EVALUATED: set(),
    SubmissionStatus.EXPIRED: set(),
}


def can_transition(current: SubmissionStatus, target: SubmissionStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


def _to_mongo(value: Any) -> Any:
    """Plain BSON-friendly value for a raw $set"""
    if isinstance(value, BaseModel):
        return _to_mongo(value.model_dump())
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, list):
        return [_to_mongo(item) for item in value]
    if isinstance(value, dict):
        return {key: _to_mongo(item) for key, item in value.items()}
    return value


# ================ Embedded components ================


class McqAnswer(BaseModel):
    question_index: int
    question_id: str
    selected_option: int
    is_correct: bool
    points_earned: float = 0
    answered_at: UTCDateTime = Field(default_factory=lambda: datetime.now(timezone.utc))


class TestCaseResult(BaseModel):
    """Outcome of running one test case. Stored in full; candidates get a redacted view."""

    test_case_index: int
    passed: bool
    is_hidden: bool = False
    input: Optional[str] = None  # Snapshot of the case as it was graded
    actual_output: Optional[str] = None
    expected_output: Optional[str] = None
    status: Optional[str] = None
    execution_time_ms: float = 0
    memory_kb: float = 0
    error: Optional[str] = None
    points_earned: float = 0
    degraded: bool = False  # Ran on the fallback executor, not judged by the sandbox


class CodeSubmission(BaseModel):
    question_index: int
    question_id: str
    language: str
    code: str
    test_case_results: List[TestCaseResult] = []
    total_passed: int = 0
    total_test_cases: int = 0
    points_earned: float = 0
    degraded: bool = False
    submitted_at: UTCDateTime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SubmissionScores(BaseModel):
    mcq_score: float = 0
    mcq_total: float = 0
    coding_score: float = 0
    coding_total: float = 0
    total_score: float = 0
    max_score: float = 0
    percentage: float = 0
    passed: bool = False


class ProctoringState(BaseModel):
    tab_switch_count: int = 0
    warnings_issued: int = 0
    flagged: bool = False
    flag_reason: Optional[str] = None
    event_counts: Dict[str, int] = {}
    events: List[Dict[str, Any]] = []  # {"type": ..., "timestamp": ...}


class Review(BaseModel):
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[UTCDateTime] = None
    comments: Optional[str] = None
    decision: ReviewDecision = ReviewDecision.PENDING


# ================ Main model ================


class TestSubmission(BaseDocument):
    """
    One candidate's attempt. Exactly one per (test_id, candidate_id), enforced
    by a unique index. All state changes go through ``compare_and_set``.
    """

    test_id: str
    candidate_id: str
    scheduler_id: Optional[str] = None

    # Scheduling window
    scheduled_at: UTCDateTime = Field(default_factory=lambda: datetime.now(timezone.utc))
    expires_at: Optional[UTCDateTime] = None

    # Timing
    started_at: Optional[UTCDateTime] = None
    submitted_at: Optional[UTCDateTime] = None
    time_spent_seconds: int = 0

    status: SubmissionStatus = SubmissionStatus.SCHEDULED
    finalize_trigger: Optional[FinalizeTrigger] = None

    mcq_answers: List[McqAnswer] = []
    code_submissions: List[CodeSubmission] = []

    scores: SubmissionScores = Field(default_factory=SubmissionScores)
    proctoring: ProctoringState = Field(default_factory=ProctoringState)
    review: Review = Field(default_factory=Review)

    # Bumped by every compare_and_set; guards read-modify-write races
    version: int = 0

    class Settings:
        name = "test_submissions"
        indexes = [
            IndexModel(
                [("test_id", ASCENDING), ("candidate_id", ASCENDING)],
                unique=True,
                name="test_candidate_unique",
            ),
            IndexModel([("candidate_id", ASCENDING), ("status", ASCENDING)]),
            IndexModel([("test_id", ASCENDING), ("status", ASCENDING)]),
            IndexModel([("scheduled_at", ASCENDING)]),
        ]

    def is_owned_by(self, candidate_id: str) -> bool:
        return self.candidate_id == candidate_id

    def deadline(self, duration_minutes: int) -> Optional[datetime]:
        """Server-side deadline: started_at + duration. None until started."""
        if self.started_at is None:
            return None
        return ensure_utc(self.started_at) + timedelta(minutes=duration_minutes)

    def is_past_deadline(self, duration_minutes: int, now: datetime) -> bool:
        deadline = self.deadline(duration_minutes)
        return deadline is not None and now > deadline

    def has_lapsed(self, now: datetime) -> bool:
        """Scheduling window closed before the attempt was started"""
        return self.expires_at is not None and now > ensure_utc(self.expires_at)

    def mcq_answer_for(self, question_index: int) -> Optional[McqAnswer]:
        return next(
            (a for a in self.mcq_answers if a.question_index == question_index), None
        )

    async def compare_and_set(self, expected_status: SubmissionStatus, **changes) -> bool:
        """
        Atomically apply ``changes`` if the stored document still has
        ``expected_status`` and the version this instance was loaded with.

        Returns:
            True when the write won; the instance is updated in place.
            False when another writer got there first (reload and decide).
        """
        now = datetime.now(timezone.utc)
        changes["updated_at"] = now
        result = await TestSubmission.find_one(
            {"_id": self.id, "status": expected_status.value, "version": self.version}
        ).update(
            {
                "$set": {field: _to_mongo(value) for field, value in changes.items()},
                "$inc": {"version": 1},
            },
            response_type=UpdateResponse.UPDATE_RESULT,
        )
        if result is None or result.modified_count != 1:
            return False

        for field, value in changes.items():
            setattr(self, field, value)
        self.version += 1
        return True
