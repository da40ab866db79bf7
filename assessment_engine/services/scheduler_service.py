"""
Assigns published tests to candidates
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel
from pymongo.errors import DuplicateKeyError

from ..errors import ConflictError, ValidationError
from ..models.enums import TestStatus
from ..models.submission import TestSubmission
from ..utils import dedupe_preserving_order, ensure_utc, utcnow
from .eligibility_service import EligibilityService
from .notification_service import NotificationService
from .test_definition_service import TestDefinitionService

logger = logging.getLogger(__name__)


class AssignmentFailure(BaseModel):
    candidate_id: str
    reason: str  # already_scheduled | ineligible | eligibility_unavailable | error
    detail: Optional[str] = None


class AssignmentResult(BaseModel):
    success_count: int = 0
    submission_ids: List[str] = []
    failures: List[AssignmentFailure] = []
    already_scheduled: List[str] = []


class SubmissionScheduler:
    """Creates one scheduled attempt per (test, candidate) pair"""

    def __init__(
        self,
        eligibility: Optional[EligibilityService] = None,
        notifications: Optional[NotificationService] = None,
    ):
        self.eligibility = eligibility or EligibilityService()
        self.notifications = notifications or NotificationService()

    async def assign_test(
        self,
        test_id: str,
        issuer_id: str,
        candidate_ids: List[str],
        scheduled_at: Optional[datetime] = None,
        expires_at: Optional[datetime] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> AssignmentResult:
        """
        Schedule a test for a batch of candidates

        The call is repeatable: candidates that already hold an attempt are
        reported under ``already_scheduled`` and no duplicate is created. One
        candidate's failure never aborts the rest of the batch.

        Args:
            test_id: Published test to assign
            issuer_id: Issuer making the assignment (must own the test)
            candidate_ids: Explicit candidates
            scheduled_at: Start of the window (defaults to now)
            expires_at: Optional end of the window to start the attempt
            context: Optional drive/test context resolved through the
                eligibility service into extra candidates

        Returns:
            AssignmentResult with per-candidate outcomes

        Raises:
            NotFoundError: unknown test
            UnauthorizedError: issuer does not own the test
            ConflictError: test is not published
            ValidationError: bad scheduling window or no candidates
        """
        test = await TestDefinitionService.get_owned(test_id, issuer_id)
        if test.status != TestStatus.PUBLISHED:
            raise ConflictError("Only published tests can be assigned")

        scheduled_at = ensure_utc(scheduled_at) if scheduled_at else utcnow()
        if expires_at is not None:
            expires_at = ensure_utc(expires_at)
            if expires_at <= scheduled_at:
                raise ValidationError("expires_at must be after scheduled_at")

        candidates = list(candidate_ids or [])
        if context:
            candidates.extend(await self.eligibility.candidates_for(context))
        candidates = dedupe_preserving_order([c for c in candidates if c])
        if not candidates:
            raise ValidationError("No candidates to assign")

        result = AssignmentResult()
        for candidate_id in candidates:
            await self._assign_one(
                result, test_id, issuer_id, candidate_id, scheduled_at, expires_at
            )

        logger.info(
            f"Assigned test {test_id}: {result.success_count} scheduled, "
            f"{len(result.already_scheduled)} already scheduled, "
            f"{len(result.failures) - len(result.already_scheduled)} failed"
        )
        return result

    async def _assign_one(
        self,
        result: AssignmentResult,
        test_id: str,
        issuer_id: str,
        candidate_id: str,
        scheduled_at: datetime,
        expires_at: Optional[datetime],
    ) -> None:
        def already_scheduled():
            result.already_scheduled.append(candidate_id)
            result.failures.append(
                AssignmentFailure(
                    candidate_id=candidate_id,
                    reason="already_scheduled",
                    detail="Test already assigned to this candidate",
                )
            )

        try:
            eligible = await self.eligibility.is_eligible(candidate_id, test_id)
        except Exception as e:
            logger.warning(f"Eligibility lookup failed for {candidate_id}: {str(e)}")
            result.failures.append(
                AssignmentFailure(
                    candidate_id=candidate_id,
                    reason="eligibility_unavailable",
                    detail=str(e),
                )
            )
            return

        if not eligible:
            result.failures.append(
                AssignmentFailure(
                    candidate_id=candidate_id,
                    reason="ineligible",
                    detail="Candidate is not eligible for this test",
                )
            )
            return

        existing = await TestSubmission.find_one(
            {"test_id": test_id, "candidate_id": candidate_id}
        )
        if existing:
            already_scheduled()
            return

        submission = TestSubmission(
            test_id=test_id,
            candidate_id=candidate_id,
            scheduler_id=issuer_id,
            scheduled_at=scheduled_at,
            expires_at=expires_at,
        )
        try:
            await submission.insert()
        except DuplicateKeyError:
            # Lost a race with a concurrent assignment of the same pair
            already_scheduled()
            return
        except Exception as e:
            logger.error(f"Failed to schedule {candidate_id} for test {test_id}: {str(e)}")
            result.failures.append(
                AssignmentFailure(candidate_id=candidate_id, reason="error", detail=str(e))
            )
            return

        result.success_count += 1
        result.submission_ids.append(str(submission.id))
        self.notifications.dispatch(
            candidate_id,
            "test_scheduled",
            {
                "test_id": test_id,
                "submission_id": str(submission.id),
                "scheduled_at": scheduled_at.isoformat(),
                "expires_at": expires_at.isoformat() if expires_at else None,
            },
        )
