"""
Per-attempt score aggregation and test-wide statistics
"""

import asyncio
import logging
import weakref
from typing import List, Optional

from bson import ObjectId

from ..config import settings
from ..models.enums import QuestionType, SubmissionStatus
from ..models.submission import SubmissionScores, TestSubmission
from ..models.test import Test, TestStatistics
from ..utils import round_half_up

logger = logging.getLogger(__name__)

FINALIZED_STATUSES = [SubmissionStatus.SUBMITTED.value, SubmissionStatus.EVALUATED.value]


class ScoreAggregator:
    """Service class for computing an attempt's final scores"""

    @staticmethod
    def compute(test: Test, submission: TestSubmission) -> SubmissionScores:
        """
        Compute scores for a finalized attempt

        Answers are matched to questions by question_id, so a question that was
        removed from the test scores nothing and earned points never exceed the
        question's current points.

        Args:
            test: Authoritative test definition
            submission: Attempt being finalized

        Returns:
            SubmissionScores for the attempt
        """
        mcq_points = {
            q.question_id: q.points
            for q in test.questions
            if q.type == QuestionType.MCQ.value
        }
        coding_points = {
            q.question_id: q.points
            for q in test.questions
            if q.type == QuestionType.CODING.value
        }

        mcq_score = sum(
            min(answer.points_earned, mcq_points[answer.question_id])
            for answer in submission.mcq_answers
            if answer.question_id in mcq_points
        )
        # Only the latest submission per question is stored
        coding_score = sum(
            min(code.points_earned, coding_points[code.question_id])
            for code in submission.code_submissions
            if code.question_id in coding_points
        )

        mcq_total = sum(mcq_points.values())
        coding_total = sum(coding_points.values())
        total_score = mcq_score + coding_score
        max_score = mcq_total + coding_total

        percentage = 0.0
        if max_score > 0:
            percentage = round_half_up(total_score / max_score * 100)

        return SubmissionScores(
            mcq_score=mcq_score,
            mcq_total=mcq_total,
            coding_score=coding_score,
            coding_total=coding_total,
            total_score=total_score,
            max_score=max_score,
            percentage=percentage,
            passed=percentage >= test.passing_percentage,
        )


def compute_statistics(percentages: List[float]) -> TestStatistics:
    if not percentages:
        return TestStatistics()
    return TestStatistics(
        total_attempts=len(percentages),
        average_score=round_half_up(sum(percentages) / len(percentages), 2),
        highest_score=max(percentages),
        lowest_score=min(percentages),
    )


class StatisticsUpdater:
    """
    Recomputes a test's statistics from every submitted/evaluated attempt.

    Recomputation for one test is serialized through a per-test lock; different
    tests never contend. Failures are retried with linear backoff and then
    logged, never raised.
    """

    def __init__(
        self,
        max_retries: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
    ):
        self.max_retries = max_retries or settings.STATISTICS_MAX_RETRIES
        self.backoff_seconds = (
            settings.STATISTICS_RETRY_BACKOFF_SECONDS
            if backoff_seconds is None
            else backoff_seconds
        )
        # Entries drop out once no recompute holds the lock
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def lock_for(self, test_id: str) -> asyncio.Lock:
        lock = self._locks.get(test_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[test_id] = lock
        return lock

    async def _recompute_once(self, test_id: str) -> TestStatistics:
        submissions = await TestSubmission.find(
            {"test_id": test_id, "status": {"$in": FINALIZED_STATUSES}}
        ).to_list()
        statistics = compute_statistics(
            [submission.scores.percentage for submission in submissions]
        )

        await Test.find_one({"_id": ObjectId(test_id)}).update(
            {"$set": {"statistics": statistics.model_dump()}}
        )
        return statistics

    async def recompute(self, test_id: str) -> Optional[TestStatistics]:
        """
        Args:
            test_id: Test whose statistics should be rebuilt

        Returns:
            The new statistics, or None if every attempt failed
        """
        async with self.lock_for(test_id):
            for attempt in range(1, self.max_retries + 1):
                try:
                    statistics = await self._recompute_once(test_id)
                    logger.info(
                        f"Statistics for test {test_id}: attempts={statistics.total_attempts} "
                        f"avg={statistics.average_score}"
                    )
                    return statistics
                except Exception as e:
                    logger.warning(
                        f"Statistics recompute for test {test_id} failed "
                        f"(attempt {attempt}/{self.max_retries}): {str(e)}"
                    )
                    if attempt < self.max_retries:
                        await asyncio.sleep(self.backoff_seconds * attempt)

        logger.error(f"Giving up on statistics for test {test_id}")
        return None
