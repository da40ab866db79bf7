"""
Submission state machine: drives one candidate's attempt from start to finalize.

Every write is a compare-and-set on (status, version). When the version moved
but the status did not, the operation reloads and retries; when the status
moved, the caller gets a ConflictError.
"""

import logging
import random
from datetime import datetime
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pydantic import BaseModel

from ..errors import (
    ConflictError,
    DeadlineExceededError,
    UnauthorizedError,
    ValidationError,
)
from ..models.enums import FinalizeTrigger, ReviewDecision, SubmissionStatus
from ..models.submission import McqAnswer, Review, TestSubmission, can_transition
from ..models.test import CodingQuestion, McqQuestion, Test
from ..utils import ensure_utc, get_or_raise, utcnow
from .grading_service import GradingPipeline
from .notification_service import NotificationService
from .report_service import build_performance_report
from .scoring_service import ScoreAggregator, StatisticsUpdater

logger = logging.getLogger(__name__)

MAX_CAS_RETRIES = 5
FINALIZED = (SubmissionStatus.SUBMITTED, SubmissionStatus.EVALUATED)


class SweepResult(BaseModel):
    expired: int = 0
    finalized: int = 0


def sanitize_questions(test: Test, submission: TestSubmission) -> List[Dict[str, Any]]:
    """
    Candidate-facing question set.

    MCQ options lose ``is_correct``; hidden test cases keep only their index and
    points. Shuffling is seeded by the submission id so a resumed attempt sees
    the same order, and every item keeps its original index.
    """
    rng = random.Random(str(submission.id))
    order = list(range(len(test.questions)))
    if test.settings.shuffle_questions:
        rng.shuffle(order)

    questions = []
    for index in order:
        question = test.questions[index]
        if isinstance(question, McqQuestion):
            options = [
                {"index": option_index, "text": option.text}
                for option_index, option in enumerate(question.options)
            ]
            if test.settings.shuffle_options:
                rng.shuffle(options)
            questions.append(
                {
                    "question_index": index,
                    "question_id": question.question_id,
                    "type": question.type,
                    "title": question.title,
                    "prompt": question.prompt,
                    "points": question.points,
                    "options": options,
                }
            )
        else:
            test_cases = []
            for case_index, case in enumerate(question.test_cases):
                if case.is_hidden:
                    test_cases.append(
                        {"index": case_index, "is_hidden": True, "points": case.points}
                    )
                else:
                    test_cases.append(
                        {
                            "index": case_index,
                            "is_hidden": False,
                            "input": case.input,
                            "expected_output": case.expected_output,
                            "points": case.points,
                        }
                    )
            questions.append(
                {
                    "question_index": index,
                    "question_id": question.question_id,
                    "type": question.type,
                    "title": question.title,
                    "problem_statement": question.problem_statement,
                    "sample_input": question.sample_input,
                    "sample_output": question.sample_output,
                    "points": question.points,
                    "test_cases": test_cases,
                }
            )
    return questions


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return ensure_utc(value).isoformat() if value else None


class SubmissionService:
    """Service class for attempt lifecycle operations"""

    def __init__(
        self,
        grading: GradingPipeline,
        statistics: StatisticsUpdater,
        notifications: Optional[NotificationService] = None,
    ):
        self.grading = grading
        self.statistics = statistics
        self.notifications = notifications or NotificationService()

    # ================ Loading helpers ================

    @staticmethod
    async def load(submission_id: str) -> TestSubmission:
        return await get_or_raise(TestSubmission, submission_id, detail="Submission not found")

    @staticmethod
    async def load_owned(submission_id: str, candidate_id: str) -> TestSubmission:
        submission = await SubmissionService.load(submission_id)
        if not submission.is_owned_by(candidate_id):
            raise UnauthorizedError("This submission belongs to another candidate")
        return submission

    @staticmethod
    async def load_test(test_id: str) -> Test:
        return await get_or_raise(Test, test_id, detail="Test not found")

    @staticmethod
    def _concurrent_update() -> ConflictError:
        return ConflictError("Submission was modified concurrently, please retry")

    # ================ Guards ================

    async def force_timeout(self, submission: TestSubmission, now: datetime) -> None:
        try:
            await self.finalize(str(submission.id), FinalizeTrigger.TIMEOUT, now=now)
        except ConflictError:
            logger.debug(f"Submission {submission.id} was already finalized")

    async def _require_active(
        self, submission: TestSubmission, test: Test, now: datetime
    ) -> None:
        """Attempt must be in progress and within its server-side deadline"""
        if submission.status != SubmissionStatus.IN_PROGRESS:
            raise ConflictError(
                f"Submission is {submission.status.value}; changes are no longer accepted"
            )
        if submission.is_past_deadline(test.duration_minutes, now):
            await self.force_timeout(submission, now)
            raise DeadlineExceededError("Time is up; the attempt has been submitted")

    # ================ Start ================

    def _attempt_payload(
        self, test: Test, submission: TestSubmission, now: datetime
    ) -> Dict[str, Any]:
        deadline = submission.deadline(test.duration_minutes)
        remaining = max(0, int((deadline - now).total_seconds())) if deadline else 0
        return {
            "submission_id": str(submission.id),
            "test_id": submission.test_id,
            "title": test.title,
            "description": test.description,
            "instructions": test.instructions,
            "duration_minutes": test.duration_minutes,
            "total_marks": test.total_marks,
            "settings": test.settings.model_dump(),
            "status": submission.status.value,
            "started_at": _isoformat(submission.started_at),
            # Display only; the server deadline is what counts
            "deadline": _isoformat(deadline),
            "remaining_seconds": remaining,
            "questions": sanitize_questions(test, submission),
            "mcq_answers": [
                {"question_index": a.question_index, "selected_option": a.selected_option}
                for a in submission.mcq_answers
            ],
            "code_submissions": [
                GradingPipeline.candidate_view(s) for s in submission.code_submissions
            ],
            "proctoring": {
                "tab_switch_count": submission.proctoring.tab_switch_count,
                "warnings_issued": submission.proctoring.warnings_issued,
            },
        }

    async def start(self, submission_id: str, candidate_id: str) -> Dict[str, Any]:
        """
        Start (or resume) an attempt

        Args:
            submission_id: Attempt to start
            candidate_id: Caller; must own the attempt

        Returns:
            Sanitized questions plus deadline information

        Raises:
            UnauthorizedError: attempt belongs to someone else
            DeadlineExceededError: start window lapsed (attempt is now expired)
                or an in-progress attempt ran out of time
            ConflictError: attempt already submitted, evaluated or expired
        """
        submission = await self.load_owned(submission_id, candidate_id)
        test = await self.load_test(submission.test_id)

        for _ in range(MAX_CAS_RETRIES):
            now = utcnow()

            if submission.status == SubmissionStatus.IN_PROGRESS:
                if submission.is_past_deadline(test.duration_minutes, now):
                    await self.force_timeout(submission, now)
                    raise DeadlineExceededError("The time limit for this test has passed")
                return self._attempt_payload(test, submission, now)

            if submission.status != SubmissionStatus.SCHEDULED:
                raise ConflictError(f"Submission is already {submission.status.value}")

            if now < ensure_utc(submission.scheduled_at):
                raise ConflictError("This test is not open yet")

            if submission.has_lapsed(now):
                if await submission.compare_and_set(
                    SubmissionStatus.SCHEDULED, status=SubmissionStatus.EXPIRED
                ):
                    logger.info(f"Submission {submission_id} expired on start")
                    raise DeadlineExceededError("The window to start this test has closed")
            elif await submission.compare_and_set(
                SubmissionStatus.SCHEDULED,
                status=SubmissionStatus.IN_PROGRESS,
                started_at=now,
            ):
                logger.info(f"Submission {submission_id} started by {candidate_id}")
                return self._attempt_payload(test, submission, now)

            submission = await self.load(submission_id)

        raise self._concurrent_update()

    # ================ Answers ================

    async def submit_mcq_answer(
        self,
        submission_id: str,
        candidate_id: str,
        question_index: int,
        selected_option: int,
    ) -> McqAnswer:
        """
        Grade and store an MCQ answer, replacing any earlier answer to the question

        Raises:
            ValidationError: not an MCQ question or option out of range
            DeadlineExceededError: time is up (the attempt gets finalized)
            ConflictError: attempt is not in progress
        """
        submission = await self.load_owned(submission_id, candidate_id)
        test = await self.load_test(submission.test_id)

        for _ in range(MAX_CAS_RETRIES):
            now = utcnow()
            await self._require_active(submission, test, now)

            question = test.question_at(question_index)
            if not isinstance(question, McqQuestion):
                raise ValidationError(
                    f"Question {question_index} is not a multiple-choice question"
                )
            if selected_option < 0 or selected_option >= len(question.options):
                raise ValidationError(f"Option {selected_option} does not exist")

            is_correct = selected_option in question.correct_option_indexes()
            answer = McqAnswer(
                question_index=question_index,
                question_id=question.question_id,
                selected_option=selected_option,
                is_correct=is_correct,
                points_earned=question.points if is_correct else 0,
                answered_at=now,
            )
            answers = [
                a for a in submission.mcq_answers if a.question_index != question_index
            ]
            answers.append(answer)

            if await submission.compare_and_set(
                SubmissionStatus.IN_PROGRESS, mcq_answers=answers
            ):
                return answer
            submission = await self.load(submission_id)

        raise self._concurrent_update()

    async def submit_code(
        self,
        submission_id: str,
        candidate_id: str,
        question_index: int,
        code: str,
        language: str,
    ) -> Dict[str, Any]:
        """
        Grade code for a coding question. The result replaces any earlier
        attempt at the same question (last attempt wins).

        Returns:
            Candidate-facing grading result (hidden cases redacted)
        """
        submission = await self.load_owned(submission_id, candidate_id)
        test = await self.load_test(submission.test_id)

        # Deadline is judged against when the code arrived, not when grading ends
        received_at = utcnow()
        await self._require_active(submission, test, received_at)

        question = test.question_at(question_index)
        if not isinstance(question, CodingQuestion):
            raise ValidationError(f"Question {question_index} is not a coding question")
        if not code or not code.strip():
            raise ValidationError("Code cannot be empty")

        result = await self.grading.grade_coding(question, question_index, code, language)

        for _ in range(MAX_CAS_RETRIES):
            await self._require_active(submission, test, received_at)
            code_submissions = [
                s for s in submission.code_submissions if s.question_index != question_index
            ]
            code_submissions.append(result)

            if await submission.compare_and_set(
                SubmissionStatus.IN_PROGRESS, code_submissions=code_submissions
            ):
                return GradingPipeline.candidate_view(result)
            submission = await self.load(submission_id)

        raise self._concurrent_update()

    # ================ Finalize ================

    async def finalize(
        self,
        submission_id: str,
        trigger: FinalizeTrigger = FinalizeTrigger.MANUAL,
        candidate_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> TestSubmission:
        """
        Score the attempt and move it to submitted

        A second call fails with ConflictError and leaves the scores untouched.
        A manual finalize arriving after the deadline is recorded as a timeout.

        Args:
            submission_id: Attempt to finalize
            trigger: What ended the attempt
            candidate_id: When given, the caller must own the attempt
            now: Reference time (defaults to the current time)

        Returns:
            The finalized submission
        """
        submission = (
            await self.load_owned(submission_id, candidate_id)
            if candidate_id is not None
            else await self.load(submission_id)
        )
        test = await self.load_test(submission.test_id)
        trigger = FinalizeTrigger(trigger)

        for _ in range(MAX_CAS_RETRIES):
            if not can_transition(submission.status, SubmissionStatus.SUBMITTED):
                if submission.status == SubmissionStatus.SCHEDULED:
                    raise ConflictError("Submission has not been started")
                raise ConflictError(f"Submission is already {submission.status.value}")

            finalized_at = now or utcnow()
            effective_trigger = trigger
            if trigger == FinalizeTrigger.MANUAL and submission.is_past_deadline(
                test.duration_minutes, finalized_at
            ):
                effective_trigger = FinalizeTrigger.TIMEOUT

            elapsed = int((finalized_at - ensure_utc(submission.started_at)).total_seconds())
            time_spent = max(0, min(elapsed, test.duration_seconds))
            scores = ScoreAggregator.compute(test, submission)

            if await submission.compare_and_set(
                SubmissionStatus.IN_PROGRESS,
                status=SubmissionStatus.SUBMITTED,
                submitted_at=finalized_at,
                time_spent_seconds=time_spent,
                finalize_trigger=effective_trigger,
                scores=scores,
            ):
                logger.info(
                    f"Submission {submission_id} finalized ({effective_trigger.value}): "
                    f"{scores.total_score}/{scores.max_score} = {scores.percentage}%"
                )
                await self._after_finalize(submission)
                return submission

            submission = await self.load(submission_id)

        raise self._concurrent_update()

    async def _after_finalize(self, submission: TestSubmission) -> None:
        # Scores are already stored; statistics failures are logged by the updater
        await self.statistics.recompute(submission.test_id)
        self.notifications.dispatch(
            submission.candidate_id,
            "test_submitted",
            {
                "submission_id": str(submission.id),
                "test_id": submission.test_id,
                "trigger": submission.finalize_trigger.value,
            },
        )

    # ================ Review ================

    async def evaluate(
        self,
        submission_id: str,
        issuer_id: str,
        decision: ReviewDecision,
        comments: Optional[str] = None,
    ) -> TestSubmission:
        """Record the issuer's manual review (submitted -> evaluated)"""
        submission = await self.load(submission_id)
        test = await self.load_test(submission.test_id)
        if test.issuer_id != issuer_id:
            raise UnauthorizedError("You do not own this test")

        decision = ReviewDecision(decision)
        if decision == ReviewDecision.PENDING:
            raise ValidationError("Review decision must be passed or failed")

        for _ in range(MAX_CAS_RETRIES):
            if not can_transition(submission.status, SubmissionStatus.EVALUATED):
                raise ConflictError(
                    f"Only submitted attempts can be evaluated (status: {submission.status.value})"
                )

            review = Review(
                reviewed_by=issuer_id,
                reviewed_at=utcnow(),
                comments=comments,
                decision=decision,
            )
            if await submission.compare_and_set(
                SubmissionStatus.SUBMITTED,
                status=SubmissionStatus.EVALUATED,
                review=review,
            ):
                logger.info(f"Submission {submission_id} evaluated: {decision.value}")
                return submission
            submission = await self.load(submission_id)

        raise self._concurrent_update()

    async def performance_report(self, submission_id: str, issuer_id: str) -> Dict[str, Any]:
        """
        Detailed report for the issuer, including hidden test case data

        Raises:
            UnauthorizedError: the test belongs to another issuer
            ConflictError: the attempt has not been submitted yet
        """
        submission = await self.load(submission_id)
        test = await self.load_test(submission.test_id)
        if test.issuer_id != issuer_id:
            raise UnauthorizedError("You do not own this test")

        now = utcnow()
        if submission.status == SubmissionStatus.IN_PROGRESS and submission.is_past_deadline(
            test.duration_minutes, now
        ):
            await self.force_timeout(submission, now)
            submission = await self.load(submission_id)

        if submission.status not in FINALIZED:
            raise ConflictError(
                f"Report is only available once the attempt is submitted (status: {submission.status.value})"
            )
        return build_performance_report(test, submission)

    # ================ Candidate reads ================

    @staticmethod
    def candidate_summary(
        submission: TestSubmission, test: Optional[Test]
    ) -> Dict[str, Any]:
        summary = {
            "id": str(submission.id),
            "test_id": submission.test_id,
            "test_title": test.title if test else None,
            "duration_minutes": test.duration_minutes if test else None,
            "status": submission.status.value,
            "scheduled_at": _isoformat(submission.scheduled_at),
            "expires_at": _isoformat(submission.expires_at),
            "started_at": _isoformat(submission.started_at),
            "submitted_at": _isoformat(submission.submitted_at),
            "time_spent_seconds": submission.time_spent_seconds,
            "finalize_trigger": (
                submission.finalize_trigger.value if submission.finalize_trigger else None
            ),
        }
        if test and test.settings.show_results and submission.status in FINALIZED:
            summary["scores"] = submission.scores.model_dump()
        return summary

    async def list_for_candidate(
        self, candidate_id: str, status: Optional[SubmissionStatus] = None
    ) -> List[Dict[str, Any]]:
        """List a candidate's attempts after sweeping their lapsed ones"""
        await self.sweep(candidate_id=candidate_id)

        query: Dict[str, Any] = {"candidate_id": candidate_id}
        if status is not None:
            query["status"] = SubmissionStatus(status).value
        submissions = await TestSubmission.find(query).sort("-scheduled_at").to_list()

        test_ids = list({s.test_id for s in submissions if ObjectId.is_valid(s.test_id)})
        tests = await Test.find({"_id": {"$in": [ObjectId(t) for t in test_ids]}}).to_list()
        tests_by_id = {str(test.id): test for test in tests}

        return [
            self.candidate_summary(submission, tests_by_id.get(submission.test_id))
            for submission in submissions
        ]

    async def candidate_view(self, submission_id: str, candidate_id: str) -> Dict[str, Any]:
        """One attempt as its candidate may see it"""
        submission = await self.load_owned(submission_id, candidate_id)
        test = await self.load_test(submission.test_id)

        now = utcnow()
        if submission.status == SubmissionStatus.IN_PROGRESS and submission.is_past_deadline(
            test.duration_minutes, now
        ):
            await self.force_timeout(submission, now)
            submission = await self.load(submission_id)

        reveal = test.settings.show_results and submission.status in FINALIZED
        view = self.candidate_summary(submission, test)
        view["mcq_answers"] = [
            {
                "question_index": a.question_index,
                "selected_option": a.selected_option,
                **({"is_correct": a.is_correct, "points_earned": a.points_earned} if reveal else {}),
            }
            for a in submission.mcq_answers
        ]
        view["code_submissions"] = [
            GradingPipeline.candidate_view(s) for s in submission.code_submissions
        ]
        view["proctoring"] = {
            "tab_switch_count": submission.proctoring.tab_switch_count,
            "warnings_issued": submission.proctoring.warnings_issued,
            "flagged": submission.proctoring.flagged,
        }
        return view

    # ================ Sweep ================

    async def sweep(
        self, now: Optional[datetime] = None, candidate_id: Optional[str] = None
    ) -> SweepResult:
        """
        Expire never-started attempts whose window lapsed and finalize
        in-progress attempts that ran past their deadline. A concurrent start
        that wins the compare-and-set stands.
        """
        now = now or utcnow()
        query: Dict[str, Any] = {
            "status": {
                "$in": [SubmissionStatus.SCHEDULED.value, SubmissionStatus.IN_PROGRESS.value]
            }
        }
        if candidate_id is not None:
            query["candidate_id"] = candidate_id

        result = SweepResult()
        tests: Dict[str, Optional[Test]] = {}

        for submission in await TestSubmission.find(query).to_list():
            if submission.status == SubmissionStatus.SCHEDULED:
                if submission.has_lapsed(now) and await submission.compare_and_set(
                    SubmissionStatus.SCHEDULED, status=SubmissionStatus.EXPIRED
                ):
                    result.expired += 1
                continue

            if submission.test_id not in tests:
                tests[submission.test_id] = await Test.get(ObjectId(submission.test_id))
            test = tests[submission.test_id]
            if test is None or not submission.is_past_deadline(test.duration_minutes, now):
                continue

            try:
                await self.finalize(str(submission.id), FinalizeTrigger.TIMEOUT, now=now)
                result.finalized += 1
            except ConflictError:
                logger.debug(f"Submission {submission.id} finalized by another writer")

        if result.expired or result.finalized:
            logger.info(
                f"Sweep: expired={result.expired} finalized={result.finalized}"
            )
        return result
