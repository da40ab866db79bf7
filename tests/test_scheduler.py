from datetime import timedelta

import httpx
import pytest
from pymongo.errors import DuplicateKeyError

from assessment_engine.errors import ConflictError, UnauthorizedError, ValidationError
from assessment_engine.models.enums import SubmissionStatus
from assessment_engine.models.submission import TestSubmission
from assessment_engine.services.scheduler_service import SubmissionScheduler
from assessment_engine.services.submission_service import SubmissionService
from assessment_engine.services.test_definition_service import TestDefinitionService
from assessment_engine.utils import utcnow

from conftest import ISSUER_ID, OTHER_ISSUER_ID, sample_test_payload


class StubEligibility:
    """Eligibility lookups driven by a dict: True, False or an exception to raise"""

    def __init__(self, answers=None, context_candidates=None):
        self.answers = answers or {}
        self.context_candidates = context_candidates or []
        self.contexts = []

    async def is_eligible(self, candidate_id, test_id):
        answer = self.answers.get(candidate_id, True)
        if isinstance(answer, Exception):
            raise answer
        return answer

    async def candidates_for(self, context):
        self.contexts.append(context)
        return list(self.context_candidates)


async def submissions_for(test):
    return await TestSubmission.find({"test_id": str(test.id)}).to_list()


class TestAssignTest:
    async def test_assigns_each_candidate_once(self, published_test, scheduler):
        result = await scheduler.assign_test(str(published_test.id), ISSUER_ID, ["c1", "c2"])

        assert result.success_count == 2
        assert len(result.submission_ids) == 2
        assert result.failures == []
        stored = await submissions_for(published_test)
        assert {s.candidate_id for s in stored} == {"c1", "c2"}
        assert all(s.status == SubmissionStatus.SCHEDULED for s in stored)
        assert all(s.scheduler_id == ISSUER_ID for s in stored)

    async def test_repeat_assignment_reports_already_scheduled(self, published_test, scheduler):
        await scheduler.assign_test(str(published_test.id), ISSUER_ID, ["c1"])
        result = await scheduler.assign_test(str(published_test.id), ISSUER_ID, ["c1", "c2"])

        assert result.success_count == 1
        assert result.already_scheduled == ["c1"]
        assert [f.reason for f in result.failures] == ["already_scheduled"]
        assert len(await submissions_for(published_test)) == 2

    async def test_duplicate_candidates_in_batch_collapse(self, published_test, scheduler):
        result = await scheduler.assign_test(
            str(published_test.id), ISSUER_ID, ["c1", "c1", "c2", "c1"]
        )

        assert result.success_count == 2
        assert len(await submissions_for(published_test)) == 2

    async def test_unique_index_blocks_second_attempt(self, published_test, scheduled_submission):
        duplicate = TestSubmission(
            test_id=scheduled_submission.test_id,
            candidate_id=scheduled_submission.candidate_id,
        )
        with pytest.raises(DuplicateKeyError):
            await duplicate.insert()

    async def test_draft_test_cannot_be_assigned(self, scheduler):
        test = await TestDefinitionService.create(ISSUER_ID, sample_test_payload())

        with pytest.raises(ConflictError):
            await scheduler.assign_test(str(test.id), ISSUER_ID, ["c1"])

        assert await submissions_for(test) == []

    async def test_archived_test_cannot_be_assigned(self, published_test, scheduler):
        await TestDefinitionService.archive(str(published_test.id), ISSUER_ID)

        with pytest.raises(ConflictError):
            await scheduler.assign_test(str(published_test.id), ISSUER_ID, ["c1"])

    async def test_non_owner_cannot_assign(self, published_test, scheduler):
        with pytest.raises(UnauthorizedError):
            await scheduler.assign_test(str(published_test.id), OTHER_ISSUER_ID, ["c1"])

    async def test_window_must_end_after_it_starts(self, published_test, scheduler):
        now = utcnow()

        with pytest.raises(ValidationError):
            await scheduler.assign_test(
                str(published_test.id),
                ISSUER_ID,
                ["c1"],
                scheduled_at=now,
                expires_at=now - timedelta(minutes=5),
            )

    async def test_no_candidates_rejected(self, published_test, scheduler):
        with pytest.raises(ValidationError):
            await scheduler.assign_test(str(published_test.id), ISSUER_ID, [])

    async def test_window_is_stored(self, published_test, scheduler):
        now = utcnow()
        result = await scheduler.assign_test(
            str(published_test.id),
            ISSUER_ID,
            ["c1"],
            scheduled_at=now,
            expires_at=now + timedelta(days=2),
        )

        stored = await SubmissionService.load(result.submission_ids[0])
        assert stored.expires_at > stored.scheduled_at


class TestEligibility:
    async def test_one_failed_lookup_does_not_abort_batch(self, published_test, notifications):
        eligibility = StubEligibility(
            answers={"c2": httpx.ConnectError("eligibility service down"), "c3": False}
        )
        scheduler = SubmissionScheduler(eligibility, notifications)

        result = await scheduler.assign_test(
            str(published_test.id), ISSUER_ID, ["c1", "c2", "c3", "c4"]
        )

        assert result.success_count == 2
        reasons = {f.candidate_id: f.reason for f in result.failures}
        assert reasons == {"c2": "eligibility_unavailable", "c3": "ineligible"}
        stored = await submissions_for(published_test)
        assert {s.candidate_id for s in stored} == {"c1", "c4"}

    async def test_context_adds_candidates(self, published_test, notifications):
        eligibility = StubEligibility(context_candidates=["c2", "c3"])
        scheduler = SubmissionScheduler(eligibility, notifications)

        result = await scheduler.assign_test(
            str(published_test.id), ISSUER_ID, ["c1", "c2"], context={"drive_id": "d-1"}
        )

        assert result.success_count == 3
        assert eligibility.contexts == [{"drive_id": "d-1"}]

    async def test_unconfigured_service_allows_everyone(self, scheduler):
        assert scheduler.eligibility.enabled is False
        assert await scheduler.eligibility.is_eligible("anyone", "test") is True
        assert await scheduler.eligibility.candidates_for({"drive_id": "d-1"}) == []
