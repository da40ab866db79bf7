"""
Tests for creating, editing, publishing and deleting test definitions.
"""

import pytest

from assessment_engine.errors import ConflictError, UnauthorizedError, ValidationError
from assessment_engine.models.enums import SubmissionStatus, TestStatus
from assessment_engine.models.submission import TestSubmission
from assessment_engine.services.test_definition_service import TestDefinitionService

from conftest import ISSUER_ID, OTHER_ISSUER_ID, CANDIDATE_ID, sample_test_payload


class TestCreate:
    async def test_total_marks_come_from_question_points(self):
        test = await TestDefinitionService.create(
            ISSUER_ID, sample_test_payload(total_marks=999, status="published")
        )

        assert test.total_marks == 40
        assert test.status == TestStatus.DRAFT
        stored = await TestDefinitionService.get(str(test.id))
        assert stored.total_marks == sum(q.points for q in stored.questions)

    async def test_questions_get_stable_ids(self):
        test = await TestDefinitionService.create(ISSUER_ID, sample_test_payload())

        ids = test.question_ids()
        assert len(ids) == 3
        assert len(set(ids)) == 3

    async def test_rejects_non_positive_points(self):
        payload = sample_test_payload()
        payload["questions"][0]["points"] = 0

        with pytest.raises(ValidationError):
            await TestDefinitionService.create(ISSUER_ID, payload)

    async def test_duplicate_question_ids_rejected(self):
        payload = sample_test_payload()
        payload["questions"][0]["question_id"] = "dup"
        payload["questions"][1]["question_id"] = "dup"

        with pytest.raises(ValidationError, match="Duplicate question_id"):
            await TestDefinitionService.create(ISSUER_ID, payload)


class TestPublish:
    async def test_publish_requires_questions(self):
        test = await TestDefinitionService.create(ISSUER_ID, sample_test_payload(questions=[]))

        with pytest.raises(ValidationError):
            await TestDefinitionService.publish(str(test.id), ISSUER_ID)

    async def test_mcq_needs_two_options_and_a_correct_one(self):
        payload = sample_test_payload()
        payload["questions"][1]["options"] = [{"text": "404", "is_correct": True}]
        test = await TestDefinitionService.create(ISSUER_ID, payload)

        with pytest.raises(ValidationError, match="two options"):
            await TestDefinitionService.publish(str(test.id), ISSUER_ID)

        payload = sample_test_payload()
        for option in payload["questions"][0]["options"]:
            option["is_correct"] = False
        test = await TestDefinitionService.create(ISSUER_ID, payload)

        with pytest.raises(ValidationError, match="no correct option"):
            await TestDefinitionService.publish(str(test.id), ISSUER_ID)

    async def test_coding_question_needs_test_cases(self):
        payload = sample_test_payload()
        payload["questions"][2]["test_cases"] = []
        test = await TestDefinitionService.create(ISSUER_ID, payload)

        with pytest.raises(ValidationError, match="test cases"):
            await TestDefinitionService.publish(str(test.id), ISSUER_ID)

    async def test_publish_sets_status_and_timestamp(self):
        test = await TestDefinitionService.create(ISSUER_ID, sample_test_payload())
        published = await TestDefinitionService.publish(str(test.id), ISSUER_ID)

        assert published.status == TestStatus.PUBLISHED
        assert published.published_at is not None

    async def test_archived_test_cannot_be_republished(self, published_test):
        await TestDefinitionService.archive(str(published_test.id), ISSUER_ID)

        with pytest.raises(ConflictError):
            await TestDefinitionService.publish(str(published_test.id), ISSUER_ID)

    async def test_only_owner_can_publish(self):
        test = await TestDefinitionService.create(ISSUER_ID, sample_test_payload())

        with pytest.raises(UnauthorizedError):
            await TestDefinitionService.publish(str(test.id), OTHER_ISSUER_ID)


class TestUpdate:
    async def test_partial_update_keeps_other_fields(self, published_test):
        updated = await TestDefinitionService.update(
            str(published_test.id),
            ISSUER_ID,
            {"title": "Renamed", "settings": {"shuffle_questions": True}},
        )

        assert updated.title == "Renamed"
        assert updated.settings.shuffle_questions is True
        assert updated.settings.prevent_tab_switch is True
        assert updated.duration_minutes == published_test.duration_minutes
        assert updated.status == TestStatus.PUBLISHED

    async def test_total_marks_recomputed_on_update(self, published_test):
        questions = [q.model_dump() for q in published_test.questions]
        questions[0]["points"] = 30

        updated = await TestDefinitionService.update(
            str(published_test.id), ISSUER_ID, {"questions": questions}
        )

        assert updated.total_marks == 60

    async def test_reorder_allowed_before_any_attempt_starts(
        self, published_test, scheduled_submission
    ):
        questions = [q.model_dump() for q in published_test.questions]
        questions.reverse()

        updated = await TestDefinitionService.update(
            str(published_test.id), ISSUER_ID, {"questions": questions}
        )

        assert updated.question_ids() == list(reversed(published_test.question_ids()))

    async def test_removing_questions_after_start_is_refused(
        self, published_test, started_submission
    ):
        questions = [q.model_dump() for q in published_test.questions][1:]

        with pytest.raises(ConflictError):
            await TestDefinitionService.update(
                str(published_test.id), ISSUER_ID, {"questions": questions}
            )

    async def test_reordering_after_start_is_refused(self, published_test, started_submission):
        questions = [q.model_dump() for q in published_test.questions]
        questions[0], questions[1] = questions[1], questions[0]

        with pytest.raises(ConflictError):
            await TestDefinitionService.update(
                str(published_test.id), ISSUER_ID, {"questions": questions}
            )

    async def test_editing_and_appending_after_start_is_allowed(
        self, published_test, started_submission
    ):
        questions = [q.model_dump() for q in published_test.questions]
        questions[0]["prompt"] = "Which HTTP method is idempotent by definition?"
        questions.append(
            {
                "type": "mcq",
                "title": "Extra",
                "options": [{"text": "a", "is_correct": True}, {"text": "b"}],
                "points": 5,
            }
        )

        updated = await TestDefinitionService.update(
            str(published_test.id), ISSUER_ID, {"questions": questions}
        )

        assert len(updated.questions) == 4
        assert updated.question_ids()[:3] == published_test.question_ids()
        assert updated.total_marks == 45

    async def test_invalid_values_raise_validation_error(self, published_test):
        with pytest.raises(ValidationError):
            await TestDefinitionService.update(
                str(published_test.id), ISSUER_ID, {"duration_minutes": 0}
            )

    async def test_non_owner_cannot_update(self, published_test):
        with pytest.raises(UnauthorizedError):
            await TestDefinitionService.update(
                str(published_test.id), OTHER_ISSUER_ID, {"title": "Mine now"}
            )

    async def test_duplicate_question_ids_rejected_on_update(self, published_test):
        questions = [q.model_dump() for q in published_test.questions]
        questions.append(dict(questions[0], title="Copy"))

        with pytest.raises(ValidationError, match="Duplicate question_id"):
            await TestDefinitionService.update(
                str(published_test.id), ISSUER_ID, {"questions": questions}
            )

        stored = await TestDefinitionService.get(str(published_test.id))
        assert len(stored.questions) == 3

    async def test_published_test_must_stay_publishable(self, published_test):
        with pytest.raises(ValidationError, match="without questions"):
            await TestDefinitionService.update(
                str(published_test.id), ISSUER_ID, {"questions": []}
            )

        questions = [q.model_dump() for q in published_test.questions]
        for option in questions[0]["options"]:
            option["is_correct"] = False
        with pytest.raises(ValidationError, match="no correct option"):
            await TestDefinitionService.update(
                str(published_test.id), ISSUER_ID, {"questions": questions}
            )

        stored = await TestDefinitionService.get(str(published_test.id))
        assert stored.question_ids() == published_test.question_ids()
        assert stored.questions[0].correct_option_indexes() == [1]

    async def test_draft_may_be_left_incomplete(self):
        test = await TestDefinitionService.create(ISSUER_ID, sample_test_payload())

        updated = await TestDefinitionService.update(str(test.id), ISSUER_ID, {"questions": []})

        assert updated.questions == []
        assert updated.total_marks == 0


class TestDelete:
    async def test_delete_removes_scheduled_attempts(self, published_test, scheduled_submission):
        removed = await TestDefinitionService.delete(str(published_test.id), ISSUER_ID)

        assert removed == 1
        assert await TestSubmission.find({"test_id": str(published_test.id)}).count() == 0

    async def test_delete_refused_once_attempt_started(self, published_test, started_submission):
        with pytest.raises(ConflictError):
            await TestDefinitionService.delete(str(published_test.id), ISSUER_ID)

        remaining = await TestSubmission.find(
            {"test_id": str(published_test.id), "candidate_id": CANDIDATE_ID}
        ).to_list()
        assert remaining[0].status == SubmissionStatus.IN_PROGRESS


class TestList:
    async def test_lists_only_own_tests_with_status_filter(self, published_test):
        await TestDefinitionService.create(ISSUER_ID, sample_test_payload(title="Draft"))
        await TestDefinitionService.create(OTHER_ISSUER_ID, sample_test_payload())

        all_tests = await TestDefinitionService.list_for_issuer(ISSUER_ID)
        drafts = await TestDefinitionService.list_for_issuer(ISSUER_ID, TestStatus.DRAFT)

        assert len(all_tests) == 2
        assert [t.title for t in drafts] == ["Draft"]
