"""
Tests for the grading pipeline with a scripted sandbox.
"""

import asyncio

import httpx
import pytest

from assessment_engine.errors import ValidationError
from assessment_engine.models.test import CodingQuestion
from assessment_engine.services.grading_service import GradingPipeline
from assessment_engine.services.report_service import build_performance_report
from assessment_engine.services.sandbox_client import (
    DEGRADED_STATUS,
    ExecutionResult,
    ExecutionSandboxClient,
)
from assessment_engine.services.submission_service import SubmissionService

from conftest import CANDIDATE_ID, FakeSandbox, sample_test_payload

CODE = "print(sum(map(int, input().split())))"


@pytest.fixture
def question():
    return CodingQuestion.model_validate(sample_test_payload()["questions"][2])


class WrongVerdictSandbox:
    """Prints the right answer but reports a runtime error"""

    async def execute(self, source_code, language, stdin="", cpu_limit_seconds=None, memory_limit_kb=None):
        return ExecutionResult(
            stdout="3\n",
            stderr="Segmentation fault",
            compile_output="",
            status_code=11,
            status="Runtime Error (SIGSEGV)",
            time_ms=4.0,
            memory_kb=1024.0,
        )


class TestGradeCoding:
    async def test_all_cases_pass(self, grading, question, fake_sandbox):
        result = await grading.grade_coding(question, 2, CODE, "python")

        assert result.total_passed == 4
        assert result.total_test_cases == 4
        assert result.points_earned == 20
        assert result.degraded is False
        assert [call["stdin"] for call in fake_sandbox.calls] == ["1 2", "2 3", "10 20", "7 8"]

    async def test_output_whitespace_is_normalized(self, question):
        grading = GradingPipeline(FakeSandbox(outputs={"1 2": "3\r\n\r\n", "2 3": "  5  "}))

        result = await grading.grade_coding(question, 2, CODE, "python")

        assert [r.passed for r in result.test_case_results] == [True, True, False, False]
        assert result.points_earned == 10

    async def test_timed_out_case_does_not_stop_the_rest(self, question):
        grading = GradingPipeline(FakeSandbox(hang_on=["2 3"]), case_timeout_seconds=0.1)

        result = await grading.grade_coding(question, 2, CODE, "python")

        timed_out = result.test_case_results[1]
        assert timed_out.passed is False
        assert timed_out.status == "Time Limit Exceeded"
        assert timed_out.error
        assert result.total_passed == 3
        assert result.points_earned == 15

    async def test_execution_error_is_isolated(self, question):
        grading = GradingPipeline(FakeSandbox(fail_on=["10 20"]))

        result = await grading.grade_coding(question, 2, CODE, "python")

        failed = result.test_case_results[2]
        assert failed.passed is False
        assert failed.status == "Execution Error"
        assert "container crashed" in failed.error
        assert result.total_passed == 3

    async def test_unavailable_sandbox_degrades_without_passing(self, question):
        grading = GradingPipeline(FakeSandbox(unavailable=True))

        result = await grading.grade_coding(question, 2, CODE, "python")

        assert result.degraded is True
        assert result.total_passed == 0
        assert result.points_earned == 0
        assert all(r.degraded and r.status == DEGRADED_STATUS for r in result.test_case_results)

    async def test_matching_output_with_error_status_fails(self, question):
        grading = GradingPipeline(WrongVerdictSandbox())

        result = await grading.grade_coding(question, 2, CODE, "python")

        first = result.test_case_results[0]
        assert first.passed is False
        assert first.error == "Segmentation fault"

    async def test_points_capped_at_question_points(self, question):
        question.points = 12

        result = await GradingPipeline(FakeSandbox()).grade_coding(question, 2, CODE, "python")

        assert result.points_earned == 12

    async def test_unsupported_language_rejected(self, grading, question, fake_sandbox):
        with pytest.raises(ValidationError):
            await grading.grade_coding(question, 2, CODE, "cobol")

        assert fake_sandbox.calls == []

    async def test_waiting_for_a_sandbox_slot_is_not_timed(self, question):
        async def slow_judge(request: httpx.Request):
            await asyncio.sleep(0.3)
            return httpx.Response(
                200,
                json={
                    "stdout": "3\n",
                    "time": "0.3",
                    "memory": 1024,
                    "status": {"id": 3, "description": "Accepted"},
                },
            )

        sandbox = ExecutionSandboxClient(
            base_url="http://sandbox.test", transport=httpx.MockTransport(slow_judge)
        )
        grading = GradingPipeline(
            sandbox, case_timeout_seconds=0.5, gate=asyncio.Semaphore(1)
        )
        question.test_cases = question.test_cases[:1]

        results = await asyncio.gather(
            *(grading.grade_coding(question, 2, CODE, "python") for _ in range(3))
        )

        assert [r.total_passed for r in results] == [1, 1, 1]
        assert all(
            r.test_case_results[0].status == "Accepted" for r in results
        )


class TestCandidateView:
    async def test_hidden_cases_are_redacted(self, grading, question):
        result = await grading.grade_coding(question, 2, CODE, "python")

        view = GradingPipeline.candidate_view(result)

        hidden = [c for c in view["test_case_results"] if c["is_hidden"]]
        visible = [c for c in view["test_case_results"] if not c["is_hidden"]]
        assert all(
            set(c) == {"test_case_index", "is_hidden", "passed", "execution_time_ms"}
            for c in hidden
        )
        assert visible[0]["expected_output"] == "3"
        assert visible[0]["actual_output"] == "3\n"

    async def test_issuer_report_keeps_hidden_details(
        self, published_test, started_submission, submission_service
    ):
        submission_id = str(started_submission.id)
        await submission_service.submit_code(submission_id, CANDIDATE_ID, 2, CODE, "python")
        await submission_service.finalize(submission_id, candidate_id=CANDIDATE_ID)
        submission = await SubmissionService.load(submission_id)

        report = build_performance_report(published_test, submission)

        cases = report["coding_performance"]["reports"][0]["detailed_results"]
        hidden = [c for c in cases if c["hidden"]]
        assert [c["input"] for c in hidden] == ["10 20", "7 8"]
        assert [c["expected"] for c in hidden] == ["30", "15"]


class TestDryRun:
    async def test_dry_run_returns_raw_result(self, grading, fake_sandbox):
        result = await grading.dry_run(CODE, "python", "2 3")

        assert result.stdout == "5\n"
        assert result.is_success
        assert fake_sandbox.calls == [{"language": "python", "stdin": "2 3"}]

    async def test_dry_run_degrades_when_sandbox_down(self):
        grading = GradingPipeline(FakeSandbox(unavailable=True))

        result = await grading.dry_run(CODE, "python", "2 3")

        assert result.degraded is True
        assert result.is_success is False

    async def test_dry_run_rejects_unknown_language(self, grading):
        with pytest.raises(ValidationError):
            await grading.dry_run(CODE, "brainfuck")
