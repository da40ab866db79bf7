"""
Grading pipeline for coding questions
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from ..config import settings
from ..errors import SandboxUnavailableError, TestCaseTimeoutError, ValidationError
from ..models.submission import CodeSubmission, TestCaseResult
from ..models.test import CodingQuestion, TestCase
from ..utils import utcnow
from .sandbox_client import (
    DegradedExecutor,
    ExecutionResult,
    SandboxExecutor,
    language_id_for,
)

logger = logging.getLogger(__name__)


def _normalize_output(output: Optional[str]) -> str:
    return (output or "").replace("\r\n", "\n").strip()


class GradingPipeline:
    """Runs candidate code against a question's test cases through the sandbox"""

    def __init__(
        self,
        sandbox: SandboxExecutor,
        fallback: Optional[SandboxExecutor] = None,
        case_timeout_seconds: Optional[float] = None,
        gate: Optional[asyncio.Semaphore] = None,
    ):
        self.sandbox = sandbox
        self.fallback = fallback or DegradedExecutor()
        self.case_timeout_seconds = (
            case_timeout_seconds or settings.SANDBOX_CASE_TIMEOUT_SECONDS
        )
        # Sandbox calls in flight across all candidates. Waiting for a slot
        # is not counted against the case timeout.
        self.gate = gate or asyncio.Semaphore(settings.SANDBOX_MAX_CONCURRENCY)

    async def _execute(
        self, executor: SandboxExecutor, code: str, language: str, stdin: str
    ) -> ExecutionResult:
        try:
            return await asyncio.wait_for(
                executor.execute(code, language, stdin),
                timeout=self.case_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise TestCaseTimeoutError(
                f"Execution exceeded {self.case_timeout_seconds:.1f}s timeout"
            ) from e

    async def _execute_or_degrade(
        self, code: str, language: str, stdin: str
    ) -> ExecutionResult:
        try:
            async with self.gate:
                return await self._execute(self.sandbox, code, language, stdin)
        except SandboxUnavailableError as e:
            logger.warning(f"Sandbox unavailable, using degraded executor: {e.message}")
            return await self._execute(self.fallback, code, language, stdin)

    async def dry_run(self, code: str, language: str, stdin: str = "") -> ExecutionResult:
        """
        Execute code once for the candidate's own testing. Nothing is persisted.

        Args:
            code: Source code
            language: Language name (see LANGUAGE_IDS)
            stdin: Input fed to the program

        Returns:
            Raw execution result (degraded when the sandbox is down)
        """
        language_id_for(language)
        return await self._execute_or_degrade(code, language, stdin)

    async def _grade_case(
        self, index: int, case: TestCase, code: str, language: str
    ) -> TestCaseResult:
        try:
            execution = await self._execute_or_degrade(code, language, case.input)
        except TestCaseTimeoutError as e:
            logger.info(f"Test case {index} timed out ({language})")
            return TestCaseResult(
                test_case_index=index,
                passed=False,
                is_hidden=case.is_hidden,
                input=case.input,
                expected_output=case.expected_output,
                status="Time Limit Exceeded",
                error=e.message,
            )
        except ValidationError:
            raise
        except Exception as e:
            logger.error(f"Test case {index} failed to execute: {str(e)}")
            return TestCaseResult(
                test_case_index=index,
                passed=False,
                is_hidden=case.is_hidden,
                input=case.input,
                expected_output=case.expected_output,
                status="Execution Error",
                error=f"Execution failed: {str(e)}",
            )

        passed = execution.is_success and _normalize_output(
            execution.stdout
        ) == _normalize_output(case.expected_output)

        error = None
        if not execution.is_success:
            error = execution.compile_output or execution.stderr or execution.error

        return TestCaseResult(
            test_case_index=index,
            passed=passed,
            is_hidden=case.is_hidden,
            input=case.input,
            actual_output=execution.stdout,
            expected_output=case.expected_output,
            status=execution.status,
            execution_time_ms=execution.time_ms,
            memory_kb=execution.memory_kb,
            error=error,
            points_earned=case.points if passed else 0,
            degraded=execution.degraded,
        )

    async def grade_coding(
        self, question: CodingQuestion, question_index: int, code: str, language: str
    ) -> CodeSubmission:
        """
        Grade code against every test case of a question, one case at a time.

        A failing, timed-out or degraded case never stops the remaining cases.

        Args:
            question: Authoritative coding question
            question_index: Position of the question in the test
            code: Candidate's source code
            language: Language name

        Returns:
            A complete CodeSubmission replacing any earlier attempt at the index

        Raises:
            ValidationError: unsupported language
        """
        language_id_for(language)

        results: List[TestCaseResult] = []
        for index, case in enumerate(question.test_cases):
            results.append(await self._grade_case(index, case, code, language))

        total_passed = sum(1 for result in results if result.passed)
        earned = sum(result.points_earned for result in results)
        degraded = any(result.degraded for result in results)

        logger.info(
            f"Graded question {question_index} ({language}): "
            f"{total_passed}/{len(results)} passed{' [DEGRADED]' if degraded else ''}"
        )

        return CodeSubmission(
            question_index=question_index,
            question_id=question.question_id,
            language=language,
            code=code,
            test_case_results=results,
            total_passed=total_passed,
            total_test_cases=len(results),
            points_earned=min(earned, question.points),
            degraded=degraded,
            submitted_at=utcnow(),
        )

    @staticmethod
    def candidate_view(code_submission: CodeSubmission) -> Dict[str, Any]:
        """Redacted view for the candidate: hidden cases show only pass/fail and timing"""
        cases = []
        for result in code_submission.test_case_results:
            if result.is_hidden:
                cases.append(
                    {
                        "test_case_index": result.test_case_index,
                        "is_hidden": True,
                        "passed": result.passed,
                        "execution_time_ms": result.execution_time_ms,
                    }
                )
            else:
                cases.append(
                    {
                        "test_case_index": result.test_case_index,
                        "is_hidden": False,
                        "passed": result.passed,
                        "actual_output": result.actual_output,
                        "expected_output": result.expected_output,
                        "status": result.status,
                        "execution_time_ms": result.execution_time_ms,
                        "memory_kb": result.memory_kb,
                        "error": result.error,
                    }
                )

        return {
            "question_index": code_submission.question_index,
            "question_id": code_submission.question_id,
            "language": code_submission.language,
            "test_case_results": cases,
            "total_passed": code_submission.total_passed,
            "total_test_cases": code_submission.total_test_cases,
            "points_earned": code_submission.points_earned,
            "degraded": code_submission.degraded,
            "submitted_at": code_submission.submitted_at.isoformat(),
        }
