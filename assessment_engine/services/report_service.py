"""
Recruiter-facing performance report for a finalized attempt. Everything here is
a pure function of the test definition and the stored submission.
"""

from typing import Any, Dict, List, Optional

from ..models.enums import QuestionType
from ..models.submission import CodeSubmission, TestSubmission
from ..models.test import CodingQuestion, McqQuestion, Test
from ..utils import round_half_up

COMMENT_MARKERS = {
    "python": ("#",),
    "ruby": ("#",),
    "php": ("//", "/*", "#"),
}
DEFAULT_COMMENT_MARKERS = ("//", "/*")


def recommendation_for(percentage: float) -> Dict[str, str]:
    """Deterministic recommendation tier from the coding percentage"""
    if percentage >= 90:
        return {
            "level": "Excellent",
            "color": "green",
            "message": "Candidate demonstrated exceptional coding skills. Strongly recommended for next round.",
        }
    if percentage >= 70:
        return {
            "level": "Good",
            "color": "blue",
            "message": "Candidate shows solid understanding. Recommended for further evaluation.",
        }
    if percentage >= 50:
        return {
            "level": "Average",
            "color": "yellow",
            "message": "Candidate passed minimum requirements. Consider additional assessment.",
        }
    return {
        "level": "Below Average",
        "color": "red",
        "message": "Candidate did not meet minimum requirements. Not recommended.",
    }


def _percentage(earned: float, maximum: float) -> float:
    if maximum <= 0:
        return 0.0
    return round_half_up(earned / maximum * 100, 1)


def code_metrics(code: str, language: str) -> Dict[str, Any]:
    markers = COMMENT_MARKERS.get(language, DEFAULT_COMMENT_MARKERS)
    return {
        "lines_of_code": len(code.split("\n")) if code else 0,
        "has_comments": any(marker in code for marker in markers),
    }


def _coding_report(
    question: CodingQuestion, code_submission: CodeSubmission
) -> Dict[str, Any]:
    results = code_submission.test_case_results
    cases = []
    for result in results:
        cases.append(
            {
                "test_case": result.test_case_index + 1,
                "hidden": result.is_hidden,
                "passed": result.passed,
                "input": result.input,
                "expected": result.expected_output,
                "actual": result.actual_output,
                "status": result.status,
                "execution_time_ms": result.execution_time_ms,
                "memory_kb": result.memory_kb,
                "error": result.error,
                "points_earned": result.points_earned,
                "degraded": result.degraded,
            }
        )

    total = code_submission.total_test_cases
    average_time = (
        round_half_up(sum(r.execution_time_ms for r in results) / len(results), 2)
        if results
        else 0
    )
    peak_memory_kb = max((r.memory_kb for r in results), default=0)

    return {
        "question_index": code_submission.question_index,
        "question_id": code_submission.question_id,
        "question_title": question.title,
        "language": code_submission.language,
        "code_submitted": code_submission.code,
        "code_metrics": code_metrics(code_submission.code, code_submission.language),
        "test_results": {
            "total": total,
            "passed": code_submission.total_passed,
            "failed": total - code_submission.total_passed,
            "pass_rate": _percentage(code_submission.total_passed, total),
        },
        "performance": {
            "average_execution_time_ms": average_time,
            "peak_memory_kb": peak_memory_kb,
        },
        "scoring": {
            "earned": code_submission.points_earned,
            "maximum": question.points,
            "percentage": _percentage(code_submission.points_earned, question.points),
        },
        "degraded": code_submission.degraded,
        "detailed_results": cases,
    }


def _mcq_breakdown(test: Test, submission: TestSubmission) -> List[Dict[str, Any]]:
    answers = {answer.question_id: answer for answer in submission.mcq_answers}
    breakdown = []
    for index, question in enumerate(test.questions):
        if not isinstance(question, McqQuestion):
            continue
        answer = answers.get(question.question_id)
        breakdown.append(
            {
                "question_index": index,
                "question_id": question.question_id,
                "title": question.title,
                "answered": answer is not None,
                "selected_option": answer.selected_option if answer else None,
                "correct_options": question.correct_option_indexes(),
                "is_correct": answer.is_correct if answer else False,
                "points_earned": answer.points_earned if answer else 0,
                "points": question.points,
            }
        )
    return breakdown


def build_performance_report(test: Test, submission: TestSubmission) -> Dict[str, Any]:
    """
    Build the issuer's report for one attempt, including hidden test case
    inputs and outputs. Never hand this to the candidate.

    Args:
        test: Test definition the attempt belongs to
        submission: The attempt (normally submitted or evaluated)

    Returns:
        JSON-safe report dictionary
    """
    questions_by_id = {
        question.question_id: question
        for question in test.questions
        if question.type == QuestionType.CODING.value
    }

    coding_reports = []
    for code_submission in sorted(
        submission.code_submissions, key=lambda s: s.question_index
    ):
        question: Optional[CodingQuestion] = questions_by_id.get(code_submission.question_id)
        if question is not None:
            coding_reports.append(_coding_report(question, code_submission))

    scores = submission.scores
    coding_percentage = _percentage(scores.coding_score, scores.coding_total)

    return {
        "submission_id": str(submission.id),
        "candidate_id": submission.candidate_id,
        "test": {
            "id": str(test.id),
            "title": test.title,
            "duration_minutes": test.duration_minutes,
            "total_marks": test.total_marks,
            "passing_percentage": test.passing_percentage,
        },
        "submission": {
            "status": submission.status.value,
            "finalize_trigger": (
                submission.finalize_trigger.value if submission.finalize_trigger else None
            ),
            "started_at": submission.started_at.isoformat() if submission.started_at else None,
            "submitted_at": (
                submission.submitted_at.isoformat() if submission.submitted_at else None
            ),
            "time_spent_seconds": submission.time_spent_seconds,
        },
        "scores": scores.model_dump(),
        "proctoring": {
            "tab_switch_count": submission.proctoring.tab_switch_count,
            "warnings_issued": submission.proctoring.warnings_issued,
            "flagged": submission.proctoring.flagged,
            "flag_reason": submission.proctoring.flag_reason,
            "event_counts": dict(submission.proctoring.event_counts),
        },
        "mcq_performance": {
            "total_score": scores.mcq_score,
            "max_score": scores.mcq_total,
            "percentage": _percentage(scores.mcq_score, scores.mcq_total),
            "answers": _mcq_breakdown(test, submission),
        },
        "coding_performance": {
            "total_score": scores.coding_score,
            "max_score": scores.coding_total,
            "percentage": coding_percentage,
            "questions_attempted": len(coding_reports),
            "degraded": any(report["degraded"] for report in coding_reports),
            "reports": coding_reports,
        },
        "review": submission.review.model_dump(mode="json"),
        "recommendation": recommendation_for(coding_percentage),
    }
