from typing import Optional

from fastapi import APIRouter, HTTPException, Depends, status, Query, Path

from ..auth import Principal
from ..dependencies import (
    candidate_required,
    ensure_db,
    get_proctoring_monitor,
    get_submission_service,
    issuer_required,
)
from ..errors import AssessmentError
from ..models.enums import FinalizeTrigger, SubmissionStatus
from ..services.proctoring_service import ProctoringMonitor
from ..services.submission_service import SubmissionService
from ..utils import format_response
from .schemas import (
    CodeSubmissionRequest,
    EvaluateRequest,
    McqAnswerRequest,
    ProctoringEventRequest,
)

router = APIRouter(
    prefix="/api/v1/submissions",
    tags=["Submissions"],
    dependencies=[Depends(ensure_db)],
)


# ================ Candidate endpoints ================


@router.get("")
async def list_my_submissions(
    submission_status: Optional[SubmissionStatus] = Query(
        None, alias="status", description="Filter by submission status"
    ),
    current_user: Principal = Depends(candidate_required),
    submissions: SubmissionService = Depends(get_submission_service),
):
    """
    List the candidate's assigned tests.

    Lapsed attempts are expired (or finalized) before listing.
    """
    try:
        items = await submissions.list_for_candidate(
            current_user.user_id, submission_status
        )
        return format_response(message="Submissions retrieved successfully", data=items)
    except (HTTPException, AssessmentError) as e:
        raise e
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to retrieve submissions: {str(e)}",
        )


@router.get("/{submission_id}")
async def get_my_submission(
    submission_id: str = Path(..., description="Submission ID"),
    current_user: Principal = Depends(candidate_required),
    submissions: SubmissionService = Depends(get_submission_service),
):
    try:
        view = await submissions.candidate_view(submission_id, current_user.user_id)
        return format_response(message="Submission retrieved successfully", data=view)
    except (HTTPException, AssessmentError) as e:
        raise e
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to retrieve submission: {str(e)}",
        )


@router.post("/{submission_id}/start")
async def start_submission(
    submission_id: str = Path(..., description="Submission ID"),
    current_user: Principal = Depends(candidate_required),
    submissions: SubmissionService = Depends(get_submission_service),
):
    """
    Start or resume an attempt.

    Returns the questions without answers or hidden test data, and the
    server-side deadline.
    """
    try:
        payload = await submissions.start(submission_id, current_user.user_id)
        return format_response(message="Test started", data=payload)
    except (HTTPException, AssessmentError) as e:
        raise e
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to start test: {str(e)}",
        )


@router.post("/{submission_id}/answer")
async def submit_mcq_answer(
    request: McqAnswerRequest,
    submission_id: str = Path(..., description="Submission ID"),
    current_user: Principal = Depends(candidate_required),
    submissions: SubmissionService = Depends(get_submission_service),
):
    try:
        answer = await submissions.submit_mcq_answer(
            submission_id,
            current_user.user_id,
            request.question_index,
            request.selected_option,
        )
        return format_response(
            message="Answer saved",
            data={
                "question_index": answer.question_index,
                "selected_option": answer.selected_option,
                "answered_at": answer.answered_at.isoformat(),
            },
        )
    except (HTTPException, AssessmentError) as e:
        raise e
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to save answer: {str(e)}",
        )


@router.post("/{submission_id}/code")
async def submit_code(
    request: CodeSubmissionRequest,
    submission_id: str = Path(..., description="Submission ID"),
    current_user: Principal = Depends(candidate_required),
    submissions: SubmissionService = Depends(get_submission_service),
):
    """
    Grade code for a coding question against all its test cases.

    Replaces any earlier submission for the same question. Hidden test cases
    only report pass/fail and timing.
    """
    try:
        result = await submissions.submit_code(
            submission_id,
            current_user.user_id,
            request.question_index,
            request.code,
            request.language.value,
        )
        return format_response(
            message=f"{result['total_passed']}/{result['total_test_cases']} test cases passed",
            data=result,
        )
    except (HTTPException, AssessmentError) as e:
        raise e
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to submit code: {str(e)}",
        )


@router.post("/{submission_id}/finalize")
async def finalize_submission(
    submission_id: str = Path(..., description="Submission ID"),
    current_user: Principal = Depends(candidate_required),
    submissions: SubmissionService = Depends(get_submission_service),
):
    try:
        await submissions.finalize(
            submission_id, FinalizeTrigger.MANUAL, candidate_id=current_user.user_id
        )
        view = await submissions.candidate_view(submission_id, current_user.user_id)
        return format_response(message="Test submitted successfully", data=view)
    except (HTTPException, AssessmentError) as e:
        raise e
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to submit test: {str(e)}",
        )


@router.post("/{submission_id}/proctoring")
async def record_proctoring_event(
    request: ProctoringEventRequest,
    submission_id: str = Path(..., description="Submission ID"),
    current_user: Principal = Depends(candidate_required),
    monitor: ProctoringMonitor = Depends(get_proctoring_monitor),
):
    try:
        result = await monitor.record_event(
            submission_id,
            current_user.user_id,
            request.event_type.value,
            request.details,
        )
        message = "Test terminated" if result["terminated"] else "Event recorded"
        return format_response(message=message, data=result)
    except (HTTPException, AssessmentError) as e:
        raise e
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to record event: {str(e)}",
        )


# ================ Issuer endpoints ================


@router.get("/{submission_id}/report")
async def get_performance_report(
    submission_id: str = Path(..., description="Submission ID"),
    current_user: Principal = Depends(issuer_required),
    submissions: SubmissionService = Depends(get_submission_service),
):
    """Detailed report for the issuer, including hidden test case data"""
    try:
        report = await submissions.performance_report(submission_id, current_user.user_id)
        return format_response(message="Performance report generated", data=report)
    except (HTTPException, AssessmentError) as e:
        raise e
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to generate report: {str(e)}",
        )


@router.post("/{submission_id}/evaluate")
async def evaluate_submission(
    request: EvaluateRequest,
    submission_id: str = Path(..., description="Submission ID"),
    current_user: Principal = Depends(issuer_required),
    submissions: SubmissionService = Depends(get_submission_service),
):
    try:
        submission = await submissions.evaluate(
            submission_id, current_user.user_id, request.decision, request.comments
        )
        return format_response(
            message="Submission evaluated", data=submission.to_public_dict()
        )
    except (HTTPException, AssessmentError) as e:
        raise e
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to evaluate submission: {str(e)}",
        )
