from typing import Optional

from fastapi import APIRouter, HTTPException, Depends, status, Query, Path

from ..auth import Principal
from ..dependencies import ensure_db, issuer_required, get_scheduler
from ..errors import AssessmentError
from ..models.enums import SubmissionStatus, TestStatus
from ..models.submission import TestSubmission
from ..services.scheduler_service import SubmissionScheduler
from ..services.test_definition_service import TestDefinitionService
from ..utils import format_response, add_filter_if_not_none
from .schemas import (
    AssignTestRequest,
    TestCreateRequest,
    TestUpdateRequest,
    as_test_payload,
)

router = APIRouter(
    prefix="/api/v1/tests", tags=["Tests"], dependencies=[Depends(ensure_db)]
)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_test(
    request: TestCreateRequest,
    current_user: Principal = Depends(issuer_required),
):
    """
    Create a draft test.

    Total marks are computed from the question points.
    """
    try:
        test = await TestDefinitionService.create(
            current_user.user_id, as_test_payload(request)
        )
        return format_response(
            message="Test created successfully", data=test.to_public_dict()
        )
    except (HTTPException, AssessmentError) as e:
        raise e
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to create test: {str(e)}",
        )


@router.get("")
async def list_tests(
    test_status: Optional[TestStatus] = Query(
        None, alias="status", description="Filter by test status"
    ),
    current_user: Principal = Depends(issuer_required),
):
    """List the issuer's own tests, newest first"""
    try:
        tests = await TestDefinitionService.list_for_issuer(
            current_user.user_id, test_status
        )
        return format_response(
            message="Tests retrieved successfully",
            data=[test.to_public_dict() for test in tests],
        )
    except (HTTPException, AssessmentError) as e:
        raise e
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to retrieve tests: {str(e)}",
        )


@router.post("/assign")
async def assign_test(
    request: AssignTestRequest,
    current_user: Principal = Depends(issuer_required),
    scheduler: SubmissionScheduler = Depends(get_scheduler),
):
    """
    Schedule a published test for a list of candidates.

    Safe to repeat: candidates that already have the test are reported under
    ``already_scheduled`` instead of failing the batch.
    """
    try:
        result = await scheduler.assign_test(
            test_id=request.test_id,
            issuer_id=current_user.user_id,
            candidate_ids=request.candidate_ids,
            scheduled_at=request.scheduled_at,
            expires_at=request.expires_at,
            context=request.context,
        )
        return format_response(
            message=f"Test assigned to {result.success_count} candidates",
            data=result.model_dump(),
        )
    except (HTTPException, AssessmentError) as e:
        raise e
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to assign test: {str(e)}",
        )


@router.get("/{test_id}")
async def get_test(
    test_id: str = Path(..., description="Test ID"),
    current_user: Principal = Depends(issuer_required),
):
    """Full test definition, including correct answers and hidden test cases"""
    try:
        test = await TestDefinitionService.get_owned(test_id, current_user.user_id)
        return format_response(
            message="Test retrieved successfully", data=test.to_public_dict()
        )
    except (HTTPException, AssessmentError) as e:
        raise e
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to retrieve test: {str(e)}",
        )


@router.put("/{test_id}")
async def update_test(
    request: TestUpdateRequest,
    test_id: str = Path(..., description="Test ID"),
    current_user: Principal = Depends(issuer_required),
):
    """
    Update a test.

    Allowed after publishing. Once candidates have started, questions may be
    edited or appended but not removed or reordered.
    """
    try:
        test = await TestDefinitionService.update(
            test_id, current_user.user_id, as_test_payload(request)
        )
        return format_response(
            message="Test updated successfully", data=test.to_public_dict()
        )
    except (HTTPException, AssessmentError) as e:
        raise e
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to update test: {str(e)}",
        )


@router.delete("/{test_id}")
async def delete_test(
    test_id: str = Path(..., description="Test ID"),
    current_user: Principal = Depends(issuer_required),
):
    try:
        removed = await TestDefinitionService.delete(test_id, current_user.user_id)
        return format_response(
            message="Test deleted successfully",
            data={"id": test_id, "removed_submissions": removed},
        )
    except (HTTPException, AssessmentError) as e:
        raise e
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to delete test: {str(e)}",
        )


@router.post("/{test_id}/publish")
async def publish_test(
    test_id: str = Path(..., description="Test ID"),
    current_user: Principal = Depends(issuer_required),
):
    try:
        test = await TestDefinitionService.publish(test_id, current_user.user_id)
        return format_response(
            message="Test published successfully", data=test.to_public_dict()
        )
    except (HTTPException, AssessmentError) as e:
        raise e
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to publish test: {str(e)}",
        )


@router.post("/{test_id}/archive")
async def archive_test(
    test_id: str = Path(..., description="Test ID"),
    current_user: Principal = Depends(issuer_required),
):
    try:
        test = await TestDefinitionService.archive(test_id, current_user.user_id)
        return format_response(
            message="Test archived successfully", data=test.to_public_dict()
        )
    except (HTTPException, AssessmentError) as e:
        raise e
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to archive test: {str(e)}",
        )


@router.get("/{test_id}/submissions")
async def list_test_submissions(
    test_id: str = Path(..., description="Test ID"),
    submission_status: Optional[SubmissionStatus] = Query(
        None, alias="status", description="Filter by submission status"
    ),
    current_user: Principal = Depends(issuer_required),
):
    """All attempts for one of the issuer's tests"""
    try:
        test = await TestDefinitionService.get_owned(test_id, current_user.user_id)

        query_filters = {"test_id": str(test.id)}
        add_filter_if_not_none(
            query_filters,
            "status",
            submission_status.value if submission_status else None,
        )
        submissions = (
            await TestSubmission.find(query_filters).sort("-scheduled_at").to_list()
        )

        return format_response(
            message="Submissions retrieved successfully",
            data=[submission.to_public_dict() for submission in submissions],
            statistics=test.statistics.model_dump(),
        )
    except (HTTPException, AssessmentError) as e:
        raise e
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to retrieve submissions: {str(e)}",
        )
