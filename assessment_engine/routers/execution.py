from fastapi import APIRouter, HTTPException, Depends, status

from ..auth import Principal
from ..dependencies import candidate_required, get_grading_pipeline, get_sandbox_client
from ..errors import AssessmentError
from ..services.grading_service import GradingPipeline
from ..services.sandbox_client import ExecutionSandboxClient, supported_languages
from ..utils import format_response
from .schemas import RunCodeRequest

router = APIRouter(prefix="/api/v1", tags=["Code Execution"])


@router.post("/run-code")
async def run_code(
    request: RunCodeRequest,
    current_user: Principal = Depends(candidate_required),
    grading: GradingPipeline = Depends(get_grading_pipeline),
):
    """
    Run code once against custom input. Nothing is stored or scored.
    """
    try:
        result = await grading.dry_run(request.code, request.language.value, request.stdin)
        return format_response(message="Code executed", data=result.to_dict())
    except (HTTPException, AssessmentError) as e:
        raise e
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to execute code: {str(e)}",
        )


@router.get("/languages")
async def list_languages():
    return format_response(
        message="Supported languages retrieved", data=supported_languages()
    )


@router.get("/sandbox/health")
async def sandbox_health(
    sandbox: ExecutionSandboxClient = Depends(get_sandbox_client),
):
    health = await sandbox.check_health()
    return format_response(message="Sandbox health checked", data=health)
