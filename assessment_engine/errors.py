"""
Domain exceptions raised by the assessment services.

Services raise these instead of HTTPException so the same code paths can be
driven from the API, the background sweep and the tests. ``main.py`` registers
a handler that turns them into JSON error responses.
"""

from fastapi import status


class AssessmentError(Exception):
    """Base class for all assessment engine errors"""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code = "assessment_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(AssessmentError):
    """Malformed or missing input (e.g. publishing a test with no questions)"""

    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "validation_error"


class NotFoundError(AssessmentError):
    """Unknown test or submission"""

    status_code = status.HTTP_404_NOT_FOUND
    error_code = "not_found"


class UnauthorizedError(AssessmentError):
    """Caller does not own the test or submission"""

    status_code = status.HTTP_403_FORBIDDEN
    error_code = "unauthorized"


class ConflictError(AssessmentError):
    """Request conflicts with the current state (double finalize, wrong status...)"""

    status_code = status.HTTP_409_CONFLICT
    error_code = "conflict"


class DeadlineExceededError(ConflictError):
    """The attempt's time window (or scheduling window) has already closed"""

    error_code = "deadline_exceeded"


class SandboxUnavailableError(AssessmentError):
    """The execution sandbox could not be reached; callers degrade instead of failing"""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_code = "sandbox_unavailable"


class TestCaseTimeoutError(AssessmentError):
    """A single test case exceeded its execution timeout"""

    status_code = status.HTTP_504_GATEWAY_TIMEOUT
    error_code = "test_case_timeout"
