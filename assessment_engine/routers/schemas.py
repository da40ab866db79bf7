"""
Pydantic request schemas for the assessment endpoints
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..models.enums import Language, ProctoringEventType, ReviewDecision
from ..models.test import Question


class TestSettingsRequest(BaseModel):
    shuffle_questions: Optional[bool] = None
    shuffle_options: Optional[bool] = None
    show_results: Optional[bool] = None
    allow_review: Optional[bool] = None
    prevent_tab_switch: Optional[bool] = None
    webcam_required: Optional[bool] = None


class TestCreateRequest(BaseModel):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    instructions: Optional[str] = None
    duration_minutes: int = Field(60, gt=0)
    passing_percentage: float = Field(50, ge=0, le=100)
    settings: Optional[TestSettingsRequest] = None
    questions: List[Question] = Field(default_factory=list)

    class Config:
        json_schema_extra = {
            "example": {
                "title": "Backend Engineer Screening",
                "duration_minutes": 45,
                "passing_percentage": 60,
                "settings": {"shuffle_options": True},
                "questions": [
                    {
                        "type": "mcq",
                        "title": "HTTP idempotency",
                        "prompt": "Which method is idempotent?",
                        "options": [
                            {"text": "POST", "is_correct": False},
                            {"text": "PUT", "is_correct": True},
                        ],
                        "points": 5,
                    },
                    {
                        "type": "coding",
                        "title": "Sum two numbers",
                        "problem_statement": "Read two integers and print their sum.",
                        "test_cases": [
                            {"input": "1 2", "expected_output": "3", "points": 5},
                            {"input": "5 7", "expected_output": "12", "is_hidden": True, "points": 5},
                        ],
                        "points": 10,
                    },
                ],
            }
        }


class TestUpdateRequest(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    instructions: Optional[str] = None
    duration_minutes: Optional[int] = Field(None, gt=0)
    passing_percentage: Optional[float] = Field(None, ge=0, le=100)
    settings: Optional[TestSettingsRequest] = None
    # Echo each question's question_id back to keep existing questions
    questions: Optional[List[Question]] = None


def as_test_payload(request: BaseModel) -> Dict[str, Any]:
    """Only the fields the client actually sent, ready for the definition service"""
    fields = request.model_fields_set
    payload = request.model_dump(exclude_unset=True, exclude={"settings", "questions"})
    payload = {key: value for key, value in payload.items() if value is not None}
    if "settings" in fields and request.settings is not None:
        payload["settings"] = request.settings.model_dump(exclude_none=True)
    if "questions" in fields and request.questions is not None:
        payload["questions"] = [question.model_dump() for question in request.questions]
    return payload


class AssignTestRequest(BaseModel):
    test_id: str
    candidate_ids: List[str] = Field(default_factory=list)
    scheduled_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    context: Optional[Dict[str, Any]] = None  # Resolved through the eligibility service


class McqAnswerRequest(BaseModel):
    question_index: int = Field(..., ge=0)
    selected_option: int = Field(..., ge=0)


class CodeSubmissionRequest(BaseModel):
    question_index: int = Field(..., ge=0)
    code: str
    language: Language


class RunCodeRequest(BaseModel):
    code: str
    language: Language
    stdin: str = ""


class ProctoringEventRequest(BaseModel):
    event_type: ProctoringEventType
    details: Optional[Dict[str, Any]] = None


class EvaluateRequest(BaseModel):
    decision: ReviewDecision
    comments: Optional[str] = None
