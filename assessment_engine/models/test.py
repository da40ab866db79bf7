"""
Test definition models: the questions, scoring rules and settings an issuer
publishes, plus the statistics recomputed as attempts are finalized.
"""

from datetime import datetime, timezone
from typing import List, Optional, Literal, Union, Annotated
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator
from pymongo import ASCENDING, IndexModel

from .base import BaseDocument
from .enums import TestStatus, QuestionType
from ..utils import UTCDateTime


def _new_question_id() -> str:
    return uuid4().hex


# ================ Question variants ================


class McqOption(BaseModel):
    text: str
    is_correct: bool = False


class TestCase(BaseModel):
    """Input/expected output pair a coding answer is judged against"""

    input: str = ""
    expected_output: str = ""
    is_hidden: bool = False
    points: float = Field(default=1, ge=0)


class McqQuestion(BaseModel):
    type: Literal["mcq"] = QuestionType.MCQ.value
    question_id: str = Field(default_factory=_new_question_id)
    title: str
    prompt: str = ""
    options: List[McqOption] = Field(default_factory=list)
    points: float = Field(default=1, gt=0)

    def correct_option_indexes(self) -> List[int]:
        return [i for i, option in enumerate(self.options) if option.is_correct]


class CodingQuestion(BaseModel):
    type: Literal["coding"] = QuestionType.CODING.value
    question_id: str = Field(default_factory=_new_question_id)
    title: str
    problem_statement: str = ""
    sample_input: str = ""
    sample_output: str = ""
    test_cases: List[TestCase] = Field(default_factory=list)
    points: float = Field(default=1, gt=0)


Question = Annotated[Union[McqQuestion, CodingQuestion], Field(discriminator="type")]


# ================ Settings and statistics ================


class TestSettings(BaseModel):
    """Behaviour switches for the test-taking interface"""

    shuffle_questions: bool = False
    shuffle_options: bool = False
    show_results: bool = True
    allow_review: bool = False
    prevent_tab_switch: bool = True  # Enables server-side termination on tab switching
    webcam_required: bool = False


class TestStatistics(BaseModel):
    """Aggregate over submitted/evaluated attempts (percentages)"""

    total_attempts: int = 0
    average_score: float = 0
    highest_score: float = 0
    lowest_score: float = 0


# ================ Main model ================


class Test(BaseDocument):
    """
    A timed assessment owned by an issuer. Questions are referenced by
    submissions through their position and their stable ``question_id``.
    """

    issuer_id: str

    # Basic info
    title: str
    description: Optional[str] = None
    instructions: Optional[str] = None

    # Configuration
    status: TestStatus = TestStatus.DRAFT
    duration_minutes: int = Field(default=60, gt=0)
    total_marks: float = 0
    passing_percentage: float = Field(default=50, ge=0, le=100)
    settings: TestSettings = Field(default_factory=TestSettings)

    questions: List[Question] = Field(default_factory=list)

    statistics: TestStatistics = Field(default_factory=TestStatistics)
    published_at: Optional[UTCDateTime] = None

    class Settings:
        name = "tests"
        indexes = [
            IndexModel([("issuer_id", ASCENDING), ("status", ASCENDING)]),
        ]

    @field_validator("questions")
    @classmethod
    def question_ids_are_unique(cls, questions):
        seen = set()
        for question in questions:
            if question.question_id in seen:
                raise ValueError(f"Duplicate question_id: {question.question_id}")
            seen.add(question.question_id)
        return questions

    def recompute_total_marks(self) -> float:
        """Total marks always come from the questions, never from the client"""
        self.total_marks = sum(question.points for question in self.questions)
        return self.total_marks

    def question_at(self, index: int) -> Optional[Union[McqQuestion, CodingQuestion]]:
        if index < 0 or index >= len(self.questions):
            return None
        return self.questions[index]

    def question_ids(self) -> List[str]:
        return [question.question_id for question in self.questions]

    @property
    def duration_seconds(self) -> int:
        return self.duration_minutes * 60

    def mark_published(self):
        self.status = TestStatus.PUBLISHED
        self.published_at = datetime.now(timezone.utc)
        self.update_timestamp()
