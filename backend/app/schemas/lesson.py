"""
Checkpoint LMS - Lesson Schemas
Pydantic schemas for lesson sessions, quiz answering and test results
"""
import uuid
from datetime import datetime
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field


class ChoiceView(BaseModel):
    """An answer option as shown to the student (no correctness flag)."""
    id: uuid.UUID
    answer_text: str


class QuestionView(BaseModel):
    """The question under the cursor."""
    position: int
    queue_length: int
    question_id: uuid.UUID
    topic_id: uuid.UUID
    text: str
    remedial: bool = False
    answered: bool = False
    choices: list[ChoiceView] = []
    cleared_topics: int
    total_topics: int


class LessonSessionResponse(BaseModel):
    """Lesson session state."""
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    unit_id: uuid.UUID
    start_time: datetime
    end_time: Optional[datetime] = None
    duration_seconds: Optional[int] = None
    is_completed: bool


class StartSessionRequest(BaseModel):
    unit_id: uuid.UUID


class StartSessionResponse(BaseModel):
    """A new session with its first question (None for quiz-less units)."""
    session: LessonSessionResponse
    question: Optional[QuestionView] = None


class AnswerRequest(BaseModel):
    """Answer for the question at ``position``."""
    position: Annotated[int, Field(ge=0)]
    choice_id: uuid.UUID


class AnswerResult(BaseModel):
    """Grading feedback after one answer."""
    position: int
    is_correct: bool
    correct_choice_ids: list[uuid.UUID] = []
    explanation: Optional[str] = None
    appended: bool  # a remedial question was added to the queue
    queue_length: int
    cleared_topics: int
    total_topics: int
    progress_rate: float


class AdvanceResponse(BaseModel):
    """Session after moving on; ``question`` is None once finished."""
    session: LessonSessionResponse
    question: Optional[QuestionView] = None


class TestScoreRequest(BaseModel):
    """Score of a paper or digital test."""
    unit_id: uuid.UUID
    score: Annotated[int, Field(ge=0)]
    duration_seconds: Annotated[int, Field(ge=0)]


class UnitScoreResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    unit_id: uuid.UUID
    cleared_topics: int
    total_topics: int
    progress_rate: float
    raw_score: Optional[int] = None
    max_score: Optional[int] = None
    duration_seconds: Optional[int] = None
    last_updated: datetime
