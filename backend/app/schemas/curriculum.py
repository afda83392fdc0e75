"""
Checkpoint LMS - Curriculum Schemas
Pydantic schemas for quiz content authoring
"""
import uuid
from datetime import datetime
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Import payload
# ============================================================================

class ChoiceImport(BaseModel):
    answer_text: Annotated[str, Field(min_length=1)]
    is_correct: bool = False
    explanation: str | None = None


class QuestionImport(BaseModel):
    text: Annotated[str, Field(min_length=1)]
    choices: list[ChoiceImport] = []


class TopicImport(BaseModel):
    """One topic with its interchangeable questions."""
    label: Annotated[str, Field(min_length=1, max_length=200)]
    questions: list[QuestionImport] = []


class QuizImportRequest(BaseModel):
    """Nested topics -> questions -> choices for one unit."""
    topics: Annotated[list[TopicImport], Field(min_length=1)]


class QuizImportResult(BaseModel):
    unit_id: uuid.UUID
    topic_ids: list[uuid.UUID]
    topics_created: int
    questions_created: int
    choices_created: int


# ============================================================================
# Content views and edits
# ============================================================================

class ChoiceUpdate(BaseModel):
    """Partial edit of a choice; omitted fields are left unchanged."""
    answer_text: Annotated[str | None, Field(default=None, min_length=1)]
    is_correct: bool | None = None
    explanation: str | None = None


class ChoiceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    question_id: uuid.UUID
    answer_text: str
    is_correct: bool
    explanation: str | None = None


class QuestionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    text: str
    choices: list[ChoiceResponse] = []


class TopicResponse(BaseModel):
    """Topic with nested questions, as seen by authors."""
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    unit_id: uuid.UUID
    label: str
    created_at: datetime
    questions: list[QuestionResponse] = []
