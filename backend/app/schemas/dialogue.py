"""
Checkpoint LMS - Dialogue Schemas
Pydantic schemas for unit completion, dialogue debt and support tickets
"""
import uuid
from datetime import datetime
from enum import Enum
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class DialogueAction(str, Enum):
    """What the student client should do after finishing a unit."""
    PROMPT_DIALOGUE = "prompt_dialogue"
    PROCEED_NEXT = "proceed_next"


# ============================================================================
# Unit completion
# ============================================================================

class UnitCompletionRequest(BaseModel):
    unit_id: uuid.UUID


class UnitCompletionResult(BaseModel):
    """Decision plus the checkpoint units the student still owes a dialogue for."""
    action: DialogueAction
    pending_unit_ids: list[uuid.UUID] = []
    pending_unit_names: list[str] = []


class PendingDialogue(BaseModel):
    unit_id: uuid.UUID
    unit_name: str
    completed_at: Optional[datetime] = None


# ============================================================================
# Tickets
# ============================================================================

class TicketCreateRequest(BaseModel):
    """Units the student will explain in the dialogue."""
    unit_ids: Annotated[list[uuid.UUID], Field(min_length=1)]

    @field_validator("unit_ids")
    @classmethod
    def dedupe_unit_ids(cls, v: list[uuid.UUID]) -> list[uuid.UUID]:
        return list(dict.fromkeys(v))


class TicketCreateResponse(BaseModel):
    ticket_id: uuid.UUID
    status: str


class TicketClaimResponse(BaseModel):
    """Claim outcome; ``room_name`` is where the dialogue takes place."""
    ticket_id: uuid.UUID
    success: bool
    room_name: Optional[str] = None


class TicketCompleteRequest(BaseModel):
    evaluation_note: Annotated[Optional[str], Field(default=None, max_length=2000)]


class TicketResponse(BaseModel):
    """Authoritative ticket state."""
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    student_id: uuid.UUID
    instructor_id: Optional[uuid.UUID] = None
    unit_ids: list[uuid.UUID] = []
    status: str
    evaluation_note: Optional[str] = None
    created_at: datetime
    assigned_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    room_name: Optional[str] = None


class WaitingTicket(BaseModel):
    """Instructor queue entry."""
    id: uuid.UUID
    student_id: uuid.UUID
    student_name: Optional[str] = None
    unit_ids: list[uuid.UUID] = []
    unit_names: list[str] = []
    created_at: datetime


class InstructorRegistration(BaseModel):
    assigned_room_name: Annotated[str, Field(min_length=1, max_length=200)]


class InstructorResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    assigned_room_name: str
    status: str
    updated_at: datetime
