"""
Checkpoint LMS - Presence Schemas
Pydantic schemas for heartbeats and the instructor dashboard
"""
import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from app.models.presence import StudentActivity


class HeartbeatRequest(BaseModel):
    """Sent periodically by the student client."""
    unit_id: Optional[uuid.UUID] = None
    activity: Optional[StudentActivity] = None


class StudentPresenceResponse(BaseModel):
    """One row of the instructor dashboard."""
    student_id: uuid.UUID
    student_name: str
    is_online: bool
    last_seen_at: Optional[datetime] = None
    current_unit_id: Optional[uuid.UUID] = None
    current_unit_name: Optional[str] = None
    current_activity: Optional[StudentActivity] = None
    minutes_on_unit: Optional[int] = None


class InstructorPresenceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    status: str
    assigned_room_name: str
    updated_at: datetime


class SessionHistoryEntry(BaseModel):
    """A lesson session the student worked on."""
    session_id: uuid.UUID
    unit_id: uuid.UUID
    unit_name: str
    unit_type: str
    start_time: datetime
    end_time: Optional[datetime] = None
    duration_seconds: Optional[int] = None
    is_completed: bool
    correct_answers: int = 0
    total_answers: int = 0
    raw_score: Optional[int] = None
    max_score: Optional[int] = None
