"""
Checkpoint LMS - Presence API
Student heartbeats and the instructor dashboard
"""
from datetime import datetime, timedelta
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Query, status

from app.api.deps import Context, DbSession, StaffContext, StudentContext, http_error
from app.core.clock import utcnow
from app.schemas.presence import (
    HeartbeatRequest,
    InstructorPresenceResponse,
    SessionHistoryEntry,
    StudentPresenceResponse,
)
from app.services.errors import DomainError
from app.services.presence import PresenceService

router = APIRouter(prefix="/presence", tags=["Presence"])


@router.post("/heartbeat", status_code=status.HTTP_204_NO_CONTENT)
async def record_heartbeat(
    heartbeat: HeartbeatRequest,
    ctx: StudentContext,
    db: DbSession,
) -> None:
    try:
        await PresenceService(db).record_heartbeat(ctx, heartbeat.unit_id, heartbeat.activity)
    except DomainError as e:
        raise http_error(e)


@router.get("/students", response_model=list[StudentPresenceResponse])
async def list_student_presence(ctx: StaffContext, db: DbSession):
    """Every student with online state and current activity."""
    try:
        return await PresenceService(db).list_student_presence(ctx)
    except DomainError as e:
        raise http_error(e)


@router.get("/instructors", response_model=list[InstructorPresenceResponse])
async def list_instructor_presence(ctx: StaffContext, db: DbSession):
    try:
        return await PresenceService(db).list_instructor_presence(ctx)
    except DomainError as e:
        raise http_error(e)


@router.get("/students/{student_id}/history", response_model=list[SessionHistoryEntry])
async def student_history(
    student_id: UUID,
    ctx: Context,
    db: DbSession,
    since: Annotated[datetime | None, Query()] = None,
):
    """Lesson sessions since ``since`` (default: the last 24 hours)."""
    if since is None:
        since = utcnow() - timedelta(days=1)
    try:
        return await PresenceService(db).student_history(ctx, student_id, since)
    except DomainError as e:
        raise http_error(e)
