"""
Checkpoint LMS - Presence Service
Student heartbeats and the read-only instructor dashboard views
"""
import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import as_utc, utcnow
from app.core.config import settings
from app.core.context import RequestContext
from app.core.database import upsert
from app.models.curriculum import Unit
from app.models.dialogue import Instructor
from app.models.lesson import LessonSession, QuizAttempt, UnitScore
from app.models.presence import StudentActivity, StudentPresence
from app.models.user import User, UserRole
from app.schemas.presence import (
    InstructorPresenceResponse,
    SessionHistoryEntry,
    StudentPresenceResponse,
)
from app.services.errors import NotFoundError, PermissionDeniedError

logger = logging.getLogger(__name__)


class PresenceService:
    """
    Derived views over heartbeat timestamps.

    Staleness is only ever computed at read time; nothing here expires
    rows or changes instructor status.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    def _require_staff(self, ctx: RequestContext) -> None:
        if not (ctx.is_instructor or ctx.is_admin):
            raise PermissionDeniedError("Only instructors and admins can view presence")

    async def record_heartbeat(
        self,
        ctx: RequestContext,
        unit_id: uuid.UUID | None,
        activity: StudentActivity | None,
    ) -> StudentPresence:
        """
        Store the caller's current unit and activity.

        ``current_unit_started_at`` is reset only when the unit changes.
        """
        if not ctx.is_student:
            raise PermissionDeniedError("Only students send heartbeats")
        if unit_id is not None and not await self.db.get(Unit, unit_id):
            raise NotFoundError("Unit not found")

        now = utcnow()
        previous = await self._get_presence(ctx.user_id)
        if unit_id is None:
            started_at = None
        elif previous and previous.current_unit_id == unit_id and previous.current_unit_started_at:
            started_at = previous.current_unit_started_at
        else:
            started_at = now

        await upsert(
            self.db,
            StudentPresence,
            {
                "student_id": ctx.user_id,
                "current_unit_id": unit_id,
                "current_activity": activity.value if activity else None,
                "current_unit_started_at": started_at,
                "last_seen_at": now,
            },
            conflict_keys=("student_id",),
            update_keys=("current_unit_id", "current_activity", "current_unit_started_at", "last_seen_at"),
        )
        return await self._get_presence(ctx.user_id)

    async def _get_presence(self, student_id: uuid.UUID) -> StudentPresence | None:
        result = await self.db.execute(
            select(StudentPresence)
            .where(StudentPresence.student_id == student_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_student_presence(
        self,
        ctx: RequestContext,
        now: datetime | None = None,
    ) -> list[StudentPresenceResponse]:
        """
        All active students with their online state.

        A student is online while the last heartbeat is younger than
        ``PRESENCE_OFFLINE_AFTER_SECONDS``; activity is only reported for
        online students.
        """
        self._require_staff(ctx)
        now = as_utc(now) if now else utcnow()
        threshold = timedelta(seconds=settings.PRESENCE_OFFLINE_AFTER_SECONDS)

        result = await self.db.execute(
            select(User, StudentPresence, Unit)
            .outerjoin(StudentPresence, StudentPresence.student_id == User.id)
            .outerjoin(Unit, Unit.id == StudentPresence.current_unit_id)
            .where(User.role == UserRole.STUDENT.value, User.is_active.is_(True))
            .order_by(User.name, User.email)
        )

        rows = []
        for user, presence, unit in result.all():
            last_seen = as_utc(presence.last_seen_at) if presence else None
            is_online = last_seen is not None and now - last_seen < threshold

            entry = StudentPresenceResponse(
                student_id=user.id,
                student_name=user.display_name,
                is_online=is_online,
                last_seen_at=last_seen,
            )
            if is_online and presence.current_unit_id:
                entry.current_unit_id = presence.current_unit_id
                entry.current_unit_name = unit.name if unit else None
                entry.current_activity = presence.current_activity
                started = as_utc(presence.current_unit_started_at)
                if started:
                    entry.minutes_on_unit = max(0, int((now - started).total_seconds() // 60))
            rows.append(entry)
        return rows

    async def list_instructor_presence(self, ctx: RequestContext) -> list[InstructorPresenceResponse]:
        self._require_staff(ctx)
        result = await self.db.execute(
            select(Instructor, User)
            .join(User, User.id == Instructor.id)
            .order_by(User.name, User.email)
        )
        return [
            InstructorPresenceResponse(
                id=instructor.id,
                name=user.display_name,
                status=instructor.status,
                assigned_room_name=instructor.assigned_room_name,
                updated_at=instructor.updated_at,
            )
            for instructor, user in result.all()
        ]

    async def student_history(
        self,
        ctx: RequestContext,
        student_id: uuid.UUID,
        since: datetime,
    ) -> list[SessionHistoryEntry]:
        """
        Sessions a student started since ``since``, newest first.

        Quiz counts are per session; test scores come from the unit score.
        """
        if ctx.user_id != student_id:
            self._require_staff(ctx)

        sessions = await self.db.execute(
            select(LessonSession, Unit)
            .join(Unit, Unit.id == LessonSession.unit_id)
            .where(
                LessonSession.student_id == student_id,
                LessonSession.start_time >= since,
            )
            .order_by(LessonSession.start_time.desc())
        )
        rows = sessions.all()
        if not rows:
            return []

        session_ids = [session.id for session, _ in rows]
        counts = await self.db.execute(
            select(
                QuizAttempt.session_id,
                func.count(QuizAttempt.id),
                func.sum(case((QuizAttempt.is_correct.is_(True), 1), else_=0)),
            )
            .where(QuizAttempt.session_id.in_(session_ids))
            .group_by(QuizAttempt.session_id)
        )
        answer_counts = {
            session_id: (int(total or 0), int(correct or 0))
            for session_id, total, correct in counts.all()
        }

        test_unit_ids = {unit.id for _, unit in rows if unit.is_test}
        test_scores: dict[uuid.UUID, UnitScore] = {}
        if test_unit_ids:
            scores = await self.db.execute(
                select(UnitScore).where(
                    UnitScore.student_id == student_id,
                    UnitScore.unit_id.in_(test_unit_ids),
                )
            )
            test_scores = {score.unit_id: score for score in scores.scalars().all()}

        history = []
        for session, unit in rows:
            total, correct = answer_counts.get(session.id, (0, 0))
            score = test_scores.get(unit.id)
            history.append(SessionHistoryEntry(
                session_id=session.id,
                unit_id=unit.id,
                unit_name=unit.name,
                unit_type=unit.unit_type,
                start_time=as_utc(session.start_time),
                end_time=as_utc(session.end_time),
                duration_seconds=session.duration_seconds,
                is_completed=session.is_completed,
                correct_answers=correct,
                total_answers=total,
                raw_score=score.raw_score if score else None,
                max_score=score.max_score if score else None,
            ))
        return history
