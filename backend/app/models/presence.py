"""
Checkpoint LMS - Presence Model
Last-known activity of each student, refreshed by heartbeats
"""
import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.core.clock import utcnow
from app.core.database import Base


class StudentActivity(str, Enum):
    """What the student's client is currently showing."""
    INTRO = "intro"
    VIDEO = "video"
    QUIZ = "quiz"
    OUTRO = "outro"


class StudentPresence(Base):
    """One row per student."""

    __tablename__ = "student_presence"

    student_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True
    )
    current_unit_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("units.id", ondelete="SET NULL"),
        nullable=True
    )
    current_activity: Mapped[str | None] = mapped_column(String(20), nullable=True)
    current_unit_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
