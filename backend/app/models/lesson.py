"""
Checkpoint LMS - Lesson Models
Lesson sessions, recorded quiz answers and per-unit scores
"""
import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.clock import utcnow
from app.core.database import Base
from app.models.curriculum import Unit


class LessonSession(Base):
    """One student's attempt at one unit."""

    __tablename__ = "lesson_sessions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True
    )
    unit_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("units.id", ondelete="CASCADE"),
        index=True
    )

    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False)

    # Serialized QuizQueue (see app.services.quiz_queue)
    # Format: { items: [...], cursor, cleared_topic_ids: [...], total_topics }
    quiz_state: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    unit: Mapped["Unit"] = relationship("Unit")
    attempts: Mapped[list["QuizAttempt"]] = relationship(
        "QuizAttempt",
        back_populates="session",
        cascade="all, delete-orphan"
    )


class QuizAttempt(Base):
    """One submitted answer. Append-only."""

    __tablename__ = "quiz_attempts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("lesson_sessions.id", ondelete="CASCADE"),
        index=True
    )
    student_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True
    )
    question_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("questions.id", ondelete="CASCADE")
    )
    choice_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("choices.id", ondelete="SET NULL"),
        nullable=True
    )
    is_correct: Mapped[bool] = mapped_column(Boolean, default=False)
    attempted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    session: Mapped["LessonSession"] = relationship("LessonSession", back_populates="attempts")


class UnitScore(Base):
    """Latest result per (student, unit). Upserted, never appended."""

    __tablename__ = "unit_scores"
    __table_args__ = (
        UniqueConstraint("student_id", "unit_id", name="uq_unit_scores_student_unit"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True
    )
    unit_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("units.id", ondelete="CASCADE"),
        index=True
    )

    # Quiz progress
    cleared_topics: Mapped[int] = mapped_column(Integer, default=0)
    total_topics: Mapped[int] = mapped_column(Integer, default=0)
    progress_rate: Mapped[float] = mapped_column(Float, default=0.0)  # 0.0 to 1.0

    # Test units
    raw_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    duration_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)

    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


def compute_progress_rate(cleared_topics: int, total_topics: int) -> float:
    """cleared / total, or 0 when the unit has no topics."""
    if total_topics <= 0:
        return 0.0
    return cleared_topics / total_topics
