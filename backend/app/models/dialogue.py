"""
Checkpoint LMS - Dialogue Models
Dialogue debt, instructor availability and support tickets
"""
import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.clock import utcnow
from app.core.database import Base


class ProgressStatus(str, Enum):
    COMPLETED = "completed"


class InstructorStatus(str, Enum):
    IDLE = "idle"
    BUSY = "busy"


class TicketStatus(str, Enum):
    """
    Ticket lifecycle.

    waiting -> assigned -> completed
    waiting -> cancelled
    """
    WAITING = "waiting"
    ASSIGNED = "assigned"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


ACTIVE_TICKET_STATUSES = (TicketStatus.WAITING.value, TicketStatus.ASSIGNED.value)


class StudentProgress(Base):
    """Completion of a checkpoint unit and whether its dialogue is done."""

    __tablename__ = "student_progress"

    student_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True
    )
    unit_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("units.id", ondelete="CASCADE"),
        primary_key=True
    )
    status: Mapped[str] = mapped_column(String(20), default=ProgressStatus.COMPLETED.value)

    # False = the student still owes a dialogue for this unit
    dialogue_cleared: Mapped[bool] = mapped_column(Boolean, default=False)

    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Instructor(Base):
    """An instructor and their availability. Status is owned by TicketService."""

    __tablename__ = "instructors"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True
    )
    assigned_room_name: Mapped[str] = mapped_column(String(200))
    status: Mapped[str] = mapped_column(String(20), default=InstructorStatus.IDLE.value)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow
    )


class SupportTicket(Base):
    """A student's request for a live dialogue about one or more units."""

    __tablename__ = "support_tickets"
    __table_args__ = (
        # At most one waiting/assigned ticket per student
        Index(
            "uq_support_tickets_active_student",
            "student_id",
            unique=True,
            postgresql_where=text("status IN ('waiting', 'assigned')"),
            sqlite_where=text("status IN ('waiting', 'assigned')"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True
    )
    instructor_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("instructors.id", ondelete="SET NULL"),
        nullable=True
    )
    # Unit ids (as strings) the dialogue covers
    unit_ids: Mapped[list] = mapped_column(JSON, default=list)
    status: Mapped[str] = mapped_column(String(20), default=TicketStatus.WAITING.value, index=True)
    evaluation_note: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    assigned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_TICKET_STATUSES
