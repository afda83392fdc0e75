"""Checkpoint LMS - Models initialization."""
from app.models.user import User, UserRole
from app.models.curriculum import (
    Subject,
    Section,
    Unit,
    UnitType,
    QuizTopic,
    Question,
    Choice,
)
from app.models.lesson import LessonSession, QuizAttempt, UnitScore
from app.models.dialogue import (
    StudentProgress,
    Instructor,
    InstructorStatus,
    SupportTicket,
    TicketStatus,
)
from app.models.presence import StudentPresence, StudentActivity


__all__ = [
    # User models
    "User",
    "UserRole",
    # Curriculum models
    "Subject",
    "Section",
    "Unit",
    "UnitType",
    "QuizTopic",
    "Question",
    "Choice",
    # Lesson models
    "LessonSession",
    "QuizAttempt",
    "UnitScore",
    # Dialogue models
    "StudentProgress",
    "Instructor",
    "InstructorStatus",
    "SupportTicket",
    "TicketStatus",
    # Presence models
    "StudentPresence",
    "StudentActivity",
]
