"""Checkpoint LMS - Services initialization."""
from app.services.dialogue import DialogueService
from app.services.errors import (
    AlreadyAnsweredError,
    AlreadyClaimedError,
    AlreadyWaitingError,
    ConflictError,
    DomainError,
    NotAssignedError,
    NotFoundError,
    NotIdleError,
    PermissionDeniedError,
    TicketClosedError,
    ValidationError,
    WrongInstructorError,
)
from app.services.lesson import LessonService
from app.services.presence import PresenceService
from app.services.quiz_authoring import QuizAuthoringService
from app.services.tickets import TicketService

__all__ = [
    "DialogueService",
    "LessonService",
    "PresenceService",
    "QuizAuthoringService",
    "TicketService",
    "DomainError",
    "ValidationError",
    "NotFoundError",
    "PermissionDeniedError",
    "ConflictError",
    "AlreadyWaitingError",
    "AlreadyClaimedError",
    "NotAssignedError",
    "WrongInstructorError",
    "NotIdleError",
    "TicketClosedError",
    "AlreadyAnsweredError",
]
