"""
Checkpoint LMS - Request Context
The authenticated caller, resolved once at the request boundary
"""
import uuid
from dataclasses import dataclass

from app.models.user import UserRole


@dataclass(frozen=True)
class RequestContext:
    """Identity of the caller, threaded into every service operation."""
    user_id: uuid.UUID
    role: UserRole

    @property
    def is_student(self) -> bool:
        return self.role == UserRole.STUDENT

    @property
    def is_instructor(self) -> bool:
        return self.role == UserRole.INSTRUCTOR

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN
