"""
Checkpoint LMS - Domain Errors
Failures reported by services to the request layer
"""


class DomainError(Exception):
    """Base error for business-rule failures."""
    pass


class ValidationError(DomainError):
    """Input rejected before any write."""
    pass


class NotFoundError(DomainError):
    """Referenced ticket, unit, session or user does not exist."""
    pass


class PermissionDeniedError(DomainError):
    """Caller is not allowed to act on this resource."""
    pass


class ConflictError(DomainError):
    """Expected outcome of concurrent use; refresh and carry on."""
    pass


class AlreadyWaitingError(ConflictError):
    """Student already has a waiting or assigned ticket."""
    pass


class AlreadyClaimedError(ConflictError):
    """Ticket is no longer waiting, possibly taken by another instructor."""
    pass


class NotAssignedError(ConflictError):
    """Ticket is not in the assigned state."""
    pass


class WrongInstructorError(ConflictError):
    """Ticket is assigned to a different instructor."""
    pass


class NotIdleError(ConflictError):
    """Instructor is busy with another ticket."""
    pass


class TicketClosedError(ConflictError):
    """Ticket already completed or cancelled."""
    pass


class AlreadyAnsweredError(ConflictError):
    """Quiz item at this position was already answered."""
    pass
