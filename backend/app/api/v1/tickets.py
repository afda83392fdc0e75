"""
Checkpoint LMS - Tickets API
Dialogue requests: students open and cancel, instructors claim and complete
"""
import logging
from uuid import UUID

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from app.api.deps import (
    Context,
    DbSession,
    InstructorContext,
    SessionFactory,
    StaffContext,
    StudentContext,
    WsContext,
    http_error,
)
from app.schemas.dialogue import (
    InstructorRegistration,
    InstructorResponse,
    TicketClaimResponse,
    TicketCompleteRequest,
    TicketCreateRequest,
    TicketCreateResponse,
    TicketResponse,
    WaitingTicket,
)
from app.services.errors import DomainError
from app.services.ticket_watch import TicketWatcher
from app.services.tickets import TicketService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tickets", tags=["Tickets"])


# ============================================================================
# Students
# ============================================================================

@router.post(
    "",
    response_model=TicketCreateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Request a dialogue",
)
async def create_ticket(
    request: TicketCreateRequest,
    ctx: StudentContext,
    db: DbSession,
) -> TicketCreateResponse:
    try:
        ticket = await TicketService(db).create_ticket(ctx, request.unit_ids)
    except DomainError as e:
        raise http_error(e)
    return TicketCreateResponse(ticket_id=ticket.id, status=ticket.status)


@router.get("/mine", response_model=TicketResponse | None)
async def get_my_active_ticket(ctx: StudentContext, db: DbSession):
    """The caller's waiting or assigned ticket, if any."""
    return await TicketService(db).get_my_active_ticket(ctx)


@router.post("/{ticket_id}/cancel", response_model=TicketResponse)
async def cancel_ticket(
    ticket_id: UUID,
    ctx: StudentContext,
    db: DbSession,
) -> TicketResponse:
    service = TicketService(db)
    try:
        await service.cancel_ticket(ctx, ticket_id)
        return await service.get_ticket(ctx, ticket_id)
    except DomainError as e:
        raise http_error(e)


# ============================================================================
# Instructors
# ============================================================================

@router.put("/instructors/me", response_model=InstructorResponse)
async def register_instructor(
    registration: InstructorRegistration,
    ctx: InstructorContext,
    db: DbSession,
) -> InstructorResponse:
    """Register or update the caller's dialogue room."""
    try:
        instructor = await TicketService(db).register_instructor(
            ctx, registration.assigned_room_name
        )
    except DomainError as e:
        raise http_error(e)
    return InstructorResponse.model_validate(instructor)


@router.get("/waiting", response_model=list[WaitingTicket])
async def list_waiting_tickets(ctx: StaffContext, db: DbSession) -> list[WaitingTicket]:
    """Tickets waiting for an instructor, oldest first."""
    try:
        return await TicketService(db).list_waiting_tickets(ctx)
    except DomainError as e:
        raise http_error(e)


@router.post("/{ticket_id}/claim", response_model=TicketClaimResponse)
async def claim_ticket(
    ticket_id: UUID,
    ctx: InstructorContext,
    db: DbSession,
) -> TicketClaimResponse:
    """
    Take a waiting ticket.

    A 409 means another instructor got there first (or the caller is busy);
    refresh the queue and carry on.
    """
    try:
        return await TicketService(db).claim_ticket(ctx, ticket_id)
    except DomainError as e:
        raise http_error(e)


@router.post("/{ticket_id}/complete", response_model=TicketResponse)
async def complete_ticket(
    ticket_id: UUID,
    request: TicketCompleteRequest,
    ctx: InstructorContext,
    db: DbSession,
) -> TicketResponse:
    """Finish the dialogue and clear the student's debt for its units."""
    service = TicketService(db)
    try:
        await service.complete_ticket(ctx, ticket_id, request.evaluation_note)
        return await service.get_ticket(ctx, ticket_id)
    except DomainError as e:
        raise http_error(e)


# ============================================================================
# Shared
# ============================================================================

@router.get("/{ticket_id}", response_model=TicketResponse)
async def get_ticket(ticket_id: UUID, ctx: Context, db: DbSession) -> TicketResponse:
    try:
        return await TicketService(db).get_ticket(ctx, ticket_id)
    except DomainError as e:
        raise http_error(e)


@router.websocket("/{ticket_id}/watch")
async def watch_ticket(
    websocket: WebSocket,
    ticket_id: UUID,
    ctx: WsContext,
    session_factory: SessionFactory,
):
    """
    Push the ticket's state whenever it changes.

    Every message is a fresh read of the ticket; the socket closes after
    the ticket is completed or cancelled.
    """
    await websocket.accept()
    watcher = TicketWatcher(ctx, ticket_id, session_factory)
    try:
        async for state in watcher.updates():
            await websocket.send_json(state.model_dump(mode="json"))
    except DomainError as e:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=str(e))
        return
    except WebSocketDisconnect:
        logger.debug("Watcher for ticket %s disconnected", ticket_id)
        return
    await websocket.close()
