"""
Checkpoint LMS - Ticket Matching Service
Lifecycle of a dialogue request from creation through claim to completion
"""
import logging
import uuid

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.change_feed import ChangeEvent, ChangeType, change_feed
from app.core.clock import utcnow
from app.core.context import RequestContext
from app.core.database import compare_and_swap_status, upsert
from app.models.curriculum import Unit
from app.models.dialogue import (
    ACTIVE_TICKET_STATUSES,
    Instructor,
    InstructorStatus,
    StudentProgress,
    SupportTicket,
    TicketStatus,
)
from app.models.user import User
from app.schemas.dialogue import TicketClaimResponse, TicketResponse, WaitingTicket
from app.services.errors import (
    AlreadyClaimedError,
    AlreadyWaitingError,
    NotAssignedError,
    NotFoundError,
    NotIdleError,
    PermissionDeniedError,
    TicketClosedError,
    ValidationError,
    WrongInstructorError,
)

logger = logging.getLogger(__name__)

TERMINAL_TICKET_STATUSES = (TicketStatus.COMPLETED.value, TicketStatus.CANCELLED.value)


class TicketService:
    """
    Owns SupportTicket rows and Instructor status.

    Every status transition is a compare-and-swap on the status column;
    a prior read is only used to pick the error to report.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _get_ticket(self, ticket_id: uuid.UUID) -> SupportTicket:
        ticket = await self.db.get(SupportTicket, ticket_id)
        if not ticket:
            raise NotFoundError("Ticket not found")
        return ticket

    async def _get_instructor(self, ctx: RequestContext) -> Instructor:
        instructor = await self.db.get(Instructor, ctx.user_id)
        if not instructor:
            raise PermissionDeniedError("Caller is not a registered instructor")
        return instructor

    async def _refetch_ticket(self, ticket_id: uuid.UUID) -> SupportTicket:
        """Read the ticket from the database, bypassing the identity map."""
        result = await self.db.execute(
            select(SupportTicket)
            .where(SupportTicket.id == ticket_id)
            .execution_options(populate_existing=True)
        )
        ticket = result.scalar_one_or_none()
        if not ticket:
            raise NotFoundError("Ticket not found")
        return ticket

    async def _room_name(self, instructor_id: uuid.UUID | None) -> str | None:
        if instructor_id is None:
            return None
        return await self.db.scalar(
            select(Instructor.assigned_room_name).where(Instructor.id == instructor_id)
        )

    async def _to_response(self, ticket: SupportTicket) -> TicketResponse:
        response = TicketResponse.model_validate(ticket)
        response.room_name = await self._room_name(ticket.instructor_id)
        return response

    def _stage(self, table: str, change_type: ChangeType, row_id: uuid.UUID, **payload) -> None:
        change_feed.stage(self.db, ChangeEvent(
            table=table,
            change_type=change_type,
            row_id=str(row_id),
            payload={key: str(value) if value is not None else None for key, value in payload.items()},
        ))

    # ------------------------------------------------------------------
    # Instructors
    # ------------------------------------------------------------------

    async def register_instructor(self, ctx: RequestContext, assigned_room_name: str) -> Instructor:
        """
        Create or update the caller's instructor record.

        New instructors start idle; re-registering only changes the room.
        """
        if not ctx.is_instructor:
            raise PermissionDeniedError("Only instructors can register a room")
        if not assigned_room_name.strip():
            raise ValidationError("Room name is required")

        now = utcnow()
        await upsert(
            self.db,
            Instructor,
            {
                "id": ctx.user_id,
                "assigned_room_name": assigned_room_name.strip(),
                "status": InstructorStatus.IDLE.value,
                "created_at": now,
                "updated_at": now,
            },
            conflict_keys=("id",),
            update_keys=("assigned_room_name", "updated_at"),
        )
        result = await self.db.execute(
            select(Instructor)
            .where(Instructor.id == ctx.user_id)
            .execution_options(populate_existing=True)
        )
        instructor = result.scalar_one()
        self._stage(
            Instructor.__tablename__, ChangeType.UPDATE, instructor.id,
            status=instructor.status,
        )
        logger.info("Instructor %s registered room %s", ctx.user_id, instructor.assigned_room_name)
        return instructor

    # ------------------------------------------------------------------
    # Ticket lifecycle
    # ------------------------------------------------------------------

    async def create_ticket(self, ctx: RequestContext, unit_ids: list[uuid.UUID]) -> SupportTicket:
        """
        Open a waiting ticket for the caller.

        Args:
            ctx: Calling student
            unit_ids: Checkpoint units the student completed and will explain

        Raises:
            ValidationError: No units, or a unit the student has not completed
                as a checkpoint
            AlreadyWaitingError: Student already has a waiting or assigned ticket
        """
        unit_ids = list(dict.fromkeys(unit_ids))
        if not unit_ids:
            raise ValidationError("At least one unit is required")

        result = await self.db.execute(
            select(StudentProgress.unit_id)
            .join(Unit, Unit.id == StudentProgress.unit_id)
            .where(
                StudentProgress.student_id == ctx.user_id,
                StudentProgress.unit_id.in_(unit_ids),
                Unit.is_dialogue_checkpoint.is_(True),
            )
        )
        completed = set(result.scalars().all())
        missing = [unit_id for unit_id in unit_ids if unit_id not in completed]
        if missing:
            raise ValidationError(
                f"Units not completed as dialogue checkpoints: {', '.join(map(str, missing))}"
            )

        existing = await self.db.scalar(
            select(SupportTicket.id).where(
                SupportTicket.student_id == ctx.user_id,
                SupportTicket.status.in_(ACTIVE_TICKET_STATUSES),
            )
        )
        if existing:
            raise AlreadyWaitingError("You already have an open dialogue request")

        ticket = SupportTicket(
            student_id=ctx.user_id,
            unit_ids=[str(unit_id) for unit_id in unit_ids],
            status=TicketStatus.WAITING.value,
            created_at=utcnow(),
        )
        self.db.add(ticket)
        try:
            await self.db.flush()
        except IntegrityError as e:
            # Lost a create/create race on the active-ticket index
            raise AlreadyWaitingError("You already have an open dialogue request") from e

        self._stage(
            SupportTicket.__tablename__, ChangeType.INSERT, ticket.id,
            student_id=ticket.student_id, status=ticket.status,
        )
        logger.info("Ticket %s created by student %s for %d units", ticket.id, ctx.user_id, len(unit_ids))
        return ticket

    async def claim_ticket(self, ctx: RequestContext, ticket_id: uuid.UUID) -> TicketClaimResponse:
        """
        Take a waiting ticket for the calling instructor.

        The initial reads only choose the error message; the conditional
        update decides who wins.

        Returns:
            Claim outcome with the instructor's room name

        Raises:
            PermissionDeniedError: Caller is not a registered instructor
            NotIdleError: Caller is busy with another ticket
            NotFoundError: Ticket does not exist
            AlreadyClaimedError: Ticket is not waiting, or another instructor
                won the race
        """
        instructor = await self._get_instructor(ctx)
        if instructor.status != InstructorStatus.IDLE.value:
            raise NotIdleError("Finish your current dialogue before claiming another")

        ticket = await self._get_ticket(ticket_id)
        if ticket.status != TicketStatus.WAITING.value:
            raise AlreadyClaimedError("This ticket has already been taken")

        now = utcnow()
        claimed = await compare_and_swap_status(
            self.db,
            SupportTicket,
            ticket_id,
            TicketStatus.WAITING.value,
            {
                "status": TicketStatus.ASSIGNED.value,
                "instructor_id": ctx.user_id,
                "assigned_at": now,
            },
        )
        if not claimed:
            logger.info("Instructor %s lost the claim race for ticket %s", ctx.user_id, ticket_id)
            raise AlreadyClaimedError("This ticket has already been taken")

        marked_busy = await compare_and_swap_status(
            self.db,
            Instructor,
            ctx.user_id,
            InstructorStatus.IDLE.value,
            {"status": InstructorStatus.BUSY.value, "updated_at": now},
        )
        if not marked_busy:
            # Claimed another ticket concurrently; hand this one back
            await compare_and_swap_status(
                self.db,
                SupportTicket,
                ticket_id,
                TicketStatus.ASSIGNED.value,
                {"status": TicketStatus.WAITING.value, "instructor_id": None, "assigned_at": None},
                SupportTicket.instructor_id == ctx.user_id,
            )
            raise NotIdleError("Finish your current dialogue before claiming another")

        ticket = await self._refetch_ticket(ticket_id)
        self._stage(
            SupportTicket.__tablename__, ChangeType.UPDATE, ticket.id,
            student_id=ticket.student_id, status=ticket.status, instructor_id=ticket.instructor_id,
        )
        self._stage(
            Instructor.__tablename__, ChangeType.UPDATE, ctx.user_id,
            status=InstructorStatus.BUSY.value,
        )
        logger.info("Ticket %s claimed by instructor %s", ticket_id, ctx.user_id)

        return TicketClaimResponse(
            ticket_id=ticket.id,
            success=True,
            room_name=await self._room_name(ctx.user_id),
        )

    async def complete_ticket(
        self,
        ctx: RequestContext,
        ticket_id: uuid.UUID,
        evaluation_note: str | None = None,
    ) -> SupportTicket:
        """
        Close an assigned ticket and clear the student's dialogue debt.

        Effects apply in order: debt cleared, ticket completed, instructor
        released. All three share the request transaction.

        Raises:
            NotFoundError: Ticket does not exist
            NotAssignedError: Ticket is not assigned
            WrongInstructorError: Ticket belongs to another instructor
        """
        ticket = await self._get_ticket(ticket_id)
        if ticket.status != TicketStatus.ASSIGNED.value:
            raise NotAssignedError("Only an assigned ticket can be completed")
        if ticket.instructor_id != ctx.user_id:
            raise WrongInstructorError("This ticket is assigned to another instructor")

        unit_ids = [uuid.UUID(str(unit_id)) for unit_id in ticket.unit_ids or []]
        if unit_ids:
            await self.db.execute(
                update(StudentProgress)
                .where(
                    StudentProgress.student_id == ticket.student_id,
                    StudentProgress.unit_id.in_(unit_ids),
                )
                .values(dialogue_cleared=True)
            )

        now = utcnow()
        completed = await compare_and_swap_status(
            self.db,
            SupportTicket,
            ticket_id,
            TicketStatus.ASSIGNED.value,
            {
                "status": TicketStatus.COMPLETED.value,
                "completed_at": now,
                "evaluation_note": evaluation_note,
            },
            SupportTicket.instructor_id == ctx.user_id,
        )
        if not completed:
            raise NotAssignedError("Only an assigned ticket can be completed")

        await self.db.execute(
            update(Instructor)
            .where(Instructor.id == ctx.user_id)
            .values(status=InstructorStatus.IDLE.value, updated_at=now)
        )

        ticket = await self._refetch_ticket(ticket_id)
        for unit_id in unit_ids:
            self._stage(
                StudentProgress.__tablename__, ChangeType.UPDATE, f"{ticket.student_id}:{unit_id}",
                student_id=ticket.student_id, unit_id=unit_id,
            )
        self._stage(
            SupportTicket.__tablename__, ChangeType.UPDATE, ticket.id,
            student_id=ticket.student_id, status=ticket.status, instructor_id=ticket.instructor_id,
        )
        self._stage(
            Instructor.__tablename__, ChangeType.UPDATE, ctx.user_id,
            status=InstructorStatus.IDLE.value,
        )
        logger.info(
            "Ticket %s completed by instructor %s; cleared %d units",
            ticket_id, ctx.user_id, len(unit_ids),
        )
        return ticket

    async def cancel_ticket(self, ctx: RequestContext, ticket_id: uuid.UUID) -> SupportTicket:
        """
        Withdraw the caller's waiting ticket.

        Raises:
            NotFoundError: Ticket does not exist
            PermissionDeniedError: Caller is not the ticket's student
            AlreadyClaimedError: An instructor has already taken it
            TicketClosedError: Ticket is completed or cancelled
        """
        ticket = await self._get_ticket(ticket_id)
        if ticket.student_id != ctx.user_id:
            raise PermissionDeniedError("Only the requesting student can cancel this ticket")
        if ticket.status == TicketStatus.ASSIGNED.value:
            raise AlreadyClaimedError("An instructor has already taken this ticket")
        if ticket.status in TERMINAL_TICKET_STATUSES:
            raise TicketClosedError("This ticket is already closed")

        cancelled = await compare_and_swap_status(
            self.db,
            SupportTicket,
            ticket_id,
            TicketStatus.WAITING.value,
            {"status": TicketStatus.CANCELLED.value},
        )
        if not cancelled:
            raise AlreadyClaimedError("An instructor has already taken this ticket")

        ticket = await self._refetch_ticket(ticket_id)
        self._stage(
            SupportTicket.__tablename__, ChangeType.UPDATE, ticket.id,
            student_id=ticket.student_id, status=ticket.status,
        )
        logger.info("Ticket %s cancelled by student %s", ticket_id, ctx.user_id)
        return ticket

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_ticket(self, ctx: RequestContext, ticket_id: uuid.UUID) -> TicketResponse:
        """Authoritative ticket state for its student or any instructor."""
        ticket = await self._refetch_ticket(ticket_id)
        if ticket.student_id != ctx.user_id and not (ctx.is_instructor or ctx.is_admin):
            raise PermissionDeniedError("You cannot view this ticket")
        return await self._to_response(ticket)

    async def get_my_active_ticket(self, ctx: RequestContext) -> TicketResponse | None:
        result = await self.db.execute(
            select(SupportTicket)
            .where(
                SupportTicket.student_id == ctx.user_id,
                SupportTicket.status.in_(ACTIVE_TICKET_STATUSES),
            )
            .order_by(SupportTicket.created_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        ticket = result.scalar_one_or_none()
        if not ticket:
            return None
        return await self._to_response(ticket)

    async def list_waiting_tickets(self, ctx: RequestContext) -> list[WaitingTicket]:
        """Waiting tickets, oldest first, with student and unit names."""
        if not (ctx.is_instructor or ctx.is_admin):
            raise PermissionDeniedError("Only instructors can see the ticket queue")

        result = await self.db.execute(
            select(SupportTicket, User)
            .join(User, User.id == SupportTicket.student_id)
            .where(SupportTicket.status == TicketStatus.WAITING.value)
            .order_by(SupportTicket.created_at, SupportTicket.id)
            .execution_options(populate_existing=True)
        )
        rows = result.all()

        all_unit_ids = {
            uuid.UUID(str(unit_id))
            for ticket, _ in rows
            for unit_id in ticket.unit_ids or []
        }
        unit_names: dict[uuid.UUID, str] = {}
        if all_unit_ids:
            names = await self.db.execute(
                select(Unit.id, Unit.name).where(Unit.id.in_(all_unit_ids))
            )
            unit_names = dict(names.all())

        waiting = []
        for ticket, student in rows:
            ids = [uuid.UUID(str(unit_id)) for unit_id in ticket.unit_ids or []]
            waiting.append(WaitingTicket(
                id=ticket.id,
                student_id=ticket.student_id,
                student_name=student.display_name,
                unit_ids=ids,
                unit_names=[unit_names[i] for i in ids if i in unit_names],
                created_at=ticket.created_at,
            ))
        return waiting
