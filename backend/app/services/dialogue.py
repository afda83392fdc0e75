"""
Checkpoint LMS - Dialogue Checkpoint Service
Decides at unit completion whether to offer a live dialogue with an instructor
"""
import logging
import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.change_feed import ChangeEvent, ChangeType, change_feed
from app.core.clock import utcnow
from app.core.context import RequestContext
from app.core.database import upsert
from app.models.curriculum import Unit
from app.models.dialogue import (
    Instructor,
    InstructorStatus,
    ProgressStatus,
    StudentProgress,
    SupportTicket,
    TicketStatus,
)
from app.schemas.dialogue import DialogueAction, PendingDialogue, UnitCompletionResult
from app.services.errors import NotFoundError

logger = logging.getLogger(__name__)


class DialogueService:
    """
    Tracks dialogue debt and gates prompting on instructor supply.

    Debt is created when a checkpoint unit is completed and cleared only
    by TicketService.complete_ticket. Prompting is a simple admission
    control: only offer a dialogue while idle instructors outnumber
    waiting tickets.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def handle_unit_completion(
        self,
        ctx: RequestContext,
        unit_id: uuid.UUID,
    ) -> UnitCompletionResult:
        """
        Record a finished unit and decide between prompting and moving on.

        Args:
            ctx: Calling student
            unit_id: Unit that was just finished

        Returns:
            ``prompt_dialogue`` with the outstanding units when there is
            spare instructor capacity, otherwise ``proceed_next``. Skipping
            never clears debt.

        Raises:
            NotFoundError: Unit does not exist
        """
        unit = await self.db.get(Unit, unit_id)
        if not unit:
            raise NotFoundError("Unit not found")

        if not unit.is_dialogue_checkpoint:
            return UnitCompletionResult(action=DialogueAction.PROCEED_NEXT)

        await self._record_checkpoint_completion(ctx.user_id, unit.id)

        pending = await self.pending_dialogues(ctx)
        if not pending:
            return UnitCompletionResult(action=DialogueAction.PROCEED_NEXT)

        pending_ids = [p.unit_id for p in pending]
        pending_names = [p.unit_name for p in pending]

        if await self.has_opportunity():
            logger.info(
                "Prompting dialogue for student %s (%d pending units)",
                ctx.user_id, len(pending),
            )
            return UnitCompletionResult(
                action=DialogueAction.PROMPT_DIALOGUE,
                pending_unit_ids=pending_ids,
                pending_unit_names=pending_names,
            )

        logger.info(
            "No instructor capacity; keeping %d pending dialogues for student %s",
            len(pending), ctx.user_id,
        )
        return UnitCompletionResult(
            action=DialogueAction.PROCEED_NEXT,
            pending_unit_ids=pending_ids,
            pending_unit_names=pending_names,
        )

    async def _record_checkpoint_completion(self, student_id: uuid.UUID, unit_id: uuid.UUID) -> None:
        # dialogue_cleared is only set on insert; a repeat completion keeps it
        now = utcnow()
        await upsert(
            self.db,
            StudentProgress,
            {
                "student_id": student_id,
                "unit_id": unit_id,
                "status": ProgressStatus.COMPLETED.value,
                "dialogue_cleared": False,
                "completed_at": now,
                "created_at": now,
            },
            conflict_keys=("student_id", "unit_id"),
            update_keys=("status", "completed_at"),
        )
        change_feed.stage(self.db, ChangeEvent(
            table=StudentProgress.__tablename__,
            change_type=ChangeType.UPDATE,
            row_id=f"{student_id}:{unit_id}",
            payload={"student_id": str(student_id), "unit_id": str(unit_id)},
        ))

    async def pending_dialogues(self, ctx: RequestContext) -> list[PendingDialogue]:
        """Checkpoint units the student completed but has not yet explained."""
        result = await self.db.execute(
            select(StudentProgress, Unit)
            .join(Unit, Unit.id == StudentProgress.unit_id)
            .where(
                StudentProgress.student_id == ctx.user_id,
                StudentProgress.dialogue_cleared.is_(False),
                Unit.is_dialogue_checkpoint.is_(True),
            )
            .order_by(StudentProgress.completed_at, Unit.sort_order)
            .execution_options(populate_existing=True)
        )
        return [
            PendingDialogue(
                unit_id=unit.id,
                unit_name=unit.name,
                completed_at=progress.completed_at,
            )
            for progress, unit in result.all()
        ]

    async def has_opportunity(self) -> bool:
        """True iff idle instructors strictly outnumber waiting tickets."""
        idle_count = await self.db.scalar(
            select(func.count())
            .select_from(Instructor)
            .where(Instructor.status == InstructorStatus.IDLE.value)
        )
        waiting_count = await self.db.scalar(
            select(func.count())
            .select_from(SupportTicket)
            .where(SupportTicket.status == TicketStatus.WAITING.value)
        )
        return (idle_count or 0) > (waiting_count or 0)
