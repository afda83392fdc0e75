"""
Checkpoint LMS - Dialogue API
Unit completion decisions and outstanding dialogue debt
"""
from fastapi import APIRouter

from app.api.deps import DbSession, StudentContext, http_error
from app.schemas.dialogue import PendingDialogue, UnitCompletionRequest, UnitCompletionResult
from app.services.dialogue import DialogueService
from app.services.errors import DomainError

router = APIRouter(prefix="/dialogue", tags=["Dialogue"])


@router.post("/unit-completions", response_model=UnitCompletionResult)
async def handle_unit_completion(
    request: UnitCompletionRequest,
    ctx: StudentContext,
    db: DbSession,
) -> UnitCompletionResult:
    """
    Report a finished unit.

    Returns ``prompt_dialogue`` when the student should be offered a live
    dialogue now, otherwise ``proceed_next``.
    """
    try:
        return await DialogueService(db).handle_unit_completion(ctx, request.unit_id)
    except DomainError as e:
        raise http_error(e)


@router.get("/pending", response_model=list[PendingDialogue])
async def list_pending_dialogues(
    ctx: StudentContext,
    db: DbSession,
) -> list[PendingDialogue]:
    return await DialogueService(db).pending_dialogues(ctx)
