"""
Checkpoint LMS - Quiz Authoring API
Admin endpoints for importing and editing quiz content
"""
from uuid import UUID

from fastapi import APIRouter, status

from app.api.deps import AdminContext, DbSession, http_error
from app.schemas.curriculum import (
    ChoiceResponse,
    ChoiceUpdate,
    QuizImportRequest,
    QuizImportResult,
    TopicResponse,
)
from app.services.errors import DomainError
from app.services.quiz_authoring import QuizAuthoringService

router = APIRouter(prefix="/quizzes", tags=["Quizzes"])


@router.get("/units/{unit_id}/topics", response_model=list[TopicResponse])
async def list_topics(unit_id: UUID, ctx: AdminContext, db: DbSession):
    try:
        return await QuizAuthoringService(db).list_topics(ctx, unit_id)
    except DomainError as e:
        raise http_error(e)


@router.post(
    "/units/{unit_id}/import",
    response_model=QuizImportResult,
    status_code=status.HTTP_201_CREATED,
    summary="Bulk import quiz content",
)
async def import_quiz_data(
    unit_id: UUID,
    payload: QuizImportRequest,
    ctx: AdminContext,
    db: DbSession,
) -> QuizImportResult:
    """Create topics, questions and choices from a nested payload."""
    try:
        return await QuizAuthoringService(db).import_quiz_data(ctx, unit_id, payload.topics)
    except DomainError as e:
        raise http_error(e)


@router.patch("/choices/{choice_id}", response_model=ChoiceResponse)
async def update_choice(
    choice_id: UUID,
    changes: ChoiceUpdate,
    ctx: AdminContext,
    db: DbSession,
) -> ChoiceResponse:
    try:
        choice = await QuizAuthoringService(db).update_choice(ctx, choice_id, changes)
    except DomainError as e:
        raise http_error(e)
    return ChoiceResponse.model_validate(choice)


@router.delete("/choices/{choice_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_choice(choice_id: UUID, ctx: AdminContext, db: DbSession) -> None:
    try:
        await QuizAuthoringService(db).delete_choice(ctx, choice_id)
    except DomainError as e:
        raise http_error(e)


@router.delete("/topics/{topic_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_topic(topic_id: UUID, ctx: AdminContext, db: DbSession) -> None:
    try:
        await QuizAuthoringService(db).delete_topic(ctx, topic_id)
    except DomainError as e:
        raise http_error(e)
