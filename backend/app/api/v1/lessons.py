"""
Checkpoint LMS - Lessons API
Endpoints for lesson sessions, quiz answers and test results
"""
from uuid import UUID

from fastapi import APIRouter, status

from app.api.deps import DbSession, StudentContext, http_error
from app.schemas.lesson import (
    AdvanceResponse,
    AnswerRequest,
    AnswerResult,
    LessonSessionResponse,
    QuestionView,
    StartSessionRequest,
    StartSessionResponse,
    TestScoreRequest,
    UnitScoreResponse,
)
from app.services.errors import DomainError
from app.services.lesson import LessonService

router = APIRouter(prefix="/lessons", tags=["Lessons"])


@router.post(
    "/sessions",
    response_model=StartSessionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start a unit",
)
async def start_session(
    request: StartSessionRequest,
    ctx: StudentContext,
    db: DbSession,
) -> StartSessionResponse:
    """Open a lesson session and return the first quiz question, if any."""
    service = LessonService(db)
    try:
        session = await service.start_session(ctx, request.unit_id)
        question = await service.current_question(ctx, session.id)
    except DomainError as e:
        raise http_error(e)

    return StartSessionResponse(
        session=LessonSessionResponse.model_validate(session),
        question=question,
    )


@router.get("/sessions/{session_id}/question", response_model=QuestionView | None)
async def get_current_question(
    session_id: UUID,
    ctx: StudentContext,
    db: DbSession,
):
    """The question under the cursor; null once the queue is done."""
    try:
        return await LessonService(db).current_question(ctx, session_id)
    except DomainError as e:
        raise http_error(e)


@router.post("/sessions/{session_id}/answers", response_model=AnswerResult)
async def submit_answer(
    session_id: UUID,
    answer: AnswerRequest,
    ctx: StudentContext,
    db: DbSession,
) -> AnswerResult:
    """Grade the answer for the current question."""
    try:
        return await LessonService(db).submit_answer(
            ctx, session_id, answer.position, answer.choice_id
        )
    except DomainError as e:
        raise http_error(e)


@router.post("/sessions/{session_id}/advance", response_model=AdvanceResponse)
async def advance(
    session_id: UUID,
    ctx: StudentContext,
    db: DbSession,
) -> AdvanceResponse:
    """Move to the next question; the session finishes after the last one."""
    service = LessonService(db)
    try:
        session = await service.advance(ctx, session_id)
        question = await service.current_question(ctx, session_id)
    except DomainError as e:
        raise http_error(e)

    return AdvanceResponse(
        session=LessonSessionResponse.model_validate(session),
        question=question,
    )


@router.post("/sessions/{session_id}/complete", response_model=LessonSessionResponse)
async def complete_session(
    session_id: UUID,
    ctx: StudentContext,
    db: DbSession,
) -> LessonSessionResponse:
    """Finish a session with nothing left to answer (video ended)."""
    try:
        session = await LessonService(db).complete_session(ctx, session_id)
    except DomainError as e:
        raise http_error(e)
    return LessonSessionResponse.model_validate(session)


@router.post(
    "/tests",
    response_model=UnitScoreResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit a test score",
)
async def save_test_result(
    result: TestScoreRequest,
    ctx: StudentContext,
    db: DbSession,
) -> UnitScoreResponse:
    try:
        score = await LessonService(db).save_test_result(
            ctx, result.unit_id, result.score, result.duration_seconds
        )
    except DomainError as e:
        raise http_error(e)
    return UnitScoreResponse.model_validate(score)


@router.get("/units/{unit_id}/score", response_model=UnitScoreResponse)
async def get_unit_score(
    unit_id: UUID,
    ctx: StudentContext,
    db: DbSession,
) -> UnitScoreResponse:
    try:
        score = await LessonService(db).get_unit_score(ctx, unit_id)
    except DomainError as e:
        raise http_error(e)
    return UnitScoreResponse.model_validate(score)
