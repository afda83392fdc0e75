"""
Checkpoint LMS - Lesson Service
Lesson sessions, adaptive quiz answering and test result recording
"""
import logging
import random
import uuid
from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.change_feed import ChangeEvent, ChangeType, change_feed
from app.core.clock import as_utc, utcnow
from app.core.config import settings
from app.core.context import RequestContext
from app.core.database import upsert
from app.models.curriculum import Question, QuizTopic, Unit
from app.models.lesson import LessonSession, QuizAttempt, UnitScore, compute_progress_rate
from app.schemas.lesson import AnswerResult, ChoiceView, QuestionView
from app.services import quiz_queue
from app.services.errors import NotFoundError, PermissionDeniedError, ValidationError
from app.services.quiz_queue import QuestionCard, QuizQueue, TopicPools

logger = logging.getLogger(__name__)


class LessonService:
    """Runs a student through a unit."""

    def __init__(self, db: AsyncSession, rng: random.Random | None = None):
        self.db = db
        self.rng = rng or random.Random()

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def _get_unit(self, unit_id: uuid.UUID) -> Unit:
        unit = await self.db.get(Unit, unit_id)
        if not unit:
            raise NotFoundError("Unit not found")
        return unit

    async def _get_own_session(self, ctx: RequestContext, session_id: uuid.UUID) -> LessonSession:
        session = await self.db.get(LessonSession, session_id)
        if not session:
            raise NotFoundError("Lesson session not found")
        if session.student_id != ctx.user_id:
            raise PermissionDeniedError("This lesson session belongs to another student")
        return session

    async def _load_content(self, unit_id: uuid.UUID) -> tuple[TopicPools, dict[str, Question]]:
        """Topics with their questions and choices, as engine pools."""
        result = await self.db.execute(
            select(QuizTopic)
            .where(QuizTopic.unit_id == unit_id)
            .order_by(QuizTopic.created_at, QuizTopic.id)
            .options(selectinload(QuizTopic.questions).selectinload(Question.choices))
        )
        pools: TopicPools = {}
        questions: dict[str, Question] = {}
        for topic in result.scalars().all():
            cards = []
            for question in topic.questions:
                questions[str(question.id)] = question
                cards.append(QuestionCard(
                    question_id=str(question.id),
                    topic_id=str(topic.id),
                    choice_ids=tuple(str(c.id) for c in question.choices),
                    correct_choice_ids=frozenset(str(c.id) for c in question.choices if c.is_correct),
                ))
            pools[str(topic.id)] = cards
        return pools, questions

    def _stage_session_change(self, session: LessonSession, change_type: ChangeType) -> None:
        change_feed.stage(self.db, ChangeEvent(
            table=LessonSession.__tablename__,
            change_type=change_type,
            row_id=str(session.id),
            payload={
                "student_id": str(session.student_id),
                "unit_id": str(session.unit_id),
                "is_completed": session.is_completed,
            },
        ))

    # ------------------------------------------------------------------
    # Lesson flow
    # ------------------------------------------------------------------

    async def start_session(self, ctx: RequestContext, unit_id: uuid.UUID) -> LessonSession:
        """
        Begin a unit: build the quiz queue and open a session.

        Raises:
            NotFoundError: Unit does not exist
            ValidationError: Unit is a test (recorded via save_test_result)
        """
        unit = await self._get_unit(unit_id)
        if unit.is_test:
            raise ValidationError("Test units are recorded by submitting a score")

        pools, _ = await self._load_content(unit.id)
        queue = quiz_queue.build_queue(
            pools,
            per_topic=settings.QUIZ_QUESTIONS_PER_TOPIC,
            rng=self.rng,
        )

        session = LessonSession(
            student_id=ctx.user_id,
            unit_id=unit.id,
            start_time=utcnow(),
            is_completed=False,
            quiz_state=queue.to_state(),
        )
        self.db.add(session)
        await self.db.flush()
        self._stage_session_change(session, ChangeType.INSERT)

        logger.info(
            "Lesson session %s started: unit=%s questions=%d topics=%d",
            session.id, unit.id, len(queue.items), queue.total_topics,
        )
        return session

    async def current_question(self, ctx: RequestContext, session_id: uuid.UUID) -> QuestionView | None:
        """The question under the cursor, or None when the queue is done."""
        session = await self._get_own_session(ctx, session_id)
        queue = QuizQueue.from_state(session.quiz_state)
        item = queue.current_item
        if item is None:
            return None

        _, questions = await self._load_content(session.unit_id)
        question = questions.get(item.question_id)
        if question is None:
            raise NotFoundError("Question is no longer part of this unit")

        by_id = {str(c.id): c for c in question.choices}
        return QuestionView(
            position=queue.cursor,
            queue_length=len(queue.items),
            question_id=question.id,
            topic_id=question.topic_id,
            text=question.text,
            remedial=item.remedial,
            answered=item.answered,
            choices=[
                ChoiceView(id=by_id[cid].id, answer_text=by_id[cid].answer_text)
                for cid in item.choice_order
                if cid in by_id
            ],
            cleared_topics=queue.cleared_count,
            total_topics=queue.total_topics,
        )

    async def submit_answer(
        self,
        ctx: RequestContext,
        session_id: uuid.UUID,
        position: int,
        choice_id: uuid.UUID,
    ) -> AnswerResult:
        """
        Grade one answer, record the attempt and refresh the unit score.

        Raises:
            NotFoundError / PermissionDeniedError: Session missing or not the caller's
            ValidationError: Session finished, stale position or foreign choice
            AlreadyAnsweredError: Same position submitted twice
        """
        session = await self._get_own_session(ctx, session_id)
        if session.is_completed:
            raise ValidationError("Lesson session already finished")

        queue = QuizQueue.from_state(session.quiz_state)
        pools, questions = await self._load_content(session.unit_id)
        outcome = quiz_queue.submit_answer(queue, position, str(choice_id), pools, self.rng)

        question = questions[outcome.item.question_id]
        chosen = next(c for c in question.choices if str(c.id) == outcome.chosen_choice_id)

        self.db.add(QuizAttempt(
            session_id=session.id,
            student_id=ctx.user_id,
            question_id=question.id,
            choice_id=chosen.id,
            is_correct=outcome.is_correct,
            attempted_at=utcnow(),
        ))
        session.quiz_state = queue.to_state()

        progress_rate = compute_progress_rate(queue.cleared_count, queue.total_topics)
        await upsert(
            self.db,
            UnitScore,
            {
                "student_id": ctx.user_id,
                "unit_id": session.unit_id,
                "cleared_topics": queue.cleared_count,
                "total_topics": queue.total_topics,
                "progress_rate": progress_rate,
                "last_updated": utcnow(),
            },
            conflict_keys=("student_id", "unit_id"),
            update_keys=("cleared_topics", "total_topics", "progress_rate", "last_updated"),
        )
        await self.db.flush()

        return AnswerResult(
            position=position,
            is_correct=outcome.is_correct,
            correct_choice_ids=[c.id for c in question.choices if c.is_correct],
            explanation=chosen.explanation,
            appended=outcome.appended,
            queue_length=len(queue.items),
            cleared_topics=queue.cleared_count,
            total_topics=queue.total_topics,
            progress_rate=progress_rate,
        )

    async def advance(self, ctx: RequestContext, session_id: uuid.UUID) -> LessonSession:
        """Move to the next question; past the last one the session finishes."""
        session = await self._get_own_session(ctx, session_id)
        if session.is_completed:
            return session

        queue = QuizQueue.from_state(session.quiz_state)
        finished = quiz_queue.advance(queue)
        session.quiz_state = queue.to_state()
        if finished:
            self._finish(session)
        await self.db.flush()
        return session

    async def complete_session(self, ctx: RequestContext, session_id: uuid.UUID) -> LessonSession:
        """
        Finish a session whose unit has nothing left to answer (video end).

        Idempotent for sessions already finished.
        """
        session = await self._get_own_session(ctx, session_id)
        if session.is_completed:
            return session

        queue = QuizQueue.from_state(session.quiz_state)
        if not queue.is_exhausted:
            raise ValidationError("Quiz questions are still pending for this session")

        self._finish(session)
        await self.db.flush()
        return session

    def _finish(self, session: LessonSession) -> None:
        now = utcnow()
        session.end_time = now
        session.duration_seconds = max(0, int((now - as_utc(session.start_time)).total_seconds()))
        session.is_completed = True
        self._stage_session_change(session, ChangeType.UPDATE)
        logger.info(
            "Lesson session %s finished after %ss", session.id, session.duration_seconds
        )

    async def save_test_result(
        self,
        ctx: RequestContext,
        unit_id: uuid.UUID,
        score: int,
        duration_seconds: int,
    ) -> UnitScore:
        """
        Record a paper/digital test as a completed session plus its score.

        Raises:
            NotFoundError: Unit does not exist
            ValidationError: Not a test unit, score outside 0..max_score or
                negative duration
        """
        unit = await self._get_unit(unit_id)
        if not unit.is_test:
            raise ValidationError("Only test units accept a score")

        max_score = unit.effective_max_score
        if score < 0 or score > max_score:
            raise ValidationError(f"Score must be between 0 and {max_score}")
        if duration_seconds < 0:
            raise ValidationError("Duration cannot be negative")

        now = utcnow()
        session = LessonSession(
            student_id=ctx.user_id,
            unit_id=unit.id,
            start_time=now - timedelta(seconds=duration_seconds),
            end_time=now,
            duration_seconds=duration_seconds,
            is_completed=True,
        )
        self.db.add(session)
        await self.db.flush()
        self._stage_session_change(session, ChangeType.INSERT)

        # A submitted test counts as its single topic cleared
        await upsert(
            self.db,
            UnitScore,
            {
                "student_id": ctx.user_id,
                "unit_id": unit.id,
                "cleared_topics": 1,
                "total_topics": 1,
                "progress_rate": compute_progress_rate(1, 1),
                "raw_score": score,
                "max_score": max_score,
                "duration_seconds": duration_seconds,
                "last_updated": now,
            },
            conflict_keys=("student_id", "unit_id"),
            update_keys=(
                "cleared_topics", "total_topics", "progress_rate",
                "raw_score", "max_score", "duration_seconds", "last_updated",
            ),
        )
        await self.db.flush()

        logger.info("Test result saved: unit=%s score=%d/%d", unit.id, score, max_score)
        return await self.get_unit_score(ctx, unit.id)

    async def get_unit_score(self, ctx: RequestContext, unit_id: uuid.UUID) -> UnitScore:
        result = await self.db.execute(
            select(UnitScore)
            .where(UnitScore.student_id == ctx.user_id, UnitScore.unit_id == unit_id)
            .execution_options(populate_existing=True)
        )
        score = result.scalar_one_or_none()
        if not score:
            raise NotFoundError("No score recorded for this unit")
        return score
