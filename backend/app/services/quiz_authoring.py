"""
Checkpoint LMS - Quiz Authoring Service
Bulk import and editing of quiz topics, questions and choices
"""
import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.context import RequestContext
from app.models.curriculum import Choice, Question, QuizTopic, Unit
from app.schemas.curriculum import ChoiceUpdate, QuizImportResult, TopicImport
from app.services.errors import NotFoundError, PermissionDeniedError, ValidationError

logger = logging.getLogger(__name__)


class QuizAuthoringService:
    """
    Keeps every question answerable: no write may leave a question
    without a correct choice.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    def _require_admin(self, ctx: RequestContext) -> None:
        if not ctx.is_admin:
            raise PermissionDeniedError("Only admins can edit quiz content")

    async def _get_choice(self, choice_id: uuid.UUID) -> Choice:
        result = await self.db.execute(
            select(Choice)
            .where(Choice.id == choice_id)
            .options(selectinload(Choice.question).selectinload(Question.choices))
        )
        choice = result.scalar_one_or_none()
        if not choice:
            raise NotFoundError("Choice not found")
        return choice

    async def list_topics(self, ctx: RequestContext, unit_id: uuid.UUID) -> list[QuizTopic]:
        self._require_admin(ctx)
        result = await self.db.execute(
            select(QuizTopic)
            .where(QuizTopic.unit_id == unit_id)
            .order_by(QuizTopic.created_at, QuizTopic.id)
            .options(selectinload(QuizTopic.questions).selectinload(Question.choices))
        )
        return list(result.scalars().all())

    async def import_quiz_data(
        self,
        ctx: RequestContext,
        unit_id: uuid.UUID,
        topics: list[TopicImport],
    ) -> QuizImportResult:
        """
        Create topics, questions and choices for a unit in one go.

        The whole payload is checked before anything is written, so a bad
        question anywhere rejects the import.

        Raises:
            PermissionDeniedError: Caller is not an admin
            NotFoundError: Unit does not exist
            ValidationError: A question without choices or without a
                correct choice
        """
        self._require_admin(ctx)
        unit = await self.db.get(Unit, unit_id)
        if not unit:
            raise NotFoundError("Unit not found")
        if not topics:
            raise ValidationError("At least one topic is required")

        for t_index, topic in enumerate(topics):
            for q_index, question in enumerate(topic.questions):
                where = f"topic {t_index + 1} ({topic.label}), question {q_index + 1}"
                if not question.choices:
                    raise ValidationError(f"{where} has no choices")
                if not any(choice.is_correct for choice in question.choices):
                    raise ValidationError(f"{where} has no correct choice")

        topic_ids = []
        question_count = choice_count = 0
        for topic in topics:
            quiz_topic = QuizTopic(unit_id=unit.id, label=topic.label)
            for question in topic.questions:
                quiz_topic.questions.append(Question(
                    text=question.text,
                    choices=[
                        Choice(
                            answer_text=choice.answer_text,
                            is_correct=choice.is_correct,
                            explanation=choice.explanation,
                        )
                        for choice in question.choices
                    ],
                ))
                question_count += 1
                choice_count += len(question.choices)
            self.db.add(quiz_topic)
            await self.db.flush()
            topic_ids.append(quiz_topic.id)

        logger.info(
            "Imported %d topics / %d questions into unit %s",
            len(topic_ids), question_count, unit.id,
        )
        return QuizImportResult(
            unit_id=unit.id,
            topic_ids=topic_ids,
            topics_created=len(topic_ids),
            questions_created=question_count,
            choices_created=choice_count,
        )

    async def update_choice(
        self,
        ctx: RequestContext,
        choice_id: uuid.UUID,
        changes: ChoiceUpdate,
    ) -> Choice:
        """Edit a choice; un-marking the last correct choice is rejected."""
        self._require_admin(ctx)
        choice = await self._get_choice(choice_id)

        if changes.is_correct is False and choice.is_correct:
            others_correct = [
                c for c in choice.question.choices if c.id != choice.id and c.is_correct
            ]
            if not others_correct:
                raise ValidationError("A question must keep at least one correct choice")

        data = changes.model_dump(exclude_unset=True)
        for field, value in data.items():
            if field == "answer_text" and value is None:
                continue
            if field == "is_correct" and value is None:
                continue
            setattr(choice, field, value)

        await self.db.flush()
        return choice

    async def delete_choice(self, ctx: RequestContext, choice_id: uuid.UUID) -> None:
        """Remove a choice unless it is the question's last correct one."""
        self._require_admin(ctx)
        choice = await self._get_choice(choice_id)

        remaining = [c for c in choice.question.choices if c.id != choice.id]
        if choice.is_correct and not any(c.is_correct for c in remaining):
            raise ValidationError("A question must keep at least one correct choice")

        await self.db.delete(choice)
        await self.db.flush()

    async def delete_topic(self, ctx: RequestContext, topic_id: uuid.UUID) -> None:
        """Remove a topic with all its questions and choices."""
        self._require_admin(ctx)
        result = await self.db.execute(
            select(QuizTopic)
            .where(QuizTopic.id == topic_id)
            .options(selectinload(QuizTopic.questions).selectinload(Question.choices))
        )
        topic = result.scalar_one_or_none()
        if not topic:
            raise NotFoundError("Topic not found")

        await self.db.delete(topic)
        await self.db.flush()
        logger.info("Deleted quiz topic %s", topic_id)
