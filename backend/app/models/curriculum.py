"""
Checkpoint LMS - Curriculum Models
SQLAlchemy models for subjects, sections, units and quiz content
"""
import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.clock import utcnow
from app.core.database import Base


class UnitType(str, Enum):
    """How a unit is studied."""
    VIDEO = "video"
    TEST = "test"


DEFAULT_MAX_SCORE = 100


class Subject(Base):
    """Academic subjects (Math, English, etc.)."""

    __tablename__ = "subjects"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100))
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    sections: Mapped[list["Section"]] = relationship(
        "Section",
        back_populates="subject",
        cascade="all, delete-orphan"
    )


class Section(Base):
    """A chapter of a subject."""

    __tablename__ = "sections"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    subject_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("subjects.id", ondelete="CASCADE"),
        index=True
    )
    name: Mapped[str] = mapped_column(String(200))
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    subject: Mapped["Subject"] = relationship("Subject", back_populates="sections")
    units: Mapped[list["Unit"]] = relationship(
        "Unit",
        back_populates="section",
        cascade="all, delete-orphan"
    )


class Unit(Base):
    """A single lesson: a video with quizzes, or a paper/digital test."""

    __tablename__ = "units"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    section_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("sections.id", ondelete="CASCADE"),
        index=True
    )

    name: Mapped[str] = mapped_column(String(200))
    unit_type: Mapped[str] = mapped_column(String(20), default=UnitType.VIDEO.value)
    video_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    intro: Mapped[str | None] = mapped_column(Text, nullable=True)
    outro: Mapped[str | None] = mapped_column(Text, nullable=True)
    max_score: Mapped[int | None] = mapped_column(Integer, nullable=True)  # test units only

    # Completing a checkpoint unit creates dialogue debt
    is_dialogue_checkpoint: Mapped[bool] = mapped_column(Boolean, default=False)

    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    section: Mapped["Section"] = relationship("Section", back_populates="units")
    quiz_topics: Mapped[list["QuizTopic"]] = relationship(
        "QuizTopic",
        back_populates="unit",
        cascade="all, delete-orphan"
    )

    @property
    def is_test(self) -> bool:
        return self.unit_type == UnitType.TEST

    @property
    def effective_max_score(self) -> int:
        return self.max_score or DEFAULT_MAX_SCORE


class QuizTopic(Base):
    """Groups interchangeable questions testing one skill of a unit."""

    __tablename__ = "quiz_topics"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    unit_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("units.id", ondelete="CASCADE"),
        index=True
    )
    label: Mapped[str] = mapped_column(String(200))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    unit: Mapped["Unit"] = relationship("Unit", back_populates="quiz_topics")
    questions: Mapped[list["Question"]] = relationship(
        "Question",
        back_populates="topic",
        cascade="all, delete-orphan"
    )


class Question(Base):
    """A multiple-choice question."""

    __tablename__ = "questions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    topic_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("quiz_topics.id", ondelete="CASCADE"),
        index=True
    )
    text: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    topic: Mapped["QuizTopic"] = relationship("QuizTopic", back_populates="questions")
    choices: Mapped[list["Choice"]] = relationship(
        "Choice",
        back_populates="question",
        cascade="all, delete-orphan"
    )


class Choice(Base):
    """An answer option. At least one per question is correct."""

    __tablename__ = "choices"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    question_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("questions.id", ondelete="CASCADE"),
        index=True
    )
    answer_text: Mapped[str] = mapped_column(Text)
    is_correct: Mapped[bool] = mapped_column(Boolean, default=False)
    explanation: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    question: Mapped["Question"] = relationship("Question", back_populates="choices")
