"""
Checkpoint LMS - Test Configuration
Pytest fixtures and configuration for testing
"""
import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.api.deps import get_session_factory
from app.core.change_feed import change_feed
from app.core.context import RequestContext
from app.core.database import Base, get_db
from app.core.security import create_access_token
from app.main import app
from app.models.curriculum import Choice, Question, QuizTopic, Section, Subject, Unit, UnitType
from app.models.dialogue import Instructor, InstructorStatus
from app.models.user import User, UserRole


@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """A fresh SQLite database file per test."""
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        echo=False,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client whose requests each get their own session on the test database."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                change_feed.discard_staged(session)
                raise
            else:
                await change_feed.publish_staged(session)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


# ============================================================================
# Identities
# ============================================================================

def context_for(user: User) -> RequestContext:
    return RequestContext(user_id=user.id, role=UserRole(user.role))


@pytest.fixture
def ctx_for() -> Callable[[User], RequestContext]:
    """Request context of a stored user."""
    return context_for


@pytest.fixture
def auth_headers() -> Callable[[User], dict[str, str]]:
    """Bearer headers as the identity provider would issue them."""
    def _headers(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user.id)}"}
    return _headers


@pytest.fixture
def make_user(db_session: AsyncSession) -> Callable[..., Awaitable[User]]:
    async def _make(role: UserRole = UserRole.STUDENT, name: str | None = None) -> User:
        user = User(
            email=f"{role.value}-{uuid.uuid4().hex[:8]}@example.com",
            name=name,
            role=role.value,
        )
        db_session.add(user)
        await db_session.commit()
        return user
    return _make


@pytest.fixture
def make_instructor(db_session: AsyncSession, make_user) -> Callable[..., Awaitable[User]]:
    """An instructor user with a registered room."""
    async def _make(
        status: InstructorStatus = InstructorStatus.IDLE,
        name: str | None = None,
    ) -> User:
        user = await make_user(UserRole.INSTRUCTOR, name=name)
        db_session.add(Instructor(
            id=user.id,
            assigned_room_name=f"room-{user.id.hex[:6]}",
            status=status.value,
        ))
        await db_session.commit()
        return user
    return _make


# ============================================================================
# Content
# ============================================================================

@pytest.fixture
def make_unit(db_session: AsyncSession) -> Callable[..., Awaitable[Unit]]:
    """
    A unit with quiz content.

    ``topics`` lists the number of questions per topic; every question has
    one correct and one wrong choice.
    """
    async def _make(
        topics: list[int] | None = None,
        name: str = "Unit",
        checkpoint: bool = False,
        unit_type: UnitType = UnitType.VIDEO,
        max_score: int | None = None,
    ) -> Unit:
        subject = Subject(name="Mathematics")
        section = Section(subject=subject, name="Fractions")
        unit = Unit(
            section=section,
            name=name,
            unit_type=unit_type.value,
            is_dialogue_checkpoint=checkpoint,
            max_score=max_score,
        )
        for t_index, question_count in enumerate(topics or []):
            topic = QuizTopic(label=f"Topic {t_index + 1}")
            for q_index in range(question_count):
                topic.questions.append(Question(
                    text=f"T{t_index + 1} Q{q_index + 1}",
                    choices=[
                        Choice(answer_text="right", is_correct=True, explanation="Well done"),
                        Choice(answer_text="wrong", is_correct=False, explanation="Try again"),
                    ],
                ))
            unit.quiz_topics.append(topic)
        db_session.add(subject)
        await db_session.commit()
        return unit
    return _make


@pytest.fixture
def answer_key(db_session: AsyncSession) -> Callable[[uuid.UUID], Awaitable[dict[str, uuid.UUID]]]:
    """Correct and wrong choice ids of a question."""
    async def _key(question_id: uuid.UUID) -> dict[str, uuid.UUID]:
        result = await db_session.execute(
            select(Choice).where(Choice.question_id == question_id)
        )
        choices = result.scalars().all()
        return {
            "right": next(c.id for c in choices if c.is_correct),
            "wrong": next(c.id for c in choices if not c.is_correct),
        }
    return _key


@pytest.fixture
def quiz_payload() -> dict[str, Any]:
    """Nested import payload for two topics."""
    return {
        "topics": [
            {
                "label": "Adding fractions",
                "questions": [
                    {
                        "text": "1/4 + 1/4 = ?",
                        "choices": [
                            {"answer_text": "1/2", "is_correct": True},
                            {"answer_text": "2/8", "is_correct": False, "explanation": "Simplify"},
                        ],
                    },
                ],
            },
            {
                "label": "Comparing fractions",
                "questions": [
                    {
                        "text": "Which is larger?",
                        "choices": [
                            {"answer_text": "2/3", "is_correct": True},
                            {"answer_text": "3/5", "is_correct": False},
                        ],
                    },
                    {
                        "text": "Which is smaller?",
                        "choices": [
                            {"answer_text": "1/8", "is_correct": True},
                            {"answer_text": "1/7", "is_correct": False},
                        ],
                    },
                ],
            },
        ]
    }
