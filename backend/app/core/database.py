"""
Checkpoint LMS - Database Configuration
Async SQLAlchemy engine, session management, upsert and compare-and-swap
"""
from collections.abc import AsyncGenerator, Iterable
from typing import Any

from sqlalchemy import update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.core.change_feed import change_feed
from app.core.config import settings

# Create async engine
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    pool_pre_ping=True,
    pool_size=10,
    max_overflow=20,
)

# Session factory
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for getting async database sessions.

    Change events staged by services are published only after the
    transaction commits, so observers that re-fetch see the new state.

    Usage:
        @app.get("/items")
        async def get_items(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            change_feed.discard_staged(session)
            raise
        else:
            await change_feed.publish_staged(session)
        finally:
            await session.close()


async def init_db() -> None:
    """Initialize database tables."""
    # Register all models on the metadata
    import app.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def upsert(
    db: AsyncSession,
    model: type[Base],
    values: dict[str, Any],
    conflict_keys: Iterable[str],
    update_keys: Iterable[str],
) -> None:
    """
    Insert a row or update it in place when the conflict key already exists.

    Args:
        db: Session to execute on
        model: Mapped class of the target table
        values: Full row values for the insert
        conflict_keys: Columns of the unique constraint to resolve on
        update_keys: Columns overwritten from ``values`` on conflict
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(model).values(**values)
    elif dialect == "sqlite":
        stmt = sqlite.insert(model).values(**values)
    else:
        raise NotImplementedError(f"Upsert is not supported for dialect {dialect!r}")

    stmt = stmt.on_conflict_do_update(
        index_elements=list(conflict_keys),
        set_={key: stmt.excluded[key] for key in update_keys},
    )
    await db.execute(stmt)


async def compare_and_swap_status(
    db: AsyncSession,
    model: type[Base],
    row_id: Any,
    expected: str,
    values: dict[str, Any],
    *criteria: Any,
) -> bool:
    """
    Conditionally update one row, guarded by its current status.

    Issues ``UPDATE ... WHERE id = :row_id AND status = :expected`` (plus any
    extra ``criteria``) and reports whether exactly one row changed. A
    ``False`` result means another writer moved the row first; callers must
    not trust any status they read before this call.

    Returns:
        True if the row was updated
    """
    stmt = (
        update(model)
        .where(model.id == row_id, model.status == expected, *criteria)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    return result.rowcount == 1
