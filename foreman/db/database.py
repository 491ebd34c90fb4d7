"""Async SQLAlchemy engine and session factory."""

from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from foreman.config import config

engine = create_async_engine(config.database_url, echo=config.debug)
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_session() -> AsyncSession:
    """Yield a session scoped to one unit of work."""
    async with async_session() as session:
        yield session


async def init_db():
    """Create all tables. Called at worker startup and by `foreman init-db`."""
    from foreman.db.models import Base
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
