"""
SQLAlchemy async session setup for the intake backend.
"""

import os
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Get database URL from environment
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./intake.db")

# Convert postgresql:// to postgresql+asyncpg:// for SQLAlchemy async
if DATABASE_URL.startswith("postgresql://"):
    DATABASE_URL = DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://", 1)

async_engine = create_async_engine(
    DATABASE_URL,
    echo=False,  # Set to True for SQL query logging
)

AsyncSessionLocal = async_sessionmaker(
    async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_async_session():
    """
    Dependency function to get database session.

    Usage in FastAPI endpoints:
        @router.get("/endpoint")
        async def my_endpoint(db: AsyncSession = Depends(get_async_session)):
            ...
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_async_session_context():
    """
    Session for background work (extraction workers, final aggregation).

        async with get_async_session_context() as db:
            ...
    """
    return AsyncSessionLocal()
