"""
Database connection and session management
"""

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from app.config import settings

engine = create_async_engine(
    settings.database_url,
    echo=settings.database_echo,
    pool_pre_ping=True,
)

# Objects stay readable after commit; services refresh explicitly after conditional writes
SessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def get_db():
    """Yield a database session for a request"""
    async with SessionLocal() as session:
        yield session


async def init_db():
    """Create all tables (development only, migrations own production schema)"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
