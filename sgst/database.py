from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from config.settings import settings
import logging

logger = logging.getLogger(__name__)


def _engine_options(database_url: str) -> dict:
    """Pool options; SQLite drivers do not accept pool sizing"""
    options = {
        "echo": settings.DEBUG,
        "pool_pre_ping": True,
    }
    if not database_url.startswith("sqlite"):
        options["pool_size"] = settings.DATABASE_POOL_SIZE
        options["max_overflow"] = settings.DATABASE_MAX_OVERFLOW
    return options


# Create async engine
engine = create_async_engine(settings.DATABASE_URL, **_engine_options(settings.DATABASE_URL))

# Create async session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False
)


async def get_db() -> AsyncSession:
    """
    Dependency for getting database session

    Usage:
        @router.get("/endpoint")
        async def endpoint(db: AsyncSession = Depends(get_db)):
            # Use db here
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db():
    """Initialize database tables"""
    from sgst.models.database import Base
    import sgst.models.replenishment  # noqa: F401
    import sgst.models.purchasing  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Database initialized successfully")


async def drop_db():
    """Drop all database tables (use with caution!)"""
    from sgst.models.database import Base
    import sgst.models.replenishment  # noqa: F401
    import sgst.models.purchasing  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    logger.warning("All database tables dropped")
