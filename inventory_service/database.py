from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from . import config
import logging

logger = logging.getLogger(__name__)

try:
    logger.info(f"Creating database engine for {make_url(config.DATABASE_URL).render_as_string(hide_password=True)}")
    engine = create_async_engine(config.DATABASE_URL, echo=config.DATABASE_ECHO, pool_pre_ping=True)
    # Sessions outlive their commits: the order store hands loaded orders to notifications
    AsyncSessionFactory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
except Exception as e:
    logger.error(f"FATAL: Failed to create database engine or session factory: {e}")
    raise RuntimeError(f"Could not initialize database connection: {e}")

# Shared by the inventory ledger and the order store: one storefront database
Base = declarative_base()


async def create_tables() -> None:
    """Creates any missing tables for every model registered on Base."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables checked/created.")


async def dispose_engine() -> None:
    await engine.dispose()
    logger.info("Database engine disposed.")


async def get_db_session() -> AsyncSession:
    """FastAPI dependency to inject DB session. Callers commit; errors roll back."""
    async with AsyncSessionFactory() as session:
        try:
            yield session
        except Exception as e:
            logger.error(f"Rolling back session due to error: {e}")
            await session.rollback()
            raise
