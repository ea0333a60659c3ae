from __future__ import annotations
from typing import AsyncGenerator, Optional
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from redis.asyncio import Redis
from sellerledger.config import settings
from sellerledger.utils.logger import get_loggers
logger = get_loggers("Database")


class Base(DeclarativeBase):
    pass


engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.ECHO_SQL,
    pool_size=settings.DB_POOL_SIZE,
    max_overflow=settings.DB_MAX_OVERFLOW,
    pool_pre_ping=True,
    pool_recycle=settings.DB_POOL_RECYCLE,
)
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
    autocommit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error(f"Database session error: {e}")
            raise
        finally:
            await session.close()


async def create_tables():
    # models must be imported so their tables are registered on Base.metadata
    from sellerledger.models import commerce, core, ledger, metrics  # noqa: F401
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created successfully")


class RedisClient:
    client: Optional[Redis] = None

    @classmethod
    def get_client(cls) -> Optional[Redis]:
        if cls.client is None and settings.REDIS_URL:
            cls.client = Redis.from_url(
                settings.REDIS_URL,
                decode_responses=True,
                encoding="utf-8",
            )
            logger.info("Redis client initialized")
        return cls.client

    @classmethod
    async def close(cls):
        if cls.client:
            await cls.client.aclose()
            cls.client = None
            logger.info("Redis connection closed")


async def check_postgres_health() -> bool:
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"PostgreSQL health check failed: {e}")
        return False


async def check_redis_health() -> Optional[bool]:
    redis = RedisClient.get_client()
    if redis is None:
        return None
    try:
        await redis.ping()
        return True
    except Exception as e:
        logger.error(f"Redis health check failed: {e}")
        return False


async def check_all_databases() -> dict:
    return {
        "postgres": await check_postgres_health(),
        "redis": await check_redis_health(),
    }


async def shutdown_databases():
    logger.info("Closing database connections...")
    await RedisClient.close()
    await engine.dispose()
    logger.info("All database connections closed")
