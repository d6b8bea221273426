from contextlib import asynccontextmanager

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import NullPool, StaticPool
import structlog

from complaint_desk.core.config import settings
from complaint_desk.core.exceptions import StoreUnavailableError

logger = structlog.get_logger()


def build_engine(db_url: str):
    """
    Create the async engine for a database URL.
    In-memory SQLite needs a single shared connection.
    """
    if db_url.startswith("sqlite") and ":memory:" in db_url:
        return create_async_engine(
            db_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if "supabase" in db_url and "ssl=" not in db_url:
        # asyncpg takes SSL in the URL, not connect_args
        db_url = db_url + ("&" if "?" in db_url else "?") + "ssl=require"
    return create_async_engine(
        db_url,
        echo=settings.ENVIRONMENT == "development",
        future=True,
        poolclass=NullPool,
    )


def build_session_factory(bind) -> async_sessionmaker:
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


engine = build_engine(settings.DATABASE_URL)

AsyncSessionLocal = build_session_factory(engine)


async def get_db() -> AsyncSession:
    """
    Dependency for getting an async database session.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


@asynccontextmanager
async def store_errors(operation: str):
    """
    Translate transport level persistence failures into StoreUnavailableError.
    No retry: callers are human driven and fail fast.
    """
    try:
        yield
    except (OperationalError, InterfaceError, ConnectionError, TimeoutError) as e:
        logger.error("store_unavailable", operation=operation, error=str(e))
        raise StoreUnavailableError(f"Complaint store unavailable during {operation}") from e
