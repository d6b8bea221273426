import asyncio
import structlog

from complaint_desk.core.logging import setup_logging
from complaint_desk.db.base import Base
from complaint_desk.db.session import engine

# Trigger model registration
from complaint_desk.models.complaint import Complaint, ComplaintAttachment  # noqa: F401
from complaint_desk.models.message import ComplaintMessage  # noqa: F401
from complaint_desk.models.user import Profile, UserRole  # noqa: F401

logger = structlog.get_logger()


async def init_models(bind=engine):
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def main():
    setup_logging()
    logger.info("db_init_start")
    try:
        # Fail fast if the connection hangs (firewall/network issues)
        async with asyncio.timeout(10):
            await init_models()
    except TimeoutError:
        logger.error("db_init_timeout", message="Connection to database timed out after 10s. Check network/firewall/URL settings.")
        raise
    except Exception as e:
        logger.error("db_init_failed", error=str(e))
        raise
    logger.info("db_init_complete")

if __name__ == "__main__":
    asyncio.run(main())
