"""Schema setup for the preference database."""

import asyncio
import re

import structlog

from txn_history.db import base
from txn_history.db.models import Preference  # noqa: F401

logger = structlog.get_logger(__name__)

_CREDENTIALS = re.compile(r"(?P<scheme>.*://)[^:/@]+:[^@]+(?P<host>@.*)")


def sanitize_db_url(db_url: str) -> str:
    """Mask ``user:password`` in a database URL before it is logged."""
    return _CREDENTIALS.sub(r"\g<scheme>***:***\g<host>", db_url)


async def create_tables():
    """Create every mapped table that does not exist yet."""
    logger.info("db.create_tables", url=sanitize_db_url(base.get_database_url()))
    async with base.engine.begin() as conn:
        await conn.run_sync(base.Base.metadata.create_all)
    logger.info("db.tables_created")


if __name__ == "__main__":
    asyncio.run(create_tables())
