from __future__ import annotations

import os
import sys

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from image_pipeline.config import settings


def make_engine(database_url: str | None = None) -> AsyncEngine:
    kwargs: dict = {"pool_pre_ping": True}

    # NOTE: every CLI command and most tests drive the catalog from a fresh
    # asyncio.run() loop. asyncpg connections in a pooled engine may be reused
    # across loops, causing:
    #   RuntimeError: got Future attached to a different loop
    # Disable pooling under pytest, where loops come and go per test.
    if os.getenv("PYTEST_CURRENT_TEST") or ("pytest" in sys.modules):
        kwargs["poolclass"] = NullPool

    return create_async_engine(database_url or settings.database_url, **kwargs)


engine = make_engine()
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
