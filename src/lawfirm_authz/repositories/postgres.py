from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from lawfirm_authz.configs.settings import Settings
from lawfirm_authz.configs.logging_config import get_logger

log = get_logger(__name__)


def get_engine(settings: Settings) -> AsyncEngine:
    log.info(
        "postgres.engine.create pool_size=%s max_overflow=%s",
        settings.db_pool_size,
        settings.db_max_overflow,
    )
    return create_async_engine(
        settings.postgres_dsn,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True,
        # Pooled connections are rolled back on return, discarding any
        # transaction-local tenant settings.
        pool_reset_on_return="rollback",
    )


def get_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
