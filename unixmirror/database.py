"""Database engine and session management."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import Engine
from sqlalchemy import create_engine as sa_create_engine
from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import Session, sessionmaker

if TYPE_CHECKING:
    from collections.abc import Iterable

    from unixmirror.config import Settings
    from unixmirror.services.mirror_service import MirrorService


def create_engine(settings: Settings) -> tuple[Engine, sessionmaker[Session]]:
    """Create engine and session factory.

    Returns (engine, session_factory) tuple.
    """
    engine = sa_create_engine(
        settings.database_url,
        echo=settings.debug,
    )
    session_factory = sessionmaker(
        engine,
        class_=Session,
        expire_on_commit=False,
    )
    return engine, session_factory


def create_async_engine_pair(
    settings: Settings,
) -> tuple[
    AsyncEngine,
    async_sessionmaker[AsyncSession],
]:
    """Create async engine and session factory.

    The mirror service needs ``engine.sync_engine`` as its inspector bind.
    """
    engine = create_async_engine(
        settings.database_url,
        echo=settings.debug,
    )
    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    return engine, session_factory


async def prime_async(
    conn: AsyncConnection,
    service: MirrorService,
    record_types: Iterable[type],
) -> None:
    """Warm the existence cache from async code.

    Query building is synchronous, so async callers prime the cache once at
    startup (and after DDL) instead of letting the rewriter hit the database.
    """
    types = list(record_types)
    await conn.run_sync(lambda sync_conn: service.prime(types, bind=sync_conn))
