from __future__ import annotations

import asyncio
import logging
from collections.abc import Generator
from functools import lru_cache

from fastapi import Request
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from memo_tracker.config import get_settings

logger = logging.getLogger(__name__)


@lru_cache(maxsize=8)
def _engine_for(url: str) -> Engine:
    return create_engine(url, pool_pre_ping=True)


def get_engine(url: str | None = None) -> Engine:
    return _engine_for(url or get_settings().database_url)


def get_sessionmaker(engine: Engine | None = None) -> sessionmaker[Session]:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine or get_engine())


def get_db(request: Request) -> Generator[Session, None, None]:
    """Session bound to the engine the app was built with."""
    SessionLocal: sessionmaker[Session] = request.app.state.sessionmaker
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ping_database(engine: Engine | None = None) -> None:
    with (engine or get_engine()).connect() as conn:
        conn.execute(text("SELECT 1"))


async def wait_for_database(attempts: int, delay_seconds: float, engine: Engine | None = None) -> bool:
    """Probe the database until it answers; never raises.

    Returns False once `attempts` probes have failed so startup can carry on
    with a degraded service rather than crash.
    """
    for attempt in range(1, attempts + 1):
        try:
            await asyncio.to_thread(ping_database, engine)
        except SQLAlchemyError as exc:
            logger.warning(
                "database.unavailable",
                extra={"attempt": attempt, "attempts": attempts, "error": str(exc)},
            )
            if attempt < attempts:
                await asyncio.sleep(delay_seconds)
            continue
        logger.info("database.connected", extra={"attempt": attempt})
        return True

    logger.error("database.gave_up", extra={"attempts": attempts})
    return False
