from __future__ import annotations

import logging
import os
from collections.abc import Generator, Iterator
from contextlib import contextmanager

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlmodel import Session, create_engine

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    "postgresql+psycopg://access:access@db:5432/route_access",
)

engine = create_engine(DATABASE_URL, pool_pre_ping=True)


class StoreUnavailableError(Exception):
    """The catalog store could not be reached; access could not be determined."""


def get_engine() -> Engine:
    return engine


def get_session() -> Generator[Session, None, None]:
    with Session(get_engine()) as session:
        yield session


def _is_connectivity_error(exc: DBAPIError) -> bool:
    if isinstance(exc, (OperationalError, InterfaceError)):
        return True
    return bool(exc.connection_invalidated)


@contextmanager
def store_guard(operation: str) -> Iterator[None]:
    try:
        yield
    except DBAPIError as exc:
        if not _is_connectivity_error(exc):
            raise
        logger.error("store.unavailable", extra={"operation": operation}, exc_info=True)
        raise StoreUnavailableError(f"catalog store unavailable during {operation}") from exc


def check_db_ready() -> bool:
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False
