"""Bounded retry combinator for transactional work."""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

import config
from arena.errors import PersistenceError, TransientConflict
from arena.models.base import async_session_factory

logger = logging.getLogger("arena.tx")

T = TypeVar("T")

# Lost optimistic races, lock timeouts and unique constraint races. The next
# attempt re-reads and usually raises the proper domain error or succeeds.
TRANSIENT_ERRORS = (StaleDataError, OperationalError, IntegrityError)

# serialization_failure, deadlock_detected
TRANSIENT_SQLSTATES = frozenset({"40001", "40P01"})


def _sqlstate(e: DBAPIError) -> Optional[str]:
    """SQLSTATE of the driver error: asyncpg exposes `sqlstate`, psycopg `pgcode`."""
    orig = e.orig
    for attr in ("sqlstate", "pgcode"):
        code = getattr(orig, attr, None)
        if code:
            return str(code)
    # asyncpg errors arrive wrapped by the SQLAlchemy adapter
    cause = getattr(orig, "__cause__", None)
    code = getattr(cause, "sqlstate", None)
    return str(code) if code else None


def is_transient(e: BaseException) -> bool:
    if isinstance(e, TRANSIENT_ERRORS):
        return True
    return isinstance(e, DBAPIError) and _sqlstate(e) in TRANSIENT_SQLSTATES


async def run_in_transaction(
    work: Callable[[AsyncSession], Awaitable[T]],
    *,
    attempts: Optional[int] = None,
    backoff: Optional[float] = None,
    session_factory: Optional[async_sessionmaker] = None,
) -> T:
    """Run work(session) in its own transaction, retrying transient failures.

    work must be safe to re-run from scratch: every attempt gets a fresh
    session and everything from a failed attempt is rolled back. Domain
    errors raised by work propagate immediately.
    """
    attempts = attempts or config.TX_RETRY_ATTEMPTS
    backoff = config.TX_RETRY_BACKOFF_SECONDS if backoff is None else backoff
    factory = session_factory or async_session_factory
    name = getattr(work, "__qualname__", "transaction")

    for attempt in range(1, attempts + 1):
        try:
            async with factory() as session:
                async with session.begin():
                    return await work(session)
        except SQLAlchemyError as e:
            if not is_transient(e):
                logger.exception("%s: persistence failure", name)
                raise PersistenceError() from e
            if attempt == attempts:
                logger.warning("%s: giving up after %d attempts: %s", name, attempts, e)
                raise TransientConflict() from e
            logger.info("%s: transient failure on attempt %d/%d: %s", name, attempt, attempts, e)
        await asyncio.sleep(backoff * attempt)
    raise TransientConflict()
