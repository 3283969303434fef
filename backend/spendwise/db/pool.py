import logging
import time
from contextlib import contextmanager
from typing import Any, Callable, TypeVar

from fastapi import Request
from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool, PoolTimeout, TooManyRequests

from spendwise.core.config import Settings
from spendwise.core.errors import TransientStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TRANSIENT_ERRORS = (PoolTimeout, TooManyRequests, errors.TooManyConnections)


def with_retry(
    operation: Callable[[], T],
    max_attempts: int = 3,
    delay: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``operation``, retrying only on TransientStoreError.

    Backoff is linear: after attempt ``n`` fails we wait ``n * delay``.
    Any other error propagates on the first failure.
    """
    attempts = max(1, int(max_attempts))
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except TransientStoreError:
            if attempt >= attempts:
                logger.error("Database still busy after %d attempts", attempts)
                raise
            wait = attempt * delay
            logger.warning("Database busy (attempt %d/%d), retrying in %.1fs", attempt, attempts, wait)
            sleep(wait)
    raise AssertionError("unreachable")


class Database:
    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._pool = ConnectionPool(
            settings.database_url,
            min_size=settings.db_pool_min,
            max_size=settings.db_pool_max,
            timeout=settings.db_pool_timeout,
            max_waiting=settings.db_pool_max_waiting,
            open=False,
            kwargs={"row_factory": dict_row},
        )

    def open(self) -> None:
        self._pool.open()

    def close(self) -> None:
        self._pool.close()

    @contextmanager
    def connection(self):
        try:
            conn = self._pool.getconn()
        except _TRANSIENT_ERRORS as exc:
            raise TransientStoreError("Database is busy, please try again later", details=str(exc)) from exc
        try:
            # Commits on success, rolls back on any exception.
            with conn:
                yield conn
        finally:
            self._pool.putconn(conn)

    def run(self, operation: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run ``operation(cur, ...)`` as one transaction, retried when the pool is exhausted."""

        def attempt() -> T:
            with self.connection() as conn, conn.cursor() as cur:
                return operation(cur, *args, **kwargs)

        return with_retry(
            attempt,
            max_attempts=self._settings.db_retry_attempts,
            delay=self._settings.db_retry_delay,
        )


def get_db(req: Request) -> Database:
    return req.app.state.db
