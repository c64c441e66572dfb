"""
SQLAlchemy base configuration and the pooled storage client.

Uses SQLAlchemy 2.0 style with type hints and declarative base.
Designed to be portable between SQLite (dev/test) and PostgreSQL (prod).

``Database`` is the only component that touches a connection. It bounds
every wait (pool acquire and statement timeouts), retries transient
connection failures a fixed number of times, and translates everything else
into the tracker error taxonomy.
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Generator, List, Optional, Sequence, TypeVar

from sqlalchemy import create_engine, event, exc, insert, text
from sqlalchemy.engine import Connection, Row
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import QueuePool

from fleettrack.config import config
from fleettrack.errors import CapacityError, StorageError, TrackerError

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Substrings of driver messages that identify reset/timeout class failures
TRANSIENT_MARKERS = (
    'connection reset',
    'connection refused',
    'server closed the connection',
    'terminating connection',
    'could not connect',
    'timed out',
    'timeout',
    'database is locked',
)


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def to_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything we store is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def epoch_to_iso(value: Optional[float]) -> Optional[str]:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc).isoformat()


def is_transient(error: BaseException) -> bool:
    """
    True for connection reset/timeout class failures.

    Constraint violations and syntax errors are never transient.
    """
    if isinstance(error, exc.DisconnectionError):
        return True
    if isinstance(error, (exc.IntegrityError, exc.ProgrammingError)):
        return False
    if isinstance(error, exc.DBAPIError):
        if error.connection_invalidated:
            return True
        if isinstance(error, exc.OperationalError):
            message = str(error.orig).lower()
            return any(marker in message for marker in TRANSIENT_MARKERS)
    return False


@dataclass(frozen=True)
class PoolStatus:
    """Connection pool accounting for health reporting."""
    total_connections: int
    idle_connections: int
    waiting_requests: int

    def to_dict(self) -> dict:
        return {
            'total_connections': self.total_connections,
            'idle_connections': self.idle_connections,
            'waiting_requests': self.waiting_requests,
        }


@dataclass
class QueryResult:
    rows: List[Row] = field(default_factory=list)
    rowcount: int = 0


def _set_sqlite_pragma(dbapi_connection, connection_record):
    """
    Configure SQLite for concurrent ingestion.

    WAL mode allows concurrent reads during writes, and foreign keys must
    be switched on per connection for the cascade on location samples.
    """
    cursor = dbapi_connection.cursor()
    cursor.execute('PRAGMA journal_mode=WAL')
    cursor.execute('PRAGMA synchronous=NORMAL')
    cursor.execute('PRAGMA foreign_keys=ON')
    cursor.close()


class Database:
    """
    Pooled relational storage client.

    Exposes ``execute``, ``batch_insert`` and ``run`` (a transactional unit
    of work), plus pool accounting.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        pool_size: Optional[int] = None,
        max_overflow: Optional[int] = None,
        pool_timeout: Optional[float] = None,
        statement_timeout_ms: Optional[int] = None,
        retry_attempts: Optional[int] = None,
        retry_backoff_seconds: Optional[float] = None,
        echo: bool = False,
    ):
        settings = config.database

        def pick(value, default):
            return default if value is None else value

        self.url = url or settings.url
        self.pool_size = pick(pool_size, settings.pool_size)
        self.max_overflow = pick(max_overflow, settings.max_overflow)
        self.pool_timeout = pick(pool_timeout, settings.pool_timeout)
        self.statement_timeout_ms = pick(statement_timeout_ms, settings.statement_timeout_ms)
        self.retry_attempts = pick(retry_attempts, settings.retry_attempts)
        self.retry_backoff_seconds = pick(retry_backoff_seconds, settings.retry_backoff_seconds)
        self.slow_query_ms = settings.slow_query_ms

        self.engine = create_engine(self.url, **self._engine_kwargs(echo))
        if self.is_sqlite:
            event.listen(self.engine, 'connect', _set_sqlite_pragma)

        # SQLAlchemy pools don't count blocked acquirers, so we do
        self._waiting = 0
        self._waiting_lock = threading.Lock()

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith('sqlite')

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    def _engine_kwargs(self, echo: bool) -> dict:
        kwargs = {
            'echo': echo,
            'poolclass': QueuePool,
            'pool_size': self.pool_size,
            'max_overflow': self.max_overflow,
            'pool_timeout': self.pool_timeout,
        }
        if self.is_sqlite:
            # sqlite3's busy timeout is its statement wait bound
            kwargs['connect_args'] = {
                'check_same_thread': False,
                'timeout': self.statement_timeout_ms / 1000,
            }
        else:
            kwargs['pool_pre_ping'] = True
            kwargs['connect_args'] = {
                'options': f'-c statement_timeout={self.statement_timeout_ms}',
                'connect_timeout': max(1, int(self.pool_timeout)),
            }
        return kwargs

    # -------------------------------------------------------------------------
    # Connections and units of work
    # -------------------------------------------------------------------------

    @contextmanager
    def connect(self) -> Generator[Connection, None, None]:
        """
        Check out a connection and open a transaction on it.

        Commits on normal exit, rolls back on error. A pool acquire that
        times out is reported as a capacity error.
        """
        with self._waiting_lock:
            self._waiting += 1
        try:
            connection = self.engine.connect()
        except exc.TimeoutError as e:
            logger.warning(f'Connection pool exhausted: {self.pool_status().to_dict()}')
            raise CapacityError('Database connection pool exhausted, retry later') from e
        finally:
            with self._waiting_lock:
                self._waiting -= 1

        try:
            with connection.begin():
                yield connection
        finally:
            connection.close()

    def run(self, work: Callable[[Connection], T]) -> T:
        """
        Execute ``work(connection)`` in one transaction.

        Transient connection errors roll back and retry the whole unit up to
        ``retry_attempts`` more times with a fixed backoff. Other database
        errors surface immediately as StorageError.
        """
        attempt = 0
        while True:
            start_time = time.perf_counter()
            try:
                with self.connect() as connection:
                    result = work(connection)
            except TrackerError:
                raise
            except exc.SQLAlchemyError as e:
                if is_transient(e) and attempt < self.retry_attempts:
                    attempt += 1
                    logger.warning(
                        f'Transient database error, retrying '
                        f'({attempt}/{self.retry_attempts}): {e.__class__.__name__}'
                    )
                    time.sleep(self.retry_backoff_seconds)
                    continue
                logger.error(f'Database operation failed after {attempt + 1} attempt(s): {e}')
                raise StorageError(f'Database operation failed ({e.__class__.__name__})') from e

            duration_ms = (time.perf_counter() - start_time) * 1000
            if duration_ms > self.slow_query_ms:
                logger.warning(f'Slow database operation ({duration_ms:.0f}ms)')
            return result

    def execute(self, statement: Any, params: Optional[Any] = None) -> QueryResult:
        """Run a single statement (Core construct or SQL string)."""
        if isinstance(statement, str):
            statement = text(statement)

        def _work(connection: Connection) -> QueryResult:
            if params is None:
                cursor = connection.execute(statement)
            else:
                cursor = connection.execute(statement, params)
            rows = cursor.all() if cursor.returns_rows else []
            return QueryResult(rows=rows, rowcount=cursor.rowcount)

        return self.run(_work)

    def batch_insert(
        self,
        table: Any,
        columns: Sequence[str],
        rows: Sequence[Sequence[Any]],
    ) -> List[Row]:
        """
        Insert many rows with a single multi-VALUES statement.

        Returns the inserted rows.
        """
        if not rows:
            return []

        table = getattr(table, '__table__', table)
        values = [dict(zip(columns, row)) for row in rows]
        statement = insert(table).values(values).returning(*table.c)
        return self.execute(statement).rows

    # -------------------------------------------------------------------------
    # Health and lifecycle
    # -------------------------------------------------------------------------

    def pool_status(self) -> PoolStatus:
        pool = self.engine.pool
        idle = total = 0
        if isinstance(pool, QueuePool):
            idle = pool.checkedin()
            total = idle + pool.checkedout()
        with self._waiting_lock:
            waiting = self._waiting
        return PoolStatus(
            total_connections=total,
            idle_connections=idle,
            waiting_requests=waiting,
        )

    def healthcheck(self) -> dict:
        """Round-trip a trivial query and report pool accounting."""
        try:
            self.execute('SELECT 1')
            healthy, error = True, None
        except TrackerError as e:
            healthy, error = False, e.message
            logger.error(f'Database health check failed: {e.message}')

        result = {'healthy': healthy, **self.pool_status().to_dict()}
        if error:
            result['error'] = error
        return result

    def init_schema(self) -> None:
        """
        Create all tables if they don't exist. For production,
        use migrations instead.
        """
        # Import models so they register on Base.metadata
        from fleettrack.models import location_sample, vehicle  # noqa: F401

        Base.metadata.create_all(bind=self.engine)

    def dispose(self) -> None:
        self.engine.dispose()
        logger.info('Database connections closed')
