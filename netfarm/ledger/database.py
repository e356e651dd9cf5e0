import logging
import asyncio
import sqlite3
import threading
from concurrent.futures.thread import ThreadPoolExecutor
from typing import Union, Callable, Any, Awaitable, Iterable, List, Optional, Tuple

from prometheus_client import Gauge, Counter, Histogram

from netfarm.error import LedgerError, TransactionAbandonedError
from netfarm.utils import LockWithMetrics

log = logging.getLogger(__name__)
sqlite3.enable_callback_tracebacks(True)

HISTOGRAM_BUCKETS = (
    .005, .01, .025, .05, .075, .1, .25, .5, .75, 1.0, 2.5, 5.0, 7.5, 10.0, 15.0, 20.0, 30.0, 60.0, float('inf')
)


class Transaction:
    """
    Outcome of one write as seen from both sides of the executor. A caller that
    stops waiting calls `abandon`; the writer thread checks for that under the
    same lock right before committing, so a write is either committed and its
    result kept here, or rolled back.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.abandoned = False
        self.committed = False
        self.result = None

    def commit(self, connection: sqlite3.Connection, result):
        with self._lock:
            if self.abandoned:
                raise TransactionAbandonedError()
            connection.commit()
            self.committed = True
            self.result = result

    def abandon(self) -> bool:
        """ Returns True when it was too late: the write had already been committed. """
        with self._lock:
            if not self.committed:
                self.abandoned = True
            return self.committed


class AIOSQLite:
    """
    Runs every statement on one dedicated thread holding the only connection,
    so reads and writes are serialized and a read never observes half of a
    transaction.
    """

    waiting_writes_metric = Gauge(
        "waiting_writes_count", "Number of waiting db writes", namespace="netfarm_database"
    )
    write_count_metric = Counter(
        "write_count", "Number of database writes", namespace="netfarm_database"
    )
    read_count_metric = Counter(
        "read_count", "Number of database reads", namespace="netfarm_database"
    )
    acquire_write_lock_metric = Histogram(
        'write_lock_acquired', 'Time to acquire the write lock', namespace="netfarm_database",
        buckets=HISTOGRAM_BUCKETS
    )
    held_write_lock_metric = Histogram(
        'write_lock_held', 'Length of time the write lock is held for', namespace="netfarm_database",
        buckets=HISTOGRAM_BUCKETS
    )

    def __init__(self):
        # has to be single threaded as there is no mapping of thread:connection
        self.executor = ThreadPoolExecutor(max_workers=1)
        self.connection: Optional[sqlite3.Connection] = None
        self._closing = False
        self.write_lock = LockWithMetrics(self.acquire_write_lock_metric, self.held_write_lock_metric)

    @classmethod
    async def connect(cls, path: Union[bytes, str], *args, **kwargs):
        db = cls()

        def _connect():
            db.connection = sqlite3.connect(path, *args, **kwargs)

        try:
            await asyncio.get_running_loop().run_in_executor(db.executor, _connect)
        except Exception:
            db.executor.shutdown(wait=False)
            raise
        return db

    async def close(self):
        if self._closing:
            return
        self._closing = True

        def __checkpoint_and_close(conn: sqlite3.Connection):
            conn.execute("PRAGMA WAL_CHECKPOINT(FULL);")
            log.info("DB checkpoint finished.")
            conn.close()
        await asyncio.get_running_loop().run_in_executor(
            self.executor, __checkpoint_and_close, self.connection)
        self.executor.shutdown(wait=True)
        self.connection = None

    def executescript(self, script: str) -> Awaitable:
        return self.run(lambda conn: conn.executescript(script))

    def execute(self, sql: str, parameters: Iterable = None) -> Awaitable[sqlite3.Cursor]:
        parameters = parameters if parameters is not None else []
        return self.run(lambda conn: conn.execute(sql, parameters))

    async def execute_fetchall(self, sql: str, parameters: Iterable = None) -> List[Tuple]:
        return await self._read(lambda conn: conn.execute(sql, parameters or []).fetchall())

    async def execute_fetchone(self, sql: str, parameters: Iterable = None) -> Optional[Tuple]:
        return await self._read(lambda conn: conn.execute(sql, parameters or []).fetchone())

    async def _read(self, fun: Callable[[sqlite3.Connection], Any]):
        if self._closing:
            raise asyncio.CancelledError()
        self.read_count_metric.inc()
        return await asyncio.get_running_loop().run_in_executor(self.executor, fun, self.connection)

    async def run(self, fun, *args, transaction: Optional['Transaction'] = None, **kwargs):
        transaction = transaction or Transaction()
        self.write_count_metric.inc()
        self.waiting_writes_metric.inc()
        try:
            async with self.write_lock:
                if self._closing:
                    raise asyncio.CancelledError()
                return await asyncio.get_running_loop().run_in_executor(
                    self.executor, lambda: self.__run_transaction(fun, transaction, *args, **kwargs)
                )
        finally:
            self.waiting_writes_metric.dec()

    def __run_transaction(self, fun: Callable[[sqlite3.Connection, Any, Any], Any],
                          transaction: 'Transaction', *args, **kwargs):
        if transaction.abandoned:
            raise TransactionAbandonedError()
        self.connection.execute('begin')
        try:
            result = fun(self.connection, *args, **kwargs)  # type: ignore
            transaction.commit(self.connection, result)
            return result
        except LedgerError:
            self.connection.rollback()
            raise
        except (Exception, OSError) as e:
            log.exception('Error running transaction:', exc_info=e)
            self.connection.rollback()
            log.warning("rolled back")
            raise


class SQLiteMixin:

    SCHEMA_VERSION: Optional[str] = None
    CREATE_TABLES_QUERY: str

    CREATE_VERSION_TABLE = """
        create table if not exists version (
            version text
        );
    """

    def __init__(self, path):
        self._db_path = path
        self.db: Optional[AIOSQLite] = None

    async def open(self):
        log.info("connecting to database: %s", self._db_path)
        self.db = await AIOSQLite.connect(self._db_path, isolation_level=None)
        await self.db.executescript(self.CREATE_TABLES_QUERY)
        if self.SCHEMA_VERSION:
            await self.db.execute(self.CREATE_VERSION_TABLE)
            version = await self.db.execute_fetchone("select version from version limit 1;")
            if version is None:
                await self.db.execute("insert into version values (?)", (self.SCHEMA_VERSION,))
            elif version != (self.SCHEMA_VERSION,):
                log.warning("database %s has schema version %s, expected %s",
                            self._db_path, version[0], self.SCHEMA_VERSION)

    async def close(self):
        if self.db is not None:
            await self.db.close()
