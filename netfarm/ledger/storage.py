import asyncio
import logging
import sqlite3
import typing

from netfarm.error import UnknownSubjectError, LedgerUnavailableError, LedgerTimeoutError
from netfarm.ledger.base import Ledger, Subject, GLOBAL_SUBJECT
from netfarm.ledger.database import SQLiteMixin, Transaction

log = logging.getLogger(__name__)


class SQLiteLedger(SQLiteMixin, Ledger):
    SCHEMA_VERSION = "1"
    CREATE_TABLES_QUERY = """
            pragma journal_mode=WAL;

            create table if not exists users (
                id integer primary key,
                username text not null unique,
                points integer not null
            );

            create table if not exists global_points (
                id integer primary key check (id = 1),
                points integer not null
            );
    """

    def __init__(self, path: str, timeout: float = 5.0):
        super().__init__(path)
        self.timeout = timeout

    async def open(self):
        try:
            await asyncio.wait_for(super().open(), self.timeout)
        except asyncio.TimeoutError:
            raise LedgerTimeoutError(self.timeout)
        except sqlite3.Error as err:
            raise LedgerUnavailableError(err) from err

    @property
    def database(self):
        if self.db is None:
            raise LedgerUnavailableError("database is not open")
        return self.db

    async def _call(self, awaitable: typing.Awaitable):
        try:
            return await asyncio.wait_for(awaitable, self.timeout)
        except asyncio.TimeoutError:
            log.warning("ledger operation timed out after %ss", self.timeout)
            raise LedgerTimeoutError(self.timeout)
        except sqlite3.Error as err:
            raise LedgerUnavailableError(err) from err

    async def _write(self, fun: typing.Callable, *args):
        transaction = Transaction()
        try:
            return await self._call(self.database.run(fun, *args, transaction=transaction))
        except LedgerTimeoutError:
            # waits at most for a commit already in progress
            if await asyncio.get_running_loop().run_in_executor(None, transaction.abandon):
                log.info("ledger write finished committing after its timeout, keeping it")
                return transaction.result
            raise


def _insert_user(transaction: sqlite3.Connection, username: str):
    transaction.execute("insert or ignore into users (username, points) values (?, 0)", (username, ))


def _insert_global_row(transaction: sqlite3.Connection):
    transaction.execute("insert or ignore into global_points (id, points) values (1, 0)")


def _add_user_points(transaction: sqlite3.Connection, username: str, points: int) -> int:
    updated = transaction.execute(
        "update users set points=points+? where username=?", (points, username)
    ).rowcount
    if not updated:
        raise UnknownSubjectError(username)
    return transaction.execute("select points from users where username=?", (username, )).fetchone()[0]


def _add_global_points(transaction: sqlite3.Connection, points: int) -> int:
    updated = transaction.execute("update global_points set points=points+? where id=1", (points, )).rowcount
    if not updated:
        raise UnknownSubjectError(GLOBAL_SUBJECT)
    return transaction.execute("select points from global_points where id=1").fetchone()[0]


class UsersLedger(SQLiteLedger):
    """
    One row of points per user name. Users have to be created with
    `ensure_subject` before points can be read or added.
    """

    ledger_type = 'users'
    requires_subject = True

    @staticmethod
    def _check_subject(subject: Subject):
        if not isinstance(subject, str) or not subject:
            raise UnknownSubjectError(subject)

    async def ensure_subject(self, subject: Subject = None):
        self._check_subject(subject)
        await self._write(_insert_user, subject)

    async def get(self, subject: Subject = None) -> int:
        self._check_subject(subject)
        row = await self._call(self.database.execute_fetchone(
            "select points from users where username=?", (subject, )
        ))
        if row is None:
            raise UnknownSubjectError(subject)
        return row[0]

    async def add_points(self, subject: Subject, points: int) -> int:
        self._check_subject(subject)
        self.check_points(points)
        return await self._write(_add_user_points, subject, points)


class GlobalLedger(SQLiteLedger):
    """
    A single row holding the sum of all points awarded on this host. The
    subject passed to each call is ignored.
    """

    ledger_type = 'global'

    async def ensure_subject(self, subject: Subject = None):
        await self._write(_insert_global_row)

    async def get(self, subject: Subject = None) -> int:
        row = await self._call(self.database.execute_fetchone("select points from global_points where id=1"))
        if row is None:
            raise UnknownSubjectError(GLOBAL_SUBJECT)
        return row[0]

    async def add_points(self, subject: Subject, points: int) -> int:
        self.check_points(points)
        return await self._write(_add_global_points, points)
