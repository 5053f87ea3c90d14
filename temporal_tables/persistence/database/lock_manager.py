# Recidiviz - a data platform for criminal justice reform
# Copyright (C) 2026 Recidiviz, Inc.
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.
# =============================================================================
"""Locks that serialize writers on the same entity, and keep structural changes
away from in-flight writes.

Locks are layered:
    1. TableLockManager: a per-table readers/writer lock. Change capture holds it
       shared, structural changes hold it exclusively.
    2. KeyLockManager: a per-(table, key) mutex, serializing writers on one entity
       within this process.
    3. acquire_database_key_lock: on Postgres, a transaction-scoped advisory lock on
       the same (table, key), serializing writers across processes. On SQLite the
       BEGIN IMMEDIATE issued for every write transaction plays this role.

Every wait is bounded. A lock that cannot be taken in time raises LockTimeoutError
instead of blocking indefinitely.
"""
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator

import attr
from sqlalchemy import text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import OperationalError

from temporal_tables.persistence.database import constants
from temporal_tables.persistence.errors import LockTimeoutError


@attr.s
class _KeyLockEntry:
    lock: threading.Lock = attr.ib(factory=threading.Lock)
    # Number of threads holding or waiting on |lock|
    users: int = attr.ib(default=0)


class KeyLockManager:
    """Hands out one mutex per (table, key). Entries are dropped once no thread holds
    or waits on them, so memory use follows the number of keys being written
    concurrently rather than the number of keys ever written."""

    def __init__(self, timeout_seconds: float):
        self._timeout_seconds = timeout_seconds
        self._entries: Dict[str, _KeyLockEntry] = {}
        self._entries_lock = threading.Lock()

    @contextmanager
    def lock(self, table_name: str, key: Any) -> Iterator[None]:
        lock_key = key_lock_name(table_name, key)
        entry = self._check_out(lock_key)
        try:
            if not entry.lock.acquire(timeout=self._timeout_seconds):
                raise LockTimeoutError(
                    f"Timed out after [{self._timeout_seconds}] seconds waiting for "
                    f"write lock on [{lock_key}]."
                )
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            self._check_in(lock_key)

    def _check_out(self, lock_key: str) -> _KeyLockEntry:
        with self._entries_lock:
            entry = self._entries.setdefault(lock_key, _KeyLockEntry())
            entry.users += 1
            return entry

    def _check_in(self, lock_key: str) -> None:
        with self._entries_lock:
            entry = self._entries[lock_key]
            entry.users -= 1
            if entry.users == 0:
                del self._entries[lock_key]

    def active_lock_count(self) -> int:
        with self._entries_lock:
            return len(self._entries)


class _ReadersWriterLock:
    """Readers/writer lock with bounded waits. Waiting writers block new readers so
    that a structural change is not starved by a steady stream of writes."""

    def __init__(self) -> None:
        self._condition = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    def acquire_shared(self, timeout_seconds: float) -> bool:
        with self._condition:
            if not self._condition.wait_for(
                lambda: not self._writer and self._writers_waiting == 0,
                timeout=timeout_seconds,
            ):
                return False
            self._readers += 1
            return True

    def release_shared(self) -> None:
        with self._condition:
            self._readers -= 1
            if self._readers == 0:
                self._condition.notify_all()

    def acquire_exclusive(self, timeout_seconds: float) -> bool:
        with self._condition:
            self._writers_waiting += 1
            try:
                acquired = self._condition.wait_for(
                    lambda: not self._writer and self._readers == 0,
                    timeout=timeout_seconds,
                )
            finally:
                self._writers_waiting -= 1
            if acquired:
                self._writer = True
            else:
                # Readers held back by this writer may proceed again.
                self._condition.notify_all()
            return acquired

    def release_exclusive(self) -> None:
        with self._condition:
            self._writer = False
            self._condition.notify_all()


class TableLockManager:
    """Per-table readers/writer locks. Change capture holds a table's lock shared for
    the duration of each write, structural changes hold it exclusively."""

    def __init__(self, timeout_seconds: float):
        self._timeout_seconds = timeout_seconds
        self._locks: Dict[str, _ReadersWriterLock] = {}
        self._locks_lock = threading.Lock()

    def _lock_for_table(self, table_name: str) -> _ReadersWriterLock:
        with self._locks_lock:
            return self._locks.setdefault(table_name, _ReadersWriterLock())

    @contextmanager
    def shared(self, table_name: str) -> Iterator[None]:
        lock = self._lock_for_table(table_name)
        if not lock.acquire_shared(self._timeout_seconds):
            raise LockTimeoutError(
                f"Timed out after [{self._timeout_seconds}] seconds waiting for a "
                f"structural change on [{table_name}] to finish."
            )
        try:
            yield
        finally:
            lock.release_shared()

    @contextmanager
    def exclusive(self, table_name: str) -> Iterator[None]:
        lock = self._lock_for_table(table_name)
        if not lock.acquire_exclusive(self._timeout_seconds):
            raise LockTimeoutError(
                f"Timed out after [{self._timeout_seconds}] seconds waiting for "
                f"in-flight writes on [{table_name}] to finish."
            )
        try:
            yield
        finally:
            lock.release_exclusive()


def key_lock_name(table_name: str, key: Any) -> str:
    return f"{table_name}:{key!r}"


def acquire_database_key_lock(
    connection: Connection, table_name: str, key: Any, timeout_seconds: float
) -> None:
    """Takes a transaction-scoped lock on (table, key) in the database itself, so
    that writers in other processes serialize with this one. The lock is released
    when the enclosing transaction commits or rolls back.

    Only Postgres has such locks. On SQLite, write transactions already hold the
    database write lock from BEGIN IMMEDIATE onwards.
    """
    if connection.dialect.name != "postgresql":
        return
    try:
        connection.execute(
            text("SELECT set_config('lock_timeout', :lock_timeout, true)"),
            {"lock_timeout": f"{int(timeout_seconds * 1000)}ms"},
        )
        connection.execute(
            text("SELECT pg_advisory_xact_lock(hashtextextended(:lock_name, 0))"),
            {"lock_name": key_lock_name(table_name, key)},
        )
    except OperationalError as e:
        if getattr(e.orig, "pgcode", None) == constants.POSTGRES_LOCK_NOT_AVAILABLE:
            raise LockTimeoutError(
                f"Timed out after [{timeout_seconds}] seconds waiting for database "
                f"lock on [{key_lock_name(table_name, key)}]."
            ) from e
        raise e
