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
"""The write path for tracked tables.

Every insert, update and delete of a tracked entity goes through ChangeCapture,
which mutates the current-state row and appends to / closes versions in the history
table within one transaction:

    Insert: write the current row, append an open-ended version starting now.
    Update: if any attribute changed, close the open version at now, append a new
        open-ended version starting now and update the current row. An update that
        changes nothing writes nothing.
    Delete: close the open version at now and delete the current row.

Writers on the same entity are serialized by per-key locks held for the whole
read-close-append-write sequence, see lock_manager.py. Closing a version is
conditional on it still being open, so a writer that lost a race fails with
ConcurrentModificationError instead of corrupting the chain. An update checks that
the closed and the newly opened interval form a contiguous chain before writing the
new version. Nothing is retried here: only the caller knows whether repeating the
logical operation is safe.
"""
import datetime
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import OperationalError

from temporal_tables.common.clock import Clock, to_naive_utc
from temporal_tables.persistence.database import constants
from temporal_tables.persistence.database.bootstrap import BootstrapSequencer
from temporal_tables.persistence.database.interval import (
    Interval,
    validate_version_chain,
)
from temporal_tables.persistence.database.lock_manager import (
    KeyLockManager,
    TableLockManager,
    acquire_database_key_lock,
)
from temporal_tables.persistence.database.structure_verifier import StructureVerifier
from temporal_tables.persistence.database.temporal_schema import (
    TemporalSchema,
    TrackedTable,
)
from temporal_tables.persistence.database.version import Version
from temporal_tables.persistence.database.write_guard import WriteGuard
from temporal_tables.persistence.errors import (
    ConcurrentModificationError,
    EntityAlreadyExistsError,
    EntityNotFoundError,
    LockTimeoutError,
)


def _is_lock_timeout(e: OperationalError) -> bool:
    if getattr(e.orig, "pgcode", None) == constants.POSTGRES_LOCK_NOT_AVAILABLE:
        return True
    return "database is locked" in str(e.orig)


class ChangeCapture:
    """Derives history from every mutation of a tracked table."""

    def __init__(
        self,
        *,
        engine: Engine,
        temporal_schema: TemporalSchema,
        bootstrap: BootstrapSequencer,
        structure_verifier: StructureVerifier,
        table_locks: TableLockManager,
        key_locks: KeyLockManager,
        write_guard: WriteGuard,
        clock: Clock,
        lock_timeout_seconds: float,
    ):
        self._engine = engine
        self._temporal_schema = temporal_schema
        self._bootstrap = bootstrap
        self._structure_verifier = structure_verifier
        self._table_locks = table_locks
        self._key_locks = key_locks
        self._write_guard = write_guard
        self._clock = clock
        self._lock_timeout_seconds = lock_timeout_seconds

    def insert(
        self,
        table_name: str,
        values: Mapping[str, Any],
        valid_from: Optional[datetime.datetime] = None,
    ) -> Version:
        """Creates a new entity from |values|, which must include the key. Columns
        missing from |values| are stored as NULL.

        By default the first version starts at the transaction time. A past
        |valid_from| backdates it, e.g. when loading records whose start is known;
        recorded_at still reflects when the version was written.

        Raises EntityAlreadyExistsError if the key has ever had a version: keys of
        deleted entities are not reused.
        """
        key_name = self._temporal_schema.tracked_table(table_name).key_name
        key = values.get(key_name)
        if key is None:
            raise ValueError(
                f"Missing value for key column [{key_name}] of [{table_name}]."
            )

        with self._write_transaction(table_name, key) as (connection, tracked):
            _check_known_columns(tracked, values)
            row = {name: values.get(name) for name in tracked.column_names}
            now = self._clock.now()
            start = now
            if valid_from is not None:
                start = to_naive_utc(valid_from)
                if start > now:
                    raise ValueError(
                        f"valid_from [{start.isoformat()}] is in the future, it is now "
                        f"[{now.isoformat()}]."
                    )
            if self._has_versions(connection, tracked, key):
                raise EntityAlreadyExistsError(
                    f"[{table_name}] key [{key}] already has recorded versions."
                )

            connection.execute(
                self._temporal_schema.current_table(table_name).insert(),
                row,
            )
            version = self._append_version(connection, tracked, row, start, now)

        logging.debug("Inserted [%s] key [%s] at [%s].", table_name, key, start)
        return version

    def update(
        self, table_name: str, key: Any, changes: Mapping[str, Any]
    ) -> Optional[Version]:
        """Applies |changes| to the entity with |key|. Returns the newly opened
        version, or None if no attribute actually changed, in which case nothing is
        written."""
        key_name = self._temporal_schema.tracked_table(table_name).key_name
        if key_name in changes and changes[key_name] != key:
            raise ValueError(
                f"Key column [{key_name}] of [{table_name}] cannot be changed."
            )

        with self._write_transaction(table_name, key) as (connection, tracked):
            _check_known_columns(tracked, changes)
            current_row = self._fetch_current_row(connection, tracked, key)
            new_row = dict(current_row)
            new_row.update(changes)
            if all(
                new_row[name] == current_row[name] for name in tracked.attribute_names
            ):
                logging.debug(
                    "Update of [%s] key [%s] changes nothing, skipping.", table_name, key
                )
                return None

            open_version = self._fetch_open_version(connection, tracked, key)
            now = self._clock.now()
            closed_interval = self._close_version(
                connection, tracked, key, open_version, now
            )
            validate_version_chain([closed_interval, Interval(valid_from=now)])

            current_table = self._temporal_schema.current_table(table_name)
            connection.execute(
                current_table.update()
                .where(current_table.c[key_name] == key)
                .values({name: new_row[name] for name in tracked.attribute_names})
            )
            version = self._append_version(connection, tracked, new_row, now, now)

        logging.debug("Updated [%s] key [%s] at [%s].", table_name, key, now)
        return version

    def delete(self, table_name: str, key: Any) -> Version:
        """Deletes the entity with |key|. Returns its final, now closed, version.
        The entity's version chain stays queryable."""
        with self._write_transaction(table_name, key) as (connection, tracked):
            self._fetch_current_row(connection, tracked, key)
            open_version = self._fetch_open_version(connection, tracked, key)
            now = self._clock.now()
            closed_interval = self._close_version(
                connection, tracked, key, open_version, now
            )

            current_table = self._temporal_schema.current_table(table_name)
            connection.execute(
                current_table.delete().where(current_table.c[tracked.key_name] == key)
            )

        logging.debug("Deleted [%s] key [%s] at [%s].", table_name, key, now)
        return Version(
            key=key,
            values={name: open_version[name] for name in tracked.column_names},
            interval=closed_interval,
            recorded_at=open_version[constants.RECORDED_AT_COLUMN],
        )

    @contextmanager
    def _write_transaction(
        self, table_name: str, key: Any
    ) -> Iterator[Tuple[Connection, TrackedTable]]:
        """Holds every lock a write on (|table_name|, |key|) needs and yields a
        connection inside a transaction that commits when the block exits cleanly
        and rolls back otherwise, along with the table's definition as of holding
        the table lock."""
        self._bootstrap.require_ready()
        with self._table_locks.shared(table_name):
            tracked = self._temporal_schema.tracked_table(table_name)
            with self._key_locks.lock(table_name, key):
                try:
                    with self._engine.begin() as connection:
                        self._structure_verifier.ensure_writable(connection, tracked)
                        acquire_database_key_lock(
                            connection, table_name, key, self._lock_timeout_seconds
                        )
                        with self._write_guard.authorize(connection):
                            yield connection, tracked
                except OperationalError as e:
                    if _is_lock_timeout(e):
                        raise LockTimeoutError(
                            f"Timed out waiting for a database lock while "
                            f"writing [{table_name}] key [{key}]."
                        ) from e
                    raise e

    def _has_versions(
        self, connection: Connection, tracked: TrackedTable, key: Any
    ) -> bool:
        history_table = self._temporal_schema.history_table(tracked.name)
        count = connection.execute(
            select(func.count())
            .select_from(history_table)
            .where(history_table.c[tracked.key_name] == key)
        ).scalar_one()
        return count > 0

    def _fetch_current_row(
        self, connection: Connection, tracked: TrackedTable, key: Any
    ) -> Dict[str, Any]:
        current_table = self._temporal_schema.current_table(tracked.name)
        row = (
            connection.execute(
                select(current_table)
                .where(current_table.c[tracked.key_name] == key)
                .with_for_update()
            )
            .mappings()
            .one_or_none()
        )
        if row is None:
            raise EntityNotFoundError(
                f"[{tracked.name}] key [{key}] has no current snapshot."
            )
        return dict(row)

    def _fetch_open_version(
        self, connection: Connection, tracked: TrackedTable, key: Any
    ) -> Dict[str, Any]:
        history_table = self._temporal_schema.history_table(tracked.name)
        row = (
            connection.execute(
                select(history_table).where(
                    history_table.c[tracked.key_name] == key,
                    history_table.c[constants.VALID_TO_COLUMN].is_(None),
                )
            )
            .mappings()
            .one_or_none()
        )
        if row is None:
            raise ConcurrentModificationError(
                tracked.name,
                key,
                "Live entity has no open version, it was closed by another writer.",
            )
        return dict(row)

    def _close_version(
        self,
        connection: Connection,
        tracked: TrackedTable,
        key: Any,
        open_version: Mapping[str, Any],
        instant: datetime.datetime,
    ) -> Interval:
        """Closes |open_version| at |instant|.

        Raises ZeroWidthIntervalError if |instant| is not strictly after the
        version's start, and ConcurrentModificationError if the version is no longer
        open.
        """
        closed_interval = Interval(
            valid_from=open_version[constants.VALID_FROM_COLUMN]
        ).closed_at(instant)

        history_table = self._temporal_schema.history_table(tracked.name)
        result = connection.execute(
            history_table.update()
            .where(
                history_table.c[constants.HISTORY_ID_COLUMN]
                == open_version[constants.HISTORY_ID_COLUMN],
                history_table.c[constants.VALID_TO_COLUMN].is_(None),
            )
            .values({constants.VALID_TO_COLUMN: instant})
        )
        if result.rowcount != 1:
            raise ConcurrentModificationError(
                tracked.name,
                key,
                f"Version [{open_version[constants.HISTORY_ID_COLUMN]}] was already "
                f"closed by another writer.",
            )
        return closed_interval

    def _append_version(
        self,
        connection: Connection,
        tracked: TrackedTable,
        row: Mapping[str, Any],
        valid_from: datetime.datetime,
        recorded_at: datetime.datetime,
    ) -> Version:
        values = {name: row[name] for name in tracked.column_names}
        history_row = dict(values)
        history_row[constants.VALID_FROM_COLUMN] = valid_from
        history_row[constants.VALID_TO_COLUMN] = None
        history_row[constants.RECORDED_AT_COLUMN] = recorded_at
        connection.execute(
            self._temporal_schema.history_table(tracked.name).insert(),
            history_row,
        )
        return Version(
            key=row[tracked.key_name],
            values=values,
            interval=Interval(valid_from=valid_from),
            recorded_at=recorded_at,
        )


def _check_known_columns(tracked: TrackedTable, values: Mapping[str, Any]) -> None:
    unknown = set(values) - set(tracked.column_names)
    if unknown:
        raise ValueError(
            f"Unknown columns {sorted(unknown)} for tracked table [{tracked.name}]."
        )
