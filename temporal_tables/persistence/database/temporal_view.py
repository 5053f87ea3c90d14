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
"""Read access to tracked tables, either at the present or at any past instant.

Reads never take the per-key write locks: each read runs as a single statement in
its own transaction, so it sees a consistent snapshot even while writers are
active. A read holds its table's lock shared, like change capture does, while it
builds and runs its statement. Reads and writes never wait on each other, but both
wait for a structural change on the table to commit, so a statement is never built
from a definition the database no longer has.
"""
import datetime
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import and_, select, union_all
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.sql import Select

from temporal_tables.common.clock import to_naive_utc
from temporal_tables.persistence.database import constants
from temporal_tables.persistence.database.bootstrap import BootstrapSequencer
from temporal_tables.persistence.database.lock_manager import TableLockManager
from temporal_tables.persistence.database.temporal_schema import (
    TemporalSchema,
    TrackedTable,
)
from temporal_tables.persistence.database.version import Version

_HISTORY_ONLY_SELECTED = (
    constants.VALID_FROM_COLUMN,
    constants.VALID_TO_COLUMN,
    constants.RECORDED_AT_COLUMN,
)


class TemporalView:
    """Unified, read-only view over the current and history side of every tracked
    table."""

    def __init__(
        self,
        engine: Engine,
        temporal_schema: TemporalSchema,
        bootstrap: BootstrapSequencer,
        table_locks: TableLockManager,
    ):
        self._engine = engine
        self._temporal_schema = temporal_schema
        self._bootstrap = bootstrap
        self._table_locks = table_locks

    def current(self, table_name: str, key: Any = None) -> List[Dict[str, Any]]:
        """Returns the live rows of |table_name|, ordered by key. With |key|, returns
        at most one row."""
        with self._read_connection(table_name) as connection:
            tracked = self._temporal_schema.tracked_table(table_name)
            current_table = self._temporal_schema.current_table(table_name)
            query = select(current_table).order_by(
                current_table.c[tracked.key_name]
            )
            if key is not None:
                query = query.where(current_table.c[tracked.key_name] == key)
            return [dict(row) for row in connection.execute(query).mappings()]

    def as_of(
        self, table_name: str, instant: datetime.datetime, key: Any = None
    ) -> List[Version]:
        """Returns the version of each entity that was valid at |instant|, ordered
        by key. Entities that did not exist yet, or were already deleted, at
        |instant| are absent."""
        instant = to_naive_utc(instant)
        with self._read_connection(table_name) as connection:
            tracked = self._temporal_schema.tracked_table(table_name)
            query = self.as_of_query(tracked, instant, key)
            return [
                Version.from_history_row(tracked, row)
                for row in connection.execute(query).mappings()
            ]

    def as_of_query(
        self, tracked: TrackedTable, instant: datetime.datetime, key: Any = None
    ) -> Select:
        """Builds the as-of query for |tracked| at |instant|.

        Live entities come from the current table joined with their open version,
        provided that version had started by |instant|. Everything else comes from
        closed versions whose interval contains |instant|. The two halves are
        disjoint because an entity has at most one version valid at any instant.
        """
        current_table = self._temporal_schema.current_table(tracked.name)
        history_table = self._temporal_schema.history_table(tracked.name)
        open_version = history_table.alias("open_version")
        key_name = tracked.key_name
        valid_from = constants.VALID_FROM_COLUMN
        valid_to = constants.VALID_TO_COLUMN

        live = (
            select(
                *[current_table.c[name] for name in tracked.column_names],
                *[open_version.c[name] for name in _HISTORY_ONLY_SELECTED],
            )
            .select_from(
                current_table.join(
                    open_version,
                    and_(
                        open_version.c[key_name] == current_table.c[key_name],
                        open_version.c[valid_to].is_(None),
                    ),
                )
            )
            .where(open_version.c[valid_from] <= instant)
        )
        closed = select(
            *[history_table.c[name] for name in tracked.column_names],
            *[history_table.c[name] for name in _HISTORY_ONLY_SELECTED],
        ).where(
            history_table.c[valid_to].is_not(None),
            history_table.c[valid_from] <= instant,
            history_table.c[valid_to] > instant,
        )
        if key is not None:
            live = live.where(current_table.c[key_name] == key)
            closed = closed.where(history_table.c[key_name] == key)

        as_of = union_all(live, closed).subquery("as_of")
        return select(as_of).order_by(as_of.c[key_name])

    def history(self, table_name: str, key: Any) -> List[Version]:
        """Returns every version of the entity with |key|, oldest first. Deleted
        entities keep their history."""
        with self._read_connection(table_name) as connection:
            tracked = self._temporal_schema.tracked_table(table_name)
            history_table = self._temporal_schema.history_table(table_name)
            query = (
                select(history_table)
                .where(history_table.c[tracked.key_name] == key)
                .order_by(history_table.c[constants.VALID_FROM_COLUMN])
            )
            return [
                Version.from_history_row(tracked, row)
                for row in connection.execute(query).mappings()
            ]

    def timeline(self, table_name: str, key: Any) -> List[datetime.datetime]:
        """Returns every instant at which the entity with |key| changed: the start of
        each version, plus the end of the last one if the entity was deleted."""
        versions = self.history(table_name, key)
        instants = [version.valid_from for version in versions]
        if versions and versions[-1].valid_to is not None:
            instants.append(versions[-1].valid_to)
        return instants

    @contextmanager
    def _read_connection(self, table_name: str) -> Iterator[Connection]:
        self._bootstrap.require_ready()
        # Rejects untracked names before a lock is created for them.
        self._temporal_schema.tracked_table(table_name)
        with self._table_locks.shared(table_name):
            with self._engine.connect() as connection:
                yield connection.execution_options(
                    **{constants.READ_ONLY_EXECUTION_OPTION: True}
                )
