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
"""Rejects mutations of tracked storage that do not come from change capture.

If any code path could write to a current or history table without going through
change capture, history would silently diverge from reality. The guard listens on
the engine at two levels:

    before_execute: Core and ORM INSERT, UPDATE and DELETE constructs, checked
        against the tables they target.
    before_cursor_execute: the final SQL text of every statement, including raw
        text() and exec_driver_sql() statements, checked for DML naming
        <current_schema>.<table> or <history_schema>.<table> of a tracked table.

A mutation is only let through on a connection that change capture has authorized
for the duration of its write transaction. The authorization is a token private to
this module, stored on the connection's info dictionary and removed before the
connection goes back to the pool.

Raw DBAPI connections obtained with Engine.raw_connection() bypass SQLAlchemy events
altogether and are not covered.
"""
import re
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from sqlalchemy import event
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.sql.dml import UpdateBase

from temporal_tables.persistence.database import constants
from temporal_tables.persistence.database.temporal_schema import TemporalSchema
from temporal_tables.persistence.errors import UntrackedWriteError

# Leading SQL comments and whitespace, skipped before looking for the statement verb.
_LEADING_NOISE_REGEX = re.compile(r"^(?:\s+|--[^\n]*(?:\n|$)|/\*.*?\*/)*", re.DOTALL)

# Data-modifying verbs, optionally behind a WITH clause.
_DML_VERB_REGEX = re.compile(
    r"^(?:WITH\b.*?\b)?(INSERT|UPDATE|DELETE|REPLACE|MERGE|TRUNCATE|UPSERT)\b",
    re.IGNORECASE | re.DOTALL,
)

# Schema-qualified names, once identifier quotes are removed.
_QUALIFIED_NAME_REGEX = re.compile(r"\b(\w+)\s*\.\s*(\w+)\b")

# Shared by every guard, so that several databases over one engine accept each
# other's change capture.
_CHANGE_CAPTURE_TOKEN = object()


class WriteGuard:
    """Guards the tracked tables of |temporal_schema| on |engine|.

    Usage:
        guard = WriteGuard(engine, temporal_schema)
        guard.install()
        with engine.begin() as connection:
            with guard.authorize(connection):
                ...  # change capture writes
    """

    def __init__(self, engine: Engine, temporal_schema: TemporalSchema):
        self._engine = engine
        self._temporal_schema = temporal_schema

    def install(self) -> None:
        event.listen(self._engine, "before_execute", self._check_statement)
        event.listen(self._engine, "before_cursor_execute", self._check_sql)

    @contextmanager
    def authorize(self, connection: Connection) -> Iterator[None]:
        """Allows mutations of tracked tables on |connection| within the block."""
        info = connection.info
        info[constants.CHANGE_CAPTURE_CONNECTION_INFO_KEY] = _CHANGE_CAPTURE_TOKEN
        try:
            yield
        finally:
            info.pop(constants.CHANGE_CAPTURE_CONNECTION_INFO_KEY, None)

    def is_authorized(self, connection: Connection) -> bool:
        return (
            connection.info.get(constants.CHANGE_CAPTURE_CONNECTION_INFO_KEY)
            is _CHANGE_CAPTURE_TOKEN
        )

    def _check_statement(
        self,
        connection: Connection,
        clauseelement: Any,
        _multiparams: Any,
        _params: Any,
        _execution_options: Any,
    ) -> None:
        if not isinstance(clauseelement, UpdateBase):
            return
        table = getattr(clauseelement, "table", None)
        if not self._temporal_schema.is_tracked_storage(table):
            return
        if self.is_authorized(connection):
            return
        raise UntrackedWriteError(
            f"Direct {clauseelement.__visit_name__} on tracked table "
            f"[{table.fullname}] is not allowed. Use TemporalDatabase.insert(), "
            f"update() or delete() instead."
        )

    def _check_sql(
        self,
        connection: Connection,
        _cursor: Any,
        statement: str,
        _parameters: Any,
        _context: Any,
        _executemany: bool,
    ) -> None:
        target = self._tracked_table_mutated_by(statement)
        if target is None or self.is_authorized(connection):
            return
        raise UntrackedWriteError(
            f"SQL statement modifying tracked table [{target}] is not allowed. Use "
            f"TemporalDatabase.insert(), update() or delete() instead."
        )

    def _tracked_table_mutated_by(self, statement: str) -> Optional[str]:
        """Returns the first tracked table named by |statement| if it is a data
        modifying statement, None otherwise."""
        unquoted = statement.replace('"', "").replace("`", "")
        body = _LEADING_NOISE_REGEX.sub("", unquoted, count=1)
        if not _DML_VERB_REGEX.match(body):
            return None
        # Unquoted identifiers are case-insensitive in SQL.
        tracked_names = {
            f"{schema_name}.{tracked.name}".lower()
            for tracked in self._temporal_schema.tracked_tables()
            for schema_name in (
                self._temporal_schema.current_schema,
                self._temporal_schema.history_schema,
            )
        }
        for schema_name, table_name in _QUALIFIED_NAME_REGEX.findall(body):
            name = f"{schema_name}.{table_name}".lower()
            if name in tracked_names:
                return name
        return None
