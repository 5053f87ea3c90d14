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
"""Structural changes to tracked tables.

A column added to or dropped from a tracked table is applied to its current and
history sides in the same transaction, so the two never disagree once the change
commits. Changes hold the table's exclusive lock, which waits for in-flight
change-capture writes on that table and keeps new ones out until the change is
committed and verified.
"""
import logging
from typing import Callable, List

from alembic.operations import Operations
from alembic.runtime.migration import MigrationContext
from sqlalchemy import inspect
from sqlalchemy.engine import Connection, Engine

from temporal_tables.persistence.database import constants, schema_utils
from temporal_tables.persistence.database.bootstrap import BootstrapSequencer
from temporal_tables.persistence.database.lock_manager import TableLockManager
from temporal_tables.persistence.database.structure_verifier import StructureVerifier
from temporal_tables.persistence.database.temporal_schema import (
    ColumnSpec,
    TemporalSchema,
    TrackedTable,
)
from temporal_tables.persistence.errors import StructuralMismatchError


class SchemaChanger:
    """Applies add-column, drop-column and repair operations to both sides of a
    tracked table."""

    def __init__(
        self,
        *,
        engine: Engine,
        temporal_schema: TemporalSchema,
        bootstrap: BootstrapSequencer,
        structure_verifier: StructureVerifier,
        table_locks: TableLockManager,
    ):
        self._engine = engine
        self._temporal_schema = temporal_schema
        self._bootstrap = bootstrap
        self._structure_verifier = structure_verifier
        self._table_locks = table_locks

    def add_column(self, table_name: str, column: ColumnSpec) -> TrackedTable:
        """Adds |column| to both sides of |table_name|. Existing versions get NULL
        for the new column, so it must be nullable."""
        tracked = self._temporal_schema.tracked_table(table_name)
        if not column.nullable:
            raise ValueError(
                f"Column [{column.name}] added to [{table_name}] must be nullable."
            )
        updated = tracked.with_column(column)

        def _add(operations: Operations) -> List[str]:
            for schema_name in self._schema_names():
                operations.add_column(
                    table_name, column.to_column(), schema=schema_name
                )
            return [f"Added column [{column.name}]"]

        self._apply(tracked, updated, _add, require_consistent=True)
        return updated

    def drop_column(self, table_name: str, column_name: str) -> TrackedTable:
        """Drops |column_name| from both sides of |table_name|. The dropped values
        are lost from every version, past ones included."""
        tracked = self._temporal_schema.tracked_table(table_name)
        updated = tracked.without_column(column_name)

        def _drop(operations: Operations) -> List[str]:
            for schema_name in self._schema_names():
                operations.drop_column(table_name, column_name, schema=schema_name)
            return [f"Dropped column [{column_name}]"]

        self._apply(tracked, updated, _drop, require_consistent=True)
        return updated

    def repair(self, table_name: str) -> List[str]:
        """Brings both sides of |table_name| back to its declared definition: creates
        missing tables, adds missing declared columns, drops undeclared columns and
        realigns column types. Unblocks writes once the result verifies. Returns a
        description of every change made."""
        tracked = self._temporal_schema.tracked_table(table_name)

        def _repair(operations: Operations) -> List[str]:
            return self._repair_operations(operations, tracked)

        return self._apply(tracked, tracked, _repair, require_consistent=False)

    def verify(self, table_name: str) -> None:
        """Checks |table_name| against the database, blocking or unblocking writes to
        it accordingly. Raises StructuralMismatchError on any difference."""
        self._bootstrap.require_ready()
        tracked = self._temporal_schema.tracked_table(table_name)
        with self._engine.connect() as connection:
            connection = connection.execution_options(
                **{constants.READ_ONLY_EXECUTION_OPTION: True}
            )
            self._structure_verifier.verify(connection, tracked)

    def _schema_names(self) -> List[str]:
        return [
            self._temporal_schema.current_schema,
            self._temporal_schema.history_schema,
        ]

    def _apply(
        self,
        tracked: TrackedTable,
        updated: TrackedTable,
        change: Callable[[Operations], List[str]],
        require_consistent: bool,
    ) -> List[str]:
        self._bootstrap.require_ready()
        with self._table_locks.exclusive(tracked.name):
            with self._engine.begin() as connection:
                if require_consistent:
                    self._structure_verifier.verify(connection, tracked)

                operations = Operations(MigrationContext.configure(connection))
                applied = change(operations)

                differences = schema_utils.find_structural_differences(
                    connection, self._temporal_schema, updated
                )
                if differences:
                    logging.error(
                        "Structural change to [%s] left it inconsistent, rolling "
                        "back: %s",
                        tracked.name,
                        differences,
                    )
                    raise StructuralMismatchError(tracked.name, differences)

            if updated is not tracked:
                self._temporal_schema.replace(updated)
            self.verify(tracked.name)

        for description in applied:
            logging.info(
                "Applied structural change to [%s]: %s", tracked.name, description
            )
        return applied

    def _repair_operations(
        self, operations: Operations, tracked: TrackedTable
    ) -> List[str]:
        connection: Connection = operations.get_bind()
        inspector = inspect(connection)
        declared = {tracked.key_name: tracked.key}
        declared.update({column.name: column for column in tracked.columns})

        applied = []
        history_schema = self._temporal_schema.history_schema
        for table in (
            self._temporal_schema.current_table(tracked.name),
            self._temporal_schema.history_table(tracked.name),
        ):
            existing = schema_utils.reflect_columns(inspector, table.name, table.schema)
            if existing is None:
                table.create(connection)
                applied.append(f"Created table [{table.schema}.{table.name}]")
                continue

            for name, spec in declared.items():
                if name not in existing:
                    if name == tracked.key_name:
                        raise StructuralMismatchError(
                            tracked.name,
                            [
                                f"Key column [{name}] is missing from "
                                f"[{table.schema}.{table.name}] and cannot be restored"
                            ],
                        )
                    operations.add_column(
                        table.name, spec.to_column(nullable=True), schema=table.schema
                    )
                    applied.append(
                        f"Added column [{name}] to [{table.schema}.{table.name}]"
                    )
                elif existing[name].type_name != spec.type_name:
                    operations.alter_column(
                        table.name,
                        name,
                        type_=spec.sqlalchemy_type(),
                        schema=table.schema,
                    )
                    applied.append(
                        f"Changed type of column [{name}] on "
                        f"[{table.schema}.{table.name}] to [{spec.type_name}]"
                    )

            for name in sorted(existing):
                if name in declared or (
                    table.schema == history_schema
                    and name in constants.HISTORY_ONLY_COLUMNS
                ):
                    continue
                operations.drop_column(table.name, name, schema=table.schema)
                applied.append(
                    f"Dropped column [{name}] from [{table.schema}.{table.name}]"
                )
        return applied
