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
"""Utilities for inspecting the structure of tracked tables."""
import logging
from typing import Dict, List, Optional

import attr
from more_itertools import one
from sqlalchemy import inspect
from sqlalchemy.engine import Connection
from sqlalchemy.engine.reflection import Inspector

from temporal_tables.common import attr_validators
from temporal_tables.persistence.database import constants
from temporal_tables.persistence.database.temporal_schema import (
    ColumnSpec,
    TemporalSchema,
    TrackedTable,
)


@attr.s(frozen=True)
class StructuralElement:
    """A single column of one side of a tracked table."""

    schema: str = attr.ib(validator=attr_validators.is_str)
    table: str = attr.ib(validator=attr_validators.is_str)
    column: str = attr.ib(validator=attr_validators.is_str)
    type_name: str = attr.ib(validator=attr_validators.is_str)
    nullable: bool = attr.ib(validator=attr_validators.is_bool)
    position: int = attr.ib(validator=attr_validators.is_int)


def list_structural_elements(temporal_schema: TemporalSchema) -> List[StructuralElement]:
    """Returns a complete, ordered listing of the structural elements of every
    tracked table: tables ordered by name, the current side before the history side,
    columns in declaration order."""
    elements = []
    for tracked in temporal_schema.tracked_tables():
        for table in (
            temporal_schema.current_table(tracked.name),
            temporal_schema.history_table(tracked.name),
        ):
            for position, column in enumerate(table.columns):
                spec = ColumnSpec.from_column(column)
                elements.append(
                    StructuralElement(
                        schema=table.schema,
                        table=table.name,
                        column=column.name,
                        type_name=spec.type_name,
                        nullable=spec.nullable,
                        position=position,
                    )
                )
    return elements


def reflect_columns(
    inspector: Inspector, table_name: str, schema: str
) -> Optional[Dict[str, ColumnSpec]]:
    """Returns column name -> ColumnSpec for the table as it exists in the database, or
    None if the table does not exist."""
    if not inspector.has_table(table_name, schema=schema):
        return None
    return {
        reflected["name"]: ColumnSpec.from_reflected(reflected)
        for reflected in inspector.get_columns(table_name, schema=schema)
    }


def find_structural_differences(
    connection: Connection, temporal_schema: TemporalSchema, tracked: TrackedTable
) -> List[str]:
    """Compares both sides of |tracked| as they exist in the database with each other
    and with the declared definition. Returns a description of every difference, or
    an empty list if the structures agree.

    Only column names and canonical types are compared. History-only columns are
    ignored when comparing the two sides.
    """
    inspector = inspect(connection)
    current_columns = reflect_columns(
        inspector, tracked.name, temporal_schema.current_schema
    )
    history_columns = reflect_columns(
        inspector, tracked.name, temporal_schema.history_schema
    )

    differences = []
    if current_columns is None:
        differences.append(
            f"Table [{temporal_schema.current_schema}.{tracked.name}] does not exist"
        )
    if history_columns is None:
        differences.append(
            f"Table [{temporal_schema.history_schema}.{tracked.name}] does not exist"
        )
    if differences:
        return differences

    assert current_columns is not None and history_columns is not None

    for history_only in constants.HISTORY_ONLY_COLUMNS:
        if history_only not in history_columns:
            differences.append(
                f"History table is missing history column [{history_only}]"
            )
        history_columns.pop(history_only, None)

    for name in sorted(set(current_columns) - set(history_columns)):
        differences.append(f"Column [{name}] exists on current table only")
    for name in sorted(set(history_columns) - set(current_columns)):
        differences.append(f"Column [{name}] exists on history table only")
    for name in sorted(set(current_columns) & set(history_columns)):
        current_type = current_columns[name].type_name
        history_type = history_columns[name].type_name
        if current_type != history_type:
            differences.append(
                f"Column [{name}] has type [{current_type}] on current table but "
                f"[{history_type}] on history table"
            )

    declared = {tracked.key.name: tracked.key}
    declared.update({column.name: column for column in tracked.columns})
    for name in sorted(set(declared) - set(current_columns) - set(history_columns)):
        differences.append(f"Declared column [{name}] exists on neither table")
    for name in sorted((set(current_columns) & set(history_columns)) - set(declared)):
        differences.append(f"Column [{name}] exists on both tables but is not declared")
    for name in sorted(set(declared) & set(current_columns)):
        if declared[name].type_name != current_columns[name].type_name:
            differences.append(
                f"Column [{name}] is declared as [{declared[name].type_name}] but is "
                f"[{current_columns[name].type_name}] in the database"
            )

    return differences


def reflect_layout(
    connection: Connection,
    current_schema: str = constants.DEFAULT_CURRENT_SCHEMA,
    history_schema: str = constants.DEFAULT_HISTORY_SCHEMA,
) -> TemporalSchema:
    """Rebuilds a TemporalSchema from the tables that exist in the database, pairing
    tables with the same name in the current and history schemas. Tables without a
    counterpart are skipped."""
    inspector = inspect(connection)
    history_table_names = set(inspector.get_table_names(schema=history_schema))

    temporal_schema = TemporalSchema(
        current_schema=current_schema, history_schema=history_schema
    )
    for table_name in sorted(inspector.get_table_names(schema=current_schema)):
        if table_name not in history_table_names:
            logging.warning(
                "Table [%s.%s] has no history counterpart, skipping.",
                current_schema,
                table_name,
            )
            continue

        primary_key = inspector.get_pk_constraint(table_name, schema=current_schema)
        key_columns = primary_key.get("constrained_columns") or []
        if len(key_columns) != 1:
            raise ValueError(
                f"Expected a single primary key column on [{current_schema}."
                f"{table_name}], found {key_columns}."
            )
        key_name = key_columns[0]

        specs = [
            ColumnSpec.from_reflected(reflected)
            for reflected in inspector.get_columns(table_name, schema=current_schema)
        ]
        key = one(spec for spec in specs if spec.name == key_name)
        columns = [spec for spec in specs if spec.name != key_name]
        temporal_schema.track(TrackedTable(name=table_name, key=key, columns=columns))
    return temporal_schema
