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
"""Defines the dual-schema layout of tracked tables.

Every tracked entity type is stored in two tables with the same name: a current-state
table in the current schema holding one mutable row per live entity, and an
append-only history table in the history schema holding every version of every
entity. Counterparts are located purely by this naming rule.

The history table carries all columns of the current table, plus:
    history_id: surrogate primary key. It only exists because every table needs a
        unique primary key and should not be referenced by anything.
    valid_from / valid_to: the version's validity interval. valid_to is NULL for the
        open-ended version of a live entity.
    recorded_at: when the version was physically written.

The entity key column is unique on the current table but not on the history table,
which holds many versions per key.
"""
from typing import Any, Dict, List, Optional, Tuple, Type

import attr
import sqlalchemy
from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    Table,
    text,
)
from sqlalchemy.sql.type_api import TypeEngine

from temporal_tables.common import attr_validators
from temporal_tables.persistence.database import constants

# Ordered so that subclasses come before their bases, e.g. Text before String.
_CANONICAL_TYPES: List[Tuple[str, Type[TypeEngine]]] = [
    ("BigInteger", sqlalchemy.BigInteger),
    ("SmallInteger", sqlalchemy.SmallInteger),
    ("Integer", sqlalchemy.Integer),
    ("Boolean", sqlalchemy.Boolean),
    ("DateTime", sqlalchemy.DateTime),
    ("Date", sqlalchemy.Date),
    ("Text", sqlalchemy.Text),
    ("String", sqlalchemy.String),
    ("Float", sqlalchemy.Float),
    ("Numeric", sqlalchemy.Numeric),
    ("JSON", sqlalchemy.JSON),
    ("LargeBinary", sqlalchemy.LargeBinary),
]

_TYPES_BY_NAME: Dict[str, Type[TypeEngine]] = dict(_CANONICAL_TYPES)


def canonical_type_name(sql_type: TypeEngine) -> str:
    """Returns the portable type name for |sql_type|, which may be a generic type or a
    dialect-specific type produced by reflection (e.g. sqlite DATETIME, postgres
    DOUBLE_PRECISION)."""
    for name, type_class in _CANONICAL_TYPES:
        if isinstance(sql_type, type_class):
            return name
    return type(sql_type).__name__


@attr.s(frozen=True)
class ColumnSpec:
    """Portable description of a single column."""

    name: str = attr.ib(validator=attr_validators.is_sql_identifier)
    type_name: str = attr.ib(validator=attr_validators.is_non_empty_str)
    length: Optional[int] = attr.ib(default=None, validator=attr_validators.is_opt_int)
    precision: Optional[int] = attr.ib(
        default=None, validator=attr_validators.is_opt_int
    )
    scale: Optional[int] = attr.ib(default=None, validator=attr_validators.is_opt_int)
    nullable: bool = attr.ib(default=True, validator=attr_validators.is_bool)

    def __attrs_post_init__(self) -> None:
        if self.type_name not in _TYPES_BY_NAME:
            raise ValueError(
                f"Unsupported type [{self.type_name}] for column [{self.name}]. "
                f"Supported types: {sorted(_TYPES_BY_NAME)}"
            )

    def sqlalchemy_type(self) -> TypeEngine:
        if self.type_name == "String":
            return sqlalchemy.String(self.length)
        if self.type_name == "Float":
            return sqlalchemy.Float(precision=self.precision)
        if self.type_name == "Numeric":
            return sqlalchemy.Numeric(precision=self.precision, scale=self.scale)
        return _TYPES_BY_NAME[self.type_name]()

    def to_column(self, **overrides: Any) -> Column:
        """Returns a new, unattached Column for this spec."""
        kwargs: Dict[str, Any] = {"nullable": self.nullable}
        kwargs.update(overrides)
        return Column(self.name, self.sqlalchemy_type(), **kwargs)

    @classmethod
    def from_column(cls, column: Column) -> "ColumnSpec":
        return cls._from_type(column.name, column.type, bool(column.nullable))

    @classmethod
    def from_reflected(cls, reflected: Dict[str, Any]) -> "ColumnSpec":
        """Builds a spec from one entry of Inspector.get_columns()."""
        return cls._from_type(
            reflected["name"], reflected["type"], bool(reflected.get("nullable", True))
        )

    @classmethod
    def _from_type(cls, name: str, sql_type: TypeEngine, nullable: bool) -> "ColumnSpec":
        type_name = canonical_type_name(sql_type)
        length = getattr(sql_type, "length", None) if type_name == "String" else None
        precision = (
            getattr(sql_type, "precision", None)
            if type_name in ("Numeric", "Float")
            else None
        )
        scale = getattr(sql_type, "scale", None) if type_name == "Numeric" else None
        return cls(
            name=name,
            type_name=type_name,
            length=length,
            precision=precision,
            scale=scale,
            nullable=nullable,
        )


@attr.s(frozen=True)
class TrackedTable:
    """Describes one tracked entity type: its stable key column and the attribute
    columns whose changes are versioned."""

    name: str = attr.ib(validator=attr_validators.is_sql_identifier)
    key: ColumnSpec = attr.ib(validator=attr.validators.instance_of(ColumnSpec))
    columns: List[ColumnSpec] = attr.ib(
        factory=list, validator=attr_validators.is_list_of(ColumnSpec)
    )

    def __attrs_post_init__(self) -> None:
        seen = {self.key.name}
        for column in self.columns:
            if column.name in seen:
                raise ValueError(
                    f"Duplicate column [{column.name}] on tracked table [{self.name}]."
                )
            seen.add(column.name)
        reserved = seen.intersection(constants.HISTORY_ONLY_COLUMNS)
        if reserved:
            raise ValueError(
                f"Tracked table [{self.name}] uses reserved column names "
                f"{sorted(reserved)}."
            )

    @property
    def key_name(self) -> str:
        return self.key.name

    @property
    def attribute_names(self) -> List[str]:
        return [column.name for column in self.columns]

    @property
    def column_names(self) -> List[str]:
        return [self.key.name] + self.attribute_names

    def with_column(self, column: ColumnSpec) -> "TrackedTable":
        return attr.evolve(self, columns=self.columns + [column])

    def without_column(self, column_name: str) -> "TrackedTable":
        if column_name == self.key.name:
            raise ValueError(
                f"Cannot drop key column [{column_name}] of tracked table [{self.name}]."
            )
        if column_name not in self.attribute_names:
            raise ValueError(
                f"Column [{column_name}] not found on tracked table [{self.name}]."
            )
        return attr.evolve(
            self, columns=[c for c in self.columns if c.name != column_name]
        )


def _check_schema_name(schema_name: str) -> None:
    if not attr_validators.SQL_IDENTIFIER_REGEX.match(schema_name):
        raise ValueError(f"Schema name must be a plain SQL identifier: [{schema_name}]")


class TemporalSchema:
    """Holds the SQLAlchemy MetaData for both sides of every tracked table.

    Usage:
        schema = TemporalSchema()
        schema.track(
            TrackedTable(
                name="person",
                key=ColumnSpec("person_id", "Integer", nullable=False),
                columns=[ColumnSpec("full_name", "String", length=255)],
            )
        )
        schema.current_table("person")  # temporal.person
        schema.history_table("person")  # history.person
    """

    def __init__(
        self,
        current_schema: str = constants.DEFAULT_CURRENT_SCHEMA,
        history_schema: str = constants.DEFAULT_HISTORY_SCHEMA,
    ):
        _check_schema_name(current_schema)
        _check_schema_name(history_schema)
        if current_schema == history_schema:
            raise ValueError(
                f"Current and history schemas must differ, both are [{current_schema}]."
            )
        self.current_schema = current_schema
        self.history_schema = history_schema
        self.metadata = MetaData()
        self._tracked: Dict[str, TrackedTable] = {}

    def track(self, tracked: TrackedTable) -> TrackedTable:
        """Registers |tracked| and builds its current and history tables."""
        if tracked.name in self._tracked:
            raise ValueError(f"Table [{tracked.name}] is already tracked.")
        self._build_current_table(tracked)
        self._build_history_table(tracked)
        self._tracked[tracked.name] = tracked
        return tracked

    def replace(self, tracked: TrackedTable) -> TrackedTable:
        """Rebuilds both tables of an already tracked entity type from |tracked|.
        Used after a structural change has been applied to the database."""
        if tracked.name not in self._tracked:
            raise ValueError(f"Table [{tracked.name}] is not tracked.")
        self.metadata.remove(self.current_table(tracked.name))
        self.metadata.remove(self.history_table(tracked.name))
        del self._tracked[tracked.name]
        return self.track(tracked)

    def tracked_table(self, table_name: str) -> TrackedTable:
        if table_name not in self._tracked:
            raise ValueError(
                f"{table_name}: Table name not found in list of tracked tables: "
                f"{sorted(self._tracked)}"
            )
        return self._tracked[table_name]

    def tracked_tables(self) -> List[TrackedTable]:
        return [self._tracked[name] for name in sorted(self._tracked)]

    def current_table(self, table_name: str) -> Table:
        return self.metadata.tables[f"{self.current_schema}.{table_name}"]

    def history_table(self, table_name: str) -> Table:
        return self.metadata.tables[f"{self.history_schema}.{table_name}"]

    def counterpart(self, table: Table) -> Table:
        """Returns the history table for a current table and vice versa."""
        if table.schema == self.current_schema:
            return self.history_table(table.name)
        if table.schema == self.history_schema:
            return self.current_table(table.name)
        raise ValueError(f"Table [{table.fullname}] is not in a temporal schema.")

    def is_tracked_storage(self, table: Any) -> bool:
        """Returns True if |table| is either side of a tracked table."""
        return self.is_tracked_name(
            getattr(table, "schema", None), getattr(table, "name", None)
        )

    def is_tracked_name(self, schema_name: Optional[str], table_name: Any) -> bool:
        """Returns True if |schema_name|.|table_name| is either side of a tracked
        table."""
        return (
            schema_name in (self.current_schema, self.history_schema)
            and table_name in self._tracked
        )

    def _build_current_table(self, tracked: TrackedTable) -> Table:
        return Table(
            tracked.name,
            self.metadata,
            # Identity is owned by the application, never generated here.
            tracked.key.to_column(
                primary_key=True, autoincrement=False, nullable=False
            ),
            *[column.to_column() for column in tracked.columns],
            schema=self.current_schema,
        )

    def _build_history_table(self, tracked: TrackedTable) -> Table:
        name = tracked.name
        key_name = tracked.key_name
        open_version_clause = text(f"{constants.VALID_TO_COLUMN} IS NULL")
        return Table(
            name,
            self.metadata,
            Column(
                constants.HISTORY_ID_COLUMN,
                Integer,
                primary_key=True,
                autoincrement=True,
            ),
            tracked.key.to_column(nullable=False),
            *[column.to_column() for column in tracked.columns],
            Column(constants.VALID_FROM_COLUMN, DateTime, nullable=False),
            Column(constants.VALID_TO_COLUMN, DateTime, nullable=True),
            Column(constants.RECORDED_AT_COLUMN, DateTime, nullable=False),
            CheckConstraint(
                f"{constants.VALID_TO_COLUMN} IS NULL OR "
                f"{constants.VALID_TO_COLUMN} > {constants.VALID_FROM_COLUMN}",
                name=f"ck_{name}_positive_interval",
            ),
            Index(
                f"ix_{name}_{key_name}_valid_from",
                key_name,
                constants.VALID_FROM_COLUMN,
            ),
            # At most one open-ended version per entity.
            Index(
                f"ux_{name}_{key_name}_open_version",
                key_name,
                unique=True,
                postgresql_where=open_version_clause,
                sqlite_where=open_version_clause,
            ),
            schema=self.history_schema,
        )
