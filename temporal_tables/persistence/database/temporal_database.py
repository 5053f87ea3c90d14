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
"""Entry point for the surrounding data-access layer.

Usage:
    temporal_schema = TemporalSchema()
    temporal_schema.track(
        TrackedTable(
            name="person",
            key=ColumnSpec("person_id", "Integer", nullable=False),
            columns=[ColumnSpec("full_name", "String", length=255)],
        )
    )
    database = TemporalDatabase.from_config(TemporalConfig.from_env(), temporal_schema)
    database.ensure_schemas()

    database.insert("person", {"person_id": 1, "full_name": "Jo Doe"})
    database.update("person", 1, {"full_name": "Jo Smith"})
    database.as_of("person", datetime.datetime(2020, 1, 1))
"""
import datetime
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.engine import Engine

from temporal_tables.common.clock import Clock, UtcClock
from temporal_tables.persistence.database import constants, schema_utils
from temporal_tables.persistence.database.bootstrap import (
    BootstrapSequencer,
    BootstrapState,
)
from temporal_tables.persistence.database.change_capture import ChangeCapture
from temporal_tables.persistence.database.layout_serialization import export_layout
from temporal_tables.persistence.database.lock_manager import (
    KeyLockManager,
    TableLockManager,
)
from temporal_tables.persistence.database.schema_changes import SchemaChanger
from temporal_tables.persistence.database.schema_utils import StructuralElement
from temporal_tables.persistence.database.sqlalchemy_engine_manager import (
    SQLAlchemyEngineManager,
)
from temporal_tables.persistence.database.structure_verifier import StructureVerifier
from temporal_tables.persistence.database.temporal_config import TemporalConfig
from temporal_tables.persistence.database.temporal_schema import (
    ColumnSpec,
    TemporalSchema,
    TrackedTable,
)
from temporal_tables.persistence.database.temporal_view import TemporalView
from temporal_tables.persistence.database.version import Version
from temporal_tables.persistence.database.write_guard import WriteGuard


class TemporalDatabase:
    """Ties bootstrap, change capture, the temporal view and structural changes
    together over one engine and one TemporalSchema.

    Installs the write guard on |engine|, after which tracked tables can only be
    mutated through this object.
    """

    def __init__(
        self,
        engine: Engine,
        temporal_schema: TemporalSchema,
        clock: Optional[Clock] = None,
        lock_timeout_seconds: float = constants.DEFAULT_LOCK_TIMEOUT_SECONDS,
    ):
        self.engine = engine
        self.temporal_schema = temporal_schema
        self.clock = clock or UtcClock()

        self._bootstrap = BootstrapSequencer(engine, temporal_schema)
        self._structure_verifier = StructureVerifier(temporal_schema)
        table_locks = TableLockManager(lock_timeout_seconds)
        self._write_guard = WriteGuard(engine, temporal_schema)

        self._change_capture = ChangeCapture(
            engine=engine,
            temporal_schema=temporal_schema,
            bootstrap=self._bootstrap,
            structure_verifier=self._structure_verifier,
            table_locks=table_locks,
            key_locks=KeyLockManager(lock_timeout_seconds),
            write_guard=self._write_guard,
            clock=self.clock,
            lock_timeout_seconds=lock_timeout_seconds,
        )
        self._view = TemporalView(
            engine, temporal_schema, self._bootstrap, table_locks
        )
        self._schema_changer = SchemaChanger(
            engine=engine,
            temporal_schema=temporal_schema,
            bootstrap=self._bootstrap,
            structure_verifier=self._structure_verifier,
            table_locks=table_locks,
        )
        self._write_guard.install()

    @classmethod
    def from_config(
        cls,
        config: TemporalConfig,
        temporal_schema: TemporalSchema,
        clock: Optional[Clock] = None,
    ) -> "TemporalDatabase":
        """Creates the engine for |config| and a database over it. |temporal_schema|
        must use the schema names from |config|."""
        if (temporal_schema.current_schema, temporal_schema.history_schema) != (
            config.current_schema,
            config.history_schema,
        ):
            raise ValueError(
                f"Schema names [{temporal_schema.current_schema}], "
                f"[{temporal_schema.history_schema}] do not match the configured "
                f"[{config.current_schema}], [{config.history_schema}]."
            )
        engine = SQLAlchemyEngineManager.get_engine_for_url(
            config.db_url
        ) or SQLAlchemyEngineManager.init_engine(config)
        return cls(
            engine,
            temporal_schema,
            clock=clock,
            lock_timeout_seconds=config.lock_timeout_seconds,
        )

    @property
    def bootstrap_state(self) -> BootstrapState:
        return self._bootstrap.state

    def ensure_schemas(self) -> None:
        self._bootstrap.ensure_schemas()

    # Writes

    def insert(
        self,
        table_name: str,
        values: Mapping[str, Any],
        valid_from: Optional[datetime.datetime] = None,
    ) -> Version:
        return self._change_capture.insert(table_name, values, valid_from=valid_from)

    def update(
        self, table_name: str, key: Any, changes: Mapping[str, Any]
    ) -> Optional[Version]:
        return self._change_capture.update(table_name, key, changes)

    def delete(self, table_name: str, key: Any) -> Version:
        return self._change_capture.delete(table_name, key)

    # Reads

    def current(self, table_name: str, key: Any = None) -> List[Dict[str, Any]]:
        return self._view.current(table_name, key)

    def as_of(
        self, table_name: str, instant: datetime.datetime, key: Any = None
    ) -> List[Version]:
        return self._view.as_of(table_name, instant, key)

    def history(self, table_name: str, key: Any) -> List[Version]:
        return self._view.history(table_name, key)

    def timeline(self, table_name: str, key: Any) -> List[datetime.datetime]:
        return self._view.timeline(table_name, key)

    # Structure

    def add_column(self, table_name: str, column: ColumnSpec) -> TrackedTable:
        return self._schema_changer.add_column(table_name, column)

    def drop_column(self, table_name: str, column_name: str) -> TrackedTable:
        return self._schema_changer.drop_column(table_name, column_name)

    def repair_structure(self, table_name: str) -> List[str]:
        return self._schema_changer.repair(table_name)

    def verify_structure(self, table_name: str) -> None:
        self._schema_changer.verify(table_name)

    def is_write_blocked(self, table_name: str) -> bool:
        return self._structure_verifier.is_blocked(table_name)

    def structural_elements(self) -> List[StructuralElement]:
        return schema_utils.list_structural_elements(self.temporal_schema)

    def export_layout(self) -> str:
        return export_layout(self.temporal_schema)
