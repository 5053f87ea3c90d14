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
"""Creates the current and history schemas, and the tables inside them, before any
other operation touches them.

The sequencer is an explicit state machine:

    UNINITIALIZED -> ENSURING -> READY | FAILED

Every read, write and structural change calls require_ready() first, so nothing
relies on call order to find both schemas in place. A failure is fatal and sticky:
there is no safe degraded mode without both schemas, so the process should abort.
"""
import enum
import logging
import threading

from sqlalchemy.engine import Connection, Engine
from sqlalchemy.schema import CreateSchema

from temporal_tables.persistence.database.temporal_schema import TemporalSchema
from temporal_tables.persistence.errors import FatalError


@enum.unique
class BootstrapState(enum.Enum):
    UNINITIALIZED = "UNINITIALIZED"
    ENSURING = "ENSURING"
    READY = "READY"
    FAILED = "FAILED"


class BootstrapSequencer:
    """Ensures both temporal schemas and all tracked tables exist, exactly once."""

    def __init__(self, engine: Engine, temporal_schema: TemporalSchema):
        self._engine = engine
        self._temporal_schema = temporal_schema
        self._state = BootstrapState.UNINITIALIZED
        self._lock = threading.Lock()

    @property
    def state(self) -> BootstrapState:
        return self._state

    def ensure_schemas(self) -> None:
        """Idempotently creates both schema namespaces and every tracked table that
        does not exist yet. Safe to call on every process start.

        Raises FatalError if the schemas could not be created, or if a previous
        attempt in this process failed.
        """
        with self._lock:
            if self._state is BootstrapState.READY:
                return
            if self._state is BootstrapState.FAILED:
                raise FatalError(
                    "A previous attempt to create the temporal schemas failed."
                )

            self._state = BootstrapState.ENSURING
            logging.info(
                "Ensuring schemas [%s] and [%s] exist.",
                self._temporal_schema.current_schema,
                self._temporal_schema.history_schema,
            )
            try:
                with self._engine.begin() as connection:
                    for schema_name in (
                        self._temporal_schema.current_schema,
                        self._temporal_schema.history_schema,
                    ):
                        _ensure_namespace(connection, schema_name)
                    self._temporal_schema.metadata.create_all(
                        connection, checkfirst=True
                    )
            except FatalError as e:
                self._state = BootstrapState.FAILED
                logging.error("Unable to create temporal schemas: %s", str(e))
                raise e
            except Exception as e:
                self._state = BootstrapState.FAILED
                logging.error("Unable to create temporal schemas: %s", str(e))
                raise FatalError(f"Unable to create temporal schemas: {e}") from e

            self._state = BootstrapState.READY
            logging.info("Temporal schemas ready.")

    def require_ready(self) -> None:
        """Raises FatalError unless ensure_schemas() has completed successfully."""
        state = self._state
        if state is not BootstrapState.READY:
            raise FatalError(
                f"Temporal schemas are not ready (state [{state.value}]). "
                f"ensure_schemas() must complete before any other operation."
            )


def _ensure_namespace(connection: Connection, schema_name: str) -> None:
    dialect_name = connection.dialect.name
    if dialect_name == "postgresql":
        connection.execute(CreateSchema(schema_name, if_not_exists=True))
        return
    if dialect_name == "sqlite":
        # Attached databases are the SQLite namespaces. They cannot be attached
        # inside a transaction, so the engine manager attaches them on connect.
        attached = {
            row[1] for row in connection.exec_driver_sql("PRAGMA database_list")
        }
        if schema_name not in attached:
            raise FatalError(
                f"SQLite database [{schema_name}] is not attached. Create the engine "
                f"with SQLAlchemyEngineManager.init_engine()."
            )
        return
    raise FatalError(f"Unsupported database dialect [{dialect_name}].")
