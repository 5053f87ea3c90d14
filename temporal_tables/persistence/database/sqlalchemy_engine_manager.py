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
"""A class to manage all SQLAlchemy Engines for temporal databases."""
import logging
from typing import Any, Dict, List, Optional, Tuple

import sqlalchemy
from sqlalchemy import event
from sqlalchemy.engine import Connection, Engine, make_url

from temporal_tables.persistence.database import constants
from temporal_tables.persistence.database.temporal_config import TemporalConfig

_SQLITE_MEMORY_DATABASE = ":memory:"


class SQLAlchemyEngineManager:
    """A class to manage all SQLAlchemy Engines for temporal databases, keyed by
    database url."""

    _engine_for_url: Dict[str, Engine] = {}

    @classmethod
    def init_engine(cls, config: TemporalConfig, **dialect_specific_kwargs: Any) -> Engine:
        """Initializes a sqlalchemy Engine object for the database described by
        |config| and caches it for future use.

        SQLite has no schemas, so for SQLite urls each temporal schema is an attached
        database: in-memory when the main database is in-memory, otherwise a file
        next to the main database file named <database>.<schema>.
        """
        if config.db_url in cls._engine_for_url:
            raise ValueError(f"Already initialized database [{_masked(config.db_url)}]")

        url = make_url(config.db_url)
        if url.get_backend_name() == "sqlite":
            connect_args = dialect_specific_kwargs.pop("connect_args", {})
            # Wait for the database write lock as long as we wait for key locks.
            connect_args.setdefault("timeout", config.lock_timeout_seconds)
            dialect_specific_kwargs["connect_args"] = connect_args

        try:
            engine = sqlalchemy.create_engine(url, **dialect_specific_kwargs)
        except BaseException as e:
            logging.error(
                "Unable to create engine for [%s]: %s", _masked(config.db_url), str(e)
            )
            raise e

        if engine.dialect.name == "sqlite":
            _configure_sqlite_engine(
                engine, [config.current_schema, config.history_schema]
            )

        logging.info(
            "Initialized [%s] engine for [%s].",
            engine.dialect.name,
            _masked(config.db_url),
        )
        cls._engine_for_url[config.db_url] = engine
        return engine

    @classmethod
    def get_engine_for_url(cls, db_url: str) -> Optional[Engine]:
        return cls._engine_for_url.get(db_url, None)

    @classmethod
    def teardown_engine_for_url(cls, db_url: str) -> None:
        cls._engine_for_url.pop(db_url).dispose()

    @classmethod
    def teardown_engines(cls) -> None:
        for engine in cls._engine_for_url.values():
            engine.dispose()
        cls._engine_for_url.clear()


def _masked(db_url: str) -> str:
    return make_url(db_url).render_as_string(hide_password=True)


def sqlite_attach_path(database: Optional[str], schema_name: str) -> str:
    if not database or database == _SQLITE_MEMORY_DATABASE:
        return _SQLITE_MEMORY_DATABASE
    return f"{database}.{schema_name}"


def _configure_sqlite_engine(engine: Engine, schema_names: List[str]) -> None:
    """Attaches one database per temporal schema to every new connection, and takes
    over transaction control from pysqlite so that write transactions start with
    BEGIN IMMEDIATE and serialize on the database write lock."""
    attachments: List[Tuple[str, str]] = [
        (schema_name, sqlite_attach_path(engine.url.database, schema_name))
        for schema_name in schema_names
    ]

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection: Any, _connection_record: Any) -> None:
        # Stop pysqlite from emitting its own BEGIN, see _on_begin.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        for schema_name, path in attachments:
            cursor.execute(f"ATTACH DATABASE ? AS {schema_name}", (path,))
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(connection: Connection) -> None:
        if connection.get_execution_options().get(
            constants.READ_ONLY_EXECUTION_OPTION
        ):
            connection.exec_driver_sql("BEGIN")
        else:
            connection.exec_driver_sql("BEGIN IMMEDIATE")
