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
"""Tests for the ensure_schemas and export_layout tools."""
import io
import json
import os
import tempfile
import unittest
from unittest import mock

from sqlalchemy import inspect

from temporal_tables.persistence.database.layout_serialization import (
    export_layout,
    import_layout,
)
from temporal_tables.persistence.database.sqlalchemy_engine_manager import (
    SQLAlchemyEngineManager,
)
from temporal_tables.persistence.database.temporal_config import TemporalConfig
from temporal_tables.persistence.errors import FatalError
from temporal_tables.tests.utils.fakes import build_person_schema
from temporal_tables.tools import ensure_schemas, export_layout as export_layout_tool


@mock.patch.dict("os.environ", {}, clear=True)
class LayoutToolsTest(unittest.TestCase):
    """Runs both tools against an on-disk sqlite database."""

    def setUp(self) -> None:
        self.db_dir = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self.db_dir.name, "app.db")
        self.db_url = f"sqlite:///{self.db_path}"
        self.layout_file = os.path.join(self.db_dir.name, "layout.json")
        self.temporal_schema = build_person_schema("live", "archive")
        with open(self.layout_file, "w", encoding="utf-8") as f:
            f.write(export_layout(self.temporal_schema))

    def tearDown(self) -> None:
        SQLAlchemyEngineManager.teardown_engines()
        self.db_dir.cleanup()

    def test_ensureSchemas_createsLayout(self) -> None:
        ensure_schemas.main(self.db_url, self.layout_file)

        self.assertIsNone(SQLAlchemyEngineManager.get_engine_for_url(self.db_url))
        engine = SQLAlchemyEngineManager.init_engine(
            TemporalConfig(
                db_url=self.db_url, current_schema="live", history_schema="archive"
            )
        )
        with engine.connect() as connection:
            inspector = inspect(connection)
            self.assertEqual(["person"], inspector.get_table_names(schema="live"))
            self.assertEqual(["person"], inspector.get_table_names(schema="archive"))

    def test_ensureSchemas_twice(self) -> None:
        ensure_schemas.main(self.db_url, self.layout_file)
        ensure_schemas.main(self.db_url, self.layout_file)

    def test_ensureSchemas_failure_exits(self) -> None:
        with mock.patch(
            "temporal_tables.tools.ensure_schemas.TemporalDatabase.ensure_schemas",
            side_effect=FatalError("schemas could not be created"),
        ):
            with self.assertRaises(SystemExit) as e:
                ensure_schemas.main(self.db_url, self.layout_file)

        self.assertEqual(1, e.exception.code)
        self.assertIsNone(SQLAlchemyEngineManager.get_engine_for_url(self.db_url))

    def test_exportLayout_roundTrip(self) -> None:
        ensure_schemas.main(self.db_url, self.layout_file)
        output = os.path.join(self.db_dir.name, "exported.json")

        with mock.patch.dict(
            "os.environ",
            {"TEMPORAL_CURRENT_SCHEMA": "live", "TEMPORAL_HISTORY_SCHEMA": "archive"},
        ):
            export_layout_tool.main(self.db_url, output)

        with open(output, encoding="utf-8") as f:
            exported = import_layout(f.read())
        self.assertEqual(
            self.temporal_schema.tracked_tables(), exported.tracked_tables()
        )

    def test_exportLayout_stdout(self) -> None:
        ensure_schemas.main(self.db_url, self.layout_file)

        with mock.patch.dict(
            "os.environ",
            {"TEMPORAL_CURRENT_SCHEMA": "live", "TEMPORAL_HISTORY_SCHEMA": "archive"},
        ), mock.patch("sys.stdout", new_callable=io.StringIO) as stdout:
            export_layout_tool.main(self.db_url, None)

        layout = json.loads(stdout.getvalue())
        self.assertEqual(["person"], [t["name"] for t in layout["tables"]])

    def test_parsers(self) -> None:
        args = ensure_schemas.create_parser().parse_args(
            ["--db-url", self.db_url, "--layout-file", self.layout_file]
        )
        self.assertEqual((self.db_url, self.layout_file), (args.db_url, args.layout_file))

        args = export_layout_tool.create_parser().parse_args([])
        self.assertEqual((None, None), (args.db_url, args.output))
