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
"""Tests for temporal_config.py."""
import unittest
from unittest import mock

from temporal_tables.persistence.database.temporal_config import TemporalConfig


class TemporalConfigTest(unittest.TestCase):
    """Tests for TemporalConfig."""

    @mock.patch.dict("os.environ", {"TEMPORAL_DB_URL": "sqlite:///app.db"}, clear=True)
    def test_fromEnv_defaults(self) -> None:
        config = TemporalConfig.from_env()

        self.assertEqual(
            TemporalConfig(
                db_url="sqlite:///app.db",
                current_schema="temporal",
                history_schema="history",
                lock_timeout_seconds=5.0,
            ),
            config,
        )

    @mock.patch.dict(
        "os.environ",
        {
            "TEMPORAL_DB_URL": "postgresql://localhost/app",
            "TEMPORAL_CURRENT_SCHEMA": "live",
            "TEMPORAL_HISTORY_SCHEMA": "archive",
            "TEMPORAL_LOCK_TIMEOUT_SECONDS": "0.25",
        },
        clear=True,
    )
    def test_fromEnv_overrides(self) -> None:
        config = TemporalConfig.from_env()

        self.assertEqual("postgresql://localhost/app", config.db_url)
        self.assertEqual("live", config.current_schema)
        self.assertEqual("archive", config.history_schema)
        self.assertEqual(0.25, config.lock_timeout_seconds)

    @mock.patch.dict("os.environ", {"TEMPORAL_DB_URL": "sqlite:///env.db"}, clear=True)
    def test_fromEnv_explicitUrlWins(self) -> None:
        config = TemporalConfig.from_env("sqlite:///explicit.db")

        self.assertEqual("sqlite:///explicit.db", config.db_url)

    @mock.patch.dict("os.environ", {"TEMPORAL_DB_URL": ""}, clear=True)
    def test_fromEnv_noUrl_raises(self) -> None:
        with self.assertRaises(ValueError):
            TemporalConfig.from_env()

    def test_sameSchemas_raises(self) -> None:
        with self.assertRaises(ValueError):
            TemporalConfig(
                db_url="sqlite://", current_schema="data", history_schema="data"
            )

    def test_invalidSchemaName_raises(self) -> None:
        with self.assertRaises(ValueError):
            TemporalConfig(db_url="sqlite://", current_schema="temporal; --")

    def test_nonPositiveTimeout_raises(self) -> None:
        with self.assertRaises(ValueError):
            TemporalConfig(db_url="sqlite://", lock_timeout_seconds=0)
