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
"""Tests for concurrent readers and writers against an on-disk sqlite database."""
import datetime
import tempfile
import threading
import unittest
from typing import List

import pytest

from temporal_tables.persistence.database.interval import validate_version_chain
from temporal_tables.persistence.database.temporal_database import TemporalDatabase
from temporal_tables.persistence.database.temporal_schema import ColumnSpec
from temporal_tables.persistence.errors import LockTimeoutError
from temporal_tables.tests.utils import fakes
from temporal_tables.tests.utils.fake_clock import FakeClock
from temporal_tables.tests.utils.fakes import build_person_schema

_WRITERS = 4
_WRITES_PER_WRITER = 10
_STRUCTURAL_CHANGES = 10


@pytest.mark.uses_db
class ConcurrentWritersTest(unittest.TestCase):
    """Writers on separate threads, sharing one file-backed database."""

    def setUp(self) -> None:
        self.db_dir = tempfile.TemporaryDirectory()
        self.clock = FakeClock(auto_advance=datetime.timedelta(microseconds=1))
        self.temporal_schema = build_person_schema()
        self.database = fakes.use_on_disk_sqlite_database(
            self.temporal_schema,
            self.db_dir.name,
            clock=self.clock,
            lock_timeout_seconds=30,
        )
        self.database.ensure_schemas()
        self.database.insert("person", {"person_id": 1, "status": "initial"})

    def tearDown(self) -> None:
        fakes.teardown_sqlite_databases()
        self.db_dir.cleanup()

    def _run_writers(
        self, databases: List[TemporalDatabase], key: int
    ) -> List[Exception]:
        errors: List[Exception] = []

        def write(writer: int) -> None:
            database = databases[writer % len(databases)]
            try:
                for i in range(_WRITES_PER_WRITER):
                    database.update("person", key, {"status": f"writer {writer} #{i}"})
            except Exception as e:
                errors.append(e)

        threads = [
            threading.Thread(target=write, args=(writer,)) for writer in range(_WRITERS)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        return errors

    def _assert_contiguous(self, key: int, expected_versions: int) -> None:
        history = self.database.history("person", key)
        self.assertEqual(expected_versions, len(history))
        validate_version_chain([version.interval for version in history])
        self.assertEqual(1, len([v for v in history if v.is_current]))
        self.assertEqual(
            history[-1].values["status"],
            self.database.current("person", key)[0]["status"],
        )

    def test_sameKey_writersSerialized(self) -> None:
        errors = self._run_writers([self.database], key=1)

        self.assertEqual([], errors)
        self._assert_contiguous(1, 1 + _WRITERS * _WRITES_PER_WRITER)

    def test_sameKey_independentLockManagers(self) -> None:
        # A second TemporalDatabase has its own in-process locks, like another
        # process would. Writers then only serialize on the database itself.
        other = TemporalDatabase(
            self.database.engine,
            self.temporal_schema,
            clock=self.clock,
            lock_timeout_seconds=30,
        )
        other.ensure_schemas()

        errors = self._run_writers([self.database, other], key=1)

        self.assertEqual([], errors)
        self._assert_contiguous(1, 1 + _WRITERS * _WRITES_PER_WRITER)

    def test_differentKeys(self) -> None:
        for person_id in range(2, 2 + _WRITERS):
            self.database.insert("person", {"person_id": person_id})
        errors: List[Exception] = []

        def write(person_id: int) -> None:
            try:
                for i in range(_WRITES_PER_WRITER):
                    self.database.update("person", person_id, {"status": str(i)})
            except Exception as e:
                errors.append(e)

        threads = [
            threading.Thread(target=write, args=(person_id,))
            for person_id in range(2, 2 + _WRITERS)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual([], errors)
        for person_id in range(2, 2 + _WRITERS):
            self._assert_contiguous(person_id, 1 + _WRITES_PER_WRITER)

    def test_readsDuringWrites(self) -> None:
        stop = threading.Event()
        read_errors: List[Exception] = []

        def read() -> None:
            try:
                while not stop.is_set():
                    self.assertEqual(
                        1, len(self.database.as_of("person", self.clock.now()))
                    )
            except Exception as e:
                read_errors.append(e)

        reader = threading.Thread(target=read)
        reader.start()
        errors = self._run_writers([self.database], key=1)
        stop.set()
        reader.join()

        self.assertEqual([], errors)
        self.assertEqual([], read_errors)

    def test_readsDuringStructuralChanges(self) -> None:
        stop = threading.Event()
        read_errors: List[Exception] = []
        reads: List[int] = []

        def read() -> None:
            try:
                while not stop.is_set():
                    self.assertEqual(1, len(self.database.current("person")))
                    self.assertEqual(
                        1, len(self.database.as_of("person", self.clock.now()))
                    )
                    self.assertEqual(1, len(self.database.history("person", 1)))
                    reads.append(1)
            except Exception as e:
                read_errors.append(e)

        readers = [threading.Thread(target=read) for _ in range(_WRITERS)]
        for reader in readers:
            reader.start()
        try:
            for i in range(_STRUCTURAL_CHANGES):
                self.database.add_column(
                    "person", ColumnSpec(f"extra_{i}", "String", length=20)
                )
                self.database.drop_column("person", f"extra_{i}")
        finally:
            stop.set()
            for reader in readers:
                reader.join()

        self.assertEqual([], read_errors)
        self.assertTrue(reads)
        self.assertEqual(
            ["person_id", "full_name", "birthdate", "status"],
            self.temporal_schema.tracked_table("person").column_names,
        )


@pytest.mark.uses_db
class DatabaseLockTimeoutTest(unittest.TestCase):
    """Tests that waiting on the database write lock is bounded."""

    def setUp(self) -> None:
        self.db_dir = tempfile.TemporaryDirectory()
        self.database = fakes.use_on_disk_sqlite_database(
            build_person_schema(),
            self.db_dir.name,
            clock=FakeClock(auto_advance=datetime.timedelta(seconds=1)),
            lock_timeout_seconds=0.2,
        )
        self.database.ensure_schemas()

    def tearDown(self) -> None:
        fakes.teardown_sqlite_databases()
        self.db_dir.cleanup()

    def test_writeLockHeldElsewhere_raisesLockTimeout(self) -> None:
        errors: List[Exception] = []

        def insert() -> None:
            try:
                self.database.insert("person", {"person_id": 1})
            except Exception as e:
                errors.append(e)

        # Holds the sqlite write lock from BEGIN IMMEDIATE until the block exits.
        with self.database.engine.begin():
            writer = threading.Thread(target=insert)
            writer.start()
            writer.join()

        self.assertEqual(1, len(errors))
        self.assertIsInstance(errors[0], LockTimeoutError)
        self.assertEqual([], self.database.current("person"))
