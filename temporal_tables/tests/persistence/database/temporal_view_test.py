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
"""Tests for temporal_view.py."""
import datetime
import unittest

from temporal_tables.persistence.database.interval import Interval
from temporal_tables.tests.utils import fakes
from temporal_tables.tests.utils.fake_clock import FakeClock
from temporal_tables.tests.utils.fakes import build_person_schema

_T1 = datetime.datetime(2020, 1, 1, 9, 0, 0)
_T2 = datetime.datetime(2020, 1, 2, 9, 0, 0)
_T3 = datetime.datetime(2020, 1, 3, 9, 0, 0)
_EPSILON = datetime.timedelta(microseconds=1)


class TemporalViewTest(unittest.TestCase):
    """Tests for current, as-of and history reads."""

    def setUp(self) -> None:
        self.clock = FakeClock(_T1)
        self.temporal_schema = build_person_schema()
        self.database = fakes.use_in_memory_sqlite_database(
            self.temporal_schema, clock=self.clock
        )
        self.database.ensure_schemas()

    def tearDown(self) -> None:
        fakes.teardown_sqlite_databases()

    def test_createUpdateDelete_scenario(self) -> None:
        self.database.insert(
            "person", {"person_id": 1, "full_name": "E", "status": "A"}
        )
        self.clock.set(_T2)
        self.database.update("person", 1, {"status": "B"})
        self.clock.set(_T3)
        self.database.delete("person", 1)

        history = self.database.history("person", 1)
        self.assertEqual(
            [Interval(_T1, _T2), Interval(_T2, _T3)], [v.interval for v in history]
        )
        self.assertEqual([], self.database.current("person", 1))

        as_of_t2 = self.database.as_of("person", _T2)
        self.assertEqual([history[1]], as_of_t2)
        self.assertEqual("B", as_of_t2[0].values["status"])

        self.assertEqual([], self.database.as_of("person", _T1 - _EPSILON))
        self.assertEqual([history[0]], self.database.as_of("person", _T1))
        self.assertEqual([history[1]], self.database.as_of("person", _T3 - _EPSILON))
        self.assertEqual([], self.database.as_of("person", _T3))
        self.assertEqual([_T1, _T2, _T3], self.database.timeline("person", 1))

    def test_asOf_writeInstant_returnsWrittenVersion(self) -> None:
        self.database.insert("person", {"person_id": 1, "status": "A"})
        self.clock.set(_T2)
        written = self.database.update("person", 1, {"status": "B"})

        self.assertEqual([written], self.database.as_of("person", _T2))
        self.assertEqual(
            "A", self.database.as_of("person", _T2 - _EPSILON)[0].values["status"]
        )

    def test_asOf_liveEntityIsOpenEnded(self) -> None:
        self.database.insert("person", {"person_id": 1, "full_name": "E"})

        as_of = self.database.as_of("person", datetime.datetime(2100, 1, 1))

        self.assertEqual(1, len(as_of))
        self.assertTrue(as_of[0].is_current)
        self.assertEqual("E", as_of[0].values["full_name"])

    def test_asOf_multipleEntities_orderedByKey(self) -> None:
        for person_id in (3, 1, 2):
            self.database.insert("person", {"person_id": person_id})
            self.clock.advance()
        self.database.update("person", 2, {"status": "MOVED"})
        self.clock.advance()
        self.database.delete("person", 3)

        self.assertEqual(
            [1, 2], [v.key for v in self.database.as_of("person", self.clock.now())]
        )
        self.assertEqual(
            [1, 3],
            [
                v.key
                for v in self.database.as_of(
                    "person", _T1 + datetime.timedelta(milliseconds=1500)
                )
            ],
        )
        self.assertEqual(
            [2], [v.key for v in self.database.as_of("person", self.clock.now(), key=2)]
        )

    def test_asOf_timezoneAwareInstant(self) -> None:
        self.database.insert("person", {"person_id": 1})

        instant = datetime.datetime(2020, 1, 1, 10, 0, tzinfo=datetime.timezone.utc)
        self.assertEqual(1, len(self.database.as_of("person", instant)))
        earlier = datetime.datetime(2020, 1, 1, 8, 0, tzinfo=datetime.timezone.utc)
        self.assertEqual([], self.database.as_of("person", earlier))

    def test_current(self) -> None:
        self.database.insert("person", {"person_id": 2, "full_name": "B"})
        self.database.insert("person", {"person_id": 1, "full_name": "A"})

        self.assertEqual(
            ["A", "B"], [row["full_name"] for row in self.database.current("person")]
        )
        self.assertEqual(
            [{"person_id": 2, "full_name": "B", "birthdate": None, "status": None}],
            self.database.current("person", 2),
        )

    def test_history_unknownKey_isEmpty(self) -> None:
        self.assertEqual([], self.database.history("person", 42))
        self.assertEqual([], self.database.timeline("person", 42))

    def test_timeline_liveEntity(self) -> None:
        self.database.insert("person", {"person_id": 1, "status": "A"})
        self.clock.set(_T2)
        self.database.update("person", 1, {"status": "B"})

        self.assertEqual([_T1, _T2], self.database.timeline("person", 1))
