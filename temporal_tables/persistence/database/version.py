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
"""Immutable snapshot of an entity's attributes together with its validity interval."""
import datetime
from typing import Any, Dict, Mapping, Optional

import attr

from temporal_tables.common import attr_validators
from temporal_tables.persistence.database import constants
from temporal_tables.persistence.database.interval import Interval
from temporal_tables.persistence.database.temporal_schema import TrackedTable


@attr.s(frozen=True)
class Version:
    """A single version of an entity, as stored on the history side of a tracked
    table."""

    # Key of the entity owning this version
    key: Any = attr.ib()

    # Column name -> value for every attribute column (and the key column)
    values: Dict[str, Any] = attr.ib(validator=attr_validators.is_dict)

    interval: Interval = attr.ib(validator=attr.validators.instance_of(Interval))

    # When this version was physically written. May differ from valid_from when a
    # version was backdated.
    recorded_at: datetime.datetime = attr.ib(
        validator=attr_validators.is_naive_datetime
    )

    @property
    def valid_from(self) -> datetime.datetime:
        return self.interval.valid_from

    @property
    def valid_to(self) -> Optional[datetime.datetime]:
        return self.interval.valid_to

    @property
    def is_current(self) -> bool:
        return self.interval.is_open_ended

    @classmethod
    def from_history_row(cls, tracked: TrackedTable, row: Mapping[str, Any]) -> "Version":
        """Builds a Version from a row mapping containing the tracked table's columns
        plus valid_from, valid_to and recorded_at."""
        return cls(
            key=row[tracked.key_name],
            values={name: row[name] for name in tracked.column_names},
            interval=Interval(
                valid_from=row[constants.VALID_FROM_COLUMN],
                valid_to=row[constants.VALID_TO_COLUMN],
            ),
            recorded_at=row[constants.RECORDED_AT_COLUMN],
        )
