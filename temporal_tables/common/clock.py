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
"""Clock sources used to stamp versions with their transaction time."""
import abc
import datetime

import pytz


def to_naive_utc(dt: datetime.datetime) -> datetime.datetime:
    """Returns |dt| as a naive datetime expressed in UTC.

    Timezone-aware values are converted to UTC first. Naive values are assumed to
    already be in UTC and are returned unchanged.
    """
    if not isinstance(dt, datetime.datetime):
        raise ValueError(f"Expected datetime, found {type(dt)}.")
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(pytz.UTC).replace(tzinfo=None)


class Clock(abc.ABC):
    """Source of the transaction time used by the write path."""

    @abc.abstractmethod
    def now(self) -> datetime.datetime:
        """Returns the current instant as a naive UTC datetime."""


class UtcClock(Clock):
    """Wall clock with microsecond resolution."""

    def now(self) -> datetime.datetime:
        return datetime.datetime.now(tz=pytz.UTC).replace(tzinfo=None)
