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
"""The validity interval of a single version.

Intervals are half-open, [valid_from, valid_to): a version is visible at the instant
it begins and invisible at the instant it ends, so two adjacent versions of the same
entity never both match one instant. An interval with no valid_to is open-ended and
denotes the version currently in effect.
"""
import datetime
from typing import List, Optional, Sequence

import attr

from temporal_tables.common import attr_validators
from temporal_tables.persistence.errors import (
    InvalidVersionChainError,
    ZeroWidthIntervalError,
)


@attr.s(frozen=True)
class Interval:
    """Half-open validity interval [valid_from, valid_to)."""

    valid_from: datetime.datetime = attr.ib(validator=attr_validators.is_naive_datetime)
    valid_to: Optional[datetime.datetime] = attr.ib(
        default=None, validator=attr_validators.is_opt_naive_datetime
    )

    def __attrs_post_init__(self) -> None:
        if self.valid_to is not None and self.valid_to <= self.valid_from:
            raise ZeroWidthIntervalError(
                f"Interval must end strictly after it begins, found "
                f"[{self.valid_from.isoformat()}, {self.valid_to.isoformat()})."
            )

    @property
    def is_open_ended(self) -> bool:
        return self.valid_to is None

    def contains(self, instant: datetime.datetime) -> bool:
        if instant < self.valid_from:
            return False
        return self.valid_to is None or instant < self.valid_to

    def precedes(self, other: "Interval") -> bool:
        """Returns True if this interval ends at or before |other| begins."""
        return self.valid_to is not None and self.valid_to <= other.valid_from

    def overlaps(self, other: "Interval") -> bool:
        return not self.precedes(other) and not other.precedes(self)

    def closed_at(self, instant: datetime.datetime) -> "Interval":
        """Returns a copy of this open-ended interval closed at |instant|.

        Raises ZeroWidthIntervalError if |instant| is not strictly after valid_from.
        """
        if not self.is_open_ended:
            raise ValueError(f"Interval {self} is already closed.")
        return Interval(valid_from=self.valid_from, valid_to=instant)

    def __str__(self) -> str:
        end = self.valid_to.isoformat() if self.valid_to else "open"
        return f"[{self.valid_from.isoformat()}, {end})"


def validate_version_chain(intervals: Sequence[Interval]) -> None:
    """Checks that |intervals|, the versions of a single entity, form one contiguous
    chain: ordered by start, each ending exactly where the next begins, with only the
    last one allowed to be open-ended.

    Raises InvalidVersionChainError otherwise.
    """
    ordered: List[Interval] = sorted(intervals, key=lambda i: i.valid_from)
    for previous, following in zip(ordered, ordered[1:]):
        if previous.is_open_ended:
            raise InvalidVersionChainError(
                f"Open-ended interval {previous} is followed by {following}."
            )
        if previous.overlaps(following):
            raise InvalidVersionChainError(
                f"Interval {previous} overlaps {following}."
            )
        if previous.valid_to != following.valid_from:
            raise InvalidVersionChainError(
                f"Gap between interval {previous} and {following}."
            )
