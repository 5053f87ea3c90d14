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
"""Tracks which tracked tables are known to be structurally consistent."""
import logging
import threading
from typing import Dict, List, Set

from sqlalchemy.engine import Connection

from temporal_tables.persistence.database import schema_utils
from temporal_tables.persistence.database.temporal_schema import (
    TemporalSchema,
    TrackedTable,
)
from temporal_tables.persistence.errors import StructuralMismatchError


class StructureVerifier:
    """Checks each tracked table's current and history sides against each other the
    first time it is written in this process. A table found mismatched stays blocked
    for writes until a structural change or repair verifies it again."""

    def __init__(self, temporal_schema: TemporalSchema):
        self._temporal_schema = temporal_schema
        self._verified: Set[str] = set()
        self._blocked: Dict[str, List[str]] = {}
        self._lock = threading.Lock()

    def ensure_writable(self, connection: Connection, tracked: TrackedTable) -> None:
        """Raises StructuralMismatchError if |tracked| is blocked, verifying it first
        if it has not been verified yet."""
        with self._lock:
            if tracked.name in self._blocked:
                raise StructuralMismatchError(tracked.name, self._blocked[tracked.name])
            if tracked.name in self._verified:
                return
        self.verify(connection, tracked)

    def verify(self, connection: Connection, tracked: TrackedTable) -> None:
        """Compares both sides of |tracked| in the database. Blocks the table and
        raises StructuralMismatchError on any difference, otherwise unblocks it."""
        differences = schema_utils.find_structural_differences(
            connection, self._temporal_schema, tracked
        )
        with self._lock:
            if differences:
                self._verified.discard(tracked.name)
                self._blocked[tracked.name] = differences
            else:
                self._blocked.pop(tracked.name, None)
                self._verified.add(tracked.name)
        if differences:
            logging.error(
                "Blocking writes to [%s], structural mismatch: %s",
                tracked.name,
                differences,
            )
            raise StructuralMismatchError(tracked.name, differences)

    def invalidate(self, table_name: str) -> None:
        """Forgets any verification result for |table_name|. Blocked tables stay
        blocked."""
        with self._lock:
            self._verified.discard(table_name)

    def is_blocked(self, table_name: str) -> bool:
        with self._lock:
            return table_name in self._blocked
