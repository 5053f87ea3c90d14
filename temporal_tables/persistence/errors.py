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
"""Contains errors for the persistence directory."""
from typing import Any, List


class TemporalTablesError(Exception):
    """Base class for all errors raised by the temporal storage layer."""


class FatalError(TemporalTablesError):
    """Raised when the current and history schemas could not be created or verified.
    There is no degraded mode without both schemas, so callers should abort startup.
    """


class StructuralMismatchError(TemporalTablesError):
    """Raised when the current and history tables of a tracked entity type disagree
    on structure. Writes to the entity type are blocked until it is repaired."""

    def __init__(self, table_name: str, differences: List[str]):
        self.table_name = table_name
        self.differences = differences
        msg = (
            f"Current and history tables for [{table_name}] are structurally "
            f"mismatched:\n" + "\n".join(f"  - {d}" for d in differences)
        )
        super().__init__(msg)


class ConcurrentModificationError(TemporalTablesError):
    """Raised when a writer finds that the version it is about to close has already
    been closed by another writer. The writer's transaction is rolled back and the
    whole logical operation may be retried from scratch."""

    def __init__(self, table_name: str, key: Any, msg: str):
        self.table_name = table_name
        self.key = key
        super().__init__(f"[{table_name}] key [{key}]: {msg}")


class LockTimeoutError(TemporalTablesError):
    """Raised when a lock could not be acquired within the configured wait."""


class ZeroWidthIntervalError(TemporalTablesError):
    """Raised when a write would produce a version whose interval ends at or before
    the instant it begins, i.e. when the clock cannot order two writes."""


class InvalidVersionChainError(TemporalTablesError):
    """Raised when the versions of a single entity are not contiguous, overlap, or
    have more than one open-ended version."""


class UntrackedWriteError(TemporalTablesError):
    """Raised when a statement attempts to mutate tracked storage without going
    through change capture."""


class EntityNotFoundError(TemporalTablesError):
    """Raised when updating or deleting an entity that has no current snapshot."""


class EntityAlreadyExistsError(TemporalTablesError):
    """Raised when inserting an entity whose key already has recorded versions."""
