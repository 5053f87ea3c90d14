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
"""Configuration for connecting to a temporal database."""
from typing import Optional

import attr

from temporal_tables.common import attr_validators
from temporal_tables.persistence.database import constants
from temporal_tables.utils import environment


@attr.s(frozen=True)
class TemporalConfig:
    """Settings for a temporal database, usually built from the environment with
    |from_env|."""

    # SQLAlchemy URL of the database holding both schemas
    db_url: str = attr.ib(validator=attr_validators.is_non_empty_str)

    # Namespace holding one mutable row per live entity
    current_schema: str = attr.ib(
        default=constants.DEFAULT_CURRENT_SCHEMA,
        validator=attr_validators.is_sql_identifier,
    )

    # Namespace holding the append-only version chains
    history_schema: str = attr.ib(
        default=constants.DEFAULT_HISTORY_SCHEMA,
        validator=attr_validators.is_sql_identifier,
    )

    # Bounded wait for per-key and per-table write locks
    lock_timeout_seconds: float = attr.ib(
        default=constants.DEFAULT_LOCK_TIMEOUT_SECONDS,
        validator=attr_validators.is_positive_number,
    )

    def __attrs_post_init__(self) -> None:
        if self.current_schema == self.history_schema:
            raise ValueError(
                f"Current and history schemas must differ, both are "
                f"[{self.current_schema}]."
            )

    @classmethod
    def from_env(cls, db_url: Optional[str] = None) -> "TemporalConfig":
        """Builds a config from TEMPORAL_* environment variables. An explicit
        |db_url| takes precedence over TEMPORAL_DB_URL."""
        db_url = db_url or environment.get_env_var(constants.TEMPORAL_DB_URL)
        if not db_url:
            raise ValueError(
                f"No database url provided and [{constants.TEMPORAL_DB_URL}] is not set."
            )
        lock_timeout = environment.get_env_var(constants.TEMPORAL_LOCK_TIMEOUT_SECONDS)
        return cls(
            db_url=db_url,
            current_schema=environment.get_env_var(
                constants.TEMPORAL_CURRENT_SCHEMA, constants.DEFAULT_CURRENT_SCHEMA
            ),
            history_schema=environment.get_env_var(
                constants.TEMPORAL_HISTORY_SCHEMA, constants.DEFAULT_HISTORY_SCHEMA
            ),
            lock_timeout_seconds=(
                float(lock_timeout)
                if lock_timeout is not None
                else constants.DEFAULT_LOCK_TIMEOUT_SECONDS
            ),
        )
