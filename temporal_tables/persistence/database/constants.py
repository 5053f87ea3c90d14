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
"""Constants for interacting with the temporal database"""

# Environment variables read by TemporalConfig.from_env()
TEMPORAL_DB_URL = "TEMPORAL_DB_URL"
TEMPORAL_CURRENT_SCHEMA = "TEMPORAL_CURRENT_SCHEMA"
TEMPORAL_HISTORY_SCHEMA = "TEMPORAL_HISTORY_SCHEMA"
TEMPORAL_LOCK_TIMEOUT_SECONDS = "TEMPORAL_LOCK_TIMEOUT_SECONDS"

DEFAULT_CURRENT_SCHEMA = "temporal"
DEFAULT_HISTORY_SCHEMA = "history"
DEFAULT_LOCK_TIMEOUT_SECONDS = 5.0

# Columns that only exist on the history side of a tracked table.
HISTORY_ID_COLUMN = "history_id"
VALID_FROM_COLUMN = "valid_from"
VALID_TO_COLUMN = "valid_to"
RECORDED_AT_COLUMN = "recorded_at"

HISTORY_ONLY_COLUMNS = (
    HISTORY_ID_COLUMN,
    VALID_FROM_COLUMN,
    VALID_TO_COLUMN,
    RECORDED_AT_COLUMN,
)

# Connection.info key holding the write guard token while change capture owns the
# connection. Mutations of tracked tables on any other connection are rejected.
CHANGE_CAPTURE_CONNECTION_INFO_KEY = "temporal_change_capture"

# Connection execution option marking a read-only connection. On SQLite these
# connections begin deferred transactions instead of BEGIN IMMEDIATE.
READ_ONLY_EXECUTION_OPTION = "temporal_read_only"

# Postgres SQLSTATE for lock_not_available, raised when lock_timeout expires.
POSTGRES_LOCK_NOT_AVAILABLE = "55P03"
