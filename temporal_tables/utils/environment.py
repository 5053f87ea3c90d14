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
"""Tools for working with the runtime environment."""
import os
import sys
from functools import wraps
from typing import Any, Callable, Optional

import temporal_tables


def in_test() -> bool:
    """Check whether we are running in a test"""
    # Pytest sets temporal_tables.called_from_test in conftest.py
    if not hasattr(temporal_tables, "called_from_test"):
        # If it is not set, we may have been called from unittest. Check if unittest
        # has been imported, if it has then we assume we are running from a unittest
        setattr(temporal_tables, "called_from_test", "unittest" in sys.modules)
    return getattr(temporal_tables, "called_from_test")


def test_only(func: Callable) -> Callable:
    """Decorator to verify function only runs in tests

    If called while not in tests, throws an exception.
    """

    @wraps(func)
    def check_test_and_call(*args: Any, **kwargs: Any) -> Callable:
        if not in_test():
            raise RuntimeError("Function may only be called from tests")
        return func(*args, **kwargs)

    return check_test_and_call


def get_env_var(name: str, default: Optional[str] = None) -> Optional[str]:
    """Returns the value of environment variable |name|, treating empty values as
    unset."""
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value
