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
"""Packaging for the temporal tables engine.

The REQUIRED_PACKAGES are the external packages imported by ./temporal_tables and
must be manually updated any time a dependency is added.
"""
import setuptools

REQUIRED_PACKAGES = [
    # Structural changes to tracked tables are applied with alembic operations
    "alembic",
    "attrs",
    "cattrs",
    "more-itertools",
    "pytz",
    "SQLAlchemy>=2.0",
]

EXTRAS = {
    "postgres": ["psycopg2-binary"],
    "tests": ["pytest"],
}

setuptools.setup(
    name="recidiviz-temporal-tables",
    version="1.0.0",
    python_requires=">=3.8",
    install_requires=REQUIRED_PACKAGES,
    extras_require=EXTRAS,
    packages=setuptools.find_packages(include=["temporal_tables", "temporal_tables.*"]),
)
