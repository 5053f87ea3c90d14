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
"""Exports the layout of a TemporalSchema as a portable JSON description, and builds a
TemporalSchema back from one.

The description lists every tracked table declaration plus the ordered structural
elements of both sides, so tooling that does not understand tracked tables can
still recreate each physical table column by column.
"""
import json
from typing import Any, Dict, List

import attr
import cattr

from temporal_tables.common import attr_validators
from temporal_tables.persistence.database import schema_utils
from temporal_tables.persistence.database.schema_utils import StructuralElement
from temporal_tables.persistence.database.temporal_schema import (
    TemporalSchema,
    TrackedTable,
)

LAYOUT_FORMAT_VERSION = 1


@attr.s(frozen=True)
class LayoutDescription:
    """Serializable form of a TemporalSchema."""

    format_version: int = attr.ib(validator=attr_validators.is_int)
    current_schema: str = attr.ib(validator=attr_validators.is_sql_identifier)
    history_schema: str = attr.ib(validator=attr_validators.is_sql_identifier)
    tables: List[TrackedTable] = attr.ib(validator=attr_validators.is_list_of(TrackedTable))
    elements: List[StructuralElement] = attr.ib(
        validator=attr_validators.is_list_of(StructuralElement)
    )

    @classmethod
    def for_schema(cls, temporal_schema: TemporalSchema) -> "LayoutDescription":
        return cls(
            format_version=LAYOUT_FORMAT_VERSION,
            current_schema=temporal_schema.current_schema,
            history_schema=temporal_schema.history_schema,
            tables=temporal_schema.tracked_tables(),
            elements=schema_utils.list_structural_elements(temporal_schema),
        )

    def to_temporal_schema(self) -> TemporalSchema:
        """Builds the TemporalSchema this description was exported from. Raises
        ValueError if the listed structural elements do not match the tables."""
        if self.format_version != LAYOUT_FORMAT_VERSION:
            raise ValueError(
                f"Unsupported layout format version [{self.format_version}], "
                f"expected [{LAYOUT_FORMAT_VERSION}]."
            )
        temporal_schema = TemporalSchema(
            current_schema=self.current_schema, history_schema=self.history_schema
        )
        for tracked in self.tables:
            temporal_schema.track(tracked)

        rebuilt = schema_utils.list_structural_elements(temporal_schema)
        if rebuilt != self.elements:
            raise ValueError(
                "Structural elements in layout description do not match its tables."
            )
        return temporal_schema


def layout_to_json_dict(temporal_schema: TemporalSchema) -> Dict[str, Any]:
    return cattr.unstructure(LayoutDescription.for_schema(temporal_schema))


def layout_from_json_dict(layout_dict: Dict[str, Any]) -> TemporalSchema:
    return cattr.structure(layout_dict, LayoutDescription).to_temporal_schema()


def export_layout(temporal_schema: TemporalSchema) -> str:
    """Renders the layout of |temporal_schema| as a JSON document."""
    return json.dumps(layout_to_json_dict(temporal_schema), indent=2)


def import_layout(layout_json: str) -> TemporalSchema:
    """Parses a JSON document produced by export_layout() into a TemporalSchema that
    can be bootstrapped on a fresh database."""
    return layout_from_json_dict(json.loads(layout_json))
