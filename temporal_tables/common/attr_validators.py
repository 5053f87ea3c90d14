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
"""Contains helper aliases and functions for various attrs validators that can be passed
to the `validator=` arg of any attr field. For example:

@attr.s
class MyClass:
  name: Optional[str] = attr.ib(validator=is_opt(str))
  nullable: bool = attr.ib(validator=is_bool)
"""

import datetime
import re
from typing import Any, Callable, Optional, Type

import attr

# Unquoted SQL identifiers that are safe to interpolate into DDL.
SQL_IDENTIFIER_REGEX = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")


class IsOptionalValidator:
    def __init__(self, expected_cls_type: Type) -> None:
        self._expected_cls_type = expected_cls_type

    def __call__(self, instance: Any, attribute: attr.Attribute, value: Any) -> None:
        return attr.validators.optional(
            attr.validators.instance_of(self._expected_cls_type)
        )(instance, attribute, value)


def is_opt(cls_type: Type) -> Callable:
    """Returns an attrs validator that checks if the value is an instance of |cls_type|
    or None."""
    return IsOptionalValidator(cls_type)


def is_non_empty_str(_instance: Any, _attribute: attr.Attribute, value: str) -> None:
    if not isinstance(value, str):
        raise ValueError(f"Expected value type str, found {type(value)}.")
    if not value:
        raise ValueError("String value should not be empty.")


def is_sql_identifier(_instance: Any, attribute: attr.Attribute, value: str) -> None:
    if not isinstance(value, str) or not SQL_IDENTIFIER_REGEX.match(value):
        raise ValueError(
            f"Field [{attribute.name}] must be a plain SQL identifier, found [{value}]."
        )


def is_naive_datetime(
    _instance: Any, attribute: attr.Attribute, value: datetime.datetime
) -> None:
    """Checks that the value is a datetime with no tzinfo. All instants stored by
    this package are naive datetimes expressed in UTC."""
    if not isinstance(value, datetime.datetime):
        raise ValueError(
            f"Field [{attribute.name}] expected datetime, found {type(value)}."
        )
    if value.tzinfo is not None:
        raise ValueError(
            f"Field [{attribute.name}] expected a naive UTC datetime, found "
            f"tzinfo [{value.tzinfo}]."
        )


def is_opt_naive_datetime(
    _instance: Any, attribute: attr.Attribute, value: Optional[datetime.datetime]
) -> None:
    if value is not None:
        is_naive_datetime(_instance, attribute, value)


def is_positive_number(_instance: Any, attribute: attr.Attribute, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(
            f"Field [{attribute.name}] expected a number, found {type(value)}."
        )
    if value <= 0:
        raise ValueError(f"Field [{attribute.name}] must be positive, found {value}.")


# String field validators
is_str = attr.validators.instance_of(str)

# Int field validators
is_int = attr.validators.instance_of(int)
is_opt_int = is_opt(int)

# Bool field validators
is_bool = attr.validators.instance_of(bool)


class IsListOfValidator:
    def __init__(self, list_item_expected_type: Type) -> None:
        self._list_item_expected_type = list_item_expected_type

    def __call__(self, instance: Any, attribute: attr.Attribute, value: Any) -> None:
        if not isinstance(value, list):
            raise ValueError(
                f"Found value for list type field [{attribute.name}] on class "
                f"[{type(instance)}] which has non-list type [{type(value)}]."
            )
        for item in value:
            if not isinstance(item, self._list_item_expected_type):
                raise ValueError(
                    f"Found item in list type field [{attribute.name}] on class "
                    f"[{type(instance)}] which is not the expected type "
                    f"[{self._list_item_expected_type}]: {type(item)}"
                )


def is_list_of(list_item_expected_type: Type) -> IsListOfValidator:
    return IsListOfValidator(list_item_expected_type)


# Dict field validators
is_dict = attr.validators.instance_of(dict)
