# PgAccess - PostgreSQL Data Access Layer
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.
# SPDX-License-Identifier: AGPL-3.0-or-later
"""Fluent builder for PostgreSQL SELECT statements with positional parameters.

Conditions are written with *local* placeholders starting at ``$1`` for each
call; the builder renumbers them against its running parameter index so the
final statement always uses ``$1..$N`` aligned with the returned params:

>>> query = (
...     SqlQueryBuilder.create()
...     .select(["id", "name"])
...     .from_("users")
...     .where("age > $1", [18])
...     .and_where("city = $1", ["NY"])
...     .build()
... )
>>> query.sql.splitlines()[-1]
'WHERE age > $1 AND city = $2'
>>> query.params
[18, 'NY']
"""

import re
from collections.abc import Sequence
from enum import Enum
from typing import Any

from attrs import field, frozen
from beartype import beartype

from .exceptions import QueryBuilderError

_PLACEHOLDER = re.compile(r"\$(\d+)")

# Bind parameters; a bare str is rejected.
Params = list[Any] | tuple[Any, ...]


class JoinType(str, Enum):
    """Supported JOIN kinds."""

    INNER = "INNER"
    LEFT = "LEFT"
    RIGHT = "RIGHT"
    FULL = "FULL"


class SortDirection(str, Enum):
    """ORDER BY directions."""

    ASC = "ASC"
    DESC = "DESC"


@frozen
class BuiltQuery:
    """Assembled SQL text and the parameters bound to its placeholders."""

    sql: str = field()
    params: list[Any] = field(factory=list)


class SqlQueryBuilder:
    """Accumulates SELECT clauses and bind parameters.

    A builder is a short-lived, single-owner value. It is not safe to mutate
    one instance from several tasks or threads: the parameter index is plain
    instance state.
    """

    def __init__(self) -> None:
        self._clear()

    def _clear(self) -> None:
        self._select_fields: list[str] = []
        self._from_table: str = ""
        self._join_clauses: list[str] = []
        self._where_clauses: list[str] = []
        self._group_by_fields: list[str] = []
        self._having_clauses: list[str] = []
        self._order_by_fields: list[str] = []
        self._limit: int | None = None
        self._offset: int | None = None
        self._parameters: list[Any] = []
        self._parameter_index: int = 1

    @classmethod
    @beartype
    def create(cls) -> "SqlQueryBuilder":
        """Create an empty builder."""
        return cls()

    @property
    def parameter_index(self) -> int:
        """Next placeholder number to be assigned."""
        return self._parameter_index

    @beartype
    def select(self, fields: str | Sequence[str]) -> "SqlQueryBuilder":
        """Add SELECT expressions (raw SQL, no dedup)."""
        if isinstance(fields, str):
            fields = [fields]
        self._select_fields.extend(fields)
        return self

    @beartype
    def from_(self, table: str) -> "SqlQueryBuilder":
        """Set the FROM target; the last call wins."""
        self._from_table = table
        return self

    @beartype
    def join(
        self, kind: JoinType | str, table: str, condition: str
    ) -> "SqlQueryBuilder":
        """Add ``<KIND> JOIN <table> ON <condition>``.

        The condition is literal SQL and takes no parameters.

        Raises:
            ValueError: If ``kind`` is not one of INNER, LEFT, RIGHT, FULL.
        """
        join_type = kind if isinstance(kind, JoinType) else JoinType(kind.upper())
        self._join_clauses.append(f"{join_type.value} JOIN {table} ON {condition}")
        return self

    @beartype
    def inner_join(self, table: str, condition: str) -> "SqlQueryBuilder":
        return self.join(JoinType.INNER, table, condition)

    @beartype
    def left_join(self, table: str, condition: str) -> "SqlQueryBuilder":
        return self.join(JoinType.LEFT, table, condition)

    @beartype
    def right_join(self, table: str, condition: str) -> "SqlQueryBuilder":
        return self.join(JoinType.RIGHT, table, condition)

    @beartype
    def full_join(self, table: str, condition: str) -> "SqlQueryBuilder":
        return self.join(JoinType.FULL, table, condition)

    @beartype
    def where(
        self, condition: str, params: Params = ()
    ) -> "SqlQueryBuilder":
        """Add a WHERE predicate.

        A second ``where`` call is combined with ``AND``.
        """
        return self._add_where("AND", condition, params)

    @beartype
    def and_where(
        self, condition: str, params: Params = ()
    ) -> "SqlQueryBuilder":
        """Add a predicate joined with ``AND`` (plain ``where`` if first)."""
        return self._add_where("AND", condition, params)

    @beartype
    def or_where(
        self, condition: str, params: Params = ()
    ) -> "SqlQueryBuilder":
        """Add a predicate joined with ``OR`` (plain ``where`` if first)."""
        return self._add_where("OR", condition, params)

    @beartype
    def group_by(self, fields: str | Sequence[str]) -> "SqlQueryBuilder":
        if isinstance(fields, str):
            fields = [fields]
        self._group_by_fields.extend(fields)
        return self

    @beartype
    def having(
        self, condition: str, params: Params = ()
    ) -> "SqlQueryBuilder":
        """Add a HAVING predicate; multiple predicates are ANDed."""
        self._having_clauses.append(self._bind(condition, params))
        return self

    @beartype
    def order_by(
        self, field_name: str, direction: SortDirection | str = SortDirection.ASC
    ) -> "SqlQueryBuilder":
        """Add an ORDER BY term.

        Raises:
            ValueError: If ``direction`` is not ASC or DESC.
        """
        if not isinstance(direction, SortDirection):
            direction = SortDirection(direction.upper())
        self._order_by_fields.append(f"{field_name} {direction.value}")
        return self

    @beartype
    def limit(self, limit: int) -> "SqlQueryBuilder":
        self._limit = limit
        return self

    @beartype
    def offset(self, offset: int) -> "SqlQueryBuilder":
        self._offset = offset
        return self

    @beartype
    def paginate(self, page: int, page_size: int) -> "SqlQueryBuilder":
        """Set LIMIT/OFFSET for a 1-based ``page``."""
        return self.offset((page - 1) * page_size).limit(page_size)

    @beartype
    def build(self) -> BuiltQuery:
        """Assemble the statement.

        Raises:
            QueryBuilderError: If no FROM table was set.
        """
        if not self._from_table:
            raise QueryBuilderError("FROM table is required")

        parts: list[str] = []

        if self._select_fields:
            parts.append(f"SELECT {', '.join(self._select_fields)}")
        else:
            parts.append("SELECT *")

        parts.append(f"FROM {self._from_table}")
        parts.extend(self._join_clauses)

        if self._where_clauses:
            parts.append(f"WHERE {' '.join(self._where_clauses)}")

        if self._group_by_fields:
            parts.append(f"GROUP BY {', '.join(self._group_by_fields)}")

        if self._having_clauses:
            parts.append(f"HAVING {' AND '.join(self._having_clauses)}")

        if self._order_by_fields:
            parts.append(f"ORDER BY {', '.join(self._order_by_fields)}")

        if self._limit is not None:
            parts.append(f"LIMIT {self._limit}")

        if self._offset is not None:
            parts.append(f"OFFSET {self._offset}")

        return BuiltQuery(sql="\n".join(parts), params=list(self._parameters))

    @beartype
    def to_sql(self) -> str:
        """SQL text only, for logging."""
        return self.build().sql

    @beartype
    def get_params(self) -> list[Any]:
        return list(self._parameters)

    @beartype
    def reset(self) -> "SqlQueryBuilder":
        """Return the builder to its freshly created state."""
        self._clear()
        return self

    def _add_where(
        self, connector: str, condition: str, params: Params
    ) -> "SqlQueryBuilder":
        bound = self._bind(condition, params)
        if self._where_clauses:
            bound = f"{connector} {bound}"
        self._where_clauses.append(bound)
        return self

    def _bind(self, condition: str, params: Params) -> str:
        """Renumber local ``$1..$k`` tokens and record their values.

        Every occurrence of a local token is rewritten in one pass, so a
        condition may reuse ``$1`` and already-shifted numbers are never
        rewritten twice. Tokens above ``k`` are left as written.
        """
        count = len(params)
        base = self._parameter_index

        def renumber(match: re.Match[str]) -> str:
            local = int(match.group(1))
            if 1 <= local <= count:
                return f"${base + local - 1}"
            return match.group(0)

        bound = _PLACEHOLDER.sub(renumber, condition) if count else condition
        self._parameters.extend(params)
        self._parameter_index += count
        return bound

    def __repr__(self) -> str:
        return (
            f"SqlQueryBuilder(from_table={self._from_table!r}, "
            f"params={len(self._parameters)})"
        )


__all__ = ["BuiltQuery", "JoinType", "SortDirection", "SqlQueryBuilder"]
