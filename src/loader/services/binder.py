from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, time
from decimal import Decimal
from typing import Any, Iterable, Mapping, Sequence
from uuid import UUID

from src.app.core.exceptions import InvalidParameter
from src.app.core.relations import Relation
from src.loader.services.sql_ident import quote_ident

# same rule as sqlalchemy text(): `:name`, never part of a `::type` cast
_PLACEHOLDER_RE = re.compile(r"(?<![:\w\\]):(\w+)(?![:\w])")

_SCALAR_TYPES = (int, float, str, bool, Decimal, date, time, UUID)


@dataclass(frozen=True, slots=True)
class BoundQuery:
    """SQL with `:name` placeholders plus values in placeholder order."""

    sql: str
    params: Mapping[str, Any]

    def values(self) -> list[Any]:
        return list(self.params.values())


class ParameterBinder:
    """Validates identifiers against relation allow-lists and binds scalar values.

    Identifiers (tables/columns) cannot be bind parameters, so they only ever
    come from a `Relation` and are checked + quoted here. Everything else
    (limits, key lists) goes to the driver as bind parameters.
    """

    def __init__(self, *, max_limit: int | None = None, max_keys: int = 10_000) -> None:
        self._max_limit = max_limit
        self._max_keys = max_keys

    # ----------------------------
    # identifiers
    # ----------------------------

    def table(self, relation: Relation) -> str:
        return quote_ident(relation.name, what="relation name")

    def column(self, relation: Relation, name: str) -> str:
        if not isinstance(name, str) or not relation.has_column(name):
            raise InvalidParameter(
                f"Column {name!r} is not allowed for relation {relation.name!r}. "
                f"Allowed: {sorted(relation.column_names)}"
            )
        return quote_ident(name, what=f"{relation.name} column")

    def qualified(self, relation: Relation, name: str) -> str:
        return f"{self.table(relation)}.{self.column(relation, name)}"

    # ----------------------------
    # values
    # ----------------------------

    def limit(self, value: Any) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidParameter(f"limit must be an integer, got {type(value).__name__}")
        if value < 0:
            raise InvalidParameter(f"limit must be >= 0, got {value}")
        if self._max_limit is not None and value > self._max_limit:
            raise InvalidParameter(f"limit must be <= {self._max_limit}, got {value}")
        return value

    def keys(self, relation: Relation, column: str, keys: Iterable[Any]) -> list[Any]:
        """Collapse duplicate keys (first seen wins) and type-check them against the column."""
        if keys is None:
            raise InvalidParameter("parent keys must not be None")
        if isinstance(keys, (str, bytes)):
            raise InvalidParameter("parent keys must be a collection, not a string")

        self.column(relation, column)
        spec = relation.columns[column]

        out: dict[Any, None] = {}
        for key in keys:
            if key is None or not spec.accepts(key):
                raise InvalidParameter(
                    f"Key {key!r} does not match {relation.name}.{column} "
                    f"({spec.python_type.__name__})"
                )
            out.setdefault(key, None)

        if len(out) > self._max_keys:
            raise InvalidParameter(f"At most {self._max_keys} parent keys per load, got {len(out)}")
        return list(out)

    def bind(self, template: str, values: Mapping[str, Any]) -> BoundQuery:
        names = _PLACEHOLDER_RE.findall(template)
        missing = [n for n in names if n not in values]
        if missing:
            raise InvalidParameter(f"No value for placeholder(s): {sorted(set(missing))}")
        unused = set(values) - set(names)
        if unused:
            raise InvalidParameter(f"Values without placeholder: {sorted(unused)}")

        params: dict[str, Any] = {}

        def _sub(m: re.Match[str]) -> str:
            name = m.group(1)
            value = values[name]

            if isinstance(value, (list, tuple)):
                expanded = self._expand(name, value)
                params.update(expanded)
                return ", ".join(f":{k}" for k in expanded)

            params[name] = self._scalar(name, value)
            return m.group(0)

        sql = _PLACEHOLDER_RE.sub(_sub, template)
        return BoundQuery(sql=sql, params=params)

    def _expand(self, name: str, seq: Sequence[Any]) -> dict[str, Any]:
        if not seq:
            raise InvalidParameter(f"Parameter {name!r} is an empty list")
        return {f"{name}_{i}": self._scalar(name, v) for i, v in enumerate(seq)}

    def _scalar(self, name: str, value: Any) -> Any:
        if value is None or isinstance(value, _SCALAR_TYPES):
            return value
        raise InvalidParameter(
            f"Parameter {name!r} must be a scalar, got {type(value).__name__}"
        )
