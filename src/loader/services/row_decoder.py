from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Mapping

from src.app.core.exceptions import DecodeError
from src.app.core.relations import Relation
from src.loader.services.group_spec import GroupSpec

Row = Mapping[str, Any]


@dataclass(frozen=True, slots=True)
class ChildRecord:
    id: Any
    parent_key: Any
    order_value: Any
    values: Mapping[str, Any]

    def __hash__(self) -> int:
        # `values` is a mappingproxy and cannot be hashed
        return hash((self.id, self.parent_key))

    def __getitem__(self, column: str) -> Any:
        return self.values[column]

    def get(self, column: str, default: Any = None) -> Any:
        return self.values.get(column, default)


class RowDecoder:
    """Raw row (column -> value) -> (parent key, ChildRecord), checked against the child relation."""

    def __init__(self, child: Relation, spec: GroupSpec) -> None:
        self._child = child
        self._group_by = spec.group_by
        self._order_by = spec.order_by
        self._required = tuple(dict.fromkeys((child.primary_key, spec.group_by, spec.order_by)))

    def decode(self, row: Row) -> tuple[Any, ChildRecord]:
        try:
            data = dict(row)
        except (TypeError, ValueError) as exc:
            raise DecodeError(f"Row is not a mapping: {type(row).__name__}") from exc

        for name in self._required:
            if name not in data:
                raise DecodeError(
                    f"Row from {self._child.name!r} is missing column {name!r}. "
                    f"Row keys={list(data.keys())}"
                )

        values: dict[str, Any] = {}
        for name, value in data.items():
            spec = self._child.columns.get(name)
            if spec is None:
                # extra columns (e.g. from SELECT *) pass through untyped
                values[name] = value
                continue
            if not spec.accepts(value):
                raise DecodeError(
                    f"Column {self._child.name}.{name}: expected "
                    f"{spec.python_type.__name__} (nullable={spec.nullable}), "
                    f"got {type(value).__name__} ({value!r})"
                )
            values[name] = value

        child_id = values[self._child.primary_key]
        parent_key = values[self._group_by]
        if child_id is None:
            raise DecodeError(f"Column {self._child.name}.{self._child.primary_key} is NULL")
        if parent_key is None:
            raise DecodeError(f"Column {self._child.name}.{self._group_by} is NULL")

        record = ChildRecord(
            id=child_id,
            parent_key=parent_key,
            order_value=values[self._order_by],
            values=MappingProxyType(values),
        )
        return parent_key, record
