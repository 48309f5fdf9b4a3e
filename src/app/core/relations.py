from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from sqlalchemy import Table


@dataclass(frozen=True, slots=True)
class ColumnSpec:
    name: str
    python_type: type = object
    nullable: bool = True

    def accepts(self, value: Any) -> bool:
        if value is None:
            return self.nullable
        if isinstance(value, bool) and self.python_type is not bool:
            return self.python_type is object
        return isinstance(value, self.python_type)


@dataclass(frozen=True, slots=True)
class Relation:
    """Table name, primary key and the allow-list of its columns."""

    name: str
    primary_key: str
    columns: Mapping[str, ColumnSpec] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.primary_key not in self.columns:
            raise ValueError(
                f"Relation {self.name!r}: primary key {self.primary_key!r} is not among its columns"
            )
        object.__setattr__(self, "columns", MappingProxyType(dict(self.columns)))

    @property
    def column_names(self) -> tuple[str, ...]:
        return tuple(self.columns)

    def has_column(self, name: str) -> bool:
        return name in self.columns

    @classmethod
    def from_table(cls, table: Table) -> "Relation":
        pk_cols = list(table.primary_key.columns)
        if len(pk_cols) != 1:
            raise ValueError(f"Table {table.name!r} must have a single-column primary key")

        columns: dict[str, ColumnSpec] = {}
        for col in table.columns:
            try:
                py_type = col.type.python_type
            except NotImplementedError:
                py_type = object
            columns[col.name] = ColumnSpec(
                name=col.name,
                python_type=py_type,
                nullable=bool(col.nullable),
            )

        return cls(name=table.name, primary_key=pk_cols[0].name, columns=columns)
