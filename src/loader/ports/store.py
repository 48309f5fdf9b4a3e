from __future__ import annotations

from typing import Any, Mapping, Protocol, Sequence


Row = Mapping[str, Any]


class Store(Protocol):
    """Store выполняет один запрос и возвращает все строки сразу."""

    supports_lateral: bool

    async def execute(self, sql: str, params: Mapping[str, Any]) -> Sequence[Row]:
        """Выполнить запрос с bind-параметрами (никакой интерполяции значений в SQL)."""
        ...
