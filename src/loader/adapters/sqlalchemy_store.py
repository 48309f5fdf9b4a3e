from __future__ import annotations

from typing import Any, Mapping, Sequence

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

# dialects with JOIN LATERAL that we actually run against
LATERAL_DIALECTS: frozenset[str] = frozenset({"postgresql"})


def dialect_supports_lateral(dialect_name: str | None) -> bool:
    return (dialect_name or "").lower() in LATERAL_DIALECTS


class SessionStore:
    """Store поверх AsyncSession: text() + bind-параметры, строки как dict."""

    def __init__(self, session: AsyncSession, *, supports_lateral: bool | None = None) -> None:
        self._session = session
        if supports_lateral is None:
            bind = session.bind
            supports_lateral = dialect_supports_lateral(
                bind.dialect.name if bind is not None else None
            )
        self.supports_lateral = supports_lateral

    async def execute(self, sql: str, params: Mapping[str, Any]) -> Sequence[dict[str, Any]]:
        result = await self._session.execute(text(sql), dict(params))
        # normalize SQLAlchemy RowMapping -> dict for stable downstream types
        return [dict(r) for r in result.mappings().all()]
