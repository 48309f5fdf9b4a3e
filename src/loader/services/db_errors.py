from __future__ import annotations

import asyncpg
from sqlalchemy.exc import DBAPIError, SQLAlchemyError

from src.app.core.exceptions import StoreError

# driver-level failures that become StoreError
STORE_EXCEPTIONS: tuple[type[BaseException], ...] = (
    SQLAlchemyError,
    asyncpg.PostgresError,
    OSError,
)

_DISCONNECT_MARKERS = (
    "connection is closed",
    "connection was closed",
    "connection does not exist",
    "connection refused",
    "connect call failed",
    "no address associated with hostname",
    "the database system is starting up",
    "closed in the middle of operation",
)


def is_db_disconnect(exc: BaseException) -> bool:
    # SQLAlchemy marks dropped connections itself
    if (isinstance(exc, DBAPIError) and
            getattr(exc, "connection_invalidated", False)):
        return True

    # OperationalError also covers query errors ("no such table"), so only the message counts
    msg = str(exc).lower()
    return any(marker in msg for marker in _DISCONNECT_MARKERS)


def to_store_error(exc: BaseException) -> StoreError:
    return StoreError(
        f"Store query failed: {exc!r}",
        original=exc,
        is_disconnect=is_db_disconnect(exc),
    )
