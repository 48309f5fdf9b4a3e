from __future__ import annotations

from .enums import LoadStrategy, OrderDirection
from .exceptions import Cancelled, DecodeError, InvalidParameter, LoaderError, StoreError
from .relations import ColumnSpec, Relation

__all__ = [
    "LoadStrategy",
    "OrderDirection",
    "LoaderError",
    "InvalidParameter",
    "DecodeError",
    "StoreError",
    "Cancelled",
    "ColumnSpec",
    "Relation",
]
