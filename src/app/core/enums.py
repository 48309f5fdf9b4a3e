from __future__ import annotations

from enum import Enum


class OrderDirection(str, Enum):
    ASC = "ASC"
    DESC = "DESC"


class LoadStrategy(str, Enum):
    LATERAL = "LATERAL"
    FALLBACK = "FALLBACK"
