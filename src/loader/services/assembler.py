from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Sequence

from src.app.core.exceptions import DecodeError
from src.loader.services.row_decoder import ChildRecord

GroupedResult = dict[Any, list[ChildRecord]]


@dataclass(frozen=True, slots=True)
class AssemblyStats:
    rows_seen: int
    duplicates: int
    truncated: int


class GroupAssembler:
    """Собирает плоский поток строк обратно в {parent_key: [children]}.

    - бакеты заведены заранее для каждого запрошенного ключа (пустой, а не отсутствующий);
    - порядок ключей = порядок запроса, порядок детей = порядок строк из хранилища;
    - дубликаты (тот же child id) схлопываются до применения лимита;
    - truncate=True (FALLBACK): бакет перестаёт принимать строки после N-й.
      Это корректно только потому, что FALLBACK-запрос уже отсортирован по (fk, order).
    """

    def __init__(self, keys: Sequence[Any], limit: int, *, truncate: bool) -> None:
        self._limit = limit
        self._truncate = truncate
        self._buckets: GroupedResult = {k: [] for k in keys}
        self._seen: dict[Any, set[Any]] = {k: set() for k in self._buckets}
        self._rows_seen = 0
        self._duplicates = 0
        self._truncated = 0

    def add(self, parent_key: Any, child: ChildRecord) -> None:
        bucket = self._buckets.get(parent_key)
        if bucket is None:
            raise DecodeError(f"Row for unrequested parent key {parent_key!r} (child id={child.id!r})")

        self._rows_seen += 1
        seen = self._seen[parent_key]
        if child.id in seen:
            self._duplicates += 1
            return
        seen.add(child.id)

        if len(bucket) >= self._limit:
            if not self._truncate:
                # LATERAL already applied LIMIT; more rows means the store ignored it
                raise DecodeError(
                    f"Parent {parent_key!r} got more than limit={self._limit} distinct children"
                )
            self._truncated += 1
            return

        bucket.append(child)

    def add_all(self, pairs: Iterable[tuple[Any, ChildRecord]]) -> None:
        for parent_key, child in pairs:
            self.add(parent_key, child)

    @property
    def stats(self) -> AssemblyStats:
        return AssemblyStats(
            rows_seen=self._rows_seen,
            duplicates=self._duplicates,
            truncated=self._truncated,
        )

    def result(self) -> GroupedResult:
        return {k: list(v) for k, v in self._buckets.items()}
