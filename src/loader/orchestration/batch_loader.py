from __future__ import annotations

import asyncio
import logging
from operator import attrgetter
from typing import Any, Callable, Iterable, Sequence

from src.app.core.enums import LoadStrategy
from src.app.core.exceptions import Cancelled, InvalidParameter
from src.app.core.relations import Relation
from src.config import Settings, get_settings
from src.loader.ports.store import Row, Store
from src.loader.services.assembler import GroupAssembler, GroupedResult
from src.loader.services.binder import ParameterBinder
from src.loader.services.db_errors import STORE_EXCEPTIONS, to_store_error
from src.loader.services.group_spec import GroupSpec
from src.loader.services.logctx import ctx_prefix
from src.loader.services.query_builder import TopNQuery, TopNQueryBuilder
from src.loader.services.row_decoder import RowDecoder

logger = logging.getLogger("topn_loader")

KeyFn = Callable[[Any], Any]


class BatchLoader:
    """Top-N детей для набора родителей за один запрос (без N+1).

    Состояния между вызовами нет: store передаётся в каждый вызов,
    бакеты и результат создаются заново. Ошибки не логируются и не глотаются.
    """

    def __init__(
        self,
        *,
        parent: Relation,
        child: Relation,
        binder: ParameterBinder | None = None,
        force_fallback: bool = False,
        timeout: float | None = None,
    ) -> None:
        self._parent = parent
        self._child = child
        self._binder = binder or ParameterBinder()
        self._builder = TopNQueryBuilder(parent, child, self._binder)
        self._force_fallback = force_fallback
        self._timeout = timeout

    @classmethod
    def from_settings(
        cls,
        *,
        parent: Relation,
        child: Relation,
        settings: Settings | None = None,
    ) -> BatchLoader:
        s = settings or get_settings()
        return cls(
            parent=parent,
            child=child,
            binder=ParameterBinder(max_limit=s.loader_max_limit, max_keys=s.loader_max_keys),
            force_fallback=s.loader_force_fallback,
            timeout=s.loader_statement_timeout,
        )

    @property
    def builder(self) -> TopNQueryBuilder:
        return self._builder

    async def load(
        self,
        store: Store,
        parent_keys: Iterable[Any],
        spec: GroupSpec,
        *,
        timeout: float | None = None,
    ) -> GroupedResult:
        if parent_keys is None:
            raise InvalidParameter("parent_keys must not be None")

        self._builder.validate(spec)
        keys = self._binder.keys(self._child, spec.group_by, parent_keys)

        if not keys:
            return {}
        if not self._builder.needs_round_trip(spec, keys):
            # limit=0: every key present, nothing to fetch
            return {k: [] for k in keys}

        lateral = bool(getattr(store, "supports_lateral", False)) and not self._force_fallback
        query = self._builder.build(spec, keys, lateral=lateral)
        ctx_str = ctx_prefix(
            parent=self._parent.name,
            child=self._child.name,
            strategy=query.strategy.value,
        )

        logger.debug("%s query keys=%d limit=%d\n%s", ctx_str, len(keys), spec.limit, query.sql)

        rows = await self._execute(store, query, timeout if timeout is not None else self._timeout)

        decoder = RowDecoder(self._child, spec)
        assembler = GroupAssembler(
            keys,
            spec.limit,
            truncate=query.strategy is LoadStrategy.FALLBACK,
        )
        assembler.add_all(decoder.decode(row) for row in rows)

        stats = assembler.stats
        logger.info(
            "%s loaded parents=%d rows=%d duplicates=%d truncated=%d",
            ctx_str,
            len(keys),
            stats.rows_seen,
            stats.duplicates,
            stats.truncated,
        )
        return assembler.result()

    async def _execute(
        self,
        store: Store,
        query: TopNQuery,
        timeout: float | None,
    ) -> Sequence[Row]:
        try:
            if timeout is None:
                return await store.execute(query.sql, query.params)
            return await asyncio.wait_for(store.execute(query.sql, query.params), timeout)
        except asyncio.TimeoutError as exc:
            if timeout is None:
                # raised by the driver itself, not by our wait_for
                raise to_store_error(exc) from exc
            raise Cancelled(f"Top-N load timed out after {timeout}s") from exc
        except asyncio.CancelledError as exc:
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                # caller cancelled our task (task.cancel(), asyncio.timeout): pass it through as is
                raise
            raise Cancelled("Top-N load cancelled") from exc
        except STORE_EXCEPTIONS as exc:
            raise to_store_error(exc) from exc

    @staticmethod
    def attach(
        parents: Sequence[Any],
        field: str,
        results: GroupedResult,
        *,
        key: KeyFn | None = None,
    ) -> None:
        """Write each parent's slice onto `parent.<field>`. All-or-nothing, no I/O."""
        if not isinstance(field, str) or not field.isidentifier():
            raise InvalidParameter(f"Invalid attribute name: {field!r}")

        get_key = key or attrgetter("id")

        # validate all before writing any
        plan: list[tuple[Any, Any]] = []
        for parent in parents:
            k = get_key(parent)
            if k not in results:
                raise InvalidParameter(f"No loaded children for parent key {k!r}")
            plan.append((parent, k))

        for parent, k in plan:
            setattr(parent, field, list(results[k]))

    async def load_into(
        self,
        store: Store,
        parents: Sequence[Any],
        field: str,
        spec: GroupSpec,
        *,
        key: KeyFn | None = None,
        timeout: float | None = None,
    ) -> GroupedResult:
        get_key = key or attrgetter("id")
        results = await self.load(store, [get_key(p) for p in parents], spec, timeout=timeout)
        self.attach(parents, field, results, key=get_key)
        return results
