from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

from src.app.core.enums import LoadStrategy
from src.app.core.exceptions import InvalidParameter
from src.app.core.relations import Relation
from src.loader.services.binder import BoundQuery, ParameterBinder
from src.loader.services.group_spec import GroupSpec

# alias of the per-parent sub-select in the LATERAL form
GROUPED_ALIAS = "grouped"


@dataclass(frozen=True, slots=True)
class TopNQuery:
    bound: BoundQuery
    strategy: LoadStrategy

    @property
    def sql(self) -> str:
        return self.bound.sql

    @property
    def params(self):
        return self.bound.params


class TopNQueryBuilder:
    """Строит запрос "top N детей на каждого родителя" за один round trip.

    LATERAL: для каждой строки родителя коррелированный подзапрос читает только
    его детей (по индексу FK), сортирует и режет до N.
    FALLBACK: все дети запрошенных родителей, ORDER BY (fk, order); N режет GroupAssembler.
    """

    def __init__(self, parent: Relation, child: Relation, binder: ParameterBinder) -> None:
        self._parent = parent
        self._child = child
        self._binder = binder

    @property
    def parent(self) -> Relation:
        return self._parent

    @property
    def child(self) -> Relation:
        return self._child

    @staticmethod
    def needs_round_trip(spec: GroupSpec, keys: Sequence[Any]) -> bool:
        return bool(keys) and spec.limit > 0

    def validate(self, spec: GroupSpec) -> None:
        """Check every identifier and the limit before anything is built or sent."""
        self._binder.column(self._child, spec.group_by)
        self._binder.column(self._child, spec.order_by)
        self._binder.limit(spec.limit)

    def build(self, spec: GroupSpec, keys: Sequence[Any], *, lateral: bool) -> TopNQuery:
        self.validate(spec)
        if not self.needs_round_trip(spec, keys):
            raise InvalidParameter("Nothing to query: empty key set or limit=0")

        if lateral:
            template = self._lateral_template(spec)
            values: dict[str, Any] = {"limit": spec.limit, "parent_keys": list(keys)}
            strategy = LoadStrategy.LATERAL
        else:
            template = self._fallback_template(spec)
            values = {"parent_keys": list(keys)}
            strategy = LoadStrategy.FALLBACK

        return TopNQuery(bound=self._binder.bind(template, values), strategy=strategy)

    # ----------------------------
    # templates
    # ----------------------------

    def _order_terms(self, spec: GroupSpec, prefix: str) -> list[str]:
        b = self._binder
        direction = spec.direction.value
        terms = [f"{prefix}{b.column(self._child, spec.order_by)} {direction}"]
        # tie-breaker: makes the order total, so repeated loads agree
        if spec.order_by != self._child.primary_key:
            terms.append(f"{prefix}{b.column(self._child, self._child.primary_key)} {direction}")
        return terms

    def _select_list(self, prefix: str) -> str:
        b = self._binder
        return ", ".join(f"{prefix}{b.column(self._child, c)}" for c in self._child.column_names)

    def _lateral_template(self, spec: GroupSpec) -> str:
        b = self._binder
        parent_tbl = b.table(self._parent)
        child_tbl = b.table(self._child)
        parent_pk = b.qualified(self._parent, self._parent.primary_key)
        fk = b.qualified(self._child, spec.group_by)
        alias = f"{GROUPED_ALIAS}."

        inner_order = ", ".join(self._order_terms(spec, prefix=f"{child_tbl}."))
        outer_order = ", ".join([parent_pk, *self._order_terms(spec, prefix=alias)])

        return (
            f"SELECT {self._select_list(alias)} FROM {parent_tbl}\n"
            f"JOIN LATERAL (\n"
            f"  SELECT * FROM {child_tbl}\n"
            f"  WHERE {fk} = {parent_pk}\n"
            f"  ORDER BY {inner_order} LIMIT :limit\n"
            f") AS {GROUPED_ALIAS} ON TRUE\n"
            f"WHERE {parent_pk} IN (:parent_keys)\n"
            f"ORDER BY {outer_order}"
        )

    def _fallback_template(self, spec: GroupSpec) -> str:
        b = self._binder
        fk = b.column(self._child, spec.group_by)
        order = ", ".join([fk, *self._order_terms(spec, prefix="")])

        return (
            f"SELECT {self._select_list('')} FROM {b.table(self._child)}\n"
            f"WHERE {fk} IN (:parent_keys)\n"
            f"ORDER BY {order}"
        )
