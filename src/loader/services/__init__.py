from .assembler import AssemblyStats, GroupAssembler, GroupedResult
from .binder import BoundQuery, ParameterBinder
from .group_spec import GroupSpec
from .query_builder import TopNQuery, TopNQueryBuilder
from .row_decoder import ChildRecord, RowDecoder

__all__ = [
    "AssemblyStats",
    "BoundQuery",
    "ChildRecord",
    "GroupAssembler",
    "GroupSpec",
    "GroupedResult",
    "ParameterBinder",
    "RowDecoder",
    "TopNQuery",
    "TopNQueryBuilder",
]
