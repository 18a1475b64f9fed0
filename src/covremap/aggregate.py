"""Regroup remapped entries by original path and merge collisions."""
from __future__ import annotations

from collections.abc import Iterable, Sequence

from covremap.coverage import serialize_coverage
from covremap.types import BranchMeta, CoverageEntry, FunctionMeta, Range


def _id_order(item_id: str) -> tuple[int, int, str]:
    """Numeric ids sort numerically and ahead of any non-numeric id."""
    if item_id.isdigit():
        return 0, int(item_id), ""
    return 1, 0, item_id


def merge_entries(path: str, group: Sequence[CoverageEntry]) -> CoverageEntry:
    """Concatenate entries that share an original path.

    Ids are renumbered ``0..n-1`` per map, in contributor order and then
    original id order; counters follow their items unchanged.
    """
    statement_map: dict[str, Range] = {}
    fn_map: dict[str, FunctionMeta] = {}
    branch_map: dict[str, BranchMeta] = {}
    s: dict[str, int] = {}
    f: dict[str, int] = {}
    b: dict[str, tuple[int, ...]] = {}

    for entry in group:
        for sid in sorted(entry.statement_map, key=_id_order):
            new_id = str(len(statement_map))
            statement_map[new_id] = entry.statement_map[sid]
            s[new_id] = entry.s.get(sid, 0)
        for fid in sorted(entry.fn_map, key=_id_order):
            new_id = str(len(fn_map))
            fn_map[new_id] = entry.fn_map[fid]
            f[new_id] = entry.f.get(fid, 0)
        for bid in sorted(entry.branch_map, key=_id_order):
            new_id = str(len(branch_map))
            branch = entry.branch_map[bid]
            branch_map[new_id] = branch
            b[new_id] = entry.b.get(bid, (0,) * len(branch.locations))

    return CoverageEntry(
        path=path,
        statement_map=statement_map,
        fn_map=fn_map,
        branch_map=branch_map,
        s=s,
        f=f,
        b=b,
    )


def aggregate(remapped: Iterable[CoverageEntry]) -> dict[str, CoverageEntry]:
    """Group by original path; output is ordered by path.

    A path with a single contributor keeps that entry (and its ids) as-is.
    """
    grouped: dict[str, list[CoverageEntry]] = {}
    for entry in remapped:
        grouped.setdefault(entry.path, []).append(entry)
    return {
        path: group[0] if len(group) == 1 else merge_entries(path, group)
        for path, group in sorted(grouped.items())
    }


def render_report(remapped: Iterable[CoverageEntry]) -> str:
    """Aggregate and serialize in one step."""
    return serialize_coverage(aggregate(remapped))
