"""Remap generated-code coverage locations onto original sources.

Each coverage entry is processed independently against its (immutable)
source map, so entries can be fanned out over a thread pool. Ranges that
cannot be resolved at all are dropped and their hits tallied in
``RemapResult.dropped_hits``; only a source map pointing outside its own
``sources`` table aborts the run.
"""
from __future__ import annotations

import logging
import posixpath
import re
from collections.abc import Callable, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import TypeAlias

from covremap.errors import RemapError
from covremap.sourcemap import original_position_for, position_from_segment
from covremap.types import (
    BranchMeta,
    CoverageEntry,
    FunctionMeta,
    OriginalPosition,
    Position,
    Range,
    RemapResult,
    SourceMap,
)

log = logging.getLogger(__name__)

# Istanbul end columns are exclusive: resolve one column to the left so the
# lookup does not land on the segment of the following token.
END_COLUMN_OFFSET = 1

_WINDOWS_ABS_RE = re.compile(r"^[A-Za-z]:[\\/]")

SourceMapLookup: TypeAlias = Callable[[str], SourceMap | None]


def resolve_source_path(generated_path: str, source: str) -> str:
    """Resolve a map ``sources`` entry relative to the generated file.

    Absolute paths and URL-like sources (``webpack://...``) are kept as-is.
    """
    if not source:
        return generated_path
    if "://" in source or source.startswith("/") or _WINDOWS_ABS_RE.match(source):
        return source
    base = posixpath.dirname(generated_path)
    return posixpath.normpath(posixpath.join(base, source))


def check_source_indices(source_map: SourceMap, path: str) -> None:
    """Raise ``RemapError(BadSourceIndex)`` if any segment points outside ``sources``."""
    count = len(source_map.sources)
    for line_no, segments in enumerate(source_map.mappings, start=1):
        for seg in segments:
            if seg.source_index is not None and not 0 <= seg.source_index < count:
                raise RemapError(
                    "BadSourceIndex",
                    f"segment at generated {line_no}:{seg.generated_column} references "
                    f"source {seg.source_index} but the map lists {count}",
                    path=path,
                    field=f"mappings.{line_no}",
                )


@dataclass(slots=True)
class _Tally:
    dropped_hits: int = 0
    dropped_ranges: int = 0
    cross_file_splits: int = 0


@dataclass(slots=True)
class _FileBuilder:
    """Accumulates remapped items for one original path."""

    path: str
    statement_map: dict[str, Range] = field(default_factory=dict)
    fn_map: dict[str, FunctionMeta] = field(default_factory=dict)
    branch_map: dict[str, BranchMeta] = field(default_factory=dict)
    s: dict[str, int] = field(default_factory=dict)
    f: dict[str, int] = field(default_factory=dict)
    b: dict[str, tuple[int, ...]] = field(default_factory=dict)

    def build(self) -> CoverageEntry:
        return CoverageEntry(
            path=self.path,
            statement_map=self.statement_map,
            fn_map=self.fn_map,
            branch_map=self.branch_map,
            s=self.s,
            f=self.f,
            b=self.b,
        )


def _as_position(pos: OriginalPosition) -> Position:
    return Position(line=pos.line, column=pos.column)


class _EntryRemapper:
    """Remaps one generated entry; produces one entry per original path."""

    def __init__(self, entry: CoverageEntry, source_map: SourceMap) -> None:
        self.entry = entry
        self.source_map = source_map
        self.tally = _Tally()
        self.builders: dict[str, _FileBuilder] = {}

    # -- endpoint resolution ------------------------------------------------

    def resolve_start(self, pos: Position) -> OriginalPosition | None:
        return original_position_for(
            self.source_map, pos.line, pos.column, bias="least_upper",
        )

    def resolve_end(self, pos: Position) -> OriginalPosition | None:
        column = max(0, pos.column - END_COLUMN_OFFSET)
        resolved = original_position_for(self.source_map, pos.line, column)
        if resolved is None:
            return None
        return OriginalPosition(
            source_index=resolved.source_index,
            source=resolved.source,
            line=resolved.line,
            column=resolved.column + (pos.column - column),
            name=resolved.name,
        )

    def end_in_source(self, loc: Range, source_index: int) -> OriginalPosition | None:
        """Nearest segment of ``source_index`` at or before the range end."""
        end_column = max(0, loc.end.column - END_COLUMN_OFFSET)
        for line in range(loc.end.line, loc.start.line - 1, -1):
            for seg in reversed(self.source_map.segments_for_line(line)):
                if line == loc.end.line and seg.generated_column > end_column:
                    continue
                if line == loc.start.line and seg.generated_column < loc.start.column:
                    break
                if seg.source_index == source_index:
                    return position_from_segment(self.source_map, seg, seg.generated_column)
        return None

    def source_path(self, pos: OriginalPosition) -> str:
        return resolve_source_path(self.entry.path, pos.source)

    def remap_range(self, loc: Range) -> tuple[str, Range] | None:
        """Translate one range; ``None`` when neither endpoint resolves."""
        start = self.resolve_start(loc.start)
        end = start if loc.is_zero_width else self.resolve_end(loc.end)
        if start is None:
            if end is None:
                return None
            anchor = _as_position(end)
            return self.source_path(end), Range(start=anchor, end=anchor)

        begin = _as_position(start)
        finish = begin
        if end is not None and end.source_index != start.source_index:
            self.tally.cross_file_splits += 1
            log.debug(
                "%s: range %d:%d-%d:%d spans %s and %s; attributed to %s",
                self.entry.path, loc.start.line, loc.start.column,
                loc.end.line, loc.end.column, start.source, end.source, start.source,
            )
            end = self.end_in_source(loc, start.source_index)
        if end is not None:
            finish = _as_position(end)
        if finish < begin:
            finish = begin
        return self.source_path(start), Range(start=begin, end=finish)

    # -- item remapping -------------------------------------------------------

    def builder(self, path: str) -> _FileBuilder:
        builder = self.builders.get(path)
        if builder is None:
            builder = _FileBuilder(path=path)
            self.builders[path] = builder
        return builder

    def drop(self, hits: int, ranges: int = 1) -> None:
        self.tally.dropped_hits += hits
        self.tally.dropped_ranges += ranges

    def remap_statements(self) -> None:
        for sid, loc in self.entry.statement_map.items():
            hits = self.entry.s.get(sid, 0)
            mapped = self.remap_range(loc)
            if mapped is None:
                self.drop(hits)
                continue
            path, remapped = mapped
            target = self.builder(path)
            target.statement_map[sid] = remapped
            target.s[sid] = hits

    def remap_functions(self) -> None:
        for fid, fn in self.entry.fn_map.items():
            hits = self.entry.f.get(fid, 0)
            decl = self.remap_range(fn.decl)
            loc = self.remap_range(fn.loc)
            anchor = decl or loc
            if anchor is None:
                self.drop(hits)
                continue
            path, anchor_range = anchor
            if (decl is not None and decl[0] != path) or (loc is not None and loc[0] != path):
                self.tally.cross_file_splits += 1
            decl_range = decl[1] if decl is not None and decl[0] == path else anchor_range
            loc_range = loc[1] if loc is not None and loc[0] == path else anchor_range
            target = self.builder(path)
            target.fn_map[fid] = FunctionMeta(
                name=fn.name or f"(unknown_{fid})",
                decl=decl_range,
                loc=loc_range,
                line=decl_range.start.line if fn.line is not None else None,
            )
            target.f[fid] = hits

    def remap_branches(self) -> None:
        for bid, branch in self.entry.branch_map.items():
            counts = self.entry.b.get(bid, (0,) * len(branch.locations))
            path: str | None = None
            locations: list[Range | None] = []
            kept: list[int] = []
            for loc, hits in zip(branch.locations, counts, strict=True):
                if loc is None:
                    locations.append(None)
                    kept.append(hits)
                    continue
                mapped = self.remap_range(loc)
                if mapped is None:
                    self.drop(hits)
                    continue
                if path is None:
                    path = mapped[0]
                elif mapped[0] != path:
                    self.tally.cross_file_splits += 1
                    self.drop(hits)
                    continue
                locations.append(mapped[1])
                kept.append(hits)

            if path is None:
                self.drop(sum(kept), ranges=len(kept))
                continue
            overall = self.remap_range(branch.loc) if branch.loc is not None else None
            if overall is not None and overall[0] == path:
                branch_loc: Range | None = overall[1]
            elif branch.loc is not None:
                branch_loc = next(loc for loc in locations if loc is not None)
            else:
                branch_loc = None
            line = None
            if branch.line is not None:
                first = branch_loc or next(loc for loc in locations if loc is not None)
                line = first.start.line
            target = self.builder(path)
            target.branch_map[bid] = BranchMeta(
                type=branch.type,
                locations=tuple(locations),
                loc=branch_loc,
                line=line,
            )
            target.b[bid] = tuple(kept)

    def run(self) -> tuple[list[CoverageEntry], _Tally]:
        self.remap_statements()
        self.remap_functions()
        self.remap_branches()
        has_items = bool(
            self.entry.statement_map or self.entry.fn_map or self.entry.branch_map
        )
        if has_items and not self.builders:
            log.warning("File [%s] ignored, nothing could be mapped", self.entry.path)
        return [builder.build() for builder in self.builders.values()], self.tally


def remap_entry(
    entry: CoverageEntry, source_map: SourceMap | None
) -> tuple[list[CoverageEntry], int, int, int]:
    """Remap a single entry.

    Returns ``(entries, dropped_hits, dropped_ranges, cross_file_splits)``.
    Without a source map the entry passes through unchanged.
    """
    if source_map is None:
        return [entry], 0, 0, 0
    check_source_indices(source_map, entry.path)
    entries, tally = _EntryRemapper(entry, source_map).run()
    return entries, tally.dropped_hits, tally.dropped_ranges, tally.cross_file_splits


def remap(
    entries: Mapping[str, CoverageEntry],
    source_map_for: SourceMapLookup,
    *,
    max_workers: int | None = None,
) -> RemapResult:
    """Remap every entry of a parsed coverage document.

    ``source_map_for`` receives each document key and returns the decoded
    map for it, or ``None`` to pass the entry through. With ``max_workers``
    above 1 entries are remapped on a thread pool; output order always
    follows input order.
    """
    jobs = [(entry, source_map_for(key)) for key, entry in entries.items()]

    if max_workers is not None and max_workers > 1 and len(jobs) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            results = list(pool.map(lambda job: remap_entry(*job), jobs))
    else:
        results = [remap_entry(entry, source_map) for entry, source_map in jobs]

    remapped: list[CoverageEntry] = []
    dropped_hits = dropped_ranges = cross_file_splits = 0
    for produced, hits, ranges, splits in results:
        remapped.extend(produced)
        dropped_hits += hits
        dropped_ranges += ranges
        cross_file_splits += splits
    if dropped_hits:
        log.info("Dropped %d ranges carrying %d hits", dropped_ranges, dropped_hits)
    return RemapResult(
        entries=tuple(remapped),
        dropped_hits=dropped_hits,
        dropped_ranges=dropped_ranges,
        cross_file_splits=cross_file_splits,
    )
