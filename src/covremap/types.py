"""Core types for coverage entries, source maps, and remap results."""
from __future__ import annotations

from dataclasses import dataclass, field
from functools import total_ordering
from typing import Any, TypeAlias


@total_ordering
@dataclass(frozen=True, slots=True)
class Position:
    """1-based line, 0-based column, ordered as (line, column)."""

    line: int
    column: int

    def __post_init__(self) -> None:
        if self.line < 1:
            raise ValueError(f"line must be >= 1, got {self.line}")
        if self.column < 0:
            raise ValueError(f"column must be >= 0, got {self.column}")

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Position):
            return NotImplemented
        return (self.line, self.column) < (other.line, other.column)


@dataclass(frozen=True, slots=True)
class Range:
    """Half-open source range; zero-width ranges mark synthetic code."""

    start: Position
    end: Position

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError(
                f"range end {self.end.line}:{self.end.column} precedes "
                f"start {self.start.line}:{self.start.column}",
            )

    @property
    def is_zero_width(self) -> bool:
        return self.start == self.end


@dataclass(frozen=True, slots=True)
class FunctionMeta:
    name: str
    decl: Range
    loc: Range
    line: int | None = None  # legacy Istanbul field, carried when present


@dataclass(frozen=True, slots=True)
class BranchMeta:
    """Branch record. ``None`` locations are Istanbul's empty placeholders."""

    type: str
    locations: tuple[Range | None, ...]
    loc: Range | None = None
    line: int | None = None


@dataclass(frozen=True, slots=True)
class CoverageEntry:
    """Istanbul per-file coverage record.

    Used both for entries keyed by generated path (parser output) and for
    remapped entries keyed by original path (remapper output).
    """

    path: str
    statement_map: dict[str, Range] = field(default_factory=dict)
    fn_map: dict[str, FunctionMeta] = field(default_factory=dict)
    branch_map: dict[str, BranchMeta] = field(default_factory=dict)
    s: dict[str, int] = field(default_factory=dict)
    f: dict[str, int] = field(default_factory=dict)
    b: dict[str, tuple[int, ...]] = field(default_factory=dict)
    extras: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for sid in self.s:
            if sid not in self.statement_map:
                raise ValueError(f"statement counter {sid!r} has no statementMap entry")
        for fid in self.f:
            if fid not in self.fn_map:
                raise ValueError(f"function counter {fid!r} has no fnMap entry")
        for bid, counts in self.b.items():
            meta = self.branch_map.get(bid)
            if meta is None:
                raise ValueError(f"branch counter {bid!r} has no branchMap entry")
            if len(counts) != len(meta.locations):
                raise ValueError(
                    f"branch {bid!r} has {len(counts)} counters for "
                    f"{len(meta.locations)} locations",
                )

    def total_hits(self) -> int:
        """Sum of every statement, function, and branch counter."""
        return (
            sum(self.s.values())
            + sum(self.f.values())
            + sum(sum(counts) for counts in self.b.values())
        )


RemappedEntry: TypeAlias = CoverageEntry


@dataclass(frozen=True, slots=True)
class Segment:
    """One decoded mapping unit; ``original_line`` is 1-based."""

    generated_column: int
    source_index: int | None = None
    original_line: int | None = None
    original_column: int | None = None
    name_index: int | None = None

    @property
    def is_mapped(self) -> bool:
        return self.source_index is not None


@dataclass(frozen=True, slots=True)
class SourceMap:
    """Decoded source map. ``mappings[i]`` holds generated line ``i + 1``."""

    sources: tuple[str, ...]
    names: tuple[str, ...]
    mappings: tuple[tuple[Segment, ...], ...]
    file: str | None = None
    sources_content: tuple[str | None, ...] | None = None

    def segments_for_line(self, line: int) -> tuple[Segment, ...]:
        if line < 1 or line > len(self.mappings):
            return ()
        return self.mappings[line - 1]


@dataclass(frozen=True, slots=True)
class OriginalPosition:
    source_index: int
    source: str
    line: int
    column: int
    name: str | None = None


@dataclass(frozen=True, slots=True)
class RemapResult:
    """Remapped entries in processing order plus drop diagnostics."""

    entries: tuple[RemappedEntry, ...]
    dropped_hits: int = 0
    dropped_ranges: int = 0
    cross_file_splits: int = 0


@dataclass(frozen=True, slots=True)
class TransformResult:
    """Serialized document returned by ``transform`` with its diagnostics."""

    document: str
    dropped_hits: int
    dropped_ranges: int
    cross_file_splits: int
    remapped_files: int
    passthrough_files: int

    def diagnostics(self) -> dict[str, int]:
        return {
            "dropped_hits": self.dropped_hits,
            "dropped_ranges": self.dropped_ranges,
            "cross_file_splits": self.cross_file_splits,
            "remapped_files": self.remapped_files,
            "passthrough_files": self.passthrough_files,
        }
