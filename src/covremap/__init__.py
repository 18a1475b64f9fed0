"""Remap Istanbul coverage from generated JavaScript onto original sources."""

from covremap.aggregate import aggregate, merge_entries, render_report
from covremap.coverage import (
    coverage_from_payload,
    entry_to_payload,
    parse_coverage,
    serialize_coverage,
)
from covremap.errors import CoverageRemapError, ParseError, RemapError, SourceMapError
from covremap.remapper import END_COLUMN_OFFSET, remap, remap_entry, resolve_source_path
from covremap.sourcemap import decode_source_map, original_position_for
from covremap.transform import transform, transform_coverage_text
from covremap.types import (
    BranchMeta,
    CoverageEntry,
    FunctionMeta,
    OriginalPosition,
    Position,
    Range,
    RemapResult,
    RemappedEntry,
    Segment,
    SourceMap,
    TransformResult,
)

__version__ = "0.1.0"

__all__ = [
    "END_COLUMN_OFFSET",
    "BranchMeta",
    "CoverageEntry",
    "CoverageRemapError",
    "FunctionMeta",
    "OriginalPosition",
    "ParseError",
    "Position",
    "Range",
    "RemapError",
    "RemapResult",
    "RemappedEntry",
    "Segment",
    "SourceMap",
    "SourceMapError",
    "TransformResult",
    "aggregate",
    "coverage_from_payload",
    "decode_source_map",
    "entry_to_payload",
    "merge_entries",
    "original_position_for",
    "parse_coverage",
    "remap",
    "remap_entry",
    "render_report",
    "resolve_source_path",
    "serialize_coverage",
    "transform",
    "transform_coverage_text",
]
