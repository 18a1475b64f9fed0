"""Source map (revision 3) decoding and position lookup.

``decode_source_map`` turns a map document into a ``SourceMap`` whose
segments carry absolute values; ``original_position_for`` answers
generated-position queries with a nearest-preceding-segment search.
"""
from __future__ import annotations

import bisect
from collections.abc import Mapping
from typing import Any, Literal, TypeAlias

from covremap.errors import SourceMapError
from covremap.io_utils import loads_json
from covremap.types import OriginalPosition, Segment, SourceMap
from covremap.vlq import decode_mappings

SUPPORTED_VERSION = 3

LookupBias: TypeAlias = Literal["greatest_lower", "least_upper"]


def _malformed(message: str, field: str | None = None) -> SourceMapError:
    return SourceMapError("Malformed", message, field=field)


def _string_list(payload: Mapping[str, Any], key: str, *, required: bool) -> list[str | None]:
    raw = payload.get(key)
    if raw is None:
        if required:
            raise _malformed(f"source map requires {key!r}", key)
        return []
    if not isinstance(raw, list):
        raise _malformed(f"{key!r} must be an array", key)
    for i, item in enumerate(raw):
        if item is not None and not isinstance(item, str):
            raise _malformed(f"{key}[{i}] must be a string", key)
    return raw


def _apply_source_root(source_root: str, source: str) -> str:
    if not source_root or "://" in source or source.startswith("/"):
        return source
    return f"{source_root.rstrip('/')}/{source}"


def _decode_regular(payload: Mapping[str, Any]) -> SourceMap:
    version = payload.get("version", SUPPORTED_VERSION)
    if version != SUPPORTED_VERSION:
        raise _malformed(f"unsupported source map version {version!r}", "version")
    mappings = payload.get("mappings")
    if not isinstance(mappings, str):
        raise _malformed("source map requires a 'mappings' string", "mappings")

    source_root = payload.get("sourceRoot") or ""
    if not isinstance(source_root, str):
        raise _malformed("'sourceRoot' must be a string", "sourceRoot")
    sources = tuple(
        _apply_source_root(source_root, src or "")
        for src in _string_list(payload, "sources", required=True)
    )
    names = tuple(name or "" for name in _string_list(payload, "names", required=False))
    content = payload.get("sourcesContent")
    sources_content = None
    if isinstance(content, list):
        sources_content = tuple(item if isinstance(item, str) else None for item in content)

    source_index = original_line = original_column = name_index = 0
    lines: list[tuple[Segment, ...]] = []
    for line_no, raw_segments in enumerate(decode_mappings(mappings), start=1):
        generated_column = 0
        previous = -1
        segments: list[Segment] = []
        for fields in raw_segments:
            generated_column += fields[0]
            if generated_column <= previous or generated_column < 0:
                raise SourceMapError(
                    "InvalidEncoding",
                    f"generated columns must be strictly ascending, got {generated_column} "
                    f"after {previous}",
                    field=f"mappings.{line_no}",
                )
            previous = generated_column
            if len(fields) == 1:
                segments.append(Segment(generated_column=generated_column))
                continue

            source_index += fields[1]
            original_line += fields[2]
            original_column += fields[3]
            if not 0 <= source_index < len(sources):
                raise SourceMapError(
                    "IndexOutOfRange",
                    f"source index {source_index} outside {len(sources)} sources",
                    field="sources",
                )
            if original_line < 0 or original_column < 0:
                raise SourceMapError(
                    "InvalidEncoding",
                    f"negative original position {original_line}:{original_column}",
                    field=f"mappings.{line_no}",
                )
            segment_name: int | None = None
            if len(fields) == 5:
                name_index += fields[4]
                if not 0 <= name_index < len(names):
                    raise SourceMapError(
                        "IndexOutOfRange",
                        f"name index {name_index} outside {len(names)} names",
                        field="names",
                    )
                segment_name = name_index
            segments.append(Segment(
                generated_column=generated_column,
                source_index=source_index,
                original_line=original_line + 1,
                original_column=original_column,
                name_index=segment_name,
            ))
        lines.append(tuple(segments))

    file = payload.get("file")
    return SourceMap(
        sources=sources,
        names=names,
        mappings=tuple(lines),
        file=file if isinstance(file, str) else None,
        sources_content=sources_content,
    )


def _offset(section: Mapping[str, Any], index: int) -> tuple[int, int]:
    raw = section.get("offset")
    if not isinstance(raw, dict):
        raise _malformed(f"section {index} requires an offset object", f"sections.{index}.offset")
    line = raw.get("line")
    column = raw.get("column")
    for value in (line, column):
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise _malformed(
                f"section {index} offset needs non-negative line and column",
                f"sections.{index}.offset",
            )
    return line, column


def _decode_sections(payload: Mapping[str, Any]) -> SourceMap:
    sections = payload.get("sections")
    if not isinstance(sections, list):
        raise _malformed("'sections' must be an array", "sections")

    sources: list[str] = []
    source_ids: dict[str, int] = {}
    names: list[str] = []
    name_ids: dict[str, int] = {}
    lines: dict[int, list[Segment]] = {}

    def _intern(table: list[str], ids: dict[str, int], value: str) -> int:
        if value not in ids:
            ids[value] = len(table)
            table.append(value)
        return ids[value]

    for index, section in enumerate(sections):
        if not isinstance(section, dict):
            raise _malformed(f"section {index} must be an object", f"sections.{index}")
        if "url" in section:
            raise _malformed(
                f"section {index} references an external map; only embedded maps are supported",
                f"sections.{index}.url",
            )
        raw_map = section.get("map")
        if not isinstance(raw_map, dict):
            raise _malformed(f"section {index} requires an embedded map", f"sections.{index}.map")
        offset_line, offset_column = _offset(section, index)
        sub = _decode_payload(raw_map)

        source_lookup = [_intern(sources, source_ids, src) for src in sub.sources]
        name_lookup = [_intern(names, name_ids, name) for name in sub.names]

        for rel_line, segments in enumerate(sub.mappings):
            line = offset_line + rel_line
            shift = offset_column if rel_line == 0 else 0
            if rel_line == 0:
                kept = [s for s in lines.get(line, []) if s.generated_column < offset_column]
            else:
                kept = []
            for seg in segments:
                kept.append(Segment(
                    generated_column=seg.generated_column + shift,
                    source_index=None if seg.source_index is None else source_lookup[seg.source_index],
                    original_line=seg.original_line,
                    original_column=seg.original_column,
                    name_index=None if seg.name_index is None else name_lookup[seg.name_index],
                ))
            lines[line] = kept

    line_count = max(lines) + 1 if lines else 0
    file = payload.get("file")
    return SourceMap(
        sources=tuple(sources),
        names=tuple(names),
        mappings=tuple(tuple(lines.get(i, ())) for i in range(line_count)),
        file=file if isinstance(file, str) else None,
    )


def _decode_payload(payload: Any) -> SourceMap:
    if not isinstance(payload, dict):
        raise _malformed("source map must be a JSON object")
    if "sections" in payload:
        return _decode_sections(payload)
    return _decode_regular(payload)


def decode_source_map(document: str | bytes | Mapping[str, Any]) -> SourceMap:
    """Decode a source map from JSON text or an already-decoded object.

    Raises ``SourceMapError`` with kind ``Malformed``, ``InvalidEncoding`` or
    ``IndexOutOfRange``.
    """
    if isinstance(document, (str, bytes)):
        try:
            payload = loads_json(document)
        except ValueError as exc:
            raise _malformed(f"source map is not valid JSON: {exc}") from exc
    else:
        payload = dict(document)
    return _decode_payload(payload)


def _generated_column(segment: Segment) -> int:
    return segment.generated_column


def find_segment(
    source_map: SourceMap,
    line: int,
    column: int,
    *,
    bias: LookupBias = "greatest_lower",
) -> Segment | None:
    """Return the segment governing a generated position, mapped or not."""
    segments = source_map.segments_for_line(line)
    if not segments:
        return None
    idx = bisect.bisect_right(segments, column, key=_generated_column) - 1
    if idx >= 0:
        return segments[idx]
    if bias == "least_upper":
        return next((seg for seg in segments if seg.is_mapped), None)
    return None


def original_position_for(
    source_map: SourceMap,
    line: int,
    column: int,
    *,
    bias: LookupBias = "greatest_lower",
) -> OriginalPosition | None:
    """Translate a generated position (1-based line) to its original position.

    The column distance from the governing segment's generated column is
    carried onto its original column. Returns ``None`` when the line is
    absent, has no segments, or the governing segment is unmapped.
    ``least_upper`` bias uses the first mapped segment on the line when
    ``column`` precedes every segment.
    """
    segment = find_segment(source_map, line, column, bias=bias)
    if segment is None or segment.source_index is None:
        return None
    return position_from_segment(source_map, segment, column)


def position_from_segment(
    source_map: SourceMap, segment: Segment, column: int
) -> OriginalPosition:
    if (
        segment.source_index is None
        or segment.original_line is None
        or segment.original_column is None
    ):
        raise ValueError(f"segment at generated column {segment.generated_column} is unmapped")
    if not 0 <= segment.source_index < len(source_map.sources):
        raise SourceMapError(
            "IndexOutOfRange",
            f"source index {segment.source_index} outside {len(source_map.sources)} sources",
            field="sources",
        )
    name = None
    if segment.name_index is not None and 0 <= segment.name_index < len(source_map.names):
        name = source_map.names[segment.name_index]
    return OriginalPosition(
        source_index=segment.source_index,
        source=source_map.sources[segment.source_index],
        line=segment.original_line,
        column=segment.original_column + max(0, column - segment.generated_column),
        name=name,
    )
