"""Text-in, text-out entry point for coverage remapping.

``transform`` parses a coverage document, resolves a source map for every
generated file through the caller's lookup (falling back to an entry's
embedded ``inputSourceMap``), remaps, aggregates and serializes. How maps
are located (sidecar files, ``sourceMappingURL`` comments, ...) is the
caller's concern.
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any, TypeAlias

from covremap.aggregate import aggregate
from covremap.coverage import parse_coverage, serialize_coverage
from covremap.errors import RemapError, SourceMapError
from covremap.remapper import remap
from covremap.sourcemap import decode_source_map
from covremap.types import CoverageEntry, SourceMap, TransformResult

log = logging.getLogger(__name__)

SourceMapDocument: TypeAlias = str | bytes | Mapping[str, Any]
SourceMapDocumentLookup: TypeAlias = Callable[[str], SourceMapDocument | None]

EMBEDDED_MAP_FIELD = "inputSourceMap"


def _decode_for(path: str, document: SourceMapDocument) -> SourceMap:
    try:
        return decode_source_map(document)
    except SourceMapError as exc:
        if exc.kind == "IndexOutOfRange" and exc.field == "sources":
            raise RemapError("BadSourceIndex", exc.message, path=path, field="sources") from exc
        raise SourceMapError(exc.kind, exc.message, path=path, field=exc.field) from exc


def resolve_source_maps(
    entries: Mapping[str, CoverageEntry],
    source_map_lookup: SourceMapDocumentLookup | None,
    *,
    use_embedded: bool = True,
) -> dict[str, SourceMap | None]:
    """Look up and decode the source map of every entry.

    Identical map texts are decoded once.
    """
    decoded_texts: dict[str | bytes, SourceMap] = {}
    maps: dict[str, SourceMap | None] = {}
    for key, entry in entries.items():
        document = source_map_lookup(key) if source_map_lookup is not None else None
        if document is None and use_embedded:
            document = entry.extras.get(EMBEDDED_MAP_FIELD)
        if document is None:
            maps[key] = None
            continue
        if isinstance(document, (str, bytes)):
            source_map = decoded_texts.get(document)
            if source_map is None:
                source_map = _decode_for(key, document)
                decoded_texts[document] = source_map
        elif isinstance(document, Mapping):
            source_map = _decode_for(key, document)
        else:
            raise SourceMapError(
                "Malformed",
                f"source map must be text or an object, got {type(document).__name__}",
                path=key,
            )
        maps[key] = source_map
        log.debug("%s: source map with %d sources", key, len(source_map.sources))
    return maps


def transform(
    coverage_text: str | bytes,
    source_map_lookup: SourceMapDocumentLookup | None = None,
    *,
    use_embedded: bool = True,
    max_workers: int | None = None,
) -> TransformResult:
    """Remap a coverage document onto original sources.

    Raises ``ParseError``, ``SourceMapError`` or ``RemapError``; no partial
    document is produced on failure.
    """
    entries = parse_coverage(coverage_text)
    maps = resolve_source_maps(entries, source_map_lookup, use_embedded=use_embedded)
    result = remap(entries, maps.get, max_workers=max_workers)
    document = serialize_coverage(aggregate(result.entries))

    remapped_files = sum(1 for source_map in maps.values() if source_map is not None)
    return TransformResult(
        document=document,
        dropped_hits=result.dropped_hits,
        dropped_ranges=result.dropped_ranges,
        cross_file_splits=result.cross_file_splits,
        remapped_files=remapped_files,
        passthrough_files=len(maps) - remapped_files,
    )


def transform_coverage_text(
    coverage_text: str | bytes,
    source_map_lookup: SourceMapDocumentLookup | None = None,
) -> str:
    """Convenience wrapper returning only the remapped document."""
    return transform(coverage_text, source_map_lookup).document
