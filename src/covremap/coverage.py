"""Istanbul coverage document parsing and serialization.

The document is a JSON object keyed by file path; each value is Istanbul's
per-file coverage record (``path``, ``statementMap``, ``fnMap``,
``branchMap``, ``s``, ``f``, ``b``). Missing maps default to empty, unknown
fields are kept in ``CoverageEntry.extras``.
"""
from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from covremap.errors import ParseError
from covremap.io_utils import dumps_json, loads_json
from covremap.types import BranchMeta, CoverageEntry, FunctionMeta, Position, Range

KNOWN_FIELDS = frozenset({"path", "statementMap", "fnMap", "branchMap", "s", "f", "b"})


class _EntryReader:
    """Validating reader for one entry; errors carry the entry path and field."""

    def __init__(self, path: str) -> None:
        self.path = path

    def fail(self, field: str, message: str) -> ParseError:
        return ParseError("SchemaViolation", message, path=self.path, field=field)

    def mapping(self, raw: Any, field: str) -> dict[str, Any]:
        if raw is None:
            return {}
        if not isinstance(raw, dict):
            raise self.fail(field, "expected an object")
        return raw

    def integer(self, raw: Any, field: str, *, minimum: int) -> int:
        if isinstance(raw, bool) or not isinstance(raw, int):
            raise self.fail(field, f"expected an integer, got {type(raw).__name__}")
        if raw < minimum:
            raise self.fail(field, f"must be >= {minimum}, got {raw}")
        return raw

    def position(self, raw: Any, field: str) -> Position:
        if not isinstance(raw, dict):
            raise self.fail(field, "expected a position object")
        if "line" not in raw or "column" not in raw:
            raise self.fail(field, "position requires line and column")
        return Position(
            line=self.integer(raw["line"], f"{field}.line", minimum=1),
            column=self.integer(raw["column"], f"{field}.column", minimum=0),
        )

    def range(self, raw: Any, field: str) -> Range:
        if not isinstance(raw, dict):
            raise self.fail(field, "expected a range object")
        if "start" not in raw or "end" not in raw:
            raise self.fail(field, "range requires start and end")
        start = self.position(raw["start"], f"{field}.start")
        end = self.position(raw["end"], f"{field}.end")
        if end < start:
            raise self.fail(field, "range end precedes start")
        return Range(start=start, end=end)

    def branch_location(self, raw: Any, field: str) -> Range | None:
        if _is_empty_location(raw):
            return None
        return self.range(raw, field)

    def function(self, raw: Any, field: str) -> FunctionMeta:
        if not isinstance(raw, dict):
            raise self.fail(field, "expected a function object")
        if "loc" not in raw and "decl" not in raw:
            raise self.fail(field, "function requires loc or decl")
        loc = self.range(raw.get("loc", raw.get("decl")), f"{field}.loc")
        decl = self.range(raw["decl"], f"{field}.decl") if "decl" in raw else loc
        name = raw.get("name", "")
        if not isinstance(name, str):
            raise self.fail(f"{field}.name", "expected a string")
        return FunctionMeta(name=name, decl=decl, loc=loc, line=self.legacy_line(raw, field))

    def branch(self, raw: Any, field: str) -> BranchMeta:
        if not isinstance(raw, dict):
            raise self.fail(field, "expected a branch object")
        locations = raw.get("locations")
        if not isinstance(locations, list):
            raise self.fail(f"{field}.locations", "expected an array")
        branch_type = raw.get("type", "")
        if not isinstance(branch_type, str):
            raise self.fail(f"{field}.type", "expected a string")
        loc_raw = raw.get("loc")
        loc = None
        if loc_raw is not None and not _is_empty_location(loc_raw):
            loc = self.range(loc_raw, f"{field}.loc")
        return BranchMeta(
            type=branch_type,
            locations=tuple(
                self.branch_location(item, f"{field}.locations.{i}")
                for i, item in enumerate(locations)
            ),
            loc=loc,
            line=self.legacy_line(raw, field),
        )

    def legacy_line(self, raw: dict[str, Any], field: str) -> int | None:
        if raw.get("line") is None:
            return None
        return self.integer(raw["line"], f"{field}.line", minimum=0)

    def counts(self, raw: Any, field: str, known: Mapping[str, Any]) -> dict[str, int]:
        out: dict[str, int] = {}
        for key, value in self.mapping(raw, field).items():
            if key not in known:
                raise self.fail(f"{field}.{key}", "counter id has no matching map entry")
            out[key] = self.integer(value, f"{field}.{key}", minimum=0)
        for key in known:
            out.setdefault(key, 0)
        return out

    def branch_counts(
        self, raw: Any, field: str, known: Mapping[str, BranchMeta]
    ) -> dict[str, tuple[int, ...]]:
        out: dict[str, tuple[int, ...]] = {}
        for key, value in self.mapping(raw, field).items():
            meta = known.get(key)
            if meta is None:
                raise self.fail(f"{field}.{key}", "counter id has no matching branchMap entry")
            if not isinstance(value, list):
                raise self.fail(f"{field}.{key}", "expected an array of counts")
            if len(value) != len(meta.locations):
                raise self.fail(
                    f"{field}.{key}",
                    f"{len(value)} counts for {len(meta.locations)} locations",
                )
            out[key] = tuple(
                self.integer(item, f"{field}.{key}.{i}", minimum=0)
                for i, item in enumerate(value)
            )
        for key, meta in known.items():
            out.setdefault(key, (0,) * len(meta.locations))
        return out


def _is_empty_location(raw: Any) -> bool:
    if not isinstance(raw, dict):
        return False
    start = raw.get("start")
    end = raw.get("end")
    return (start is None or start == {}) and (end is None or end == {})


def entry_from_payload(key: str, raw: Any) -> CoverageEntry:
    """Validate one per-file record. ``key`` is its document key."""
    reader = _EntryReader(key)
    if not isinstance(raw, dict):
        raise reader.fail("", "entry must be an object")
    path = raw.get("path", key)
    if not isinstance(path, str) or not path:
        raise reader.fail("path", "expected a non-empty string")

    statement_map = {
        sid: reader.range(loc, f"statementMap.{sid}")
        for sid, loc in reader.mapping(raw.get("statementMap"), "statementMap").items()
    }
    fn_map = {
        fid: reader.function(meta, f"fnMap.{fid}")
        for fid, meta in reader.mapping(raw.get("fnMap"), "fnMap").items()
    }
    branch_map = {
        bid: reader.branch(meta, f"branchMap.{bid}")
        for bid, meta in reader.mapping(raw.get("branchMap"), "branchMap").items()
    }
    return CoverageEntry(
        path=path,
        statement_map=statement_map,
        fn_map=fn_map,
        branch_map=branch_map,
        s=reader.counts(raw.get("s"), "s", statement_map),
        f=reader.counts(raw.get("f"), "f", fn_map),
        b=reader.branch_counts(raw.get("b"), "b", branch_map),
        extras={k: v for k, v in raw.items() if k not in KNOWN_FIELDS},
    )


def coverage_from_payload(payload: Any) -> dict[str, CoverageEntry]:
    """Validate an already-decoded coverage document."""
    if not isinstance(payload, dict):
        raise ParseError(
            "SchemaViolation", "coverage document must be an object", field="$",
        )
    return {str(key): entry_from_payload(str(key), raw) for key, raw in payload.items()}


def parse_coverage(text: str | bytes) -> dict[str, CoverageEntry]:
    """Decode and validate a coverage document.

    Raises ``ParseError(kind="Malformed")`` for undecodable text and
    ``ParseError(kind="SchemaViolation")`` for structural problems.
    """
    try:
        payload = loads_json(text)
    except ValueError as exc:
        raise ParseError("Malformed", f"coverage document is not valid JSON: {exc}") from exc
    return coverage_from_payload(payload)


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------

def position_to_payload(pos: Position) -> dict[str, int]:
    return {"line": pos.line, "column": pos.column}


def range_to_payload(loc: Range | None) -> dict[str, Any]:
    if loc is None:
        return {"start": {}, "end": {}}
    return {"start": position_to_payload(loc.start), "end": position_to_payload(loc.end)}


def entry_to_payload(entry: CoverageEntry) -> dict[str, Any]:
    """Render an entry in the same shape ``entry_from_payload`` accepts."""
    fn_map: dict[str, Any] = {}
    for fid, fn in entry.fn_map.items():
        fn_payload: dict[str, Any] = {
            "name": fn.name,
            "decl": range_to_payload(fn.decl),
            "loc": range_to_payload(fn.loc),
        }
        if fn.line is not None:
            fn_payload["line"] = fn.line
        fn_map[fid] = fn_payload

    branch_map: dict[str, Any] = {}
    for bid, branch in entry.branch_map.items():
        branch_payload: dict[str, Any] = {
            "type": branch.type,
            "locations": [range_to_payload(loc) for loc in branch.locations],
        }
        if branch.loc is not None:
            branch_payload["loc"] = range_to_payload(branch.loc)
        if branch.line is not None:
            branch_payload["line"] = branch.line
        branch_map[bid] = branch_payload

    payload: dict[str, Any] = dict(entry.extras)
    payload.update({
        "path": entry.path,
        "statementMap": {sid: range_to_payload(loc) for sid, loc in entry.statement_map.items()},
        "fnMap": fn_map,
        "branchMap": branch_map,
        "s": dict(entry.s),
        "f": dict(entry.f),
        "b": {bid: list(counts) for bid, counts in entry.b.items()},
    })
    return payload


def coverage_to_payload(entries: Mapping[str, CoverageEntry]) -> dict[str, Any]:
    return {key: entry_to_payload(entry) for key, entry in entries.items()}


def serialize_coverage(entries: Mapping[str, CoverageEntry]) -> str:
    """Serialize a coverage mapping as deterministic JSON text."""
    return dumps_json(coverage_to_payload(entries))
