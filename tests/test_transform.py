"""End-to-end tests for covremap.transform."""
from __future__ import annotations

from typing import Any

import orjson
import pytest

from covremap.coverage import parse_coverage
from covremap.errors import ParseError, RemapError, SourceMapError
from covremap.transform import transform, transform_coverage_text


def _loc(sl: int, sc: int, el: int, ec: int) -> dict[str, Any]:
    return {"start": {"line": sl, "column": sc}, "end": {"line": el, "column": ec}}


def _map(sources: list[str], mappings: str) -> dict[str, Any]:
    return {"version": 3, "sources": sources, "names": [], "mappings": mappings}


def _dumps(obj: Any) -> str:
    return orjson.dumps(obj).decode("utf-8")


_CANONICAL_DOC = {
    "src/math.js": {
        "path": "src/math.js",
        "statementMap": {"0": _loc(1, 0, 1, 20), "1": _loc(2, 0, 2, 15)},
        "fnMap": {
            "0": {"name": "add", "decl": _loc(1, 9, 1, 12), "loc": _loc(1, 0, 3, 1), "line": 1},
        },
        "branchMap": {
            "0": {
                "type": "if",
                "loc": _loc(2, 2, 2, 20),
                "locations": [_loc(2, 2, 2, 10), {"start": {}, "end": {}}],
                "line": 2,
            },
        },
        "s": {"0": 10, "1": 8},
        "f": {"0": 10},
        "b": {"0": [8, 2]},
        "_coverageSchema": "1a1c01bbd47fc00a2c39e90264f33305004495a9",
        "hash": "b5d3c8a1",
    },
    "src/util.js": {
        "path": "src/util.js",
        "statementMap": {"0": _loc(1, 0, 1, 5)},
        "fnMap": {},
        "branchMap": {},
        "s": {"0": 0},
        "f": {},
        "b": {},
    },
}


class TestTransform:
    def test_identity_without_source_maps(self) -> None:
        text = _dumps(_CANONICAL_DOC)
        result = transform(text)
        assert orjson.loads(result.document) == _CANONICAL_DOC
        assert result.passthrough_files == 2
        assert result.remapped_files == 0
        assert result.dropped_hits == 0

    def test_simple_one_to_one_map(self) -> None:
        doc = {"bundle.js": {"path": "bundle.js", "statementMap": {"0": _loc(1, 0, 1, 10)}, "s": {"0": 1}}}
        result = transform(_dumps(doc), {"bundle.js": _dumps(_map(["app.ts"], "AAAA"))}.get)
        out = orjson.loads(result.document)
        assert list(out) == ["app.ts"]
        assert out["app.ts"]["path"] == "app.ts"
        assert out["app.ts"]["statementMap"] == {"0": _loc(1, 0, 1, 10)}
        assert out["app.ts"]["s"] == {"0": 1}
        assert result.remapped_files == 1

    def test_many_to_one_aggregation(self) -> None:
        doc = {
            "a.js": {"statementMap": {"0": _loc(1, 0, 1, 4)}, "s": {"0": 2}},
            "b.js": {"statementMap": {"0": _loc(1, 0, 1, 6)}, "s": {"0": 5}},
        }
        maps = {
            "a.js": _map(["shared.ts"], "AAAA"),
            "b.js": _map(["shared.ts"], "AACA"),
        }
        result = transform(_dumps(doc), maps.get)
        out = orjson.loads(result.document)
        assert list(out) == ["shared.ts"]
        assert out["shared.ts"]["statementMap"] == {"0": _loc(1, 0, 1, 4), "1": _loc(2, 0, 2, 6)}
        assert out["shared.ts"]["s"] == {"0": 2, "1": 5}

    def test_unmapped_code_reports_dropped_hits(self) -> None:
        doc = {
            "bundle.js": {
                "statementMap": {"0": _loc(1, 0, 1, 10), "1": _loc(4, 0, 4, 2)},
                "s": {"0": 1, "1": 12},
            },
        }
        result = transform(_dumps(doc), {"bundle.js": _map(["app.ts"], "AAAA")}.get)
        assert result.dropped_hits == 12
        assert result.diagnostics()["dropped_ranges"] == 1
        assert list(orjson.loads(result.document)["app.ts"]["s"]) == ["0"]

    def test_malformed_source_map_reference(self) -> None:
        doc = {"bundle.js": {"statementMap": {"0": _loc(1, 0, 1, 10)}, "s": {"0": 1}}}
        lookup = {"bundle.js": _dumps(_map(["a.ts", "b.ts"], "AKAA"))}.get
        with pytest.raises(RemapError) as exc_info:
            transform(_dumps(doc), lookup)
        assert exc_info.value.kind == "BadSourceIndex"
        assert exc_info.value.path == "bundle.js"

    def test_invalid_encoding_names_the_path(self) -> None:
        doc = {"bundle.js": {"statementMap": {"0": _loc(1, 0, 1, 10)}, "s": {"0": 1}}}
        lookup = {"bundle.js": _map(["a.ts"], "AA!A")}.get
        with pytest.raises(SourceMapError) as exc_info:
            transform(_dumps(doc), lookup)
        assert exc_info.value.kind == "InvalidEncoding"
        assert exc_info.value.path == "bundle.js"

    def test_malformed_coverage_document(self) -> None:
        with pytest.raises(ParseError) as exc_info:
            transform("{\"a.js\": ")
        assert exc_info.value.kind == "Malformed"

    def test_embedded_input_source_map(self) -> None:
        doc = {
            "dist/app.js": {
                "path": "dist/app.js",
                "statementMap": {"0": _loc(1, 0, 1, 25)},
                "s": {"0": 1},
                "inputSourceMap": _map(["../src/app.ts"], "AAAA"),
            },
        }
        out = orjson.loads(transform(_dumps(doc)).document)
        assert list(out) == ["src/app.ts"]
        assert "inputSourceMap" not in out["src/app.ts"]

    def test_embedded_map_can_be_ignored(self) -> None:
        doc = {
            "dist/app.js": {
                "statementMap": {"0": _loc(1, 0, 1, 25)},
                "s": {"0": 1},
                "inputSourceMap": _map(["../src/app.ts"], "AAAA"),
            },
        }
        result = transform(_dumps(doc), use_embedded=False)
        assert list(orjson.loads(result.document)) == ["dist/app.js"]

    def test_lookup_result_takes_precedence_over_embedded(self) -> None:
        doc = {
            "app.js": {
                "statementMap": {"0": _loc(1, 0, 1, 3)},
                "s": {"0": 1},
                "inputSourceMap": _map(["embedded.ts"], "AAAA"),
            },
        }
        out = transform_coverage_text(_dumps(doc), {"app.js": _map(["lookup.ts"], "AAAA")}.get)
        assert list(orjson.loads(out)) == ["lookup.ts"]

    def test_output_reparses_and_conserves_hits(self) -> None:
        doc = dict(_CANONICAL_DOC)
        maps = {"src/math.js": _map(["math.ts"], "AAAA;AACA;AACA")}
        result = transform(_dumps(doc), maps.get, max_workers=2)
        reparsed = parse_coverage(result.document)
        total_in = sum(e.total_hits() for e in parse_coverage(_dumps(doc)).values())
        total_out = sum(e.total_hits() for e in reparsed.values())
        assert total_in == total_out + result.dropped_hits
        assert list(reparsed) == ["src/math.ts", "src/util.js"]
