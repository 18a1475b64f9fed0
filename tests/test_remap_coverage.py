"""Tests for scripts/remap_coverage.py source map lookup and CLI output."""
from __future__ import annotations

import base64
import json
import os
import subprocess
import sys
from pathlib import Path
from typing import Any

import pytest

from scripts.remap_coverage import (
    build_lookup,
    decode_data_url,
    parse_source_map_pairs,
    read_source_mapping_url,
)

ROOT = Path(__file__).resolve().parents[1]


def _loc(sl: int, sc: int, el: int, ec: int) -> dict[str, Any]:
    return {"start": {"line": sl, "column": sc}, "end": {"line": el, "column": ec}}


def _map(sources: list[str], mappings: str) -> dict[str, Any]:
    return {"version": 3, "sources": sources, "names": [], "mappings": mappings}


def _run(args: list[str], *, stdin: str | None = None) -> subprocess.CompletedProcess[str]:
    env = os.environ.copy()
    env["PYTHONPATH"] = str(ROOT / "src")
    return subprocess.run(
        [sys.executable, str(ROOT / "scripts" / "remap_coverage.py"), *args],
        cwd=str(ROOT),
        env=env,
        input=stdin,
        capture_output=True,
        text=True,
        check=False,
    )


def _write_coverage(root: Path, generated: str) -> Path:
    path = root / "coverage.json"
    path.write_text(json.dumps({
        generated: {
            "path": generated,
            "statementMap": {"0": _loc(1, 0, 1, 10)},
            "s": {"0": 3},
        },
    }))
    return path


class TestLookup:
    def test_parse_source_map_pairs(self) -> None:
        assert parse_source_map_pairs(["dist/a.js=maps/a.map"]) == {"dist/a.js": Path("maps/a.map")}
        with pytest.raises(ValueError, match="GENERATED=MAP"):
            parse_source_map_pairs(["dist/a.js"])

    def test_reads_last_source_mapping_url(self, tmp_path: Path) -> None:
        js = tmp_path / "app.js"
        js.write_text("var a = 1;\n//# sourceMappingURL=old.map\n//# sourceMappingURL=app.min.map\n")
        assert read_source_mapping_url(js) == "app.min.map"
        assert read_source_mapping_url(tmp_path / "missing.js") is None

    def test_decode_base64_data_url(self) -> None:
        payload = json.dumps(_map(["a.ts"], "AAAA")).encode()
        url = "data:application/json;charset=utf-8;base64," + base64.b64encode(payload).decode()
        assert decode_data_url(url) == payload

    def test_lookup_order(self, tmp_path: Path) -> None:
        dist = tmp_path / "dist"
        dist.mkdir()
        (dist / "side.js").write_text("x();\n")
        (dist / "side.js.map").write_text(json.dumps(_map(["side.ts"], "AAAA")))
        (dist / "url.js").write_text("y();\n//# sourceMappingURL=maps/url.map\n")
        (dist / "maps").mkdir()
        (dist / "maps" / "url.map").write_text(json.dumps(_map(["url.ts"], "AAAA")))
        explicit = tmp_path / "explicit.map"
        explicit.write_text(json.dumps(_map(["explicit.ts"], "AAAA")))
        (dist / "plain.js").write_text("z();\n")

        lookup = build_lookup({"dist/side.js": explicit}, tmp_path)
        assert json.loads(lookup("dist/side.js") or b"")["sources"] == ["explicit.ts"]

        lookup = build_lookup({}, tmp_path)
        assert json.loads(lookup("dist/side.js") or b"")["sources"] == ["side.ts"]
        assert json.loads(lookup("dist/url.js") or b"")["sources"] == ["url.ts"]
        assert lookup("dist/plain.js") is None
        assert lookup("dist/absent.js") is None

    def test_undecodable_data_url_yields_no_map(self, tmp_path: Path) -> None:
        (tmp_path / "x.js").write_text("x();\n//# sourceMappingURL=data:application/json;base64,abc\n")
        with pytest.raises(ValueError):
            decode_data_url("data:application/json;base64,abc")
        assert build_lookup({}, tmp_path)("x.js") is None


class TestCli:
    def test_remaps_with_sidecar_map(self, tmp_path: Path) -> None:
        dist = tmp_path / "dist"
        dist.mkdir()
        (dist / "app.js").write_text("console.log(1);\n")
        (dist / "app.js.map").write_text(json.dumps(_map(["../src/app.ts"], "AAAA")))
        coverage = _write_coverage(tmp_path, "dist/app.js")
        stats = tmp_path / "stats.json"

        proc = _run(["--input", str(coverage), "--stats", str(stats)])
        assert proc.returncode == 0, proc.stderr
        out = json.loads(proc.stdout)
        assert list(out) == ["src/app.ts"]
        assert out["src/app.ts"]["s"] == {"0": 3}
        assert json.loads(stats.read_text())["remapped_files"] == 1

    def test_inline_data_url_and_output_file(self, tmp_path: Path) -> None:
        payload = json.dumps(_map(["app.ts"], "AAAA")).encode()
        url = "data:application/json;base64," + base64.b64encode(payload).decode()
        (tmp_path / "bundle.js").write_text(f"run();\n//# sourceMappingURL={url}\n")
        coverage = _write_coverage(tmp_path, "bundle.js")
        output = tmp_path / "out" / "remapped.json"

        proc = _run(["--input", str(coverage), "--output", str(output)])
        assert proc.returncode == 0, proc.stderr
        assert proc.stdout == ""
        assert list(json.loads(output.read_text())) == ["app.ts"]

    def test_stdin_passthrough(self) -> None:
        doc = {"plain.js": {"statementMap": {"0": _loc(1, 0, 1, 2)}, "s": {"0": 1}}}
        proc = _run(["--base-dir", str(ROOT / "does-not-exist")], stdin=json.dumps(doc))
        assert proc.returncode == 0, proc.stderr
        assert json.loads(proc.stdout)["plain.js"]["s"] == {"0": 1}

    def test_undecodable_inline_map_falls_back_to_passthrough(self, tmp_path: Path) -> None:
        (tmp_path / "x.js").write_text("x();\n//# sourceMappingURL=data:application/json;base64,abc\n")
        coverage = _write_coverage(tmp_path, "x.js")
        proc = _run(["--input", str(coverage), "--base-dir", str(tmp_path)])
        assert proc.returncode == 0, proc.stderr
        assert "Traceback" not in proc.stderr
        assert "inline source map is not decodable" in proc.stderr
        assert json.loads(proc.stdout)["x.js"]["s"] == {"0": 3}

    def test_bad_source_index_exits_nonzero(self, tmp_path: Path) -> None:
        (tmp_path / "bundle.js.map").write_text(json.dumps(_map(["a.ts"], "AKAA")))
        coverage = _write_coverage(tmp_path, "bundle.js")
        proc = _run(["--input", str(coverage)])
        assert proc.returncode == 1
        assert "BadSourceIndex" in proc.stderr
        assert proc.stdout == ""

    def test_malformed_input_exits_nonzero(self) -> None:
        proc = _run([], stdin="{oops")
        assert proc.returncode == 1
        assert "Malformed" in proc.stderr
