#!/usr/bin/env python3
"""Remap an Istanbul coverage file from generated JS onto original sources.

Source maps are located per generated file, in order:
  1. explicit ``--source-map GENERATED=MAP`` pairs
  2. a sidecar ``<generated>.map`` file
  3. the generated file's ``//# sourceMappingURL=`` comment (file or data URI)
  4. the entry's embedded ``inputSourceMap`` (unless --no-embedded)

Usage:
    python3 scripts/remap_coverage.py --input coverage/coverage-final.json \
      --output coverage/coverage-remapped.json

    cat coverage-final.json | python3 scripts/remap_coverage.py --base-dir dist/

The remapped document goes to stdout (or --output); log lines go to stderr.
"""
from __future__ import annotations

import argparse
import base64
import logging
import re
import sys
from collections.abc import Callable
from pathlib import Path
from urllib.parse import unquote

from covremap import CoverageRemapError, __version__, transform
from covremap.io_utils import save_json

log = logging.getLogger("remap_coverage")

_SOURCE_MAPPING_URL_RE = re.compile(r"[#@]\s*sourceMappingURL=(\S+)")


def parse_source_map_pairs(pairs: list[str]) -> dict[str, Path]:
    """Parse ``GENERATED=MAP`` arguments."""
    out: dict[str, Path] = {}
    for pair in pairs:
        generated, sep, map_path = pair.partition("=")
        if not sep or not generated or not map_path:
            raise ValueError(f"expected GENERATED=MAP, got {pair!r}")
        out[generated] = Path(map_path)
    return out


def read_source_mapping_url(path: Path) -> str | None:
    """Return the last ``sourceMappingURL`` annotation in a generated file."""
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return None
    matches = _SOURCE_MAPPING_URL_RE.findall(text)
    return matches[-1] if matches else None


def decode_data_url(url: str) -> bytes:
    """Decode an inline ``data:`` source map URL."""
    header, _, data = url.partition(",")
    if header.endswith(";base64"):
        return base64.b64decode(data)
    return unquote(data).encode("utf-8")


def build_lookup(
    explicit: dict[str, Path],
    base_dir: Path,
) -> Callable[[str], bytes | None]:
    """Build the generated-path -> source map text lookup."""

    def lookup(generated: str) -> bytes | None:
        if generated in explicit:
            return explicit[generated].read_bytes()
        generated_path = Path(generated)
        if not generated_path.is_absolute():
            generated_path = base_dir / generated_path
        sidecar = generated_path.with_name(generated_path.name + ".map")
        if sidecar.is_file():
            log.debug("%s: using sidecar %s", generated, sidecar)
            return sidecar.read_bytes()
        url = read_source_mapping_url(generated_path)
        if url is None:
            return None
        if url.startswith("data:"):
            log.debug("%s: using inline source map", generated)
            try:
                return decode_data_url(url)
            except ValueError as exc:
                log.warning("%s: inline source map is not decodable: %s", generated, exc)
                return None
        candidate = generated_path.parent / unquote(url)
        if candidate.is_file():
            log.debug("%s: using %s", generated, candidate)
            return candidate.read_bytes()
        log.warning("%s: sourceMappingURL %s not found", generated, url)
        return None

    return lookup


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Remap Istanbul coverage onto original sources via source maps."
    )
    parser.add_argument(
        "--input", type=Path, default=None,
        help="Coverage JSON file (default: stdin)",
    )
    parser.add_argument(
        "--output", type=Path, default=None,
        help="Output file for the remapped coverage JSON (default: stdout)",
    )
    parser.add_argument(
        "--source-map", action="append", default=[], metavar="GENERATED=MAP",
        help="Explicit source map for a generated path (repeatable)",
    )
    parser.add_argument(
        "--base-dir", type=Path, default=None,
        help="Directory relative generated paths are resolved against "
        "(default: the input file's directory, or cwd for stdin)",
    )
    parser.add_argument(
        "--no-embedded", action="store_true",
        help="Ignore inputSourceMap objects embedded in the coverage data",
    )
    parser.add_argument(
        "--workers", type=int, default=None,
        help="Remap entries on this many threads",
    )
    parser.add_argument(
        "--stats", type=Path, default=None,
        help="Write remap diagnostics (dropped hits, splits, file counts) as JSON",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")
    return parser


def main() -> None:
    args = build_parser().parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )

    try:
        explicit = parse_source_map_pairs(args.source_map)
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)

    try:
        raw = args.input.read_bytes() if args.input is not None else sys.stdin.buffer.read()
    except OSError as exc:
        print(f"Error: failed to read input: {exc}", file=sys.stderr)
        sys.exit(1)

    if args.base_dir is not None:
        base_dir = args.base_dir
    elif args.input is not None:
        base_dir = args.input.resolve().parent
    else:
        base_dir = Path.cwd()

    try:
        result = transform(
            raw,
            build_lookup(explicit, base_dir),
            use_embedded=not args.no_embedded,
            max_workers=args.workers,
        )
    except CoverageRemapError as exc:
        print(f"Error: failed to transform coverage: {exc}", file=sys.stderr)
        sys.exit(1)
    except OSError as exc:
        print(f"Error: failed to read source map: {exc}", file=sys.stderr)
        sys.exit(1)

    if args.output is None:
        sys.stdout.write(result.document)
        sys.stdout.write("\n")
    else:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(result.document + "\n", encoding="utf-8")

    log.info(
        "Remapped %d files, passed through %d; dropped %d hits across %d ranges, "
        "%d cross-file splits",
        result.remapped_files,
        result.passthrough_files,
        result.dropped_hits,
        result.dropped_ranges,
        result.cross_file_splits,
    )
    if args.stats is not None:
        save_json(result.diagnostics(), args.stats)


if __name__ == "__main__":
    main()
