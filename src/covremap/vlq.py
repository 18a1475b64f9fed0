"""Base64 VLQ codec for source map ``mappings`` strings.

Each digit carries 5 data bits plus a continuation bit; the lowest bit of the
assembled value is the sign. Fields are returned exactly as encoded (relative
deltas); accumulation is the decoder's job.
"""
from __future__ import annotations

from collections.abc import Iterable, Sequence

from covremap.errors import SourceMapError

_BASE64_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/"
_BASE64_VALUES = {ch: idx for idx, ch in enumerate(_BASE64_ALPHABET)}

VLQ_BASE_SHIFT = 5
VLQ_BASE = 1 << VLQ_BASE_SHIFT
VLQ_BASE_MASK = VLQ_BASE - 1
VLQ_CONTINUATION_BIT = VLQ_BASE


def decode_vlq_segment(segment: str) -> list[int]:
    """Decode every VLQ value in one comma-free segment."""
    values: list[int] = []
    value = 0
    shift = 0
    pending = False
    for ch in segment:
        digit = _BASE64_VALUES.get(ch)
        if digit is None:
            raise SourceMapError(
                "InvalidEncoding", f"invalid base64 VLQ digit {ch!r} in segment {segment!r}",
            )
        value += (digit & VLQ_BASE_MASK) << shift
        if digit & VLQ_CONTINUATION_BIT:
            shift += VLQ_BASE_SHIFT
            pending = True
            continue
        values.append(-(value >> 1) if value & 1 else value >> 1)
        value = 0
        shift = 0
        pending = False
    if pending:
        raise SourceMapError(
            "InvalidEncoding", f"unterminated VLQ continuation in segment {segment!r}",
        )
    return values


def decode_mappings(mappings: str) -> list[list[tuple[int, ...]]]:
    """Split a ``mappings`` string into per-line lists of relative field tuples."""
    lines: list[list[tuple[int, ...]]] = []
    for line in mappings.split(";"):
        segments: list[tuple[int, ...]] = []
        for segment in line.split(","):
            if not segment:
                continue
            fields = decode_vlq_segment(segment)
            if len(fields) not in (1, 4, 5):
                raise SourceMapError(
                    "InvalidEncoding",
                    f"segment {segment!r} has {len(fields)} fields (expected 1, 4 or 5)",
                )
            segments.append(tuple(fields))
        lines.append(segments)
    return lines


def encode_vlq(value: int) -> str:
    """Encode one signed integer as base64 VLQ."""
    vlq = (-value << 1) | 1 if value < 0 else value << 1
    out: list[str] = []
    while True:
        digit = vlq & VLQ_BASE_MASK
        vlq >>= VLQ_BASE_SHIFT
        if vlq:
            digit |= VLQ_CONTINUATION_BIT
        out.append(_BASE64_ALPHABET[digit])
        if not vlq:
            return "".join(out)


def encode_mappings(lines: Sequence[Iterable[Sequence[int]]]) -> str:
    """Encode absolute per-line segments into a ``mappings`` string.

    Each segment is ``(generated_column,)`` or ``(generated_column,
    source_index, original_line, original_column[, name_index])`` with a
    0-based original line, as stored in the wire format.
    """
    prev_source = prev_line = prev_column = prev_name = 0
    encoded_lines: list[str] = []
    for line in lines:
        prev_generated = 0
        encoded_segments: list[str] = []
        for segment in line:
            parts = [encode_vlq(segment[0] - prev_generated)]
            prev_generated = segment[0]
            if len(segment) >= 4:
                parts.append(encode_vlq(segment[1] - prev_source))
                parts.append(encode_vlq(segment[2] - prev_line))
                parts.append(encode_vlq(segment[3] - prev_column))
                prev_source, prev_line, prev_column = segment[1], segment[2], segment[3]
            if len(segment) == 5:
                parts.append(encode_vlq(segment[4] - prev_name))
                prev_name = segment[4]
            encoded_segments.append("".join(parts))
        encoded_lines.append(",".join(encoded_segments))
    return ";".join(encoded_lines)
