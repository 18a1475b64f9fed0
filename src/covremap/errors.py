"""Structured failures raised by the coverage remapping pipeline."""
from __future__ import annotations

from typing import Literal, TypeAlias

ParseErrorKind: TypeAlias = Literal["Malformed", "SchemaViolation"]
SourceMapErrorKind: TypeAlias = Literal["InvalidEncoding", "IndexOutOfRange", "Malformed"]
RemapErrorKind: TypeAlias = Literal["BadSourceIndex"]


class CoverageRemapError(ValueError):
    """Base class for failures that abort a whole transform.

    ``path`` names the generated file the failure belongs to (when known),
    ``field`` the dotted location inside the document.
    """

    kind: str

    def __init__(
        self,
        kind: str,
        message: str,
        *,
        path: str | None = None,
        field: str | None = None,
    ) -> None:
        self.kind = kind
        self.path = path
        self.field = field
        where = ""
        if path is not None:
            where += f" [{path}]"
        if field:
            where += f" at {field}"
        super().__init__(f"{kind}{where}: {message}")
        self.message = message


class ParseError(CoverageRemapError):
    """Raised when a coverage document cannot be decoded or validated."""

    kind: ParseErrorKind

    def __init__(
        self,
        kind: ParseErrorKind,
        message: str,
        *,
        path: str | None = None,
        field: str | None = None,
    ) -> None:
        super().__init__(kind, message, path=path, field=field)


class SourceMapError(CoverageRemapError):
    """Raised when a source map document cannot be decoded."""

    kind: SourceMapErrorKind

    def __init__(
        self,
        kind: SourceMapErrorKind,
        message: str,
        *,
        path: str | None = None,
        field: str | None = None,
    ) -> None:
        super().__init__(kind, message, path=path, field=field)


class RemapError(CoverageRemapError):
    """Raised when a decoded source map cannot be applied to an entry."""

    kind: RemapErrorKind

    def __init__(
        self,
        kind: RemapErrorKind,
        message: str,
        *,
        path: str | None = None,
        field: str | None = None,
    ) -> None:
        super().__init__(kind, message, path=path, field=field)
