"""Compile-time diagnostics shared by every compiler phase."""

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from enum import StrEnum

from dataclasses_json import DataClassJsonMixin

logger = logging.getLogger(__name__)


class Severity(StrEnum):
    ERROR = "error"
    WARNING = "warning"


class DiagnosticKind(StrEnum):
    """Classification of compile-time issues."""

    UNKNOWN_TYPE_REFERENCE = "UnknownTypeReference"
    DUPLICATE_FIELD_NAME = "DuplicateFieldName"
    DUPLICATE_SWITCH_CASE = "DuplicateSwitchCase"
    INVALID_BITFIELD_WIDTH = "InvalidBitfieldWidth"
    CYCLIC_TYPE_WITHOUT_INDIRECTION = "CyclicTypeWithoutIndirection"
    MALFORMED_SPEC_VALUE = "MalformedSpecValue"
    UNKNOWN_FIELD_REFERENCE = "UnknownFieldReference"
    DUPLICATE_MAPPING = "DuplicateMapping"
    RESOLUTION_LIMIT_EXCEEDED = "ResolutionLimitExceeded"
    UNRESOLVED_DEPENDENCY = "UnresolvedDependency"
    IMPLICIT_PADDING = "ImplicitPadding"


@dataclass(frozen=True)
class Diagnostic(DataClassJsonMixin):
    """A single compile-time issue.

    `location` is a dotted path into the protocol document, for example
    `types.packet.fields[1].type`.
    """

    kind: DiagnosticKind
    severity: Severity
    message: str
    location: str

    @property
    def is_error(self) -> bool:
        return self.severity == Severity.ERROR

    def __str__(self) -> str:
        return f"{self.severity}[{self.kind}] at {self.location}: {self.message}"


class Diagnostics:
    """Append-only, ordered log of diagnostics.

    Each phase appends to the same log. Entries are never removed or
    reordered, so the log read at the end of a compilation reflects every
    phase in the order issues were found.
    """

    def __init__(self) -> None:
        self._items: list[Diagnostic] = []

    def append(self, diagnostic: Diagnostic) -> Diagnostic:
        logger.debug("recorded %s", diagnostic)
        self._items.append(diagnostic)
        return diagnostic

    def error(self, kind: DiagnosticKind, message: str, location: str) -> Diagnostic:
        return self.append(Diagnostic(kind, Severity.ERROR, message, location))

    def warning(self, kind: DiagnosticKind, message: str, location: str) -> Diagnostic:
        return self.append(Diagnostic(kind, Severity.WARNING, message, location))

    def extend(self, diagnostics: "Diagnostics") -> None:
        for diagnostic in diagnostics:
            self.append(diagnostic)

    def __iter__(self) -> Iterator[Diagnostic]:
        return iter(tuple(self._items))

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    @property
    def has_errors(self) -> bool:
        return any(d.is_error for d in self._items)

    def errors(self) -> list[Diagnostic]:
        return [d for d in self._items if d.is_error]

    def warnings(self) -> list[Diagnostic]:
        return [d for d in self._items if not d.is_error]

    def of_kind(self, kind: DiagnosticKind) -> list[Diagnostic]:
        return [d for d in self._items if d.kind == kind]

    def to_list(self) -> list[dict]:
        return [d.to_dict() for d in self._items]

    def __str__(self) -> str:
        if not self._items:
            return "no issues"
        if len(self._items) == 1:
            return str(self._items[0])
        lines = [f"{len(self._items)} issues found:"]
        lines.extend(f"  {d}" for d in self._items)
        return "\n".join(lines)
