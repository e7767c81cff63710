"""Intermediate representation of a parsed ProtoDef protocol.

Types never embed each other: every reference is a TypeId (a string) into
the Protocol's arena, so recursive layouts are expressed without back
references.
"""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from dataclasses_json import DataClassJsonMixin

TypeId = str


class PrimitiveKind(StrEnum):
    INT = "int"
    FLOAT = "float"
    BOOL = "bool"
    VARINT = "varint"
    VOID = "void"
    CSTRING = "cstring"


class Endian(StrEnum):
    BIG = "big"
    LITTLE = "little"


INTEGER_KINDS = frozenset([PrimitiveKind.INT, PrimitiveKind.VARINT])


@dataclass
class Primitive(DataClassJsonMixin):
    """A native type. `width` is in bytes (the maximum bit width / 8 for varints)."""

    name: str
    kind: PrimitiveKind
    width: int = 0
    signed: bool = False
    endian: Endian = Endian.BIG

    @property
    def is_integer(self) -> bool:
        return self.kind in INTEGER_KINDS


@dataclass
class Alias(DataClassJsonMixin):
    """A top-level name bound to another type."""

    target: TypeId


@dataclass
class Presence(DataClassJsonMixin):
    """Condition on a previously decoded sibling.

    The field is present when the sibling equals one of `values`, or when the
    sibling is truthy if `values` is None.
    """

    field: str
    values: list[Any] | None = None


@dataclass
class Field(DataClassJsonMixin):
    name: str
    type: TypeId
    presence: Presence | None = None


@dataclass
class Struct(DataClassJsonMixin):
    """A container: fields are encoded in declared order."""

    fields: list[Field]


@dataclass
class EnumVariant(DataClassJsonMixin):
    name: str
    value: int


@dataclass
class Enum(DataClassJsonMixin):
    underlying: TypeId
    variants: list[EnumVariant]


@dataclass
class SwitchCase(DataClassJsonMixin):
    value: int | bool | str
    type: TypeId


@dataclass
class Switch(DataClassJsonMixin):
    """A tagged union driven by the sibling field named `compare_to`."""

    compare_to: str
    cases: list[SwitchCase]
    default: TypeId | None = None


@dataclass
class BitField(DataClassJsonMixin):
    name: str
    width: int
    signed: bool = False


@dataclass
class BitFields(DataClassJsonMixin):
    fields: list[BitField]
    total_width: int


@dataclass
class FixedLength(DataClassJsonMixin):
    count: int


@dataclass
class PrefixedLength(DataClassJsonMixin):
    type: TypeId


@dataclass
class FieldLength(DataClassJsonMixin):
    """Length taken from a previously decoded sibling."""

    field: str


@dataclass
class RestLength(DataClassJsonMixin):
    """Everything up to the end of the input."""


LengthPolicy = FixedLength | PrefixedLength | FieldLength | RestLength


@dataclass
class Array(DataClassJsonMixin):
    element: TypeId
    length: LengthPolicy


@dataclass
class Buffer(DataClassJsonMixin):
    length: LengthPolicy


@dataclass
class LengthPrefixedString(DataClassJsonMixin):
    length: TypeId
    encoding: str = "utf-8"


@dataclass
class Mapping(DataClassJsonMixin):
    code: int
    name: str


@dataclass
class Mapper(DataClassJsonMixin):
    """Bidirectional table between encoded codes and symbolic names."""

    underlying: TypeId
    mappings: list[Mapping]


@dataclass
class Option(DataClassJsonMixin):
    """A bool presence flag followed by the value when set."""

    element: TypeId


@dataclass
class Placeholder(DataClassJsonMixin):
    """Stands in for a node that could not be parsed."""

    reason: str


Type = (
    Primitive
    | Alias
    | Struct
    | Enum
    | Switch
    | BitFields
    | Array
    | Buffer
    | LengthPrefixedString
    | Mapper
    | Option
    | Placeholder
)


class FrozenProtocolError(RuntimeError):
    """Raised when a resolved protocol is modified."""


@dataclass
class Protocol:
    """Arena of every type in a protocol, in insertion order."""

    types: dict[TypeId, Type] = field(default_factory=dict)
    locations: dict[TypeId, str] = field(default_factory=dict)
    broken: bool = False
    frozen: bool = False

    def define(self, type_id: TypeId, t: Type, location: str) -> None:
        if self.frozen:
            raise FrozenProtocolError(f"cannot define {type_id} in a resolved protocol")
        self.types[type_id] = t
        self.locations.setdefault(type_id, location)

    def freeze(self) -> None:
        self.frozen = True

    def __contains__(self, type_id: object) -> bool:
        return type_id in self.types

    def __getitem__(self, type_id: TypeId) -> Type:
        return self.types[type_id]

    def index(self, type_id: TypeId) -> int:
        return list(self.types).index(type_id)


def references(t: Type) -> list[tuple[TypeId, bool]]:
    """Return the TypeIds a type refers to, with an `indirect` flag.

    Indirect references go through an indirection point (an option, or an
    array that is not a fixed non-empty sequence) and may form cycles.
    """
    if isinstance(t, (Primitive, BitFields, Placeholder)):
        return []
    if isinstance(t, Alias):
        return [(t.target, False)]
    if isinstance(t, Struct):
        return [(f.type, False) for f in t.fields]
    if isinstance(t, (Enum, Mapper)):
        return [(t.underlying, False)]
    if isinstance(t, Switch):
        refs = [(case.type, False) for case in t.cases]
        if t.default is not None:
            refs.append((t.default, False))
        return refs
    if isinstance(t, Array):
        fixed = isinstance(t.length, FixedLength) and t.length.count > 0
        refs = [(t.element, not fixed)]
        if isinstance(t.length, PrefixedLength):
            refs.append((t.length.type, False))
        return refs
    if isinstance(t, Buffer):
        if isinstance(t.length, PrefixedLength):
            return [(t.length.type, False)]
        return []
    if isinstance(t, LengthPrefixedString):
        return [(t.length, False)]
    if isinstance(t, Option):
        return [(t.element, True)]
    raise TypeError(f"Unhandled type {t!r}")


def is_contextual(t: Type) -> bool:
    """Check if decoding `t` needs a sibling value from an enclosing container."""
    if isinstance(t, Switch):
        return True
    if isinstance(t, (Array, Buffer)):
        return isinstance(t.length, FieldLength)
    return False
