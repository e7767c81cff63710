"""Target-agnostic output of the code generator.

A CompilationUnit lists declarations in dependency order. Each declaration
pairs a data shape with decode/encode procedures made of Ops. Ops name local
variables and declarations by string; a renderer maps them onto a concrete
language.
"""

from dataclasses import dataclass, field
from enum import StrEnum

from dataclasses_json import DataClassJsonMixin

from .types import TypeId

Operand = int | str  # integer literal, or the name of a local


class OpCode(StrEnum):
    READ = "read"  # target = codec.read()
    WRITE = "write"  # codec.write(source)
    READ_STRING = "read_string"  # target = length-prefixed string (codec is the length)
    WRITE_STRING = "write_string"
    READ_BYTES = "read_bytes"  # target = `count` bytes, or a buffer prefixed by codec
    WRITE_BYTES = "write_bytes"  # source bytes, prefixed by codec if given
    READ_REST = "read_rest"  # target = all remaining input
    READ_BITFIELDS = "read_bitfields"  # fields = unpacked bitfield values of `type`
    WRITE_BITFIELDS = "write_bitfields"  # pack fields with the layout of `type`
    CALL_DECODE = "call_decode"  # target = type.decode(**args)
    CALL_ENCODE = "call_encode"  # type.encode(source, **args)
    REQUIRE = "require"  # fail unless `count` items of `size` bytes remain
    REPEAT = "repeat"  # target = [body yielding item] * count
    REPEAT_UNTIL_END = "repeat_until_end"  # target = [body yielding item] until input ends
    FOR_EACH = "for_each"  # for item in source: body
    CHECK_LENGTH = "check_length"  # fail unless len(source) == count
    WRITE_LENGTH = "write_length"  # codec.write(len(source))
    MATCH = "match"  # first case equal to source, else orelse, else fail
    WHEN = "when"  # body if source in values (or truthy), else orelse
    CONSTRUCT = "construct"  # target = type(*fields)
    BIND = "bind"  # target = source.attr
    ENUM_FROM = "enum_from"  # target = member of `type` with code source
    LOOKUP = "lookup"  # target = name of code source in `type`
    LOOKUP_CODE = "lookup_code"  # target = code of name source in `type`
    CONST = "const"  # target = value
    WRITE_PRESENT = "write_present"  # target = source is set; codec.write(target)
    RETURN = "return"


@dataclass
class CodecRef(DataClassJsonMixin):
    """A primitive encoding used by generated code. `width` is in bytes."""

    name: str
    kind: str
    width: int
    signed: bool
    endian: str


@dataclass
class OpCase(DataClassJsonMixin):
    value: int | bool | str
    body: list["Op"]


@dataclass
class Op(DataClassJsonMixin):
    code: OpCode
    target: str | None = None
    source: str | None = None
    codec: str | None = None
    type: str | None = None
    attr: str | None = None
    count: Operand | None = None
    size: int | None = None
    encoding: str | None = None
    value: int | bool | str | None = None
    values: list[int | bool | str] | None = None
    fields: list[str] = field(default_factory=list)
    args: dict[str, str] = field(default_factory=dict)
    item: str | None = None
    body: list["Op"] = field(default_factory=list)
    orelse: list["Op"] | None = None
    cases: list[OpCase] = field(default_factory=list)


@dataclass
class Procedure(DataClassJsonMixin):
    """An encode or decode routine.

    Decode procedures take a reader and return the value; encode procedures
    take a writer and the local `value`. `params` are extra named inputs
    supplied by the enclosing container. `guarded` procedures count one level
    of nesting against the reader's depth limit.
    """

    params: list[str] = field(default_factory=list)
    body: list[Op] = field(default_factory=list)
    guarded: bool = False


class DeclKind(StrEnum):
    STRUCT = "struct"
    BITFIELDS = "bitfields"
    ENUM = "enum"
    MAPPER = "mapper"
    SWITCH = "switch"
    ARRAY = "array"
    BUFFER = "buffer"
    STRING = "string"
    OPTION = "option"


class ValueKind(StrEnum):
    INT = "int"
    FLOAT = "float"
    BOOL = "bool"
    STR = "str"
    BYTES = "bytes"
    NONE = "none"
    ANY = "any"
    LIST = "list"
    OPTIONAL = "optional"
    NAMED = "named"


@dataclass
class ValueType(DataClassJsonMixin):
    """The shape of a decoded value: `named` refers to a declaration."""

    kind: ValueKind
    name: str | None = None
    item: "ValueType | None" = None


@dataclass
class DeclField(DataClassJsonMixin):
    name: str
    type: ValueType
    optional: bool = False
    width: int | None = None
    signed: bool = False


@dataclass
class DeclVariant(DataClassJsonMixin):
    name: str
    value: int


@dataclass
class Declaration(DataClassJsonMixin):
    type_id: TypeId
    name: str
    kind: DeclKind
    value_type: ValueType
    fields: list[DeclField] = field(default_factory=list)
    variants: list[DeclVariant] = field(default_factory=list)
    params: list[str] = field(default_factory=list)
    decode: Procedure = field(default_factory=Procedure)
    encode: Procedure = field(default_factory=Procedure)
    recursive: bool = False
    bit_order: str | None = None
    total_width: int | None = None


@dataclass
class CompilationUnit(DataClassJsonMixin):
    """Lowered protocol.

    declarations: dependencies first, in protocol order within a group.
    groups: declaration names per lowering group.
    forward_declarations: names that take part in a recursive group.
    skipped: TypeIds that were not lowered because they are unresolved.
    codecs: every primitive encoding the procedures refer to.
    """

    declarations: list[Declaration] = field(default_factory=list)
    groups: list[list[str]] = field(default_factory=list)
    forward_declarations: list[str] = field(default_factory=list)
    skipped: list[TypeId] = field(default_factory=list)
    codecs: list[CodecRef] = field(default_factory=list)

    def declaration(self, name: str) -> Declaration:
        for decl in self.declarations:
            if decl.name == name:
                return decl
        raise KeyError(name)

    def by_type_id(self, type_id: TypeId) -> Declaration:
        for decl in self.declarations:
            if decl.type_id == type_id:
                return decl
        raise KeyError(type_id)
