"""Lowering of a resolved protocol into a CompilationUnit.

Every resolved type other than a primitive or an alias becomes one
Declaration. Aliases are transparent: references through them lower to the
aliased declaration or primitive. Primitives are read and written inline with
a shared codec.
"""

import logging

from .config import CompilerOptions
from .diagnostics import DiagnosticKind, Diagnostics
from .lowered import (
    CodecRef,
    CompilationUnit,
    Declaration,
    DeclField,
    DeclKind,
    DeclVariant,
    Op,
    OpCase,
    OpCode,
    Procedure,
    ValueKind,
    ValueType,
)
from .naming import to_camel_case, to_identifier, unique
from .resolver import Resolution
from .sizes import SizeCalculator
from .types import (
    Alias,
    Array,
    BitFields,
    Buffer,
    Enum,
    FieldLength,
    FixedLength,
    LengthPolicy,
    LengthPrefixedString,
    Mapper,
    Option,
    PrefixedLength,
    Primitive,
    PrimitiveKind,
    RestLength,
    Struct,
    Switch,
    Type,
    TypeId,
)

logger = logging.getLogger(__name__)

PRIMITIVE_VALUES = {
    PrimitiveKind.INT: ValueKind.INT,
    PrimitiveKind.VARINT: ValueKind.INT,
    PrimitiveKind.FLOAT: ValueKind.FLOAT,
    PrimitiveKind.BOOL: ValueKind.BOOL,
    PrimitiveKind.CSTRING: ValueKind.STR,
    PrimitiveKind.VOID: ValueKind.NONE,
}

PRESENCE_FLAG = Primitive("bool", PrimitiveKind.BOOL, 1)


class CodeGenerator:
    """Lower one resolution. Use generate() rather than this class directly."""

    def __init__(self, resolution: Resolution, diagnostics: Diagnostics, options: CompilerOptions) -> None:
        self.resolution = resolution
        self.protocol = resolution.protocol
        self.diagnostics = diagnostics
        self.options = options
        self.sizes = SizeCalculator(resolution)
        self._names: dict[TypeId, str] = {}
        self._codecs: dict[tuple, CodecRef] = {}
        self._value_types: dict[TypeId, ValueType] = {}

    def generate(self) -> CompilationUnit:
        taken: set[str] = set()
        for group in self.resolution.order:
            for type_id in group:
                if not isinstance(self.protocol[type_id], (Primitive, Alias)):
                    name = unique(to_camel_case(type_id), taken)
                    taken.add(name)
                    self._names[type_id] = name

        recursive = set(self.resolution.recursive)
        unit = CompilationUnit(skipped=list(self.resolution.unresolved))
        for group in self.resolution.order:
            names: list[str] = []
            for type_id in group:
                if type_id not in self._names:
                    continue
                decl = self._lower(type_id)
                decl.recursive = type_id in recursive
                unit.declarations.append(decl)
                names.append(decl.name)
                if decl.recursive:
                    unit.forward_declarations.append(decl.name)
            if names:
                unit.groups.append(names)

        unit.codecs = list(self._codecs.values())
        logger.debug(
            "lowered %d declarations, skipped %d types",
            len(unit.declarations),
            len(unit.skipped),
        )
        return unit

    # References

    def _name(self, type_id: TypeId) -> str:
        return self._names[self.resolution.target(type_id)]

    def _primitive(self, type_id: TypeId) -> Primitive | None:
        t = self.resolution.resolve(type_id)
        return t if isinstance(t, Primitive) else None

    def _codec(self, p: Primitive) -> str:
        """Register the encoding of `p` and return the codec's name."""
        key = (p.kind, p.width, p.signed, p.endian)
        if key not in self._codecs:
            taken = {c.name for c in self._codecs.values()}
            name = unique(to_identifier(p.name).upper(), taken)
            self._codecs[key] = CodecRef(name, str(p.kind), p.width, p.signed, str(p.endian))
        return self._codecs[key].name

    def _primitive_codec(self, type_id: TypeId) -> str:
        p = self._primitive(type_id)
        if p is None:
            raise ValueError(f"{type_id} is not a primitive")
        return self._codec(p)

    def _value_type(self, type_id: TypeId) -> ValueType:
        target = self.resolution.target(type_id)
        if target not in self._value_types:
            # Arrays and options of themselves have no finite shape
            self._value_types[target] = ValueType(ValueKind.ANY)
            self._value_types[target] = self._calc_value_type(target)
        return self._value_types[target]

    def _calc_value_type(self, type_id: TypeId) -> ValueType:
        t = self.protocol[type_id]
        if isinstance(t, Primitive):
            return ValueType(PRIMITIVE_VALUES[t.kind])
        if isinstance(t, (Struct, BitFields, Enum)):
            return ValueType(ValueKind.NAMED, self._names[type_id])
        if isinstance(t, (Mapper, LengthPrefixedString)):
            return ValueType(ValueKind.STR)
        if isinstance(t, Switch):
            return ValueType(ValueKind.ANY)
        if isinstance(t, Buffer):
            return ValueType(ValueKind.BYTES)
        if isinstance(t, Array):
            return ValueType(ValueKind.LIST, item=self._value_type(t.element))
        if isinstance(t, Option):
            return ValueType(ValueKind.OPTIONAL, item=self._value_type(t.element))
        raise ValueError(f"Cannot describe the value of {type_id}")

    def _decode_into(self, type_id: TypeId, target: str, args: dict[str, str] | None = None) -> list[Op]:
        p = self._primitive(type_id)
        if p is None:
            return [Op(OpCode.CALL_DECODE, target=target, type=self._name(type_id), args=args or {})]
        if p.kind == PrimitiveKind.VOID:
            return [Op(OpCode.CONST, target=target, value=None)]
        return [Op(OpCode.READ, target=target, codec=self._codec(p))]

    def _encode_from(self, type_id: TypeId, source: str, args: dict[str, str] | None = None) -> list[Op]:
        p = self._primitive(type_id)
        if p is None:
            return [Op(OpCode.CALL_ENCODE, source=source, type=self._name(type_id), args=args or {})]
        if p.kind == PrimitiveKind.VOID:
            return []
        return [Op(OpCode.WRITE, source=source, codec=self._codec(p))]

    # Declarations

    def _lower(self, type_id: TypeId) -> Declaration:
        t = self.protocol[type_id]
        decl = Declaration(type_id, self._names[type_id], DeclKind.STRUCT, self._value_type(type_id))
        if isinstance(t, Struct):
            self._struct(decl, t)
        elif isinstance(t, BitFields):
            self._bitfields(decl, t)
        elif isinstance(t, Enum):
            self._enum(decl, t)
        elif isinstance(t, Mapper):
            self._mapper(decl, t)
        elif isinstance(t, Switch):
            self._switch(decl, t)
        elif isinstance(t, Array):
            self._array(decl, t)
        elif isinstance(t, Buffer):
            self._buffer(decl, t)
        elif isinstance(t, LengthPrefixedString):
            self._string(decl, t)
        elif isinstance(t, Option):
            self._option(decl, t)
        else:
            raise TypeError(f"Unhandled type {t!r}")
        return decl

    def _context_args(self, t: Type, siblings: dict[str, str]) -> dict[str, str]:
        """Arguments a contextual field needs from earlier siblings."""
        if isinstance(t, Switch):
            return {"discriminant": siblings[t.compare_to]}
        if isinstance(t, (Array, Buffer)) and isinstance(t.length, FieldLength):
            return {"count": siblings[t.length.field]}
        return {}

    def _check_cases(self, owner: Declaration, field_name: str, switch: Switch, sibling: TypeId) -> None:
        """Warn about switch cases a mapper discriminant can never produce."""
        mapper = self.resolution.resolve(sibling)
        if not isinstance(mapper, Mapper):
            return
        names = {m.name for m in mapper.mappings}
        for case in switch.cases:
            if case.value not in names:
                self.diagnostics.warning(
                    DiagnosticKind.MALFORMED_SPEC_VALUE,
                    f"case {case.value!r} of field '{field_name}' in {owner.type_id} never matches: "
                    f"'{switch.compare_to}' decodes to one of {sorted(names)}",
                    self.protocol.locations.get(owner.type_id, f"types.{owner.type_id}"),
                )

    def _struct(self, decl: Declaration, t: Struct) -> None:
        decl.kind = DeclKind.STRUCT
        siblings: dict[str, str] = {}
        sibling_types: dict[str, TypeId] = {}
        idents: set[str] = set()
        decode: list[Op] = []
        encode: list[Op] = []

        for f in t.fields:
            ident = unique(to_identifier(f.name), idents)
            idents.add(ident)
            local = f"f_{ident}"
            field_type = self.resolution.resolve(f.type)

            if isinstance(field_type, Switch):
                self._check_cases(decl, f.name, field_type, sibling_types[field_type.compare_to])

            args = self._context_args(field_type, siblings)
            read = self._decode_into(f.type, local, args)
            write = self._encode_from(f.type, local, args)
            if f.presence is not None:
                condition = siblings[f.presence.field]
                read = [
                    Op(
                        OpCode.WHEN,
                        source=condition,
                        values=f.presence.values,
                        body=read,
                        orelse=[Op(OpCode.CONST, target=local, value=None)],
                    )
                ]
                write = [Op(OpCode.WHEN, source=condition, values=f.presence.values, body=write)]

            decl.fields.append(DeclField(ident, self._value_type(f.type), optional=f.presence is not None))
            decode.extend(read)
            encode.append(Op(OpCode.BIND, target=local, source="value", attr=ident))
            encode.extend(write)
            siblings[f.name] = local
            sibling_types[f.name] = f.type

        decode.append(Op(OpCode.CONSTRUCT, target="value", type=decl.name, fields=list(siblings.values())))
        decode.append(Op(OpCode.RETURN, source="value"))
        decl.decode = Procedure(body=decode, guarded=True)
        decl.encode = Procedure(body=encode)

    def _bitfields(self, decl: Declaration, t: BitFields) -> None:
        decl.kind = DeclKind.BITFIELDS
        decl.bit_order = str(self.options.bit_order)
        decl.total_width = t.total_width
        idents: set[str] = set()
        locals_: list[str] = []
        binds: list[Op] = []
        for bit in t.fields:
            ident = unique(to_identifier(bit.name), idents)
            idents.add(ident)
            value = ValueKind.BOOL if bit.width == 1 and not bit.signed else ValueKind.INT
            decl.fields.append(DeclField(ident, ValueType(value), width=bit.width, signed=bit.signed))
            locals_.append(f"f_{ident}")
            binds.append(Op(OpCode.BIND, target=f"f_{ident}", source="value", attr=ident))

        decl.decode = Procedure(
            body=[
                Op(OpCode.READ_BITFIELDS, type=decl.name, fields=list(locals_)),
                Op(OpCode.CONSTRUCT, target="value", type=decl.name, fields=list(locals_)),
                Op(OpCode.RETURN, source="value"),
            ]
        )
        decl.encode = Procedure(body=binds + [Op(OpCode.WRITE_BITFIELDS, type=decl.name, fields=list(locals_))])

    def _enum(self, decl: Declaration, t: Enum) -> None:
        decl.kind = DeclKind.ENUM
        idents: set[str] = set()
        for variant in t.variants:
            ident = unique(to_identifier(variant.name), idents)
            idents.add(ident)
            decl.variants.append(DeclVariant(ident, variant.value))

        codec = self._primitive_codec(t.underlying)
        decl.decode = Procedure(
            body=[
                Op(OpCode.READ, target="raw", codec=codec),
                Op(OpCode.ENUM_FROM, target="value", source="raw", type=decl.name),
                Op(OpCode.RETURN, source="value"),
            ]
        )
        decl.encode = Procedure(body=[Op(OpCode.WRITE, source="value", codec=codec)])

    def _mapper(self, decl: Declaration, t: Mapper) -> None:
        decl.kind = DeclKind.MAPPER
        decl.variants = [DeclVariant(m.name, m.code) for m in t.mappings]
        codec = self._primitive_codec(t.underlying)
        decl.decode = Procedure(
            body=[
                Op(OpCode.READ, target="raw", codec=codec),
                Op(OpCode.LOOKUP, target="value", source="raw", type=decl.name),
                Op(OpCode.RETURN, source="value"),
            ]
        )
        decl.encode = Procedure(
            body=[
                Op(OpCode.LOOKUP_CODE, target="raw", source="value", type=decl.name),
                Op(OpCode.WRITE, source="raw", codec=codec),
            ]
        )

    def _switch(self, decl: Declaration, t: Switch) -> None:
        decl.kind = DeclKind.SWITCH
        decl.params = ["discriminant"]

        decode_default = None
        encode_default = None
        if t.default is not None:
            decode_default = self._decode_into(t.default, "value")
            encode_default = self._encode_from(t.default, "value")

        decl.decode = Procedure(
            params=["discriminant"],
            body=[
                Op(
                    OpCode.MATCH,
                    source="discriminant",
                    type=decl.name,
                    cases=[OpCase(c.value, self._decode_into(c.type, "value")) for c in t.cases],
                    orelse=decode_default,
                ),
                Op(OpCode.RETURN, source="value"),
            ],
            guarded=True,
        )
        decl.encode = Procedure(
            params=["discriminant"],
            body=[
                Op(
                    OpCode.MATCH,
                    source="discriminant",
                    type=decl.name,
                    cases=[OpCase(c.value, self._encode_from(c.type, "value")) for c in t.cases],
                    orelse=encode_default,
                )
            ],
        )

    def _count_params(self, length: LengthPolicy) -> list[str]:
        return ["count"] if isinstance(length, FieldLength) else []

    def _array(self, decl: Declaration, t: Array) -> None:
        decl.kind = DeclKind.ARRAY
        decl.params = self._count_params(t.length)
        item_size = self.sizes.min_size(t.element)
        read_item = self._decode_into(t.element, "item")

        decode: list[Op] = []
        encode: list[Op] = []
        if isinstance(t.length, RestLength):
            decode.append(
                Op(OpCode.REPEAT_UNTIL_END, target="value", item="item", size=item_size, body=read_item)
            )
        else:
            count: int | str = "count"
            if isinstance(t.length, FixedLength):
                count = t.length.count
                encode.append(Op(OpCode.CHECK_LENGTH, source="value", count=count))
            elif isinstance(t.length, PrefixedLength):
                codec = self._primitive_codec(t.length.type)
                decode.append(Op(OpCode.READ, target="count", codec=codec))
                encode.append(Op(OpCode.WRITE_LENGTH, source="value", codec=codec))
            else:
                encode.append(Op(OpCode.CHECK_LENGTH, source="value", count="count"))
            decode.append(Op(OpCode.REQUIRE, count=count, size=item_size))
            decode.append(Op(OpCode.REPEAT, target="value", count=count, item="item", body=read_item))
        decode.append(Op(OpCode.RETURN, source="value"))
        encode.append(
            Op(OpCode.FOR_EACH, source="value", item="item", body=self._encode_from(t.element, "item"))
        )

        decl.decode = Procedure(params=list(decl.params), body=decode, guarded=True)
        decl.encode = Procedure(params=list(decl.params), body=encode)

    def _buffer(self, decl: Declaration, t: Buffer) -> None:
        decl.kind = DeclKind.BUFFER
        decl.params = self._count_params(t.length)
        length = t.length

        if isinstance(length, RestLength):
            decode = [Op(OpCode.READ_REST, target="value")]
            encode = [Op(OpCode.WRITE_BYTES, source="value")]
        elif isinstance(length, PrefixedLength):
            codec = self._primitive_codec(length.type)
            decode = [Op(OpCode.READ_BYTES, target="value", codec=codec)]
            encode = [Op(OpCode.WRITE_BYTES, source="value", codec=codec)]
        else:
            count: int | str = length.count if isinstance(length, FixedLength) else "count"
            decode = [Op(OpCode.READ_BYTES, target="value", count=count)]
            encode = [
                Op(OpCode.CHECK_LENGTH, source="value", count=count),
                Op(OpCode.WRITE_BYTES, source="value"),
            ]
        decode.append(Op(OpCode.RETURN, source="value"))

        decl.decode = Procedure(params=list(decl.params), body=decode)
        decl.encode = Procedure(params=list(decl.params), body=encode)

    def _string(self, decl: Declaration, t: LengthPrefixedString) -> None:
        decl.kind = DeclKind.STRING
        codec = self._primitive_codec(t.length)
        decl.decode = Procedure(
            body=[
                Op(OpCode.READ_STRING, target="value", codec=codec, encoding=t.encoding),
                Op(OpCode.RETURN, source="value"),
            ]
        )
        decl.encode = Procedure(body=[Op(OpCode.WRITE_STRING, source="value", codec=codec, encoding=t.encoding)])

    def _option(self, decl: Declaration, t: Option) -> None:
        decl.kind = DeclKind.OPTION
        flag = self._codec(PRESENCE_FLAG)
        decl.decode = Procedure(
            body=[
                Op(OpCode.READ, target="present", codec=flag),
                Op(
                    OpCode.WHEN,
                    source="present",
                    body=self._decode_into(t.element, "value"),
                    orelse=[Op(OpCode.CONST, target="value", value=None)],
                ),
                Op(OpCode.RETURN, source="value"),
            ],
            guarded=True,
        )
        decl.encode = Procedure(
            body=[
                Op(OpCode.WRITE_PRESENT, target="present", source="value", codec=flag),
                Op(OpCode.WHEN, source="present", body=self._encode_from(t.element, "value")),
            ]
        )


def generate(
    resolution: Resolution,
    diagnostics: Diagnostics,
    options: CompilerOptions | None = None,
) -> CompilationUnit:
    """Lower every resolved type of `resolution` into a CompilationUnit."""
    if not resolution.usable:
        raise ValueError("cannot generate code for an unusable resolution")
    return CodeGenerator(resolution, diagnostics, options or CompilerOptions()).generate()
