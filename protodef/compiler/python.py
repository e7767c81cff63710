"""Python code generator for protodef compilation units."""

import keyword
from importlib import resources

from jinja2 import Environment, PackageLoader

from .lowered import (
    CodecRef,
    CompilationUnit,
    Declaration,
    DeclField,
    Op,
    OpCode,
    Procedure,
    ValueKind,
    ValueType,
)

RUNTIME_FILES = [
    "__init__.py",
    "cursor.py",
    "errors.py",
    "primitives.py",
    "serialization.py",
]

env = Environment(
    loader=PackageLoader("protodef.compiler", "templates"),
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=True,
    line_comment_prefix="%%",
    line_statement_prefix="%",
)
env.filters["pyrepr"] = repr

template = env.get_template("python.py.j2")

# Attributes inherited from the runtime base classes
RESERVED_ATTRIBUTES = frozenset(
    [
        "pack",
        "unpack",
        "from_bytes",
        "read_from",
        "write_to",
        "encode_value",
        "decode_value",
        "_bits",
        "_names",
        "_codes",
    ]
)

# Names an IntEnum member cannot take
RESERVED_MEMBERS = frozenset(["name", "value", "mro", "from_code", "pack", "unpack", "read_from", "write_to"])

PARAM_ANNOTATIONS = {
    "discriminant": "_typing.Any",
    "count": "int",
}

SIMPLE_ANNOTATIONS = {
    ValueKind.INT: "int",
    ValueKind.FLOAT: "float",
    ValueKind.BOOL: "bool",
    ValueKind.STR: "str",
    ValueKind.BYTES: "bytes",
    ValueKind.NONE: "None",
    ValueKind.ANY: "_typing.Any",
}

INDENT = "    "


def _class_name(name: str) -> str:
    return name + "_" if keyword.iskeyword(name) else name


def _attr(name: str) -> str:
    """Attribute name of a generated dataclass field."""
    if keyword.iskeyword(name) or name in RESERVED_ATTRIBUTES:
        return name + "_"
    return name


def _member_name(name: str) -> str:
    """Member name of a generated enum."""
    if name.startswith("_"):
        name = "V" + name
    if keyword.iskeyword(name) or name in RESERVED_MEMBERS:
        return name + "_"
    return name


def _codec_name(name: str) -> str:
    return "_" + name


def _annotation(value_type: ValueType) -> str:
    """Map a value shape to a Python type annotation."""
    if value_type.kind in SIMPLE_ANNOTATIONS:
        return SIMPLE_ANNOTATIONS[value_type.kind]
    if value_type.kind == ValueKind.NAMED:
        return _class_name(value_type.name)
    item = _annotation(value_type.item)
    if value_type.kind == ValueKind.LIST:
        return f"list[{item}]"
    return f"{item} | None"


def _field_annotation(field: DeclField) -> str:
    annotation = _annotation(field.type)
    if field.optional and field.type.kind != ValueKind.OPTIONAL:
        return f"{annotation} | None"
    return annotation


def _codec_constant(codec: CodecRef) -> str:
    return (
        f"{_codec_name(codec.name)} = _core.PrimitiveCodec("
        f"{codec.kind!r}, {codec.width}, {codec.signed}, {codec.endian!r})"
    )


def _bitfield_spec(decl: Declaration) -> str:
    fields = "".join(f"({f.name!r}, {f.width}, {f.signed}), " for f in decl.fields)
    return f"_core.BitFieldSpec(({fields.rstrip()}), {decl.total_width}, {decl.bit_order!r})"


def _mapper_names(decl: Declaration) -> str:
    return "{" + ", ".join(f"{v.value}: {v.name!r}" for v in decl.variants) + "}"


def _mapper_codes(decl: Declaration) -> str:
    return "{" + ", ".join(f"{v.name!r}: {v.value}" for v in decl.variants) + "}"


def _signature(procedure: Procedure, first: str) -> str:
    params = [f"{p}: {PARAM_ANNOTATIONS.get(p, '_typing.Any')}" for p in procedure.params]
    return ", ".join(["cls", first] + params)


def _call_args(op: Op) -> str:
    return "".join(f", {name}={local}" for name, local in op.args.items())


def _operand(value: int | str | None) -> str:
    return str(value)


class ProcedureWriter:
    """Render the Ops of one procedure as indented Python statements."""

    def __init__(self, decoding: bool) -> None:
        self.decoding = decoding
        self.lines: list[str] = []

    def emit(self, ops: list[Op], depth: int) -> None:
        if not ops:
            self.line(depth, "pass")
        for op in ops:
            self.op(op, depth)

    def line(self, depth: int, text: str) -> None:
        self.lines.append(INDENT * depth + text)

    def _no_case(self, op: Op) -> str:
        name = _class_name(op.type)
        if self.decoding:
            return f"raise _core.InvalidDiscriminant({op.source}, {name!r})"
        return f'raise _core.SerializeError(f"no case of {name} matches {{{op.source}!r}}")'

    def _condition(self, op: Op) -> str:
        if op.values is None:
            return op.source
        if len(op.values) == 1:
            return f"{op.source} == {op.values[0]!r}"
        return f"{op.source} in ({''.join(f'{v!r}, ' for v in op.values).rstrip()})"

    def op(self, op: Op, depth: int) -> None:
        line = self.line
        code = op.code
        if code == OpCode.READ:
            line(depth, f"{op.target} = {_codec_name(op.codec)}.read(reader)")
        elif code == OpCode.WRITE:
            line(depth, f"{_codec_name(op.codec)}.write(writer, {op.source})")
        elif code == OpCode.READ_STRING:
            line(
                depth,
                f"{op.target} = _core.read_length_prefixed_string("
                f"reader, {_codec_name(op.codec)}, {op.encoding!r})",
            )
        elif code == OpCode.WRITE_STRING:
            line(
                depth,
                f"_core.write_length_prefixed_string("
                f"writer, {op.source}, {_codec_name(op.codec)}, {op.encoding!r})",
            )
        elif code == OpCode.READ_BYTES:
            if op.codec is not None:
                line(depth, f"{op.target} = _core.read_buffer(reader, {_codec_name(op.codec)})")
            else:
                line(depth, f"{op.target} = reader.read_bytes({_operand(op.count)})")
        elif code == OpCode.WRITE_BYTES:
            if op.codec is not None:
                line(depth, f"_core.write_buffer(writer, {op.source}, {_codec_name(op.codec)})")
            else:
                line(depth, f"writer.write({op.source})")
        elif code == OpCode.READ_REST:
            line(depth, f"{op.target} = reader.read_rest()")
        elif code == OpCode.READ_BITFIELDS:
            call = f"_core.read_bitfields(reader, {_class_name(op.type)}._bits)"
            if op.fields:
                targets = "".join(f"{f}, " for f in op.fields).rstrip(" ")
                call = f"{targets} = {call}"
            line(depth, call)
        elif code == OpCode.WRITE_BITFIELDS:
            values = ", ".join(op.fields)
            line(depth, f"_core.write_bitfields(writer, {_class_name(op.type)}._bits, [{values}])")
        elif code == OpCode.CALL_DECODE:
            line(depth, f"{op.target} = {_class_name(op.type)}.read_from(reader{_call_args(op)})")
        elif code == OpCode.CALL_ENCODE:
            line(depth, f"{_class_name(op.type)}.write_to(writer, {op.source}{_call_args(op)})")
        elif code == OpCode.REQUIRE:
            line(depth, f"reader.require_items({_operand(op.count)}, {op.size})")
        elif code == OpCode.REPEAT:
            line(depth, f"{op.target} = []")
            line(depth, f"for _ in range({_operand(op.count)}):")
            self.emit(op.body, depth + 1)
            line(depth + 1, f"{op.target}.append({op.item})")
        elif code == OpCode.REPEAT_UNTIL_END:
            line(depth, f"{op.target} = []")
            line(depth, "while reader.remaining:")
            if op.size == 0:
                line(depth + 1, "start = reader.offset")
            self.emit(op.body, depth + 1)
            line(depth + 1, f"{op.target}.append({op.item})")
            if op.size == 0:
                line(depth + 1, "if reader.offset == start:")
                line(depth + 2, 'raise _core.Custom("array element consumed no input")')
        elif code == OpCode.FOR_EACH:
            line(depth, f"for {op.item} in {op.source}:")
            self.emit(op.body, depth + 1)
        elif code == OpCode.CHECK_LENGTH:
            count = _operand(op.count)
            line(depth, f"if len({op.source}) != {count}:")
            line(
                depth + 1,
                f'raise _core.SerializeError(f"expected {{{count}}} items, got {{len({op.source})}}")',
            )
        elif code == OpCode.WRITE_LENGTH:
            line(depth, f"_core.write_length(writer, len({op.source}), {_codec_name(op.codec)})")
        elif code == OpCode.MATCH:
            self._match(op, depth)
        elif code == OpCode.WHEN:
            line(depth, f"if {self._condition(op)}:")
            self.emit(op.body, depth + 1)
            if op.orelse is not None:
                line(depth, "else:")
                self.emit(op.orelse, depth + 1)
        elif code == OpCode.CONSTRUCT:
            line(depth, f"{op.target} = {_class_name(op.type)}({', '.join(op.fields)})")
        elif code == OpCode.BIND:
            line(depth, f"{op.target} = {op.source}.{_attr(op.attr)}")
        elif code == OpCode.ENUM_FROM:
            line(depth, f"{op.target} = {_class_name(op.type)}.from_code({op.source})")
        elif code == OpCode.LOOKUP:
            name = _class_name(op.type)
            line(depth, f"if {op.source} not in {name}._names:")
            line(depth + 1, f"raise _core.InvalidDiscriminant({op.source}, {name!r})")
            line(depth, f"{op.target} = {name}._names[{op.source}]")
        elif code == OpCode.LOOKUP_CODE:
            name = _class_name(op.type)
            line(depth, f"if {op.source} not in {name}._codes:")
            line(
                depth + 1,
                f'raise _core.SerializeError(f"{{{op.source}!r}} is not a name of {name}")',
            )
            line(depth, f"{op.target} = {name}._codes[{op.source}]")
        elif code == OpCode.CONST:
            line(depth, f"{op.target} = {op.value!r}")
        elif code == OpCode.WRITE_PRESENT:
            line(depth, f"{op.target} = {op.source} is not None")
            line(depth, f"{_codec_name(op.codec)}.write(writer, {op.target})")
        elif code == OpCode.RETURN:
            line(depth, f"return {op.source}")
        else:
            raise ValueError(f"Unknown op: {code}")

    def _match(self, op: Op, depth: int) -> None:
        if not op.cases:
            if op.orelse is None:
                self.line(depth, self._no_case(op))
            else:
                self.emit(op.orelse, depth)
            return

        for index, case in enumerate(op.cases):
            prefix = "if" if index == 0 else "elif"
            self.line(depth, f"{prefix} {op.source} == {case.value!r}:")
            self.emit(case.body, depth + 1)
        self.line(depth, "else:")
        if op.orelse is None:
            self.line(depth + 1, self._no_case(op))
        else:
            self.emit(op.orelse, depth + 1)


def _body(procedure: Procedure, decoding: bool) -> str:
    """Render a method body, indented for a class member."""
    writer = ProcedureWriter(decoding)
    depth = 2
    if procedure.guarded:
        writer.line(depth, "with reader.nested():")
        depth += 1
    writer.emit(procedure.body, depth)
    return "\n".join(writer.lines)


def render(unit: CompilationUnit, runtime_import: str = "protodef.core") -> str:
    """Render a compilation unit to Python source code."""
    return template.render(
        unit=unit,
        runtime_import=runtime_import,
        class_name=_class_name,
        attr=_attr,
        member_name=_member_name,
        annotation=_annotation,
        field_annotation=_field_annotation,
        codec_constant=_codec_constant,
        bitfield_spec=_bitfield_spec,
        mapper_names=_mapper_names,
        mapper_codes=_mapper_codes,
        signature=_signature,
        body=_body,
    )


def runtime() -> dict[str, str]:
    """Return the Python runtime files as a dict of filename -> content."""
    result: dict[str, str] = {}
    for filename in RUNTIME_FILES:
        content = resources.files("protodef.core").joinpath(filename).read_text()
        result[filename] = content
    return result
