"""ProtoDef document parser: builds the Protocol IR from a generic JSON tree.

The parser never raises on bad input. Every problem becomes a diagnostic and
the offending node is replaced with a Placeholder so the walk can continue
and report as many issues as possible in one pass. References between types
are recorded as raw names and resolved later.
"""

import codecs
import logging
from collections.abc import Callable
from typing import Any

from .config import CompilerOptions
from .diagnostics import DiagnosticKind, Diagnostics
from .types import (
    Alias,
    Array,
    BitField,
    BitFields,
    Buffer,
    Enum,
    EnumVariant,
    Field,
    FieldLength,
    FixedLength,
    LengthPolicy,
    LengthPrefixedString,
    Mapper,
    Mapping,
    Option,
    Placeholder,
    PrefixedLength,
    Presence,
    Primitive,
    Protocol,
    RestLength,
    Struct,
    Switch,
    SwitchCase,
    Type,
    TypeId,
)

logger = logging.getLogger(__name__)


def _shape(value: Any) -> str:
    """Describe the JSON shape of a value for error messages."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "float"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def _parse_int(text: str) -> int | None:
    try:
        return int(text, 0)
    except ValueError:
        pass
    # int(..., 0) rejects leading zeros such as "010"
    try:
        return int(text)
    except ValueError:
        return None


def parse_case_key(key: Any) -> int | bool | str:
    """Normalize a switch case key.

    JSON object keys are always strings: "1" and "0x01" both mean 1, "true"
    and "false" match bool discriminants, anything else matches a mapper name.
    """
    if isinstance(key, (bool, int)):
        return key
    text = str(key).strip()
    if text == "true":
        return True
    if text == "false":
        return False
    number = _parse_int(text)
    return text if number is None else number


def parse_code(key: Any) -> int | None:
    """Parse a mapper code, or return None if it is not an integer."""
    if isinstance(key, bool):
        return None
    if isinstance(key, int):
        return key
    return _parse_int(str(key).strip())


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class ProtocolBuilder:
    """Walk a ProtoDef document and build the Protocol arena."""

    def __init__(self, options: CompilerOptions, diagnostics: Diagnostics) -> None:
        self.options = options
        self.diagnostics = diagnostics
        self.protocol = Protocol()
        self._top_level: set[str] = set()
        self._handlers: dict[str, Callable[[Any, TypeId, str], Type]] = {
            "container": self._container,
            "switch": self._switch,
            "array": self._array,
            "buffer": self._buffer,
            "pstring": self._pstring,
            "bitfield": self._bitfield,
            "mapper": self._mapper,
            "enum": self._enum,
            "option": self._option,
        }

    def build(self, tree: Any) -> Protocol:
        if not isinstance(tree, dict):
            self._malformed(f"protocol document must be an object, found {_shape(tree)}", "$")
            self.protocol.broken = True
            return self.protocol

        types = tree.get("types", {})
        if not isinstance(types, dict):
            self._malformed(f"'types' must be an object, found {_shape(types)}", "types")
            self.protocol.broken = True
            return self.protocol

        self._top_level = set(types)
        for name, definition in types.items():
            self._definition(name, definition, f"types.{name}")

        logger.debug("parsed %d types from %d definitions", len(self.protocol.types), len(types))
        return self.protocol

    def _malformed(self, message: str, location: str) -> None:
        self.diagnostics.error(DiagnosticKind.MALFORMED_SPEC_VALUE, message, location)

    def _placeholder(self, type_id: TypeId, reason: str, location: str) -> TypeId:
        self.protocol.define(type_id, Placeholder(reason), location)
        return type_id

    def _child_id(self, parent: TypeId, segment: str) -> TypeId:
        """Derive the id of an inline type from its parent and position."""
        base = f"{parent}.{segment}"
        type_id = base
        suffix = 2
        while type_id in self.protocol or type_id in self._top_level:
            type_id = f"{base}#{suffix}"
            suffix += 1
        return type_id

    def _definition(self, name: str, node: Any, location: str) -> None:
        if node == "native":
            native = self.options.natives.get(name)
            if native is None:
                self._malformed(f"'{name}' is declared native but is not a known native type", location)
                self._placeholder(name, "unknown native", location)
                return
            primitive = Primitive(name, native.kind, native.width, native.signed, native.endian)
            self.protocol.define(name, primitive, location)
        elif isinstance(node, str):
            self.protocol.define(name, Alias(node), location)
        else:
            self._type_expr(node, name, location)

    def _type_expr(self, node: Any, type_id: TypeId, location: str) -> TypeId:
        """Return the TypeId `node` denotes.

        Names are returned as-is. Compound nodes are defined under `type_id`.
        """
        if isinstance(node, str):
            if node == "native":
                self._malformed("'native' is only valid as a top-level definition", location)
                return self._placeholder(type_id, "misplaced native", location)
            return node

        if not isinstance(node, list):
            self._malformed(
                f"expected a type name or [kind, argument], found {_shape(node)}", location
            )
            return self._placeholder(type_id, "malformed type", location)

        if len(node) != 2 or not isinstance(node[0], str):
            self._malformed("expected [kind, argument]", location)
            return self._placeholder(type_id, "malformed type", location)

        kind, arg = node
        handler = self._handlers.get(kind)
        if handler is None:
            self._malformed(f"unknown type kind '{kind}'", location)
            return self._placeholder(type_id, f"unknown kind {kind}", location)

        # Reserve the slot so a parent precedes its inline children
        self._placeholder(type_id, "pending", location)
        self.protocol.define(type_id, handler(arg, type_id, location), location)
        return type_id

    def _expect_object(self, arg: Any, kind: str, location: str) -> bool:
        if isinstance(arg, dict):
            return True
        self._malformed(f"{kind} argument must be an object, found {_shape(arg)}", location)
        return False

    def _container(self, arg: Any, type_id: TypeId, location: str) -> Type:
        if not isinstance(arg, list):
            self._malformed(f"container fields must be an array, found {_shape(arg)}", location)
            return Placeholder("malformed container")

        fields: list[Field] = []
        seen: set[str] = set()
        for index, raw in enumerate(arg):
            field_location = f"{location}.fields[{index}]"
            if not isinstance(raw, dict):
                self._malformed(f"field must be an object, found {_shape(raw)}", field_location)
                continue

            if raw.get("anon"):
                name = f"anon{index}"
            else:
                name = raw.get("name")
                if not isinstance(name, str) or not name:
                    self._malformed("field needs a non-empty 'name' string", field_location)
                    continue

            if name in seen:
                self.diagnostics.error(
                    DiagnosticKind.DUPLICATE_FIELD_NAME,
                    f"duplicate field '{name}' in {type_id}",
                    location,
                )
                continue
            seen.add(name)

            if "type" not in raw:
                self._malformed(f"field '{name}' is missing 'type'", field_location)
                continue

            presence = None
            if "if" in raw:
                presence = self._presence(raw["if"], f"{field_location}.if")

            field_type = self._type_expr(
                raw["type"], self._child_id(type_id, name), f"{field_location}.type"
            )
            fields.append(Field(name, field_type, presence))

        return Struct(fields)

    def _presence(self, raw: Any, location: str) -> Presence | None:
        if isinstance(raw, str):
            return Presence(raw)
        if isinstance(raw, dict) and isinstance(raw.get("field"), str):
            if "in" in raw:
                if not isinstance(raw["in"], list):
                    self._malformed("'in' must be an array of values", location)
                    return None
                return Presence(raw["field"], [parse_case_key(v) for v in raw["in"]])
            if "equals" in raw:
                return Presence(raw["field"], [parse_case_key(raw["equals"])])
            return Presence(raw["field"])
        self._malformed("condition must be a field name or {\"field\": ..., \"in\": [...]}", location)
        return None

    def _switch(self, arg: Any, type_id: TypeId, location: str) -> Type:
        if not self._expect_object(arg, "switch", location):
            return Placeholder("malformed switch")

        compare_to = arg.get("compareTo")
        if not isinstance(compare_to, str) or not compare_to:
            self._malformed("switch needs a 'compareTo' string", location)
            return Placeholder("malformed switch")

        raw_cases = arg.get("fields", {})
        pairs: list[tuple[Any, Any]] = []
        if isinstance(raw_cases, dict):
            pairs = list(raw_cases.items())
        elif isinstance(raw_cases, list):
            for index, item in enumerate(raw_cases):
                if isinstance(item, list) and len(item) == 2:
                    pairs.append((item[0], item[1]))
                else:
                    self._malformed("switch case must be a [value, type] pair", f"{location}.fields[{index}]")
        else:
            self._malformed(f"switch 'fields' must be an object, found {_shape(raw_cases)}", location)

        cases: list[SwitchCase] = []
        seen: list[int | bool | str] = []
        for key, node in pairs:
            value = parse_case_key(key)
            if value in seen:
                self.diagnostics.error(
                    DiagnosticKind.DUPLICATE_SWITCH_CASE,
                    f"duplicate case {value!r} in switch on '{compare_to}'",
                    location,
                )
                continue
            seen.append(value)
            case_type = self._type_expr(node, self._child_id(type_id, str(key)), f"{location}.fields.{key}")
            cases.append(SwitchCase(value, case_type))

        default = None
        if "default" in arg:
            default = self._type_expr(
                arg["default"], self._child_id(type_id, "default"), f"{location}.default"
            )

        return Switch(compare_to, cases, default)

    def _length(self, arg: dict, type_id: TypeId, location: str) -> LengthPolicy | None:
        present = [key for key in ("count", "countType", "rest") if key in arg]
        if len(present) != 1:
            self._malformed("expected exactly one of 'count', 'countType' or 'rest'", location)
            return None

        key = present[0]
        value = arg[key]
        if key == "countType":
            length_type = self._type_expr(value, self._child_id(type_id, "length"), f"{location}.countType")
            return PrefixedLength(length_type)
        if key == "count":
            if _is_int(value) and value >= 0:
                return FixedLength(value)
            if isinstance(value, str) and value:
                return FieldLength(value)
            self._malformed(
                f"'count' must be a non-negative integer or a field name, found {value!r}",
                f"{location}.count",
            )
            return None
        if value is not True:
            self._malformed("'rest' must be true", f"{location}.rest")
            return None
        return RestLength()

    def _array(self, arg: Any, type_id: TypeId, location: str) -> Type:
        if not self._expect_object(arg, "array", location):
            return Placeholder("malformed array")
        if "type" not in arg:
            self._malformed("array is missing 'type'", location)
            return Placeholder("malformed array")

        length = self._length(arg, type_id, location)
        if length is None:
            return Placeholder("malformed array length")
        element = self._type_expr(arg["type"], self._child_id(type_id, "item"), f"{location}.type")
        return Array(element, length)

    def _buffer(self, arg: Any, type_id: TypeId, location: str) -> Type:
        if not self._expect_object(arg, "buffer", location):
            return Placeholder("malformed buffer")
        length = self._length(arg, type_id, location)
        if length is None:
            return Placeholder("malformed buffer length")
        return Buffer(length)

    def _pstring(self, arg: Any, type_id: TypeId, location: str) -> Type:
        if not self._expect_object(arg, "pstring", location):
            return Placeholder("malformed pstring")
        if "countType" not in arg:
            self._malformed("pstring is missing 'countType'", location)
            return Placeholder("malformed pstring")

        encoding = arg.get("encoding", self.options.string_encoding)
        try:
            text_codec = codecs.lookup(encoding)._is_text_encoding
        except (LookupError, TypeError):
            text_codec = False
        if not text_codec:
            self._malformed(f"{encoding!r} is not a known text encoding", f"{location}.encoding")
            return Placeholder("unknown encoding")

        length = self._type_expr(arg["countType"], self._child_id(type_id, "length"), f"{location}.countType")
        return LengthPrefixedString(length, encoding)

    def _bitfield(self, arg: Any, type_id: TypeId, location: str) -> Type:
        total = None
        if isinstance(arg, list):
            raw_fields = arg
        elif isinstance(arg, dict) and isinstance(arg.get("fields"), list):
            raw_fields = arg["fields"]
            total = arg.get("size")
        else:
            self._malformed("bitfield argument must be an array of fields", location)
            return Placeholder("malformed bitfield")

        def invalid(message: str, where: str) -> None:
            self.diagnostics.error(DiagnosticKind.INVALID_BITFIELD_WIDTH, message, where)

        fields: list[BitField] = []
        seen: set[str] = set()
        valid = True
        for index, raw in enumerate(raw_fields):
            field_location = f"{location}.fields[{index}]"
            if not isinstance(raw, dict) or not isinstance(raw.get("name"), str):
                self._malformed("bitfield entry needs a 'name' string", field_location)
                valid = False
                continue

            name = raw["name"]
            width = raw.get("size")
            if not _is_int(width) or width < 1:
                invalid(f"bitfield '{name}' has invalid width {width!r}", field_location)
                valid = False
                continue

            signed = raw.get("signed", False)
            if not isinstance(signed, bool):
                self._malformed(f"'signed' of bitfield '{name}' must be a bool", field_location)
                valid = False
                continue

            if name in seen:
                self.diagnostics.error(
                    DiagnosticKind.DUPLICATE_FIELD_NAME,
                    f"duplicate bitfield '{name}' in {type_id}",
                    location,
                )
                valid = False
                continue
            seen.add(name)
            fields.append(BitField(name, width, signed))

        if not valid:
            return Placeholder("invalid bitfield")

        used = sum(f.width for f in fields)
        if total is None:
            total = used
        if not _is_int(total) or total <= 0 or total % 8:
            invalid(f"total width {total!r} is not a positive whole number of bytes", location)
            return Placeholder("invalid bitfield")
        if used > total:
            invalid(f"field widths sum to {used} bits, more than the declared {total}", location)
            return Placeholder("invalid bitfield")
        if used < total:
            self.diagnostics.warning(
                DiagnosticKind.IMPLICIT_PADDING,
                f"{total - used} padding bits after the last field of {type_id}",
                location,
            )

        return BitFields(fields, total)

    def _mapper(self, arg: Any, type_id: TypeId, location: str) -> Type:
        if not self._expect_object(arg, "mapper", location):
            return Placeholder("malformed mapper")
        if "type" not in arg or not isinstance(arg.get("mappings"), dict):
            self._malformed("mapper needs 'type' and a 'mappings' object", location)
            return Placeholder("malformed mapper")

        mappings: list[Mapping] = []
        codes: set[int] = set()
        names: set[str] = set()
        for raw_code, name in arg["mappings"].items():
            entry_location = f"{location}.mappings.{raw_code}"
            code = parse_code(raw_code)
            if code is None or not isinstance(name, str):
                self._malformed(f"mapping {raw_code!r}: {name!r} must map an integer to a name", entry_location)
                continue
            if code in codes or name in names:
                self.diagnostics.error(
                    DiagnosticKind.DUPLICATE_MAPPING,
                    f"mapping {code}: '{name}' repeats a code or name in {type_id}",
                    location,
                )
                continue
            codes.add(code)
            names.add(name)
            mappings.append(Mapping(code, name))

        underlying = self._type_expr(arg["type"], self._child_id(type_id, "code"), f"{location}.type")
        return Mapper(underlying, mappings)

    def _enum(self, arg: Any, type_id: TypeId, location: str) -> Type:
        if not self._expect_object(arg, "enum", location):
            return Placeholder("malformed enum")
        if "type" not in arg or not isinstance(arg.get("values"), dict):
            self._malformed("enum needs 'type' and a 'values' object", location)
            return Placeholder("malformed enum")

        variants: list[EnumVariant] = []
        values: set[int] = set()
        for name, value in arg["values"].items():
            if not _is_int(value):
                self._malformed(f"enum value '{name}' must be an integer", f"{location}.values.{name}")
                continue
            if value in values:
                self.diagnostics.error(
                    DiagnosticKind.DUPLICATE_MAPPING,
                    f"enum value {value} of '{name}' is already used in {type_id}",
                    location,
                )
                continue
            values.add(value)
            variants.append(EnumVariant(name, value))

        underlying = self._type_expr(arg["type"], self._child_id(type_id, "code"), f"{location}.type")
        return Enum(underlying, variants)

    def _option(self, arg: Any, type_id: TypeId, location: str) -> Type:
        return Option(self._type_expr(arg, self._child_id(type_id, "value"), f"{location}.value"))


def parse(
    tree: Any,
    options: CompilerOptions | None = None,
    diagnostics: Diagnostics | None = None,
) -> tuple[Protocol, Diagnostics]:
    """Build a Protocol from a loaded ProtoDef document."""
    if diagnostics is None:
        diagnostics = Diagnostics()
    builder = ProtocolBuilder(options or CompilerOptions(), diagnostics)
    return builder.build(tree), diagnostics
