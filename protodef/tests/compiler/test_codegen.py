"""Tests for lowering resolved protocols into compilation units."""

from pytest import raises

from protodef.compiler import analyze, compile_protocol, generate
from protodef.compiler.diagnostics import DiagnosticKind, Severity
from protodef.compiler.lowered import DeclKind, OpCode, ValueKind, ValueType


def container(*fields):
    return ["container", list(fields)]


def codes(ops):
    return [op.code for op in ops]


def describe_compilation_unit():
    def lists_declarations_dependencies_first(expect, protocol_tree):
        unit, diagnostics = compile_protocol(protocol_tree)

        expect(len(diagnostics)) == 0
        expect([d.name for d in unit.declarations]) == [
            "String",
            "Color",
            "Kind",
            "Position",
            "Flags",
            "Node",
            "NodeNext",
            "PacketParams",
            "Packet",
            "PathPoints",
            "PathTags",
            "PathPayload",
            "Path",
        ]
        expect(unit.groups[5]) == ["Node", "NodeNext"]
        expect(unit.skipped) == []

    def forward_declares_recursive_groups(expect, protocol_tree):
        unit, _ = compile_protocol(protocol_tree)

        expect(unit.forward_declarations) == ["Node", "NodeNext"]
        expect(unit.declaration("Node").recursive) == True
        expect(unit.declaration("Position").recursive) == False

    def registers_codecs_in_first_use_order(expect, protocol_tree):
        unit, _ = compile_protocol(protocol_tree)

        expect([c.name for c in unit.codecs]) == ["VARINT", "U8", "I32", "BOOL", "U16"]
        varint = unit.codecs[0]
        expect((varint.kind, varint.width, varint.signed)) == ("varint", 4, True)

    def is_deterministic(expect, protocol_tree):
        first, _ = compile_protocol(protocol_tree)
        second, _ = compile_protocol(protocol_tree)

        expect(first.to_json()) == second.to_json()

    def finds_declarations(expect, protocol_tree):
        unit, _ = compile_protocol(protocol_tree)

        expect(unit.by_type_id("packet.params").name) == "PacketParams"
        with raises(KeyError):
            unit.declaration("Missing")

    def keeps_names_unique(expect):
        tree = {
            "types": {
                "a_b": container({"name": "x", "type": "u8"}),
                "a.b": container({"name": "x", "type": "u8"}),
            }
        }
        unit, _ = compile_protocol(tree)

        expect([d.name for d in unit.declarations]) == ["AB", "AB2"]

    def skips_unresolved_types(expect):
        tree = {
            "types": {
                "a": container({"name": "x", "type": "nope"}),
                "b": container({"name": "x", "type": "u8"}),
            }
        }
        unit, diagnostics = compile_protocol(tree)

        expect(diagnostics.has_errors) == True
        expect(unit.skipped) == ["a"]
        expect([d.name for d in unit.declarations]) == ["B"]

    def returns_no_unit_for_broken_documents(expect):
        unit, diagnostics = compile_protocol([])

        expect(unit) == None
        expect(diagnostics.has_errors) == True

    def refuses_unusable_resolutions(expect):
        resolution, diagnostics = analyze([])

        with raises(ValueError):
            generate(resolution, diagnostics)


def describe_structs():
    def reads_fields_in_order(expect, protocol_tree):
        unit, _ = compile_protocol(protocol_tree)

        position = unit.declaration("Position")
        expect(position.kind) == DeclKind.STRUCT
        expect([f.name for f in position.fields]) == ["x", "y"]
        expect(codes(position.decode.body)) == [OpCode.READ, OpCode.READ, OpCode.CONSTRUCT, OpCode.RETURN]
        expect(position.decode.body[0].codec) == "I32"
        expect(position.decode.body[2].fields) == ["f_x", "f_y"]
        expect(position.decode.guarded) == True

    def binds_fields_before_writing(expect, protocol_tree):
        unit, _ = compile_protocol(protocol_tree)

        encode = unit.declaration("Position").encode.body
        expect(codes(encode)) == [OpCode.BIND, OpCode.WRITE, OpCode.BIND, OpCode.WRITE]
        expect((encode[0].target, encode[0].source, encode[0].attr)) == ("f_x", "value", "x")

    def passes_the_discriminant_to_switches(expect, protocol_tree):
        unit, _ = compile_protocol(protocol_tree)

        packet = unit.declaration("Packet")
        params = packet.decode.body[1]
        expect(params.code) == OpCode.CALL_DECODE
        expect(params.type) == "PacketParams"
        expect(params.args) == {"discriminant": "f_kind"}
        expect(packet.encode.body[3].args) == {"discriminant": "f_kind"}

    def passes_the_count_to_field_counted_arrays(expect, protocol_tree):
        unit, _ = compile_protocol(protocol_tree)

        path = unit.declaration("Path")
        expect(path.decode.body[1].type) == "PathPoints"
        expect(path.decode.body[1].args) == {"count": "f_count"}

    def reports_field_value_shapes(expect, protocol_tree):
        unit, _ = compile_protocol(protocol_tree)

        fields = {f.name: f.type for f in unit.declaration("Path").fields}
        expect(fields["count"]) == ValueType(ValueKind.INT)
        expect(fields["points"]) == ValueType(ValueKind.LIST, item=ValueType(ValueKind.NAMED, "Position"))
        expect(fields["tags"]) == ValueType(ValueKind.LIST, item=ValueType(ValueKind.STR))
        expect(fields["color"]) == ValueType(ValueKind.NAMED, "Color")
        expect(fields["payload"]) == ValueType(ValueKind.BYTES)

    def guards_conditional_fields(expect):
        tree = {
            "types": {
                "x": container(
                    {"name": "flag", "type": "bool"},
                    {"name": "a", "type": "u8", "if": "flag"},
                    {"name": "b", "type": "u8", "if": {"field": "flag", "in": [False]}},
                )
            }
        }
        unit, diagnostics = compile_protocol(tree)

        expect(len(diagnostics)) == 0
        decl = unit.declaration("X")
        when = decl.decode.body[1]
        expect(when.code) == OpCode.WHEN
        expect(when.source) == "f_flag"
        expect(when.values) == None
        expect(codes(when.body)) == [OpCode.READ]
        expect(when.orelse[0].code) == OpCode.CONST
        expect(when.orelse[0].target) == "f_a"
        expect(decl.decode.body[2].values) == [False]
        expect([f.optional for f in decl.fields]) == [False, True, True]

    def warns_about_cases_a_mapper_never_produces(expect):
        tree = {
            "types": {
                "k": ["mapper", {"type": "u8", "mappings": {"0": "a", "1": "b"}}],
                "x": container(
                    {"name": "kind", "type": "k"},
                    {"name": "body", "type": ["switch", {"compareTo": "kind", "fields": {"a": "u8", "c": "u16"}}]},
                ),
            }
        }
        unit, diagnostics = compile_protocol(tree)

        expect(unit is not None) == True
        expect(len(diagnostics)) == 1
        diagnostic = list(diagnostics)[0]
        expect(diagnostic.kind) == DiagnosticKind.MALFORMED_SPEC_VALUE
        expect(diagnostic.severity) == Severity.WARNING
        expect(diagnostic.message) == (
            "case 'c' of field 'body' in x never matches: 'kind' decodes to one of ['a', 'b']"
        )


def describe_other_declarations():
    def lowers_switches(expect, protocol_tree):
        unit, _ = compile_protocol(protocol_tree)

        switch = unit.declaration("PacketParams")
        expect(switch.kind) == DeclKind.SWITCH
        expect(switch.params) == ["discriminant"]
        match = switch.decode.body[0]
        expect(match.code) == OpCode.MATCH
        expect([c.value for c in match.cases]) == ["ping", "chat", "move"]
        expect(match.cases[0].body[0].codec) == "U16"
        expect(match.cases[1].body[0].type) == "String"
        expect(match.orelse) == None

    def lowers_enums_and_mappers(expect, protocol_tree):
        unit, _ = compile_protocol(protocol_tree)

        color = unit.declaration("Color")
        expect(color.kind) == DeclKind.ENUM
        expect([(v.name, v.value) for v in color.variants]) == [("red", 0), ("green", 1), ("blue", 2)]

        kind = unit.declaration("Kind")
        expect(kind.value_type) == ValueType(ValueKind.STR)
        expect(codes(kind.decode.body)) == [OpCode.READ, OpCode.LOOKUP, OpCode.RETURN]
        expect(codes(kind.encode.body)) == [OpCode.LOOKUP_CODE, OpCode.WRITE]

    def lowers_bitfields(expect, protocol_tree):
        unit, _ = compile_protocol(protocol_tree)

        flags = unit.declaration("Flags")
        expect(flags.kind) == DeclKind.BITFIELDS
        expect(flags.bit_order) == "msb"
        expect(flags.total_width) == 8
        expect([(f.name, f.width) for f in flags.fields]) == [("flagA", 1), ("flagB", 1), ("reserved", 6)]
        expect([f.type.kind for f in flags.fields]) == [ValueKind.BOOL, ValueKind.BOOL, ValueKind.INT]

    def lowers_arrays_by_length_policy(expect, protocol_tree):
        unit, _ = compile_protocol(protocol_tree)

        points = unit.declaration("PathPoints")
        expect(points.params) == ["count"]
        expect(codes(points.decode.body)) == [OpCode.REQUIRE, OpCode.REPEAT, OpCode.RETURN]
        expect(points.decode.body[0].size) == 8
        expect(codes(points.encode.body)) == [OpCode.CHECK_LENGTH, OpCode.FOR_EACH]

        tags = unit.declaration("PathTags")
        expect(tags.params) == []
        expect(codes(tags.decode.body)) == [OpCode.READ, OpCode.REQUIRE, OpCode.REPEAT, OpCode.RETURN]
        expect(codes(tags.encode.body)) == [OpCode.WRITE_LENGTH, OpCode.FOR_EACH]

    def reads_rest_arrays_until_the_end(expect):
        tree = {"types": {"all": ["array", {"type": "u16", "rest": True}]}}
        unit, _ = compile_protocol(tree)

        repeat = unit.declaration("All").decode.body[0]
        expect(repeat.code) == OpCode.REPEAT_UNTIL_END
        expect(repeat.size) == 2

    def lowers_options(expect, protocol_tree):
        unit, _ = compile_protocol(protocol_tree)

        option = unit.declaration("NodeNext")
        expect(option.kind) == DeclKind.OPTION
        expect(option.value_type) == ValueType(ValueKind.OPTIONAL, item=ValueType(ValueKind.NAMED, "Node"))
        expect(codes(option.decode.body)) == [OpCode.READ, OpCode.WHEN, OpCode.RETURN]
        expect(codes(option.encode.body)) == [OpCode.WRITE_PRESENT, OpCode.WHEN]
