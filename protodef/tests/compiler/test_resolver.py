"""Tests for reference resolution and lowering order."""

from pytest import raises

from protodef.compiler import CompilerOptions, analyze, parse, resolve
from protodef.compiler.diagnostics import DiagnosticKind, Severity
from protodef.compiler.types import FrozenProtocolError, Primitive


def container(*fields):
    return ["container", list(fields)]


def kinds(diagnostics):
    return [d.kind for d in diagnostics]


def describe_order():
    def lists_dependencies_first(expect, protocol_tree):
        resolution, diagnostics = analyze(protocol_tree)

        expect(len(diagnostics)) == 0
        expect(resolution.usable) == True
        expect(resolution.order) == [
            ["varint"],
            ["u8"],
            ["u16"],
            ["i32"],
            ["string"],
            ["color"],
            ["kind"],
            ["position"],
            ["flags"],
            ["node", "node.next"],
            ["packet.params"],
            ["packet"],
            ["path.points"],
            ["path.tags"],
            ["path.payload"],
            ["path"],
        ]

    def groups_recursion_through_an_option(expect, protocol_tree):
        resolution, _ = analyze(protocol_tree)

        expect(resolution.recursive) == ["node", "node.next"]
        expect(resolution.unresolved) == []

    def is_stable_across_runs(expect, protocol_tree):
        first, _ = analyze(protocol_tree)
        second, _ = analyze(protocol_tree)

        expect(first.order) == second.order

    def groups_mutual_recursion_through_an_array(expect):
        tree = {
            "types": {
                "tree": container({"name": "children", "type": "forest"}),
                "forest": ["array", {"type": "tree", "countType": "u8"}],
            }
        }
        resolution, diagnostics = analyze(tree)

        expect(len(diagnostics)) == 0
        expect(["tree", "forest"] in resolution.order) == True
        expect(resolution.recursive) == ["tree", "forest"]


def describe_natives():
    def defines_referenced_natives(expect):
        tree = {"types": {"x": container({"name": "a", "type": "u8"})}}
        resolution, diagnostics = analyze(tree)

        expect(len(diagnostics)) == 0
        expect(isinstance(resolution.protocol["u8"], Primitive)) == True
        expect(resolution.protocol.locations["u8"]) == "natives.u8"

    def follows_aliases(expect):
        tree = {"types": {"id": "varint", "entity": "id"}}
        resolution, _ = analyze(tree)

        expect(resolution.target("entity")) == "varint"
        expect(resolution.resolve("entity").name) == "varint"


def describe_unknown_references():
    def reports_the_referencing_type(expect):
        tree = {"types": {"a": container({"name": "x", "type": "nope"})}}
        resolution, diagnostics = analyze(tree)

        diagnostic = list(diagnostics)[0]
        expect(diagnostic.kind) == DiagnosticKind.UNKNOWN_TYPE_REFERENCE
        expect(diagnostic.message) == "a refers to unknown type 'nope'"
        expect(diagnostic.location) == "types.a"
        expect(resolution.is_resolved("a")) == False

    def skips_dependents_with_a_warning(expect):
        tree = {
            "types": {
                "a": container({"name": "x", "type": "nope"}),
                "b": container({"name": "a", "type": "a"}),
                "c": container({"name": "b", "type": "b"}),
                "d": container({"name": "x", "type": "u8"}),
            }
        }
        resolution, diagnostics = analyze(tree)

        expect(kinds(diagnostics)) == [
            DiagnosticKind.UNKNOWN_TYPE_REFERENCE,
            DiagnosticKind.UNRESOLVED_DEPENDENCY,
            DiagnosticKind.UNRESOLVED_DEPENDENCY,
        ]
        warnings = diagnostics.warnings()
        expect(warnings[0].message) == "b is skipped because it depends on unresolved a"
        expect(warnings[0].location) == "types.b"
        expect(warnings[1].message) == "c is skipped because it depends on unresolved b"
        expect(resolution.unresolved) == ["a", "b", "c"]
        expect(resolution.is_resolved("d")) == True
        expect(["d"] in resolution.order) == True


def describe_cycles():
    def rejects_direct_cycles(expect):
        tree = {
            "types": {
                "a": container({"name": "b", "type": "b"}),
                "b": container({"name": "a", "type": "a"}),
            }
        }
        resolution, diagnostics = analyze(tree)

        expect(kinds(diagnostics)) == [DiagnosticKind.CYCLIC_TYPE_WITHOUT_INDIRECTION]
        diagnostic = list(diagnostics)[0]
        expect(diagnostic.message) == "cycle without an option or variable-length array: a -> b -> a"
        expect(diagnostic.location) == "types.a"
        expect(resolution.unresolved) == ["a", "b"]

    def rejects_an_alias_of_itself(expect):
        resolution, diagnostics = analyze({"types": {"a": "a"}})

        expect(list(diagnostics)[0].message) == "cycle without an option or variable-length array: a -> a"
        expect(resolution.unresolved) == ["a"]

    def rejects_cycles_through_fixed_arrays(expect):
        tree = {"types": {"a": container({"name": "more", "type": ["array", {"type": "a", "count": 2}]})}}
        _, diagnostics = analyze(tree)

        expect(kinds(diagnostics)) == [DiagnosticKind.CYCLIC_TYPE_WITHOUT_INDIRECTION]

    def accepts_cycles_through_empty_fixed_arrays(expect):
        tree = {"types": {"a": container({"name": "none", "type": ["array", {"type": "a", "count": 0}]})}}
        resolution, diagnostics = analyze(tree)

        expect(len(diagnostics)) == 0
        expect(resolution.recursive) == ["a", "a.none"]


def describe_context():
    def requires_an_earlier_discriminant(expect):
        tree = {
            "types": {
                "x": container(
                    {"name": "body", "type": ["switch", {"compareTo": "tag", "fields": {"1": "u8"}}]},
                    {"name": "tag", "type": "u8"},
                )
            }
        }
        resolution, diagnostics = analyze(tree)

        diagnostic = diagnostics.errors()[0]
        expect(diagnostic.kind) == DiagnosticKind.UNKNOWN_FIELD_REFERENCE
        expect(diagnostic.message) == "field 'body' of x depends on 'tag', which is not an earlier field"
        expect(resolution.is_resolved("x")) == False

    def requires_an_earlier_presence_field(expect):
        tree = {
            "types": {
                "x": container(
                    {"name": "a", "type": "u8", "if": "flag"},
                    {"name": "flag", "type": "bool"},
                )
            }
        }
        _, diagnostics = analyze(tree)

        expect(kinds(diagnostics)) == [DiagnosticKind.UNKNOWN_FIELD_REFERENCE]
        expect(list(diagnostics)[0].message) == (
            "field 'a' of x is conditional on 'flag', which is not an earlier field"
        )

    def rejects_switches_outside_containers(expect):
        tree = {
            "types": {
                "x": ["array", {"type": ["switch", {"compareTo": "tag", "fields": {"1": "u8"}}], "countType": "u8"}],
            }
        }
        resolution, diagnostics = analyze(tree)

        diagnostic = diagnostics.errors()[0]
        expect(diagnostic.kind) == DiagnosticKind.MALFORMED_SPEC_VALUE
        expect(diagnostic.message) == "x uses a switch or field-counted type outside of a container"
        expect(resolution.is_resolved("x")) == False

    def rejects_non_integer_counts(expect):
        tree = {
            "types": {
                "x": container(
                    {"name": "n", "type": "f32"},
                    {"name": "data", "type": ["buffer", {"count": "n"}]},
                )
            }
        }
        _, diagnostics = analyze(tree)

        expect(list(diagnostics)[0].message) == "count field 'n' of x is not an integer"

    def rejects_counts_that_may_be_absent(expect):
        tree = {
            "types": {
                "x": container(
                    {"name": "flag", "type": "bool"},
                    {"name": "n", "type": "u8", "if": "flag"},
                    {"name": "items", "type": ["array", {"type": "u8", "count": "n"}]},
                )
            }
        }
        resolution, diagnostics = analyze(tree)

        expect(kinds(diagnostics)) == [DiagnosticKind.MALFORMED_SPEC_VALUE]
        expect(list(diagnostics)[0].message) == "count field 'n' of x may be absent when 'items' is present"
        expect(resolution.is_resolved("x")) == False

    def accepts_counts_under_the_same_condition(expect):
        tree = {
            "types": {
                "x": container(
                    {"name": "flag", "type": "bool"},
                    {"name": "n", "type": "u8", "if": "flag"},
                    {"name": "items", "type": ["array", {"type": "u8", "count": "n"}], "if": "flag"},
                )
            }
        }
        resolution, diagnostics = analyze(tree)

        expect(len(diagnostics)) == 0
        expect(resolution.is_resolved("x")) == True

    def rejects_non_integer_lengths(expect):
        _, diagnostics = analyze({"types": {"s": ["pstring", {"countType": "bool"}]}})

        expect(list(diagnostics)[0].message) == "length type 'bool' of s is not an integer"

    def rejects_non_integer_enum_codes(expect):
        tree = {"types": {"e": ["enum", {"type": "f32", "values": {"a": 0}}]}}
        _, diagnostics = analyze(tree)

        expect(kinds(diagnostics)) == [DiagnosticKind.MALFORMED_SPEC_VALUE]
        expect(list(diagnostics)[0].message) == "underlying type 'f32' of e is not an integer"


def describe_limits():
    def does_not_charge_first_visits(expect):
        tree = {"types": {"x": container({"name": "a", "type": "u8"}, {"name": "b", "type": "u8"})}}
        resolution, diagnostics = analyze(tree, CompilerOptions(max_revisits=0))

        expect(len(diagnostics)) == 0
        expect(resolution.is_resolved("x")) == True

    def gives_up_when_recursion_exceeds_the_budget(expect, protocol_tree):
        resolution, diagnostics = analyze(protocol_tree, CompilerOptions(max_revisits=0))

        limited = diagnostics.of_kind(DiagnosticKind.RESOLUTION_LIMIT_EXCEEDED)
        expect(len(limited)) == 1
        expect(limited[0].severity) == Severity.ERROR
        expect(limited[0].message) == "resolution of node exceeded 0 revisits"
        expect(resolution.is_resolved("node")) == False
        expect(resolution.is_resolved("node.next")) == False
        expect(resolution.is_resolved("position")) == True

    def allows_revisits_within_the_budget(expect, protocol_tree):
        resolution, diagnostics = analyze(protocol_tree, CompilerOptions(max_revisits=1))

        expect(len(diagnostics)) == 0
        expect(resolution.is_resolved("node")) == True


def describe_protocol_state():
    def freezes_the_protocol(expect):
        protocol, diagnostics = parse({"types": {"u8": "native"}})
        resolve(protocol, diagnostics)

        expect(protocol.frozen) == True
        with raises(FrozenProtocolError):
            protocol.define("u16", protocol["u8"], "types.u16")

    def marks_broken_documents_unusable(expect):
        resolution, diagnostics = analyze("not a protocol")

        expect(resolution.usable) == False
        expect(diagnostics.has_errors) == True
