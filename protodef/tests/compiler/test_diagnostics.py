"""Tests for the diagnostics log."""

from protodef.compiler.diagnostics import Diagnostic, DiagnosticKind, Diagnostics, Severity


def describe_diagnostics():
    def starts_empty(expect):
        diagnostics = Diagnostics()

        expect(len(diagnostics)) == 0
        expect(bool(diagnostics)) == False
        expect(diagnostics.has_errors) == False
        expect(str(diagnostics)) == "no issues"

    def keeps_insertion_order(expect):
        diagnostics = Diagnostics()
        diagnostics.warning(DiagnosticKind.IMPLICIT_PADDING, "2 padding bits", "types.flags")
        diagnostics.error(DiagnosticKind.UNKNOWN_TYPE_REFERENCE, "a refers to unknown type 'b'", "types.a")

        expect([d.kind for d in diagnostics]) == [
            DiagnosticKind.IMPLICIT_PADDING,
            DiagnosticKind.UNKNOWN_TYPE_REFERENCE,
        ]
        expect(diagnostics.has_errors) == True
        expect(len(diagnostics.errors())) == 1
        expect(len(diagnostics.warnings())) == 1
        expect(diagnostics.of_kind(DiagnosticKind.IMPLICIT_PADDING)[0].location) == "types.flags"

    def warnings_alone_are_not_errors(expect):
        diagnostics = Diagnostics()
        diagnostics.warning(DiagnosticKind.UNRESOLVED_DEPENDENCY, "b is skipped", "types.b")

        expect(bool(diagnostics)) == True
        expect(diagnostics.has_errors) == False

    def extends_from_another_log(expect):
        first = Diagnostics()
        first.error(DiagnosticKind.DUPLICATE_MAPPING, "mapping 1: 'a' repeats", "types.m")
        second = Diagnostics()
        second.extend(first)

        expect(list(second)) == list(first)

    def formats_entries(expect):
        diagnostic = Diagnostic(
            DiagnosticKind.DUPLICATE_FIELD_NAME, Severity.ERROR, "duplicate field 'a' in x", "types.x"
        )

        expect(str(diagnostic)) == "error[DuplicateFieldName] at types.x: duplicate field 'a' in x"
        expect(diagnostic.is_error) == True

    def summarizes_several_entries(expect):
        diagnostics = Diagnostics()
        diagnostics.error(DiagnosticKind.DUPLICATE_FIELD_NAME, "duplicate field 'a' in x", "types.x")
        diagnostics.warning(DiagnosticKind.IMPLICIT_PADDING, "4 padding bits", "types.f")

        lines = str(diagnostics).splitlines()
        expect(lines[0]) == "2 issues found:"
        expect(lines[2]) == "  warning[ImplicitPadding] at types.f: 4 padding bits"

    def serializes_to_plain_data(expect):
        diagnostics = Diagnostics()
        diagnostics.error(DiagnosticKind.MALFORMED_SPEC_VALUE, "unknown type kind 'blob'", "types.x")

        expect(diagnostics.to_list()) == [
            {
                "kind": "MalformedSpecValue",
                "severity": "error",
                "message": "unknown type kind 'blob'",
                "location": "types.x",
            }
        ]
