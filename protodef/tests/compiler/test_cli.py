"""Tests for CLI interface."""

import json
import os

from click.testing import CliRunner

from protodef.compiler.cli import cli

FILE_DIR = os.path.dirname(os.path.realpath(__file__))
PROTOCOL = f"{FILE_DIR}/protocol.json"


def write_json(path, data):
    path.write_text(json.dumps(data))
    return str(path)


def describe_gen_command():
    def generates_python_code(expect, tmp_path):
        runner = CliRunner()
        output_file = tmp_path / "protocol.py"

        result = runner.invoke(cli, ["gen", "-i", PROTOCOL, "-o", str(output_file)])

        expect(result.exit_code) == 0
        content = output_file.read_text()
        expect("class Path(_core.Struct):" in content) == True
        expect("import protodef_runtime as _core" in content) == True

    def imports_the_installed_runtime_when_asked(expect):
        runner = CliRunner()

        result = runner.invoke(cli, ["gen", "-i", PROTOCOL, "--runtime-import"])

        expect(result.exit_code) == 0
        expect("import protodef.core as _core" in result.output) == True

    def writes_partial_output_and_fails_on_errors(expect, tmp_path):
        runner = CliRunner()
        source = write_json(
            tmp_path / "bad.json",
            {
                "types": {
                    "a": ["container", [{"name": "x", "type": "nope"}]],
                    "b": ["container", [{"name": "x", "type": "u8"}]],
                }
            },
        )
        output_file = tmp_path / "bad.py"

        result = runner.invoke(cli, ["gen", "-i", source, "-o", str(output_file)])

        expect(result.exit_code) == 1
        expect("class B(_core.Struct):" in output_file.read_text()) == True

    def fails_on_invalid_json(expect, tmp_path):
        runner = CliRunner()
        source = tmp_path / "broken.json"
        source.write_text("{not json")

        result = runner.invoke(cli, ["gen", "-i", str(source)])

        expect(result.exit_code) == 1
        expect("is not valid JSON" in result.output) == True

    def applies_the_config_file(expect, tmp_path):
        runner = CliRunner()
        config = write_json(tmp_path / "options.json", {"bit_order": "lsb"})

        result = runner.invoke(cli, ["gen", "-i", PROTOCOL, "-c", config])

        expect(result.exit_code) == 0
        expect("'lsb')" in result.output) == True


def describe_lower_command():
    def dumps_the_compilation_unit(expect):
        runner = CliRunner()

        result = runner.invoke(cli, ["lower", "-i", PROTOCOL])

        expect(result.exit_code) == 0
        unit = json.loads(result.output)
        expect(unit["forward_declarations"]) == ["Node", "NodeNext"]
        expect([d["name"] for d in unit["declarations"]][:3]) == ["String", "Color", "Kind"]


def describe_check_command():
    def reports_a_clean_protocol(expect):
        runner = CliRunner()

        result = runner.invoke(cli, ["check", "-i", PROTOCOL])

        expect(result.exit_code) == 0
        expect("0 errors, 0 warnings" in result.output) == True

    def counts_errors_and_fails(expect, tmp_path):
        runner = CliRunner()
        source = write_json(tmp_path / "bad.json", {"types": {"a": ["blob", {}]}})

        result = runner.invoke(cli, ["check", "-i", source])

        expect(result.exit_code) == 1
        expect("1 error, 0 warnings" in result.output) == True

    def outputs_json(expect, tmp_path):
        runner = CliRunner()
        source = write_json(tmp_path / "pad.json", {"types": {"f": ["bitfield", {"fields": [{"name": "a", "size": 4}], "size": 8}]}})

        result = runner.invoke(cli, ["check", "-i", source, "--json"])

        expect(result.exit_code) == 0
        data = json.loads(result.output)
        expect(len(data)) == 1
        expect(data[0]["kind"]) == "ImplicitPadding"
        expect(data[0]["severity"]) == "warning"
        expect(data[0]["location"]) == "types.f"


def describe_runtime_command():
    def writes_the_runtime_package(expect, tmp_path):
        runner = CliRunner()

        result = runner.invoke(cli, ["runtime", "-o", str(tmp_path), "--name", "wire"])

        expect(result.exit_code) == 0
        expect(sorted(os.listdir(tmp_path / "wire"))) == [
            "__init__.py",
            "cursor.py",
            "errors.py",
            "primitives.py",
            "serialization.py",
        ]
        expect("Generated Python runtime in" in result.output) == True


def describe_info_command():
    def outputs_json(expect):
        runner = CliRunner()

        result = runner.invoke(cli, ["info", "-i", PROTOCOL, "--json"])

        expect(result.exit_code) == 0
        data = json.loads(result.output)
        expect(data["types"]["position"]) == {"min_size": 8, "max_size": 8, "kind": "fixed", "top_level": True}
        expect(data["types"]["node.next"]["top_level"]) == False
        expect(data["messages"]["max_message_size"]) == None

    def outputs_tables(expect):
        runner = CliRunner()

        result = runner.invoke(cli, ["info", "-i", PROTOCOL])

        expect(result.exit_code) == 0
        expect("Types" in result.output) == True
        expect("position" in result.output) == True
        expect("Messages" in result.output) == True

    def fails_on_broken_documents(expect, tmp_path):
        runner = CliRunner()
        source = write_json(tmp_path / "list.json", [])

        result = runner.invoke(cli, ["info", "-i", source])

        expect(result.exit_code) == 1
