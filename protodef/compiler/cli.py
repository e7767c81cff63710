"""Command-line interface for protodef code generation."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from protodef.compiler import python
from protodef.compiler.config import CompilerOptions, load_options
from protodef.compiler.diagnostics import Diagnostics
from protodef.compiler.pipeline import analyze, compile_protocol
from protodef.compiler.sizes import ProtocolSizeInfo, calculate_sizes

err_console = Console(stderr=True)


def _load(input_file: str) -> Any:
    with open(input_file, encoding="utf-8") as f:
        try:
            return json.load(f)
        except json.JSONDecodeError as e:
            raise click.ClickException(f"{input_file} is not valid JSON: {e}") from e


def _options(config_file: str | None) -> CompilerOptions:
    if config_file is None:
        return CompilerOptions()
    return load_options(config_file)


def _print_diagnostics(diagnostics: Diagnostics, console: Console) -> None:
    if not diagnostics:
        return
    table = Table(show_header=True, box=None, padding=(0, 2, 0, 0))
    table.add_column("Severity")
    table.add_column("Kind", style="cyan")
    table.add_column("Location", style="dim")
    table.add_column("Message", style="white")
    for d in diagnostics:
        severity = f"[red]{d.severity}[/red]" if d.is_error else f"[yellow]{d.severity}[/yellow]"
        table.add_row(severity, str(d.kind), escape(d.location), escape(d.message))
    console.print(table)


def _write(output_file: str | None, content: str) -> None:
    if output_file is None:
        sys.stdout.write(content)
        return
    with open(output_file, "w", encoding="utf-8") as f:
        f.write(content)


config_option = click.option(
    "--config", "-c", "config_file", default=None, help="JSON file with compiler options"
)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Log compiler progress")
def cli(verbose: bool) -> None:
    """ProtoDef protocol compiler."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=err_console, show_path=False)],
        )


@cli.command()
@click.option("--input", "-i", "input_file", required=True, help="Input protocol file")
@click.option("--output", "-o", "output_file", default=None, help="Output file (default: stdout)")
@click.option(
    "--runtime-import",
    "runtime_import",
    is_flag=False,
    flag_value="protodef.core",
    default=None,
    help="Import path for runtime. No value=protodef.core, omit=protodef_runtime",
)
@config_option
def gen(input_file: str, output_file: str | None, runtime_import: str | None, config_file: str | None) -> None:
    """Generate Python code from a protocol file."""
    unit, diagnostics = compile_protocol(_load(input_file), _options(config_file))
    _print_diagnostics(diagnostics, err_console)
    if unit is None:
        sys.exit(1)

    # Default to "protodef_runtime" (vendored with the runtime command) if not specified
    import_path = runtime_import if runtime_import is not None else "protodef_runtime"
    _write(output_file, python.render(unit, runtime_import=import_path))
    if diagnostics.has_errors:
        sys.exit(1)


@cli.command()
@click.option("--input", "-i", "input_file", required=True, help="Input protocol file")
@click.option("--output", "-o", "output_file", default=None, help="Output file (default: stdout)")
@config_option
def lower(input_file: str, output_file: str | None, config_file: str | None) -> None:
    """Dump the lowered compilation unit as JSON."""
    unit, diagnostics = compile_protocol(_load(input_file), _options(config_file))
    _print_diagnostics(diagnostics, err_console)
    if unit is None:
        sys.exit(1)

    _write(output_file, unit.to_json(indent=2) + "\n")
    if diagnostics.has_errors:
        sys.exit(1)


@cli.command()
@click.option("--input", "-i", "input_file", required=True, help="Input protocol file")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@config_option
def check(input_file: str, output_json: bool, config_file: str | None) -> None:
    """Report the diagnostics of a protocol file."""
    _, diagnostics = compile_protocol(_load(input_file), _options(config_file))

    if output_json:
        print(json.dumps(diagnostics.to_list(), indent=2))
    else:
        console = Console()
        _print_diagnostics(diagnostics, console)
        errors = len(diagnostics.errors())
        warnings = len(diagnostics.warnings())
        console.print(f"{errors} error{'s' if errors != 1 else ''}, {warnings} warning{'s' if warnings != 1 else ''}")

    if diagnostics.has_errors:
        sys.exit(1)


@cli.command()
@click.option("--output", "-o", "output_path", default=".", help="Output directory")
@click.option("--name", default="protodef_runtime", help="Runtime package name")
def runtime(output_path: str, name: str) -> None:
    """Write the Python runtime package."""
    runtime_dir = Path(output_path) / name
    runtime_dir.mkdir(parents=True, exist_ok=True)
    for filename, content in python.runtime().items():
        (runtime_dir / filename).write_text(content)
    print(f"Generated Python runtime in {runtime_dir}")


@cli.command()
@click.option("--input", "-i", "input_file", required=True, help="Input protocol file")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@config_option
def info(input_file: str, output_json: bool, config_file: str | None) -> None:
    """Display type sizes of a protocol file."""
    resolution, diagnostics = analyze(_load(input_file), _options(config_file))
    if not resolution.usable:
        _print_diagnostics(diagnostics, err_console)
        sys.exit(1)

    size_info = calculate_sizes(resolution)
    if output_json:
        _output_json(size_info)
    else:
        _output_plain(size_info)


def _format_size(size: int | None) -> str:
    """Format a size value, handling None for unbounded."""
    return "unbounded" if size is None else str(size)


def _output_json(size_info: ProtocolSizeInfo) -> None:
    """Output size info as JSON."""
    data: dict = {"types": {}, "messages": {}}

    for type_id, size in size_info.types.items():
        data["types"][type_id] = {
            "min_size": size.min_size,
            "max_size": size.max_size,
            "kind": size.kind.value,
            "top_level": type_id in size_info.top_level,
        }

    data["messages"] = {
        "min_message_size": size_info.min_message_size,
        "max_message_size": size_info.max_message_size,
    }

    print(json.dumps(data, indent=2))


def _output_plain(size_info: ProtocolSizeInfo) -> None:
    """Output size info using rich text formatting."""
    console = Console()

    console.print("[bold cyan]Types[/bold cyan]")
    type_table = Table(show_header=True, box=None, padding=(0, 2, 0, 0))
    type_table.add_column("Name", style="white")
    type_table.add_column("Size", style="yellow", justify="right")
    type_table.add_column("Kind", style="dim")

    for type_id, size in size_info.top_level.items():
        if size.min_size == size.max_size:
            size_str = f"{size.min_size} bytes"
        else:
            size_str = f"{size.min_size}-{_format_size(size.max_size)} bytes"
        type_table.add_row(type_id, size_str, size.kind.value)

    console.print(type_table)
    console.print()

    console.print("[bold cyan]Messages[/bold cyan]")
    message_table = Table(show_header=False, box=None, padding=(0, 2, 0, 2))
    message_table.add_column("Label", style="dim")
    message_table.add_column("Value", style="white")
    message_table.add_row("Smallest", f"{size_info.min_message_size} bytes")
    message_table.add_row("Largest", f"{_format_size(size_info.max_message_size)} bytes")
    console.print(message_table)


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
