"""Compilation entry point: parse, resolve and lower a ProtoDef document."""

import logging
from typing import Any

from .codegen import generate
from .config import CompilerOptions
from .diagnostics import Diagnostics
from .lowered import CompilationUnit
from .parser import parse
from .resolver import Resolution, resolve

logger = logging.getLogger(__name__)


def analyze(tree: Any, options: CompilerOptions | None = None) -> tuple[Resolution, Diagnostics]:
    """Parse and resolve `tree` without lowering it."""
    options = options or CompilerOptions()
    protocol, diagnostics = parse(tree, options)
    resolution = resolve(protocol, diagnostics, options)
    return resolution, diagnostics


def compile_protocol(
    tree: Any, options: CompilerOptions | None = None
) -> tuple[CompilationUnit | None, Diagnostics]:
    """Compile a loaded ProtoDef document.

    The compilation succeeded when no error diagnostic was recorded. Types
    affected by errors are left out of the unit and listed as skipped. The
    unit is None only when the document is too malformed to resolve at all.
    """
    options = options or CompilerOptions()
    resolution, diagnostics = analyze(tree, options)
    if not resolution.usable:
        logger.debug("no compilation unit: %s", diagnostics)
        return None, diagnostics

    unit = generate(resolution, diagnostics, options)
    logger.debug("compiled with %d diagnostics", len(diagnostics))
    return unit, diagnostics
