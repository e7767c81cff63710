"""Compiler configuration: the native type table and resolution limits."""

import json
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

from dataclasses_json import DataClassJsonMixin

from .types import Endian, PrimitiveKind


class BitOrder(StrEnum):
    """Which end of a packed bitfield word the first field occupies."""

    MSB_FIRST = "msb"
    LSB_FIRST = "lsb"


@dataclass
class NativeType(DataClassJsonMixin):
    """Encoding of a native type name. `width` is in bytes."""

    kind: PrimitiveKind
    width: int = 0
    signed: bool = False
    endian: Endian = Endian.BIG


def _ints() -> dict[str, NativeType]:
    natives: dict[str, NativeType] = {}
    for width in (1, 2, 4, 8):
        bits = width * 8
        natives[f"i{bits}"] = NativeType(PrimitiveKind.INT, width, True)
        natives[f"u{bits}"] = NativeType(PrimitiveKind.INT, width, False)
    for width in (2, 4, 8):
        bits = width * 8
        natives[f"li{bits}"] = NativeType(PrimitiveKind.INT, width, True, Endian.LITTLE)
        natives[f"lu{bits}"] = NativeType(PrimitiveKind.INT, width, False, Endian.LITTLE)
    return natives


# ProtoDef's default natives: big-endian unless prefixed with "l"
DEFAULT_NATIVES: dict[str, NativeType] = {
    **_ints(),
    "f32": NativeType(PrimitiveKind.FLOAT, 4),
    "f64": NativeType(PrimitiveKind.FLOAT, 8),
    "lf32": NativeType(PrimitiveKind.FLOAT, 4, endian=Endian.LITTLE),
    "lf64": NativeType(PrimitiveKind.FLOAT, 8, endian=Endian.LITTLE),
    "bool": NativeType(PrimitiveKind.BOOL, 1),
    "varint": NativeType(PrimitiveKind.VARINT, 4, True),
    "varlong": NativeType(PrimitiveKind.VARINT, 8, True),
    "void": NativeType(PrimitiveKind.VOID),
    "cstring": NativeType(PrimitiveKind.CSTRING),
}


@dataclass
class CompilerOptions(DataClassJsonMixin):
    """Settings supplied alongside the grammar.

    natives: native type names recognized by the parser and resolver.
    bit_order: packing convention for bitfields.
    max_revisits: per-type bound on how often one resolver traversal may
        come back to a type it has already entered before giving up on that
        subgraph.
    string_encoding: text encoding of pstrings that do not declare one.
    """

    natives: dict[str, NativeType] = field(default_factory=lambda: dict(DEFAULT_NATIVES))
    bit_order: BitOrder = BitOrder.MSB_FIRST
    max_revisits: int = 64
    string_encoding: str = "utf-8"


def load_options(path: str | Path) -> CompilerOptions:
    """Load options from a JSON file.

    Natives listed in the file are added to (or override) the defaults.
    """
    with open(path, encoding="utf-8") as f:
        data = json.load(f)

    natives = dict(DEFAULT_NATIVES)
    for name, native in data.pop("natives", {}).items():
        natives[name] = NativeType.from_dict(native)

    options = CompilerOptions.from_dict(data)
    options.natives = natives
    return options
