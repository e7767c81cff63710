"""Primitive codec operations shared by all generated code.

Every read consumes exactly the bytes it declares and raises a
DeserializeError subclass on failure. Every write validates the value first
and raises SerializeError when it cannot be represented.
"""

import struct
from dataclasses import dataclass
from typing import Any

from .cursor import Reader, Writer
from .errors import Custom, InvalidDiscriminant, InvalidUtf8, SerializeError, UnexpectedEof

FLOAT_FORMATS = {4: "f", 8: "d"}

ENDIAN_PREFIX = {"big": ">", "little": "<"}


def _int_range(bits: int, signed: bool) -> tuple[int, int]:
    if signed:
        return -(1 << (bits - 1)), (1 << (bits - 1)) - 1
    return 0, (1 << bits) - 1


def read_int(reader: Reader, width: int, signed: bool = False, endian: str = "big") -> int:
    """Read a fixed-width integer of `width` bytes."""
    return int.from_bytes(reader.read_bytes(width), endian, signed=signed)


def write_int(
    writer: Writer, value: int, width: int, signed: bool = False, endian: str = "big"
) -> None:
    low, high = _int_range(width * 8, signed)
    if not low <= value <= high:
        raise SerializeError(f"{value} does not fit in a {width}-byte integer")
    writer.write(int(value).to_bytes(width, endian, signed=signed))


def read_float(reader: Reader, width: int, endian: str = "big") -> float:
    fmt = ENDIAN_PREFIX[endian] + FLOAT_FORMATS[width]
    return struct.unpack(fmt, reader.read_bytes(width))[0]


def write_float(writer: Writer, value: float, width: int, endian: str = "big") -> None:
    fmt = ENDIAN_PREFIX[endian] + FLOAT_FORMATS[width]
    try:
        writer.write(struct.pack(fmt, value))
    except (struct.error, OverflowError) as e:
        raise SerializeError(f"{value!r} is not a valid {width}-byte float") from e


def read_bool(reader: Reader) -> bool:
    raw = reader.read_bytes(1)[0]
    if raw > 1:
        raise InvalidDiscriminant(raw, "bool")
    return raw == 1


def write_bool(writer: Writer, value: bool) -> None:
    writer.write(b"\x01" if value else b"\x00")


def read_varint(reader: Reader, bits: int = 32, signed: bool = True) -> int:
    """Read a little-endian base-128 integer of at most `bits` bits.

    Signed values use two's complement within `bits`, as ProtoDef's varint
    and varlong do.
    """
    max_bytes = (bits + 6) // 7
    result = 0
    for index in range(max_bytes):
        byte = reader.read_bytes(1)[0]
        result |= (byte & 0x7F) << (7 * index)
        if not byte & 0x80:
            if index and not byte:
                raise Custom("varint has a redundant trailing byte")
            if result >> bits:
                raise Custom(f"varint does not fit in {bits} bits")
            break
    else:
        raise Custom(f"varint longer than {max_bytes} bytes")

    if signed and result >> (bits - 1):
        result -= 1 << bits
    return result


def write_varint(writer: Writer, value: int, bits: int = 32, signed: bool = True) -> None:
    low, high = _int_range(bits, signed)
    if not low <= value <= high:
        raise SerializeError(f"{value} does not fit in a {bits}-bit varint")

    value &= (1 << bits) - 1
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            break
    writer.write(out)


def _decode_text(raw: bytes, encoding: str) -> str:
    try:
        return raw.decode(encoding)
    except (UnicodeDecodeError, LookupError) as e:
        raise InvalidUtf8(encoding, str(e)) from e


def _encode_text(value: str, encoding: str) -> bytes:
    try:
        return value.encode(encoding)
    except (UnicodeEncodeError, LookupError) as e:
        raise SerializeError(f"{value!r} cannot be encoded as {encoding}") from e


def read_cstring(reader: Reader, encoding: str = "utf-8") -> str:
    """Read a null-terminated string."""
    end = reader.find(0)
    if end < 0:
        raise UnexpectedEof(reader.remaining + 1, reader.remaining, reader.offset)
    raw = reader.read_bytes(end)
    reader.read_bytes(1)
    return _decode_text(raw, encoding)


def write_cstring(writer: Writer, value: str, encoding: str = "utf-8") -> None:
    raw = _encode_text(value, encoding)
    if 0 in raw:
        raise SerializeError("null-terminated string contains a null byte")
    writer.write(raw)
    writer.write(b"\x00")


@dataclass(frozen=True, slots=True)
class PrimitiveCodec:
    """The encoding parameters of one native type."""

    kind: str
    width: int = 0
    signed: bool = False
    endian: str = "big"

    def read(self, reader: Reader) -> Any:
        if self.kind == "int":
            return read_int(reader, self.width, self.signed, self.endian)
        if self.kind == "varint":
            return read_varint(reader, self.width * 8, self.signed)
        if self.kind == "float":
            return read_float(reader, self.width, self.endian)
        if self.kind == "bool":
            return read_bool(reader)
        if self.kind == "cstring":
            return read_cstring(reader)
        if self.kind == "void":
            return None
        raise ValueError(f"Unknown primitive kind: {self.kind}")

    def write(self, writer: Writer, value: Any) -> None:
        if self.kind == "int":
            write_int(writer, value, self.width, self.signed, self.endian)
        elif self.kind == "varint":
            write_varint(writer, value, self.width * 8, self.signed)
        elif self.kind == "float":
            write_float(writer, value, self.width, self.endian)
        elif self.kind == "bool":
            write_bool(writer, value)
        elif self.kind == "cstring":
            write_cstring(writer, value)
        elif self.kind == "void":
            pass
        else:
            raise ValueError(f"Unknown primitive kind: {self.kind}")


def read_length(reader: Reader, length: PrimitiveCodec) -> int:
    count = length.read(reader)
    if count < 0:
        raise Custom(f"Negative length {count}")
    return count


def write_length(writer: Writer, count: int, length: PrimitiveCodec) -> None:
    try:
        length.write(writer, count)
    except SerializeError as e:
        raise SerializeError(f"length {count} does not fit its length field") from e


def read_length_prefixed_string(
    reader: Reader, length: PrimitiveCodec, encoding: str = "utf-8"
) -> str:
    """Read a string preceded by its byte length encoded with `length`."""
    count = read_length(reader, length)
    return _decode_text(reader.read_bytes(count), encoding)


def write_length_prefixed_string(
    writer: Writer, value: str, length: PrimitiveCodec, encoding: str = "utf-8"
) -> None:
    raw = _encode_text(value, encoding)
    write_length(writer, len(raw), length)
    writer.write(raw)


def read_buffer(reader: Reader, length: PrimitiveCodec) -> bytes:
    return reader.read_bytes(read_length(reader, length))


def write_buffer(writer: Writer, value: bytes, length: PrimitiveCodec) -> None:
    write_length(writer, len(value), length)
    writer.write(value)


@dataclass(frozen=True, slots=True)
class BitFieldSpec:
    """Layout of a bit-packed group.

    With order "msb" the first field occupies the most significant bits and
    the packed word is stored big-endian. With order "lsb" the first field
    occupies the least significant bits and the word is stored little-endian.
    Bits not covered by any field are padding and must be zero.
    """

    fields: tuple[tuple[str, int, bool], ...]
    total_bits: int
    order: str = "msb"


def _bit_shifts(spec: BitFieldSpec) -> tuple[list[int], int]:
    """Return the shift of each field and the width of the padding."""
    used = sum(width for _, width, _ in spec.fields)
    shifts: list[int] = []
    if spec.order == "msb":
        shift = spec.total_bits
        for _, width, _ in spec.fields:
            shift -= width
            shifts.append(shift)
    else:
        shift = 0
        for _, width, _ in spec.fields:
            shifts.append(shift)
            shift += width
    return shifts, spec.total_bits - used


def read_bitfields(reader: Reader, spec: BitFieldSpec) -> list[int | bool]:
    """Read a bit-packed group and return the field values in declared order.

    Unsigned one-bit fields are returned as bools.
    """
    byte_order = "big" if spec.order == "msb" else "little"
    word = int.from_bytes(reader.read_bytes(spec.total_bits // 8), byte_order)
    shifts, padding = _bit_shifts(spec)

    if padding:
        if spec.order == "msb":
            pad_bits = word & ((1 << padding) - 1)
        else:
            pad_bits = word >> (spec.total_bits - padding)
        if pad_bits:
            raise Custom("non-zero padding bits in bitfield")

    values: list[int | bool] = []
    for (_, width, signed), shift in zip(spec.fields, shifts):
        value = (word >> shift) & ((1 << width) - 1)
        if signed and value >> (width - 1):
            value -= 1 << width
        values.append(bool(value) if width == 1 and not signed else value)
    return values


def write_bitfields(writer: Writer, spec: BitFieldSpec, values: list[Any]) -> None:
    if len(values) != len(spec.fields):
        raise SerializeError(f"expected {len(spec.fields)} bitfield values, got {len(values)}")

    shifts, _ = _bit_shifts(spec)
    word = 0
    for (name, width, signed), shift, value in zip(spec.fields, shifts, values):
        value = int(value)
        low, high = _int_range(width, signed)
        if not low <= value <= high:
            raise SerializeError(f"{name}={value} does not fit in {width} bits")
        word |= (value & ((1 << width) - 1)) << shift

    byte_order = "big" if spec.order == "msb" else "little"
    writer.write(word.to_bytes(spec.total_bits // 8, byte_order))


# Shortcuts for the default ProtoDef natives
U8 = PrimitiveCodec("int", 1)
U16 = PrimitiveCodec("int", 2)
U32 = PrimitiveCodec("int", 4)
U64 = PrimitiveCodec("int", 8)
I8 = PrimitiveCodec("int", 1, True)
I16 = PrimitiveCodec("int", 2, True)
I32 = PrimitiveCodec("int", 4, True)
I64 = PrimitiveCodec("int", 8, True)
VARINT = PrimitiveCodec("varint", 4, True)
VARLONG = PrimitiveCodec("varint", 8, True)


def read_u8(reader: Reader) -> int:
    return read_int(reader, 1)


def write_u8(writer: Writer, value: int) -> None:
    write_int(writer, value, 1)


def read_u16(reader: Reader) -> int:
    return read_int(reader, 2)


def write_u16(writer: Writer, value: int) -> None:
    write_int(writer, value, 2)


def read_u32(reader: Reader) -> int:
    return read_int(reader, 4)


def write_u32(writer: Writer, value: int) -> None:
    write_int(writer, value, 4)


def read_i32(reader: Reader) -> int:
    return read_int(reader, 4, True)


def write_i32(writer: Writer, value: int) -> None:
    write_int(writer, value, 4, True)
