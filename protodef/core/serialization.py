"""Base classes for generated protodef types."""

from enum import IntEnum
from typing import Any, Self

from .cursor import DEFAULT_MAX_DEPTH, Reader, Writer
from .errors import InvalidDiscriminant


def encode(codec: Any, value: Any, **params: Any) -> bytes:
    """Encode `value` with a generated codec class and return the bytes."""
    writer = Writer()
    codec.write_to(writer, value, **params)
    return writer.getvalue()


def decode(
    codec: Any, data: bytes | bytearray | memoryview, *, max_depth: int = DEFAULT_MAX_DEPTH, **params: Any
) -> Any:
    """Decode exactly one value from `data`.

    Raises TrailingData if bytes remain after the value.
    """
    reader = Reader(data, max_depth=max_depth)
    value = codec.read_from(reader, **params)
    reader.finish()
    return value


class Codec:
    """Base class for generated codec classes.

    Generated subclasses implement read_from/write_to. Switches and arrays
    whose decoding depends on a sibling value take it as a keyword parameter
    (`discriminant` or `count`).
    """

    @classmethod
    def read_from(cls, reader: Reader, **params: Any) -> Any:
        raise NotImplementedError("read_from() must be implemented by generated code")

    @classmethod
    def write_to(cls, writer: Writer, value: Any, **params: Any) -> None:
        raise NotImplementedError("write_to() must be implemented by generated code")

    @classmethod
    def encode_value(cls, value: Any, **params: Any) -> bytes:
        return encode(cls, value, **params)

    @classmethod
    def decode_value(cls, data: bytes | bytearray | memoryview, **params: Any) -> Any:
        return decode(cls, data, **params)


class Struct(Codec):
    """Base class for generated container and bitfield types.

    Subclasses are @dataclass decorated.

    Example:
        @dataclass
        class Position(Struct):
            x: int
            y: int
    """

    def pack(self) -> bytes:
        """Pack this struct to bytes."""
        return encode(type(self), self)

    @classmethod
    def unpack(cls, data: bytes | bytearray | memoryview, offset: int = 0) -> tuple[Self, int]:
        """Unpack a struct from bytes.

        Args:
            data: The bytes to unpack from.
            offset: Starting offset in data.

        Returns:
            Tuple of (instance, bytes_consumed).
        """
        reader = Reader(data, offset)
        instance = cls.read_from(reader)
        return instance, reader.offset - offset

    @classmethod
    def from_bytes(cls, data: bytes | bytearray | memoryview) -> Self:
        """Unpack a struct that must span all of `data`."""
        return decode(cls, data)


class ProtocolEnum(IntEnum):
    """Base class for generated enums.

    Example:
        class Direction(ProtocolEnum):
            Up = 0
            Down = 1
    """

    @classmethod
    def from_code(cls, code: int) -> Self:
        try:
            return cls(code)
        except ValueError:
            raise InvalidDiscriminant(code, cls.__name__) from None

    def pack(self) -> bytes:
        return encode(type(self), self)

    @classmethod
    def unpack(cls, data: bytes | bytearray | memoryview, offset: int = 0) -> tuple[Self, int]:
        reader = Reader(data, offset)
        member = cls.read_from(reader)
        return member, reader.offset - offset

    @classmethod
    def read_from(cls, reader: Reader) -> Self:
        raise NotImplementedError("read_from() must be implemented by generated code")

    @classmethod
    def write_to(cls, writer: Writer, value: Self) -> None:
        raise NotImplementedError("write_to() must be implemented by generated code")
