"""Error taxonomy for protodef generated code."""

from typing import Any


class DeserializeError(RuntimeError):
    """Base exception for failures while decoding a byte stream."""


class UnexpectedEof(DeserializeError):
    """Raised when the input ends before a value is complete."""

    def __init__(self, needed: int, remaining: int, offset: int) -> None:
        super().__init__(
            f"Unexpected end of input at offset {offset}: "
            f"needed {needed} bytes, {remaining} remaining"
        )
        self.needed = needed
        self.remaining = remaining
        self.offset = offset


class InvalidDiscriminant(DeserializeError):
    """Raised when a decoded value does not match any known case."""

    def __init__(self, value: Any, type_name: str) -> None:
        super().__init__(f"Invalid discriminant {value!r} for {type_name}")
        self.value = value
        self.type_name = type_name


class InvalidUtf8(DeserializeError):
    """Raised when string bytes cannot be decoded with the declared encoding."""

    def __init__(self, encoding: str, reason: str) -> None:
        super().__init__(f"Invalid {encoding} string: {reason}")
        self.encoding = encoding


class TrailingData(DeserializeError):
    """Raised when bytes remain after a complete top-level value."""

    def __init__(self, count: int) -> None:
        super().__init__(f"{count} trailing bytes after decoded value")
        self.count = count


class RecursionLimitExceeded(DeserializeError):
    """Raised when nested decoding goes deeper than the reader allows."""

    def __init__(self, limit: int) -> None:
        super().__init__(f"Nesting exceeds the maximum depth of {limit}")
        self.limit = limit


class Custom(DeserializeError):
    """Raised for decode failures that have no dedicated variant."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class SerializeError(RuntimeError):
    """Raised when a caller-supplied value cannot be encoded."""
