"""Sequential byte cursors used by generated encode/decode routines."""

from collections.abc import Iterator
from contextlib import contextmanager

from .errors import Custom, RecursionLimitExceeded, TrailingData, UnexpectedEof

DEFAULT_MAX_DEPTH = 64
DEFAULT_MAX_ITEMS = 1 << 20


class Reader:
    """Read-only cursor over a byte buffer.

    A reader is owned by the decode call in progress. Reads never go past the
    end of the buffer: a short read raises UnexpectedEof and leaves the
    offset untouched.
    """

    def __init__(
        self,
        data: bytes | bytearray | memoryview,
        offset: int = 0,
        *,
        max_depth: int = DEFAULT_MAX_DEPTH,
        max_items: int = DEFAULT_MAX_ITEMS,
    ) -> None:
        self._data = bytes(data)
        self.offset = offset
        self.depth = 0
        self.max_depth = max_depth
        self.max_items = max_items

    @property
    def remaining(self) -> int:
        return len(self._data) - self.offset

    def require(self, size: int) -> None:
        """Fail unless at least `size` bytes are left."""
        if not isinstance(size, int):
            raise Custom(f"Length {size!r} is not an integer")
        if size < 0:
            raise Custom(f"Negative length {size}")
        if size > self.remaining:
            raise UnexpectedEof(size, self.remaining, self.offset)

    def require_items(self, count: int, item_size: int) -> None:
        """Check that `count` items of at least `item_size` bytes can be read.

        Zero-sized items cannot be checked against the input, so their count
        is bounded by `max_items` instead.
        """
        if not isinstance(count, int):
            raise Custom(f"Item count {count!r} is not an integer")
        if count < 0:
            raise Custom(f"Negative item count {count}")
        if item_size == 0:
            if count > self.max_items:
                raise Custom(f"Item count {count} exceeds the limit of {self.max_items}")
            return
        self.require(count * item_size)

    def read_bytes(self, size: int) -> bytes:
        self.require(size)
        start = self.offset
        self.offset += size
        return bytes(self._data[start : self.offset])

    def read_rest(self) -> bytes:
        return self.read_bytes(self.remaining)

    def find(self, byte: int) -> int:
        """Return the offset of the next `byte` relative to the cursor, or -1."""
        index = self._data.find(bytes((byte,)), self.offset)
        return index - self.offset if index >= 0 else -1

    @contextmanager
    def nested(self) -> Iterator[None]:
        """Track one level of struct/switch nesting."""
        if self.depth >= self.max_depth:
            raise RecursionLimitExceeded(self.max_depth)
        self.depth += 1
        try:
            yield
        finally:
            self.depth -= 1

    def finish(self) -> None:
        """Fail if any input is left over."""
        if self.remaining:
            raise TrailingData(self.remaining)


class Writer:
    """Append-only output buffer."""

    def __init__(self) -> None:
        self._buf = bytearray()

    def __len__(self) -> int:
        return len(self._buf)

    def write(self, data: bytes | bytearray | memoryview) -> None:
        self._buf.extend(data)

    def getvalue(self) -> bytes:
        return bytes(self._buf)
