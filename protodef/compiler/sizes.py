"""Size calculation for resolved protocol types."""

from dataclasses import dataclass
from enum import StrEnum, auto

from .resolver import Resolution
from .types import (
    Alias,
    Array,
    BitFields,
    Buffer,
    Enum,
    FieldLength,
    FixedLength,
    LengthPrefixedString,
    Mapper,
    Option,
    PrefixedLength,
    Primitive,
    PrimitiveKind,
    Struct,
    Switch,
    TypeId,
)


class SizeKind(StrEnum):
    """Classification of size characteristics."""

    FIXED = auto()  # Min == Max
    BOUNDED = auto()  # Variable with a calculable max
    UNBOUNDED = auto()  # Rest-of-input, field-counted, cstring or recursive


@dataclass(frozen=True)
class SizeInfo:
    """Encoded size range of a type, in bytes."""

    min_size: int
    max_size: int | None  # None means unbounded
    kind: SizeKind

    @property
    def is_fixed(self) -> bool:
        return self.kind == SizeKind.FIXED

    @property
    def is_bounded(self) -> bool:
        return self.kind in (SizeKind.FIXED, SizeKind.BOUNDED)


@dataclass(frozen=True)
class ProtocolSizeInfo:
    """Size information for an entire protocol."""

    types: dict[TypeId, SizeInfo]
    top_level: dict[TypeId, SizeInfo]  # Declared under "types", natives excluded

    min_message_size: int
    max_message_size: int | None  # None if any top-level type is unbounded


def _varint_bytes(bits: int) -> int:
    return (bits + 6) // 7


def _max_count(p: Primitive) -> int:
    """Largest non-negative value a length field can hold."""
    bits = p.width * 8
    if p.signed:
        bits -= 1
    return (1 << bits) - 1


def _add(a: int | None, b: int | None) -> int | None:
    if a is None or b is None:
        return None
    return a + b


class SizeCalculator:
    """Calculate sizes for resolved types.

    Minimum sizes never depend on the element behind an indirection point, so
    they are computed by plain recursion. Members of a recursive group have
    no maximum.
    """

    def __init__(self, resolution: Resolution):
        self.resolution = resolution
        self.protocol = resolution.protocol
        self._recursive = set(resolution.recursive)
        self._min: dict[TypeId, int] = {}
        self._max: dict[TypeId, int | None] = {}

    def _primitive(self, type_id: TypeId) -> Primitive | None:
        t = self.resolution.resolve(type_id)
        return t if isinstance(t, Primitive) else None

    def calc_primitive_size(self, p: Primitive) -> SizeInfo:
        """Calculate size for a primitive type."""
        if p.kind in (PrimitiveKind.INT, PrimitiveKind.FLOAT, PrimitiveKind.BOOL):
            return SizeInfo(p.width, p.width, SizeKind.FIXED)
        if p.kind == PrimitiveKind.VARINT:
            return SizeInfo(1, _varint_bytes(p.width * 8), SizeKind.BOUNDED)
        if p.kind == PrimitiveKind.VOID:
            return SizeInfo(0, 0, SizeKind.FIXED)
        if p.kind == PrimitiveKind.CSTRING:
            return SizeInfo(1, None, SizeKind.UNBOUNDED)
        raise ValueError(f"Unknown primitive kind: {p.kind}")

    def min_size(self, type_id: TypeId) -> int:
        if type_id not in self._min:
            self._min[type_id] = self._calc_min(type_id)
        return self._min[type_id]

    def max_size(self, type_id: TypeId) -> int | None:
        if type_id not in self._max:
            target = self.resolution.target(type_id)
            self._max[type_id] = None if target in self._recursive else self._calc_max(target)
        return self._max[type_id]

    def _length_min(self, length) -> int:
        if isinstance(length, PrefixedLength):
            return self.min_size(length.type)
        return 0

    def _calc_min(self, type_id: TypeId) -> int:
        t = self.protocol[type_id]
        if isinstance(t, Alias):
            return self.min_size(t.target)
        if isinstance(t, Primitive):
            return self.calc_primitive_size(t).min_size
        if isinstance(t, Struct):
            return sum(self.min_size(f.type) for f in t.fields if f.presence is None)
        if isinstance(t, (Enum, Mapper)):
            return self.min_size(t.underlying)
        if isinstance(t, Switch):
            branches = [case.type for case in t.cases]
            if t.default is not None:
                branches.append(t.default)
            return min((self.min_size(b) for b in branches), default=0)
        if isinstance(t, BitFields):
            return t.total_width // 8
        if isinstance(t, Array):
            if isinstance(t.length, FixedLength):
                return t.length.count * self.min_size(t.element) if t.length.count else 0
            return self._length_min(t.length)
        if isinstance(t, Buffer):
            if isinstance(t.length, FixedLength):
                return t.length.count
            return self._length_min(t.length)
        if isinstance(t, LengthPrefixedString):
            return self.min_size(t.length)
        if isinstance(t, Option):
            return 1
        raise ValueError(f"Cannot size {type_id}")

    def _prefixed_max(self, length_type: TypeId, item_max: int | None) -> int | None:
        p = self._primitive(length_type)
        if p is None or item_max is None:
            return None
        return _add(self.max_size(length_type), _max_count(p) * item_max)

    def _calc_max(self, type_id: TypeId) -> int | None:
        t = self.protocol[type_id]
        if isinstance(t, Primitive):
            return self.calc_primitive_size(t).max_size
        if isinstance(t, Struct):
            total: int | None = 0
            for f in t.fields:
                total = _add(total, self.max_size(f.type))
            return total
        if isinstance(t, (Enum, Mapper)):
            return self.max_size(t.underlying)
        if isinstance(t, Switch):
            branches = [case.type for case in t.cases]
            if t.default is not None:
                branches.append(t.default)
            sizes = [self.max_size(b) for b in branches]
            if any(s is None for s in sizes):
                return None
            return max(sizes, default=0)
        if isinstance(t, BitFields):
            return t.total_width // 8
        if isinstance(t, (Array, Buffer, LengthPrefixedString)):
            item_max = self.max_size(t.element) if isinstance(t, Array) else 1
            length = t.length
            if isinstance(t, LengthPrefixedString):
                return self._prefixed_max(t.length, item_max)
            if isinstance(length, FixedLength):
                if length.count == 0:
                    return 0
                return None if item_max is None else length.count * item_max
            if isinstance(length, PrefixedLength):
                return self._prefixed_max(length.type, item_max)
            return None
        if isinstance(t, Option):
            return _add(1, self.max_size(t.element))
        raise ValueError(f"Cannot size {type_id}")

    def calc_type_size(self, type_id: TypeId) -> SizeInfo:
        """Calculate size for any resolved type."""
        min_size = self.min_size(type_id)
        max_size = self.max_size(type_id)
        if max_size is None:
            return SizeInfo(min_size, None, SizeKind.UNBOUNDED)
        if max_size == min_size:
            return SizeInfo(min_size, max_size, SizeKind.FIXED)
        return SizeInfo(min_size, max_size, SizeKind.BOUNDED)

    def calc_protocol_info(self) -> ProtocolSizeInfo:
        """Calculate size information for every resolved type."""
        types: dict[TypeId, SizeInfo] = {}
        top_level: dict[TypeId, SizeInfo] = {}
        for group in self.resolution.order:
            for type_id in group:
                size = self.calc_type_size(type_id)
                types[type_id] = size
                declared = self.protocol.locations.get(type_id) == f"types.{type_id}"
                if declared and not isinstance(self.protocol[type_id], Primitive):
                    top_level[type_id] = size

        # Report in protocol order rather than lowering order
        types = {t: types[t] for t in self.protocol.types if t in types}
        top_level = {t: top_level[t] for t in self.protocol.types if t in top_level}

        if top_level:
            min_msg = min(s.min_size for s in top_level.values())
            max_sizes = [s.max_size for s in top_level.values()]
            if all(m is not None for m in max_sizes):
                max_msg: int | None = max(m for m in max_sizes if m is not None)
            else:
                max_msg = None
        else:
            min_msg = 0
            max_msg = 0

        return ProtocolSizeInfo(
            types=types,
            top_level=top_level,
            min_message_size=min_msg,
            max_message_size=max_msg,
        )


def calculate_sizes(resolution: Resolution) -> ProtocolSizeInfo:
    """Calculate size information for a resolved protocol."""
    return SizeCalculator(resolution).calc_protocol_info()
