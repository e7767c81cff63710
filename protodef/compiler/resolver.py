"""Reference resolution, cycle detection and lowering order."""

import logging
from collections import Counter, deque
from dataclasses import dataclass, field

from .config import CompilerOptions
from .diagnostics import DiagnosticKind, Diagnostics
from .types import (
    Alias,
    Array,
    Buffer,
    Enum,
    FieldLength,
    LengthPrefixedString,
    Mapper,
    Placeholder,
    PrefixedLength,
    Presence,
    Primitive,
    Protocol,
    Struct,
    Type,
    TypeId,
    is_contextual,
    references,
)

logger = logging.getLogger(__name__)


class _BudgetExceeded(Exception):
    def __init__(self, type_id: TypeId) -> None:
        super().__init__(type_id)
        self.type_id = type_id


class _Budget:
    """Per-TypeId revisit counter for one traversal.

    The first visit of a TypeId is free, every later one is a revisit.
    """

    def __init__(self, limit: int) -> None:
        self.limit = limit
        self._visits: Counter[TypeId] = Counter()

    def spend(self, type_id: TypeId) -> None:
        self._visits[type_id] += 1
        if self._visits[type_id] > self.limit + 1:
            raise _BudgetExceeded(type_id)


@dataclass
class Resolution:
    """A protocol whose references have been checked.

    order: groups of TypeIds in lowering order, dependencies first. A group
        with more than one member (or a self-referencing member) is recursive
        through indirection and is lowered with forward declarations.
    recursive: TypeIds that belong to a recursive group.
    unresolved: TypeIds that must not be lowered, in protocol order.
    usable: False when the dependency graph could not be built at all.
    """

    protocol: Protocol
    order: list[list[TypeId]] = field(default_factory=list)
    recursive: list[TypeId] = field(default_factory=list)
    unresolved: list[TypeId] = field(default_factory=list)
    usable: bool = True

    def target(self, type_id: TypeId) -> TypeId:
        """Follow aliases to the TypeId that defines the layout."""
        seen: set[TypeId] = set()
        while isinstance(self.protocol.types.get(type_id), Alias) and type_id not in seen:
            seen.add(type_id)
            type_id = self.protocol.types[type_id].target
        return type_id

    def resolve(self, type_id: TypeId) -> Type:
        return self.protocol[self.target(type_id)]

    def is_resolved(self, type_id: TypeId) -> bool:
        return type_id in self.protocol and type_id not in self.unresolved


class Resolver:
    """Resolve one protocol. Use resolve() rather than this class directly."""

    def __init__(self, protocol: Protocol, diagnostics: Diagnostics, options: CompilerOptions) -> None:
        self.protocol = protocol
        self.diagnostics = diagnostics
        self.options = options
        self._unresolved: dict[TypeId, None] = {}
        self._edges: dict[TypeId, list[tuple[TypeId, bool]]] = {}

    def run(self) -> Resolution:
        if self.protocol.broken:
            logger.debug("protocol document is unusable, skipping resolution")
            self.protocol.freeze()
            return Resolution(self.protocol, usable=False)

        self._add_natives()
        self._build_edges()
        components = self._components()
        recursive = self._check_cycles(components)
        self._check_context()
        self._propagate()

        order: list[list[TypeId]] = []
        for component in components:
            group = [t for t in component if t not in self._unresolved]
            if group:
                order.append(group)

        unresolved = [t for t in self.protocol.types if t in self._unresolved]
        self.protocol.freeze()
        logger.debug(
            "resolved %d types in %d groups, %d unresolved",
            sum(len(g) for g in order),
            len(order),
            len(unresolved),
        )
        return Resolution(
            self.protocol,
            order=order,
            recursive=[t for t in recursive if t not in self._unresolved],
            unresolved=unresolved,
        )

    def _mark(self, type_id: TypeId) -> None:
        self._unresolved[type_id] = None

    def _location(self, type_id: TypeId) -> str:
        return self.protocol.locations.get(type_id, f"types.{type_id}")

    def _add_natives(self) -> None:
        """Define every referenced native that was not declared."""
        for t in list(self.protocol.types.values()):
            for ref, _ in references(t):
                native = self.options.natives.get(ref)
                if ref not in self.protocol and native is not None:
                    primitive = Primitive(ref, native.kind, native.width, native.signed, native.endian)
                    self.protocol.define(ref, primitive, f"natives.{ref}")

    def _build_edges(self) -> None:
        for type_id, t in self.protocol.types.items():
            if isinstance(t, Placeholder):
                self._mark(type_id)
            edges = []
            for ref, indirect in references(t):
                if ref not in self.protocol:
                    self.diagnostics.error(
                        DiagnosticKind.UNKNOWN_TYPE_REFERENCE,
                        f"{type_id} refers to unknown type '{ref}'",
                        self._location(type_id),
                    )
                    self._mark(type_id)
                    continue
                edges.append((ref, indirect))
            self._edges[type_id] = edges

    def _limit_exceeded(self, type_id: TypeId) -> None:
        self.diagnostics.error(
            DiagnosticKind.RESOLUTION_LIMIT_EXCEEDED,
            f"resolution of {type_id} exceeded {self.options.max_revisits} revisits",
            self._location(type_id),
        )
        self._mark(type_id)

    def _components(self) -> list[list[TypeId]]:
        """Strongly connected components in dependency-first order (Tarjan).

        Iterative, visiting nodes in protocol order and edges in declared order
        so the result is deterministic.
        """
        budget = _Budget(self.options.max_revisits)
        index: dict[TypeId, int] = {}
        lowlink: dict[TypeId, int] = {}
        on_stack: set[TypeId] = set()
        stack: list[TypeId] = []
        components: list[list[TypeId]] = []
        counter = 0

        for root in self.protocol.types:
            if root in index:
                continue
            work: list[tuple[TypeId, int]] = [(root, 0)]
            while work:
                node, edge_index = work.pop()
                if edge_index == 0:
                    index[node] = lowlink[node] = counter
                    counter += 1
                    stack.append(node)
                    on_stack.add(node)
                    budget.spend(node)

                edges = self._edges[node]
                recurse = False
                while edge_index < len(edges):
                    child = edges[edge_index][0]
                    edge_index += 1
                    if child not in index:
                        work.append((node, edge_index))
                        work.append((child, 0))
                        recurse = True
                        break
                    if child in on_stack:
                        try:
                            budget.spend(child)
                        except _BudgetExceeded:
                            if child not in self._unresolved:
                                self._limit_exceeded(child)
                        lowlink[node] = min(lowlink[node], index[child])
                if recurse:
                    continue

                if work:
                    parent = work[-1][0]
                    lowlink[parent] = min(lowlink[parent], lowlink[node])

                if lowlink[node] == index[node]:
                    component: list[TypeId] = []
                    while True:
                        member = stack.pop()
                        on_stack.discard(member)
                        component.append(member)
                        if member == node:
                            break
                    component.sort(key=self.protocol.index)
                    components.append(component)

        return components

    def _direct_cycle(self, members: list[TypeId]) -> list[TypeId] | None:
        """Find a cycle inside `members` using only direct edges."""
        inside = set(members)
        state: dict[TypeId, int] = {}  # 1 = on path, 2 = done
        for start in members:
            if start in state:
                continue
            path: list[TypeId] = []
            work: list[tuple[TypeId, int]] = [(start, 0)]
            while work:
                node, edge_index = work.pop()
                if edge_index == 0:
                    state[node] = 1
                    path.append(node)
                edges = [ref for ref, indirect in self._edges[node] if not indirect and ref in inside]
                if edge_index < len(edges):
                    child = edges[edge_index]
                    work.append((node, edge_index + 1))
                    if state.get(child) == 1:
                        return path[path.index(child) :] + [child]
                    if child not in state:
                        work.append((child, 0))
                    continue
                state[node] = 2
                path.pop()
        return None

    def _check_cycles(self, components: list[list[TypeId]]) -> list[TypeId]:
        recursive: list[TypeId] = []
        for component in components:
            head = component[0]
            self_loop = any(ref == head for ref, _ in self._edges[head])
            if len(component) == 1 and not self_loop:
                continue

            cycle = self._direct_cycle(component)
            if cycle is None:
                recursive.extend(component)
                continue

            self.diagnostics.error(
                DiagnosticKind.CYCLIC_TYPE_WITHOUT_INDIRECTION,
                "cycle without an option or variable-length array: " + " -> ".join(cycle),
                self._location(cycle[0]),
            )
            for type_id in component:
                self._mark(type_id)
        return recursive

    def _follow(self, type_id: TypeId) -> TypeId | None:
        """Follow an alias chain, or return None if it cannot be followed."""
        budget = _Budget(self.options.max_revisits)
        while True:
            if type_id in self._unresolved:
                return None
            try:
                budget.spend(type_id)
            except _BudgetExceeded:
                self._limit_exceeded(type_id)
                return None
            t = self.protocol.types.get(type_id)
            if not isinstance(t, Alias):
                return type_id
            type_id = t.target

    def _not_integer(self, type_id: TypeId) -> bool:
        """Check if `type_id` is known to be something other than an integer primitive."""
        target = self._follow(type_id) if type_id in self.protocol else None
        if target is None:
            return False
        t = self.protocol.types[target]
        return not (isinstance(t, Primitive) and t.is_integer)

    def _check_context(self) -> None:
        for type_id, t in self.protocol.types.items():
            if type_id in self._unresolved:
                continue
            location = self._location(type_id)

            def fail(kind: DiagnosticKind, message: str) -> None:
                self.diagnostics.error(kind, message, location)
                self._mark(type_id)

            if isinstance(t, Struct):
                self._check_struct(type_id, t, fail)
            elif not isinstance(t, Alias) and any(self._contextual(ref) for ref, _ in self._edges[type_id]):
                fail(
                    DiagnosticKind.MALFORMED_SPEC_VALUE,
                    f"{type_id} uses a switch or field-counted type outside of a container",
                )

            length = None
            if isinstance(t, LengthPrefixedString):
                length = t.length
            elif isinstance(t, (Array, Buffer)) and isinstance(t.length, PrefixedLength):
                length = t.length.type
            if length is not None and self._not_integer(length):
                fail(DiagnosticKind.MALFORMED_SPEC_VALUE, f"length type '{length}' of {type_id} is not an integer")

            if isinstance(t, (Enum, Mapper)) and self._not_integer(t.underlying):
                fail(
                    DiagnosticKind.MALFORMED_SPEC_VALUE,
                    f"underlying type '{t.underlying}' of {type_id} is not an integer",
                )

    def _contextual(self, type_id: TypeId) -> bool:
        target = self._follow(type_id)
        return target is not None and is_contextual(self.protocol.types[target])

    def _check_struct(self, type_id: TypeId, struct: Struct, fail) -> None:
        earlier: dict[str, TypeId] = {}
        presences: dict[str, Presence | None] = {}
        for f in struct.fields:
            if f.presence is not None and f.presence.field not in earlier:
                fail(
                    DiagnosticKind.UNKNOWN_FIELD_REFERENCE,
                    f"field '{f.name}' of {type_id} is conditional on '{f.presence.field}', "
                    "which is not an earlier field",
                )

            target = self._follow(f.type) if f.type in self.protocol else None
            t = self.protocol.types.get(target) if target is not None else None
            if t is not None and is_contextual(t):
                sibling = t.length.field if isinstance(t, (Array, Buffer)) else t.compare_to
                if sibling not in earlier:
                    fail(
                        DiagnosticKind.UNKNOWN_FIELD_REFERENCE,
                        f"field '{f.name}' of {type_id} depends on '{sibling}', which is not an earlier field",
                    )
                elif isinstance(t, (Array, Buffer)) and isinstance(t.length, FieldLength):
                    if self._not_integer(earlier[sibling]):
                        fail(
                            DiagnosticKind.MALFORMED_SPEC_VALUE,
                            f"count field '{sibling}' of {type_id} is not an integer",
                        )
                    elif presences[sibling] is not None and presences[sibling] != f.presence:
                        fail(
                            DiagnosticKind.MALFORMED_SPEC_VALUE,
                            f"count field '{sibling}' of {type_id} may be absent when '{f.name}' is present",
                        )
            earlier[f.name] = f.type
            presences[f.name] = f.presence

    def _propagate(self) -> None:
        """Mark every type that depends on an unresolved type as unresolved."""
        dependents: dict[TypeId, list[TypeId]] = {t: [] for t in self.protocol.types}
        for type_id, edges in self._edges.items():
            for ref, _ in edges:
                dependents[ref].append(type_id)

        queue = deque(t for t in self.protocol.types if t in self._unresolved)
        while queue:
            type_id = queue.popleft()
            for dependent in dependents[type_id]:
                if dependent in self._unresolved:
                    continue
                self.diagnostics.warning(
                    DiagnosticKind.UNRESOLVED_DEPENDENCY,
                    f"{dependent} is skipped because it depends on unresolved {type_id}",
                    self._location(dependent),
                )
                self._mark(dependent)
                queue.append(dependent)


def resolve(
    protocol: Protocol,
    diagnostics: Diagnostics,
    options: CompilerOptions | None = None,
) -> Resolution:
    """Resolve the references of a parsed protocol and compute its lowering order."""
    return Resolver(protocol, diagnostics, options or CompilerOptions()).run()
