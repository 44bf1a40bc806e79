"""
Defines the core data types for the Clyde query language.

This module provides the closed set of runtime value kinds the evaluator
works with (locations, identifiers, definitions, items, types, sets, lists
and the scalar kinds), the statement AST built by the transformer, and the
error kinds reported back to the user.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

Token = Dict[str, Any]


# =================================================================
# Errors
# =================================================================

class ClydeError(Exception):
    """Base class for all statement-level errors.

    `token` is the offending source token (a dict with 'text', 'line' and
    'col'), when one is known.
    """
    kind = "Error"

    def __init__(self, message: str, token: Optional[Token] = None):
        super().__init__(message)
        self.message = message
        self.token = token

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}"


class ParseError(ClydeError):
    kind = "ParseError"


class TypeMismatch(ClydeError):
    kind = "TypeMismatch"


class UnknownFunction(ClydeError):
    kind = "UnknownFunction"

    def __init__(self, name: str, token: Optional[Token] = None):
        super().__init__(f"Unknown function: `{name}`", token)
        self.name = name


class InvalidFlag(ClydeError):
    kind = "InvalidFlag"

    def __init__(self, flag: str, function: str, token: Optional[Token] = None):
        super().__init__(f"Invalid flag `{flag}` for `{function}`", token)
        self.flag = flag
        self.function = function


class UnknownCommand(ClydeError):
    kind = "UnknownCommand"

    def __init__(self, name: str, token: Optional[Token] = None):
        super().__init__(f"Unknown command: `{name}`", token)
        self.name = name


class IndexOutOfRange(ClydeError):
    kind = "IndexOutOfRange"


class NotFound(ClydeError):
    kind = "NotFound"


class AdapterFailure(ClydeError):
    kind = "AdapterFailure"


# =================================================================
# Value Kinds
# =================================================================

class Kind(Enum):
    LOCATION = "Location"
    RANGE = "Range"
    SET = "Set"
    LIST = "List"
    IDENTIFIER = "Identifier"
    DEF = "Def"
    ITEM = "Item"
    TYPE = "Type"
    QUERY = "Query"
    STRING = "String"
    NUMBER = "Number"
    UNIT = "Unit"
    # Only used by the dispatch table: an entry that accepts every kind.
    ANY = "Any"

    def __str__(self) -> str:
        return self.value


class _UnitType:
    """The empty result. There is exactly one instance, `Unit`."""
    kind = Kind.UNIT

    def __repr__(self):
        return "Unit"

    def __bool__(self):
        return False


Unit = _UnitType()


@dataclass(frozen=True)
class Location:
    """A reference into source text by name plus optional line and column.

    Lines and columns are 1-based, exactly as written in a location literal.
    A location with both a line and a column is a position.
    """
    name: Optional[str]
    line: Optional[int] = None
    column: Optional[int] = None
    kind = Kind.LOCATION

    @property
    def is_position(self) -> bool:
        return self.line is not None and self.column is not None

    def __repr__(self):
        parts = [self.name or ""]
        if self.line is not None:
            parts.append(str(self.line))
        if self.column is not None:
            parts.append(str(self.column))
        return f"<Location :{':'.join(parts)}>"


@dataclass(frozen=True)
class Range:
    """A span between two positions in one file; `end` is never before `start`."""
    start: Location
    end: Location
    kind = Kind.RANGE

    def __post_init__(self):
        if not (self.start.is_position and self.end.is_position):
            raise ValueError("Range endpoints must be positions (line and column).")
        if self.start.name != self.end.name:
            raise ValueError("Range endpoints must be in the same file.")
        if (self.end.line, self.end.column) < (self.start.line, self.start.column):
            raise ValueError("Range end must not precede its start.")

    @property
    def name(self) -> Optional[str]:
        return self.start.name

    def contains(self, line: int, column: Optional[int] = None) -> bool:
        if column is None:
            return self.start.line <= line <= self.end.line
        return (self.start.line, self.start.column) <= (line, column) <= (self.end.line, self.end.column)

    def within(self, other: 'Range') -> bool:
        return (
            self.name == other.name
            and other.contains(self.start.line, self.start.column)
            and other.contains(self.end.line, self.end.column)
        )

    def __repr__(self):
        return (f"<Range {self.name}:{self.start.line}:{self.start.column}"
                f"-{self.end.line}:{self.end.column}>")


@dataclass(frozen=True)
class MultiFileRange:
    """Every file a file pattern matched, e.g. `(:*.rs)`; read as a Range."""
    pattern: str
    names: Tuple[str, ...]
    kind = Kind.RANGE

    def __post_init__(self):
        object.__setattr__(self, "names", tuple(self.names))
        if not self.names:
            raise ValueError("MultiFileRange must name at least one file.")

    def covers(self, name: Optional[str]) -> bool:
        return name in self.names

    def __repr__(self):
        return f"<MultiFileRange {self.pattern} files={len(self.names)}>"


@dataclass(frozen=True)
class Item:
    """Immutable snapshot of one definition site."""
    kind_tag: str
    name: str
    span: Range
    focus: Range
    source: str = ""
    doc: str = ""
    signature: str = ""
    id: Any = None
    kind = Kind.ITEM

    def __repr__(self):
        return f"<Item {self.kind_tag} {self.name}>"


@dataclass(frozen=True)
class Identifier:
    name: str
    span: Range
    id: Any = None
    kind = Kind.IDENTIFIER

    def __repr__(self):
        return f"<Identifier {self.name} {self.span!r}>"


@dataclass(frozen=True)
class Def:
    """An ordered, non-empty chain of candidate definitions.

    The chain is ordered by resolution priority; the primary definition is
    always the head of the chain.
    """
    chain: Tuple[Item, ...]
    kind = Kind.DEF

    def __post_init__(self):
        object.__setattr__(self, "chain", tuple(self.chain))
        if not self.chain:
            raise TypeMismatch("A Def needs at least one item, found an empty chain")

    @property
    def primary(self) -> Item:
        return self.chain[0]

    def __repr__(self):
        return f"<Def {self.primary.name} chain={len(self.chain)}>"


@dataclass(frozen=True)
class Type:
    """A type: its defining item plus the use-site identifier that produced it."""
    item: Item
    identifier: Optional[Identifier] = None
    kind = Kind.TYPE

    def __repr__(self):
        return f"<Type {self.item.name}>"


class _Collection:
    """Shared behaviour of QuerySet and QueryList: a homogeneous tuple of values."""

    def __init__(self, elements=(), element_kind: Optional[Kind] = None):
        elements = tuple(elements)
        if element_kind is None and elements:
            element_kind = kind_of(elements[0])
        for e in elements:
            if kind_of(e) is not element_kind:
                raise ValueError(
                    f"{type(self).__name__} of {element_kind} cannot hold a {describe(e)}"
                )
        self._elements = elements
        self._element_kind = element_kind

    @property
    def elements(self) -> Tuple[Any, ...]:
        return self._elements

    @property
    def element_kind(self) -> Optional[Kind]:
        return self._element_kind

    @property
    def count(self) -> int:
        return len(self._elements)

    def __len__(self):
        return len(self._elements)

    def __iter__(self):
        return iter(self._elements)

    def pick(self) -> Any:
        """The canonical representative: the first element in stable order."""
        if not self._elements:
            raise IndexOutOfRange(f"cannot pick from an empty {describe(self)}")
        return self._elements[0]


class QuerySet(_Collection):
    """An unordered collection of values of one kind.

    Elements keep the order in which the program model produced them (with
    duplicates dropped); that order is what `pick` relies on. Equality
    ignores it.
    """
    kind = Kind.SET

    def __init__(self, elements=(), element_kind: Optional[Kind] = None):
        unique = list(dict.fromkeys(elements))
        super().__init__(unique, element_kind)

    def __repr__(self):
        return f"<Set<{self.element_kind}> count={self.count}>"

    def __eq__(self, other):
        if not isinstance(other, QuerySet):
            return NotImplemented
        return set(self._elements) == set(other._elements)

    def __hash__(self):
        return hash(frozenset(self._elements))


class QueryList(_Collection):
    """An ordered sequence of values of one kind."""
    kind = Kind.LIST

    def __getitem__(self, index):
        if isinstance(index, slice):
            return QueryList(self._elements[index], self._element_kind)
        return self._elements[index]

    def __repr__(self):
        return f"<List<{self.element_kind}> count={self.count}>"

    def __eq__(self, other):
        if not isinstance(other, QueryList):
            return NotImplemented
        return self._elements == other._elements

    def __hash__(self):
        return hash(self._elements)


class Query:
    """An unevaluated expression handle.

    Holds the expression AST and a snapshot of the session environment it
    was written in; it is only evaluated when a consumer forces it.
    """
    kind = Kind.QUERY

    def __init__(self, expr: Any, env: Any):
        self.expr = expr
        self.env = env

    @property
    def text(self) -> str:
        loc = getattr(self.expr, 'loc', None) or {}
        return loc.get('text') or repr(self.expr)

    def __repr__(self):
        return f"<Query {self.text}>"


def kind_of(value: Any) -> Kind:
    """Maps a runtime value onto its kind in the closed object model."""
    if isinstance(value, bool):
        raise TypeMismatch(f"not a Clyde value: {value!r}")
    if isinstance(value, str):
        return Kind.STRING
    if isinstance(value, int):
        return Kind.NUMBER
    kind = getattr(type(value), 'kind', None)
    if isinstance(kind, Kind):
        return kind
    raise TypeMismatch(f"not a Clyde value: {value!r}")


def describe(value: Any) -> str:
    """The user-facing kind name of a value, e.g. `Set<Identifier>`."""
    if isinstance(value, _Collection):
        inner = value.element_kind or "?"
        return f"{value.kind}<{inner}>"
    return str(kind_of(value))


# =================================================================
# Statement AST
# =================================================================

class Node:
    """Base class for AST nodes. `loc` holds the source line, column and text."""
    loc: Optional[Token] = None

    def _fields(self) -> tuple:
        raise NotImplementedError

    def __eq__(self, other):
        if type(self) is not type(other):
            return NotImplemented
        return self._fields() == other._fields()

    def __hash__(self):
        return hash((type(self).__name__,) + self._fields())


class LocationLiteral(Node):
    """`(:name:line:column)`, every part optional, or a span `(:name:line:column-line:column)`."""
    def __init__(self, name: Optional[str], line: Optional[int] = None, column: Optional[int] = None,
                 end: Optional[Tuple[int, int]] = None):
        self.name = name
        self.line = line
        self.column = column
        self.end = end

    @property
    def is_span(self) -> bool:
        return self.end is not None

    def _fields(self):
        return (self.name, self.line, self.column, self.end)

    def __repr__(self):
        if self.end is not None:
            return f"LocationLiteral({self.name!r}, {self.line!r}, {self.column!r}, end={self.end!r})"
        return f"LocationLiteral({self.name!r}, {self.line!r}, {self.column!r})"


class HistoryRef(Node):
    """`$` (index None), `$n` (absolute) or `$-n` (relative to the end)."""
    def __init__(self, index: Optional[int] = None, relative: bool = False):
        self.index = index
        self.relative = relative

    def _fields(self):
        return (self.index, self.relative)

    def __repr__(self):
        if self.index is None:
            return "HistoryRef($)"
        return f"HistoryRef(${'-' if self.relative else ''}{self.index})"


class VarRef(Node):
    def __init__(self, name: str):
        self.name = name

    def _fields(self):
        return (self.name,)

    def __repr__(self):
        return f"VarRef({self.name!r})"


class StringLiteral(Node):
    def __init__(self, text: str):
        self.text = text

    def _fields(self):
        return (self.text,)

    def __repr__(self):
        return f"StringLiteral({self.text!r})"


class Apply(Node):
    """`lhs -> name [flags] (args)`, or the field projection `lhs.name`.

    Arguments stay unevaluated; the receiving function decides what to do
    with them.
    """
    def __init__(self, lhs: Node, name: str, flags: Optional[List[str]] = None,
                 args: Optional[List[Node]] = None, field: bool = False):
        self.lhs = lhs
        self.name = name
        self.flags = list(flags or [])
        self.args = list(args or [])
        self.field = field
        self.name_loc: Optional[Token] = None
        self.flag_locs: List[Token] = []

    def _fields(self):
        return (self.lhs, self.name, tuple(self.flags), tuple(self.args), self.field)

    def __repr__(self):
        if self.field:
            return f"Apply({self.lhs!r}.{self.name})"
        return f"Apply({self.lhs!r} -> {self.name} {self.flags!r} {self.args!r})"


class Index(Node):
    """`lhs[i]` or a slice `lhs[a..b]` with either bound optional."""
    def __init__(self, lhs: Node, start: Optional[int], stop: Optional[int] = None, is_slice: bool = False):
        self.lhs = lhs
        self.start = start
        self.stop = stop
        self.is_slice = is_slice

    def _fields(self):
        return (self.lhs, self.start, self.stop, self.is_slice)

    def __repr__(self):
        if self.is_slice:
            return f"Index({self.lhs!r}[{self.start}..{self.stop}])"
        return f"Index({self.lhs!r}[{self.start}])"


class ExprStatement(Node):
    def __init__(self, expr: Node):
        self.expr = expr

    def _fields(self):
        return (self.expr,)

    def __repr__(self):
        return f"ExprStatement({self.expr!r})"


class Assign(Node):
    """`name = expr`; binds a named variable."""
    def __init__(self, name: str, expr: Node):
        self.name = name
        self.expr = expr

    def _fields(self):
        return (self.name, self.expr)

    def __repr__(self):
        return f"Assign({self.name!r}, {self.expr!r})"


class MetaCommand(Node):
    """`^name args...`; handled by the command executor, never by the evaluator."""
    def __init__(self, name: str, args: Optional[List[Node]] = None, flags: Optional[List[str]] = None):
        self.name = name
        self.args = list(args or [])
        self.flags = list(flags or [])
        self.flag_locs: List[Token] = []

    def _fields(self):
        return (self.name, tuple(self.args), tuple(self.flags))

    def __repr__(self):
        return f"MetaCommand({self.name!r}, {self.args!r})"


@dataclass
class HistoryEntry:
    """One executed statement and the value it produced."""
    statement: Node
    value: Any
    index: int = field(default=0)
