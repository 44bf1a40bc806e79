"""
The function dispatch table.

Every function application (`expr -> name [flags] (args)`) and field
projection (`expr.name`) is resolved here against a closed table keyed by
(receiver kind, name). Kind.ANY entries apply to every receiver kind.
"""
import inspect
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from clyde.clyde_coercion import coerce, receiver_candidates
from clyde.clyde_datatypes import (
    Kind, Unit, Query, QuerySet, QueryList, Range, MultiFileRange, Def, Type, Token,
    TypeMismatch, UnknownFunction, InvalidFlag, NotFound, IndexOutOfRange,
    Apply, VarRef, StringLiteral, kind_of, describe
)


class Arity:
    """How many arguments a function takes: none, exactly n, or at least n."""

    def __init__(self, low: int = 0, high: Optional[int] = 0):
        self.low = low
        self.high = high

    @classmethod
    def none(cls) -> 'Arity':
        return cls(0, 0)

    @classmethod
    def exactly(cls, n: int) -> 'Arity':
        return cls(n, n)

    @classmethod
    def at_least(cls, n: int) -> 'Arity':
        return cls(n, None)

    @classmethod
    def up_to(cls, n: int) -> 'Arity':
        return cls(0, n)

    def accepts(self, count: int) -> bool:
        return count >= self.low and (self.high is None or count <= self.high)

    def __str__(self):
        if self.high is None:
            return f"at least {self.low}"
        if self.low == self.high:
            return str(self.low)
        return f"{self.low} to {self.high}"

    def __repr__(self):
        return f"<Arity {self}>"


class FunctionEntry:
    def __init__(self, name: str, kinds: Iterable[Kind], handler: Callable[..., Awaitable[Any]],
                 arity: Optional[Arity] = None, flags: Optional[Dict[str, str]] = None,
                 deferred: bool = False, doc: str = ""):
        self.name = name
        self.kinds = tuple(kinds)
        self.handler = handler
        self.arity = arity or Arity.none()
        self.flags = dict(flags or {})
        self.deferred = deferred
        self.doc = doc

    def check(self, node: Apply):
        """Validates the flags and argument count of an application."""
        for i, flag in enumerate(node.flags):
            if flag not in self.flags:
                token = node.flag_locs[i] if i < len(node.flag_locs) else node.loc
                raise InvalidFlag(flag, self.name, token)
        if not self.arity.accepts(len(node.args)):
            raise TypeMismatch(
                f"Incorrect arguments, expected: {self.arity}, found {len(node.args)}",
                node.name_loc or node.loc,
            )

    def __repr__(self):
        kinds = "|".join(str(k) for k in self.kinds)
        return f"<FunctionEntry {kinds}.{self.name}>"


class Call:
    """What a handler receives: the resolved receiver plus the application node."""

    def __init__(self, receiver: Any, node: Apply, env: Any):
        self.receiver = receiver
        self.node = node
        self.env = env

    @property
    def flags(self) -> List[str]:
        return self.node.flags

    @property
    def args(self) -> list:
        return self.node.args

    @property
    def token(self) -> Optional[Token]:
        return self.node.name_loc or self.node.loc


def clyde_function(name: str, *kinds: Kind, arity: Optional[Arity] = None,
                   flags: Optional[Dict[str, str]] = None, deferred: bool = False):
    """Marks a StdLib method as the handler of `name` for the given receiver kinds."""
    def decorator(func):
        func._clyde_function = dict(name=name, kinds=kinds, arity=arity, flags=flags,
                                    deferred=deferred)
        return func
    return decorator


class FunctionTable:
    def __init__(self):
        self._entries: Dict[Tuple[Kind, str], FunctionEntry] = {}
        self._by_name: Dict[str, List[FunctionEntry]] = {}

    @classmethod
    def from_library(cls, library: Any) -> 'FunctionTable':
        table = cls()
        for _, member in inspect.getmembers(library, inspect.ismethod):
            meta = getattr(member, '_clyde_function', None)
            if meta is None:
                continue
            doc = inspect.getdoc(member) or ""
            table.register(FunctionEntry(meta['name'], meta['kinds'], member,
                                         arity=meta['arity'], flags=meta['flags'],
                                         deferred=meta['deferred'], doc=doc))
        return table

    def register(self, entry: FunctionEntry):
        for kind in entry.kinds:
            if (kind, entry.name) in self._entries:
                raise ValueError(f"`{entry.name}` is already defined for {kind}")
            self._entries[(kind, entry.name)] = entry
        self._by_name.setdefault(entry.name, []).append(entry)

    def names(self) -> List[str]:
        return sorted(self._by_name)

    def entries_for(self, name: str) -> List[FunctionEntry]:
        return list(self._by_name.get(name, []))

    def lookup(self, kind: Kind, name: str) -> Optional[FunctionEntry]:
        return self._entries.get((kind, name)) or self._entries.get((Kind.ANY, name))

    def is_deferred(self, name: str) -> bool:
        return any(e.deferred for e in self._by_name.get(name, []))

    def check_flags(self, node: Apply):
        """Rejects a flag that no entry for the name accepts, before anything is evaluated."""
        for i, flag in enumerate(node.flags):
            if not any(flag in e.flags for e in self._by_name.get(node.name, [])):
                token = node.flag_locs[i] if i < len(node.flag_locs) else node.loc
                raise InvalidFlag(flag, node.name, token)

    async def resolve(self, receiver: Any, name: str, force=None,
                      token: Optional[Token] = None) -> Tuple[FunctionEntry, Any]:
        """Finds the entry for `name`, walking the receiver down the coercion ladder."""
        entries = self._by_name.get(name)
        if not entries:
            raise UnknownFunction(name, token)
        async for candidate in receiver_candidates(receiver, force):
            entry = self.lookup(kind_of(candidate), name)
            if entry is not None:
                return entry, candidate
        kinds = ", ".join(sorted({str(k) for e in entries for k in e.kinds}))
        raise TypeMismatch(f"`{name}` expects {kinds}, found {describe(receiver)}", token)


# ===================================================================
# Built-in functions
# ===================================================================

SHOW_FLAGS = {'-s': 'short', '-l': 'long', '-L': 'list', '-f': 'redirect to a file'}
SHOW_FORMS = ('short', 'long', 'list')


class StdLib:
    """The built-in Clyde functions. Each handler is `async (call) -> value`."""

    def __init__(self, evaluator):
        self.evaluator = evaluator

    @property
    def model(self):
        return self.evaluator.model

    def _adapter(self, fn, *args):
        return self.evaluator.adapter(fn, *args)

    # ----- Any -----

    @clyde_function("show", Kind.ANY, arity=Arity.up_to(2), flags=SHOW_FLAGS)
    async def _show(self, call: Call):
        """Renders a value. Forms: -s short (default), -l long, -L list; -f "path" writes it to a file."""
        form = 'short'
        redirect = False
        for flag in call.flags:
            if flag == '-f':
                redirect = True
            else:
                form = SHOW_FLAGS[flag]
        path = None
        for arg in call.args:
            match arg:
                case VarRef(name=name) if name in SHOW_FORMS:
                    form = name
                case StringLiteral(text=text) if path is None:
                    path = text
                case _:
                    text = (arg.loc or {}).get('text', repr(arg))
                    raise TypeMismatch(
                        f"`show` expects a form ({', '.join(SHOW_FORMS)}) or a file path, found `{text}`",
                        arg.loc)
        if redirect and path is None:
            raise TypeMismatch("`show -f` needs a file path argument", call.token)
        if path is not None and not redirect:
            raise TypeMismatch("A file path for `show` needs the -f flag", call.token)
        text = self.evaluator.printer.pformat(call.receiver, form)
        if redirect:
            self.evaluator.side_effects.append({'topics': ['file'], 'path': path, 'message': text})
            return Unit
        return text

    # ----- Queries -----

    @clyde_function("select", Kind.QUERY, deferred=True)
    async def _select(self, call: Call):
        """Evaluates a query and returns its result as a Set."""
        value = call.receiver
        while isinstance(value, Query):
            value = await self.evaluator.force(value)
        if isinstance(value, QueryList):
            return QuerySet(value.elements, value.element_kind)
        if isinstance(value, QuerySet) or value is Unit:
            return await coerce(value, Kind.SET, token=call.token)
        raise TypeMismatch(f"`select` expects a query producing a Set, found {describe(value)}", call.token)

    @clyde_function("query", Kind.QUERY, deferred=True)
    async def _query(self, call: Call):
        """Returns the expression unevaluated, as a query handle."""
        return call.receiver

    # ----- Location / Range -----

    @clyde_function("idents", Kind.LOCATION, Kind.RANGE)
    async def _idents(self, call: Call):
        """Identifiers at a location (a position, a line, or a whole file) or within a range."""
        return self._adapter(self.model.identifiers_at, call.receiver)

    @clyde_function("name", Kind.LOCATION, Kind.RANGE, Kind.IDENTIFIER, Kind.ITEM, Kind.TYPE)
    async def _name(self, call: Call):
        """The file name of a location or range, or the name of an identifier, item or type.

        A range over several files gives the Set of their names.
        """
        value = call.receiver
        if isinstance(value, Type):
            return value.item.name
        if isinstance(value, MultiFileRange):
            return QuerySet(value.names, Kind.STRING)
        return value.name if value.name is not None else Unit

    @clyde_function("line", Kind.LOCATION)
    async def _line(self, call: Call):
        return call.receiver.line if call.receiver.line is not None else Unit

    @clyde_function("column", Kind.LOCATION)
    async def _column(self, call: Call):
        return call.receiver.column if call.receiver.column is not None else Unit

    @clyde_function("start", Kind.RANGE)
    async def _start(self, call: Call):
        return self._single_file(call).start

    @clyde_function("end", Kind.RANGE)
    async def _end(self, call: Call):
        return self._single_file(call).end

    def _single_file(self, call: Call) -> Range:
        value = call.receiver
        if isinstance(value, MultiFileRange):
            raise TypeMismatch(
                f"`{call.node.name}` needs a range in one file, found a range over {len(value.names)} files",
                call.token)
        return value

    # ----- Identifier -----

    @clyde_function("def", Kind.IDENTIFIER, Kind.TYPE)
    async def _def(self, call: Call):
        """The definition chain of an identifier, primary definition first."""
        if isinstance(call.receiver, Type):
            return Def((call.receiver.item,))
        return self._adapter(self.model.definition_of, call.receiver)

    @clyde_function("type", Kind.IDENTIFIER)
    async def _type(self, call: Call):
        """The type of an identifier."""
        return self._adapter(self.model.type_of, call.receiver)

    @clyde_function("span", Kind.IDENTIFIER, Kind.ITEM)
    async def _span(self, call: Call):
        return call.receiver.span

    # ----- Def -----

    @clyde_function("primary", Kind.DEF)
    async def _primary(self, call: Call):
        return call.receiver.primary

    @clyde_function("chain", Kind.DEF)
    async def _chain(self, call: Call):
        return QueryList(call.receiver.chain, Kind.ITEM)

    # ----- Item -----

    @clyde_function("kind", Kind.ITEM)
    async def _kind(self, call: Call):
        """The definition kind of an item, e.g. `fn` or `struct`."""
        return call.receiver.kind_tag

    @clyde_function("focus", Kind.ITEM)
    async def _focus(self, call: Call):
        return call.receiver.focus

    @clyde_function("source", Kind.ITEM)
    async def _source(self, call: Call):
        return call.receiver.source

    @clyde_function("doc", Kind.ITEM)
    async def _doc(self, call: Call):
        return call.receiver.doc

    @clyde_function("sig", Kind.ITEM)
    async def _sig(self, call: Call):
        return call.receiver.signature

    @clyde_function("idents", Kind.ITEM)
    async def _item_idents(self, call: Call):
        """Identifiers within an item's span."""
        return self._adapter(self.model.identifiers_at, call.receiver.span)

    # ----- Type -----

    @clyde_function("item", Kind.TYPE)
    async def _item(self, call: Call):
        return call.receiver.item

    @clyde_function("ident", Kind.TYPE)
    async def _ident(self, call: Call):
        if call.receiver.identifier is None:
            raise NotFound(f"Type `{call.receiver.item.name}` has no use-site identifier", call.token)
        return call.receiver.identifier

    # ----- Set / List -----

    @clyde_function("pick", Kind.SET, Kind.LIST)
    async def _pick(self, call: Call):
        """One element of a collection: the first in stable order."""
        if not call.receiver.count:
            raise IndexOutOfRange(f"Cannot pick from an empty {describe(call.receiver)}", call.token)
        return call.receiver.pick()

    @clyde_function("count", Kind.SET, Kind.LIST, Kind.DEF)
    async def _count(self, call: Call):
        if isinstance(call.receiver, Def):
            return len(call.receiver.chain)
        return call.receiver.count

    @clyde_function("list", Kind.SET)
    async def _list(self, call: Call):
        """The elements of a set as a list, in stable order."""
        return QueryList(call.receiver.elements, call.receiver.element_kind)

    @clyde_function("set", Kind.LIST)
    async def _set(self, call: Call):
        return QuerySet(call.receiver.elements, call.receiver.element_kind)

    @clyde_function("first", Kind.LIST)
    async def _first(self, call: Call):
        return self._at(call, 0)

    @clyde_function("last", Kind.LIST)
    async def _last(self, call: Call):
        return self._at(call, -1)

    def _at(self, call: Call, index: int):
        value = call.receiver
        if not value.count:
            raise IndexOutOfRange(f"`{call.node.name}` of an empty {describe(value)}", call.token)
        return value[index]
