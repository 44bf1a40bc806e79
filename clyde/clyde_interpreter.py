"""
The Clyde evaluator: walks an expression AST against a program model.
"""
import os
import sys
from typing import Any, List

from clyde.clyde_coercion import coerce
from clyde.clyde_datatypes import (
    Kind, Query, QueryList, Location, Range, MultiFileRange,
    TypeMismatch, IndexOutOfRange, NotFound, UnknownFunction,
    LocationLiteral, HistoryRef, VarRef, StringLiteral, Apply, Index, Node, describe
)
from clyde.clyde_functions import Call, FunctionTable, StdLib
from clyde.clyde_model import ProgramModel, call_adapter
from clyde.clyde_printer import Printer


class Evaluator:
    """The Clyde execution engine."""

    def __init__(self, model: ProgramModel, functions: FunctionTable = None):
        self.model = model
        self.side_effects: List[dict] = []
        self.call_stack: List[dict] = []
        self.current_node = None
        self.printer = Printer(model)
        self.stdlib = StdLib(self)
        self.functions = functions or FunctionTable.from_library(self.stdlib)

    def _dbg(self, *parts):
        if os.environ.get("CLYDE_DEBUG"):
            print("[DBG]", *parts, file=sys.stderr)

    # Frames stay on the stack when a handler raises, so the runner can report them.
    def _push_frame(self, node: Apply, receiver: Any):
        self.call_stack.append({
            'name': node.name,
            'receiver': describe(receiver),
            'call_site': node.loc,
        })

    def _pop_frame(self):
        if self.call_stack:
            self.call_stack.pop()

    def adapter(self, fn, *args):
        self._dbg("adapter", getattr(fn, '__name__', fn), *[repr(a) for a in args])
        return call_adapter(fn, *args)

    async def eval(self, node: Node, env) -> Any:
        """Evaluates one expression in an environment (a Session or SessionSnapshot)."""
        self.current_node = node
        match node:
            case LocationLiteral():
                return self._eval_location(node)
            case HistoryRef():
                return env.lookup_history(node)
            case VarRef():
                return env.lookup_var(node.name, node.loc)
            case StringLiteral():
                return node.text
            case Apply():
                return await self._eval_apply(node, env)
            case Index():
                return await self._eval_index(node, env)
            case _:
                raise TypeMismatch(f"Cannot evaluate {node!r}", getattr(node, 'loc', None))

    async def force(self, query: Query) -> Any:
        """Evaluates a query handle in the environment it was created in."""
        self._dbg("force", query.text)
        return await self.eval(query.expr, query.env)

    def _eval_location(self, node: LocationLiteral) -> Any:
        location = self.adapter(self.model.resolve_location, node.name, node.line, node.column)
        if not isinstance(location, (Location, MultiFileRange)):
            raise NotFound(f"Location not found: `{(node.loc or {}).get('text', node)}`", node.loc)
        if not node.is_span:
            return location
        end = self.adapter(self.model.resolve_location, node.name, *node.end)
        if not (isinstance(location, Location) and isinstance(end, Location)):
            raise NotFound(f"Location not found: `{(node.loc or {}).get('text', node)}`", node.loc)
        try:
            return Range(location, end)
        except ValueError as e:
            raise NotFound(f"Invalid range `{(node.loc or {}).get('text', node)}`: {e}", node.loc) from e

    async def _eval_apply(self, node: Apply, env) -> Any:
        token = node.name_loc or node.loc
        if not self.functions.entries_for(node.name):
            raise UnknownFunction(node.name, token)
        self.functions.check_flags(node)

        if self.functions.is_deferred(node.name):
            receiver = Query(node.lhs, env.snapshot())
        else:
            receiver = await self.eval(node.lhs, env)

        entry, receiver = await self.functions.resolve(receiver, node.name, self.force, token)
        entry.check(node)
        self._dbg("apply", node.name, "receiver", describe(receiver), "flags", node.flags, "argc", len(node.args))

        self._push_frame(node, receiver)
        result = await entry.handler(Call(receiver, node, env))
        self._pop_frame()
        self.current_node = node
        return result

    async def _eval_index(self, node: Index, env) -> Any:
        value = await self.eval(node.lhs, env)
        value = await coerce(value, Kind.LIST, force=self.force, token=node.loc)
        if not isinstance(value, QueryList):
            raise TypeMismatch(f"Only a List can be indexed, found {describe(value)}", node.loc)
        if node.is_slice:
            return value[node.start:node.stop]
        if node.start >= value.count:
            raise IndexOutOfRange(
                f"Index {node.start} is out of range for a {describe(value)} of {value.count}", node.loc)
        return value[node.start]
