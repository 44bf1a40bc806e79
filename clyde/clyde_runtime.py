# clyde_runtime.py

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Tuple

import pystache
from koine import Parser

from clyde.clyde_datatypes import (
    ClydeError, ParseError, TypeMismatch, IndexOutOfRange, NotFound, InvalidFlag,
    UnknownCommand, UnknownFunction, Unit, Token,
    HistoryEntry, HistoryRef, VarRef, MetaCommand, Assign, ExprStatement, Node
)
from clyde.clyde_functions import FunctionTable
from clyde.clyde_interpreter import Evaluator
from clyde.clyde_model import ProgramModel
from clyde.clyde_transformer import ClydeTransformer

VERSION = "0.1"


# ===================================================================
# 1. Session Environment
# ===================================================================

def _history_ref_text(ref: HistoryRef) -> str:
    if ref.index is None:
        return "$"
    return f"${'-' if ref.relative else ''}{ref.index}"


class _Environment:
    """Shared lookups over an ordered history and a variable table."""
    _entries: Tuple[HistoryEntry, ...]
    _variables: Dict[str, Any]

    def __len__(self):
        return len(self._entries)

    @property
    def history(self) -> Tuple[HistoryEntry, ...]:
        return tuple(self._entries)

    @property
    def variables(self) -> Dict[str, Any]:
        return dict(self._variables)

    def position(self, ref: HistoryRef) -> int:
        """The 1-based history position a reference names; raises IndexOutOfRange."""
        n = len(self._entries)
        if ref.index is None:
            pos = n
        elif ref.relative:
            pos = n - ref.index
        else:
            pos = ref.index
        if pos < 1 or pos > n:
            raise IndexOutOfRange(
                f"`{_history_ref_text(ref)}` is out of range, history has {n} "
                f"{'entry' if n == 1 else 'entries'}", ref.loc)
        return pos

    def lookup_history(self, ref: HistoryRef) -> Any:
        return self._entries[self.position(ref) - 1].value

    def lookup_var(self, name: str, token: Optional[Token] = None) -> Any:
        if name not in self._variables:
            raise NotFound(f"Variable not found: `{name}`", token)
        return self._variables[name]


class SessionSnapshot(_Environment):
    """A frozen view of a session, captured when a query handle is created.

    The view never sees later statements or bindings, but it does see `^clear`:
    an entry the live session has dropped can no longer be read through it.
    """

    def __init__(self, entries, variables, origin: Optional['Session'] = None):
        self._entries = tuple(entries)
        self._variables = dict(variables)
        self._origin = origin
        self._generation = origin.generation if origin is not None else 0

    def position(self, ref: HistoryRef) -> int:
        pos = super().position(ref)
        if self._origin is not None and not self._origin.holds(self._entries[pos - 1]):
            raise IndexOutOfRange(
                f"`{_history_ref_text(ref)}` is out of range, it was removed by `^clear`", ref.loc)
        return pos

    def lookup_var(self, name: str, token: Optional[Token] = None) -> Any:
        if self._origin is not None and self._origin.generation != self._generation:
            raise NotFound(f"Variable not found: `{name}`, variables were removed by `^clear`", token)
        return super().lookup_var(name, token)

    def snapshot(self) -> 'SessionSnapshot':
        return self


class Session(_Environment):
    """The live history and named variables of one interactive session."""

    def __init__(self):
        self._entries: List[HistoryEntry] = []
        self._variables: Dict[str, Any] = {}
        # Bumped by a full `^clear`.
        self.generation = 0
        self.closed = False

    def record(self, statement: Node, value: Any) -> HistoryEntry:
        entry = HistoryEntry(statement, value, len(self._entries) + 1)
        self._entries.append(entry)
        return entry

    def holds(self, entry: HistoryEntry) -> bool:
        """Whether `entry` is still in history at its original position."""
        return entry.index <= len(self._entries) and self._entries[entry.index - 1] is entry

    def bind(self, name: str, value: Any):
        self._variables[name] = value

    def truncate(self, keep: int):
        del self._entries[keep:]

    def clear(self):
        self._entries.clear()
        self._variables.clear()
        self.generation += 1

    def close(self):
        self.closed = True

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(self._entries, self._variables, origin=self)


# ===================================================================
# 2. Meta-commands
# ===================================================================

HELP_TEMPLATE = """\
Clyde {{version}}

Statements:
  expr                    evaluate an expression and show its value
  x = expr                bind a variable (and record the value in history)
  name [flags] expr       shorthand for `expr -> name [flags]`
  expr -> name [flags] (args), expr.name
  $, $n, $-n              the last, nth, and nth-from-last history entry
  (:file:line:column)     a location; every part is optional
  (:file:l:c-l:c)         a range; a file pattern matching several files is one too

Commands:
{{#commands}}
  {{usage}}{{doc}}
{{/commands}}

Functions:
{{#functions}}
  {{usage}}{{kinds}}
{{/functions}}
"""

FUNCTION_HELP_TEMPLATE = """\
{{#entries}}
{{kinds}} -> {{name}}{{#flags}} [{{flags}}]{{/flags}}, arguments: {{arity}}{{#deferred}}, receiver not evaluated{{/deferred}}
{{#doc}}
  {{doc}}
{{/doc}}
{{/entries}}
"""

COMMAND_DOCS = [
    ("^help, ^h [name]", "show this text, or describe one function"),
    ("^clear [$n]", "forget history after entry n, or all history and variables"),
    ("^exit, ^q", "leave the session"),
]


class CommandExecutor:
    """Executes `^` meta-commands against a session."""

    def __init__(self, session: Session, functions: FunctionTable):
        self.session = session
        self.functions = functions
        self.renderer = pystache.Renderer(escape=lambda u: u)

    async def execute(self, command: MetaCommand) -> Any:
        if command.flags:
            token = command.flag_locs[0] if command.flag_locs else command.loc
            raise InvalidFlag(command.flags[0], f"^{command.name}", token)
        match command.name:
            case 'exit':
                self._expect_args(command, 0)
                self.session.close()
                return Unit
            case 'help':
                self._expect_args(command, 1)
                return self.help(command.args[0] if command.args else None)
            case 'clear':
                self._expect_args(command, 1)
                return self.clear(command.args[0] if command.args else None)
            case _:
                raise UnknownCommand(command.name, command.loc)

    def _expect_args(self, command: MetaCommand, most: int):
        if len(command.args) > most:
            raise TypeMismatch(
                f"Incorrect arguments, expected: at most {most}, found {len(command.args)}",
                command.args[most].loc)

    def clear(self, arg: Optional[Node]) -> Any:
        if arg is None:
            self.session.clear()
            return Unit
        if not isinstance(arg, HistoryRef):
            raise TypeMismatch("`^clear` expects a history reference such as `$2`", arg.loc)
        self.session.truncate(self.session.position(arg))
        return Unit

    def help(self, arg: Optional[Node]) -> str:
        if arg is None:
            return self._render(HELP_TEMPLATE, {
                'version': VERSION,
                'commands': [{'usage': usage.ljust(24), 'doc': doc} for usage, doc in COMMAND_DOCS],
                'functions': [
                    {'usage': name.ljust(24), 'kinds': self._kinds(self.functions.entries_for(name))}
                    for name in self.functions.names()
                ],
            })
        if not isinstance(arg, VarRef):
            raise TypeMismatch("`^help` expects a function name", arg.loc)
        entries = self.functions.entries_for(arg.name)
        if not entries:
            raise UnknownFunction(arg.name, arg.loc)
        return self._render(FUNCTION_HELP_TEMPLATE, {
            'entries': [{
                'kinds': self._kinds([e]),
                'name': e.name,
                'flags': " ".join(f"{flag} {what}" for flag, what in e.flags.items()),
                'arity': str(e.arity),
                'deferred': e.deferred,
                'doc': e.doc,
            } for e in entries],
        })

    def _kinds(self, entries) -> str:
        return ", ".join(str(k) for e in entries for k in e.kinds)

    def _render(self, template: str, context: Dict[str, Any]) -> str:
        return self.renderer.render(template, context).rstrip("\n")


# ===================================================================
# 3. Statement Execution
# ===================================================================

@dataclass
class ExecutionResult:
    """The structured result of running one input line."""
    status: Literal['success', 'error']
    value: Any = None
    output: str = ""
    error_message: Optional[str] = None
    error_kind: Optional[str] = None
    error_token: Optional[Token] = None
    side_effects: List[Dict] = field(default_factory=list)
    exit_code: Optional[int] = None

    def format_error(self) -> str:
        """Formats an error message with line and column if available."""
        if self.status != 'error':
            return ""
        msg = str(self.error_message or "Unknown error")
        if self.error_token and 'line' in self.error_token:
            line = self.error_token.get('line')
            col = self.error_token.get('col')
            if "(line " not in msg and not msg.startswith("Error on line "):
                col_info = f", col {col}" if col is not None else ""
                return f"Error on line {line}{col_info}: {msg}"
        return msg


class QueryRunner:
    """Parses, transforms, and executes Clyde statements against one session."""

    _parser: Optional[Parser] = None
    _transformer: Optional[ClydeTransformer] = None

    def __init__(self, model: ProgramModel, session: Optional[Session] = None):
        if QueryRunner._parser is None:
            grammar_path = Path(__file__).parent / "grammar" / "clyde_grammar.yaml"
            QueryRunner._parser = Parser.from_file(str(grammar_path))

        if QueryRunner._transformer is None:
            QueryRunner._transformer = ClydeTransformer()

        self.parser = QueryRunner._parser
        self.transformer = QueryRunner._transformer
        self.session = session or Session()
        self.evaluator = Evaluator(model)
        self.commands = CommandExecutor(self.session, self.evaluator.functions)

    @property
    def prompt(self) -> str:
        return f"{len(self.session)} > "

    def parse(self, source: str) -> List[Node]:
        """Parses a whole input line into statements; raises ParseError or UnknownCommand."""
        try:
            parse_out = self.parser.parse(source)
        except Exception as e:
            raise ParseError(f"parse failed: {e}") from e
        if isinstance(parse_out, dict) and 'status' in parse_out:
            if parse_out.get('status') != 'success':
                node = parse_out.get('error_node') or {}
                message = parse_out.get('error_message') or "parse failed"
                token = None
                if node.get('line') is not None:
                    token = {'line': node.get('line'), 'col': node.get('col'), 'text': node.get('text')}
                raise ParseError(message, token)
            ast = parse_out.get('ast')
        else:
            ast = parse_out
        return self.transformer.transform(ast, source)

    async def execute(self, statement: Node) -> Any:
        """Executes one statement, recording its value in history unless it is a meta-command."""
        match statement:
            case MetaCommand():
                return await self.commands.execute(statement)
            case Assign():
                value = await self.evaluator.eval(statement.expr, self.session)
                self.session.bind(statement.name, value)
                self.session.record(statement, value)
                return value
            case ExprStatement():
                value = await self.evaluator.eval(statement.expr, self.session)
                self.session.record(statement, value)
                return value
            case _:
                raise TypeMismatch(f"Not a statement: {statement!r}", statement.loc)

    def render(self, value: Any) -> str:
        return self.evaluator.printer.pformat(value, 'short')

    async def handle_script(self, source_code: str) -> ExecutionResult:
        """The main entry point to execute one input line (or a whole script)."""
        self.evaluator.side_effects.clear()
        self.evaluator.call_stack.clear()
        effects = self.evaluator.side_effects
        try:
            statements = self.parse(source_code)
        except ClydeError as e:
            return self._error_result(e, source_code)

        value, output = Unit, ""
        try:
            for statement in statements:
                value = await self.execute(statement)
                output = self.render(value)
                if output:
                    effects.append({'topics': ['stdout'], 'message': output})
                if self.session.closed:
                    return ExecutionResult(status='success', value=value, output=output,
                                           side_effects=effects, exit_code=0)
        except Exception as e:
            return self._error_result(e, source_code)
        return ExecutionResult(status='success', value=value, output=output, side_effects=effects)

    def _error_result(self, e: Exception, source: str) -> ExecutionResult:
        msg, token = self._format_error(e, source)
        self.evaluator.side_effects.append({'topics': ['stderr'], 'message': msg})
        return ExecutionResult(
            status='error',
            error_message=msg,
            error_kind=getattr(e, 'kind', 'InternalError'),
            error_token=token,
            side_effects=self.evaluator.side_effects,
        )

    def _format_error(self, e: Exception, source: str) -> Tuple[str, Optional[Token]]:
        if isinstance(e, ClydeError):
            msg = str(e)
            token = e.token
        else:
            msg = f"InternalError: {e}"
            node = self.evaluator.current_node
            token = getattr(node, 'loc', None)
        if token and token.get('line') is not None:
            line, col = token.get('line'), token.get('col')
            context = self._source_context(source, line, col)
            msg = f"{msg} (line {line}, col {col})"
            if context:
                msg = f"{msg}\n{context}"
        st = self._format_stacktrace()
        if st:
            msg += "\n" + st
        return msg, token

    def _format_stacktrace(self) -> str:
        """The function applications that were running when an error was raised, outermost first."""
        stack = self.evaluator.call_stack
        if not stack:
            return ""
        frames = [f"({frame['name']} {frame['receiver']})" for frame in stack]
        return "Clyde stacktrace: " + " ".join(frames)

    def _source_context(self, source: str, line: int, col: Optional[int], radius: int = 2) -> str:
        lines = source.splitlines()
        if not line or line < 1 or line > len(lines):
            return ""
        start = max(1, line - radius)
        end = min(len(lines), line + radius)
        width = len(str(end))
        out = []
        for i in range(start, end + 1):
            prefix = ">" if i == line else " "
            ln = str(i).rjust(width)
            content = lines[i - 1]
            out.append(f"{prefix} {ln} | {content}")
            if i == line and col is not None:
                caret = " " * max(col - 1, 0)
                out.append(f"  {' ' * width} | {caret}^")
        return "\n".join(out)


__all__ = [
    "Session", "SessionSnapshot", "CommandExecutor", "ExecutionResult", "QueryRunner",
    "VERSION",
]
