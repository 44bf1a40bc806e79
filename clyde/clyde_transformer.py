"""
Transforms the raw koine token tree for one input line into Clyde statements.

The grammar only tokenizes. This module recovers each token's position in the
source and builds the statement AST by recursive descent:

    line     := stmt (';' stmt)* [';']
    stmt     := '^' NAME (FLAG | arg)*  |  NAME '=' expr  |  expr
    expr     := NAME FLAG* expr          (shorthand for  expr -> NAME FLAG*)
              | postfix
    postfix  := primary ('.' NAME | '->' NAME FLAG* ['(' args ')'] | '[' index ']')*
    primary  := LOCATION | '(' expr ')' | '$' | '$n' | '$-n' | NAME | STRING
    index    := NUMBER | NUMBER '..' [NUMBER] | '..' NUMBER
"""
import re
from typing import Any, Iterator, List, Optional

from clyde.clyde_datatypes import (
    ParseError, UnknownCommand, Token,
    LocationLiteral, HistoryRef, VarRef, StringLiteral, Apply, Index,
    ExprStatement, Assign, MetaCommand, Node
)

TOKEN_TAGS = {
    'location', 'string', 'dollar', 'arrow', 'flag', 'range', 'dot', 'caret',
    'lparen', 'rparen', 'lbracket', 'rbracket', 'comma', 'semi', 'equals',
    'colon', 'number', 'name',
}

# Alias -> canonical meta-command name.
META_COMMANDS = {
    'exit': 'exit', 'q': 'exit',
    'help': 'help', 'h': 'help',
    'clear': 'clear',
}

# Tokens that can start an expression; a NAME followed by one of these is a
# function shorthand rather than a variable reference.
_EXPR_START = {'location', 'lparen', 'dollar', 'name', 'string'}

_TRIVIA = re.compile(r"(?:\s|#[^\n]*)*")


class ClydeTransformer:
    def transform(self, node: Any, source: str) -> List[Node]:
        tokens = list(self.tokens(node, source))
        return _StatementParser(tokens, source).parse()

    def tokens(self, node: Any, source: str) -> Iterator[Token]:
        """Yields the leaf tokens in order, each with its offset, line and column."""
        pos = 0
        for raw in self._flatten(node):
            text = raw.get('text') or ''
            pos = _TRIVIA.match(source, pos).end()
            if not source.startswith(text, pos):
                found = source.find(text, pos)
                if found < 0:
                    raise ParseError(f"Unexpected token `{text}`")
                pos = found
            line, col = _line_col(source, pos)
            yield {'tag': raw['tag'], 'text': text, 'start': pos, 'end': pos + len(text),
                   'line': line, 'col': col}
            pos += len(text)

    def _flatten(self, node: Any) -> Iterator[dict]:
        if isinstance(node, list):
            for child in node:
                yield from self._flatten(child)
            return
        if not isinstance(node, dict):
            return
        if node.get('tag') in TOKEN_TAGS and 'text' in node:
            yield node
            return
        children = node.get('children')
        if isinstance(children, dict):
            children = list(children.values())
        if children:
            yield from self._flatten(children)
        elif 'tag' not in node:
            # Named-children dicts (no 'tag')
            yield from self._flatten(list(node.values()))


def _line_col(source: str, offset: int):
    line = source.count('\n', 0, offset) + 1
    col = offset - (source.rfind('\n', 0, offset) + 1) + 1
    return line, col


def parse_location(text: str, token: Optional[Token] = None) -> LocationLiteral:
    """Splits a location literal such as `(:src/main.rs:10:4)` into its parts.

    Accepted shapes are `(:)`, `(:name)`, `(:line)`, `(:name:line)`,
    `(:line:column)` and `(:name:line:column)`, optionally with one
    trailing colon. A span `(:name:line:column-line:column)` (name optional)
    is also accepted; it is what ranges print as.
    """
    inner = text.strip()[1:-1].strip()
    m = _SPAN.match(inner)
    if m:
        return _parse_span(m, token)
    parts = [p.strip() for p in inner[1:].split(':')]
    if len(parts) > 1 and parts[-1] == '':
        parts.pop()
    if len(parts) > 3:
        raise ParseError(f"Invalid location, unexpected `{parts[3]}`", token)

    def number(part):
        if part is None:
            return None
        if not part.isdigit():
            raise ParseError(f"Invalid location, expected number, found `{part}`", token)
        value = int(part)
        if value < 1:
            raise ParseError("Invalid location, lines and columns start at 1", token)
        return value

    first = parts[0] or None
    rest = parts[1:]
    if first is not None and first.isdigit():
        if len(rest) > 1:
            raise ParseError(f"Invalid location, unexpected `{rest[1]}`", token)
        return LocationLiteral(None, number(first), number(rest[0] if rest else None))
    if first is None and rest:
        raise ParseError("Invalid location, expected a file name or line", token)
    return LocationLiteral(first,
                           number(rest[0] if len(rest) > 0 else None),
                           number(rest[1] if len(rest) > 1 else None))


_SPAN = re.compile(
    r"^:(?:\s*(?P<name>[^:]*?)\s*:)?"
    r"\s*(?P<l1>\d+)\s*:\s*(?P<c1>\d+)\s*-\s*(?P<l2>\d+)\s*:\s*(?P<c2>\d+)\s*:?$"
)


def _parse_span(m: re.Match, token: Optional[Token]) -> LocationLiteral:
    l1, c1, l2, c2 = (int(m.group(g)) for g in ('l1', 'c1', 'l2', 'c2'))
    if min(l1, c1, l2, c2) < 1:
        raise ParseError("Invalid location, lines and columns start at 1", token)
    if (l2, c2) < (l1, c1):
        raise ParseError(f"Invalid location, span ends at {l2}:{c2} before it starts at {l1}:{c1}", token)
    return LocationLiteral(m.group('name') or None, l1, c1, end=(l2, c2))


def parse_history_ref(text: str) -> HistoryRef:
    digits = text[1:]
    if not digits:
        return HistoryRef()
    if digits.startswith('-'):
        return HistoryRef(int(digits[1:]), relative=True)
    return HistoryRef(int(digits))


class _StatementParser:
    def __init__(self, tokens: List[Token], source: str):
        self.tokens = tokens
        self.source = source
        self.pos = 0
        self.prev: Optional[Token] = None

    # ----- token cursor -----

    def _peek(self, ahead: int = 0) -> Optional[Token]:
        i = self.pos + ahead
        return self.tokens[i] if i < len(self.tokens) else None

    def _at(self, tag: str, ahead: int = 0) -> bool:
        tok = self._peek(ahead)
        return tok is not None and tok['tag'] == tag

    def _bump(self) -> Token:
        tok = self.tokens[self.pos]
        self.pos += 1
        self.prev = tok
        return tok

    def _expect(self, tag: str, message: str, anchor: Optional[Token] = None) -> Token:
        if self._at(tag):
            return self._bump()
        tok = self._peek()
        if tok is None:
            raise ParseError(f"{message}, found end of input", anchor or self.prev)
        raise ParseError(f"{message}, found `{tok['text']}`", tok)

    def _loc(self, start: Token) -> Token:
        end = self.prev['end'] if self.prev else start['end']
        return {'tag': start['tag'], 'line': start['line'], 'col': start['col'],
                'text': self.source[start['start']:end]}

    def _node(self, node: Node, start: Token) -> Node:
        node.loc = self._loc(start)
        return node

    # ----- statements -----

    def parse(self) -> List[Node]:
        statements = []
        while self._peek() is not None:
            if self._at('semi'):
                self._bump()
                continue
            statements.append(self._statement())
            if self._peek() is not None:
                self._expect('semi', "Expected `;` between statements")
        return statements

    def _statement(self) -> Node:
        start = self._peek()
        if start['tag'] == 'caret':
            return self._meta()
        if start['tag'] == 'name' and self._at('equals', 1):
            name = self._bump()['text']
            self._bump()
            expr = self._expr()
            return self._node(Assign(name, expr), start)
        return self._node(ExprStatement(self._expr()), start)

    def _meta(self) -> MetaCommand:
        caret = self._bump()
        name_tok = self._expect('name', "Expected a command name after `^`", caret)
        canonical = META_COMMANDS.get(name_tok['text'])
        if canonical is None:
            raise UnknownCommand(name_tok['text'], name_tok)
        command = MetaCommand(canonical)
        while self._peek() is not None and not self._at('semi'):
            tok = self._peek()
            match tok['tag']:
                case 'flag':
                    command.flags.append(self._bump()['text'])
                    command.flag_locs.append(tok)
                case 'dollar':
                    self._bump()
                    command.args.append(self._node(parse_history_ref(tok['text']), tok))
                case 'name':
                    self._bump()
                    command.args.append(self._node(VarRef(tok['text']), tok))
                case 'string':
                    self._bump()
                    command.args.append(self._node(StringLiteral(tok['text'][1:-1]), tok))
                case _:
                    raise ParseError(f"Unexpected `{tok['text']}` in command `^{name_tok['text']}`", tok)
        return self._node(command, caret)

    # ----- expressions -----

    def _expr(self) -> Node:
        start = self._peek()
        if start is not None and start['tag'] == 'name':
            nxt = self._peek(1)
            if nxt is not None and (nxt['tag'] == 'flag' or nxt['tag'] in _EXPR_START):
                name_tok = self._bump()
                flags, flag_locs = self._flags()
                operand = self._expr()
                node = Apply(operand, name_tok['text'], flags)
                node.name_loc = name_tok
                node.flag_locs = flag_locs
                return self._node(node, start)
        return self._postfix()

    def _flags(self):
        flags, locs = [], []
        while self._at('flag'):
            tok = self._bump()
            flags.append(tok['text'])
            locs.append(tok)
        return flags, locs

    def _postfix(self) -> Node:
        start = self._peek()
        node = self._primary()
        while True:
            if self._at('dot'):
                dot = self._bump()
                name_tok = self._expect('name', "Expected a field name after `.`", dot)
                node = Apply(node, name_tok['text'], field=True)
                node.name_loc = name_tok
            elif self._at('arrow'):
                arrow = self._bump()
                name_tok = self._expect('name', "Expected a function name after `->`", arrow)
                flags, flag_locs = self._flags()
                args = self._args() if self._at('lparen') else []
                node = Apply(node, name_tok['text'], flags, args)
                node.name_loc = name_tok
                node.flag_locs = flag_locs
            elif self._at('lbracket'):
                node = self._index(node)
            else:
                return node
            self._node(node, start)

    def _primary(self) -> Node:
        tok = self._peek()
        if tok is None:
            raise ParseError("Unexpected end of input, expected an expression", self.prev)
        match tok['tag']:
            case 'location':
                self._bump()
                return self._node(parse_location(tok['text'], tok), tok)
            case 'lparen':
                self._bump()
                if self._at('colon'):
                    raise ParseError("Unterminated location, expected `)`", tok)
                if self._at('rparen'):
                    raise ParseError("Empty parentheses, expected an expression", self._peek())
                inner = self._expr()
                self._expect('rparen', "Unterminated parenthesis, expected `)`", tok)
                return inner
            case 'dollar':
                self._bump()
                return self._node(parse_history_ref(tok['text']), tok)
            case 'name':
                self._bump()
                return self._node(VarRef(tok['text']), tok)
            case 'string':
                self._bump()
                return self._node(StringLiteral(tok['text'][1:-1]), tok)
            case _:
                raise ParseError(f"Unexpected `{tok['text']}`, expected an expression", tok)

    def _args(self) -> List[Node]:
        opening = self._bump()
        args = []
        if self._at('rparen'):
            self._bump()
            return args
        while True:
            args.append(self._expr())
            if self._at('comma'):
                self._bump()
                continue
            self._expect('rparen', "Unterminated argument list, expected `)`", opening)
            return args

    def _index(self, lhs: Node) -> Index:
        opening = self._bump()
        if self._at('range'):
            self._bump()
            stop = int(self._expect('number', "Expected an index after `..`")['text'])
            node = Index(lhs, None, stop, is_slice=True)
        else:
            start = int(self._expect('number', "Expected an index")['text'])
            if self._at('range'):
                self._bump()
                stop = int(self._bump()['text']) if self._at('number') else None
                node = Index(lhs, start, stop, is_slice=True)
            else:
                node = Index(lhs, start)
        self._expect('rbracket', "Unterminated index, expected `]`", opening)
        return node
