"""
The program model: the only way the evaluator reaches a loaded program.

`ProgramModel` is the capability interface. `StaticProgramModel` implements it
over a snapshot document (YAML or JSON) describing files, definition items and
identifiers, which is what the command-line REPL and the tests load.

Snapshot layout:

    files:
      src/main.rs: |            # file text; may be empty when unknown
        ...
    items:
      - id: main
        kind: fn
        name: main
        file: src/main.rs
        span: [1, 1, 3, 2]      # start line, start col, end line, end col
        focus: [1, 4, 1, 8]     # optional, defaults to span
        signature: fn main()    # optional
        doc: ...                # optional
        source: ...             # optional, defaults to the span's text
    identifiers:
      - id: 7
        name: main
        file: src/main.rs
        span: [1, 4, 1, 8]
        defs: [main]            # ids of candidate items, primary first
        type: some_item_id      # optional
"""
from abc import ABC
from fnmatch import fnmatch
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import pystache

from clyde.clyde_datatypes import (
    ClydeError, AdapterFailure, NotFound, Location, Range, MultiFileRange, Item, Identifier, Def, Type,
    QuerySet, Kind
)
from clyde.clyde_serialize import deserialize


def call_adapter(fn, *args):
    """Calls a program model capability; failures that are not Clyde errors become AdapterFailure."""
    try:
        return fn(*args)
    except ClydeError:
        raise
    except Exception as e:
        name = getattr(fn, '__name__', 'program model')
        raise AdapterFailure(f"`{name}` failed: {e}") from e


class ProgramModel(ABC):
    """The capability interface the evaluator uses to query a program.

    Every capability defaults to failing with AdapterFailure; concrete models
    override what they support.
    """

    def _not_implemented(self, name: str):
        raise AdapterFailure(f"Function not implemented by current program model: `{name}`")

    def resolve_location(self, name: Optional[str], line: Optional[int] = None,
                         column: Optional[int] = None) -> Union[Location, MultiFileRange]:
        """A single-file location, or a MultiFileRange when a pattern matches several files."""
        self._not_implemented("resolve_location")

    def identifiers_at(self, where: Union[Location, Range, MultiFileRange]) -> QuerySet:
        self._not_implemented("identifiers_at")

    def definition_of(self, identifier: Identifier) -> Def:
        self._not_implemented("definition_of")

    def type_of(self, identifier: Identifier) -> Type:
        self._not_implemented("type_of")

    def render_item(self, item: Item, form: str) -> str:
        self._not_implemented("render_item")


# ===================================================================
# Static snapshot model
# ===================================================================

ITEM_TEMPLATES = {
    'short': "{{#signature}}{{signature}}{{/signature}}{{^signature}}{{kind}} {{name}}{{/signature}}",
    'long': (
        "{{kind}} {{name}} {{where}}\n"
        "{{#doc}}\n"
        "{{doc}}\n"
        "{{/doc}}\n"
        "{{#source}}\n"
        "\n"
        "{{source}}\n"
        "{{/source}}"
    ),
    'list': "{{kind}} {{name}} {{where}}",
}


def _span(file: str, quad: Any, what: str) -> Range:
    if not isinstance(quad, (list, tuple)) or len(quad) != 4:
        raise AdapterFailure(f"invalid program model: {what} span must be [line, col, line, col]")
    l1, c1, l2, c2 = (int(x) for x in quad)
    try:
        return Range(Location(file, l1, c1), Location(file, l2, c2))
    except ValueError as e:
        raise AdapterFailure(f"invalid program model: {what}: {e}") from e


def _span_key(span: Range):
    return (span.name, span.start.line, span.start.column, span.end.line, span.end.column)


class StaticProgramModel(ProgramModel):
    """A program model over an in-memory snapshot dict."""

    def __init__(self, snapshot: Dict[str, Any]):
        if not isinstance(snapshot, dict):
            raise AdapterFailure("invalid program model: snapshot must be a mapping")
        files = snapshot.get('files') or {}
        if isinstance(files, list):
            files = {name: "" for name in files}
        self.files: Dict[str, str] = {str(k): (v or "") for k, v in files.items()}
        self.renderer = pystache.Renderer(escape=lambda u: u)

        self.items: Dict[Any, Item] = {}
        for record in snapshot.get('items') or []:
            item = self._load_item(record)
            self.items[item.id] = item

        self.identifiers: List[Identifier] = []
        self._defs: Dict[Any, List[Any]] = {}
        self._types: Dict[Any, Any] = {}
        for n, record in enumerate(snapshot.get('identifiers') or []):
            ident = Identifier(record['name'],
                               _span(self._file_of(record), record.get('span'), f"identifier `{record['name']}`"),
                               record.get('id', n))
            self.identifiers.append(ident)
            self._defs[ident.id] = list(record.get('defs') or [])
            if record.get('type') is not None:
                self._types[ident.id] = record['type']
        self.identifiers.sort(key=lambda i: (_span_key(i.span), i.name))

    def _file_of(self, record: Dict[str, Any]) -> str:
        file = record.get('file')
        if file not in self.files:
            raise AdapterFailure(f"invalid program model: unknown file `{file}`")
        return file

    def _load_item(self, record: Dict[str, Any]) -> Item:
        file = self._file_of(record)
        name = record['name']
        span = _span(file, record.get('span'), f"item `{name}`")
        focus = _span(file, record['focus'], f"item `{name}`") if record.get('focus') else span
        source = record.get('source')
        if source is None:
            source = self._text_of(span)
        return Item(
            kind_tag=record.get('kind', 'item'),
            name=name,
            span=span,
            focus=focus,
            source=source,
            doc=record.get('doc') or "",
            signature=record.get('signature') or "",
            id=record.get('id', name),
        )

    def _text_of(self, span: Range) -> str:
        lines = self.files.get(span.name, "").splitlines()
        if not lines or span.end.line > len(lines):
            return ""
        chunk = lines[span.start.line - 1:span.end.line]
        # End columns are exclusive.
        chunk[-1] = chunk[-1][:span.end.column - 1]
        chunk[0] = chunk[0][span.start.column - 1:]
        return "\n".join(chunk)

    # ----- ProgramModel -----

    def _match_files(self, name: Optional[str]) -> List[str]:
        if name is None:
            if len(self.files) == 1:
                return list(self.files)
            raise NotFound(f"No file given and the program has {len(self.files)} files")
        if name in self.files:
            return [name]
        matches = sorted(f for f in self.files if fnmatch(f, name) or f.endswith("/" + name))
        if not matches:
            raise NotFound(f"No file matches `{name}`")
        return matches

    def resolve_location(self, name, line=None, column=None) -> Union[Location, MultiFileRange]:
        files = self._match_files(name)
        if len(files) > 1:
            if line is not None or column is not None:
                raise NotFound(f"`{name}` matches {len(files)} files ({', '.join(files)}), "
                               f"a line or column needs exactly one")
            return MultiFileRange(name, files)
        file = files[0]
        text = self.files[file]
        if text and line is not None:
            lines = text.splitlines()
            if line > len(lines):
                raise NotFound(f"Line {line} is past the end of `{file}` ({len(lines)} lines)")
            if column is not None and column > len(lines[line - 1]) + 1:
                raise NotFound(f"Column {column} is past the end of line {line} in `{file}`")
        return Location(file, line, column)

    def identifiers_at(self, where) -> QuerySet:
        if isinstance(where, MultiFileRange):
            found = [i for i in self.identifiers if where.covers(i.span.name)]
        elif isinstance(where, Range):
            found = [i for i in self.identifiers if i.span.within(where)]
        else:
            found = [i for i in self.identifiers if self._at_location(i, where)]
        return QuerySet(found, Kind.IDENTIFIER)

    def _at_location(self, ident: Identifier, where: Location) -> bool:
        if ident.span.name != where.name:
            return False
        if where.line is None:
            return True
        return ident.span.contains(where.line, where.column)

    def definition_of(self, identifier: Identifier) -> Def:
        ids = self._defs.get(identifier.id) or []
        items = [self.items[i] for i in ids if i in self.items]
        if not items:
            raise NotFound(f"No definition found for `{identifier.name}`")
        return Def(items)

    def type_of(self, identifier: Identifier) -> Type:
        item = self.items.get(self._types.get(identifier.id))
        if item is None:
            raise NotFound(f"No type found for `{identifier.name}`")
        return Type(item, identifier)

    def render_item(self, item: Item, form: str) -> str:
        template = ITEM_TEMPLATES.get(form)
        if template is None:
            raise AdapterFailure(f"Unknown rendering form: `{form}`")
        span = item.span
        context = {
            'kind': item.kind_tag,
            'name': item.name,
            'signature': item.signature,
            'doc': item.doc,
            'source': item.source,
            'where': f"(:{span.name}:{span.start.line}:{span.start.column})",
        }
        return self.renderer.render(template, context).rstrip("\n")


def load_model(path: str) -> StaticProgramModel:
    """Loads a StaticProgramModel from a YAML or JSON snapshot file."""
    try:
        data = Path(path).read_text(encoding='utf-8')
        snapshot = deserialize(data, path=path)
    except (OSError, ValueError) as e:
        raise AdapterFailure(f"Cannot load program model `{path}`: {e}") from e
    try:
        return StaticProgramModel(snapshot)
    except (KeyError, TypeError) as e:
        raise AdapterFailure(f"invalid program model `{path}`: {e}") from e
