"""
A pretty-printer for Clyde values.

Every value has three renderings: `short` (one line), `long` (detailed, may
span lines) and `list` (one line per element for collections). Locations and
ranges render as literals that can be typed back in.
"""
from clyde.clyde_datatypes import (
    Location, Range, MultiFileRange, Identifier, Def, Item, Type, QuerySet, QueryList, Query,
    Kind, TypeMismatch, _UnitType
)
from clyde.clyde_model import call_adapter

FORMS = ('short', 'long', 'list')

# Element kinds whose long form fits on one line.
_ONE_LINE_KINDS = {None, Kind.LOCATION, Kind.RANGE, Kind.IDENTIFIER, Kind.QUERY, Kind.STRING, Kind.NUMBER}


class Printer:
    """Formats Clyde values as text."""

    def __init__(self, model=None):
        self.model = model
        self._handlers = self._create_handlers()

    def pformat(self, obj, form='short'):
        """Public entry point to format an object."""
        if form not in FORMS:
            raise TypeMismatch(f"Unknown rendering form `{form}`, expected one of {', '.join(FORMS)}")
        handler = self._get_handler(obj)
        return handler(obj, form)

    def _get_handler(self, obj):
        obj_type = type(obj)
        if obj_type in self._handlers:
            return self._handlers[obj_type]
        # Default to Python's repr for unknown types
        return lambda o, f: repr(o)

    def _create_handlers(self):
        return {
            str: self._pformat_str,
            int: self._pformat_primitive,
            _UnitType: self._pformat_unit,
            Location: self._pformat_location,
            Range: self._pformat_range,
            MultiFileRange: self._pformat_multi_file_range,
            Identifier: self._pformat_identifier,
            Item: self._pformat_item,
            Def: self._pformat_def,
            Type: self._pformat_type,
            QuerySet: self._pformat_set,
            QueryList: self._pformat_list,
            Query: self._pformat_query,
        }

    def _pformat_primitive(self, obj, form):
        return str(obj)

    def _pformat_str(self, obj, form):
        return obj

    def _pformat_unit(self, obj, form):
        return ""

    def _pformat_location(self, obj, form):
        parts = [obj.name] if obj.name else []
        if obj.line is not None:
            parts.append(str(obj.line))
        if obj.column is not None:
            parts.append(str(obj.column))
        return f"(:{':'.join(parts)})"

    def _pformat_range(self, obj, form):
        return (f"(:{obj.name}:{obj.start.line}:{obj.start.column}"
                f"-{obj.end.line}:{obj.end.column})")

    def _pformat_multi_file_range(self, obj, form):
        literal = f"(:{obj.pattern})"
        if form == 'long':
            return "\n".join([literal] + [f"  {name}" for name in obj.names])
        return literal

    def _pformat_identifier(self, obj, form):
        match form:
            case 'short':
                return obj.name
            case 'list':
                start = obj.span.start
                return f"{obj.name} (:{start.name}:{start.line}:{start.column})"
            case _:
                return f"{obj.name} {self._pformat_range(obj.span, form)}"

    def _pformat_item(self, obj, form):
        if self.model is None:
            return f"{obj.kind_tag} {obj.name}"
        return call_adapter(self.model.render_item, obj, form)

    def _pformat_def(self, obj, form):
        if form == 'short':
            return self._pformat_item(obj.primary, form)
        sep = "\n\n" if form == 'long' else "\n"
        return sep.join(self._pformat_item(item, form) for item in obj.chain)

    def _pformat_type(self, obj, form):
        text = self._pformat_item(obj.item, form)
        if form == 'long' and obj.identifier is not None:
            text += f"\n\ntype of {self._pformat_identifier(obj.identifier, 'long')}"
        return text

    def _pformat_set(self, obj, form):
        if not obj.count:
            return "{}"
        if form == 'short':
            return "{" + ", ".join(self.pformat(e, 'short') for e in obj) + "}"
        sep = "\n\n" if form == 'long' and obj.element_kind not in _ONE_LINE_KINDS else "\n"
        return sep.join(self.pformat(e, form) for e in obj)

    def _pformat_list(self, obj, form):
        if not obj.count:
            return "[]"
        if form == 'short':
            return "[" + ", ".join(self.pformat(e, 'short') for e in obj) + "]"
        if form == 'list':
            width = len(str(obj.count - 1))
            return "\n".join(f"{str(i).rjust(width)}: {self.pformat(e, 'list')}" for i, e in enumerate(obj))
        sep = "\n\n" if obj.element_kind not in _ONE_LINE_KINDS else "\n"
        return sep.join(self.pformat(e, form) for e in obj)

    def _pformat_query(self, obj, form):
        return f"<query {obj.text}>"

