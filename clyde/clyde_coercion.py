"""
The coercion ladder.

When a value's kind does not match what a usage site needs, these rules are
tried in order and the first one that applies wins:

  1. identity: the kinds already match;
  2. forcing: an unevaluated Query is evaluated to its value;
  3. singleton unwrap: a Set of exactly one element reads as that element;
  4. unit / empty-set duality: an empty Set reads as Unit where Unit is
     wanted, and Unit reads as an empty Set where a Set is wanted.

Coercion never changes a value; it only changes how the value is read.
"""
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

from clyde.clyde_datatypes import (
    Kind, Unit, Query, QuerySet, TypeMismatch, Token, kind_of, describe
)

Forcer = Callable[[Query], Awaitable[Any]]


async def coerce(value: Any, required: Kind, *, force: Optional[Forcer] = None,
                 element_kind: Optional[Kind] = None, token: Optional[Token] = None) -> Any:
    """Reads `value` as `required`, or raises TypeMismatch."""
    original = value
    while True:
        kind = kind_of(value)
        if required is Kind.ANY or kind is required:
            return value
        if kind is Kind.QUERY and force is not None:
            value = await force(value)
            continue
        if kind is Kind.SET and value.count == 1:
            value = value.pick()
            continue
        if kind is Kind.SET and value.count == 0 and required is Kind.UNIT:
            return Unit
        if value is Unit and required is Kind.SET:
            return QuerySet((), element_kind)
        raise TypeMismatch(f"expected {required}, found {describe(original)}", token)


async def receiver_candidates(value: Any, force: Optional[Forcer] = None) -> AsyncIterator[Any]:
    """Yields the successive readings of a receiver along the ladder.

    Dispatch takes the first reading that has a handler. The Unit / empty
    Set duality is followed at most once.
    """
    crossed = False
    while True:
        yield value
        kind = kind_of(value)
        if kind is Kind.QUERY and force is not None:
            value = await force(value)
        elif kind is Kind.SET and value.count == 1:
            value = value.pick()
        elif kind is Kind.SET and value.count == 0 and not crossed:
            crossed = True
            value = Unit
        elif value is Unit and not crossed:
            crossed = True
            value = QuerySet()
        else:
            return
