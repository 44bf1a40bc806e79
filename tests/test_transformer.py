from pathlib import Path

import pytest

from clyde.clyde_datatypes import (
    ParseError, UnknownCommand,
    LocationLiteral, HistoryRef, VarRef, StringLiteral, Apply, Index,
    ExprStatement, Assign, MetaCommand
)
from clyde.clyde_model import load_model
from clyde.clyde_runtime import QueryRunner
from clyde.clyde_transformer import parse_location

SAMPLE = Path(__file__).parent / "sample_program.yaml"


@pytest.fixture(scope="module")
def runner():
    return QueryRunner(load_model(str(SAMPLE)))


def parse_expr(runner, src):
    statements = runner.parse(src)
    assert len(statements) == 1
    assert isinstance(statements[0], ExprStatement)
    return statements[0].expr


# --- Location literals ---

@pytest.mark.parametrize("text, expected", [
    ("(:)", (None, None, None)),
    ("(:a.rs)", ("a.rs", None, None)),
    ("(:a.rs:)", ("a.rs", None, None)),
    ("(:12)", (None, 12, None)),
    ("(:12:4)", (None, 12, 4)),
    ("(:a.rs:12)", ("a.rs", 12, None)),
    ("(:src/back/mod.rs:10:38)", ("src/back/mod.rs", 10, 38)),
    ("(:src/back/mod.rs:10:38:)", ("src/back/mod.rs", 10, 38)),
    ("( : a.rs : 3 )", ("a.rs", 3, None)),
])
def test_location_literal_shapes(text, expected):
    loc = parse_location(text)
    assert (loc.name, loc.line, loc.column) == expected


@pytest.mark.parametrize("text, message", [
    ("(:a.rs:x)", "expected number, found `x`"),
    ("(:a.rs:1:2:3)", "unexpected `3`"),
    ("(:1:2:3)", "unexpected `3`"),
    ("(:a.rs:0)", "start at 1"),
    ("(:a.rs:3:5-2:1)", "before it starts"),
    ("(:a.rs:1:0-1:4)", "start at 1"),
])
def test_malformed_location_literals(text, message):
    with pytest.raises(ParseError) as exc:
        parse_location(text)
    assert message in str(exc.value)


@pytest.mark.parametrize("text, expected", [
    ("(:a.rs:1:17-1:18)", ("a.rs", 1, 17, (1, 18))),
    ("(:src/back/rls.rs:2:1-4:2)", ("src/back/rls.rs", 2, 1, (4, 2))),
    ("(:my-file.rs:3:1-3:9:)", ("my-file.rs", 3, 1, (3, 9))),
    ("(:1:4-2:1)", (None, 1, 4, (2, 1))),
    ("( : a.rs : 1 : 2 - 1 : 5 )", ("a.rs", 1, 2, (1, 5))),
])
def test_span_literals(text, expected):
    loc = parse_location(text)
    assert loc.is_span
    assert (loc.name, loc.line, loc.column, loc.end) == expected


def test_a_hyphenated_file_name_is_not_a_span():
    loc = parse_location("(:my-file.rs:3)")
    assert not loc.is_span
    assert (loc.name, loc.line) == ("my-file.rs", 3)


# --- Expressions ---

def test_field_chain(runner):
    expr = parse_expr(runner, "(:src/back/mod.rs:10:38).idents.pick.def")
    assert expr == Apply(Apply(Apply(LocationLiteral("src/back/mod.rs", 10, 38), "idents", field=True),
                               "pick", field=True), "def", field=True)
    assert expr.loc['text'] == "(:src/back/mod.rs:10:38).idents.pick.def"


def test_arrow_with_flags_and_args(runner):
    expr = parse_expr(runner, '$ -> show -l -f ("out.txt", long)')
    assert expr == Apply(HistoryRef(), "show", ["-l", "-f"], [StringLiteral("out.txt"), VarRef("long")])
    assert [t['col'] for t in expr.flag_locs] == [11, 14]


def test_shorthand_application(runner):
    assert parse_expr(runner, "select (:a.rs:1).idents") == Apply(
        Apply(LocationLiteral("a.rs", 1), "idents", field=True), "select")
    assert parse_expr(runner, "show -z $2") == Apply(HistoryRef(2), "show", ["-z"])
    assert parse_expr(runner, "show -L select $-1") == Apply(
        Apply(HistoryRef(1, relative=True), "select"), "show", ["-L"])


def test_bare_name_is_a_variable(runner):
    assert parse_expr(runner, "rls") == VarRef("rls")
    assert parse_expr(runner, "rls.count") == Apply(VarRef("rls"), "count", field=True)


def test_parenthesised_expression(runner):
    assert parse_expr(runner, "(select $).count") == Apply(Apply(HistoryRef(), "select"), "count", field=True)


def test_indexing_and_slicing(runner):
    base = Apply(HistoryRef(), "list", field=True)
    assert parse_expr(runner, "$.list[2]") == Index(base, 2)
    assert parse_expr(runner, "$.list[1..3]") == Index(base, 1, 3, is_slice=True)
    assert parse_expr(runner, "$.list[1..]") == Index(base, 1, None, is_slice=True)
    assert parse_expr(runner, "$.list[..2]") == Index(base, None, 2, is_slice=True)


def test_comments_are_ignored(runner):
    assert parse_expr(runner, "$3 # the third entry") == HistoryRef(3)


# --- Statements ---

def test_statement_sequence_and_assignment(runner):
    statements = runner.parse("x = (:a.rs:1); x.idents;")
    assert statements == [
        Assign("x", LocationLiteral("a.rs", 1)),
        ExprStatement(Apply(VarRef("x"), "idents", field=True)),
    ]


def test_meta_commands_and_aliases(runner):
    assert runner.parse("^clear $2") == [MetaCommand("clear", [HistoryRef(2)])]
    assert runner.parse("^q") == [MetaCommand("exit")]
    assert runner.parse("^h show") == [MetaCommand("help", [VarRef("show")])]


def test_unknown_meta_command_names_the_token(runner):
    with pytest.raises(UnknownCommand) as exc:
        runner.parse("^unknown")
    assert exc.value.name == "unknown"
    assert exc.value.token['col'] == 2


@pytest.mark.parametrize("src", [
    "(select $",
    "$ -> show (long",
    "$.list[1",
    "$ ->",
    "$.",
    "$ $",
    "x =",
    "(:a.rs:1",
])
def test_malformed_statements(runner, src):
    with pytest.raises(ParseError):
        runner.parse(src)


def test_parse_error_carries_position(runner):
    with pytest.raises(ParseError) as exc:
        runner.parse("$ -> show (long")
    assert exc.value.token['line'] == 1
    assert exc.value.token['col'] == 11
