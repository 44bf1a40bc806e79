import io
import sys
from pathlib import Path

import pytest

from clyde_cli import main

SAMPLE = str(Path(__file__).parent / "sample_program.yaml")


@pytest.mark.asyncio
async def test_missing_model_is_a_fatal_error(monkeypatch, capsys):
    monkeypatch.delenv("CLYDE_MODEL", raising=False)
    assert await main([]) == 1
    assert "usage" in capsys.readouterr().err


@pytest.mark.asyncio
async def test_unloadable_model_exits_nonzero(tmp_path, capsys):
    assert await main([str(tmp_path / "missing.yaml")]) == 1
    assert "AdapterFailure" in capsys.readouterr().err


@pytest.mark.asyncio
async def test_script_runs_line_by_line_and_writes_redirects(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    script = tmp_path / "explore.clyde"
    script.write_text(
        "# count the identifiers on line 1\n"
        "(:a.rs:1).idents.count\n"
        "\n"
        "(:src/back/mod.rs:10:38).idents.pick.def -> show -f (\"def.txt\")\n"
    )
    assert await main([SAMPLE, str(script)]) == 0
    assert capsys.readouterr().out.splitlines() == ["3"]
    assert (tmp_path / "def.txt").read_text() == "pub struct Rls\n"


@pytest.mark.asyncio
async def test_script_stops_at_the_first_error(tmp_path, capsys):
    script = tmp_path / "broken.clyde"
    script.write_text("(:a.rs).frob\n(:a.rs)\n")
    assert await main([SAMPLE, str(script)]) == 1
    captured = capsys.readouterr()
    assert "Unknown function: `frob`" in captured.err
    assert captured.out == ""


@pytest.mark.asyncio
async def test_repl_reads_until_exit(monkeypatch, capsys):
    monkeypatch.setenv("CLYDE_MODEL", SAMPLE)
    monkeypatch.setattr(sys, "stdin", io.StringIO("(:a.rs)\n$.frob\n^exit\n(:a.rs:1)\n"))
    assert await main([]) == 0
    captured = capsys.readouterr()
    assert captured.out.startswith("Clyde 0.1")
    assert "0 > (:a.rs)\n1 > 1 > " in captured.out
    assert "Unknown function: `frob`" in captured.err


@pytest.mark.asyncio
async def test_repl_ends_cleanly_at_end_of_input(monkeypatch):
    monkeypatch.setattr(sys, "stdin", io.StringIO(""))
    assert await main([SAMPLE]) == 0


@pytest.mark.asyncio
async def test_output_before_an_error_on_the_same_line_is_shown(tmp_path, monkeypatch, capsys):
    monkeypatch.setattr(sys, "stdin", io.StringIO("(:a.rs:1).idents.count; $.frob\n"))
    assert await main([SAMPLE]) == 0
    captured = capsys.readouterr()
    assert "0 > 3\n1 > " in captured.out
    assert "Unknown function: `frob`" in captured.err

    script = tmp_path / "partial.clyde"
    script.write_text("(:a.rs:1).idents.count; $.frob\n")
    assert await main([SAMPLE, str(script)]) == 1
    assert capsys.readouterr().out.splitlines() == ["3"]
