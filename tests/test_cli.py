from __future__ import annotations

import json
from pathlib import Path

import pytest

from bef import build_parser, make_step_callback, run_cli
from interpreter import Interpreter


def test_runs_literal_source_quietly(capsys) -> None:
    assert run_cli(["-source", "94*.@"]) == 0
    out = capsys.readouterr().out
    assert out == "36 "


def test_runs_program_file(tmp_path: Path, capsys, hello_world: str) -> None:
    path = tmp_path / "hello.bf"
    path.write_text(hello_world, encoding="utf-8")
    assert run_cli([str(path)]) == 0
    assert capsys.readouterr().out == "Hello, world!\n"


def test_missing_program_file(tmp_path: Path, capsys) -> None:
    assert run_cli([str(tmp_path / "missing.bf")]) == 1
    assert "Failed to load program" in capsys.readouterr().err


def test_runtime_error_prints_traceback(capsys) -> None:
    assert run_cli(["-source", "10/@", "--traceback-json"]) == 1
    err = capsys.readouterr().err
    assert "Failed to run the program:" in err
    assert "BefArithmeticError: Division by zero" in err
    payload = err[err.index("\n{\n") + 1:]
    assert json.loads(payload)["error"]["failing_step_index"] == 3


def test_trace_mode_prints_each_step(capsys) -> None:
    assert run_cli(["-source", "94*.@", "--trace"]) == 0
    out = capsys.readouterr().out
    assert out.startswith("Loaded:\n")
    assert "Running program..." in out
    assert "[1] Executing: Num(4)" in out
    assert "[4] Executing: End" in out
    assert "Output: 36 " in out


def test_max_steps_and_seed(capsys) -> None:
    assert run_cli(["-source", ">1+", "--max-steps", "7", "--seed", "3"]) == 0
    assert capsys.readouterr().out == ""


def test_bad_extension_path(tmp_path: Path, capsys) -> None:
    assert run_cli(["-source", "@", "--ext", str(tmp_path / "nope.py")]) == 1
    assert "Failed to load extensions" in capsys.readouterr().err


def test_display_callback_redraws_and_paces(capsys) -> None:
    args = build_parser().parse_args(["x", "--stack", "--playfield", "--delay", "25", "--debug"])
    waits, sleeps = [], []
    callback = make_step_callback(args, color=False, wait=lambda: waits.append(1), sleep=sleeps.append)
    interp = Interpreter()
    interp.load("12@")
    interp.run(callback)
    out = capsys.readouterr().out
    assert out.count("\x1b[2J\x1b[1;1H") == 2
    assert "Stack: 1 2 " in out
    assert "Playfield:" in out
    assert waits == [1, 1]
    assert sleeps == [pytest.approx(0.025), pytest.approx(0.025)]
