import json
import sys
from pathlib import Path

import pytest


sys.path.append(str(Path(__file__).resolve().parents[1]))

import plogo


def test_source_mode_with_json_dump(capsys):
    code = plogo.run_cli(["-source", "f(10) r(90) f(5)", "--origin", "0", "0", "--dump", "json"])
    assert code == 0
    state = json.loads(capsys.readouterr().out)
    assert len(state["segments"]) == 2
    assert state["segments"][0]["to"] == pytest.approx([0.0, -10.0])
    assert state["turtle"]["angle"] == 90.0
    assert state["turtle"]["x"] == pytest.approx(5.0)


def test_csv_dump(capsys):
    code = plogo.run_cli(["-source", "thickness(2) line(1, 2, 3, 4)", "--dump", "csv"])
    assert code == 0
    lines = capsys.readouterr().out.strip().splitlines()
    assert lines == ["x1,y1,x2,y2,thickness", "1,2,3,4,2"]


def test_debug_prints_and_viewport_flags(capsys):
    code = plogo.run_cli(["-source", "debug(midx(), midy())", "--width", "200", "--height", "100"])
    assert code == 0
    assert capsys.readouterr().out.splitlines() == ["100", "50"]


def test_seed_makes_rand_reproducible(capsys):
    plogo.run_cli(["-source", "debug(rand(0, 1))", "--seed", "3"])
    first = capsys.readouterr().out
    plogo.run_cli(["-source", "debug(rand(0, 1))", "--seed", "3"])
    assert capsys.readouterr().out == first


def test_runtime_error_prints_traceback(capsys):
    code = plogo.run_cli(["-source", 'f("x")', "--traceback-json"])
    assert code == 1
    err = capsys.readouterr().err
    assert "Traceback (most recent call last):" in err
    assert "LogoTypeError" in err
    assert '"failing_step_index"' in err


def test_parse_error(capsys):
    assert plogo.run_cli(["-source", "loop(3) {"]) == 1
    assert capsys.readouterr().err.startswith("ParseError:")


def test_reads_program_file(tmp_path, capsys):
    script = tmp_path / "square.logo"
    script.write_text("# square\nloop(4) {\n  f(10)\n  r(90)\n}\n", encoding="utf-8")
    assert plogo.run_cli([str(script), "--dump", "csv"]) == 0
    assert len(capsys.readouterr().out.strip().splitlines()) == 5


def test_missing_file(tmp_path, capsys):
    assert plogo.run_cli([str(tmp_path / "missing.logo")]) == 1
    assert "Failed to read" in capsys.readouterr().err


def test_source_flag_requires_program(capsys):
    assert plogo.run_cli(["-source"]) == 1


def test_repl_keeps_machine_between_commands(monkeypatch, capsys):
    lines = iter(["f(10)", "loop(2) {", "  f(5)", "}", "", "debug(gety())", 'f("x")', ":bogus", ":state"])

    def fake_input(prompt=""):
        try:
            return next(lines)
        except StopIteration:
            raise EOFError

    monkeypatch.setattr("builtins.input", fake_input)
    assert plogo.run_cli(["--origin", "0", "0"]) == 0
    captured = capsys.readouterr()
    assert "\n-20\n" in captured.out
    assert "LogoTypeError" in captured.err
    assert "Unknown command ':bogus'" in captured.err
    assert '"pen_down": true' in captured.out
