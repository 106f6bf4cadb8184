"""P-Logo entry point and REPL wiring."""
from __future__ import annotations
import argparse
import json
import logging
import sys
from typing import Any, Dict, List, Optional

import numpy as np

from hooks import logger
from interpreter import Interpreter, TracebackFormatter
from lexer import LogoError, LogoParseError
from machine import DEFAULT_VIEWPORT, Machine
from value import LogoRuntimeError


BLOCK_KEYWORDS = ("fn", "if", "loop")


def build_machine(
    width: float = DEFAULT_VIEWPORT[0],
    height: float = DEFAULT_VIEWPORT[1],
    origin: Optional[List[float]] = None,
    seed: Optional[int] = None,
) -> Machine:
    home = (origin[0], origin[1]) if origin else None
    return Machine(
        viewport=lambda: (width, height),
        home=home,
        rng=np.random.default_rng(seed),
    )


def machine_state(machine: Machine) -> Dict[str, Any]:
    snapshot = machine.snapshot()
    return {
        "turtle": {
            "x": snapshot.x,
            "y": snapshot.y,
            "angle": snapshot.angle,
            "pen_down": snapshot.pen_down,
            "thickness": snapshot.thickness,
            "color": list(snapshot.color),
        },
        "segments": [
            {
                "from": list(segment.start),
                "to": list(segment.end),
                "thickness": segment.thickness,
                "color": list(segment.color),
            }
            for segment in snapshot.history
        ],
        "variables": {name: value.render() for name, value in snapshot.variables.items()},
        "bindings": [
            {"name": b.name, "kind": b.kind, "min": b.min, "max": b.max, "value": b.value.render()}
            for b in snapshot.bindings
        ],
        "functions": list(snapshot.functions),
    }


def dump_machine(machine: Machine, mode: str) -> None:
    if mode == "json":
        print(json.dumps(machine_state(machine), indent=2))
    elif mode == "csv":
        np.savetxt(
            sys.stdout,
            machine.history_array(),
            delimiter=",",
            fmt="%.6g",
            header="x1,y1,x2,y2,thickness",
            comments="",
        )


def _report(interpreter: Interpreter, error: LogoError, verbose: bool, traceback_json: bool = False) -> None:
    if isinstance(error, LogoRuntimeError):
        formatter = TracebackFormatter(interpreter)
        print(formatter.format_text(error, verbose=verbose), file=sys.stderr)
        if traceback_json:
            print(formatter.to_json(error), file=sys.stderr)
    elif isinstance(error, LogoParseError):
        print(f"ParseError: {error}", file=sys.stderr)
    else:
        print(f"LexError: {error}", file=sys.stderr)


def _is_block_start(stripped: str) -> bool:
    words = stripped.split("(", 1)[0].split()
    if words and words[0] in BLOCK_KEYWORDS:
        return True
    return stripped.endswith("{")


def run_repl(machine: Machine, verbose: bool) -> int:
    print("\x1b[38;2;153;221;255mP-Logo\033[0m REPL. Enter statements, blank line to run buffer.")
    print("Commands: :help lists built-ins, :state shows the turtle, :reset clears the machine.")
    interpreter = Interpreter(machine, filename="<repl>", verbose=verbose, output_sink=print)
    buffer: List[str] = []

    while True:
        prompt = "\x1b[38;2;153;221;255m>>>\033[0m " if not buffer else "\x1b[38;2;153;221;255m..>\033[0m "
        try:
            line = input(prompt)
        except EOFError:
            print()
            break

        stripped = line.strip()

        if not buffer and stripped.startswith(":"):
            command = stripped[1:]
            if command == "help":
                print(", ".join(interpreter.builtins.catalogue()))
            elif command == "state":
                print(json.dumps(machine_state(machine)["turtle"]))
            elif command == "reset":
                machine.reset(full=True)
            elif command in ("quit", "exit"):
                break
            else:
                print(f"Unknown command ':{command}'", file=sys.stderr)
            continue

        if not buffer and stripped != "" and not _is_block_start(stripped):
            try:
                program = interpreter.parse(line)
            except LogoParseError:
                buffer.append(line)
                continue
            except LogoError as error:
                _report(interpreter, error, verbose)
                continue
            try:
                interpreter.execute(program)
            except LogoError as error:
                _report(interpreter, error, verbose)
            continue

        if stripped == "" and buffer:
            source_text = "\n".join(buffer)
            buffer.clear()
            try:
                interpreter.run(source_text)
            except LogoError as error:
                _report(interpreter, error, verbose)
            continue

        if stripped != "" or buffer:
            buffer.append(line)

    return 0


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="P-Logo turtle graphics interpreter")
    parser.add_argument("program", nargs="?", help="Source file path or literal source with -source")
    parser.add_argument("-source", "--source", dest="source_mode", action="store_true", help="Treat program argument as literal source text")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Emit env snapshots in tracebacks")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit JSON traceback")
    parser.add_argument("--width", type=float, default=DEFAULT_VIEWPORT[0], help="Viewport width reported by winw()")
    parser.add_argument("--height", type=float, default=DEFAULT_VIEWPORT[1], help="Viewport height reported by winh()")
    parser.add_argument("--origin", type=float, nargs=2, metavar=("X", "Y"), help="Home position (defaults to the viewport centre)")
    parser.add_argument("--seed", type=int, help="Seed for rand()")
    parser.add_argument("--dump", choices=("none", "json", "csv"), default="none", help="Print the final machine state")
    parser.add_argument("--log-level", default="WARNING", choices=("DEBUG", "INFO", "WARNING", "ERROR"), help="Logging level")
    args = parser.parse_args(argv)

    logger.setLevel(getattr(logging, args.log_level))
    machine = build_machine(args.width, args.height, args.origin, args.seed)

    if args.program is None:
        if args.source_mode:
            print("-source requires a program string", file=sys.stderr)
            return 1
        return run_repl(machine, verbose=args.verbose)

    if args.source_mode:
        source_text = args.program
        filename = "<string>"
    else:
        filename = args.program
        try:
            with open(filename, "r", encoding="utf-8") as handle:
                source_text = handle.read()
        except OSError as exc:
            print(f"Failed to read {filename}: {exc}", file=sys.stderr)
            return 1

    interpreter = Interpreter(machine, filename=filename, verbose=args.verbose, output_sink=print)
    try:
        interpreter.run(source_text)
    except LogoError as error:
        _report(interpreter, error, args.verbose, args.traceback_json)
        return 1
    finally:
        dump_machine(machine, args.dump)
    return 0


if __name__ == "__main__":
    raise SystemExit(run_cli())
