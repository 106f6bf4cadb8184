from __future__ import annotations
import json
import math
import sys
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from hooks import HookRegistry, StepContext
from lexer import Lexer
from machine import Frame, Machine
from parser import (
    BUILTIN_ALIASES,
    Assignment,
    BinaryOp,
    CallExpression,
    Expression,
    ExpressionStatement,
    FuncDef,
    FunctionDefinition,
    IfStatement,
    Loop,
    NameReference,
    NumberLiteral,
    Parser,
    Program,
    SourceLocation,
    Statement,
    StringLiteral,
)
from value import (
    TYPE_BOOL,
    TYPE_NUM,
    TYPE_STR,
    UNDEFINED,
    LogoArityError,
    LogoNameError,
    LogoRuntimeError,
    LogoStackUnderflow,
    LogoTypeError,
    Value,
)


_BINARY_DISPATCH: Dict[str, Callable[[Value, Value], Value]] = {
    "ADD": lambda left, right: left.add(right),
    "SUB": lambda left, right: left.sub(right),
    "MUL": lambda left, right: left.mul(right),
    "DIV": lambda left, right: left.div(right),
    "MOD": lambda left, right: left.mod(right),
    "LT": lambda left, right: left.lt(right),
    "GT": lambda left, right: right.lt(left),
    "LTE": lambda left, right: left.lte(right),
    "GTE": lambda left, right: right.lte(left),
    "EQ": lambda left, right: left.eq(right),
}

# Deepest user-function nesting a program may reach.
MAX_CALL_DEPTH = 1000
# Python stack frames reserved per user call, nested if/loop bodies included.
PYTHON_FRAMES_PER_CALL = 40


@dataclass
class StateEntry:
    step_index: int
    rule: str
    frame_id: Optional[str]
    location: Optional[SourceLocation]
    detail: Optional[Dict[str, Any]] = None
    variables: Optional[Dict[str, str]] = None

    @property
    def state_id(self) -> str:
        return f"s_{self.step_index:06d}"

    @property
    def statement(self) -> Optional[str]:
        return self.location.statement if self.location else None


class StateLogger:
    def __init__(self, verbose: bool) -> None:
        self.verbose = verbose
        # Full history only in verbose mode; tracebacks need just the latest
        # entry per frame.
        self.entries: List[StateEntry] = []
        self.last_entry: Optional[StateEntry] = None
        self._by_frame: Dict[str, StateEntry] = {}
        self._steps = 0

    def record(
        self,
        rule: str,
        *,
        frame: Optional[Frame] = None,
        location: Optional[SourceLocation] = None,
        detail: Optional[Dict[str, Any]] = None,
        variables: Optional[Dict[str, str]] = None,
    ) -> StateEntry:
        entry = StateEntry(self._steps, rule, frame.frame_id if frame else None, location, detail, variables)
        self._steps += 1
        if self.verbose:
            self.entries.append(entry)
        if frame is not None:
            self._by_frame[frame.frame_id] = entry
        self.last_entry = entry
        return entry

    def last_entry_for_frame(self, frame_id: str) -> Optional[StateEntry]:
        return self._by_frame.get(frame_id)


BuiltinImpl = Callable[["Interpreter", List[Value], SourceLocation], Value]


@dataclass
class BuiltinFunction:
    name: str
    min_args: int
    max_args: Optional[int]
    impl: BuiltinImpl

    def validate(self, supplied: int, location: Optional[SourceLocation] = None) -> None:
        if self.max_args == self.min_args and supplied != self.min_args:
            raise LogoArityError(
                f"{self.name} expects {self.min_args} arguments but received {supplied}",
                location=location,
                rule=self.name,
            )
        if supplied < self.min_args:
            raise LogoArityError(f"{self.name} expects at least {self.min_args} arguments", location=location, rule=self.name)
        if self.max_args is not None and supplied > self.max_args:
            raise LogoArityError(f"{self.name} expects at most {self.max_args} arguments", location=location, rule=self.name)


class Builtins:
    def __init__(self) -> None:
        self.table: Dict[str, BuiltinFunction] = {}
        # Turtle movement and pen.
        self._register_number_command("forward", lambda m, d: m.forward(d))
        self._register_number_command("backward", lambda m, d: m.backward(d))
        self._register_number_command("left", lambda m, d: m.left(d))
        self._register_number_command("right", lambda m, d: m.right(d))
        self._register_number_command("angle", lambda m, d: m.set_angle(d))
        self._register_number_command("thickness", self._set_thickness)
        self._register_custom("up", 0, 0, self._up)
        self._register_custom("down", 0, 0, self._down)
        self._register_custom("pos", 2, 2, self._pos)
        self._register_custom("line", 4, 4, self._line)
        self._register_custom("clear", 0, 0, self._clear)
        # Queries.
        self._register_query("getx", lambda m: m.x)
        self._register_query("gety", lambda m: m.y)
        self._register_query("getangle", lambda m: m.angle)
        self._register_query("winw", lambda m: m.window_width())
        self._register_query("winh", lambda m: m.window_height())
        self._register_query("midx", lambda m: m.mid_x())
        self._register_query("midy", lambda m: m.mid_y())
        self._register_custom("rand", 2, 2, self._rand)
        # Slider variables.
        self._register_custom("intvar", 4, 4, self._intvar)
        self._register_custom("floatvar", 4, 4, self._floatvar)
        # Value stack and diagnostics.
        self._register_custom("push", 0, None, self._push)
        self._register_custom("pop", 0, 0, self._pop)
        self._register_custom("debug", 0, None, self._debug)

    def _register_custom(self, name: str, min_args: int, max_args: Optional[int], impl: BuiltinImpl) -> None:
        self.table[name] = BuiltinFunction(name=name, min_args=min_args, max_args=max_args, impl=impl)

    def _register_number_command(self, name: str, func: Callable[[Machine, float], None]) -> None:
        def impl(interpreter: "Interpreter", args: List[Value], location: SourceLocation) -> Value:
            func(interpreter.machine, self._expect_num(args[0], name, location))
            return UNDEFINED

        self.table[name] = BuiltinFunction(name=name, min_args=1, max_args=1, impl=impl)

    def _register_query(self, name: str, func: Callable[[Machine], float]) -> None:
        def impl(interpreter: "Interpreter", args: List[Value], location: SourceLocation) -> Value:
            return Value(TYPE_NUM, float(func(interpreter.machine)))

        self.table[name] = BuiltinFunction(name=name, min_args=0, max_args=0, impl=impl)

    def invoke(self, interpreter: "Interpreter", name: str, args: List[Value], location: SourceLocation) -> Value:
        builtin = self.table.get(name)
        if builtin is None:
            raise LogoNameError(f"Unknown function '{name}'", location=location, rule=name)
        builtin.validate(len(args), location)
        return builtin.impl(interpreter, args, location)

    def catalogue(self) -> List[str]:
        aliases: Dict[str, str] = {canonical: alias for alias, canonical in BUILTIN_ALIASES.items()}
        return [f"{name} [{aliases[name]}]" if name in aliases else name for name in self.table]

    # Helpers
    def _expect_num(self, value: Value, rule: str, location: SourceLocation) -> float:
        if value.type != TYPE_NUM:
            raise LogoTypeError(f"{rule} expects a number argument but got {value.type}", location=location, rule=rule)
        return value.value

    def _expect_int(self, value: Value, rule: str, location: SourceLocation) -> int:
        number = self._expect_num(value, rule, location)
        if not math.isfinite(number):
            raise LogoTypeError(f"{rule} expects a finite number", location=location, rule=rule)
        return int(number)

    def _expect_str(self, value: Value, rule: str, location: SourceLocation) -> str:
        if value.type != TYPE_STR:
            raise LogoTypeError(f"{rule} expects a string argument but got {value.type}", location=location, rule=rule)
        return value.value

    def _set_thickness(self, machine: Machine, width: float) -> None:
        machine.thickness = width

    def _up(self, interpreter: "Interpreter", args: List[Value], location: SourceLocation) -> Value:
        interpreter.machine.pen_down = False
        return UNDEFINED

    def _down(self, interpreter: "Interpreter", args: List[Value], location: SourceLocation) -> Value:
        interpreter.machine.pen_down = True
        return UNDEFINED

    def _pos(self, interpreter: "Interpreter", args: List[Value], location: SourceLocation) -> Value:
        x, y = (self._expect_num(arg, "pos", location) for arg in args)
        interpreter.machine.set_position(x, y)
        return UNDEFINED

    def _line(self, interpreter: "Interpreter", args: List[Value], location: SourceLocation) -> Value:
        x1, y1, x2, y2 = (self._expect_num(arg, "line", location) for arg in args)
        interpreter.machine.add_line((x1, y1), (x2, y2))
        return UNDEFINED

    def _clear(self, interpreter: "Interpreter", args: List[Value], location: SourceLocation) -> Value:
        interpreter.machine.clear()
        return UNDEFINED

    def _rand(self, interpreter: "Interpreter", args: List[Value], location: SourceLocation) -> Value:
        a, b = (self._expect_num(arg, "rand", location) for arg in args)
        low, high = min(a, b), max(a, b)
        if low == high:
            return Value(TYPE_NUM, low)
        return Value(TYPE_NUM, float(interpreter.machine.rng.uniform(low, high)))

    def _intvar(self, interpreter: "Interpreter", args: List[Value], location: SourceLocation) -> Value:
        name = self._expect_str(args[0], "intvar", location)
        vmin, vmax = (self._expect_int(arg, "intvar", location) for arg in args[1:3])
        default = self._expect_num(args[3], "intvar", location)
        interpreter.machine.declare_int_var(name, vmin, vmax, Value(TYPE_NUM, default))
        return UNDEFINED

    def _floatvar(self, interpreter: "Interpreter", args: List[Value], location: SourceLocation) -> Value:
        name = self._expect_str(args[0], "floatvar", location)
        vmin, vmax, default = (self._expect_num(arg, "floatvar", location) for arg in args[1:])
        interpreter.machine.declare_float_var(name, vmin, vmax, Value(TYPE_NUM, default))
        return UNDEFINED

    def _push(self, interpreter: "Interpreter", args: List[Value], location: SourceLocation) -> Value:
        for arg in args:
            interpreter.machine.push(arg)
        return UNDEFINED

    def _pop(self, interpreter: "Interpreter", args: List[Value], location: SourceLocation) -> Value:
        if not interpreter.machine.stack:
            raise LogoStackUnderflow("pop on an empty stack", location=location, rule="pop")
        return interpreter.machine.pop()

    def _debug(self, interpreter: "Interpreter", args: List[Value], location: SourceLocation) -> Value:
        for arg in args:
            interpreter.output_sink(arg.render())
        return UNDEFINED


class Interpreter:
    def __init__(
        self,
        machine: Machine,
        *,
        filename: str = "<string>",
        verbose: bool = False,
        hooks: Optional[HookRegistry] = None,
        output_sink: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.machine = machine
        self.filename = filename
        self.verbose = verbose
        self.hooks = hooks or HookRegistry()
        self.output_sink = output_sink or (lambda text: print(text))
        self.builtins = Builtins()
        self.logger = StateLogger(verbose=verbose)
        self.logger.record("SEED")

    def parse(self, source: str) -> Program:
        lexemes = Lexer(source, self.filename).tokenize()
        return Parser(lexemes, self.filename, source.splitlines()).parse()

    def run(self, source: str) -> None:
        self.execute(self.parse(source))

    def execute(self, program: Program) -> None:
        with self.machine.lock:
            previous_limit = sys.getrecursionlimit()
            sys.setrecursionlimit(previous_limit + MAX_CALL_DEPTH * PYTHON_FRAMES_PER_CALL)
            try:
                self._execute_program(program)
            finally:
                sys.setrecursionlimit(previous_limit)

    def _execute_program(self, program: Program) -> None:
        self._emit_event("program_start", self, program)
        try:
            self._execute_block(program.statements)
        except LogoRuntimeError as error:
            self._fail(error)
            raise
        except RecursionError as exc:
            wrapped = LogoRuntimeError("Maximum call depth exceeded", location=self._last_location(), rule="CALL")
            self._fail(wrapped)
            raise wrapped from exc
        except Exception as exc:
            # Surface Python-level faults as script errors so hosts can
            # report them with a script traceback.
            wrapped = LogoRuntimeError(f"Internal interpreter error: {exc}", location=self._last_location(), rule="internal")
            self._fail(wrapped)
            raise wrapped from exc
        else:
            self._emit_event("program_end", self, program)

    def _fail(self, error: LogoRuntimeError) -> None:
        if not error.call_stack:
            error.call_stack = list(self.machine.frames)
        if error.location is None:
            error.location = self._last_location()
        if self.logger.last_entry is not None:
            error.step_index = self.logger.last_entry.step_index
        self.machine.unwind()
        self._emit_event("on_error", self, error)

    def _last_location(self) -> Optional[SourceLocation]:
        entry = self.logger.last_entry
        return entry.location if entry else None

    def _execute_block(self, statements: Sequence[Statement]) -> None:
        execute_stmt = self._execute_statement
        for statement in statements:
            execute_stmt(statement)

    def _execute_statement(self, statement: Statement) -> None:
        self._log_step(rule=statement.__class__.__name__, location=statement.location)
        if isinstance(statement, ExpressionStatement):
            value = self._evaluate_expression(statement.expression)
            self.machine.current_frame.last_value = value
            return
        if isinstance(statement, Assignment):
            value = self._evaluate_expression(statement.expression)
            self.machine.current_frame.set(statement.target, value)
            return
        if isinstance(statement, Loop):
            self._execute_loop(statement)
            return
        if isinstance(statement, IfStatement):
            self._execute_if(statement)
            return
        if isinstance(statement, FuncDef):
            self.machine.functions[statement.name] = statement.function
            return
        raise LogoRuntimeError("Unsupported statement", location=statement.location)

    def _execute_loop(self, statement: Loop) -> None:
        count = self._evaluate_expression(statement.count)
        if count.type != TYPE_NUM:
            raise LogoTypeError(f"Loop count must be a number but got {count.type}", location=statement.location, rule="loop")
        if not math.isfinite(count.value):
            raise LogoRuntimeError("Loop count must be finite", location=statement.location, rule="loop")
        iterations = max(0, math.floor(count.value))
        frame = self.machine.current_frame
        counter = f"_i{frame.loop_depth}"
        frame.loop_depth += 1
        try:
            for i in range(iterations):
                frame.set(counter, Value(TYPE_NUM, float(i)))
                self._execute_block(statement.body)
        finally:
            frame.loop_depth -= 1

    def _execute_if(self, statement: IfStatement) -> None:
        condition = self._evaluate_expression(statement.condition)
        if condition.type != TYPE_BOOL:
            raise LogoTypeError(
                f"If condition must be a boolean but got {condition.type}",
                location=statement.condition.location,
                rule="if",
            )
        if condition.value:
            self._execute_block(statement.then_body)
        else:
            self._execute_block(statement.else_body)

    def _evaluate_expression(self, expression: Expression) -> Value:
        if isinstance(expression, NumberLiteral):
            return Value(TYPE_NUM, expression.value)
        if isinstance(expression, StringLiteral):
            return Value(TYPE_STR, expression.value)
        if isinstance(expression, NameReference):
            found = self.machine.current_frame.get_optional(expression.name)
            if found is None:
                raise LogoNameError(f"Undefined variable '{expression.name}'", location=expression.location, rule="IDENT")
            return found
        if isinstance(expression, BinaryOp):
            left = self._evaluate_expression(expression.left)
            right = self._evaluate_expression(expression.right)
            try:
                return _BINARY_DISPATCH[expression.op](left, right)
            except LogoRuntimeError as error:
                if error.location is None:
                    error.location = expression.location
                raise
        if isinstance(expression, CallExpression):
            return self._evaluate_call(expression)
        raise LogoRuntimeError("Unsupported expression", location=expression.location)

    def _evaluate_call(self, expression: CallExpression) -> Value:
        location = expression.location
        if expression.builtin is not None:
            name = expression.builtin
            args = [self._evaluate_expression(arg) for arg in expression.args]
            self._emit_event("before_call", self, name, args, location)
            try:
                result = self.builtins.invoke(self, name, args, location)
            except LogoRuntimeError:
                self._log_step(rule=name, location=location, extra=self._call_record(args, status="error"))
                raise
            self._emit_event("after_call", self, name, result, location)
            self._log_step(rule=name, location=location, extra=self._call_record(args, result=result))
            return result

        function = self.machine.functions.get(expression.name)
        if function is None:
            raise LogoNameError(f"Unknown function '{expression.name}'", location=location, rule=expression.name)
        if len(expression.args) != len(function.params):
            raise LogoArityError(
                f"Function {function.name} expects {len(function.params)} arguments but received {len(expression.args)}",
                location=location,
                rule=function.name,
            )
        args = [self._evaluate_expression(arg) for arg in expression.args]
        self._log_step(rule="CALL", location=location, extra=self._call_record(args, function=function.name))
        self._emit_event("before_call", self, function.name, args, location)
        result = self._call_user_function(function, args, location)
        self._emit_event("after_call", self, function.name, result, location)
        return result

    def _call_user_function(self, function: FunctionDefinition, args: List[Value], call_location: SourceLocation) -> Value:
        if len(self.machine.frames) > MAX_CALL_DEPTH:
            raise LogoRuntimeError(
                f"Maximum call depth exceeded ({MAX_CALL_DEPTH}) calling {function.name}",
                location=call_location,
                rule="CALL",
            )
        frame = self.machine.push_frame(function.name, dict(zip(function.params, args)), call_location)
        try:
            self._execute_block(function.body)
        except LogoRuntimeError as error:
            if not error.call_stack:
                error.call_stack = list(self.machine.frames)
            raise
        finally:
            self.machine.pop_frame()
        return frame.last_value

    def _call_record(self, args: List[Value], **extra: Any) -> Optional[Dict[str, Any]]:
        if not self.verbose:
            return None
        record: Dict[str, Any] = {"args": [arg.render() for arg in args]}
        for key, value in extra.items():
            record[key] = value.render() if isinstance(value, Value) else value
        return record

    def _emit_event(self, event: str, *args: Any, **kwargs: Any) -> None:
        try:
            self.hooks.emit(event, *args, **kwargs)
        except (LogoRuntimeError, RecursionError):
            raise
        except Exception as exc:
            raise LogoRuntimeError(
                f"Hook '{event}' failed: {exc}",
                location=self._last_location(),
                rule="HOOK",
            )

    def _log_step(
        self,
        *,
        rule: str,
        location: Optional[SourceLocation],
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        frame = self.machine.current_frame
        entry = self.logger.record(
            rule,
            frame=frame,
            location=location,
            detail=extra,
            variables=frame.snapshot() if self.verbose else None,
        )
        if not self.hooks.has_step_rules():
            return
        try:
            self.hooks.after_step(
                self,
                StepContext(
                    step_index=entry.step_index,
                    rule=rule,
                    frame_name=frame.name,
                    location=location,
                    detail=extra,
                ),
            )
        except (LogoRuntimeError, RecursionError):
            raise
        except Exception as exc:
            raise LogoRuntimeError(
                f"Step rule failed: {exc}",
                location=location,
                rule="HOOK",
            )


def compile_and_run(
    source: str,
    machine: Machine,
    *,
    filename: str = "<string>",
    verbose: bool = False,
    hooks: Optional[HookRegistry] = None,
    output_sink: Optional[Callable[[str], None]] = None,
) -> None:
    """Parse ``source`` and run it against ``machine``.

    Lex and parse errors are raised before anything executes. A runtime error
    leaves the machine with whatever the program drew up to that point and
    its frames unwound to the root frame.
    """
    interpreter = Interpreter(machine, filename=filename, verbose=verbose, hooks=hooks, output_sink=output_sink)
    interpreter.run(source)


@dataclass
class TracebackFrame:
    name: str
    location: Optional[SourceLocation]
    entry: Optional[StateEntry]


def _location_json(location: SourceLocation) -> Dict[str, Any]:
    return {
        "file": location.file,
        "line": location.line,
        "column": location.column,
        "statement": location.statement,
    }


class TracebackFormatter:
    def __init__(self, interpreter: Interpreter) -> None:
        self.interpreter = interpreter

    def build_frames(self, error: Optional[LogoRuntimeError] = None) -> List[TracebackFrame]:
        """Innermost frame last; each frame points at the last step it ran."""
        stack = error.call_stack if error is not None and error.call_stack else self.interpreter.machine.frames
        frames: List[TracebackFrame] = []
        for frame in stack:
            entry = self.interpreter.logger.last_entry_for_frame(frame.frame_id)
            location = entry.location if entry and entry.location else frame.call_location
            frames.append(TracebackFrame(name=frame.name, location=location, entry=entry))
        return frames

    def format_text(self, error: LogoRuntimeError, verbose: bool) -> str:
        lines = ["Traceback (most recent call last):"]
        for frame in self.build_frames(error):
            where = f"line {frame.location.line}" if frame.location else "<unknown location>"
            file = frame.location.file if frame.location else self.interpreter.filename
            lines.append(f"  File \"{file}\", {where}, in {frame.name}")
            if frame.location and frame.location.statement:
                lines.append(f"    {frame.location.statement}")
            if frame.entry is None:
                continue
            lines.append(f"    [step {frame.entry.step_index} {frame.entry.state_id} {frame.entry.rule}]")
            if verbose and frame.entry.variables:
                names = ", ".join(f"{name}={value}" for name, value in frame.entry.variables.items())
                lines.append(f"    Locals: {names}")
        lines.append(f"{type(error).__name__}: {error.message} (rule: {error.rule or 'runtime'})")
        return "\n".join(lines)

    def to_json(self, error: LogoRuntimeError) -> str:
        frames: List[Dict[str, Any]] = []
        for index, frame in enumerate(self.build_frames(error)):
            item: Dict[str, Any] = {"frame_index": index, "name": frame.name}
            if frame.location:
                item["source_location"] = _location_json(frame.location)
            if frame.entry:
                item.update(step_index=frame.entry.step_index, state_id=frame.entry.state_id, rule=frame.entry.rule)
                if frame.entry.variables is not None:
                    item["variables"] = frame.entry.variables
                if frame.entry.detail:
                    item["detail"] = frame.entry.detail
            frames.append(item)
        error_json: Dict[str, Any] = {
            "type": type(error).__name__,
            "message": error.message,
            "rule": error.rule,
            "failing_step_index": error.step_index,
        }
        if error.location is not None:
            error_json["source_location"] = _location_json(error.location)
        return json.dumps({"error": error_json, "traceback": frames}, indent=2)
