from __future__ import annotations
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from lexer import LogoError


TYPE_NUM = "NUM"
TYPE_BOOL = "BOOL"
TYPE_STR = "STR"
TYPE_UNDEF = "UNDEF"

# Tolerance used by number equality and <=.
EPSILON = 0.005


def eqf(a: float, b: float, epsilon: float = EPSILON) -> bool:
    return abs(a - b) < epsilon


class LogoRuntimeError(LogoError):
    """Raised for runtime faults."""

    def __init__(
        self,
        message: str,
        *,
        location: Optional[Any] = None,
        rule: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.location = location
        self.rule = rule
        self.step_index: Optional[int] = None
        # Frames that were live when the error was raised, innermost last.
        self.call_stack: List[Any] = []


class LogoNameError(LogoRuntimeError):
    """Unknown function name or unbound variable."""


class LogoArityError(LogoRuntimeError):
    """Wrong number of arguments for a built-in or user function."""


class LogoTypeError(LogoRuntimeError):
    """Operand or argument of the wrong kind."""


class LogoStackUnderflow(LogoRuntimeError):
    """pop() on an empty value stack."""


@dataclass(frozen=True)
class Value:
    type: str
    value: Any

    def add(self, other: "Value") -> "Value":
        self._require_same(other, TYPE_NUM, "add")
        return Value(TYPE_NUM, self.value + other.value)

    def sub(self, other: "Value") -> "Value":
        self._require_same(other, TYPE_NUM, "sub")
        return Value(TYPE_NUM, self.value - other.value)

    def mul(self, other: "Value") -> "Value":
        self._require_same(other, TYPE_NUM, "mul")
        return Value(TYPE_NUM, self.value * other.value)

    def div(self, other: "Value") -> "Value":
        self._require_same(other, TYPE_NUM, "div")
        if other.value == 0:
            raise LogoRuntimeError("Division by zero", rule="div")
        return Value(TYPE_NUM, self.value / other.value)

    def mod(self, other: "Value") -> "Value":
        self._require_same(other, TYPE_NUM, "mod")
        if other.value == 0:
            raise LogoRuntimeError("Modulo by zero", rule="mod")
        return Value(TYPE_NUM, math.fmod(self.value, other.value))

    def lt(self, other: "Value") -> "Value":
        self._require_same(other, TYPE_NUM, "lt")
        return Value(TYPE_BOOL, self.value < other.value)

    def lte(self, other: "Value") -> "Value":
        self._require_same(other, TYPE_NUM, "lte")
        return Value(TYPE_BOOL, self.value < other.value or eqf(self.value, other.value))

    def eq(self, other: "Value") -> "Value":
        if self.type != other.type or self.type == TYPE_UNDEF:
            raise LogoTypeError(f"'eq' on {self.type} and {other.type}", rule="eq")
        if self.type == TYPE_NUM:
            return Value(TYPE_BOOL, eqf(self.value, other.value))
        return Value(TYPE_BOOL, self.value == other.value)

    def render(self) -> str:
        if self.type == TYPE_NUM:
            return format(self.value, "g")
        if self.type == TYPE_BOOL:
            return "true" if self.value else "false"
        if self.type == TYPE_STR:
            return str(self.value)
        return "undefined"

    def _require_same(self, other: "Value", kind: str, op: str) -> None:
        if self.type != kind or other.type != kind:
            raise LogoTypeError(f"'{op}' expects {kind} operands but got {self.type} and {other.type}", rule=op)


UNDEFINED = Value(TYPE_UNDEF, None)


def snapshot_variables(variables: Dict[str, Value]) -> Dict[str, str]:
    def _render(val: Value) -> str:
        rendered = val.render()
        if len(rendered) > 80:
            rendered = rendered[:77] + "..."
        return f"{val.type}:{rendered}"

    return {k: _render(v) for k, v in variables.items()}
