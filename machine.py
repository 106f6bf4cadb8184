"""Turtle machine state: pose, pen, drawing history, frames and functions."""

from __future__ import annotations
import math
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np
from numpy.typing import NDArray

from value import LogoNameError, LogoRuntimeError, TYPE_NUM, UNDEFINED, Value, snapshot_variables


Point = Tuple[float, float]
Color = Tuple[int, int, int, int]
ViewportProvider = Callable[[], Tuple[float, float]]

BLACK: Color = (0, 0, 0, 255)
DEFAULT_VIEWPORT: Tuple[float, float] = (1024.0, 768.0)


@dataclass(frozen=True)
class Segment:
    start: Point
    end: Point
    thickness: float
    color: Color


@dataclass(frozen=True)
class IntVar:
    min: int
    max: int


@dataclass(frozen=True)
class FloatVar:
    min: float
    max: float


@dataclass(frozen=True)
class VariableBinding:
    name: str
    kind: str
    min: float
    max: float
    value: Value


@dataclass
class Frame:
    name: str
    frame_id: str
    call_location: Optional[Any] = None
    variables: Dict[str, Value] = field(default_factory=dict)
    loop_depth: int = 0
    last_value: Value = UNDEFINED

    def get(self, name: str) -> Value:
        found = self.variables.get(name)
        if found is None:
            raise LogoNameError(f"Undefined variable '{name}'", rule="IDENT")
        return found

    def get_optional(self, name: str) -> Optional[Value]:
        return self.variables.get(name)

    def set(self, name: str, value: Value) -> None:
        self.variables[name] = value

    def has(self, name: str) -> bool:
        return name in self.variables

    def snapshot(self) -> Dict[str, str]:
        return snapshot_variables(self.variables)


@dataclass(frozen=True)
class MachineSnapshot:
    x: float
    y: float
    angle: float
    pen_down: bool
    thickness: float
    color: Color
    history: Tuple[Segment, ...]
    variables: Dict[str, Value]
    bindings: Tuple[VariableBinding, ...]
    functions: Tuple[str, ...]


def normalize_angle(angle: float) -> float:
    return math.fmod(math.fmod(angle, 360.0) + 360.0, 360.0)


def clamp(v: float, vmin: float, vmax: float) -> float:
    return max(vmin, min(v, vmax))


class Machine:
    def __init__(
        self,
        *,
        viewport: Optional[ViewportProvider] = None,
        home: Optional[Point] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        self.viewport: ViewportProvider = viewport or (lambda: DEFAULT_VIEWPORT)
        self.home: Optional[Point] = home
        self.home_angle: float = 0.0
        self.rng: np.random.Generator = rng if rng is not None else np.random.default_rng()
        # Held for the whole of a program run; readers take it (or try it) too.
        self.lock = threading.RLock()

        self.x = 0.0
        self.y = 0.0
        self.angle = 0.0
        self.pen_down = True
        self.thickness = 1.0
        self.color: Color = BLACK

        self.history: List[Segment] = []
        self.functions: Dict[str, Any] = {}
        self.int_vars: Dict[str, IntVar] = {}
        self.float_vars: Dict[str, FloatVar] = {}
        self.stack: List[Value] = []
        self.frames: List[Frame] = []
        self.frame_counter = 0
        self.frames.append(self._new_frame("<root>", None))
        self.reset(full=True)

    # ---- lifecycle ----

    def reset(self, full: bool = False, keep_state: bool = False) -> None:
        """Drop everything a re-run must not see.

        Frame 0 survives unless ``full`` so slider-bound values outlive a soft
        reload. The pose is re-seeded from the home position unless
        ``keep_state``.
        """
        with self.lock:
            del self.frames[1:]
            root = self.frames[0]
            root.loop_depth = 0
            root.last_value = UNDEFINED
            if full:
                root.variables.clear()
            self.history.clear()
            self.functions.clear()
            self.int_vars.clear()
            self.float_vars.clear()
            self.stack.clear()
            if not keep_state:
                self._reset_pose()

    def clear(self) -> None:
        # Live frames belong to the running program and stay in place.
        with self.lock:
            self.history.clear()
            self.functions.clear()
            self.int_vars.clear()
            self.float_vars.clear()
            self.stack.clear()
            self._reset_pose()

    def _reset_pose(self) -> None:
        self.x, self.y = self.home_position()
        self.angle = normalize_angle(self.home_angle)
        self.pen_down = True
        self.thickness = 1.0
        self.color = BLACK

    def home_position(self) -> Point:
        if self.home is not None:
            return self.home
        return self.mid_x(), self.mid_y()

    # ---- viewport ----

    def window_width(self) -> float:
        return float(self.viewport()[0])

    def window_height(self) -> float:
        return float(self.viewport()[1])

    def mid_x(self) -> float:
        return float(int(self.window_width()) >> 1)

    def mid_y(self) -> float:
        return float(int(self.window_height()) >> 1)

    # ---- turtle ----

    def forward(self, distance: float) -> None:
        start = (self.x, self.y)
        rad = math.radians(self.angle)
        self.x += math.sin(rad) * distance
        self.y -= math.cos(rad) * distance
        if self.pen_down:
            self.history.append(Segment(start, (self.x, self.y), self.thickness, self.color))

    def backward(self, distance: float) -> None:
        self.forward(-distance)

    def left(self, degrees: float) -> None:
        self.angle = normalize_angle(self.angle - degrees)

    def right(self, degrees: float) -> None:
        self.left(-degrees)

    def set_angle(self, degrees: float) -> None:
        self.angle = normalize_angle(degrees)

    def set_position(self, x: float, y: float) -> None:
        self.x = x
        self.y = y

    def add_line(self, start: Point, end: Point) -> None:
        self.history.append(Segment(start, end, self.thickness, self.color))

    # ---- frames ----

    @property
    def root_frame(self) -> Frame:
        return self.frames[0]

    @property
    def current_frame(self) -> Frame:
        return self.frames[-1]

    def push_frame(self, name: str, variables: Dict[str, Value], call_location: Optional[Any]) -> Frame:
        frame = self._new_frame(name, call_location)
        frame.variables.update(variables)
        self.frames.append(frame)
        return frame

    def pop_frame(self) -> Frame:
        if len(self.frames) <= 1:
            raise LogoRuntimeError("Cannot pop the root frame", rule="CALL")
        return self.frames.pop()

    def unwind(self) -> None:
        del self.frames[1:]
        self.frames[0].loop_depth = 0

    def _new_frame(self, name: str, call_location: Optional[Any]) -> Frame:
        frame_id = f"f_{self.frame_counter:04d}"
        self.frame_counter += 1
        return Frame(name=name, frame_id=frame_id, call_location=call_location)

    # ---- value stack ----

    def push(self, value: Value) -> None:
        self.stack.append(value)

    def pop(self) -> Value:
        return self.stack.pop()

    # ---- UI-bindable variables ----

    def declare_int_var(self, name: str, vmin: int, vmax: int, default: Value) -> None:
        self.int_vars[name] = IntVar(vmin, vmax)
        if not self.root_frame.has(name):
            self.root_frame.set(name, default)

    def declare_float_var(self, name: str, vmin: float, vmax: float, default: Value) -> None:
        self.float_vars[name] = FloatVar(vmin, vmax)
        if not self.root_frame.has(name):
            self.root_frame.set(name, default)

    def bindings(self) -> List[VariableBinding]:
        out: List[VariableBinding] = []
        with self.lock:
            root = self.root_frame
            for name, bounds in self.int_vars.items():
                out.append(VariableBinding(name, "int", bounds.min, bounds.max, root.variables.get(name, UNDEFINED)))
            for name, fbounds in self.float_vars.items():
                out.append(VariableBinding(name, "float", fbounds.min, fbounds.max, root.variables.get(name, UNDEFINED)))
        return out

    def set_variable(self, name: str, number: float) -> Value:
        """Host-side slider write into the root frame, clamped to the declared bounds."""
        with self.lock:
            if name in self.int_vars:
                bounds = self.int_vars[name]
                value = Value(TYPE_NUM, float(int(clamp(number, bounds.min, bounds.max))))
            elif name in self.float_vars:
                fbounds = self.float_vars[name]
                value = Value(TYPE_NUM, float(clamp(number, fbounds.min, fbounds.max)))
            else:
                raise LogoNameError(f"'{name}' is not a declared intvar or floatvar", rule="SET")
            self.root_frame.set(name, value)
        return value

    def function_names(self) -> List[str]:
        with self.lock:
            return sorted(self.functions)

    # ---- host accessors ----
    # Host calls take the machine lock, so they wait for a running program.

    def set_pose(self, x: float, y: float, angle: Optional[float] = None) -> None:
        with self.lock:
            self.set_position(x, y)
            if angle is not None:
                self.set_angle(angle)

    def set_home(self, x: float, y: float, angle: float = 0.0) -> None:
        with self.lock:
            self.home = (x, y)
            self.home_angle = angle

    def set_color(self, color: Color) -> None:
        with self.lock:
            self.color = color

    def history_array(self) -> NDArray[np.float64]:
        with self.lock:
            segments = list(self.history)
        data = np.empty((len(segments), 5), dtype=np.float64)
        for i, segment in enumerate(segments):
            data[i] = (segment.start[0], segment.start[1], segment.end[0], segment.end[1], segment.thickness)
        return data

    def drain_history(self) -> List[Segment]:
        with self.lock:
            drained = list(self.history)
            self.history.clear()
        return drained

    def snapshot(self) -> MachineSnapshot:
        with self.lock:
            return self._snapshot_unlocked()

    def try_snapshot(self) -> Optional[MachineSnapshot]:
        if not self.lock.acquire(blocking=False):
            return None
        try:
            return self._snapshot_unlocked()
        finally:
            self.lock.release()

    def _snapshot_unlocked(self) -> MachineSnapshot:
        return MachineSnapshot(
            x=self.x,
            y=self.y,
            angle=self.angle,
            pen_down=self.pen_down,
            thickness=self.thickness,
            color=self.color,
            history=tuple(self.history),
            variables=dict(self.root_frame.variables),
            bindings=tuple(self.bindings()),
            functions=tuple(self.function_names()),
        )
