import sys
import threading
from pathlib import Path

import numpy as np
import pytest


sys.path.append(str(Path(__file__).resolve().parents[1]))

from machine import BLACK, Machine, normalize_angle
from runner import ScriptRunner
from value import TYPE_NUM, LogoNameError, Value


@pytest.fixture
def machine():
    return Machine(home=(0.0, 0.0), rng=np.random.default_rng(0))


def test_defaults(machine):
    assert (machine.x, machine.y, machine.angle) == (0.0, 0.0, 0.0)
    assert machine.pen_down is True
    assert machine.thickness == 1.0
    assert machine.color == BLACK
    assert len(machine.frames) == 1


def test_home_defaults_to_viewport_centre():
    machine = Machine(viewport=lambda: (1023, 600))
    assert machine.mid_x() == 511.0
    assert (machine.x, machine.y) == (511.0, 300.0)
    assert machine.window_width() == 1023.0


def test_forward_moves_up_at_heading_zero(machine):
    machine.forward(10)
    assert (machine.x, machine.y) == pytest.approx((0.0, -10.0))
    assert len(machine.history) == 1
    segment = machine.history[0]
    assert segment.start == (0.0, 0.0)
    assert segment.end == pytest.approx((0.0, -10.0))
    assert segment.thickness == 1.0


def test_right_turn_then_forward(machine):
    machine.right(90)
    machine.forward(10)
    assert machine.x == pytest.approx(10.0)
    assert machine.y == pytest.approx(0.0, abs=1e-9)


def test_backward_is_negative_forward(machine):
    other = Machine(home=(0.0, 0.0))
    machine.right(30)
    other.right(30)
    machine.backward(7)
    other.forward(-7)
    assert (machine.x, machine.y) == pytest.approx((other.x, other.y))


def test_turns_normalise(machine):
    machine.left(90)
    assert machine.angle == 270.0
    machine.right(90)
    assert machine.angle == 0.0
    assert normalize_angle(720) == 0.0
    assert normalize_angle(-450) == 270.0


def test_pen_up_moves_without_drawing(machine):
    machine.pen_down = False
    machine.forward(10)
    assert machine.history == []
    assert machine.y == pytest.approx(-10.0)


def test_add_line_uses_current_style(machine):
    machine.thickness = 4
    machine.set_color((255, 0, 0, 255))
    machine.add_line((1, 2), (3, 4))
    assert machine.history[0].thickness == 4
    assert machine.history[0].color == (255, 0, 0, 255)
    assert (machine.x, machine.y) == (0.0, 0.0)


def test_soft_reset_keeps_root_values(machine):
    machine.declare_int_var("n", 0, 10, Value(TYPE_NUM, 3.0))
    machine.set_variable("n", 8)
    machine.forward(10)
    machine.push(Value(TYPE_NUM, 1.0))
    machine.push_frame("walk", {}, None)
    machine.reset()
    assert machine.history == []
    assert machine.stack == []
    assert machine.int_vars == {}
    assert len(machine.frames) == 1
    assert machine.root_frame.get("n") == Value(TYPE_NUM, 8.0)
    assert (machine.x, machine.y) == (0.0, 0.0)


def test_full_reset_clears_root_frame(machine):
    machine.root_frame.set("a", Value(TYPE_NUM, 1.0))
    machine.functions["walk"] = object()
    machine.reset(full=True)
    assert machine.root_frame.variables == {}
    assert machine.functions == {}
    with pytest.raises(LogoNameError):
        machine.root_frame.get("a")


def test_reset_keep_state_leaves_pose(machine):
    machine.right(45)
    machine.forward(5)
    machine.reset(keep_state=True)
    assert machine.angle == 45.0
    assert machine.history == []


def test_declared_vars_seed_only_when_unset(machine):
    machine.root_frame.set("speed", Value(TYPE_NUM, 2.5))
    machine.declare_float_var("speed", 0.0, 5.0, Value(TYPE_NUM, 1.0))
    machine.declare_int_var("count", 1, 9, Value(TYPE_NUM, 4.0))
    bindings = {b.name: b for b in machine.bindings()}
    assert bindings["speed"].value == Value(TYPE_NUM, 2.5)
    assert bindings["speed"].kind == "float"
    assert bindings["count"].value == Value(TYPE_NUM, 4.0)
    assert (bindings["count"].min, bindings["count"].max) == (1, 9)


def test_set_variable_clamps(machine):
    machine.declare_int_var("n", 0, 10, Value(TYPE_NUM, 3.0))
    machine.declare_float_var("f", -1.0, 1.0, Value(TYPE_NUM, 0.0))
    assert machine.set_variable("n", 42.7) == Value(TYPE_NUM, 10.0)
    assert machine.set_variable("f", -3.0) == Value(TYPE_NUM, -1.0)
    with pytest.raises(LogoNameError):
        machine.set_variable("missing", 1.0)


def test_history_array_and_drain(machine):
    machine.forward(10)
    machine.right(90)
    machine.forward(5)
    data = machine.history_array()
    assert data.shape == (2, 5)
    assert data[1, 2] == pytest.approx(5.0)
    drained = machine.drain_history()
    assert len(drained) == 2
    assert machine.history == []
    assert machine.history_array().shape == (0, 5)


def test_frames_push_pop_and_unwind(machine):
    frame = machine.push_frame("walk", {"x": Value(TYPE_NUM, 1.0)}, None)
    assert machine.current_frame is frame
    assert frame.get("x") == Value(TYPE_NUM, 1.0)
    machine.push_frame("inner", {}, None)
    machine.unwind()
    assert machine.frames == [machine.root_frame]


def test_try_snapshot_returns_none_while_busy(machine):
    holding = threading.Event()
    release = threading.Event()

    def hold():
        with machine.lock:
            holding.set()
            release.wait(5)

    worker = threading.Thread(target=hold)
    worker.start()
    try:
        assert holding.wait(5)
        assert machine.try_snapshot() is None
    finally:
        release.set()
        worker.join()
    snapshot = machine.try_snapshot()
    assert snapshot is not None
    assert snapshot.history == ()


def test_host_reads_wait_for_a_running_program():
    machine = Machine(home=(0.0, 0.0))
    finished = threading.Event()
    drained = []
    with ScriptRunner(machine, on_complete=lambda result: finished.set()) as runner:
        runner.submit("loop(20000) { f(1) }", reset="none")
        while not finished.is_set():
            drained.extend(machine.drain_history())
            assert machine.history_array().shape[1] == 5
        runner.wait()
    drained.extend(machine.drain_history())
    assert len(drained) == 20000
    assert drained[-1].end == pytest.approx((0.0, -20000.0))


def test_host_writes_wait_for_the_lock(machine):
    started = threading.Event()
    release = threading.Event()

    def hold():
        with machine.lock:
            started.set()
            release.wait(5)
            machine.forward(10)

    worker = threading.Thread(target=hold)
    worker.start()
    assert started.wait(5)
    writer = threading.Thread(target=lambda: machine.set_pose(100.0, 100.0))
    writer.start()
    writer.join(0.2)
    assert writer.is_alive()
    release.set()
    worker.join()
    writer.join()
    assert machine.history[0].end == pytest.approx((0.0, -10.0))
    assert (machine.x, machine.y) == (100.0, 100.0)
