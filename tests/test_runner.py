import sys
import threading
from pathlib import Path

import pytest


sys.path.append(str(Path(__file__).resolve().parents[1]))

from machine import Machine
from runner import ScriptRunner
from value import LogoTypeError


def make_machine():
    return Machine(home=(0.0, 0.0))


def test_requests_run_in_order():
    machine = make_machine()
    order = []
    with ScriptRunner(machine, on_complete=lambda result: order.append(result.request_id)) as runner:
        ids = [runner.submit(f"f({n})", reset="none") for n in (1, 2, 3)]
        runner.wait()
        assert order == ids
        assert len(machine.history) == 3
        assert machine.y == pytest.approx(-6.0)


def test_soft_reset_preserves_slider_values():
    machine = make_machine()
    source = 'intvar("n", 0, 10, 3) f(n)'
    with ScriptRunner(machine) as runner:
        runner.submit(source)
        runner.wait()
        assert machine.history[0].end[1] == pytest.approx(-3.0)

        machine.set_variable("n", 7)
        runner.submit(source, reset="soft")
        runner.wait()
        assert len(machine.history) == 1
        assert machine.history[0].end[1] == pytest.approx(-7.0)

        runner.submit(source, reset="hard")
        runner.wait()
        assert machine.history[0].end[1] == pytest.approx(-3.0)


def test_errors_are_reported_and_worker_keeps_going():
    machine = make_machine()
    results = []
    with ScriptRunner(machine, on_complete=results.append) as runner:
        runner.submit('f("x")')
        runner.submit("f(5)")
        runner.wait()
    assert [r.ok for r in results] == [False, True]
    assert isinstance(results[0].error, LogoTypeError)
    assert results[1].error is None
    assert runner.last_result is results[1]
    assert len(machine.history) == 1


def test_callback_failure_does_not_stop_worker():
    machine = make_machine()
    calls = []

    def callback(result):
        calls.append(result.request_id)
        raise RuntimeError("host went away")

    with ScriptRunner(machine, on_complete=callback) as runner:
        runner.submit("f(1)")
        runner.submit("f(1)")
        runner.wait()
    assert calls == [0, 1]


def test_debug_output_goes_to_sink():
    output = []
    with ScriptRunner(make_machine(), output_sink=output.append) as runner:
        runner.submit('debug("hello")')
        runner.wait()
    assert output == ["hello"]


def test_invalid_reset_mode_and_stopped_runner():
    runner = ScriptRunner(make_machine())
    with pytest.raises(ValueError):
        runner.submit("f(1)", reset="sideways")
    runner.stop()
    runner.stop()
    with pytest.raises(RuntimeError):
        runner.submit("f(1)")


def test_readers_see_whole_runs():
    machine = make_machine()
    snapshots = []
    done = threading.Event()

    def on_complete(result):
        snapshots.append(machine.snapshot())
        done.set()

    with ScriptRunner(machine, on_complete=on_complete) as runner:
        runner.submit("loop(50) { f(1) r(7) }")
        assert done.wait(5)
    assert len(snapshots[0].history) == 50


def test_result_history_is_bounded():
    with ScriptRunner(make_machine(), max_results=2) as runner:
        for _ in range(5):
            runner.submit("f(1)")
        runner.wait()
    assert [r.request_id for r in runner.results] == [3, 4]
    assert runner.last_result.request_id == 4


def test_unexpected_queue_items_are_dropped():
    machine = make_machine()
    with ScriptRunner(machine) as runner:
        runner._queue.put("not a request")
        runner.submit("f(1)")
        runner.wait()
    assert runner.last_result.ok
    assert len(machine.history) == 1
