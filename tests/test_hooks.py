import sys
from pathlib import Path

import pytest


sys.path.append(str(Path(__file__).resolve().parents[1]))

from hooks import HookError, HookRegistry
from interpreter import compile_and_run
from machine import Machine
from value import LogoRuntimeError, LogoTypeError


def test_handlers_run_by_priority():
    hooks = HookRegistry()
    seen = []
    hooks.on_event("program_start", lambda *_: seen.append("low"), priority=1)
    hooks.on_event("program_start", lambda *_: seen.append("high"), priority=5)

    @hooks.on_event("program_start")
    def default(*_):
        seen.append("default")

    hooks.emit("program_start", None, None)
    assert seen == ["high", "low", "default"]


def test_rejects_unknown_event_and_bad_interval():
    hooks = HookRegistry()
    with pytest.raises(HookError):
        hooks.on_event("on_draw", lambda *_: None)
    with pytest.raises(HookError):
        hooks.every_n_steps(0, lambda *_: None)


def test_program_and_call_events():
    hooks = HookRegistry()
    events = []
    hooks.on_event("program_start", lambda interp, program: events.append(("start", len(program.statements))))
    hooks.on_event("before_call", lambda interp, name, args, loc: events.append(("before", name, args[0].value)))
    hooks.on_event("after_call", lambda interp, name, result, loc: events.append(("after", name, result.type)))
    hooks.on_event("program_end", lambda interp, program: events.append(("end",)))

    compile_and_run("f(3)", Machine(home=(0.0, 0.0)), hooks=hooks)

    assert events == [
        ("start", 1),
        ("before", "forward", 3.0),
        ("after", "forward", "UNDEF"),
        ("end",),
    ]


def test_on_error_receives_the_error():
    hooks = HookRegistry()
    errors = []
    ended = []
    hooks.on_event("on_error", lambda interp, error: errors.append(error))
    hooks.on_event("program_end", lambda *_: ended.append(True))

    with pytest.raises(LogoTypeError) as info:
        compile_and_run('f("x")', Machine(), hooks=hooks)

    assert errors == [info.value]
    assert ended == []


def test_failing_hook_becomes_runtime_error():
    hooks = HookRegistry()

    def explode(*_):
        raise ValueError("boom")

    hooks.on_event("before_call", explode)
    machine = Machine()
    with pytest.raises(LogoRuntimeError, match="Hook 'before_call' failed: boom") as info:
        compile_and_run("f(1)", machine, hooks=hooks)
    assert info.value.rule == "HOOK"
    assert machine.history == []


def test_every_n_steps():
    hooks = HookRegistry()
    rules = []

    @hooks.every_n_steps(2)
    def sample(interp, ctx):
        rules.append((ctx.step_index, ctx.rule))

    assert hooks.has_step_rules()
    compile_and_run("f(1) f(1)", Machine(), hooks=hooks)
    assert rules == [(2, "forward"), (4, "forward")]


def test_step_rules_filter_by_rule_and_see_the_frame():
    hooks = HookRegistry()
    seen = []
    hooks.every_n_steps(1, lambda interp, ctx: seen.append((ctx.rule, ctx.frame_name)), rules={"forward", "CALL"})

    compile_and_run("fn walk() { f(1) } walk() r(90)", Machine(), hooks=hooks)

    assert seen == [("CALL", "<root>"), ("forward", "walk")]


def test_emit_reports_handler_count_and_owners_can_be_removed():
    hooks = HookRegistry()
    hooks.on_event("program_end", lambda *_: None, owner="panel")
    hooks.on_event("program_end", lambda *_: None, owner="host")
    hooks.every_n_steps(5, lambda *_: None, owner="panel")

    assert hooks.emit("program_end", None, None) == 2
    assert hooks.emit("after_call") == 0
    assert hooks.remove_owner("panel") == 2
    assert hooks.emit("program_end", None, None) == 1
    assert not hooks.has_step_rules()
