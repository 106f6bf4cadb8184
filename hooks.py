from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional


logger: logging.Logger = logging.getLogger("plogo")
logger.addHandler(logging.StreamHandler())
logger.setLevel(logging.WARNING)


EVENTS = {
    "program_start",
    "program_end",
    "on_error",
    "before_call",
    "after_call",
}


class HookError(Exception):
    pass


@dataclass(frozen=True)
class StepContext:
    """One logged interpreter step, as seen by a step rule."""

    step_index: int
    # Statement node name, built-in name, or "CALL" for a user function call.
    rule: str
    frame_name: str
    location: Any = None
    detail: Optional[Dict[str, Any]] = None


StepHandler = Callable[[Any, StepContext], None]


@dataclass(frozen=True)
class _EventHandler:
    priority: int
    callback: Callable[..., None]
    owner: str


@dataclass(frozen=True)
class _StepRule:
    every_n: int
    callback: StepHandler
    owner: str
    name: str
    rules: Optional[FrozenSet[str]]

    def matches(self, ctx: StepContext) -> bool:
        if self.rules is not None and ctx.rule not in self.rules:
            return False
        return ctx.step_index % self.every_n == 0


@dataclass
class HookRegistry:
    _events: Dict[str, List[_EventHandler]] = field(default_factory=dict)
    _step_rules: List[_StepRule] = field(default_factory=list)

    def on_event(
        self,
        event: str,
        handler: Optional[Callable[..., None]] = None,
        *,
        priority: int = 0,
        owner: str = "host",
    ):
        """Register ``handler`` for ``event``; usable as a decorator.

        Higher priorities run first; equal priorities run in registration order.
        """
        if event not in EVENTS:
            raise HookError(f"Unknown event '{event}'")
        if handler is None:
            def register(fn: Callable[..., None]) -> Callable[..., None]:
                self.on_event(event, fn, priority=priority, owner=owner)
                return fn
            return register
        handlers = self._events.setdefault(event, [])
        handlers.append(_EventHandler(priority, handler, owner))
        handlers.sort(key=lambda h: -h.priority)
        return handler

    def emit(self, event: str, *args: Any, **kwargs: Any) -> int:
        handlers = self._events.get(event, [])
        for handler in handlers:
            handler.callback(*args, **kwargs)
        return len(handlers)

    def every_n_steps(
        self,
        every_n: int,
        handler: Optional[StepHandler] = None,
        *,
        name: str = "",
        owner: str = "host",
        rules: Optional[Iterable[str]] = None,
    ):
        """Run ``handler`` on every ``every_n``-th step, optionally only for the given rule names."""
        if handler is None:
            def register(fn: StepHandler) -> StepHandler:
                self.every_n_steps(every_n, fn, name=name, owner=owner, rules=rules)
                return fn
            return register
        if every_n <= 0:
            raise HookError("every_n_steps must be >= 1")
        wanted = frozenset(rules) if rules is not None else None
        self._step_rules.append(_StepRule(every_n, handler, owner, name or handler.__name__, wanted))
        return handler

    def after_step(self, interpreter: Any, ctx: StepContext) -> None:
        for rule in self._step_rules:
            if rule.matches(ctx):
                rule.callback(interpreter, ctx)

    def has_step_rules(self) -> bool:
        return bool(self._step_rules)

    def remove_owner(self, owner: str) -> int:
        removed = 0
        for event, handlers in self._events.items():
            kept = [h for h in handlers if h.owner != owner]
            removed += len(handlers) - len(kept)
            self._events[event] = kept
        kept_rules = [r for r in self._step_rules if r.owner != owner]
        removed += len(self._step_rules) - len(kept_rules)
        self._step_rules = kept_rules
        if removed:
            logger.debug("removed %d hook(s) owned by %s", removed, owner)
        return removed
