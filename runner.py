"""Queued script execution on a single worker thread.

A host (editor, file watcher, slider panel) submits source text whenever it
changes; the worker drains requests in arrival order, resetting the machine
and running each one under a single acquisition of ``Machine.lock`` so that
readers never observe a half-reset machine.
"""
from __future__ import annotations
import queue
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Optional

from hooks import HookRegistry, logger
from interpreter import compile_and_run
from lexer import LogoError
from machine import Machine


RESET_MODES = ("none", "soft", "hard")
# Completed results kept on the runner; older ones are dropped.
DEFAULT_MAX_RESULTS = 100


@dataclass(frozen=True)
class RunRequest:
    request_id: int
    source: str
    reset: str
    filename: str


@dataclass
class RunResult:
    request_id: int
    filename: str
    ok: bool
    elapsed: float
    error: Optional[LogoError] = None


_STOP = object()


class ScriptRunner:
    def __init__(
        self,
        machine: Machine,
        *,
        on_complete: Optional[Callable[[RunResult], None]] = None,
        hooks: Optional[HookRegistry] = None,
        output_sink: Optional[Callable[[str], None]] = None,
        verbose: bool = False,
        max_results: int = DEFAULT_MAX_RESULTS,
    ) -> None:
        self.machine = machine
        self.on_complete = on_complete
        self.hooks = hooks
        self.output_sink = output_sink
        self.verbose = verbose
        self.results: Deque[RunResult] = deque(maxlen=max_results)
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._ids_lock = threading.Lock()
        self._next_id = 0
        self._stopped = False
        self._thread = threading.Thread(target=self._work, name="plogo-runner", daemon=True)
        self._thread.start()

    def submit(self, source: str, *, reset: str = "soft", filename: str = "<string>") -> int:
        if reset not in RESET_MODES:
            raise ValueError(f"reset must be one of {', '.join(RESET_MODES)}, got {reset!r}")
        if self._stopped:
            raise RuntimeError("runner has been stopped")
        with self._ids_lock:
            request_id = self._next_id
            self._next_id += 1
        self._queue.put(RunRequest(request_id=request_id, source=source, reset=reset, filename=filename))
        return request_id

    def wait(self) -> None:
        self._queue.join()

    def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        self._queue.put(_STOP)
        self._thread.join()

    @property
    def last_result(self) -> Optional[RunResult]:
        return self.results[-1] if self.results else None

    def __enter__(self) -> "ScriptRunner":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def _work(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                if isinstance(item, RunRequest):
                    self._process(item)
                else:
                    logger.error("runner: dropping unexpected queue item %r", item)
            finally:
                self._queue.task_done()

    def _process(self, request: RunRequest) -> None:
        logger.info("run %d (%s): starting, reset=%s", request.request_id, request.filename, request.reset)
        started = time.perf_counter()
        error: Optional[LogoError] = None
        with self.machine.lock:
            if request.reset == "soft":
                self.machine.reset()
            elif request.reset == "hard":
                self.machine.reset(full=True)
            try:
                compile_and_run(
                    request.source,
                    self.machine,
                    filename=request.filename,
                    verbose=self.verbose,
                    hooks=self.hooks,
                    output_sink=self.output_sink,
                )
            except LogoError as exc:
                error = exc
        elapsed = time.perf_counter() - started
        if error is None:
            logger.info("run %d (%s): finished in %.2f ms", request.request_id, request.filename, elapsed * 1000.0)
        else:
            logger.warning("run %d (%s): %s: %s", request.request_id, request.filename, type(error).__name__, error)
        result = RunResult(
            request_id=request.request_id,
            filename=request.filename,
            ok=error is None,
            elapsed=elapsed,
            error=error,
        )
        self.results.append(result)
        if self.on_complete is not None:
            try:
                self.on_complete(result)
            except Exception:
                logger.exception("on_complete callback failed for run %d", request.request_id)
