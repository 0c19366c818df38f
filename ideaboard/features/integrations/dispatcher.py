"""
Post-commit side effects (AI grading, newsletter relay, backup rows, test
submission cleanup). Nothing dispatched here can fail or slow the request
that triggered it: failures are logged and counted, never raised.

Work that follows a request rides on FastAPI's BackgroundTasks and runs once
the response is sent. Only delayed work (test submission cleanup) needs a
timer of its own.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

from fastapi import BackgroundTasks

from ideaboard.core.logging import log_event
from ideaboard.core.metrics import side_effect_failures_total

logger = logging.getLogger("ideaboard.side_effects")


def _task_name(fn: Callable) -> str:
    return getattr(fn, "__qualname__", None) or getattr(fn, "__name__", None) or repr(fn)


def run_safely(fn: Callable, *args, **kwargs) -> None:
    try:
        fn(*args, **kwargs)
    except Exception as exc:
        name = _task_name(fn)
        side_effect_failures_total.inc(labels={"task": name})
        log_event(
            "error",
            "side_effect.failed",
            event_type=name,
            error_code=type(exc).__name__,
            extra={"error": exc},
        )


def run_after_response(tasks: Optional[BackgroundTasks], fn: Callable, *args, **kwargs) -> None:
    """Queue `fn` on the request's background tasks; with none (scripts, unit tests) run it now."""
    if tasks is None:
        run_safely(fn, *args, **kwargs)
        return
    tasks.add_task(run_safely, fn, *args, **kwargs)


class SideEffectDispatcher:
    """Runs callables after a delay on daemon timers."""

    def __init__(self):
        self._timers: List[threading.Timer] = []
        self._lock = threading.Lock()

    def schedule(self, delay_seconds: float, fn: Callable, *args, **kwargs) -> None:
        timer = threading.Timer(delay_seconds, run_safely, args=(fn, *args), kwargs=kwargs)
        timer.daemon = True
        with self._lock:
            self._timers = [t for t in self._timers if t.is_alive()]
            self._timers.append(timer)
        timer.start()

    def shutdown(self) -> None:
        with self._lock:
            for timer in self._timers:
                timer.cancel()
            self._timers.clear()


class InlineDispatcher(SideEffectDispatcher):
    """Holds scheduled work until `run_scheduled`."""

    def __init__(self):
        self.scheduled: List[tuple] = []

    def schedule(self, delay_seconds: float, fn: Callable, *args, **kwargs) -> None:
        self.scheduled.append((delay_seconds, fn, args, kwargs))

    def run_scheduled(self) -> int:
        pending, self.scheduled = self.scheduled, []
        for _, fn, args, kwargs in pending:
            run_safely(fn, *args, **kwargs)
        return len(pending)

    def shutdown(self) -> None:
        self.scheduled.clear()
