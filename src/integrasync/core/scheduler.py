"""
Scheduling for reconciliation passes.

DebouncedScheduler
  - At most one call of `fn` runs at a time, on a worker thread.
  - A trigger arriving while a call runs is queued; further triggers collapse
    into that single queued call (latest arguments win).
  - Every caller whose trigger collapsed receives the same Future, resolved
    with the result of the one call that served them.
  - A running call is never cancelled.
  - A failing call, SystemExit included, resolves only its own Future; the
    worker keeps draining queued calls.

PeriodicTicker
  - Calls a callback every `interval_sec` on a daemon thread until stopped.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from typing import Any, Callable, Dict, Optional, Tuple

Args = Tuple[Tuple[Any, ...], Dict[str, Any]]


class DebouncedScheduler:
    def __init__(
        self,
        fn: Callable[..., Any],
        *,
        name: str = "isync-pass",
        logger: Optional[logging.LoggerAdapter] = None,
    ) -> None:
        self.fn = fn
        self.name = name
        self.log = logger or logging.getLogger("isync.scheduler")
        self._lock = threading.Lock()
        self._running = False
        self._pending: Optional[Future] = None
        self._pending_args: Optional[Args] = None
        self._idle = threading.Event()
        self._idle.set()

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._running

    @property
    def has_pending(self) -> bool:
        with self._lock:
            return self._pending is not None

    def trigger(self, *args: Any, **kwargs: Any) -> Future:
        with self._lock:
            if not self._running:
                self._running = True
                self._idle.clear()
                fut: Future = Future()
                worker = threading.Thread(
                    target=self._drain,
                    args=(fut, (args, kwargs)),
                    name=self.name,
                    daemon=True,
                )
                worker.start()
                return fut

            self._pending_args = (args, kwargs)
            if self._pending is None:
                self._pending = Future()
                self.log.debug("%s busy, trigger queued", self.name)
            else:
                self.log.debug("%s busy, trigger coalesced", self.name)
            return self._pending

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until nothing is running or queued; False on timeout."""
        return self._idle.wait(timeout)

    def _drain(self, fut: Future, call: Args) -> None:
        while True:
            if fut.set_running_or_notify_cancel():
                args, kwargs = call
                try:
                    fut.set_result(self.fn(*args, **kwargs))
                except BaseException as e:
                    # SystemExit included: the worker must still hand off queued calls
                    self.log.exception("%s failed: %s", self.name, e)
                    fut.set_exception(e)

            with self._lock:
                if self._pending is None:
                    self._running = False
                    self._idle.set()
                    return
                fut, call = self._pending, self._pending_args or ((), {})
                self._pending = None
                self._pending_args = None


class PeriodicTicker:
    def __init__(
        self,
        callback: Callable[[], Any],
        interval_sec: float,
        *,
        name: str = "isync-ticker",
        logger: Optional[logging.LoggerAdapter] = None,
    ) -> None:
        if float(interval_sec) <= 0:
            raise ValueError("interval_sec must be > 0")
        self.callback = callback
        self.interval = float(interval_sec)
        self.name = name
        self.log = logger or logging.getLogger("isync.scheduler")
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_alive:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.callback()
            except Exception:
                self.log.exception("%s tick failed", self.name)
