"""
Sync service: lifecycle wiring around a Reconciler.

Timer ticks and external-change notifications both funnel into one
DebouncedScheduler, so passes never overlap and bursts of triggers collapse.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future
from typing import Callable, Optional

from .engine import PassResult, Reconciler
from .scheduler import DebouncedScheduler, PeriodicTicker

PassCallback = Callable[[PassResult], None]


class SyncService:
    def __init__(
        self,
        reconciler: Reconciler,
        *,
        interval_sec: float = 2.0,
        on_pass: Optional[PassCallback] = None,
        logger: Optional[logging.LoggerAdapter] = None,
    ) -> None:
        self.reconciler = reconciler
        self.on_pass = on_pass
        self.log = logger or logging.getLogger("isync.service")
        self.scheduler = DebouncedScheduler(self._pass, logger=self.log)
        self.ticker = PeriodicTicker(self.trigger, interval_sec, logger=self.log)
        self._unsubscribe: Optional[Callable[[], None]] = None

    def trigger(self) -> Future:
        return self.scheduler.trigger()

    def start(self) -> Future:
        if self._unsubscribe is None:
            self._unsubscribe = self.reconciler.tree.on_external_change(self.trigger)
        self.ticker.start()
        self.log.info("Sync service started (interval=%.1fs)", self.ticker.interval)
        return self.trigger()

    def stop(self, timeout: Optional[float] = None) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.ticker.stop(timeout)
        if not self.scheduler.wait_idle(timeout):
            self.log.warning("Sync service stopped while a pass was still running")
        self.log.info("Sync service stopped")

    def __enter__(self) -> "SyncService":
        self.start()
        return self

    def __exit__(self, *exc: object) -> None:
        self.stop()

    def _pass(self) -> PassResult:
        result = self.reconciler.run_pass()
        if self.on_pass is not None:
            try:
                self.on_pass(result)
            except Exception as e:
                self.log.exception("Pass callback failed: %s", e)
        return result
