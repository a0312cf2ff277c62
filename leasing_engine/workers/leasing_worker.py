# leasing_engine/workers/leasing_worker.py
from __future__ import annotations

import argparse
import logging
import threading
from typing import Callable, Generic, Optional, TypeVar

from ..config import settings
from ..logging_config import configure_logging
from ..services.leasing_jobs import JobSummary, run_leasing_jobs_once

log = logging.getLogger(__name__)

T = TypeVar("T")


class IntervalRunner(Generic[T]):
    """
    Calls `fn` every `interval_seconds` on a background thread.

    Ticks never overlap: a tick that starts while the previous one is still
    running returns None immediately. Manual `tick()` calls share the guard.
    """

    def __init__(self, fn: Callable[[], T], *, interval_seconds: float, name: str = "leasing-jobs"):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.fn = fn
        self.interval_seconds = float(interval_seconds)
        self.name = name
        self._running = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._running.locked()

    def tick(self) -> Optional[T]:
        if not self._running.acquire(blocking=False):
            log.info("tick skipped; previous run still in progress", extra={"job_key": self.name})
            return None
        try:
            return self.fn()
        except Exception:
            log.exception("tick failed", extra={"job_key": self.name})
            return None
        finally:
            self._running.release()

    def _loop(self) -> None:
        self.tick()
        while not self._stop.wait(self.interval_seconds):
            self.tick()

    def start(self) -> "IntervalRunner[T]":
        if self._thread is not None and self._thread.is_alive():
            return self
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
        self._thread.start()
        return self

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None


def main() -> None:
    """
    Manual worker (CLI):
    - `--once` runs a single tick and prints the summary
    - otherwise loops on the configured interval until interrupted
    """
    p = argparse.ArgumentParser(description="Run leasing background jobs")
    p.add_argument("--once", action="store_true")
    p.add_argument("--interval", type=float, default=float(settings.leasing_jobs_interval_seconds))
    args = p.parse_args()

    configure_logging()

    if args.once:
        summary = run_leasing_jobs_once()
        print(summary.as_dict())
        return

    runner = IntervalRunner(run_leasing_jobs_once, interval_seconds=args.interval)
    runner.start()
    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        runner.stop()


if __name__ == "__main__":
    main()
