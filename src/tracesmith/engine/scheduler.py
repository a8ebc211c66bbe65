"""Periodic mining on a background thread."""

from __future__ import annotations

import threading
from types import TracebackType

import structlog

from tracesmith.engine.service import MiningService

slog = structlog.get_logger(__name__)


class MiningScheduler:
    """Runs MiningService.run_cycle now and then every interval until stopped.

    Example:
        with MiningScheduler(service, interval_seconds=3600):
            serve_requests()
    """

    def __init__(self, service: MiningService, interval_seconds: float | None = None) -> None:
        self._service = service
        self._interval = interval_seconds or service.settings.scheduler.interval_seconds
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._cycles = 0
        self._cycles_lock = threading.Lock()

    @property
    def cycles_completed(self) -> int:
        with self._cycles_lock:
            return self._cycles

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            raise RuntimeError("MiningScheduler is already running")
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="tracesmith-scheduler", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self._service.run_cycle()
            except Exception:
                # Listing fingerprints failed; the next tick tries again
                slog.exception("mining_cycle_failed")
            with self._cycles_lock:
                self._cycles += 1
            self._stop.wait(self._interval)

    def __enter__(self) -> MiningScheduler:
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.stop()
