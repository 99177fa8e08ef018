"""Capture-gated clock-in coordination.

A clock-in may only persist after the capability gate grants capture
(acquire, then persist). Clock-out releases the capability after the
session is completed (persist, then release).
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Optional

from timeclock.core.errors import AlreadyActive, CaptureDenied, CaptureTimeout
from timeclock.core.observability import record_capture_outcome
from timeclock.services.capture_gates import CaptureGate

logger = logging.getLogger(__name__)


@dataclass
class _PendingCapture:
    settled: threading.Event = field(default_factory=threading.Event)
    cancelled: bool = False
    future: Optional[Future] = None


class CaptureCoordinator:
    def __init__(self, gate: CaptureGate, *, timeout_seconds: float = 60.0, max_workers: int = 16) -> None:
        self.gate = gate
        self.timeout_seconds = timeout_seconds
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="capture")
        self._lock = threading.Lock()
        self._pending: dict[int, _PendingCapture] = {}

    def is_pending(self, worker_id: int) -> bool:
        with self._lock:
            return worker_id in self._pending

    def acquire(self, worker_id: int) -> None:
        """Block until the gate grants capture for *worker_id*.

        Raises ``CaptureDenied`` on refusal, gate failure or cancellation and
        ``CaptureTimeout`` when the gate has not answered in time.
        """
        pending = _PendingCapture()
        with self._lock:
            if worker_id in self._pending:
                raise AlreadyActive("A clock-in is already waiting on screen capture", worker_id=worker_id)
            self._pending[worker_id] = pending

        try:
            future = self._executor.submit(self.gate.acquire, worker_id)
            pending.future = future
            future.add_done_callback(lambda _done: pending.settled.set())
            settled = pending.settled.wait(self.timeout_seconds)
        finally:
            with self._lock:
                self._pending.pop(worker_id, None)

        if pending.cancelled:
            record_capture_outcome("cancelled")
            logger.info("capture_cancelled", extra={"worker_id": worker_id, "outcome": "cancelled"})
            self._release_after_abort(worker_id, future)
            raise CaptureDenied("Clock-in was cancelled before screen capture started", worker_id=worker_id)

        if not settled:
            record_capture_outcome("timeout")
            logger.warning("capture_timeout", extra={"worker_id": worker_id, "outcome": "timeout"})
            self._release_after_abort(worker_id, future)
            raise CaptureTimeout(worker_id=worker_id)

        try:
            granted = future.result()
        except Exception as exc:
            record_capture_outcome("error")
            logger.warning(
                "capture_gate_error",
                extra={"worker_id": worker_id, "outcome": "error"},
                exc_info=True,
            )
            raise CaptureDenied("Screen capture could not be started", worker_id=worker_id) from exc

        if not granted:
            record_capture_outcome("denied")
            logger.info("capture_denied", extra={"worker_id": worker_id, "outcome": "denied"})
            raise CaptureDenied(worker_id=worker_id)

        record_capture_outcome("granted")
        logger.info("capture_granted", extra={"worker_id": worker_id, "outcome": "granted"})

    def cancel(self, worker_id: int) -> bool:
        """Abort a pending handshake. Returns False if none was pending."""
        with self._lock:
            pending = self._pending.get(worker_id)
            if pending is None:
                return False
            pending.cancelled = True
        pending.settled.set()
        return True

    def release(self, worker_id: int) -> bool:
        """Best-effort teardown of the worker's capture. Never raises."""
        try:
            self.gate.release(worker_id)
        except Exception:
            record_capture_outcome("release_failed")
            logger.warning(
                "capture_release_failed",
                extra={"worker_id": worker_id, "outcome": "release_failed"},
                exc_info=True,
            )
            return False
        record_capture_outcome("released")
        return True

    def _release_after_abort(self, worker_id: int, future: Future) -> None:
        self.release(worker_id)
        if future.cancel():
            return

        # A gate call still in flight may grant after we stopped waiting.
        def release_late_grant(done: Future) -> None:
            if done.cancelled() or done.exception() is not None or not done.result():
                return
            record_capture_outcome("late_grant")
            logger.info("capture_late_grant_released", extra={"worker_id": worker_id, "outcome": "late_grant"})
            self.release(worker_id)

        future.add_done_callback(release_late_grant)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
