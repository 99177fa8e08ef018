"""Capability gates that grant the monitoring (screen capture) handshake.

A gate answers one question for the clock-in coordinator: did the worker's
capture start? How capture itself works is outside this service.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

import httpx

from timeclock.core.settings import Settings

logger = logging.getLogger(__name__)


class CaptureGate(Protocol):
    def acquire(self, worker_id: int) -> bool: ...

    def release(self, worker_id: int) -> None: ...


class NullCaptureGate:
    """Grants every request. Used when capture is not required."""

    def acquire(self, worker_id: int) -> bool:
        return True

    def release(self, worker_id: int) -> None:
        return None


@dataclass
class _Handshake:
    event: threading.Event = field(default_factory=threading.Event)
    granted: bool = False

    def settle(self, granted: bool) -> None:
        self.granted = granted
        self.event.set()


class HandshakeCaptureGate:
    """Rendezvous between a blocked clock-in and the browser's capture prompt.

    ``acquire`` parks the clock-in request until the client reports the
    outcome of its screen-share prompt through ``resolve``. An outcome that
    arrives before ``acquire`` registers is held for ``early_result_ttl``
    seconds and consumed by the next ``acquire`` for that worker.
    """

    def __init__(self, *, max_wait_seconds: float = 300.0, early_result_ttl: float = 30.0) -> None:
        self.max_wait_seconds = max_wait_seconds
        self.early_result_ttl = early_result_ttl
        self._lock = threading.Lock()
        self._pending: dict[int, _Handshake] = {}
        self._early: dict[int, tuple[float, bool]] = {}

    def acquire(self, worker_id: int) -> bool:
        handshake = _Handshake()
        with self._lock:
            early = self._early.pop(worker_id, None)
            if early and time.monotonic() - early[0] <= self.early_result_ttl:
                handshake.settle(early[1])
            else:
                previous = self._pending.get(worker_id)
                if previous is not None:
                    previous.settle(False)
                self._pending[worker_id] = handshake

        try:
            handshake.event.wait(self.max_wait_seconds)
        finally:
            with self._lock:
                if self._pending.get(worker_id) is handshake:
                    del self._pending[worker_id]

        return handshake.granted

    def resolve(self, worker_id: int, granted: bool) -> bool:
        """Report the capture outcome. Returns True if a clock-in was waiting."""
        with self._lock:
            handshake = self._pending.pop(worker_id, None)
            if handshake is None:
                self._early[worker_id] = (time.monotonic(), granted)
                return False
        handshake.settle(granted)
        return True

    def release(self, worker_id: int) -> None:
        with self._lock:
            handshake = self._pending.pop(worker_id, None)
            self._early.pop(worker_id, None)
        if handshake is not None:
            handshake.settle(False)

    def is_waiting(self, worker_id: int) -> bool:
        with self._lock:
            return worker_id in self._pending



class CaptureReleaseError(RuntimeError):
    pass


class HttpCaptureGate:
    """Delegates the handshake to an external monitoring service."""

    def __init__(self, base_url: str, *, token: Optional[str] = None, timeout_seconds: float = 5.0) -> None:
        self.base_url = (base_url or "").strip().rstrip("/")
        self.token = token
        self.timeout_seconds = max(float(timeout_seconds or 5.0), 0.5)

    def _headers(self) -> dict[str, str]:
        headers = {"content-type": "application/json"}
        if self.token:
            headers["x-service-token"] = self.token
        return headers

    def _request(self, path: str, *, body: Optional[dict[str, Any]] = None) -> dict[str, Any] | None:
        url = f"{self.base_url}{path}"
        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                response = client.post(url, headers=self._headers(), json=body or {})
        except httpx.HTTPError as exc:
            logger.warning("capture_service_request_error path=%s error=%s", path, exc)
            return None
        if response.status_code >= 400:
            logger.warning("capture_service_request_failed status=%s path=%s", response.status_code, path)
            return None
        if not response.content:
            return {}
        return response.json()

    def acquire(self, worker_id: int) -> bool:
        payload = self._request(f"/v1/capture/{worker_id}/acquire", body={"worker_id": worker_id})
        return bool(payload and payload.get("granted"))

    def release(self, worker_id: int) -> None:
        payload = self._request(f"/v1/capture/{worker_id}/release", body={"worker_id": worker_id})
        if payload is None:
            raise CaptureReleaseError(f"Capture service did not confirm release for worker {worker_id}")


def build_capture_gate(settings: Settings) -> CaptureGate:
    if not settings.capture_required or settings.capture_gate == "null":
        return NullCaptureGate()
    if settings.capture_gate == "http":
        if not settings.capture_service_url:
            raise RuntimeError("CAPTURE_SERVICE_URL must be set when CAPTURE_GATE=http")
        return HttpCaptureGate(
            settings.capture_service_url,
            token=settings.capture_service_token,
            timeout_seconds=settings.capture_http_timeout_seconds,
        )
    return HandshakeCaptureGate(max_wait_seconds=max(settings.capture_timeout_seconds, 1.0) * 2)
