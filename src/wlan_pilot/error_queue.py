"""Bounded, thread-safe side channel for diagnostics awaiting display."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Deque


DEFAULT_CAPACITY = 32
DEFAULT_MAX_LENGTH = 512


@dataclass(slots=True)
class QueuedDiagnostic:
    """A message produced by any component for later display."""

    message: str
    is_error: bool = True
    timestamp: float = field(default_factory=time.time)

    @property
    def severity(self) -> str:
        return "error" if self.is_error else "warning"

    def to_dict(self) -> dict[str, object]:
        return {
            "message": self.message,
            "severity": self.severity,
            "timestamp": self.timestamp,
        }


class DiagnosticQueue:
    """Fixed-capacity FIFO of :class:`QueuedDiagnostic` entries.

    When the queue is full the oldest entry is dropped to make room. Every
    operation is a no-op before :meth:`init` and after :meth:`shutdown`, so
    producers never need to know whether a consumer is attached.
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        *,
        max_length: int = DEFAULT_MAX_LENGTH,
        active: bool = False,
    ) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        if max_length <= 0:
            raise ValueError("max_length must be positive")
        self._capacity = capacity
        self._max_length = max_length
        self._entries: Deque[QueuedDiagnostic] = deque(maxlen=capacity)
        self._lock = threading.Lock()
        self._active = active

    # ------------------------------ properties -----------------------------
    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def active(self) -> bool:
        with self._lock:
            return self._active

    # ------------------------------ lifecycle ------------------------------
    def init(self) -> None:
        with self._lock:
            self._entries.clear()
            self._active = True

    def shutdown(self) -> None:
        with self._lock:
            self._entries.clear()
            self._active = False

    # ------------------------------ operations -----------------------------
    def push(self, message: str, is_error: bool = True) -> None:
        text = str(message)[: self._max_length]
        with self._lock:
            if not self._active:
                return
            self._entries.append(QueuedDiagnostic(message=text, is_error=is_error))

    def push_formatted(self, template: str, *args: object, is_error: bool = True) -> None:
        """Format ``template`` with ``args`` %-style and queue the result."""

        try:
            message = template % args if args else template
        except (TypeError, ValueError):
            message = " ".join([template, *map(str, args)])
        self.push(message, is_error=is_error)

    def pop(self) -> QueuedDiagnostic | None:
        with self._lock:
            if not self._active or not self._entries:
                return None
            return self._entries.popleft()

    def drain(self) -> list[QueuedDiagnostic]:
        """Remove and return every pending entry, oldest first."""

        with self._lock:
            if not self._active:
                return []
            entries = list(self._entries)
            self._entries.clear()
        return entries

    def has_pending(self) -> bool:
        with self._lock:
            return self._active and bool(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries) if self._active else 0


def record_event(
    queue: DiagnosticQueue | None,
    log: logging.Logger,
    event: str,
    message: str,
    *,
    error: bool = False,
    warning: bool = False,
    metadata: dict[str, object | None] | None = None,
) -> None:
    """Mirror an event to ``log`` and, for problems, to ``queue``."""

    payload = {key: value for key, value in (metadata or {}).items() if value is not None}
    level = logging.WARNING if error or warning else logging.INFO
    if payload:
        log.log(level, "Wi-Fi event %s: %s | metadata=%s", event, message, payload)
    else:
        log.log(level, "Wi-Fi event %s: %s", event, message)
    if queue is not None and (error or warning):
        queue.push(message, is_error=error)


__all__ = ["DEFAULT_CAPACITY", "DiagnosticQueue", "QueuedDiagnostic", "record_event"]
