"""Timing Recorder - Monotonic phase timestamps for one exchange.

Each phase is stamped at most once. Later attempts to stamp the same phase
are ignored, so callbacks that fire repeatedly (per chunk, per trace event)
can call mark_*() unconditionally.
"""

from __future__ import annotations

import time
from typing import Callable

from flux_http.models import TimingRecord

_NS_PER_MS = 1_000_000


class TimingRecorder:
    """Four-slot ladder: start, tls_handshake, ttfb, total.

    Usage:
        recorder = TimingRecorder()
        ...
        recorder.mark_ttfb()
        ...
        recorder.mark_total()
        timings = recorder.snapshot()
    """

    def __init__(self, clock: Callable[[], int] = time.perf_counter_ns) -> None:
        self._clock = clock
        self._start = clock()
        self._tls_handshake: float | None = None
        self._ttfb: float | None = None
        self._total: float | None = None

    def _elapsed_ms(self) -> float:
        return (self._clock() - self._start) / _NS_PER_MS

    @property
    def start(self) -> int:
        return self._start

    def mark_tls_handshake(self) -> None:
        if self._tls_handshake is None:
            self._tls_handshake = self._elapsed_ms()

    def mark_ttfb(self) -> None:
        if self._ttfb is None:
            self._ttfb = self._elapsed_ms()

    def mark_total(self) -> None:
        if self._total is None:
            self._total = self._elapsed_ms()

    @property
    def is_complete(self) -> bool:
        return self._total is not None

    def snapshot(self) -> TimingRecord:
        """Freeze the current state into an immutable TimingRecord."""
        return TimingRecord(
            start=self._start,
            tls_handshake=self._tls_handshake,
            ttfb=self._ttfb,
            total=self._total,
        )
