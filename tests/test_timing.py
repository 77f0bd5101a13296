"""Tests for flux_http.timing.TimingRecorder."""

import pytest

from flux_http.timing import TimingRecorder


class FakeClock:
    """Nanosecond clock advanced by hand."""

    def __init__(self, start: int = 1_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance_ms(self, ms: float) -> None:
        self.now += int(ms * 1_000_000)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


class TestTimingRecorder:
    def test_start_stamped_on_creation(self, clock: FakeClock) -> None:
        recorder = TimingRecorder(clock)
        snapshot = recorder.snapshot()
        assert snapshot.start == clock.now
        assert snapshot.tls_handshake is None
        assert snapshot.ttfb is None
        assert snapshot.total is None

    def test_phases_are_durations_since_start(self, clock: FakeClock) -> None:
        recorder = TimingRecorder(clock)
        clock.advance_ms(12)
        recorder.mark_tls_handshake()
        clock.advance_ms(30)
        recorder.mark_ttfb()
        clock.advance_ms(8)
        recorder.mark_total()

        snapshot = recorder.snapshot()
        assert snapshot.tls_handshake == pytest.approx(12.0)
        assert snapshot.ttfb == pytest.approx(42.0)
        assert snapshot.total == pytest.approx(50.0)

    def test_each_phase_set_only_once(self, clock: FakeClock) -> None:
        recorder = TimingRecorder(clock)
        clock.advance_ms(5)
        recorder.mark_ttfb()
        clock.advance_ms(100)
        recorder.mark_ttfb()
        recorder.mark_total()
        clock.advance_ms(100)
        recorder.mark_total()

        snapshot = recorder.snapshot()
        assert snapshot.ttfb == pytest.approx(5.0)
        assert snapshot.total == pytest.approx(105.0)

    def test_plaintext_exchange_has_no_tls_phase(self, clock: FakeClock) -> None:
        recorder = TimingRecorder(clock)
        clock.advance_ms(3)
        recorder.mark_ttfb()
        recorder.mark_total()
        snapshot = recorder.snapshot()
        assert snapshot.tls_handshake is None
        assert snapshot.ttfb is not None

    def test_is_complete_tracks_total(self, clock: FakeClock) -> None:
        recorder = TimingRecorder(clock)
        assert not recorder.is_complete
        recorder.mark_total()
        assert recorder.is_complete

    def test_snapshot_is_frozen_copy(self, clock: FakeClock) -> None:
        recorder = TimingRecorder(clock)
        before = recorder.snapshot()
        recorder.mark_total()
        assert before.total is None
        assert recorder.snapshot().total is not None

    def test_default_clock_is_monotonic(self) -> None:
        recorder = TimingRecorder()
        recorder.mark_ttfb()
        recorder.mark_total()
        snapshot = recorder.snapshot()
        assert 0 <= snapshot.ttfb <= snapshot.total
