"""
Test Configuration
==================

Pytest fixtures and in-memory fakes for webcast-relay.

The fakes stand in for the browser and ffmpeg so the relay core can be
exercised without either installed.
"""

import asyncio
import time
from typing import Any, Callable, List, Optional

import pytest

from webcast_relay.capture.base import FrameSource
from webcast_relay.config import Settings
from webcast_relay.encoder.sink import SinkMetrics
from webcast_relay.errors import AcquisitionError
from webcast_relay.lifecycle import FatalSignal
from webcast_relay.models.state import CaptureMode, EncoderStatus, SendResult
from webcast_relay.session.base import BaseSession
from webcast_relay.stream.frame import Frame


# =============================================================================
# Fakes
# =============================================================================

class ManualClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSession(BaseSession):
    """
    Scriptable VisualSession.

    Polled capture returns frame_data unless capture_failures is positive.
    Pushed capture plays screencast_frames one at a time, pushing the next
    only after the previous one was acknowledged.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        journal: Optional[List[str]] = None,
        fail_open: Optional[BaseException] = None,
        fail_reload: Optional[BaseException] = None,
        open_gate: Optional[asyncio.Event] = None,
        reload_gate: Optional[asyncio.Event] = None,
        screencast_frames: Optional[List[bytes]] = None,
    ) -> None:
        super().__init__(clock=clock)
        self.journal = journal if journal is not None else []
        self.fail_open = fail_open
        self.fail_reload = fail_reload
        self.open_gate = open_gate
        self.reload_gate = reload_gate
        self.frame_data = b"\xff\xd8jpeg\xff\xd9"
        self.capture_failures = 0
        self.on_capture: Optional[Callable[[], None]] = None
        self.closed = 0
        self.reloads = 0

        self.screencast_frames = list(screencast_frames or [])
        self.screencast_callback: Optional[Callable[[bytes, Any], None]] = None
        self.screencast_restarts = 0
        self.acks: List[Any] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._next_token = 0

    async def _open(self) -> None:
        self.journal.append("session.start")
        if self.open_gate is not None:
            await self.open_gate.wait()
        if self.fail_open is not None:
            raise self.fail_open

    async def _reload(self) -> None:
        self.reloads += 1
        if self.reload_gate is not None:
            await self.reload_gate.wait()
        if self.fail_reload is not None:
            raise self.fail_reload

    async def _close(self) -> None:
        self.closed += 1

    async def stop(self) -> None:
        if not self._stopped:
            self.journal.append("session.stop")
        await super().stop()

    async def capture_frame(self) -> bytes:
        if self.on_capture is not None:
            self.on_capture()
        if self.rejuvenating:
            raise AcquisitionError("page is reloading")
        if self.capture_failures > 0:
            self.capture_failures -= 1
            raise AcquisitionError("screenshot failed")
        return self.frame_data

    async def start_screencast(self, on_frame) -> None:
        self.screencast_callback = on_frame
        self._push_next()

    async def ack_frame(self, ack_token: Any) -> None:
        self.acks.append(ack_token)
        self.in_flight -= 1
        self._push_next()

    async def restart_screencast(self) -> None:
        self.screencast_restarts += 1

    async def stop_screencast(self) -> None:
        self.screencast_callback = None

    def push(self, data: bytes, ack_token: Any) -> bool:
        """Push a frame by hand, ignoring the ack handshake."""
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        return self.screencast_callback(data, ack_token)

    def _push_next(self) -> None:
        if self.screencast_callback is None or not self.screencast_frames:
            return
        self._next_token += 1
        self.push(self.screencast_frames.pop(0), self._next_token)


class FakeSource(FrameSource):
    """FrameSource that attaches (optionally after a gate) and then idles."""

    mode = CaptureMode.POLLED

    def __init__(
        self,
        journal: Optional[List[str]] = None,
        attach_gate: Optional[asyncio.Event] = None,
        fail_attach: Optional[BaseException] = None,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self.journal = journal if journal is not None else []
        self.attach_gate = attach_gate
        self.fail_attach = fail_attach
        self.sink = None

    async def _attach(self, session) -> None:
        self.journal.append("source.start")
        if self.attach_gate is not None:
            await self.attach_gate.wait()
        if self.fail_attach is not None:
            raise self.fail_attach

    async def _flow(self, sink) -> None:
        self.sink = sink
        await asyncio.Event().wait()

    async def stop(self) -> None:
        if not self._stopped:
            self.journal.append("source.stop")
        await super().stop()


class FakeSink:
    """
    In-memory EncoderSink.

    Set backpressured to make send() refuse frames; wait_drained() then
    blocks until release() is called.
    Set drain_times_out to make wait_drained() report a timeout at once.
    """

    def __init__(
        self,
        journal: Optional[List[str]] = None,
        fail_start: Optional[BaseException] = None,
        fail_stop: Optional[BaseException] = None,
    ) -> None:
        self.journal = journal if journal is not None else []
        self.fail_start = fail_start
        self.fail_stop = fail_stop
        self.frames: List[Frame] = []
        self.events: List[tuple] = []
        self.backpressured = False
        self.drain_times_out = False
        self.failure = FatalSignal()
        self.metrics = SinkMetrics()
        self.status = EncoderStatus.IDLE
        self._drain = asyncio.Event()
        self._stopped = False

    async def start(self) -> None:
        self.journal.append("sink.start")
        if self.fail_start is not None:
            self.status = EncoderStatus.FAILED
            raise self.fail_start
        self.status = EncoderStatus.RUNNING

    async def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        self.journal.append("sink.stop")
        if self.fail_stop is not None:
            raise self.fail_stop
        self.status = EncoderStatus.STOPPED

    def send(self, frame: Frame) -> SendResult:
        if self.failure.tripped:
            raise self.failure.error
        if self.backpressured:
            self.events.append(("backpressured", frame.sequence))
            return SendResult.BACKPRESSURED
        self.events.append(("send", frame.sequence))
        self.frames.append(frame)
        self.metrics.frames_accepted += 1
        return SendResult.ACCEPTED

    async def wait_drained(self, timeout: Optional[float] = None) -> bool:
        self.events.append(("wait",))
        if self.drain_times_out:
            return False
        await self._drain.wait()
        self._drain = asyncio.Event()
        self.events.append(("drained",))
        return True

    def release(self) -> None:
        self.backpressured = False
        self._drain.set()


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def clock():
    """Provide a manually advanced clock."""
    return ManualClock()


@pytest.fixture
def journal():
    """Shared list the fakes record lifecycle calls into."""
    return []


@pytest.fixture
def make_settings():
    """Build Settings from section overrides; a stream key is always set."""
    def _make(**sections) -> Settings:
        data = {"stream": {"stream_key": "test-key"}}
        for name, values in sections.items():
            data.setdefault(name, {}).update(values)
        return Settings.model_validate(data)

    return _make


@pytest.fixture
def settings(make_settings):
    """Provide settings tuned for fast tests."""
    return make_settings(
        capture={"mode": "polled"},
        supervisor={
            "restart_delay_seconds": 0.01,
            "rejuvenation_interval_seconds": 1.0,
            "rejuvenation_check_seconds": 0.01,
        },
    )


@pytest.fixture
def fake_sleep():
    """Sleep replacement that records requested durations but barely waits."""
    calls: List[float] = []

    async def _sleep(seconds: float) -> None:
        calls.append(seconds)
        await asyncio.sleep(0.001)

    _sleep.calls = calls
    return _sleep


@pytest.fixture
def wait_until():
    """Poll a predicate on the running loop until it holds."""
    async def _wait(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
        deadline = time.monotonic() + timeout
        while not predicate():
            if time.monotonic() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.005)

    return _wait


@pytest.fixture
def fakes():
    """Expose the fake classes to test modules."""
    class _Fakes:
        Clock = ManualClock
        Session = FakeSession
        Source = FakeSource
        Sink = FakeSink

    return _Fakes
