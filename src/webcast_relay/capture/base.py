"""
Frame Source
============

Common machinery for the frame acquisition strategies.

A FrameSource is attached to a running VisualSession with start(), then
begin_flow(sink) starts a single task that moves frames into the encoder.
Because one task does all acquisition and delivery, frames reach the sink
in the order they were produced.

Failure Policy:
    - An acquisition error is logged and the frame is dropped
    - Errors while the session is rejuvenating are dropped without counting
    - failure_threshold consecutive errors within failure_window trip the
      source's FatalSignal with a SourceError
    - A sink error ends the flow quietly; the sink reports its own failure

Backpressure:
    - After a BACKPRESSURED send the flow waits for the sink's drain signal
      before it produces the next frame
    - The wait is bounded by the sink's drain timeout; on expiry the flow
      resumes and the next send re-checks saturation
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional, Protocol

from webcast_relay.errors import AcquisitionError, SinkError, SourceError
from webcast_relay.lifecycle import Clock, FailureWindow, FatalSignal
from webcast_relay.models.state import CaptureMode, SendResult
from webcast_relay.session.base import VisualSession
from webcast_relay.stream.frame import Frame


logger = logging.getLogger(__name__)


Sleep = Callable[[float], Awaitable[None]]


class FrameSink(Protocol):
    """What a FrameSource needs from the encoder side."""

    def send(self, frame: Frame) -> SendResult: ...

    async def wait_drained(self, timeout: Optional[float] = None) -> bool: ...


class SourceMetrics:
    """Metrics for FrameSource observability."""

    __slots__ = (
        "frames_delivered",
        "frames_rejected",
        "ticks_skipped",
        "acquisition_failures",
        "transient_drops",
        "drain_timeouts",
        "last_sequence",
    )

    def __init__(self) -> None:
        self.frames_delivered: int = 0
        self.frames_rejected: int = 0
        self.ticks_skipped: int = 0
        self.acquisition_failures: int = 0
        self.transient_drops: int = 0
        self.drain_timeouts: int = 0
        self.last_sequence: int = 0

    def to_dict(self) -> dict:
        """Export metrics as dict."""
        return {
            "frames_delivered": self.frames_delivered,
            "frames_rejected": self.frames_rejected,
            "ticks_skipped": self.ticks_skipped,
            "acquisition_failures": self.acquisition_failures,
            "transient_drops": self.transient_drops,
            "drain_timeouts": self.drain_timeouts,
            "last_sequence": self.last_sequence,
        }


class FrameSource(ABC):
    """
    Base class for acquisition strategies.

    Attributes:
        mode: Which CaptureMode this class implements
        failure: Tripped with a SourceError when acquisition escalates
        metrics: Operational counters
    """

    mode: CaptureMode

    def __init__(
        self,
        *,
        failure_threshold: int = 3,
        failure_window: float = 10.0,
        stop_timeout: float = 5.0,
        clock: Clock = time.monotonic,
    ) -> None:
        self.stop_timeout = stop_timeout
        self._clock = clock
        self._session: Optional[VisualSession] = None
        self._started: bool = False
        self._stopped: bool = False
        self._flow_task: Optional[asyncio.Task] = None
        self._sequence: int = 0
        self._failures = FailureWindow(failure_threshold, failure_window, clock=clock)

        self.failure = FatalSignal()
        self.metrics = SourceMetrics()

    @property
    def started(self) -> bool:
        return self._started

    @property
    def flowing(self) -> bool:
        return self._flow_task is not None and not self._flow_task.done()

    @property
    def last_sequence(self) -> int:
        return self._sequence

    async def start(self, session: VisualSession) -> None:
        """
        Attach to a running session.

        Raises:
            SourceError: Attachment failed or the source was already stopped
        """
        if self._started:
            return
        if self._stopped:
            raise SourceError("FrameSource has been stopped")
        self._session = session
        try:
            await self._attach(session)
        except SourceError:
            raise
        except Exception as e:
            raise SourceError(f"{type(self).__name__} attach failed: {e}") from e
        self._started = True
        logger.info(f"Frame source attached (mode={self.mode.value})")

    def begin_flow(self, sink: FrameSink) -> None:
        """Start moving frames into the sink."""
        if not self._started:
            raise SourceError("FrameSource has not been started")
        if self._flow_task is not None:
            return
        self._flow_task = asyncio.create_task(
            self._run_flow(sink),
            name=f"frame_flow_{self.mode.value}",
        )

    async def stop(self) -> None:
        """Stop emitting frames and detach. Safe to call repeatedly."""
        if self._stopped:
            return
        self._stopped = True
        self._started = False

        task, self._flow_task = self._flow_task, None
        if task is not None:
            task.cancel()
            try:
                await asyncio.wait_for(task, timeout=self.stop_timeout)
            except (asyncio.CancelledError, asyncio.TimeoutError):
                pass

        try:
            await self._detach()
        except Exception as e:
            logger.warning(f"Error detaching frame source: {e}")
        logger.info(
            f"Frame source stopped (delivered={self.metrics.frames_delivered}, "
            f"last_sequence={self._sequence})"
        )

    # -------------------------------------------------------------------------
    # Strategy hooks
    # -------------------------------------------------------------------------

    @abstractmethod
    async def _attach(self, session: VisualSession) -> None:
        ...

    @abstractmethod
    async def _flow(self, sink: FrameSink) -> None:
        ...

    async def _detach(self) -> None:
        return None

    # -------------------------------------------------------------------------
    # Shared helpers
    # -------------------------------------------------------------------------

    async def _run_flow(self, sink: FrameSink) -> None:
        try:
            await self._flow(sink)
        except SinkError as e:
            logger.warning(f"Frame flow ended by sink: {e}")
        except SourceError as e:
            logger.error(f"Frame source failed: {e}")
            self.failure.trip(e)
        except Exception as e:
            logger.exception("Unexpected error in frame flow")
            self.failure.trip(SourceError(f"Unexpected frame flow error: {e}"))

    def _next_frame(self, data: bytes) -> Frame:
        self._sequence += 1
        self.metrics.last_sequence = self._sequence
        return Frame(sequence=self._sequence, timestamp=self._clock(), data=data)

    async def _deliver(self, sink: FrameSink, frame: Frame) -> bool:
        """
        Hand one frame to the sink.

        Returns:
            True if accepted. On BACKPRESSURED the frame is dropped and this
            waits for the drain signal before returning False.
        """
        if sink.send(frame) is SendResult.ACCEPTED:
            self.metrics.frames_delivered += 1
            return True

        self.metrics.frames_rejected += 1
        logger.debug(f"Sink backpressured, dropped frame {frame.sequence}; waiting for drain")
        if not await sink.wait_drained():
            self.metrics.drain_timeouts += 1
            logger.warning(f"Sink did not drain after frame {frame.sequence}; resuming anyway")
        return False

    def _record_success(self) -> None:
        self._failures.reset()

    def _record_failure(self, error: AcquisitionError) -> None:
        """
        Count an acquisition failure.

        Raises:
            SourceError: The failure threshold was reached
        """
        if self._session is not None and self._session.rejuvenating:
            self.metrics.transient_drops += 1
            logger.debug(f"Acquisition error during rejuvenation ignored: {error}")
            return

        self.metrics.acquisition_failures += 1
        count = self._failures.record()
        logger.warning(f"Frame acquisition failed ({count}/{self._failures.limit}): {error}")
        if count >= self._failures.limit:
            raise SourceError(
                f"{count} consecutive acquisition failures within "
                f"{self._failures.window_seconds:.0f}s: {error}"
            ) from error
