"""
Polled Capture
==============

Requests a snapshot from the session on a fixed-period timer.

Timing:
    Each tick acquires and delivers one frame. If that takes longer than
    the period (slow screenshot, or waiting for a drain signal), the ticks
    that elapsed meanwhile are skipped rather than queued, so at most one
    frame is ever in flight.
"""

import asyncio
import logging

from webcast_relay.capture.base import FrameSink, FrameSource, Sleep
from webcast_relay.errors import AcquisitionError, SourceError
from webcast_relay.models.state import CaptureMode
from webcast_relay.session.base import VisualSession


logger = logging.getLogger(__name__)


class PolledFrameSource(FrameSource):
    """
    Timer-driven screenshot capture.

    Attributes:
        period: Seconds between ticks (1 / fps)
        acquire_timeout: Bound on one capture call
    """

    mode = CaptureMode.POLLED

    def __init__(
        self,
        fps: int,
        *,
        acquire_timeout: float = 5.0,
        sleep: Sleep = asyncio.sleep,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        if fps < 1:
            raise ValueError("fps must be >= 1")
        self.period = 1.0 / fps
        self.acquire_timeout = acquire_timeout
        self._sleep = sleep

    async def _attach(self, session: VisualSession) -> None:
        if not session.ready:
            raise SourceError("Session is not ready for polling")

    async def _flow(self, sink: FrameSink) -> None:
        logger.info(f"Polling frames every {self.period * 1000:.0f}ms")
        while True:
            tick_started = self._clock()
            await self._tick(sink)
            elapsed = self._clock() - tick_started

            missed = int(elapsed // self.period)
            if missed:
                self.metrics.ticks_skipped += missed
                logger.debug(f"Tick overran by {elapsed:.3f}s, skipping {missed} tick(s)")
            await self._sleep(self.period * (missed + 1) - elapsed)

    async def _tick(self, sink: FrameSink) -> None:
        try:
            data = await asyncio.wait_for(
                self._session.capture_frame(),
                timeout=self.acquire_timeout,
            )
        except asyncio.TimeoutError:
            self._record_failure(
                AcquisitionError(f"Capture timed out after {self.acquire_timeout:.1f}s")
            )
            return
        except AcquisitionError as e:
            self._record_failure(e)
            return

        self._record_success()
        await self._deliver(sink, self._next_frame(data))
