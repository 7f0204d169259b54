"""
Pushed Capture
==============

Forwards frames the session pushes at its own cadence.

Flow control:
    The session's frame callback drops each frame into a single-slot
    FrameMailbox. The flow takes it, delivers it, and only then
    acknowledges it to the session, which is what releases the next frame.
    When the sink is backpressured the acknowledgement is withheld until
    the drain signal arrives.

Stalls:
    No frame for stall_timeout counts as one acquisition failure and the
    screencast is re-issued.
"""

import logging

from webcast_relay.capture.base import FrameSink, FrameSource
from webcast_relay.errors import AcquisitionError, SessionError, SourceError
from webcast_relay.models.state import CaptureMode
from webcast_relay.session.base import VisualSession
from webcast_relay.stream.mailbox import FrameMailbox


logger = logging.getLogger(__name__)


class PushedFrameSource(FrameSource):
    """
    Screencast-driven capture with one frame in flight.

    Attributes:
        stall_timeout: Seconds without a pushed frame before recovery
        mailbox: Single-slot handoff from the session callback
    """

    mode = CaptureMode.PUSHED

    def __init__(self, *, stall_timeout: float = 5.0, **kwargs) -> None:
        super().__init__(**kwargs)
        self.stall_timeout = stall_timeout
        self.mailbox = FrameMailbox()

    async def _attach(self, session: VisualSession) -> None:
        try:
            await session.start_screencast(self.mailbox.offer)
        except (SessionError, AcquisitionError) as e:
            raise SourceError(f"Screencast attach failed: {e}") from e

    async def _flow(self, sink: FrameSink) -> None:
        while True:
            item = await self.mailbox.take(timeout=self.stall_timeout)
            if item is None:
                await self._recover_stall()
                continue

            await self._deliver(sink, self._next_frame(item.data))

            try:
                await self._session.ack_frame(item.ack_token)
            except AcquisitionError as e:
                self._record_failure(e)
                continue
            self._record_success()

    async def _recover_stall(self) -> None:
        self._record_failure(
            AcquisitionError(f"No frame pushed for {self.stall_timeout:.1f}s")
        )
        try:
            await self._session.restart_screencast()
        except AcquisitionError as e:
            logger.warning(f"Screencast restart failed: {e}")

    async def _detach(self) -> None:
        if self._session is not None:
            await self._session.stop_screencast()
        dropped = self.mailbox.clear()
        if dropped:
            logger.debug(f"Discarded {dropped} unacknowledged frame(s)")
