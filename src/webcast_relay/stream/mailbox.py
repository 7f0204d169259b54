"""
Frame Mailbox
=============

Single-slot handoff between a session's pushed-frame callback and the
Pushed FrameSource.

The session calls offer() from its event callback; the FrameSource awaits
take(). The session only pushes the next frame after the FrameSource has
acknowledged the previous one, so the slot is never contended in normal
operation. An offer into an occupied slot is a protocol violation: it is
rejected and counted, never queued.

Design Rules:
    - Capacity is exactly one
    - offer() never blocks (it runs inside an event callback)
    - Does NOT acknowledge frames; acknowledgement is the consumer's job
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PushedFrame:
    """
    Raw frame pushed by the session, awaiting acknowledgement.

    Attributes:
        data: JPEG-encoded image bytes
        ack_token: Opaque token the session needs back in ack_frame()
    """

    data: bytes
    ack_token: Any

    def __repr__(self) -> str:
        return f"PushedFrame(size={len(self.data)}, ack_token={self.ack_token!r})"


class FrameMailbox:
    """
    Async single-slot mailbox.

    Example:
        mailbox = FrameMailbox()

        # Event callback (producer)
        mailbox.offer(jpeg_bytes, session_id)

        # Consumer
        item = await mailbox.take(timeout=5.0)
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[PushedFrame] = asyncio.Queue(maxsize=1)
        self._rejected_count: int = 0
        self._total_offered: int = 0

    @property
    def occupied(self) -> bool:
        return self._queue.full()

    @property
    def rejected_count(self) -> int:
        """Offers refused because the slot was occupied."""
        return self._rejected_count

    def offer(self, data: bytes, ack_token: Any) -> bool:
        """
        Place a frame into the slot.

        Returns:
            True if stored, False if the slot was occupied.
        """
        self._total_offered += 1
        try:
            self._queue.put_nowait(PushedFrame(data=data, ack_token=ack_token))
            return True
        except asyncio.QueueFull:
            self._rejected_count += 1
            logger.warning(
                f"Mailbox occupied, rejected pushed frame. "
                f"Total rejected: {self._rejected_count}"
            )
            return False

    async def take(self, timeout: Optional[float] = None) -> Optional[PushedFrame]:
        """
        Wait for the next frame.

        Args:
            timeout: Maximum seconds to wait. None = wait forever.

        Returns:
            The pushed frame, or None if the timeout elapsed.
        """
        try:
            if timeout is not None:
                return await asyncio.wait_for(self._queue.get(), timeout=timeout)
            return await self._queue.get()
        except asyncio.TimeoutError:
            return None

    def clear(self) -> int:
        """Empty the slot. Returns the number of frames discarded."""
        cleared = 0
        while True:
            try:
                self._queue.get_nowait()
                cleared += 1
            except asyncio.QueueEmpty:
                break
        return cleared

    def metrics(self) -> dict:
        return {
            "occupied": self.occupied,
            "rejected_count": self._rejected_count,
            "total_offered": self._total_offered,
        }
