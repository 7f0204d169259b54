"""
Delegated Capture
=================

Placeholder for capture that happens outside the process.

The encoder grabs the virtual display itself (x11grab), so this source
moves no frames. It exists so the supervisor drives one uniform lifecycle
for every capture mode.
"""

import logging

from webcast_relay.capture.base import FrameSink, FrameSource
from webcast_relay.models.state import CaptureMode
from webcast_relay.session.base import VisualSession


logger = logging.getLogger(__name__)


class DelegatedFrameSource(FrameSource):
    """No-op frame source for display-grab capture."""

    mode = CaptureMode.DELEGATED

    async def _attach(self, session: VisualSession) -> None:
        logger.info("Capture delegated to the encoder (display grab)")

    async def _flow(self, sink: FrameSink) -> None:
        return None
