"""
Capture Module
==============

Frame acquisition strategies behind one FrameSource interface.

Components:
    - FrameSource: Shared lifecycle, sequencing, failure escalation, delivery
    - PolledFrameSource: Fixed-period screenshots, skip-tick on overrun
    - PushedFrameSource: Session-pushed frames, withhold-ack flow control
    - DelegatedFrameSource: No-op; the encoder grabs the display itself
    - create_frame_source: Selects the strategy from configuration
"""

import asyncio
import logging
import time

from webcast_relay.capture.base import FrameSink, FrameSource, Sleep, SourceMetrics
from webcast_relay.capture.delegated import DelegatedFrameSource
from webcast_relay.capture.polled import PolledFrameSource
from webcast_relay.capture.pushed import PushedFrameSource
from webcast_relay.config import Settings
from webcast_relay.lifecycle import Clock
from webcast_relay.models.state import CaptureMode


logger = logging.getLogger(__name__)


def create_frame_source(
    settings: Settings,
    clock: Clock = time.monotonic,
    sleep: Sleep = asyncio.sleep,
) -> FrameSource:
    """Create the frame source selected by capture.mode."""
    capture = settings.capture
    common = dict(
        failure_threshold=capture.failure_threshold,
        failure_window=capture.failure_window_seconds,
        clock=clock,
    )

    if capture.mode is CaptureMode.POLLED:
        return PolledFrameSource(
            fps=settings.video.fps,
            acquire_timeout=capture.acquire_timeout_seconds,
            sleep=sleep,
            **common,
        )
    elif capture.mode is CaptureMode.PUSHED:
        return PushedFrameSource(stall_timeout=capture.stall_timeout_seconds, **common)
    elif capture.mode is CaptureMode.DELEGATED:
        return DelegatedFrameSource(**common)
    else:
        raise ValueError(f"Unknown capture mode: {capture.mode}")


__all__ = [
    "FrameSource",
    "FrameSink",
    "SourceMetrics",
    "PolledFrameSource",
    "PushedFrameSource",
    "DelegatedFrameSource",
    "create_frame_source",
]
