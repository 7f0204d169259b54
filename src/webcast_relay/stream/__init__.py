"""
Stream Module
=============

Frame data model and the pushed-frame handoff channel.

    - Frame: Typed frame handed to the encoder
    - FrameMailbox: Single-slot mailbox with explicit acknowledgement
    - PushedFrame: Raw pushed frame plus its acknowledgement token

Example:
    from webcast_relay.stream import Frame, FrameMailbox

    mailbox = FrameMailbox()
    mailbox.offer(jpeg_bytes, ack_token=7)
    item = await mailbox.take(timeout=1.0)
"""

from webcast_relay.stream.frame import Frame
from webcast_relay.stream.mailbox import FrameMailbox, PushedFrame


__all__ = [
    "Frame",
    "FrameMailbox",
    "PushedFrame",
]
